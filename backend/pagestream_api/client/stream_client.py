"""Resumable client for the /api/stream event stream

Reconnects after a dropped connection with exponential backoff, asks the
server to resume from the last eventIndex it saw, and drops re-delivered
blocks and images it already handled.

    idle → connecting → streaming → completed
                 ↑          ↓
              retrying ←────┘ → failed (retry() resumes, restart() starts over)
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

import httpx

logger = logging.getLogger(__name__)

EventHandler = Callable[[str, Dict[str, Any]], None]


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    RETRYING = "retrying"
    FAILED = "failed"
    COMPLETED = "completed"


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff schedule: attempt n (1-based) waits base_delay * multiplier^(n-1) seconds"""
    max_retries: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0

    def delay(self, attempt: int) -> float:
        return self.base_delay * self.multiplier ** (attempt - 1)

    def delays(self) -> List[float]:
        return [self.delay(n) for n in range(1, self.max_retries + 1)]


@dataclass
class ClientGenerationState:
    """What the client has already received for one generation"""
    received_block_keys: Set[Tuple[str, int]] = field(default_factory=set)
    received_image_ids: Set[str] = field(default_factory=set)
    last_event_index: int = 0
    completed: bool = False
    retry_count: int = 0

    def accept(self, event: str, data: Dict[str, Any]) -> bool:
        """
        Record an incoming event.

        Returns False for a block or image that was already handled; every
        other event is always accepted.
        """
        index = data.get("eventIndex")
        if isinstance(index, int) and index > self.last_event_index:
            self.last_event_index = index

        if event == "block":
            key = (data.get("name"), data.get("index"))
            if key in self.received_block_keys:
                logger.debug(f"[STREAM_CLIENT] Skipping duplicate block {key}")
                return False
            self.received_block_keys.add(key)
        elif event == "image-ready":
            image_id = data.get("id")
            if image_id in self.received_image_ids:
                logger.debug(f"[STREAM_CLIENT] Skipping duplicate image {image_id}")
                return False
            self.received_image_ids.add(image_id)
        return True


class SSEParser:
    """Incremental event-stream parser fed one line at a time"""

    def __init__(self):
        self.event: Optional[str] = None
        self.data_lines: List[str] = []

    def feed(self, line: str) -> Optional[Tuple[str, Dict[str, Any]]]:
        """Returns (event, data) when a blank line closes a message"""
        line = line.rstrip("\r")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self.event = value
        elif name == "data":
            self.data_lines.append(value)
        return None

    def _dispatch(self) -> Optional[Tuple[str, Dict[str, Any]]]:
        event, raw = self.event or "message", "\n".join(self.data_lines)
        self.event, self.data_lines = None, []
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"[STREAM_CLIENT] Failed to parse event data for '{event}': {e}")
            return None
        if not isinstance(data, dict):
            data = {"value": data}
        return event, data


class StreamDropped(Exception):
    """The connection ended before a terminal event arrived"""


class ResumableStreamClient:
    """
    Consumes one generation stream and survives dropped connections.

    Args:
        base_url: server root, e.g. http://localhost:8000
        query: the visitor's question
        session_id: visitor session id; generated when absent so a resume can
            reference it before the server has answered
        on_event: called once per accepted event (duplicates are filtered)
        policy: RetryPolicy
        http_client: injected httpx.AsyncClient (left open); a fresh client
            per connection otherwise
        sleep: awaitable used for backoff delays
    """

    def __init__(
        self,
        base_url: str,
        query: str,
        session_id: Optional[str] = None,
        on_event: Optional[EventHandler] = None,
        policy: Optional[RetryPolicy] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        timeout: float = 300.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.query = query
        self.session_id = session_id or uuid.uuid4().hex[:16]
        self.on_event = on_event
        self.policy = policy or RetryPolicy()
        self.http_client = http_client
        self.sleep = sleep
        self.timeout = timeout

        self.generation = ClientGenerationState()
        self.state = ConnectionState.IDLE
        self.transitions: List[ConnectionState] = [ConnectionState.IDLE]
        self.last_error: Optional[str] = None

    def _set_state(self, state: ConnectionState):
        if state != self.state:
            logger.info(f"[STREAM_CLIENT] {self.state.value} → {state.value} (session={self.session_id})")
        self.state = state
        self.transitions.append(state)

    def request_params(self) -> Dict[str, str]:
        params = {"query": self.query, "sessionId": self.session_id}
        if self.generation.last_event_index > 0:
            params["resumeFrom"] = str(self.generation.last_event_index)
        return params

    async def run(self) -> ClientGenerationState:
        """Stream until complete, a server error event, or retries run out"""
        while self.state not in (ConnectionState.COMPLETED, ConnectionState.FAILED):
            try:
                await self._connect_once()
            except (httpx.TransportError, StreamDropped) as e:
                self.last_error = str(e) or e.__class__.__name__
                self.generation.retry_count += 1
                attempt = self.generation.retry_count
                if attempt > self.policy.max_retries:
                    logger.error(f"[STREAM_CLIENT] Max retries exceeded: {self.last_error}")
                    self._set_state(ConnectionState.FAILED)
                    break

                delay = self.policy.delay(attempt)
                logger.warning(
                    f"[STREAM_CLIENT] Connection lost ({self.last_error}). "
                    f"Retrying in {delay}s (attempt {attempt}/{self.policy.max_retries}, "
                    f"resumeFrom={self.generation.last_event_index})"
                )
                self._set_state(ConnectionState.RETRYING)
                await self.sleep(delay)
        return self.generation

    async def retry(self) -> ClientGenerationState:
        """Manual retry after failure; resumes where the last connection stopped"""
        if self.state == ConnectionState.COMPLETED:
            return self.generation
        self.generation.retry_count = 0
        self.last_error = None
        self._set_state(ConnectionState.IDLE)
        return await self.run()

    async def restart(self) -> ClientGenerationState:
        """Discard everything received and generate the page from scratch"""
        self.generation = ClientGenerationState()
        self.last_error = None
        self._set_state(ConnectionState.IDLE)
        return await self.run()

    async def _connect_once(self):
        self._set_state(ConnectionState.CONNECTING)
        if self.http_client is not None:
            await self._consume(self.http_client)
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            await self._consume(client)

    async def _consume(self, client: httpx.AsyncClient):
        params = self.request_params()
        logger.info(
            f"[STREAM_CLIENT] GET {self.base_url}/api/stream | session={self.session_id} "
            f"resumeFrom={params.get('resumeFrom', 0)}"
        )
        async with client.stream("GET", f"{self.base_url}/api/stream", params=params) as response:
            if response.status_code >= 500:
                raise StreamDropped(f"HTTP {response.status_code}")
            if response.status_code != 200:
                await response.aread()
                self.last_error = f"HTTP {response.status_code}: {response.text}"
                logger.error(f"[STREAM_CLIENT] Request rejected: {self.last_error}")
                self._set_state(ConnectionState.FAILED)
                return

            self._set_state(ConnectionState.STREAMING)
            parser = SSEParser()
            async for line in response.aiter_lines():
                message = parser.feed(line)
                if message is None:
                    continue
                event, data = message
                if self.generation.accept(event, data) and self.on_event is not None:
                    self.on_event(event, data)
                if event == "complete":
                    self.generation.completed = True
                    self._set_state(ConnectionState.COMPLETED)
                    return
                if event == "error":
                    self.last_error = data.get("details") or data.get("message")
                    self._set_state(ConnectionState.FAILED)
                    return

        raise StreamDropped("Stream ended before completion")
