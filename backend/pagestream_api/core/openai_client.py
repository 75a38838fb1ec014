"""OpenAI SDK wrapper - text completion, embeddings and image generation"""

import asyncio
import logging
from typing import List, Optional

from openai import OpenAI

from pagestream_api.core.config import settings
from pagestream_api.models.errors import ApplicationError, ErrorCode

logger = logging.getLogger(__name__)

# Image sizes accepted by the images endpoint, per requested slot
IMAGE_DIMENSIONS = {
    "hero": "1792x1024",
    "card": "1024x1024",
    "column": "1024x1024",
    "thumbnail": "1024x1024",
}


class OpenAIClient:
    """
    Wrapper for the OpenAI API client.

    The SDK is synchronous; every call runs in a worker thread under its own
    timeout so one slow call cannot stall the event loop or the stream.
    """

    def __init__(self, api_key: Optional[str] = None):
        api_key = api_key if api_key is not None else settings.openai_api_key
        if not api_key:
            logger.warning("[OpenAI] OPENAI_API_KEY not set - completion calls will fail over to fallbacks")
        self.client = OpenAI(api_key=api_key) if api_key else None

    def _require_client(self) -> OpenAI:
        if self.client is None:
            raise ApplicationError(
                code=ErrorCode.CONFIGURATION_ERROR,
                message="OpenAI API key not configured. Please set OPENAI_API_KEY in .env file."
            )
        return self.client

    async def _run(self, label: str, timeout: float, fn, **kwargs):
        """Run a blocking SDK call in a thread with a timeout, mapping failures to ApplicationError"""
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, **kwargs), timeout=timeout)
        except asyncio.TimeoutError:
            raise ApplicationError(
                code=ErrorCode.COMPLETION_TIMEOUT,
                message=f"{label} timed out after {timeout}s",
                retryable=True
            )
        except ApplicationError:
            raise
        except Exception as e:
            raise ApplicationError(
                code=ErrorCode.COMPLETION_FAILED,
                message=f"{label} failed: {str(e)}",
                retryable=True
            )

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        max_tokens: int = 4096,
        timeout: float = 60.0,
        temperature: float = 0.7,
    ) -> str:
        """
        Single-turn chat completion.

        Args:
            system_prompt: The system message (may be empty)
            user_prompt: The user message
            model: Model identifier
            max_tokens: Output token cap
            timeout: Seconds before the call is abandoned

        Returns:
            Raw response text, expected to contain a JSON payload

        Raises:
            ApplicationError: If not configured, timed out or the call failed
        """
        client = self._require_client()
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        logger.info(f"[OpenAI] Calling {model} (max_tokens={max_tokens}, timeout={timeout}s)")
        response = await self._run(
            f"Completion ({model})",
            timeout,
            client.chat.completions.create,
            model=model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        text = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        logger.info(
            f"[OpenAI] Response received ({usage.total_tokens if usage else '?'} tokens, {len(text)} chars)"
        )
        return text

    async def embed(self, text: str) -> List[float]:
        """Embedding vector for a piece of text"""
        client = self._require_client()
        response = await self._run(
            "Embedding",
            settings.embedding_timeout,
            client.embeddings.create,
            model=settings.embedding_model,
            input=text,
        )
        return list(response.data[0].embedding)

    async def embed_many(self, texts: List[str]) -> List[List[float]]:
        """Embedding vectors for a batch of texts, in input order"""
        if not texts:
            return []
        client = self._require_client()
        response = await self._run(
            "Embedding batch",
            settings.embedding_timeout * 3,
            client.embeddings.create,
            model=settings.embedding_model,
            input=texts,
        )
        return [list(item.embedding) for item in response.data]

    async def generate_image(self, prompt: str, size: str) -> str:
        """Generate one image and return its hosted URL"""
        client = self._require_client()
        response = await self._run(
            "Image generation",
            settings.image_timeout,
            client.images.generate,
            model=settings.image_model,
            prompt=prompt,
            size=IMAGE_DIMENSIONS.get(size, "1024x1024"),
            n=1,
        )
        url = response.data[0].url
        if not url:
            raise ApplicationError(code=ErrorCode.IMAGE_FAILED, message="Image service returned no URL", retryable=True)
        return url


# Global client instance
openai_client = OpenAIClient()
