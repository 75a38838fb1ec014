"""Ordered JSON extraction from free-form completion text"""

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.I)
BRACED_OBJECT = re.compile(r"\{[\s\S]*\}")


@dataclass
class ParseResult:
    """Outcome of parse_json_object: the object and the strategy that produced it, or an error"""
    value: Optional[Dict[str, Any]] = None
    strategy: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.value is not None


def _direct(text: str) -> Optional[str]:
    return text


def _fenced(text: str) -> Optional[str]:
    match = FENCED_BLOCK.search(text)
    return match.group(1).strip() if match else None


def _braced(text: str) -> Optional[str]:
    match = BRACED_OBJECT.search(text)
    return match.group(0) if match else None


# Tried in order; the first candidate that decodes to a JSON object wins
PARSE_STRATEGIES: List[Tuple[str, Callable[[str], Optional[str]]]] = [
    ("direct", _direct),
    ("fenced", _fenced),
    ("braced", _braced),
]


def parse_json_object(text: Optional[str]) -> ParseResult:
    """
    Extract a JSON object from completion text.

    Strategies: direct parse, fenced code block, first brace-delimited span.
    Returns a failed ParseResult (never raises) when none yields an object.
    """
    if not text or not text.strip():
        return ParseResult(error="empty response")

    last_error = "no JSON object found"
    for name, extract in PARSE_STRATEGIES:
        candidate = extract(text)
        if candidate is None:
            continue
        try:
            value = json.loads(candidate)
        except (json.JSONDecodeError, TypeError) as e:
            last_error = f"{name}: {e}"
            continue
        if isinstance(value, dict):
            return ParseResult(value=value, strategy=name)
        last_error = f"{name}: decoded {type(value).__name__}, expected object"

    return ParseResult(error=last_error)
