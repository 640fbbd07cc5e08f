"""Keepa API error types and rate-limit hint parsing."""

import json
import re
from typing import Any, Optional


_RETRY_AFTER_TEXT = re.compile(
    r"retry\s+after\s+(\d+(?:\.\d+)?)\s*(ms|milliseconds?)\b", re.IGNORECASE
)


class KeepaError(Exception):
    """Base class for Keepa API failures."""


class KeepaAuthError(KeepaError):
    """API key rejected. Not recoverable within a run."""


class KeepaRequestError(KeepaError):
    """Request failed, either immediately or after exhausting retries."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        retry_after_ms: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.retry_after_ms = retry_after_ms


def parse_retry_after_ms(body: Any) -> Optional[int]:
    """Extract the server-suggested wait (milliseconds) from an error body.

    Keepa reports the time until its token bucket refills as ``refillIn``
    in the JSON body. Plain-text bodies are searched for a
    "retry after N ms" phrase instead.

    Args:
        body: raw response text/bytes or an already decoded JSON value

    Returns:
        Milliseconds to wait, or None if the body carries no hint
    """
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")

    if isinstance(body, str):
        text = body
        try:
            body = json.loads(body)
        except ValueError:
            return _parse_text(text)

    if isinstance(body, dict):
        refill = body.get("refillIn")
        if isinstance(refill, (int, float)) and not isinstance(refill, bool) and refill >= 0:
            return int(refill)
        error = body.get("error")
        if isinstance(error, dict):
            return _parse_text(str(error.get("message", "")))
        if isinstance(error, str):
            return _parse_text(error)
        return None

    if isinstance(body, str):
        return _parse_text(body)

    return None


def _parse_text(text: str) -> Optional[int]:
    match = _RETRY_AFTER_TEXT.search(text)
    if not match:
        return None
    return int(float(match.group(1)))
