#!/usr/bin/env python3
"""Common error types shared across modules.

Provides shared lightweight exceptions to avoid circular imports.
"""

from typing import Optional


class AIRequestError(Exception):
    """Raised when the AI text-generation backend rejects or fails a request.

    Attributes:
        status_code: HTTP status returned by the provider, or None for transport failures.
    """

    def __init__(self, message: str = "AI request failed", status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


class FeedClientError(Exception):
    """Raised when the feed aggregator API returns an error response."""

    def __init__(self, message: str = "Feed aggregator request failed", status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RoundCancelled(Exception):
    """Raised at a checkpoint once the current scheduler round has been cancelled."""


__all__ = ["AIRequestError", "FeedClientError", "RoundCancelled"]
