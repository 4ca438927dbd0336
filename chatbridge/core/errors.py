"""ChatBridge – Error Taxonomy.

Raised inside provider clients and the media pipeline. The reply path
translates every one of them into a fallback or a silent drop; none of
them ever reaches the chat user.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all ChatBridge errors."""


class TransientProviderError(BridgeError):
    """Network failure, timeout, rate limit or 5xx on an external AI/API call."""

    def __init__(self, message: str, *, status_code: int | None = None, retryable: bool = True) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class ConfigurationError(BridgeError):
    """A capability cannot run: missing/rejected API key or missing binary."""


class InvalidMediaError(BridgeError):
    """Unsupported mimetype, empty or corrupt payload, failed decode."""


class StaleCacheError(BridgeError):
    """FAQ remote unreachable and no local cache has ever been established."""
