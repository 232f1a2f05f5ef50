"""Exception taxonomy for the NovelAI image client."""

from __future__ import annotations

from typing import Optional


DEFAULT_RETRY_STATUS_CODES = (429,)


class NovelAIError(Exception):
    """Base error; carries the HTTP status when one is known."""

    def __init__(self, message: str, *, status: Optional[int] = None, status_text: Optional[str] = None) -> None:
        super().__init__(message)
        self.status = status
        self.status_text = status_text


class ValidationError(NovelAIError, ValueError):
    """A request field violates a hard invariant. Never retried."""


class ConfigurationError(NovelAIError, RuntimeError):
    """Client configuration is missing or unusable."""


class TransportError(NovelAIError, RuntimeError):
    """Network failure, timeout, cancellation or a non-success HTTP status."""

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        status_text: Optional[str] = None,
        timeout: bool = False,
        network: bool = False,
        cancelled: bool = False,
    ) -> None:
        super().__init__(message, status=status, status_text=status_text)
        self.timeout = timeout
        self.network = network
        self.cancelled = cancelled

    @property
    def retryable(self) -> bool:
        return self.is_retryable(DEFAULT_RETRY_STATUS_CODES)

    def is_retryable(self, retry_status_codes) -> bool:
        if self.cancelled:
            return False
        if self.timeout or self.network:
            return True
        return self.status is not None and self.status in retry_status_codes


class DecodeError(NovelAIError, ValueError):
    """An archive, stream record or image could not be decoded."""


class NotAnArchiveError(DecodeError):
    """The buffer does not carry a ZIP signature or central directory."""


class ParserResyncWarning(UserWarning):
    """A malformed stream record was skipped; parsing continued."""
