"""Error taxonomy for the harvest client."""

from __future__ import annotations

from typing import Any


class HarvestError(Exception):
    """Base class for every error raised by the harvest client."""


class InvalidSpec(HarvestError):
    """The caller supplied a query that cannot be sent. Never retried."""


class FatalError(HarvestError):
    """Authentication, permission or other non-retryable upstream failure."""

    def __init__(self, cause: str, status_code: int | None = None) -> None:
        self.cause = cause
        self.status_code = status_code
        super().__init__(f"Fatal upstream error: {cause}")


class RetriesExhausted(HarvestError):
    """Transient failures persisted past the retry budget."""

    def __init__(self, attempts: int, last_cause: str) -> None:
        self.attempts = attempts
        self.last_cause = last_cause
        super().__init__(f"Retries exhausted after {attempts} attempts. Last error: {last_cause}")


class EncodingError(HarvestError):
    """Response body could not be decoded, even after encoding detection."""


class PayloadError(HarvestError):
    """Response body decoded but is not the expected JSON shape."""


class MalformedRecord(HarvestError):
    """One upstream item lacks a required field. Only that item is dropped."""

    def __init__(self, record_type: str, missing: list[str], item: Any = None) -> None:
        self.record_type = record_type
        self.missing = missing
        self.item = item
        super().__init__(f"Malformed {record_type} record: missing required {', '.join(missing)}")


class Cancelled(HarvestError):
    """The pipeline observed a cancellation signal and stopped."""
