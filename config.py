"""Runtime configuration for harvest pipelines."""

from __future__ import annotations

import os
from dataclasses import dataclass

from models import Credential

_DEFAULT_MAX_RETRIES = 5
_DEFAULT_BACKOFF_BASE_SECONDS = 1.0
_DEFAULT_BACKOFF_CAP_SECONDS = 60.0
_DEFAULT_REQUEST_TIMEOUT_SECONDS = 20.0
_DEFAULT_PAGE_LIMIT = 10
_DEFAULT_CONCURRENCY_LIMIT = 4
_DEFAULT_CACHE_TTL_SECONDS = 24 * 60 * 60
_DEFAULT_MAX_CONSECUTIVE_FAILURES = 3


@dataclass(frozen=True, slots=True)
class HarvestConfig:
    """Limits and timings for one or more pipelines.

    Durations are in seconds. Instances are passed explicitly into every
    pipeline call; nothing here is read from process state after construction.
    """

    max_retries: int = _DEFAULT_MAX_RETRIES
    backoff_base: float = _DEFAULT_BACKOFF_BASE_SECONDS
    backoff_cap: float = _DEFAULT_BACKOFF_CAP_SECONDS
    backoff_jitter: float = 0.0
    request_timeout: float = _DEFAULT_REQUEST_TIMEOUT_SECONDS
    page_limit: int = _DEFAULT_PAGE_LIMIT
    concurrency_limit: int = _DEFAULT_CONCURRENCY_LIMIT
    cache_ttl: float = _DEFAULT_CACHE_TTL_SECONDS
    max_consecutive_failures: int = _DEFAULT_MAX_CONSECUTIVE_FAILURES

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.backoff_base < 0 or self.backoff_cap < 0:
            raise ValueError("backoff_base and backoff_cap must be >= 0")
        if not 0.0 <= self.backoff_jitter <= 1.0:
            raise ValueError(f"backoff_jitter must be within [0, 1], got {self.backoff_jitter}")
        if self.request_timeout <= 0:
            raise ValueError(f"request_timeout must be > 0, got {self.request_timeout}")
        if self.page_limit < 1:
            raise ValueError(f"page_limit must be >= 1, got {self.page_limit}")
        if self.concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be >= 1, got {self.concurrency_limit}")
        if self.max_consecutive_failures < 1:
            raise ValueError(
                f"max_consecutive_failures must be >= 1, got {self.max_consecutive_failures}"
            )

    @classmethod
    def from_env(cls) -> HarvestConfig:
        """Build a config from HARVEST_* environment variables, falling back to defaults."""
        return cls(
            max_retries=int(os.getenv("HARVEST_MAX_RETRIES", _DEFAULT_MAX_RETRIES)),
            backoff_base=float(os.getenv("HARVEST_BACKOFF_BASE", _DEFAULT_BACKOFF_BASE_SECONDS)),
            backoff_cap=float(os.getenv("HARVEST_BACKOFF_CAP", _DEFAULT_BACKOFF_CAP_SECONDS)),
            backoff_jitter=float(os.getenv("HARVEST_BACKOFF_JITTER", "0")),
            request_timeout=float(
                os.getenv("HARVEST_REQUEST_TIMEOUT", _DEFAULT_REQUEST_TIMEOUT_SECONDS)
            ),
            page_limit=int(os.getenv("HARVEST_PAGE_LIMIT", _DEFAULT_PAGE_LIMIT)),
            concurrency_limit=int(os.getenv("HARVEST_CONCURRENCY_LIMIT", _DEFAULT_CONCURRENCY_LIMIT)),
            cache_ttl=float(os.getenv("HARVEST_CACHE_TTL", _DEFAULT_CACHE_TTL_SECONDS)),
            max_consecutive_failures=int(
                os.getenv("HARVEST_MAX_CONSECUTIVE_FAILURES", _DEFAULT_MAX_CONSECUTIVE_FAILURES)
            ),
        )


def api_url_from_env() -> str:
    api_url = os.getenv("HARVEST_API_URL")
    if not api_url:
        raise RuntimeError("HARVEST_API_URL environment variable is required")
    return api_url


def credential_from_env() -> Credential:
    api_key = os.getenv("HARVEST_API_KEY")
    if not api_key:
        raise RuntimeError("HARVEST_API_KEY environment variable is required")
    return Credential(api_key)
