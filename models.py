"""Shared typed models for the harvest pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping, Union

FilterValue = Union[str, int, float]


class SortMode(str, Enum):
    RELEVANCE = "relevance"
    DATE = "date"
    PRICE_ASC = "price_asc"
    PRICE_DESC = "price_desc"


class RecordType(str, Enum):
    SEARCH_RESULT = "search_result"
    PRODUCT = "product"
    ARTICLE = "article"
    LISTING = "listing"


@dataclass(frozen=True, slots=True)
class Credential:
    """Opaque bearer token. The secret is kept out of repr so it never reaches logs."""

    token: str = field(repr=False)

    def __str__(self) -> str:
        return "Credential(***)"


@dataclass(frozen=True, slots=True)
class QuerySpec:
    """One page request: keyword, page number, filters and sort mode."""

    keyword: str
    page: int = 1
    filters: Mapping[str, FilterValue] = field(default_factory=dict)
    sort: SortMode = SortMode.RELEVANCE
    page_size: int | None = None

    def with_page(self, page: int) -> QuerySpec:
        return replace(self, page=page)


@dataclass(frozen=True, slots=True)
class RequestDescriptor:
    """Fully formed outbound request."""

    method: str
    url: str
    params: dict[str, FilterValue]
    headers: dict[str, str] = field(repr=False)


# --- Fetch outcomes -------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Success:
    body: bytes
    encoding: str | None = None
    next_page_available: bool | None = None
    status_code: int | None = 200


@dataclass(frozen=True, slots=True)
class RateLimited:
    retry_after: float | None = None
    status_code: int | None = 429


@dataclass(frozen=True, slots=True)
class Transient:
    cause: str
    status_code: int | None = None


@dataclass(frozen=True, slots=True)
class Fatal:
    cause: str
    status_code: int | None = None


FetchOutcome = Union[Success, RateLimited, Transient, Fatal]


# --- Normalized output ----------------------------------------------------


@dataclass(frozen=True, slots=True)
class NormalizedRecord:
    """Schema-conformant, defaulted representation of one upstream item."""

    record_type: RecordType
    fields: dict[str, Any]
    record_id: str

    def __getitem__(self, name: str) -> Any:
        return self.fields[name]

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)


@dataclass(frozen=True, slots=True)
class NormalizedPage:
    """Records projected from a single page, plus the items that were dropped."""

    records: tuple[NormalizedRecord, ...]
    dropped: tuple[Exception, ...] = ()
    has_more: bool = False


@dataclass(frozen=True, slots=True)
class PageFailure:
    page: int
    error: Exception


@dataclass(slots=True)
class HarvestResult:
    """Records collected over a paginated run and everything that went wrong."""

    spec: QuerySpec
    records: list[NormalizedRecord] = field(default_factory=list)
    failures: list[PageFailure] = field(default_factory=list)
    dropped_records: int = 0
    pages_fetched: int = 0
    next_page: int | None = None

    @property
    def complete(self) -> bool:
        return not self.failures and self.dropped_records == 0
