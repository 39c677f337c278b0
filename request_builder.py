"""Turns a QuerySpec and Credential into an outbound request, and back."""

from __future__ import annotations

from errors import InvalidSpec
from models import Credential, QuerySpec, RequestDescriptor, SortMode

USER_AGENT = "resilient-harvester/0.1"

_RESERVED_PARAMS: frozenset[str] = frozenset({"query", "page", "sort", "page_size"})


def build_request(spec: QuerySpec, credential: Credential, base_url: str) -> RequestDescriptor:
    """Build the GET request for one page of results.

    Raises:
        InvalidSpec: empty keyword, page < 1, page_size < 1, or a filter that
            collides with a reserved parameter or is not a string/number.
    """
    keyword = spec.keyword.strip() if isinstance(spec.keyword, str) else ""
    if not keyword:
        raise InvalidSpec("keyword must be a non-empty string")
    if isinstance(spec.page, bool) or not isinstance(spec.page, int) or spec.page < 1:
        raise InvalidSpec(f"page must be a positive integer, got {spec.page!r}")
    if spec.page_size is not None and (not isinstance(spec.page_size, int) or spec.page_size < 1):
        raise InvalidSpec(f"page_size must be a positive integer, got {spec.page_size!r}")
    if not credential.token:
        raise InvalidSpec("credential token is empty")
    if not base_url:
        raise InvalidSpec("base_url is required")

    params: dict[str, str | int | float] = {
        "query": keyword,
        "page": spec.page,
        "sort": SortMode(spec.sort).value,
    }
    if spec.page_size is not None:
        params["page_size"] = spec.page_size

    for key, value in spec.filters.items():
        if key in _RESERVED_PARAMS:
            raise InvalidSpec(f"filter {key!r} collides with a reserved parameter")
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            raise InvalidSpec(f"filter {key!r} must be a string or number, got {type(value).__name__}")
        params[key] = value

    headers = {
        "Authorization": f"Bearer {credential.token}",
        "Accept": "application/json",
        "User-Agent": USER_AGENT,
    }
    return RequestDescriptor(method="GET", url=base_url, params=params, headers=headers)


def parse_request(request: RequestDescriptor) -> QuerySpec:
    """Recover the QuerySpec a descriptor was built from."""
    params = dict(request.params)
    page_size = params.pop("page_size", None)
    return QuerySpec(
        keyword=str(params.pop("query")),
        page=int(params.pop("page")),
        sort=SortMode(params.pop("sort")),
        page_size=int(page_size) if page_size is not None else None,
        filters=params,
    )
