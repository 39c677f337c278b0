"""Pagination driver: build -> execute with backoff -> normalize, page after page."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Iterator

import requests

import events
from backoff_controller import BackoffController
from config import HarvestConfig
from errors import EncodingError, PayloadError, RetriesExhausted
from models import Credential, HarvestResult, NormalizedPage, NormalizedRecord, PageFailure, QuerySpec, RecordType
from normalizer import normalize
from request_builder import build_request
from result_cache import ResultCache, cache_key
from transport import execute

LOGGER = logging.getLogger(__name__)

# Failures that cost one page but leave the rest of the run intact.
PAGE_LEVEL_ERRORS = (RetriesExhausted, EncodingError, PayloadError)


def iter_records(
    spec: QuerySpec,
    credential: Credential,
    config: HarvestConfig,
    record_type: RecordType | str,
    *,
    base_url: str,
    session: requests.Session | None = None,
    cache: ResultCache | None = None,
    cancel_event: threading.Event | None = None,
    on_event: events.EventHook | None = None,
    result: HarvestResult | None = None,
) -> Iterator[NormalizedRecord]:
    """Lazily yield records starting at ``spec.page``.

    Stops when the upstream reports no further pages, after
    ``config.page_limit`` pages, or after ``config.max_consecutive_failures``
    failed pages in a row. Page-level failures are appended to
    ``result.failures`` when a result is supplied. FatalError, Cancelled and
    InvalidSpec propagate to the caller.

    To resume after a crash call again with ``spec.with_page(result.next_page)``.
    """
    record_type = RecordType(record_type)
    result = result if result is not None else HarvestResult(spec=spec)
    controller = BackoffController(
        max_retries=config.max_retries,
        base=config.backoff_base,
        cap=config.backoff_cap,
        jitter=config.backoff_jitter,
        cancel_event=cancel_event,
        on_event=on_event,
    )

    owned_session = session is None
    http = session or requests.Session()
    page = spec.page
    pages_done = 0
    consecutive_failures = 0
    # Widest page seen so far stands in for the page size when none was requested.
    observed_size = 0
    try:
        while pages_done < config.page_limit:
            page_spec = spec.with_page(page)
            request = build_request(page_spec, credential, base_url)
            context = f"keyword={page_spec.keyword!r} page={page}"

            key = cache_key(page_spec, record_type) if cache is not None else None
            entry = cache.get(key) if cache is not None else None
            if entry is not None:
                normalized: NormalizedPage = entry.value
                events.emit(events.CACHE_HIT, on_event, context=context, records=len(normalized.records))
            else:
                try:
                    outcome = controller.run(
                        lambda: execute(request, config.request_timeout, session=http),
                        context=context,
                    )
                    normalized = normalize(
                        outcome.body,
                        record_type,
                        declared_encoding=outcome.encoding,
                        page=page,
                        page_size=spec.page_size or observed_size or None,
                    )
                except PAGE_LEVEL_ERRORS as exc:
                    pages_done += 1
                    consecutive_failures += 1
                    result.failures.append(PageFailure(page=page, error=exc))
                    events.emit(events.PAGE_FAILED, on_event, context=context, error=type(exc).__name__)
                    LOGGER.warning("Page %s failed, continuing: %s", page, exc)
                    page += 1
                    result.next_page = page
                    if consecutive_failures >= config.max_consecutive_failures:
                        LOGGER.error(
                            "Stopping %r after %s consecutive failed pages",
                            spec.keyword,
                            consecutive_failures,
                        )
                        return
                    continue

                if outcome.next_page_available is not None:
                    normalized = replace(normalized, has_more=outcome.next_page_available)
                for dropped in normalized.dropped:
                    events.emit(events.DROPPED_RECORD, on_event, context=context, error=str(dropped))
                if cache is not None:
                    cache.put(key, normalized, ttl=config.cache_ttl)

            pages_done += 1
            consecutive_failures = 0
            observed_size = max(observed_size, len(normalized.records) + len(normalized.dropped))
            result.pages_fetched += 1
            result.dropped_records += len(normalized.dropped)
            LOGGER.info(
                "Harvest page: %s records=%s dropped=%s has_more=%s",
                context,
                len(normalized.records),
                len(normalized.dropped),
                normalized.has_more,
            )

            if normalized.has_more:
                page += 1
                result.next_page = page
            else:
                result.next_page = None

            for record in normalized.records:
                result.records.append(record)
                yield record

            if not normalized.has_more:
                return
    finally:
        if owned_session:
            http.close()


def harvest(
    spec: QuerySpec,
    credential: Credential,
    config: HarvestConfig,
    record_type: RecordType | str,
    *,
    base_url: str,
    session: requests.Session | None = None,
    cache: ResultCache | None = None,
    cancel_event: threading.Event | None = None,
    on_event: events.EventHook | None = None,
) -> HarvestResult:
    """Run a full paginated harvest and return records plus a failure summary."""
    result = HarvestResult(spec=spec)
    for _ in iter_records(
        spec,
        credential,
        config,
        record_type,
        base_url=base_url,
        session=session,
        cache=cache,
        cancel_event=cancel_event,
        on_event=on_event,
        result=result,
    ):
        pass

    LOGGER.info(
        "Harvest complete: keyword=%r pages=%s records=%s failed_pages=%s dropped=%s next_page=%s",
        spec.keyword,
        result.pages_fetched,
        len(result.records),
        len(result.failures),
        result.dropped_records,
        result.next_page,
    )
    return result
