"""Run many independent harvests concurrently under a worker limit."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Sequence

import events
from config import HarvestConfig
from errors import HarvestError
from models import Credential, HarvestResult, QuerySpec, RecordType
from pagination import harvest
from result_cache import ResultCache

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BatchOutcome:
    """Result of one pipeline in a batch: either a HarvestResult or the terminal error."""

    spec: QuerySpec
    result: HarvestResult | None = None
    error: HarvestError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def harvest_many(
    specs: Sequence[QuerySpec],
    credential: Credential,
    config: HarvestConfig,
    record_type: RecordType | str,
    *,
    base_url: str,
    cache: ResultCache | None = None,
    cancel_event: threading.Event | None = None,
    on_event: events.EventHook | None = None,
) -> list[BatchOutcome]:
    """Harvest every spec on its own worker thread, at most ``config.concurrency_limit`` at once.

    Outcomes come back in the order of ``specs``. A terminal error in one
    pipeline (FatalError, Cancelled, InvalidSpec) is captured in its outcome
    and does not stop the others; set ``cancel_event`` to stop them all.
    """
    cancel_event = cancel_event or threading.Event()

    def _run(spec: QuerySpec) -> BatchOutcome:
        try:
            result = harvest(
                spec,
                credential,
                config,
                record_type,
                base_url=base_url,
                cache=cache,
                cancel_event=cancel_event,
                on_event=on_event,
            )
        except HarvestError as exc:
            LOGGER.error("Harvest failed for keyword=%r: %s", spec.keyword, exc)
            return BatchOutcome(spec=spec, error=exc)
        return BatchOutcome(spec=spec, result=result)

    LOGGER.info("Starting batch: specs=%s concurrency_limit=%s", len(specs), config.concurrency_limit)
    with ThreadPoolExecutor(max_workers=config.concurrency_limit, thread_name_prefix="harvest") as pool:
        try:
            outcomes = list(pool.map(_run, specs))
        except KeyboardInterrupt:
            # Wake every worker before the pool waits on them.
            cancel_event.set()
            raise

    failed = sum(1 for outcome in outcomes if not outcome.ok)
    LOGGER.info("Batch complete: succeeded=%s failed=%s", len(outcomes) - failed, failed)
    return outcomes
