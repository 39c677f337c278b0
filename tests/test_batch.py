"""Tests for running several harvests concurrently (batch.harvest_many)."""

from __future__ import annotations

import threading
import time
from unittest.mock import patch

from batch import harvest_many
from config import HarvestConfig
from errors import FatalError
from models import Credential, HarvestResult, QuerySpec, RecordType

CREDENTIAL = Credential("test-token")


def _specs(*keywords: str) -> list[QuerySpec]:
    return [QuerySpec(keyword=keyword) for keyword in keywords]


def test_harvest_many_returns_outcomes_in_input_order() -> None:
    def _fake_harvest(spec, *args, **kwargs):
        # later keywords finish first
        time.sleep(0.01 * (3 - len(spec.keyword)))
        return HarvestResult(spec=spec)

    with patch("batch.harvest", side_effect=_fake_harvest):
        outcomes = harvest_many(
            _specs("a", "bb", "ccc"),
            CREDENTIAL,
            HarvestConfig(concurrency_limit=3),
            RecordType.SEARCH_RESULT,
            base_url="https://api.example.com",
        )

    assert [o.spec.keyword for o in outcomes] == ["a", "bb", "ccc"]
    assert all(o.ok for o in outcomes)


def test_harvest_many_respects_concurrency_limit() -> None:
    lock = threading.Lock()
    active = 0
    peak = 0

    def _fake_harvest(spec, *args, **kwargs):
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.02)
        with lock:
            active -= 1
        return HarvestResult(spec=spec)

    with patch("batch.harvest", side_effect=_fake_harvest):
        harvest_many(
            _specs(*[f"kw{i}" for i in range(8)]),
            CREDENTIAL,
            HarvestConfig(concurrency_limit=2),
            RecordType.PRODUCT,
            base_url="https://api.example.com",
        )

    assert peak <= 2


def test_harvest_many_isolates_terminal_errors() -> None:
    def _fake_harvest(spec, *args, **kwargs):
        if spec.keyword == "bad":
            raise FatalError("HTTP 403: not authorized", status_code=403)
        return HarvestResult(spec=spec)

    with patch("batch.harvest", side_effect=_fake_harvest):
        outcomes = harvest_many(
            _specs("good", "bad", "also good"),
            CREDENTIAL,
            HarvestConfig(),
            RecordType.SEARCH_RESULT,
            base_url="https://api.example.com",
        )

    assert [o.ok for o in outcomes] == [True, False, True]
    assert isinstance(outcomes[1].error, FatalError)
    assert outcomes[1].result is None


def test_harvest_many_shares_cancel_event_and_cache() -> None:
    event = threading.Event()
    seen: list[tuple] = []

    def _fake_harvest(spec, *args, **kwargs):
        seen.append((kwargs["cancel_event"], kwargs["cache"]))
        return HarvestResult(spec=spec)

    sentinel_cache = object()
    with patch("batch.harvest", side_effect=_fake_harvest):
        harvest_many(
            _specs("a", "b"),
            CREDENTIAL,
            HarvestConfig(),
            RecordType.SEARCH_RESULT,
            base_url="https://api.example.com",
            cache=sentinel_cache,
            cancel_event=event,
        )

    assert all(e is event and c is sentinel_cache for e, c in seen)
