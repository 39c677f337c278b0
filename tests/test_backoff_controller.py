import random
import threading
from unittest.mock import MagicMock

import pytest

from backoff_controller import BackoffController, compute_delay
from errors import Cancelled, FatalError, RetriesExhausted
from models import Fatal, RateLimited, Success, Transient


class _RecordingEvent:
    """Stand-in for threading.Event that records waits instead of sleeping."""

    def __init__(self, cancel_on_wait: int | None = None) -> None:
        self.waits: list[float] = []
        self._set = False
        self._cancel_on_wait = cancel_on_wait

    def is_set(self) -> bool:
        return self._set

    def set(self) -> None:
        self._set = True

    def wait(self, timeout: float | None = None) -> bool:
        self.waits.append(timeout)
        if self._cancel_on_wait is not None and len(self.waits) >= self._cancel_on_wait:
            self._set = True
        return self._set


def test_compute_delay_doubles_from_base() -> None:
    assert [compute_delay(a, base=1.0, cap=1000.0) for a in range(5)] == [1, 2, 4, 8, 16]


def test_compute_delay_is_capped() -> None:
    assert compute_delay(10, base=1.0, cap=30.0) == 30.0


def test_compute_delay_jitter_stays_in_range() -> None:
    rng = random.Random(42)
    for attempt in range(5):
        delay = compute_delay(attempt, base=1.0, cap=1000.0, jitter=0.5, rng=rng)
        assert 0.5 * 2 ** attempt <= delay <= 2 ** attempt


def test_run_returns_first_success() -> None:
    fetch = MagicMock(return_value=Success(body=b"[]"))
    controller = BackoffController(cancel_event=_RecordingEvent())

    outcome = controller.run(fetch)

    assert outcome.body == b"[]"
    assert fetch.call_count == 1


def test_run_retries_transient_then_succeeds_with_exponential_waits() -> None:
    event = _RecordingEvent()
    fetch = MagicMock(side_effect=[Transient("HTTP 503"), Transient("HTTP 503"), Success(body=b"[]")])
    controller = BackoffController(max_retries=5, base=1.0, cap=60.0, cancel_event=event)

    controller.run(fetch)

    assert fetch.call_count == 3
    assert event.waits == [1.0, 2.0]


def test_run_exhausts_retries_without_extra_calls() -> None:
    event = _RecordingEvent()
    fetch = MagicMock(return_value=Transient("timeout"))
    controller = BackoffController(max_retries=3, base=1.0, cap=60.0, cancel_event=event)

    with pytest.raises(RetriesExhausted) as exc_info:
        controller.run(fetch)

    # attempts 0..3: three retries after the first call
    assert fetch.call_count == 4
    assert exc_info.value.attempts == 4
    assert event.waits == [1.0, 2.0, 4.0]


def test_run_with_zero_retries_fails_after_one_call() -> None:
    fetch = MagicMock(return_value=RateLimited())
    controller = BackoffController(max_retries=0, cancel_event=_RecordingEvent())

    with pytest.raises(RetriesExhausted):
        controller.run(fetch)
    assert fetch.call_count == 1


def test_run_fatal_on_first_attempt_is_never_retried() -> None:
    event = _RecordingEvent()
    fetch = MagicMock(return_value=Fatal("HTTP 401: not authorized", status_code=401))
    controller = BackoffController(cancel_event=event)

    with pytest.raises(FatalError) as exc_info:
        controller.run(fetch)

    assert fetch.call_count == 1
    assert exc_info.value.status_code == 401
    assert event.waits == []


def test_run_rate_limit_hint_raises_delay_up_to_cap() -> None:
    event = _RecordingEvent()
    fetch = MagicMock(side_effect=[RateLimited(retry_after=5.0), RateLimited(retry_after=500.0), Success(body=b"")])
    controller = BackoffController(base=1.0, cap=30.0, cancel_event=event)

    controller.run(fetch)

    assert event.waits == [5.0, 30.0]


def test_run_cancelled_during_backoff_skips_pending_call() -> None:
    event = _RecordingEvent(cancel_on_wait=1)
    fetch = MagicMock(return_value=Transient("HTTP 502"))
    controller = BackoffController(cancel_event=event)

    with pytest.raises(Cancelled):
        controller.run(fetch)

    assert fetch.call_count == 1


def test_run_cancelled_before_first_call() -> None:
    event = threading.Event()
    event.set()
    fetch = MagicMock()

    with pytest.raises(Cancelled):
        BackoffController(cancel_event=event).run(fetch)
    fetch.assert_not_called()


def test_run_wakes_from_real_event_when_cancelled_from_another_thread() -> None:
    event = threading.Event()
    fetch = MagicMock(return_value=Transient("HTTP 503"))
    controller = BackoffController(base=30.0, cap=30.0, cancel_event=event)
    timer = threading.Timer(0.05, event.set)
    timer.start()

    try:
        with pytest.raises(Cancelled):
            controller.run(fetch)
    finally:
        timer.cancel()
    assert fetch.call_count == 1


def test_run_emits_attempt_retry_and_success_events() -> None:
    seen: list[str] = []
    fetch = MagicMock(side_effect=[Transient("HTTP 500"), Success(body=b"")])
    controller = BackoffController(cancel_event=_RecordingEvent(), on_event=lambda name, fields: seen.append(name))

    controller.run(fetch)

    assert seen == ["attempt", "retry", "attempt", "success"]
