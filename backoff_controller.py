"""Bounded exponential-backoff retry loop around a single request.

The controller is a small state machine over the 0-indexed attempt count:

    Success                       -> return the outcome
    Fatal                         -> raise FatalError, no retry
    RateLimited/Transient, a < N  -> wait delay(a), a += 1, try again
    RateLimited/Transient, a >= N -> raise RetriesExhausted

where N is ``max_retries``. Waiting happens on a ``threading.Event`` so a
cancellation wakes the sleeper immediately and the pending call is never sent.
"""

from __future__ import annotations

import logging
import random
import threading
from typing import Callable

import events
from errors import Cancelled, FatalError, RetriesExhausted
from models import Fatal, FetchOutcome, RateLimited, Success

LOGGER = logging.getLogger(__name__)


def compute_delay(attempt: int, base: float, cap: float, jitter: float = 0.0, rng: random.Random | None = None) -> float:
    """Delay before retrying after the given 0-indexed attempt: min(cap, base * 2**attempt).

    With ``jitter`` > 0 the delay is drawn uniformly from
    ``[delay * (1 - jitter), delay]``. Without it the result is deterministic.
    """
    if attempt < 0:
        raise ValueError(f"attempt must be >= 0, got {attempt}")
    delay = min(cap, base * (2 ** attempt))
    if jitter > 0:
        delay = (rng or random).uniform(delay * (1 - jitter), delay)
    return delay


class BackoffController:
    """Runs a fetch callable until it succeeds, fails fatally, or runs out of retries."""

    def __init__(
        self,
        max_retries: int = 5,
        base: float = 1.0,
        cap: float = 60.0,
        jitter: float = 0.0,
        cancel_event: threading.Event | None = None,
        on_event: events.EventHook | None = None,
    ) -> None:
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        self.max_retries = max_retries
        self.base = base
        self.cap = cap
        self.jitter = jitter
        self.cancel_event = cancel_event or threading.Event()
        self.on_event = on_event

    def delay_for(self, attempt: int, outcome: FetchOutcome) -> float:
        delay = compute_delay(attempt, self.base, self.cap, self.jitter)
        if isinstance(outcome, RateLimited) and outcome.retry_after is not None:
            delay = min(self.cap, max(delay, outcome.retry_after))
        return delay

    def run(self, fetch: Callable[[], FetchOutcome], context: str = "") -> Success:
        """Call ``fetch`` under the retry policy and return the Success outcome.

        Raises:
            FatalError: the first Fatal outcome, immediately.
            RetriesExhausted: after ``max_retries`` retries all failed.
            Cancelled: the cancel event was set before a call or during a wait.
        """
        attempt = 0
        while True:
            if self.cancel_event.is_set():
                events.emit(events.CANCELLED, self.on_event, context=context, attempt=attempt)
                raise Cancelled(f"cancelled before attempt {attempt + 1} ({context})")

            events.emit(events.ATTEMPT, self.on_event, context=context, attempt=attempt)
            outcome = fetch()

            if isinstance(outcome, Success):
                events.emit(events.SUCCESS, self.on_event, context=context, attempt=attempt)
                return outcome

            if isinstance(outcome, Fatal):
                events.emit(
                    events.FATAL,
                    self.on_event,
                    context=context,
                    attempt=attempt,
                    cause=outcome.cause,
                    status=outcome.status_code,
                )
                raise FatalError(outcome.cause, status_code=outcome.status_code)

            cause = "rate limited" if isinstance(outcome, RateLimited) else outcome.cause
            if attempt >= self.max_retries:
                LOGGER.error(
                    "Max retries (%s) reached for %s. Last error: %s", self.max_retries, context, cause
                )
                raise RetriesExhausted(attempt + 1, cause)

            delay = self.delay_for(attempt, outcome)
            LOGGER.warning(
                "Retryable failure for %s on attempt %s/%s: %s. Waiting %.2fs",
                context,
                attempt + 1,
                self.max_retries + 1,
                cause,
                delay,
            )
            events.emit(events.RETRY, self.on_event, context=context, attempt=attempt, delay=delay, cause=cause)

            # Event.wait returns True as soon as the event is set.
            if self.cancel_event.wait(delay):
                events.emit(events.CANCELLED, self.on_event, context=context, attempt=attempt)
                raise Cancelled(f"cancelled while backing off after attempt {attempt + 1} ({context})")
            attempt += 1
