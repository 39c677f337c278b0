"""Executes one HTTP round trip and classifies the result as a FetchOutcome."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

import requests

from models import Fatal, FetchOutcome, RateLimited, RequestDescriptor, Success, Transient

LOGGER = logging.getLogger(__name__)

_FATAL_AUTH_STATUSES = frozenset({401, 403})
_TRANSIENT_CLIENT_STATUSES = frozenset({408})


def execute(
    request: RequestDescriptor,
    timeout: float,
    session: requests.Session | None = None,
) -> FetchOutcome:
    """Send the request with the given timeout and map the response to an outcome.

    Never raises for network or HTTP failures; those become Transient or Fatal
    outcomes so the backoff controller can decide what to do next.
    """
    http = session or requests
    try:
        response = http.request(
            method=request.method,
            url=request.url,
            params=request.params,
            headers=request.headers,
            timeout=timeout,
        )
    except requests.Timeout as exc:
        LOGGER.warning("Request to %s timed out after %ss", request.url, timeout)
        return Transient(cause=f"timeout: {exc}")
    except (requests.ConnectionError, requests.exceptions.ChunkedEncodingError) as exc:
        LOGGER.warning("Connection error for %s: %s", request.url, exc)
        return Transient(cause=f"connection error: {exc}")
    except requests.RequestException as exc:
        LOGGER.error("Request to %s could not be sent: %s", request.url, exc)
        return Fatal(cause=f"request error: {exc}")

    return classify_response(response)


def classify_response(response: requests.Response) -> FetchOutcome:
    status = response.status_code

    if 200 <= status < 300:
        return Success(
            body=response.content,
            encoding=_declared_charset(response.headers.get("Content-Type")),
            next_page_available=_next_link_present(response),
            status_code=status,
        )
    if status in _FATAL_AUTH_STATUSES:
        return Fatal(cause=f"HTTP {status}: not authorized", status_code=status)
    if status == 429:
        return RateLimited(retry_after=parse_retry_after(response.headers.get("Retry-After")), status_code=status)
    if status >= 500 or status in _TRANSIENT_CLIENT_STATUSES:
        return Transient(cause=f"HTTP {status}", status_code=status)

    # Remaining 3xx/4xx responses are request problems that a retry will not fix.
    return Fatal(cause=f"HTTP {status}", status_code=status)


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given as delta-seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - datetime.now(UTC)).total_seconds())


def _declared_charset(content_type: str | None) -> str | None:
    if not content_type:
        return None
    for part in content_type.split(";")[1:]:
        name, _, value = part.strip().partition("=")
        if name.lower() == "charset" and value:
            return value.strip().strip('"\'') or None
    return None


def _next_link_present(response: requests.Response) -> bool | None:
    if "Link" not in response.headers:
        return None
    return "next" in response.links
