from datetime import UTC, datetime, timedelta
from email.utils import format_datetime
from unittest.mock import MagicMock

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from models import Fatal, RateLimited, RequestDescriptor, Success, Transient
from transport import execute, parse_retry_after

REQUEST = RequestDescriptor(
    method="GET",
    url="https://api.example.com/v1/search",
    params={"query": "chair", "page": 1, "sort": "relevance"},
    headers={"Authorization": "Bearer t"},
)


def _response(status: int, body: bytes = b"", headers: dict[str, str] | None = None) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response._content = body
    response.headers = CaseInsensitiveDict(headers or {})
    return response


def _session(response: requests.Response | None = None, error: Exception | None = None) -> MagicMock:
    session = MagicMock()
    if error is not None:
        session.request.side_effect = error
    else:
        session.request.return_value = response
    return session


def test_execute_success_carries_body_and_charset() -> None:
    session = _session(_response(200, b'{"items": []}', {"Content-Type": "application/json; charset=EUC-KR"}))

    outcome = execute(REQUEST, timeout=5, session=session)

    assert isinstance(outcome, Success)
    assert outcome.body == b'{"items": []}'
    assert outcome.encoding == "EUC-KR"
    assert outcome.next_page_available is None


def test_execute_applies_timeout_and_request_fields() -> None:
    session = _session(_response(200, b"[]"))

    execute(REQUEST, timeout=7.5, session=session)

    kwargs = session.request.call_args.kwargs
    assert kwargs["timeout"] == 7.5
    assert kwargs["params"] == REQUEST.params
    assert kwargs["headers"]["Authorization"] == "Bearer t"


def test_execute_reads_link_next_header() -> None:
    with_next = _response(200, b"[]", {"Link": '<https://api.example.com/v1/search?page=2>; rel="next"'})
    last = _response(200, b"[]", {"Link": '<https://api.example.com/v1/search?page=1>; rel="prev"'})

    assert execute(REQUEST, timeout=5, session=_session(with_next)).next_page_available is True
    assert execute(REQUEST, timeout=5, session=_session(last)).next_page_available is False


@pytest.mark.parametrize("status", [401, 403])
def test_execute_auth_failures_are_fatal(status: int) -> None:
    outcome = execute(REQUEST, timeout=5, session=_session(_response(status)))
    assert isinstance(outcome, Fatal)
    assert outcome.status_code == status


def test_execute_429_reads_retry_after() -> None:
    outcome = execute(REQUEST, timeout=5, session=_session(_response(429, headers={"Retry-After": "12"})))
    assert isinstance(outcome, RateLimited)
    assert outcome.retry_after == 12.0


def test_execute_429_without_hint() -> None:
    outcome = execute(REQUEST, timeout=5, session=_session(_response(429)))
    assert isinstance(outcome, RateLimited)
    assert outcome.retry_after is None


@pytest.mark.parametrize("status", [500, 502, 503, 504, 408])
def test_execute_server_errors_are_transient(status: int) -> None:
    outcome = execute(REQUEST, timeout=5, session=_session(_response(status)))
    assert isinstance(outcome, Transient)
    assert outcome.status_code == status


@pytest.mark.parametrize("status", [400, 404, 422])
def test_execute_other_client_errors_are_fatal(status: int) -> None:
    assert isinstance(execute(REQUEST, timeout=5, session=_session(_response(status))), Fatal)


@pytest.mark.parametrize("error", [
    requests.Timeout("read timed out"),
    requests.ConnectTimeout("connect timed out"),
    requests.ConnectionError("connection reset"),
])
def test_execute_network_errors_are_transient(error: Exception) -> None:
    assert isinstance(execute(REQUEST, timeout=5, session=_session(error=error)), Transient)


def test_execute_invalid_request_is_fatal() -> None:
    outcome = execute(REQUEST, timeout=5, session=_session(error=requests.exceptions.InvalidURL("bad url")))
    assert isinstance(outcome, Fatal)


def test_parse_retry_after_http_date() -> None:
    when = datetime.now(UTC) + timedelta(seconds=30)
    delay = parse_retry_after(format_datetime(when, usegmt=True))
    assert delay is not None
    assert 25 <= delay <= 30


@pytest.mark.parametrize("value", [None, "", "soon"])
def test_parse_retry_after_unparseable_is_none(value: str | None) -> None:
    assert parse_retry_after(value) is None
