from __future__ import annotations

import httpx
import pytest

from fakes import ScriptedTransport
from httppal.config import RequestDescriptor
from httppal.errors import CallAborted
from httppal.loadgen.cancellation import CancellationToken
from httppal.loadgen.client import REFUSED_MESSAGE, TIMEOUT_MESSAGE, execute_call
from httppal.loadgen.transport import TransportResponse
from httppal.metrics import CallFailure, CallSuccess, ErrorKind

DESCRIPTOR = RequestDescriptor(url="http://example.com/items")
_REQUEST = httpx.Request("GET", "http://example.com/items")


def _status_error(code: int) -> httpx.HTTPStatusError:
    return httpx.HTTPStatusError(
        f"status {code}",
        request=_REQUEST,
        response=httpx.Response(code, request=_REQUEST),
    )


class _Raising:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    def send(self, descriptor, token):
        raise self.exc


@pytest.mark.parametrize(
    ("exc", "kind"),
    [
        (httpx.ReadTimeout("read timed out", request=_REQUEST), ErrorKind.TIMEOUT),
        (httpx.ConnectTimeout("connect timed out", request=_REQUEST), ErrorKind.TIMEOUT),
        (TimeoutError("deadline"), ErrorKind.TIMEOUT),
        (httpx.ConnectError("boom", request=_REQUEST), ErrorKind.NETWORK),
        (httpx.RemoteProtocolError("peer closed", request=_REQUEST), ErrorKind.NETWORK),
        (ConnectionResetError("reset by peer"), ErrorKind.NETWORK),
        (httpx.UnsupportedProtocol("gopher", request=_REQUEST), ErrorKind.VALIDATION),
        (httpx.InvalidURL("bad url"), ErrorKind.VALIDATION),
        (ValueError("bad header"), ErrorKind.VALIDATION),
        (_status_error(401), ErrorKind.AUTHENTICATION),
        (_status_error(403), ErrorKind.AUTHENTICATION),
        (_status_error(503), ErrorKind.SERVER_ERROR),
        (httpx.TooManyRedirects("loop", request=_REQUEST), ErrorKind.UNKNOWN),
        (RuntimeError("surprise"), ErrorKind.UNKNOWN),
    ],
)
def test_failures_are_classified(exc: Exception, kind: ErrorKind) -> None:
    outcome = execute_call(_Raising(exc), DESCRIPTOR, 7, CancellationToken())
    assert isinstance(outcome, CallFailure)
    assert outcome.error.kind is kind
    assert outcome.error.call_index == 7
    assert outcome.error.cause.startswith(type(exc).__name__)


def test_timeouts_share_one_message() -> None:
    first = execute_call(_Raising(httpx.ReadTimeout("a")), DESCRIPTOR, 0, CancellationToken())
    second = execute_call(_Raising(TimeoutError("b")), DESCRIPTOR, 1, CancellationToken())
    assert first.error.message == second.error.message == TIMEOUT_MESSAGE


def test_connection_refused_message() -> None:
    outcome = execute_call(
        _Raising(httpx.ConnectError("[Errno 111] Connection refused")),
        DESCRIPTOR,
        0,
        CancellationToken(),
    )
    assert outcome.error.message == REFUSED_MESSAGE


def test_server_error_status_is_a_success() -> None:
    transport = ScriptedTransport(status_code=500, body=b"oops", elapsed_ms=12.5)
    outcome = execute_call(transport, DESCRIPTOR, 3, CancellationToken())
    assert isinstance(outcome, CallSuccess)
    assert outcome.status_code == 500
    assert outcome.is_server_error()
    assert outcome.body == "oops"
    assert outcome.body_size == 4
    assert outcome.response_time_ms == 12.5
    assert outcome.content_type() == "text/plain"


def test_aborted_call_propagates() -> None:
    with pytest.raises(CallAborted):
        execute_call(_Raising(CallAborted("stop")), DESCRIPTOR, 0, CancellationToken())


def test_unknown_charset_still_decodes() -> None:
    transport = ScriptedTransport(body=b"ok", encoding="x-unknown-charset")
    outcome = execute_call(transport, DESCRIPTOR, 0, CancellationToken())
    assert isinstance(outcome, CallSuccess)
    assert outcome.body == "ok"


class _Malformed:
    def send(self, descriptor, token):
        return TransportResponse(200, "OK", {}, body=None, elapsed_ms=1.0)


def test_unreadable_response_is_a_failure_of_its_call() -> None:
    outcome = execute_call(_Malformed(), DESCRIPTOR, 5, CancellationToken())
    assert isinstance(outcome, CallFailure)
    assert outcome.error.call_index == 5
