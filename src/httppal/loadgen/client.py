from __future__ import annotations

import logging
from datetime import datetime, timezone

import httpx

from httppal.config import RequestDescriptor
from httppal.errors import CallAborted
from httppal.loadgen.cancellation import CancellationToken
from httppal.loadgen.transport import HttpTransport
from httppal.metrics import CallFailure, CallOutcome, CallSuccess, ErrorKind, ExecutionError

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = (
    "Request timed out. Consider increasing the timeout value or checking network connectivity."
)
REFUSED_MESSAGE = "Connection refused. The server may be down or unreachable."
UNKNOWN_HOST_MESSAGE = "Unknown host. Please check the URL and network connectivity."

_UNKNOWN_HOST_MARKERS = ("name or service not known", "nodename nor servname", "getaddrinfo", "name resolution")


def execute_call(
    transport: HttpTransport,
    descriptor: RequestDescriptor,
    call_index: int,
    token: CancellationToken,
) -> CallOutcome:
    """Run one call; transport failures come back as ``CallFailure``.

    A completed exchange is a ``CallSuccess`` whatever its status code.
    ``CallAborted`` propagates since an aborted call never resolved.
    """
    try:
        resp = transport.send(descriptor, token)
        return CallSuccess(
            call_index=call_index,
            status_code=resp.status_code,
            status_text=resp.reason,
            headers=resp.headers,
            body=resp.text(),
            response_time_ms=resp.elapsed_ms,
            timestamp=datetime.now(timezone.utc),
            body_size=len(resp.body),
        )
    except CallAborted:
        raise
    except Exception as exc:
        kind = classify(exc)
        if kind is ErrorKind.UNKNOWN and not isinstance(exc, httpx.HTTPError):
            logger.warning("Unclassified failure on call %d", call_index, exc_info=True)
        return _failure(exc, call_index, kind)


def classify(exc: BaseException) -> ErrorKind:
    if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(exc, (httpx.NetworkError, httpx.ProxyError, httpx.ProtocolError)):
        return ErrorKind.NETWORK
    if isinstance(exc, (httpx.InvalidURL, httpx.UnsupportedProtocol)):
        return ErrorKind.VALIDATION
    if isinstance(exc, httpx.HTTPStatusError):
        return _status_error_kind(exc.response.status_code)
    if isinstance(exc, httpx.HTTPError):
        return ErrorKind.UNKNOWN
    if isinstance(exc, OSError):
        return ErrorKind.NETWORK
    if isinstance(exc, ValueError):
        return ErrorKind.VALIDATION
    return ErrorKind.UNKNOWN


def _status_error_kind(status_code: int) -> ErrorKind:
    if status_code in (401, 403):
        return ErrorKind.AUTHENTICATION
    if 500 <= status_code <= 599:
        return ErrorKind.SERVER_ERROR
    return ErrorKind.UNKNOWN


def _network_message(exc: BaseException) -> str:
    text = str(exc).lower()
    if isinstance(exc, ConnectionRefusedError) or "refused" in text:
        return REFUSED_MESSAGE
    if any(marker in text for marker in _UNKNOWN_HOST_MARKERS):
        return UNKNOWN_HOST_MESSAGE
    return str(exc) or type(exc).__name__


def _message(exc: BaseException, kind: ErrorKind) -> str:
    # Stable per-category text so the error distribution groups repeats.
    if kind is ErrorKind.TIMEOUT:
        return TIMEOUT_MESSAGE
    if kind is ErrorKind.NETWORK:
        return _network_message(exc)
    return str(exc) or type(exc).__name__


def _failure(exc: BaseException, call_index: int, kind: ErrorKind) -> CallFailure:
    logger.debug("Call %d failed (%s): %r", call_index, kind.value, exc)
    return CallFailure(
        ExecutionError(
            message=_message(exc, kind),
            cause=f"{type(exc).__name__}: {exc}",
            call_index=call_index,
            timestamp=datetime.now(timezone.utc),
            kind=kind,
        )
    )
