from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Mapping, Protocol

import httpx

from httppal.config import HttpMethod, RequestDescriptor
from httppal.errors import CallAborted
from httppal.loadgen.cancellation import CancellationToken

logger = logging.getLogger(__name__)

_FORM_BODY = re.compile(r"^[^=&]+=[^=&]+(&[^=&]+=[^=&]+)*$")
_BODYLESS = (HttpMethod.GET, HttpMethod.HEAD)


@dataclass(frozen=True, slots=True)
class TransportResponse:
    status_code: int
    reason: str
    headers: Mapping[str, list[str]]
    body: bytes
    elapsed_ms: float
    encoding: str | None = None

    def text(self) -> str:
        try:
            return self.body.decode(self.encoding or "utf-8", errors="replace")
        except LookupError:
            # Charset named by the server that Python has no codec for.
            return self.body.decode("utf-8", errors="replace")


class HttpTransport(Protocol):
    def send(self, descriptor: RequestDescriptor, token: CancellationToken) -> TransportResponse:
        ...


def detect_content_type(body: str) -> str:
    trimmed = body.strip()
    if (trimmed.startswith("{") and trimmed.endswith("}")) or (
        trimmed.startswith("[") and trimmed.endswith("]")
    ):
        return "application/json"
    if trimmed.startswith("<") and trimmed.endswith(">"):
        return "application/xml"
    if _FORM_BODY.match(trimmed):
        return "application/x-www-form-urlencoded"
    return "text/plain"


def request_body(descriptor: RequestDescriptor) -> str | None:
    if descriptor.method in _BODYLESS or not descriptor.has_body():
        return None
    return descriptor.body


def request_headers(descriptor: RequestDescriptor, content: str | None) -> dict[str, str]:
    headers = dict(descriptor.headers)
    if content is not None and descriptor.content_type() is None:
        headers["Content-Type"] = detect_content_type(content)
    return headers


def _body_pending(resp: httpx.Response) -> bool:
    """True unless the declared Content-Length has fully arrived."""
    length = resp.headers.get("content-length")
    if length is None or not length.isdigit():
        return True
    return resp.num_bytes_downloaded < int(length)


@dataclass(slots=True)
class HttpxTransport:
    """Sends one call over a shared ``httpx.Client``.

    The body is streamed so the per-call deadline and cancellation are checked
    between chunks. Cancellation aborts a call only before it is sent or while
    body bytes are still outstanding; ``elapsed_ms`` covers the whole download.
    """

    max_connections: int = 100
    chunk_size: int | None = None
    client: httpx.Client | None = None
    _owns_client: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        if self.client is None:
            limits = httpx.Limits(
                max_connections=self.max_connections,
                max_keepalive_connections=self.max_connections,
            )
            self.client = httpx.Client(limits=limits)
            self._owns_client = True

    def send(self, descriptor: RequestDescriptor, token: CancellationToken) -> TransportResponse:
        client = self.client
        if client is None:
            msg = "transport client is closed"
            raise RuntimeError(msg)
        if token.cancelled:
            raise CallAborted(token.reason or "cancelled")
        content = request_body(descriptor)
        start = time.perf_counter()
        deadline = start + descriptor.timeout_sec
        with client.stream(
            descriptor.method.value,
            descriptor.resolved_url(),
            params=dict(descriptor.query_params) or None,
            headers=request_headers(descriptor, content),
            content=content,
            timeout=descriptor.timeout_sec,
            follow_redirects=descriptor.follow_redirects,
        ) as resp:
            chunks: list[bytes] = []
            for chunk in resp.iter_bytes(self.chunk_size):
                chunks.append(chunk)
                if time.perf_counter() > deadline:
                    msg = f"body download exceeded {descriptor.timeout_sec}s"
                    raise TimeoutError(msg)
                if token.cancelled and _body_pending(resp):
                    raise CallAborted(token.reason or "cancelled")
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            headers = {name: resp.headers.get_list(name) for name in resp.headers.keys()}
            return TransportResponse(
                status_code=resp.status_code,
                reason=resp.reason_phrase,
                headers=headers,
                body=b"".join(chunks),
                elapsed_ms=elapsed_ms,
                encoding=resp.encoding,
            )

    def close(self) -> None:
        if self._owns_client and self.client is not None:
            logger.debug("Closing transport client")
            self.client.close()
            self.client = None

    def __enter__(self) -> HttpxTransport:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
