"""HTTP engine seam for RequestClient.

The engine owns the protocol exchange itself (framing, TLS, redirects);
RequestClient only drives it through set_body/open/write/fetch_headers/read/cleanup.
`HttpxEngine` is the default implementation.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterator, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)

DataCallback = Callable[[bytes], None]

SUPPORTED_METHODS = ("GET", "POST", "PUT", "DELETE")


class EngineError(Exception):
    """A step of the HTTP exchange failed."""


class EngineConnectError(EngineError):
    """No connection could be made; nothing reached the server."""


class EngineTimeoutError(EngineError):
    """Connecting timed out; nothing reached the server."""


class EngineExchangeError(EngineError):
    """The server was reached but the exchange broke off; not safe to repeat."""


class HttpEngine(Protocol):
    @property
    def status_code(self) -> int: ...

    def set_method(self, method: str) -> None: ...

    def set_header(self, key: str, value: str) -> None: ...

    def set_body(self, data: bytes) -> None: ...

    def open(self, content_length: int) -> None: ...

    def write(self, data: bytes) -> int: ...

    def fetch_headers(self) -> int: ...

    def read(self, size: int) -> bytes: ...

    def get_header(self, key: str) -> Optional[str]: ...

    def cleanup(self) -> None: ...


EngineFactory = Callable[[str, Optional[DataCallback]], HttpEngine]


def normalize_method(method: str) -> str:
    upper = method.upper()
    if upper not in SUPPORTED_METHODS:
        logger.warning("unsupported method %r, falling back to GET", method)
        return "GET"
    return upper


class HttpxEngine:
    """
    Engine backed by a private httpx.Client.

    httpx sends headers and body in one go, so the body is staged with
    set_body() and the request goes out in open(). Connection failures
    therefore surface from open(), where RequestClient retries them;
    write() checks the body against what was sent and moves no bytes.
    The response is streamed: read() pulls raw chunks off the wire and fires
    on_data for each one. Accept-Encoding is pinned to identity so the bytes
    read line up with Content-Length.
    """

    def __init__(
        self,
        url: str,
        on_data: Optional[DataCallback] = None,
        *,
        timeout_s: float = 15.0,
        buffer_size: int = 4096,
        follow_redirects: bool = True,
        verify: bool = True,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._url = url
        self._on_data = on_data
        self._buffer_size = buffer_size
        self._method = "GET"
        self._headers: Dict[str, str] = {}
        self._body = b""

        self._client = httpx.Client(
            timeout=timeout_s,
            follow_redirects=follow_redirects,
            verify=verify,
            transport=transport,
            headers={"Accept-Encoding": "identity"},
        )
        self._response: Optional[httpx.Response] = None
        self._chunks: Optional[Iterator[bytes]] = None
        self._pending = b""

    @property
    def status_code(self) -> int:
        return self._response.status_code if self._response is not None else 0

    def set_method(self, method: str) -> None:
        self._method = method if method in SUPPORTED_METHODS else "GET"

    def set_header(self, key: str, value: str) -> None:
        self._headers[key] = value

    def set_body(self, data: bytes) -> None:
        self._body = data

    def open(self, content_length: int) -> None:
        try:
            url = httpx.URL(self._url)
        except httpx.InvalidURL as e:
            raise EngineError(f"invalid url {self._url!r}: {e}") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise EngineError(f"unsupported url {self._url!r}")
        if len(self._body) != content_length:
            raise EngineError(
                f"body is {len(self._body)} bytes, {content_length} were announced"
            )

        request = self._client.build_request(
            self._method, url, headers=self._headers, content=self._body or None
        )
        try:
            self._response = self._client.send(request, stream=True)
        except httpx.ConnectError as e:
            raise EngineConnectError(str(e)) from e
        except (httpx.ConnectTimeout, httpx.PoolTimeout) as e:
            raise EngineTimeoutError(str(e)) from e
        except httpx.HTTPError as e:
            raise EngineExchangeError(str(e)) from e

        self._chunks = self._response.iter_raw(self._buffer_size)

    def write(self, data: bytes) -> int:
        if self._response is None:
            raise EngineError("engine is not open")
        if data != self._body:
            raise EngineError("body differs from the one sent with the request")
        return len(data)

    def fetch_headers(self) -> int:
        """Content length of the response, -1 when the server did not send one."""
        if self._response is None:
            raise EngineError("request has not been sent")
        value = self._response.headers.get("Content-Length")
        if value is None:
            return -1
        try:
            return int(value)
        except ValueError:
            return -1

    def read(self, size: int) -> bytes:
        if self._chunks is None:
            raise EngineError("no response to read")

        while not self._pending:
            try:
                chunk = next(self._chunks)
            except StopIteration:
                return b""
            except httpx.TimeoutException as e:
                raise EngineTimeoutError(str(e)) from e
            except (httpx.HTTPError, httpx.StreamError) as e:
                raise EngineError(str(e)) from e
            if chunk and self._on_data is not None:
                self._on_data(chunk)
            self._pending = chunk

        data, self._pending = self._pending[:size], self._pending[size:]
        return data

    def get_header(self, key: str) -> Optional[str]:
        if self._response is None:
            return None
        return self._response.headers.get(key)

    def cleanup(self) -> None:
        if self._response is not None:
            self._response.close()
            self._response = None
        self._chunks = None
        self._pending = b""
        self._client.close()
