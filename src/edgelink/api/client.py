from __future__ import annotations
import logging
import socket
import time
from typing import Callable, Dict, Optional

from edgelink.api.engine import (
    DataCallback,
    EngineConnectError,
    EngineError,
    EngineExchangeError,
    EngineFactory,
    EngineTimeoutError,
    HttpEngine,
    HttpxEngine,
    normalize_method,
)
from edgelink.config.settings import Settings, get_settings
from edgelink.transport.resolve import Resolver, diagnose_host
from edgelink.utils.retry import RetryPolicy, with_retries
from edgelink.utils.urls import host_from_url

logger = logging.getLogger(__name__)


class RequestError(Exception):
    """The client was used without an open request."""


class BodyLengthError(RequestError):
    def __init__(self, expected: int, received: int):
        super().__init__(f"expected {expected} body bytes, received {received}")
        self.expected = expected
        self.received = received


class RequestClient:
    """
    Blocking HTTP request/response client with bounded connection retries.

    Headers set with set_header() persist across open() calls until
    clear_headers(). Each open() attempt builds a fresh engine, so nothing
    leaks between attempts; a failed open() always leaves no engine behind.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        engine_factory: EngineFactory | None = None,
        resolver: Resolver = socket.getaddrinfo,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._settings = settings or get_settings()
        self._engine_factory = engine_factory or self._default_engine
        self._resolver = resolver
        self._sleep = sleep
        self._policy = RetryPolicy(
            attempts=self._settings.http_max_attempts,
            base_delay_s=self._settings.http_retry_delay_s,
            max_delay_s=self._settings.http_retry_delay_s,
        )

        self._headers: Dict[str, str] = {}
        self._engine: Optional[HttpEngine] = None
        self._status_code = 0
        self._content_length = 0
        self._body: Optional[bytes] = None
        self._streamed = bytearray()
        self.last_error: Optional[Exception] = None

    def _default_engine(self, url: str, on_data: Optional[DataCallback]) -> HttpEngine:
        s = self._settings
        return HttpxEngine(
            url,
            on_data,
            timeout_s=s.http_timeout_s,
            buffer_size=s.http_buffer_size,
            follow_redirects=s.http_follow_redirects,
            verify=s.http_verify_tls,
        )

    def __enter__(self) -> "RequestClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # headers

    def set_header(self, key: str, value: str) -> None:
        self._headers[key] = value

    def clear_headers(self) -> None:
        self._headers.clear()

    @property
    def headers(self) -> Dict[str, str]:
        return dict(self._headers)

    # request lifecycle

    def open(self, method: str, url: str, body: bytes | str = b"") -> bool:
        if isinstance(body, str):
            body = body.encode("utf-8")

        self.close()
        self._status_code = 0
        self._content_length = 0
        self._body = None
        self._streamed.clear()
        self.last_error = None

        method = normalize_method(method)
        logger.info("opening %s %s (body %d bytes, timeout %.1fs)",
                    method, url, len(body), self._settings.http_timeout_s)

        host = host_from_url(url)
        if host:
            diagnose_host(host, resolver=self._resolver)

        try:
            self._engine = with_retries(
                lambda: self._open_engine(method, url, body),
                self._policy,
                retry_on=(EngineError,),
                give_up_on=(EngineExchangeError,),
                sleep=self._sleep,
                on_failure=self._log_attempt_failure,
            )
        except EngineError as e:
            self.last_error = e
            self._log_exhausted(e)
            return False
        logger.info("connection to %s established", url)

        try:
            written = self._engine.write(body)
            if written < 0:
                raise EngineError(f"body write returned {written}")
            content_length = self._engine.fetch_headers()
            if content_length <= 0:
                raise EngineError(f"response has no usable content length ({content_length})")
        except EngineError as e:
            logger.error("request to %s failed: %s", url, e)
            self.last_error = e
            self.close()
            return False

        self._content_length = content_length
        self._status_code = self._engine.status_code
        return True

    def _open_engine(self, method: str, url: str, body: bytes) -> HttpEngine:
        engine = self._engine_factory(url, self._on_data)
        try:
            engine.set_method(method)
            for key, value in self._headers.items():
                engine.set_header(key, value)
            engine.set_body(body)
            engine.open(len(body))
        except EngineError:
            engine.cleanup()
            raise
        return engine

    def _log_attempt_failure(self, attempt: int, exc: BaseException) -> None:
        logger.error("attempt %d/%d: connection failed: %s",
                     attempt, self._policy.attempts, exc)
        if attempt < self._policy.attempts:
            logger.info("retrying in %.1fs", self._settings.http_retry_delay_s)

    def _log_exhausted(self, exc: EngineError) -> None:
        if isinstance(exc, EngineExchangeError):
            logger.error("server was reached but the exchange broke off, not retrying: %s", exc)
            return
        logger.error("connection still failing after %d attempts: %s", self._policy.attempts, exc)
        if isinstance(exc, EngineConnectError):
            logger.error("connect failed: check the network link, server address and that the server is up")
            logger.error("for IPv6 addresses make sure both the network and the server support IPv6")
        elif isinstance(exc, EngineTimeoutError):
            logger.error("connection timed out: check link quality or raise the timeout")
        else:
            logger.error("DNS resolution or another network problem: check the host name")

    def close(self) -> None:
        if self._engine is not None:
            self._engine.cleanup()
            self._engine = None

    # response

    def _on_data(self, chunk: bytes) -> None:
        self._streamed += chunk

    @property
    def streamed_body(self) -> bytes:
        return bytes(self._streamed)

    def get_status_code(self) -> int:
        return self._status_code

    def get_response_header(self, key: str) -> str:
        if self._engine is None:
            return ""
        return self._engine.get_header(key) or ""

    def get_body_length(self) -> int:
        return self._content_length

    def get_body(self) -> bytes:
        if self._body is not None:
            return self._body
        if self._engine is None:
            raise RequestError("no open request")

        expected = self._content_length
        buf = bytearray()
        try:
            while len(buf) < expected:
                chunk = self._engine.read(expected - len(buf))
                if not chunk:
                    break
                buf += chunk
        except EngineError as e:
            raise BodyLengthError(expected, len(buf)) from e

        if len(buf) != expected:
            raise BodyLengthError(expected, len(buf))
        self._body = bytes(buf)
        return self._body

    def read(self, size: int) -> bytes:
        if self._engine is None:
            raise RequestError("no open request")
        return self._engine.read(size)

    def readinto(self, buffer: bytearray) -> int:
        """Fill buffer from the body; bytes read, 0 at the end, -1 on failure."""
        if self._engine is None:
            return -1
        try:
            data = self._engine.read(len(buffer))
        except EngineError as e:
            logger.error("body read failed: %s", e)
            return -1
        buffer[:len(data)] = data
        return len(data)
