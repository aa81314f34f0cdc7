from __future__ import annotations
import logging
import select
import socket
import threading
from typing import Callable, Optional

from edgelink.config.settings import Settings, get_settings
from edgelink.transport.resolve import AddressCandidate, Resolver, resolve_candidates

logger = logging.getLogger(__name__)

MessageCallback = Callable[[bytes], None]
SocketFactory = Callable[[int, int, int], socket.socket]

class DatagramClient:
    """
    Connected UDP client with a background receive loop.

    connect() tries every resolved candidate in order and keeps the first
    socket that connects. Inbound datagrams are handed to the on_message
    callback on the receive thread. disconnect() is the only place sockets
    are closed; a failed send just clears `connected`. Leaving a `with`
    block disconnects.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        resolver: Resolver = socket.getaddrinfo,
        socket_factory: SocketFactory = socket.socket,
    ):
        self._settings = settings or get_settings()
        self._resolver = resolver
        self._socket_factory = socket_factory

        self._sock: Optional[socket.socket] = None
        self._remote: Optional[AddressCandidate] = None
        self._wake_r: Optional[socket.socket] = None
        self._wake_w: Optional[socket.socket] = None
        self._receiver: Optional[threading.Thread] = None
        self._on_message: Optional[MessageCallback] = None

        self._connected = threading.Event()
        self._stop = threading.Event()

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    @property
    def remote(self) -> Optional[AddressCandidate]:
        return self._remote

    def on_message(self, callback: Optional[MessageCallback]) -> None:
        self._on_message = callback

    def __enter__(self) -> "DatagramClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.disconnect()

    def connect(self, host: str, port: int) -> bool:
        self.disconnect()

        try:
            candidates = resolve_candidates(
                host, port, socktype=socket.SOCK_DGRAM, resolver=self._resolver
            )
        except OSError as e:
            logger.error("could not resolve %s:%d: %s", host, port, e)
            return False

        for candidate in candidates:
            sock = self._open_socket(candidate)
            if sock is not None:
                break
        else:
            logger.error("unable to connect to %s:%d", host, port)
            return False

        self._sock = sock
        self._remote = candidate
        self._wake_r, self._wake_w = socket.socketpair()
        stop = threading.Event()
        self._stop = stop
        self._connected.set()

        self._receiver = threading.Thread(
            target=self._receive_loop,
            args=(sock, self._wake_r, stop),
            name=f"datagram-recv-{candidate}",
            daemon=True,
        )
        self._receiver.start()
        logger.info("connected to %s address %s", candidate.family_name, candidate)
        return True

    def _open_socket(self, candidate: AddressCandidate) -> Optional[socket.socket]:
        try:
            sock = self._socket_factory(candidate.family, candidate.socktype, candidate.proto)
        except OSError as e:
            logger.debug("socket creation for %s failed: %s", candidate, e)
            return None

        try:
            if candidate.family == socket.AF_INET6:
                # keep IPv4-mapped addresses reachable on the same socket
                try:
                    sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
                except OSError as e:
                    logger.warning("could not clear IPV6_V6ONLY on %s: %s", candidate, e)
            sock.connect(candidate.sockaddr)
        except OSError as e:
            logger.debug("connect to %s failed: %s", candidate, e)
            sock.close()
            return None
        return sock

    def _receive_loop(self, sock: socket.socket, wake: socket.socket,
                      stop: threading.Event) -> None:
        max_size = self._settings.udp_max_datagram
        try:
            while not stop.is_set():
                try:
                    readable, _, _ = select.select([sock, wake], [], [])
                except (OSError, ValueError) as e:
                    # sockets closed under us by a disconnect from the callback
                    logger.debug("select on %s ended: %s", sock, e)
                    break
                if wake in readable or stop.is_set():
                    break
                try:
                    data = sock.recv(max_size)
                except OSError as e:
                    logger.warning("receive from %s failed: %s", self._remote, e)
                    break
                if not data:
                    break

                callback = self._on_message
                if callback is None or stop.is_set():
                    continue
                try:
                    callback(data)
                except Exception:
                    logger.exception("message callback raised")
        finally:
            # a newer session may already own the flag
            if self._stop is stop:
                self._connected.clear()
            logger.info("receive loop stopped")

    def send(self, data: bytes) -> int:
        sock = self._sock
        if sock is None or not self._connected.is_set():
            logger.error("send while disconnected")
            return -1

        try:
            sent = sock.send(data)
        except OSError as e:
            logger.error("send to %s failed: %s", self._remote, e)
            sent = -1

        if sent <= 0:
            self._connected.clear()
            logger.error("send failed: ret=%d", sent)
        return sent

    def disconnect(self) -> None:
        self._stop.set()
        if self._wake_w is not None:
            try:
                self._wake_w.send(b"\0")
            except OSError as e:
                logger.debug("wakeup write failed: %s", e)

        receiver = self._receiver
        if receiver is not None and receiver is not threading.current_thread():
            receiver.join()
        self._receiver = None

        for s in (self._sock, self._wake_r, self._wake_w):
            if s is not None:
                s.close()
        self._sock = self._wake_r = self._wake_w = None
        self._remote = None
        self._connected.clear()
