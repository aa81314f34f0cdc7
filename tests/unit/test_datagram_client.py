import errno
import queue
import socket
import sys
import time

import pytest

from edgelink.transport.udp import DatagramClient


class UnreachableSocket:
    """Stand-in socket whose connect always fails."""

    def __init__(self, family, type=socket.SOCK_DGRAM, proto=0, *, sockopt_error=None):
        self.family = family
        self.sockopt_error = sockopt_error
        self.sockopts = []
        self.connect_calls = 0
        self.closed = False

    def setsockopt(self, level, option, value):
        self.sockopts.append((level, option, value))
        if self.sockopt_error is not None:
            raise self.sockopt_error

    def connect(self, addr):
        self.connect_calls += 1
        raise OSError(errno.ENETUNREACH, "Network is unreachable")

    def close(self):
        self.closed = True


class SocketRecorder:
    """Socket factory: fake sockets for IPv6, real ones otherwise."""

    def __init__(self, v6_unreachable=True, v4_unreachable=False, sockopt_error=None):
        self.v6_unreachable = v6_unreachable
        self.v4_unreachable = v4_unreachable
        self.sockopt_error = sockopt_error
        self.created = []

    def __call__(self, family, type=socket.SOCK_DGRAM, proto=0):
        unreachable = self.v6_unreachable if family == socket.AF_INET6 else self.v4_unreachable
        if unreachable:
            sock = UnreachableSocket(family, type, proto, sockopt_error=self.sockopt_error)
        else:
            sock = socket.socket(family, type, proto)
        self.created.append(sock)
        return sock


class BrokenSendSocket(socket.socket):
    def send(self, data, flags=0):
        raise OSError(errno.ENETDOWN, "Network is down")


def fixed_resolver(*infos):
    def resolve(host, port, family=0, socktype=0, *args):
        return list(infos)
    return resolve


def v6_info(port):
    return (socket.AF_INET6, socket.SOCK_DGRAM, 17, "", ("2001:db8::1", port, 0, 0))


def v4_info(port):
    return (socket.AF_INET, socket.SOCK_DGRAM, 17, "", ("127.0.0.1", port))


@pytest.fixture
def peer():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(2.0)
    yield sock
    sock.close()


@pytest.fixture
def client(settings):
    c = DatagramClient(settings)
    yield c
    c.disconnect()


def wait_until(predicate, timeout_s=2.0):
    deadline = time.time() + timeout_s
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def test_falls_back_from_unreachable_ipv6_to_ipv4(settings, peer):
    port = peer.getsockname()[1]
    factory = SocketRecorder(v6_unreachable=True)
    client = DatagramClient(settings, resolver=fixed_resolver(v6_info(port), v4_info(port)),
                            socket_factory=factory)
    try:
        assert client.connect("example.com", port) is True
        assert client.connected
        assert client.remote.family == socket.AF_INET
        assert client.remote.sockaddr == ("127.0.0.1", port)

        v6_sock = factory.created[0]
        assert v6_sock.closed
        assert v6_sock.sockopts == [(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)]

        assert client.send(b"ping") == 4
        data, _ = peer.recvfrom(64)
        assert data == b"ping"
    finally:
        client.disconnect()


def test_v6only_failure_does_not_stop_the_attempt(settings):
    factory = SocketRecorder(v6_unreachable=True, sockopt_error=OSError(errno.ENOPROTOOPT, "nope"))
    client = DatagramClient(settings, resolver=fixed_resolver(v6_info(9000)), socket_factory=factory)
    assert client.connect("example.com", 9000) is False
    assert factory.created[0].connect_calls == 1


def test_all_candidates_unreachable_leaves_nothing_open(settings):
    factory = SocketRecorder(v6_unreachable=True, v4_unreachable=True)
    client = DatagramClient(settings, resolver=fixed_resolver(v6_info(9000), v4_info(9000)),
                            socket_factory=factory)

    assert client.connect("example.com", 9000) is False
    assert len(factory.created) == 2
    assert all(s.closed for s in factory.created)
    assert not client.connected
    assert client.remote is None
    assert client.send(b"x") == -1


def test_no_candidates_fails(settings):
    client = DatagramClient(settings, resolver=fixed_resolver())
    assert client.connect("example.com", 9000) is False


def test_resolution_error_fails(settings):
    def resolver(*args):
        raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")

    client = DatagramClient(settings, resolver=resolver)
    assert client.connect("nowhere.invalid", 9000) is False
    assert not client.connected


def test_inbound_datagrams_reach_callback(client, peer):
    received = queue.Queue()
    client.on_message(received.put)
    assert client.connect("127.0.0.1", peer.getsockname()[1])

    client.send(b"hello")
    _, addr = peer.recvfrom(64)
    peer.sendto(b"one", addr)
    peer.sendto(b"two", addr)

    assert received.get(timeout=2) == b"one"
    assert received.get(timeout=2) == b"two"


def test_callback_error_does_not_stop_loop(client, peer):
    received = queue.Queue()

    def callback(data):
        if data == b"bad":
            raise ValueError("boom")
        received.put(data)

    client.on_message(callback)
    assert client.connect("127.0.0.1", peer.getsockname()[1])
    client.send(b"hi")
    _, addr = peer.recvfrom(64)
    peer.sendto(b"bad", addr)
    peer.sendto(b"good", addr)

    assert received.get(timeout=2) == b"good"
    assert client.connected


def test_no_callbacks_after_disconnect(client, peer):
    received = queue.Queue()
    client.on_message(received.put)
    assert client.connect("127.0.0.1", peer.getsockname()[1])
    client.send(b"hi")
    _, addr = peer.recvfrom(64)

    client.disconnect()
    assert not client.connected
    for _ in range(5):
        peer.sendto(b"late", addr)
    time.sleep(0.2)
    assert received.empty()


def test_disconnect_is_idempotent(client, peer):
    client.disconnect()
    assert client.connect("127.0.0.1", peer.getsockname()[1])
    client.disconnect()
    client.disconnect()
    assert not client.connected


def test_failed_send_marks_disconnected_until_reconnect(settings, peer):
    port = peer.getsockname()[1]
    factories = [BrokenSendSocket, socket.socket]
    client = DatagramClient(settings, socket_factory=lambda *args: factories.pop(0)(*args))
    try:
        assert client.connect("127.0.0.1", port)
        assert client.send(b"x") == -1
        assert not client.connected
        # refused without touching the socket again
        assert client.send(b"x") == -1

        assert client.connect("127.0.0.1", port)
        assert client.send(b"back") == 4
        data, _ = peer.recvfrom(64)
        assert data == b"back"
    finally:
        client.disconnect()


def test_reconnect_replaces_previous_session(client, peer):
    port = peer.getsockname()[1]
    assert client.connect("127.0.0.1", port)
    first = client.remote
    assert client.connect("127.0.0.1", port)
    assert client.connected
    assert client.remote == first
    assert client.send(b"again") == 5


def test_reconnect_from_callback_keeps_new_session(client, peer):
    port = peer.getsockname()[1]
    received = queue.Queue()

    def callback(data):
        if data == b"reconnect":
            received.put(client.connect("127.0.0.1", port))
        else:
            received.put(data)

    client.on_message(callback)
    assert client.connect("127.0.0.1", port)
    client.send(b"hi")
    _, addr = peer.recvfrom(64)
    peer.sendto(b"reconnect", addr)

    assert received.get(timeout=2) is True
    # give the previous receive thread time to wind down
    time.sleep(0.2)
    assert client.connected

    assert client.send(b"fresh") == 5
    data, new_addr = peer.recvfrom(64)
    assert data == b"fresh"
    peer.sendto(b"still here", new_addr)
    assert received.get(timeout=2) == b"still here"
    assert client.connected


def test_context_manager_disconnects(settings, peer):
    with DatagramClient(settings) as client:
        assert client.connect("127.0.0.1", peer.getsockname()[1])
        assert client.send(b"inside") == 6
    assert not client.connected
    assert client.remote is None
    assert client.send(b"after") == -1


@pytest.mark.skipif(sys.platform != "linux", reason="relies on ICMP port-unreachable reaching a connected UDP socket")
def test_refused_peer_ends_receive_loop(client):
    # grab a port nobody is listening on
    spare = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    spare.bind(("127.0.0.1", 0))
    port = spare.getsockname()[1]
    spare.close()

    assert client.connect("127.0.0.1", port)
    client.send(b"anyone?")
    assert wait_until(lambda: not client.connected)
