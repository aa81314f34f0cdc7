import dataclasses
import socket
import threading
import time
from dataclasses import dataclass

import httpx
import pytest
import uvicorn

from edgelink.config.settings import get_settings
from services.peer_sim.api_client import PeerControlClient
from services.peer_sim.app.main import app


@dataclass(frozen=True)
class SimEndpoints:
    http: str
    udp_host: str
    udp_port: int


class _ThreadedServer(uvicorn.Server):
    # signals belong to the pytest main thread
    def install_signal_handlers(self) -> None:
        pass


def _free_tcp_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def _wait_for_http_ready(url: str, server: uvicorn.Server, thread: threading.Thread,
                         timeout_s: float = 15.0) -> None:
    """
    Wait for the simulator to respond at url. If the server thread dies, fail fast.
    """
    deadline = time.time() + timeout_s
    while time.time() < deadline:
        if not thread.is_alive():
            raise RuntimeError("Simulator thread exited before becoming ready")
        if server.started:
            try:
                r = httpx.get(url, timeout=1.0)
                if r.status_code == 200:
                    return
            except httpx.HTTPError:
                pass
        time.sleep(0.05)

    raise RuntimeError(f"Simulator did not become ready at {url} within {timeout_s}s")


@pytest.fixture(scope="session")
def simulator():
    """
    Runs the peer simulator (HTTP + UDP echo) on a background thread for the session.
    """
    host = "127.0.0.1"
    port = _free_tcp_port()
    config = uvicorn.Config(app, host=host, port=port, log_level="warning", lifespan="on")
    server = _ThreadedServer(config)
    thread = threading.Thread(target=server.run, name="peer-sim", daemon=True)
    thread.start()

    base = f"http://{host}:{port}"
    try:
        _wait_for_http_ready(f"{base}/health", server, thread)
        udp_host, udp_port = app.state.udp_transport.get_extra_info("sockname")[:2]
        yield SimEndpoints(http=base, udp_host=udp_host, udp_port=udp_port)
    finally:
        server.should_exit = True
        thread.join(timeout=5)


@pytest.fixture
def settings():
    # no waiting between retries in tests
    return dataclasses.replace(get_settings(), http_retry_delay_s=0.0, http_timeout_s=5.0)


@pytest.fixture
def sim_api(simulator):
    client = PeerControlClient(simulator.http)
    client.clear_faults()
    try:
        yield client
    finally:
        client.close()
