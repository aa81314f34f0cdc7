from __future__ import annotations
from typing import Any, Dict

import httpx


class PeerControlClient:
    """Drives the peer simulator's control routes: health and fault injection."""

    def __init__(self, base_url: str, timeout: float = 2.0):
        self._http = httpx.Client(base_url=base_url, timeout=timeout)

    def _call(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        resp = self._http.request(method, path, **kwargs)
        resp.raise_for_status()
        return resp.json()

    def close(self) -> None:
        self._http.close()

    def health(self) -> Dict[str, Any]:
        return self._call("GET", "/health")

    def clear_faults(self) -> Dict[str, Any]:
        return self._call("POST", "/control/reset")

    def faults(self) -> Dict[str, Any]:
        return self._call("GET", "/control/faults")

    def inject_faults(self, *, delay_ms: int = 0, drop_rate: float = 0.0) -> Dict[str, Any]:
        return self._call("POST", "/control/faults",
                          json={"delay_ms": delay_ms, "drop_rate": drop_rate})
