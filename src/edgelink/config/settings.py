from __future__ import annotations

from dataclasses import dataclass
import os

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    http_timeout_s: float
    http_buffer_size: int
    http_max_attempts: int
    http_retry_delay_s: float
    http_follow_redirects: bool
    http_verify_tls: bool
    udp_max_datagram: int


def _env_bool(name: str, default: str) -> bool:
    raw = os.getenv(name, default).strip().lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def get_settings() -> Settings:
    """
    Centralized configuration for both transports.
    Values come from environment variables with safe defaults.
    """
    return Settings(
        http_timeout_s=float(os.getenv("EDGELINK_HTTP_TIMEOUT_S", "15")),
        http_buffer_size=int(os.getenv("EDGELINK_HTTP_BUFFER_SIZE", "4096")),
        http_max_attempts=int(os.getenv("EDGELINK_HTTP_MAX_ATTEMPTS", "3")),
        http_retry_delay_s=float(os.getenv("EDGELINK_HTTP_RETRY_DELAY_S", "1.0")),
        http_follow_redirects=_env_bool("EDGELINK_HTTP_FOLLOW_REDIRECTS", "true"),
        http_verify_tls=_env_bool("EDGELINK_HTTP_VERIFY_TLS", "true"),
        udp_max_datagram=int(os.getenv("EDGELINK_UDP_MAX_DATAGRAM", "1500")),
    )
