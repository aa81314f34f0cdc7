"""Hostname resolution into ordered connection candidates.

Two policies live here: a dual-stack pass used by the datagram client, and an
IPv6-first diagnosis (with IPv4 fallback) that the request client runs before
handing the real connection to its HTTP engine.
"""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

Resolver = Callable[..., List[Tuple[Any, ...]]]

_IP_FAMILIES = (socket.AF_INET, socket.AF_INET6)


@dataclass(frozen=True)
class AddressCandidate:
    family: int
    socktype: int
    proto: int
    sockaddr: Tuple[Any, ...]

    @property
    def ip(self) -> str:
        return self.sockaddr[0]

    @property
    def port(self) -> int:
        return self.sockaddr[1]

    @property
    def family_name(self) -> str:
        return "IPv6" if self.family == socket.AF_INET6 else "IPv4"

    def __str__(self) -> str:
        if self.family == socket.AF_INET6:
            return f"[{self.ip}]:{self.port}"
        return f"{self.ip}:{self.port}"


@dataclass(frozen=True)
class DnsDiagnosis:
    host: str
    candidates: Tuple[AddressCandidate, ...]

    @property
    def resolved(self) -> bool:
        return bool(self.candidates)

    @property
    def has_ipv6(self) -> bool:
        return any(c.family == socket.AF_INET6 for c in self.candidates)

    @property
    def has_ipv4(self) -> bool:
        return any(c.family == socket.AF_INET for c in self.candidates)


def resolve_candidates(
    host: str,
    port: Optional[int],
    *,
    socktype: int = socket.SOCK_DGRAM,
    family: int = socket.AF_UNSPEC,
    resolver: Resolver = socket.getaddrinfo,
) -> List[AddressCandidate]:
    """Resolve host:port, keeping resolver order. Resolver errors propagate."""
    infos = resolver(host, port, family, socktype)
    return [
        AddressCandidate(fam, stype, proto, sockaddr)
        for fam, stype, proto, _canonname, sockaddr in infos
        if fam in _IP_FAMILIES
    ]


def _try_resolve(host: str, family: int, resolver: Resolver) -> List[AddressCandidate]:
    try:
        return resolve_candidates(
            host, None, socktype=socket.SOCK_STREAM, family=family, resolver=resolver
        )
    except (OSError, UnicodeError) as e:
        logger.debug("resolution of %s (family %s) failed: %s", host, family, e)
        return []


def diagnose_host(host: str, *, resolver: Resolver = socket.getaddrinfo) -> DnsDiagnosis:
    """
    Advisory IPv6-first lookup. Never raises; the outcome is logged and
    returned so the caller can decide how loudly to proceed.
    """
    logger.info("resolving %s (IPv6 first)", host)
    candidates = _try_resolve(host, socket.AF_INET6, resolver)

    if not candidates:
        logger.warning("IPv6 resolution failed for %s, retrying with IPv4", host)
        candidates = _try_resolve(host, socket.AF_INET, resolver)
        if not candidates:
            logger.error("IPv4 resolution also failed for %s", host)
        else:
            logger.info("resolved %s (IPv4: %s)", host, candidates[0].ip)
            logger.warning("only IPv4 addresses found for %s; an IPv6-only server will be unreachable", host)
        return DnsDiagnosis(host, tuple(candidates))

    diagnosis = DnsDiagnosis(host, tuple(candidates))
    logger.info("resolved %s:", host)
    for c in candidates:
        logger.info("  - %s: %s", c.family_name, c.ip)
    if diagnosis.has_ipv6:
        logger.info("IPv6 address available for %s, IPv6 will be preferred", host)
    else:
        logger.warning("no IPv6 address found for %s; an IPv6-only server will be unreachable", host)
    return diagnosis
