from __future__ import annotations
import re

_AUTHORITY_END = re.compile(r"[/?#]")

def host_from_url(url: str) -> str | None:
    """
    Pull the bare host out of a scheme://host[:port]/path URL.
    Userinfo and port are dropped, IPv6 literals lose their brackets.
    Returns None when there is no scheme separator or no host.
    """
    _, sep, rest = url.partition("://")
    if not sep:
        return None

    authority = _AUTHORITY_END.split(rest, maxsplit=1)[0]
    if "@" in authority:
        authority = authority.rsplit("@", 1)[1]

    if authority.startswith("["):
        end = authority.find("]")
        if end == -1:
            return None
        host = authority[1:end]
    elif authority.count(":") == 1:
        host = authority.split(":", 1)[0]
    else:
        # bare host, or an unbracketed IPv6 literal
        host = authority

    return host or None
