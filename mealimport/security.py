from ipaddress import ip_address
from socket import gaierror, getaddrinfo
from urllib.parse import urlparse

from mealimport.errors import UnsafeUrlError

MAX_URL_LENGTH = 2048

BLOCKED_HOSTNAMES = {"localhost", "localhost.localdomain", "metadata.google.internal"}
BLOCKED_SUFFIXES = (".local", ".localhost", ".internal")


def _is_blocked_address(addr) -> bool:
    if getattr(addr, "ipv4_mapped", None) is not None:
        addr = addr.ipv4_mapped
    return (
        addr.is_private
        or addr.is_loopback
        or addr.is_link_local
        or addr.is_reserved
        or addr.is_multicast
        or addr.is_unspecified
    )


def is_private_or_local_host(hostname: str) -> bool:
    host = (hostname or "").strip().lower().rstrip(".")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if not host:
        return True
    if host in BLOCKED_HOSTNAMES or host.endswith(BLOCKED_SUFFIXES):
        return True

    try:
        return _is_blocked_address(ip_address(host))
    except ValueError:
        pass

    try:
        infos = getaddrinfo(host, None)
    except gaierror:
        # Unresolvable hosts fail at fetch time instead.
        return False
    except Exception:
        return True

    for info in infos:
        try:
            parsed = ip_address(info[4][0].split("%", 1)[0])
        except ValueError:
            continue
        if _is_blocked_address(parsed):
            return True
    return False


def validate_public_url(url: str, allow_private: bool = False) -> str:
    candidate = (url or "").strip()
    if not candidate:
        raise UnsafeUrlError("Missing required field: url")
    if len(candidate) > MAX_URL_LENGTH:
        raise UnsafeUrlError("URL is too long.")

    try:
        parsed = urlparse(candidate)
        hostname = parsed.hostname
        parsed.port
    except ValueError as exc:
        raise UnsafeUrlError("Invalid URL.") from exc

    if not parsed.scheme:
        raise UnsafeUrlError("Invalid URL.")
    if parsed.scheme.lower() not in {"http", "https"}:
        raise UnsafeUrlError("URL must start with http:// or https://")
    if not parsed.netloc or not hostname:
        raise UnsafeUrlError("Invalid URL.")
    if parsed.username or parsed.password:
        raise UnsafeUrlError("URLs with embedded credentials are not allowed.")
    if not allow_private and is_private_or_local_host(hostname):
        raise UnsafeUrlError("Private or local network URLs are not allowed.")

    return parsed.geturl()
