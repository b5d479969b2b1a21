"""
Proxy-aware request transport helpers: client IP, host and scheme.

Forwarded headers are only honoured when TRUST_PROXY_HEADERS is on and
the direct peer is one of TRUSTED_PROXY_IPS.
"""

from __future__ import annotations

from ipaddress import ip_address, ip_network
from typing import Iterable

from starlette.requests import HTTPConnection

from tracker.core.config import settings


def _canonical_ip(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return str(ip_address(value.strip()))
    except ValueError:
        return None


def is_ip_literal(value: str | None) -> bool:
    return bool(value) and _canonical_ip(value.strip("[]")) is not None


def _trusted_networks(entries: Iterable[str]) -> list:
    networks = []
    for entry in entries:
        try:
            networks.append(ip_network(entry, strict=False))
        except ValueError:
            continue
    return networks


def _peer(request: HTTPConnection) -> str | None:
    return _canonical_ip(request.client.host if request.client else None)


def _trusts_forwarded_headers(request: HTTPConnection) -> bool:
    if not settings.TRUST_PROXY_HEADERS:
        return False
    peer = _peer(request)
    if peer is None:
        return False
    return any(ip_address(peer) in net for net in _trusted_networks(settings.TRUSTED_PROXY_IPS))


def _client_from_forwarded_for(value: str) -> str | None:
    # Prefer the left-most public address; fall back to the left-most valid one.
    addresses = [ip for ip in map(_canonical_ip, value.split(",")) if ip]
    public = [ip for ip in addresses if ip_address(ip).is_global]
    return (public or addresses or [None])[0]


def extract_client_ip(request: HTTPConnection) -> str | None:
    """
    The caller's address. Forwarded headers count only when they came
    through a trusted proxy.
    """
    if _trusts_forwarded_headers(request):
        for header in settings.TRUSTED_IP_HEADERS:
            raw = request.headers.get(header)
            if not raw:
                continue
            if header.lower() == "x-forwarded-for":
                candidate = _client_from_forwarded_for(raw)
            else:
                candidate = _canonical_ip(raw.split(",")[0])
            if candidate:
                return candidate
    return _peer(request)


def normalize_host(raw: str | None) -> str | None:
    """
    Lower-case a Host header value and strip any port and trailing dot.
    """
    if not raw:
        return None
    host = raw.strip().lower()
    if host.startswith("["):
        # IPv6 literal, e.g. [::1]:8000
        end = host.find("]")
        return host[: end + 1] if end != -1 else None
    if ":" in host:
        host = host.split(":", 1)[0]
    host = host.rstrip(".")
    return host or None


def extract_host(request: HTTPConnection) -> str | None:
    if _trusts_forwarded_headers(request):
        forwarded = request.headers.get("X-Forwarded-Host")
        if forwarded:
            return normalize_host(forwarded.split(",")[0])
    return normalize_host(request.headers.get("host"))


def is_secure_request(request: HTTPConnection) -> bool:
    if _trusts_forwarded_headers(request):
        proto = request.headers.get("X-Forwarded-Proto")
        if proto:
            return proto.split(",")[0].strip().lower() in {"https", "wss"}
    return request.url.scheme in {"https", "wss"}
