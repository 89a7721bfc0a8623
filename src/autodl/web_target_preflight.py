"""Reachability check for the download page before a browser is started."""

from __future__ import annotations

import socket
from urllib.parse import urlparse

_LOOPBACK_NAMES = {"localhost", "0.0.0.0"}


def _endpoints(url: str) -> list[tuple[str, int]]:
    parsed = urlparse(url)
    host = parsed.hostname or ""
    try:
        port = parsed.port
    except ValueError:
        return []
    if not host:
        return []
    if port is None:
        port = 443 if parsed.scheme == "https" else 80
    if host in _LOOPBACK_NAMES:
        # Local dev servers often bind IPv4 only.
        return [("127.0.0.1", port), ("localhost", port), ("::1", port)]
    return [(host, port)]


def ensure_host_reachable(
    url: str,
    *,
    timeout_seconds: float = 3.0,
    create_connection_fn=socket.create_connection,
) -> tuple[str, int]:
    """Return the first endpoint of ``url`` that accepts a TCP connection."""
    endpoints = _endpoints(url)
    last_exc: Exception | None = None
    for endpoint in endpoints:
        try:
            with create_connection_fn(endpoint, timeout=timeout_seconds):
                return endpoint
        except OSError as exc:
            last_exc = exc
    where = f"{endpoints[0][0]}:{endpoints[0][1]}" if endpoints else "no host"
    raise SystemExit(f"Download page not reachable ({where}): {url}") from last_exc
