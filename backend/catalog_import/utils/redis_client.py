"""Create Redis clients with TLS handling for hosted providers."""

from __future__ import annotations

import ssl
from typing import Any

from redis import Redis

TLS_HOST_SUFFIXES = (".upstash.io",)


def is_tls_url(url: str) -> bool:
    return url.startswith("rediss://") or any(suffix in url for suffix in TLS_HOST_SUFFIXES)


def normalize_redis_url(url: str) -> str:
    """Hosted providers that require TLS are reached via ``rediss://``."""
    if url.startswith("redis://") and any(suffix in url for suffix in TLS_HOST_SUFFIXES):
        return url.replace("redis://", "rediss://", 1)
    return url


def create_redis_client(url: str, **kwargs: Any) -> Redis:
    """Create a Redis client from a URL.

    Args:
        url: Redis connection URL (redis:// or rediss://)
        **kwargs: Additional arguments (decode_responses, socket_connect_timeout, etc.)
    """
    url = normalize_redis_url(url)
    kwargs.setdefault("socket_connect_timeout", 5)
    client = Redis.from_url(url, **kwargs)

    if is_tls_url(url) and hasattr(client.connection_pool, "connection_kwargs"):
        client.connection_pool.connection_kwargs["ssl_cert_reqs"] = ssl.CERT_NONE

    return client
