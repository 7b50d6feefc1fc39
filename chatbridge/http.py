"""Shared ``httpx.AsyncClient`` pool, one client per provider and event loop.

Clients are created on first use and reused by every call to the same
provider on the same loop; they are safe to share between concurrent
requests. A client is bound to the loop it was created on, so a new loop
(e.g. a second ``asyncio.run``) gets fresh clients and entries of closed loops
are dropped. Timeouts come from ``Settings``: a long idle read timeout for slow
reasoning models, and a transport that re-attempts connection establishment
while the network is unavailable.
"""
import asyncio
import logging
import threading
from typing import Dict, Optional, Tuple

import httpx

from .config import Settings
from .types import Provider

logger = logging.getLogger(__name__)

_PoolKey = Tuple[Optional[asyncio.AbstractEventLoop], Provider]

_CLIENTS: Dict[_PoolKey, httpx.AsyncClient] = {}
_LOCK = threading.Lock()


def build_timeout(settings: Settings) -> httpx.Timeout:
    return httpx.Timeout(
        settings.request_timeout,
        connect=settings.connect_timeout,
        read=settings.request_timeout,
    )


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    """Create a new client configured from ``settings``."""
    transport = httpx.AsyncHTTPTransport(retries=settings.connect_retries)
    return httpx.AsyncClient(timeout=build_timeout(settings), transport=transport)


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _drop_closed_loops() -> None:
    for key in [k for k in _CLIENTS if k[0] is not None and k[0].is_closed()]:
        del _CLIENTS[key]


def get_http_client(provider: Provider, settings: Optional[Settings] = None) -> httpx.AsyncClient:
    """
    Return the pooled client for ``provider`` on the running loop, creating it if needed.

    The settings only matter for the first call per provider and loop.
    """
    key = (_running_loop(), provider)
    with _LOCK:
        _drop_closed_loops()
        client = _CLIENTS.get(key)
        if client is None or client.is_closed:
            client = create_http_client(settings or Settings())
            _CLIENTS[key] = client
            logger.debug("created HTTP client for %s", provider.value)
        return client


async def aclose_all() -> None:
    """Close and forget the pooled clients of the running loop."""
    loop = _running_loop()
    with _LOCK:
        keys = [k for k in _CLIENTS if k[0] is loop or k[0] is None]
        clients = [_CLIENTS.pop(k) for k in keys]
        _drop_closed_loops()
    for client in clients:
        await client.aclose()
