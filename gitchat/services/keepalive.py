"""
Periodic self-ping so idle hosting platforms don't suspend the process.
"""

import asyncio
import logging

import httpx

from gitchat.settings import settings

logger = logging.getLogger(__name__)


async def ping_server(url: str, client: httpx.AsyncClient) -> bool:
    """GET ``url`` once; returns True on a 2xx response."""
    try:
        response = await client.get(url, timeout=settings.keepalive_timeout_seconds)
    except httpx.HTTPError as e:
        logger.warning("Keepalive ping to %s failed: %s", url, e)
        return False

    if response.is_success:
        logger.debug("Keepalive ping ok: %s", response.status_code)
        return True

    logger.warning("Keepalive ping returned %s", response.status_code)
    return False


async def keepalive_loop(
    url: str,
    interval: float,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    """Ping ``url`` every ``interval`` seconds until cancelled."""
    async with httpx.AsyncClient(transport=transport) as client:
        while True:
            await asyncio.sleep(interval)
            await ping_server(url, client)


def start_keepalive() -> asyncio.Task | None:
    if not settings.keepalive_url:
        return None
    logger.info("Keepalive enabled: %s every %ss", settings.keepalive_url, settings.keepalive_interval_seconds)
    return asyncio.create_task(
        keepalive_loop(settings.keepalive_url, settings.keepalive_interval_seconds)
    )
