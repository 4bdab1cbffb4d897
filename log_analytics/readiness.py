import asyncio
import logging
from typing import Awaitable, Callable, Optional

import httpx

from log_analytics.config import READINESS_BACKOFF_SECONDS

Sleep = Callable[[float], Awaitable[None]]


async def wait_until_ready(
    check: Callable[[], Awaitable[object]],
    name: str,
    backoff: float = READINESS_BACKOFF_SECONDS,
    sleep: Sleep = asyncio.sleep,
    max_attempts: Optional[int] = None,
) -> int:
    """Poll `check` until it returns without raising.

    Every exception counts as "not ready yet". With `max_attempts=None` the
    loop never gives up; otherwise the last error is re-raised once the
    attempts are used up. Returns the number of attempts it took.
    """
    logging.info(f"Waiting for {name} to be ready...")
    attempt = 0
    while True:
        attempt += 1
        try:
            await check()
            logging.info(f"{name} is ready")
            return attempt
        except Exception as e:
            if max_attempts is not None and attempt >= max_attempts:
                logging.error(f"{name} still not ready after {attempt} attempts: {e}")
                raise
            logging.info(f"{name} not ready yet, retrying in {backoff:g} seconds...")
            await sleep(backoff)


async def check_http_health(http: httpx.AsyncClient, path: str = "/health", timeout: float = 1.0) -> None:
    """Raise unless `path` answers with a 2xx status."""
    response = await http.get(path, timeout=timeout)
    response.raise_for_status()
