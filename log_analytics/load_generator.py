import asyncio
import logging
import random
import sys
import time
from dataclasses import dataclass
from typing import List, Optional, Set

import httpx

from log_analytics.config import API_BASE_URL, configure_logging
from log_analytics.readiness import check_http_health, wait_until_ready
from log_analytics.tasks import cancel_all, spawn_tracked

REQUEST_TIMEOUT_SECONDS = 5.0
BURST_INTERVAL_SECONDS = 1.0
MIN_BURST, MAX_BURST = 1, 5


@dataclass(frozen=True)
class TargetRequest:
    method: str
    path: str
    json: Optional[dict] = None


TARGETS: List[TargetRequest] = [
    TargetRequest("GET", "/"),
    TargetRequest("GET", "/users"),
    TargetRequest("GET", "/products"),
    TargetRequest("GET", "/orders"),
    TargetRequest("GET", "/orders/1"),
    TargetRequest("GET", "/orders/2"),
    TargetRequest("GET", "/orders/3"),
    TargetRequest("GET", "/health"),
    TargetRequest("GET", "/error"),  # always answers 500
    TargetRequest("POST", "/orders", {"user_id": 1, "product_id": 2, "quantity": 1}),
    TargetRequest("POST", "/orders", {"user_id": 2, "product_id": 1, "quantity": 3}),
]


class LoadGenerator:
    def __init__(self, http: httpx.AsyncClient, rng: Optional[random.Random] = None,
                 targets: Optional[List[TargetRequest]] = None):
        self.http = http
        self.rng = rng or random.Random()
        self.targets = targets or TARGETS
        self._tasks: Set[asyncio.Task] = set()

    async def send_one(self) -> Optional[int]:
        """Fire one random request. Returns the status code, or None if there was no answer."""
        target = self.rng.choice(self.targets)
        logging.info(f"Sending request to {target.method} {target.path}")
        start = time.monotonic()
        try:
            response = await self.http.request(
                target.method, target.path, json=target.json, timeout=REQUEST_TIMEOUT_SECONDS
            )
        except httpx.HTTPError as e:
            duration_ms = (time.monotonic() - start) * 1000
            logging.error(
                f"Request failed: {target.method} {target.path} after {duration_ms:.0f}ms: "
                f"{str(e) or e.__class__.__name__}"
            )
            return None

        duration_ms = (time.monotonic() - start) * 1000
        if response.is_success:
            logging.info(f"Response received: {response.status_code} from {target.path} in {duration_ms:.0f}ms")
        else:
            logging.error(f"Request failed: {response.status_code} from {target.path} in {duration_ms:.0f}ms")
        return response.status_code

    def burst(self) -> int:
        """Start a burst of 1-5 concurrent requests without waiting for them."""
        count = self.rng.randint(MIN_BURST, MAX_BURST)
        for _ in range(count):
            spawn_tracked(self._tasks, self.send_one(), "send_one")
        return count

    async def run(self, interval: float = BURST_INTERVAL_SECONDS) -> None:
        logging.info("Starting load generation")
        try:
            while True:
                self.burst()
                await asyncio.sleep(interval)
        finally:
            await cancel_all(self._tasks)


async def run_load_generator() -> None:
    async with httpx.AsyncClient(base_url=API_BASE_URL) as http:
        await wait_until_ready(lambda: check_http_health(http), "API server")
        await LoadGenerator(http).run()


def main() -> None:
    configure_logging()
    try:
        asyncio.run(run_load_generator())
    except KeyboardInterrupt:
        logging.info("Load generation stopped")
    except Exception as e:
        logging.error(f"Error in main: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
