import asyncio
import logging
import random
import sys
from typing import Awaitable, Callable, List, Optional, Set, Union

import httpx
from aiokafka import AIOKafkaProducer

from log_analytics.config import API_BASE_URL, KAFKA_BOOTSTRAP_SERVERS, KAFKA_CLIENT_ID, configure_logging
from log_analytics.models import APILogEvent, SystemMetricEvent
from log_analytics.readiness import check_http_health, wait_until_ready
from log_analytics.signals import run_until_shutdown
from log_analytics.tasks import cancel_all, spawn_tracked
from log_analytics.topics import Topic, check_broker, ensure_topics, make_admin_client

PROBE_ENDPOINTS = ["/", "/users", "/products", "/orders"]
PROBE_TIMEOUT_SECONDS = 3.0

LOG_INTERVAL_SECONDS = 1.0
METRICS_INTERVAL_SECONDS = 5.0


def _describe(exc: Exception) -> str:
    return str(exc) or exc.__class__.__name__


class LogProducer:
    """Samples the demo API and publishes log/metric events.

    `http` is an httpx.AsyncClient whose base_url points at the demo API;
    `publisher` is anything with an aiokafka-style `send_and_wait(topic, value)`.
    """

    def __init__(self, http: httpx.AsyncClient, publisher, rng: Optional[random.Random] = None,
                 endpoints: Optional[List[str]] = None):
        self.http = http
        self.publisher = publisher
        self.rng = rng or random.Random()
        self.endpoints = endpoints or PROBE_ENDPOINTS
        self._tasks: Set[asyncio.Task] = set()

    def _response_time(self, response: httpx.Response) -> float:
        header = response.headers.get("x-response-time")
        if header:
            try:
                return float(header.strip().removesuffix("ms"))
            except ValueError:
                logging.warning(f"Ignoring unparsable X-Response-Time header: {header!r}")
        return float(self.rng.randint(50, 249))

    async def _publish(self, topic: Topic, event: Union[APILogEvent, SystemMetricEvent]) -> bool:
        try:
            await self.publisher.send_and_wait(topic.value, event.to_json())
            return True
        except Exception as e:
            logging.error(f"Failed to publish to {topic.value}: {e}")
            return False

    async def probe_and_emit(self) -> APILogEvent:
        endpoint = self.rng.choice(self.endpoints)
        logging.info(f"Probing API endpoint: {endpoint}")

        try:
            response = await self.http.get(endpoint, timeout=PROBE_TIMEOUT_SECONDS)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            event = APILogEvent.failure(_describe(e), str(e.response.status_code))
        except httpx.TimeoutException as e:
            event = APILogEvent.failure(_describe(e), "TIMEOUT")
        except httpx.HTTPError as e:
            event = APILogEvent.failure(_describe(e), "CONNECTION_ERROR")
        else:
            event = APILogEvent.success(endpoint, response.status_code, self._response_time(response))

        if await self._publish(Topic.API_LOGS, event):
            kind = "error log" if event.error else "API log"
            logging.info(f"Sent {kind} to Kafka")
        return event

    async def emit_metrics_sample(self) -> SystemMetricEvent:
        event = SystemMetricEvent.sample(self.rng)
        if await self._publish(Topic.SYSTEM_METRICS, event):
            logging.info("Sent system metrics to Kafka")
        return event

    def _spawn(self, callback: Callable[[], Awaitable[object]]) -> None:
        spawn_tracked(self._tasks, callback(), getattr(callback, "__name__", "timer callback"))

    async def _every(self, interval: float, callback: Callable[[], Awaitable[object]]) -> None:
        # Fixed rate: a slow callback does not delay the next tick, and ticks may overlap.
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            next_tick += interval
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            self._spawn(callback)

    async def run(self, log_interval: float = LOG_INTERVAL_SECONDS,
                  metrics_interval: float = METRICS_INTERVAL_SECONDS) -> None:
        """Run both timers until cancelled."""
        try:
            await asyncio.gather(
                self._every(log_interval, self.probe_and_emit),
                self._every(metrics_interval, self.emit_metrics_sample),
            )
        finally:
            await cancel_all(self._tasks)


async def run_producer(http: Optional[httpx.AsyncClient] = None) -> None:
    """Wait for Kafka and the demo API, ensure topics, then emit until a shutdown signal."""
    async with (http or httpx.AsyncClient(base_url=API_BASE_URL)) as http:
        await wait_until_ready(check_broker, "Kafka")
        await wait_until_ready(lambda: check_http_health(http), "API server")

        admin = make_admin_client()
        try:
            await admin.start()
            await ensure_topics(admin)
        except Exception as e:
            logging.critical(f"FATAL: Topic setup failed: {e}")
            raise
        finally:
            await admin.close()

        kafka = AIOKafkaProducer(bootstrap_servers=KAFKA_BOOTSTRAP_SERVERS,
                                 client_id=KAFKA_CLIENT_ID or "log-producer")
        logging.info("Connecting to Kafka")
        await kafka.start()
        logging.info("Connected to Kafka")

        try:
            await run_until_shutdown(LogProducer(http, kafka).run(), "producer")
        finally:
            await kafka.stop()
            logging.info("Disconnected from Kafka")


def main() -> None:
    configure_logging()
    try:
        asyncio.run(run_producer())
    except Exception as e:
        logging.error(f"Error in main: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
