"""Startup ordering and shutdown of the producer and consumer processes.

Every external client is replaced: the readiness checks, the admin client,
the Kafka producer/consumer classes and the store. Each fake appends to a
shared `events` list so the order of calls can be asserted.
"""

import asyncio
import functools
import json
import signal
import sys
from types import SimpleNamespace

import httpx
import pytest

from conftest import FakeAdmin, FakePublisher, FakeStore
from log_analytics import consumer as consumer_module
from log_analytics import producer as producer_module
from log_analytics.readiness import wait_until_ready

API_LOG = {"timestamp": "2024-05-01T12:00:00.000Z", "endpoint": "/users", "status": 200,
           "responseTime": 42, "method": "GET"}


async def no_sleep(seconds):
    await asyncio.sleep(0)


def instant_retries(monkeypatch, module):
    monkeypatch.setattr(module, "wait_until_ready", functools.partial(wait_until_ready, sleep=no_sleep))


def flaky_check(events, name, failures):
    attempts = []

    async def check():
        attempts.append(name)
        events.append(f"{name}.check")
        if len(attempts) <= failures:
            raise ConnectionError(f"{name} unavailable")

    return check


class FakeKafkaProducer(FakePublisher):
    def __init__(self, events, on_first_send=None, **config):
        super().__init__()
        self.events = events
        self.config = config
        self.on_first_send = on_first_send

    async def start(self):
        self.events.append("kafka.start")

    async def stop(self):
        self.events.append("kafka.stop")

    async def send_and_wait(self, topic, value):
        await super().send_and_wait(topic, value)
        self.events.append(f"send:{topic}")
        if self.on_first_send is not None:
            callback, self.on_first_send = self.on_first_send, None
            callback()


class FakeKafkaConsumer:
    """Yields the given messages, then idles like a live subscription."""

    def __init__(self, events, topics, messages, **config):
        self.events = events
        self.topics = topics
        self.messages = messages
        self.config = config

    async def start(self):
        self.events.append("kafka.start")

    async def stop(self):
        self.events.append("kafka.stop")

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for topic, value in self.messages:
            yield SimpleNamespace(topic=topic, value=value, partition=0)
        await asyncio.Event().wait()


class LifecycleStore(FakeStore):
    def __init__(self, events, dsn, ping_failures=0):
        super().__init__()
        self.events = events
        self.dsn = dsn
        self.ping_failures = ping_failures

    def ping(self):
        self.events.append("store.ping")
        if self.ping_failures:
            self.ping_failures -= 1
            raise RuntimeError("could not connect to server")

    def init_schema(self):
        self.events.append("store.init_schema")

    def insert_api_log(self, event):
        self.events.append("store.insert")
        return super().insert_api_log(event)

    def close(self):
        self.events.append("store.close")


# --- PRODUCER ---


@pytest.mark.asyncio
@pytest.mark.skipif(sys.platform == "win32", reason="needs loop signal handlers")
async def test_producer_waits_for_broker_and_api_then_stops_on_sigterm(monkeypatch):
    events = []
    health_calls = []

    def handler(request):
        if request.url.path == "/health":
            health_calls.append(request)
            events.append("api.health")
            return httpx.Response(503 if len(health_calls) == 1 else 200, json={"status": "UP"})
        events.append("probe")
        return httpx.Response(200, headers={"X-Response-Time": "12.000ms"})

    admin = FakeAdmin(events=events)
    kafka_clients = []

    def make_kafka(**config):
        client = FakeKafkaProducer(events, on_first_send=lambda: signal.raise_signal(signal.SIGTERM), **config)
        kafka_clients.append(client)
        return client

    original_run = producer_module.LogProducer.run
    instant_retries(monkeypatch, producer_module)
    monkeypatch.setattr(producer_module, "check_broker", flaky_check(events, "broker", failures=1))
    monkeypatch.setattr(producer_module, "make_admin_client", lambda: admin)
    monkeypatch.setattr(producer_module, "AIOKafkaProducer", make_kafka)
    monkeypatch.setattr(producer_module, "KAFKA_CLIENT_ID", None)
    monkeypatch.setattr(producer_module.LogProducer, "run", lambda self: original_run(self, 0.01, 0.01))

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://api.test")
    await asyncio.wait_for(producer_module.run_producer(http), timeout=5)

    assert events[:8] == [
        "broker.check", "broker.check",
        "api.health", "api.health",
        "admin.start", "admin.create_topics", "admin.close",
        "kafka.start",
    ]
    assert any(e.startswith("send:") for e in events)
    assert events[-1] == "kafka.stop"
    assert sorted(admin.topics) == ["api-logs", "system-metrics"]
    assert kafka_clients[0].config["client_id"] == "log-producer"


@pytest.mark.asyncio
async def test_producer_topic_setup_failure_is_fatal(monkeypatch, caplog):
    class BrokenAdmin(FakeAdmin):
        async def list_topics(self):
            raise RuntimeError("cluster authorization failed")

    events = []
    admin = BrokenAdmin(events=events)
    instant_retries(monkeypatch, producer_module)
    monkeypatch.setattr(producer_module, "check_broker", flaky_check(events, "broker", failures=0))
    monkeypatch.setattr(producer_module, "make_admin_client", lambda: admin)
    monkeypatch.setattr(producer_module, "AIOKafkaProducer", lambda **config: pytest.fail("producer started"))

    http = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)),
                             base_url="http://api.test")
    with pytest.raises(RuntimeError):
        await producer_module.run_producer(http)

    assert events[-1] == "admin.close"
    assert "FATAL: Topic setup failed" in caplog.text


# --- CONSUMER ---


@pytest.mark.asyncio
async def test_consumer_waits_for_store_and_broker_then_cleans_up_on_cancel(monkeypatch):
    events = []
    consumers = []

    def make_kafka(*topics, **config):
        client = FakeKafkaConsumer(events, topics, [("api-logs", json.dumps(API_LOG).encode("utf-8"))], **config)
        consumers.append(client)
        return client

    instant_retries(monkeypatch, consumer_module)
    monkeypatch.setattr(consumer_module, "LogStore", lambda dsn: LifecycleStore(events, dsn, ping_failures=2))
    monkeypatch.setattr(consumer_module, "check_broker", flaky_check(events, "broker", failures=1))
    monkeypatch.setattr(consumer_module, "make_admin_client", lambda: FakeAdmin(events=events))
    monkeypatch.setattr(consumer_module, "AIOKafkaConsumer", make_kafka)
    monkeypatch.setattr(consumer_module, "KAFKA_CLIENT_ID", "analytics-test")

    task = asyncio.create_task(consumer_module.run_consumer())
    for _ in range(500):
        if "store.insert" in events:
            break
        await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert events == [
        "store.ping", "store.ping", "store.ping",
        "broker.check", "broker.check",
        "store.init_schema",
        "admin.start", "admin.create_topics", "admin.close",
        "kafka.start",
        "store.insert",
        "kafka.stop",
        "store.close",
    ]
    kafka = consumers[0]
    assert kafka.topics == ("api-logs", "system-metrics")
    assert kafka.config["group_id"] == "log-processor"
    assert kafka.config["auto_offset_reset"] == "earliest"
    assert kafka.config["client_id"] == "analytics-test"


@pytest.mark.asyncio
async def test_consumer_schema_failure_is_fatal_and_closes_store(monkeypatch, caplog):
    events = []

    class BrokenSchemaStore(LifecycleStore):
        def init_schema(self):
            raise RuntimeError("permission denied for schema public")

    instant_retries(monkeypatch, consumer_module)
    monkeypatch.setattr(consumer_module, "LogStore", lambda dsn: BrokenSchemaStore(events, dsn))
    monkeypatch.setattr(consumer_module, "check_broker", flaky_check(events, "broker", failures=0))
    monkeypatch.setattr(consumer_module, "AIOKafkaConsumer", lambda *topics, **config: pytest.fail("subscribed"))

    with pytest.raises(RuntimeError):
        await consumer_module.run_consumer()

    assert events == ["store.ping", "broker.check", "store.close"]
    assert "FATAL: Database initialization failed" in caplog.text
