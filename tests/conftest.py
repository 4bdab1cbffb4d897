"""Shared fakes for the broker, admin client and store."""

import pytest

from aiokafka.errors import TopicAlreadyExistsError


class FakePublisher:
    """Stands in for AIOKafkaProducer: records every send_and_wait call."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send_and_wait(self, topic, value):
        if self.fail:
            raise ConnectionError("broker unavailable")
        self.sent.append((topic, value))


class FakeAdmin:
    """Stands in for AIOKafkaAdminClient."""

    def __init__(self, existing=(), race=False, events=None):
        self.topics = list(existing)
        self.create_calls = []
        self.race = race
        self.events = events if events is not None else []

    async def start(self):
        self.events.append("admin.start")

    async def close(self):
        self.events.append("admin.close")

    async def list_topics(self):
        return list(self.topics)

    async def create_topics(self, new_topics):
        self.create_calls.append([t.name for t in new_topics])
        self.events.append("admin.create_topics")
        if self.race:
            raise TopicAlreadyExistsError()
        for topic in new_topics:
            if topic.name in self.topics:
                raise TopicAlreadyExistsError()
            self.topics.append(topic.name)


class FakeStore:
    """In-memory replacement for LogStore's write side."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.api_logs = []
        self.system_metrics = []

    def insert_api_log(self, event):
        if self.fail:
            raise RuntimeError("connection to server was lost")
        self.api_logs.append(event)
        return len(self.api_logs)

    def insert_system_metric(self, event):
        if self.fail:
            raise RuntimeError("connection to server was lost")
        self.system_metrics.append(event)
        return len(self.system_metrics)


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def failing_publisher():
    return FakePublisher(fail=True)


@pytest.fixture
def fake_store():
    return FakeStore()
