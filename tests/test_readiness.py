import httpx
import pytest

from log_analytics.readiness import check_http_health, wait_until_ready


class Dependency:
    def __init__(self, not_ready_for):
        self.not_ready_for = not_ready_for
        self.calls = 0

    async def check(self):
        self.calls += 1
        if self.calls <= self.not_ready_for:
            raise ConnectionRefusedError("connection refused")


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds):
        sleeps.append(seconds)
    return _sleep


@pytest.mark.asyncio
async def test_ready_immediately_does_not_sleep(fake_sleep, sleeps):
    dep = Dependency(not_ready_for=0)
    assert await wait_until_ready(dep.check, "PostgreSQL", sleep=fake_sleep) == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_retries_with_fixed_backoff_until_ready(fake_sleep, sleeps):
    dep = Dependency(not_ready_for=5)

    attempts = await wait_until_ready(dep.check, "PostgreSQL", backoff=2, sleep=fake_sleep)

    assert attempts == 6
    assert sleeps == [2] * 5


@pytest.mark.asyncio
async def test_bounded_wait_reraises_last_error(fake_sleep, sleeps):
    dep = Dependency(not_ready_for=10)

    with pytest.raises(ConnectionRefusedError):
        await wait_until_ready(dep.check, "Kafka", sleep=fake_sleep, max_attempts=3)

    assert dep.calls == 3
    assert len(sleeps) == 2


@pytest.mark.asyncio
async def test_http_health_check():
    def handler(request):
        if request.url.path == "/health":
            return httpx.Response(200, json={"status": "UP"})
        return httpx.Response(404)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://api.test") as client:
        await check_http_health(client)
        with pytest.raises(httpx.HTTPStatusError):
            await check_http_health(client, path="/missing")
