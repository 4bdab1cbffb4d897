import enum
import logging
from typing import Callable, List

from aiokafka.admin import AIOKafkaAdminClient, NewTopic
from aiokafka.errors import TopicAlreadyExistsError

from log_analytics.config import KAFKA_BOOTSTRAP_SERVERS


class Topic(str, enum.Enum):
    API_LOGS = "api-logs"
    SYSTEM_METRICS = "system-metrics"


ALL_TOPICS: List[str] = [t.value for t in Topic]

# Single-broker demo: one partition, no replication.
NUM_PARTITIONS = 1
REPLICATION_FACTOR = 1


def make_admin_client(bootstrap_servers: str = KAFKA_BOOTSTRAP_SERVERS, client_id: str = "log-admin") -> AIOKafkaAdminClient:
    return AIOKafkaAdminClient(bootstrap_servers=bootstrap_servers, client_id=client_id)


async def ensure_topics(admin) -> List[str]:
    """Create whichever of the fixed topics are missing. Returns the created names.

    `admin` must already be started.
    """
    existing = set(await admin.list_topics())
    missing = [name for name in ALL_TOPICS if name not in existing]
    if not missing:
        logging.info("All topics already exist")
        return []

    logging.info(f"Creating topics: {', '.join(missing)}")
    try:
        await admin.create_topics([
            NewTopic(name=name, num_partitions=NUM_PARTITIONS, replication_factor=REPLICATION_FACTOR)
            for name in missing
        ])
    except TopicAlreadyExistsError:
        # Another process created them between list and create.
        logging.info("Topics were created concurrently, nothing to do")
        return []
    logging.info("Topics created successfully")
    return missing


async def check_broker(admin_factory: Callable[[], AIOKafkaAdminClient] = make_admin_client) -> None:
    """Raise unless the broker accepts an admin connection."""
    admin = admin_factory()
    try:
        await admin.start()
    finally:
        await admin.close()
