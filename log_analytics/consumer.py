import asyncio
import logging
import sys
from typing import Dict, Optional, Type, Union

from aiokafka import AIOKafkaConsumer
from pydantic import BaseModel, ValidationError

from log_analytics.config import (
    KAFKA_BOOTSTRAP_SERVERS,
    KAFKA_CLIENT_ID,
    KAFKA_CONSUMER_GROUP,
    DatabaseSettings,
    configure_logging,
)
from log_analytics.models import APILogEvent, SystemMetricEvent
from log_analytics.readiness import wait_until_ready
from log_analytics.signals import run_until_shutdown
from log_analytics.store import LogStore
from log_analytics.topics import ALL_TOPICS, Topic, check_broker, ensure_topics, make_admin_client

TOPIC_MODELS: Dict[str, Type[BaseModel]] = {
    Topic.API_LOGS.value: APILogEvent,
    Topic.SYSTEM_METRICS.value: SystemMetricEvent,
}


class LogConsumer:
    """Materialises broker messages into api_logs / system_metrics rows.

    Every failure is contained to the message that caused it: unparsable
    messages and failed inserts are logged and dropped, never retried.
    """

    def __init__(self, store: LogStore, consumer: Optional[AIOKafkaConsumer] = None):
        self.store = store
        self.consumer = consumer

    def parse(self, topic: str, value: Optional[bytes]) -> Optional[Union[APILogEvent, SystemMetricEvent]]:
        model = TOPIC_MODELS.get(topic)
        if model is None:
            logging.warning(f"Ignoring message from unknown topic {topic}")
            return None
        if value is None:
            logging.error(f"Error processing message: empty value on topic {topic}")
            return None
        try:
            return model.model_validate_json(value)
        except ValidationError as e:
            logging.error(f"Error processing message from topic {topic}: {e}")
            return None

    async def handle_message(self, topic: str, value: Optional[bytes], partition: int = 0) -> bool:
        """Store one message. Returns True when a row was written."""
        event = self.parse(topic, value)
        if event is None:
            return False
        logging.info(f"Received message from topic {topic} (partition {partition})")

        try:
            if isinstance(event, APILogEvent):
                await asyncio.to_thread(self.store.insert_api_log, event)
                logging.info("API log stored in database")
            else:
                await asyncio.to_thread(self.store.insert_system_metric, event)
                logging.info("System metrics stored in database")
        except Exception as e:
            logging.error(f"Error storing message from topic {topic}: {e}")
            return False
        return True

    async def run(self) -> None:
        if self.consumer is None:
            raise RuntimeError("LogConsumer.run() needs a started broker consumer")
        async for message in self.consumer:
            await self.handle_message(message.topic, message.value, message.partition)


async def run_consumer() -> None:
    settings = DatabaseSettings.from_env()
    store = LogStore(settings.dsn)
    kafka: Optional[AIOKafkaConsumer] = None
    try:
        await wait_until_ready(lambda: asyncio.to_thread(store.ping), "PostgreSQL")
        await wait_until_ready(check_broker, "Kafka")

        try:
            logging.info("Initializing database...")
            await asyncio.to_thread(store.init_schema)
        except Exception as e:
            logging.critical(f"FATAL: Database initialization failed: {e}")
            raise

        admin = make_admin_client()
        try:
            await admin.start()
            await ensure_topics(admin)
        except Exception as e:
            logging.critical(f"FATAL: Topic setup failed: {e}")
            raise
        finally:
            await admin.close()

        kafka = AIOKafkaConsumer(
            *ALL_TOPICS,
            bootstrap_servers=KAFKA_BOOTSTRAP_SERVERS,
            group_id=KAFKA_CONSUMER_GROUP,
            client_id=KAFKA_CLIENT_ID or "log-consumer",
            auto_offset_reset="earliest",
        )
        logging.info("Connecting to Kafka")
        await kafka.start()
        logging.info(f"Subscribed to topics: {', '.join(ALL_TOPICS)}")

        await run_until_shutdown(LogConsumer(store, kafka).run(), "consumer")
    finally:
        if kafka is not None:
            await kafka.stop()
        store.close()
        logging.info("Gracefully disconnected from services")


def main() -> None:
    configure_logging()
    try:
        asyncio.run(run_consumer())
    except Exception as e:
        logging.error(f"Error in main: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
