import logging
import os
from typing import Optional

from pydantic import BaseModel

# KAFKA
KAFKA_BOOTSTRAP_SERVERS = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "kafka:29092")
KAFKA_CONSUMER_GROUP = os.getenv("KAFKA_CONSUMER_GROUP", "log-processor")
# Unset: each process uses its own default id (log-producer, log-consumer).
KAFKA_CLIENT_ID = os.getenv("KAFKA_CLIENT_ID") or None

# DEMO API
API_BASE_URL = os.getenv("API_BASE_URL", "http://api:3000")
API_PORT = int(os.getenv("API_PORT", "3000"))

# STARTUP
READINESS_BACKOFF_SECONDS = float(os.getenv("READINESS_BACKOFF_SECONDS", "2"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


class DatabaseSettings(BaseModel):
    host: str = "postgres"
    port: int = 5432
    user: str = "admin"
    password: str = "password"
    database: str = "logs"
    url: Optional[str] = None

    @classmethod
    def from_env(cls, default_host: str = "postgres") -> "DatabaseSettings":
        return cls(
            host=os.getenv("DB_HOST", default_host),
            port=int(os.getenv("DB_PORT", "5432")),
            user=os.getenv("DB_USER", "admin"),
            password=os.getenv("DB_PASSWORD", "password"),
            database=os.getenv("DB_NAME", "logs"),
            url=os.getenv("DATABASE_URL") or None,
        )

    @property
    def dsn(self) -> str:
        if self.url:
            return self.url
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
