import datetime
import random
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class APILogEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    timestamp: datetime.datetime = Field(..., description="Time the probe was issued.")
    endpoint: Optional[str] = Field(None, description="Probed path. Missing when the probe failed.")
    status: Optional[int] = Field(None, description="HTTP status observed on a successful probe.")
    response_time: Optional[float] = Field(None, alias="responseTime", description="Elapsed milliseconds.")
    method: str = Field("GET", description="HTTP verb used for the probe.")
    error: Optional[str] = Field(None, description="Failure message of a failed probe.")
    error_code: Optional[str] = Field(None, alias="errorCode", description="HTTP status or failure class of a failed probe.")

    @field_validator("error_code", mode="before")
    @classmethod
    def error_code_as_text(cls, value: Union[int, str, None]) -> Optional[str]:
        # Producers may send the HTTP status as a bare number.
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @classmethod
    def success(cls, endpoint: str, status: int, response_time: float) -> "APILogEvent":
        return cls(
            timestamp=utc_now(),
            endpoint=endpoint,
            status=status,
            response_time=response_time,
            method="GET",
        )

    @classmethod
    def failure(cls, error: str, error_code: str) -> "APILogEvent":
        return cls(timestamp=utc_now(), error=error, error_code=error_code, method="GET")

    def to_json(self) -> bytes:
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")


class SystemMetricEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    timestamp: datetime.datetime = Field(..., description="Time the sample was taken.")
    cpu: float = Field(..., ge=0, le=100, description="CPU utilisation in percent.")
    memory: float = Field(..., ge=0, le=100, description="Memory utilisation in percent.")
    disk_usage: float = Field(..., alias="diskUsage", description="Disk utilisation in percent.")
    active_requests: int = Field(..., ge=0, alias="activeRequests", description="Requests in flight.")

    @classmethod
    def sample(cls, rng: Optional[random.Random] = None) -> "SystemMetricEvent":
        """Synthetic sample: no host is actually measured."""
        rng = rng or random.Random()
        return cls(
            timestamp=utc_now(),
            cpu=rng.random() * 100,
            memory=rng.random() * 100,
            disk_usage=50 + rng.random() * 30,
            active_requests=rng.randrange(50),
        )

    def to_json(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")


class ApiLogRow(BaseModel):
    id: int
    timestamp: datetime.datetime
    endpoint: Optional[str] = None
    status: Optional[int] = None
    response_time: Optional[float] = None
    method: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


class SystemMetricRow(BaseModel):
    id: int
    timestamp: datetime.datetime
    cpu: Optional[float] = None
    memory: Optional[float] = None
    disk_usage: Optional[float] = None
    active_requests: Optional[int] = None
