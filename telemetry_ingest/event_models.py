from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from datetime import datetime, timezone
from typing import Any, Dict
import uuid


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive timestamps as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class InboundEvent(BaseModel):
    """A single machine telemetry report as submitted by the floor."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    event_id: str = Field(..., description="Business key, repeated on retries")
    event_time: datetime = Field(..., description="When the event happened at the source")
    machine_id: str
    factory_id: str
    line_id: str
    # Bounds are enforced by the ingest validator so bad values become rejections
    duration_ms: int
    defect_count: int = Field(..., description="-1 means unknown and is never summed")

    @field_validator("event_time")
    @classmethod
    def _normalize_event_time(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    def business_fields(self) -> Dict[str, Any]:
        return self.model_dump(include=set(InboundEvent.model_fields))


class StoredRecord(InboundEvent):
    """The durable, conflict-resolved state of one business key."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    received_time: datetime
    payload_hash: str

    @field_validator("received_time")
    @classmethod
    def _normalize_received_time(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @classmethod
    def from_inbound(cls, evt: InboundEvent, received_time: datetime, payload_hash: str) -> "StoredRecord":
        return cls(
            **evt.business_fields(),
            received_time=received_time,
            payload_hash=payload_hash,
        )

    def superseded_by(self, evt: InboundEvent, received_time: datetime, payload_hash: str) -> "StoredRecord":
        """Return a copy carrying the new business fields under the same surrogate id."""
        return StoredRecord(
            **evt.business_fields(),
            id=self.id,
            received_time=received_time,
            payload_hash=payload_hash,
        )
