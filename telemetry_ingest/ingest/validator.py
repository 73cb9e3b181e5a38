"""Admissibility checks for a single inbound event."""
from datetime import datetime, timedelta
from enum import Enum
from pydantic import BaseModel, ConfigDict
from ..config import Settings, get_settings
from ..event_models import InboundEvent


class RejectReason(str, Enum):
    """Why an event was not applied to the store."""
    INVALID_DURATION = "INVALID_DURATION"
    FUTURE_EVENT_TIME = "FUTURE_EVENT_TIME"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


class ValidationPolicy(BaseModel):
    """Policy constants the validator checks against."""
    model_config = ConfigDict(frozen=True)

    max_duration_ms: int = 6 * 60 * 60 * 1000
    future_tolerance: timedelta = timedelta(minutes=15)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ValidationPolicy":
        if settings is None:
            settings = get_settings()
        return cls(
            max_duration_ms=settings.MAX_DURATION_MS,
            future_tolerance=timedelta(seconds=settings.FUTURE_TOLERANCE_SECONDS),
        )


def validate(evt: InboundEvent, now: datetime, policy: ValidationPolicy) -> RejectReason | None:
    """
    Check an event against the ingestion policy.

    Rules are evaluated in order and the first failure wins.

    Args:
        evt: The inbound event
        now: Current processing time (timezone-aware)
        policy: Policy constants

    Returns:
        None if the event is admitted, otherwise the rejection reason
    """
    if not 0 <= evt.duration_ms <= policy.max_duration_ms:
        return RejectReason.INVALID_DURATION

    if evt.event_time > now + policy.future_tolerance:
        return RejectReason.FUTURE_EVENT_TIME

    return None
