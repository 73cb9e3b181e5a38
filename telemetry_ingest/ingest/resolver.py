"""Conflict resolution between an inbound event and the stored record for its key."""
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict
from ..event_models import StoredRecord


class Action(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DISCARD = "discard"


class DiscardReason(str, Enum):
    UNCHANGED = "UNCHANGED"
    STALE = "STALE"
    RACE_LOST = "RACE_LOST"


class Resolution(BaseModel):
    """Outcome of conflict resolution for one inbound event."""
    model_config = ConfigDict(frozen=True)

    action: Action
    reason: DiscardReason | None = None

    @classmethod
    def discard(cls, reason: DiscardReason) -> "Resolution":
        return cls(action=Action.DISCARD, reason=reason)


INSERT = Resolution(action=Action.INSERT)
UPDATE = Resolution(action=Action.UPDATE)


def resolve(existing: StoredRecord | None, payload_hash: str, received_at: datetime) -> Resolution:
    """
    Decide what to do with an inbound event.

    Identical content is discarded regardless of timing. Otherwise the
    write with the strictly later received time wins; ties are discarded.

    Args:
        existing: Current stored record for the business key, if any
        payload_hash: Fingerprint of the inbound event
        received_at: Receipt time stamped when processing of the event began

    Returns:
        Resolution carrying the action and, for discards, the reason
    """
    if existing is None:
        return INSERT

    if payload_hash == existing.payload_hash:
        return Resolution.discard(DiscardReason.UNCHANGED)

    if received_at <= existing.received_time:
        return Resolution.discard(DiscardReason.STALE)

    return UPDATE
