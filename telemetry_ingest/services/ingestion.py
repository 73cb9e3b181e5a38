"""Batch ingestion: validate, fingerprint, resolve and apply each event against the record store."""
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
import structlog
from ..adapters.base import InsertResult, RecordStore, StoreError
from ..config import get_settings
from ..event_models import InboundEvent, StoredRecord
from ..ingest.hasher import fingerprint
from ..ingest.resolver import Action, DiscardReason, resolve
from ..ingest.validator import RejectReason, ValidationPolicy, validate
from ..metrics import Metrics

log = structlog.get_logger()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Outcome(str, Enum):
    ACCEPTED = "accepted"
    UPDATED = "updated"
    DEDUPED = "deduped"
    REJECTED = "rejected"


class EventOutcome(BaseModel):
    """How a single inbound event was tallied."""
    model_config = ConfigDict(frozen=True)

    outcome: Outcome
    reason: str | None = None


class Rejection(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    event_id: str
    reason: str


class BatchResult(BaseModel):
    """Per-outcome counts for one batch, plus the rejected events in input order."""
    accepted: int = 0
    updated: int = 0
    deduped: int = 0
    rejected: int = 0
    rejections: list[Rejection] = Field(default_factory=list)

    def tally(self, event_id: str, result: EventOutcome):
        if result.outcome is Outcome.ACCEPTED:
            self.accepted += 1
        elif result.outcome is Outcome.UPDATED:
            self.updated += 1
        elif result.outcome is Outcome.DEDUPED:
            self.deduped += 1
        else:
            self.rejected += 1
            self.rejections.append(Rejection(event_id=event_id, reason=result.reason))

    @property
    def total(self) -> int:
        return self.accepted + self.updated + self.deduped + self.rejected


class IngestionService:
    """
    Drives batches of inbound events through validation, fingerprinting
    and conflict resolution against an injected record store.

    Events are processed one at a time and independently: each event's
    outcome is durable on its own and a failure never undoes an earlier
    success. The service holds no locks; racing writers for the same key
    are arbitrated by the store's uniqueness constraint and its
    compare-and-swap update.
    """

    def __init__(
        self,
        store: RecordStore,
        policy: ValidationPolicy | None = None,
        clock: Callable[[], datetime] = utc_now,
        metrics: Metrics | None = None,
        max_update_attempts: int | None = None,
    ):
        """
        Args:
            store: Record store backend
            policy: Validation policy (defaults to one built from settings)
            clock: Source of receipt timestamps, must return aware datetimes
            metrics: Optional Prometheus metrics to record outcomes into
            max_update_attempts: Compare-and-swap attempts before giving up on an update
        """
        if policy is None:
            policy = ValidationPolicy.from_settings()
        if max_update_attempts is None:
            max_update_attempts = get_settings().UPDATE_MAX_ATTEMPTS
        if max_update_attempts < 1:
            raise ValueError("max_update_attempts must be at least 1")

        self.store = store
        self.policy = policy
        self._clock = clock
        self._metrics = metrics
        self.max_update_attempts = max_update_attempts

    async def ingest(self, events: Iterable[InboundEvent]) -> BatchResult:
        """
        Ingest a batch of events.

        Args:
            events: Inbound events in submission order

        Returns:
            BatchResult covering every event in the batch
        """
        result = BatchResult()
        for evt in events:
            outcome = await self.process(evt)
            result.tally(evt.event_id, outcome)
            if self._metrics is not None:
                self._metrics.record_outcome(outcome.outcome.value, outcome.reason)

        if self._metrics is not None:
            self._metrics.record_batch(result.total)

        log.info(
            "batch.ingested",
            size=result.total,
            accepted=result.accepted,
            updated=result.updated,
            deduped=result.deduped,
            rejected=result.rejected,
        )
        return result

    async def process(self, evt: InboundEvent) -> EventOutcome:
        """Validate and apply one event, mapping every result onto a tally outcome."""
        # Stamped once per event, reused across compare-and-swap retries
        received_at = self._clock()

        reason = validate(evt, received_at, self.policy)
        if reason is not None:
            log.info("event.rejected", event_id=evt.event_id, reason=reason.value)
            return EventOutcome(outcome=Outcome.REJECTED, reason=reason.value)

        payload_hash = fingerprint(evt)
        try:
            return await self._apply(evt, payload_hash, received_at)
        except StoreError as e:
            log.error(
                "event.store_failed",
                event_id=evt.event_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return EventOutcome(outcome=Outcome.REJECTED, reason=RejectReason.STORE_UNAVAILABLE.value)

    async def _apply(self, evt: InboundEvent, payload_hash: str, received_at: datetime) -> EventOutcome:
        for attempt in range(1, self.max_update_attempts + 1):
            existing = await self.store.find(evt.event_id)
            resolution = resolve(existing, payload_hash, received_at)

            if resolution.action is Action.DISCARD:
                return self._deduped(evt, resolution.reason)

            if resolution.action is Action.INSERT:
                record = StoredRecord.from_inbound(evt, received_at, payload_hash)
                if await self.store.insert(record) is InsertResult.UNIQUE_KEY_VIOLATION:
                    return self._deduped(evt, DiscardReason.RACE_LOST)
                log.info("event.inserted", event_id=evt.event_id, record_id=record.id)
                return EventOutcome(outcome=Outcome.ACCEPTED)

            record = existing.superseded_by(evt, received_at, payload_hash)
            if await self.store.update(record, existing.received_time):
                log.info("event.updated", event_id=evt.event_id, record_id=record.id)
                return EventOutcome(outcome=Outcome.UPDATED)

            # Another writer committed first; resolve again against its state
            log.debug("event.update_conflict", event_id=evt.event_id, attempt=attempt)

        raise StoreError(
            f"update of {evt.event_id} did not settle after {self.max_update_attempts} attempts"
        )

    @staticmethod
    def _deduped(evt: InboundEvent, reason: DiscardReason) -> EventOutcome:
        log.debug("event.deduped", event_id=evt.event_id, reason=reason.value)
        return EventOutcome(outcome=Outcome.DEDUPED, reason=reason.value)
