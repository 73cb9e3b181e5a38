"""Content fingerprints for change detection."""
import hashlib
import orjson
from ..event_models import InboundEvent


def canonical_bytes(evt: InboundEvent) -> bytes:
    # event_time is already UTC, OPT_UTC_Z pins the offset spelling to "Z"
    return orjson.dumps(
        evt.business_fields(),
        option=orjson.OPT_SORT_KEYS | orjson.OPT_UTC_Z,
    )


def fingerprint(evt: InboundEvent) -> str:
    """SHA-256 hex digest of the event's business fields."""
    return hashlib.sha256(canonical_bytes(evt)).hexdigest()
