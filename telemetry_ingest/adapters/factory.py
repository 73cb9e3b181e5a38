"""Record store selection from configuration."""
import structlog
from .base import RecordStore
from .memory import InMemoryRecordStore
from .redis_store import RedisRecordStore
from ..config import Settings, get_settings

log = structlog.get_logger()


def create_store(settings: Settings | None = None) -> RecordStore:
    """
    Create the record store based on configuration.

    Returns:
        RecordStore instance based on the STORE_ADAPTER setting
    """
    if settings is None:
        settings = get_settings()

    if settings.STORE_ADAPTER == "redis":
        if not settings.REDIS_URL:
            log.warning(
                "store.fallback",
                requested="redis",
                actual="memory",
                reason="REDIS_URL not configured"
            )
            return InMemoryRecordStore()

        log.info("store.selected", type="redis", url=str(settings.REDIS_URL))
        return RedisRecordStore(
            redis_url=str(settings.REDIS_URL),
            key_prefix=settings.REDIS_KEY_PREFIX,
        )

    log.info("store.selected", type="memory")
    return InMemoryRecordStore()
