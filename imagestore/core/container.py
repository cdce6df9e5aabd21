# imagestore/core/container.py
import logging
from typing import Optional

from imagestore.config import Settings, settings as default_settings
from imagestore.db import close_db, init_db
from imagestore.services import metrics
from imagestore.services.codec import PillowCodec
from imagestore.services.deletion import DeletionProtocol
from imagestore.services.ingest import ImageIngestor
from imagestore.services.locks import RedisLockClient
from imagestore.services.repository import ImageRepository
from imagestore.services.storage import LocalStorage
from imagestore.services.usage import ContentDocumentOracle, UsageScanner


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


class Services:
    """Store, lock and filesystem handles, built once and passed to every component."""

    def __init__(self, settings: Settings, locks: Optional[RedisLockClient] = None, repository: Optional[ImageRepository] = None):
        self.settings = settings
        self.repository = repository or ImageRepository()
        self.storage = LocalStorage(settings.STORAGE_DIR)
        self.codec = PillowCodec(
            jpeg_quality=settings.JPEG_QUALITY,
            webp_quality=settings.WEBP_QUALITY,
            timeout=settings.CODEC_TIMEOUT_SECONDS,
        )
        self.locks = locks or RedisLockClient.from_url(
            settings.REDIS_URL,
            ttl_ms=settings.LOCK_TTL_MS,
            retry_interval_ms=settings.LOCK_RETRY_INTERVAL_MS,
        )
        self.scanner = UsageScanner(self.repository, [ContentDocumentOracle(settings.CONTENT_DOCUMENT_PATH)])
        self.ingestor = ImageIngestor(self.repository, self.storage, self.codec, settings)
        self.deletion = DeletionProtocol(self.repository, self.storage, self.scanner, self.locks, settings)

    async def save_image(self, upload, **kwargs):
        return await self.ingestor.save_image(upload, **kwargs)

    async def check_image_usage(self, hash: str):
        return await self.scanner.check_image_usage(hash)

    async def delete_image(self, hash: str, force: bool = False):
        return await self.deletion.delete_image(hash, force=force)


async def start(settings: Optional[Settings] = None, **overrides) -> Services:
    """Process start-up: logging, metrics, metadata store and service handles."""
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL)
    metrics.configure(settings.METRICS_ENABLED)
    await init_db(settings.DATABASE_URL)
    return Services(settings, **overrides)


async def stop(services: Services) -> None:
    try:
        await services.locks.close()
    finally:
        await close_db()
