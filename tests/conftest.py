"""
Pytest configuration and fixtures for imagestore tests
"""

import os
import random
import time
from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image

from imagestore.config import Settings
from imagestore.core.container import Services
from imagestore.db import close_db, init_db
from imagestore.schemas.image import UploadedFile
from imagestore.services.locks import RedisLockClient


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the lock client."""

    def __init__(self):
        self.store = {}

    def _live(self, key):
        entry = self.store.get(key)
        if entry and entry[1] is not None and entry[1] <= time.monotonic():
            del self.store[key]
            return None
        return entry

    async def set(self, key, value, nx=False, px=None):
        if nx and self._live(key):
            return None
        expires = time.monotonic() + px / 1000 if px else None
        self.store[key] = (value, expires)
        return True

    async def get(self, key):
        entry = self._live(key)
        return entry[0] if entry else None

    async def eval(self, script, numkeys, key, value):
        if await self.get(key) == value:
            del self.store[key]
            return 1
        return 0

    async def aclose(self):
        pass


def make_image_bytes(width: int, height: int, fmt: str = "PNG", seed: int = 0) -> bytes:
    """Noise image; distinct seeds give distinct perceptual hashes."""
    rng = random.Random(seed)
    im = Image.frombytes("RGB", (width, height), rng.randbytes(width * height * 3))
    buf = BytesIO()
    im.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def make_upload():
    def _make(filename="photo.png", width=300, height=200, seed=0, mimetype=None, fmt="PNG"):
        return UploadedFile(
            filename=filename,
            mimetype=mimetype or f"image/{fmt.lower()}",
            data=make_image_bytes(width, height, fmt=fmt, seed=seed),
        )
    return _make


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL="sqlite://:memory:",
        STORAGE_DIR=str(tmp_path / "uploads"),
        BACKUP_DIR=str(tmp_path / "backups"),
        CONTENT_DOCUMENT_PATH=str(tmp_path / "content.json"),
        MAX_IMAGE_DIMENSION=3000,
        DELETE_LOCK_WAIT_MS=2000,
        LOCK_RETRY_INTERVAL_MS=10,
        METADATA_RETRY_DELAY_SECONDS=0,
    )


@pytest.fixture
async def db_setup(settings):
    """Initialize a fresh in-memory SQLite database for each test."""
    await init_db(settings.DATABASE_URL)
    try:
        yield
    finally:
        await close_db()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
async def services(db_setup, settings, fake_redis):
    locks = RedisLockClient(fake_redis, ttl_ms=settings.LOCK_TTL_MS, retry_interval_ms=settings.LOCK_RETRY_INTERVAL_MS)
    return Services(settings, locks=locks)


@pytest.fixture
def stored_files(settings):
    """List every file under the storage root as a relative src."""
    def _list():
        root = Path(settings.STORAGE_DIR)
        if not root.exists():
            return []
        return sorted(str(p.relative_to(root)).replace(os.sep, "/") for p in root.rglob("*") if p.is_file())
    return _list
