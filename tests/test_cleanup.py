# tests/test_cleanup.py
"""Retention sweep: unlabeled images, orphaned files and old backups"""

from datetime import datetime, timedelta, timezone
from pathlib import Path

from imagestore.models.cleanup import CleanupLog
from imagestore.models.image import Image
from imagestore.workers.cleanup import get_storage_stats, run_image_cleanup

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


async def _age(hash, days):
    await Image.filter(hash=hash).update(unlabeled_since=NOW - timedelta(days=days))


async def test_cleanup_removes_expired_unlabeled_images(services, settings, make_upload, stored_files):
    expired = await services.save_image(make_upload("old.png", seed=1))
    recent = await services.save_image(make_upload("new.png", seed=2))
    labeled = await services.save_image(make_upload("kept.png", seed=3), labels=["gallery"])
    linked = await services.save_image(make_upload("linked.png", seed=4))
    await _age(expired.hash, 31)
    await _age(recent.hash, 5)
    await _age(linked.hash, 60)
    await services.repository.link_entity(linked.hash, "plant", 9)

    result = await run_image_cleanup(services, now=NOW)

    assert result.success
    assert result.deleted_images == 1
    assert result.deleted_files == 10
    assert not await Image.filter(hash=expired.hash).exists()
    for kept in (recent, labeled, linked):
        assert await Image.filter(hash=kept.hash).exists()
    assert not any(src.startswith("images/old-") for src in stored_files())

    backup = Path(result.backup_path)
    assert backup.name == "auto-cleanup-2026-03-15"
    assert (backup / "old-XXL.png").exists()
    assert len(list(backup.iterdir())) == 10


async def test_cleanup_removes_orphaned_files(services, make_upload, stored_files):
    saved = await services.save_image(make_upload())
    await services.storage.write("images/stray.png", b"left behind")

    result = await run_image_cleanup(services, now=NOW)

    assert result.orphaned_files == 1
    assert "images/stray.png" not in stored_files()
    assert (Path(result.backup_path) / "orphaned_stray.png").read_bytes() == b"left behind"
    assert len(stored_files()) == 10
    assert await Image.filter(hash=saved.hash).exists()


async def test_cleanup_removes_old_backups(services, settings):
    backups = Path(settings.BACKUP_DIR)
    (backups / "auto-cleanup-2025-01-01").mkdir(parents=True)
    (backups / "auto-cleanup-2026-02-01").mkdir()
    (backups / "manual-export").mkdir()

    result = await run_image_cleanup(services, now=NOW)

    assert result.deleted_backups == 1
    assert sorted(p.name for p in backups.iterdir()) == [
        "auto-cleanup-2026-02-01",
        "auto-cleanup-2026-03-15",
        "manual-export",
    ]


async def test_cleanup_run_is_logged(services, make_upload):
    saved = await services.save_image(make_upload())
    await _age(saved.hash, 45)

    await run_image_cleanup(services, now=NOW)

    log = await CleanupLog.get(type="image_cleanup")
    assert log.status == "success"
    assert log.deleted_images == 1
    assert log.deleted_files == 10
    assert log.errors is None


async def test_storage_stats(services, make_upload):
    old = await services.save_image(make_upload("old.png", seed=1))
    await services.save_image(make_upload("new.png", seed=2))
    await services.save_image(make_upload("kept.png", seed=3), labels=["gallery"])
    linked = await services.save_image(make_upload("linked.png", seed=4))
    await services.repository.link_entity(linked.hash, "plant", 3)
    await _age(old.hash, 40)
    await services.storage.write("images/stray.png", b"x" * 10)

    stats = await get_storage_stats(services, now=NOW)

    assert stats.total_images == 4
    assert stats.labeled_images == 2
    assert stats.unlabeled_images == 2
    assert stats.unlabeled_over_retention == 1
    assert stats.total_files == 40
    assert stats.files_on_disk == 41
    assert stats.orphaned_files == 1
    assert stats.total_size_mb >= 0
    assert stats.retention_days == 30
    assert stats.last_cleanup is None


async def test_storage_stats_reports_last_cleanup(services, make_upload):
    saved = await services.save_image(make_upload())
    await _age(saved.hash, 45)
    await run_image_cleanup(services, now=NOW)

    stats = await get_storage_stats(services, now=NOW)
    assert stats.total_images == 0
    assert stats.last_cleanup.status == "success"
    assert stats.last_cleanup.deleted_images == 1
    assert stats.last_cleanup.deleted_files == 10
    assert stats.last_cleanup.errors == []
