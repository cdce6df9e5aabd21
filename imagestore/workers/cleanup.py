"""
Retention sweep for images.

Runs periodically to remove images that have been unlabeled for longer than
the retention period, files on disk that no row refers to, and old backups.
Every removed file is copied to a dated backup directory first.
"""

import asyncio
import logging
import re
import shutil
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from imagestore.consts import DEFAULT_IMAGE_FOLDER
from imagestore.schemas.image import CleanupResult, CleanupSummary, StorageStats

logger = logging.getLogger("imagestore.jobs.cleanup")

_BACKUP_DIR_RE = re.compile(r"auto-cleanup-(\d{4}-\d{2}-\d{2})")


async def run_image_cleanup(services, now: Optional[datetime] = None) -> CleanupResult:
    """Run all cleanup phases and log the run to the cleanup_log table."""
    now = now or datetime.now(timezone.utc)
    start = time.monotonic()
    settings = services.settings
    result = CleanupResult()

    backup_dir = Path(settings.BACKUP_DIR) / f"auto-cleanup-{now.date().isoformat()}"
    backup_dir.mkdir(parents=True, exist_ok=True)
    result.backup_path = str(backup_dir)
    logger.info("Starting image cleanup (retention %s days, backups in %s)", settings.RETENTION_DAYS, backup_dir)

    # PHASE 1: unlabeled images past retention
    await _cleanup_unlabeled_images(services, result, backup_dir, now - timedelta(days=settings.RETENTION_DAYS))
    # PHASE 2: files without rows
    await _cleanup_orphaned_files(services, result, backup_dir)
    # PHASE 3: backups past their own retention
    await asyncio.to_thread(
        _cleanup_old_backups,
        Path(settings.BACKUP_DIR),
        now - timedelta(days=settings.BACKUP_RETENTION_DAYS),
        result,
    )

    result.duration_ms = int((time.monotonic() - start) * 1000)
    result.success = not result.errors
    if result.success:
        status = "success"
    elif result.deleted_images or result.orphaned_files:
        status = "partial"
    else:
        status = "failed"
    await services.repository.log_cleanup(
        "image_cleanup",
        status,
        deleted_images=result.deleted_images,
        deleted_files=result.deleted_files,
        orphaned_files=result.orphaned_files,
        errors=result.errors or None,
        duration_ms=result.duration_ms,
    )
    logger.info(
        "Image cleanup completed: %s images, %s files, %s orphaned files, %s errors in %sms",
        result.deleted_images,
        result.deleted_files,
        result.orphaned_files,
        len(result.errors),
        result.duration_ms,
    )
    return result


async def _cleanup_unlabeled_images(services, result: CleanupResult, backup_dir: Path, cutoff: datetime) -> None:
    images = await services.repository.find_unlabeled_before(cutoff)
    logger.info("Found %s images unlabeled since before %s", len(images), cutoff.isoformat())
    for image in images:
        for src in await services.repository.list_variant_srcs(image.hash):
            if services.storage.exists(src):
                try:
                    await services.storage.copy(src, backup_dir / Path(src).name)
                except OSError as e:
                    result.errors.append(f"Could not back up {src}: {e}")
        outcome = await services.deletion.delete_image(image.hash, force=True)
        if outcome.success:
            result.deleted_images += 1
            result.deleted_files += outcome.deleted_file_count
        else:
            result.deleted_files += outcome.deleted_file_count
            result.errors.extend(f"{image.hash}: {e}" for e in outcome.errors)


async def _cleanup_orphaned_files(services, result: CleanupResult, backup_dir: Path) -> None:
    known = set(await services.repository.all_variant_srcs())
    on_disk = await asyncio.to_thread(services.storage.list_folder, DEFAULT_IMAGE_FOLDER)
    orphans = [src for src in on_disk if src not in known]
    logger.info("Found %s orphaned files", len(orphans))
    for src in orphans:
        try:
            await services.storage.copy(src, backup_dir / f"orphaned_{Path(src).name}")
            await services.storage.delete(src)
        except OSError as e:
            result.errors.append(f"Error deleting orphaned file {src}: {e}")
            logger.error("Error deleting orphaned file %s: %s", src, e)
            continue
        result.orphaned_files += 1


def _cleanup_old_backups(backups: Path, cutoff: datetime, result: CleanupResult) -> None:
    if not backups.is_dir():
        return
    for entry in backups.iterdir():
        match = _BACKUP_DIR_RE.fullmatch(entry.name)
        if not entry.is_dir() or not match:
            continue
        backup_date = datetime.strptime(match.group(1), "%Y-%m-%d").replace(tzinfo=timezone.utc)
        if backup_date >= cutoff:
            continue
        try:
            shutil.rmtree(entry)
        except OSError as e:
            result.errors.append(f"Error deleting backup directory {entry.name}: {e}")
            continue
        result.deleted_backups += 1
        logger.info("Deleted old backup %s", entry.name)


def _disk_usage(storage, srcs) -> int:
    total = 0
    for src in srcs:
        try:
            total += storage.size_sync(src)
        except OSError as e:
            logger.warning("Could not stat file %s: %s", src, e)
    return total


async def get_storage_stats(services, now: Optional[datetime] = None) -> StorageStats:
    """Counts of labeled/unlabeled images, files on disk and the last sweep."""
    now = now or datetime.now(timezone.utc)
    settings = services.settings
    repository = services.repository

    images = await repository.image_stats(now - timedelta(days=settings.RETENTION_DAYS))
    known = set(await repository.all_variant_srcs())
    on_disk = await asyncio.to_thread(services.storage.list_folder, DEFAULT_IMAGE_FOLDER)
    size = await asyncio.to_thread(_disk_usage, services.storage, on_disk)

    stats = StorageStats(
        total_images=images["total"],
        labeled_images=images["labeled"],
        unlabeled_images=images["unlabeled"],
        unlabeled_over_retention=images["unlabeled_over_retention"],
        total_files=len(known),
        files_on_disk=len(on_disk),
        orphaned_files=sum(1 for src in on_disk if src not in known),
        total_size_mb=round(size / 1024 / 1024, 2),
        retention_days=settings.RETENTION_DAYS,
    )
    last = await repository.last_cleanup()
    if last is not None:
        stats.last_cleanup = CleanupSummary(
            ran_at=last.created_at,
            status=last.status,
            deleted_images=last.deleted_images,
            deleted_files=last.deleted_files,
            orphaned_files=last.orphaned_files,
            duration_ms=last.duration_ms,
            errors=last.errors or [],
        )
    return stats
