"""
Deletion of an image and all of its renditions.

Runs under a per-hash distributed lock. Files go first and metadata second:
a row pointing at missing files breaks readers, an orphaned file does not. If
any file cannot be removed the metadata is kept so the call can be retried.
Metadata deletion is retried with linear backoff; files are attempted once.
"""

import asyncio
import logging

from imagestore.config import Settings
from imagestore.consts import DELETE_OPERATION
from imagestore.errors import LockUnavailable
from imagestore.schemas.image import DeleteImageResult
from imagestore.services.locks import RedisLockClient
from imagestore.services.metrics import record_deletion, record_metadata_inconsistency
from imagestore.services.repository import ImageRepository
from imagestore.services.storage import LocalStorage
from imagestore.services.usage import UsageScanner

logger = logging.getLogger("imagestore.deletion")


class DeletionProtocol:
    def __init__(
        self,
        repository: ImageRepository,
        storage: LocalStorage,
        scanner: UsageScanner,
        locks: RedisLockClient,
        settings: Settings,
    ):
        self.repository = repository
        self.storage = storage
        self.scanner = scanner
        self.locks = locks
        self.settings = settings

    async def delete_image(self, hash: str, force: bool = False) -> DeleteImageResult:
        """
        Delete an image, its files, labels and entity links.

        Args:
            hash: Hash of the image
            force: Caller confirmed deleting an image that is still in use

        Returns:
            DeleteImageResult; ``deleted_file_count`` is always the number of
            files actually removed by this call.
        """
        try:
            async with self.locks.hold(hash, DELETE_OPERATION, self.settings.DELETE_LOCK_WAIT_MS):
                result = await self._delete_locked(hash, force)
        except LockUnavailable as e:
            logger.warning("Deletion of image %s already in progress: %s", hash, e)
            result = DeleteImageResult(success=False, code=e.code, retryable=True, errors=[str(e)])
        record_deletion(result.code)
        return result

    async def _delete_locked(self, hash: str, force: bool) -> DeleteImageResult:
        usage = await self.scanner.check_image_usage(hash)
        if not usage.exists:
            return DeleteImageResult(success=False, code="not_found", errors=[f"Image {hash} not found"], usage=usage)

        if usage.in_use and not force:
            logger.warning(
                "Deleting image %s while still in use (entities=%s, labels=%s, hero=%s, seasonal=%s)",
                hash,
                usage.used_in_entities,
                usage.used_in_labels,
                usage.used_in_featured_slot_a,
                usage.used_in_featured_slot_b,
            )

        srcs = await self.repository.list_variant_srcs(hash)
        deleted, errors = await self._delete_files(srcs)

        if errors:
            logger.error(
                "Deleted %s/%s files of image %s; keeping database record for retry",
                deleted,
                len(srcs),
                hash,
            )
            errors.append("Database record preserved so the deletion can be safely retried")
            return DeleteImageResult(
                success=False,
                code="files_incomplete",
                retryable=True,
                deleted_file_count=deleted,
                errors=errors,
                usage=usage,
            )

        error = await self._delete_metadata(hash)
        if error:
            record_metadata_inconsistency()
            logger.critical(
                "IMAGE METADATA INCONSISTENT: files of image %s deleted (%s) but database record remains: %s",
                hash,
                deleted,
                error,
            )
            return DeleteImageResult(
                success=False,
                code="metadata_failed",
                deleted_file_count=deleted,
                errors=[f"Files deleted but database record could not be removed: {error}"],
                usage=usage,
            )

        logger.info("Deleted image %s (%s files)", hash, deleted)
        return DeleteImageResult(success=True, code="deleted", deleted_file_count=deleted, usage=usage)

    async def _delete_files(self, srcs):
        deleted = 0
        errors = []
        for src in srcs:
            try:
                await self.storage.delete(src)
            except FileNotFoundError:
                # Gone already, e.g. removed by an earlier partial attempt
                logger.warning("File %s already missing", src)
                continue
            except (OSError, ValueError) as e:
                logger.error("Failed to delete file %s: %s", src, e)
                errors.append(f"Failed to delete {src}: {e}")
                continue
            deleted += 1
        return deleted, errors

    async def _delete_metadata(self, hash: str):
        attempts = self.settings.METADATA_DELETE_ATTEMPTS
        last_error = None
        for attempt in range(1, attempts + 1):
            try:
                await self.repository.delete_image(hash)
                return None
            except Exception as e:
                last_error = e
                logger.warning("Metadata deletion of image %s failed (attempt %s/%s): %s", hash, attempt, attempts, e)
                if attempt < attempts:
                    await asyncio.sleep(attempt * self.settings.METADATA_RETRY_DELAY_SECONDS)
        return last_error
