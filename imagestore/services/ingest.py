"""
Image ingestion pipeline.

An upload is validated, identified by the perceptual hash of its pixels, and
fanned out into the variant matrix (every planned size, in the primary format
and as WebP). Metadata is only written once the full-size primary file is on
disk; everything after that is best-effort and reported as warnings.
"""

import asyncio
import logging
import os
import posixpath
from typing import Iterable, List, Optional

from PIL import Image as PILImage

from imagestore.config import Settings
from imagestore.consts import (
    ALTERNATE_EXTENSION,
    DEFAULT_IMAGE_FOLDER,
    FULL_SIZE,
    LEGACY_EXTENSIONS,
    LEGACY_TARGET_EXTENSION,
    PIL_FORMATS,
    SUPPORTED_EXTENSIONS,
)
from imagestore.errors import (
    DimensionOutOfBounds,
    DuplicateImage,
    FileNameUnavailable,
    ImageStoreError,
    InvalidUpload,
    StorageError,
    TranscodeUnavailable,
)
from imagestore.schemas.image import SaveImageResult, UploadedFile
from imagestore.services.codec import CodecError, PillowCodec, Rendition
from imagestore.services.metrics import record_upload, record_variant_failure
from imagestore.services.repository import ImageRepository
from imagestore.services.storage import LocalStorage
from imagestore.services.variants import resize_plan
from imagestore.utils.paths import clean, find_file_name, join_src

logger = logging.getLogger("imagestore.ingest")


class ImageIngestor:
    def __init__(self, repository: ImageRepository, storage: LocalStorage, codec: PillowCodec, settings: Settings):
        self.repository = repository
        self.storage = storage
        self.codec = codec
        self.settings = settings

    async def save_image(
        self,
        upload: UploadedFile,
        alt: Optional[str] = None,
        description: Optional[str] = None,
        labels: Optional[List[str]] = None,
        error_on_duplicate: bool = False,
    ) -> SaveImageResult:
        """
        Save an uploaded image and all of its renditions.

        Args:
            upload: File handed over by the API layer
            alt: Alt text for the image
            description: Description of the image
            labels: Labels for the image, in display order. ``None`` leaves
                existing labels of a re-uploaded image untouched
            error_on_duplicate: Fail if the same content was uploaded before

        Returns:
            SaveImageResult; on failure ``code`` names the reason and no
            metadata was written.
        """
        try:
            result = await self._ingest(upload, alt, description, labels, error_on_duplicate)
        except ImageStoreError as e:
            logger.warning("Rejected upload %r (%s): %s", upload.filename, e.code, e)
            record_upload(e.code)
            return SaveImageResult(success=False, code=e.code, error=str(e))
        except Exception as e:
            logger.exception("Failed to save image %r", upload.filename)
            record_upload("internal_error")
            return SaveImageResult(success=False, code="internal_error", error=str(e))
        record_upload("success" if not result.warnings else "partial")
        return result

    async def _load_bytes(self, upload: UploadedFile) -> bytes:
        try:
            if upload.data is not None:
                return upload.data
            return await asyncio.to_thread(_read_file, upload.temp_path)
        finally:
            if upload.temp_path:
                await asyncio.to_thread(_remove_file, upload.temp_path)

    async def _ingest(self, upload, alt, description, labels, error_on_duplicate) -> SaveImageResult:
        data = await self._load_bytes(upload)
        if not data:
            raise InvalidUpload("Empty file")

        # Make sure that the file is actually a supported image
        if not (upload.mimetype or "").lower().startswith("image/"):
            raise InvalidUpload(f"Invalid mimetype {upload.mimetype!r}")
        source_ext = posixpath.splitext(upload.filename or "")[1].lower()
        if source_ext not in SUPPORTED_EXTENSIONS:
            raise InvalidUpload(f"Image type {source_ext or '(none)'} not supported")
        legacy = source_ext in LEGACY_EXTENSIONS
        if legacy and not self.codec.heif_enabled:
            raise TranscodeUnavailable(f"Cannot convert {source_ext} images: HEIF support is not installed")
        ext = LEGACY_TARGET_EXTENSION if legacy else source_ext

        folder, name = await self._resolve_name(upload.filename, ext)

        info = await self._probe(data)
        self._check_dimensions(info.width, info.height)

        # Camera-native formats are converted before anything is hashed or written
        if legacy:
            try:
                data = await self.codec.transcode(data)
            except CodecError as e:
                raise TranscodeUnavailable(str(e)) from e

        hash = await self.codec.content_hash(data)
        existed = await self.repository.image_exists(hash)
        if existed and error_on_duplicate:
            raise DuplicateImage("File has already been uploaded", hash=hash)
        prior_srcs = await self.repository.list_variant_srcs(hash) if existed else []
        # Re-uploads overwrite the files of the previous ingestion
        folder, name = _previous_name(prior_srcs, ext) or (folder, name)
        await self._check_ownership(hash, _planned_srcs(folder, name, ext, info.width, info.height))

        primary_fmt = PIL_FORMATS[ext]
        alternate_failures: List[str] = []
        failed_sizes: List[str] = []

        full_src = join_src(folder, f"{name}-{FULL_SIZE}", ext)
        try:
            await self.storage.write(full_src, data)
        except OSError as e:
            raise StorageError(f"Could not write {full_src}: {e}") from e
        variants = [{"src": full_src, "width": info.width, "height": info.height}]

        if ext != ALTERNATE_EXTENSION:
            alternate = await self._write_alternate(data, folder, name, FULL_SIZE, None)
            if alternate is None:
                alternate_failures.append(FULL_SIZE)
            else:
                variants.append(alternate)

        written = [v["src"] for v in variants]
        try:
            await self.repository.save_metadata(hash, variants, alt=alt, description=description, labels=labels)
        except Exception:
            # Nothing refers to the new files; previous files of this image keep their rows
            for src in written:
                if src not in prior_srcs:
                    await _delete_quietly(self.storage, src)
            raise

        for size, value in resize_plan(info.width, info.height).items():
            src = join_src(folder, f"{name}-{size}", ext)
            try:
                rendition = await self.codec.render(data, primary_fmt, value)
                await self._store(hash, src, rendition)
            except Exception:
                logger.exception("Failed to generate %s rendition %s for image %s", size, src, hash)
                record_variant_failure(primary_fmt)
                failed_sizes.append(size)
            else:
                written.append(src)
            if ext == ALTERNATE_EXTENSION:
                continue
            alternate = await self._write_alternate(data, folder, name, size, value, hash=hash)
            if alternate is None:
                alternate_failures.append(size)
            else:
                written.append(alternate["src"])

        await self._discard_superseded(prior_srcs, written)

        warnings = []
        if alternate_failures:
            warnings.append(
                f"{len(alternate_failures)} WebP variant(s) could not be generated: {', '.join(alternate_failures)}"
            )
        if failed_sizes:
            warnings.append(f"Failed to generate sizes: {', '.join(failed_sizes)}")
        logger.info("Saved image %s as %s (%s files)", hash, full_src, len(written))
        return SaveImageResult(
            success=True,
            hash=hash,
            src=full_src,
            width=info.width,
            height=info.height,
            warnings=warnings,
            failed_sizes=failed_sizes,
            alternate_failures=alternate_failures,
        )

    async def _resolve_name(self, filename: str, ext: str):
        parts = clean(filename, DEFAULT_IMAGE_FOLDER)
        if not parts.get("name"):
            raise InvalidUpload(f"Invalid file name {filename!r}")
        known = set(await self.repository.srcs_with_prefix(join_src(parts.get("folder"), parts["name"])))

        def taken(src: str) -> bool:
            # The WebP alternate shares the name, so a name is only free when both are
            candidates = (src, posixpath.splitext(src)[0] + ALTERNATE_EXTENSION)
            return any(c in known or self.storage.exists(c) for c in candidates)

        resolved = find_file_name(
            join_src(parts.get("folder"), parts["name"], ext),
            DEFAULT_IMAGE_FOLDER,
            exists=taken,
            suffix=f"-{FULL_SIZE}",
        )
        if not resolved:
            raise FileNameUnavailable(f"Could not create a valid file name for {filename!r}")
        return resolved["folder"], resolved["name"]

    async def _check_ownership(self, hash: str, srcs: List[str]) -> None:
        """Refuse to write over files that belong to another image."""
        owners = await self.repository.owners_of(srcs)
        foreign = sorted(src for src, owner in owners.items() if owner != hash)
        if foreign:
            raise FileNameUnavailable(
                f"Files already belong to another image: {', '.join(foreign)}", hash=hash
            )

    async def _probe(self, data: bytes):
        try:
            return await self.codec.probe(data)
        except PILImage.DecompressionBombError as e:
            raise DimensionOutOfBounds(str(e)) from e
        except CodecError as e:
            raise InvalidUpload(str(e)) from e

    def _check_dimensions(self, width: int, height: int) -> None:
        low, high = self.settings.MIN_IMAGE_DIMENSION, self.settings.MAX_IMAGE_DIMENSION
        if width > high or height > high:
            raise DimensionOutOfBounds(f"Image is {width}x{height}; maximum side is {high}px")
        if width < low or height < low:
            raise DimensionOutOfBounds(f"Image is {width}x{height}; minimum side is {low}px")

    async def _store(self, hash: str, src: str, rendition: Rendition) -> None:
        await self.storage.write(src, rendition.data)
        try:
            await self.repository.add_variant(hash, src, rendition.width, rendition.height)
        except Exception:
            # A file without a row is an orphan; take it back out
            await _delete_quietly(self.storage, src)
            raise

    async def _write_alternate(self, data, folder, name, size, target, hash=None) -> Optional[dict]:
        """Write the WebP rendition. Failure is logged and reported, never raised."""
        src = join_src(folder, f"{name}-{size}", ALTERNATE_EXTENSION)
        try:
            rendition = await self.codec.render(data, PIL_FORMATS[ALTERNATE_EXTENSION], target)
            if hash is None:
                await self.storage.write(src, rendition.data)
            else:
                await self._store(hash, src, rendition)
        except Exception:
            logger.exception("Failed to generate WebP rendition %s", src)
            record_variant_failure("WEBP")
            return None
        return {"src": src, "width": rendition.width, "height": rendition.height}

    async def _discard_superseded(self, prior_srcs: Iterable[str], written: Iterable[str]) -> None:
        stale = set(prior_srcs) - set(written)
        for src in sorted(stale):
            await _delete_quietly(self.storage, src)


def _planned_srcs(folder: str, name: str, ext: str, width: int, height: int) -> List[str]:
    """Every src an ingestion under this name may write."""
    extensions = [ext] if ext == ALTERNATE_EXTENSION else [ext, ALTERNATE_EXTENSION]
    sizes = [FULL_SIZE, *resize_plan(width, height)]
    return [join_src(folder, f"{name}-{size}", e) for size in sizes for e in extensions]


def _previous_name(prior_srcs: Iterable[str], ext: str):
    """Folder and name of a previous ingestion's full-size file with the same extension."""
    marker = f"-{FULL_SIZE}{ext}"
    for src in prior_srcs:
        if src.endswith(marker):
            parts = clean(src)
            if parts.get("name"):
                return parts.get("folder"), parts["name"][: -len(FULL_SIZE) - 1]
    return None


async def _delete_quietly(storage: LocalStorage, src: str) -> None:
    try:
        await storage.delete(src)
    except FileNotFoundError:
        pass
    except OSError:
        logger.exception("Could not remove stale file %s", src)


def _read_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def _remove_file(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
