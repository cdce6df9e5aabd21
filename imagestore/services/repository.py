"""
Metadata store access for images, their files, labels and entity links.

All reads and writes of the relational model go through ``ImageRepository`` so
that components receive the store explicitly and tests can swap in a
misbehaving one.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from tortoise.exceptions import IntegrityError
from tortoise.transactions import in_transaction

from imagestore.models.cleanup import CleanupLog
from imagestore.models.image import EntityImage, Image, ImageFile, ImageLabel
from imagestore.schemas.image import LabeledImage, VariantOut

logger = logging.getLogger("imagestore.repository")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _unique_labels(labels: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(label for label in labels if label))


class ImageRepository:
    async def get_image(self, hash: str) -> Optional[Image]:
        return await Image.get_or_none(hash=hash)

    async def image_exists(self, hash: str) -> bool:
        return await Image.filter(hash=hash).exists()

    async def upsert_image(
        self,
        hash: str,
        alt: Optional[str] = None,
        description: Optional[str] = None,
        has_labels: bool = False,
    ) -> Image:
        """Create or update the image row; descriptive metadata only."""
        image = await Image.get_or_none(hash=hash)
        if image is None:
            return await Image.create(
                hash=hash,
                alt=alt,
                description=description,
                unlabeled_since=None if has_labels else _now(),
            )
        image.alt = alt
        image.description = description
        if has_labels:
            image.unlabeled_since = None
        await image.save()
        return image

    async def save_metadata(
        self,
        hash: str,
        variants: Iterable[dict],
        alt: Optional[str] = None,
        description: Optional[str] = None,
        labels: Optional[Iterable[str]] = None,
    ) -> Image:
        """
        Write the image row, its initial variant rows and (optionally) its
        labels in a single transaction. ``labels=None`` keeps existing labels.

        Raises IntegrityError when a variant src belongs to another image.
        """
        variants = list(variants)
        unique = _unique_labels(labels) if labels is not None else None
        for attempt in (1, 2):
            try:
                async with in_transaction():
                    image = await self.upsert_image(hash, alt=alt, description=description, has_labels=bool(unique))
                    await self._write_variants(hash, variants)
                    if unique is not None:
                        await self._write_labels(hash, unique)
                    return image
            except IntegrityError:
                # A concurrent ingestion of the same content may have created the row
                if attempt == 2 or not await self.image_exists(hash):
                    raise
                logger.info("Image %s created concurrently; retrying metadata write", hash)

    async def list_variant_srcs(self, hash: str) -> List[str]:
        return await ImageFile.filter(image_id=hash).order_by("id").values_list("src", flat=True)

    async def replace_variants(self, hash: str, variants: Iterable[dict]) -> None:
        async with in_transaction():
            await self._write_variants(hash, variants)

    async def _write_variants(self, hash: str, variants: Iterable[dict]) -> None:
        await ImageFile.filter(image_id=hash).delete()
        for v in variants:
            await ImageFile.create(image_id=hash, src=v["src"], width=v["width"], height=v["height"])

    async def add_variant(self, hash: str, src: str, width: int, height: int) -> ImageFile:
        return await ImageFile.create(image_id=hash, src=src, width=width, height=height)

    async def owners_of(self, srcs: Iterable[str]) -> Dict[str, str]:
        """Map each src that already has a row to the hash of the image owning it."""
        rows = await ImageFile.filter(src__in=list(srcs)).values_list("src", "image_id")
        return dict(rows)

    async def replace_labels(self, hash: str, labels: Iterable[str]) -> List[str]:
        """Replace all labels of an image, input order becoming the index."""
        unique = _unique_labels(labels)
        async with in_transaction():
            await self._write_labels(hash, unique)
        return unique

    async def _write_labels(self, hash: str, labels: List[str]) -> None:
        await ImageLabel.filter(image_id=hash).delete()
        for index, label in enumerate(labels):
            await ImageLabel.create(image_id=hash, label=label, index=index)
        if labels:
            await Image.filter(hash=hash).update(unlabeled_since=None)
        else:
            # Start the retention clock, unless it is already running
            await Image.filter(hash=hash, unlabeled_since__isnull=True).update(unlabeled_since=_now())

    async def get_labels(self, hash: str) -> List[str]:
        return await ImageLabel.filter(image_id=hash).order_by("label").values_list("label", flat=True)

    async def get_entities(self, hash: str) -> List[EntityImage]:
        return await EntityImage.filter(image_id=hash).order_by("entity_type", "entity_id")

    async def get_usage_snapshot(self, hash: str) -> Optional[dict]:
        """Variant srcs, labels and entity links of an image; None when it does not exist."""
        if not await self.image_exists(hash):
            return None
        return {
            "srcs": await self.list_variant_srcs(hash),
            "labels": await self.get_labels(hash),
            "entities": await self.get_entities(hash),
        }

    async def srcs_with_prefix(self, prefix: str) -> List[str]:
        return await ImageFile.filter(src__startswith=prefix).values_list("src", flat=True)

    async def find_hash_by_src(self, src: str) -> Optional[str]:
        row = await ImageFile.get_or_none(src=src)
        return row.image_id if row else None

    async def add_label(self, hash: str, label: str, index: int = 0) -> bool:
        """Add a label (or move it to ``index``). Returns True when the label is new."""
        created = False
        existing = await ImageLabel.get_or_none(image_id=hash, label=label)
        if existing is None:
            await ImageLabel.create(image_id=hash, label=label, index=index)
            created = True
            logger.info("Added label %r to image %s", label, hash)
        elif existing.index != index:
            existing.index = index
            await existing.save()
        await Image.filter(hash=hash).update(unlabeled_since=None)
        return created

    async def remove_label(self, hash: str, label: str) -> bool:
        """Remove a label; an image left without labels is marked unlabeled."""
        deleted = await ImageLabel.filter(image_id=hash, label=label).delete()
        if not deleted:
            return False
        logger.info("Removed label %r from image %s", label, hash)
        if not await ImageLabel.filter(image_id=hash).exists():
            await Image.filter(hash=hash).update(unlabeled_since=_now())
            logger.info("Image %s now unlabeled; retention clock started", hash)
        return True

    async def hashes_with_label(self, label: str) -> List[str]:
        return await ImageLabel.filter(label=label).values_list("image_id", flat=True)

    async def images_by_label(self, label: str) -> List[LabeledImage]:
        """Images carrying ``label`` in label order, each with all of its files."""
        hashes = await ImageLabel.filter(label=label).order_by("index", "id").values_list("image_id", flat=True)
        if not hashes:
            return []
        images = {img.hash: img for img in await Image.filter(hash__in=hashes).prefetch_related("files")}
        result = []
        for hash in hashes:
            image = images.get(hash)
            if image is None:
                continue
            files = sorted(image.files, key=lambda f: f.id)
            result.append(
                LabeledImage(
                    hash=image.hash,
                    alt=image.alt,
                    description=image.description,
                    files=[VariantOut(src=f.src, width=f.width, height=f.height) for f in files],
                )
            )
        return result

    async def reorder_label(self, label: str, hashes: Iterable[str]) -> int:
        """Set the position of each image within ``label`` to its position in ``hashes``."""
        updated = 0
        async with in_transaction():
            for index, hash in enumerate(hashes):
                updated += await ImageLabel.filter(image_id=hash, label=label).update(index=index)
        return updated

    async def update_metadata(self, hash: str, alt: Optional[str] = None, description: Optional[str] = None) -> bool:
        return await Image.filter(hash=hash).update(alt=alt, description=description) > 0

    async def image_stats(self, cutoff: datetime) -> Dict[str, int]:
        """Labeled/unlabeled counts; unlabeled means no labels and no entity links."""
        total = await Image.all().count()
        labeled = set(await ImageLabel.all().values_list("image_id", flat=True))
        linked = set(await EntityImage.all().values_list("image_id", flat=True))
        unlabeled = await Image.exclude(hash__in=list(labeled | linked)).count() if (labeled or linked) else total
        return {
            "total": total,
            "labeled": total - unlabeled,
            "unlabeled": unlabeled,
            "unlabeled_over_retention": len(await self.find_unlabeled_before(cutoff)),
        }

    async def last_cleanup(self) -> Optional[CleanupLog]:
        return await CleanupLog.all().order_by("-created_at", "-id").first()

    async def link_entity(self, hash: str, entity_type: str, entity_id: str, usage: Optional[str] = None) -> EntityImage:
        link, _ = await EntityImage.get_or_create(
            image_id=hash, entity_type=entity_type, entity_id=str(entity_id), defaults={"usage": usage}
        )
        return link

    async def delete_image(self, hash: str) -> bool:
        """Delete the image and every dependent row in a single transaction."""
        async with in_transaction():
            await ImageLabel.filter(image_id=hash).delete()
            await EntityImage.filter(image_id=hash).delete()
            await ImageFile.filter(image_id=hash).delete()
            deleted = await Image.filter(hash=hash).delete()
        return deleted > 0

    async def find_unlabeled_before(self, cutoff: datetime) -> List[Image]:
        """Images unlabeled since before ``cutoff`` that have no labels and no entity links."""
        labeled = set(await ImageLabel.all().values_list("image_id", flat=True))
        linked = set(await EntityImage.all().values_list("image_id", flat=True))
        candidates = await Image.filter(unlabeled_since__lt=cutoff).order_by("unlabeled_since")
        return [img for img in candidates if img.hash not in labeled and img.hash not in linked]

    async def all_variant_srcs(self) -> List[str]:
        return await ImageFile.all().values_list("src", flat=True)

    async def counts(self) -> Dict[str, int]:
        return {
            "images": await Image.all().count(),
            "files": await ImageFile.all().count(),
            "labels": await ImageLabel.all().count(),
        }

    async def log_cleanup(self, type: str, status: str, **counts) -> CleanupLog:
        return await CleanupLog.create(type=type, status=status, **counts)
