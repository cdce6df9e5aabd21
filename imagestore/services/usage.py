"""
Image usage auditing.

Usage comes from two places: the relational model (entity links and labels)
and usage oracles, which look for an image in content that is not modelled
relationally. Oracles are a best-effort safety net; their failures become
warnings and never fail the check.
"""

import asyncio
import json
import logging
import os
from typing import List, Optional, Sequence

from imagestore.consts import HERO_BANNER_LABEL, SEASONAL_LABEL
from imagestore.errors import ContentDocumentError
from imagestore.schemas.image import ImageUsage
from imagestore.services.repository import ImageRepository
from imagestore.utils.paths import normalize_image_path

logger = logging.getLogger("imagestore.usage")

SLOT_A = "hero"
SLOT_B = "seasonal"

# Reserved labels, and the featured slot each one stands for
RESERVED_LABELS = {
    HERO_BANNER_LABEL: SLOT_A,
    SEASONAL_LABEL: SLOT_B,
}


class ContentReference:
    def __init__(self, slot: str, path: str, position: int):
        self.slot = slot
        self.path = path
        self.position = position


class UsageOracle:
    """Something that can tell whether an image is referenced outside the relational model."""

    name = "oracle"

    async def find_references(self, hash: str, srcs: Sequence[str]) -> List[ContentReference]:
        raise NotImplementedError


def load_content_document(path: str) -> Optional[dict]:
    """Read the featured-content JSON document. None when it does not exist."""
    if not os.path.exists(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f)
    except (OSError, ValueError) as e:
        raise ContentDocumentError(f"Could not read content document {path}: {e}") from e
    if not isinstance(document, dict):
        raise ContentDocumentError(f"Content document {path} is not an object")
    return document


def _section(document: dict, *keys) -> list:
    node = document
    for key in keys:
        node = node.get(key) if isinstance(node, dict) else None
    if node is None:
        return []
    if not isinstance(node, list):
        raise ContentDocumentError(f"Expected a list at {'.'.join(keys)}")
    return node


def featured_entries(document: dict):
    """Yield (slot, position, entry) for every featured entry of the document."""
    for slot, keys in ((SLOT_A, ("content", "hero", "banners")), (SLOT_B, ("content", "seasonal", "plants"))):
        for position, entry in enumerate(_section(document, *keys)):
            if isinstance(entry, dict):
                yield slot, position, entry


class ContentDocumentOracle(UsageOracle):
    """Finds an image in the landing page content document by path or hash."""

    name = "content document"

    def __init__(self, path: str):
        self.path = path

    async def find_references(self, hash: str, srcs: Sequence[str]) -> List[ContentReference]:
        document = await asyncio.to_thread(load_content_document, self.path)
        if document is None:
            return []
        known = {normalize_image_path(s) for s in srcs}
        found = []
        for slot, position, entry in featured_entries(document):
            src = entry.get("src")
            if entry.get("imageHash") == hash:
                found.append(ContentReference(slot, src or hash, position))
            elif isinstance(src, str) and normalize_image_path(src) in known:
                found.append(ContentReference(slot, src, position))
        return found


class UsageScanner:
    def __init__(self, repository: ImageRepository, oracles: Sequence[UsageOracle] = ()):
        self.repository = repository
        self.oracles = list(oracles)

    async def check_image_usage(self, hash: str) -> ImageUsage:
        """Report where an image is used. Never mutates anything."""
        snapshot = await self.repository.get_usage_snapshot(hash)
        if snapshot is None:
            return ImageUsage(exists=False)
        srcs, labels, entities = snapshot["srcs"], snapshot["labels"], snapshot["entities"]

        usage = ImageUsage(
            exists=True,
            used_in_entities=[f"{e.entity_type}:{e.entity_id}" for e in entities],
            used_in_labels=list(labels),
        )
        for e in entities:
            usage.warnings.append(
                f"Image is used by {e.entity_type} {e.entity_id}" + (f" ({e.usage})" if e.usage else "")
            )

        for label in labels:
            slot = RESERVED_LABELS.get(label)
            if slot == SLOT_A:
                usage.used_in_featured_slot_a = True
                usage.warnings.append("Image is used in the hero banner")
            elif slot == SLOT_B:
                usage.used_in_featured_slot_b = True
                usage.warnings.append("Image is used in seasonal content")

        for oracle in self.oracles:
            try:
                references = await oracle.find_references(hash, srcs)
            except Exception as e:
                logger.warning("Usage oracle %r failed for image %s: %s", oracle.name, hash, e)
                usage.warnings.append(f"Could not check {oracle.name}: {e}")
                continue
            for ref in references:
                if ref.slot == SLOT_A and not usage.used_in_featured_slot_a:
                    usage.used_in_featured_slot_a = True
                    usage.warnings.append(f"Image is referenced by hero banner #{ref.position + 1} ({ref.path})")
                elif ref.slot == SLOT_B and not usage.used_in_featured_slot_b:
                    usage.used_in_featured_slot_b = True
                    usage.warnings.append(f"Image is referenced by seasonal entry #{ref.position + 1} ({ref.path})")
        return usage
