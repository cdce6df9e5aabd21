"""
Featured content label synchronization.

Images referenced only from the landing page content document would look
unlabeled to the retention sweep. Syncing gives them the reserved labels while
they are featured and takes the labels away once they are not.
"""

import logging
from typing import Dict, Optional

from imagestore.consts import HERO_BANNER_LABEL, SEASONAL_LABEL
from imagestore.services.repository import ImageRepository
from imagestore.services.usage import SLOT_A, featured_entries, load_content_document
from imagestore.utils.paths import normalize_image_path

logger = logging.getLogger("imagestore.label_sync")


async def _sync_label(repository: ImageRepository, label: str, current: Dict[str, int]) -> Dict[str, int]:
    added = 0
    for hash, index in current.items():
        if await repository.add_label(hash, label, index):
            added += 1
    removed = 0
    for hash in await repository.hashes_with_label(label):
        if hash not in current and await repository.remove_label(hash, label):
            removed += 1
    logger.info("Label %r sync complete: %s images labeled, %s added, %s removed", label, len(current), added, removed)
    return {"added": added, "removed": removed}


async def sync_featured_labels(repository: ImageRepository, content: Optional[dict] = None, path: Optional[str] = None) -> dict:
    """
    Synchronize hero banner and seasonal labels with the content document.

    Args:
        repository: Metadata store
        content: Parsed content document; read from ``path`` when omitted

    Returns:
        {"hero-banner": {"added", "removed"}, "seasonal": {"added", "removed"}}
    """
    if content is None:
        content = load_content_document(path) if path else None
        if content is None:
            content = {}

    hero: Dict[str, int] = {}
    seasonal: Dict[str, int] = {}
    for slot, position, entry in featured_entries(content):
        hash = entry.get("imageHash")
        if not hash and entry.get("src"):
            normalized = normalize_image_path(entry["src"])
            hash = await repository.find_hash_by_src(normalized)
            if not hash:
                logger.warning("Featured image not found in database: %s (normalized: %s)", entry["src"], normalized)
                continue
        if not hash or not await repository.image_exists(hash):
            continue
        target = hero if slot == SLOT_A else seasonal
        target.setdefault(hash, position)

    return {
        HERO_BANNER_LABEL: await _sync_label(repository, HERO_BANNER_LABEL, hero),
        SEASONAL_LABEL: await _sync_label(repository, SEASONAL_LABEL, seasonal),
    }
