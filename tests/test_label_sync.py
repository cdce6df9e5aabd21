# tests/test_label_sync.py
"""Featured content label synchronization"""

import json

from imagestore.models.image import Image
from imagestore.services.label_sync import sync_featured_labels


async def test_sync_adds_and_removes_reserved_labels(services, make_upload):
    banner = await services.save_image(make_upload("banner.png", seed=1))
    plant = await services.save_image(make_upload("plant.png", seed=2))
    content = {
        "content": {
            "hero": {"banners": [{"src": "/banner-XXL.png"}]},
            "seasonal": {"plants": [{"imageHash": plant.hash}]},
        }
    }

    result = await sync_featured_labels(services.repository, content)
    assert result == {"hero-banner": {"added": 1, "removed": 0}, "seasonal": {"added": 1, "removed": 0}}
    assert await services.repository.get_labels(banner.hash) == ["hero-banner"]
    assert await services.repository.get_labels(plant.hash) == ["seasonal"]
    assert (await Image.get(hash=banner.hash)).unlabeled_since is None

    # Nothing changes on a second run
    again = await sync_featured_labels(services.repository, content)
    assert again["hero-banner"] == {"added": 0, "removed": 0}

    cleared = await sync_featured_labels(services.repository, {"content": {}})
    assert cleared == {"hero-banner": {"added": 0, "removed": 1}, "seasonal": {"added": 0, "removed": 1}}
    assert await services.repository.get_labels(banner.hash) == []
    assert (await Image.get(hash=banner.hash)).unlabeled_since is not None


async def test_sync_keeps_other_labels(services, make_upload):
    saved = await services.save_image(make_upload(), labels=["gallery"])
    await sync_featured_labels(services.repository, {"content": {"hero": {"banners": [{"imageHash": saved.hash}]}}})
    await sync_featured_labels(services.repository, {"content": {}})

    assert await services.repository.get_labels(saved.hash) == ["gallery"]
    assert (await Image.get(hash=saved.hash)).unlabeled_since is None


async def test_sync_skips_unknown_images(services):
    content = {
        "content": {
            "hero": {"banners": [{"src": "/missing-XXL.png"}, {"imageHash": "a" * 64}, {"alt": "no image"}]},
        }
    }
    result = await sync_featured_labels(services.repository, content)
    assert result["hero-banner"] == {"added": 0, "removed": 0}
    assert await services.repository.hashes_with_label("hero-banner") == []


async def test_sync_reads_document_from_path(services, settings, make_upload, tmp_path):
    saved = await services.save_image(make_upload())
    path = tmp_path / "content.json"
    path.write_text(json.dumps({"content": {"seasonal": {"plants": [{"src": "images/photo-XXL.png"}]}}}))

    result = await sync_featured_labels(services.repository, path=str(path))
    assert result["seasonal"]["added"] == 1
    assert await services.repository.hashes_with_label("seasonal") == [saved.hash]
