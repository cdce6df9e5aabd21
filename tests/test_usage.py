# tests/test_usage.py
"""Usage audit across entity links, reserved labels and the content document"""

import json
from pathlib import Path


def _write_content(settings, document):
    Path(settings.CONTENT_DOCUMENT_PATH).write_text(
        document if isinstance(document, str) else json.dumps(document), encoding="utf-8"
    )


async def test_unknown_image_does_not_exist(services):
    usage = await services.check_image_usage("f" * 64)
    assert not usage.exists
    assert not usage.in_use


async def test_unused_image(services, make_upload):
    saved = await services.save_image(make_upload(), labels=["gallery"])
    usage = await services.check_image_usage(saved.hash)
    assert usage.exists
    assert usage.used_in_labels == ["gallery"]
    assert usage.used_in_entities == []
    assert not usage.used_in_featured_slot_a
    assert not usage.used_in_featured_slot_b
    assert usage.warnings == []


async def test_reserved_labels_mark_featured_slots(services, make_upload):
    saved = await services.save_image(make_upload(), labels=["hero-banner", "seasonal"])
    usage = await services.check_image_usage(saved.hash)
    assert usage.used_in_featured_slot_a
    assert usage.used_in_featured_slot_b
    assert len(usage.warnings) == 2


async def test_entity_links_are_reported(services, make_upload):
    saved = await services.save_image(make_upload())
    await services.repository.link_entity(saved.hash, "plant", 42, usage="primary")

    usage = await services.check_image_usage(saved.hash)
    assert usage.used_in_entities == ["plant:42"]
    assert usage.in_use
    assert usage.warnings == ["Image is used by plant 42 (primary)"]


async def test_content_document_matches_src(services, settings, make_upload):
    saved = await services.save_image(make_upload("butterfly.png"))
    _write_content(settings, {"content": {"hero": {"banners": [{"src": "/butterfly-XXL.png"}]}}})

    usage = await services.check_image_usage(saved.hash)
    assert usage.used_in_featured_slot_a
    assert not usage.used_in_featured_slot_b
    assert "hero banner #1" in usage.warnings[0]


async def test_content_document_matches_hash(services, settings, make_upload):
    saved = await services.save_image(make_upload())
    _write_content(
        settings,
        {"content": {"seasonal": {"plants": [{"src": "/other.png"}, {"imageHash": saved.hash}]}}},
    )

    usage = await services.check_image_usage(saved.hash)
    assert usage.used_in_featured_slot_b
    assert "seasonal entry #2" in usage.warnings[0]


async def test_malformed_content_document_is_a_warning(services, settings, make_upload):
    saved = await services.save_image(make_upload())
    _write_content(settings, "{not json")

    usage = await services.check_image_usage(saved.hash)
    assert usage.exists
    assert not usage.used_in_featured_slot_a
    assert len(usage.warnings) == 1
    assert usage.warnings[0].startswith("Could not check content document")


async def test_usage_check_does_not_mutate(services, settings, make_upload):
    saved = await services.save_image(make_upload(), labels=["hero-banner"])
    await services.repository.link_entity(saved.hash, "plant", 1)
    _write_content(settings, {"content": {"hero": {"banners": [{"imageHash": saved.hash}]}}})
    before = await services.repository.counts()

    await services.check_image_usage(saved.hash)
    await services.check_image_usage(saved.hash)
    assert await services.repository.counts() == before
