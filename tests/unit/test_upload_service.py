import asyncio

import pytest

from app.services.recycle_errors import DuplicateContent


@pytest.mark.asyncio
async def test_verified_image_awards_item_type_points(container):
    outcome = await container.uploads.submit_image("alice@example.com", "Plastic", b"img-1")

    assert outcome.verification.verified is True
    assert outcome.event.item_type == "plastic"
    assert outcome.new_points == outcome.points_awarded > 0


@pytest.mark.asyncio
async def test_concurrent_identical_images_are_processed_once(container, model_client, media):
    model_client.completions.delay = 0.05

    results = await asyncio.gather(
        container.uploads.submit_image("alice@example.com", "plastic", b"same"),
        container.uploads.submit_image("bob@example.com", "plastic", b"same"),
        return_exceptions=True,
    )

    assert sum(isinstance(r, DuplicateContent) for r in results) == 1
    assert len(model_client.completions.calls) == 1
    assert len(media.saved) == 1


@pytest.mark.asyncio
async def test_unverified_image_cannot_be_resubmitted(container, model_client):
    model_client.reply_with({"confidence": 0.1})
    await container.uploads.submit_image("alice@example.com", "glass", b"img-2")

    with pytest.raises(DuplicateContent):
        await container.uploads.submit_image("alice@example.com", "glass", b"img-2")
