from unittest.mock import AsyncMock

import pytest

from app.security import hashing


def test_fingerprint_is_sha256_hex():
    digest = hashing.fingerprint(b"abc")
    assert digest == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_fingerprint_distinguishes_content():
    assert hashing.fingerprint(b"video-1") != hashing.fingerprint(b"video-2")


@pytest.mark.asyncio
async def test_remembered_digest_cannot_be_reserved():
    registry = hashing.HashRegistry()
    digest = hashing.fingerprint(b"clip")

    assert await registry.reserve(digest) is True
    await registry.remember(digest)
    await registry.release(digest)

    assert await registry.reserve(digest) is False
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_reserved_digest_blocks_until_released():
    registry = hashing.HashRegistry()

    assert await registry.reserve("abc") is True
    assert await registry.reserve("abc") is False

    await registry.release("abc")
    assert await registry.reserve("abc") is True
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_registry_falls_back_to_durable_lookup_and_caches_hit():
    lookup = AsyncMock(return_value=True)
    registry = hashing.HashRegistry(lookup)

    assert await registry.reserve("abc") is False
    assert await registry.reserve("abc") is False
    lookup.assert_awaited_once_with("abc")


@pytest.mark.asyncio
async def test_registry_does_not_cache_misses():
    lookup = AsyncMock(return_value=False)
    registry = hashing.HashRegistry(lookup)

    assert await registry.reserve("abc") is True
    await registry.release("abc")
    assert await registry.reserve("abc") is True
    assert lookup.await_count == 2
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_remembered_digests_are_bounded():
    registry = hashing.HashRegistry(max_entries=2)

    for digest in ("a", "b", "c"):
        await registry.remember(digest)

    assert len(registry) == 2
    assert await registry.reserve("a") is True
    assert await registry.reserve("c") is False
