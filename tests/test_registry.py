import pytest

from cashuwallet.crud import get_mint_urls
from cashuwallet.errors import CannotRemoveActiveMint, ValidationError
from cashuwallet.registry import MintRegistry


@pytest.mark.asyncio
async def test_add_mint_is_idempotent(db):
    """Adding the same URL twice leaves exactly one entry"""
    registry = MintRegistry(db)
    await registry.load()

    assert await registry.add("https://a") is True
    assert await registry.add("https://a") is False

    assert registry.list() == ["https://a"]
    assert await get_mint_urls(db) == ["https://a"]


@pytest.mark.asyncio
async def test_first_mint_stays_active(db):
    registry = MintRegistry(db)
    await registry.load()

    await registry.add("https://a")
    await registry.add("https://b")

    assert registry.active_url == "https://a"
    assert registry.list() == ["https://a", "https://b"]


@pytest.mark.asyncio
async def test_remove_active_mint_fails_without_mutation(db):
    registry = MintRegistry(db)
    await registry.load()
    await registry.add("https://a")
    await registry.add("https://b")

    with pytest.raises(CannotRemoveActiveMint):
        await registry.remove("https://a")

    assert registry.list() == ["https://a", "https://b"]
    assert registry.active_url == "https://a"
    assert await get_mint_urls(db) == ["https://a", "https://b"]


@pytest.mark.asyncio
async def test_remove_inactive_mint(db):
    registry = MintRegistry(db)
    await registry.load()
    await registry.add("https://a")
    await registry.add("https://b")

    await registry.remove("https://b")

    assert registry.list() == ["https://a"]


@pytest.mark.asyncio
async def test_set_active_requires_membership(db):
    registry = MintRegistry(db)
    await registry.load()
    await registry.add("https://a")

    assert await registry.set_active("https://unknown") is False
    assert registry.active_url == "https://a"

    await registry.add("https://b")
    assert await registry.set_active("https://b") is True
    assert registry.active_url == "https://b"


@pytest.mark.asyncio
@pytest.mark.parametrize("url", ["ftp://mint.example", "mint.example", "", "https://"])
async def test_add_rejects_non_http_urls(db, url):
    registry = MintRegistry(db)
    await registry.load()

    with pytest.raises(ValidationError):
        await registry.add(url)
    assert registry.list() == []


@pytest.mark.asyncio
async def test_registry_survives_reload(db):
    registry = MintRegistry(db)
    await registry.load()
    await registry.add("https://a")
    await registry.add("https://b")
    await registry.set_active("https://b")

    reloaded = MintRegistry(db)
    await reloaded.load()

    assert reloaded.list() == ["https://a", "https://b"]
    assert reloaded.active_url == "https://b"


@pytest.mark.asyncio
async def test_url_identity_is_case_sensitive(db):
    registry = MintRegistry(db)
    await registry.load()
    await registry.add("https://Mint.example")
    await registry.add("https://mint.example")

    assert registry.list() == ["https://Mint.example", "https://mint.example"]


@pytest.mark.asyncio
async def test_clear_resets_active(db):
    registry = MintRegistry(db)
    await registry.load()
    await registry.add("https://a")

    await registry.clear()

    assert registry.list() == []
    assert registry.active_url == ""
