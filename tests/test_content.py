from __future__ import annotations

import anyio
import pytest

from oripay.content import ContentRepository
from oripay.documents import MemoryDocumentStore
from oripay.schemas import AboutContent, Announcement, Currency, FooterContent, PlatformSettings, Service
from oripay.users import UserDirectory


@pytest.fixture()
def content(store: MemoryDocumentStore) -> ContentRepository:
    return ContentRepository(store)


def test_singletons_default_when_absent(content: ContentRepository) -> None:
    footer = anyio.run(content.footer)
    settings = anyio.run(content.settings)

    assert footer == FooterContent()
    assert settings == PlatformSettings()


def test_malformed_collection_items_are_skipped(content, store) -> None:
    async def seed():
        await store.set("services", "good", {"name": "Transfers", "description": "Send"})
        await store.set("services", "bad", {"name": "Broken", "features": "not-a-list"})

    anyio.run(seed)

    services = anyio.run(content.services)
    assert [service.id for service in services] == ["good"]


def test_service_validation(content) -> None:
    with pytest.raises(ValueError):
        anyio.run(content.add_service, Service(name="Transfers"))
    with pytest.raises(ValueError):
        anyio.run(content.update_service, Service(name="Transfers", description="Send"))


def test_announcement_filtering(content) -> None:
    async def seed():
        await content.add_announcement(Announcement(title="Live", content="Shown"))
        await content.add_announcement(Announcement(title="Draft", content="Hidden", active=False))

    anyio.run(seed)

    async def active():
        return await content.announcements(active_only=True)

    assert [item.title for item in anyio.run(active)] == ["Live"]
    assert len(anyio.run(content.announcements)) == 2


def test_currency_codes_are_normalised(content, store) -> None:
    anyio.run(content.save_currency, Currency(code=" kes ", name="Kenyan Shilling"))

    assert anyio.run(store.get, "currencies", "KES")["code"] == "KES"
    with pytest.raises(KeyError):
        anyio.run(content.toggle_currency, "EUR")


def test_grant_and_revoke_admin(store, identity) -> None:
    directory = UserDirectory(store, identity)

    async def grant():
        await directory.grant_admin("u1", email="a@b.com")

    anyio.run(grant)
    marker = anyio.run(store.get, "admins", "u1")
    assert marker["email"] == "a@b.com"
    assert isinstance(marker["grantedAt"], str)
    assert anyio.run(directory.is_admin, "u1") is True

    anyio.run(directory.revoke_admin, "u1")
    assert anyio.run(directory.is_admin, "u1") is False


def test_kyc_transitions_are_last_write_wins(store, identity) -> None:
    directory = UserDirectory(store, identity)
    anyio.run(store.set, "users", "u1", {"email": "a@b.com", "kycStatus": "pending"})

    anyio.run(directory.approve_kyc, "u1")
    anyio.run(directory.reject_kyc, "u1")
    anyio.run(directory.approve_kyc, "u1")

    assert anyio.run(store.get, "users", "u1")["kycStatus"] == "verified"
    stats = anyio.run(directory.stats)
    assert stats.verified_users == 1
    assert stats.pending_kyc == 0


def test_about_document_round_trips_empty_lists(content, store) -> None:
    anyio.run(content.save_about, AboutContent(hero_title="X", stats=[]))

    assert anyio.run(store.get, "about", "main")["stats"] == []
    about = anyio.run(content.about)
    assert about.hero_title == "X"
    assert about.stats == []
