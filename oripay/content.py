"""Read/write access to CMS content and platform configuration."""

from __future__ import annotations

import logging
from typing import List, Optional, Type

from .documents import DocumentStore
from .schemas import (
    ABOUT,
    ANNOUNCEMENTS,
    COUNTRIES,
    CURRENCIES,
    FOOTER,
    HOMEPAGE,
    MAIN_DOCUMENT,
    PLATFORM_DOCUMENT,
    SERVICES,
    SETTINGS,
    AboutContent,
    Announcement,
    Country,
    Currency,
    DocumentValidationError,
    FooterContent,
    HomepageContent,
    ModelT,
    PlatformSettings,
    Service,
    dump_document,
    parse_document,
)

logger = logging.getLogger("oripay.content")


class ContentRepository:
    """Typed wrapper over the document store for site content.

    Store failures propagate as :class:`~oripay.documents.DocumentStoreError`
    so callers can decide on a fallback. Singleton documents that are absent
    come back with their defaults.
    """

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def _read_singleton(self, model: Type[ModelT], collection: str, doc_id: str) -> ModelT:
        raw = await self._store.get(collection, doc_id)
        return parse_document(model, raw)

    async def _read_collection(self, model: Type[ModelT], collection: str) -> List[ModelT]:
        items: List[ModelT] = []
        for stored in await self._store.list(collection):
            try:
                items.append(parse_document(model, stored.data, doc_id=stored.id))
            except DocumentValidationError as exc:
                logger.warning("Skipping malformed %s/%s: %s", collection, stored.id, exc)
        return items

    # Singletons -------------------------------------------------------
    async def homepage(self) -> HomepageContent:
        return await self._read_singleton(HomepageContent, HOMEPAGE, MAIN_DOCUMENT)

    async def published_homepage(self) -> Optional[HomepageContent]:
        """Return the homepage document, or ``None`` when none has been saved."""

        raw = await self._store.get(HOMEPAGE, MAIN_DOCUMENT)
        if raw is None:
            return None
        return parse_document(HomepageContent, raw)

    async def save_homepage(self, content: HomepageContent) -> None:
        await self._store.set(HOMEPAGE, MAIN_DOCUMENT, dump_document(content))

    async def about(self) -> AboutContent:
        return await self._read_singleton(AboutContent, ABOUT, MAIN_DOCUMENT)

    async def save_about(self, content: AboutContent) -> None:
        await self._store.set(ABOUT, MAIN_DOCUMENT, dump_document(content))

    async def footer(self) -> FooterContent:
        return await self._read_singleton(FooterContent, FOOTER, MAIN_DOCUMENT)

    async def save_footer(self, content: FooterContent) -> None:
        await self._store.set(FOOTER, MAIN_DOCUMENT, dump_document(content))

    async def settings(self) -> PlatformSettings:
        return await self._read_singleton(PlatformSettings, SETTINGS, PLATFORM_DOCUMENT)

    async def save_settings(self, settings: PlatformSettings) -> None:
        await self._store.set(SETTINGS, PLATFORM_DOCUMENT, dump_document(settings))

    # Services ---------------------------------------------------------
    async def services(self, *, active_only: bool = False) -> List[Service]:
        services = await self._read_collection(Service, SERVICES)
        if active_only:
            return [service for service in services if service.active]
        return services

    async def service(self, service_id: str) -> Optional[Service]:
        raw = await self._store.get(SERVICES, service_id)
        if raw is None:
            return None
        return parse_document(Service, raw, doc_id=service_id)

    async def add_service(self, service: Service) -> str:
        if not service.name.strip() or not service.description.strip():
            raise ValueError("Name & description required")
        return await self._store.add(SERVICES, dump_document(service, exclude={"id"}))

    async def update_service(self, service: Service) -> None:
        if not service.id:
            raise ValueError("Service id is required")
        if not service.name.strip() or not service.description.strip():
            raise ValueError("Name & description required")
        await self._store.update(SERVICES, service.id, dump_document(service, exclude={"id"}))

    async def delete_service(self, service_id: str) -> None:
        await self._store.delete(SERVICES, service_id)

    # Announcements ----------------------------------------------------
    async def announcements(self, *, active_only: bool = False) -> List[Announcement]:
        announcements = await self._read_collection(Announcement, ANNOUNCEMENTS)
        if active_only:
            return [item for item in announcements if item.active]
        return announcements

    async def add_announcement(self, announcement: Announcement) -> str:
        if not announcement.title.strip() or not announcement.content.strip():
            raise ValueError("Title & content required")
        return await self._store.add(ANNOUNCEMENTS, dump_document(announcement, exclude={"id"}))

    async def update_announcement(self, announcement: Announcement) -> None:
        if not announcement.id:
            raise ValueError("Announcement id is required")
        if not announcement.title.strip() or not announcement.content.strip():
            raise ValueError("Title & content required")
        await self._store.update(
            ANNOUNCEMENTS,
            announcement.id,
            dump_document(announcement, exclude={"id"}),
        )

    async def delete_announcement(self, announcement_id: str) -> None:
        await self._store.delete(ANNOUNCEMENTS, announcement_id)

    # Currencies and countries (keyed by business code) ---------------
    async def currencies(self) -> List[Currency]:
        return await self._read_collection(Currency, CURRENCIES)

    async def save_currency(self, currency: Currency) -> None:
        code = currency.code.strip().upper()
        if not code or not currency.name.strip():
            raise ValueError("Fill all fields")
        currency = currency.model_copy(update={"code": code})
        await self._store.set(CURRENCIES, code, dump_document(currency))

    async def toggle_currency(self, code: str) -> Currency:
        raw = await self._store.get(CURRENCIES, code)
        if raw is None:
            raise KeyError(code)
        currency = parse_document(Currency, raw)
        toggled = currency.model_copy(update={"code": code, "active": not currency.active})
        await self._store.set(CURRENCIES, code, dump_document(toggled))
        return toggled

    async def delete_currency(self, code: str) -> None:
        await self._store.delete(CURRENCIES, code)

    async def countries(self) -> List[Country]:
        return await self._read_collection(Country, COUNTRIES)

    async def save_country(self, country: Country) -> None:
        code = country.code.strip().upper()
        if not code or not country.name.strip():
            raise ValueError("Fill all fields")
        country = country.model_copy(update={"code": code})
        await self._store.set(COUNTRIES, code, dump_document(country))

    async def toggle_country(self, code: str) -> Country:
        raw = await self._store.get(COUNTRIES, code)
        if raw is None:
            raise KeyError(code)
        country = parse_document(Country, raw)
        toggled = country.model_copy(update={"code": code, "active": not country.active})
        await self._store.set(COUNTRIES, code, dump_document(toggled))
        return toggled

    async def delete_country(self, code: str) -> None:
        await self._store.delete(COUNTRIES, code)


__all__ = ["ContentRepository"]
