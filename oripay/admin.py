"""Admin console: dashboard, CMS content, users/KYC and platform settings."""
from __future__ import annotations

import json
import logging
import uuid
from typing import Awaitable, Callable, Dict, Iterable, Optional, Tuple, Type

from fastapi import FastAPI, Form, Request
from fastapi.responses import HTMLResponse, Response
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError

from .content import ContentRepository
from .documents import DocumentNotFoundError, DocumentStoreError
from .guard import GuardDecision, RouteGuard
from .identity import IdentityError, friendly_auth_message
from .schemas import (
    AboutContent,
    Announcement,
    Country,
    Currency,
    DocumentModel,
    DocumentValidationError,
    FooterContent,
    HomepageContent,
    PlatformSettings,
    Service,
    ServiceFeature,
    dump_document,
    parse_document,
)
from .users import DirectoryStats, UserDirectory
from .views import (
    flash,
    form_flag,
    form_text,
    guard_response,
    load_or_default,
    model_from_form,
    redirect,
    render,
    session_id_of,
)

logger = logging.getLogger("oripay.admin")

GENERIC_SAVE_ERROR = "Could not save changes. Please try again."


def _features_from_text(raw: str, existing: Iterable[ServiceFeature] = ()) -> list[ServiceFeature]:
    known: Dict[str, str] = {}
    for feature in existing:
        if feature.id:
            known.setdefault(feature.title.strip(), feature.id)
    features = []
    for line in raw.splitlines():
        title = line.strip()
        if title:
            features.append(ServiceFeature(id=known.pop(title, None) or uuid.uuid4().hex, title=title))
    return features


def _document_json(document: DocumentModel) -> str:
    return json.dumps(dump_document(document), indent=2, ensure_ascii=False)


def register_admin_routes(
    app: FastAPI,
    *,
    templates: Jinja2Templates,
    guard: RouteGuard,
    content: ContentRepository,
    users: UserDirectory,
) -> None:
    """Attach the ``/admin`` pages to ``app``; every page requires an admin marker."""

    async def _admin(request: Request) -> Tuple[GuardDecision, Optional[Response]]:
        decision = await guard.evaluate(session_id_of(request), admin_only=True)
        return decision, guard_response(templates, request, decision)

    def _page(request: Request, name: str, decision: GuardDecision, section: str, **extra):
        payload = {"user": decision.user, "section": section}
        payload.update(extra)
        return render(templates, request, name, payload)

    async def _write(
        request: Request,
        action: Callable[[], Awaitable[object]],
        *,
        success: str,
        failure: str = GENERIC_SAVE_ERROR,
    ) -> bool:
        try:
            await action()
        except ValueError as exc:
            flash(request, str(exc), category="error")
            return False
        except DocumentNotFoundError:
            flash(request, "That record no longer exists.", category="error")
            return False
        except DocumentStoreError:
            logger.exception("Admin write failed: %s", success)
            flash(request, failure, category="error")
            return False
        flash(request, success, category="success")
        return True

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------
    @app.get("/admin", response_class=HTMLResponse, name="admin_dashboard")
    async def admin_dashboard(request: Request):
        decision, blocked = await _admin(request)
        if blocked is not None:
            return blocked

        stats = await load_or_default(
            request,
            users.stats,
            lambda: DirectoryStats(total_users=0, pending_kyc=0, verified_users=0, suspended_users=0),
            what="user statistics",
        )
        currencies = await load_or_default(request, content.currencies, list, what="currencies", notify=False)
        countries = await load_or_default(request, content.countries, list, what="countries", notify=False)
        services = await load_or_default(request, content.services, list, what="services", notify=False)
        return _page(
            request,
            "admin/dashboard.html",
            decision,
            "dashboard",
            stats=stats,
            active_currencies=sum(1 for item in currencies if item.active),
            active_countries=sum(1 for item in countries if item.active),
            service_count=len(services),
        )

    # ------------------------------------------------------------------
    # Content: services, announcements, homepage
    # ------------------------------------------------------------------
    @app.get("/admin/content", response_class=HTMLResponse, name="admin_content")
    async def admin_content(request: Request):
        decision, blocked = await _admin(request)
        if blocked is not None:
            return blocked

        services = await load_or_default(request, content.services, list, what="services")
        announcements = await load_or_default(request, content.announcements, list, what="announcements")
        homepage = await load_or_default(request, content.homepage, HomepageContent, what="homepage")
        return _page(
            request,
            "admin/content.html",
            decision,
            "content",
            services=services,
            announcements=announcements,
            homepage_json=_document_json(homepage),
        )

    def _service_from_form(form, service_id: str = "", existing: Optional[Service] = None) -> Service:
        return Service(
            id=service_id,
            name=form_text(form, "name"),
            description=form_text(form, "description"),
            icon=form_text(form, "icon") or "CreditCard",
            features=_features_from_text(form_text(form, "features"), existing.features if existing else ()),
            active=form_flag(form, "active"),
        )

    @app.post("/admin/content/services", name="admin_add_service")
    async def admin_add_service(request: Request):
        decision, blocked = await _admin(request)
        if blocked is not None:
            return blocked
        service = _service_from_form(await request.form())
        await _write(request, lambda: content.add_service(service), success="Service added")
        return redirect(request, "admin_content")

    @app.post("/admin/content/services/{service_id}", name="admin_update_service")
    async def admin_update_service(request: Request, service_id: str):
        decision, blocked = await _admin(request)
        if blocked is not None:
            return blocked
        current = await load_or_default(
            request, lambda: content.service(service_id), lambda: None, what="service", notify=False
        )
        service = _service_from_form(await request.form(), service_id, current)
        await _write(request, lambda: content.update_service(service), success="Service updated")
        return redirect(request, "admin_content")

    @app.post("/admin/content/services/{service_id}/delete", name="admin_delete_service")
    async def admin_delete_service(request: Request, service_id: str):
        decision, blocked = await _admin(request)
        if blocked is not None:
            return blocked
        await _write(request, lambda: content.delete_service(service_id), success="Service deleted")
        return redirect(request, "admin_content")

    def _announcement_from_form(form, announcement_id: str = "") -> Announcement:
        return Announcement(
            id=announcement_id,
            title=form_text(form, "title"),
            content=form_text(form, "content"),
            active=form_flag(form, "active"),
        )

    @app.post("/admin/content/announcements", name="admin_add_announcement")
    async def admin_add_announcement(request: Request):
        decision, blocked = await _admin(request)
        if blocked is not None:
            return blocked
        announcement = _announcement_from_form(await request.form())
        await _write(request, lambda: content.add_announcement(announcement), success="Announcement added")
        return redirect(request, "admin_content")

    @app.post("/admin/content/announcements/{announcement_id}", name="admin_update_announcement")
    async def admin_update_announcement(request: Request, announcement_id: str):
        decision, blocked = await _admin(request)
        if blocked is not None:
            return blocked
        announcement = _announcement_from_form(await request.form(), announcement_id)
        await _write(
            request,
            lambda: content.update_announcement(announcement),
            success="Announcement updated",
        )
        return redirect(request, "admin_content")

    @app.post("/admin/content/announcements/{announcement_id}/delete", name="admin_delete_announcement")
    async def admin_delete_announcement(request: Request, announcement_id: str):
        decision, blocked = await _admin(request)
        if blocked is not None:
            return blocked
        await _write(
            request,
            lambda: content.delete_announcement(announcement_id),
            success="Announcement deleted",
        )
        return redirect(request, "admin_content")

    def _parse_json_document(model: Type[DocumentModel], raw: str) -> DocumentModel:
        try:
            data = json.loads(raw or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError(f"Document is not valid JSON: {exc.msg} (line {exc.lineno})") from exc
        try:
            return parse_document(model, data)
        except DocumentValidationError as exc:
            raise ValueError(f"Document does not match the expected fields: {exc}") from exc

    @app.post("/admin/content/homepage", name="admin_save_homepage")
    async def admin_save_homepage(request: Request, document: str = Form("")):
        decision, blocked = await _admin(request)
        if blocked is not None:
            return blocked

        async def save() -> None:
            await content.save_homepage(_parse_json_document(HomepageContent, document))

        await _write(request, save, success="Homepage updated")
        return redirect(request, "admin_content")

    # ------------------------------------------------------------------
    # About and footer documents
    # ------------------------------------------------------------------
    def _register_document_editor(
        path: str,
        name: str,
        title: str,
        model: Type[DocumentModel],
        load: Callable[[], Awaitable[DocumentModel]],
        save: Callable[[DocumentModel], Awaitable[None]],
    ) -> None:
        async def show(request: Request):
            decision, blocked = await _admin(request)
            if blocked is not None:
                return blocked
            document = await load_or_default(request, load, model, what=f"{name} document")
            return _page(
                request,
                "admin/document.html",
                decision,
                name,
                title=title,
                action=request.url_for(f"admin_save_{name}"),
                document_json=_document_json(document),
            )

        async def store(request: Request, document: str = Form("")):
            decision, blocked = await _admin(request)
            if blocked is not None:
                return blocked

            async def persist() -> None:
                await save(_parse_json_document(model, document))

            await _write(request, persist, success=f"{title} updated")
            return redirect(request, f"admin_{name}")

        app.add_api_route(path, show, methods=["GET"], response_class=HTMLResponse, name=f"admin_{name}")
        app.add_api_route(path, store, methods=["POST"], name=f"admin_save_{name}")

    _register_document_editor("/admin/about", "about", "About page", AboutContent, content.about, content.save_about)
    _register_document_editor(
        "/admin/footer",
        "footer",
        "Footer",
        FooterContent,
        content.footer,
        content.save_footer,
    )

    # ------------------------------------------------------------------
    # Users and KYC review
    # ------------------------------------------------------------------
    @app.get("/admin/users", response_class=HTMLResponse, name="admin_users")
    async def admin_users(request: Request, q: str = ""):
        decision, blocked = await _admin(request)
        if blocked is not None:
            return blocked

        all_users = await load_or_default(request, lambda: users.list_users(q), list, what="users")
        pending = await load_or_default(request, users.pending_submissions, list, what="KYC submissions")
        return _page(
            request,
            "admin/users.html",
            decision,
            "users",
            users=all_users,
            submissions=pending,
            search=q,
        )

    @app.get("/admin/users/{uid}", response_class=HTMLResponse, name="admin_user_detail")
    async def admin_user_detail(request: Request, uid: str):
        decision, blocked = await _admin(request)
        if blocked is not None:
            return blocked

        profile = await load_or_default(request, lambda: users.get_user(uid), lambda: None, what="user")
        if profile is None:
            flash(request, "User not found.", category="error")
            return redirect(request, "admin_users")
        return _page(request, "admin/user_detail.html", decision, "users", profile=profile)

    def _register_user_action(suffix: str, action: Callable[[str], Awaitable[None]], success: str, failure: str) -> None:
        async def handler(request: Request, uid: str):
            decision, blocked = await _admin(request)
            if blocked is not None:
                return blocked
            await _write(request, lambda: action(uid), success=success, failure=failure)
            return redirect(request, "admin_users")

        app.add_api_route(
            f"/admin/users/{{uid}}/{suffix}",
            handler,
            methods=["POST"],
            name=f"admin_user_{suffix.replace('-', '_')}",
        )

    _register_user_action("approve", users.approve_kyc, "KYC approved successfully", "Failed to approve KYC.")
    _register_user_action("reject", users.reject_kyc, "KYC rejected", "Failed to reject KYC.")
    _register_user_action("suspend", users.suspend, "User suspended", "Failed to suspend user.")
    _register_user_action("reactivate", users.reactivate, "User reactivated", "Failed to reactivate user.")

    @app.post("/admin/users/{uid}/password-reset", name="admin_user_password_reset")
    async def admin_user_password_reset(request: Request, uid: str):
        decision, blocked = await _admin(request)
        if blocked is not None:
            return blocked

        profile = await load_or_default(request, lambda: users.get_user(uid), lambda: None, what="user")
        if profile is None or not profile.email:
            flash(request, "Failed to send password reset email.", category="error")
            return redirect(request, "admin_users")
        try:
            await users.send_password_reset(profile.email)
        except IdentityError as exc:
            logger.warning("Password reset for %s failed: %s", uid, exc.code)
            flash(request, friendly_auth_message(exc), category="error")
        else:
            flash(request, "Password reset email sent", category="success")
        return redirect(request, "admin_users")

    # ------------------------------------------------------------------
    # Settings: currencies, countries, fees and general
    # ------------------------------------------------------------------
    @app.get("/admin/settings", response_class=HTMLResponse, name="admin_settings")
    async def admin_settings(request: Request):
        decision, blocked = await _admin(request)
        if blocked is not None:
            return blocked

        currencies = await load_or_default(request, content.currencies, list, what="currencies")
        countries = await load_or_default(request, content.countries, list, what="countries")
        settings = await load_or_default(request, content.settings, PlatformSettings, what="platform settings")
        return _page(
            request,
            "admin/settings.html",
            decision,
            "settings",
            currencies=currencies,
            countries=countries,
            settings=settings,
        )

    @app.post("/admin/settings/currencies", name="admin_add_currency")
    async def admin_add_currency(request: Request):
        decision, blocked = await _admin(request)
        if blocked is not None:
            return blocked
        form = await request.form()
        try:
            currency = Currency(
                code=form_text(form, "code"),
                name=form_text(form, "name"),
                rate=form_text(form, "rate") or 1,
                active=form_flag(form, "active"),
            )
        except ValidationError:
            flash(request, "Rate must be a number.", category="error")
            return redirect(request, "admin_settings")
        await _write(request, lambda: content.save_currency(currency), success="Currency added", failure="Failed to add currency")
        return redirect(request, "admin_settings")

    @app.post("/admin/settings/countries", name="admin_add_country")
    async def admin_add_country(request: Request):
        decision, blocked = await _admin(request)
        if blocked is not None:
            return blocked
        form = await request.form()
        country = Country(
            code=form_text(form, "code"),
            name=form_text(form, "name"),
            active=form_flag(form, "active"),
        )
        await _write(request, lambda: content.save_country(country), success="Country added", failure="Failed to add country")
        return redirect(request, "admin_settings")

    def _register_code_action(
        kind: str,
        verb: str,
        action: Callable[[str], Awaitable[object]],
        success: str,
        failure: str,
    ) -> None:
        async def handler(request: Request, code: str):
            decision, blocked = await _admin(request)
            if blocked is not None:
                return blocked

            async def run() -> None:
                try:
                    await action(code)
                except KeyError as exc:
                    raise ValueError(f"Unknown code {code}") from exc

            await _write(request, run, success=success, failure=failure)
            return redirect(request, "admin_settings")

        app.add_api_route(
            f"/admin/settings/{kind}/{{code}}/{verb}",
            handler,
            methods=["POST"],
            name=f"admin_{verb}_{kind}",
        )

    _register_code_action("currencies", "toggle", content.toggle_currency, "Currency updated", "Failed to update currency")
    _register_code_action("currencies", "delete", content.delete_currency, "Currency deleted", "Failed to delete currency")
    _register_code_action("countries", "toggle", content.toggle_country, "Country updated", "Failed to update country")
    _register_code_action("countries", "delete", content.delete_country, "Country deleted", "Failed to delete country")

    @app.post("/admin/settings/platform", name="admin_save_settings")
    async def admin_save_settings(request: Request):
        decision, blocked = await _admin(request)
        if blocked is not None:
            return blocked
        form = await request.form()
        try:
            settings = model_from_form(PlatformSettings, form)
        except ValidationError as exc:
            names = {info.alias or name: name for name, info in PlatformSettings.model_fields.items()}
            fields = ", ".join(
                names.get(str(error["loc"][0]), str(error["loc"][0])) for error in exc.errors() if error.get("loc")
            )
            flash(request, f"Invalid value for: {fields}", category="error")
            return redirect(request, "admin_settings")
        await _write(
            request,
            lambda: content.save_settings(settings),
            success="Settings saved successfully",
            failure="Failed to save settings",
        )
        return redirect(request, "admin_settings")


__all__ = ["register_admin_routes"]
