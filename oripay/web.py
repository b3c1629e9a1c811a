"""Public site, authentication, onboarding and customer dashboard."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Form, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .admin import register_admin_routes
from .content import ContentRepository
from .documents import DocumentStore, DocumentStoreError
from .guard import RouteGuard
from .identity import IdentityError, IdentityProvider, friendly_auth_message
from .onboarding import (
    DirectorForm,
    KycForm,
    OnboardingService,
    OnboardingValidationError,
    ProfileWriteError,
    RegistrationForm,
)
from .schemas import AboutContent, FooterContent, HomepageContent, UserProfile
from .sessions import SessionContext
from .users import UserDirectory
from .views import (
    SESSION_KEY,
    build_templates,
    flash,
    form_text,
    guard_response,
    load_or_default,
    read_upload,
    redirect,
    render,
    session_id_of,
)

logger = logging.getLogger("oripay.web")


def create_app(
    *,
    store: DocumentStore,
    identity: IdentityProvider,
    session_secret: str,
    context: Optional[SessionContext] = None,
    secure_cookies: bool = False,
    trusted_proxies: List[str] | str = "*",
    site_name: str = "Oripay Exchange",
) -> FastAPI:
    """Create the Oripay web application around the two backend boundaries."""

    if not session_secret:
        raise RuntimeError("A session secret is required to serve the site")

    if context is None:
        context = SessionContext(identity)

    guard = RouteGuard(context, store)
    content = ContentRepository(store)
    users = UserDirectory(store, identity)
    onboarding = OnboardingService(store, identity)
    templates = build_templates(site_name)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        context.start()
        try:
            yield
        finally:
            context.close()

    app = FastAPI(
        title=site_name,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=trusted_proxies)
    app.add_middleware(
        SessionMiddleware,
        secret_key=session_secret,
        session_cookie="oripay_session",
        https_only=secure_cookies,
        same_site="lax",
        max_age=int(context.ttl.total_seconds()),
    )
    app.state.store = store
    app.state.identity = identity
    app.state.session_context = context
    app.state.guard = guard

    async def _footer(request: Request) -> FooterContent:
        return await load_or_default(request, content.footer, FooterContent, what="footer", notify=False)

    async def _page(request: Request, name: str, **extra):
        state = context.snapshot(session_id_of(request))
        payload = {"footer": await _footer(request), "current_user": state.user}
        payload.update(extra)
        return render(templates, request, name, payload)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            return render(
                templates,
                request,
                "not_found.html",
                {"footer": FooterContent(), "current_user": None},
                status_code=status.HTTP_404_NOT_FOUND,
            )
        return HTMLResponse(str(exc.detail), status_code=exc.status_code)

    # ------------------------------------------------------------------
    # Public pages
    # ------------------------------------------------------------------
    @app.get("/", response_class=HTMLResponse, name="home")
    async def home(request: Request):
        homepage = await load_or_default(request, content.published_homepage, HomepageContent, what="homepage")
        announcements = await load_or_default(
            request,
            lambda: content.announcements(active_only=True),
            list,
            what="announcements",
        )
        return await _page(request, "home.html", homepage=homepage, announcements=announcements)

    @app.get("/services", response_class=HTMLResponse, name="services")
    async def services(request: Request):
        items = await load_or_default(
            request,
            lambda: content.services(active_only=True),
            list,
            what="services",
        )
        return await _page(request, "services.html", services=items)

    @app.get("/about", response_class=HTMLResponse, name="about")
    async def about(request: Request):
        about_content = await load_or_default(request, content.about, AboutContent, what="about page")
        return await _page(request, "about.html", about=about_content)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    @app.get("/login", response_class=HTMLResponse, name="show_login")
    async def login_form(request: Request):
        if context.snapshot(session_id_of(request)).authenticated:
            return redirect(request, "dashboard")
        return await _page(request, "login.html")

    @app.post("/login", name="process_login")
    async def process_login(request: Request, email: str = Form(""), password: str = Form("")):
        try:
            session_id = await context.login(email, password)
        except ValueError as exc:
            flash(request, str(exc), category="error")
            return redirect(request, "show_login")
        except IdentityError as exc:
            logger.info("Login failed for %s: %s", email.strip().lower(), exc.code)
            flash(request, friendly_auth_message(exc), category="error", title="Login Failed")
            return redirect(request, "show_login")

        await _replace_session(request, session_id)
        return redirect(request, "dashboard")

    async def _replace_session(request: Request, session_id: str) -> None:
        previous = session_id_of(request)
        if previous and previous != session_id:
            await context.logout(previous)
        request.session.clear()
        request.session[SESSION_KEY] = session_id

    @app.get("/logout", name="logout")
    async def logout(request: Request):
        await context.logout(session_id_of(request))
        request.session.clear()
        flash(request, "You have been logged out.", category="success")
        return redirect(request, "show_login")

    @app.get("/forgot-password", response_class=HTMLResponse, name="forgot_password")
    async def forgot_password_form(request: Request):
        return await _page(request, "forgot_password.html")

    @app.post("/forgot-password", name="process_forgot_password")
    async def process_forgot_password(request: Request, email: str = Form("")):
        if not email.strip():
            flash(request, "Please enter your email address.", category="error")
            return redirect(request, "forgot_password")
        try:
            await identity.send_password_reset(email)
        except IdentityError as exc:
            if exc.code != "user-not-found":
                flash(request, friendly_auth_message(exc), category="error")
                return redirect(request, "forgot_password")
        flash(
            request,
            "If an account exists for that email, a password reset link has been sent.",
            category="success",
        )
        return redirect(request, "show_login")

    @app.get("/reset-password", response_class=HTMLResponse, name="reset_password")
    async def reset_password_form(request: Request, token: str = ""):
        return await _page(request, "reset_password.html", token=token)

    @app.post("/reset-password", name="process_reset_password")
    async def process_reset_password(
        request: Request,
        token: str = Form(""),
        password: str = Form(""),
        confirm_password: str = Form(""),
    ):
        if password != confirm_password:
            flash(request, "Passwords do not match.", category="error", title="Password Mismatch")
            return redirect_with_token(request, token)
        try:
            await identity.confirm_password_reset(token, password)
        except IdentityError as exc:
            flash(request, friendly_auth_message(exc), category="error")
            return redirect_with_token(request, token)
        flash(request, "Password updated. You can now log in.", category="success")
        return redirect(request, "show_login")

    def redirect_with_token(request: Request, token: str) -> RedirectResponse:
        target = request.url_for("reset_password").include_query_params(token=token)
        return RedirectResponse(str(target), status_code=status.HTTP_303_SEE_OTHER)

    # ------------------------------------------------------------------
    # Onboarding
    # ------------------------------------------------------------------
    @app.get("/register", response_class=HTMLResponse, name="register")
    async def register_form(request: Request):
        return await _page(request, "register.html")

    @app.post("/register", name="process_register")
    async def process_register(request: Request):
        form = await request.form()

        first_names = form.getlist("director_first_name")
        last_names = form.getlist("director_last_name")
        id_files = form.getlist("director_id_file")
        kra_files = form.getlist("director_kra_file")

        def _nth(values, index):
            return values[index] if index < len(values) else None

        def _text(value) -> str:
            return value.strip() if isinstance(value, str) else ""

        directors: List[DirectorForm] = []
        for index, first_name in enumerate(first_names):
            directors.append(
                DirectorForm(
                    first_name=_text(first_name),
                    last_name=_text(_nth(last_names, index)),
                    id_file=await read_upload(_nth(id_files, index)),
                    kra_file=await read_upload(_nth(kra_files, index)),
                )
            )

        password = form.get("password")
        confirm_password = form.get("confirm_password")
        registration = RegistrationForm(
            email=form_text(form, "email"),
            password=password if isinstance(password, str) else "",
            confirm_password=confirm_password if isinstance(confirm_password, str) else "",
            company_name=form_text(form, "company_name"),
            business_type=form_text(form, "business_type"),
            phone=form_text(form, "phone"),
            coi_number=form_text(form, "coi_number"),
            coi_file=await read_upload(form.get("coi_file")),
            cr12_file=await read_upload(form.get("cr12_file")),
            company_kra_file=await read_upload(form.get("company_kra_file")),
            directors=directors,
        )

        try:
            session = await onboarding.register(registration)
        except OnboardingValidationError as exc:
            flash(request, str(exc), category="error", title=exc.title)
            return redirect(request, "register")
        except IdentityError as exc:
            flash(request, friendly_auth_message(exc), category="error", title="Registration Failed")
            return redirect(request, "register")
        except ProfileWriteError as exc:
            await _replace_session(request, exc.session.session_id)
            flash(
                request,
                "Your account was created but your company details could not be saved. "
                "Please contact support.",
                category="error",
                title="Registration Failed",
            )
            return redirect(request, "register")

        await _replace_session(request, session.session_id)
        flash(
            request,
            "Please complete your KYC process.",
            category="success",
            title="Registration Successful",
        )
        return redirect(request, "kyc")

    @app.get("/kyc", response_class=HTMLResponse, name="kyc")
    async def kyc_form(request: Request):
        decision = await guard.evaluate(session_id_of(request))
        blocked = guard_response(templates, request, decision)
        if blocked is not None:
            return blocked
        return await _page(request, "kyc.html")

    @app.post("/kyc", name="process_kyc")
    async def process_kyc(request: Request):
        decision = await guard.evaluate(session_id_of(request))
        blocked = guard_response(templates, request, decision)
        if blocked is not None:
            return blocked

        form = await request.form()
        submission = KycForm(
            id_number=form_text(form, "id_number"),
            kra_pin=form_text(form, "kra_pin"),
            date_of_birth=form_text(form, "date_of_birth"),
            address=form_text(form, "address"),
            city=form_text(form, "city"),
            country=form_text(form, "country"),
        )
        try:
            await onboarding.submit_kyc(
                decision.user.uid,
                submission,
                id_document=await read_upload(form.get("id_document")),
                selfie=await read_upload(form.get("selfie")),
            )
        except OnboardingValidationError as exc:
            flash(request, str(exc), category="error", title=exc.title)
            return redirect(request, "kyc")
        except DocumentStoreError:
            logger.exception("KYC submission failed for %s", decision.user.uid)
            flash(
                request,
                "Something went wrong. Please try again.",
                category="error",
                title="KYC Submission Failed",
            )
            return redirect(request, "kyc")

        flash(
            request,
            "Your verification is under review. We'll notify you soon!",
            category="success",
            title="KYC Submitted Successfully",
        )
        return redirect(request, "dashboard")

    # ------------------------------------------------------------------
    # Customer dashboard
    # ------------------------------------------------------------------
    @app.get("/dashboard", response_class=HTMLResponse, name="dashboard")
    async def dashboard(request: Request):
        decision = await guard.evaluate(session_id_of(request))
        blocked = guard_response(templates, request, decision)
        if blocked is not None:
            return blocked

        user = decision.user

        async def _profile() -> UserProfile:
            profile = await users.get_user(user.uid)
            return profile or UserProfile(uid=user.uid, email=user.email)

        profile = await load_or_default(
            request,
            _profile,
            lambda: UserProfile(uid=user.uid, email=user.email),
            what="user profile",
        )
        try:
            is_admin = await guard.is_admin(user.uid)
        except DocumentStoreError:
            logger.warning("Admin lookup failed for %s while rendering dashboard", user.uid)
            is_admin = False

        return await _page(
            request,
            "dashboard.html",
            profile=profile,
            greeting=user.display_name or profile.greeting_name,
            email=user.email,
            is_admin=is_admin,
        )

    register_admin_routes(
        app,
        templates=templates,
        guard=guard,
        content=content,
        users=users,
    )

    return app


__all__ = ["create_app"]
