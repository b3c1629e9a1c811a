from __future__ import annotations

from typing import Callable, List, Optional

import anyio
from fastapi.testclient import TestClient

from oripay.documents import MemoryDocumentStore, StoreUnavailableError
from oripay.guard import GuardState, RouteGuard
from oripay.identity import IdentityProvider, LocalIdentityProvider
from oripay.models import AuthStateChange
from oripay.sessions import SessionContext
from oripay.web import create_app


class DeferredIdentityProvider(IdentityProvider):
    """Provider that only reports its initial state when told to."""

    def __init__(self) -> None:
        self.listeners: List[Callable[[AuthStateChange], None]] = []

    async def authenticate(self, email, password):
        raise NotImplementedError

    async def create_identity(self, email, password):
        raise NotImplementedError

    async def update_display_name(self, session, name):
        raise NotImplementedError

    async def sign_out(self, session_id):
        return None

    def subscribe(self, listener):
        self.listeners.append(listener)
        return lambda: self.listeners.remove(listener)

    async def send_password_reset(self, email):
        raise NotImplementedError

    async def confirm_password_reset(self, token, new_password):
        raise NotImplementedError

    def release(self) -> None:
        for listener in list(self.listeners):
            listener(AuthStateChange(session_id=None, user=None))


class UnreachableAdminsStore(MemoryDocumentStore):
    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        if collection == "admins":
            raise StoreUnavailableError("store offline")
        return await super().get(collection, doc_id)


def _signed_in(identity: LocalIdentityProvider, context: SessionContext) -> str:
    anyio.run(identity.create_identity, "a@b.com", "secret1")
    return anyio.run(context.login, "a@b.com", "secret1")


def test_guard_reports_checking_while_loading() -> None:
    provider = DeferredIdentityProvider()
    context = SessionContext(provider)
    context.start()
    guard = RouteGuard(context, MemoryDocumentStore())

    decision = anyio.run(guard.evaluate, "session")
    assert decision.state is GuardState.CHECKING
    assert decision.redirect_to is None

    provider.release()
    decision = anyio.run(guard.evaluate, "session")
    assert decision.state is GuardState.ANONYMOUS
    assert decision.redirect_to == "/login"


def test_guard_authorizes_signed_in_user(identity: LocalIdentityProvider) -> None:
    context = SessionContext(identity)
    context.start()
    session_id = _signed_in(identity, context)
    guard = RouteGuard(context, MemoryDocumentStore())

    decision = anyio.run(guard.evaluate, session_id)

    assert decision.state is GuardState.AUTHORIZED
    assert decision.allowed is True
    assert decision.user.email == "a@b.com"


def test_admin_only_requires_marker(identity: LocalIdentityProvider) -> None:
    context = SessionContext(identity)
    context.start()
    session_id = _signed_in(identity, context)
    store = MemoryDocumentStore()
    guard = RouteGuard(context, store)

    async def evaluate():
        return await guard.evaluate(session_id, admin_only=True)

    decision = anyio.run(evaluate)
    assert decision.state is GuardState.UNAUTHORIZED
    assert decision.redirect_to == "/dashboard"

    uid = context.snapshot(session_id).user.uid
    anyio.run(store.set, "admins", uid, {"email": "a@b.com"})
    assert anyio.run(evaluate).state is GuardState.AUTHORIZED

    anyio.run(store.delete, "admins", uid)
    assert anyio.run(evaluate).state is GuardState.UNAUTHORIZED


def test_admin_check_fails_closed_when_store_unreachable(identity: LocalIdentityProvider) -> None:
    context = SessionContext(identity)
    context.start()
    session_id = _signed_in(identity, context)
    guard = RouteGuard(context, UnreachableAdminsStore())

    async def evaluate():
        return await guard.evaluate(session_id, admin_only=True)

    decision = anyio.run(evaluate)
    assert decision.state is GuardState.UNAUTHORIZED
    assert decision.redirect_to == "/dashboard"


def test_protected_page_shows_placeholder_while_loading() -> None:
    app = create_app(
        store=MemoryDocumentStore(),
        identity=DeferredIdentityProvider(),
        session_secret="tests-secret-key",
    )

    with TestClient(app) as client:
        response = client.get("/dashboard", follow_redirects=False)

    assert response.status_code == 503
    assert response.headers["retry-after"] == "1"
    assert "location" not in response.headers


def test_anonymous_visitor_is_sent_to_login(app) -> None:
    with TestClient(app) as client:
        for path in ("/dashboard", "/kyc", "/admin", "/admin/users"):
            response = client.get(path, follow_redirects=False)
            assert response.status_code == 303
            assert response.headers["location"] == "/login"


def test_non_admin_is_sent_to_dashboard_not_login(app, make_account, login) -> None:
    make_account("user@example.com")

    with TestClient(app) as client:
        assert login(client, "user@example.com").status_code == 303
        for path in ("/admin", "/admin/content", "/admin/users", "/admin/settings", "/admin/footer"):
            response = client.get(path, follow_redirects=False)
            assert response.status_code == 303
            assert response.headers["location"] == "/dashboard"

        response = client.post("/admin/users/anyone/approve", follow_redirects=False)
        assert response.headers["location"] == "/dashboard"
