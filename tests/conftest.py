from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, List, Tuple

import anyio
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from oripay.documents import MemoryDocumentStore
from oripay.identity import LocalIdentityProvider
from oripay.schemas import ADMINS, USERS
from oripay.web import create_app

SESSION_SECRET = "tests-secret-key"


@pytest.fixture()
def store() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture()
def reset_links() -> List[Tuple[str, str]]:
    return []


@pytest.fixture()
def identity(tmp_path: Path, reset_links) -> LocalIdentityProvider:
    provider = LocalIdentityProvider(
        tmp_path / "identity.sqlite3",
        reset_delivery=lambda email, token: reset_links.append((email, token)),
    )
    provider.initialize()
    return provider


@pytest.fixture()
def app(store, identity):
    return create_app(store=store, identity=identity, session_secret=SESSION_SECRET)


@pytest.fixture()
def make_account(store, identity) -> Callable[..., str]:
    """Create an identity with a ``users`` record; returns the uid."""

    def _make(email: str, password: str = "secret1", *, admin: bool = False, **profile) -> str:
        async def _create() -> str:
            session = await identity.create_identity(email, password)
            uid = session.user.uid
            record = {
                "email": session.user.email,
                "companyName": profile.pop("company_name", "Acme Ltd"),
                "kycStatus": "pending",
                "status": "active",
                "kycCompleted": False,
            }
            record.update(profile)
            await store.set(USERS, uid, record)
            if admin:
                await store.set(ADMINS, uid, {"email": session.user.email})
            await identity.sign_out(session.session_id)
            return uid

        return anyio.run(_create)

    return _make


@pytest.fixture()
def login() -> Callable[..., object]:
    def _login(client, email: str, password: str = "secret1"):
        return client.post(
            "/login",
            data={"email": email, "password": password},
            follow_redirects=False,
        )

    return _login
