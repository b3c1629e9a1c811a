from __future__ import annotations

from datetime import timedelta

import anyio
import pytest

from oripay.identity import IdentityError, LocalIdentityProvider
from oripay.sessions import SessionContext


def test_context_is_loading_until_first_notification(identity: LocalIdentityProvider) -> None:
    context = SessionContext(identity)

    assert context.loading is True
    assert context.snapshot("anything").loading is True

    context.start()

    assert context.started is True
    assert context.loading is False
    state = context.snapshot(None)
    assert state.loading is False
    assert state.user is None


def test_start_subscribes_only_once(identity: LocalIdentityProvider) -> None:
    context = SessionContext(identity)
    context.start()
    context.start()

    assert len(identity._listeners) == 1
    context.close()
    assert identity._listeners == []


def test_login_records_session_from_notification(identity: LocalIdentityProvider) -> None:
    anyio.run(identity.create_identity, "a@b.com", "secret1")
    context = SessionContext(identity)
    context.start()

    session_id = anyio.run(context.login, "a@b.com", "secret1")

    state = context.snapshot(session_id)
    assert state.authenticated is True
    assert state.user.email == "a@b.com"
    assert context.snapshot("someone-else").user is None


def test_login_requires_both_fields(identity: LocalIdentityProvider) -> None:
    context = SessionContext(identity)
    context.start()

    with pytest.raises(ValueError):
        anyio.run(context.login, "", "secret1")
    with pytest.raises(ValueError):
        anyio.run(context.login, "a@b.com", "")


def test_login_propagates_provider_errors(identity: LocalIdentityProvider) -> None:
    context = SessionContext(identity)
    context.start()

    with pytest.raises(IdentityError) as exc_info:
        anyio.run(context.login, "a@b.com", "secret1")
    assert exc_info.value.code == "invalid-credential"


def test_logout_clears_session(identity: LocalIdentityProvider) -> None:
    anyio.run(identity.create_identity, "a@b.com", "secret1")
    context = SessionContext(identity)
    context.start()
    session_id = anyio.run(context.login, "a@b.com", "secret1")

    anyio.run(context.logout, session_id)

    assert context.snapshot(session_id).user is None
    anyio.run(context.logout, None)


def test_observers_receive_every_change(identity: LocalIdentityProvider) -> None:
    anyio.run(identity.create_identity, "a@b.com", "secret1")
    context = SessionContext(identity)
    seen = []
    unsubscribe = context.subscribe(lambda session_id, state: seen.append((session_id, state.user)))
    context.start()

    session_id = anyio.run(context.login, "a@b.com", "secret1")
    anyio.run(context.logout, session_id)
    unsubscribe()
    anyio.run(context.login, "a@b.com", "secret1")

    assert seen[0] == (None, None)
    assert seen[1][0] == session_id and seen[1][1].email == "a@b.com"
    assert seen[2] == (session_id, None)
    assert len(seen) == 3


def test_idle_sessions_expire(identity: LocalIdentityProvider) -> None:
    anyio.run(identity.create_identity, "a@b.com", "secret1")
    context = SessionContext(identity, ttl=timedelta(seconds=-1))
    context.start()

    session_id = anyio.run(context.login, "a@b.com", "secret1")

    assert context.snapshot(session_id).user is None


def test_close_forgets_sessions(identity: LocalIdentityProvider) -> None:
    anyio.run(identity.create_identity, "a@b.com", "secret1")
    context = SessionContext(identity)
    context.start()
    session_id = anyio.run(context.login, "a@b.com", "secret1")

    context.close()

    assert context.started is False
    assert context.snapshot(session_id).user is None


def test_idle_sessions_are_released_from_the_provider(identity: LocalIdentityProvider) -> None:
    anyio.run(identity.create_identity, "a@b.com", "secret1")
    identity._sessions.clear()
    context = SessionContext(identity, ttl=timedelta(seconds=-1))
    context.start()

    for _ in range(50):
        anyio.run(context.login, "a@b.com", "secret1")

    assert len(context._records) <= 1
    assert len(identity._sessions) <= 2

    context.snapshot(None)
    assert anyio.run(context.release_expired) >= 1
    assert context._records == {}
    assert len(identity._sessions) <= 1


def test_lookups_prune_other_expired_sessions(identity: LocalIdentityProvider) -> None:
    anyio.run(identity.create_identity, "a@b.com", "secret1")
    context = SessionContext(identity)
    context.start()
    stale = anyio.run(context.login, "a@b.com", "secret1")
    context._records[stale].expires_at = context._now() - timedelta(seconds=1)

    assert context.snapshot("some-other-browser").user is None
    assert stale not in context._records

    anyio.run(context.release_expired)
    assert stale not in identity._sessions
