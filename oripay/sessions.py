"""Process-wide view of who is signed in, fed by the identity provider."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from .identity import IdentityProvider
from .models import AuthStateChange, Identity

logger = logging.getLogger("oripay.sessions")

SessionListener = Callable[[Optional[str], "SessionState"], None]


@dataclass(frozen=True)
class SessionState:
    """The signed-in identity for one browser session plus the loading flag."""

    user: Optional[Identity]
    loading: bool

    @property
    def authenticated(self) -> bool:
        return self.user is not None


@dataclass
class _SessionRecord:
    user: Identity
    expires_at: datetime


class SessionContext:
    """Observe identity-provider state and expose it to the web tier.

    One instance is created by the application factory and handed to the
    route guard and the views. It holds a single subscription to the
    identity provider for the lifetime of the process: :meth:`start` is
    called on application startup and :meth:`close` on shutdown.
    """

    def __init__(self, identity: IdentityProvider, *, ttl: timedelta = timedelta(hours=8)) -> None:
        self._identity = identity
        self._ttl = ttl
        self._records: Dict[str, _SessionRecord] = {}
        self._expired: List[str] = []
        self._listeners: List[SessionListener] = []
        self._lock = threading.Lock()
        self._loading = True
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def started(self) -> bool:
        return self._unsubscribe is not None

    def start(self) -> None:
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self._identity.subscribe(self._handle_change)
        logger.debug("Subscribed to identity provider")

    def close(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()
        with self._lock:
            self._records.clear()
            self._expired.clear()

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a consumer notified with the state of every changed session."""

        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def snapshot(self, session_id: Optional[str]) -> SessionState:
        with self._lock:
            if self._loading:
                return SessionState(user=None, loading=True)
            now = self._now()
            self._prune_locked(now)
            if not session_id:
                return SessionState(user=None, loading=False)
            record = self._records.get(session_id)
            if record is None:
                return SessionState(user=None, loading=False)
            record.expires_at = now + self._ttl
            return SessionState(user=record.user, loading=False)

    async def login(self, email: str, password: str) -> str:
        """Sign in through the identity provider and return the session id.

        Provider errors propagate unchanged. The local record is populated by
        the provider's notification.
        """

        if not email or not email.strip() or not password:
            raise ValueError("Email and password are required.")
        await self.release_expired()
        session = await self._identity.authenticate(email.strip(), password)
        return session.session_id

    async def logout(self, session_id: Optional[str]) -> None:
        await self.release_expired()
        if not session_id:
            return
        await self._identity.sign_out(session_id)

    async def release_expired(self) -> int:
        """Sign out provider sessions whose local record went idle past the TTL."""

        with self._lock:
            expired, self._expired = self._expired, []
        for session_id in expired:
            await self._identity.sign_out(session_id)
        if expired:
            logger.debug("Released %d idle session(s)", len(expired))
        return len(expired)

    def _prune_locked(self, now: datetime) -> None:
        for session_id, record in list(self._records.items()):
            if record.expires_at <= now:
                del self._records[session_id]
                self._expired.append(session_id)

    def _handle_change(self, change: AuthStateChange) -> None:
        with self._lock:
            self._loading = False
            self._prune_locked(self._now())
            if change.session_id is not None:
                if change.user is None:
                    self._records.pop(change.session_id, None)
                else:
                    self._records[change.session_id] = _SessionRecord(
                        user=change.user,
                        expires_at=self._now() + self._ttl,
                    )
            listeners = list(self._listeners)

        state = SessionState(user=change.user, loading=False)
        for listener in listeners:
            try:
                listener(change.session_id, state)
            except Exception:
                logger.exception("Session listener failed")

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)


__all__ = ["SessionContext", "SessionListener", "SessionState"]
