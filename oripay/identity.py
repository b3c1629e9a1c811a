"""Identity-provider boundary and the bundled SQLite-backed provider."""

from __future__ import annotations

import logging
import re
import secrets
import sqlite3
import uuid
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Deque, Dict, List, Optional

import anyio
from passlib.context import CryptContext

from .models import AuthSession, AuthStateChange, Identity

logger = logging.getLogger("oripay.identity")

AuthListener = Callable[[AuthStateChange], None]
ResetDelivery = Callable[[str, str], None]

PASSWORD_MIN_LENGTH = 6

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_AUTH_MESSAGES: Dict[str, str] = {
    "invalid-credential": "Incorrect email or password. Please try again.",
    "user-not-found": "No account found with that email.",
    "wrong-password": "Wrong password entered.",
    "user-disabled": "Your account has been disabled.",
    "too-many-requests": "Too many attempts. Please try again later.",
    "invalid-email": "This email address is not valid.",
    "email-already-in-use": "An account with that email already exists.",
    "weak-password": f"Password must be at least {PASSWORD_MIN_LENGTH} characters long.",
    "invalid-action-code": "This password reset link is invalid or has expired.",
    "network-request-failed": "We could not reach the sign-in service. Please try again shortly.",
}

_DEFAULT_AUTH_MESSAGE = "Something went wrong. Please try again."


class IdentityError(Exception):
    """Error reported by the identity provider, identified by ``code``."""

    def __init__(self, code: str, message: Optional[str] = None) -> None:
        self.code = code
        super().__init__(message or _AUTH_MESSAGES.get(code, _DEFAULT_AUTH_MESSAGE))


def friendly_auth_message(error: Exception) -> str:
    """Translate an identity error into a message suitable for end users."""

    code = getattr(error, "code", None)
    if isinstance(code, str):
        return _AUTH_MESSAGES.get(code, _DEFAULT_AUTH_MESSAGE)
    return _DEFAULT_AUTH_MESSAGE


class IdentityProvider(ABC):
    """Authenticates credentials and issues sessions."""

    @abstractmethod
    async def authenticate(self, email: str, password: str) -> AuthSession:
        ...

    @abstractmethod
    async def create_identity(self, email: str, password: str) -> AuthSession:
        ...

    @abstractmethod
    async def update_display_name(self, session: AuthSession, name: str) -> Identity:
        ...

    @abstractmethod
    async def sign_out(self, session_id: str) -> None:
        ...

    @abstractmethod
    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """Register ``listener`` and return a callable that removes it.

        The listener is notified once immediately with the provider's current
        state and then after every sign-in, sign-out or profile change.
        """

    @abstractmethod
    async def send_password_reset(self, email: str) -> None:
        ...

    @abstractmethod
    async def confirm_password_reset(self, token: str, new_password: str) -> None:
        ...


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _log_reset_delivery(email: str, token: str) -> None:
    logger.info("Password reset link for %s: /reset-password?token=%s", email, token)


_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class LocalIdentityProvider(IdentityProvider):
    """Identity provider backed by the service's own SQLite database."""

    def __init__(
        self,
        path: Path,
        *,
        reset_delivery: Optional[ResetDelivery] = None,
        reset_ttl: timedelta = timedelta(hours=1),
        max_failed_attempts: int = 5,
        lockout_window: timedelta = timedelta(minutes=15),
    ) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        self._path = path
        self._reset_delivery = reset_delivery or _log_reset_delivery
        self._reset_ttl = reset_ttl
        self._max_failed_attempts = max_failed_attempts
        self._lockout_window = lockout_window
        self._listeners: List[AuthListener] = []
        self._sessions: Dict[str, str] = {}
        self._failures: Dict[str, Deque[datetime]] = {}

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    async def _run(self, func, *args):
        try:
            return await anyio.to_thread.run_sync(func, *args)
        except sqlite3.DatabaseError as exc:
            logger.warning("Identity database request failed: %s", exc)
            raise IdentityError("network-request-failed") from exc

    def initialize(self) -> None:
        """Create the identity tables if they do not already exist."""

        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS identities (
                    uid TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    display_name TEXT,
                    password_hash TEXT NOT NULL,
                    disabled INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS password_resets (
                    token TEXT PRIMARY KEY,
                    uid TEXT NOT NULL REFERENCES identities(uid) ON DELETE CASCADE,
                    expires_at TEXT NOT NULL
                );
                """
            )

    def _now(self) -> datetime:
        return _current_timestamp()

    @staticmethod
    def _row_to_identity(row: sqlite3.Row) -> Identity:
        return Identity(
            uid=row["uid"],
            email=row["email"],
            display_name=row["display_name"],
            created_at=datetime.fromisoformat(row["created_at"]),
            disabled=bool(row["disabled"]),
        )

    @staticmethod
    def _normalise_email(email: str) -> str:
        normalised = (email or "").strip().lower()
        if not _EMAIL_PATTERN.match(normalised):
            raise IdentityError("invalid-email")
        return normalised

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------
    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)
        listener(AuthStateChange(session_id=None, user=None))

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, session_id: str, user: Optional[Identity]) -> None:
        change = AuthStateChange(session_id=session_id, user=user)
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("Auth state listener failed")

    def _open_session(self, user: Identity) -> AuthSession:
        session_id = secrets.token_urlsafe(32)
        self._sessions[session_id] = user.uid
        self._notify(session_id, user)
        return AuthSession(session_id=session_id, user=user)

    def _revoke_sessions(self, uid: str) -> None:
        for session_id, owner in list(self._sessions.items()):
            if owner == uid:
                self._sessions.pop(session_id, None)
                self._notify(session_id, None)

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------
    def _prune_failures(self) -> None:
        window_start = self._now() - self._lockout_window
        for email, failures in list(self._failures.items()):
            while failures and failures[0] <= window_start:
                failures.popleft()
            if not failures:
                del self._failures[email]

    def _recent_failures(self, email: str) -> int:
        self._prune_failures()
        return len(self._failures.get(email, ()))

    def _record_failure(self, email: str) -> None:
        self._failures.setdefault(email, deque()).append(self._now())

    # ------------------------------------------------------------------
    # Boundary operations
    # ------------------------------------------------------------------
    async def authenticate(self, email: str, password: str) -> AuthSession:
        normalised = self._normalise_email(email)
        if self._recent_failures(normalised) >= self._max_failed_attempts:
            raise IdentityError("too-many-requests")

        row = await self._run(self._fetch_by_email, normalised)
        if row is None:
            self._record_failure(normalised)
            raise IdentityError("invalid-credential")

        verified = await anyio.to_thread.run_sync(_pwd_context.verify, password, row["password_hash"])
        if not verified:
            self._record_failure(normalised)
            raise IdentityError("invalid-credential")

        user = self._row_to_identity(row)
        if user.disabled:
            raise IdentityError("user-disabled")

        self._failures.pop(normalised, None)
        logger.info("Signed in %s", user.uid)
        return self._open_session(user)

    async def create_identity(self, email: str, password: str) -> AuthSession:
        normalised = self._normalise_email(email)
        if len(password or "") < PASSWORD_MIN_LENGTH:
            raise IdentityError("weak-password")

        password_hash = await anyio.to_thread.run_sync(_pwd_context.hash, password)
        user = Identity(
            uid=uuid.uuid4().hex,
            email=normalised,
            display_name=None,
            created_at=self._now(),
        )
        await self._run(self._insert_identity, user, password_hash)
        logger.info("Created identity %s for %s", user.uid, normalised)
        return self._open_session(user)

    async def update_display_name(self, session: AuthSession, name: str) -> Identity:
        cleaned = name.strip() or None
        await self._run(self._set_display_name, session.user.uid, cleaned)
        refreshed = await self.get_identity(session.user.uid)
        if refreshed is None:
            raise IdentityError("user-not-found")
        for session_id, owner in list(self._sessions.items()):
            if owner == refreshed.uid:
                self._notify(session_id, refreshed)
        return refreshed

    async def sign_out(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            self._notify(session_id, None)

    async def send_password_reset(self, email: str) -> None:
        normalised = self._normalise_email(email)
        row = await self._run(self._fetch_by_email, normalised)
        if row is None:
            raise IdentityError("user-not-found")
        token = secrets.token_urlsafe(32)
        expires_at = self._now() + self._reset_ttl
        await self._run(self._insert_reset, token, row["uid"], expires_at)
        self._reset_delivery(normalised, token)

    async def confirm_password_reset(self, token: str, new_password: str) -> None:
        if len(new_password or "") < PASSWORD_MIN_LENGTH:
            raise IdentityError("weak-password")
        row = await self._run(self._pop_reset, token)
        if row is None or datetime.fromisoformat(row["expires_at"]) <= self._now():
            raise IdentityError("invalid-action-code")
        password_hash = await anyio.to_thread.run_sync(_pwd_context.hash, new_password)
        await self._run(self._set_password_hash, row["uid"], password_hash)
        self._revoke_sessions(row["uid"])

    # ------------------------------------------------------------------
    # Administrative helpers
    # ------------------------------------------------------------------
    async def get_identity(self, uid: str) -> Optional[Identity]:
        row = await self._run(self._fetch_by_uid, uid)
        return self._row_to_identity(row) if row is not None else None

    async def get_identity_by_email(self, email: str) -> Optional[Identity]:
        row = await self._run(self._fetch_by_email, email.strip().lower())
        return self._row_to_identity(row) if row is not None else None

    async def list_identities(self) -> List[Identity]:
        rows = await self._run(self._fetch_all)
        return [self._row_to_identity(row) for row in rows]

    async def set_disabled(self, uid: str, disabled: bool) -> None:
        await self._run(self._set_disabled, uid, disabled)
        if disabled:
            self._revoke_sessions(uid)

    # ------------------------------------------------------------------
    # SQLite helpers (run in worker threads)
    # ------------------------------------------------------------------
    def _fetch_by_email(self, email: str) -> Optional[sqlite3.Row]:
        with self._connect() as conn:
            return conn.execute("SELECT * FROM identities WHERE email = ?", (email,)).fetchone()

    def _fetch_by_uid(self, uid: str) -> Optional[sqlite3.Row]:
        with self._connect() as conn:
            return conn.execute("SELECT * FROM identities WHERE uid = ?", (uid,)).fetchone()

    def _fetch_all(self) -> List[sqlite3.Row]:
        with self._connect() as conn:
            return conn.execute("SELECT * FROM identities ORDER BY created_at").fetchall()

    def _insert_identity(self, user: Identity, password_hash: str) -> None:
        with self._connect() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO identities (uid, email, display_name, password_hash, disabled, created_at)
                    VALUES (?, ?, ?, ?, 0, ?)
                    """,
                    (user.uid, user.email, user.display_name, password_hash, user.created_at.isoformat()),
                )
            except sqlite3.IntegrityError as exc:
                raise IdentityError("email-already-in-use") from exc

    def _set_display_name(self, uid: str, name: Optional[str]) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE identities SET display_name = ? WHERE uid = ?", (name, uid))

    def _set_password_hash(self, uid: str, password_hash: str) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE identities SET password_hash = ? WHERE uid = ?", (password_hash, uid))

    def _set_disabled(self, uid: str, disabled: bool) -> None:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE identities SET disabled = ? WHERE uid = ?",
                (1 if disabled else 0, uid),
            )
            if cursor.rowcount == 0:
                raise IdentityError("user-not-found")

    def _insert_reset(self, token: str, uid: str, expires_at: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO password_resets (token, uid, expires_at) VALUES (?, ?, ?)",
                (token, uid, expires_at.isoformat()),
            )

    def _pop_reset(self, token: str) -> Optional[sqlite3.Row]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM password_resets WHERE token = ?", (token,)).fetchone()
            if row is not None:
                conn.execute("DELETE FROM password_resets WHERE token = ?", (token,))
        return row


__all__ = [
    "AuthListener",
    "IdentityError",
    "IdentityProvider",
    "LocalIdentityProvider",
    "PASSWORD_MIN_LENGTH",
    "friendly_auth_message",
]
