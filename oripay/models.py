"""Domain models shared by the identity, session and web layers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class Identity:
    """An account known to the identity provider."""

    uid: str
    email: str
    display_name: Optional[str]
    created_at: datetime
    disabled: bool = False


@dataclass(frozen=True)
class AuthSession:
    """A signed-in session issued by the identity provider."""

    session_id: str
    user: Identity


@dataclass(frozen=True)
class AuthStateChange:
    """Notification delivered to identity-provider subscribers.

    ``session_id`` is ``None`` for the initial notification sent on
    subscription, which carries no session of its own.
    """

    session_id: Optional[str]
    user: Optional[Identity]


@dataclass(frozen=True)
class Upload:
    """A file received from a form submission."""

    filename: str
    content_type: Optional[str]
    data: bytes


__all__ = ["AuthSession", "AuthStateChange", "Identity", "Upload"]
