"""Per-request access control for customer and admin pages."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from .documents import DocumentStore, DocumentStoreError
from .models import Identity
from .schemas import ADMINS
from .sessions import SessionContext

logger = logging.getLogger("oripay.guard")


class GuardState(str, enum.Enum):
    CHECKING = "checking"
    AUTHORIZED = "authorized"
    UNAUTHORIZED = "unauthorized"
    ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class GuardDecision:
    state: GuardState
    user: Optional[Identity] = None
    redirect_to: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.state is GuardState.AUTHORIZED


class RouteGuard:
    """Decide whether a request may reach a protected page.

    The admin marker is looked up on every evaluation; nothing is cached
    between requests, so a revoked privilege takes effect on the next
    guarded page load. If the lookup fails the request is treated as
    under-privileged.
    """

    def __init__(
        self,
        context: SessionContext,
        store: DocumentStore,
        *,
        login_path: str = "/login",
        landing_path: str = "/dashboard",
    ) -> None:
        self._context = context
        self._store = store
        self._login_path = login_path
        self._landing_path = landing_path

    @property
    def login_path(self) -> str:
        return self._login_path

    @property
    def landing_path(self) -> str:
        return self._landing_path

    async def is_admin(self, uid: str) -> bool:
        return await self._store.get(ADMINS, uid) is not None

    async def evaluate(self, session_id: Optional[str], *, admin_only: bool = False) -> GuardDecision:
        state = self._context.snapshot(session_id)
        await self._context.release_expired()
        if state.loading:
            return GuardDecision(GuardState.CHECKING)

        user = state.user
        if user is None:
            return GuardDecision(GuardState.ANONYMOUS, redirect_to=self._login_path)

        if not admin_only:
            return GuardDecision(GuardState.AUTHORIZED, user=user)

        try:
            admin = await self.is_admin(user.uid)
        except DocumentStoreError:
            logger.exception("Admin check failed for %s; denying access", user.uid)
            admin = False

        if admin:
            return GuardDecision(GuardState.AUTHORIZED, user=user)

        logger.info("Denied admin page to %s", user.uid)
        return GuardDecision(GuardState.UNAUTHORIZED, user=user, redirect_to=self._landing_path)


__all__ = ["GuardDecision", "GuardState", "RouteGuard"]
