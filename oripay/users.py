"""Customer records, KYC review and admin markers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from .documents import SERVER_TIMESTAMP, DocumentStore
from .identity import IdentityProvider
from .schemas import (
    ACCOUNT_ACTIVE,
    ACCOUNT_SUSPENDED,
    ADMINS,
    KYC_PENDING,
    KYC_REJECTED,
    KYC_VERIFIED,
    USERS,
    DocumentValidationError,
    UserProfile,
    parse_document,
)

logger = logging.getLogger("oripay.users")


@dataclass(frozen=True)
class DirectoryStats:
    total_users: int
    pending_kyc: int
    verified_users: int
    suspended_users: int


class UserDirectory:
    """Admin operations on ``users`` documents and ``admins`` markers.

    Every mutation is a single direct write; concurrent reviewers race and
    the last write wins.
    """

    def __init__(self, store: DocumentStore, identity: IdentityProvider) -> None:
        self._store = store
        self._identity = identity

    async def get_user(self, uid: str) -> Optional[UserProfile]:
        raw = await self._store.get(USERS, uid)
        if raw is None:
            return None
        return parse_document(UserProfile, raw, doc_id=uid)

    async def list_users(self, search: Optional[str] = None) -> List[UserProfile]:
        users: List[UserProfile] = []
        for stored in await self._store.list(USERS):
            try:
                users.append(parse_document(UserProfile, stored.data, doc_id=stored.id))
            except DocumentValidationError as exc:
                logger.warning("Skipping malformed user record %s: %s", stored.id, exc)

        term = (search or "").strip().lower()
        if term:
            users = [
                user
                for user in users
                if term in user.name.lower() or term in user.email.lower()
            ]
        return users

    async def pending_submissions(self) -> List[UserProfile]:
        return [user for user in await self.list_users() if user.kyc_status == KYC_PENDING]

    async def stats(self) -> DirectoryStats:
        users = await self.list_users()
        return DirectoryStats(
            total_users=len(users),
            pending_kyc=sum(1 for user in users if user.kyc_status == KYC_PENDING),
            verified_users=sum(1 for user in users if user.kyc_status == KYC_VERIFIED),
            suspended_users=sum(1 for user in users if user.status == ACCOUNT_SUSPENDED),
        )

    async def approve_kyc(self, uid: str) -> None:
        await self._store.update(USERS, uid, {"kycStatus": KYC_VERIFIED})
        logger.info("KYC approved for %s", uid)

    async def reject_kyc(self, uid: str) -> None:
        await self._store.update(USERS, uid, {"kycStatus": KYC_REJECTED})
        logger.info("KYC rejected for %s", uid)

    async def suspend(self, uid: str) -> None:
        await self._store.update(USERS, uid, {"status": ACCOUNT_SUSPENDED})
        logger.info("Suspended %s", uid)

    async def reactivate(self, uid: str) -> None:
        await self._store.update(USERS, uid, {"status": ACCOUNT_ACTIVE})
        logger.info("Reactivated %s", uid)

    async def send_password_reset(self, email: str) -> None:
        await self._identity.send_password_reset(email)

    # Admin markers ----------------------------------------------------
    async def is_admin(self, uid: str) -> bool:
        return await self._store.get(ADMINS, uid) is not None

    async def grant_admin(self, uid: str, *, email: Optional[str] = None) -> None:
        await self._store.set(ADMINS, uid, {"email": email, "grantedAt": SERVER_TIMESTAMP})

    async def revoke_admin(self, uid: str) -> None:
        await self._store.delete(ADMINS, uid)


__all__ = ["DirectoryStats", "UserDirectory"]
