"""Customer registration and KYC submission.

Registration creates an identity first and writes the profile document
second. The two writes are not atomic: when the profile write fails the
identity stays behind without a ``users`` record. :class:`OnboardingService`
reports that case as :class:`ProfileWriteError` and
:meth:`OnboardingService.reconcile` finds (and optionally repairs) such
identities after the fact.
"""

from __future__ import annotations

import base64
import logging
import mimetypes
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .documents import SERVER_TIMESTAMP, DocumentStore, DocumentStoreError
from .identity import IdentityProvider, LocalIdentityProvider
from .models import AuthSession, Identity, Upload
from .schemas import ACCOUNT_ACTIVE, KYC_PENDING, USERS

logger = logging.getLogger("oripay.onboarding")


class OnboardingValidationError(ValueError):
    """Submitted form data was rejected before any backend call."""

    def __init__(self, title: str, message: str) -> None:
        self.title = title
        super().__init__(message)


class ProfileWriteError(RuntimeError):
    """The identity exists but its profile document could not be written."""

    def __init__(self, session: AuthSession, cause: Exception) -> None:
        self.session = session
        super().__init__(f"Identity {session.user.uid} created but profile write failed: {cause}")


@dataclass
class DirectorForm:
    first_name: str = ""
    last_name: str = ""
    id_file: Optional[Upload] = None
    kra_file: Optional[Upload] = None


@dataclass
class RegistrationForm:
    email: str
    password: str
    confirm_password: str
    company_name: str = ""
    business_type: str = ""
    phone: str = ""
    coi_number: str = ""
    coi_file: Optional[Upload] = None
    cr12_file: Optional[Upload] = None
    company_kra_file: Optional[Upload] = None
    directors: List[DirectorForm] = field(default_factory=list)


@dataclass
class KycForm:
    id_number: str = ""
    kra_pin: str = ""
    date_of_birth: str = ""
    address: str = ""
    city: str = ""
    country: str = ""


def encode_upload(upload: Optional[Upload]) -> Optional[str]:
    """Return ``upload`` as a self-contained ``data:`` URL, or ``None``."""

    if upload is None or not upload.data:
        return None
    content_type = upload.content_type
    if not content_type or content_type == "application/octet-stream":
        guessed, _ = mimetypes.guess_type(upload.filename)
        content_type = guessed or content_type or "application/octet-stream"
    payload = base64.b64encode(upload.data).decode("ascii")
    return f"data:{content_type};base64,{payload}"


@dataclass(frozen=True)
class OrphanedIdentity:
    uid: str
    email: str
    repaired: bool = False


class OnboardingService:
    def __init__(self, store: DocumentStore, identity: IdentityProvider) -> None:
        self._store = store
        self._identity = identity

    @staticmethod
    def validate_registration(form: RegistrationForm) -> None:
        if not form.email.strip() or not form.password or not form.company_name.strip():
            raise OnboardingValidationError(
                "Missing Information",
                "Company name, email and password are required.",
            )
        if form.password != form.confirm_password:
            raise OnboardingValidationError("Password Mismatch", "Passwords do not match.")

    async def register(self, form: RegistrationForm) -> AuthSession:
        """Create the identity and write the initial ``users`` document."""

        self.validate_registration(form)

        session = await self._identity.create_identity(form.email.strip(), form.password)
        uid = session.user.uid

        directors = form.directors or [DirectorForm()]
        display_name = directors[0].first_name.strip() or form.company_name.strip()
        await self._identity.update_display_name(session, display_name)

        record: Dict[str, Any] = {
            "businessType": form.business_type.strip(),
            "companyName": form.company_name.strip(),
            "email": session.user.email,
            "displayName": display_name,
            "phone": form.phone.strip(),
            "coiNumber": form.coi_number.strip(),
            "role": "user",
            "status": ACCOUNT_ACTIVE,
            "kycStatus": KYC_PENDING,
            "kycCompleted": False,
            "directors": [
                {
                    "firstName": director.first_name.strip(),
                    "lastName": director.last_name.strip(),
                    "idFileBase64": encode_upload(director.id_file),
                    "kraFileBase64": encode_upload(director.kra_file),
                }
                for director in directors
            ],
            "files": {
                "coiBase64": encode_upload(form.coi_file),
                "cr12Base64": encode_upload(form.cr12_file),
                "companyKraBase64": encode_upload(form.company_kra_file),
            },
            "createdAt": SERVER_TIMESTAMP,
        }

        try:
            await self._store.set(USERS, uid, record)
        except DocumentStoreError as exc:
            logger.error(
                "Profile write failed for new identity %s (%s); identity left without a profile",
                uid,
                session.user.email,
            )
            raise ProfileWriteError(session, exc) from exc

        logger.info("Registered %s", uid)
        return session

    async def submit_kyc(
        self,
        uid: str,
        form: KycForm,
        *,
        id_document: Optional[Upload],
        selfie: Optional[Upload],
    ) -> None:
        """Merge a KYC submission into ``users/{uid}`` with status ``pending``."""

        encoded_id = encode_upload(id_document)
        encoded_selfie = encode_upload(selfie)
        if encoded_id is None or encoded_selfie is None:
            raise OnboardingValidationError(
                "Missing Documents",
                "Please upload both ID document and selfie.",
            )

        submission = {
            "idNumber": form.id_number.strip(),
            "kraPin": form.kra_pin.strip(),
            "dateOfBirth": form.date_of_birth.strip(),
            "address": form.address.strip(),
            "city": form.city.strip(),
            "country": form.country.strip(),
            "idDocument": encoded_id,
            "selfie": encoded_selfie,
            "submittedAt": SERVER_TIMESTAMP,
            "status": KYC_PENDING,
        }
        await self._store.set(
            USERS,
            uid,
            {"kyc": submission, "kycStatus": KYC_PENDING, "kycCompleted": True},
            merge=True,
        )
        logger.info("KYC submitted for %s", uid)

    async def find_orphaned_identities(self) -> List[Identity]:
        """Identities that have no ``users`` document."""

        if not isinstance(self._identity, LocalIdentityProvider):
            raise RuntimeError("The configured identity provider cannot enumerate identities")
        identities = await self._identity.list_identities()
        profiles = {stored.id for stored in await self._store.list(USERS)}
        return [identity for identity in identities if identity.uid not in profiles]

    async def reconcile(self, *, repair: bool = False) -> List[OrphanedIdentity]:
        results: List[OrphanedIdentity] = []
        for identity in await self.find_orphaned_identities():
            if repair:
                await self._store.set(
                    USERS,
                    identity.uid,
                    {
                        "email": identity.email,
                        "displayName": identity.display_name or "",
                        "role": "user",
                        "status": ACCOUNT_ACTIVE,
                        "kycStatus": KYC_PENDING,
                        "kycCompleted": False,
                        "reconciled": True,
                        "createdAt": SERVER_TIMESTAMP,
                    },
                )
                logger.info("Wrote placeholder profile for orphaned identity %s", identity.uid)
            results.append(OrphanedIdentity(uid=identity.uid, email=identity.email, repaired=repair))
        return results


__all__ = [
    "DirectorForm",
    "KycForm",
    "OnboardingService",
    "OnboardingValidationError",
    "OrphanedIdentity",
    "ProfileWriteError",
    "RegistrationForm",
    "encode_upload",
]
