"""Document schemas applied at the document-store boundary.

Documents are stored with camelCase field names. Every model fills in the
documented default for fields that are absent (or ``null``) and keeps
present values as they are, so an empty list saved by an administrator is
read back as an empty list. Documents that cannot be coerced into their
schema raise :class:`DocumentValidationError`.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

USERS = "users"
ADMINS = "admins"
HOMEPAGE = "homepageContent"
ABOUT = "about"
FOOTER = "footer"
SERVICES = "services"
ANNOUNCEMENTS = "announcements"
SETTINGS = "settings"
CURRENCIES = "currencies"
COUNTRIES = "countries"

MAIN_DOCUMENT = "main"
PLATFORM_DOCUMENT = "platform"

KycStatus = Literal["pending", "verified", "rejected"]
AccountStatus = Literal["active", "suspended"]

KYC_PENDING = "pending"
KYC_VERIFIED = "verified"
KYC_REJECTED = "rejected"
ACCOUNT_ACTIVE = "active"
ACCOUNT_SUSPENDED = "suspended"


class DocumentValidationError(ValueError):
    """A stored or submitted document does not match its schema."""


class DocumentModel(BaseModel):
    """Base schema: camelCase aliases, ignored extras and null-as-absent."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    @model_validator(mode="before")
    @classmethod
    def _treat_null_as_absent(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            return {key: value for key, value in data.items() if value is not None}
        return data


# ----------------------------------------------------------------------
# Marketing content
# ----------------------------------------------------------------------
class Feature(DocumentModel):
    id: str = ""
    icon: str = ""
    title: str = ""
    description: str = ""


class Region(DocumentModel):
    id: str = ""
    name: str = ""
    flag: str = ""


class HomepageContent(DocumentModel):
    hero_title: str = ""
    hero_subtitle: str = ""
    hero_cta: str = Field("", alias="heroCTA")
    features: List[Feature] = Field(default_factory=list)
    regions: List[Region] = Field(default_factory=list)
    cta_title: str = ""
    cta_subtitle: str = ""
    cta_button: str = ""


class Stat(DocumentModel):
    label: str = ""
    value: str = ""
    icon: str = ""


class CompanyValue(DocumentModel):
    title: str = ""
    description: str = ""


class AboutContent(DocumentModel):
    hero_title: str = ""
    hero_subtitle: str = ""
    stats: List[Stat] = Field(default_factory=list)
    story: List[str] = Field(default_factory=list)
    values: List[CompanyValue] = Field(default_factory=list)
    mission_title: str = ""
    mission_text: str = ""
    vision_title: str = ""
    vision_text: str = ""


class Socials(DocumentModel):
    facebook: str = ""
    twitter: str = ""
    instagram: str = ""
    linkedin: str = ""


class QuickLink(DocumentModel):
    name: str = ""
    path: str = ""

    @model_validator(mode="before")
    @classmethod
    def _accept_label_url(cls, data: Any) -> Any:
        # The footer editor historically stored links as {label, url}.
        if isinstance(data, Mapping) and "name" not in data and "path" not in data:
            data = dict(data)
            if "label" in data:
                data["name"] = data.pop("label")
            if "url" in data:
                data["path"] = data.pop("url")
        return data


class Contact(DocumentModel):
    location: str = ""
    phone: str = ""
    email: str = ""


def _default_quick_links() -> List[QuickLink]:
    return [
        QuickLink(name="Home", path="/"),
        QuickLink(name="Services", path="/services"),
        QuickLink(name="About Us", path="/about"),
        QuickLink(name="Login", path="/login"),
    ]


class FooterContent(DocumentModel):
    company_name: str = "Oripay Exchange"
    description: str = ""
    socials: Socials = Field(default_factory=Socials)
    quick_links: List[QuickLink] = Field(default_factory=_default_quick_links)
    services: List[str] = Field(default_factory=list)
    contact: Contact = Field(default_factory=Contact)


class ServiceFeature(DocumentModel):
    id: str = ""
    title: str = ""


class Service(DocumentModel):
    id: str = ""
    name: str = ""
    description: str = ""
    icon: str = "CreditCard"
    features: List[ServiceFeature] = Field(default_factory=list)
    active: bool = True


class Announcement(DocumentModel):
    id: str = ""
    title: str = ""
    content: str = ""
    active: bool = True


# ----------------------------------------------------------------------
# Platform configuration
# ----------------------------------------------------------------------
class Currency(DocumentModel):
    code: str = ""
    name: str = ""
    rate: float = 1.0
    active: bool = True


class Country(DocumentModel):
    code: str = ""
    name: str = ""
    active: bool = True


class PlatformSettings(DocumentModel):
    transaction_fee: float = 2.5
    min_transaction: float = 100
    max_transaction: float = 1_000_000
    daily_limit: float = 500_000
    maintenance_mode: bool = False
    email_notifications: bool = True
    sms_notifications: bool = True
    auto_kyc_approval: bool = False
    support_email: str = "support@oripayexchange.com"
    support_phone: str = "+254 700 000000"
    business_hours: str = "Mon-Fri: 8AM - 6PM EAT"


# ----------------------------------------------------------------------
# Customer records
# ----------------------------------------------------------------------
class Director(DocumentModel):
    first_name: str = ""
    last_name: str = ""
    id_file_base64: Optional[str] = None
    kra_file_base64: Optional[str] = None


class CompanyFiles(DocumentModel):
    coi_base64: Optional[str] = None
    cr12_base64: Optional[str] = None
    company_kra_base64: Optional[str] = None


class KycSubmission(DocumentModel):
    id_number: str = ""
    kra_pin: str = ""
    date_of_birth: str = ""
    address: str = ""
    city: str = ""
    country: str = ""
    id_document: Optional[str] = None
    selfie: Optional[str] = None
    submitted_at: Optional[str] = None
    status: KycStatus = KYC_PENDING


class Transaction(DocumentModel):
    id: Union[int, str] = ""
    type: Literal["sent", "received"] = "sent"
    recipient: str = ""
    sender: str = ""
    amount: str = ""
    date: str = ""
    status: Literal["completed", "pending"] = "pending"


class UserProfile(DocumentModel):
    uid: str = ""
    email: str = ""
    display_name: str = ""
    company_name: str = ""
    business_type: str = ""
    phone: str = ""
    coi_number: str = ""
    role: str = "user"
    kyc_status: KycStatus = KYC_PENDING
    status: AccountStatus = ACCOUNT_ACTIVE
    kyc_completed: bool = False
    directors: List[Director] = Field(default_factory=list)
    files: CompanyFiles = Field(default_factory=CompanyFiles)
    kyc: Optional[KycSubmission] = None
    balance: str = "KES 0.00"
    transactions: List[Transaction] = Field(default_factory=list)
    created_at: Optional[str] = None

    @property
    def name(self) -> str:
        """Label shown in the admin console."""

        return self.company_name or self.display_name or "N/A"

    @property
    def greeting_name(self) -> str:
        if self.display_name:
            return self.display_name
        if self.directors and self.directors[0].first_name:
            return self.directors[0].first_name
        return "User"


ModelT = TypeVar("ModelT", bound=DocumentModel)


def parse_document(
    model: Type[ModelT],
    data: Optional[Mapping[str, Any]],
    *,
    doc_id: Optional[str] = None,
) -> ModelT:
    """Coerce a raw document into ``model``, applying defaults.

    ``None`` (a missing document) yields the model's defaults. When
    ``doc_id`` is given and the model has an ``id``/``uid`` field, the
    store-assigned id wins over any value stored in the body. Code-keyed
    records only take the id when the body carries no ``code``.
    """

    if data is None:
        payload: Dict[str, Any] = {}
    elif isinstance(data, Mapping):
        payload = dict(data)
    else:
        raise DocumentValidationError(f"{model.__name__} document must be a mapping")

    if doc_id is not None:
        if "id" in model.model_fields:
            payload["id"] = doc_id
        elif "uid" in model.model_fields:
            payload["uid"] = doc_id
        elif "code" in model.model_fields:
            payload.setdefault("code", doc_id)

    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise DocumentValidationError(f"Invalid {model.__name__} document: {exc}") from exc


def dump_document(instance: DocumentModel, *, exclude: Optional[set] = None) -> Dict[str, Any]:
    """Serialise a model back into its stored (camelCase) representation."""

    return instance.model_dump(by_alias=True, exclude=exclude)


__all__ = [
    "ABOUT",
    "ACCOUNT_ACTIVE",
    "ACCOUNT_SUSPENDED",
    "ADMINS",
    "ANNOUNCEMENTS",
    "AboutContent",
    "Announcement",
    "COUNTRIES",
    "CURRENCIES",
    "CompanyFiles",
    "CompanyValue",
    "Contact",
    "Country",
    "Currency",
    "Director",
    "DocumentModel",
    "DocumentValidationError",
    "FOOTER",
    "Feature",
    "FooterContent",
    "HOMEPAGE",
    "HomepageContent",
    "KYC_PENDING",
    "KYC_REJECTED",
    "KYC_VERIFIED",
    "KycSubmission",
    "MAIN_DOCUMENT",
    "ModelT",
    "PLATFORM_DOCUMENT",
    "PlatformSettings",
    "QuickLink",
    "Region",
    "SERVICES",
    "SETTINGS",
    "Service",
    "ServiceFeature",
    "Socials",
    "Stat",
    "Transaction",
    "USERS",
    "UserProfile",
    "parse_document",
    "dump_document",
]
