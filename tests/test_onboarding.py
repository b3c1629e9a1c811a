from __future__ import annotations

import base64
from typing import List

import anyio
import pytest
from fastapi.testclient import TestClient

from oripay.documents import MemoryDocumentStore, StoreUnavailableError
from oripay.identity import IdentityError, LocalIdentityProvider
from oripay.models import Upload
from oripay.onboarding import (
    DirectorForm,
    KycForm,
    OnboardingService,
    OnboardingValidationError,
    ProfileWriteError,
    RegistrationForm,
    encode_upload,
)
from oripay.schemas import USERS


class RecordingIdentityProvider(LocalIdentityProvider):
    """Local provider that records every boundary call."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.calls: List[str] = []

    async def create_identity(self, email, password):
        self.calls.append("create_identity")
        return await super().create_identity(email, password)

    async def update_display_name(self, session, name):
        self.calls.append("update_display_name")
        return await super().update_display_name(session, name)


class FailingUsersStore(MemoryDocumentStore):
    async def set(self, collection, doc_id, fields, *, merge=False):
        if collection == USERS:
            raise StoreUnavailableError("write rejected")
        await super().set(collection, doc_id, fields, merge=merge)


@pytest.fixture()
def recording_identity(tmp_path) -> RecordingIdentityProvider:
    provider = RecordingIdentityProvider(tmp_path / "recording.sqlite3")
    provider.initialize()
    return provider


def _form(**overrides) -> RegistrationForm:
    values = dict(
        email="a@b.com",
        password="secret1",
        confirm_password="secret1",
        company_name="Acme Ltd",
        directors=[DirectorForm(first_name="Jane", last_name="Doe")],
    )
    values.update(overrides)
    return RegistrationForm(**values)


def test_encode_upload_builds_data_url() -> None:
    upload = Upload(filename="id.png", content_type="image/png", data=b"\x89PNG")

    assert encode_upload(upload) == "data:image/png;base64," + base64.b64encode(b"\x89PNG").decode()
    assert encode_upload(None) is None
    assert encode_upload(Upload(filename="empty.pdf", content_type="application/pdf", data=b"")) is None


def test_encode_upload_guesses_missing_content_type() -> None:
    upload = Upload(filename="coi.pdf", content_type="application/octet-stream", data=b"%PDF")

    assert encode_upload(upload).startswith("data:application/pdf;base64,")


def test_register_writes_initial_profile(identity: LocalIdentityProvider, store: MemoryDocumentStore) -> None:
    service = OnboardingService(store, identity)
    coi = Upload(filename="coi.pdf", content_type="application/pdf", data=b"%PDF")

    session = anyio.run(service.register, _form(coi_file=coi))

    record = anyio.run(store.get, USERS, session.user.uid)
    assert record["kycCompleted"] is False
    assert record["role"] == "user"
    assert record["status"] == "active"
    assert record["kycStatus"] == "pending"
    assert record["displayName"] == "Jane"
    assert record["files"]["coiBase64"].startswith("data:application/pdf;base64,")
    assert record["files"]["cr12Base64"] is None
    assert record["directors"][0]["firstName"] == "Jane"
    assert isinstance(record["createdAt"], str)
    assert "password" not in record


def test_display_name_falls_back_to_company_name(identity, store) -> None:
    service = OnboardingService(store, identity)

    session = anyio.run(service.register, _form(directors=[]))

    assert anyio.run(identity.get_identity, session.user.uid).display_name == "Acme Ltd"


def test_mismatched_passwords_issue_no_boundary_call(recording_identity, store) -> None:
    service = OnboardingService(store, recording_identity)

    with pytest.raises(OnboardingValidationError) as exc_info:
        anyio.run(service.register, _form(confirm_password="different"))

    assert exc_info.value.title == "Password Mismatch"
    assert recording_identity.calls == []
    assert anyio.run(store.list, USERS) == []


def test_missing_fields_issue_no_boundary_call(recording_identity, store) -> None:
    service = OnboardingService(store, recording_identity)

    with pytest.raises(OnboardingValidationError) as exc_info:
        anyio.run(service.register, _form(company_name=" "))

    assert exc_info.value.title == "Missing Information"
    assert recording_identity.calls == []


def test_identity_errors_propagate(identity, store) -> None:
    service = OnboardingService(store, identity)
    anyio.run(service.register, _form())

    with pytest.raises(IdentityError) as exc_info:
        anyio.run(service.register, _form())
    assert exc_info.value.code == "email-already-in-use"


def test_profile_write_failure_leaves_orphaned_identity(identity: LocalIdentityProvider) -> None:
    failing = OnboardingService(FailingUsersStore(), identity)

    with pytest.raises(ProfileWriteError) as exc_info:
        anyio.run(failing.register, _form())

    uid = exc_info.value.session.user.uid
    assert anyio.run(identity.get_identity, uid) is not None

    store = MemoryDocumentStore()
    sweeper = OnboardingService(store, identity)
    orphans = anyio.run(sweeper.find_orphaned_identities)
    assert [orphan.uid for orphan in orphans] == [uid]


def test_reconcile_repairs_orphans(identity: LocalIdentityProvider) -> None:
    with pytest.raises(ProfileWriteError):
        anyio.run(OnboardingService(FailingUsersStore(), identity).register, _form())

    store = MemoryDocumentStore()
    service = OnboardingService(store, identity)

    async def reconcile(repair: bool):
        return await service.reconcile(repair=repair)

    dry_run = anyio.run(reconcile, False)
    assert len(dry_run) == 1 and dry_run[0].repaired is False
    assert anyio.run(store.list, USERS) == []

    repaired = anyio.run(reconcile, True)
    assert repaired[0].repaired is True
    record = anyio.run(store.get, USERS, repaired[0].uid)
    assert record["kycCompleted"] is False
    assert record["reconciled"] is True
    assert anyio.run(reconcile, False) == []


def test_submit_kyc_requires_both_documents(store) -> None:
    service = OnboardingService(store, identity=None)
    selfie = Upload(filename="me.jpg", content_type="image/jpeg", data=b"jpeg")

    async def submit():
        await service.submit_kyc("u1", KycForm(id_number="123"), id_document=None, selfie=selfie)

    with pytest.raises(OnboardingValidationError) as exc_info:
        anyio.run(submit)
    assert exc_info.value.title == "Missing Documents"
    assert anyio.run(store.get, USERS, "u1") is None


def test_submit_kyc_merges_pending_submission(store) -> None:
    anyio.run(store.set, USERS, "u1", {"email": "a@b.com", "kycCompleted": False, "companyName": "Acme"})
    service = OnboardingService(store, identity=None)
    id_document = Upload(filename="id.png", content_type="image/png", data=b"png")
    selfie = Upload(filename="me.jpg", content_type="image/jpeg", data=b"jpeg")

    async def submit():
        await service.submit_kyc(
            "u1",
            KycForm(id_number="123", kra_pin="A1", city="Nairobi", country="Kenya"),
            id_document=id_document,
            selfie=selfie,
        )

    anyio.run(submit)

    record = anyio.run(store.get, USERS, "u1")
    assert record["companyName"] == "Acme"
    assert record["kycCompleted"] is True
    assert record["kycStatus"] == "pending"
    assert record["kyc"]["status"] == "pending"
    assert record["kyc"]["idNumber"] == "123"
    assert record["kyc"]["idDocument"].startswith("data:image/png;base64,")
    assert isinstance(record["kyc"]["submittedAt"], str)


def test_registration_and_kyc_over_http(app, store) -> None:
    with TestClient(app) as client:
        response = client.post(
            "/register",
            data={
                "email": "a@b.com",
                "password": "secret1",
                "confirm_password": "secret1",
                "company_name": "Acme Ltd",
                "director_first_name": ["Jane"],
                "director_last_name": ["Doe"],
            },
            files={"coi_file": ("coi.pdf", b"%PDF-1.4", "application/pdf")},
            follow_redirects=False,
        )
        assert response.status_code == 303
        assert response.headers["location"].endswith("/kyc")

        users = anyio.run(store.list, USERS)
        assert len(users) == 1
        uid = users[0].id
        assert users[0].data["kycCompleted"] is False

        assert client.get("/kyc").status_code == 200

        response = client.post(
            "/kyc",
            data={"id_number": "12345678", "kra_pin": "A001", "country": "Kenya"},
            files={
                "id_document": ("id.png", b"png-bytes", "image/png"),
                "selfie": ("selfie.jpg", b"jpeg-bytes", "image/jpeg"),
            },
            follow_redirects=False,
        )
        assert response.status_code == 303
        assert response.headers["location"].endswith("/dashboard")

        record = anyio.run(store.get, USERS, uid)
        assert record["kyc"]["status"] == "pending"
        assert record["kycCompleted"] is True

        dashboard = client.get("/dashboard")
        assert dashboard.status_code == 200
        assert "KYC Submitted Successfully" in dashboard.text
        assert "Welcome back, Jane" in dashboard.text


def test_http_registration_with_mismatched_passwords(app, store) -> None:
    with TestClient(app) as client:
        response = client.post(
            "/register",
            data={
                "email": "a@b.com",
                "password": "secret1",
                "confirm_password": "secret2",
                "company_name": "Acme Ltd",
            },
        )

    assert response.status_code == 200
    assert "Passwords do not match." in response.text
    assert anyio.run(store.list, USERS) == []


def test_kyc_without_selfie_is_rejected(app, store, make_account, login) -> None:
    uid = make_account("user@example.com")

    with TestClient(app) as client:
        login(client, "user@example.com")
        response = client.post(
            "/kyc",
            data={"id_number": "123"},
            files={"id_document": ("id.png", b"png-bytes", "image/png")},
        )

    assert "Please upload both ID document and selfie." in response.text
    assert "kyc" not in anyio.run(store.get, USERS, uid)
