"""HTTP-level tests: envelopes, status codes and authentication."""

import pytest
from httpx import ASGITransport, AsyncClient

from app.api.deps import get_blob, get_db, get_gate, get_notifier
from app.core.auth import IdentityGate
from app.core.config import Settings, settings
from app.core.exceptions import AuthenticationError, AuthorizationError, ErrorCode
from app.main import app
from app.models.user import UserRole

from conftest import ELIGIBILITY_KEYS, answers_by_category, create_user

API = "/api/v1"


class FakeVerifier:
    """Accepts ``token-<email>`` and ``new-<email>`` bearer tokens."""

    def verify(self, token):
        if token.startswith("token-"):
            email = token.removeprefix("token-")
            return {"sub": f"kc-{email}", "email": email}
        if token.startswith("new-"):
            email = token.removeprefix("new-")
            return {"sub": f"fresh-{email}", "email": email}
        raise AuthenticationError("Invalid authentication token")


def auth(user):
    return {"Authorization": f"Bearer token-{user.email}"}


@pytest.fixture
async def client(session_factory, notifier, blob_store):
    async def override_db():
        async with session_factory() as session:
            yield session

    gate = IdentityGate(Settings(ALLOWED_USER_EMAILS=[]), FakeVerifier())
    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_gate] = lambda: gate
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_blob] = lambda: blob_store

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

class TestAuthentication:

    async def test_health_is_public(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    async def test_missing_token(self, client):
        response = await client.get(f"{API}/leads/")

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "UNAUTHORIZED"

    async def test_bad_token(self, client):
        response = await client.get(f"{API}/leads/", headers={"Authorization": "Bearer junk"})
        assert response.status_code == 401

    async def test_unregistered_user(self, client):
        response = await client.get(
            f"{API}/leads/", headers={"Authorization": "Bearer token-nobody@ira-platform.in"}
        )
        assert response.status_code == 401
        assert response.json()["code"] == "USER_NOT_FOUND"

    async def test_inactive_user(self, client, db_session):
        user = await create_user(
            db_session, UserRole.REVIEWER, "left@ira-platform.in", is_active=False
        )
        response = await client.get(f"{API}/leads/", headers=auth(user))

        assert response.status_code == 403
        assert response.json()["code"] == "USER_INACTIVE"

    async def test_first_login_links_subject(self, client, db_session):
        user = await create_user(db_session, UserRole.ASSESSOR, "invited@ira-platform.in")
        user.external_id = None
        await db_session.commit()

        response = await client.get(
            f"{API}/leads/", headers={"Authorization": "Bearer new-invited@ira-platform.in"}
        )

        assert response.status_code == 200
        await db_session.refresh(user)
        assert user.external_id == "fresh-invited@ira-platform.in"

    async def test_allow_list(self, db_session, reviewer):
        gate = IdentityGate(
            Settings(ALLOWED_USER_EMAILS=["someone@ira-platform.in"]), FakeVerifier()
        )
        with pytest.raises(AuthorizationError) as exc_info:
            await gate.resolve(db_session, f"token-{reviewer.email}")
        assert exc_info.value.code == ErrorCode.INSUFFICIENT_PERMISSIONS


# ---------------------------------------------------------------------------
# Leads
# ---------------------------------------------------------------------------

class TestLeadEndpoints:

    async def test_create_and_fetch(self, client, reviewer, lead_data):
        created = await client.post(f"{API}/leads/", json=lead_data(), headers=auth(reviewer))

        assert created.status_code == 201
        data = created.json()["data"]
        assert data["status"] == "NEW"
        assert data["version"] == 1

        fetched = await client.get(f"{API}/leads/{data['id']}", headers=auth(reviewer))
        assert fetched.status_code == 200
        assert fetched.json()["data"]["lead_id"] == data["lead_id"]

    async def test_request_validation_is_422(self, client, reviewer, lead_data):
        response = await client.post(
            f"{API}/leads/", json=lead_data(cin="nope"), headers=auth(reviewer)
        )

        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "INVALID_INPUT"
        assert body["details"]["errors"][0]["field"] == "cin"

    async def test_error_status_mapping(self, client, reviewer, assessor, lead, lead_data):
        duplicate = await client.post(
            f"{API}/leads/", json=lead_data(cin=lead.cin), headers=auth(reviewer)
        )
        forbidden = await client.post(f"{API}/leads/", json=lead_data(), headers=auth(assessor))
        missing = await client.get(
            f"{API}/leads/00000000-0000-0000-0000-000000000000", headers=auth(reviewer)
        )
        stale = await client.patch(
            f"{API}/leads/{lead.id}",
            json={"data": {"address": "Somewhere"}, "expected_version": 99},
            headers=auth(reviewer),
        )
        transition = await client.post(
            f"{API}/leads/{lead.id}/status",
            json={"status": "COMPLETED", "expected_version": lead.version},
            headers=auth(reviewer),
        )

        assert (duplicate.status_code, duplicate.json()["code"]) == (409, "DUPLICATE_CIN")
        assert (forbidden.status_code, forbidden.json()["code"]) == (403, "INSUFFICIENT_PERMISSIONS")
        assert (missing.status_code, missing.json()["code"]) == (404, "LEAD_NOT_FOUND")
        assert (stale.status_code, stale.json()["code"]) == (409, "CONCURRENT_MODIFICATION")
        assert (transition.status_code, transition.json()["code"]) == (400, "INVALID_STATUS_TRANSITION")

    async def test_document_upload(self, client, reviewer, lead, blob_store):
        response = await client.post(
            f"{API}/leads/{lead.id}/documents",
            files={"file": ("report.pdf", b"%PDF-1.7 data", "application/pdf")},
            headers=auth(reviewer),
        )

        assert response.status_code == 201
        assert response.json()["data"]["filename"] == "report.pdf"
        assert len(blob_store.objects) == 1


# ---------------------------------------------------------------------------
# End-to-end lifecycle
# ---------------------------------------------------------------------------

class TestLifecycle:

    async def test_lead_to_payment(
        self, client, reviewer, assessor, lead, seeded_templates, monkeypatch
    ):
        monkeypatch.setattr(settings, "PAYMENT_WEBHOOK_SECRET", "s3cret")

        assigned = await client.post(
            f"{API}/leads/{lead.id}/assign",
            json={"assessor_id": str(assessor.id), "expected_version": lead.version},
            headers=auth(reviewer),
        )
        assert assigned.status_code == 200
        assert assigned.json()["data"]["status"] == "ASSIGNED"

        assessment = (
            await client.get(f"{API}/leads/{lead.id}/assessment", headers=auth(assessor))
        ).json()["data"]
        base = f"{API}/assessments/{assessment['id']}"

        saved = await client.put(
            f"{base}/eligibility",
            json={
                "answers": {key: {"checked": True} for key in ELIGIBILITY_KEYS},
                "expected_version": assessment["version"],
            },
            headers=auth(assessor),
        )
        completed = await client.post(
            f"{base}/eligibility/complete",
            json={"expected_version": saved.json()["data"]["version"]},
            headers=auth(assessor),
        )
        assert completed.json()["data"]["is_eligible"] is True

        answered = await client.patch(
            f"{base}/answers",
            json={"answers": answers_by_category(), "expected_version": completed.json()["data"]["version"]},
            headers=auth(assessor),
        )
        submitted = await client.post(
            f"{base}/submit",
            json={"expected_version": answered.json()["data"]["version"]},
            headers=auth(assessor),
        )
        assert submitted.status_code == 200
        assert submitted.json()["data"]["rating"] == "IPO_READY"
        assert float(submitted.json()["data"]["percentage"]) == 100

        queue = await client.get(f"{API}/reviews/pending", headers=auth(reviewer))
        assert [a["id"] for a in queue.json()["data"]] == [assessment["id"]]

        approved = await client.post(f"{base}/approve", json={"remark": "Ready"}, headers=auth(reviewer))
        assert approved.json()["data"]["status"] == "APPROVED"

        unauthorised = await client.post(
            f"{API}/payments/confirm", json={"lead_id": lead.lead_id, "reference": "pay_1"}
        )
        paid = await client.post(
            f"{API}/payments/confirm",
            json={"lead_id": lead.lead_id, "reference": "pay_1"},
            headers={"X-Payment-Secret": "s3cret"},
        )

        assert unauthorised.status_code == 401
        assert paid.status_code == 200
        assert paid.json()["data"]["status"] == "COMPLETED"


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------

class TestPublicEndpoints:

    async def test_submission_and_portal(self, client, reviewer, lead, lead_data):
        submission = await client.post(
            f"{API}/submissions/",
            json={
                "company_name": "Public Co",
                "cin": lead_data()["cin"],
                "contact_person": "Asha Rao",
                "email": "asha@publicco.co.in",
            },
        )
        otp = await client.post(f"{API}/portal/otp", json={"email": lead.email})
        verify = await client.post(
            f"{API}/portal/otp/verify", json={"email": lead.email, "code": "000000x"}
        )

        assert submission.status_code == 201
        assert submission.json()["data"]["status"] == "PENDING"
        assert "verification_token" not in submission.json()["data"]
        assert otp.status_code == 200
        assert otp.json()["data"] is True
        assert verify.status_code == 400
        assert verify.json()["code"] == "INVALID_OTP"
