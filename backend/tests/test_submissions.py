"""Tests for public organic submissions and their conversion into leads."""

from datetime import timedelta

import pytest

from app.core.exceptions import ErrorCode
from app.models.base import utcnow
from app.models.lead import LeadStatus
from app.models.submission import SubmissionStatus
from app.repositories.submission import OrganicSubmissionRepository
from app.services.lead_service import LeadService
from app.services.organic_submission_service import OrganicSubmissionService

from conftest import make_cin


@pytest.fixture
def submission_data():
    def _build(**overrides):
        data = {
            "company_name": "Bharat Foods Private Limited",
            "cin": make_cin(),
            "contact_person": "Meera Iyer",
            "email": "Meera@BharatFoods.co.in",
            "phone": "+91-9123456780",
            "address": "4 MG Road, Bengaluru",
        }
        data.update(overrides)
        return data

    return _build


@pytest.fixture
def service(db_session, notifier):
    return OrganicSubmissionService(db_session, notifier=notifier)


class TestCreateSubmission:

    async def test_creates_pending_submission(self, service, reviewer, submission_data, sink, notifier):
        result = await service.create_submission(submission_data())
        await notifier.drain()

        assert result.success
        submission = result.data
        assert submission.status == SubmissionStatus.PENDING.value
        assert submission.email == "meera@bharatfoods.co.in"
        assert submission.email_verified is False
        assert len(submission.verification_token) >= 32

        recipients = [m["to"] for m in sink.messages]
        assert ["meera@bharatfoods.co.in"] in recipients
        assert [reviewer.email] in recipients
        verification = next(m for m in sink.messages if m["to"] == ["meera@bharatfoods.co.in"])
        assert submission.verification_token in verification["html"]

    async def test_pending_duplicate_is_rejected(self, service, submission_data):
        data = submission_data()
        await service.create_submission(data)

        again = await service.create_submission(data)

        assert again.code == ErrorCode.DUPLICATE_RESOURCE

    async def test_rejected_submission_can_be_resubmitted(self, service, reviewer, submission_data):
        data = submission_data()
        first = (await service.create_submission(data)).data
        await service.reject(reviewer, first.id, "Incomplete details")

        again = await service.create_submission({**data, "contact_person": "Ravi Iyer"})

        assert again.success
        assert again.data.id == first.id
        assert again.data.status == SubmissionStatus.PENDING.value
        assert again.data.contact_person == "Ravi Iyer"
        assert again.data.rejection_reason is None

    @pytest.mark.parametrize(
        "overrides", [{"cin": "BAD"}, {"email": "nope"}, {"contact_person": ""}]
    )
    async def test_validation(self, service, submission_data, overrides):
        result = await service.create_submission(submission_data(**overrides))
        assert result.code == ErrorCode.INVALID_INPUT


class TestVerifyEmail:

    async def test_verify_then_repeat(self, service, submission_data):
        submission = (await service.create_submission(submission_data())).data
        token = submission.verification_token

        first = await service.verify_email(token)
        second = await service.verify_email(token)

        assert first.success and first.data.email_verified
        assert second.success

    async def test_unknown_token(self, service):
        result = await service.verify_email("x" * 43)
        assert result.code == ErrorCode.SUBMISSION_NOT_FOUND

    async def test_expired_token(self, service, db_session, submission_data):
        submission = (await service.create_submission(submission_data())).data
        repo = OrganicSubmissionRepository(db_session)
        await repo.save(submission, verification_expires_at=utcnow() - timedelta(minutes=1))
        await db_session.commit()

        result = await service.verify_email(submission.verification_token)

        assert result.code == ErrorCode.INVALID_INPUT
        assert result.details["field"] == "token"


class TestTriage:

    async def test_convert_creates_new_lead(self, service, db_session, reviewer, submission_data):
        submission = (await service.create_submission(submission_data())).data

        result = await service.convert_to_lead(reviewer, submission.id)

        assert result.success
        lead = result.data
        assert lead.status == LeadStatus.NEW.value
        assert lead.cin == submission.cin
        assert lead.email == "meera@bharatfoods.co.in"

        pending = await service.list_pending(reviewer)
        assert pending.data == []
        stored = await OrganicSubmissionRepository(db_session).get_by_id(submission.id, refresh=True)
        assert stored.status == SubmissionStatus.CONVERTED.value
        assert stored.lead_id == lead.id

    async def test_converted_company_cannot_resubmit(self, service, reviewer, submission_data):
        data = submission_data()
        submission = (await service.create_submission(data)).data
        await service.convert_to_lead(reviewer, submission.id)

        again = await service.create_submission(data)

        assert again.code == ErrorCode.DUPLICATE_CIN

    async def test_convert_with_existing_lead_is_rolled_back(
        self, service, db_session, reviewer, submission_data, lead_data
    ):
        data = submission_data()
        submission = (await service.create_submission(data)).data
        await LeadService(db_session).create_lead(reviewer, lead_data(cin=data["cin"]))

        result = await service.convert_to_lead(reviewer, submission.id)

        assert result.code == ErrorCode.DUPLICATE_CIN
        pending = await service.list_pending(reviewer)
        assert [s.id for s in pending.data] == [submission.id]

    async def test_cannot_convert_twice(self, service, reviewer, submission_data):
        submission = (await service.create_submission(submission_data())).data
        await service.convert_to_lead(reviewer, submission.id)

        again = await service.convert_to_lead(reviewer, submission.id)

        assert again.code == ErrorCode.INVALID_STATUS_TRANSITION

    async def test_reject_records_reason(self, service, reviewer, submission_data):
        submission = (await service.create_submission(submission_data())).data

        result = await service.reject(reviewer, submission.id, "  Not a fit  ")

        assert result.data.status == SubmissionStatus.REJECTED.value
        assert result.data.rejection_reason == "Not a fit"
        assert result.data.reviewed_by == reviewer.id

    async def test_triage_is_reviewer_only(self, service, assessor, submission_data):
        submission = (await service.create_submission(submission_data())).data

        assert (await service.list_pending(assessor)).code == ErrorCode.INSUFFICIENT_PERMISSIONS
        convert = await service.convert_to_lead(assessor, submission.id)
        assert convert.code == ErrorCode.INSUFFICIENT_PERMISSIONS
