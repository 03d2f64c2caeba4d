"""Tests for the assessment lifecycle: eligibility, answers, submit and review."""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from app.core.exceptions import ErrorCode
from app.models.assessment import AssessmentStatus, Rating
from app.models.lead import LeadStatus
from app.repositories.assessment import AuditLogRepository
from app.repositories.question import AssessmentQuestionRepository
from app.services.assessment_service import AssessmentService
from app.services.lead_service import LeadService
from app.services.scoring import PRESET_QUESTIONS

from conftest import ELIGIBILITY_KEYS, answers_by_category, eligibility, make_eligible


async def answer_everything(service, actor, assessment, score=2):
    result = await service.update_all_assessment_answers(
        actor, assessment.id, answers_by_category(score), assessment.version
    )
    assert result.success, result.error
    return result.data


@pytest.fixture
async def service(db_session, notifier):
    return AssessmentService(db_session, notifier=notifier)


@pytest.fixture
async def ready_assessment(service, assessor, assessment):
    """Eligible with every scored question answered."""
    await make_eligible(service, assessor, assessment)
    fresh = (await service.get_assessment(assessor, assessment.id)).data
    return await answer_everything(service, assessor, fresh)


@pytest.fixture
async def submitted(service, assessor, ready_assessment):
    result = await service.submit_assessment(
        assessor, ready_assessment.id, ready_assessment.version
    )
    assert result.success, result.error
    return result.data


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------

class TestEligibility:

    async def test_all_checked_is_eligible(self, service, assessor, assessment):
        result = await make_eligible(service, assessor, assessment)

        assert result.is_eligible is True
        assert result.failed_questions == []

        fresh = (await service.get_assessment(assessor, assessment.id)).data
        assert fresh.status == AssessmentStatus.DRAFT.value
        assert fresh.eligibility_completed_at is not None

    async def test_one_unchecked_is_ineligible(self, service, assessor, assessment, lead):
        missing = ELIGIBILITY_KEYS[2]
        result = await make_eligible(service, assessor, assessment, unchecked={missing})

        assert result.is_eligible is False
        assert result.failed_questions == [missing]

        lead_after = (await LeadService(service.db).get_lead(assessor, lead.id)).data
        assert lead_after.status == LeadStatus.ASSIGNED.value

    async def test_ineligible_blocks_questionnaire(self, service, assessor, assessment):
        await make_eligible(service, assessor, assessment, unchecked={ELIGIBILITY_KEYS[0]})
        fresh = (await service.get_assessment(assessor, assessment.id)).data

        answers = await service.update_all_assessment_answers(
            assessor, assessment.id, answers_by_category(), fresh.version
        )
        submit = await service.submit_assessment(assessor, assessment.id, fresh.version)

        assert answers.code == ErrorCode.ELIGIBILITY_FAILED
        assert submit.code == ErrorCode.ELIGIBILITY_FAILED

    async def test_completion_is_one_shot(self, service, assessor, assessment):
        result = await make_eligible(service, assessor, assessment)

        again = await service.complete_eligibility(assessor, assessment.id, result.version)
        edit = await service.update_eligibility_answers(
            assessor, assessment.id, eligibility(), result.version
        )

        assert again.code == ErrorCode.ELIGIBILITY_ALREADY_COMPLETED
        assert edit.code == ErrorCode.ELIGIBILITY_ALREADY_COMPLETED

    async def test_unknown_eligibility_key(self, service, assessor, assessment):
        result = await service.update_eligibility_answers(
            assessor, assessment.id, {"made_up": {"checked": True}}, assessment.version
        )

        assert result.code == ErrorCode.INVALID_INPUT
        assert result.details["unknown"] == ["made_up"]

    async def test_save_replaces_whole_map(self, service, assessor, assessment):
        first = await service.update_eligibility_answers(
            assessor, assessment.id, eligibility(), assessment.version
        )
        second = await service.update_eligibility_answers(
            assessor,
            assessment.id,
            {ELIGIBILITY_KEYS[0]: {"checked": True, "remark": "Audited FY24"}},
            first.data.version,
        )

        assert second.success
        assert list(second.data.eligibility_answers) == [ELIGIBILITY_KEYS[0]]
        assert second.data.version == first.data.version + 1


# ---------------------------------------------------------------------------
# Questionnaire answers
# ---------------------------------------------------------------------------

class TestAnswers:

    async def test_answers_require_completed_eligibility(self, service, assessor, assessment):
        result = await service.update_all_assessment_answers(
            assessor, assessment.id, answers_by_category(), assessment.version
        )
        assert result.code == ErrorCode.ELIGIBILITY_NOT_COMPLETED

    async def test_partial_updates_merge(self, service, assessor, assessment):
        eligible = await make_eligible(service, assessor, assessment)
        first_key, second_key = PRESET_QUESTIONS[0].key, PRESET_QUESTIONS[1].key

        first = await service.update_all_assessment_answers(
            assessor, assessment.id, {"company": {first_key: {"score": 1}}}, eligible.version
        )
        second = await service.update_all_assessment_answers(
            assessor,
            assessment.id,
            {"company": {second_key: {"score": -1, "remark": "Not relevant"}}},
            first.data.version,
        )

        assert second.success
        assert second.data.company_answers[first_key]["score"] == 1
        assert second.data.company_answers[second_key]["remark"] == "Not relevant"
        assert second.data.total_score is None

    async def test_unknown_question_key(self, service, assessor, assessment):
        eligible = await make_eligible(service, assessor, assessment)
        result = await service.update_all_assessment_answers(
            assessor, assessment.id, {"sector": {"nope": {"score": 1}}}, eligible.version
        )
        assert result.code == ErrorCode.INVALID_INPUT

    async def test_score_out_of_range(self, service, assessor, assessment):
        eligible = await make_eligible(service, assessor, assessment)
        result = await service.update_all_assessment_answers(
            assessor,
            assessment.id,
            {"company": {PRESET_QUESTIONS[0].key: {"score": 3}}},
            eligible.version,
        )
        assert result.code == ErrorCode.INVALID_INPUT

    async def test_stale_version(self, service, assessor, assessment):
        eligible = await make_eligible(service, assessor, assessment)
        result = await service.update_all_assessment_answers(
            assessor, assessment.id, answers_by_category(), eligible.version - 1
        )
        assert result.code == ErrorCode.CONCURRENT_MODIFICATION

    async def test_other_assessor_rejected(self, service, other_assessor, assessment):
        result = await service.update_eligibility_answers(
            other_assessor, assessment.id, eligibility(), assessment.version
        )
        assert result.code == ErrorCode.ASSESSOR_NOT_ASSIGNED

    async def test_concurrent_saves_one_wins(
        self, session_factory, service, assessor, assessment
    ):
        eligible = await make_eligible(service, assessor, assessment)
        key = PRESET_QUESTIONS[0].key

        async def save(score):
            async with session_factory() as session:
                return await AssessmentService(session).update_all_assessment_answers(
                    assessor, assessment.id, {"company": {key: {"score": score}}}, eligible.version
                )

        results = await asyncio.gather(save(1), save(2))

        assert sorted(r.success for r in results) == [False, True]
        assert next(r for r in results if not r.success).code == ErrorCode.CONCURRENT_MODIFICATION
        winner = next(r for r in results if r.success).data
        fresh = (await service.get_assessment(assessor, assessment.id)).data
        assert fresh.company_answers[key] == winner.company_answers[key]
        assert fresh.version == eligible.version + 1

    async def test_concurrent_identical_saves_one_wins(
        self, session_factory, service, assessor, assessment
    ):
        eligible = await make_eligible(service, assessor, assessment)
        payload = {"company": {PRESET_QUESTIONS[0].key: {"score": 2}}}
        saved = await service.update_all_assessment_answers(
            assessor, assessment.id, payload, eligible.version
        )

        async def save():
            async with session_factory() as session:
                return await AssessmentService(session).update_all_assessment_answers(
                    assessor, assessment.id, payload, saved.data.version
                )

        results = await asyncio.gather(save(), save())

        assert sorted(r.success for r in results) == [False, True]
        assert next(r for r in results if not r.success).code == ErrorCode.CONCURRENT_MODIFICATION
        fresh = (await service.get_assessment(assessor, assessment.id)).data
        assert fresh.version == saved.data.version + 1

    async def test_concurrent_identical_eligibility_saves_one_wins(
        self, session_factory, service, assessor, assessment
    ):
        async def save():
            async with session_factory() as session:
                return await AssessmentService(session).update_eligibility_answers(
                    assessor, assessment.id, eligibility(), assessment.version
                )

        results = await asyncio.gather(save(), save())

        assert sorted(r.success for r in results) == [False, True]
        assert next(r for r in results if not r.success).code == ErrorCode.CONCURRENT_MODIFICATION

    async def test_unchanged_save_still_consumes_version(self, service, assessor, assessment):
        eligible = await make_eligible(service, assessor, assessment)

        first = await service.update_all_assessment_answers(assessor, assessment.id, {}, eligible.version)
        replay = await service.update_all_assessment_answers(assessor, assessment.id, {}, eligible.version)

        assert first.success
        assert first.data.version == eligible.version + 1
        assert replay.code == ErrorCode.CONCURRENT_MODIFICATION


# ---------------------------------------------------------------------------
# Submit
# ---------------------------------------------------------------------------

class TestSubmit:

    async def test_submit_scores_and_freezes(
        self, service, db_session, assessor, reviewer, lead, submitted, sink, notifier
    ):
        await notifier.drain()

        assert submitted.status == AssessmentStatus.SUBMITTED.value
        assert submitted.total_score == Decimal("22.00")
        assert submitted.max_score == Decimal("22.00")
        assert submitted.percentage == Decimal("100.00")
        assert submitted.rating == Rating.IPO_READY.value
        assert submitted.submitted_at is not None

        questions = await AssessmentQuestionRepository(db_session).list_revision(submitted.id, 1)
        assert all(q.is_frozen for q in questions)

        lead_after = (await LeadService(db_session).get_lead(reviewer, lead.id)).data
        assert lead_after.status == LeadStatus.IN_REVIEW.value

        submitted_mail = [m for m in sink.messages if m["to"] == [reviewer.email]]
        assert len(submitted_mail) == 1
        assert "100.00" in submitted_mail[0]["html"]

    async def test_incomplete_submit_changes_nothing(self, service, db_session, assessor, assessment, lead):
        eligible = await make_eligible(service, assessor, assessment)
        skipped = PRESET_QUESTIONS[-1].key
        saved = await service.update_all_assessment_answers(
            assessor, assessment.id, answers_by_category(skip={skipped}), eligible.version
        )

        result = await service.submit_assessment(assessor, assessment.id, saved.data.version)

        assert result.code == ErrorCode.INCOMPLETE_ASSESSMENT
        assert result.details["missing"] == [skipped]

        fresh = (await service.get_assessment(assessor, assessment.id)).data
        assert fresh.status == AssessmentStatus.DRAFT.value
        assert fresh.total_score is None
        assert fresh.version == saved.data.version
        questions = await AssessmentQuestionRepository(db_session).list_revision(assessment.id, 1)
        assert not any(q.is_frozen for q in questions)
        lead_after = (await LeadService(db_session).get_lead(assessor, lead.id)).data
        assert lead_after.status == LeadStatus.ASSIGNED.value

    async def test_not_applicable_answers(self, service, assessor, assessment):
        eligible = await make_eligible(service, assessor, assessment)
        update = answers_by_category(score=2)
        for key in update["sector"]:
            update["sector"][key] = {"score": -1}
        saved = await service.update_all_assessment_answers(
            assessor, assessment.id, update, eligible.version
        )

        result = await service.submit_assessment(assessor, assessment.id, saved.data.version)

        assert result.data.max_score == Decimal("16.00")
        assert result.data.percentage == Decimal("100.00")

    async def test_second_submit_is_rejected(self, service, assessor, submitted):
        again = await service.submit_assessment(assessor, submitted.id, submitted.version)
        assert again.code == ErrorCode.ASSESSMENT_ALREADY_SUBMITTED

    async def test_failed_recipient_lookup_keeps_submit(
        self, service, assessor, ready_assessment, sink, notifier, monkeypatch
    ):
        async def broken_lookup(role):
            raise OperationalError("SELECT users", {}, Exception("connection lost"))

        await notifier.drain()
        before = len(sink.messages)
        monkeypatch.setattr(service.user_repository, "list_active", broken_lookup)

        result = await service.submit_assessment(
            assessor, ready_assessment.id, ready_assessment.version
        )
        await notifier.drain()

        assert result.success
        assert result.data.status == AssessmentStatus.SUBMITTED.value
        assert len(sink.messages) == before

    async def test_concurrent_submits_one_wins(
        self, session_factory, assessor, ready_assessment
    ):
        async def submit():
            async with session_factory() as session:
                return await AssessmentService(session).submit_assessment(
                    assessor, ready_assessment.id, ready_assessment.version
                )

        results = await asyncio.gather(submit(), submit())

        assert sorted(r.success for r in results) == [False, True]
        assert next(r for r in results if not r.success).code in (
            ErrorCode.CONCURRENT_MODIFICATION,
            ErrorCode.ASSESSMENT_ALREADY_SUBMITTED,
        )

    async def test_submitted_assessment_is_read_only(self, service, assessor, submitted):
        key = PRESET_QUESTIONS[0].key
        result = await service.update_all_assessment_answers(
            assessor, submitted.id, {"company": {key: {"score": 0}}}, submitted.version
        )
        assert result.code == ErrorCode.ASSESSMENT_ALREADY_SUBMITTED


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------

class TestReview:

    async def test_approve_moves_lead_to_payment(
        self, service, db_session, reviewer, lead, submitted, sink, notifier
    ):
        result = await service.approve_assessment(reviewer, submitted.id, "Looks solid")
        await notifier.drain()

        assert result.success
        assert result.data.status == AssessmentStatus.APPROVED.value
        assert result.data.reviewer_id == reviewer.id
        assert [entry["action"] for entry in result.data.review_history] == ["APPROVED"]

        lead_after = (await LeadService(db_session).get_lead(reviewer, lead.id)).data
        assert lead_after.status == LeadStatus.PAYMENT_PENDING.value
        assert any(m["to"] == [lead.email] for m in sink.messages)

    async def test_assessor_cannot_review(self, service, assessor, submitted):
        result = await service.approve_assessment(assessor, submitted.id)
        assert result.code == ErrorCode.INSUFFICIENT_PERMISSIONS

    async def test_cannot_approve_draft(self, service, reviewer, assessment):
        result = await service.approve_assessment(reviewer, assessment.id)

        assert result.code == ErrorCode.INVALID_STATUS_TRANSITION
        assert result.details == {"from": "DRAFT", "to": "APPROVED"}

    @pytest.mark.parametrize("remark", [None, "", "   ", "too short"])
    async def test_reject_needs_meaningful_remark(self, service, reviewer, submitted, remark):
        result = await service.reject_assessment(reviewer, submitted.id, remark)

        assert result.code == ErrorCode.INVALID_INPUT
        fresh = (await service.get_assessment(reviewer, submitted.id)).data
        assert fresh.status == AssessmentStatus.SUBMITTED.value

    async def test_reject_notifies_assessor(self, service, reviewer, assessor, submitted, sink, notifier):
        result = await service.reject_assessment(
            reviewer, submitted.id, "Financial controls evidence is missing"
        )
        await notifier.drain()

        assert result.data.status == AssessmentStatus.REJECTED.value
        assert result.data.reviewer_remarks == "Financial controls evidence is missing"
        rejected_mail = [m for m in sink.messages if m["to"] == [assessor.email]]
        assert any("Financial controls evidence is missing" in m["html"] for m in rejected_mail)

    async def test_reopen_starts_new_revision(self, service, db_session, reviewer, assessor, submitted):
        rejected = await service.reject_assessment(
            reviewer, submitted.id, "Please revisit the sector answers"
        )
        reopened = await service.reopen_assessment(reviewer, submitted.id, "Go again")

        assert reopened.success
        assessment = reopened.data
        assert assessment.status == AssessmentStatus.DRAFT.value
        assert assessment.snapshot_revision == 2
        assert assessment.total_score is None
        assert assessment.is_eligible is True
        history = assessment.review_history
        assert [entry["action"] for entry in history] == ["REJECTED", "REOPENED"]
        assert history[0]["percentage"] == "100.00"

        repo = AssessmentQuestionRepository(db_session)
        old = await repo.list_revision(assessment.id, 1)
        new = await repo.list_revision(assessment.id, 2)
        assert all(q.is_frozen for q in old)
        assert not any(q.is_frozen for q in new)
        assert [q.key for q in new] == [q.key for q in old]

        resubmitted = await service.submit_assessment(assessor, assessment.id, assessment.version)
        assert resubmitted.success
        assert rejected.data.version < resubmitted.data.version

    async def test_approved_is_final(self, service, reviewer, submitted):
        approved = await service.approve_assessment(reviewer, submitted.id)
        reopen = await service.reopen_assessment(reviewer, submitted.id)

        assert approved.success
        assert reopen.code == ErrorCode.INVALID_STATUS_TRANSITION

    async def test_pending_queue(self, service, reviewer, submitted):
        result = await service.list_pending_reviews(reviewer)
        assert [a.id for a in result.data] == [submitted.id]

    async def test_review_actions_are_audited(self, service, db_session, reviewer, submitted):
        await service.approve_assessment(reviewer, submitted.id)

        actions = {entry.action for entry in await AuditLogRepository(db_session).for_entity(submitted.id)}
        assert {"ELIGIBILITY_COMPLETED", "ASSESSMENT_SUBMITTED", "ASSESSMENT_APPROVED"} <= actions
