"""Tests for the debounced auto-saver."""

import asyncio
from types import SimpleNamespace

from app.core.config import Settings
from app.core.exceptions import (
    ApplicationError,
    ConcurrencyError,
    DatabaseError,
    ValidationError,
)
from app.core.results import ActionResult
from app.models.assessment import AssessmentStatus
from app.services.assessment_service import AssessmentService
from app.services.auto_save_service import (
    AutoSaver,
    SaveState,
    assessment_auto_saver,
    eligibility_auto_saver,
    merge_answers,
)
from app.services.scoring import PRESET_QUESTIONS

from conftest import ELIGIBILITY_KEYS, answers_by_category

QUIET = 0.1


class FakeSave:
    """Optimistic-locked save double. Outcomes are consumed in order, then saves succeed."""

    def __init__(self, *outcomes, version=1):
        self.outcomes = list(outcomes)
        self.version = version
        self.calls = []
        self.gate = None

    async def __call__(self, payload, expected_version):
        self.calls.append((dict(payload), expected_version))
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, ApplicationError):
            return ActionResult.fail(outcome)
        if outcome is not None:
            raise outcome
        self.version += 1
        return ActionResult.ok(SimpleNamespace(version=self.version))

    @property
    def payloads(self):
        return [payload for payload, _ in self.calls]


def saver_for(save, **kwargs):
    options = {"debounce_ms": 10, "base_delay_ms": 5, "version": 1}
    options.update(kwargs)
    return AutoSaver(save, **options)


# ---------------------------------------------------------------------------
# Debounce
# ---------------------------------------------------------------------------

class TestDebounce:

    async def test_rapid_edits_collapse_into_one_save(self):
        save = FakeSave()
        saver = saver_for(save)

        saver.edit({"a": 1})
        saver.edit({"b": 2})
        assert saver.state == SaveState.PENDING
        assert saver.has_unsaved_changes
        await asyncio.sleep(QUIET)

        assert save.payloads == [{"a": 1, "b": 2}]
        assert saver.state == SaveState.SAVED
        assert saver.version == 2
        assert saver.last_saved_at is not None
        assert not saver.has_unsaved_changes

    async def test_flush_skips_the_window(self):
        save = FakeSave()
        saver = saver_for(save, debounce_ms=10_000)

        saver.edit({"a": 1})
        assert await saver.flush() is True

        assert save.payloads == [{"a": 1}]

    async def test_flush_with_nothing_buffered(self):
        save = FakeSave()
        assert await saver_for(save).flush() is True
        assert save.calls == []

    async def test_close_keeps_edits_buffered(self):
        save = FakeSave()
        saver = saver_for(save)

        saver.edit({"a": 1})
        await saver.close()
        await asyncio.sleep(QUIET)

        assert save.calls == []
        assert saver.has_unsaved_changes

    async def test_edit_during_save_is_sent_next(self):
        save = FakeSave()
        save.gate = asyncio.Event()
        saver = saver_for(save)

        saver.edit({"a": 1})
        await asyncio.sleep(0.05)
        assert saver.state == SaveState.SAVING
        saver.edit({"b": 2})
        save.gate.set()
        await asyncio.sleep(QUIET)

        assert save.calls == [({"a": 1}, 1), ({"b": 2}, 2)]
        assert saver.document == {"a": 1, "b": 2}
        assert saver.state == SaveState.SAVED


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------

class TestRetry:

    async def test_transient_failure_is_retried(self):
        save = FakeSave(DatabaseError("connection reset"))
        saver = saver_for(save)

        saver.edit({"a": 1})
        assert await saver.flush() is True

        assert save.payloads == [{"a": 1}, {"a": 1}]
        assert saver.attempts == 2
        assert saver.state == SaveState.SAVED

    async def test_unexpected_exception_is_treated_as_transient(self):
        save = FakeSave(RuntimeError("socket closed"))
        saver = saver_for(save)

        saver.edit({"a": 1})

        assert await saver.flush() is True
        assert len(save.calls) == 2

    async def test_gives_up_after_max_retries(self):
        save = FakeSave(*[DatabaseError("down") for _ in range(5)])
        saver = saver_for(save, max_retries=2)

        saver.edit({"a": 1})

        assert await saver.flush() is False
        assert len(save.calls) == 3
        assert saver.state == SaveState.FAILED
        assert saver.has_unsaved_changes

    async def test_exponential_backoff(self, monkeypatch):
        delays = []
        real_sleep = asyncio.sleep

        async def recording_sleep(seconds):
            delays.append(seconds)
            await real_sleep(0)

        monkeypatch.setattr(asyncio, "sleep", recording_sleep)
        save = FakeSave(*[DatabaseError("down") for _ in range(3)])
        saver = saver_for(save, base_delay_ms=1000, max_retries=2)

        saver.edit({"a": 1})
        await saver.flush()

        assert delays == [1.0, 2.0]

    async def test_validation_failure_is_not_retried(self):
        save = FakeSave(ValidationError("bad score", field="score"))
        saver = saver_for(save)

        saver.edit({"a": 1})

        assert await saver.flush() is False
        assert len(save.calls) == 1
        assert saver.state == SaveState.FAILED

    async def test_newer_edit_cancels_scheduled_retry(self):
        save = FakeSave(DatabaseError("down"))
        saver = saver_for(save, base_delay_ms=10_000)

        saver.edit({"a": 1})
        await asyncio.sleep(0.05)
        assert saver.state == SaveState.RETRYING

        saver.edit({"b": 2})
        await asyncio.sleep(QUIET)

        assert save.payloads == [{"a": 1}, {"a": 1, "b": 2}]
        assert saver.state == SaveState.SAVED


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------

class TestConflict:

    async def test_conflict_stops_saving_until_rebase(self):
        save = FakeSave(ConcurrencyError(), version=7)
        saver = saver_for(save)

        saver.edit({"a": 1})
        assert await saver.flush() is False
        assert saver.state == SaveState.CONFLICT
        assert len(save.calls) == 1

        saver.edit({"b": 2})
        await asyncio.sleep(QUIET)
        assert len(save.calls) == 1

        saver.rebase(7, document={"server": True})
        assert saver.document == {"server": True, "a": 1, "b": 2}
        await asyncio.sleep(QUIET)

        assert save.calls[-1] == ({"a": 1, "b": 2}, 7)
        assert saver.state == SaveState.SAVED
        assert saver.version == 8

    async def test_rebase_without_edits_goes_idle(self):
        saver = saver_for(FakeSave())
        saver.rebase(3)

        assert saver.state == SaveState.IDLE
        assert saver.version == 3


# ---------------------------------------------------------------------------
# Forms
# ---------------------------------------------------------------------------

class TestMergeAnswers:

    def test_shallow_merge_replaces_nested_maps(self):
        merged = merge_answers({"company": {"a": 1}}, {"company": {"b": 2}})
        assert merged == {"company": {"b": 2}}

    def test_deep_merge_keeps_siblings(self):
        target = {"company": {"a": 1}}
        merged = merge_answers(target, {"company": {"b": 2}, "sector": {"c": 0}}, depth=2)

        assert merged == {"company": {"a": 1, "b": 2}, "sector": {"c": 0}}
        assert target == {"company": {"a": 1}}


class FakeEligibilityService:
    def __init__(self):
        self.saves = []

    async def update_eligibility_answers(self, actor, assessment_id, answers, expected_version):
        self.saves.append(dict(answers))
        return ActionResult.ok(SimpleNamespace(version=expected_version + 1))


class TestFormSavers:

    async def test_eligibility_sends_whole_map(self):
        service = FakeEligibilityService()
        saver = eligibility_auto_saver(
            service,
            actor=None,
            assessment_id="a1",
            version=1,
            answers={"existing": {"checked": True}},
            config=Settings(ELIGIBILITY_DEBOUNCE_MS=10),
        )

        saver.edit({"first": {"checked": True}})
        await saver.flush()
        saver.edit({"second": {"checked": False}})
        await saver.flush()

        assert service.saves[-1] == {
            "existing": {"checked": True},
            "first": {"checked": True},
            "second": {"checked": False},
        }
        assert saver.version == 3

    async def test_questionnaire_round_trip(self, db_session, assessor, assessment):
        service = AssessmentService(db_session)
        eligibility = await auto_complete_eligibility(service, assessor, assessment)
        saver = assessment_auto_saver(
            service,
            assessor,
            assessment.id,
            eligibility.version,
            config=Settings(ASSESSMENT_DEBOUNCE_MS=10),
        )

        full = answers_by_category()
        for category, answers in full.items():
            for key, answer in answers.items():
                saver.edit({category: {key: answer}})
        assert await saver.flush() is True

        submitted = await service.submit_assessment(assessor, assessment.id, saver.version)

        assert submitted.success, submitted.error
        assert submitted.data.status == AssessmentStatus.SUBMITTED.value
        assert len(submitted.data.company_answers) == sum(
            1 for q in PRESET_QUESTIONS if q.category == "COMPANY"
        )

    async def test_second_writer_surfaces_conflict(self, db_session, assessor, assessment):
        service = AssessmentService(db_session)
        eligibility = await auto_complete_eligibility(service, assessor, assessment)
        key = PRESET_QUESTIONS[0].key
        saver = assessment_auto_saver(
            service, assessor, assessment.id, eligibility.version,
            config=Settings(ASSESSMENT_DEBOUNCE_MS=10),
        )
        other = await service.update_all_assessment_answers(
            assessor, assessment.id, {"company": {key: {"score": 0}}}, eligibility.version
        )
        assert other.success

        saver.edit({"company": {key: {"score": 2}}})

        assert await saver.flush() is False
        assert saver.state == SaveState.CONFLICT


async def auto_complete_eligibility(service, actor, assessment):
    saver = eligibility_auto_saver(
        service, actor, assessment.id, assessment.version,
        config=Settings(ELIGIBILITY_DEBOUNCE_MS=10),
    )
    for key in ELIGIBILITY_KEYS:
        saver.edit({key: {"checked": True}})
    assert await saver.flush() is True
    result = await service.complete_eligibility(actor, assessment.id, saver.version)
    assert result.success, result.error
    return result.data
