"""Test configuration and fixtures."""

import itertools
from typing import AsyncGenerator, Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.models import Base
from app.models.user import User, UserRole
from app.repositories.assessment import AssessmentRepository
from app.services.lead_service import LeadService
from app.services.notification_service import NotificationDispatcher
from app.services.question_bank_service import ELIGIBILITY_SEED, QuestionBankService
from app.services.scoring import PRESET_QUESTIONS

ELIGIBILITY_KEYS = [key for key, _ in ELIGIBILITY_SEED]

_cin_counter = itertools.count(100001)


def make_cin() -> str:
    """A unique, well-formed CIN."""
    return f"U{next(_cin_counter) % 100000:05d}MH2015PTC{next(_cin_counter) % 1000000:06d}"


def eligibility(checked=True, unchecked=()):
    return {key: {"checked": checked and key not in unchecked} for key in ELIGIBILITY_KEYS}


def answers_by_category(score=2, skip=()):
    """A questionnaire update answering every preset question with ``score``."""
    update = {"company": {}, "financial": {}, "sector": {}}
    for question in PRESET_QUESTIONS:
        if question.key in skip:
            continue
        update[question.category.lower()][question.key] = {"score": score}
    return update


async def make_eligible(service, actor, assessment, unchecked=()):
    saved = await service.update_eligibility_answers(
        actor, assessment.id, eligibility(unchecked=unchecked), assessment.version
    )
    assert saved.success, saved.error
    completed = await service.complete_eligibility(actor, assessment.id, saved.data.version)
    assert completed.success, completed.error
    return completed.data


class RecordingSink:
    """Email sink that keeps messages in memory and can be told to fail."""

    def __init__(self):
        self.messages: List[Dict] = []
        self.fail = False

    async def send(self, to: List[str], subject: str, html: str) -> None:
        if self.fail:
            raise RuntimeError("mail provider down")
        self.messages.append({"to": to, "subject": subject, "html": html})


class MemoryBlobStore:
    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.deleted: List[str] = []

    async def upload(self, data: bytes, path: str, content_type: str) -> str:
        self.objects[path] = data
        return f"https://blobs.test/{path}"

    async def delete(self, url: str) -> None:
        path = url.removeprefix("https://blobs.test/")
        self.objects.pop(path, None)
        self.deleted.append(path)


@pytest.fixture
async def async_engine(tmp_path):
    """File-backed SQLite so separate sessions really contend for the same rows."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 5},
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def notifier(sink) -> NotificationDispatcher:
    return NotificationDispatcher(sink, frontend_url="https://app.test")


@pytest.fixture
def blob_store() -> MemoryBlobStore:
    return MemoryBlobStore()


async def create_user(
    db: AsyncSession,
    role: UserRole,
    email: str,
    name: Optional[str] = None,
    is_active: bool = True,
) -> User:
    user = User(
        email=email,
        name=name or email.split("@")[0].title(),
        role=role.value,
        is_active=is_active,
        external_id=f"kc-{email}",
    )
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def reviewer(db_session) -> User:
    return await create_user(db_session, UserRole.REVIEWER, "reviewer@ira-platform.in", "Riya Reviewer")


@pytest.fixture
async def assessor(db_session) -> User:
    return await create_user(db_session, UserRole.ASSESSOR, "assessor@ira-platform.in", "Arjun Assessor")


@pytest.fixture
async def other_assessor(db_session) -> User:
    return await create_user(db_session, UserRole.ASSESSOR, "other@ira-platform.in", "Omar Other")


@pytest.fixture
async def seeded_templates(db_session) -> int:
    return await QuestionBankService(db_session).seed()


@pytest.fixture
def lead_data():
    def _build(**overrides):
        data = {
            "company_name": "Acme Industries Private Limited",
            "cin": make_cin(),
            "contact_person": "Priya Shah",
            "email": "priya@acme.co.in",
            "phone": "+91-9876543210",
            "address": "12 Marine Drive, Mumbai",
        }
        data.update(overrides)
        return data

    return _build


@pytest.fixture
async def lead(db_session, reviewer, lead_data):
    result = await LeadService(db_session).create_lead(reviewer, lead_data())
    assert result.success, result.error
    return result.data


@pytest.fixture
async def assessment(db_session, reviewer, assessor, lead, seeded_templates):
    """A DRAFT assessment assigned to ``assessor`` with the seeded snapshot."""
    service = LeadService(db_session)
    result = await service.assign_assessor(reviewer, lead.id, assessor.id, lead.version)
    assert result.success, result.error
    return await AssessmentRepository(db_session).get_by_lead(lead.id)
