"""
Test configuration and fixtures.

Provides:
- Fresh in-memory SQLite database per test
- Factories for schools, alumni, projects and donations
- Bearer token headers for alumni and school principals
- HTTPX AsyncClient with dependency overrides
"""
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Generator

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AI_API_KEY"] = ""
os.environ["JWT_SECRET"] = "test-secret"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["PAYMENTS_DEMO_MODE"] = "true"
os.environ["PAYMENT_GATEWAY_DELAY_SECONDS"] = "0"
os.environ["PAYMENT_GATEWAY_RETRY_DELAY"] = "0"
os.environ["AI_RETRY_BASE_DELAY"] = "0"
os.environ["AI_SCORING_RETRY_DELAY"] = "0"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from backed.core.deps import get_ai_provider, get_db, get_payment_gateway
from backed.core.security import create_access_token
from backed.db.base import Base
from backed.db.enums import DonationStatus, PrincipalRole, ProjectStatus
from backed.db.models import AlumniDonation, AlumniProfile, DonationHistory, Project, School
from backed.main import app
from backed.services.ai_provider import AIProvider, ChatMessage, ChatResponse
from backed.services.payment_gateway import SimulatedPaymentGateway


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def engine():
    """One in-memory database per test; StaticPool keeps a single connection."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


# =============================================================================
# Factories
# =============================================================================

_clock = {"t": datetime(2026, 1, 1, tzinfo=timezone.utc)}


def _next_timestamp() -> datetime:
    """Strictly increasing creation times so ordering tests are stable."""
    _clock["t"] += timedelta(minutes=1)
    return _clock["t"]


@pytest.fixture
def make_school(db: Session):
    def factory(**kwargs) -> School:
        school = School(
            admin_user_id=kwargs.pop("admin_user_id", uuid.uuid4()),
            school_name=kwargs.pop("school_name", "Achimota School"),
            location=kwargs.pop("location", "Accra"),
            **kwargs,
        )
        db.add(school)
        db.commit()
        return school

    return factory


@pytest.fixture
def make_donor(db: Session):
    def factory(school: School | None = None, niches: list[str] | None = None, **kwargs) -> AlumniProfile:
        donor = AlumniProfile(
            user_id=kwargs.pop("user_id", uuid.uuid4()),
            full_name=kwargs.pop("full_name", "Ama Mensah"),
            email=kwargs.pop("email", f"alumni-{uuid.uuid4().hex[:8]}@test.com"),
            niches=niches or [],
            school_id=school.id if school else None,
            school_name=school.school_name if school else None,
            **kwargs,
        )
        db.add(donor)
        db.commit()
        return donor

    return factory


@pytest.fixture
def make_project(db: Session):
    def factory(school: School, **kwargs) -> Project:
        target = kwargs.pop("target_amount", Decimal("1000"))
        project = Project(
            school_id=school.id,
            title=kwargs.pop("title", "New Science Lab"),
            description=kwargs.pop("description", "Equip a science lab for students."),
            category=kwargs.pop("category", []),
            target_amount=Decimal(target) if target is not None else None,
            current_amount=Decimal(kwargs.pop("current_amount", "0")),
            reserved_amount=Decimal("0"),
            backers_count=kwargs.pop("backers_count", 0),
            status=kwargs.pop("status", ProjectStatus.ACTIVE.value),
            days_remaining=kwargs.pop("days_remaining", None),
            created_at=kwargs.pop("created_at", None) or _next_timestamp(),
            **kwargs,
        )
        db.add(project)
        db.commit()
        return project

    return factory


@pytest.fixture
def add_donation(db: Session):
    """Insert a primary-source donation row directly (no gateway)."""
    def factory(
        donor: AlumniProfile,
        project: Project,
        amount: str | Decimal,
        status: DonationStatus = DonationStatus.COMPLETED,
    ) -> AlumniDonation:
        donation = AlumniDonation(
            donor_id=donor.id,
            project_id=project.id,
            amount=Decimal(amount),
            currency="GHS",
            status=status.value,
            payment_reference=f"TEST_{uuid.uuid4().hex}",
        )
        db.add(donation)
        db.commit()
        return donation

    return factory


@pytest.fixture
def add_legacy_donation(db: Session):
    """Insert a legacy donation_history row."""
    def factory(
        project: Project,
        amount: str | Decimal,
        payment_status: str | None = "completed",
        donor: AlumniProfile | None = None,
        donor_email: str | None = None,
    ) -> DonationHistory:
        row = DonationHistory(
            project_id=project.id,
            donor_id=donor.id if donor else None,
            donor_email=donor_email,
            amount=Decimal(amount),
            payment_status=payment_status,
        )
        db.add(row)
        db.commit()
        return row

    return factory


# =============================================================================
# Auth Fixtures
# =============================================================================

@dataclass
class TestAuth:
    """Bearer token for a principal."""
    user_id: uuid.UUID
    role: PrincipalRole
    token: str

    @property
    def headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"}


def auth_for(user_id: uuid.UUID, role: PrincipalRole) -> TestAuth:
    return TestAuth(
        user_id=user_id,
        role=role,
        token=create_access_token(user_id, role.value),
    )


@pytest.fixture
def school(make_school) -> School:
    return make_school()


@pytest.fixture
def donor(make_donor, school) -> AlumniProfile:
    return make_donor(school=school, niches=["Technology"])


@pytest.fixture
def alumni_auth(donor: AlumniProfile) -> TestAuth:
    return auth_for(donor.user_id, PrincipalRole.ALUMNI)


@pytest.fixture
def school_auth(school: School) -> TestAuth:
    return auth_for(school.admin_user_id, PrincipalRole.SCHOOL)


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture
def gateway() -> SimulatedPaymentGateway:
    return SimulatedPaymentGateway()


@pytest.fixture(scope="function")
async def client(db: Session, gateway: SimulatedPaymentGateway) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient against the app with the test database and demo gateway."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_ai_provider] = lambda: None

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def make_auth():
    return auth_for


# =============================================================================
# AI Fixtures
# =============================================================================

class FakeProvider(AIProvider):
    """Scripted provider: each call consumes the next reply (str or exception)."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls: list[list[ChatMessage]] = []

    async def chat(self, messages, model=None, temperature=0.7, max_tokens=2000) -> ChatResponse:
        self.calls.append(list(messages))
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return ChatResponse(
            content=reply,
            prompt_tokens=0,
            completion_tokens=0,
            total_tokens=0,
            model="fake",
        )


@pytest.fixture
def make_provider():
    return FakeProvider
