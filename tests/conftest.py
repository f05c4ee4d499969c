import os
import uuid
from datetime import date, datetime, timezone

# Settings are read at import time, so the environment must be ready first.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-with-enough-bytes-for-hs256"
os.environ["DEBUG"] = "true"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ehrsync.core.security import create_access_token
from ehrsync.database import get_db
from ehrsync.main import app
from ehrsync.models import Base, Encounter, Patient, User
from ehrsync.models.enums import EncounterType, SexAssignedAtBirth, UserRole

NINE_AM = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'sync.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def _make_user(db: AsyncSession, role: UserRole, email: str) -> User:
    user = User(
        id=uuid.uuid4(),
        email=email,
        full_name=email.split("@")[0].title(),
        role=role,
        is_active=True,
    )
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def provider(db):
    return await _make_user(db, UserRole.CLINICAL_PROVIDER, "provider@test.local")


@pytest_asyncio.fixture
async def technician(db):
    return await _make_user(db, UserRole.TECHNICIAN, "emt@test.local")


@pytest_asyncio.fixture
async def manager(db):
    return await _make_user(db, UserRole.MANAGER, "manager@test.local")


@pytest_asyncio.fixture
async def privacy_officer(db):
    return await _make_user(db, UserRole.PRIVACY_OFFICER, "privacy@test.local")


@pytest_asyncio.fixture
async def patient(db, provider):
    row = Patient(
        id=uuid.uuid4(),
        legal_first_name="Jordan",
        legal_last_name="Ellis",
        dob=date(1988, 4, 12),
        sex_assigned_at_birth=SexAssignedAtBirth.MALE,
        created_at=NINE_AM,
        created_by=provider.id,
    )
    db.add(row)
    await db.commit()
    return row


@pytest_asyncio.fixture
async def encounter(db, provider, patient):
    """Encounter created at 09:00 and never updated since."""
    row = Encounter(
        id=uuid.uuid4(),
        patient_id=patient.id,
        encounter_type=EncounterType.CLINIC,
        chief_complaint="Back strain",
        occurred_on=NINE_AM,
        created_at=NINE_AM,
        created_by=provider.id,
    )
    db.add(row)
    await db.commit()
    return row


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
