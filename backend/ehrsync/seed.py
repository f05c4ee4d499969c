"""Seed a development database with demo users and clinical records.

Idempotent: checks for existing data before inserting.
Prints a bearer token per demo user so the sync endpoints can be
exercised from a client right away.
Run via: python -m ehrsync.seed
"""

import asyncio
import uuid
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ehrsync.core.security import create_access_token
from ehrsync.database import Base, async_session_factory, engine
from ehrsync.models import Encounter, Patient, User
from ehrsync.models.enums import (
    EncounterStatus,
    EncounterType,
    OnsetContext,
    SexAssignedAtBirth,
    UserRole,
)

SEED_USERS = [
    ("admin@ehr.local", "Dana Whitfield", UserRole.SUPER_ADMIN),
    ("manager@ehr.local", "Marcus Hale", UserRole.MANAGER),
    ("provider@ehr.local", "Dr. Ines Navarro", UserRole.CLINICAL_PROVIDER),
    ("emt@ehr.local", "Tomas Reyes", UserRole.TECHNICIAN),
    ("privacy@ehr.local", "Alex Kim", UserRole.PRIVACY_OFFICER),
]

SEED_PATIENTS = [
    ("Jordan", "Ellis", date(1988, 4, 12), SexAssignedAtBirth.MALE, "Northside Freight"),
    ("Priya", "Raman", date(1992, 11, 3), SexAssignedAtBirth.FEMALE, "Harbor Steel"),
    ("Sam", "Okafor", date(1979, 7, 21), SexAssignedAtBirth.UNKNOWN, "Northside Freight"),
]


async def seed_users(session: AsyncSession) -> dict[str, uuid.UUID]:
    """Create demo users. Returns {email: user_id} mapping."""
    result = await session.execute(
        select(User).where(User.email == SEED_USERS[0][0])
    )
    if result.scalar_one_or_none() is not None:
        print("[users] Already seeded, loading ids...")
        rows = await session.execute(select(User.email, User.id))
        return {r[0]: r[1] for r in rows.all()}

    users: dict[str, uuid.UUID] = {}
    for email, name, role in SEED_USERS:
        uid = uuid.uuid4()
        session.add(User(id=uid, email=email, full_name=name, role=role, is_active=True))
        users[email] = uid
        print(f"  [users] Created {email} ({role.value})")
    await session.flush()
    return users


async def seed_clinical_records(session: AsyncSession, provider_id: uuid.UUID) -> int:
    """Create a few patients, each with one completed clinic encounter."""
    result = await session.execute(select(Patient.id).limit(1))
    if result.scalar_one_or_none() is not None:
        print("[patients] Already seeded, skipping")
        return 0

    now = datetime.now(timezone.utc)
    for i, (first, last, dob, sex, employer) in enumerate(SEED_PATIENTS):
        patient = Patient(
            id=uuid.uuid4(),
            legal_first_name=first,
            legal_last_name=last,
            dob=dob,
            sex_assigned_at_birth=sex,
            employer_name=employer,
            created_at=now,
            created_by=provider_id,
        )
        session.add(patient)
        session.add(
            Encounter(
                id=uuid.uuid4(),
                patient_id=patient.id,
                encounter_type=EncounterType.CLINIC,
                status=EncounterStatus.COMPLETED,
                chief_complaint="Post-incident evaluation",
                onset_context=OnsetContext.WORK_RELATED,
                occurred_on=now - timedelta(days=i + 1),
                employer_name=employer,
                created_at=now,
                created_by=provider_id,
            )
        )
        print(f"  [patients] Created {first} {last} with one encounter")
    await session.flush()
    return len(SEED_PATIENTS)


async def run_seed() -> None:
    print("=" * 60)
    print("EHR Sync Database Seeder")
    print("=" * 60)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_factory() as session:
        print("\n[1/2] Seeding users...")
        users = await seed_users(session)
        provider_id = users.get("provider@ehr.local") or next(iter(users.values()))

        print("\n[2/2] Seeding patients and encounters...")
        await seed_clinical_records(session, provider_id)

        await session.commit()

    print("\n" + "=" * 60)
    print("Seed complete!")
    print("=" * 60)
    print("\nDemo bearer tokens:")
    for email, _name, role in SEED_USERS:
        if email in users:
            print(f"  {email:22s} ({role.value})\n    {create_access_token(users[email])}")


if __name__ == "__main__":
    asyncio.run(run_seed())
