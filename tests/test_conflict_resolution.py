import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from ehrsync.core.exceptions import (
    ConflictAlreadyResolved,
    ConflictNotFound,
    PersistenceError,
    ResolutionNotSupported,
)
from ehrsync.models import AuditLog, Encounter
from ehrsync.models.enums import AuditAction, ConflictResolution, ConflictStatus
from ehrsync.services.conflict import ConflictResolver, ConflictStore
from ehrsync.services.sync import SyncService

from conftest import NINE_AM


@pytest.fixture
def stale_encounter(db, encounter):
    """The 09:00 encounter after a server-side save at 09:05."""
    encounter.chief_complaint = "Server edit"
    encounter.updated_at = NINE_AM + timedelta(minutes=5)
    return encounter


async def raise_conflict(db, encounter, user_id, **body):
    await db.commit()
    result = await SyncService(db).process_batch(
        [
            {
                "id": "u1",
                "resource_type": "encounter",
                "method": "update",
                "body": {"encounter_id": str(encounter.id), **body},
                "local_updated_at": NINE_AM.isoformat(),
            }
        ],
        user_id,
    )
    assert result.results[0].conflict
    return result.results[0].conflict_id


async def fetch_encounter(session_factory, encounter_id):
    async with session_factory() as session:
        return await session.get(Encounter, encounter_id)


@pytest.mark.asyncio
async def test_use_server_keeps_server_copy(db, session_factory, provider, stale_encounter):
    conflict_id = await raise_conflict(db, stale_encounter, provider.id, chief_complaint="Client edit")

    conflict = await ConflictResolver(db).resolve(
        conflict_id, ConflictResolution.USE_SERVER, provider.id
    )
    await db.commit()

    assert conflict.status == ConflictStatus.RESOLVED
    assert conflict.resolution == ConflictResolution.USE_SERVER
    assert conflict.resolved_by == provider.id
    assert conflict.resolved_at is not None
    stored = await fetch_encounter(session_factory, stale_encounter.id)
    assert stored.chief_complaint == "Server edit"


@pytest.mark.asyncio
async def test_use_client_applies_local_copy(db, session_factory, provider, manager, stale_encounter):
    conflict_id = await raise_conflict(db, stale_encounter, provider.id, chief_complaint="Client edit")

    conflict = await ConflictResolver(db).resolve(
        conflict_id, ConflictResolution.USE_CLIENT, manager.id
    )
    await db.commit()

    assert conflict.resolution == ConflictResolution.USE_CLIENT
    stored = await fetch_encounter(session_factory, stale_encounter.id)
    assert stored.chief_complaint == "Client edit"
    assert stored.updated_by == manager.id


@pytest.mark.asyncio
async def test_resolution_is_audited(db, session_factory, provider, stale_encounter):
    conflict_id = await raise_conflict(db, stale_encounter, provider.id)

    await ConflictResolver(db).resolve(conflict_id, ConflictResolution.USE_SERVER, provider.id)
    await db.commit()

    async with session_factory() as session:
        entry = (
            await session.execute(
                select(AuditLog).where(AuditLog.action == AuditAction.RESOLVE)
            )
        ).scalar_one()
    assert entry.entity_id == conflict_id
    assert entry.new_values == {"status": "resolved", "resolution": "use_server"}


@pytest.mark.asyncio
async def test_second_resolution_is_rejected(db, provider, stale_encounter):
    conflict_id = await raise_conflict(db, stale_encounter, provider.id)
    resolver = ConflictResolver(db)
    await resolver.resolve(conflict_id, ConflictResolution.USE_SERVER, provider.id)
    await db.commit()

    with pytest.raises(ConflictAlreadyResolved):
        await resolver.resolve(conflict_id, ConflictResolution.USE_CLIENT, provider.id)


@pytest.mark.asyncio
async def test_merge_is_not_supported(db, provider, stale_encounter):
    conflict_id = await raise_conflict(db, stale_encounter, provider.id)

    with pytest.raises(ResolutionNotSupported):
        await ConflictResolver(db).resolve(conflict_id, ConflictResolution.MERGE, provider.id)

    conflict = await ConflictStore(db).get(conflict_id)
    assert conflict.status == ConflictStatus.PENDING


@pytest.mark.asyncio
async def test_unknown_conflict(db, provider):
    with pytest.raises(ConflictNotFound):
        await ConflictResolver(db).resolve(uuid.uuid4(), ConflictResolution.USE_SERVER, provider.id)


@pytest.mark.asyncio
async def test_use_client_on_deleted_resource_leaves_conflict_pending(db, provider, stale_encounter):
    conflict_id = await raise_conflict(db, stale_encounter, provider.id, chief_complaint="Client edit")
    stale_encounter.is_deleted = True
    await db.commit()

    with pytest.raises(PersistenceError):
        await ConflictResolver(db).resolve(conflict_id, ConflictResolution.USE_CLIENT, provider.id)
    await db.rollback()

    conflict = await ConflictStore(db).get(conflict_id)
    assert conflict.status == ConflictStatus.PENDING


@pytest.mark.asyncio
async def test_list_is_newest_first_and_filtered(db, provider, technician, stale_encounter):
    first = await raise_conflict(db, stale_encounter, provider.id)
    second = await raise_conflict(db, stale_encounter, provider.id)
    await raise_conflict(db, stale_encounter, technician.id)
    await ConflictResolver(db).resolve(first, ConflictResolution.USE_SERVER, provider.id)
    await db.commit()

    store = ConflictStore(db)
    mine, total = await store.list_for_user(provider.id)
    assert total == 2
    assert [c.id for c in mine] == [second, first]

    pending, total = await store.list_for_user(provider.id, status=ConflictStatus.PENDING)
    assert total == 1
    assert pending[0].id == second

    everyone, total = await store.list_for_user(None)
    assert total == 3

    page, total = await store.list_for_user(None, page=2, per_page=2)
    assert total == 3
    assert len(page) == 1
