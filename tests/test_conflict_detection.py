import uuid
from datetime import datetime, timedelta, timezone

import pytest

from ehrsync.services.conflict import ConflictDetector, is_stale
from ehrsync.services.sync_resources import EncounterSynchronizer

from conftest import NINE_AM


def test_server_newer_than_client_is_stale():
    assert is_stale(NINE_AM + timedelta(minutes=5), NINE_AM)


def test_equal_timestamps_are_not_stale():
    assert not is_stale(NINE_AM, NINE_AM)


def test_client_newer_than_server_is_not_stale():
    assert not is_stale(NINE_AM, NINE_AM + timedelta(seconds=1))


def test_naive_timestamps_are_treated_as_utc():
    naive = datetime(2026, 10, 19, 9, 0)
    assert not is_stale(naive, NINE_AM)
    assert is_stale(naive + timedelta(microseconds=1), NINE_AM)


def test_offsets_are_compared_as_instants():
    # 11:00 at +02:00 is 09:00 UTC
    plus_two = datetime(2026, 10, 19, 11, 0, tzinfo=timezone(timedelta(hours=2)))
    assert not is_stale(NINE_AM, plus_two)
    assert is_stale(plus_two + timedelta(minutes=1), NINE_AM)


@pytest.mark.asyncio
async def test_detector_uses_created_at_until_first_update(db, encounter):
    detector = ConflictDetector(EncounterSynchronizer(db))

    check = await detector.check(encounter.id, NINE_AM)
    assert check.exists
    assert not check.conflict

    check = await detector.check(encounter.id, NINE_AM - timedelta(minutes=1))
    assert check.conflict


@pytest.mark.asyncio
async def test_detector_prefers_updated_at(db, encounter):
    encounter.updated_at = NINE_AM + timedelta(minutes=5)
    await db.commit()
    detector = ConflictDetector(EncounterSynchronizer(db))

    assert (await detector.check(encounter.id, NINE_AM)).conflict
    assert not (await detector.check(encounter.id, NINE_AM + timedelta(minutes=5))).conflict


@pytest.mark.asyncio
async def test_detector_reports_missing_resource(db, encounter):
    check = await ConflictDetector(EncounterSynchronizer(db)).check(uuid.uuid4(), NINE_AM)
    assert not check.exists
    assert not check.conflict


@pytest.mark.asyncio
async def test_soft_deleted_resource_is_missing(db, encounter):
    encounter.is_deleted = True
    await db.commit()

    check = await ConflictDetector(EncounterSynchronizer(db)).check(encounter.id, NINE_AM)
    assert not check.exists
