"""Conflict detection, storage, and resolution for offline sync.

Detection is optimistic: the client says which server version its edit was
based on (``local_updated_at``) and the edit is deferred as a conflict when
the stored record has moved on since. Conflicts keep full snapshots of both
sides and are resolved later by an explicit caller decision.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ehrsync.core.exceptions import (
    ConflictAlreadyResolved,
    ConflictNotFound,
    PersistenceError,
    ResolutionNotSupported,
)
from ehrsync.models.base import ClinicalRecord
from ehrsync.models.enums import (
    AuditAction,
    ConflictResolution,
    ConflictStatus,
    ResourceType,
)
from ehrsync.models.sync import OfflineConflict
from ehrsync.services.audit import AuditService
from ehrsync.services.sync_resources import (
    ResourceSynchronizer,
    as_utc,
    get_synchronizer,
    utcnow,
)

logger = logging.getLogger(__name__)


def is_stale(server_time: datetime, local_time: datetime) -> bool:
    """True when the server copy is strictly newer than the client's base."""
    return as_utc(server_time) > as_utc(local_time)


@dataclass
class ConflictCheck:
    current: ClinicalRecord | None
    conflict: bool = False

    @property
    def exists(self) -> bool:
        return self.current is not None


class ConflictDetector:
    """Read-and-compare check for the update path.

    Holds no lock. The returned ``current`` row is what the caller hands to
    ``ResourceSynchronizer.update(expected=...)`` so the write only lands on
    the version that was compared.
    """

    def __init__(self, synchronizer: ResourceSynchronizer) -> None:
        self.synchronizer = synchronizer

    async def check(self, resource_id: uuid.UUID, local_updated_at: datetime) -> ConflictCheck:
        current = await self.synchronizer.get(resource_id)
        if current is None:
            return ConflictCheck(current=None)
        return ConflictCheck(
            current=current,
            conflict=is_stale(current.version_at, local_updated_at),
        )


class ConflictStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def create(
        self,
        *,
        resource_type: ResourceType,
        resource_id: uuid.UUID,
        local_snapshot: dict,
        server_snapshot: dict,
        detected_by: uuid.UUID,
        device_id: str | None = None,
        client_item_id: str | None = None,
    ) -> uuid.UUID:
        # Every detection gets its own row, even when an earlier conflict
        # for the same resource is still pending.
        conflict = OfflineConflict(
            id=uuid.uuid4(),
            resource_type=resource_type,
            resource_id=resource_id,
            local_version=local_snapshot,
            server_version=server_snapshot,
            device_id=device_id,
            client_item_id=client_item_id,
            detected_by=detected_by,
            detected_at=utcnow(),
            status=ConflictStatus.PENDING,
        )
        self.db.add(conflict)
        await self.db.flush()
        return conflict.id

    async def get(self, conflict_id: uuid.UUID) -> OfflineConflict | None:
        result = await self.db.execute(
            select(OfflineConflict)
            .where(OfflineConflict.id == conflict_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def mark_resolved(
        self,
        conflict_id: uuid.UUID,
        resolution: ConflictResolution,
        resolved_by: uuid.UUID,
    ) -> bool:
        """Resolve a pending conflict. False if it was not pending anymore."""
        result = await self.db.execute(
            update(OfflineConflict)
            .where(
                OfflineConflict.id == conflict_id,
                OfflineConflict.status == ConflictStatus.PENDING,
            )
            .values(
                status=ConflictStatus.RESOLVED,
                resolution=resolution,
                resolved_by=resolved_by,
                resolved_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def count_pending(self, user_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.count(OfflineConflict.id)).where(
                OfflineConflict.detected_by == user_id,
                OfflineConflict.status == ConflictStatus.PENDING,
            )
        )
        return result.scalar_one()

    async def list_for_user(
        self,
        user_id: uuid.UUID | None,
        *,
        status: ConflictStatus | None = None,
        resource_type: ResourceType | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> tuple[list[OfflineConflict], int]:
        """Newest first. ``user_id=None`` lists every user's conflicts."""
        query = select(OfflineConflict)
        if user_id is not None:
            query = query.where(OfflineConflict.detected_by == user_id)
        if status is not None:
            query = query.where(OfflineConflict.status == status)
        if resource_type is not None:
            query = query.where(OfflineConflict.resource_type == resource_type)

        count_result = await self.db.execute(
            select(func.count()).select_from(query.subquery())
        )
        total = count_result.scalar_one()

        result = await self.db.execute(
            query.order_by(OfflineConflict.detected_at.desc(), OfflineConflict.id)
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return list(result.scalars().all()), total


class ConflictResolver:
    """Apply a caller's decision to a pending conflict.

    Every failure raises; nothing is marked resolved unless the chosen
    outcome is actually in place.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self.store = ConflictStore(db)
        self.audit = AuditService(db)

    async def resolve(
        self,
        conflict_id: uuid.UUID,
        resolution: ConflictResolution,
        user_id: uuid.UUID,
    ) -> OfflineConflict:
        conflict = await self.store.get(conflict_id)
        if conflict is None:
            raise ConflictNotFound(f"Conflict {conflict_id} not found")
        if conflict.status == ConflictStatus.RESOLVED:
            raise ConflictAlreadyResolved(f"Conflict {conflict_id} is already resolved")

        if resolution == ConflictResolution.MERGE:
            raise ResolutionNotSupported(
                "Merge resolution is not supported. Resolve with use_server or use_client."
            )

        if resolution == ConflictResolution.USE_CLIENT:
            # The caller chose to overwrite, so the replay skips detection.
            synchronizer = get_synchronizer(self.db, conflict.resource_type)
            written = await synchronizer.update(
                conflict.resource_id, conflict.local_version, user_id
            )
            if not written:
                raise PersistenceError(
                    f"{conflict.resource_type.value.capitalize()} {conflict.resource_id} "
                    "no longer exists; client version was not applied"
                )

        if not await self.store.mark_resolved(conflict_id, resolution, user_id):
            raise ConflictAlreadyResolved(f"Conflict {conflict_id} is already resolved")

        await self.audit.log(
            user_id=user_id,
            action=AuditAction.RESOLVE,
            entity_type="offline_conflict",
            entity_id=conflict_id,
            old_values={"status": ConflictStatus.PENDING.value},
            new_values={
                "status": ConflictStatus.RESOLVED.value,
                "resolution": resolution.value,
            },
            context={
                "resource_type": conflict.resource_type.value,
                "resource_id": str(conflict.resource_id),
            },
        )
        logger.info(
            "Conflict %s on %s/%s resolved with %s by %s",
            conflict_id,
            conflict.resource_type.value,
            conflict.resource_id,
            resolution.value,
            user_id,
        )
        return await self.store.get(conflict_id)
