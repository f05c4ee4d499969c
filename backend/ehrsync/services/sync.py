"""Offline sync service: replays queued client operations against the server.

Items in a batch are processed in submission order, each as its own
transaction: an item commits when it is applied or recorded as a conflict
and rolls back when it fails. Nothing an item does can abort the items
after it.
"""

import asyncio
import logging
import uuid
from typing import Any

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ehrsync.config import settings
from ehrsync.core.exceptions import (
    PersistenceError,
    SyncError,
    SyncTimeoutError,
    SyncValidationError,
)
from ehrsync.models.base import ClinicalRecord
from ehrsync.models.enums import AuditAction, SyncMethod, SyncOutcome
from ehrsync.schemas.sync import SyncBatchResponse, SyncItem, SyncItemResult, SyncStatusRead
from ehrsync.services.audit import AuditService
from ehrsync.services.conflict import ConflictDetector, ConflictStore
from ehrsync.services.sync_resources import ResourceSynchronizer, get_synchronizer

logger = logging.getLogger(__name__)

# Detection and write are retried this many times when another writer
# slips in between them.
_CAS_ATTEMPTS = 3
# Beacons fire on page unload; nobody waits for a retry.
_BEACON_CAS_ATTEMPTS = 1


def _client_item_id(raw: Any) -> str | None:
    if isinstance(raw, dict) and raw.get("id") is not None:
        return str(raw["id"])
    return None


class SyncService:
    def __init__(self, db: AsyncSession, *, item_timeout: float | None = None):
        self.db = db
        self.item_timeout = (
            settings.SYNC_ITEM_TIMEOUT_SECONDS if item_timeout is None else item_timeout
        )
        self.store = ConflictStore(db)
        self.audit = AuditService(db)

    # --- Queue processing ---

    async def process_batch(
        self,
        items: list[Any],
        user_id: uuid.UUID,
        device_id: str | None = None,
    ) -> SyncBatchResponse:
        """Replay a batch of queued operations; one outcome per item, in order."""
        results = []
        for raw in items:
            results.append(await self._process_isolated(raw, user_id, device_id))

        response = SyncBatchResponse(
            total=len(results),
            applied=sum(1 for r in results if r.success),
            conflicts=sum(1 for r in results if r.conflict),
            errors=sum(1 for r in results if r.error is not None),
            results=results,
        )
        await self._record_sync(user_id, device_id, "queue", response)
        logger.info(
            "Sync batch for user %s: %d items, %d applied, %d conflicts, %d errors",
            user_id,
            response.total,
            response.applied,
            response.conflicts,
            response.errors,
        )
        return response

    async def process_beacon(self, items: Any, user_id: uuid.UUID) -> int:
        """Best-effort replay on page unload. Never raises; returns applied count.

        Runs the same per-item pipeline as ``process_batch`` but nobody reads
        the outcome, so failures only go to the log.
        """
        applied = 0
        try:
            if isinstance(items, dict):
                items = items.get("items", [])
            if not isinstance(items, list):
                logger.error(
                    "Beacon sync from user %s ignored: expected a list, got %s",
                    user_id,
                    type(items).__name__,
                )
                return 0

            results = []
            for raw in items:
                result = await self._process_isolated(
                    raw, user_id, None, attempts=_BEACON_CAS_ATTEMPTS
                )
                results.append(result)
                if result.success:
                    applied += 1
                elif result.error is not None:
                    logger.error(
                        "Beacon sync item %s failed (%s): %s",
                        result.id,
                        result.error_code,
                        result.error,
                    )

            await self._record_sync(
                user_id,
                None,
                "beacon",
                SyncBatchResponse(
                    total=len(results),
                    applied=applied,
                    conflicts=sum(1 for r in results if r.conflict),
                    errors=sum(1 for r in results if r.error is not None),
                    results=results,
                ),
            )
        except Exception:
            logger.exception("Beacon sync for user %s aborted", user_id)
            await self._rollback()
        return applied

    async def _process_isolated(
        self,
        raw: Any,
        user_id: uuid.UUID,
        device_id: str | None,
        *,
        attempts: int = _CAS_ATTEMPTS,
    ) -> SyncItemResult:
        """Run one item as its own transaction and turn any failure into an outcome."""
        client_item_id = _client_item_id(raw)
        try:
            if self.item_timeout and self.item_timeout > 0:
                result = await asyncio.wait_for(
                    self._process_item(raw, user_id, device_id, attempts),
                    timeout=self.item_timeout,
                )
            else:
                result = await self._process_item(raw, user_id, device_id, attempts)
            await self.db.commit()
            return result
        except asyncio.TimeoutError:
            await self._rollback()
            exc = SyncTimeoutError(f"Sync item timed out after {self.item_timeout}s")
            logger.warning("Sync item %s from user %s timed out", client_item_id, user_id)
            return SyncItemResult(
                id=client_item_id, success=False, error=exc.message, error_code=exc.code
            )
        except SyncError as exc:
            await self._rollback()
            logger.warning(
                "Sync item %s from user %s failed (%s): %s",
                client_item_id,
                user_id,
                exc.code,
                exc.message,
            )
            return SyncItemResult(
                id=client_item_id, success=False, error=exc.message, error_code=exc.code
            )
        except Exception as exc:
            await self._rollback()
            logger.exception("Unexpected error on sync item %s from user %s", client_item_id, user_id)
            return SyncItemResult(
                id=client_item_id,
                success=False,
                error=str(exc) or exc.__class__.__name__,
                error_code="INTERNAL_ERROR",
            )

    async def _process_item(
        self,
        raw: Any,
        user_id: uuid.UUID,
        device_id: str | None,
        attempts: int = _CAS_ATTEMPTS,
    ) -> SyncItemResult:
        try:
            item = SyncItem.model_validate(raw)
        except ValidationError as exc:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'item'}: {err['msg']}"
                for err in exc.errors()
            )
            raise SyncValidationError(f"Malformed sync item: {details}")
        if item.device_id is None:
            item.device_id = device_id

        synchronizer = get_synchronizer(self.db, item.resource_type)
        resource_id = synchronizer.resolve_id(item.body, item.resource_id)

        if item.method == SyncMethod.CREATE:
            return await self._apply_create(item, synchronizer, resource_id, user_id)

        if resource_id is None:
            raise SyncValidationError(
                f"Update requires {synchronizer.id_field} or resource_id"
            )
        if item.local_updated_at is None:
            raise SyncValidationError("Update requires local_updated_at")

        detector = ConflictDetector(synchronizer)
        for _ in range(attempts):
            check = await detector.check(resource_id, item.local_updated_at)
            if not check.exists:
                # Never reached the server (or was created elsewhere under
                # another id): the first write for this id is an insert.
                return await self._apply_create(item, synchronizer, resource_id, user_id)
            if check.conflict:
                return await self._record_conflict(
                    item, synchronizer, resource_id, check.current, user_id
                )
            if await synchronizer.update(
                resource_id, item.body, user_id, expected=check.current
            ):
                await self.audit.log(
                    user_id=user_id,
                    action=AuditAction.UPDATE,
                    entity_type=synchronizer.resource_type.value,
                    entity_id=resource_id,
                    new_values=synchronizer.clean_payload(item.body),
                    context={"event": "offline_sync", "device_id": item.device_id},
                )
                return SyncItemResult(
                    id=item.id,
                    success=True,
                    resource_id=resource_id,
                    action=SyncOutcome.UPDATED,
                )
            logger.info(
                "%s %s changed between read and write; re-checking",
                synchronizer.resource_type.value,
                resource_id,
            )

        raise PersistenceError(
            f"{synchronizer.resource_type.value.capitalize()} {resource_id} kept changing "
            "during sync; retry later"
        )

    async def _apply_create(
        self,
        item: SyncItem,
        synchronizer: ResourceSynchronizer,
        resource_id: uuid.UUID | None,
        user_id: uuid.UUID,
    ) -> SyncItemResult:
        already_applied = SyncItemResult(
            id=item.id,
            success=True,
            resource_id=resource_id,
            action=SyncOutcome.ALREADY_APPLIED,
        )
        # A retried offline create carries the id it was queued with.
        if resource_id is not None and await synchronizer.get(resource_id) is not None:
            logger.info(
                "%s %s already exists; create treated as applied",
                synchronizer.resource_type.value,
                resource_id,
            )
            return already_applied

        try:
            created_id = await synchronizer.create(resource_id, item.body, user_id)
        except PersistenceError:
            if resource_id is None:
                raise
            # Lost an insert race against a retry of the same item.
            await self.db.rollback()
            if await synchronizer.get(resource_id) is not None:
                return already_applied
            raise

        await self.audit.log(
            user_id=user_id,
            action=AuditAction.CREATE,
            entity_type=synchronizer.resource_type.value,
            entity_id=created_id,
            new_values=synchronizer.clean_payload(item.body),
            context={"event": "offline_sync", "device_id": item.device_id},
        )
        return SyncItemResult(
            id=item.id,
            success=True,
            resource_id=created_id,
            action=SyncOutcome.CREATED,
        )

    async def _record_conflict(
        self,
        item: SyncItem,
        synchronizer: ResourceSynchronizer,
        resource_id: uuid.UUID,
        current: ClinicalRecord,
        user_id: uuid.UUID,
    ) -> SyncItemResult:
        server_version = synchronizer.snapshot(current)
        conflict_id = await self.store.create(
            resource_type=synchronizer.resource_type,
            resource_id=resource_id,
            local_snapshot=item.body,
            server_snapshot=server_version,
            detected_by=user_id,
            device_id=item.device_id,
            client_item_id=item.id,
        )
        await self.audit.log(
            user_id=user_id,
            action=AuditAction.CREATE,
            entity_type="offline_conflict",
            entity_id=conflict_id,
            context={
                "resource_type": synchronizer.resource_type.value,
                "resource_id": str(resource_id),
                "local_updated_at": item.local_updated_at.isoformat(),
                "server_updated_at": current.version_at.isoformat(),
                "device_id": item.device_id,
            },
        )
        logger.info(
            "Conflict %s: %s %s changed on server after client base %s",
            conflict_id,
            synchronizer.resource_type.value,
            resource_id,
            item.local_updated_at.isoformat(),
        )
        return SyncItemResult(
            id=item.id,
            success=False,
            conflict=True,
            conflict_id=conflict_id,
            resource_id=resource_id,
            server_version=server_version,
            client_version=item.body,
        )

    async def _record_sync(
        self,
        user_id: uuid.UUID,
        device_id: str | None,
        channel: str,
        summary: SyncBatchResponse,
    ) -> None:
        """Audit the batch itself; this is what last-sync status reads.

        The items are already committed, so a failure here is logged and
        does not change the outcomes returned to the client.
        """
        try:
            await self.audit.log(
                user_id=user_id,
                action=AuditAction.SYNC,
                entity_type="sync",
                context={
                    "channel": channel,
                    "device_id": device_id,
                    "total": summary.total,
                    "applied": summary.applied,
                    "conflicts": summary.conflicts,
                    "errors": summary.errors,
                },
            )
            await self.db.commit()
        except SQLAlchemyError:
            logger.exception("Could not record %s sync summary for user %s", channel, user_id)
            await self._rollback()

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except SQLAlchemyError:
            logger.exception("Rollback failed during offline sync")

    # --- Status ---

    async def get_status(self, user_id: uuid.UUID) -> SyncStatusRead:
        return SyncStatusRead(
            user_id=user_id,
            pending_conflict_count=await self.store.count_pending(user_id),
            last_sync_timestamp=await self.audit.last_action_at(user_id, AuditAction.SYNC),
        )
