"""Offline sync endpoints: queue replay, conflict resolution, beacon, status."""

import json
import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ehrsync.config import settings
from ehrsync.core.deps import get_device_id, require_role
from ehrsync.core.exceptions import ConflictNotFound
from ehrsync.database import get_db
from ehrsync.models.enums import ConflictStatus, ResourceType, UserRole
from ehrsync.models.sync import OfflineConflict
from ehrsync.models.user import User
from ehrsync.schemas import PaginationMeta
from ehrsync.schemas.sync import ConflictRead, ResolveConflictRequest, SyncBatchRequest
from ehrsync.services.conflict import ConflictResolver, ConflictStore
from ehrsync.services.sync import SyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])

# Roles that edit clinical records from the field or the clinic
SYNC_ROLES = (
    UserRole.SUPER_ADMIN,
    UserRole.ADMIN,
    UserRole.MANAGER,
    UserRole.CLINICAL_PROVIDER,
    UserRole.TECHNICIAN,
    UserRole.REGISTRATION,
)
# Roles that may look at (and resolve) conflicts raised by other users
REVIEW_ROLES = (
    UserRole.SUPER_ADMIN,
    UserRole.ADMIN,
    UserRole.MANAGER,
    UserRole.PRIVACY_OFFICER,
    UserRole.SECURITY_OFFICER,
)
VIEW_ROLES = tuple(dict.fromkeys(SYNC_ROLES + REVIEW_ROLES))


def _ensure_visible(conflict: OfflineConflict | None, user: User, conflict_id: uuid.UUID) -> OfflineConflict:
    if conflict is None or (conflict.detected_by != user.id and user.role not in REVIEW_ROLES):
        raise ConflictNotFound(f"Conflict {conflict_id} not found")
    return conflict


@router.post("/queue", response_model=dict)
async def sync_queue(
    data: SyncBatchRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_role(*SYNC_ROLES))],
    caller_device_id: Annotated[str | None, Depends(get_device_id)],
):
    """Replay a batch of offline operations.

    Every item gets an outcome in the same position: applied (safe to drop
    from the local queue), conflict (needs a resolution), or error (retry
    later). One bad item never fails the request.
    """
    svc = SyncService(db)
    result = await svc.process_batch(
        items=data.items,
        user_id=current_user.id,
        device_id=data.device_id or caller_device_id,
    )
    return {
        "success": True,
        "data": {
            "total": result.total,
            "applied": result.applied,
            "conflicts": result.conflicts,
            "errors": result.errors,
            "results": [r.to_dict() for r in result.results],
        },
    }


@router.post("/resolve-conflict", response_model=dict)
async def resolve_conflict(
    data: ResolveConflictRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_role(*SYNC_ROLES))],
):
    """Resolve a pending conflict with use_server or use_client.

    merge is rejected with 501 until field-level merge rules exist.
    """
    store = ConflictStore(db)
    _ensure_visible(await store.get(data.conflict_id), current_user, data.conflict_id)

    resolver = ConflictResolver(db)
    conflict = await resolver.resolve(data.conflict_id, data.resolution, current_user.id)
    return {
        "success": True,
        "message": "Conflict resolved successfully",
        "data": ConflictRead.model_validate(conflict).model_dump(mode="json"),
    }


@router.post(
    "/beacon",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
async def sync_beacon(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_role(*SYNC_ROLES))],
):
    """Fire-and-forget save from ``navigator.sendBeacon`` on page unload.

    The body arrives as text/plain JSON: a list of items or ``{"items": [...]}``.
    Always answers 204; failures are only logged.
    """
    raw = await request.body()
    try:
        items = json.loads(raw) if raw else []
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Beacon from user %s had an unreadable body (%d bytes)", current_user.id, len(raw))
        items = []

    svc = SyncService(db)
    await svc.process_beacon(items, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/status", response_model=dict)
async def sync_status(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_role(*SYNC_ROLES))],
):
    """Pending conflict count and last successful sync for the caller."""
    svc = SyncService(db)
    result = await svc.get_status(current_user.id)
    return {
        "success": True,
        "data": result.model_dump(mode="json"),
    }


@router.get("/conflicts", response_model=dict)
async def list_conflicts(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_role(*VIEW_ROLES))],
    status_filter: Annotated[ConflictStatus | None, Query(alias="status")] = None,
    resource_type: ResourceType | None = None,
    all_users: bool = False,
    page: int = Query(1, ge=1),
    per_page: int = Query(settings.SYNC_CONFLICTS_PAGE_SIZE, ge=1, le=100),
):
    """List conflicts raised by the caller; reviewers may list everyone's."""
    store = ConflictStore(db)
    owner = None if all_users and current_user.role in REVIEW_ROLES else current_user.id
    conflicts, total = await store.list_for_user(
        owner,
        status=status_filter,
        resource_type=resource_type,
        page=page,
        per_page=per_page,
    )
    return {
        "success": True,
        "data": [
            ConflictRead.model_validate(c).model_dump(mode="json") for c in conflicts
        ],
        "meta": PaginationMeta.build(page, per_page, total).model_dump(),
    }


@router.get("/conflicts/{conflict_id}", response_model=dict)
async def get_conflict(
    conflict_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_role(*VIEW_ROLES))],
):
    """One conflict with both snapshots, for side-by-side review."""
    store = ConflictStore(db)
    conflict = _ensure_visible(await store.get(conflict_id), current_user, conflict_id)
    return {
        "success": True,
        "data": ConflictRead.model_validate(conflict).model_dump(mode="json"),
    }
