"""Audit logging service.

The sync engine records every applied item, detected conflict, resolution,
and batch through here. Entries are added to the caller's session and are
committed together with the work they describe.
"""

import logging
import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ehrsync.models.enums import AuditAction
from ehrsync.models.user import AuditLog

logger = logging.getLogger(__name__)


class AuditService:
    """Service for creating structured audit log entries."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def log(
        self,
        *,
        user_id: uuid.UUID | None,
        action: AuditAction,
        entity_type: str,
        entity_id: uuid.UUID | None = None,
        old_values: dict | None = None,
        new_values: dict | None = None,
        ip_address: str | None = None,
        context: dict | None = None,
    ) -> AuditLog:
        """Create an audit log entry.

        Args:
            user_id: The user who performed the action (None for system actions).
            action: The type of action (CREATE, UPDATE, SYNC, RESOLVE, ...).
            entity_type: The type of entity affected (e.g. "encounter", "sync").
            entity_id: The UUID of the affected entity.
            old_values: Previous values before mutation.
            new_values: New values after mutation.
            ip_address: Client IP address.
            context: Additional context metadata (device id, counts, ...).
        """
        entry = AuditLog(
            id=uuid.uuid4(),
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            old_values=old_values,
            new_values=new_values,
            ip_address=ip_address,
            additional_context=context,
        )
        self.db.add(entry)

        logger.info(
            "AUDIT: user=%s action=%s entity=%s/%s",
            user_id,
            action.value,
            entity_type,
            entity_id,
        )
        return entry

    async def last_action_at(
        self, user_id: uuid.UUID, action: AuditAction
    ) -> datetime | None:
        """Timestamp of the user's most recent entry for ``action``, if any."""
        result = await self.db.execute(
            select(func.max(AuditLog.timestamp)).where(
                AuditLog.user_id == user_id,
                AuditLog.action == action,
            )
        )
        return result.scalar_one_or_none()
