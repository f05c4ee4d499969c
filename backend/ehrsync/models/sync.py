"""Offline sync conflict model."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from ehrsync.models.base import Base, JSONType, UUIDPrimaryKeyMixin
from ehrsync.models.enums import ConflictResolution, ConflictStatus, ResourceType


class OfflineConflict(UUIDPrimaryKeyMixin, Base):
    """Both sides of a disagreement between an offline edit and the server.

    Snapshots are stored verbatim; nothing here interprets resource fields.
    Rows are never deleted and, once resolved, never change again.
    """

    __tablename__ = "offline_conflict"

    resource_type: Mapped[ResourceType] = mapped_column(nullable=False)
    resource_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    local_version: Mapped[dict] = mapped_column(JSONType, nullable=False)
    server_version: Mapped[dict] = mapped_column(JSONType, nullable=False)
    device_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    client_item_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    detected_by: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("user.id"), nullable=False
    )
    detected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    status: Mapped[ConflictStatus] = mapped_column(
        default=ConflictStatus.PENDING, nullable=False
    )
    resolution: Mapped[ConflictResolution | None] = mapped_column(nullable=True)
    resolved_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("user.id"), nullable=True
    )
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_offline_conflict_resource", "resource_type", "resource_id", "status"),
        Index("ix_offline_conflict_detected_by", "detected_by", "status"),
    )
