"""Pydantic schemas for offline sync endpoints."""

import json
import uuid
from datetime import datetime
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)

from ehrsync.config import settings
from ehrsync.models.enums import (
    ConflictResolution,
    ConflictStatus,
    ResourceType,
    SyncMethod,
    SyncOutcome,
)

_DATETIME = TypeAdapter(datetime)

# HTTP verbs queued by the browser client map onto sync intents.
_METHOD_ALIASES = {
    "post": SyncMethod.CREATE,
    "put": SyncMethod.UPDATE,
    "patch": SyncMethod.UPDATE,
}


class SyncItem(BaseModel):
    """One queued offline operation.

    Validated item by item inside the queue processor, so a malformed item
    only fails its own outcome.
    """

    id: str | None = Field(
        default=None, max_length=100, description="Client correlation id, echoed back"
    )
    # Browser queues written before the rename still send request_type.
    resource_type: str = Field(
        validation_alias=AliasChoices("resource_type", "request_type"),
        description="Resource kind, e.g. encounter or patient",
    )
    method: SyncMethod = SyncMethod.CREATE
    resource_id: uuid.UUID | None = None
    body: dict[str, Any] = Field(default_factory=dict)
    local_updated_at: datetime | None = Field(
        default=None,
        description="When the client's copy was last known to match the server",
    )
    device_id: str | None = Field(default=None, max_length=100)

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("method", mode="before")
    @classmethod
    def _normalize_method(cls, v: Any) -> Any:
        if isinstance(v, str):
            return _METHOD_ALIASES.get(v.strip().lower(), v.strip().lower())
        return v

    @field_validator("body", mode="before")
    @classmethod
    def _decode_body(cls, v: Any) -> Any:
        # The browser queue stores request bodies as serialized JSON strings.
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError as exc:
                raise ValueError(f"body is not valid JSON: {exc.msg}") from exc
        return v

    @model_validator(mode="after")
    def _fill_from_body(self) -> "SyncItem":
        # Older queue entries carry the offline bookkeeping inside the body.
        if self.local_updated_at is None and self.body.get("local_updated_at"):
            self.local_updated_at = _DATETIME.validate_python(self.body["local_updated_at"])
        if self.device_id is None and isinstance(self.body.get("device_id"), str):
            self.device_id = self.body["device_id"][:100]
        return self


class SyncBatchRequest(BaseModel):
    device_id: str | None = Field(default=None, max_length=100)
    # Elements are validated one by one in the queue processor, so a
    # non-object entry fails alone instead of rejecting the whole batch.
    items: list[Any] = Field(
        default_factory=list, max_length=settings.SYNC_MAX_BATCH_SIZE
    )


class SyncItemResult(BaseModel):
    """Outcome for one item: applied, conflicted, or failed."""

    id: str | None = None
    success: bool
    resource_id: uuid.UUID | None = None
    action: SyncOutcome | None = None
    conflict: bool | None = None
    conflict_id: uuid.UUID | None = None
    server_version: dict | None = None
    client_version: dict | None = None
    error: str | None = None
    error_code: str | None = None

    def to_dict(self) -> dict:
        """JSON form with unset outcome keys dropped (snapshots keep their nulls)."""
        return {
            key: value
            for key, value in self.model_dump(mode="json").items()
            if value is not None
        }


class SyncBatchResponse(BaseModel):
    total: int
    applied: int
    conflicts: int
    errors: int
    results: list[SyncItemResult]


class ResolveConflictRequest(BaseModel):
    conflict_id: uuid.UUID
    resolution: ConflictResolution


class ConflictRead(BaseModel):
    id: uuid.UUID
    resource_type: ResourceType
    resource_id: uuid.UUID
    local_version: dict
    server_version: dict
    device_id: str | None
    client_item_id: str | None
    detected_by: uuid.UUID
    detected_at: datetime
    status: ConflictStatus
    resolution: ConflictResolution | None
    resolved_by: uuid.UUID | None
    resolved_at: datetime | None

    model_config = {"from_attributes": True}


class SyncStatusRead(BaseModel):
    user_id: uuid.UUID
    pending_conflict_count: int
    last_sync_timestamp: datetime | None
