"""Per-resource write logic for offline sync.

Each syncable resource kind has one ``ResourceSynchronizer`` subclass that
knows its table, its identifier field, and which fields a client may write.
``RESOURCE_SYNCHRONIZERS`` is the closed registry the queue processor and
conflict resolver dispatch through; adding a resource kind means adding an
enum member, a subclass, and a registry entry.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, ClassVar

from pydantic import BaseModel, ValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ehrsync.core.exceptions import PersistenceError, SyncValidationError
from ehrsync.models.base import ClinicalRecord
from ehrsync.models.encounter import Encounter
from ehrsync.models.enums import ResourceType
from ehrsync.models.patient import Patient
from ehrsync.schemas.encounter import EncounterCreate, EncounterRead, EncounterUpdate
from ehrsync.schemas.patient import PatientCreate, PatientRead, PatientUpdate

logger = logging.getLogger(__name__)

# Client-side queue bookkeeping and server-owned columns; never written from a payload.
BOOKKEEPING_FIELDS = frozenset({
    "id",
    "synced",
    "is_new",
    "device_id",
    "local_updated_at",
    "_offlineStatus",
    "created_at",
    "created_by",
    "updated_at",
    "updated_by",
    "is_deleted",
    "deleted_at",
})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize to aware UTC. Naive values (SQLite, some clients) are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _describe_validation_error(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'body'}: {err['msg']}"
        for err in exc.errors()
    )


class ResourceSynchronizer:
    """Create/update one kind of clinical record from an offline payload."""

    resource_type: ClassVar[ResourceType]
    model: ClassVar[type[ClinicalRecord]]
    id_field: ClassVar[str]
    create_schema: ClassVar[type[BaseModel]]
    update_schema: ClassVar[type[BaseModel]]
    read_schema: ClassVar[type[BaseModel]]

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # --- Payload handling ---

    def resolve_id(self, body: dict[str, Any], explicit: uuid.UUID | None = None) -> uuid.UUID | None:
        """Identifier for the target row: explicit, then ``<kind>_id``, then ``id``."""
        if explicit is not None:
            return explicit
        raw = body.get(self.id_field) or body.get("id")
        if raw in (None, ""):
            return None
        try:
            return uuid.UUID(str(raw))
        except ValueError:
            raise SyncValidationError(f"{self.id_field} is not a valid UUID: {raw!r}")

    def clean_payload(self, body: dict[str, Any]) -> dict[str, Any]:
        return {
            key: value
            for key, value in body.items()
            if key not in BOOKKEEPING_FIELDS and key != self.id_field
        }

    def _validate(self, schema: type[BaseModel], body: dict[str, Any], *, partial: bool) -> dict:
        try:
            data = schema.model_validate(self.clean_payload(body))
        except ValidationError as exc:
            raise SyncValidationError(
                f"Invalid {self.resource_type.value} data: {_describe_validation_error(exc)}"
            )
        return data.model_dump(exclude_unset=partial)

    async def check_references(self, fields: dict) -> None:
        """Hook for subclasses to verify referenced rows exist."""

    def snapshot(self, row: ClinicalRecord) -> dict:
        """JSON-safe copy of the row, as stored in conflict records."""
        return self.read_schema.model_validate(row).model_dump(mode="json")

    # --- Persistence ---

    async def get(self, resource_id: uuid.UUID) -> ClinicalRecord | None:
        result = await self.db.execute(
            select(self.model)
            .where(
                self.model.id == resource_id,
                self.model.is_deleted == False,  # noqa: E712
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        resource_id: uuid.UUID | None,
        body: dict[str, Any],
        user_id: uuid.UUID,
    ) -> uuid.UUID:
        """Insert a new row. A client-supplied id is kept so retries stay idempotent."""
        fields = self._validate(self.create_schema, body, partial=False)
        await self.check_references(fields)

        row = self.model(
            id=resource_id or uuid.uuid4(),
            created_at=utcnow(),
            created_by=user_id,
            **fields,
        )
        self.db.add(row)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            raise PersistenceError(
                f"Could not create {self.resource_type.value} {row.id}: integrity violation"
            ) from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Could not create {self.resource_type.value} {row.id}: {exc.__class__.__name__}"
            ) from exc
        return row.id

    async def update(
        self,
        resource_id: uuid.UUID,
        body: dict[str, Any],
        user_id: uuid.UUID,
        *,
        expected: ClinicalRecord | None = None,
    ) -> bool:
        """Update by id; returns whether a row was written.

        With ``expected`` the write only lands if the row still carries the
        version that was read (compare-and-swap on ``updated_at``), which
        closes the gap between conflict detection and the write. Without it
        the write is unconditional.
        """
        fields = self._validate(self.update_schema, body, partial=True)
        await self.check_references(fields)

        stmt = update(self.model).where(
            self.model.id == resource_id,
            self.model.is_deleted == False,  # noqa: E712
        )
        if expected is not None:
            if expected.updated_at is None:
                stmt = stmt.where(self.model.updated_at.is_(None))
            else:
                stmt = stmt.where(self.model.updated_at == expected.updated_at)
        stmt = stmt.values(
            **fields, updated_at=utcnow(), updated_by=user_id
        ).execution_options(synchronize_session=False)

        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Could not update {self.resource_type.value} {resource_id}: {exc.__class__.__name__}"
            ) from exc
        return result.rowcount > 0


class PatientSynchronizer(ResourceSynchronizer):
    resource_type = ResourceType.PATIENT
    model = Patient
    id_field = "patient_id"
    create_schema = PatientCreate
    update_schema = PatientUpdate
    read_schema = PatientRead


class EncounterSynchronizer(ResourceSynchronizer):
    resource_type = ResourceType.ENCOUNTER
    model = Encounter
    id_field = "encounter_id"
    create_schema = EncounterCreate
    update_schema = EncounterUpdate
    read_schema = EncounterRead

    async def check_references(self, fields: dict) -> None:
        patient_id = fields.get("patient_id")
        if patient_id is None:
            return
        result = await self.db.execute(
            select(Patient.id).where(
                Patient.id == patient_id,
                Patient.is_deleted == False,  # noqa: E712
            )
        )
        if result.scalar_one_or_none() is None:
            raise SyncValidationError(f"Patient {patient_id} does not exist")


RESOURCE_SYNCHRONIZERS: dict[ResourceType, type[ResourceSynchronizer]] = {
    ResourceType.ENCOUNTER: EncounterSynchronizer,
    ResourceType.PATIENT: PatientSynchronizer,
}


def get_synchronizer(db: AsyncSession, resource_type: str | ResourceType) -> ResourceSynchronizer:
    """Look up the synchronizer for a resource kind; unknown kinds are validation errors."""
    try:
        kind = ResourceType(resource_type)
    except ValueError:
        raise SyncValidationError(f"Unknown resource type: {resource_type}")
    return RESOURCE_SYNCHRONIZERS[kind](db)
