"""Encounter request/response schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from ehrsync.models.enums import EncounterStatus, EncounterType, OnsetContext


class EncounterCreate(BaseModel):
    patient_id: uuid.UUID
    encounter_type: EncounterType
    status: EncounterStatus = EncounterStatus.PLANNED
    chief_complaint: str | None = None
    onset_context: OnsetContext | None = None
    occurred_on: datetime
    arrived_on: datetime | None = None
    discharged_on: datetime | None = None
    disposition: str | None = Field(None, max_length=255)
    employer_name: str | None = Field(None, max_length=255)
    npi_provider: str | None = Field(None, max_length=10)

    model_config = {"extra": "ignore"}


class EncounterUpdate(BaseModel):
    encounter_type: EncounterType | None = None
    status: EncounterStatus | None = None
    chief_complaint: str | None = None
    onset_context: OnsetContext | None = None
    occurred_on: datetime | None = None
    arrived_on: datetime | None = None
    discharged_on: datetime | None = None
    disposition: str | None = Field(None, max_length=255)
    employer_name: str | None = Field(None, max_length=255)
    npi_provider: str | None = Field(None, max_length=10)

    model_config = {"extra": "ignore"}


class EncounterRead(BaseModel):
    id: uuid.UUID
    patient_id: uuid.UUID
    encounter_type: EncounterType
    status: EncounterStatus
    chief_complaint: str | None
    onset_context: OnsetContext | None
    occurred_on: datetime
    arrived_on: datetime | None
    discharged_on: datetime | None
    disposition: str | None
    employer_name: str | None
    npi_provider: str | None
    created_at: datetime
    created_by: uuid.UUID | None
    updated_at: datetime | None
    updated_by: uuid.UUID | None

    model_config = {"from_attributes": True}
