"""Patient request/response schemas.

The create/update schemas double as the offline-sync field allow-list:
unknown keys in a queued payload are dropped.
"""

import uuid
from datetime import date, datetime

from pydantic import BaseModel, Field

from ehrsync.models.enums import SexAssignedAtBirth


class PatientCreate(BaseModel):
    legal_first_name: str = Field(min_length=1, max_length=100)
    legal_last_name: str = Field(min_length=1, max_length=100)
    dob: date
    sex_assigned_at_birth: SexAssignedAtBirth
    preferred_name: str | None = Field(None, max_length=100)
    phone: str | None = Field(None, max_length=20)
    email: str | None = Field(None, max_length=255)
    employer_name: str | None = Field(None, max_length=255)
    preferred_language: str = Field("en", max_length=50)
    interpreter_required: bool = False

    model_config = {"extra": "ignore"}


class PatientUpdate(BaseModel):
    legal_first_name: str | None = Field(None, min_length=1, max_length=100)
    legal_last_name: str | None = Field(None, min_length=1, max_length=100)
    dob: date | None = None
    sex_assigned_at_birth: SexAssignedAtBirth | None = None
    preferred_name: str | None = Field(None, max_length=100)
    phone: str | None = Field(None, max_length=20)
    email: str | None = Field(None, max_length=255)
    employer_name: str | None = Field(None, max_length=255)
    preferred_language: str | None = Field(None, max_length=50)
    interpreter_required: bool | None = None

    model_config = {"extra": "ignore"}


class PatientRead(BaseModel):
    id: uuid.UUID
    legal_first_name: str
    legal_last_name: str
    dob: date
    sex_assigned_at_birth: SexAssignedAtBirth
    preferred_name: str | None
    phone: str | None
    email: str | None
    employer_name: str | None
    preferred_language: str
    interpreter_required: bool
    created_at: datetime
    created_by: uuid.UUID | None
    updated_at: datetime | None
    updated_by: uuid.UUID | None

    model_config = {"from_attributes": True}
