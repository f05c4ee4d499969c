"""Encounter model."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ehrsync.models.base import ClinicalRecord
from ehrsync.models.enums import EncounterStatus, EncounterType, OnsetContext


class Encounter(ClinicalRecord):
    __tablename__ = "encounter"

    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("patient.id"), nullable=False
    )
    encounter_type: Mapped[EncounterType] = mapped_column(nullable=False)
    status: Mapped[EncounterStatus] = mapped_column(
        default=EncounterStatus.PLANNED, nullable=False
    )
    chief_complaint: Mapped[str | None] = mapped_column(Text, nullable=True)
    onset_context: Mapped[OnsetContext | None] = mapped_column(nullable=True)
    occurred_on: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    arrived_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    discharged_on: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    disposition: Mapped[str | None] = mapped_column(String(255), nullable=True)
    employer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    npi_provider: Mapped[str | None] = mapped_column(String(10), nullable=True)

    # Relationships
    patient: Mapped["Patient"] = relationship(back_populates="encounters")  # noqa: F821

    __table_args__ = (
        Index("ix_encounter_patient", "patient_id"),
        Index("ix_encounter_status", "status"),
        Index("ix_encounter_occurred_on", "occurred_on"),
    )
