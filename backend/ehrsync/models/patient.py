"""Patient model."""

from datetime import date

from sqlalchemy import Boolean, Date, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ehrsync.models.base import ClinicalRecord
from ehrsync.models.enums import SexAssignedAtBirth


class Patient(ClinicalRecord):
    __tablename__ = "patient"

    legal_first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    legal_last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    dob: Mapped[date] = mapped_column(Date, nullable=False)
    sex_assigned_at_birth: Mapped[SexAssignedAtBirth] = mapped_column(nullable=False)
    preferred_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    employer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    preferred_language: Mapped[str] = mapped_column(
        String(50), default="en", server_default="en", nullable=False
    )
    interpreter_required: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )

    # Relationships
    encounters: Mapped[list["Encounter"]] = relationship(  # noqa: F821
        "Encounter", back_populates="patient"
    )

    __table_args__ = (
        Index("ix_patient_last_name", "legal_last_name"),
        Index("ix_patient_dob", "dob"),
    )
