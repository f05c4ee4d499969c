"""Initial schema - users, audit log, clinical records, sync conflicts.

Revision ID: 001
Revises: None
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _clinical_record_columns() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("created_by", sa.Uuid, sa.ForeignKey("user.id"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_by", sa.Uuid, sa.ForeignKey("user.id"), nullable=True),
        sa.Column("is_deleted", sa.Boolean, server_default="false", nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    # --- User & Audit ---

    op.create_table(
        "user",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("full_name", sa.String(200), nullable=False),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("is_active", sa.Boolean, server_default="true"),
        sa.Column("is_deleted", sa.Boolean, server_default="false", nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_user_email", "user", ["email"])
    op.create_index("ix_user_role", "user", ["role"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("user_id", sa.Uuid, sa.ForeignKey("user.id"), nullable=True),
        sa.Column("action", sa.String(32), nullable=False),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("entity_id", sa.Uuid, nullable=True),
        sa.Column("old_values", JSONType, nullable=True),
        sa.Column("new_values", JSONType, nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("additional_context", JSONType, nullable=True),
    )
    op.create_index("ix_audit_log_entity", "audit_log", ["entity_type", "entity_id"])
    op.create_index("ix_audit_log_user_id", "audit_log", ["user_id"])
    op.create_index("ix_audit_log_timestamp", "audit_log", ["timestamp"])
    op.create_index("ix_audit_log_action", "audit_log", ["action"])

    # --- Clinical records ---

    op.create_table(
        "patient",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("legal_first_name", sa.String(100), nullable=False),
        sa.Column("legal_last_name", sa.String(100), nullable=False),
        sa.Column("dob", sa.Date, nullable=False),
        sa.Column("sex_assigned_at_birth", sa.String(32), nullable=False),
        sa.Column("preferred_name", sa.String(100), nullable=True),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("employer_name", sa.String(255), nullable=True),
        sa.Column("preferred_language", sa.String(50), server_default="en", nullable=False),
        sa.Column("interpreter_required", sa.Boolean, server_default="false", nullable=False),
        *_clinical_record_columns(),
    )
    op.create_index("ix_patient_last_name", "patient", ["legal_last_name"])
    op.create_index("ix_patient_dob", "patient", ["dob"])

    op.create_table(
        "encounter",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("patient_id", sa.Uuid, sa.ForeignKey("patient.id"), nullable=False),
        sa.Column("encounter_type", sa.String(32), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("chief_complaint", sa.Text, nullable=True),
        sa.Column("onset_context", sa.String(32), nullable=True),
        sa.Column("occurred_on", sa.DateTime(timezone=True), nullable=False),
        sa.Column("arrived_on", sa.DateTime(timezone=True), nullable=True),
        sa.Column("discharged_on", sa.DateTime(timezone=True), nullable=True),
        sa.Column("disposition", sa.String(255), nullable=True),
        sa.Column("employer_name", sa.String(255), nullable=True),
        sa.Column("npi_provider", sa.String(10), nullable=True),
        *_clinical_record_columns(),
    )
    op.create_index("ix_encounter_patient", "encounter", ["patient_id"])
    op.create_index("ix_encounter_status", "encounter", ["status"])
    op.create_index("ix_encounter_occurred_on", "encounter", ["occurred_on"])

    # --- Offline sync ---

    op.create_table(
        "offline_conflict",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("resource_type", sa.String(32), nullable=False),
        sa.Column("resource_id", sa.Uuid, nullable=False),
        sa.Column("local_version", JSONType, nullable=False),
        sa.Column("server_version", JSONType, nullable=False),
        sa.Column("device_id", sa.String(100), nullable=True),
        sa.Column("client_item_id", sa.String(100), nullable=True),
        sa.Column("detected_by", sa.Uuid, sa.ForeignKey("user.id"), nullable=False),
        sa.Column("detected_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("resolution", sa.String(32), nullable=True),
        sa.Column("resolved_by", sa.Uuid, sa.ForeignKey("user.id"), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_offline_conflict_resource",
        "offline_conflict",
        ["resource_type", "resource_id", "status"],
    )
    op.create_index(
        "ix_offline_conflict_detected_by",
        "offline_conflict",
        ["detected_by", "status"],
    )


def downgrade() -> None:
    op.drop_table("offline_conflict")
    op.drop_table("encounter")
    op.drop_table("patient")
    op.drop_table("audit_log")
    op.drop_table("user")
