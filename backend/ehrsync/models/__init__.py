"""All EHR sync database models.

Import all models here so Alembic and SQLAlchemy can discover them.
"""

from ehrsync.models.base import Base, BaseModel, ClinicalRecord  # noqa: F401

# User & Audit
from ehrsync.models.user import AuditLog, User  # noqa: F401

# Clinical records
from ehrsync.models.patient import Patient  # noqa: F401
from ehrsync.models.encounter import Encounter  # noqa: F401

# Offline sync
from ehrsync.models.sync import OfflineConflict  # noqa: F401
