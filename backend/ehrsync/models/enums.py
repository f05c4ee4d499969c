"""All enum types for the EHR sync data model."""

import enum


# --- Patient / Encounter Enums ---

class SexAssignedAtBirth(str, enum.Enum):
    MALE = "M"
    FEMALE = "F"
    INTERSEX = "X"
    UNKNOWN = "U"


class EncounterType(str, enum.Enum):
    EMS = "ems"
    CLINIC = "clinic"
    TELEMEDICINE = "telemedicine"
    OTHER = "other"


class EncounterStatus(str, enum.Enum):
    PLANNED = "planned"
    ARRIVED = "arrived"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    VOIDED = "voided"


class OnsetContext(str, enum.Enum):
    WORK_RELATED = "work_related"
    OFF_DUTY = "off_duty"
    UNKNOWN = "unknown"


# --- User / Role Enums ---

class UserRole(str, enum.Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    MANAGER = "manager"
    CLINICAL_PROVIDER = "clinical_provider"
    TECHNICIAN = "technician"
    REGISTRATION = "registration"
    PRIVACY_OFFICER = "privacy_officer"
    SECURITY_OFFICER = "security_officer"


class AuditAction(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    VIEW = "view"
    SYNC = "sync"
    RESOLVE = "resolve"


# --- Offline Sync Enums ---

class ResourceType(str, enum.Enum):
    ENCOUNTER = "encounter"
    PATIENT = "patient"


class SyncMethod(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"


class ConflictStatus(str, enum.Enum):
    PENDING = "pending"
    RESOLVED = "resolved"


class ConflictResolution(str, enum.Enum):
    USE_SERVER = "use_server"
    USE_CLIENT = "use_client"
    MERGE = "merge"


class SyncOutcome(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    ALREADY_APPLIED = "already_applied"
