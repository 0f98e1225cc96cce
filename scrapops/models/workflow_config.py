"""
Scrap Operations Platform
Workflow configuration domain model.

Models:
    - WorkflowConfiguration: one immutable version of a tenant (or factory)
      field definition for an operational level.

A row is never edited for its semantic columns. Changing a field means
deactivating the current row (is_active=False, effective_to=now) and
inserting version + 1; see scrapops.services.config_store.supersede().
"""

from enum import Enum

from sqlalchemy import JSON, text

from scrapops.models import db
from scrapops.models.base import TenantModel, _utcnow, _uuid


# ── Enums ────────────────────────────────────────────────────────────────────

class FieldCaptureType(str, Enum):
    MANUAL = "MANUAL"
    OCR = "OCR"
    CAMERA = "CAMERA"
    AUTO = "AUTO"  # GPS, timestamp, weighbridge reading


class FieldValidationType(str, Enum):
    REQUIRED = "REQUIRED"
    OPTIONAL = "OPTIONAL"


class FieldEditability(str, Enum):
    EDITABLE = "EDITABLE"
    READ_ONLY = "READ_ONLY"


FIELD_TYPES = {"TEXT", "NUMBER", "DATE", "BOOLEAN", "SELECT", "MULTI_SELECT", "FILE"}

# Columns that make up the definition of a field. Copied forward on every new
# version; the versioning columns below them are owned by the store.
SEMANTIC_FIELDS = (
    "operational_level",
    "field_name",
    "field_label",
    "field_type",
    "capture_type",
    "validation_type",
    "editability",
    "min_photo_count",
    "max_photo_count",
    "validation_rules",
    "role_permissions",
    "display_order",
    "help_text",
    "placeholder",
    "conditional_logic",
)

SCOPE_FIELDS = ("tenant_id", "factory_id")

VERSIONING_FIELDS = ("id", "lineage_id", "version", "effective_from", "effective_to", "is_active", "created_at")


class WorkflowConfiguration(TenantModel):
    """
    Versioned field definition for one operational level.

    factory_id NULL means the row is the tenant-wide default; a factory row
    with the same (operational_level, field_name) overrides it for that
    factory.
    """

    __tablename__ = "workflow_configurations"
    __table_args__ = (
        db.Index("ix_wc_scope_level", "tenant_id", "factory_id", "operational_level"),
        # At most one active row per logical field and scope. Two partial
        # indexes because NULL factory_id never collides in a unique index.
        db.Index(
            "uq_wc_active_factory_field",
            "tenant_id", "factory_id", "operational_level", "field_name",
            unique=True,
            postgresql_where=text("is_active IS TRUE AND factory_id IS NOT NULL"),
            sqlite_where=text("is_active = 1 AND factory_id IS NOT NULL"),
        ),
        db.Index(
            "uq_wc_active_tenant_field",
            "tenant_id", "operational_level", "field_name",
            unique=True,
            postgresql_where=text("is_active IS TRUE AND factory_id IS NULL"),
            sqlite_where=text("is_active = 1 AND factory_id IS NULL"),
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    # id of version 1; shared by every version of the same logical field
    lineage_id = db.Column(db.String(36), nullable=True, index=True)
    factory_id = db.Column(db.String(36), nullable=True, index=True)

    operational_level = db.Column(db.Integer, nullable=False, comment="1..7")
    field_name = db.Column(db.String(100), nullable=False)
    field_label = db.Column(db.String(255), nullable=True)
    field_type = db.Column(
        db.String(50), nullable=False, default="TEXT",
        comment="TEXT | NUMBER | DATE | BOOLEAN | SELECT | MULTI_SELECT | FILE",
    )
    capture_type = db.Column(db.String(20), nullable=False, default=FieldCaptureType.MANUAL.value)
    validation_type = db.Column(
        db.String(20), nullable=False, default=FieldValidationType.REQUIRED.value,
    )
    editability = db.Column(db.String(20), nullable=False, default=FieldEditability.EDITABLE.value)
    min_photo_count = db.Column(db.Integer, nullable=False, default=0)
    max_photo_count = db.Column(db.Integer, nullable=False, default=10)
    validation_rules = db.Column(
        JSON, nullable=True,
        comment="minLength | maxLength | pattern | minValue | maxValue | allowedValues",
    )
    role_permissions = db.Column(JSON, nullable=True, comment="{role: {canView, canEdit, canApprove}}")
    display_order = db.Column(db.Integer, nullable=False, default=0)
    help_text = db.Column(db.String(255), nullable=True)
    placeholder = db.Column(db.String(255), nullable=True)
    conditional_logic = db.Column(JSON, nullable=True, comment="{showIf: {...}, requiredIf: {...}}")

    # Versioning
    version = db.Column(db.Integer, nullable=False, default=1)
    effective_from = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    effective_to = db.Column(db.DateTime(timezone=True), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    @property
    def scope_label(self) -> str:
        return f"factory {self.factory_id}" if self.factory_id else "tenant"

    def definition(self) -> dict:
        """Scope keys plus semantic columns, used to build the next version."""
        return {name: getattr(self, name) for name in SCOPE_FIELDS + SEMANTIC_FIELDS}

    def to_dict(self):
        return {
            "id": self.id,
            "lineage_id": self.lineage_id,
            "tenant_id": self.tenant_id,
            "factory_id": self.factory_id,
            "operational_level": self.operational_level,
            "field_name": self.field_name,
            "field_label": self.field_label,
            "field_type": self.field_type,
            "capture_type": self.capture_type,
            "validation_type": self.validation_type,
            "editability": self.editability,
            "min_photo_count": self.min_photo_count,
            "max_photo_count": self.max_photo_count,
            "validation_rules": self.validation_rules or {},
            "role_permissions": self.role_permissions or {},
            "display_order": self.display_order,
            "help_text": self.help_text,
            "placeholder": self.placeholder,
            "conditional_logic": self.conditional_logic or {},
            "version": self.version,
            "effective_from": self.effective_from.isoformat() if self.effective_from else None,
            "effective_to": self.effective_to.isoformat() if self.effective_to else None,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return (
            f"<WorkflowConfiguration {self.field_name} L{self.operational_level} "
            f"v{self.version} {self.scope_label}>"
        )
