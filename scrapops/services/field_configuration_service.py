"""
Field Configuration Manager.

Tenant administrators decide which fields are captured at each operational
level, how, and whether they are required. Every change is recorded as a new
version of the field (see config_store.supersede); historical rows are kept
so a transaction can always be validated against the configuration that was
in force when it was created.

Functions:
    - create_field_configuration:                 Version 1 of a new field
    - update_field_configuration:                 New version with merged changes
    - move_field_to_level:                        New version at another level
    - get_field_configuration:                    Single row by id
    - get_field_configurations:                   Active tenant-wide rows
    - get_field_configurations_with_inheritance:  Tenant rows overridden by factory rows
    - get_field_configurations_as_of:             Same merge, at a point in time
    - get_version_history:                        All versions of one logical field
    - merge_inherited:                            Pure tenant/factory merge
    - get_default_field_configurations:           Starter field set for a new tenant
    - seed_default_field_configurations:          Persist the starter set

Every db.session.commit() in this module is intentional and marks the end of
one configuration change.
"""

import logging
import re
from enum import Enum

from scrapops.core.exceptions import ConflictError, ValidationError
from scrapops.models import db
from scrapops.models.transaction import OperationalLevel, is_valid_level
from scrapops.models.workflow_config import (
    FIELD_TYPES,
    SEMANTIC_FIELDS,
    FieldCaptureType,
    FieldEditability,
    FieldValidationType,
    WorkflowConfiguration,
)
from scrapops.services import config_store
from scrapops.services.guardrails import is_protected_evidence_field

logger = logging.getLogger(__name__)


# ── Level-critical fields ────────────────────────────────────────────────────
# These fields define their operational stage and cannot be moved elsewhere.

LEVEL_CRITICAL_FIELDS: dict[int, frozenset[str]] = {
    OperationalLevel.L1_VENDOR_DISPATCH: frozenset({"vendor_details", "po_number", "invoice_number"}),
    OperationalLevel.L2_GATE_ENTRY: frozenset({"vehicle_number", "driver_details", "entry_time"}),
    OperationalLevel.L3_WEIGHBRIDGE_GROSS: frozenset({"gross_weight"}),
    OperationalLevel.L4_MATERIAL_INSPECTION: frozenset({"inspection_grade", "contamination_level"}),
    OperationalLevel.L5_WEIGHBRIDGE_TARE: frozenset({"tare_weight", "net_weight"}),
    OperationalLevel.L6_GRN_GENERATION: frozenset({"grn_number"}),
    OperationalLevel.L7_GATE_PASS_EXIT: frozenset({"gate_pass_qr", "exit_time"}),
}


# ── Default field set for a new tenant ──────────────────────────────────────

_DEFAULT_FIELDS: tuple[dict, ...] = (
    {
        "operational_level": OperationalLevel.L1_VENDOR_DISPATCH,
        "field_name": "vendor_details",
        "field_label": "Vendor Details",
        "field_type": "TEXT",
        "capture_type": FieldCaptureType.OCR,
        "display_order": 1,
    },
    {
        "operational_level": OperationalLevel.L1_VENDOR_DISPATCH,
        "field_name": "po_number",
        "field_label": "PO Number",
        "field_type": "TEXT",
        "capture_type": FieldCaptureType.OCR,
        "display_order": 2,
    },
    {
        "operational_level": OperationalLevel.L2_GATE_ENTRY,
        "field_name": "vehicle_number",
        "field_label": "Vehicle Number",
        "field_type": "TEXT",
        "capture_type": FieldCaptureType.CAMERA,
        "display_order": 1,
    },
    {
        "operational_level": OperationalLevel.L2_GATE_ENTRY,
        "field_name": "driver_mobile",
        "field_label": "Driver Mobile",
        "field_type": "TEXT",
        "capture_type": FieldCaptureType.MANUAL,
        "display_order": 2,
    },
    {
        "operational_level": OperationalLevel.L3_WEIGHBRIDGE_GROSS,
        "field_name": "gross_weight",
        "field_label": "Gross Weight (KG)",
        "field_type": "NUMBER",
        "capture_type": FieldCaptureType.AUTO,
        "editability": FieldEditability.READ_ONLY,
        "display_order": 1,
    },
    {
        "operational_level": OperationalLevel.L4_MATERIAL_INSPECTION,
        "field_name": "inspection_grade",
        "field_label": "Material Grade",
        "field_type": "SELECT",
        "capture_type": FieldCaptureType.MANUAL,
        "display_order": 1,
        "validation_rules": {"allowedValues": ["A", "B", "C", "REJECTED"]},
    },
    {
        "operational_level": OperationalLevel.L4_MATERIAL_INSPECTION,
        "field_name": "inspection_photos",
        "field_label": "Inspection Photos",
        "field_type": "FILE",
        "capture_type": FieldCaptureType.CAMERA,
        "min_photo_count": 2,
        "max_photo_count": 10,
        "display_order": 2,
    },
)


# ── Input normalisation ─────────────────────────────────────────────────────

def _coerce_enum(value, enum_cls: type[Enum], attr: str) -> str:
    if isinstance(value, enum_cls):
        return value.value
    try:
        return enum_cls(str(value).upper()).value
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(
            f"{attr} must be one of: {allowed}", details={attr: value},
        )


def _validate_level(level, attr: str = "operational_level") -> int:
    if not is_valid_level(level):
        raise ValidationError(
            f"Invalid operational level: L{level}. Must be between L1 and L7",
            details={attr: level},
        )
    return int(level)


def _reject_protected(field_name: str) -> None:
    if is_protected_evidence_field(field_name):
        raise ValidationError(
            f"Evidence field '{field_name}' cannot be disabled for audit integrity",
            details={"field_name": field_name},
        )


def _ensure_not_level_critical(field_name: str, level: int) -> None:
    if field_name in LEVEL_CRITICAL_FIELDS.get(level, ()):
        raise ValidationError(
            f"Field '{field_name}' cannot be moved from level "
            f"L{level} as it is critical for that operational stage",
            details={"field_name": field_name},
        )


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _validate_rules(rules) -> dict | None:
    """Check the rule keys the engine evaluates so bad rules fail at write time."""
    if rules is None:
        return None
    if not isinstance(rules, dict):
        raise ValidationError(
            "validation_rules must be an object", details={"validation_rules": rules},
        )

    errors = {}
    pattern = rules.get("pattern")
    if pattern is not None:
        if not isinstance(pattern, str):
            errors["pattern"] = "must be a string"
        else:
            try:
                re.compile(pattern)
            except re.error as exc:
                errors["pattern"] = f"invalid regular expression: {exc}"

    for key in ("minLength", "maxLength"):
        value = rules.get(key)
        if value is not None and (not isinstance(value, int) or isinstance(value, bool) or value < 0):
            errors[key] = "must be a non-negative integer"

    for key in ("minValue", "maxValue"):
        value = rules.get(key)
        if value is not None and not _is_number(value):
            errors[key] = "must be a number"

    allowed = rules.get("allowedValues")
    if allowed is not None and not isinstance(allowed, list):
        errors["allowedValues"] = "must be a list"

    if not errors:
        for low, high in (("minLength", "maxLength"), ("minValue", "maxValue")):
            if rules.get(low) is not None and rules.get(high) is not None and rules[low] > rules[high]:
                errors[low] = f"must not exceed {high}"

    if errors:
        detail = "; ".join(f"{key} {msg}" for key, msg in errors.items())
        raise ValidationError(f"Invalid validation_rules: {detail}", details=errors)
    return dict(rules)


def _normalize(values: dict) -> dict:
    """Validate and coerce a full definition in place; returns it."""
    field_name = (values.get("field_name") or "").strip()
    if not field_name:
        raise ValidationError("field_name is required", details={"field_name": "required"})
    values["field_name"] = field_name

    values["operational_level"] = _validate_level(values.get("operational_level"))

    field_type = str(values.get("field_type") or "TEXT").upper()
    if field_type not in FIELD_TYPES:
        raise ValidationError(
            f"field_type must be one of: {', '.join(sorted(FIELD_TYPES))}",
            details={"field_type": values.get("field_type")},
        )
    values["field_type"] = field_type

    values["capture_type"] = _coerce_enum(
        values.get("capture_type") or FieldCaptureType.MANUAL, FieldCaptureType, "capture_type",
    )
    values["validation_type"] = _coerce_enum(
        values.get("validation_type") or FieldValidationType.REQUIRED,
        FieldValidationType, "validation_type",
    )
    values["editability"] = _coerce_enum(
        values.get("editability") or FieldEditability.EDITABLE, FieldEditability, "editability",
    )

    min_photos = values.get("min_photo_count")
    max_photos = values.get("max_photo_count")
    values["min_photo_count"] = 0 if min_photos is None else int(min_photos)
    values["max_photo_count"] = 10 if max_photos is None else int(max_photos)
    if values["min_photo_count"] < 0 or values["max_photo_count"] < values["min_photo_count"]:
        raise ValidationError(
            "Photo count limits must satisfy 0 <= min_photo_count <= max_photo_count",
            details={"min_photo_count": min_photos, "max_photo_count": max_photos},
        )

    values["validation_rules"] = _validate_rules(values.get("validation_rules"))
    values["field_label"] = values.get("field_label") or field_name
    values["display_order"] = int(values.get("display_order") or 0)
    return values


def _ensure_unique(tenant_id, level, field_name, factory_id) -> None:
    existing = config_store.find_active_duplicate(tenant_id, level, field_name, factory_id)
    if existing is not None:
        scope = f"factory {factory_id}" if factory_id else "tenant"
        raise ConflictError(
            resource="WorkflowConfiguration",
            field="field_name",
            value=field_name,
            message=(
                f"Field configuration already exists for '{field_name}' "
                f"at level L{level} for {scope}"
            ),
        )


def _load_active(config_id: str) -> WorkflowConfiguration:
    current = config_store.get_configuration(config_id)
    if not current.is_active:
        raise ConflictError(
            resource="WorkflowConfiguration",
            field="is_active",
            value=config_id,
            message=(
                f"Field configuration {config_id} (version {current.version}) "
                "is no longer the active version"
            ),
        )
    return current


# ── Commands ─────────────────────────────────────────────────────────────────

def create_field_configuration(data: dict) -> dict:
    """Create version 1 of a field for a tenant, or for one of its factories.

    Args:
        data: tenant_id, optional factory_id, and the field definition
              (operational_level, field_name, field_label, field_type,
              capture_type, validation_type, editability, photo limits,
              validation_rules, role_permissions, display_order, ...).

    Returns:
        Serialized WorkflowConfiguration dict.

    Raises:
        ValidationError: Protected evidence field, invalid level or enum value,
            missing tenant_id / field_name.
        ConflictError: An active row already exists for the same
            (tenant, level, field_name, factory).
    """
    _reject_protected(data.get("field_name"))

    tenant_id = data.get("tenant_id")
    if not tenant_id:
        raise ValidationError("tenant_id is required", details={"tenant_id": "required"})
    factory_id = data.get("factory_id") or None

    values = {name: data.get(name) for name in SEMANTIC_FIELDS}
    values = _normalize(values)
    _ensure_unique(tenant_id, values["operational_level"], values["field_name"], factory_id)

    row = config_store.insert_configuration(
        {"tenant_id": tenant_id, "factory_id": factory_id, **values},
    )
    db.session.commit()
    logger.info(
        "WorkflowConfiguration created id=%s field=%s level=%s scope=%s",
        row.id, row.field_name, row.operational_level, row.scope_label,
        extra={"tenant_id": tenant_id, "factory_id": factory_id, "config_id": row.id, "version": 1},
    )
    return row.to_dict()


def update_field_configuration(config_id: str, data: dict) -> dict:
    """Apply a partial change by superseding the active row.

    Scope keys and versioning columns in ``data`` are ignored; the scope of a
    logical field never changes, and the store owns version numbers.

    Returns:
        Serialized dict of the new version (new id, version + 1).

    Raises:
        NotFoundError: Unknown config_id.
        ConflictError: config_id is no longer the active version, or the
            change would collide with another active field.
        ValidationError: Renaming onto a protected evidence field, or an
            invalid level / enum value.
    """
    current = _load_active(config_id)

    if "field_name" in data:
        _reject_protected(data.get("field_name"))

    values = current.definition()
    for name in SEMANTIC_FIELDS:
        if name in data:
            values[name] = data[name]
    scope = {"tenant_id": values.pop("tenant_id"), "factory_id": values.pop("factory_id")}
    values = _normalize(values)

    if values["operational_level"] != current.operational_level:
        _ensure_not_level_critical(current.field_name, current.operational_level)
    if (values["operational_level"], values["field_name"]) != (
        current.operational_level, current.field_name,
    ):
        _ensure_unique(
            scope["tenant_id"], values["operational_level"], values["field_name"], scope["factory_id"],
        )

    return _commit_new_version(current, {**scope, **values}, action="updated")


def move_field_to_level(config_id: str, new_level: int) -> dict:
    """Move a field to another operational level as a new version.

    Raises:
        NotFoundError: Unknown config_id.
        ValidationError: Protected evidence field, level outside 1..7, a
            level-critical field, or a move onto the field's current level.
        ConflictError: The field is already active at the target level in the
            same scope, or config_id is not the active version.
    """
    current = config_store.get_configuration(config_id)
    _reject_protected(current.field_name)
    new_level = _validate_level(new_level, attr="new_level")

    _ensure_not_level_critical(current.field_name, current.operational_level)

    current = _load_active(config_id)
    if new_level == current.operational_level:
        raise ValidationError(
            f"Field '{current.field_name}' is already at level L{new_level}",
            details={"new_level": new_level},
        )
    _ensure_unique(current.tenant_id, new_level, current.field_name, current.factory_id)

    values = current.definition()
    values["operational_level"] = new_level
    return _commit_new_version(current, values, action="moved")


def _commit_new_version(current: WorkflowConfiguration, values: dict, *, action: str) -> dict:
    previous_id, previous_version = current.id, current.version
    row = config_store.supersede(current, values)
    db.session.commit()
    logger.info(
        "WorkflowConfiguration %s id=%s -> id=%s field=%s level=%s version=%s",
        action, previous_id, row.id, row.field_name, row.operational_level, row.version,
        extra={
            "tenant_id": row.tenant_id,
            "factory_id": row.factory_id,
            "config_id": row.id,
            "version": row.version,
            "event_type": f"workflow_config.{action}",
        },
    )
    logger.debug("Superseded version %s of %s", previous_version, previous_id)
    return row.to_dict()


# ── Queries ──────────────────────────────────────────────────────────────────

def get_field_configuration(config_id: str) -> dict:
    """Fetch a single configuration version by id (active or historical)."""
    return config_store.get_configuration(config_id).to_dict()


def get_field_configurations(tenant_id: str, operational_level: int | None = None) -> list[dict]:
    """Active tenant-wide rows ordered by level, then display_order."""
    rows = config_store.find_configurations(tenant_id, operational_level=operational_level)
    return [r.to_dict() for r in rows]


def merge_inherited(tenant_rows: list, factory_rows: list) -> list:
    """Overlay factory rows on tenant rows keyed by (level, field_name).

    Works on model instances or their dicts. A factory row replaces the
    tenant row with the same key; tenant rows without an override pass
    through. Sorted by level, then display_order.
    """
    def _get(row, name):
        return row[name] if isinstance(row, dict) else getattr(row, name)

    merged = {}
    for row in list(tenant_rows) + list(factory_rows):
        merged[(_get(row, "operational_level"), _get(row, "field_name"))] = row

    return sorted(
        merged.values(),
        key=lambda r: (_get(r, "operational_level"), _get(r, "display_order") or 0),
    )


def get_field_configurations_with_inheritance(
    tenant_id: str,
    factory_id: str | None = None,
    operational_level: int | None = None,
) -> list[dict]:
    """Resolve the fields a factory sees: tenant defaults with factory overrides.

    No side effects.
    """
    tenant_rows = config_store.find_configurations(tenant_id, operational_level=operational_level)
    factory_rows = []
    if factory_id:
        factory_rows = config_store.find_configurations(
            tenant_id, factory_id=factory_id, operational_level=operational_level,
        )
    return [r.to_dict() for r in merge_inherited(tenant_rows, factory_rows)]


def get_field_configurations_as_of(
    tenant_id: str,
    as_of,
    factory_id: str | None = None,
    operational_level: int | None = None,
) -> list[dict]:
    """Like get_field_configurations_with_inheritance, for the rows in force at ``as_of``."""
    tenant_rows = config_store.find_effective_as_of(
        tenant_id, as_of, operational_level=operational_level,
    )
    factory_rows = []
    if factory_id:
        factory_rows = config_store.find_effective_as_of(
            tenant_id, as_of, factory_id=factory_id, operational_level=operational_level,
        )
    return [r.to_dict() for r in merge_inherited(tenant_rows, factory_rows)]


def get_version_history(config_id: str) -> list[dict]:
    """All versions of the logical field config_id belongs to, oldest first."""
    row = config_store.get_configuration(config_id)
    return [r.to_dict() for r in config_store.version_history(row)]


# ── Tenant defaults ──────────────────────────────────────────────────────────

def get_default_field_configurations(tenant_id: str) -> list[dict]:
    """Starter field definitions for a new tenant (not persisted)."""
    return [{"tenant_id": tenant_id, **template} for template in _DEFAULT_FIELDS]


def seed_default_field_configurations(tenant_id: str) -> list[dict]:
    """Persist the starter field set for a tenant.

    Protected evidence fields in the template are skipped: they are owned by
    the platform and cannot be created through tenant configuration. Fields
    that are already active for the tenant are left untouched.

    Returns:
        Serialized rows that were created.
    """
    created = []
    for definition in get_default_field_configurations(tenant_id):
        name = definition["field_name"]
        if is_protected_evidence_field(name):
            logger.debug("Seed skipped protected evidence field %s", name)
            continue
        if config_store.find_active_duplicate(
            tenant_id, int(definition["operational_level"]), name, None,
        ):
            continue
        created.append(create_field_configuration(definition))
    logger.info(
        "Seeded %d default field configurations", len(created),
        extra={"tenant_id": tenant_id},
    )
    return created
