"""
Workflow Engine: the seven-level delivery state machine.

A transaction moves L1 -> L7 one level at a time. Every request is checked in
this order:

  1. transaction exists                      (NotFoundError, raised)
  2. not locked                              (short-circuits)
  3. status ACTIVE                           (short-circuits)
  4. level in 1..7                           (accumulated)
  5. target == current_level + 1             (accumulated)
  6. safety guardrails (6 needs approved L4,  (accumulated)
     7 needs approved L6)

Failures of 2-6 are returned in a ValidationResult, never raised, so a
caller can show every reason at once. Tenant field configuration only
affects which values a level record must carry; it can never relax the
checks above.

Usage:
    from scrapops.services import workflow_engine

    result = workflow_engine.validate_level_progression(txn_id, 5)
    if not result.is_valid:
        ...
    outcome = workflow_engine.process_level_completion(txn_id, record)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from scrapops.models.transaction import (
    LEVEL_NAMES,
    LevelRecord,
    OperationalLevel,
    Transaction,
    TransactionStatus,
    is_valid_level,
)
from scrapops.models.workflow_config import FieldValidationType
from scrapops.services import field_configuration_service, transaction_store
from scrapops.services.guardrails import GUARDRAILS, evaluate_guardrails, is_protected_evidence_field

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Result types
# ═════════════════════════════════════════════════════════════════════════════

@dataclass
class ValidationResult:
    """Outcome of a progression or field-data check."""
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def from_errors(cls, errors: list[str], warnings: list[str] | None = None) -> ValidationResult:
        return cls(is_valid=not errors, errors=list(errors), warnings=list(warnings or []))

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


@dataclass
class ProcessingResult:
    """Outcome of process_level_completion."""
    success: bool
    transaction_id: str
    new_level: int | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "transaction_id": self.transaction_id,
            "new_level": self.new_level,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


# ═════════════════════════════════════════════════════════════════════════════
# Level progression
# ═════════════════════════════════════════════════════════════════════════════

def _check_progression(txn: Transaction, target_level) -> ValidationResult:
    if txn.is_locked:
        return ValidationResult.from_errors(["Transaction is locked and cannot be modified"])
    if txn.status != TransactionStatus.ACTIVE.value:
        return ValidationResult.from_errors([f"Transaction is already {txn.status.lower()}"])

    errors: list[str] = []
    if not is_valid_level(target_level):
        errors.append(f"Invalid operational level: L{target_level}. Must be between L1 and L7")

    expected = txn.current_level + 1
    if target_level != expected:
        errors.append(
            f"Invalid level progression. Current level: L{txn.current_level}, "
            f"Expected next level: L{expected}, Requested level: L{target_level}"
        )

    errors.extend(evaluate_guardrails(txn.level_records(), target_level))
    return ValidationResult.from_errors(errors)


def validate_level_progression(transaction_id: str, target_level) -> ValidationResult:
    """Check whether a transaction may move to ``target_level``.

    Raises:
        NotFoundError: Unknown transaction id.

    Returns:
        ValidationResult; is_valid is True only when no check failed.
    """
    txn = transaction_store.load_transaction(transaction_id)
    result = _check_progression(txn, target_level)
    if not result.is_valid:
        logger.warning(
            "Progression to L%s rejected: %s", target_level, "; ".join(result.errors),
            extra={
                "tenant_id": txn.tenant_id,
                "transaction_id": txn.id,
                "operational_level": target_level,
            },
        )
    return result


def _approval_warnings(record: LevelRecord) -> list[str]:
    warnings = []
    for rail in GUARDRAILS:
        if rail.required_level == record.level and not record.is_approved:
            warnings.append(
                f"L{record.level} recorded as {record.validation_status}; "
                f"progression to L{rail.target_level} is blocked until it is approved"
            )
    return warnings


def process_level_completion(transaction_id: str, level_record) -> ProcessingResult:
    """Record the completion of a level and advance the transaction to it.

    The field values are validated against the configuration that was in
    force when the transaction was created, including factory overrides, so
    later configuration changes never affect a transaction in flight.

    Completing L7 also marks the transaction COMPLETED and locks it.
    validation_status is stored as submitted; approving a level is the
    caller's job.

    Args:
        transaction_id: Transaction to update.
        level_record: LevelRecord, or a dict accepted by LevelRecord.from_dict.

    Raises:
        NotFoundError: Unknown transaction id.
        ConflictError: Another writer updated the transaction first.

    Returns:
        ProcessingResult with new_level set on success.
    """
    record = level_record if isinstance(level_record, LevelRecord) else LevelRecord.from_dict(level_record)
    txn = transaction_store.load_transaction(transaction_id)
    log_extra = {
        "tenant_id": txn.tenant_id,
        "factory_id": txn.factory_id,
        "transaction_id": txn.id,
        "operational_level": record.level,
    }

    validation = _check_progression(txn, record.level)
    if not validation.is_valid:
        logger.warning(
            "Level completion rejected: %s", "; ".join(validation.errors), extra=log_extra,
        )
        return ProcessingResult(
            success=False, transaction_id=txn.id,
            errors=validation.errors, warnings=validation.warnings,
        )

    fields = field_configuration_service.get_field_configurations_as_of(
        txn.tenant_id, txn.created_at,
        factory_id=txn.factory_id, operational_level=record.level,
    )
    field_validation = validate_field_data(fields, record.field_values)
    if not field_validation.is_valid:
        logger.warning(
            "Level data rejected: %s", "; ".join(field_validation.errors), extra=log_extra,
        )
        return ProcessingResult(
            success=False, transaction_id=txn.id,
            errors=field_validation.errors, warnings=field_validation.warnings,
        )

    finalize = record.level == OperationalLevel.L7_GATE_PASS_EXIT
    transaction_store.write_level_record(txn, record, advance_to=record.level, finalize=finalize)

    logger.info(
        "Level L%s completed%s", record.level, " (transaction completed)" if finalize else "",
        extra={**log_extra, "event_type": "transaction.level_completed"},
    )
    return ProcessingResult(
        success=True,
        transaction_id=txn.id,
        new_level=txn.current_level,
        warnings=field_validation.warnings + _approval_warnings(record),
    )


# ═════════════════════════════════════════════════════════════════════════════
# Field configuration helpers
# ═════════════════════════════════════════════════════════════════════════════

def get_configured_fields(tenant_id: str, level: int) -> list[dict]:
    """Tenant-wide field list a UI or validator should enforce for ``level``.

    Advisory only; progression checks never consult it.
    """
    return field_configuration_service.get_field_configurations_with_inheritance(
        tenant_id, operational_level=level,
    )


def validate_evidence_field_configuration(tenant_id: str, level: int, field_name: str) -> bool:
    """Whether ``field_name`` may be disabled. Always False for evidence fields."""
    return not is_protected_evidence_field(field_name)


def get_workflow_levels() -> list[dict]:
    """The operational level catalog, L1 first."""
    return [
        {"level": int(level), "code": f"L{int(level)}", "name": LEVEL_NAMES[level]}
        for level in OperationalLevel
    ]


# ═════════════════════════════════════════════════════════════════════════════
# Field data validation
# ═════════════════════════════════════════════════════════════════════════════

def _is_empty(value) -> bool:
    return value is None or value == "" or (isinstance(value, (list, tuple, set)) and not value)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_rules(label: str, rules: dict, value) -> list[str]:
    errors = []
    if isinstance(value, str):
        if rules.get("minLength") and len(value) < rules["minLength"]:
            errors.append(f"{label} must be at least {rules['minLength']} characters")
        if rules.get("maxLength") and len(value) > rules["maxLength"]:
            errors.append(f"{label} must not exceed {rules['maxLength']} characters")
        if rules.get("pattern") and not re.search(rules["pattern"], value):
            errors.append(f"{label} format is invalid")

    if _is_number(value):
        if rules.get("minValue") is not None and value < rules["minValue"]:
            errors.append(f"{label} must be at least {rules['minValue']}")
        if rules.get("maxValue") is not None and value > rules["maxValue"]:
            errors.append(f"{label} must not exceed {rules['maxValue']}")

    allowed = rules.get("allowedValues")
    if isinstance(allowed, list) and value not in allowed:
        errors.append(f"{label} must be one of: {', '.join(str(v) for v in allowed)}")
    return errors


def _check_photo_count(label: str, field_def: dict, value) -> list[str]:
    count = len(value) if isinstance(value, (list, tuple, set)) else 1
    min_count = field_def.get("min_photo_count") or 0
    max_count = field_def.get("max_photo_count")
    if count < min_count:
        return [f"{label} requires at least {min_count} photos"]
    if max_count is not None and count > max_count:
        return [f"{label} must not exceed {max_count} photos"]
    return []


def validate_field_data(fields: list[dict], field_values: dict | None) -> ValidationResult:
    """Check submitted values against serialized field configurations.

    Required fields must be present and non-empty. Present values are checked
    against validation_rules, and FILE fields against their photo limits.
    Values for fields that are not configured are ignored.
    """
    field_values = field_values or {}
    errors: list[str] = []

    for field_def in fields:
        name = field_def["field_name"]
        label = field_def.get("field_label") or name
        value = field_values.get(name)

        if _is_empty(value):
            if field_def.get("validation_type") == FieldValidationType.REQUIRED.value:
                errors.append(f"Field '{label}' is required")
            continue

        errors.extend(_check_rules(label, field_def.get("validation_rules") or {}, value))
        if field_def.get("field_type") == "FILE":
            errors.extend(_check_photo_count(label, field_def, value))

    return ValidationResult.from_errors(errors)
