"""
Safety guardrails and evidence-field protection.

Everything here is fixed at import time. Tenant configuration cannot add,
remove or weaken any of it:

  - PROTECTED_EVIDENCE_FIELDS: audit-critical fields that must always exist
    and always be required. Field configuration refuses to create, rename
    into, or move them.
  - GUARDRAILS: cross-level preconditions checked on every progression,
    whatever the configured fields say.

Usage:
    from scrapops.services.guardrails import evaluate_guardrails, is_protected_evidence_field

    errors = evaluate_guardrails(txn.level_records(), target_level=6)
"""

from dataclasses import dataclass

from scrapops.models.transaction import LevelRecord, LevelValidationStatus, OperationalLevel

PROTECTED_EVIDENCE_FIELDS = frozenset({
    "photos",
    "documents",
    "timestamp",
    "gps_coordinates",
    "operator_signature",
    "inspector_signature",
    "evidence_photos",
    "inspection_photos",
    "weight_slip_photo",
    "vehicle_photo",
})


def is_protected_evidence_field(field_name: str | None) -> bool:
    """Case-insensitive membership test against PROTECTED_EVIDENCE_FIELDS."""
    if not field_name:
        return False
    return field_name.strip().lower() in PROTECTED_EVIDENCE_FIELDS


@dataclass(frozen=True)
class Guardrail:
    """Progressing to target_level requires required_level in required_status."""
    target_level: int
    required_level: int
    required_status: str
    message: str


GUARDRAILS: tuple[Guardrail, ...] = (
    Guardrail(
        target_level=OperationalLevel.L6_GRN_GENERATION,
        required_level=OperationalLevel.L4_MATERIAL_INSPECTION,
        required_status=LevelValidationStatus.APPROVED.value,
        message="GRN cannot be generated without approved material inspection",
    ),
    Guardrail(
        target_level=OperationalLevel.L7_GATE_PASS_EXIT,
        required_level=OperationalLevel.L6_GRN_GENERATION,
        required_status=LevelValidationStatus.APPROVED.value,
        message="Gate pass cannot be generated without approved GRN",
    ),
)


def evaluate_guardrails(level_records: dict[int, LevelRecord], target_level: int) -> list[str]:
    """Return the message of every guardrail that blocks target_level.

    Args:
        level_records: Completed level records keyed by level number.
        target_level: The level the caller wants to reach.

    Returns:
        List of violation messages; empty when nothing blocks.
    """
    errors: list[str] = []
    for rail in GUARDRAILS:
        if target_level != rail.target_level:
            continue
        record = level_records.get(int(rail.required_level))
        if record is None or record.validation_status != rail.required_status:
            errors.append(rail.message)
    return errors
