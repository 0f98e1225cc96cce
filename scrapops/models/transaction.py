"""
Scrap Operations Platform
Transaction domain model.

Models:
    - Transaction: one scrap delivery moving through the seven operational
      levels, with the data captured at each completed level.

Value types:
    - OperationalLevel, TransactionStatus, LevelValidationStatus
    - LevelRecord: what gets stored per level in Transaction.level_data
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum

from sqlalchemy import JSON

from scrapops.models import db
from scrapops.models.base import TenantModel, _utcnow, _uuid


class OperationalLevel(IntEnum):
    L1_VENDOR_DISPATCH = 1
    L2_GATE_ENTRY = 2
    L3_WEIGHBRIDGE_GROSS = 3
    L4_MATERIAL_INSPECTION = 4
    L5_WEIGHBRIDGE_TARE = 5
    L6_GRN_GENERATION = 6
    L7_GATE_PASS_EXIT = 7


MIN_LEVEL = OperationalLevel.L1_VENDOR_DISPATCH
MAX_LEVEL = OperationalLevel.L7_GATE_PASS_EXIT

LEVEL_NAMES = {
    OperationalLevel.L1_VENDOR_DISPATCH: "Vendor Dispatch",
    OperationalLevel.L2_GATE_ENTRY: "Gate Entry",
    OperationalLevel.L3_WEIGHBRIDGE_GROSS: "Gross Weighment",
    OperationalLevel.L4_MATERIAL_INSPECTION: "Material Inspection",
    OperationalLevel.L5_WEIGHBRIDGE_TARE: "Tare Weighment",
    OperationalLevel.L6_GRN_GENERATION: "GRN Generation",
    OperationalLevel.L7_GATE_PASS_EXIT: "Gate Pass Exit",
}


def is_valid_level(level) -> bool:
    """True for integers 1..7 (bools are not levels)."""
    return isinstance(level, int) and not isinstance(level, bool) and MIN_LEVEL <= level <= MAX_LEVEL


class TransactionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = {
    TransactionStatus.COMPLETED.value,
    TransactionStatus.REJECTED.value,
    TransactionStatus.CANCELLED.value,
}


class LevelValidationStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


@dataclass
class LevelRecord:
    """Data captured when a level is completed.

    validation_status is set by whoever completes the level (the approval
    workflow); guardrails read it and nothing else.
    """
    level: int
    field_values: dict = field(default_factory=dict)
    completed_by: str | None = None
    completed_at: datetime | None = None
    evidence_ids: set[str] = field(default_factory=set)
    validation_status: str = LevelValidationStatus.PENDING.value
    notes: str | None = None

    def __post_init__(self):
        if isinstance(self.validation_status, LevelValidationStatus):
            self.validation_status = self.validation_status.value
        self.evidence_ids = set(self.evidence_ids or ())

    @property
    def is_approved(self) -> bool:
        return self.validation_status == LevelValidationStatus.APPROVED.value

    def to_dict(self) -> dict:
        return {
            "level": int(self.level),
            "field_values": dict(self.field_values or {}),
            "completed_by": self.completed_by,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "evidence_ids": sorted(self.evidence_ids),
            "validation_status": self.validation_status,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LevelRecord":
        completed_at = data.get("completed_at")
        if isinstance(completed_at, str):
            completed_at = datetime.fromisoformat(completed_at)
        return cls(
            level=int(data["level"]),
            field_values=dict(data.get("field_values") or {}),
            completed_by=data.get("completed_by"),
            completed_at=completed_at,
            evidence_ids=set(data.get("evidence_ids") or ()),
            validation_status=data.get("validation_status", LevelValidationStatus.PENDING.value),
            notes=data.get("notes"),
        )


class Transaction(TenantModel):
    """
    A single delivery through the operational pipeline.

    level_data is keyed by the level number as a string (JSON object keys)
    and holds LevelRecord.to_dict() payloads. version_id guards the row
    against concurrent writers: a stale flush raises StaleDataError.
    """

    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_tenant_factory", "tenant_id", "factory_id"),
        db.Index("ix_transactions_tenant_status", "tenant_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    factory_id = db.Column(db.String(36), nullable=False)
    transaction_number = db.Column(db.String(50), unique=True, nullable=True)

    current_level = db.Column(
        db.Integer, nullable=False, default=int(OperationalLevel.L1_VENDOR_DISPATCH),
    )
    status = db.Column(db.String(20), nullable=False, default=TransactionStatus.ACTIVE.value)
    is_locked = db.Column(db.Boolean, nullable=False, default=False)
    level_data = db.Column(JSON, nullable=False, default=dict)

    version_id = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_terminal(self) -> bool:
        return self.is_locked or self.status in TERMINAL_STATUSES

    def get_level_record(self, level: int) -> LevelRecord | None:
        raw = (self.level_data or {}).get(str(int(level)))
        return LevelRecord.from_dict(raw) if raw else None

    def level_records(self) -> dict[int, LevelRecord]:
        return {
            int(key): LevelRecord.from_dict(raw)
            for key, raw in (self.level_data or {}).items()
        }

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "factory_id": self.factory_id,
            "transaction_number": self.transaction_number,
            "current_level": self.current_level,
            "status": self.status,
            "is_locked": self.is_locked,
            "level_data": dict(self.level_data or {}),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self):
        return f"<Transaction {self.id} L{self.current_level} {self.status}>"
