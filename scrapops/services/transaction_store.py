"""
Transaction State Store.

Owns every write to a Transaction row. The workflow engine decides whether a
level may be completed; this module applies the write and enforces the
lifecycle rules that no caller may bypass (locked and terminal transactions
are immutable).

Optimistic concurrency comes from Transaction.version_id: if two writers
load the same version and both flush, the second gets StaleDataError, which
is surfaced here as ConflictError. The loser must reload and re-validate.

Usage:
    from scrapops.services import transaction_store

    txn = transaction_store.create_transaction(tenant_id, factory_id)
    model = transaction_store.load_transaction(txn["id"])
"""

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from scrapops.core.exceptions import ConflictError, NotFoundError, StateError, ValidationError
from scrapops.models import db
from scrapops.models.base import _utcnow
from scrapops.models.transaction import (
    TERMINAL_STATUSES,
    LevelRecord,
    OperationalLevel,
    Transaction,
    TransactionStatus,
)

logger = logging.getLogger(__name__)


# ── Reads ────────────────────────────────────────────────────────────────────

def load_transaction(transaction_id: str, tenant_id: str | None = None) -> Transaction:
    """Return the Transaction model, optionally scoped to a tenant.

    A transaction belonging to another tenant is reported as not found.

    Raises:
        NotFoundError: Unknown id, or wrong tenant.
    """
    txn = db.session.get(Transaction, transaction_id) if transaction_id else None
    if txn is None or (tenant_id is not None and txn.tenant_id != tenant_id):
        raise NotFoundError(resource="Transaction", resource_id=transaction_id, tenant_id=tenant_id)
    return txn


def get_transaction(transaction_id: str, tenant_id: str | None = None) -> dict:
    """Serialized Transaction; see load_transaction."""
    return load_transaction(transaction_id, tenant_id).to_dict()


def list_transactions(
    tenant_id: str,
    factory_id: str | None = None,
    status: str | None = None,
) -> list[dict]:
    """Transactions of one tenant, newest first, optionally narrowed."""
    query = Transaction.query_for_tenant(tenant_id)
    if factory_id:
        query = query.filter_by(factory_id=factory_id)
    if status:
        query = query.filter_by(status=status)
    return [t.to_dict() for t in query.order_by(Transaction.created_at.desc()).all()]


# ── Writes ───────────────────────────────────────────────────────────────────

def _commit_or_conflict(txn: Transaction) -> None:
    txn_id = txn.id
    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        logger.warning(
            "Concurrent update lost for transaction %s", txn_id,
            extra={"transaction_id": txn_id},
        )
        raise ConflictError(
            resource="Transaction",
            field="version_id",
            value=txn_id,
            message=f"Transaction {txn_id} was modified concurrently; reload and retry",
        )


def _ensure_writable(txn: Transaction) -> None:
    if txn.is_locked:
        raise StateError(
            "Transaction", txn.id, "locked",
            message="Transaction is locked and cannot be modified",
        )
    if txn.status in TERMINAL_STATUSES:
        raise StateError(
            "Transaction", txn.id, txn.status,
            message=f"Transaction is already {txn.status.lower()}",
        )


def create_transaction(
    tenant_id: str,
    factory_id: str,
    transaction_number: str | None = None,
) -> dict:
    """Start a delivery at level 1: ACTIVE, unlocked, no level data.

    Raises:
        ValidationError: Missing tenant_id or factory_id.
        ConflictError: transaction_number already used.
    """
    if not tenant_id or not factory_id:
        raise ValidationError(
            "tenant_id and factory_id are required",
            details={"tenant_id": tenant_id, "factory_id": factory_id},
        )

    txn = Transaction(
        tenant_id=tenant_id,
        factory_id=factory_id,
        transaction_number=transaction_number,
        current_level=int(OperationalLevel.L1_VENDOR_DISPATCH),
        status=TransactionStatus.ACTIVE.value,
        is_locked=False,
        level_data={},
    )
    db.session.add(txn)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(resource="Transaction", field="transaction_number", value=transaction_number)

    logger.info(
        "Transaction created id=%s number=%s", txn.id, transaction_number,
        extra={"tenant_id": tenant_id, "factory_id": factory_id, "transaction_id": txn.id},
    )
    return txn.to_dict()


def write_level_record(
    txn: Transaction,
    record: LevelRecord,
    *,
    advance_to: int,
    finalize: bool = False,
) -> Transaction:
    """Store ``record`` under its level and move current_level to ``advance_to``.

    With finalize=True the transaction is also marked COMPLETED, locked and
    stamped with completed_at, in the same commit.

    level_data is reassigned (not mutated) so the JSON column is flagged dirty.

    Raises:
        StateError: Transaction locked or not ACTIVE.
        ConflictError: Another writer committed first.
    """
    _ensure_writable(txn)

    level_data = dict(txn.level_data or {})
    level_data[str(int(record.level))] = record.to_dict()
    txn.level_data = level_data
    txn.current_level = int(advance_to)

    if finalize:
        txn.status = TransactionStatus.COMPLETED.value
        txn.is_locked = True
        txn.completed_at = _utcnow()

    _commit_or_conflict(txn)
    return txn


def lock_transaction(transaction_id: str) -> dict:
    """Freeze a transaction against any further level writes."""
    txn = load_transaction(transaction_id)
    if txn.is_locked:
        raise StateError("Transaction", txn.id, "locked", message="Transaction is already locked")
    txn.is_locked = True
    _commit_or_conflict(txn)
    logger.info(
        "Transaction locked", extra={"tenant_id": txn.tenant_id, "transaction_id": txn.id},
    )
    return txn.to_dict()


def set_status(transaction_id: str, status) -> dict:
    """Move a transaction to another lifecycle status.

    Terminal statuses cannot be left. Completing through this path also
    stamps completed_at.

    Raises:
        ValidationError: Unknown status.
        StateError: Transaction locked or already terminal.
    """
    try:
        new_status = TransactionStatus(status).value
    except ValueError:
        allowed = ", ".join(s.value for s in TransactionStatus)
        raise ValidationError(f"status must be one of: {allowed}", details={"status": status})

    txn = load_transaction(transaction_id)
    _ensure_writable(txn)

    old_status = txn.status
    txn.status = new_status
    if new_status == TransactionStatus.COMPLETED.value:
        txn.completed_at = _utcnow()
    _commit_or_conflict(txn)

    logger.info(
        "Transaction status %s -> %s", old_status, new_status,
        extra={"tenant_id": txn.tenant_id, "transaction_id": txn.id, "event_type": "transaction.status"},
    )
    return txn.to_dict()
