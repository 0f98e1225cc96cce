"""
Configuration Store: persistence for WorkflowConfiguration rows.

Storage and retrieval only; business rules (evidence protection, level
bounds, duplicate names) belong to field_configuration_service.

Functions:
    - get_configuration:       Load one row by id (any version)
    - find_configurations:     Scope + activity filtered query
    - find_effective_as_of:    Rows whose effective window contains a timestamp
    - find_active_duplicate:   The active row for a logical field, if any
    - insert_configuration:    Persist version 1 of a new logical field
    - supersede:               Deactivate the current row and insert version + 1
    - version_history:         Every version of the logical field a row belongs to

None of these commit. The calling service owns the transaction boundary,
which is what makes supersede()'s two writes land atomically.
"""

import logging

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError

from scrapops.core.exceptions import ConflictError, NotFoundError
from scrapops.models import db
from scrapops.models.base import _utcnow, _uuid
from scrapops.models.workflow_config import WorkflowConfiguration

logger = logging.getLogger(__name__)


def _scope_filter(stmt, factory_id):
    if factory_id is None:
        return stmt.where(WorkflowConfiguration.factory_id.is_(None))
    return stmt.where(WorkflowConfiguration.factory_id == factory_id)


def get_configuration(config_id: str) -> WorkflowConfiguration:
    """Fetch a configuration row by PK, active or not.

    Raises:
        NotFoundError: If no row has that id.
    """
    row = db.session.get(WorkflowConfiguration, config_id)
    if row is None:
        raise NotFoundError(resource="WorkflowConfiguration", resource_id=config_id)
    return row


def find_configurations(
    tenant_id: str,
    *,
    factory_id: str | None = None,
    operational_level: int | None = None,
    field_name: str | None = None,
    active_only: bool = True,
) -> list[WorkflowConfiguration]:
    """Return rows for exactly one scope.

    factory_id=None selects tenant-wide rows (factory_id IS NULL), not
    "every factory".
    """
    stmt = select(WorkflowConfiguration).where(WorkflowConfiguration.tenant_id == tenant_id)
    stmt = _scope_filter(stmt, factory_id)
    if operational_level is not None:
        stmt = stmt.where(WorkflowConfiguration.operational_level == operational_level)
    if field_name is not None:
        stmt = stmt.where(WorkflowConfiguration.field_name == field_name)
    if active_only:
        stmt = stmt.where(WorkflowConfiguration.is_active.is_(True))
    stmt = stmt.order_by(
        WorkflowConfiguration.operational_level,
        WorkflowConfiguration.display_order,
        WorkflowConfiguration.field_name,
    )
    return list(db.session.execute(stmt).scalars())


def find_effective_as_of(
    tenant_id: str,
    as_of,
    *,
    factory_id: str | None = None,
    operational_level: int | None = None,
) -> list[WorkflowConfiguration]:
    """Return the rows that were in force at ``as_of`` for one scope.

    A row is in force over [effective_from, effective_to); the current row
    has effective_to NULL. is_active is deliberately not consulted.
    """
    stmt = (
        select(WorkflowConfiguration)
        .where(WorkflowConfiguration.tenant_id == tenant_id)
        .where(WorkflowConfiguration.effective_from <= as_of)
        .where(
            or_(
                WorkflowConfiguration.effective_to.is_(None),
                WorkflowConfiguration.effective_to > as_of,
            )
        )
    )
    stmt = _scope_filter(stmt, factory_id)
    if operational_level is not None:
        stmt = stmt.where(WorkflowConfiguration.operational_level == operational_level)
    stmt = stmt.order_by(
        WorkflowConfiguration.operational_level,
        WorkflowConfiguration.display_order,
    )
    return list(db.session.execute(stmt).scalars())


def find_active_duplicate(
    tenant_id: str,
    operational_level: int,
    field_name: str,
    factory_id: str | None,
) -> WorkflowConfiguration | None:
    """Return the active row for (tenant, level, field_name, factory), if any."""
    rows = find_configurations(
        tenant_id,
        factory_id=factory_id,
        operational_level=operational_level,
        field_name=field_name,
    )
    return rows[0] if rows else None


def _flush_or_conflict(row: WorkflowConfiguration) -> None:
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(
            resource="WorkflowConfiguration",
            field="field_name",
            value=row.field_name,
            message=(
                f"Field configuration already exists for '{row.field_name}' "
                f"at level L{row.operational_level} for {row.scope_label}"
            ),
        )


def insert_configuration(values: dict) -> WorkflowConfiguration:
    """Add version 1 of a logical field to the session and flush it."""
    row_id = _uuid()
    row = WorkflowConfiguration(
        **values,
        id=row_id,
        lineage_id=row_id,
        version=1,
        effective_from=_utcnow(),
        effective_to=None,
        is_active=True,
    )
    db.session.add(row)
    _flush_or_conflict(row)
    return row


def supersede(current: WorkflowConfiguration, values: dict) -> WorkflowConfiguration:
    """Replace ``current`` with a new version built from ``values``.

    The deactivation is conditional on the row still being active. If another
    writer got there first, nothing matches and the caller gets a
    ConflictError; it must reload and retry from the new active row.

    Args:
        current: The row the caller loaded and believes is active.
        values: Full definition (scope + semantic columns) of the new version.

    Returns:
        The new, flushed row (new id, version = current.version + 1).

    Raises:
        ConflictError: If current is no longer active, or the insert would
            create a second active row for the same logical field.
    """
    now = _utcnow()
    config_id, version, tenant_id = current.id, current.version, current.tenant_id
    lineage_id = current.lineage_id or config_id
    result = db.session.execute(
        update(WorkflowConfiguration)
        .where(WorkflowConfiguration.id == config_id)
        .where(WorkflowConfiguration.is_active.is_(True))
        .values(is_active=False, effective_to=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        logger.warning(
            "Supersede lost race: config %s is no longer active", config_id,
            extra={"config_id": config_id, "tenant_id": tenant_id},
        )
        raise ConflictError(
            resource="WorkflowConfiguration",
            field="version",
            value=str(version),
            message=(
                f"Field configuration {config_id} (version {version}) "
                "was superseded by another update; reload and retry"
            ),
        )
    db.session.expire(current)

    row = WorkflowConfiguration(
        **values,
        id=_uuid(),
        lineage_id=lineage_id,
        version=version + 1,
        effective_from=now,
        effective_to=None,
        is_active=True,
    )
    db.session.add(row)
    _flush_or_conflict(row)
    return row


def version_history(row: WorkflowConfiguration) -> list[WorkflowConfiguration]:
    """Every version of the logical field ``row`` belongs to, oldest first."""
    stmt = (
        select(WorkflowConfiguration)
        .where(WorkflowConfiguration.lineage_id == (row.lineage_id or row.id))
        .order_by(WorkflowConfiguration.version)
    )
    return list(db.session.execute(stmt).scalars())
