"""
TenantModel: Abstract base class for tenant-scoped models.

Workflow configuration rows and transactions both belong to a tenant.
This adds:
  - tenant_id column with index
  - query_for_tenant(tenant_id) classmethod
  - shared id / timestamp helpers
"""

import uuid
from datetime import datetime, timezone

from scrapops.models import db


def _uuid():
    """Generate a UUID4 string for primary keys."""
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class TenantModel(db.Model):
    """Abstract base for tenant-scoped tables."""
    __abstract__ = True

    tenant_id = db.Column(db.String(36), nullable=False, index=True)

    @classmethod
    def query_for_tenant(cls, tenant_id):
        """Return a query filtered by tenant_id."""
        return cls.query.filter_by(tenant_id=tenant_id)
