"""
TenantModel — abstract base class for tenant-scoped models.

Every table except ``tenants`` inherits from TenantModel instead of
db.Model directly. This adds:
  - tenant_id FK column with index
  - query_for_tenant(tenant_id) classmethod
"""

from practicehub.models import db


class TenantModel(db.Model):
    """Abstract base for tenant-scoped tables."""
    __abstract__ = True

    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    @classmethod
    def query_for_tenant(cls, tenant_id):
        """Return a query filtered by tenant_id."""
        return cls.query.filter_by(tenant_id=tenant_id)
