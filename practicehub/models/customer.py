"""
PracticeHub Core
Customer domain model.

Models:
    - Customer: lifecycle-tracked client record (optimistic lock on ``version``)
    - CustomerContact: people at the customer; emails feed the prerequisite gate
    - LifecycleTransition: immutable record of every applied status change

The allowed-edge table lives here as data next to the column it guards;
gating rules and persistence are in services/lifecycle_service.py.
"""

from datetime import datetime, timezone
from enum import Enum

from practicehub.models import db
from practicehub.models.base import TenantModel


class LifecycleStatus(str, Enum):
    PROSPECT = "PROSPECT"
    ONBOARDING = "ONBOARDING"
    ACTIVE = "ACTIVE"
    DORMANT = "DORMANT"
    OFFBOARDING = "OFFBOARDING"
    OFFBOARDED = "OFFBOARDED"


CUSTOMER_TYPES = {"INDIVIDUAL", "COMPANY"}

# ── Lifecycle Transition Guards ──────────────────────────────────────────────

LIFECYCLE_TRANSITIONS: dict[LifecycleStatus, frozenset[LifecycleStatus]] = {
    LifecycleStatus.PROSPECT:    frozenset({LifecycleStatus.ONBOARDING}),
    LifecycleStatus.ONBOARDING:  frozenset({LifecycleStatus.ACTIVE}),
    LifecycleStatus.ACTIVE:      frozenset({LifecycleStatus.DORMANT, LifecycleStatus.OFFBOARDING}),
    LifecycleStatus.DORMANT:     frozenset({LifecycleStatus.ACTIVE, LifecycleStatus.OFFBOARDING}),
    LifecycleStatus.OFFBOARDING: frozenset({LifecycleStatus.OFFBOARDED}),
    LifecycleStatus.OFFBOARDED:  frozenset(),
}

# A status added to the enum without a row in the table would silently
# have no exits; fail at import instead.
_missing = set(LifecycleStatus) - set(LIFECYCLE_TRANSITIONS)
if _missing:
    raise RuntimeError(f"LIFECYCLE_TRANSITIONS has no entry for {sorted(s.value for s in _missing)}")


def validate_lifecycle_transition(old_status, new_status) -> bool:
    """Return True if the customer status edge is in the allowed table."""
    try:
        old, new = LifecycleStatus(old_status), LifecycleStatus(new_status)
    except ValueError:
        return False
    return new in LIFECYCLE_TRANSITIONS[old]


def lifecycle_event_type(target) -> str:
    """``customer.lifecycle.<target>``, e.g. ``customer.lifecycle.dormant``."""
    return f"customer.lifecycle.{LifecycleStatus(target).value.lower()}"


class Customer(TenantModel):
    """
    A client of the practice.

    ``lifecycle_status`` is only ever written by the transition validator.
    ``last_activity_at`` is maintained by the activity feed outside this
    service and is read by the dormancy scan.
    """

    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_tenant_status", "tenant_id", "lifecycle_status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    customer_type = db.Column(db.String(20), nullable=False, default="COMPANY")
    lifecycle_status = db.Column(
        db.String(20), nullable=False, default=LifecycleStatus.PROSPECT.value,
    )
    lifecycle_status_changed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    lifecycle_status_changed_by = db.Column(db.String(64), nullable=True)
    last_activity_at = db.Column(db.DateTime(timezone=True), nullable=True)
    offboarded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    custom_fields = db.Column(db.JSON, default=dict)
    created_by = db.Column(db.String(64), nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    contacts = db.relationship(
        "CustomerContact", back_populates="customer",
        cascade="all, delete-orphan", order_by="CustomerContact.id",
    )
    transitions = db.relationship(
        "LifecycleTransition", back_populates="customer",
        cascade="all, delete-orphan", order_by="LifecycleTransition.id",
        lazy="dynamic",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def status(self) -> LifecycleStatus:
        return LifecycleStatus(self.lifecycle_status)

    def to_dict(self, include_contacts=False):
        d = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "email": self.email,
            "customer_type": self.customer_type,
            "lifecycle_status": self.lifecycle_status,
            "lifecycle_status_changed_at": (
                self.lifecycle_status_changed_at.isoformat()
                if self.lifecycle_status_changed_at else None
            ),
            "lifecycle_status_changed_by": self.lifecycle_status_changed_by,
            "last_activity_at": self.last_activity_at.isoformat() if self.last_activity_at else None,
            "offboarded_at": self.offboarded_at.isoformat() if self.offboarded_at else None,
            "custom_fields": self.custom_fields or {},
            "version": self.version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_contacts:
            d["contacts"] = [c.to_dict() for c in self.contacts]
        return d

    def __repr__(self):
        return f"<Customer {self.id}: {self.name} [{self.lifecycle_status}]>"


class CustomerContact(TenantModel):
    __tablename__ = "customer_contacts"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(
        db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    is_primary = db.Column(db.Boolean, default=False)
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    customer = db.relationship("Customer", back_populates="contacts")

    def to_dict(self):
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "name": self.name,
            "email": self.email,
            "is_primary": self.is_primary,
        }


class LifecycleTransition(TenantModel):
    """
    Immutable record of one applied status change.

    Append-only: rows are written in the same commit as the status change
    and never updated.
    """

    __tablename__ = "lifecycle_transitions"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(
        db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    from_status = db.Column(db.String(20), nullable=False)
    to_status = db.Column(db.String(20), nullable=False)
    event_type = db.Column(db.String(60), nullable=False)
    actor_id = db.Column(db.String(64), nullable=False)
    reason = db.Column(db.Text, nullable=True)
    details = db.Column(db.JSON, default=dict)
    occurred_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    customer = db.relationship("Customer", back_populates="transitions")

    def to_dict(self):
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "event_type": self.event_type,
            "actor_id": self.actor_id,
            "reason": self.reason,
            "details": self.details or {},
            "occurred_at": self.occurred_at.isoformat() if self.occurred_at else None,
        }

    def __repr__(self):
        return f"<LifecycleTransition {self.id}: {self.from_status}->{self.to_status}>"
