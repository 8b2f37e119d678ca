"""
PracticeHub Core
Retainer domain models.

Models:
    - Retainer: recurring agreement with a customer (optimistic lock)
    - RetainerPeriod: one billing window of a retainer (optimistic lock)

Period boundaries are inclusive: a period covers every day from
``period_start`` to ``period_end`` and its successor starts the next day.
"""

import calendar
from datetime import date, datetime, timedelta, timezone
from enum import Enum

from practicehub.models import db
from practicehub.models.base import TenantModel


class RetainerType(str, Enum):
    HOUR_BANK = "HOUR_BANK"
    FIXED_FEE = "FIXED_FEE"


class RolloverPolicy(str, Enum):
    FORFEIT = "FORFEIT"
    ROLLOVER = "ROLLOVER"


class RetainerStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    TERMINATED = "TERMINATED"


class PeriodStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


LIVE_RETAINER_STATUSES = (RetainerStatus.ACTIVE.value, RetainerStatus.PAUSED.value)

# Frequency → (days, months); exactly one side is non-zero.
FREQUENCY_STEPS = {
    "WEEKLY":        (7, 0),
    "FORTNIGHTLY":   (14, 0),
    "MONTHLY":       (0, 1),
    "QUARTERLY":     (0, 3),
    "SEMI_ANNUALLY": (0, 6),
    "ANNUALLY":      (0, 12),
}


def _add_months(d: date, months: int) -> date:
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def period_end_for(start: date, frequency: str) -> date:
    """Inclusive last day of a period that starts on *start*."""
    try:
        days, months = FREQUENCY_STEPS[frequency]
    except KeyError:
        raise ValueError(f"Unknown retainer frequency: {frequency}") from None
    if months:
        return _add_months(start, months) - timedelta(days=1)
    return start + timedelta(days=days - 1)


class Retainer(TenantModel):
    """
    A recurring agreement.

    HOUR_BANK retainers carry ``allocated_hours`` and a rollover policy;
    FIXED_FEE retainers carry only the fee. At most one ACTIVE or PAUSED
    retainer exists per customer (partial unique index below).
    """

    __tablename__ = "retainers"
    __table_args__ = (
        db.Index(
            "uq_retainers_one_live_per_customer",
            "customer_id",
            unique=True,
            sqlite_where=db.text("status IN ('ACTIVE', 'PAUSED')"),
            postgresql_where=db.text("status IN ('ACTIVE', 'PAUSED')"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(
        db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    type = db.Column(db.String(20), nullable=False)
    frequency = db.Column(db.String(20), nullable=False, default="MONTHLY")
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True)
    allocated_hours = db.Column(db.Numeric(10, 2), nullable=True)
    period_fee = db.Column(db.Numeric(12, 2), nullable=True)
    rollover_policy = db.Column(db.String(20), nullable=False, default=RolloverPolicy.FORFEIT.value)
    rollover_cap_hours = db.Column(db.Numeric(10, 2), nullable=True)
    status = db.Column(db.String(20), nullable=False, default=RetainerStatus.ACTIVE.value)
    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(64), nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    customer = db.relationship("Customer")
    periods = db.relationship(
        "RetainerPeriod", back_populates="retainer",
        cascade="all, delete-orphan",
        order_by="RetainerPeriod.period_start",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_hour_bank(self) -> bool:
        return self.type == RetainerType.HOUR_BANK.value

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "customer_id": self.customer_id,
            "name": self.name,
            "type": self.type,
            "frequency": self.frequency,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "allocated_hours": _dec(self.allocated_hours),
            "period_fee": _dec(self.period_fee),
            "rollover_policy": self.rollover_policy,
            "rollover_cap_hours": _dec(self.rollover_cap_hours),
            "status": self.status,
            "notes": self.notes,
            "created_by": self.created_by,
            "version": self.version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Retainer {self.id}: {self.name} [{self.type}/{self.status}]>"


class RetainerPeriod(TenantModel):
    """
    One billing window.

    OPEN periods accumulate consumption; closing fixes consumed, overage
    and rollover figures and links the generated invoice draft. Hour
    fields stay null for FIXED_FEE retainers.
    """

    __tablename__ = "retainer_periods"
    __table_args__ = (
        db.UniqueConstraint("retainer_id", "period_start", name="uq_retainer_period_start"),
        db.Index("ix_retainer_periods_status_end", "tenant_id", "status", "period_end"),
    )

    id = db.Column(db.Integer, primary_key=True)
    retainer_id = db.Column(
        db.Integer, db.ForeignKey("retainers.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    period_start = db.Column(db.Date, nullable=False)
    period_end = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=PeriodStatus.OPEN.value)
    allocated_hours = db.Column(db.Numeric(10, 2), nullable=True)
    base_allocated_hours = db.Column(db.Numeric(10, 2), nullable=True)
    rollover_hours_in = db.Column(db.Numeric(10, 2), nullable=True)
    consumed_hours = db.Column(db.Numeric(10, 2), nullable=True)
    overage_hours = db.Column(db.Numeric(10, 2), nullable=True)
    rollover_hours_out = db.Column(db.Numeric(10, 2), nullable=True)
    remaining_hours = db.Column(db.Numeric(10, 2), nullable=True)
    # Plain column: invoices.retainer_period_id already carries the FK
    invoice_id = db.Column(db.Integer, nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_by = db.Column(db.String(64), nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    retainer = db.relationship("Retainer", back_populates="periods")

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN.value

    def to_dict(self):
        return {
            "id": self.id,
            "retainer_id": self.retainer_id,
            "period_start": self.period_start.isoformat() if self.period_start else None,
            "period_end": self.period_end.isoformat() if self.period_end else None,
            "status": self.status,
            "allocated_hours": _dec(self.allocated_hours),
            "base_allocated_hours": _dec(self.base_allocated_hours),
            "rollover_hours_in": _dec(self.rollover_hours_in),
            "consumed_hours": _dec(self.consumed_hours),
            "overage_hours": _dec(self.overage_hours),
            "rollover_hours_out": _dec(self.rollover_hours_out),
            "remaining_hours": _dec(self.remaining_hours),
            "invoice_id": self.invoice_id,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "closed_by": self.closed_by,
            "version": self.version,
        }

    def __repr__(self):
        return f"<RetainerPeriod {self.id}: {self.period_start}..{self.period_end} [{self.status}]>"


def _dec(value):
    return None if value is None else str(value)
