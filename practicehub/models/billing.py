"""
PracticeHub Core
Billing collaborator models.

Models:
    - TimeEntry: recorded work against a customer, with approval state
    - BillingRate: hourly rate per customer / member, or org default
    - Invoice / InvoiceLine: drafts produced by the period reconciler

Only the fields the reconciler reads or writes are modelled here; time
capture, rate management and invoice delivery live in other services.
"""

from datetime import datetime, timezone

from practicehub.models import db
from practicehub.models.base import TenantModel

APPROVAL_STATUSES = {"PENDING", "APPROVED", "REJECTED"}
INVOICE_STATUSES = {"DRAFT", "ISSUED", "VOID"}
INVOICE_LINE_TYPES = {"RETAINER_FEE", "OVERAGE"}


class TimeEntry(TenantModel):
    __tablename__ = "time_entries"
    __table_args__ = (
        db.Index("ix_time_entries_customer_date", "customer_id", "entry_date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(
        db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
    )
    member_id = db.Column(db.String(64), nullable=False)
    entry_date = db.Column(db.Date, nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False)
    billable = db.Column(db.Boolean, nullable=False, default=True)
    approval_status = db.Column(db.String(20), nullable=False, default="PENDING")
    description = db.Column(db.Text, default="")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "member_id": self.member_id,
            "entry_date": self.entry_date.isoformat() if self.entry_date else None,
            "duration_minutes": self.duration_minutes,
            "billable": self.billable,
            "approval_status": self.approval_status,
            "description": self.description or "",
        }


class BillingRate(TenantModel):
    """
    Hourly rate.

    ``customer_id`` NULL is an org default; ``member_id`` NULL applies to
    any member. ``effective_to`` NULL is open-ended.
    """

    __tablename__ = "billing_rates"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(
        db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )
    member_id = db.Column(db.String(64), nullable=True)
    currency = db.Column(db.String(3), nullable=False)
    hourly_rate = db.Column(db.Numeric(12, 2), nullable=False)
    effective_from = db.Column(db.Date, nullable=False)
    effective_to = db.Column(db.Date, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "member_id": self.member_id,
            "currency": self.currency,
            "hourly_rate": str(self.hourly_rate) if self.hourly_rate is not None else None,
            "effective_from": self.effective_from.isoformat() if self.effective_from else None,
            "effective_to": self.effective_to.isoformat() if self.effective_to else None,
        }


class Invoice(TenantModel):
    """
    Invoice draft.

    ``retainer_period_id`` is unique so one period can never own two
    invoices, whatever the callers do.
    """

    __tablename__ = "invoices"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(
        db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    retainer_period_id = db.Column(
        db.Integer, db.ForeignKey("retainer_periods.id", ondelete="SET NULL"),
        nullable=True, unique=True,
    )
    status = db.Column(db.String(20), nullable=False, default="DRAFT")
    currency = db.Column(db.String(3), nullable=False)
    issue_date = db.Column(db.Date, nullable=True)
    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    lines = db.relationship(
        "InvoiceLine", back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLine.sort_order",
    )

    def to_dict(self, include_lines=True):
        d = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "customer_id": self.customer_id,
            "retainer_period_id": self.retainer_period_id,
            "status": self.status,
            "currency": self.currency,
            "issue_date": self.issue_date.isoformat() if self.issue_date else None,
            "subtotal": str(self.subtotal) if self.subtotal is not None else None,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_lines:
            d["lines"] = [line.to_dict() for line in self.lines]
        return d

    def __repr__(self):
        return f"<Invoice {self.id}: customer={self.customer_id} [{self.status}]>"


class InvoiceLine(TenantModel):
    __tablename__ = "invoice_lines"

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(
        db.Integer, db.ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    line_type = db.Column(db.String(20), nullable=False)
    description = db.Column(db.String(500), nullable=False)
    quantity = db.Column(db.Numeric(10, 2), nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    invoice = db.relationship("Invoice", back_populates="lines")

    def to_dict(self):
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "line_type": self.line_type,
            "description": self.description,
            "quantity": str(self.quantity),
            "unit_price": str(self.unit_price),
            "amount": str(self.amount),
            "sort_order": self.sort_order,
        }
