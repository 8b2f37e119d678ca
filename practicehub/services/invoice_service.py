"""
Invoice drafting for the retainer period reconciler.

``create_draft`` only adds and flushes; the caller owns the transaction,
so a failed close never leaves an orphan draft behind.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import or_

from practicehub.models import db
from practicehub.models.billing import BillingRate, Invoice, InvoiceLine
from practicehub.services.helpers.scoped_queries import get_scoped
from practicehub.utils.helpers import quantize_2

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedRate:
    hourly_rate: Decimal
    currency: str
    billing_rate_id: int


@dataclass(frozen=True)
class DraftLine:
    line_type: str
    description: str
    quantity: Decimal
    unit_price: Decimal

    @property
    def amount(self) -> Decimal:
        return quantize_2(self.quantity * self.unit_price)


def _effective_on(query, on: date):
    return query.filter(
        BillingRate.effective_from <= on,
        or_(BillingRate.effective_to.is_(None), BillingRate.effective_to >= on),
    )


def resolve_overage_rate(tenant_id: int, customer_id: int, on: date) -> ResolvedRate | None:
    """
    Hourly rate for overage on *on*.

    Resolution order: customer rates (member-agnostic before
    member-specific), then the org default (no customer, no member).
    Within a tier the most recent ``effective_from`` wins.
    """
    customer_rate = (
        _effective_on(BillingRate.query_for_tenant(tenant_id), on)
        .filter(BillingRate.customer_id == customer_id)
        .order_by(
            BillingRate.member_id.is_not(None),
            BillingRate.effective_from.desc(),
            BillingRate.id.desc(),
        )
        .first()
    )
    rate = customer_rate or (
        _effective_on(BillingRate.query_for_tenant(tenant_id), on)
        .filter(BillingRate.customer_id.is_(None), BillingRate.member_id.is_(None))
        .order_by(BillingRate.effective_from.desc(), BillingRate.id.desc())
        .first()
    )
    if rate is None:
        return None
    return ResolvedRate(hourly_rate=rate.hourly_rate, currency=rate.currency, billing_rate_id=rate.id)


def create_draft(
    *,
    tenant_id: int,
    customer_id: int,
    currency: str,
    lines: list[DraftLine],
    created_by: str,
    retainer_period_id: int | None = None,
    issue_date: date | None = None,
) -> Invoice:
    """Add a DRAFT invoice with its lines and flush. Does not commit."""
    invoice = Invoice(
        tenant_id=tenant_id,
        customer_id=customer_id,
        retainer_period_id=retainer_period_id,
        status="DRAFT",
        currency=currency,
        issue_date=issue_date,
        created_by=created_by,
    )
    subtotal = Decimal("0")
    for sort_order, line in enumerate(lines):
        amount = line.amount
        invoice.lines.append(InvoiceLine(
            tenant_id=tenant_id,
            line_type=line.line_type,
            description=line.description,
            quantity=quantize_2(line.quantity),
            unit_price=quantize_2(line.unit_price),
            amount=amount,
            sort_order=sort_order,
        ))
        subtotal += amount
    invoice.subtotal = quantize_2(subtotal)

    db.session.add(invoice)
    db.session.flush()
    logger.debug(
        "Invoice draft %s flushed (%d lines, subtotal=%s %s)",
        invoice.id, len(lines), invoice.subtotal, currency,
        extra={"tenant_id": tenant_id, "customer_id": customer_id, "invoice_id": invoice.id},
    )
    return invoice


def get_invoice(tenant_id: int, invoice_id: int) -> Invoice:
    return get_scoped(Invoice, invoice_id, tenant_id=tenant_id)
