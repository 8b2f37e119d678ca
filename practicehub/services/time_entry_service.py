"""
Time-entry aggregation used by the retainer period reconciler.

Consumption counts approved, billable entries only; an entry still
awaiting approval blocks a period from closing because the final figure
could still change.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import func, select

from practicehub.models import db
from practicehub.models.billing import TimeEntry
from practicehub.utils.helpers import quantize_2


def _in_range(tenant_id: int, customer_id: int, start: date, end: date):
    return (
        TimeEntry.tenant_id == tenant_id,
        TimeEntry.customer_id == customer_id,
        TimeEntry.entry_date >= start,
        TimeEntry.entry_date <= end,
        TimeEntry.billable.is_(True),
    )


def sum_approved_minutes(tenant_id: int, customer_id: int, start: date, end: date) -> int:
    stmt = select(func.coalesce(func.sum(TimeEntry.duration_minutes), 0)).where(
        *_in_range(tenant_id, customer_id, start, end),
        TimeEntry.approval_status == "APPROVED",
    )
    return int(db.session.execute(stmt).scalar_one())


def sum_approved_hours(tenant_id: int, customer_id: int, start: date, end: date) -> Decimal:
    """Approved billable hours in ``[start, end]``, rounded to 2 places."""
    minutes = sum_approved_minutes(tenant_id, customer_id, start, end)
    return quantize_2(Decimal(minutes) / Decimal(60))


def count_pending_approvals(tenant_id: int, customer_id: int, start: date, end: date) -> int:
    stmt = select(func.count(TimeEntry.id)).where(
        *_in_range(tenant_id, customer_id, start, end),
        TimeEntry.approval_status == "PENDING",
    )
    return int(db.session.execute(stmt).scalar_one())
