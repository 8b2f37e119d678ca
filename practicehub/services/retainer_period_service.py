"""
Retainer Period Reconciler.

Closes a finished retainer period and, in one transaction:
  1. fixes consumed hours from approved billable time in the period
  2. computes overage and rollover (HOUR_BANK only)
  3. creates the invoice draft (base fee + overage at the rate in force
     on the period end date)
  4. opens the successor period, or terminates the retainer when its
     end date has been reached

Any failure rolls all of it back. A period that is no longer OPEN is
rejected with ConflictError, so retrying a close can never produce a
second invoice; ``invoices.retainer_period_id`` is unique as a backstop.

Rollover:
    FORFEIT   rollover_out = 0
    ROLLOVER  rollover_out = min(unused, cap)   (no cap = unused)
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from practicehub.core.exceptions import ConflictError, ReconciliationError, ValidationError
from practicehub.models import db
from practicehub.models.audit import write_audit
from practicehub.models.auth import Tenant
from practicehub.models.customer import Customer
from practicehub.models.retainer import (
    PeriodStatus,
    Retainer,
    RetainerPeriod,
    RetainerStatus,
    RolloverPolicy,
    period_end_for,
)
from practicehub.services import invoice_service, prerequisite_service, time_entry_service
from practicehub.services.helpers.scoped_queries import get_scoped
from practicehub.services.helpers.transactions import check_expected_version, stale_conflict
from practicehub.services.notification import NotificationService
from practicehub.utils.errors import E
from practicehub.utils.helpers import quantize_2

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class PeriodFigures:
    """Outcome of reconciling one period. Hour fields are None for FIXED_FEE."""
    consumed_hours: Decimal
    allocated_hours: Decimal | None
    overage_hours: Decimal | None
    rollover_hours_out: Decimal | None
    remaining_hours: Decimal | None


@dataclass
class CloseResult:
    closed_period: RetainerPeriod
    next_period: RetainerPeriod | None
    invoice_id: int
    retainer_status: str

    def to_dict(self) -> dict:
        return {
            "closed_period": self.closed_period.to_dict(),
            "next_period": self.next_period.to_dict() if self.next_period else None,
            "invoice_draft_id": self.invoice_id,
            "retainer_status": self.retainer_status,
        }


# ═════════════════════════════════════════════════════════════════════════════
# Calculation
# ═════════════════════════════════════════════════════════════════════════════

def compute_figures(retainer: Retainer, period: RetainerPeriod, consumed: Decimal) -> PeriodFigures:
    """Pure arithmetic over a period's allocation and consumption."""
    consumed = quantize_2(consumed)
    if not retainer.is_hour_bank:
        return PeriodFigures(consumed, None, None, None, None)

    allocated = quantize_2(period.allocated_hours or ZERO)
    overage = max(ZERO, consumed - allocated)
    unused = max(ZERO, allocated - consumed)

    if retainer.rollover_policy == RolloverPolicy.ROLLOVER.value:
        cap = retainer.rollover_cap_hours
        rollover_out = unused if cap is None else min(unused, quantize_2(cap))
    else:
        rollover_out = ZERO

    return PeriodFigures(
        consumed_hours=consumed,
        allocated_hours=allocated,
        overage_hours=quantize_2(overage),
        rollover_hours_out=quantize_2(rollover_out),
        remaining_hours=quantize_2(unused),
    )


def _org_currency(tenant_id: int) -> str:
    tenant = db.session.get(Tenant, tenant_id)
    default = current_app.config.get("DEFAULT_CURRENCY", "ZAR")
    return tenant.setting("default_currency", default) if tenant else default


def _readiness(retainer: Retainer, period: RetainerPeriod, today: date) -> tuple[bool, dict]:
    pending = time_entry_service.count_pending_approvals(
        period.tenant_id, retainer.customer_id, period.period_start, period.period_end,
    )
    end_passed = period.period_end <= today
    return end_passed and pending == 0, {
        "period_end": period.period_end.isoformat(),
        "period_end_passed": end_passed,
        "pending_approvals": pending,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Close
# ═════════════════════════════════════════════════════════════════════════════

def _build_lines(retainer, period, figures, rate) -> list[invoice_service.DraftLine]:
    lines = [invoice_service.DraftLine(
        line_type="RETAINER_FEE",
        description=f"{retainer.name}: {period.period_start.isoformat()} to {period.period_end.isoformat()}",
        quantity=Decimal("1"),
        unit_price=retainer.period_fee,
    )]
    if figures.overage_hours and figures.overage_hours > 0:
        lines.append(invoice_service.DraftLine(
            line_type="OVERAGE",
            description=f"Overage: {figures.overage_hours} hours at {quantize_2(rate.hourly_rate)}/hour",
            quantity=figures.overage_hours,
            unit_price=rate.hourly_rate,
        ))
    return lines


def _open_successor(retainer: Retainer, closed: RetainerPeriod, figures: PeriodFigures) -> RetainerPeriod:
    start = closed.period_end + timedelta(days=1)
    successor = RetainerPeriod(
        tenant_id=retainer.tenant_id,
        period_start=start,
        period_end=period_end_for(start, retainer.frequency),
        status=PeriodStatus.OPEN.value,
    )
    if retainer.is_hour_bank:
        rollover_in = figures.rollover_hours_out or ZERO
        successor.rollover_hours_in = rollover_in
        successor.base_allocated_hours = quantize_2(retainer.allocated_hours)
        successor.allocated_hours = quantize_2(retainer.allocated_hours + rollover_in)
    retainer.periods.append(successor)
    return successor


def close_period(
    tenant_id: int,
    retainer_id: int,
    period_id: int,
    actor_id: str,
    *,
    today: date | None = None,
    expected_version: int | None = None,
) -> CloseResult:
    """
    Close one period, draft its invoice and roll into the next period.

    Raises:
        NotFoundError: retainer or period missing, or period of another retainer.
        ConflictError: period not OPEN (ERR_PERIOD_ALREADY_CLOSED) or stale.
        ValidationError: not ready, no fee, no billing rate, currency mismatch.
        DependencyError: customer not ready for invoicing.
        ReconciliationError: persistence failed; everything rolled back.
    """
    today = today or date.today()
    retainer = get_scoped(Retainer, retainer_id, tenant_id=tenant_id)
    period = get_scoped(RetainerPeriod, period_id, tenant_id=tenant_id, retainer_id=retainer.id)
    log_extra = {"tenant_id": tenant_id, "retainer_id": retainer.id, "period_id": period.id}

    if not period.is_open:
        raise ConflictError(
            f"Period {period.id} is already {period.status}",
            code=E.PERIOD_ALREADY_CLOSED,
            details={"invoice_id": period.invoice_id},
        )
    check_expected_version(period, expected_version, "RetainerPeriod")

    ready, readiness = _readiness(retainer, period, today)
    if not ready:
        raise ValidationError(
            f"Period {period.id} is not ready to close",
            code=E.PERIOD_NOT_READY,
            details=readiness,
        )
    if retainer.period_fee is None:
        raise ValidationError(
            "Period fee must be set before closing a period", code=E.VALIDATION_CONSTRAINT,
        )

    customer = get_scoped(Customer, retainer.customer_id, tenant_id=tenant_id)
    consumed = time_entry_service.sum_approved_hours(
        tenant_id, customer.id, period.period_start, period.period_end,
    )
    figures = compute_figures(retainer, period, consumed)

    currency = _org_currency(tenant_id)
    rate = None
    if figures.overage_hours and figures.overage_hours > 0:
        rate = invoice_service.resolve_overage_rate(tenant_id, customer.id, period.period_end)
        if rate is None:
            raise ValidationError(
                f"No billing rate configured for {customer.name} or as org default",
                code=E.BILLING_RATE_MISSING,
            )
        if rate.currency != currency:
            raise ValidationError(
                f"Billing rate currency ({rate.currency}) does not match organisation currency ({currency})",
                code=E.CURRENCY_MISMATCH,
            )

    next_start = period.period_end + timedelta(days=1)
    successor = None
    try:
        period.status = PeriodStatus.CLOSED.value
        period.consumed_hours = figures.consumed_hours
        period.overage_hours = figures.overage_hours
        period.rollover_hours_out = figures.rollover_hours_out
        period.remaining_hours = figures.remaining_hours
        period.closed_at = datetime.now(timezone.utc)
        period.closed_by = actor_id
        # Version check on the period happens here, before anything else is written
        db.session.flush()

        invoice = invoice_service.create_draft(
            tenant_id=tenant_id,
            customer_id=customer.id,
            currency=currency,
            lines=_build_lines(retainer, period, figures, rate),
            created_by=actor_id,
            retainer_period_id=period.id,
            issue_date=today,
        )
        period.invoice_id = invoice.id

        write_audit(
            tenant_id=tenant_id, entity_type="retainer_period", entity_id=period.id,
            action="retainer.period.closed", actor=actor_id,
            diff={"consumed_hours": figures.consumed_hours, "overage_hours": figures.overage_hours,
                  "rollover_hours_out": figures.rollover_hours_out, "invoice_id": invoice.id},
        )
        write_audit(
            tenant_id=tenant_id, entity_type="invoice", entity_id=invoice.id,
            action="retainer.invoice.generated", actor=actor_id,
            diff={"retainer_period_id": period.id, "subtotal": invoice.subtotal,
                  "currency": currency},
        )

        # A TERMINATED retainer gets its final bill and no successor
        if retainer.status == RetainerStatus.TERMINATED.value:
            successor = None
        elif retainer.end_date is not None and next_start > retainer.end_date:
            retainer.status = RetainerStatus.TERMINATED.value
            write_audit(
                tenant_id=tenant_id, entity_type="retainer", entity_id=retainer.id,
                action="retainer.terminated", actor=actor_id,
                diff={"reason": "end_date_reached", "end_date": retainer.end_date},
            )
        else:
            successor = _open_successor(retainer, period, figures)
            db.session.flush()
            write_audit(
                tenant_id=tenant_id, entity_type="retainer_period", entity_id=successor.id,
                action="retainer.period.opened", actor=actor_id,
                diff={"period_start": successor.period_start, "period_end": successor.period_end,
                      "rollover_hours_in": successor.rollover_hours_in},
            )

        db.session.flush()
        prerequisite_service.require_prerequisites(
            tenant_id, prerequisite_service.PrerequisiteContext.INVOICE_GENERATION,
            "CUSTOMER", customer.id,
        )
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        logger.info("Stale close of period %s rolled back", period_id, extra=log_extra)
        raise stale_conflict("RetainerPeriod", period_id) from None
    except IntegrityError:
        db.session.rollback()
        logger.info("Concurrent close of period %s rolled back", period_id, extra=log_extra)
        raise ConflictError(
            f"Period {period_id} was closed concurrently", code=E.PERIOD_ALREADY_CLOSED,
        ) from None
    except (ValidationError, ConflictError):
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Closing period %s failed; rolled back", period_id, extra=log_extra)
        raise ReconciliationError(f"Closing period {period_id} failed and was rolled back") from exc

    logger.info(
        "Period %s closed: consumed=%s overage=%s rollover=%s invoice=%s next=%s",
        period.id, figures.consumed_hours, figures.overage_hours, figures.rollover_hours_out,
        invoice.id, successor.id if successor else None,
        extra={**log_extra, "invoice_id": invoice.id},
    )
    NotificationService.notify_event(
        tenant_id=tenant_id,
        event_type="retainer.period.closed",
        title=f"Retainer period closed for {customer.name}",
        message=f"{period.period_start.isoformat()} to {period.period_end.isoformat()}",
        category="retainer",
        entity_type="retainer_period",
        entity_id=period.id,
        payload={"invoice_id": invoice.id, "retainer_id": retainer.id},
    )
    return CloseResult(
        closed_period=period,
        next_period=successor,
        invoice_id=invoice.id,
        retainer_status=retainer.status,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════

def list_periods(tenant_id: int, retainer_id: int) -> list[RetainerPeriod]:
    get_scoped(Retainer, retainer_id, tenant_id=tenant_id)
    return (
        RetainerPeriod.query_for_tenant(tenant_id)
        .filter_by(retainer_id=retainer_id)
        .order_by(RetainerPeriod.period_start)
        .all()
    )


def get_current_period(tenant_id: int, retainer_id: int, *, today: date | None = None) -> dict | None:
    """The OPEN period with live consumption figures, or None."""
    retainer = get_scoped(Retainer, retainer_id, tenant_id=tenant_id)
    period = (
        RetainerPeriod.query_for_tenant(tenant_id)
        .filter_by(retainer_id=retainer.id, status=PeriodStatus.OPEN.value)
        .order_by(RetainerPeriod.period_start)
        .first()
    )
    if period is None:
        return None

    consumed = time_entry_service.sum_approved_hours(
        tenant_id, retainer.customer_id, period.period_start, period.period_end,
    )
    figures = compute_figures(retainer, period, consumed)
    ready, readiness = _readiness(retainer, period, today or date.today())
    data = period.to_dict()
    data.update({
        "consumed_hours": str(figures.consumed_hours),
        "remaining_hours": None if figures.remaining_hours is None else str(figures.remaining_hours),
        "projected_overage_hours": None if figures.overage_hours is None else str(figures.overage_hours),
        "ready_to_close": ready,
        "readiness": readiness,
    })
    return data


def find_periods_ready_to_close(tenant_id: int, *, today: date | None = None) -> list[dict]:
    """OPEN periods whose end date has passed and that have no pending approvals."""
    today = today or date.today()
    rows = (
        db.session.query(RetainerPeriod, Retainer)
        .join(Retainer, RetainerPeriod.retainer_id == Retainer.id)
        .filter(
            RetainerPeriod.tenant_id == tenant_id,
            RetainerPeriod.status == PeriodStatus.OPEN.value,
            RetainerPeriod.period_end <= today,
        )
        .order_by(RetainerPeriod.period_end, RetainerPeriod.id)
        .all()
    )
    ready = []
    for period, retainer in rows:
        is_ready, readiness = _readiness(retainer, period, today)
        if not is_ready:
            continue
        ready.append({
            "period": period.to_dict(),
            "retainer_id": retainer.id,
            "retainer_name": retainer.name,
            "customer_id": retainer.customer_id,
            "retainer_status": retainer.status,
        })
    return ready
