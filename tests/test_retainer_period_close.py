"""
tests/test_retainer_period_close.py — Retainer Period Reconciler.

Covers: consumption, overage and rollover arithmetic, invoice draft
        lines, successor periods, readiness, end-date termination, rate
        resolution, atomicity on failure, idempotent re-close, reads,
        HTTP contract.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError

from practicehub.core.exceptions import (
    ConflictError,
    DependencyError,
    NotFoundError,
    ReconciliationError,
    ValidationError,
)
from practicehub.models import db
from practicehub.models.billing import BillingRate, Invoice, TimeEntry
from practicehub.models.notification import Notification
from practicehub.models.retainer import Retainer, RetainerPeriod
from practicehub.services import invoice_service, retainer_period_service, retainer_service

ACTOR = "member-1"
AFTER_JANUARY = date(2026, 2, 1)


def _add_time(retainer, hours, *, on=date(2026, 1, 15), status="APPROVED", billable=True):
    db.session.add(TimeEntry(
        tenant_id=retainer.tenant_id, customer_id=retainer.customer_id, member_id=ACTOR,
        entry_date=on, duration_minutes=int(Decimal(str(hours)) * 60),
        billable=billable, approval_status=status,
    ))
    db.session.commit()


def _add_rate(tenant_id, rate, *, customer_id=None, member_id=None, currency="ZAR",
              effective_from=date(2025, 1, 1), effective_to=None):
    db.session.add(BillingRate(
        tenant_id=tenant_id, customer_id=customer_id, member_id=member_id, currency=currency,
        hourly_rate=Decimal(rate), effective_from=effective_from, effective_to=effective_to,
    ))
    db.session.commit()


def _first_period(retainer):
    return retainer.periods[0]


def _close(retainer, today=AFTER_JANUARY, **kw):
    return retainer_period_service.close_period(
        retainer.tenant_id, retainer.id, _first_period(retainer).id, ACTOR, today=today, **kw,
    )


# ═════════════════════════════════════════════════════════════════════════
# Arithmetic
# ═════════════════════════════════════════════════════════════════════════

class TestHourBankClose:
    def test_overage_with_forfeit(self, tenant, make_retainer):
        retainer = make_retainer()
        _add_time(retainer, 48)
        _add_rate(tenant.id, "1500")

        result = _close(retainer)

        closed = result.closed_period
        assert closed.status == "CLOSED"
        assert closed.consumed_hours == Decimal("48.00")
        assert closed.overage_hours == Decimal("8.00")
        assert closed.rollover_hours_out == Decimal("0.00")
        assert closed.remaining_hours == Decimal("0.00")
        assert closed.closed_by == ACTOR
        assert result.next_period.allocated_hours == Decimal("40.00")
        assert result.next_period.rollover_hours_in == Decimal("0.00")

    def test_invoice_lines(self, tenant, make_retainer):
        retainer = make_retainer()
        _add_time(retainer, 48)
        _add_rate(tenant.id, "1500")

        result = _close(retainer)

        invoice = db.session.get(Invoice, result.invoice_id)
        assert invoice.status == "DRAFT"
        assert invoice.currency == "ZAR"
        assert invoice.retainer_period_id == result.closed_period.id
        assert [line.line_type for line in invoice.lines] == ["RETAINER_FEE", "OVERAGE"]
        fee, overage = invoice.lines
        assert fee.description == "Monthly support: 2026-01-01 to 2026-01-31"
        assert fee.amount == Decimal("10000.00")
        assert overage.description == "Overage: 8.00 hours at 1500.00/hour"
        assert overage.amount == Decimal("12000.00")
        assert invoice.subtotal == Decimal("22000.00")
        assert result.closed_period.invoice_id == invoice.id

    def test_no_overage_line_under_allocation(self, tenant, make_retainer):
        retainer = make_retainer()
        _add_time(retainer, 12.5)

        result = _close(retainer)

        invoice = db.session.get(Invoice, result.invoice_id)
        assert [line.line_type for line in invoice.lines] == ["RETAINER_FEE"]
        assert result.closed_period.remaining_hours == Decimal("27.50")
        assert result.closed_period.overage_hours == Decimal("0.00")

    @pytest.mark.parametrize("cap, rolled", [("10", "8.00"), ("5", "5.00"), (None, "8.00")])
    def test_rollover_is_capped(self, tenant, make_retainer, cap, rolled):
        retainer = make_retainer(rollover_policy="ROLLOVER", rollover_cap_hours=cap)
        _add_time(retainer, 32)

        result = _close(retainer)

        assert result.closed_period.rollover_hours_out == Decimal(rolled)
        successor = result.next_period
        assert successor.rollover_hours_in == Decimal(rolled)
        assert successor.base_allocated_hours == Decimal("40.00")
        assert successor.allocated_hours == Decimal("40.00") + Decimal(rolled)

    def test_only_approved_billable_time_in_period_counts(self, tenant, make_retainer):
        retainer = make_retainer()
        _add_time(retainer, 10)
        _add_time(retainer, 5, billable=False)
        _add_time(retainer, 7, status="REJECTED")
        _add_time(retainer, 3, on=date(2026, 2, 1))
        _add_time(retainer, 2, on=date(2025, 12, 31))

        result = _close(retainer, today=date(2026, 2, 2))

        assert result.closed_period.consumed_hours == Decimal("10.00")


class TestFixedFeeClose:
    def test_hour_fields_stay_null(self, tenant, make_retainer):
        retainer = make_retainer(type="FIXED_FEE", period_fee="5000")
        _add_time(retainer, 60)

        result = _close(retainer)

        closed = result.closed_period
        assert closed.consumed_hours == Decimal("60.00")
        assert closed.overage_hours is None
        assert closed.rollover_hours_out is None
        assert closed.remaining_hours is None
        assert result.next_period.allocated_hours is None
        invoice = db.session.get(Invoice, result.invoice_id)
        assert invoice.subtotal == Decimal("5000.00")
        assert len(invoice.lines) == 1


# ═════════════════════════════════════════════════════════════════════════
# Successor & termination
# ═════════════════════════════════════════════════════════════════════════

class TestSuccessor:
    def test_next_period_starts_the_day_after(self, tenant, make_retainer):
        retainer = make_retainer()
        result = _close(retainer)
        assert result.next_period.period_start == date(2026, 2, 1)
        assert result.next_period.period_end == date(2026, 2, 28)
        assert result.next_period.status == "OPEN"
        assert result.retainer_status == "ACTIVE"

    def test_quarterly_boundaries(self, tenant, make_retainer):
        retainer = make_retainer(frequency="QUARTERLY", start_date=date(2025, 11, 30))
        assert _first_period(retainer).period_end == date(2026, 2, 27)
        result = _close(retainer, today=date(2026, 3, 1))
        assert result.next_period.period_start == date(2026, 2, 28)

    def test_end_date_terminates_retainer(self, tenant, make_retainer):
        retainer = make_retainer(end_date=date(2026, 1, 31))

        result = _close(retainer)

        assert result.next_period is None
        assert result.retainer_status == "TERMINATED"
        assert db.session.get(Retainer, retainer.id).status == "TERMINATED"
        assert RetainerPeriod.query.filter_by(retainer_id=retainer.id).count() == 1

    def test_terminated_retainer_gets_final_bill(self, tenant, make_retainer):
        retainer = make_retainer()
        retainer_service.terminate_retainer(tenant.id, retainer.id, ACTOR)

        result = _close(retainer)

        assert result.next_period is None
        assert result.retainer_status == "TERMINATED"
        assert Invoice.query.count() == 1

    def test_paused_retainer_keeps_rolling(self, tenant, make_retainer):
        retainer = make_retainer()
        retainer_service.pause_retainer(tenant.id, retainer.id, ACTOR)
        result = _close(retainer)
        assert result.next_period is not None
        assert result.retainer_status == "PAUSED"


# ═════════════════════════════════════════════════════════════════════════
# Rejections
# ═════════════════════════════════════════════════════════════════════════

class TestCloseRejections:
    def test_second_close_conflicts_and_does_not_reinvoice(self, tenant, make_retainer):
        retainer = make_retainer()
        first = _close(retainer)

        with pytest.raises(ConflictError) as exc:
            _close(retainer)

        assert exc.value.code == "ERR_PERIOD_ALREADY_CLOSED"
        assert exc.value.details["invoice_id"] == first.invoice_id
        assert Invoice.query.count() == 1
        assert RetainerPeriod.query.filter_by(retainer_id=retainer.id).count() == 2

    def test_period_end_in_future(self, tenant, make_retainer):
        retainer = make_retainer()
        with pytest.raises(ValidationError) as exc:
            _close(retainer, today=date(2026, 1, 30))
        assert exc.value.code == "ERR_PERIOD_NOT_READY"
        assert exc.value.details["period_end_passed"] is False

    def test_closes_on_last_day(self, tenant, make_retainer):
        retainer = make_retainer()
        assert _close(retainer, today=date(2026, 1, 31)).closed_period.status == "CLOSED"

    def test_pending_approvals_block(self, tenant, make_retainer):
        retainer = make_retainer()
        _add_time(retainer, 2, status="PENDING")
        with pytest.raises(ValidationError) as exc:
            _close(retainer)
        assert exc.value.code == "ERR_PERIOD_NOT_READY"
        assert exc.value.details["pending_approvals"] == 1

    def test_missing_rate_for_overage(self, tenant, make_retainer):
        retainer = make_retainer()
        _add_time(retainer, 41)
        with pytest.raises(ValidationError) as exc:
            _close(retainer)
        assert exc.value.code == "ERR_BILLING_RATE_MISSING"
        assert _first_period(retainer).status == "OPEN"

    def test_rate_currency_mismatch(self, tenant, make_retainer):
        retainer = make_retainer()
        _add_time(retainer, 41)
        _add_rate(tenant.id, "90", currency="USD")
        with pytest.raises(ValidationError) as exc:
            _close(retainer)
        assert exc.value.code == "ERR_CURRENCY_MISMATCH"

    def test_tenant_currency_setting(self, tenant, make_retainer):
        tenant.settings = {"default_currency": "USD"}
        db.session.commit()
        retainer = make_retainer()
        _add_time(retainer, 41)
        _add_rate(tenant.id, "90", currency="USD")

        result = _close(retainer)

        assert db.session.get(Invoice, result.invoice_id).currency == "USD"

    def test_customer_without_email_not_invoiceable(self, tenant, make_customer, make_retainer):
        from practicehub.models.customer import LifecycleStatus

        customer = make_customer(email=None, status=LifecycleStatus.ACTIVE)
        retainer = make_retainer(customer)

        with pytest.raises(DependencyError):
            _close(retainer)

        assert db.session.get(RetainerPeriod, _first_period(retainer).id).status == "OPEN"
        assert Invoice.query.count() == 0
        assert RetainerPeriod.query.filter_by(retainer_id=retainer.id).count() == 1

    def test_stale_expected_version(self, tenant, make_retainer):
        retainer = make_retainer()
        with pytest.raises(ConflictError) as exc:
            _close(retainer, expected_version=_first_period(retainer).version + 1)
        assert exc.value.code == "ERR_STALE_VERSION"

    def test_period_of_another_retainer(self, tenant, make_customer, make_retainer):
        from practicehub.models.customer import LifecycleStatus

        first = make_retainer()
        second = make_retainer(make_customer("Beta Ltd", status=LifecycleStatus.ACTIVE))
        with pytest.raises(NotFoundError):
            retainer_period_service.close_period(
                tenant.id, first.id, _first_period(second).id, ACTOR, today=AFTER_JANUARY,
            )

    def test_persistence_failure_rolls_everything_back(self, tenant, make_retainer, monkeypatch):
        retainer = make_retainer()
        period_id = _first_period(retainer).id

        def _boom(**kwargs):
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr("practicehub.services.invoice_service.create_draft", _boom)

        with pytest.raises(ReconciliationError):
            _close(retainer)

        period = db.session.get(RetainerPeriod, period_id)
        assert period.status == "OPEN"
        assert period.consumed_hours is None
        assert Invoice.query.count() == 0
        assert RetainerPeriod.query.filter_by(retainer_id=retainer.id).count() == 1


# ═════════════════════════════════════════════════════════════════════════
# Rate resolution
# ═════════════════════════════════════════════════════════════════════════

class TestRateResolution:
    def test_customer_rate_beats_org_default(self, tenant, make_customer):
        customer = make_customer()
        _add_rate(tenant.id, "1000")
        _add_rate(tenant.id, "1200", customer_id=customer.id)
        rate = invoice_service.resolve_overage_rate(tenant.id, customer.id, date(2026, 1, 31))
        assert rate.hourly_rate == Decimal("1200.00")

    def test_member_agnostic_customer_rate_first(self, tenant, make_customer):
        customer = make_customer()
        _add_rate(tenant.id, "1400", customer_id=customer.id, member_id="member-9")
        _add_rate(tenant.id, "1100", customer_id=customer.id)
        rate = invoice_service.resolve_overage_rate(tenant.id, customer.id, date(2026, 1, 31))
        assert rate.hourly_rate == Decimal("1100.00")

    def test_rate_in_force_on_period_end(self, tenant, make_customer):
        customer = make_customer()
        _add_rate(tenant.id, "900", effective_to=date(2025, 12, 31))
        _add_rate(tenant.id, "950", effective_from=date(2026, 1, 1))
        rate = invoice_service.resolve_overage_rate(tenant.id, customer.id, date(2026, 1, 31))
        assert rate.hourly_rate == Decimal("950.00")

    def test_member_specific_org_rate_is_not_a_default(self, tenant, make_customer):
        customer = make_customer()
        _add_rate(tenant.id, "700", member_id="member-9")
        assert invoice_service.resolve_overage_rate(tenant.id, customer.id, date(2026, 1, 31)) is None


# ═════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════

class TestPeriodReads:
    def test_current_period_live_figures(self, tenant, make_retainer):
        retainer = make_retainer()
        _add_time(retainer, 45)

        current = retainer_period_service.get_current_period(tenant.id, retainer.id, today=date(2026, 1, 20))

        assert current["consumed_hours"] == "45.00"
        assert current["remaining_hours"] == "0.00"
        assert current["projected_overage_hours"] == "5.00"
        assert current["ready_to_close"] is False
        assert _first_period(retainer).consumed_hours is None

    def test_ready_to_close_listing(self, tenant, make_customer, make_retainer):
        from practicehub.models.customer import LifecycleStatus

        ready = make_retainer()
        blocked = make_retainer(make_customer("Beta Ltd", status=LifecycleStatus.ACTIVE))
        _add_time(blocked, 1, status="PENDING")
        make_retainer(make_customer("Gamma Ltd", status=LifecycleStatus.ACTIVE), start_date=date(2026, 2, 1))

        rows = retainer_period_service.find_periods_ready_to_close(tenant.id, today=AFTER_JANUARY)

        assert [r["retainer_id"] for r in rows] == [ready.id]

    def test_list_periods_in_order(self, tenant, make_retainer):
        retainer = make_retainer()
        _close(retainer)
        periods = retainer_period_service.list_periods(tenant.id, retainer.id)
        assert [p.status for p in periods] == ["CLOSED", "OPEN"]


# ═════════════════════════════════════════════════════════════════════════
# HTTP
# ═════════════════════════════════════════════════════════════════════════

class TestPeriodCloseAPI:
    def test_close_endpoint(self, client, tenant, make_retainer):
        retainer = make_retainer(start_date=date(2024, 1, 1))
        period = _first_period(retainer)

        rv = client.post(
            f"/api/v1/retainers/{retainer.id}/periods/{period.id}/close",
            json={"tenant_id": tenant.id, "actor_id": ACTOR},
        )

        assert rv.status_code == 200
        body = rv.get_json()
        assert body["closed_period"]["status"] == "CLOSED"
        assert body["next_period"]["period_start"] == "2024-02-01"

        rv = client.get(f"/api/v1/invoices/{body['invoice_draft_id']}?tenant_id={tenant.id}")
        assert rv.status_code == 200
        assert rv.get_json()["lines"][0]["line_type"] == "RETAINER_FEE"

    def test_close_twice_is_409(self, client, tenant, make_retainer):
        retainer = make_retainer(start_date=date(2024, 1, 1))
        url = f"/api/v1/retainers/{retainer.id}/periods/{_first_period(retainer).id}/close"
        body = {"tenant_id": tenant.id, "actor_id": ACTOR}
        client.post(url, json=body)
        rv = client.post(url, json=body)
        assert rv.status_code == 409
        assert rv.get_json()["code"] == "ERR_PERIOD_ALREADY_CLOSED"

    def test_close_requires_actor(self, client, tenant, make_retainer):
        retainer = make_retainer(start_date=date(2024, 1, 1))
        rv = client.post(
            f"/api/v1/retainers/{retainer.id}/periods/{_first_period(retainer).id}/close",
            json={"tenant_id": tenant.id},
        )
        assert rv.status_code == 400

    def test_notification_posted(self, client, tenant, make_retainer):
        retainer = make_retainer(start_date=date(2024, 1, 1))
        client.post(
            f"/api/v1/retainers/{retainer.id}/periods/{_first_period(retainer).id}/close",
            json={"tenant_id": tenant.id, "actor_id": ACTOR},
        )
        notif = Notification.query.filter_by(event_type="retainer.period.closed").one()
        assert notif.entity_id == _first_period(retainer).id
