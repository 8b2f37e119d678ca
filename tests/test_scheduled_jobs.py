"""
tests/test_scheduled_jobs.py — job registry, scheduled reports, health.

Jobs run in their own app context, so test data is committed first.
"""

from datetime import date, datetime, timedelta, timezone

from practicehub.models import db
from practicehub.models.customer import LifecycleStatus
from practicehub.models.notification import Notification
from practicehub.services.notification import NotificationService
from practicehub.services.scheduler_service import SchedulerService, get_registered_jobs


def _idle_customer(make_customer, name, days):
    customer = make_customer(name, status=LifecycleStatus.ACTIVE)
    customer.last_activity_at = datetime.now(timezone.utc) - timedelta(days=days)
    db.session.commit()
    return customer


# ═════════════════════════════════════════════════════════════════════════
# Registry & runner
# ═════════════════════════════════════════════════════════════════════════

class TestRunner:
    def test_jobs_registered(self):
        assert {"dormancy_scan", "retainer_periods_ready"} <= set(get_registered_jobs())

    def test_unknown_job(self):
        run = SchedulerService.run_job("does_not_exist")
        assert run["status"] == "error"
        assert "Unknown job" in run["error"]

    def test_failing_job_is_reported(self, monkeypatch):
        def _boom(tenant_id):
            raise RuntimeError("scan exploded")

        monkeypatch.setattr("practicehub.services.dormancy_service.scan", _boom)
        run = SchedulerService.run_job("dormancy_scan")

        assert run["status"] == "failed"
        assert run["error"] == "scan exploded"

    def test_last_run_listed(self):
        SchedulerService.run_job("retainer_periods_ready")
        jobs = {j["job_name"]: j for j in SchedulerService.list_jobs()}
        assert jobs["retainer_periods_ready"]["last_run"]["status"] == "success"


# ═════════════════════════════════════════════════════════════════════════
# Jobs
# ═════════════════════════════════════════════════════════════════════════

class TestDormancyJob:
    def test_reports_and_notifies(self, tenant, make_customer):
        _idle_customer(make_customer, "Idle One", 200)
        _idle_customer(make_customer, "Idle Two", 100)
        _idle_customer(make_customer, "Busy", 3)

        run = SchedulerService.run_job("dormancy_scan")

        assert run["status"] == "success"
        assert run["result"]["candidates"] == 2
        assert run["result"]["notifications_created"] == 1
        notif = Notification.query.filter_by(event_type="customer.dormancy.candidates").one()
        assert notif.tenant_id == tenant.id
        assert notif.severity == "warning"
        assert notif.message == "Idle One, Idle Two"

    def test_nothing_to_report(self, tenant):
        run = SchedulerService.run_job("dormancy_scan")
        assert run["result"] == {"tenants_scanned": 1, "candidates": 0, "notifications_created": 0}
        assert NotificationService.list_for_tenant(tenant.id)[1] == 0

    def test_does_not_transition(self, tenant, make_customer):
        customer = _idle_customer(make_customer, "Idle One", 200)
        SchedulerService.run_job("dormancy_scan")
        db.session.refresh(customer)
        assert customer.lifecycle_status == "ACTIVE"


class TestPeriodsReadyJob:
    def test_reports_ready_periods(self, tenant, make_retainer):
        retainer = make_retainer(start_date=date(2024, 1, 1))
        period_id = retainer.periods[0].id

        run = SchedulerService.run_job("retainer_periods_ready")

        assert run["result"]["periods_ready"] == 1
        items, total = NotificationService.list_for_tenant(tenant.id, category="retainer")
        assert total == 1
        assert items[0].payload == {"period_ids": [period_id]}
        db.session.refresh(retainer.periods[0])
        assert retainer.periods[0].status == "OPEN"


# ═════════════════════════════════════════════════════════════════════════
# Health
# ═════════════════════════════════════════════════════════════════════════

class TestHealth:
    def test_ready(self, client):
        rv = client.get("/api/v1/health")
        assert rv.status_code == 200
        assert rv.get_json() == {"status": "ok"}

    def test_live(self, client):
        rv = client.get("/api/v1/health/live")
        assert rv.status_code == 200
        body = rv.get_json()
        assert body["checks"]["database"]["status"] == "ok"
        assert {j["job_name"] for j in body["checks"]["jobs"]} >= {"dormancy_scan", "retainer_periods_ready"}
