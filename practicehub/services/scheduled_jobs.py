"""
PracticeHub Core
Scheduled Jobs.

Jobs:
    - dormancy_scan: report dormancy candidates per tenant
    - retainer_periods_ready: report retainer periods ready to close

Both jobs only report (log + one notification per tenant); they never
transition customers or close periods on their own.
"""

from __future__ import annotations

import logging
from typing import Any

from practicehub.models.auth import Tenant
from practicehub.services import dormancy_service, retainer_period_service
from practicehub.services.notification import NotificationService
from practicehub.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


def _active_tenants() -> list[Tenant]:
    return Tenant.query.filter_by(is_active=True).order_by(Tenant.id).all()


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Dormancy Scan
# ═══════════════════════════════════════════════════════════════════════════

@register_job("dormancy_scan")
def scan_dormant_customers(app) -> dict[str, Any]:
    """Scan every active tenant for dormancy candidates and notify."""
    results = {"tenants_scanned": 0, "candidates": 0, "notifications_created": 0}

    for tenant in _active_tenants():
        candidates = dormancy_service.scan(tenant.id)
        results["tenants_scanned"] += 1
        results["candidates"] += len(candidates)
        logger.info("Dormancy scan for tenant %s: %d candidate(s)", tenant.id, len(candidates),
                    extra={"tenant_id": tenant.id, "job_name": "dormancy_scan"})
        if not candidates:
            continue
        notif = NotificationService.notify_event(
            tenant_id=tenant.id,
            event_type="customer.dormancy.candidates",
            title=f"{len(candidates)} customer(s) may be dormant",
            message=", ".join(c.name for c in candidates[:10]),
            category="dormancy",
            severity="warning",
            payload={"customer_ids": [c.customer_id for c in candidates]},
        )
        if notif is not None:
            results["notifications_created"] += 1

    logger.info("Dormancy scan: %s", results)
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Retainer Periods Ready To Close
# ═══════════════════════════════════════════════════════════════════════════

@register_job("retainer_periods_ready")
def report_periods_ready_to_close(app) -> dict[str, Any]:
    """Report OPEN retainer periods that can be closed."""
    results = {"tenants_scanned": 0, "periods_ready": 0, "notifications_created": 0}

    for tenant in _active_tenants():
        ready = retainer_period_service.find_periods_ready_to_close(tenant.id)
        results["tenants_scanned"] += 1
        results["periods_ready"] += len(ready)
        if not ready:
            continue
        notif = NotificationService.notify_event(
            tenant_id=tenant.id,
            event_type="retainer.periods.ready",
            title=f"{len(ready)} retainer period(s) ready to close",
            category="retainer",
            payload={"period_ids": [r["period"]["id"] for r in ready]},
        )
        if notif is not None:
            results["notifications_created"] += 1

    logger.info("Retainer periods ready: %s", results)
    return results
