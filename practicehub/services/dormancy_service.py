"""
Dormancy Scanner.

Lists customers that look dormant: ACTIVE or ONBOARDING with no activity
for longer than the threshold. A customer that was never active is
measured from ``created_at`` against the (shorter) grace period instead.
The scan is read-only; moving a candidate to DORMANT is a separate,
explicit lifecycle transition.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from flask import current_app

from practicehub.core.exceptions import ValidationError
from practicehub.models import db
from practicehub.models.auth import Tenant
from practicehub.models.customer import Customer, LifecycleStatus
from practicehub.utils.errors import E
from practicehub.utils.helpers import as_utc

logger = logging.getLogger(__name__)

SCANNED_STATUSES = (LifecycleStatus.ACTIVE.value, LifecycleStatus.ONBOARDING.value)


@dataclass(frozen=True)
class DormancyCandidate:
    customer_id: int
    name: str
    current_status: str
    last_activity_at: datetime | None
    days_since_activity: int
    never_active: bool

    def to_dict(self) -> dict:
        return {
            "customer_id": self.customer_id,
            "name": self.name,
            "current_status": self.current_status,
            "last_activity_at": self.last_activity_at.isoformat() if self.last_activity_at else None,
            "days_since_activity": self.days_since_activity,
            "never_active": self.never_active,
        }


def _tenant_setting(tenant_id: int, key: str, config_key: str) -> int:
    tenant = db.session.get(Tenant, tenant_id)
    default = current_app.config[config_key]
    value = tenant.setting(key, default) if tenant else default
    return int(value)


def resolve_threshold(tenant_id: int, threshold_days=None) -> int:
    """Explicit value, else the tenant setting, else DORMANCY_THRESHOLD_DAYS."""
    if threshold_days is None:
        threshold_days = _tenant_setting(tenant_id, "dormancy_threshold_days", "DORMANCY_THRESHOLD_DAYS")
    try:
        threshold = int(threshold_days)
    except (TypeError, ValueError):
        raise ValidationError("threshold_days must be an integer", code=E.VALIDATION_INVALID) from None
    if threshold <= 0:
        raise ValidationError("threshold_days must be greater than 0", code=E.VALIDATION_CONSTRAINT)
    return threshold


def scan(tenant_id: int, threshold_days=None, *, now: datetime | None = None) -> list[DormancyCandidate]:
    """
    Return dormancy candidates, longest-inactive first.

    Ties are broken by name, then id, so repeated scans of the same data
    return the same order.
    """
    threshold = resolve_threshold(tenant_id, threshold_days)
    grace = _tenant_setting(tenant_id, "dormancy_grace_days", "DORMANCY_GRACE_DAYS")
    now = as_utc(now) or datetime.now(timezone.utc)

    customers = (
        Customer.query_for_tenant(tenant_id)
        .filter(Customer.lifecycle_status.in_(SCANNED_STATUSES))
        .all()
    )

    candidates = []
    for customer in customers:
        last_activity = as_utc(customer.last_activity_at)
        never_active = last_activity is None
        reference = as_utc(customer.created_at) if never_active else last_activity
        limit = grace if never_active else threshold
        if reference is None or now - reference <= timedelta(days=limit):
            continue
        candidates.append(DormancyCandidate(
            customer_id=customer.id,
            name=customer.name,
            current_status=customer.lifecycle_status,
            last_activity_at=last_activity,
            days_since_activity=(now - reference).days,
            never_active=never_active,
        ))

    candidates.sort(key=lambda c: (-c.days_since_activity, c.name, c.customer_id))
    logger.info(
        "Dormancy scan: %d candidate(s) of %d scanned (threshold=%dd grace=%dd)",
        len(candidates), len(customers), threshold, grace,
        extra={"tenant_id": tenant_id},
    )
    return candidates
