"""
Retainer agreements.

Creates and maintains the agreement a customer's periods are billed
against. Creating a retainer opens its first period; closing periods is
the reconciler's job (retainer_period_service).

Status moves:
    ACTIVE ──pause──▶ PAUSED ──resume──▶ ACTIVE
    ACTIVE | PAUSED ──terminate──▶ TERMINATED

A customer has at most one ACTIVE or PAUSED retainer; the partial unique
index on ``retainers`` backs the service check.
"""

import logging
from datetime import date
from decimal import Decimal, InvalidOperation

from practicehub.core.exceptions import ConflictError, ValidationError
from practicehub.models import db
from practicehub.models.audit import write_audit
from practicehub.models.customer import Customer, LifecycleStatus
from practicehub.models.retainer import (
    FREQUENCY_STEPS,
    LIVE_RETAINER_STATUSES,
    PeriodStatus,
    Retainer,
    RetainerPeriod,
    RetainerStatus,
    RetainerType,
    RolloverPolicy,
    period_end_for,
)
from practicehub.services.helpers.scoped_queries import get_scoped
from practicehub.services.helpers.transactions import check_expected_version, write_guard
from practicehub.utils.errors import E
from practicehub.utils.helpers import quantize_2

logger = logging.getLogger(__name__)

_INELIGIBLE_CUSTOMER_STATUSES = {LifecycleStatus.PROSPECT.value, LifecycleStatus.OFFBOARDED.value}
_UPDATABLE_FIELDS = (
    "name", "allocated_hours", "period_fee", "rollover_policy",
    "rollover_cap_hours", "end_date", "notes",
)


# ── Validation ───────────────────────────────────────────────────────────────

def _enum_value(enum_cls, value, field):
    try:
        return enum_cls(value).value
    except ValueError:
        raise ValidationError(
            f"{field} must be one of {[m.value for m in enum_cls]}",
            code=E.VALIDATION_INVALID,
        ) from None


def _decimal(value, field) -> Decimal:
    try:
        parsed = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number", code=E.VALIDATION_INVALID) from None
    if not parsed.is_finite():
        raise ValidationError(f"{field} must be a finite number", code=E.VALIDATION_INVALID)
    return parsed


def _positive(value, field) -> Decimal:
    if value is None or _decimal(value, field) <= 0:
        raise ValidationError(f"{field} must be greater than 0", code=E.VALIDATION_REQUIRED)
    return quantize_2(value)


def _validate_terms(terms: dict) -> dict:
    """Normalise and check type-specific fields. Returns the cleaned terms."""
    clean = dict(terms)
    clean["type"] = _enum_value(RetainerType, terms.get("type"), "type")
    clean["frequency"] = terms.get("frequency") or "MONTHLY"
    if clean["frequency"] not in FREQUENCY_STEPS:
        raise ValidationError(
            f"frequency must be one of {sorted(FREQUENCY_STEPS)}", code=E.VALIDATION_INVALID,
        )
    clean["rollover_policy"] = _enum_value(
        RolloverPolicy, terms.get("rollover_policy") or RolloverPolicy.FORFEIT.value, "rollover_policy",
    )

    clean["period_fee"] = _positive(terms.get("period_fee"), "period_fee")
    if clean["type"] == RetainerType.HOUR_BANK.value:
        clean["allocated_hours"] = _positive(terms.get("allocated_hours"), "allocated_hours")
    else:
        clean["allocated_hours"] = None

    cap = terms.get("rollover_cap_hours")
    if cap is not None:
        if _decimal(cap, "rollover_cap_hours") < 0:
            raise ValidationError("rollover_cap_hours cannot be negative", code=E.VALIDATION_CONSTRAINT)
        cap = quantize_2(cap)
    if clean["type"] == RetainerType.FIXED_FEE.value or clean["rollover_policy"] != RolloverPolicy.ROLLOVER.value:
        cap = None
    clean["rollover_cap_hours"] = cap

    start, end = terms.get("start_date"), terms.get("end_date")
    if start is not None and end is not None and end < start:
        raise ValidationError("end_date cannot be before start_date", code=E.VALIDATION_CONSTRAINT)
    return clean


def _live_retainer(customer_id: int) -> Retainer | None:
    return Retainer.query.filter(
        Retainer.customer_id == customer_id,
        Retainer.status.in_(LIVE_RETAINER_STATUSES),
    ).first()


def _snapshot(retainer: Retainer) -> dict:
    return {f: getattr(retainer, f) for f in _UPDATABLE_FIELDS}


# ── Writers ──────────────────────────────────────────────────────────────────

def open_first_period(retainer: Retainer) -> RetainerPeriod:
    period = RetainerPeriod(
        tenant_id=retainer.tenant_id,
        period_start=retainer.start_date,
        period_end=period_end_for(retainer.start_date, retainer.frequency),
        status=PeriodStatus.OPEN.value,
    )
    if retainer.is_hour_bank:
        period.allocated_hours = retainer.allocated_hours
        period.base_allocated_hours = retainer.allocated_hours
        period.rollover_hours_in = Decimal("0.00")
    retainer.periods.append(period)
    return period


def create_retainer(tenant_id: int, customer_id: int, terms: dict, actor_id: str) -> Retainer:
    """
    Create a retainer and open its first period.

    ``terms``: name, type, frequency, start_date, end_date, allocated_hours,
    period_fee, rollover_policy, rollover_cap_hours, notes.
    """
    customer = get_scoped(Customer, customer_id, tenant_id=tenant_id)
    if customer.lifecycle_status in _INELIGIBLE_CUSTOMER_STATUSES:
        raise ValidationError(
            f"Cannot create a retainer for a customer in status {customer.lifecycle_status}",
            code=E.VALIDATION_CONSTRAINT,
        )
    if not (terms.get("name") or "").strip():
        raise ValidationError("name is required", code=E.VALIDATION_REQUIRED)
    if not isinstance(terms.get("start_date"), date):
        raise ValidationError("start_date is required", code=E.VALIDATION_REQUIRED)
    if _live_retainer(customer.id) is not None:
        raise ConflictError(
            f"Customer {customer.id} already has an active or paused retainer",
            code=E.DUPLICATE_RETAINER,
        )
    clean = _validate_terms(terms)

    retainer = Retainer(
        tenant_id=tenant_id,
        customer_id=customer.id,
        name=clean["name"].strip(),
        type=clean["type"],
        frequency=clean["frequency"],
        start_date=clean["start_date"],
        end_date=clean.get("end_date"),
        allocated_hours=clean["allocated_hours"],
        period_fee=clean["period_fee"],
        rollover_policy=clean["rollover_policy"],
        rollover_cap_hours=clean["rollover_cap_hours"],
        status=RetainerStatus.ACTIVE.value,
        notes=clean.get("notes"),
        created_by=actor_id,
    )
    with write_guard("Retainer", None, duplicate_code=E.DUPLICATE_RETAINER):
        db.session.add(retainer)
        period = open_first_period(retainer)
        db.session.flush()

        write_audit(
            tenant_id=tenant_id,
            entity_type="retainer",
            entity_id=retainer.id,
            action="retainer.created",
            actor=actor_id,
            diff={"customer_id": customer.id, "type": retainer.type, "frequency": retainer.frequency,
                  "first_period": {"start": period.period_start, "end": period.period_end}},
        )
        db.session.commit()
    logger.info(
        "Retainer %s created (%s, %s)", retainer.id, retainer.type, retainer.frequency,
        extra={"tenant_id": tenant_id, "customer_id": customer.id, "retainer_id": retainer.id},
    )
    return retainer


def update_retainer(
    tenant_id: int,
    retainer_id: int,
    changes: dict,
    actor_id: str,
    *,
    expected_version: int | None = None,
) -> Retainer:
    """Change terms. New terms apply from the next period onwards."""
    retainer = get_scoped(Retainer, retainer_id, tenant_id=tenant_id)
    check_expected_version(retainer, expected_version, "Retainer")
    if retainer.status == RetainerStatus.TERMINATED.value:
        raise ValidationError("Cannot update a terminated retainer", code=E.RETAINER_STATE)

    unknown = set(changes) - set(_UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(
            f"Fields cannot be changed: {sorted(unknown)}", code=E.VALIDATION_CONSTRAINT,
        )
    if "name" in changes and not (changes["name"] or "").strip():
        raise ValidationError("name is required", code=E.VALIDATION_REQUIRED)

    before = _snapshot(retainer)
    merged = {**before, **changes, "type": retainer.type, "frequency": retainer.frequency,
              "start_date": retainer.start_date}
    clean = _validate_terms(merged)

    with write_guard("Retainer", retainer_id):
        for field in _UPDATABLE_FIELDS:
            setattr(retainer, field, clean.get(field))
        retainer.name = retainer.name.strip()

        diff = {
            f: {"old": before[f], "new": getattr(retainer, f)}
            for f in _UPDATABLE_FIELDS
            if before[f] != getattr(retainer, f)
        }
        write_audit(
            tenant_id=tenant_id, entity_type="retainer", entity_id=retainer.id,
            action="retainer.updated", actor=actor_id, diff=diff,
        )
        db.session.commit()
    logger.info("Retainer %s updated: %s", retainer.id, sorted(diff),
                extra={"tenant_id": tenant_id, "retainer_id": retainer.id})
    return retainer


_STATUS_MOVES = {
    "pause": ({RetainerStatus.ACTIVE.value}, RetainerStatus.PAUSED.value, "retainer.paused"),
    "resume": ({RetainerStatus.PAUSED.value}, RetainerStatus.ACTIVE.value, "retainer.resumed"),
    "terminate": (set(LIVE_RETAINER_STATUSES), RetainerStatus.TERMINATED.value, "retainer.terminated"),
}


def _move(tenant_id, retainer_id, action, actor_id, expected_version) -> Retainer:
    allowed_from, target, audit_action = _STATUS_MOVES[action]
    retainer = get_scoped(Retainer, retainer_id, tenant_id=tenant_id)
    check_expected_version(retainer, expected_version, "Retainer")
    if retainer.status not in allowed_from:
        raise ValidationError(
            f"Cannot {action} a retainer in status {retainer.status}",
            code=E.RETAINER_STATE,
            details={"status": retainer.status},
        )
    old = retainer.status
    with write_guard("Retainer", retainer_id, duplicate_code=E.DUPLICATE_RETAINER):
        retainer.status = target
        write_audit(
            tenant_id=tenant_id, entity_type="retainer", entity_id=retainer.id,
            action=audit_action, actor=actor_id,
            diff={"status": {"old": old, "new": target}},
        )
        db.session.commit()
    logger.info("Retainer %s %s -> %s", retainer.id, old, target,
                extra={"tenant_id": tenant_id, "retainer_id": retainer.id})
    return retainer


def pause_retainer(tenant_id: int, retainer_id: int, actor_id: str, *, expected_version=None) -> Retainer:
    return _move(tenant_id, retainer_id, "pause", actor_id, expected_version)


def resume_retainer(tenant_id: int, retainer_id: int, actor_id: str, *, expected_version=None) -> Retainer:
    return _move(tenant_id, retainer_id, "resume", actor_id, expected_version)


def terminate_retainer(tenant_id: int, retainer_id: int, actor_id: str, *, expected_version=None) -> Retainer:
    """Terminate. An open period stays open so it can still be billed."""
    return _move(tenant_id, retainer_id, "terminate", actor_id, expected_version)


# ── Reads ────────────────────────────────────────────────────────────────────

def get_retainer(tenant_id: int, retainer_id: int) -> Retainer:
    return get_scoped(Retainer, retainer_id, tenant_id=tenant_id)


def list_retainers(tenant_id: int, *, status: str | None = None, customer_id: int | None = None):
    q = Retainer.query_for_tenant(tenant_id)
    if status:
        q = q.filter_by(status=_enum_value(RetainerStatus, status, "status"))
    if customer_id:
        q = q.filter_by(customer_id=customer_id)
    return q.order_by(Retainer.created_at.desc(), Retainer.id.desc())
