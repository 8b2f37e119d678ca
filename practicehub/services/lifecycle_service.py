"""
Customer Lifecycle — Transition Validator.

Moves a customer between lifecycle statuses along the edges in
``LIFECYCLE_TRANSITIONS`` (models/customer.py):

    PROSPECT → ONBOARDING → ACTIVE ⇄ DORMANT
                             ACTIVE / DORMANT → OFFBOARDING → OFFBOARDED

Per transition:
  - no-op (target == current) and unlisted edges are rejected; nothing
    is written
  - edge gates in ``_TRANSITION_GATES`` run before any mutation
  - ONBOARDING → ACTIVE re-checks LIFECYCLE_ACTIVATION prerequisites
    immediately before commit
  - status change, side effects and the LifecycleTransition record commit
    together, keyed on the customer version read at the start
  - a notification is posted after commit

Usage:
    from practicehub.services import lifecycle_service

    record = lifecycle_service.transition(
        tenant_id=1, customer_id=42, target_status="ACTIVE", actor_id="member-7",
    )
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.orm.exc import StaleDataError

from practicehub.core.exceptions import ConflictError, ValidationError
from practicehub.models import db
from practicehub.models.customer import (
    LIFECYCLE_TRANSITIONS,
    Customer,
    LifecycleStatus,
    LifecycleTransition,
    lifecycle_event_type,
    validate_lifecycle_transition,
)
from practicehub.services import checklist_service, prerequisite_service
from practicehub.services.helpers.scoped_queries import get_scoped
from practicehub.services.helpers.transactions import check_expected_version, stale_conflict
from practicehub.services.notification import NotificationService
from practicehub.utils.errors import E

logger = logging.getLogger(__name__)

_S = LifecycleStatus


# ── Gates ────────────────────────────────────────────────────────────────────

def _checklist_complete_gate(customer: Customer) -> None:
    """Every required item of every live checklist must be out of PENDING."""
    blocking = checklist_service.pending_required_items(customer.tenant_id, customer.id)
    if blocking:
        raise ValidationError(
            f"Customer {customer.id} has {len(blocking)} required checklist item(s) outstanding",
            code=E.CHECKLIST_INCOMPLETE,
            details={
                "blocking_items": [
                    {"item_id": i.id, "instance_id": i.instance_id, "name": i.name}
                    for i in blocking
                ],
            },
        )


# Edge → gate predicates. Each predicate raises to block the edge.
_TRANSITION_GATES = {
    (_S.ONBOARDING, _S.ACTIVE): (_checklist_complete_gate,),
}

# Edge → prerequisite context re-checked right before commit.
_PRECOMMIT_PREREQUISITES = {
    (_S.ONBOARDING, _S.ACTIVE): prerequisite_service.PrerequisiteContext.LIFECYCLE_ACTIVATION,
}


# ── Side effects ─────────────────────────────────────────────────────────────

def _on_enter_onboarding(customer: Customer, actor_id: str, details: dict) -> None:
    created = checklist_service.auto_instantiate(customer, actor_id)
    if created:
        details["checklist_instance_ids"] = [i.id for i in created]


def _on_enter_offboarded(customer: Customer, actor_id: str, details: dict) -> None:
    customer.offboarded_at = datetime.now(timezone.utc)


_ON_ENTER = {
    _S.ONBOARDING: _on_enter_onboarding,
    _S.OFFBOARDED: _on_enter_offboarded,
}


# ── Transition ───────────────────────────────────────────────────────────────

def _parse_status(value) -> LifecycleStatus:
    try:
        return LifecycleStatus(value)
    except ValueError:
        raise ValidationError(
            f"Unknown lifecycle status: {value}",
            code=E.INVALID_TRANSITION,
            details={"allowed_statuses": [s.value for s in LifecycleStatus]},
        ) from None


def transition(
    tenant_id: int,
    customer_id: int,
    target_status,
    actor_id: str,
    *,
    reason: str | None = None,
    expected_version: int | None = None,
) -> LifecycleTransition:
    """
    Apply one lifecycle edge.

    Raises:
        NotFoundError: customer missing or in another tenant.
        ValidationError: no-op, unlisted edge, or a failed gate.
        DependencyError: prerequisites unmet at commit time.
        ConflictError: the customer changed since it was read.
    """
    if not actor_id:
        raise ValidationError("actor_id is required", code=E.VALIDATION_REQUIRED)

    customer = get_scoped(Customer, customer_id, tenant_id=tenant_id)
    check_expected_version(customer, expected_version, "Customer")

    current = customer.status
    target = _parse_status(target_status)

    if target == current:
        raise ValidationError(
            f"Customer {customer.id} is already {current.value}",
            code=E.NO_OP_TRANSITION,
        )
    if not validate_lifecycle_transition(current, target):
        raise ValidationError(
            f"Cannot move customer from {current.value} to {target.value}",
            code=E.INVALID_TRANSITION,
            details={
                "from_status": current.value,
                "to_status": target.value,
                "allowed": [s.value for s in get_available_transitions(customer)],
            },
        )

    edge = (current, target)
    for gate in _TRANSITION_GATES.get(edge, ()):
        gate(customer)

    read_version = customer.version
    now = datetime.now(timezone.utc)
    details: dict = {"from_version": read_version}

    try:
        customer.lifecycle_status = target.value
        customer.lifecycle_status_changed_at = now
        customer.lifecycle_status_changed_by = actor_id

        on_enter = _ON_ENTER.get(target)
        if on_enter is not None:
            on_enter(customer, actor_id, details)

        record = LifecycleTransition(
            tenant_id=tenant_id,
            customer_id=customer.id,
            from_status=current.value,
            to_status=target.value,
            event_type=lifecycle_event_type(target),
            actor_id=actor_id,
            reason=reason,
            details=details,
            occurred_at=now,
        )
        db.session.add(record)

        context = _PRECOMMIT_PREREQUISITES.get(edge)
        if context is not None:
            prerequisite_service.require_prerequisites(tenant_id, context, "CUSTOMER", customer.id)

        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        logger.info("Stale lifecycle transition on customer %s", customer_id,
                    extra={"tenant_id": tenant_id, "customer_id": customer_id})
        raise stale_conflict("Customer", customer_id) from None
    except (ValidationError, ConflictError):
        db.session.rollback()
        raise

    logger.info(
        "Customer %s moved %s -> %s by %s", customer.id, current.value, target.value, actor_id,
        extra={"tenant_id": tenant_id, "customer_id": customer.id,
               "event_type": record.event_type},
    )

    NotificationService.notify_event(
        tenant_id=tenant_id,
        event_type=record.event_type,
        title=f"{customer.name} is now {target.value.lower()}",
        message=reason or "",
        category="lifecycle",
        entity_type="customer",
        entity_id=customer.id,
        payload=record.to_dict(),
    )
    return record


# ── Reads ────────────────────────────────────────────────────────────────────

def get_available_transitions(customer: Customer) -> list[LifecycleStatus]:
    """Targets reachable in one edge, in declaration order of the enum."""
    allowed = LIFECYCLE_TRANSITIONS[customer.status]
    return [s for s in LifecycleStatus if s in allowed]


def get_lifecycle_history(tenant_id: int, customer_id: int) -> list[LifecycleTransition]:
    """Applied transitions, oldest first."""
    get_scoped(Customer, customer_id, tenant_id=tenant_id)
    return (
        LifecycleTransition.query_for_tenant(tenant_id)
        .filter_by(customer_id=customer_id)
        .order_by(LifecycleTransition.occurred_at, LifecycleTransition.id)
        .all()
    )


def get_lifecycle_summary(tenant_id: int) -> dict[str, int]:
    """Customer count per status; every status is present."""
    rows = (
        db.session.query(Customer.lifecycle_status, func.count(Customer.id))
        .filter(Customer.tenant_id == tenant_id)
        .group_by(Customer.lifecycle_status)
        .all()
    )
    counts = {s.value: 0 for s in LifecycleStatus}
    counts.update({status: count for status, count in rows})
    return counts
