"""
Prerequisite Gate.

Evaluates whether a customer is ready for a gated action (activation,
invoicing, sending a proposal, ...). ``check`` is read-only: it never
adds, flushes or commits, so callers may run it inside their own
transaction as a final time-of-use check. Violations come back in a
stable order so two checks of the same data serialise identically.

Usage:
    from practicehub.services import prerequisite_service

    result = prerequisite_service.check(tenant_id, "INVOICE_GENERATION", "CUSTOMER", customer_id)
    # -> PrerequisiteCheck(passed=False, violations=[...])

    prerequisite_service.require_prerequisites(tenant_id, "LIFECYCLE_ACTIVATION", "CUSTOMER", cid)
    # raises DependencyError listing every violation
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from practicehub.core.exceptions import DependencyError, ValidationError
from practicehub.models import db
from practicehub.models.customer import Customer, CustomerContact
from practicehub.models.field_definition import FieldDefinition
from practicehub.services.helpers.scoped_queries import get_scoped
from practicehub.utils.errors import E

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Enums & Data Classes
# ═════════════════════════════════════════════════════════════════════════════

class PrerequisiteContext(str, Enum):
    LIFECYCLE_ACTIVATION = "LIFECYCLE_ACTIVATION"
    INVOICE_GENERATION = "INVOICE_GENERATION"
    PROPOSAL_SEND = "PROPOSAL_SEND"
    DOCUMENT_GENERATION = "DOCUMENT_GENERATION"
    PROJECT_CREATION = "PROJECT_CREATION"

    @property
    def label(self) -> str:
        return _CONTEXT_LABELS[self]


_CONTEXT_LABELS = {
    PrerequisiteContext.LIFECYCLE_ACTIVATION: "Customer Activation",
    PrerequisiteContext.INVOICE_GENERATION: "Invoice Generation",
    PrerequisiteContext.PROPOSAL_SEND: "Proposal Sending",
    PrerequisiteContext.DOCUMENT_GENERATION: "Document Generation",
    PrerequisiteContext.PROJECT_CREATION: "Project Creation",
}


class ViolationCode(str, Enum):
    MISSING_FIELD = "MISSING_FIELD"
    MISSING_DOCUMENT = "MISSING_DOCUMENT"
    UNMET_DEPENDENCY = "UNMET_DEPENDENCY"
    STRUCTURAL = "STRUCTURAL"


SUPPORTED_ENTITY_TYPES = {"CUSTOMER"}


@dataclass(frozen=True)
class PrerequisiteViolation:
    """Single unmet prerequisite."""
    code: ViolationCode
    message: str
    entity_type: str
    entity_id: int
    field_slug: str | None = None
    resolution: str | None = None

    def to_dict(self) -> dict:
        d = {
            "code": self.code.value,
            "message": self.message,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
        }
        if self.field_slug is not None:
            d["field_slug"] = self.field_slug
        if self.resolution is not None:
            d["resolution"] = self.resolution
        return d


@dataclass
class PrerequisiteCheck:
    """Aggregate result of one check."""
    context: PrerequisiteContext
    entity_type: str
    entity_id: int
    violations: list[PrerequisiteViolation] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.violations

    def to_dict(self) -> dict:
        return {
            "context": self.context.value,
            "context_label": self.context.label,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "passed": self.passed,
            "violations": [v.to_dict() for v in self.violations],
        }


# ═════════════════════════════════════════════════════════════════════════════
# Public API
# ═════════════════════════════════════════════════════════════════════════════

def parse_context(value) -> PrerequisiteContext:
    try:
        return PrerequisiteContext(value)
    except ValueError:
        raise ValidationError(
            f"Unknown prerequisite context: {value}",
            code=E.VALIDATION_CONSTRAINT,
            details={"allowed": [c.value for c in PrerequisiteContext]},
        ) from None


def check(tenant_id: int, context, entity_type: str, entity_id: int) -> PrerequisiteCheck:
    """Evaluate every prerequisite of *context* for one entity. Read-only."""
    ctx = context if isinstance(context, PrerequisiteContext) else parse_context(context)
    if entity_type not in SUPPORTED_ENTITY_TYPES:
        raise ValidationError(
            f"Prerequisite checks are not supported for entity type {entity_type}",
            code=E.VALIDATION_CONSTRAINT,
        )

    # Queries below must not flush a caller's pending changes
    with db.session.no_autoflush:
        customer = get_scoped(Customer, entity_id, tenant_id=tenant_id)
        violations = _check_fields(ctx, customer) + _check_structural(ctx, customer)

    result = PrerequisiteCheck(
        context=ctx, entity_type=entity_type, entity_id=customer.id, violations=violations,
    )
    logger.debug(
        "Prerequisite check %s on %s/%s: %d violation(s)",
        ctx.value, entity_type, entity_id, len(violations),
        extra={"tenant_id": tenant_id, "customer_id": customer.id},
    )
    return result


def require_prerequisites(tenant_id: int, context, entity_type: str, entity_id: int) -> PrerequisiteCheck:
    """Run ``check`` and raise DependencyError unless it passed."""
    result = check(tenant_id, context, entity_type, entity_id)
    if not result.passed:
        raise DependencyError(
            f"{result.context.label} prerequisites not met for {entity_type} {entity_id}",
            violations=[v.to_dict() for v in result.violations],
            resolution=result.violations[0].resolution,
        )
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Checks
# ═════════════════════════════════════════════════════════════════════════════

def _check_fields(ctx: PrerequisiteContext, customer: Customer) -> list[PrerequisiteViolation]:
    definitions = (
        FieldDefinition.query_for_tenant(customer.tenant_id)
        .filter_by(entity_type="CUSTOMER", active=True)
        .order_by(FieldDefinition.sort_order, FieldDefinition.name, FieldDefinition.id)
        .all()
    )
    values = customer.custom_fields or {}
    violations = []
    for fd in definitions:
        if not fd.is_required_for(ctx.value):
            continue
        if fd.is_filled(values.get(fd.slug)):
            continue
        violations.append(PrerequisiteViolation(
            code=ViolationCode.MISSING_FIELD,
            message=f"{fd.name} is required for {ctx.label}",
            entity_type="CUSTOMER",
            entity_id=customer.id,
            field_slug=fd.slug,
            resolution=f"Fill the {fd.name} field on the customer profile",
        ))
    return violations


def _has_contact_email(customer: Customer) -> bool:
    contacts = (
        CustomerContact.query_for_tenant(customer.tenant_id)
        .filter_by(customer_id=customer.id)
        .all()
    )
    return any(c.email and c.email.strip() for c in contacts)


def _check_structural(ctx: PrerequisiteContext, customer: Customer) -> list[PrerequisiteViolation]:
    violations = []

    if ctx is PrerequisiteContext.LIFECYCLE_ACTIVATION:
        from practicehub.services.checklist_service import pending_required_items

        for item in pending_required_items(customer.tenant_id, customer.id):
            if item.requires_document:
                label = item.required_document_label or "supporting document"
                violations.append(PrerequisiteViolation(
                    code=ViolationCode.MISSING_DOCUMENT,
                    message=f"Checklist item '{item.name}' needs a {label}",
                    entity_type="CUSTOMER",
                    entity_id=customer.id,
                    resolution=f"Upload the {label} and complete '{item.name}'",
                ))
            else:
                violations.append(PrerequisiteViolation(
                    code=ViolationCode.UNMET_DEPENDENCY,
                    message=f"Checklist item '{item.name}' is not completed",
                    entity_type="CUSTOMER",
                    entity_id=customer.id,
                    resolution=f"Complete '{item.name}' on the onboarding checklist",
                ))

    elif ctx is PrerequisiteContext.INVOICE_GENERATION:
        has_email = bool(customer.email and customer.email.strip())
        if not has_email and not _has_contact_email(customer):
            violations.append(PrerequisiteViolation(
                code=ViolationCode.STRUCTURAL,
                message="Customer must have an email address or a contact with email for invoice delivery",
                entity_type="CUSTOMER",
                entity_id=customer.id,
                resolution="Add a contact with email on the customer, or set the customer email",
            ))

    elif ctx is PrerequisiteContext.PROPOSAL_SEND:
        if not _has_contact_email(customer):
            violations.append(PrerequisiteViolation(
                code=ViolationCode.STRUCTURAL,
                message="Customer must have a contact with an email address to send a proposal",
                entity_type="CUSTOMER",
                entity_id=customer.id,
                resolution="Add a contact with email on the customer",
            ))

    # DOCUMENT_GENERATION and PROJECT_CREATION are field-driven only
    return violations
