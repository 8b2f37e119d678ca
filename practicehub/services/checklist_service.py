"""
Checklist Tracker.

Templates define onboarding steps; instantiating a template for a customer
copies its items into a running checklist. Items move:

    PENDING ──complete──▶ COMPLETED ──reopen──▶ PENDING
    PENDING ──skip──────▶ SKIPPED            (optional items only)

Rules:
  - Required items can never be skipped, whoever asks.
  - An item that requires a document needs a document id to complete.
  - An item with a dependency can only be completed or skipped once the
    dependency is COMPLETED or SKIPPED.
  - Reopening does not cascade; dependents are re-validated the next time
    someone tries to complete them.
  - Every item write is a compare-and-swap on ``version``.

Every public writer commits, except ``auto_instantiate`` which runs inside
the lifecycle transition's transaction and only flushes.
"""

import logging
from datetime import datetime, timezone

from practicehub.core.exceptions import ConflictError, ValidationError
from practicehub.models import db
from practicehub.models.audit import write_audit
from practicehub.models.checklist import (
    RESOLVED_ITEM_STATUSES,
    ChecklistInstance,
    ChecklistItem,
    ChecklistTemplate,
    ChecklistTemplateItem,
    InstanceStatus,
    ItemStatus,
)
from practicehub.models.customer import CUSTOMER_TYPES, Customer
from practicehub.services.helpers.scoped_queries import get_scoped
from practicehub.services.helpers.transactions import check_expected_version, write_guard
from practicehub.utils.errors import E

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# Templates
# ═════════════════════════════════════════════════════════════════════════════

def create_template(
    tenant_id: int,
    name: str,
    items: list[dict],
    *,
    description: str = "",
    customer_type: str | None = None,
    auto_instantiate: bool = False,
) -> ChecklistTemplate:
    """
    Create a template.

    Each item dict may carry ``depends_on``: the 0-based position of an
    earlier item in *items*. Forward and self references are rejected, so
    every template's dependency graph is acyclic.
    """
    if not name or not name.strip():
        raise ValidationError("Template name is required", code=E.VALIDATION_REQUIRED)
    if not items:
        raise ValidationError("A template needs at least one item", code=E.VALIDATION_REQUIRED)
    if customer_type is not None and customer_type not in CUSTOMER_TYPES:
        raise ValidationError(
            f"customer_type must be one of {sorted(CUSTOMER_TYPES)}",
            code=E.VALIDATION_INVALID,
        )

    for position, item_def in enumerate(items):
        if not (item_def.get("name") or "").strip():
            raise ValidationError(
                f"Item {position} has no name", code=E.VALIDATION_REQUIRED,
            )
        depends_on = item_def.get("depends_on")
        if depends_on is None:
            continue
        if not isinstance(depends_on, int) or isinstance(depends_on, bool) or not 0 <= depends_on < position:
            raise ValidationError(
                f"Item {position} ('{item_def['name']}') may only depend on an earlier item",
                code=E.VALIDATION_CONSTRAINT,
                details={"position": position, "depends_on": depends_on},
            )

    template = ChecklistTemplate(
        tenant_id=tenant_id,
        name=name.strip(),
        description=description or "",
        customer_type=customer_type,
        auto_instantiate=bool(auto_instantiate),
    )
    db.session.add(template)

    created: list[ChecklistTemplateItem] = []
    for position, item_def in enumerate(items):
        item = ChecklistTemplateItem(
            tenant_id=tenant_id,
            name=item_def["name"].strip(),
            description=item_def.get("description") or "",
            sort_order=position,
            required=bool(item_def.get("required", True)),
            requires_document=bool(item_def.get("requires_document", False)),
            required_document_label=item_def.get("required_document_label"),
        )
        template.items.append(item)
        created.append(item)
    db.session.flush()

    for position, item_def in enumerate(items):
        if item_def.get("depends_on") is not None:
            created[position].depends_on_item_id = created[item_def["depends_on"]].id

    db.session.commit()
    logger.info(
        "Checklist template %s created with %d items", template.id, len(created),
        extra={"tenant_id": tenant_id},
    )
    return template


def list_templates(tenant_id: int, *, active_only: bool = True) -> list[ChecklistTemplate]:
    q = ChecklistTemplate.query_for_tenant(tenant_id)
    if active_only:
        q = q.filter_by(active=True)
    return q.order_by(ChecklistTemplate.name, ChecklistTemplate.id).all()


def get_template(tenant_id: int, template_id: int) -> ChecklistTemplate:
    return get_scoped(ChecklistTemplate, template_id, tenant_id=tenant_id)


# ═════════════════════════════════════════════════════════════════════════════
# Instances
# ═════════════════════════════════════════════════════════════════════════════

def _existing_instance(customer_id: int, template_id: int) -> ChecklistInstance | None:
    return ChecklistInstance.query.filter_by(customer_id=customer_id, template_id=template_id).first()


def _build_instance(customer: Customer, template: ChecklistTemplate, actor_id: str) -> ChecklistInstance:
    """Copy template items into a new instance. Flushes, never commits."""
    instance = ChecklistInstance(
        tenant_id=customer.tenant_id,
        customer_id=customer.id,
        template_id=template.id,
        status=InstanceStatus.IN_PROGRESS.value,
    )
    db.session.add(instance)

    # Pass 1: create items so they get ids
    by_template_item: dict[int, ChecklistItem] = {}
    for tmpl_item in template.items:
        item = ChecklistItem(
            tenant_id=customer.tenant_id,
            customer_id=customer.id,
            template_item_id=tmpl_item.id,
            name=tmpl_item.name,
            description=tmpl_item.description or "",
            sort_order=tmpl_item.sort_order,
            required=tmpl_item.required,
            requires_document=tmpl_item.requires_document,
            required_document_label=tmpl_item.required_document_label,
            status=ItemStatus.PENDING.value,
        )
        instance.items.append(item)
        by_template_item[tmpl_item.id] = item
    db.session.flush()

    # Pass 2: translate template dependencies to instance item ids
    for tmpl_item in template.items:
        if tmpl_item.depends_on_item_id is not None:
            dependency = by_template_item.get(tmpl_item.depends_on_item_id)
            if dependency is not None:
                by_template_item[tmpl_item.id].depends_on_item_id = dependency.id
    db.session.flush()

    write_audit(
        tenant_id=customer.tenant_id,
        entity_type="checklist_instance",
        entity_id=instance.id,
        action="checklist_instance.created",
        actor=actor_id,
        diff={"customer_id": customer.id, "template_id": template.id,
              "item_count": len(instance.items)},
    )
    return instance


def instantiate(tenant_id: int, customer_id: int, template_id: int, actor_id: str) -> ChecklistInstance:
    """Apply *template* to *customer*. One instance per (customer, template)."""
    customer = get_scoped(Customer, customer_id, tenant_id=tenant_id)
    template = get_scoped(ChecklistTemplate, template_id, tenant_id=tenant_id)
    if not template.active:
        raise ValidationError(
            f"Checklist template {template.id} is inactive", code=E.VALIDATION_CONSTRAINT,
        )
    if _existing_instance(customer.id, template.id) is not None:
        raise ConflictError(
            f"Checklist '{template.name}' is already instantiated for customer {customer.id}",
            code=E.CONFLICT_DUPLICATE,
        )

    with write_guard("ChecklistInstance", None):
        instance = _build_instance(customer, template, actor_id)
        db.session.commit()
    logger.info(
        "Checklist instance %s created from template %s", instance.id, template.id,
        extra={"tenant_id": tenant_id, "customer_id": customer.id},
    )
    return instance


def auto_instantiate(customer: Customer, actor_id: str) -> list[ChecklistInstance]:
    """
    Instantiate every active auto-instantiate template matching the
    customer's type. Templates already applied are skipped. Flush only.
    """
    templates = (
        ChecklistTemplate.query_for_tenant(customer.tenant_id)
        .filter_by(active=True, auto_instantiate=True)
        .order_by(ChecklistTemplate.id)
        .all()
    )
    created = []
    for template in templates:
        if not template.applies_to(customer.customer_type):
            continue
        if _existing_instance(customer.id, template.id) is not None:
            continue
        created.append(_build_instance(customer, template, actor_id))
    return created


def list_instances(tenant_id: int, customer_id: int) -> list[ChecklistInstance]:
    get_scoped(Customer, customer_id, tenant_id=tenant_id)
    return (
        ChecklistInstance.query_for_tenant(tenant_id)
        .filter_by(customer_id=customer_id)
        .order_by(ChecklistInstance.id)
        .all()
    )


def get_instance(tenant_id: int, instance_id: int) -> ChecklistInstance:
    return get_scoped(ChecklistInstance, instance_id, tenant_id=tenant_id)


def pending_required_items(tenant_id: int, customer_id: int) -> list[ChecklistItem]:
    """Required items still PENDING across the customer's live checklists."""
    return (
        ChecklistItem.query
        .join(ChecklistInstance, ChecklistItem.instance_id == ChecklistInstance.id)
        .filter(
            ChecklistItem.tenant_id == tenant_id,
            ChecklistItem.customer_id == customer_id,
            ChecklistItem.required.is_(True),
            ChecklistItem.status == ItemStatus.PENDING.value,
            ChecklistInstance.status != InstanceStatus.CANCELLED.value,
        )
        .order_by(ChecklistInstance.id, ChecklistItem.sort_order, ChecklistItem.id)
        .all()
    )


# ═════════════════════════════════════════════════════════════════════════════
# Item transitions
# ═════════════════════════════════════════════════════════════════════════════

def _require_pending(item: ChecklistItem, action: str) -> None:
    if not item.is_pending:
        raise ValidationError(
            f"Cannot {action} checklist item {item.id} in status {item.status}",
            code=E.INVALID_ITEM_STATE,
            details={"status": item.status},
        )


def _require_dependency_resolved(item: ChecklistItem) -> None:
    if item.depends_on_item_id is None:
        return
    dependency = db.session.get(ChecklistItem, item.depends_on_item_id)
    if dependency is not None and dependency.status not in RESOLVED_ITEM_STATUSES:
        raise ValidationError(
            f"'{item.name}' depends on '{dependency.name}', which is still {dependency.status}",
            code=E.DEPENDENCY_NOT_MET,
            details={"depends_on_item_id": dependency.id, "dependency_status": dependency.status},
        )


def _refresh_instance_status(item: ChecklistItem, actor_id: str) -> None:
    instance = item.instance
    if instance.status == InstanceStatus.CANCELLED.value:
        return
    required = [i for i in instance.items if i.required]
    all_done = bool(required) and all(i.status == ItemStatus.COMPLETED.value for i in required)

    if all_done and instance.status != InstanceStatus.COMPLETED.value:
        instance.status = InstanceStatus.COMPLETED.value
        instance.completed_at = _utcnow()
        instance.completed_by = actor_id
        write_audit(
            tenant_id=instance.tenant_id,
            entity_type="checklist_instance",
            entity_id=instance.id,
            action="checklist_instance.completed",
            actor=actor_id,
            diff={"customer_id": instance.customer_id},
        )
        logger.info(
            "Checklist instance %s completed", instance.id,
            extra={"tenant_id": instance.tenant_id, "customer_id": instance.customer_id},
        )
    elif not all_done and instance.status == InstanceStatus.COMPLETED.value:
        instance.status = InstanceStatus.IN_PROGRESS.value
        instance.completed_at = None
        instance.completed_by = None


def complete_item(
    tenant_id: int,
    item_id: int,
    actor_id: str,
    *,
    notes: str | None = None,
    document_id: str | None = None,
    expected_version: int | None = None,
) -> ChecklistItem:
    item = get_scoped(ChecklistItem, item_id, tenant_id=tenant_id)
    check_expected_version(item, expected_version, "ChecklistItem")
    _require_pending(item, "complete")

    if item.requires_document and not document_id:
        label = item.required_document_label or "a document"
        raise ValidationError(
            f"'{item.name}' requires {label}; provide document_id to complete it",
            code=E.DOCUMENT_REQUIRED,
            details={"required_document_label": item.required_document_label},
        )
    _require_dependency_resolved(item)

    with write_guard("ChecklistItem", item_id):
        item.status = ItemStatus.COMPLETED.value
        item.completed_at = _utcnow()
        item.completed_by = actor_id
        item.notes = notes
        item.document_id = str(document_id) if document_id else None
        item.skip_reason = None

        write_audit(
            tenant_id=tenant_id,
            entity_type="checklist_item",
            entity_id=item.id,
            action="checklist_item.completed",
            actor=actor_id,
            diff={"status": {"old": ItemStatus.PENDING.value, "new": ItemStatus.COMPLETED.value},
                  "document_id": item.document_id},
        )
        _refresh_instance_status(item, actor_id)
        db.session.commit()

    logger.info(
        "Checklist item %s completed", item_id,
        extra={"tenant_id": tenant_id, "customer_id": item.customer_id},
    )
    return item


def skip_item(
    tenant_id: int,
    item_id: int,
    actor_id: str,
    reason: str | None,
    *,
    expected_version: int | None = None,
) -> ChecklistItem:
    item = get_scoped(ChecklistItem, item_id, tenant_id=tenant_id)
    if item.required:
        raise ValidationError(
            f"'{item.name}' is required and cannot be skipped",
            code=E.REQUIRED_ITEM_NOT_SKIPPABLE,
        )
    check_expected_version(item, expected_version, "ChecklistItem")
    if not reason or not reason.strip():
        raise ValidationError("A reason is required to skip an item", code=E.VALIDATION_REQUIRED)
    _require_pending(item, "skip")
    _require_dependency_resolved(item)

    with write_guard("ChecklistItem", item_id):
        item.status = ItemStatus.SKIPPED.value
        item.skip_reason = reason.strip()
        item.completed_at = None
        item.completed_by = actor_id

        write_audit(
            tenant_id=tenant_id,
            entity_type="checklist_item",
            entity_id=item.id,
            action="checklist_item.skipped",
            actor=actor_id,
            diff={"status": {"old": ItemStatus.PENDING.value, "new": ItemStatus.SKIPPED.value},
                  "reason": item.skip_reason},
        )
        db.session.commit()
    logger.info(
        "Checklist item %s skipped", item_id,
        extra={"tenant_id": tenant_id, "customer_id": item.customer_id},
    )
    return item


def reopen_item(
    tenant_id: int,
    item_id: int,
    actor_id: str,
    *,
    expected_version: int | None = None,
) -> ChecklistItem:
    """COMPLETED → PENDING. Dependents keep their status."""
    item = get_scoped(ChecklistItem, item_id, tenant_id=tenant_id)
    check_expected_version(item, expected_version, "ChecklistItem")
    if item.status != ItemStatus.COMPLETED.value:
        raise ValidationError(
            f"Only completed items can be reopened (item {item.id} is {item.status})",
            code=E.INVALID_ITEM_STATE,
            details={"status": item.status},
        )

    with write_guard("ChecklistItem", item_id):
        item.status = ItemStatus.PENDING.value
        item.completed_at = None
        item.completed_by = None
        item.document_id = None

        write_audit(
            tenant_id=tenant_id,
            entity_type="checklist_item",
            entity_id=item.id,
            action="checklist_item.reopened",
            actor=actor_id,
            diff={"status": {"old": ItemStatus.COMPLETED.value, "new": ItemStatus.PENDING.value}},
        )
        _refresh_instance_status(item, actor_id)
        db.session.commit()
    logger.info(
        "Checklist item %s reopened", item_id,
        extra={"tenant_id": tenant_id, "customer_id": item.customer_id},
    )
    return item
