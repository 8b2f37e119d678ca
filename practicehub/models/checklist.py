"""
PracticeHub Core
Checklist domain models.

Models:
    - ChecklistTemplate / ChecklistTemplateItem: reusable onboarding steps
    - ChecklistInstance: one template applied to one customer
    - ChecklistItem: a step of an instance (optimistic lock on ``version``)

Template items may depend on an earlier item of the same template, so
dependency graphs are acyclic by construction. Instance items copy the
template's flags at instantiation time; later template edits do not
reach running checklists.
"""

from datetime import datetime, timezone
from enum import Enum

from practicehub.models import db
from practicehub.models.base import TenantModel


class ItemStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"


class InstanceStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# A dependency is satisfied once it is out of PENDING in either direction.
RESOLVED_ITEM_STATUSES = frozenset({ItemStatus.COMPLETED.value, ItemStatus.SKIPPED.value})


# ═════════════════════════════════════════════════════════════════════════════
# TEMPLATES
# ═════════════════════════════════════════════════════════════════════════════


class ChecklistTemplate(TenantModel):
    __tablename__ = "checklist_templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    customer_type = db.Column(
        db.String(20), nullable=True,
        comment="INDIVIDUAL | COMPANY | NULL (all types)",
    )
    auto_instantiate = db.Column(db.Boolean, default=False, nullable=False)
    active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    items = db.relationship(
        "ChecklistTemplateItem", back_populates="template",
        cascade="all, delete-orphan",
        order_by="ChecklistTemplateItem.sort_order",
    )

    def applies_to(self, customer_type: str | None) -> bool:
        return self.customer_type is None or self.customer_type == customer_type

    def to_dict(self, include_items=True):
        d = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description or "",
            "customer_type": self.customer_type,
            "auto_instantiate": self.auto_instantiate,
            "active": self.active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_items:
            d["items"] = [i.to_dict() for i in self.items]
        return d


class ChecklistTemplateItem(TenantModel):
    __tablename__ = "checklist_template_items"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("checklist_templates.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    required = db.Column(db.Boolean, default=True, nullable=False)
    requires_document = db.Column(db.Boolean, default=False, nullable=False)
    required_document_label = db.Column(db.String(200), nullable=True)
    depends_on_item_id = db.Column(
        db.Integer, db.ForeignKey("checklist_template_items.id", ondelete="SET NULL"),
        nullable=True,
    )

    template = db.relationship("ChecklistTemplate", back_populates="items")

    def to_dict(self):
        return {
            "id": self.id,
            "template_id": self.template_id,
            "name": self.name,
            "description": self.description or "",
            "sort_order": self.sort_order,
            "required": self.required,
            "requires_document": self.requires_document,
            "required_document_label": self.required_document_label,
            "depends_on_item_id": self.depends_on_item_id,
        }


# ═════════════════════════════════════════════════════════════════════════════
# INSTANCES
# ═════════════════════════════════════════════════════════════════════════════


class ChecklistInstance(TenantModel):
    __tablename__ = "checklist_instances"
    __table_args__ = (
        db.UniqueConstraint("customer_id", "template_id", name="uq_checklist_instance_customer_template"),
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(
        db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    template_id = db.Column(
        db.Integer, db.ForeignKey("checklist_templates.id", ondelete="RESTRICT"),
        nullable=False,
    )
    status = db.Column(db.String(20), nullable=False, default=InstanceStatus.IN_PROGRESS.value)
    started_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by = db.Column(db.String(64), nullable=True)

    template = db.relationship("ChecklistTemplate")
    items = db.relationship(
        "ChecklistItem", back_populates="instance",
        cascade="all, delete-orphan",
        order_by="ChecklistItem.sort_order",
    )

    def progress(self) -> dict:
        required = [i for i in self.items if i.required]
        return {
            "total": len(self.items),
            "completed": sum(1 for i in self.items if i.status == ItemStatus.COMPLETED.value),
            "skipped": sum(1 for i in self.items if i.status == ItemStatus.SKIPPED.value),
            "required": len(required),
            "required_completed": sum(1 for i in required if i.status == ItemStatus.COMPLETED.value),
        }

    def to_dict(self, include_items=True):
        d = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "customer_id": self.customer_id,
            "template_id": self.template_id,
            "template_name": self.template.name if self.template else None,
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "completed_by": self.completed_by,
            "progress": self.progress(),
        }
        if include_items:
            d["items"] = [i.to_dict() for i in self.items]
        return d


class ChecklistItem(TenantModel):
    """
    One step of a running checklist.

    Status moves PENDING → COMPLETED | SKIPPED, and COMPLETED → PENDING on
    reopen. Concurrent writers race on ``version``; the loser gets a
    ConflictError from the service layer.
    """

    __tablename__ = "checklist_items"

    id = db.Column(db.Integer, primary_key=True)
    instance_id = db.Column(
        db.Integer, db.ForeignKey("checklist_instances.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    customer_id = db.Column(
        db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    template_item_id = db.Column(db.Integer, nullable=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    required = db.Column(db.Boolean, nullable=False, default=True)
    requires_document = db.Column(db.Boolean, nullable=False, default=False)
    required_document_label = db.Column(db.String(200), nullable=True)
    depends_on_item_id = db.Column(
        db.Integer, db.ForeignKey("checklist_items.id", ondelete="SET NULL"),
        nullable=True,
    )
    status = db.Column(db.String(20), nullable=False, default=ItemStatus.PENDING.value)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    document_id = db.Column(db.String(64), nullable=True)
    skip_reason = db.Column(db.Text, nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)

    instance = db.relationship("ChecklistInstance", back_populates="items")
    depends_on = db.relationship("ChecklistItem", remote_side=[id])

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_pending(self) -> bool:
        return self.status == ItemStatus.PENDING.value

    def to_dict(self):
        return {
            "id": self.id,
            "instance_id": self.instance_id,
            "customer_id": self.customer_id,
            "name": self.name,
            "description": self.description or "",
            "sort_order": self.sort_order,
            "required": self.required,
            "requires_document": self.requires_document,
            "required_document_label": self.required_document_label,
            "depends_on_item_id": self.depends_on_item_id,
            "status": self.status,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "completed_by": self.completed_by,
            "notes": self.notes,
            "document_id": self.document_id,
            "skip_reason": self.skip_reason,
            "version": self.version,
        }

    def __repr__(self):
        return f"<ChecklistItem {self.id}: {self.name} [{self.status}]>"
