"""Custom field definitions for customers.

A definition names a slug in ``Customer.custom_fields`` and the
prerequisite contexts in which that slug must carry a value.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from practicehub.models.base import TenantModel


def _utcnow():
    return datetime.now(timezone.utc)


FIELD_TYPES = {"TEXT", "NUMBER", "DATE", "BOOLEAN", "DROPDOWN", "EMAIL", "PHONE", "URL", "CURRENCY"}
ENTITY_TYPES = {"CUSTOMER"}


class FieldDefinition(TenantModel):
    """Dynamic field definition for an entity type within a tenant."""

    __tablename__ = "field_definitions"

    id = Column(Integer, primary_key=True)
    entity_type = Column(String(30), nullable=False, default="CUSTOMER")
    name = Column(String(200), nullable=False)
    slug = Column(String(100), nullable=False)
    field_type = Column(String(20), nullable=False, default="TEXT")
    description = Column(Text, default="")
    options = Column(JSON, default=list)  # DROPDOWN: [{"value": "v", "label": "l"}, ...]
    required_for_contexts = Column(JSON, default=list)  # ["INVOICE_GENERATION", ...]
    sort_order = Column(Integer, default=0)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "entity_type", "slug", name="uq_field_definition_slug"),
        Index("ix_field_definitions_entity", "tenant_id", "entity_type"),
    )

    def is_required_for(self, context: str) -> bool:
        return context in (self.required_for_contexts or [])

    def is_filled(self, value) -> bool:
        """Type-aware emptiness test for a stored custom field value."""
        if value is None:
            return False
        if self.field_type == "BOOLEAN":
            # false is an answer; only a missing key is unfilled
            return isinstance(value, bool)
        if isinstance(value, str):
            return bool(value.strip())
        if isinstance(value, (list, dict)):
            return bool(value)
        return True

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "entity_type": self.entity_type,
            "name": self.name,
            "slug": self.slug,
            "field_type": self.field_type,
            "description": self.description or "",
            "options": self.options or [],
            "required_for_contexts": self.required_for_contexts or [],
            "sort_order": self.sort_order,
            "active": self.active,
        }

    def __repr__(self):
        return f"<FieldDefinition {self.id}: {self.entity_type}.{self.slug}>"
