"""
PracticeHub Core
Notification domain model.

Models:
    - Notification: sink record for lifecycle, reconciliation and
      dormancy events. Delivery channels live outside this service.
"""

from datetime import datetime, timezone

from practicehub.models import db
from practicehub.models.base import TenantModel

NOTIFICATION_CATEGORIES = {"lifecycle", "retainer", "dormancy", "system"}
NOTIFICATION_SEVERITIES = {"info", "warning", "error", "success"}


class Notification(TenantModel):
    """One record per event; ``recipient`` is a member id or 'all'."""

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    recipient = db.Column(db.String(150), default="all", index=True)
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    category = db.Column(db.String(30), default="system")
    severity = db.Column(db.String(20), default="info")
    event_type = db.Column(db.String(80), default="")

    entity_type = db.Column(db.String(30), default="")
    entity_id = db.Column(db.Integer, nullable=True)

    payload = db.Column(db.JSON, default=dict)

    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "recipient": self.recipient,
            "title": self.title,
            "message": self.message,
            "category": self.category,
            "severity": self.severity,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "payload": self.payload or {},
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
