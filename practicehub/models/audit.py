"""
PracticeHub Core
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for checklist and
      retainer events.
"""

import json
from datetime import UTC, datetime

from practicehub.models import db
from practicehub.models.base import TenantModel

AUDIT_ACTIONS = {
    # Checklist tracker
    "checklist_instance.created",
    "checklist_instance.completed",
    "checklist_item.completed",
    "checklist_item.skipped",
    "checklist_item.reopened",
    # Retainer agreements
    "retainer.created",
    "retainer.updated",
    "retainer.paused",
    "retainer.resumed",
    "retainer.terminated",
    # Period reconciliation
    "retainer.period.closed",
    "retainer.period.opened",
    "retainer.invoice.generated",
}


class AuditLog(TenantModel):
    """
    Immutable audit trail.

    One row per action. ``diff_json`` carries the old→new snapshot or the
    computed figures of a reconciliation.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(40), nullable=False)
    entity_id = db.Column(db.String(36), nullable=False)
    action = db.Column(db.String(60), nullable=False)
    actor = db.Column(db.String(64), nullable=False, default="system")
    diff_json = db.Column(db.Text, default="{}")
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


def write_audit(
    *,
    tenant_id: int,
    entity_type: str,
    entity_id,
    action: str,
    actor: str | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row. Uses ``flush`` so callers keep
    transaction control: the row commits or rolls back with the change
    it describes.
    """
    log = AuditLog(
        tenant_id=tenant_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor or "system",
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
