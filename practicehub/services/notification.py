"""
PracticeHub Core
Notification Service.

Sink for lifecycle, reconciliation and dormancy events. Callers invoke
``notify_event`` after their own commit; a failing sink is logged and
never undoes or fails the business write that preceded it.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from practicehub.models import db
from practicehub.models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    @staticmethod
    def create(*, tenant_id, title, message="", category="system", severity="info",
               recipient="all", event_type="", entity_type="", entity_id=None,
               payload=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        notif = Notification(
            tenant_id=tenant_id,
            recipient=recipient,
            title=title,
            message=message,
            category=category,
            severity=severity,
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            payload=payload or {},
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    @staticmethod
    def notify_event(*, tenant_id, event_type, title, message="", category="system",
                     severity="info", entity_type="", entity_id=None, payload=None):
        """
        Fire-and-forget variant of ``create``.

        Returns the Notification, or None when the sink failed.
        """
        try:
            return NotificationService.create(
                tenant_id=tenant_id,
                title=title,
                message=message,
                category=category,
                severity=severity,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                payload=payload,
            )
        except SQLAlchemyError:
            db.session.rollback()
            logger.warning(
                "Notification sink failed for %s", event_type,
                exc_info=True,
                extra={"tenant_id": tenant_id, "event_type": event_type},
            )
            return None

    @staticmethod
    def list_for_tenant(tenant_id, *, category=None, unread_only=False, limit=50, offset=0):
        """Notifications for a tenant, newest first."""
        q = Notification.query_for_tenant(tenant_id)
        if category:
            q = q.filter_by(category=category)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total
