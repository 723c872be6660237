"""Notification emission and recipient-side management.

Notifications are side effects of order transitions. Emission is best
effort: a failed write is logged and never undoes the transition that
triggered it. Every other operation acts only on the caller's own
notifications.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from . import data_manager, log
from .constants import NotificationType
from .core_logic import (
    RuntimeContext,
    Session,
    _resolve_timestamp,
    cached_rows,
    generate_document_id,
    invalidate_cache,
)
from .errors import PermissionDeniedError, PersistenceError

NOTIFICATIONS = data_manager.NOTIFICATIONS_SHEET


def emit_notification(
    context: RuntimeContext,
    *,
    recipient_id: str,
    title: str,
    message: str,
    notification_type: NotificationType = NotificationType.ORDER_STATUS,
    order_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[data_manager.NotificationRow]:
    """Create an unread notification for ``recipient_id``.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        recipient_id (str): User who will see the alert.
        title (str): Short headline ("Pedido Recebido", ...).
        message (str): Body text.
        notification_type (NotificationType): Alert category.
        order_id (str | None): Order the alert refers to.
        now (datetime | None): Creation timestamp override.

    Returns:
        data_manager.NotificationRow | None: The stored notification, or
            ``None`` when the write failed. Failures are logged at WARNING and
            not raised.
    """

    timestamp = _resolve_timestamp(now)
    notification = data_manager.NotificationRow(
        notification_id=generate_document_id(prefix="N", when=timestamp),
        recipient_id=recipient_id,
        title=title,
        message=message,
        notification_type=notification_type,
        is_read=False,
        created_at=timestamp,
        order_id=order_id,
    )
    try:
        data_manager.create_document(
            context.workbook,
            NOTIFICATIONS,
            data_manager.serialize_notification(notification),
        )
    except PersistenceError as exc:
        log.warning("Could not emit notification '%s' to '%s': %s", title, recipient_id, exc)
        return None
    invalidate_cache(context, NOTIFICATIONS)
    log.info("Emitted notification '%s' to '%s' (order=%s)", title, recipient_id, order_id)
    return notification


def list_notifications(
    context: RuntimeContext,
    session: Session,
    *,
    unread_only: bool = False,
) -> List[data_manager.NotificationRow]:
    """Return the caller's notifications, newest first."""

    rows = [
        row
        for row in cached_rows(context, NOTIFICATIONS, data_manager.deserialize_notification)
        if row.recipient_id == session.user_id and not (unread_only and row.is_read)
    ]
    rows.sort(key=lambda row: row.created_at, reverse=True)
    return rows


def _owned_notification(context: RuntimeContext, session: Session, notification_id: str) -> data_manager.NotificationRow:
    document = data_manager.get_document(context.workbook, NOTIFICATIONS, notification_id)
    notification = data_manager.deserialize_notification(document)
    if notification.recipient_id != session.user_id:
        log.warning("User '%s' tried to access notification '%s'", session.user_id, notification_id)
        raise PermissionDeniedError("Notification belongs to another user")
    return notification


def mark_notification_read(context: RuntimeContext, session: Session, notification_id: str) -> None:
    """Flag one of the caller's notifications as read."""

    _owned_notification(context, session, notification_id)
    data_manager.update_document(context.workbook, NOTIFICATIONS, notification_id, {"IsRead": True})
    invalidate_cache(context, NOTIFICATIONS)
    log.debug("Notification '%s' marked as read", notification_id)


def mark_all_notifications_read(context: RuntimeContext, session: Session) -> int:
    """Flag every unread notification of the caller as read.

    Returns:
        int: Number of notifications updated.
    """

    unread = list_notifications(context, session, unread_only=True)
    operations = [
        data_manager.WriteOperation.update(NOTIFICATIONS, row.notification_id, {"IsRead": True})
        for row in unread
    ]
    _write_in_chunks(context, operations)
    invalidate_cache(context, NOTIFICATIONS)
    log.info("Marked %d notifications as read for '%s'", len(operations), session.user_id)
    return len(operations)


def delete_notification(context: RuntimeContext, session: Session, notification_id: str) -> None:
    """Remove one of the caller's notifications.

    Raises:
        NotFoundError: If the notification does not exist.
        PermissionDeniedError: If it belongs to someone else.
    """

    _owned_notification(context, session, notification_id)
    data_manager.delete_document(context.workbook, NOTIFICATIONS, notification_id)
    invalidate_cache(context, NOTIFICATIONS)
    log.info("Deleted notification '%s'", notification_id)


def delete_all_notifications(context: RuntimeContext, session: Session) -> int:
    """Remove every notification addressed to the caller."""

    rows = list_notifications(context, session)
    operations = [data_manager.WriteOperation.delete(NOTIFICATIONS, row.notification_id) for row in rows]
    _write_in_chunks(context, operations)
    invalidate_cache(context, NOTIFICATIONS)
    log.info("Deleted %d notifications for '%s'", len(operations), session.user_id)
    return len(operations)


def _write_in_chunks(context: RuntimeContext, operations: List[data_manager.WriteOperation]) -> None:
    size = context.settings.max_batch_operations
    for start in range(0, len(operations), size):
        data_manager.batch_write(context.workbook, operations[start:start + size], max_operations=size)
