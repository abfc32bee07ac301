"""
Action Log Tracker
Notification Service.

Per-log, per-recipient in-app notifications. ``notify`` only stages rows in
the session; the calling service commits them together with the change that
triggered them.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func, select, update

from actionlog.models import db
from actionlog.models.notification import NOTIFICATION_EVENTS, ActionLogNotification


def notify(log, recipients, event, message="", actor=None):
    """Stage one notification per distinct recipient, skipping the actor.

    Returns:
        List of staged ActionLogNotification instances.
    """
    if event not in NOTIFICATION_EVENTS:
        raise ValueError(f"Unknown notification event: {event}")

    seen = set()
    created = []
    for user in recipients:
        if user is None or user.id in seen:
            continue
        seen.add(user.id)
        if actor is not None and user.id == actor.id:
            continue
        notif = ActionLogNotification(
            action_log_id=log.id,
            recipient_id=user.id,
            event=event,
            message=message,
        )
        db.session.add(notif)
        created.append(notif)
    return created


def unread_count(log_id, user_id):
    return db.session.execute(
        select(func.count(ActionLogNotification.id)).where(
            ActionLogNotification.action_log_id == log_id,
            ActionLogNotification.recipient_id == user_id,
            ActionLogNotification.is_read.is_(False),
        )
    ).scalar_one()


def mark_read(log_id, user_id):
    """Mark every unread notification of ``user_id`` on the log as read.

    Returns:
        Number of notifications marked.
    """
    result = db.session.execute(
        update(ActionLogNotification)
        .where(
            ActionLogNotification.action_log_id == log_id,
            ActionLogNotification.recipient_id == user_id,
            ActionLogNotification.is_read.is_(False),
        )
        .values(is_read=True, read_at=datetime.now(timezone.utc))
    )
    db.session.commit()
    return result.rowcount or 0
