"""
Comment thread for action logs.

Append-only: there is no edit or delete. Replies nest one level deep; a reply
to a reply is attached to the top-level comment it belongs to.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from actionlog.core.exceptions import ValidationError
from actionlog.models import db
from actionlog.models.action_log import ActionLog, ActionLogComment
from actionlog.models.auth import User
from actionlog.models.notification import EVENT_COMMENT
from actionlog.services import notification_service

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 5000


def record_entry(log: ActionLog, author: User, body: str, status: str | None = None,
                 parent: ActionLogComment | None = None) -> ActionLogComment:
    """Add a comment row to the session without committing.

    Used by the workflow to log status changes alongside their comment.
    """
    entry = ActionLogComment(
        action_log_id=log.id,
        user_id=author.id,
        comment=body,
        status=status,
        parent_id=parent.id if parent else None,
    )
    db.session.add(entry)
    return entry


def add_comment(log: ActionLog, author: User, body: str, parent_id: int | None = None) -> dict:
    """Post a comment (or reply) on ``log`` and notify the people following it."""
    body = (body or "").strip()
    if not body:
        raise ValidationError("Comment text is required", details={"comment": "required"})
    if len(body) > MAX_COMMENT_LENGTH:
        raise ValidationError(f"Comment must be ≤ {MAX_COMMENT_LENGTH} characters",
                              details={"comment": "too long"})

    parent = None
    if parent_id is not None:
        parent = db.session.get(ActionLogComment, parent_id)
        if parent is None or parent.action_log_id != log.id:
            raise ValidationError("parent_id does not belong to this action log",
                                  details={"parent_id": parent_id})
        if parent.parent_id is not None:
            parent = parent.parent

    entry = record_entry(log, author, body, parent=parent)

    recipients = list(log.assignees) + [u for u in (log.created_by, log.original_assigner) if u]
    if parent is not None and parent.user is not None:
        recipients.append(parent.user)
    notification_service.notify(
        log, recipients, EVENT_COMMENT,
        f"{author.full_name} commented on '{log.title}'", actor=author,
    )
    db.session.commit()

    logger.info("Comment %s added to action log %s by user=%s parent=%s",
                entry.id, log.id, author.id, entry.parent_id)
    return entry.to_dict()


def list_comments(log: ActionLog) -> list[dict]:
    """Top-level comments newest first, each with its replies oldest first."""
    rows = db.session.execute(
        select(ActionLogComment)
        .where(ActionLogComment.action_log_id == log.id, ActionLogComment.parent_id.is_(None))
        .order_by(ActionLogComment.created_at.desc(), ActionLogComment.id.desc())
    ).scalars().all()
    return [c.to_dict() for c in rows]
