"""
Action Log Tracker
Notification model — per-recipient, per-action-log read tracking.

One record per recipient per event. The actor of an event never receives
a notification for it.
"""

from datetime import datetime, timezone

from actionlog.models import db


# ── Constants ────────────────────────────────────────────────────────────────

EVENT_ASSIGNED = "assigned"
EVENT_STATUS_CHANGED = "status_changed"
EVENT_SUBMITTED = "submitted"
EVENT_APPROVED = "approved"
EVENT_REJECTED = "rejected"
EVENT_COMMENT = "comment"

NOTIFICATION_EVENTS = frozenset({
    EVENT_ASSIGNED, EVENT_STATUS_CHANGED, EVENT_SUBMITTED,
    EVENT_APPROVED, EVENT_REJECTED, EVENT_COMMENT,
})


class ActionLogNotification(db.Model):
    __tablename__ = "action_log_notifications"

    id = db.Column(db.Integer, primary_key=True)
    action_log_id = db.Column(
        db.Integer, db.ForeignKey("action_logs.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    recipient_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    event = db.Column(db.String(30), nullable=False)
    message = db.Column(db.Text, default="")

    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.Index("ix_notifications_log_recipient_read", "action_log_id", "recipient_id", "is_read"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "action_log": self.action_log_id,
            "recipient": self.recipient_id,
            "event": self.event,
            "message": self.message,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ActionLogNotification {self.id}: {self.event} → user {self.recipient_id}>"
