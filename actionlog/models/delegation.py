"""
Action Log Tracker
Delegation model — temporary hand-off of approval authority.

Business rules:
- At most one active delegation per delegator. Creating a new one
  deactivates the previous one in the same commit ("replace, never stack").
- Expiry is not an event. A row whose ``expires_at`` has passed is treated as
  inactive for authorization even while ``is_active`` is still True; see
  ``is_effective``.
"""

from datetime import datetime, timezone

from actionlog.models import db


# ── Constants ────────────────────────────────────────────────────────────────

REASON_LEAVE = "leave"
REASON_OTHER = "other"
VALID_REASONS = frozenset({REASON_LEAVE, REASON_OTHER})


def _utcnow():
    return datetime.now(timezone.utc)


def _as_aware(value):
    """SQLite drops tzinfo on round-trip; treat naive datetimes as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_effective(is_active, expires_at, now):
    """Return True if a delegation grants authority at ``now``.

    Pure function of ``(now, expires_at, is_active)``: a revoked delegation is
    never effective, an open-ended one is effective until revoked, a bounded
    one stops being effective once ``now`` reaches ``expires_at``.
    """
    if not is_active:
        return False
    expires_at = _as_aware(expires_at)
    if expires_at is None:
        return True
    return _as_aware(now) < expires_at


class Delegation(db.Model):
    __tablename__ = "delegations"

    id = db.Column(db.Integer, primary_key=True)
    delegated_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    delegated_to_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    delegated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    reason = db.Column(db.String(20), nullable=False, default=REASON_LEAVE, comment="leave | other")

    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    delegated_by = db.relationship("User", foreign_keys=[delegated_by_id])
    delegated_to = db.relationship("User", foreign_keys=[delegated_to_id])
    revoked_by = db.relationship("User", foreign_keys=[revoked_by_id])

    __table_args__ = (
        db.Index("ix_delegations_delegator_active", "delegated_by_id", "is_active"),
    )

    def is_effective(self, now=None):
        return is_effective(self.is_active, self.expires_at, now or _utcnow())

    def is_expired(self, now=None):
        expires_at = _as_aware(self.expires_at)
        return expires_at is not None and _as_aware(now or _utcnow()) >= expires_at

    def to_dict(self, now=None):
        now = now or _utcnow()
        return {
            "id": self.id,
            "delegated_by": self.delegated_by.to_summary() if self.delegated_by else None,
            "delegated_by_id": self.delegated_by_id,
            "delegated_to": self.delegated_to.to_summary() if self.delegated_to else None,
            "delegated_to_id": self.delegated_to_id,
            "authority": self.delegated_by.authority if self.delegated_by else None,
            "delegated_at": self.delegated_at.isoformat() if self.delegated_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "is_active": self.is_active,
            "is_expired": self.is_expired(now),
            "is_valid": self.is_effective(now),
            "reason": self.reason,
            "revoked_at": self.revoked_at.isoformat() if self.revoked_at else None,
            "revoked_by": self.revoked_by_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Delegation {self.id}: {self.delegated_by_id}→{self.delegated_to_id} active={self.is_active}>"
