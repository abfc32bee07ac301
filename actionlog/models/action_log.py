"""
Action Log Tracker
Action log domain models.

Models:
    - ActionLog:          action item with assignment and approval-chain position
    - AssignmentHistory:  append-only record of every (re)assignment
    - ActionLogComment:   discussion entry, optionally a reply, optionally a status audit

Status lifecycle:
    open → in_progress → pending_approval → closed
                ↑                │
                └──── reject ────┘

``closed`` is reachable only through an approval at the final stage of the
chain; see ``actionlog.services.approval_workflow``.
"""

from datetime import datetime, timezone

from actionlog.models import db


# ── Constants ────────────────────────────────────────────────────────────────

STATUS_OPEN = "open"
STATUS_IN_PROGRESS = "in_progress"
STATUS_PENDING_APPROVAL = "pending_approval"
STATUS_CLOSED = "closed"

VALID_STATUSES = frozenset({STATUS_OPEN, STATUS_IN_PROGRESS, STATUS_PENDING_APPROVAL, STATUS_CLOSED})

# Status changes an assignee may request directly. "closed" is a request for
# closure and lands in pending_approval; approve/reject are separate events.
STATUS_TRANSITIONS = {
    STATUS_OPEN:             [STATUS_IN_PROGRESS],
    STATUS_IN_PROGRESS:      [STATUS_IN_PROGRESS, STATUS_PENDING_APPROVAL],
    STATUS_PENDING_APPROVAL: [],
    STATUS_CLOSED:           [],
}

STAGE_NONE = "none"
STAGE_UNIT_HEAD = "unit_head"
STAGE_ASSISTANT_COMMISSIONER = "assistant_commissioner"
STAGE_COMMISSIONER = "commissioner"
STAGE_CLOSED = "closed"
STAGE_REJECTED = "rejected"

# Stages at which someone still has to sign, in chain order
APPROVAL_STAGES = (STAGE_UNIT_HEAD, STAGE_ASSISTANT_COMMISSIONER, STAGE_COMMISSIONER)

VALID_PRIORITIES = frozenset({"High", "Medium", "Low"})

# Statuses in which the assignment may still change
ASSIGNABLE_STATUSES = frozenset({STATUS_OPEN, STATUS_IN_PROGRESS})


def validate_status_transition(old_status, new_status):
    """Return True if an assignee may move a log from old_status to new_status."""
    return new_status in STATUS_TRANSITIONS.get(old_status, [])


def _utcnow():
    return datetime.now(timezone.utc)


action_log_assignees = db.Table(
    "action_log_assignees",
    db.Column(
        "action_log_id", db.Integer,
        db.ForeignKey("action_logs.id", ondelete="CASCADE"), primary_key=True,
    ),
    db.Column(
        "user_id", db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
    ),
)


class ActionLog(db.Model):
    """
    Action item tracked through assignment and a multi-stage closure approval.

    Business rules:
    - team_leader, when set, is one of the assignees.
    - With 2+ assignees only the team leader may change status; without a
      team leader nobody can.
    - original_assigner is set once, on the first assignment, and gates
      re-assignment from then on.
    """

    __tablename__ = "action_logs"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, default="")
    priority = db.Column(db.String(10), nullable=False, default="Medium")
    due_date = db.Column(db.Date, nullable=True)

    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    department_unit_id = db.Column(
        db.Integer, db.ForeignKey("department_units.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )

    status = db.Column(db.String(20), nullable=False, default=STATUS_OPEN, index=True)
    closure_approval_stage = db.Column(
        db.String(30), nullable=False, default=STAGE_NONE,
        comment="none | unit_head | assistant_commissioner | commissioner | closed | rejected",
    )
    final_approval_stage = db.Column(
        db.String(30), nullable=True,
        comment="Last stage of the chain computed at submission",
    )
    status_before_submission = db.Column(db.String(20), nullable=True)

    team_leader_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    original_assigner_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    submitted_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    approved_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    department = db.relationship("Department")
    department_unit = db.relationship("DepartmentUnit")
    assignees = db.relationship(
        "User", secondary=action_log_assignees, order_by="User.id", lazy="selectin",
    )
    team_leader = db.relationship("User", foreign_keys=[team_leader_id])
    created_by = db.relationship("User", foreign_keys=[created_by_id])
    original_assigner = db.relationship("User", foreign_keys=[original_assigner_id])
    submitted_by = db.relationship("User", foreign_keys=[submitted_by_id])
    approved_by = db.relationship("User", foreign_keys=[approved_by_id])
    rejected_by = db.relationship("User", foreign_keys=[rejected_by_id])

    comments = db.relationship(
        "ActionLogComment", back_populates="action_log",
        cascade="all, delete-orphan", lazy="dynamic",
    )
    assignment_history = db.relationship(
        "AssignmentHistory", back_populates="action_log",
        cascade="all, delete-orphan", order_by="AssignmentHistory.id",
    )

    __table_args__ = (
        db.Index("ix_action_logs_status_stage", "status", "closure_approval_stage"),
    )

    @property
    def assignee_ids(self):
        return [u.id for u in self.assignees]

    def is_assignee(self, user_id):
        return user_id in self.assignee_ids

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description or "",
            "priority": self.priority,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "department": self.department.to_dict(include_units=False) if self.department else None,
            "department_unit": self.department_unit.to_dict() if self.department_unit else None,
            "status": self.status,
            "closure_approval_stage": self.closure_approval_stage,
            "final_approval_stage": self.final_approval_stage,
            "assigned_to": self.assignee_ids,
            "assignees": [u.to_summary() for u in self.assignees],
            "team_leader": self.team_leader.to_summary() if self.team_leader else None,
            "created_by": self.created_by.to_summary() if self.created_by else None,
            "original_assigner": self.original_assigner.to_summary() if self.original_assigner else None,
            "approved_by": self.approved_by_id,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "rejected_by": self.rejected_by_id,
            "rejected_at": self.rejected_at.isoformat() if self.rejected_at else None,
            "rejection_reason": self.rejection_reason,
            "comment_count": self.comments.count(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<ActionLog {self.id}: {self.title[:40]} [{self.status}/{self.closure_approval_stage}]>"


class AssignmentHistory(db.Model):
    """Append-only trail of assignment changes, never updated or deleted."""

    __tablename__ = "action_log_assignment_history"

    id = db.Column(db.Integer, primary_key=True)
    action_log_id = db.Column(
        db.Integer, db.ForeignKey("action_logs.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    assigned_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_to = db.Column(db.JSON, nullable=False, default=list, comment="Assignee user ids after the change")
    previous_assigned_to = db.Column(db.JSON, nullable=False, default=list)
    team_leader_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    comment = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    action_log = db.relationship("ActionLog", back_populates="assignment_history")
    assigned_by = db.relationship("User", foreign_keys=[assigned_by_id])

    def to_dict(self):
        return {
            "id": self.id,
            "action_log": self.action_log_id,
            "assigned_by": self.assigned_by.to_summary() if self.assigned_by else None,
            "assigned_to": list(self.assigned_to or []),
            "previous_assigned_to": list(self.previous_assigned_to or []),
            "team_leader": self.team_leader_id,
            "comment": self.comment,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ActionLogComment(db.Model):
    """
    Comment on an action log.

    Comments are append-only. ``status`` is filled when the comment was
    posted together with a status change, so the thread doubles as the
    status audit trail. Replies nest one level deep under ``parent``.
    """

    __tablename__ = "action_log_comments"

    id = db.Column(db.Integer, primary_key=True)
    action_log_id = db.Column(
        db.Integer, db.ForeignKey("action_logs.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    comment = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), nullable=True)
    parent_id = db.Column(
        db.Integer, db.ForeignKey("action_log_comments.id", ondelete="CASCADE"), nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    action_log = db.relationship("ActionLog", back_populates="comments")
    user = db.relationship("User")
    replies = db.relationship(
        "ActionLogComment",
        backref=db.backref("parent", remote_side=[id]),
        order_by="ActionLogComment.id",
    )

    def to_dict(self, include_replies=True):
        d = {
            "id": self.id,
            "action_log": self.action_log_id,
            "user": self.user.to_summary() if self.user else None,
            "comment": self.comment,
            "status": self.status,
            "parent_id": self.parent_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_replies:
            d["replies"] = [r.to_dict(include_replies=False) for r in self.replies]
        return d

    def __repr__(self):
        return f"<ActionLogComment {self.id} on log {self.action_log_id}>"
