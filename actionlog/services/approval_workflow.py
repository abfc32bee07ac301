"""
Approval workflow: the single place that decides who may move an action log.

Transition table:

    open             --assign-->                 open          (assigner guard)
    open/in_progress --update-status(in_progress)--> in_progress (team-leader guard)
    in_progress      --update-status(closed)-->  pending_approval, first stage computed
    pending_approval --approve-->                next stage, or closed at the final stage
    pending_approval --reject-->                 in_progress, stage=rejected

Approval chain:
    unit_head → assistant_commissioner → commissioner.
    First stage is the one directly above the submitter's own authority.
    Final stage is the higher of the first stage and the stage of the original
    assigner's authority (creator's when nobody assigned). Stages nobody holds
    in the log's scope are skipped.

Authority resolution:
    A user may act on the current stage if, for some outright holder H of that
    stage's authority in the log's scope, delegation_service.resolve(H) is the
    user. This is evaluated against live delegation state on every call.

Guards raise ``AuthorizationError`` / ``StateConflictError`` before any
mutation, so a refused action leaves no partial state. ``apply_*`` helpers
only mutate the session; ``approve_action_log`` and ``reject_action_log``
commit.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from actionlog.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from actionlog.models import db
from actionlog.models.action_log import (
    APPROVAL_STAGES,
    ASSIGNABLE_STATUSES,
    STAGE_CLOSED,
    STAGE_REJECTED,
    STAGE_UNIT_HEAD,
    STATUS_CLOSED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING_APPROVAL,
    VALID_STATUSES,
    ActionLog,
    validate_status_transition,
)
from actionlog.models.auth import (
    AUTHORITY_LEVELS,
    AUTHORITY_NONE,
    ROLE_SUPER_ADMIN,
    User,
)
from actionlog.models.notification import (
    EVENT_APPROVED,
    EVENT_REJECTED,
    EVENT_STATUS_CHANGED,
    EVENT_SUBMITTED,
)
from actionlog.services import comment_service, delegation_service, notification_service

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def authority_rank(authority: str | None) -> int:
    """0 for no authority, 1 unit head, 2 assistant commissioner, 3 commissioner."""
    if not authority or authority == AUTHORITY_NONE:
        return 0
    return AUTHORITY_LEVELS.index(authority) + 1


# ═════════════════════════════════════════════════════════════════════════════
# AUTHORITY RESOLUTION
# ═════════════════════════════════════════════════════════════════════════════


def stage_holders(log: ActionLog, stage: str) -> list[User]:
    """Active users holding ``stage``'s authority outright in the log's scope.

    Unit-head authority is scoped to the log's unit; the two commissioner
    authorities to the log's department.
    """
    if stage not in APPROVAL_STAGES:
        return []
    q = select(User).where(User.authority == stage, User.is_active.is_(True))
    if stage == STAGE_UNIT_HEAD:
        if log.department_unit_id is None:
            return []
        q = q.where(User.department_unit_id == log.department_unit_id)
    else:
        q = q.where(User.department_id == log.department_id)
    return list(db.session.execute(q.order_by(User.id)).scalars().all())


def can_act_on_stage(user: User, log: ActionLog, now: datetime | None = None) -> bool:
    """True if ``user`` may approve or reject ``log`` right now."""
    if log.status != STATUS_PENDING_APPROVAL:
        return False
    if log.closure_approval_stage not in APPROVAL_STAGES:
        return False
    now = now or _utcnow()
    for holder in stage_holders(log, log.closure_approval_stage):
        if delegation_service.resolve(holder, now).id == user.id:
            return True
    return False


def exercised_scopes(user: User, now: datetime | None = None) -> list[tuple[str, int | None, int | None]]:
    """``(authority, department_id, department_unit_id)`` the user can exercise now.

    The user's own authority unless they are on leave, plus the authority of
    everyone who currently delegates to them.
    """
    now = now or _utcnow()
    scopes = []
    own = user.authority or AUTHORITY_NONE
    if own != AUTHORITY_NONE and not delegation_service.is_on_leave(user, now):
        scopes.append((own, user.department_id, user.department_unit_id))
    for d in delegation_service.delegations_received_by(user.id, now):
        holder = d.delegated_by
        if holder is not None and holder.is_active and authority_rank(holder.authority) > 0:
            scopes.append((holder.authority, holder.department_id, holder.department_unit_id))
    return scopes


def exercises_authority_over(log: ActionLog, user: User, now: datetime | None = None) -> bool:
    """True if any authority the user exercises now covers the log's scope."""
    for authority, department_id, unit_id in exercised_scopes(user, now):
        if authority == AUTHORITY_LEVELS[0]:
            if unit_id is not None and unit_id == log.department_unit_id:
                return True
        elif department_id == log.department_id:
            return True
    return False


def authority_summary(user: User, now: datetime | None = None) -> dict:
    """Server-computed authorization flags surfaced on the user record.

    Keys:
        is_currently_on_leave:  user has handed their own authority away.
        has_active_delegation:  serialized delegation received, or None.
        can_approve_action_logs: holds authority and not on leave, or is a
                                 live delegate of someone who does.
        effective_authority:    highest authority the user can exercise now.
        has_ag_cpap_designation: effective authority is commissioner.
    """
    now = now or _utcnow()
    own = user.authority or AUTHORITY_NONE
    on_leave = own != AUTHORITY_NONE and delegation_service.is_on_leave(user, now)

    received = [
        d for d in delegation_service.delegations_received_by(user.id, now)
        if d.delegated_by and authority_rank(d.delegated_by.authority) > 0
    ]

    effective = [authority for authority, _dept, _unit in exercised_scopes(user, now)]
    top = max(effective, key=authority_rank, default=AUTHORITY_NONE)

    return {
        "is_currently_on_leave": on_leave,
        "has_active_delegation": received[0].to_dict(now) if received else None,
        "can_approve_action_logs": bool(effective),
        "effective_authority": top,
        "has_ag_cpap_designation": top == AUTHORITY_LEVELS[-1],
    }


# ═════════════════════════════════════════════════════════════════════════════
# GUARDS
# ═════════════════════════════════════════════════════════════════════════════


def ensure_can_change_status(log: ActionLog, actor: User) -> None:
    """Assignee guard with the team-leader rule for 2+ assignees.

    Applied uniformly to every actor: with two or more assignees and no team
    leader, nobody can change the status.
    """
    if not log.is_assignee(actor.id):
        raise AuthorizationError("Only assignees can update the status of this action log",
                                 code="NOT_ASSIGNEE")
    if not actor.has_capability("can_update_status"):
        raise AuthorizationError("Your role cannot update action log status", code="ROLE_CANNOT_UPDATE")
    if len(log.assignees) >= 2:
        if log.team_leader_id is None:
            raise StateConflictError(
                "A team leader must be set before the status of a multi-assignee action log can change",
                current_state=log.status,
            )
        if log.team_leader_id != actor.id:
            raise AuthorizationError("Only the team leader can update the status; other assignees may comment",
                                     code="NOT_TEAM_LEADER")


def can_assign(log: ActionLog, actor: User, now: datetime | None = None) -> bool:
    """True if ``actor`` may (re)assign ``log``.

    Once an original assigner is recorded only they may re-assign. Before
    that, the creator, an administrator, or whoever currently exercises the
    unit-head / commissioner authorities over the log's scope may assign.
    """
    if log.original_assigner_id is not None:
        return actor.id == log.original_assigner_id
    if actor.id == log.created_by_id or actor.role_name == ROLE_SUPER_ADMIN:
        return True
    return exercises_authority_over(log, actor, now)


def ensure_can_assign(log: ActionLog, actor: User) -> None:
    if log.status not in ASSIGNABLE_STATUSES:
        raise StateConflictError(f"Cannot assign an action log in status '{log.status}'",
                                 current_state=log.status)
    if not can_assign(log, actor):
        raise AuthorizationError("Only the original assigner can re-assign this action log",
                                 code="NOT_ASSIGNER")


def _ensure_can_decide(log: ActionLog, actor: User, now: datetime) -> None:
    if log.status != STATUS_PENDING_APPROVAL:
        raise StateConflictError(f"Action log {log.id} is not pending approval (status={log.status})",
                                 current_state=log.status)
    if can_act_on_stage(actor, log, now):
        return

    if log.closure_approval_stage == actor.authority and delegation_service.is_on_leave(actor, now):
        logger.warning("Approval refused: user=%s is on leave for log=%s stage=%s",
                       actor.id, log.id, log.closure_approval_stage)
        raise AuthorizationError("Your approval authority is currently delegated", code="ON_LEAVE")
    logger.warning("Approval refused: user=%s cannot act on log=%s stage=%s",
                   actor.id, log.id, log.closure_approval_stage)
    raise AuthorizationError(
        f"You are not authorized to act at the '{log.closure_approval_stage}' approval stage",
        code="NOT_APPROVER",
    )


# ═════════════════════════════════════════════════════════════════════════════
# CHAIN COMPUTATION
# ═════════════════════════════════════════════════════════════════════════════


def _staffed_stage(log: ActionLog, start: int, final: int) -> str | None:
    """First stage in [start, final] that somebody holds, or None."""
    for idx in range(start, final + 1):
        if stage_holders(log, APPROVAL_STAGES[idx]):
            return APPROVAL_STAGES[idx]
    return None


def compute_approval_chain(log: ActionLog, submitter: User) -> tuple[str, str]:
    """Return ``(first_stage, final_stage)`` for a log submitted by ``submitter``.

    Raises:
        ValidationError: nobody in the log's scope can approve it.
    """
    top = len(APPROVAL_STAGES) - 1
    first = min(authority_rank(submitter.authority), top)

    assigner = log.original_assigner or log.created_by
    final = max(first, authority_rank(assigner.authority if assigner else None) - 1)

    first_stage = _staffed_stage(log, first, final)
    if first_stage is None:
        # Chain ends above anyone available; escalate to the nearest staffed level
        first_stage = _staffed_stage(log, final, top)
        if first_stage is None:
            raise ValidationError(
                "No approver is configured for this action log's department",
                details={"department": log.department_id, "department_unit": log.department_unit_id},
            )
        final = APPROVAL_STAGES.index(first_stage)
    return first_stage, APPROVAL_STAGES[final]


# ═════════════════════════════════════════════════════════════════════════════
# TRANSITIONS
# ═════════════════════════════════════════════════════════════════════════════


def apply_status_change(log: ActionLog, actor: User, requested: str, comment: str | None = None) -> None:
    """Apply an assignee's status update to ``log`` (no commit).

    ``closed`` (or ``pending_approval``) submits the log for approval.
    """
    if requested not in VALID_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(sorted(VALID_STATUSES))}",
                              details={"status": requested})

    ensure_can_change_status(log, actor)

    target = STATUS_PENDING_APPROVAL if requested in (STATUS_CLOSED, STATUS_PENDING_APPROVAL) else requested
    if not validate_status_transition(log.status, target):
        raise StateConflictError(f"Cannot change status from '{log.status}' to '{requested}'",
                                 current_state=log.status)

    previous = log.status
    if target == previous:
        # in_progress re-confirmed by an authorised assignee; nothing moves
        if comment:
            comment_service.record_entry(log, actor, comment, status=log.status)
        return

    if target == STATUS_PENDING_APPROVAL:
        first, final = compute_approval_chain(log, actor)
        log.status_before_submission = previous
        log.status = STATUS_PENDING_APPROVAL
        log.closure_approval_stage = first
        log.final_approval_stage = final
        log.submitted_by_id = actor.id
        log.rejected_by_id = None
        log.rejected_at = None
        log.rejection_reason = None
        event = EVENT_SUBMITTED
        recipients = _current_stage_actors(log) + _interested_users(log)
        message = f"'{log.title}' submitted for {first.replace('_', ' ')} approval"
    else:
        log.status = target
        event = EVENT_STATUS_CHANGED
        recipients = _interested_users(log)
        message = f"'{log.title}' moved to {target.replace('_', ' ')}"

    if comment:
        comment_service.record_entry(log, actor, comment, status=log.status)
    notification_service.notify(log, recipients, event, message, actor=actor)

    logger.info("Action log %s status %s → %s by user=%s stage=%s",
                log.id, previous, log.status, actor.id, log.closure_approval_stage)


def approve_action_log(log_id: int, actor: User, comment: str | None = None,
                       now: datetime | None = None) -> dict:
    """Approve the current stage; closes the log at the final stage."""
    now = now or _utcnow()
    log = _require_log(log_id)
    _ensure_can_decide(log, actor, now)

    stage = log.closure_approval_stage
    final_idx = APPROVAL_STAGES.index(log.final_approval_stage or stage)
    next_stage = None
    if APPROVAL_STAGES.index(stage) < final_idx:
        next_stage = _staffed_stage(log, APPROVAL_STAGES.index(stage) + 1, final_idx)

    if next_stage:
        log.closure_approval_stage = next_stage
        recipients = _current_stage_actors(log, now) + _interested_users(log)
        message = f"'{log.title}' approved at {stage.replace('_', ' ')} stage; awaiting {next_stage.replace('_', ' ')}"
    else:
        log.status = STATUS_CLOSED
        log.closure_approval_stage = STAGE_CLOSED
        log.approved_by_id = actor.id
        log.approved_at = now
        recipients = _interested_users(log)
        message = f"'{log.title}' approved and closed"

    comment_service.record_entry(
        log, actor, comment or f"Approved at {stage.replace('_', ' ')} stage", status=log.status,
    )
    notification_service.notify(log, recipients, EVENT_APPROVED, message, actor=actor)
    db.session.commit()

    logger.info("Action log %s approved at stage=%s by user=%s → status=%s stage=%s",
                log.id, stage, actor.id, log.status, log.closure_approval_stage)
    return log.to_dict()


def reject_action_log(log_id: int, actor: User, reason: str, now: datetime | None = None) -> dict:
    """Return a pending log to its assignees. The log is never closed or lost."""
    now = now or _utcnow()
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A rejection reason is required", details={"reason": "required"})

    log = _require_log(log_id)
    _ensure_can_decide(log, actor, now)

    stage = log.closure_approval_stage
    log.status = log.status_before_submission or STATUS_IN_PROGRESS
    log.closure_approval_stage = STAGE_REJECTED
    log.rejected_by_id = actor.id
    log.rejected_at = now
    log.rejection_reason = reason

    comment_service.record_entry(log, actor, f"Rejected: {reason}", status=log.status)
    notification_service.notify(
        log, _interested_users(log), EVENT_REJECTED,
        f"'{log.title}' rejected at {stage.replace('_', ' ')} stage: {reason}", actor=actor,
    )
    db.session.commit()

    logger.info("Action log %s rejected at stage=%s by user=%s", log.id, stage, actor.id)
    return log.to_dict()


# ── Helpers ──────────────────────────────────────────────────────────────────


def _require_log(log_id: int) -> ActionLog:
    log = db.session.get(ActionLog, log_id)
    if log is None:
        raise NotFoundError(resource="ActionLog", resource_id=log_id)
    return log


def _current_stage_actors(log: ActionLog, now: datetime | None = None) -> list[User]:
    """Users who can act on the log's current stage right now."""
    now = now or _utcnow()
    return [delegation_service.resolve(h, now) for h in stage_holders(log, log.closure_approval_stage)]


def _interested_users(log: ActionLog) -> list[User]:
    users = list(log.assignees)
    for extra in (log.created_by, log.original_assigner):
        if extra is not None:
            users.append(extra)
    return users
