"""
Action log store — create, read, update, assign.

Rules:
  - Every authorization decision is delegated to approval_workflow; this
    module never re-derives who may do what.
  - Each public command is one unit of work: on any error the session is
    rolled back so a refused request leaves no partial change.
  - db.session.commit() happens only in service modules.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy import func, or_, select

from actionlog.core.exceptions import AuthorizationError, NotFoundError, StateConflictError, ValidationError
from actionlog.models import db
from actionlog.models.action_log import (
    STATUS_CLOSED,
    STATUS_PENDING_APPROVAL,
    VALID_PRIORITIES,
    ActionLog,
    AssignmentHistory,
    action_log_assignees,
)
from actionlog.models.auth import (
    AUTHORITY_COMMISSIONER,
    AUTHORITY_UNIT_HEAD,
    ROLE_SUPER_ADMIN,
    Department,
    DepartmentUnit,
    User,
)
from actionlog.models.notification import EVENT_ASSIGNED
from actionlog.services import approval_workflow, comment_service, notification_service

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("title", "description", "priority", "due_date")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# SERIALIZATION & VISIBILITY
# ═════════════════════════════════════════════════════════════════════════════


def serialize(log: ActionLog, viewer: User, now: datetime | None = None) -> dict:
    """Log dict plus the viewer-specific permission flags the client renders from."""
    now = now or _utcnow()
    d = log.to_dict()
    d["can_approve"] = approval_workflow.can_act_on_stage(viewer, log, now)
    d["can_assign"] = (
        log.status not in (STATUS_PENDING_APPROVAL, STATUS_CLOSED)
        and approval_workflow.can_assign(log, viewer, now)
    )
    try:
        approval_workflow.ensure_can_change_status(log, viewer)
        d["can_update_status"] = log.status not in (STATUS_PENDING_APPROVAL, STATUS_CLOSED)
    except (AuthorizationError, StateConflictError):
        d["can_update_status"] = False
    return d


def _visibility_clause(viewer: User, now: datetime):
    """SQL condition for logs ``viewer`` may see, or None for everything."""
    if viewer.has_capability("can_view_all_logs"):
        return None
    conditions = [
        ActionLog.created_by_id == viewer.id,
        ActionLog.original_assigner_id == viewer.id,
        ActionLog.assignees.any(User.id == viewer.id),
    ]
    for authority, department_id, unit_id in approval_workflow.exercised_scopes(viewer, now):
        if authority == AUTHORITY_UNIT_HEAD:
            if unit_id is not None:
                conditions.append(ActionLog.department_unit_id == unit_id)
        elif department_id is not None:
            conditions.append(ActionLog.department_id == department_id)
    return or_(*conditions)


def can_view(log: ActionLog, viewer: User, now: datetime | None = None) -> bool:
    if viewer.has_capability("can_view_all_logs"):
        return True
    if viewer.id in (log.created_by_id, log.original_assigner_id) or log.is_assignee(viewer.id):
        return True
    return approval_workflow.exercises_authority_over(log, viewer, now)


def get_visible_log(log_id: int, viewer: User) -> ActionLog:
    """Load a log the viewer may see. Invisible logs look missing."""
    log = db.session.get(ActionLog, log_id)
    if log is None or not can_view(log, viewer):
        raise NotFoundError(resource="ActionLog", resource_id=log_id)
    return log


def list_action_logs(viewer: User, filters: dict | None = None,
                     page: int | None = None, page_size: int | None = None):
    """Return serialized logs visible to ``viewer``, newest first.

    Filters (all optional): status, priority, department, department_unit,
    assigned_to, created_by, search, awaiting_my_approval.

    Without ``page`` the result is a plain list. With it, only that page is
    loaded and serialized and a dict {count, results, has_next, has_previous}
    is returned.
    """
    filters = filters or {}
    now = _utcnow()

    q = select(ActionLog)
    clause = _visibility_clause(viewer, now)
    if clause is not None:
        q = q.where(clause)

    if filters.get("status"):
        q = q.where(ActionLog.status == filters["status"])
    if filters.get("priority"):
        q = q.where(ActionLog.priority == filters["priority"])
    if filters.get("department"):
        q = q.where(ActionLog.department_id == filters["department"])
    if filters.get("department_unit"):
        q = q.where(ActionLog.department_unit_id == filters["department_unit"])
    if filters.get("created_by"):
        q = q.where(ActionLog.created_by_id == filters["created_by"])
    if filters.get("assigned_to"):
        q = q.where(ActionLog.id.in_(
            select(action_log_assignees.c.action_log_id)
            .where(action_log_assignees.c.user_id == filters["assigned_to"])
        ))
    if filters.get("search"):
        term = f"%{filters['search'].strip()}%"
        q = q.where(or_(ActionLog.title.ilike(term), ActionLog.description.ilike(term)))
    if filters.get("awaiting_my_approval"):
        q = q.where(ActionLog.status == STATUS_PENDING_APPROVAL)

    ordered = q.order_by(ActionLog.created_at.desc(), ActionLog.id.desc())

    if filters.get("awaiting_my_approval"):
        # stage authority is resolved through live delegations, not in SQL
        logs = [
            log for log in db.session.execute(ordered).scalars().all()
            if approval_workflow.can_act_on_stage(viewer, log, now)
        ]
        total = len(logs)
        if page is not None:
            start = (page - 1) * page_size
            logs = logs[start:start + page_size]
    elif page is not None:
        total = db.session.execute(
            select(func.count()).select_from(q.subquery())
        ).scalar_one()
        logs = db.session.execute(
            ordered.limit(page_size).offset((page - 1) * page_size)
        ).scalars().all()
    else:
        logs = db.session.execute(ordered).scalars().all()

    results = [serialize(log, viewer, now) for log in logs]
    if page is None:
        return results
    return {
        "count": total,
        "results": results,
        "has_next": page * page_size < total,
        "has_previous": page > 1,
    }


def get_action_log(log_id: int, viewer: User) -> dict:
    return serialize(get_visible_log(log_id, viewer), viewer)


def get_assignment_history(log_id: int, viewer: User) -> list[dict]:
    log = get_visible_log(log_id, viewer)
    return [h.to_dict() for h in log.assignment_history]


# ═════════════════════════════════════════════════════════════════════════════
# COMMANDS
# ═════════════════════════════════════════════════════════════════════════════


def create_action_log(actor: User, data: dict) -> dict:
    """Create a log; assignees given at creation make the creator the original assigner.

    Args:
        actor: creating user (role must allow creating logs).
        data: validated input: title, description, priority, due_date (date),
              department_id, department_unit_id, assigned_to (list[int]),
              team_leader (int), comment.
    """
    if not actor.has_capability("can_create_logs"):
        raise AuthorizationError("Your role cannot create action logs", code="ROLE_CANNOT_CREATE")

    try:
        department = db.session.get(Department, data["department_id"])
        if department is None:
            raise NotFoundError(resource="Department", resource_id=data["department_id"])

        unit_id = data.get("department_unit_id")
        if unit_id is None and actor.department_unit and actor.department_unit.department_id == department.id:
            unit_id = actor.department_unit_id
        if unit_id is not None:
            unit = db.session.get(DepartmentUnit, unit_id)
            if unit is None or unit.department_id != department.id:
                raise ValidationError("department_unit does not belong to the department",
                                      details={"department_unit": unit_id})

        priority = data.get("priority") or "Medium"
        if priority not in VALID_PRIORITIES:
            raise ValidationError(f"priority must be one of: {', '.join(sorted(VALID_PRIORITIES))}",
                                  details={"priority": priority})

        log = ActionLog(
            title=data["title"],
            description=data.get("description") or "",
            priority=priority,
            due_date=data.get("due_date"),
            department_id=department.id,
            department_unit_id=unit_id,
            created_by_id=actor.id,
        )
        db.session.add(log)
        db.session.flush()

        if data.get("assigned_to") or data.get("team_leader") is not None:
            _apply_assignment(log, actor, data["assigned_to"], data.get("team_leader"), data.get("comment"))

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Action log %s created by user=%s department=%s unit=%s assignees=%s",
                log.id, actor.id, log.department_id, log.department_unit_id, log.assignee_ids)
    return serialize(log, actor)


def assign_action_log(log_id: int, actor: User, assignee_ids: list[int],
                      team_leader_id: int | None = None, comment: str | None = None) -> dict:
    """(Re)assign a log. Only the original assigner once one is recorded."""
    try:
        log = get_visible_log(log_id, actor)
        approval_workflow.ensure_can_assign(log, actor)
        _apply_assignment(log, actor, assignee_ids, team_leader_id, comment)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return serialize(log, actor)


def update_action_log(log_id: int, actor: User, data: dict) -> dict:
    """Partial update: content fields, assignment, status, and/or a comment.

    Applied in that order inside one unit of work.
    """
    try:
        log = get_visible_log(log_id, actor)

        content = {k: data[k] for k in EDITABLE_FIELDS if k in data}
        if content:
            _apply_content(log, actor, content)

        if "assigned_to" in data or "team_leader" in data:
            approval_workflow.ensure_can_assign(log, actor)
            ids = data["assigned_to"] if "assigned_to" in data else log.assignee_ids
            leader = data["team_leader"] if "team_leader" in data else log.team_leader_id
            _apply_assignment(log, actor, ids, leader, None)

        comment = (data.get("comment") or "").strip() or None
        if data.get("status"):
            approval_workflow.apply_status_change(log, actor, data["status"], comment)
        elif comment:
            comment_service.record_entry(log, actor, comment)

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Action log %s updated by user=%s fields=%s", log.id, actor.id, sorted(data.keys()))
    return serialize(log, actor)


# ── Helpers ──────────────────────────────────────────────────────────────────


def _apply_content(log: ActionLog, actor: User, content: dict) -> None:
    if actor.id not in (log.created_by_id, log.original_assigner_id) and actor.role_name != ROLE_SUPER_ADMIN:
        raise AuthorizationError("Only the creator or the assigner can edit this action log",
                                 code="NOT_EDITOR")
    if log.status == STATUS_CLOSED:
        raise StateConflictError("Closed action logs cannot be edited", current_state=log.status)

    if "title" in content:
        title = (content["title"] or "").strip()
        if not title:
            raise ValidationError("title is required", details={"title": "required"})
        log.title = title
    if "description" in content:
        log.description = content["description"] or ""
    if "priority" in content:
        if content["priority"] not in VALID_PRIORITIES:
            raise ValidationError(f"priority must be one of: {', '.join(sorted(VALID_PRIORITIES))}",
                                  details={"priority": content["priority"]})
        log.priority = content["priority"]
    if "due_date" in content:
        due = content["due_date"]
        if due is not None and not isinstance(due, date):
            raise ValidationError("due_date must be a date", details={"due_date": str(due)})
        log.due_date = due


def _apply_assignment(log: ActionLog, actor: User, assignee_ids, team_leader_id, comment) -> None:
    """Replace the assignee set, record history, notify newly added users (no commit)."""
    ids = []
    for raw in assignee_ids or []:
        if raw not in ids:
            ids.append(raw)

    users = []
    if ids:
        users = list(db.session.execute(select(User).where(User.id.in_(ids))).scalars().all())
        found = {u.id for u in users}
        missing = [i for i in ids if i not in found]
        if missing:
            raise ValidationError("Unknown assignee ids", details={"assigned_to": missing})
        inactive = [u.id for u in users if not u.is_active]
        if inactive:
            raise ValidationError("Cannot assign inactive users", details={"assigned_to": inactive})
        if (any(u.authority == AUTHORITY_COMMISSIONER for u in users)
                and not actor.has_capability("can_assign_to_commissioner")):
            raise AuthorizationError("Your role cannot assign action logs to the commissioner",
                                     code="CANNOT_ASSIGN_COMMISSIONER")

    if team_leader_id is not None and team_leader_id not in ids:
        raise ValidationError("team_leader must be one of the assignees", details={"team_leader": team_leader_id})

    previous = log.assignee_ids
    users.sort(key=lambda u: u.id)
    log.assignees = users
    log.team_leader_id = team_leader_id if team_leader_id in ids else None
    if log.original_assigner_id is None and ids:
        log.original_assigner_id = actor.id

    db.session.add(AssignmentHistory(
        action_log_id=log.id,
        assigned_by_id=actor.id,
        assigned_to=sorted(ids),
        previous_assigned_to=previous,
        team_leader_id=log.team_leader_id,
        comment=comment,
    ))
    if comment:
        comment_service.record_entry(log, actor, comment, status=log.status)

    added = [u for u in users if u.id not in previous]
    notification_service.notify(
        log, added, EVENT_ASSIGNED, f"You were assigned to '{log.title}'", actor=actor,
    )
    logger.info("Action log %s assigned by user=%s: %s → %s team_leader=%s",
                log.id, actor.id, previous, sorted(ids), log.team_leader_id)
