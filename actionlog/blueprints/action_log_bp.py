"""
Action log blueprint.

Routes (all under /api/v1/action-logs):
  GET    /                                   – list visible logs (filters, optional pagination)
  POST   /                                   – create a log
  GET    /<id>/                              – one log with per-viewer flags
  PATCH  /<id>/                              – edit content, reassign, change status, comment
  POST   /<id>/assign/                       – (re)assign
  POST   /<id>/approve/                      – approve the current closure stage
  POST   /<id>/reject/                       – reject with a reason
  GET    /<id>/comments/                     – threaded comments
  POST   /<id>/comments/                     – add a comment or reply
  GET    /<id>/assignment_history/           – assignment audit trail
  GET    /<id>/unread_notifications/         – unread count for the caller
  POST   /<id>/mark_notifications_read/      – mark the caller's notifications read
"""

import logging

from flask import Blueprint, jsonify, request

from actionlog.blueprints import current_user, json_body, register_error_handlers
from actionlog.models.action_log import VALID_PRIORITIES, VALID_STATUSES
from actionlog.services import (
    action_log_service,
    approval_workflow,
    comment_service,
    notification_service,
)
from actionlog.utils.errors import E, api_error
from actionlog.utils.helpers import (
    page_url,
    pagination_params,
    parse_bool,
    parse_date,
    parse_id_list,
    parse_int,
)

logger = logging.getLogger(__name__)

action_log_bp = Blueprint("action_log", __name__, url_prefix="/api/v1/action-logs")
register_error_handlers(action_log_bp)

MAX_TITLE_LENGTH = 255

_INT_FILTERS = ("department", "department_unit", "assigned_to", "created_by")


def _invalid(field, message):
    return api_error(E.VALIDATION_INVALID, message, details={field: message})


def _parse_assignment(data):
    """Return (assignee_ids, team_leader_id) from a request body; raises ValueError."""
    assigned = parse_id_list(data.get("assigned_to"), "assigned_to")
    leader = parse_int(data.get("team_leader"), "team_leader")
    return assigned, leader


# ═════════════════════════════════════════════════════════════════════════════
# COLLECTION
# ═════════════════════════════════════════════════════════════════════════════


@action_log_bp.route("/", methods=["GET"])
def list_action_logs():
    user, err = current_user()
    if err:
        return err

    filters = {}
    for key in ("status", "priority", "search"):
        value = (request.args.get(key) or "").strip()
        if value:
            filters[key] = value
    if "status" in filters and filters["status"] not in VALID_STATUSES:
        return _invalid("status", f"status must be one of: {', '.join(sorted(VALID_STATUSES))}")
    try:
        for key in _INT_FILTERS:
            value = parse_int(request.args.get(key), key)
            if value is not None:
                filters[key] = value
        page, page_size = pagination_params()
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))
    if parse_bool(request.args.get("awaiting_my_approval", "")):
        filters["awaiting_my_approval"] = True

    if page is None:
        return jsonify(action_log_service.list_action_logs(user, filters)), 200

    envelope = action_log_service.list_action_logs(user, filters, page, page_size)
    return jsonify({
        "count": envelope["count"],
        "next": page_url(page + 1, page_size) if envelope["has_next"] else None,
        "previous": page_url(page - 1, page_size) if envelope["has_previous"] else None,
        "results": envelope["results"],
    }), 200


@action_log_bp.route("/", methods=["POST"])
def create_action_log():
    """Create an action log.

    Body: { title, description?, priority?, due_date?, department,
            department_unit?, assigned_to?, team_leader?, comment? }
    """
    user, err = current_user()
    if err:
        return err
    data = json_body()

    details = {}
    title = (data.get("title") or "").strip()
    if not title:
        details["title"] = "This field is required."
    elif len(title) > MAX_TITLE_LENGTH:
        details["title"] = f"Ensure this field has no more than {MAX_TITLE_LENGTH} characters."

    payload = {
        "title": title,
        "description": data.get("description") or "",
        "priority": data.get("priority") or "Medium",
        "comment": (data.get("comment") or "").strip() or None,
    }
    if payload["priority"] not in VALID_PRIORITIES:
        details["priority"] = f"Must be one of: {', '.join(sorted(VALID_PRIORITIES))}"
    try:
        payload["due_date"] = parse_date(data.get("due_date"))
    except ValueError as exc:
        details["due_date"] = str(exc)
    try:
        department_id = parse_int(data.get("department", data.get("department_id")), "department")
        if department_id is None:
            details["department"] = "This field is required."
        payload["department_id"] = department_id
        payload["department_unit_id"] = parse_int(
            data.get("department_unit", data.get("department_unit_id")), "department_unit")
        payload["assigned_to"], payload["team_leader"] = _parse_assignment(data)
    except ValueError as exc:
        details.setdefault("non_field_errors", str(exc))

    if details:
        return api_error(E.VALIDATION_REQUIRED, "Invalid action log data", details=details)

    return jsonify(action_log_service.create_action_log(user, payload)), 201


# ═════════════════════════════════════════════════════════════════════════════
# ITEM
# ═════════════════════════════════════════════════════════════════════════════


@action_log_bp.route("/<int:log_id>/", methods=["GET"])
def get_action_log(log_id):
    user, err = current_user()
    if err:
        return err
    return jsonify(action_log_service.get_action_log(log_id, user)), 200


@action_log_bp.route("/<int:log_id>/", methods=["PATCH"])
def update_action_log(log_id):
    """Partial update.

    Body (any subset): { status, comment, assigned_to, team_leader,
                         title, description, priority, due_date }
    """
    user, err = current_user()
    if err:
        return err
    data = json_body()

    payload = {}
    try:
        if "title" in data:
            title = (data.get("title") or "").strip()
            if not title:
                return _invalid("title", "title cannot be blank")
            payload["title"] = title[:MAX_TITLE_LENGTH]
        if "description" in data:
            payload["description"] = data.get("description") or ""
        if "priority" in data:
            payload["priority"] = data["priority"]
        if "due_date" in data:
            payload["due_date"] = parse_date(data.get("due_date"))
        if "assigned_to" in data:
            payload["assigned_to"] = parse_id_list(data.get("assigned_to"), "assigned_to")
        if "team_leader" in data:
            payload["team_leader"] = parse_int(data.get("team_leader"), "team_leader")
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))

    if "status" in data:
        status = data.get("status")
        if status not in VALID_STATUSES:
            return _invalid("status", f"status must be one of: {', '.join(sorted(VALID_STATUSES))}")
        payload["status"] = status
    if data.get("comment"):
        payload["comment"] = str(data["comment"])

    if not payload:
        return api_error(E.VALIDATION_REQUIRED, "No updatable fields supplied")

    return jsonify(action_log_service.update_action_log(log_id, user, payload)), 200


@action_log_bp.route("/<int:log_id>/assign/", methods=["POST"])
def assign_action_log(log_id):
    """Body: { assigned_to: [ids] | id, team_leader?, comment? }"""
    user, err = current_user()
    if err:
        return err
    data = json_body()
    try:
        assigned, leader = _parse_assignment(data)
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))
    if not assigned:
        return api_error(E.VALIDATION_REQUIRED, "assigned_to is required",
                         details={"assigned_to": "This field is required."})

    comment = (data.get("comment") or "").strip() or None
    result = action_log_service.assign_action_log(log_id, user, assigned, leader, comment)
    return jsonify(result), 200


# ═════════════════════════════════════════════════════════════════════════════
# APPROVAL
# ═════════════════════════════════════════════════════════════════════════════


@action_log_bp.route("/<int:log_id>/approve/", methods=["POST"])
def approve_action_log(log_id):
    """Body: { comment? }"""
    user, err = current_user()
    if err:
        return err
    comment = (json_body().get("comment") or "").strip() or None
    return jsonify(approval_workflow.approve_action_log(log_id, user, comment)), 200


@action_log_bp.route("/<int:log_id>/reject/", methods=["POST"])
def reject_action_log(log_id):
    """Body: { reason }. ``comment`` alone is not accepted."""
    user, err = current_user()
    if err:
        return err
    data = json_body()
    reason = (data.get("reason") or "").strip()
    if not reason:
        message = "reason is required"
        if data.get("comment"):
            message = "reason is required; send the rejection text as 'reason', not 'comment'"
        return api_error(E.VALIDATION_REQUIRED, message,
                         details={"reason": "This field is required."})
    return jsonify(approval_workflow.reject_action_log(log_id, user, reason)), 200


# ═════════════════════════════════════════════════════════════════════════════
# COMMENTS / HISTORY / NOTIFICATIONS
# ═════════════════════════════════════════════════════════════════════════════


@action_log_bp.route("/<int:log_id>/comments/", methods=["GET"])
def list_comments(log_id):
    user, err = current_user()
    if err:
        return err
    log = action_log_service.get_visible_log(log_id, user)
    return jsonify(comment_service.list_comments(log)), 200


@action_log_bp.route("/<int:log_id>/comments/", methods=["POST"])
def add_comment(log_id):
    """Body: { comment, parent_id? }"""
    user, err = current_user()
    if err:
        return err
    data = json_body()
    body = (data.get("comment") or "").strip()
    if not body:
        return api_error(E.VALIDATION_REQUIRED, "comment is required",
                         details={"comment": "This field is required."})
    try:
        parent_id = parse_int(data.get("parent_id"), "parent_id")
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))

    log = action_log_service.get_visible_log(log_id, user)
    return jsonify(comment_service.add_comment(log, user, body, parent_id)), 201


@action_log_bp.route("/<int:log_id>/assignment_history/", methods=["GET"])
def assignment_history(log_id):
    user, err = current_user()
    if err:
        return err
    return jsonify(action_log_service.get_assignment_history(log_id, user)), 200


@action_log_bp.route("/<int:log_id>/unread_notifications/", methods=["GET"])
def unread_notifications(log_id):
    user, err = current_user()
    if err:
        return err
    log = action_log_service.get_visible_log(log_id, user)
    return jsonify({"unread_count": notification_service.unread_count(log.id, user.id)}), 200


@action_log_bp.route("/<int:log_id>/mark_notifications_read/", methods=["POST"])
def mark_notifications_read(log_id):
    user, err = current_user()
    if err:
        return err
    log = action_log_service.get_visible_log(log_id, user)
    marked = notification_service.mark_read(log.id, user.id)
    return jsonify({"marked_read": marked}), 200
