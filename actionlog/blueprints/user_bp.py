"""
User blueprint.

Routes:
  GET /api/v1/users/                                          – users visible to the caller
  GET /api/v1/users/<id>/                                     – one user
  GET /api/v1/users/department_users/?department=<id>         – users of a department
  GET /api/v1/users/department_unit_users/?department_unit=<id> – users of a unit

Every user record carries the derived authorization flags
(can_approve_action_logs, has_active_delegation, is_currently_on_leave,
has_ag_cpap_designation).
"""

from flask import Blueprint, jsonify, request

from actionlog.blueprints import current_user, register_error_handlers
from actionlog.services import user_service
from actionlog.utils.errors import E, api_error
from actionlog.utils.helpers import parse_int

user_bp = Blueprint("user", __name__, url_prefix="/api/v1/users")
register_error_handlers(user_bp)


def _required_int_arg(name):
    try:
        value = parse_int(request.args.get(name), name)
    except ValueError as exc:
        return None, api_error(E.VALIDATION_INVALID, str(exc), details={name: str(exc)})
    if value is None:
        return None, api_error(E.VALIDATION_REQUIRED, f"{name} query parameter is required",
                               details={name: "This field is required."})
    return value, None


@user_bp.route("/", methods=["GET"])
def list_users():
    user, err = current_user()
    if err:
        return err
    try:
        department_id = parse_int(request.args.get("department"), "department")
        unit_id = parse_int(request.args.get("department_unit"), "department_unit")
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))
    return jsonify(user_service.list_users(user, department_id, unit_id)), 200


@user_bp.route("/<int:user_id>/", methods=["GET"])
def get_user(user_id):
    user, err = current_user()
    if err:
        return err
    return jsonify(user_service.get_user(user_id, user)), 200


@user_bp.route("/department_users/", methods=["GET"])
def department_users():
    user, err = current_user()
    if err:
        return err
    department_id, err = _required_int_arg("department")
    if err:
        return err
    return jsonify(user_service.list_users(user, department_id=department_id)), 200


@user_bp.route("/department_unit_users/", methods=["GET"])
def department_unit_users():
    user, err = current_user()
    if err:
        return err
    unit_id, err = _required_int_arg("department_unit")
    if err:
        return err
    return jsonify(user_service.list_users(user, department_unit_id=unit_id)), 200
