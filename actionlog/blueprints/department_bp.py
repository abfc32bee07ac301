"""
Department blueprint (read-only organisation data).

Routes:
  GET /api/v1/departments/                 – departments with nested units
  GET /api/v1/departments/<id>/            – one department
  GET /api/v1/departments/units/           – every unit
  GET /api/v1/departments/<id>/units/      – units of a department
"""

from flask import Blueprint, jsonify

from actionlog.blueprints import current_user, register_error_handlers
from actionlog.services import user_service

department_bp = Blueprint("department", __name__, url_prefix="/api/v1/departments")
register_error_handlers(department_bp)


@department_bp.route("/", methods=["GET"])
def list_departments():
    _, err = current_user()
    if err:
        return err
    return jsonify(user_service.list_departments()), 200


@department_bp.route("/<int:department_id>/", methods=["GET"])
def get_department(department_id):
    _, err = current_user()
    if err:
        return err
    return jsonify(user_service.get_department(department_id)), 200


@department_bp.route("/units/", methods=["GET"])
def list_units():
    _, err = current_user()
    if err:
        return err
    return jsonify(user_service.list_units()), 200


@department_bp.route("/<int:department_id>/units/", methods=["GET"])
def list_department_units(department_id):
    _, err = current_user()
    if err:
        return err
    return jsonify(user_service.list_units(department_id)), 200
