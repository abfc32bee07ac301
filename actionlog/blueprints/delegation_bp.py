"""
Delegation blueprint.

Mounted at /api/v1/users/delegations and, as an alias, /api/v1/delegations.

Routes:
  GET    /                 – delegations given or received by the caller
  POST   /                 – delegate the caller's approval authority
  GET    /<id>/            – one delegation
  DELETE /<id>/            – remove a delegation (delegator or super admin)
  POST   /<id>/revoke/     – deactivate a delegation (delegator or super admin)
"""

import logging

from flask import Blueprint, jsonify

from actionlog.blueprints import current_user, json_body, register_error_handlers
from actionlog.models.delegation import REASON_LEAVE
from actionlog.services import delegation_service
from actionlog.utils.errors import E, api_error
from actionlog.utils.helpers import parse_datetime, parse_int

logger = logging.getLogger(__name__)

delegation_bp = Blueprint("delegation", __name__, url_prefix="/api/v1/users/delegations")
register_error_handlers(delegation_bp)


@delegation_bp.route("/", methods=["GET"])
def list_delegations():
    user, err = current_user()
    if err:
        return err
    return jsonify(delegation_service.list_delegations(user)), 200


@delegation_bp.route("/", methods=["POST"])
def create_delegation():
    """Body: { delegated_to, expires_at?, reason? }"""
    user, err = current_user()
    if err:
        return err
    data = json_body()

    details = {}
    try:
        delegate_id = parse_int(data.get("delegated_to", data.get("delegated_to_id")), "delegated_to")
        if delegate_id is None:
            details["delegated_to"] = "This field is required."
    except ValueError as exc:
        details["delegated_to"] = str(exc)
    try:
        expires_at = parse_datetime(data.get("expires_at"))
    except ValueError as exc:
        details["expires_at"] = str(exc)
    if details:
        return api_error(E.VALIDATION_REQUIRED, "Invalid delegation data", details=details)

    reason = data.get("reason") or REASON_LEAVE
    result = delegation_service.create_delegation(user, delegate_id, expires_at, reason)
    return jsonify(result), 201


@delegation_bp.route("/<int:delegation_id>/", methods=["GET"])
def get_delegation(delegation_id):
    user, err = current_user()
    if err:
        return err
    return jsonify(delegation_service.get_delegation(delegation_id, user)), 200


@delegation_bp.route("/<int:delegation_id>/", methods=["DELETE"])
def delete_delegation(delegation_id):
    user, err = current_user()
    if err:
        return err
    delegation_service.delete_delegation(delegation_id, user)
    return "", 204


@delegation_bp.route("/<int:delegation_id>/revoke/", methods=["POST"])
def revoke_delegation(delegation_id):
    user, err = current_user()
    if err:
        return err
    return jsonify(delegation_service.revoke_delegation(delegation_id, user)), 200
