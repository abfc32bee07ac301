"""
User & organisation service.

Users are managed outside this service (seeded or provisioned); here they are
authenticated, listed and decorated with the server-computed authorization
flags the client trusts (``can_approve_action_logs``, ``has_active_delegation``,
``is_currently_on_leave``, ``has_ag_cpap_designation``).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import or_, select

from actionlog.core.exceptions import AuthorizationError, NotFoundError
from actionlog.models import db
from actionlog.models.auth import ROLE_CAPABILITIES, Department, DepartmentUnit, Role, User
from actionlog.services import approval_workflow
from actionlog.utils.crypto import verify_password

logger = logging.getLogger(__name__)


class UserServiceError(Exception):
    """Authentication failure carrying the HTTP status the blueprint returns."""

    def __init__(self, message, status_code=400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


# ── Authentication ───────────────────────────────────────────────────────────


def authenticate_user(login, password):
    """Return the active user matching username or email and password."""
    login = (login or "").strip()
    user = db.session.execute(
        select(User).where(or_(User.username == login, User.email == login.lower()))
    ).scalar_one_or_none()

    if not user or not user.password_hash or not verify_password(password, user.password_hash):
        logger.warning("Failed login for %r", login)
        raise UserServiceError("Invalid username or password", 401)
    if not user.is_active:
        raise UserServiceError("Account is inactive", 403)

    user.last_login_at = datetime.now(timezone.utc)
    db.session.commit()
    logger.info("User %s logged in", user.id)
    return user


# ── Serialization ────────────────────────────────────────────────────────────


def user_to_dict(user, now=None):
    """User record plus delegation-aware authorization flags."""
    d = user.to_dict()
    d.update(approval_workflow.authority_summary(user, now))
    return d


# ── Queries ──────────────────────────────────────────────────────────────────


def list_users(viewer, department_id=None, department_unit_id=None):
    """Active users; restricted to the viewer's department without can_view_all_users."""
    q = select(User).where(User.is_active.is_(True))
    if not viewer.has_capability("can_view_all_users"):
        if department_id is not None and department_id != viewer.department_id:
            raise AuthorizationError("You can only list users of your own department",
                                     code="OTHER_DEPARTMENT")
        q = q.where(User.department_id == viewer.department_id)
    if department_id is not None:
        q = q.where(User.department_id == department_id)
    if department_unit_id is not None:
        q = q.where(User.department_unit_id == department_unit_id)

    now = datetime.now(timezone.utc)
    users = db.session.execute(q.order_by(User.last_name, User.first_name, User.id)).scalars().all()
    return [user_to_dict(u, now) for u in users]


def get_user(user_id, viewer):
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)
    if not viewer.has_capability("can_view_all_users") and user.department_id != viewer.department_id:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user_to_dict(user)


def list_departments():
    rows = db.session.execute(select(Department).order_by(Department.name)).scalars().all()
    return [d.to_dict() for d in rows]


def get_department(department_id):
    department = db.session.get(Department, department_id)
    if department is None:
        raise NotFoundError(resource="Department", resource_id=department_id)
    return department.to_dict()


def list_units(department_id=None):
    q = select(DepartmentUnit)
    if department_id is not None:
        if db.session.get(Department, department_id) is None:
            raise NotFoundError(resource="Department", resource_id=department_id)
        q = q.where(DepartmentUnit.department_id == department_id)
    rows = db.session.execute(q.order_by(DepartmentUnit.name)).scalars().all()
    return [u.to_dict() for u in rows]


# ── Seeding ──────────────────────────────────────────────────────────────────


def seed_roles():
    """Create missing roles with their default capability flags. Returns count created."""
    created = 0
    for name, flags in ROLE_CAPABILITIES.items():
        role = db.session.execute(select(Role).where(Role.name == name)).scalar_one_or_none()
        if role is None:
            db.session.add(Role(name=name, **flags))
            created += 1
    db.session.commit()
    logger.info("Seeded %s roles", created)
    return created
