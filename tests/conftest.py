"""
Shared pytest fixtures for the action log tracker test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: table creation/teardown (session-scoped)
    - session: per-test rollback + recreate, roles seeded (autouse)
    - client: Flask test client
    - make_department / make_unit / make_user: model factories
    - auth_headers: bearer headers for a user, minted through jwt_service
    - org: one department, two units and a user at every authority level
    - make_log: create an action log through the service layer
"""

from types import SimpleNamespace

import pytest

from actionlog import create_app
from actionlog.models import db as _db
from actionlog.models.auth import (
    AUTHORITY_ASSISTANT_COMMISSIONER,
    AUTHORITY_COMMISSIONER,
    AUTHORITY_NONE,
    AUTHORITY_UNIT_HEAD,
    ROLE_ASSISTANT_COMMISSIONER,
    ROLE_COMMISSIONER,
    ROLE_ECONOMIST,
    ROLE_PRINCIPAL_ECONOMIST,
    ROLE_SUPER_ADMIN,
    Department,
    DepartmentUnit,
    Role,
    User,
)
from actionlog.services import action_log_service, jwt_service, user_service
from actionlog.utils.crypto import hash_password

TEST_PASSWORD = "s3cret-pass"

# bcrypt at minimum cost keeps the factories fast
_PASSWORD_HASH = None


def _password_hash():
    global _PASSWORD_HASH
    if _PASSWORD_HASH is None:
        _PASSWORD_HASH = hash_password(TEST_PASSWORD, rounds=4)
    return _PASSWORD_HASH


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, seed roles, rollback and recreate tables after."""
    with app.app_context():
        user_service.seed_roles()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_department():
    counter = {"n": 0}

    def _make(name=None, code=None):
        counter["n"] += 1
        dept = Department(
            name=name or f"Department {counter['n']}",
            code=code or f"D{counter['n']}",
        )
        _db.session.add(dept)
        _db.session.commit()
        return dept

    return _make


@pytest.fixture()
def make_unit():
    def _make(department, name="Unit"):
        unit = DepartmentUnit(department_id=department.id, name=name)
        _db.session.add(unit)
        _db.session.commit()
        return unit

    return _make


@pytest.fixture()
def make_user():
    def _make(username, role=ROLE_ECONOMIST, authority=AUTHORITY_NONE,
              department=None, unit=None, is_active=True, designation=None):
        role_obj = Role.query.filter_by(name=role).first()
        user = User(
            username=username,
            email=f"{username}@example.org",
            password_hash=_password_hash(),
            first_name=username.capitalize(),
            last_name="Tester",
            role_id=role_obj.id if role_obj else None,
            authority=authority,
            designation=designation,
            department_id=department.id if department else (unit.department_id if unit else None),
            department_unit_id=unit.id if unit else None,
            is_active=is_active,
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def auth_headers():
    def _headers(user):
        token = jwt_service.generate_access_token(user.id, user.role_name)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def org(make_department, make_unit, make_user):
    """A department (PAP) with two units and one user per authority level.

    eco, eco2       – economists in unit1
    outsider        – economist in unit2
    unit_head       – unit_head of unit1
    ac              – assistant commissioner of the department
    commissioner    – commissioner of the department
    admin           – super admin, no authority
    """
    dept = make_department("Projects Analysis & Public Investment", "PAP")
    unit1 = make_unit(dept, "Infrastructure")
    unit2 = make_unit(dept, "Social Services")
    return SimpleNamespace(
        dept=dept,
        unit1=unit1,
        unit2=unit2,
        eco=make_user("eco", unit=unit1),
        eco2=make_user("eco2", unit=unit1),
        outsider=make_user("outsider", unit=unit2),
        unit_head=make_user("unithead", ROLE_PRINCIPAL_ECONOMIST, AUTHORITY_UNIT_HEAD, unit=unit1),
        ac=make_user("ac", ROLE_ASSISTANT_COMMISSIONER, AUTHORITY_ASSISTANT_COMMISSIONER,
                     unit=unit1, designation="Ag. AC/PAP"),
        commissioner=make_user("comm", ROLE_COMMISSIONER, AUTHORITY_COMMISSIONER,
                               department=dept, designation="Ag. C/PAP"),
        admin=make_user("admin", ROLE_SUPER_ADMIN, department=dept),
    )


@pytest.fixture()
def make_log():
    """Create a log through the service; returns the ActionLog row."""
    from actionlog.models.action_log import ActionLog

    def _make(creator, assignees=(), team_leader=None, title="Review PIP submissions",
              unit=None, **extra):
        data = {
            "title": title,
            "description": extra.pop("description", ""),
            "priority": extra.pop("priority", "Medium"),
            "department_id": creator.department_id,
            "department_unit_id": unit.id if unit else None,
            "assigned_to": [u.id for u in assignees],
            "team_leader": team_leader.id if team_leader else None,
        }
        data.update(extra)
        result = action_log_service.create_action_log(creator, data)
        return _db.session.get(ActionLog, result["id"])

    return _make
