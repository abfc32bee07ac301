"""
Action Log Tracker
Organisation & identity models.

Models:
    - Department:      top-level organisational unit (e.g. PAP)
    - DepartmentUnit:  unit within a department; its head signs the first stage
    - Role:            named role with capability flags
    - User:            person with a role, a unit and an explicit approval authority

Approval authority is an explicit enum on the user record. The free-text
``designation`` (e.g. "Ag. C/PAP") is display-only and is never parsed.
"""

from datetime import datetime, timezone

from actionlog.models import db


# ── Constants ────────────────────────────────────────────────────────────────

ROLE_ECONOMIST = "ECONOMIST"
ROLE_SENIOR_ECONOMIST = "SENIOR_ECONOMIST"
ROLE_PRINCIPAL_ECONOMIST = "PRINCIPAL_ECONOMIST"
ROLE_ASSISTANT_COMMISSIONER = "ASSISTANT_COMMISSIONER"
ROLE_COMMISSIONER = "COMMISSIONER"
ROLE_SUPER_ADMIN = "SUPER_ADMIN"

ROLE_NAMES = (
    ROLE_ECONOMIST,
    ROLE_SENIOR_ECONOMIST,
    ROLE_PRINCIPAL_ECONOMIST,
    ROLE_ASSISTANT_COMMISSIONER,
    ROLE_COMMISSIONER,
    ROLE_SUPER_ADMIN,
)

# Default capability flags per role (used by `flask seed-roles`)
ROLE_CAPABILITIES = {
    ROLE_ECONOMIST: {
        "can_create_logs": True, "can_update_status": True, "can_approve": False,
        "can_view_all_logs": False, "can_configure": False,
        "can_view_all_users": False, "can_assign_to_commissioner": False,
    },
    ROLE_SENIOR_ECONOMIST: {
        "can_create_logs": True, "can_update_status": True, "can_approve": True,
        "can_view_all_logs": False, "can_configure": False,
        "can_view_all_users": False, "can_assign_to_commissioner": False,
    },
    ROLE_PRINCIPAL_ECONOMIST: {
        "can_create_logs": True, "can_update_status": True, "can_approve": True,
        "can_view_all_logs": False, "can_configure": False,
        "can_view_all_users": False, "can_assign_to_commissioner": False,
    },
    ROLE_ASSISTANT_COMMISSIONER: {
        "can_create_logs": True, "can_update_status": True, "can_approve": True,
        "can_view_all_logs": True, "can_configure": False,
        "can_view_all_users": True, "can_assign_to_commissioner": True,
    },
    ROLE_COMMISSIONER: {
        "can_create_logs": True, "can_update_status": True, "can_approve": True,
        "can_view_all_logs": True, "can_configure": True,
        "can_view_all_users": True, "can_assign_to_commissioner": True,
    },
    ROLE_SUPER_ADMIN: {
        "can_create_logs": True, "can_update_status": True, "can_approve": False,
        "can_view_all_logs": True, "can_configure": True,
        "can_view_all_users": True, "can_assign_to_commissioner": True,
    },
}

AUTHORITY_NONE = "none"
AUTHORITY_UNIT_HEAD = "unit_head"
AUTHORITY_ASSISTANT_COMMISSIONER = "assistant_commissioner"
AUTHORITY_COMMISSIONER = "commissioner"

# Ordered lowest → highest; the approval chain walks this order
AUTHORITY_LEVELS = (
    AUTHORITY_UNIT_HEAD,
    AUTHORITY_ASSISTANT_COMMISSIONER,
    AUTHORITY_COMMISSIONER,
)
VALID_AUTHORITIES = frozenset({AUTHORITY_NONE, *AUTHORITY_LEVELS})


def _utcnow():
    return datetime.now(timezone.utc)


class Department(db.Model):
    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    code = db.Column(db.String(30), nullable=False, unique=True)
    description = db.Column(db.Text, default="")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    units = db.relationship(
        "DepartmentUnit", back_populates="department",
        cascade="all, delete-orphan", order_by="DepartmentUnit.name",
    )

    def to_dict(self, include_units=True):
        d = {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "description": self.description or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_units:
            d["units"] = [u.to_dict() for u in self.units]
        return d

    def __repr__(self):
        return f"<Department {self.code}>"


class DepartmentUnit(db.Model):
    __tablename__ = "department_units"

    id = db.Column(db.Integer, primary_key=True)
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    unit_type = db.Column(db.String(50), default="unit")
    description = db.Column(db.Text, default="")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    department = db.relationship("Department", back_populates="units")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "unit_type": self.unit_type,
            "description": self.description or "",
            "department": self.department_id,
            "department_name": self.department.name if self.department else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<DepartmentUnit {self.id}: {self.name}>"


class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False, unique=True)
    can_create_logs = db.Column(db.Boolean, nullable=False, default=False)
    can_update_status = db.Column(db.Boolean, nullable=False, default=False)
    can_approve = db.Column(db.Boolean, nullable=False, default=False)
    can_view_all_logs = db.Column(db.Boolean, nullable=False, default=False)
    can_configure = db.Column(db.Boolean, nullable=False, default=False)
    can_view_all_users = db.Column(db.Boolean, nullable=False, default=False)
    can_assign_to_commissioner = db.Column(db.Boolean, nullable=False, default=False)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "can_create_logs": self.can_create_logs,
            "can_update_status": self.can_update_status,
            "can_approve": self.can_approve,
            "can_view_all_logs": self.can_view_all_logs,
            "can_configure": self.can_configure,
            "can_view_all_users": self.can_view_all_users,
            "can_assign_to_commissioner": self.can_assign_to_commissioner,
        }

    def __repr__(self):
        return f"<Role {self.name}>"


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(150), nullable=False, unique=True)
    email = db.Column(db.String(200), nullable=False, unique=True)
    password_hash = db.Column(db.String(256))
    first_name = db.Column(db.String(100), default="")
    last_name = db.Column(db.String(100), default="")
    employee_id = db.Column(db.String(50))
    phone_number = db.Column(db.String(30))
    designation = db.Column(db.String(100), comment="Display text only, e.g. 'Ag. C/PAP'")
    authority = db.Column(
        db.String(30), nullable=False, default=AUTHORITY_NONE,
        comment="none | unit_head | assistant_commissioner | commissioner",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    role_id = db.Column(db.Integer, db.ForeignKey("roles.id", ondelete="SET NULL"), nullable=True)
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    department_unit_id = db.Column(
        db.Integer, db.ForeignKey("department_units.id", ondelete="SET NULL"), nullable=True, index=True,
    )

    last_login_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    role = db.relationship("Role")
    department = db.relationship("Department")
    department_unit = db.relationship("DepartmentUnit")

    @property
    def full_name(self):
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.username

    @property
    def role_name(self):
        return self.role.name if self.role else None

    def has_capability(self, flag):
        """True when the user's role grants the named capability flag."""
        return bool(self.role and getattr(self.role, flag, False))

    def to_summary(self):
        """Compact representation embedded in action logs and comments."""
        return {
            "id": self.id,
            "username": self.username,
            "first_name": self.first_name or "",
            "last_name": self.last_name or "",
            "email": self.email,
            "designation": self.designation,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "first_name": self.first_name or "",
            "last_name": self.last_name or "",
            "employee_id": self.employee_id,
            "phone_number": self.phone_number,
            "designation": self.designation,
            "authority": self.authority,
            "is_active": self.is_active,
            "role": self.role.to_dict() if self.role else None,
            "department": self.department_id,
            "department_unit": self.department_unit.to_dict() if self.department_unit else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.username}>"
