"""
Delegation registry — temporary transfer of approval authority.

Rules:
  - Only a user holding an approval authority outright may delegate it.
  - One active delegation per delegator: create() deactivates the previous
    one in the same commit ("replace, never stack").
  - Expiry is evaluated lazily at read time via ``is_effective``; there is no
    background sweep. An expired row keeps ``is_active=True`` until someone
    revokes or replaces it, but grants nothing.
  - Resolution is not transitive: a delegate acts for the delegator, and the
    delegate's own delegation (if any) only covers the delegate's own
    authority.
  - db.session.commit() happens only in this file for delegation writes.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import or_, select

from actionlog.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from actionlog.models import db
from actionlog.models.auth import AUTHORITY_NONE, ROLE_SUPER_ADMIN, User
from actionlog.models.delegation import VALID_REASONS, Delegation, _as_aware

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Queries ──────────────────────────────────────────────────────────────────


def active_delegation_from(delegator_id: int, now: datetime | None = None) -> Delegation | None:
    """Return the delegator's delegation that is effective at ``now``, if any."""
    now = now or _utcnow()
    rows = db.session.execute(
        select(Delegation)
        .where(Delegation.delegated_by_id == delegator_id, Delegation.is_active.is_(True))
        .order_by(Delegation.delegated_at.desc(), Delegation.id.desc())
    ).scalars().all()
    for row in rows:
        if row.is_effective(now):
            return row
    return None


def delegations_received_by(user_id: int, now: datetime | None = None) -> list[Delegation]:
    """Return every delegation currently effective in favour of ``user_id``."""
    now = now or _utcnow()
    rows = db.session.execute(
        select(Delegation)
        .where(Delegation.delegated_to_id == user_id, Delegation.is_active.is_(True))
        .order_by(Delegation.id)
    ).scalars().all()
    return [row for row in rows if row.is_effective(now)]


def resolve(holder: User, now: datetime | None = None) -> User:
    """Return the user who currently exercises ``holder``'s authority.

    The holder themselves when no effective delegation exists, otherwise the
    delegate of their effective delegation.
    """
    delegation = active_delegation_from(holder.id, now)
    if delegation is None:
        return holder
    return delegation.delegated_to


def is_on_leave(user: User, now: datetime | None = None) -> bool:
    """True while the user has handed their authority to someone else."""
    return active_delegation_from(user.id, now) is not None


def list_delegations(actor: User) -> list[dict]:
    """Delegations given or received by the actor; every delegation for admins."""
    q = select(Delegation).order_by(Delegation.delegated_at.desc(), Delegation.id.desc())
    if actor.role_name != ROLE_SUPER_ADMIN:
        q = q.where(or_(
            Delegation.delegated_by_id == actor.id,
            Delegation.delegated_to_id == actor.id,
        ))
    now = _utcnow()
    return [d.to_dict(now) for d in db.session.execute(q).scalars().all()]


def get_delegation(delegation_id: int, actor: User) -> dict:
    delegation = _require_visible(delegation_id, actor)
    return delegation.to_dict()


# ── Commands ─────────────────────────────────────────────────────────────────


def create_delegation(
    delegator: User,
    delegated_to_id: int,
    expires_at: datetime | None = None,
    reason: str = "leave",
    now: datetime | None = None,
) -> dict:
    """Delegate ``delegator``'s approval authority to another user.

    Any earlier active delegation of the same delegator is deactivated in the
    same unit of work.

    Raises:
        AuthorizationError: delegator holds no approval authority.
        ValidationError: bad delegate, reason or expiry.
        NotFoundError: delegate does not exist.
    """
    now = now or _utcnow()

    if (delegator.authority or AUTHORITY_NONE) == AUTHORITY_NONE:
        raise AuthorizationError(
            "Only users holding an approval authority can delegate it",
            code="NO_AUTHORITY",
        )
    if reason not in VALID_REASONS:
        raise ValidationError(
            f"reason must be one of: {', '.join(sorted(VALID_REASONS))}",
            details={"reason": reason},
        )
    if delegated_to_id == delegator.id:
        raise ValidationError("Cannot delegate to yourself", details={"delegated_to_id": delegated_to_id})

    delegate = db.session.get(User, delegated_to_id)
    if delegate is None:
        raise NotFoundError(resource="User", resource_id=delegated_to_id)
    if not delegate.is_active:
        raise ValidationError("Cannot delegate to an inactive user", details={"delegated_to_id": delegated_to_id})

    expires_at = _as_aware(expires_at)
    if expires_at is not None and expires_at <= _as_aware(now):
        raise ValidationError("expires_at must be in the future", details={"expires_at": expires_at.isoformat()})

    previous = db.session.execute(
        select(Delegation).where(
            Delegation.delegated_by_id == delegator.id,
            Delegation.is_active.is_(True),
        )
    ).scalars().all()
    for old in previous:
        old.is_active = False
        old.revoked_at = now
        old.revoked_by_id = delegator.id

    delegation = Delegation(
        delegated_by_id=delegator.id,
        delegated_to_id=delegate.id,
        delegated_at=now,
        expires_at=expires_at,
        reason=reason,
        is_active=True,
    )
    db.session.add(delegation)
    db.session.commit()

    logger.info(
        "Delegation %s created: user=%s → user=%s authority=%s expires_at=%s replaced=%s",
        delegation.id, delegator.id, delegate.id, delegator.authority,
        expires_at.isoformat() if expires_at else None,
        [d.id for d in previous],
    )
    return delegation.to_dict(now)


def revoke_delegation(delegation_id: int, actor: User) -> dict:
    """Deactivate a delegation. Only the delegator or a super admin may revoke."""
    delegation = _require_manageable(delegation_id, actor)
    if not delegation.is_active:
        raise StateConflictError(f"Delegation {delegation_id} is already inactive", current_state="inactive")

    delegation.is_active = False
    delegation.revoked_at = _utcnow()
    delegation.revoked_by_id = actor.id
    db.session.commit()

    logger.info("Delegation %s revoked by user=%s", delegation.id, actor.id)
    return delegation.to_dict()


def delete_delegation(delegation_id: int, actor: User) -> None:
    """Remove a delegation record. Same authorization as revoke."""
    delegation = _require_manageable(delegation_id, actor)
    db.session.delete(delegation)
    db.session.commit()
    logger.info("Delegation %s deleted by user=%s", delegation_id, actor.id)


# ── Helpers ──────────────────────────────────────────────────────────────────


def _require_visible(delegation_id: int, actor: User) -> Delegation:
    delegation = db.session.get(Delegation, delegation_id)
    if delegation is None:
        raise NotFoundError(resource="Delegation", resource_id=delegation_id)
    if actor.role_name != ROLE_SUPER_ADMIN and actor.id not in (
        delegation.delegated_by_id, delegation.delegated_to_id,
    ):
        # Same answer as a missing row so ids of other people's delegations don't leak
        raise NotFoundError(resource="Delegation", resource_id=delegation_id)
    return delegation


def _require_manageable(delegation_id: int, actor: User) -> Delegation:
    delegation = _require_visible(delegation_id, actor)
    if actor.role_name != ROLE_SUPER_ADMIN and delegation.delegated_by_id != actor.id:
        logger.warning(
            "User %s attempted to manage delegation %s owned by user=%s",
            actor.id, delegation_id, delegation.delegated_by_id,
        )
        raise AuthorizationError(
            "Only the delegator or an administrator can manage this delegation",
            code="NOT_DELEGATOR",
        )
    return delegation
