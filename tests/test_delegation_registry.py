"""
Delegation registry tests.

Covers:
  - is_effective as a pure function of (is_active, expires_at, now)
  - replace-never-stack: one active delegation per delegator
  - resolve() during and after the delegation window (lazy expiry)
  - create validation, revoke / delete authorization
  - /users/delegations/ API and its /delegations/ alias
"""

from datetime import datetime, timedelta, timezone

import pytest

from actionlog.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from actionlog.models import db
from actionlog.models.delegation import Delegation, is_effective
from actionlog.services import delegation_service


def _now():
    return datetime.now(timezone.utc)


def _active_count(delegator):
    return Delegation.query.filter_by(delegated_by_id=delegator.id, is_active=True).count()


# ═══════════════════════════════════════════════════════════════
# is_effective
# ═══════════════════════════════════════════════════════════════


class TestIsEffective:
    def test_inactive_is_never_effective(self):
        now = _now()
        assert is_effective(False, None, now) is False
        assert is_effective(False, now + timedelta(days=1), now) is False

    def test_open_ended_is_effective(self):
        assert is_effective(True, None, _now()) is True

    def test_bounded_before_and_after_expiry(self):
        now = _now()
        expires = now + timedelta(hours=1)
        assert is_effective(True, expires, now) is True
        assert is_effective(True, expires, expires) is False
        assert is_effective(True, expires, expires + timedelta(seconds=1)) is False

    def test_naive_expiry_is_treated_as_utc(self):
        now = _now()
        naive = (now + timedelta(minutes=5)).replace(tzinfo=None)
        assert is_effective(True, naive, now) is True


# ═══════════════════════════════════════════════════════════════
# Registry semantics
# ═══════════════════════════════════════════════════════════════


class TestReplaceNeverStack:
    def test_at_most_one_active_per_delegator(self, org):
        for target in (org.eco, org.eco2, org.ac, org.eco):
            delegation_service.create_delegation(org.unit_head, target.id)
            assert _active_count(org.unit_head) == 1

    def test_second_delegation_deactivates_first(self, org):
        first = delegation_service.create_delegation(org.unit_head, org.eco.id)
        second = delegation_service.create_delegation(org.unit_head, org.eco2.id)

        old = db.session.get(Delegation, first["id"])
        new = db.session.get(Delegation, second["id"])
        assert old.is_active is False
        assert old.revoked_at is not None
        assert old.revoked_by_id == org.unit_head.id
        assert new.is_active is True
        assert delegation_service.resolve(org.unit_head).id == org.eco2.id

    def test_other_delegators_are_untouched(self, org):
        delegation_service.create_delegation(org.unit_head, org.eco.id)
        delegation_service.create_delegation(org.ac, org.eco.id)
        assert _active_count(org.unit_head) == 1
        assert _active_count(org.ac) == 1


class TestResolve:
    def test_no_delegation_resolves_to_holder(self, org):
        assert delegation_service.resolve(org.unit_head).id == org.unit_head.id

    def test_resolves_to_delegate_until_expiry(self, org):
        now = _now()
        delegation_service.create_delegation(
            org.unit_head, org.eco.id, expires_at=now + timedelta(hours=1), now=now,
        )
        assert delegation_service.resolve(org.unit_head, now + timedelta(minutes=30)).id == org.eco.id
        # Expired without any revoke: authority returns to the holder
        later = now + timedelta(hours=2)
        assert delegation_service.resolve(org.unit_head, later).id == org.unit_head.id
        assert _active_count(org.unit_head) == 1

    def test_revoked_delegation_resolves_to_holder(self, org):
        d = delegation_service.create_delegation(org.unit_head, org.eco.id)
        delegation_service.revoke_delegation(d["id"], org.unit_head)
        assert delegation_service.resolve(org.unit_head).id == org.unit_head.id

    def test_resolution_is_not_transitive(self, org):
        delegation_service.create_delegation(org.commissioner, org.ac.id)
        delegation_service.create_delegation(org.ac, org.unit_head.id)
        assert delegation_service.resolve(org.commissioner).id == org.ac.id

    def test_is_on_leave(self, org):
        assert delegation_service.is_on_leave(org.ac) is False
        delegation_service.create_delegation(org.ac, org.eco.id)
        assert delegation_service.is_on_leave(org.ac) is True


class TestCreateValidation:
    def test_delegator_without_authority_is_refused(self, org):
        with pytest.raises(AuthorizationError) as exc:
            delegation_service.create_delegation(org.eco, org.eco2.id)
        assert exc.value.code == "NO_AUTHORITY"

    def test_self_delegation_is_refused(self, org):
        with pytest.raises(ValidationError):
            delegation_service.create_delegation(org.unit_head, org.unit_head.id)

    def test_inactive_delegate_is_refused(self, org, make_user):
        gone = make_user("gone", unit=org.unit1, is_active=False)
        with pytest.raises(ValidationError):
            delegation_service.create_delegation(org.unit_head, gone.id)

    def test_unknown_delegate(self, org):
        with pytest.raises(NotFoundError):
            delegation_service.create_delegation(org.unit_head, 99999)

    def test_past_expiry_is_refused(self, org):
        with pytest.raises(ValidationError):
            delegation_service.create_delegation(
                org.unit_head, org.eco.id, expires_at=_now() - timedelta(minutes=1),
            )

    def test_unknown_reason_is_refused(self, org):
        with pytest.raises(ValidationError):
            delegation_service.create_delegation(org.unit_head, org.eco.id, reason="holiday")

    def test_failed_create_keeps_previous_delegation(self, org):
        delegation_service.create_delegation(org.unit_head, org.eco.id)
        with pytest.raises(ValidationError):
            delegation_service.create_delegation(org.unit_head, org.unit_head.id)
        assert delegation_service.resolve(org.unit_head).id == org.eco.id


class TestRevokeAndDelete:
    def test_delegate_cannot_revoke(self, org):
        d = delegation_service.create_delegation(org.unit_head, org.eco.id)
        with pytest.raises(AuthorizationError) as exc:
            delegation_service.revoke_delegation(d["id"], org.eco)
        assert exc.value.code == "NOT_DELEGATOR"

    def test_super_admin_can_revoke(self, org):
        d = delegation_service.create_delegation(org.unit_head, org.eco.id)
        result = delegation_service.revoke_delegation(d["id"], org.admin)
        assert result["is_active"] is False
        assert result["revoked_by"] == org.admin.id

    def test_revoking_twice_is_a_conflict(self, org):
        d = delegation_service.create_delegation(org.unit_head, org.eco.id)
        delegation_service.revoke_delegation(d["id"], org.unit_head)
        with pytest.raises(StateConflictError):
            delegation_service.revoke_delegation(d["id"], org.unit_head)

    def test_unrelated_user_sees_not_found(self, org):
        d = delegation_service.create_delegation(org.unit_head, org.eco.id)
        with pytest.raises(NotFoundError):
            delegation_service.delete_delegation(d["id"], org.outsider)

    def test_delete_removes_row(self, org):
        d = delegation_service.create_delegation(org.unit_head, org.eco.id)
        delegation_service.delete_delegation(d["id"], org.unit_head)
        assert db.session.get(Delegation, d["id"]) is None
        assert delegation_service.resolve(org.unit_head).id == org.unit_head.id


# ═══════════════════════════════════════════════════════════════
# API
# ═══════════════════════════════════════════════════════════════


class TestDelegationAPI:
    def test_create_and_list(self, client, org, auth_headers):
        expires = (_now() + timedelta(hours=1)).isoformat()
        res = client.post("/api/v1/users/delegations/", headers=auth_headers(org.unit_head),
                          json={"delegated_to": org.eco.id, "expires_at": expires, "reason": "leave"})
        assert res.status_code == 201
        body = res.get_json()
        assert body["delegated_to_id"] == org.eco.id
        assert body["is_valid"] is True
        assert body["is_expired"] is False

        # Visible to both parties
        for user in (org.unit_head, org.eco):
            res = client.get("/api/v1/users/delegations/", headers=auth_headers(user))
            assert [d["id"] for d in res.get_json()] == [body["id"]]
        res = client.get("/api/v1/users/delegations/", headers=auth_headers(org.outsider))
        assert res.get_json() == []

    def test_alias_prefix(self, client, org, auth_headers):
        res = client.post("/api/v1/delegations/", headers=auth_headers(org.ac),
                          json={"delegated_to": org.eco.id})
        assert res.status_code == 201
        res = client.get(f"/api/v1/delegations/{res.get_json()['id']}/", headers=auth_headers(org.ac))
        assert res.status_code == 200

    def test_create_requires_delegate(self, client, org, auth_headers):
        res = client.post("/api/v1/users/delegations/", headers=auth_headers(org.unit_head), json={})
        assert res.status_code == 400
        assert "delegated_to" in res.get_json()["details"]

    def test_bad_expiry_format(self, client, org, auth_headers):
        res = client.post("/api/v1/users/delegations/", headers=auth_headers(org.unit_head),
                          json={"delegated_to": org.eco.id, "expires_at": "tomorrow"})
        assert res.status_code == 400

    def test_no_authority_is_forbidden(self, client, org, auth_headers):
        res = client.post("/api/v1/users/delegations/", headers=auth_headers(org.eco),
                          json={"delegated_to": org.eco2.id})
        assert res.status_code == 403
        assert res.get_json()["code"] == "NO_AUTHORITY"

    def test_self_delegation_is_unprocessable(self, client, org, auth_headers):
        res = client.post("/api/v1/users/delegations/", headers=auth_headers(org.unit_head),
                          json={"delegated_to": org.unit_head.id})
        assert res.status_code == 422

    def test_revoke_then_conflict(self, client, org, auth_headers):
        d = delegation_service.create_delegation(org.unit_head, org.eco.id)
        url = f"/api/v1/users/delegations/{d['id']}/revoke/"
        res = client.post(url, headers=auth_headers(org.unit_head))
        assert res.status_code == 200
        assert res.get_json()["is_active"] is False
        res = client.post(url, headers=auth_headers(org.unit_head))
        assert res.status_code == 409

    def test_delegate_cannot_delete(self, client, org, auth_headers):
        d = delegation_service.create_delegation(org.unit_head, org.eco.id)
        res = client.delete(f"/api/v1/users/delegations/{d['id']}/", headers=auth_headers(org.eco))
        assert res.status_code == 403
        res = client.delete(f"/api/v1/users/delegations/{d['id']}/", headers=auth_headers(org.unit_head))
        assert res.status_code == 204

    def test_requires_authentication(self, client):
        res = client.get("/api/v1/users/delegations/")
        assert res.status_code == 401
