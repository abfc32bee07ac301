"""
Action log API tests: create, read, list, assign, edit.

Covers:
  - creation defaults and validation
  - visibility (invisible logs answer 404)
  - filters and the optional pagination envelope
  - assignment rules and assignment history
  - content edits by creator / assigner only
"""

import pytest

from actionlog.models import db
from actionlog.models.action_log import STATUS_OPEN, ActionLog, AssignmentHistory
from actionlog.services import action_log_service


def _create(client, headers, **body):
    return client.post("/api/v1/action-logs/", headers=headers, json=body)


class TestCreate:
    def test_create_with_assignees(self, client, org, auth_headers):
        res = _create(client, auth_headers(org.eco), title="Prepare budget memo",
                      department=org.dept.id, priority="High", due_date="2026-12-31",
                      assigned_to=[org.eco2.id])
        assert res.status_code == 201
        body = res.get_json()
        assert body["status"] == STATUS_OPEN
        assert body["priority"] == "High"
        assert body["due_date"] == "2026-12-31"
        assert body["assigned_to"] == [org.eco2.id]
        assert body["created_by"]["id"] == org.eco.id
        assert body["original_assigner"]["id"] == org.eco.id
        assert body["department_unit"]["id"] == org.unit1.id
        assert body["can_assign"] is True

    def test_create_without_assignees_has_no_assigner(self, client, org, auth_headers):
        res = _create(client, auth_headers(org.eco), title="Unassigned", department=org.dept.id)
        assert res.status_code == 201
        assert res.get_json()["original_assigner"] is None
        assert res.get_json()["assigned_to"] == []

    def test_single_assignee_id_is_accepted(self, client, org, auth_headers):
        res = _create(client, auth_headers(org.eco), title="One", department=org.dept.id,
                      assigned_to=org.eco2.id)
        assert res.status_code == 201
        assert res.get_json()["assigned_to"] == [org.eco2.id]

    def test_required_fields(self, client, org, auth_headers):
        res = _create(client, auth_headers(org.eco))
        assert res.status_code == 400
        details = res.get_json()["details"]
        assert "title" in details
        assert "department" in details

    def test_bad_priority_and_date(self, client, org, auth_headers):
        res = _create(client, auth_headers(org.eco), title="x", department=org.dept.id,
                      priority="Urgent", due_date="31/31/2026")
        assert res.status_code == 400
        details = res.get_json()["details"]
        assert "priority" in details
        assert "due_date" in details

    def test_unknown_department(self, client, org, auth_headers):
        res = _create(client, auth_headers(org.eco), title="x", department=9999)
        assert res.status_code == 404

    def test_unit_from_other_department(self, client, org, make_department, make_unit, auth_headers):
        other = make_department("Budget", "BUD")
        foreign_unit = make_unit(other, "Revenue")
        res = _create(client, auth_headers(org.eco), title="x", department=org.dept.id,
                      department_unit=foreign_unit.id)
        assert res.status_code == 422

    def test_economist_cannot_assign_commissioner(self, client, org, auth_headers):
        res = _create(client, auth_headers(org.eco), title="x", department=org.dept.id,
                      assigned_to=[org.commissioner.id])
        assert res.status_code == 403
        assert res.get_json()["code"] == "CANNOT_ASSIGN_COMMISSIONER"
        assert ActionLog.query.count() == 0

    def test_ac_can_assign_commissioner(self, client, org, auth_headers):
        res = _create(client, auth_headers(org.ac), title="x", department=org.dept.id,
                      assigned_to=[org.commissioner.id])
        assert res.status_code == 201

    def test_team_leader_must_be_assignee(self, client, org, auth_headers):
        res = _create(client, auth_headers(org.eco), title="x", department=org.dept.id,
                      assigned_to=[org.eco.id, org.eco2.id], team_leader=org.outsider.id)
        assert res.status_code == 422
        assert ActionLog.query.count() == 0

    def test_team_leader_without_assignees_rejected(self, client, org, auth_headers):
        res = _create(client, auth_headers(org.eco), title="x", department=org.dept.id,
                      team_leader=org.eco.id)
        assert res.status_code == 422
        assert res.get_json()["details"] == {"team_leader": org.eco.id}
        assert ActionLog.query.count() == 0

    def test_inactive_assignee_rejected(self, client, org, make_user, auth_headers):
        gone = make_user("gone", unit=org.unit1, is_active=False)
        res = _create(client, auth_headers(org.eco), title="x", department=org.dept.id,
                      assigned_to=[gone.id])
        assert res.status_code == 422

    def test_requires_authentication(self, client, org):
        res = client.post("/api/v1/action-logs/", json={"title": "x", "department": org.dept.id})
        assert res.status_code == 401

    def test_invalid_token(self, client):
        res = client.get("/api/v1/action-logs/", headers={"Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401


class TestVisibility:
    def test_outsider_gets_404(self, client, org, make_log, auth_headers):
        log = make_log(org.eco, assignees=[org.eco2])
        res = client.get(f"/api/v1/action-logs/{log.id}/", headers=auth_headers(org.outsider))
        assert res.status_code == 404

    def test_parties_and_approvers_can_see(self, client, org, make_log, auth_headers):
        log = make_log(org.eco, assignees=[org.eco2])
        for viewer in (org.eco, org.eco2, org.unit_head, org.ac, org.commissioner, org.admin):
            res = client.get(f"/api/v1/action-logs/{log.id}/", headers=auth_headers(viewer))
            assert res.status_code == 200, viewer.username

    def test_list_is_filtered_by_visibility(self, client, org, make_log, auth_headers):
        mine = make_log(org.eco, assignees=[org.eco])
        theirs = make_log(org.outsider, assignees=[org.outsider])

        ids = [i["id"] for i in client.get("/api/v1/action-logs/", headers=auth_headers(org.eco)).get_json()]
        assert ids == [mine.id]
        ids = [i["id"] for i in client.get("/api/v1/action-logs/", headers=auth_headers(org.ac)).get_json()]
        assert set(ids) == {mine.id, theirs.id}

    def test_delegate_sees_delegator_scope(self, client, org, make_log, auth_headers):
        from actionlog.services import delegation_service

        log = make_log(org.eco, assignees=[org.eco])
        res = client.get(f"/api/v1/action-logs/{log.id}/", headers=auth_headers(org.outsider))
        assert res.status_code == 404
        delegation_service.create_delegation(org.unit_head, org.outsider.id)
        res = client.get(f"/api/v1/action-logs/{log.id}/", headers=auth_headers(org.outsider))
        assert res.status_code == 200

    def test_unknown_log(self, client, org, auth_headers):
        res = client.get("/api/v1/action-logs/424242/", headers=auth_headers(org.admin))
        assert res.status_code == 404


class TestListing:
    @pytest.fixture()
    def three_logs(self, org, make_log):
        return [
            make_log(org.eco, assignees=[org.eco], title="Draft PIP guidelines", priority="High"),
            make_log(org.eco, assignees=[org.eco2], title="Review county budgets", priority="Low"),
            make_log(org.eco, assignees=[org.eco], title="Update project database", unit=org.unit2),
        ]

    def test_newest_first(self, client, org, three_logs, auth_headers):
        res = client.get("/api/v1/action-logs/", headers=auth_headers(org.eco))
        assert [i["id"] for i in res.get_json()] == [log.id for log in reversed(three_logs)]

    def test_filters(self, client, org, three_logs, auth_headers):
        h = auth_headers(org.eco)
        first, second, third = three_logs

        res = client.get("/api/v1/action-logs/?priority=High", headers=h)
        assert [i["id"] for i in res.get_json()] == [first.id]
        res = client.get("/api/v1/action-logs/?search=county", headers=h)
        assert [i["id"] for i in res.get_json()] == [second.id]
        res = client.get(f"/api/v1/action-logs/?assigned_to={org.eco2.id}", headers=h)
        assert [i["id"] for i in res.get_json()] == [second.id]
        res = client.get(f"/api/v1/action-logs/?department_unit={org.unit2.id}", headers=h)
        assert [i["id"] for i in res.get_json()] == [third.id]
        res = client.get("/api/v1/action-logs/?status=open", headers=h)
        assert len(res.get_json()) == 3

    def test_invalid_filters(self, client, org, auth_headers):
        h = auth_headers(org.eco)
        assert client.get("/api/v1/action-logs/?status=done", headers=h).status_code == 400
        assert client.get("/api/v1/action-logs/?department=abc", headers=h).status_code == 400

    def test_pagination_envelope(self, client, org, three_logs, auth_headers):
        h = auth_headers(org.eco)
        res = client.get("/api/v1/action-logs/?page=1&page_size=2", headers=h)
        body = res.get_json()
        assert body["count"] == 3
        assert len(body["results"]) == 2
        assert body["previous"] is None
        assert "page=2" in body["next"]

        body = client.get("/api/v1/action-logs/?page=2&page_size=2", headers=h).get_json()
        assert len(body["results"]) == 1
        assert body["next"] is None
        assert "page=1" in body["previous"]

    def test_page_size_is_capped(self, client, org, three_logs, auth_headers):
        body = client.get("/api/v1/action-logs/?page_size=1000", headers=auth_headers(org.eco)).get_json()
        assert body["count"] == 3
        assert len(body["results"]) == 3

    def test_only_the_page_is_serialised(self, org, three_logs, monkeypatch):
        calls = []
        real = action_log_service.serialize
        monkeypatch.setattr(action_log_service, "serialize",
                            lambda log, viewer, now=None: calls.append(log.id) or real(log, viewer, now))

        envelope = action_log_service.list_action_logs(org.eco, {}, page=2, page_size=1)
        assert envelope["count"] == 3
        assert [i["id"] for i in envelope["results"]] == [three_logs[1].id]
        assert calls == [three_logs[1].id]
        assert envelope["has_next"] and envelope["has_previous"]

    def test_page_count_respects_visibility(self, client, org, three_logs, auth_headers):
        body = client.get("/api/v1/action-logs/?page=1&page_size=5", headers=auth_headers(org.eco2)).get_json()
        assert body["count"] == 1
        assert [i["id"] for i in body["results"]] == [three_logs[1].id]
        assert body["next"] is None

    def test_awaiting_my_approval_is_paginated(self, client, org, three_logs, auth_headers):
        h = auth_headers(org.eco)
        for log in (three_logs[0], three_logs[2]):
            client.patch(f"/api/v1/action-logs/{log.id}/", headers=h, json={"status": "in_progress"})
            client.patch(f"/api/v1/action-logs/{log.id}/", headers=h, json={"status": "closed"})

        body = client.get("/api/v1/action-logs/?awaiting_my_approval=true&page=1&page_size=5",
                          headers=auth_headers(org.unit_head)).get_json()
        assert body["count"] == 1
        assert [i["id"] for i in body["results"]] == [three_logs[0].id]

    def test_serialised_fields(self, client, org, three_logs, auth_headers):
        item = client.get("/api/v1/action-logs/", headers=auth_headers(org.eco)).get_json()[0]
        for key in ("can_approve", "comment_count", "assigned_to", "assignees", "closure_approval_stage"):
            assert key in item


class TestAssign:
    def test_only_original_assigner_reassigns(self, client, org, make_log, auth_headers):
        log = make_log(org.eco, assignees=[org.eco2])
        res = client.post(f"/api/v1/action-logs/{log.id}/assign/", headers=auth_headers(org.unit_head),
                          json={"assigned_to": [org.eco.id]})
        assert res.status_code == 403
        assert res.get_json()["code"] == "NOT_ASSIGNER"

        res = client.post(f"/api/v1/action-logs/{log.id}/assign/", headers=auth_headers(org.eco),
                          json={"assigned_to": [org.eco.id, org.eco2.id], "team_leader": org.eco2.id,
                                "comment": "Pairing up"})
        assert res.status_code == 200
        body = res.get_json()
        assert body["assigned_to"] == [org.eco.id, org.eco2.id]
        assert body["team_leader"]["id"] == org.eco2.id

    def test_unassigned_log_can_be_assigned_by_unit_head(self, client, org, make_log, auth_headers):
        log = make_log(org.eco)
        res = client.post(f"/api/v1/action-logs/{log.id}/assign/", headers=auth_headers(org.unit_head),
                          json={"assigned_to": [org.eco2.id]})
        assert res.status_code == 200
        assert db.session.get(ActionLog, log.id).original_assigner_id == org.unit_head.id

    def test_assign_requires_assignees(self, client, org, make_log, auth_headers):
        log = make_log(org.eco)
        res = client.post(f"/api/v1/action-logs/{log.id}/assign/", headers=auth_headers(org.eco), json={})
        assert res.status_code == 400

    def test_history_is_recorded(self, client, org, make_log, auth_headers):
        log = make_log(org.eco, assignees=[org.eco2])
        client.post(f"/api/v1/action-logs/{log.id}/assign/", headers=auth_headers(org.eco),
                    json={"assigned_to": [org.eco.id], "comment": "Taking it over"})

        res = client.get(f"/api/v1/action-logs/{log.id}/assignment_history/", headers=auth_headers(org.eco))
        assert res.status_code == 200
        history = res.get_json()
        assert len(history) == 2
        latest = max(history, key=lambda h: h["id"])
        assert latest["assigned_to"] == [org.eco.id]
        assert latest["previous_assigned_to"] == [org.eco2.id]
        assert latest["comment"] == "Taking it over"
        assert AssignmentHistory.query.filter_by(action_log_id=log.id).count() == 2

    def test_pending_log_cannot_be_reassigned(self, client, org, make_log, auth_headers):
        log = make_log(org.eco, assignees=[org.eco])
        h = auth_headers(org.eco)
        client.patch(f"/api/v1/action-logs/{log.id}/", headers=h, json={"status": "in_progress"})
        client.patch(f"/api/v1/action-logs/{log.id}/", headers=h, json={"status": "closed"})
        res = client.post(f"/api/v1/action-logs/{log.id}/assign/", headers=h,
                          json={"assigned_to": [org.eco2.id]})
        assert res.status_code == 409


class TestEdit:
    def test_creator_can_edit_content(self, client, org, make_log, auth_headers):
        log = make_log(org.eco, assignees=[org.eco2])
        res = client.patch(f"/api/v1/action-logs/{log.id}/", headers=auth_headers(org.eco),
                           json={"title": "Renamed", "priority": "Low", "due_date": "2027-01-15"})
        assert res.status_code == 200
        body = res.get_json()
        assert body["title"] == "Renamed"
        assert body["priority"] == "Low"
        assert body["due_date"] == "2027-01-15"

    def test_assignee_cannot_edit_content(self, client, org, make_log, auth_headers):
        log = make_log(org.eco, assignees=[org.eco2])
        res = client.patch(f"/api/v1/action-logs/{log.id}/", headers=auth_headers(org.eco2),
                           json={"title": "Hijacked"})
        assert res.status_code == 403
        assert db.session.get(ActionLog, log.id).title != "Hijacked"

    def test_empty_patch(self, client, org, make_log, auth_headers):
        log = make_log(org.eco, assignees=[org.eco])
        res = client.patch(f"/api/v1/action-logs/{log.id}/", headers=auth_headers(org.eco), json={})
        assert res.status_code == 400

    def test_comment_only_patch_adds_comment(self, client, org, make_log, auth_headers):
        log = make_log(org.eco, assignees=[org.eco2])
        res = client.patch(f"/api/v1/action-logs/{log.id}/", headers=auth_headers(org.eco2),
                           json={"comment": "Started drafting"})
        assert res.status_code == 200
        assert res.get_json()["comment_count"] == 1
