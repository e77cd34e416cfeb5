"""Tests for the /api JSON endpoints.

Covers:
- Bearer token authentication and workspace isolation
- Filtered task listing: meta, warnings, statistics, includes
- Request parameter errors (400) vs filter definition errors (422)
- Saved filters: create, apply by id, save while querying, default, delete
- Column type catalogue and per-board filterable columns
- Filter validation endpoint
- Bulk operations and field value reads/writes
"""

import json
from datetime import datetime

from taskboard.extensions import db
from taskboard.models.saved_filter import SavedFilter
from taskboard.models.task import Task, TaskFieldValue


# ─── Helpers ───────────────────────────────────────────────

def _auth(user):
    return {"Authorization": f"Bearer {user.api_token}"}


def _leaf(column, column_type, operator, value=None):
    return {
        "column": column,
        "column_type": column_type,
        "operator": operator,
        "value": value,
    }


def _filter(client, seed_data, body=None, query_string=None, user=None):
    return client.post(
        f"/api/boards/{seed_data['board_id']}/tasks/filter",
        json=body or {},
        query_string=query_string,
        headers=_auth(user or seed_data["member"]),
    )


# ─── Access control ────────────────────────────────────────

class TestAccess:

    def test_missing_token(self, client, seed_data):
        resp = client.get(f"/api/boards/{seed_data['board_id']}/tasks/filter")
        assert resp.status_code == 401
        assert resp.get_json() == {"error": "Unauthorized"}

    def test_bad_token(self, client, seed_data):
        resp = client.get(
            f"/api/boards/{seed_data['board_id']}/tasks/filter",
            headers={"Authorization": "Bearer nope"},
        )
        assert resp.status_code == 401

    def test_session_cookie_not_accepted(self, client, seed_data):
        with client.session_transaction() as sess:
            sess["_user_id"] = seed_data["member_id"]
        resp = client.get(f"/api/boards/{seed_data['board_id']}/tasks/filter")
        assert resp.status_code == 401

    def test_outsider_forbidden(self, client, seed_data):
        resp = _filter(client, seed_data, user=seed_data["outsider"])
        assert resp.status_code == 403
        assert resp.get_json() == {"error": "Forbidden"}

    def test_unknown_board(self, client, seed_data):
        resp = client.get(
            "/api/boards/missing/tasks/filter", headers=_auth(seed_data["member"])
        )
        assert resp.status_code == 404
        assert resp.get_json() == {"error": "Board not found"}

    def test_unknown_task(self, client, seed_data):
        resp = client.get(
            "/api/tasks/missing/field-values", headers=_auth(seed_data["member"])
        )
        assert resp.status_code == 404
        assert resp.get_json() == {"error": "Task not found"}


# ─── Filtering ─────────────────────────────────────────────

class TestFilterEndpoint:

    def test_no_filters_lists_board(self, client, seed_data):
        resp = _filter(client, seed_data)
        assert resp.status_code == 200
        data = resp.get_json()
        assert [t["title"] for t in data["data"]] == [
            "Design homepage", "Build API", "Fix login bug", "Write docs",
        ]
        assert data["pagination"]["total"] == 4
        assert data["pagination"]["per_page"] == 15
        assert data["meta"]["filters_applied"] == 0
        assert data["meta"]["filter_summary"] == ""
        assert data["meta"]["sort"] == {"by": "position", "order": "asc"}

    def test_filtered_with_meta(self, client, seed_data):
        resp = _filter(client, seed_data, {
            "filters": [
                _leaf("Budget", "currency", "greater_than", 500),
                _leaf("Gone", "text", "contains", "x"),
            ],
            "include": ["custom_values", "assignee"],
        })
        assert resp.status_code == 200
        data = resp.get_json()
        assert [t["title"] for t in data["data"]] == ["Build API"]

        task = data["data"][0]
        budget_id = seed_data["columns"]["budget"].id
        assert task["custom_values"][budget_id] == 600.0
        assert task["assignee"] is None

        meta = data["meta"]
        assert meta["filters_applied"] == 2
        assert meta["filter_summary"] == (
            "Budget greater_than 500 AND Gone contains x"
        )
        assert meta["warnings"] == [
            {"column": "Gone", "message": "Unknown column 'Gone' was ignored"}
        ]
        assert meta["statistics"] == {
            "total_tasks": 4,
            "filtered_tasks": 1,
            "filter_efficiency": 25.0,
            "filters_applied": 2,
        }
        assert meta["diagnostics"]["is_valid"] is True

    def test_filters_in_query_string(self, client, seed_data):
        resp = client.get(
            f"/api/boards/{seed_data['board_id']}/tasks/filter",
            query_string={
                "filters": json.dumps([_leaf("status", "status", "equals", "todo")]),
                "sort_by": "title",
                "sort_order": "desc",
                "include[]": "creator",
            },
            headers=_auth(seed_data["member"]),
        )
        assert resp.status_code == 200
        data = resp.get_json()
        assert [t["title"] for t in data["data"]] == ["Write docs", "Design homepage"]
        assert data["data"][0]["creator"]["email"] == "member@taskboard.test"

    def test_filters_json(self, client, seed_data):
        resp = _filter(client, seed_data, {
            "filters_json": json.dumps({"logic": "OR", "filters": [
                _leaf("priority", "priority", "equals", "urgent"),
                _leaf("Reviewed", "checkbox", "equals", True),
            ]}),
        })
        assert resp.status_code == 200
        titles = [t["title"] for t in resp.get_json()["data"]]
        assert titles == ["Design homepage", "Fix login bug"]

    def test_conflict_diagnostics(self, client, seed_data):
        resp = _filter(client, seed_data, {"filters": {"logic": "OR", "filters": [
            _leaf("status", "status", "equals", "todo"),
            _leaf("status", "status", "equals", "done"),
        ]}})
        assert resp.status_code == 200
        diagnostics = resp.get_json()["meta"]["diagnostics"]
        assert diagnostics["is_valid"] is False
        assert diagnostics["conflicts"] == [
            "Multiple status filters detected - they may conflict with each other"
        ]

    def test_both_filters_and_json(self, client, seed_data):
        resp = _filter(client, seed_data, {
            "filters": [],
            "filters_json": "[]",
        })
        assert resp.status_code == 400
        data = resp.get_json()
        assert data["error"] == "Invalid query parameters"
        assert data["errors"]["filters"] == [
            "Cannot provide both filters array and filters JSON"
        ]

    def test_bad_parameters(self, client, seed_data):
        resp = _filter(client, seed_data, {
            "per_page": 1000,
            "sort_order": "sideways",
            "include": ["secrets"],
        })
        assert resp.status_code == 400
        errors = resp.get_json()["errors"]
        assert set(errors) == {"per_page", "sort_order", "include"}

    def test_invalid_filter_definition(self, client, seed_data):
        resp = _filter(client, seed_data, {
            "filters": [_leaf("status", "status", "greater_than", "todo")],
        })
        assert resp.status_code == 422
        data = resp.get_json()
        assert data["error"] == "Invalid filter definition"
        assert data["errors"][0]["path"] == "filters.0.operator"

    def test_cursor_pagination(self, client, seed_data):
        first = _filter(client, seed_data, {"per_page": 2, "sort_by": "Budget"}).get_json()
        assert first["pagination"]["has_more"] is True
        assert [t["title"] for t in first["data"]] == ["Design homepage", "Build API"]

        second = _filter(client, seed_data, {
            "per_page": 2,
            "sort_by": "Budget",
            "cursor": first["pagination"]["next_cursor"],
        }).get_json()
        assert second["pagination"]["has_more"] is False
        assert second["pagination"]["next_cursor"] is None
        assert {t["title"] for t in second["data"]} == {"Fix login bug", "Write docs"}

        resp = _filter(client, seed_data, {
            "per_page": 2,
            "sort_by": "title",
            "cursor": first["pagination"]["next_cursor"],
        })
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Cursor does not match the requested sort"

    def test_invalid_cursor(self, client, seed_data):
        resp = _filter(client, seed_data, {"cursor": "bad"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Invalid cursor"

    def test_archived_scope(self, client, seed_data):
        seed_data["tasks"][3].archived_at = datetime(2026, 1, 1)
        db.session.commit()
        assert _filter(client, seed_data).get_json()["pagination"]["total"] == 3
        resp = _filter(client, seed_data, {"include_archived": "true"})
        assert resp.get_json()["pagination"]["total"] == 4


class TestSavedFiltersEndpoints:

    def test_create_apply_and_list(self, client, seed_data):
        board_id = seed_data["board_id"]
        headers = _auth(seed_data["member"])

        resp = client.post(f"/api/boards/{board_id}/saved-filters", json={
            "name": "Big budgets",
            "filters": [_leaf("Budget", "currency", "greater_equal", 400)],
            "is_public": True,
        }, headers=headers)
        assert resp.status_code == 201
        saved = resp.get_json()["data"]
        assert saved["is_owner"] is True
        assert saved["is_public"] is True

        resp = _filter(client, seed_data, {"saved_filter_id": saved["id"]})
        assert resp.status_code == 200
        data = resp.get_json()
        assert [t["title"] for t in data["data"]] == ["Design homepage", "Build API"]
        assert data["meta"]["applied_saved_filter"]["id"] == saved["id"]
        assert data["meta"]["applied_saved_filter"]["usage_count"] == 1

        resp = client.get(f"/api/boards/{board_id}/saved-filters", headers=headers)
        assert [f["name"] for f in resp.get_json()["data"]] == ["Big budgets"]

    def test_saved_filter_with_inline_filters(self, client, seed_data):
        resp = _filter(client, seed_data, {
            "saved_filter_id": "whatever",
            "filters": [_leaf("status", "status", "equals", "todo")],
        })
        assert resp.status_code == 400
        assert "saved_filter_id" in resp.get_json()["errors"]

    def test_unknown_saved_filter(self, client, seed_data):
        resp = _filter(client, seed_data, {"saved_filter_id": "missing"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Saved filter missing not found."

    def test_save_while_querying(self, client, seed_data):
        resp = _filter(client, seed_data, {
            "filters": [_leaf("status", "status", "equals", "todo")],
            "save_filter": True,
            "filter_name": "To do",
        })
        assert resp.status_code == 200
        saved = resp.get_json()["meta"]["saved_filter"]
        assert saved["name"] == "To do"
        assert SavedFilter.query.count() == 1

    def test_save_needs_name(self, client, seed_data):
        resp = _filter(client, seed_data, {
            "filters": [_leaf("status", "status", "equals", "todo")],
            "save_filter": "true",
        })
        assert resp.status_code == 400
        assert "filter_name" in resp.get_json()["errors"]

    def test_save_empty_filter(self, client, seed_data):
        resp = _filter(client, seed_data, {"save_filter": True, "filter_name": "All"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Cannot save an empty filter."
        assert SavedFilter.query.count() == 0

    def test_duplicate_name(self, client, seed_data):
        board_id = seed_data["board_id"]
        headers = _auth(seed_data["member"])
        body = {"name": "Mine", "filters": [_leaf("title", "text", "contains", "a")]}
        client.post(f"/api/boards/{board_id}/saved-filters", json=body, headers=headers)
        resp = client.post(f"/api/boards/{board_id}/saved-filters", json=body, headers=headers)
        assert resp.status_code == 400
        assert "already exists" in resp.get_json()["error"]

    def test_default_and_delete(self, client, seed_data):
        board_id = seed_data["board_id"]
        headers = _auth(seed_data["member"])
        body = {"name": "Mine", "filters": [_leaf("title", "text", "contains", "a")]}
        saved_id = client.post(
            f"/api/boards/{board_id}/saved-filters", json=body, headers=headers
        ).get_json()["data"]["id"]

        resp = client.post(
            f"/api/boards/{board_id}/saved-filters/{saved_id}/default", headers=headers
        )
        assert resp.status_code == 200
        assert resp.get_json()["data"]["is_default"] is True

        resp = client.delete(
            f"/api/boards/{board_id}/saved-filters/{saved_id}", headers=headers
        )
        assert resp.status_code == 200
        assert SavedFilter.query.count() == 0

        resp = client.delete(
            f"/api/boards/{board_id}/saved-filters/{saved_id}", headers=headers
        )
        assert resp.status_code == 404


# ─── Catalogue and validation ──────────────────────────────

class TestCatalogue:

    def test_column_types(self, client, seed_data):
        resp = client.get("/api/column-types", headers=_auth(seed_data["member"]))
        assert resp.status_code == 200
        types = {entry["type"] for entry in resp.get_json()["data"]}
        assert {"text", "currency", "labels", "checkbox", "assignee"} <= types

    def test_column_type_detail(self, client, seed_data):
        resp = client.get(
            "/api/column-types/checkbox", headers=_auth(seed_data["member"])
        )
        data = resp.get_json()["data"]
        assert data["sortable"] is False
        assert data["operators"] == ["equals", "not_equals", "is_empty", "is_not_empty"]

        resp = client.get(
            "/api/column-types/hologram", headers=_auth(seed_data["member"])
        )
        assert resp.status_code == 404

    def test_filter_columns(self, client, seed_data):
        resp = client.get(
            f"/api/boards/{seed_data['board_id']}/filter-columns",
            headers=_auth(seed_data["member"]),
        )
        columns = resp.get_json()["data"]
        names = [c["name"] for c in columns]
        assert names[:2] == ["title", "description"]
        assert names[-5:] == [
            "Budget", "Labels", "Launch date", "Reviewed", "Contact email",
        ]

    def test_validate(self, client, seed_data):
        resp = client.post(
            f"/api/boards/{seed_data['board_id']}/filters/validate",
            json={"filters": [
                _leaf("status", "status", "in", ["todo", "todo", "done"]),
            ]},
            headers=_auth(seed_data["member"]),
        )
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["valid"] is True
        assert data["filters_applied"] == 1
        assert data["filters"]["filters"][0]["value"] == ["todo", "done"]

    def test_validate_reports_errors(self, client, seed_data):
        resp = client.post(
            f"/api/boards/{seed_data['board_id']}/filters/validate",
            json={"filters": []},
            headers=_auth(seed_data["member"]),
        )
        assert resp.status_code == 422


# ─── Bulk and field values ─────────────────────────────────

class TestBulkEndpoint:

    def test_bulk(self, client, seed_data):
        resp = client.post(
            f"/api/boards/{seed_data['board_id']}/tasks/bulk",
            json={
                "operation": "set_status",
                "params": {"status": "done"},
                "task_ids": seed_data["task_ids"][:2] + ["missing"],
            },
            headers=_auth(seed_data["member"]),
        )
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["successful_count"] == 2
        assert data["failed_count"] == 1
        assert Task.query.filter_by(status="done").count() == 3

    def test_bulk_bad_operation(self, client, seed_data):
        resp = client.post(
            f"/api/boards/{seed_data['board_id']}/tasks/bulk",
            json={"operation": "explode", "task_ids": seed_data["task_ids"]},
            headers=_auth(seed_data["member"]),
        )
        assert resp.status_code == 400

    def test_bulk_bad_labels(self, client, seed_data):
        resp = client.post(
            f"/api/boards/{seed_data['board_id']}/tasks/bulk",
            json={
                "operation": "add_labels",
                "params": {"column": "Labels", "labels": [1]},
                "task_ids": seed_data["task_ids"],
            },
            headers=_auth(seed_data["member"]),
        )
        assert resp.status_code == 422
        assert resp.get_json()["errors"]["path"] == "labels"


class TestFieldValueEndpoints:

    def test_get(self, client, seed_data):
        task_id = seed_data["task_ids"][0]
        resp = client.get(
            f"/api/tasks/{task_id}/field-values", headers=_auth(seed_data["member"])
        )
        assert resp.status_code == 200
        values = {v["column"]: v["value"] for v in resp.get_json()["data"]}
        assert values["Labels"] == ["frontend", "design"]

    def test_put(self, client, seed_data):
        task_id = seed_data["task_ids"][3]
        resp = client.put(
            f"/api/tasks/{task_id}/field-values",
            json={"values": {"Budget": "80", "Reviewed": "no"}},
            headers=_auth(seed_data["member"]),
        )
        assert resp.status_code == 200
        values = {v["column"]: v["value"] for v in resp.get_json()["data"]}
        assert values["Budget"] == 80.0
        assert values["Reviewed"] is False

    def test_put_invalid(self, client, seed_data):
        task_id = seed_data["task_ids"][3]
        resp = client.put(
            f"/api/tasks/{task_id}/field-values",
            json={"values": {"Launch date": "someday"}},
            headers=_auth(seed_data["member"]),
        )
        assert resp.status_code == 422
        assert resp.get_json()["errors"] == {
            "Launch date": ["Value is not a valid date."]
        }

    def test_delete(self, client, seed_data):
        task_id = seed_data["task_ids"][0]
        column_id = seed_data["columns"]["budget"].id
        resp = client.delete(
            f"/api/tasks/{task_id}/field-values/{column_id}",
            headers=_auth(seed_data["member"]),
        )
        assert resp.status_code == 200
        assert TaskFieldValue.query.filter_by(
            task_id=task_id, board_column_id=column_id
        ).count() == 0

        resp = client.delete(
            f"/api/tasks/{task_id}/field-values/nope",
            headers=_auth(seed_data["member"]),
        )
        assert resp.status_code == 404
