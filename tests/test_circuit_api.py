"""
Circuit authoring API tests (/api/v1/circuits).

Tests cover:
  - Circuit CRUD and activation
  - Status registry endpoints
  - Step creation, advisory checks and refusal codes
"""
import pytest

from conftest import make_approver
from docflow.models import db

BASE = "/api/v1/circuits"


# ── Fixtures ─────────────────────────────────────────────────────────────

@pytest.fixture()
def circuit(client):
    res = client.post(BASE, json={"title": "Invoice approval", "document_type": "INV"})
    assert res.status_code == 201
    return res.get_json()


@pytest.fixture()
def statuses(client, circuit):
    out = {}
    for title, flags in (("Draft", {"is_initial": True}), ("Review", {}),
                         ("Approved", {"is_final": True})):
        res = client.post(f"{BASE}/{circuit['id']}/statuses", json={"title": title, **flags})
        assert res.status_code == 201
        out[title] = res.get_json()
    return out


def _step(client, circuit, current, nxt, **extra):
    return client.post(
        f"{BASE}/{circuit['id']}/steps",
        json={"current_status_id": current["id"], "next_status_id": nxt["id"], **extra},
    )


# ═════════════════════════════════════════════════════════════════════════
# CIRCUITS
# ═════════════════════════════════════════════════════════════════════════

class TestCircuitEndpoints:
    def test_create_and_list(self, client, circuit):
        assert circuit["circuit_key"] == "CR-0001"
        res = client.get(BASE)
        assert res.status_code == 200
        assert res.get_json()["total"] == 1

    def test_create_requires_title(self, client):
        res = client.post(BASE, json={})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_get_missing_circuit(self, client):
        res = client.get(f"{BASE}/999")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_activation_refused_until_valid(self, client, circuit, statuses):
        res = client.put(f"{BASE}/{circuit['id']}", json={"is_active": True})
        assert res.status_code == 422
        assert "Circuit has no steps" in res.get_json()["details"]["errors"]

        _step(client, circuit, statuses["Draft"], statuses["Review"])
        _step(client, circuit, statuses["Review"], statuses["Approved"])
        res = client.put(f"{BASE}/{circuit['id']}", json={"is_active": True})
        assert res.status_code == 200
        assert res.get_json()["is_active"] is True

    def test_validate_report(self, client, circuit, statuses):
        res = client.get(f"{BASE}/{circuit['id']}/validate")
        assert res.status_code == 200
        body = res.get_json()
        assert body["is_valid"] is False
        assert body["single_initial_status"] is True

    def test_delete(self, client, circuit):
        assert client.delete(f"{BASE}/{circuit['id']}").status_code == 200
        assert client.get(f"{BASE}/{circuit['id']}").status_code == 404


# ═════════════════════════════════════════════════════════════════════════
# STATUSES
# ═════════════════════════════════════════════════════════════════════════

class TestStatusEndpoints:
    def test_list_statuses(self, client, circuit, statuses):
        res = client.get(f"{BASE}/{circuit['id']}/statuses")
        assert [s["title"] for s in res.get_json()["items"]] == ["Draft", "Review", "Approved"]

    def test_second_initial_status(self, client, circuit, statuses):
        res = client.post(f"{BASE}/{circuit['id']}/statuses",
                          json={"title": "Also initial", "is_initial": True})
        assert res.status_code == 422

    def test_update_and_delete_status(self, client, circuit, statuses):
        sid = statuses["Review"]["id"]
        res = client.put(f"{BASE}/{circuit['id']}/statuses/{sid}",
                         json={"is_flexible": True, "description": "admin"})
        assert res.status_code == 200
        assert res.get_json()["is_flexible"] is True

        assert client.delete(f"{BASE}/{circuit['id']}/statuses/{sid}").status_code == 200
        assert client.get(f"{BASE}/{circuit['id']}/statuses").get_json()["total"] == 2


# ═════════════════════════════════════════════════════════════════════════
# STEPS
# ═════════════════════════════════════════════════════════════════════════

class TestStepEndpoints:
    def test_create_step(self, client, circuit, statuses):
        res = _step(client, circuit, statuses["Draft"], statuses["Review"], title="Submit")
        assert res.status_code == 201
        body = res.get_json()
        assert body["title"] == "Submit"
        assert body["requires_approval"] is False

    def test_duplicate_step_409(self, client, circuit, statuses):
        _step(client, circuit, statuses["Draft"], statuses["Review"])
        res = _step(client, circuit, statuses["Draft"], statuses["Review"])
        assert res.status_code == 409
        assert res.get_json()["code"] == "WF_DUPLICATE_TRANSITION"

    def test_self_loop_422(self, client, circuit, statuses):
        res = _step(client, circuit, statuses["Draft"], statuses["Draft"])
        assert res.status_code == 422
        assert res.get_json()["code"] == "WF_INVALID_TRANSITION"

    def test_unregistered_user_422(self, client, circuit, statuses):
        res = _step(client, circuit, statuses["Draft"], statuses["Review"],
                    requires_approval=True, user_id=12345)
        assert res.status_code == 422
        assert res.get_json()["code"] == "WF_APPROVER_NOT_REGISTERED"

    def test_gated_step_by_user_id(self, client, circuit, statuses):
        boss = make_approver(12345, "boss")
        db.session.commit()
        res = _step(client, circuit, statuses["Review"], statuses["Approved"],
                    requires_approval=True, user_id=12345)
        assert res.status_code == 201
        assert res.get_json()["approver_id"] == boss.id
        assert res.get_json()["approver_username"] == "boss"

    def test_missing_ids_400(self, client, circuit):
        res = client.post(f"{BASE}/{circuit['id']}/steps", json={"current_status_id": 1})
        assert res.status_code == 400

    def test_advisory_checks(self, client, circuit, statuses):
        draft, review = statuses["Draft"], statuses["Review"]
        url = f"{BASE}/{circuit['id']}/steps/exists"
        query = {"current_status_id": draft["id"], "next_status_id": review["id"]}
        assert client.get(url, query_string=query).get_json()["exists"] is False

        _step(client, circuit, draft, review)

        assert client.get(url, query_string=query).get_json()["exists"] is True
        res = client.post(f"{BASE}/{circuit['id']}/steps/validate", json=query)
        assert res.status_code == 200
        assert res.get_json()["code"] == "DUPLICATE_TRANSITION"
        assert client.get(url, query_string={"current_status_id": 1}).status_code == 400

    def test_update_and_delete_step(self, client, circuit, statuses):
        step = _step(client, circuit, statuses["Draft"], statuses["Review"]).get_json()
        url = f"{BASE}/{circuit['id']}/steps/{step['id']}"

        res = client.put(url, json={"title": "Send for review"})
        assert res.status_code == 200
        assert client.get(url).get_json()["title"] == "Send for review"

        assert client.delete(url).status_code == 200
        assert client.get(url).status_code == 404
