"""HTTP tests for the FastAPI app over the SQLite-backed store."""

import uuid

import pytest
from fastapi.testclient import TestClient

from forge_ledger.app import app


@pytest.fixture(scope="module")
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def thread_id():
    return f"thread-{uuid.uuid4().hex[:8]}"


def post_turn(client, thread_id, text, turn_id=None):
    response = client.post(f"/threads/{thread_id}/turns", json={"text": text, "turn_id": turn_id})
    assert response.status_code == 200
    return response.json()


class TestTurns:

    def test_turn_updates_ledger(self, client, thread_id):
        outcome = post_turn(client, thread_id, "Award: +30 CP.", turn_id=1)
        assert outcome["skipped"] is False
        assert "points:+30" in outcome["result"]["changes"]

        body = client.get(f"/threads/{thread_id}").json()
        assert body["ledger"]["turn_count"] == 1
        assert body["ledger"]["bonus_points"] == 30
        assert body["ledger"]["total_points"] == body["ledger"]["base_points"] + 30

    def test_replay_skipped(self, client, thread_id):
        post_turn(client, thread_id, "Award: +30 CP.", turn_id=4)
        replay = post_turn(client, thread_id, "Award: +30 CP.", turn_id=4)
        assert replay["skipped"] is True
        assert replay["reason"] == "replay"

    def test_turn_validation(self, client, thread_id):
        response = client.post(f"/threads/{thread_id}/turns", json={"turn_id": 1})
        assert response.status_code == 422


class TestStatusAndRoll:

    def test_status_is_plain_text(self, client, thread_id):
        response = client.get(f"/threads/{thread_id}/status")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "[CELESTIAL FORGE - CURRENT STATUS]" in response.text
        assert "```forge" in response.text

    def test_roll_prompt_once(self, client, thread_id):
        assert client.post(f"/threads/{thread_id}/roll").json()["status"] == "roll_requested"
        assert "MANUAL ROLL TRIGGERED" in client.get(f"/threads/{thread_id}/status").text
        assert "MANUAL ROLL TRIGGERED" not in client.get(f"/threads/{thread_id}/status").text


class TestActions:

    def test_add_bonus(self, client, thread_id):
        response = client.post(f"/threads/{thread_id}/actions/add-bonus", json={"amount": 50})
        assert response.status_code == 200
        body = response.json()
        assert body["ledger"]["bonus_points"] == 50
        assert body["result"]["changes"] == ["points:+50"]

    def test_invalid_payload(self, client, thread_id):
        response = client.post(f"/threads/{thread_id}/actions/add-bonus", json={"amount": "lots"})
        assert response.status_code == 422

    def test_unknown_action(self, client, thread_id):
        response = client.post(f"/threads/{thread_id}/actions/summon", json={})
        assert response.status_code == 404

    def test_action_without_body(self, client, thread_id):
        response = client.post(f"/threads/{thread_id}/actions/clear-pending")
        assert response.status_code == 200

    def test_missing_perk(self, client, thread_id):
        response = client.post(f"/threads/{thread_id}/actions/remove-perk", json={"name": "GHOST"})
        assert response.status_code == 404

    def test_toggle_non_toggleable(self, client, thread_id):
        client.post(f"/threads/{thread_id}/actions/add-perk", json={"name": "IRON WILL", "cost": 10})
        response = client.post(f"/threads/{thread_id}/actions/toggle-perk", json={"name": "IRON WILL"})
        assert response.status_code == 400


class TestCheckpoints:

    def test_lifecycle(self, client, thread_id):
        post_turn(client, thread_id, "Award: +30 CP.")
        created = client.post(f"/threads/{thread_id}/checkpoints", json={"label": "start"}).json()
        assert created["label"] == "start"

        listed = client.get(f"/threads/{thread_id}/checkpoints").json()
        assert [c["id"] for c in listed] == [created["id"]]

        post_turn(client, thread_id, "Award: +20 CP.")
        restored = client.post(f"/threads/{thread_id}/checkpoints/{created['id']}")
        assert restored.status_code == 200
        assert restored.json()["ledger"]["bonus_points"] == 30

        assert client.post(f"/threads/{thread_id}/checkpoints/missing").status_code == 404
        assert client.delete(f"/threads/{thread_id}/checkpoints/{created['id']}").status_code == 200
        assert client.delete(f"/threads/{thread_id}/checkpoints/{created['id']}").status_code == 404

    def test_unknown_thread(self, client, thread_id):
        assert client.get(f"/threads/{thread_id}/checkpoints").status_code == 404


class TestUndoDiffReset:

    def test_undo_walks_back(self, client, thread_id):
        post_turn(client, thread_id, "Award: +30 CP.", turn_id=1)
        post_turn(client, thread_id, "Award: +20 CP.", turn_id=2)

        first = client.post(f"/threads/{thread_id}/undo").json()
        assert first["ledger"]["turn_count"] == 1
        assert first["ledger"]["bonus_points"] == 30
        second = client.post(f"/threads/{thread_id}/undo").json()
        assert second["ledger"]["turn_count"] == 0
        assert client.post(f"/threads/{thread_id}/undo").status_code == 404

    def test_undo_unknown_thread(self, client, thread_id):
        assert client.post(f"/threads/{thread_id}/undo").status_code == 404

    def test_diff(self, client, thread_id):
        post_turn(client, thread_id, "Award: +30 CP.")
        diff = client.get(f"/threads/{thread_id}/diff").text
        assert "Ledger Changes (Turn 1)" in diff
        assert "**bonus_points**: 0 → 30" in diff
        assert client.get("/threads/nobody-here/diff").status_code == 404

    def test_reset(self, client, thread_id):
        post_turn(client, thread_id, "Award: +30 CP.", turn_id=9)
        body = client.post(f"/threads/{thread_id}/reset").json()
        assert body["ledger"]["turn_count"] == 0
        assert body["ledger"]["bonus_points"] == 0
        assert post_turn(client, thread_id, "Quiet.", turn_id=1)["skipped"] is False


class TestExportImport:

    def test_round_trip(self, client, thread_id):
        post_turn(client, thread_id, "Award: +30 CP.")
        exported = client.get(f"/threads/{thread_id}/export").json()["ledger"]
        assert "total_points" not in exported

        target = f"{thread_id}-copy"
        response = client.post(f"/threads/{target}/import", json={"ledger": exported})
        assert response.status_code == 200
        assert client.get(f"/threads/{target}").json()["ledger"]["bonus_points"] == 30

    def test_invalid_import(self, client, thread_id):
        response = client.post(f"/threads/{thread_id}/import", json={"ledger": {"corruption": "lots"}})
        assert response.status_code == 400

    def test_export_unknown_thread(self, client, thread_id):
        assert client.get(f"/threads/{thread_id}/export").status_code == 404


class TestArchive:

    def test_search_acquire_delete(self, client, thread_id):
        suffix = uuid.uuid4().hex[:8]
        name = f"RELIC {suffix.upper()}"
        client.post(f"/threads/{thread_id}/actions/add-perk", json={
            "name": name, "cost": 5, "description": "Archived.", "flags": ["passive"],
        })

        entries = client.get("/archive", params={"q": suffix}).json()
        assert [e["name"] for e in entries] == [name]
        assert entries[0]["flags"] == ["PASSIVE"]

        other = f"{thread_id}-other"
        acquired = client.post(f"/threads/{other}/archive/{entries[0]['id']}")
        assert acquired.status_code == 200
        assert acquired.json()["result"]["acquired"] == [name]

        assert client.delete(f"/archive/{entries[0]['id']}").status_code == 200
        assert client.delete(f"/archive/{entries[0]['id']}").status_code == 404
        assert client.post(f"/threads/{other}/archive/{entries[0]['id']}").status_code == 404

    def test_clear(self, client, thread_id):
        client.post(f"/threads/{thread_id}/actions/add-perk", json={"name": "EMBER HEART", "cost": 1})
        assert client.delete("/archive").json()["status"] == "cleared"
        assert client.get("/archive").json() == []

    def test_export_and_import(self, client, thread_id):
        suffix = uuid.uuid4().hex[:8].upper()
        name = f"LANTERN {suffix}"
        client.post(f"/threads/{thread_id}/actions/add-perk", json={"name": name, "cost": 3})

        exported = client.get("/archive/export").json()
        assert name in [e["name"] for e in exported["entries"]]

        merged = client.post("/archive/import", json={
            "entries": [{"name": name.lower(), "cost": 40}, {"name": f"BEACON {suffix}", "cost": 7}],
            "replace": False,
        })
        assert merged.status_code == 200
        assert merged.json()["added"] == 1

        replaced = client.post("/archive/import", json=exported)
        assert replaced.json()["added"] == len(exported["entries"])
        assert client.get("/archive", params={"q": suffix}).json()[0]["cost"] == 3
        assert client.get("/archive", params={"q": f"BEACON {suffix}"}).json() == []

    def test_import_rejects_bad_entries(self, client):
        assert client.post("/archive/import", json={"entries": [{"cost": 5}]}).status_code == 400
        assert client.post("/archive/import", json={"entries": "IRON WILL"}).status_code == 422


class TestResetAll:

    def test_wipes_threads_and_archive(self, client, thread_id):
        post_turn(client, thread_id, "Award: +30 CP.")
        client.post(f"/threads/{thread_id}/actions/add-perk", json={"name": "GLOW WORM", "cost": 1})

        body = client.post("/reset-all").json()
        assert body["status"] == "reset"
        assert body["threads"] >= 1
        assert body["archive"] >= 1
        assert client.get(f"/threads/{thread_id}/export").status_code == 404
        assert client.get("/archive").json() == []
