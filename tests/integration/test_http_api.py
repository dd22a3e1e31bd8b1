"""
Integration tests for the HTTP API.

Tests cover:
- Full workspace lifecycle over HTTP
- Caller identity from bearer tokens and X-Actor
- Error status codes and bodies
- Request validation
"""

import pytest
from fastapi.testclient import TestClient

from dbaas.tessera_server.api import create_app
from dbaas.tessera_server.config import AuthConfig, ServerConfig, StoreBackend
from dbaas.tessera_server.store.memory import InMemoryWorkspaceStore
from dbaas.tessera_server.versioning.engine import VersionEngine

ALICE = {"Authorization": "Bearer tok_alice"}
BOB = {"Authorization": "Bearer tok_bob"}


def make_client(trust_actor_header: bool = False) -> TestClient:
    config = ServerConfig(
        store_backend=StoreBackend.MEMORY,
        auth=AuthConfig(
            tokens={"tok_alice": "alice", "tok_bob": "bob"},
            trust_actor_header=trust_actor_header,
        ),
    )
    return TestClient(create_app(config, engine=VersionEngine(InMemoryWorkspaceStore())))


class TestWorkspaceLifecycle:
    """Create / update / undo / redo over HTTP."""

    @pytest.fixture
    def client(self):
        return make_client()

    @pytest.fixture
    def workspace_id(self, client):
        response = client.post(
            "/v1/workspaces",
            json={"name": "Test", "data": {"name": "Original"}},
            headers=ALICE,
        )
        assert response.status_code == 201
        return response.json()["id"]

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_get_created_workspace(self, client, workspace_id):
        response = client.get(f"/v1/workspaces/{workspace_id}", headers=ALICE)

        assert response.status_code == 200
        body = response.json()
        assert body["current_data"] == {"name": "Original"}
        assert body["version"] == 1
        assert body["event_version"] == 0
        assert body["can_undo"] is False
        assert body["can_redo"] is False

    def test_update_undo_redo(self, client, workspace_id):
        response = client.put(
            f"/v1/workspaces/{workspace_id}",
            json={"data": {"name": "Updated"}, "expected_version": 1},
            headers=ALICE,
        )
        assert response.json() == {"success": True, "version": 2, "event_version": 1}

        response = client.post(f"/v1/workspaces/{workspace_id}/undo", headers=ALICE)
        body = response.json()
        assert body["success"] is True
        assert body["data"] == {"name": "Original"}
        assert (body["previous_version"], body["current_version"], body["version"]) == (1, 0, 3)

        response = client.post(f"/v1/workspaces/{workspace_id}/redo", headers=ALICE)
        body = response.json()
        assert body["data"] == {"name": "Updated"}
        assert (body["previous_version"], body["current_version"], body["version"]) == (0, 1, 4)

        workspace = client.get(f"/v1/workspaces/{workspace_id}", headers=ALICE).json()
        assert workspace["current_data"] == {"name": "Updated"}
        assert workspace["version"] == 4

    def test_noop_update(self, client, workspace_id):
        response = client.put(
            f"/v1/workspaces/{workspace_id}",
            json={"data": {"name": "Original"}, "expected_version": 1},
            headers=ALICE,
        )
        assert response.status_code == 200
        assert response.json()["no_changes"] is True

    def test_nothing_to_undo_is_200(self, client, workspace_id):
        response = client.post(f"/v1/workspaces/{workspace_id}/undo", headers=ALICE)

        assert response.status_code == 200
        assert response.json() == {"success": False, "message": "Nothing to undo"}

    def test_record_event_and_history(self, client, workspace_id):
        response = client.post(
            f"/v1/workspaces/{workspace_id}/events",
            json={"patches": [{"op": "add", "path": "/color", "value": "red"}]},
            headers=ALICE,
        )
        assert response.status_code == 200
        assert response.json()["event_version"] == 1

        events = client.get(f"/v1/workspaces/{workspace_id}/history", headers=ALICE).json()["events"]
        assert len(events) == 1
        assert events[0]["kind"] == "patch"
        assert events[0]["user_id"] == "alice"
        assert events[0]["patches"] == [{"op": "add", "path": "/color", "value": "red"}]

    def test_historical_version(self, client, workspace_id):
        client.put(
            f"/v1/workspaces/{workspace_id}",
            json={"data": {"name": "Updated"}, "expected_version": 1},
            headers=ALICE,
        )

        response = client.get(f"/v1/workspaces/{workspace_id}/versions/0", headers=ALICE)
        assert response.json() == {"event_version": 0, "data": {"name": "Original"}}

        response = client.get(f"/v1/workspaces/{workspace_id}/versions/5", headers=ALICE)
        assert response.status_code == 422
        assert response.json()["error_code"] == "INVALID_VERSION"

    def test_list_is_owner_scoped(self, client, workspace_id):
        client.post("/v1/workspaces", json={"name": "Bob's", "data": {}}, headers=BOB)

        alice = client.get("/v1/workspaces", headers=ALICE).json()["workspaces"]
        assert [w["id"] for w in alice] == [workspace_id]

        anonymous = client.get("/v1/workspaces").json()["workspaces"]
        assert anonymous == []


class TestErrorResponses:
    """Engine errors mapped to HTTP status codes."""

    @pytest.fixture
    def client(self):
        return make_client()

    @pytest.fixture
    def workspace_id(self, client):
        response = client.post("/v1/workspaces", json={"name": "Test", "data": {"a": 1}}, headers=ALICE)
        return response.json()["id"]

    def test_create_without_identity_is_401(self, client):
        response = client.post("/v1/workspaces", json={"name": "Test", "data": {}})

        assert response.status_code == 401
        assert response.json()["error_code"] == "UNAUTHENTICATED"

    def test_unknown_token_is_401(self, client, workspace_id):
        response = client.post(
            f"/v1/workspaces/{workspace_id}/undo",
            headers={"Authorization": "Bearer nope"},
        )
        assert response.status_code == 401

    def test_foreign_write_is_403(self, client, workspace_id):
        response = client.put(
            f"/v1/workspaces/{workspace_id}",
            json={"data": {"a": 2}, "expected_version": 1},
            headers=BOB,
        )

        assert response.status_code == 403
        body = response.json()
        assert body["error_code"] == "ACCESS_DENIED"
        assert "alice" not in response.text

    def test_foreign_read_is_404(self, client, workspace_id):
        """A foreign workspace is indistinguishable from a missing one on GET."""
        foreign = client.get(f"/v1/workspaces/{workspace_id}", headers=BOB)
        missing = client.get("/v1/workspaces/nope", headers=BOB)

        assert foreign.status_code == missing.status_code == 404
        assert foreign.json()["error_code"] == "NOT_FOUND"

    def test_missing_workspace_write_is_404(self, client):
        response = client.post("/v1/workspaces/nope/redo", headers=ALICE)
        assert response.status_code == 404

    def test_stale_version_is_409(self, client, workspace_id):
        client.put(
            f"/v1/workspaces/{workspace_id}",
            json={"data": {"a": 2}, "expected_version": 1},
            headers=ALICE,
        )

        response = client.put(
            f"/v1/workspaces/{workspace_id}",
            json={"data": {"a": 3}, "expected_version": 1},
            headers=ALICE,
        )

        assert response.status_code == 409
        body = response.json()
        assert body["error_code"] == "VERSION_CONFLICT"
        assert body["details"]["actual_version"] == 2

    def test_unappliable_patch_is_500(self, client, workspace_id):
        response = client.post(
            f"/v1/workspaces/{workspace_id}/events",
            json={"patches": [{"op": "remove", "path": "/missing"}]},
            headers=ALICE,
        )

        assert response.status_code == 500
        assert response.json()["error_code"] == "PATCH_APPLY"

    @pytest.mark.parametrize(
        "body",
        [
            {"data": {"a": 2}},
            {"data": {"a": 2}, "expected_version": 0},
            {"data": {"a": 2}, "expected_version": "two"},
        ],
    )
    def test_invalid_update_body_is_422(self, client, workspace_id, body):
        response = client.put(f"/v1/workspaces/{workspace_id}", json=body, headers=ALICE)

        assert response.status_code == 422
        assert response.json()["error_code"] == "INVALID_REQUEST"

    def test_anonymous_writes_hold_no_locks(self):
        engine = VersionEngine(InMemoryWorkspaceStore())
        config = ServerConfig(store_backend=StoreBackend.MEMORY, auth=AuthConfig(tokens={}))
        client = TestClient(create_app(config, engine=engine))

        for i in range(100):
            response = client.put(
                f"/v1/workspaces/bogus-{i}",
                json={"data": {}, "expected_version": 1},
            )
            assert response.status_code == 401

        assert engine._locks == {}

    def test_empty_name_is_422(self, client):
        response = client.post("/v1/workspaces", json={"name": "", "data": {}}, headers=ALICE)
        assert response.status_code == 422


class TestActorHeader:
    """X-Actor identity."""

    def test_ignored_unless_trusted(self):
        client = make_client(trust_actor_header=False)

        response = client.post(
            "/v1/workspaces",
            json={"name": "Test", "data": {}},
            headers={"X-Actor": "carol"},
        )
        assert response.status_code == 401

    def test_trusted_header(self):
        client = make_client(trust_actor_header=True)

        response = client.post(
            "/v1/workspaces",
            json={"name": "Test", "data": {}},
            headers={"X-Actor": "carol"},
        )
        assert response.status_code == 201
        ws_id = response.json()["id"]

        workspace = client.get(f"/v1/workspaces/{ws_id}", headers={"X-Actor": "carol"}).json()
        assert workspace["owner_id"] == "carol"

    def test_bearer_token_wins_over_header(self):
        client = make_client(trust_actor_header=True)

        response = client.post(
            "/v1/workspaces",
            json={"name": "Test", "data": {}},
            headers={**ALICE, "X-Actor": "carol"},
        )
        ws_id = response.json()["id"]

        assert client.get(f"/v1/workspaces/{ws_id}", headers=ALICE).status_code == 200
        assert client.get(f"/v1/workspaces/{ws_id}", headers={"X-Actor": "carol"}).status_code == 404
