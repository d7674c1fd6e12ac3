"""
Integration tests for the HTTP API with a real fleet manager and a mocked panel.

The panel client is the only mocked seam, so these tests exercise routing,
admission, scaling and error mapping end to end without a panel.
"""

from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient

from src.interface_adapters.api import API
from src.interface_adapters.fleet_controller import FleetController
from src.interface_adapters.health_controller import HealthController
from src.shared.errors import PanelError
from src.use_cases.get_health import GetHealth


class TestAPIIntegration:
    """Integration tests for API endpoints."""

    @pytest.fixture
    def api_instance(self, fleet_manager):
        return API(FleetController(fleet_manager), HealthController(GetHealth(fleet_manager)))

    @pytest.fixture
    def api_client(self, api_instance):
        with TestClient(api_instance.app) as client:
            yield client

    class TestHealthEndpoint:
        """Test /health endpoint."""

        def test_health_endpoint_success(self, api_client, fleet_manager, instance_factory):
            fleet_manager.registry.upsert(instance_factory("A"))

            response = api_client.get("/health")

            assert response.status_code == 200
            data = response.json()
            assert data["status"] == "ok"
            assert data["fleet"]["total_instances"] == 1
            assert data["panel"]["status"] == "connected"

        def test_health_endpoint_degraded(self, api_client, mock_panel):
            mock_panel.check_connection.side_effect = PanelError("Unauthenticated.", status_code=401)

            response = api_client.get("/health")

            assert response.status_code == 200
            assert response.json()["status"] == "degraded"

    class TestGameServerEndpoints:
        """Test /gameservers endpoints."""

        def test_list_and_get(self, api_client, fleet_manager, instance_factory):
            fleet_manager.registry.upsert(instance_factory("A", current=3))

            listing = api_client.get("/gameservers").json()
            assert listing["total_servers"] == 1
            assert listing["available_slots"] == 7
            assert listing["servers"][0]["address"] == "play.test"

            response = api_client.get("/gameservers/A")
            assert response.status_code == 200
            assert response.json()["player_count"] == 3

        def test_get_unknown_instance(self, api_client):
            response = api_client.get("/gameservers/missing")

            assert response.status_code == 404
            assert response.json()["detail"]["error"]["type"] == "not_found"

        def test_status_route_is_not_an_instance_id(self, api_client):
            response = api_client.get("/gameservers/status")

            assert response.status_code == 200
            assert response.json()["total_instances"] == 0

        def test_join_routes_to_least_loaded(self, api_client, fleet_manager, instance_factory):
            fleet_manager.registry.upsert(instance_factory("A", current=9))
            fleet_manager.registry.upsert(instance_factory("B", current=3, address="10.0.0.2"))

            response = api_client.post("/gameservers/join", json={"player_id": "player-1"})

            assert response.status_code == 200
            assert response.json()["instance_id"] == "B"
            assert response.json()["address"] == "10.0.0.2"

        def test_join_provisions_new_instance(self, api_client, mock_panel):
            response = api_client.post("/gameservers/join", json={"player_id": "player-1"})

            assert response.status_code == 200
            data = response.json()
            assert data["instance_id"] == "uuid-1"
            assert data["estimated_wait_time"] == 60
            mock_panel.create_instance.assert_awaited_once()

        def test_join_fleet_full(self, api_client, fleet_manager, instance_factory, mock_panel):
            for i in range(5):
                fleet_manager.registry.upsert(instance_factory(f"i{i}", current=10))

            response = api_client.post("/gameservers/join", json={"player_id": "player-1"})

            assert response.status_code == 503
            assert response.json()["detail"]["error"]["message"] == "All servers are full, retry later"
            mock_panel.create_instance.assert_not_awaited()

        def test_join_requires_player_id(self, api_client):
            response = api_client.post("/gameservers/join", json={"player_id": ""})
            assert response.status_code == 422

        def test_join_rejects_blank_player_id(self, api_client, fleet_manager, instance_factory):
            fleet_manager.registry.upsert(instance_factory("A"))

            response = api_client.post("/gameservers/join", json={"player_id": "   "})

            assert response.status_code == 422
            assert fleet_manager.admission.queue_size() == 0

        def test_leave_rejects_blank_player_id(self, api_client):
            response = api_client.post("/gameservers/leave", json={"player_id": "  "})
            assert response.status_code == 422

        def test_leave_is_idempotent(self, api_client, fleet_manager, instance_factory):
            fleet_manager.registry.upsert(instance_factory("A"))
            api_client.post("/gameservers/join", json={"player_id": "player-1"})

            first = api_client.post("/gameservers/leave", json={"player_id": "player-1"})
            second = api_client.post("/gameservers/leave", json={"player_id": "player-1"})

            assert first.status_code == second.status_code == 200
            assert api_client.get("/gameservers/status").json()["queued_players"] == 0

        def test_create_start_stop_delete(self, api_client, mock_panel):
            created = api_client.post("/gameservers")
            assert created.status_code == 200
            instance_id = created.json()["id"]

            stopped = api_client.post(f"/gameservers/{instance_id}/stop")
            assert stopped.json()["status"] == "stopping"

            deleted = api_client.delete(f"/gameservers/{instance_id}")
            assert deleted.status_code == 200
            mock_panel.delete_instance.assert_awaited_once_with(1)
            assert api_client.get(f"/gameservers/{instance_id}").status_code == 404

        def test_start_running_instance_conflict(self, api_client, fleet_manager, instance_factory):
            fleet_manager.registry.upsert(instance_factory("A"))

            response = api_client.post("/gameservers/A/start")

            assert response.status_code == 409
            assert response.json()["detail"]["error"]["type"] == "invalid_state"

        def test_scale(self, api_client, mock_panel):
            response = api_client.post("/gameservers/scale", json={"target_count": 2})

            assert response.status_code == 200
            assert response.json() == {"target_count": 2, "previous_count": 0, "action": "scaled_up"}
            assert mock_panel.create_instance.await_count == 2

        def test_scale_rejects_negative_target(self, api_client):
            response = api_client.post("/gameservers/scale", json={"target_count": -1})
            assert response.status_code == 422

    class TestInternalEndpoints:
        """Test endpoints called by the game server processes."""

        def test_heartbeat(self, api_client, fleet_manager, instance_factory):
            fleet_manager.registry.upsert(instance_factory("A", status="starting"))

            response = api_client.post(
                "/internal/gameservers/heartbeat", json={"instance_id": "A", "current_players": 5},
            )

            assert response.status_code == 200
            assert response.json()["status"] == "running"
            assert fleet_manager.registry.get("A").capacity.current == 5

        def test_heartbeat_over_capacity(self, api_client, fleet_manager, instance_factory):
            fleet_manager.registry.upsert(instance_factory("A"))

            response = api_client.post(
                "/internal/gameservers/heartbeat", json={"instance_id": "A", "current_players": 50},
            )

            assert response.status_code == 409

        def test_player_event_leave(self, api_client, fleet_manager, instance_factory):
            fleet_manager.registry.upsert(instance_factory("A"))
            api_client.post("/gameservers/join", json={"player_id": "player-1"})

            response = api_client.post(
                "/internal/gameservers/player-event",
                json={"instance_id": "A", "player_id": "player-1", "action": "leave"},
            )

            assert response.status_code == 200
            assert fleet_manager.admission.get_entry("player-1") is None

        def test_player_event_unknown_instance(self, api_client):
            response = api_client.post(
                "/internal/gameservers/player-event",
                json={"instance_id": "missing", "player_id": "player-1", "action": "join"},
            )

            assert response.status_code == 404
            assert response.json()["detail"]["error"]["type"] == "not_found"

        def test_player_event_rejects_unknown_action(self, api_client):
            response = api_client.post(
                "/internal/gameservers/player-event",
                json={"instance_id": "A", "player_id": "player-1", "action": "teleport"},
            )
            assert response.status_code == 422


class TestLifespan:
    def test_reconciler_started_and_stopped(self, fleet_manager):
        reconciler = Mock()
        reconciler.start = AsyncMock()
        reconciler.stop = AsyncMock()
        api_instance = API(
            FleetController(fleet_manager), HealthController(GetHealth(fleet_manager)), reconciler,
        )

        with TestClient(api_instance.app) as client:
            reconciler.start.assert_awaited_once()
            assert client.get("/gameservers/status").status_code == 200

        reconciler.stop.assert_awaited_once()
