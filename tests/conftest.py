"""
Test configuration and fixtures for the game server fleet manager tests.
"""
import itertools
import json
import shutil
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from src.entities.panel_instance import Allocation, PanelInstance
from src.entities.server_instance import Capacity, ServerInstance
from src.frameworks_drivers.config import Config, FleetPolicy, ReconcileConfig
from src.frameworks_drivers.fleet_manager import FleetManager
from src.frameworks_drivers.fleet_registry import FleetRegistry


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path)


@pytest.fixture
def sample_config_data():
    """Sample configuration data for testing."""
    return {
        "server": {"host": "127.0.0.1", "port": 3000},
        "panel": {
            "api_url": "https://panel.test/api",
            "application_api_key": "app-key",
            "client_api_key": "client-key",
            "node_id": 2,
        },
        "fleet": {
            "max_players_per_instance": 10,
            "min_idle_instances": 1,
            "max_total_instances": 5,
            "start_port": 7001,
            "name_prefix": "GameServer-",
            "public_host": "play.test",
        },
        "template": {
            "egg": 20,
            "environment": {"TICK_RATE": "30", "REGION": "EU-West"},
        },
        "reconcile": {"interval": 30, "promotion_timeout": 60},
    }


@pytest.fixture
def config_file(temp_dir, sample_config_data):
    """Create a temporary config file."""
    config_path = temp_dir / "config.json"
    with open(config_path, "w") as f:
        json.dump(sample_config_data, f, indent=2)
    return str(config_path)


@pytest.fixture
def sample_config(sample_config_data):
    """Create a Config instance from sample data."""
    return Config(**sample_config_data)


@pytest.fixture
def fleet_policy():
    return FleetPolicy(
        max_players_per_instance=10,
        min_idle_instances=2,
        max_total_instances=5,
        start_port=7001,
        name_prefix="GameServer-",
        public_host="play.test",
    )


@pytest.fixture
def reconcile_config():
    """Short waits so delete polling finishes quickly in tests."""
    return ReconcileConfig(promotion_timeout=60, delete_timeout=0.2, delete_poll_interval=0.01)


@pytest.fixture
def instance_factory():
    """Build ServerInstance objects with sensible defaults."""
    ports = itertools.count(7001)

    def make(instance_id, current=0, max_players=10, status="running", port=None, **kwargs):
        return ServerInstance(
            instance_id=instance_id,
            panel_id=kwargs.pop("panel_id", None),
            display_name=kwargs.pop("display_name", f"GameServer-{instance_id}"),
            status=status,
            capacity=Capacity(current=current, max=max_players),
            port=port if port is not None else next(ports),
            **kwargs,
        )

    return make


@pytest.fixture
def registry():
    return FleetRegistry()


@pytest.fixture
def mock_panel():
    """Panel client double that hands out sequential instance ids."""
    created = itertools.count(1)

    async def ensure_allocation(port):
        return Allocation(id=1000 + port, ip="10.0.0.5", port=port)

    async def create_instance(spec):
        number = next(created)
        return PanelInstance(
            instance_id=f"uuid-{number}",
            panel_id=number,
            name=spec.name,
            status="starting",
            allocations=[spec.allocation],
        )

    panel = Mock()
    panel.ensure_allocation = AsyncMock(side_effect=ensure_allocation)
    panel.create_instance = AsyncMock(side_effect=create_instance)
    panel.power_action = AsyncMock(return_value=None)
    panel.delete_instance = AsyncMock(return_value=None)
    panel.get_instance_status = AsyncMock(return_value="stopped")
    panel.list_instances = AsyncMock(return_value=[])
    panel.check_connection = AsyncMock(return_value=True)
    return panel


@pytest.fixture
def fleet_manager(mock_panel, fleet_policy, reconcile_config):
    return FleetManager(mock_panel, fleet_policy, reconcile_config=reconcile_config)
