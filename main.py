import os
import uvicorn

from src.frameworks_drivers.config import Config
from src.frameworks_drivers.fleet_manager import FleetManager
from src.frameworks_drivers.fleet_reconciler import FleetReconciler
from src.frameworks_drivers.panel_client import PterodactylPanelClient
from src.interface_adapters.api import API
from src.interface_adapters.fleet_controller import FleetController
from src.interface_adapters.health_controller import HealthController
from src.shared.logger import Logger
from src.use_cases.get_health import GetHealth
from src.use_cases.join_game_server import JoinGameServer

if __name__ == "__main__":
    logger = Logger.get(__name__)

    try:
        # Panel keys from the environment take precedence over the config file
        panel_overrides = {}
        if "PANEL_APPLICATION_API_KEY" in os.environ:
            panel_overrides["application_api_key"] = os.environ["PANEL_APPLICATION_API_KEY"]
        if "PANEL_CLIENT_API_KEY" in os.environ:
            panel_overrides["client_api_key"] = os.environ["PANEL_CLIENT_API_KEY"]

        config = Config.load(os.environ.get("FLEET_CONFIG", "config.json"), {"panel": panel_overrides})

        # Instantiate dependencies
        panel_client = PterodactylPanelClient(config.panel)
        fleet_manager = FleetManager.from_config(config, panel_client)
        reconciler = FleetReconciler(fleet_manager, interval=config.reconcile.interval)

        # Instantiate use cases
        join_game_server = JoinGameServer(fleet_manager)
        get_health = GetHealth(fleet_manager)

        # Instantiate controllers
        fleet_controller = FleetController(fleet_manager, join_game_server)
        health_controller = HealthController(get_health)

        # Instantiate API
        api = API(fleet_controller, health_controller, reconciler)

        logger.info(f"Starting game server fleet manager with policy {config.fleet.model_dump()}")
        uvicorn.run(api.app, host=config.server.host, port=config.server.port)
    except Exception as e:
        logger.error(f"Failed to start server: {e}")
        raise
