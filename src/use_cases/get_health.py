from typing import Any

from src.frameworks_drivers.fleet_manager import FleetManager


class GetHealth:
    def __init__(self, fleet_manager: FleetManager):
        self.fleet_manager = fleet_manager

    async def execute(self) -> dict[str, Any]:
        fleet_status = await self.fleet_manager.status()
        panel = await self.fleet_manager.check_panel_connection()

        # The fleet keeps serving from its last known state while the panel is down
        status = "ok" if panel["status"] == "connected" else "degraded"
        return {
            "status": status,
            "fleet": fleet_status.model_dump(),
            "panel": panel,
            "policy": {
                "max_players_per_instance": self.fleet_manager.policy.max_players_per_instance,
                "min_idle_instances": self.fleet_manager.policy.min_idle_instances,
                "max_total_instances": self.fleet_manager.policy.max_total_instances,
            },
        }
