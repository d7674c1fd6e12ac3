from typing import Optional

from src.frameworks_drivers.fleet_manager import FleetManager
from src.shared.protocols import JoinResultDTO


class JoinGameServer:
    """Admits a player to the fleet and shapes the connection info for the client."""

    def __init__(self, fleet_manager: FleetManager):
        self.fleet_manager = fleet_manager

    async def execute(self, player_id: str, preferred_instance_id: Optional[str] = None) -> JoinResultDTO:
        assignment = await self.fleet_manager.join(player_id.strip(), preferred_instance_id or None)
        return JoinResultDTO(
            instance_id=assignment.instance_id,
            address=assignment.address,
            port=assignment.port,
            queue_position=assignment.queue_position,
            estimated_wait_time=assignment.estimated_wait_time,
        )
