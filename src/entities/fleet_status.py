from typing import Literal, Optional

from pydantic import BaseModel

from .server_instance import InstanceStatus, ServerInstance


class FleetStatus(BaseModel):
    """Aggregate counts over the fleet registry."""
    total_instances: int  # Every instance known to the registry
    running_instances: int  # Instances in the running state
    idle_instances: int  # Running instances with no connected players
    queued_players: int = 0  # Players holding a queue entry


class ScaleResult(BaseModel):
    target_count: int
    previous_count: int
    action: Literal["scaled_up", "scaled_down", "no_change"]


class InstanceSummary(BaseModel):
    """Read-only projection of a ServerInstance for display."""
    id: str
    name: str
    status: InstanceStatus
    player_count: int
    max_players: int
    port: int
    address: Optional[str] = None
    last_update: float

    @classmethod
    def from_instance(cls, instance: ServerInstance, default_address: Optional[str] = None) -> "InstanceSummary":
        return cls(
            id=instance.instance_id,
            name=instance.display_name,
            status=instance.status,
            player_count=instance.capacity.current,
            max_players=instance.capacity.max,
            port=instance.port,
            address=instance.address or default_address,
            last_update=instance.last_update,
        )
