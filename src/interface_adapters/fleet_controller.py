from contextlib import contextmanager
from typing import Iterator, Literal, Optional

from fastapi import HTTPException
from pydantic import BaseModel, Field, field_validator

from src.entities.server_instance import InstanceStatus
from src.frameworks_drivers.fleet_manager import FleetManager
from src.shared.error_utils import ErrorUtils
from src.shared.errors import (
    CapacityExceededError,
    FleetError,
    InstanceNotFoundError,
    InvalidStateError,
    PanelError,
    ProvisioningError,
)
from src.shared.logger import Logger
from src.use_cases.join_game_server import JoinGameServer

logger = Logger.get(__name__)

# checked in order, the first matching class wins
ERROR_STATUS: list[tuple[type[FleetError], int, str]] = [
    (InstanceNotFoundError, 404, "not_found"),
    (CapacityExceededError, 503, "capacity_exceeded"),
    (ProvisioningError, 502, "provisioning_error"),
    (PanelError, 502, "panel_error"),
    (InvalidStateError, 409, "invalid_state"),
]


def _clean_player_id(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("player_id must not be blank")
    return v


class JoinRequest(BaseModel):
    player_id: str = Field(min_length=1)
    preferred_instance_id: Optional[str] = None

    @field_validator("player_id")
    @classmethod
    def check_player_id(cls, v):
        return _clean_player_id(v)


class LeaveRequest(BaseModel):
    player_id: str = Field(min_length=1)

    @field_validator("player_id")
    @classmethod
    def check_player_id(cls, v):
        return _clean_player_id(v)


class ScaleRequest(BaseModel):
    target_count: int = Field(ge=0)


class HeartbeatRequest(BaseModel):
    instance_id: str = Field(min_length=1)
    current_players: int = Field(ge=0)
    status: Optional[InstanceStatus] = None


class PlayerEventRequest(BaseModel):
    instance_id: str = Field(min_length=1)
    player_id: str = Field(min_length=1)
    action: Literal["join", "leave"]

    @field_validator("player_id")
    @classmethod
    def check_player_id(cls, v):
        return _clean_player_id(v)


class FleetController:
    def __init__(self, fleet_manager: FleetManager, join_game_server: Optional[JoinGameServer] = None):
        self.fleet_manager = fleet_manager
        self.join_game_server = join_game_server or JoinGameServer(fleet_manager)

    @contextmanager
    def _translate_errors(self, action: str) -> Iterator[None]:
        """Turn fleet errors into HTTP errors carrying a uniform error body."""
        try:
            yield
        except FleetError as e:
            for error_class, status_code, error_type in ERROR_STATUS:
                if isinstance(e, error_class):
                    break
            else:
                status_code, error_type = 500, "internal_error"
            logger.error(f"Failed to {action}: {e}")
            panel_status = getattr(e, "status_code", None)
            raise HTTPException(
                status_code=status_code,
                detail=ErrorUtils.format_error_response(str(e), error_type, panel_status),
            ) from e

    async def list_instances(self) -> dict:
        servers = await self.fleet_manager.list_instances()
        return {
            "servers": [server.model_dump() for server in servers],
            "total_servers": len(servers),
            "available_slots": sum(
                server.max_players - server.player_count for server in servers if server.status == "running"
            ),
        }

    async def get_instance(self, instance_id: str) -> dict:
        with self._translate_errors(f"get instance {instance_id}"):
            return (await self.fleet_manager.get_instance(instance_id)).model_dump()

    async def status(self) -> dict:
        return (await self.fleet_manager.status()).model_dump()

    async def join(self, request: JoinRequest) -> dict:
        with self._translate_errors(f"join player {request.player_id}"):
            return dict(await self.join_game_server.execute(request.player_id, request.preferred_instance_id))

    async def leave(self, request: LeaveRequest) -> dict:
        await self.fleet_manager.leave(request.player_id)
        return {"status": "success", "message": "Left game server"}

    async def create_instance(self) -> dict:
        with self._translate_errors("create instance"):
            return (await self.fleet_manager.create_instance()).model_dump()

    async def start_instance(self, instance_id: str) -> dict:
        with self._translate_errors(f"start instance {instance_id}"):
            return (await self.fleet_manager.start_instance(instance_id)).model_dump()

    async def stop_instance(self, instance_id: str) -> dict:
        with self._translate_errors(f"stop instance {instance_id}"):
            return (await self.fleet_manager.stop_instance(instance_id)).model_dump()

    async def delete_instance(self, instance_id: str) -> dict:
        with self._translate_errors(f"delete instance {instance_id}"):
            await self.fleet_manager.delete_instance(instance_id)
        return {"status": "success", "message": f"Instance {instance_id} deleted"}

    async def scale(self, request: ScaleRequest) -> dict:
        with self._translate_errors(f"scale fleet to {request.target_count}"):
            return (await self.fleet_manager.scale_to(request.target_count)).model_dump()

    async def heartbeat(self, request: HeartbeatRequest) -> dict:
        with self._translate_errors(f"record heartbeat of {request.instance_id}"):
            return (await self.fleet_manager.record_heartbeat(
                request.instance_id, request.current_players, request.status,
            )).model_dump()

    async def player_event(self, request: PlayerEventRequest) -> dict:
        with self._translate_errors(f"process player event from {request.instance_id}"):
            await self.fleet_manager.get_instance(request.instance_id)
        if request.action == "leave":
            await self.fleet_manager.player_disconnected(request.player_id)
        logger.info(f"Player {request.player_id} {request.action} event from instance {request.instance_id}")
        return {"status": "success", "message": "Player event processed"}
