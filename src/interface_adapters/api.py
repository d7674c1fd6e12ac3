from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from src.frameworks_drivers.fleet_reconciler import FleetReconciler
from src.interface_adapters.fleet_controller import (
    FleetController,
    HeartbeatRequest,
    JoinRequest,
    LeaveRequest,
    PlayerEventRequest,
    ScaleRequest,
)
from src.interface_adapters.health_controller import HealthController


class API:
    def __init__(
        self,
        fleet_controller: FleetController,
        health_controller: HealthController,
        reconciler: Optional[FleetReconciler] = None,
    ):
        self.fleet_controller = fleet_controller
        self.health_controller = health_controller
        self.reconciler = reconciler
        self.app = FastAPI(title="Game Server Fleet Manager", version="0.1.0", lifespan=self._lifespan)

        self._register_routes()

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        if self.reconciler:
            await self.reconciler.start()
        yield
        if self.reconciler:
            await self.reconciler.stop()

    def _register_routes(self):
        fleet = self.fleet_controller

        async def health_handler():
            return await self.health_controller.health()

        async def list_handler():
            return await fleet.list_instances()

        async def status_handler():
            return await fleet.status()

        async def get_handler(instance_id: str):
            return await fleet.get_instance(instance_id)

        async def join_handler(request: JoinRequest):
            return await fleet.join(request)

        async def leave_handler(request: LeaveRequest):
            return await fleet.leave(request)

        async def create_handler():
            return await fleet.create_instance()

        async def scale_handler(request: ScaleRequest):
            return await fleet.scale(request)

        async def start_handler(instance_id: str):
            return await fleet.start_instance(instance_id)

        async def stop_handler(instance_id: str):
            return await fleet.stop_instance(instance_id)

        async def delete_handler(instance_id: str):
            return await fleet.delete_instance(instance_id)

        async def heartbeat_handler(request: HeartbeatRequest):
            return await fleet.heartbeat(request)

        async def player_event_handler(request: PlayerEventRequest):
            return await fleet.player_event(request)

        self.app.get("/health")(health_handler)
        self.app.get("/gameservers")(list_handler)
        # registered before /gameservers/{instance_id} so "status" is not taken for an id
        self.app.get("/gameservers/status")(status_handler)
        self.app.get("/gameservers/{instance_id}")(get_handler)
        self.app.post("/gameservers/join")(join_handler)
        self.app.post("/gameservers/leave")(leave_handler)
        self.app.post("/gameservers/scale")(scale_handler)
        self.app.post("/gameservers")(create_handler)
        self.app.post("/gameservers/{instance_id}/start")(start_handler)
        self.app.post("/gameservers/{instance_id}/stop")(stop_handler)
        self.app.delete("/gameservers/{instance_id}")(delete_handler)
        self.app.post("/internal/gameservers/heartbeat")(heartbeat_handler)
        self.app.post("/internal/gameservers/player-event")(player_event_handler)
