from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

from src.entities.fleet_status import FleetStatus, InstanceSummary, ScaleResult
from src.entities.panel_instance import PanelInstance
from src.entities.queue_entry import Assignment
from src.entities.server_instance import Capacity, InstanceStatus, ServerInstance
from src.frameworks_drivers.admission_controller import AdmissionController
from src.frameworks_drivers.config import Config, FleetPolicy, InstanceTemplateConfig, ReconcileConfig
from src.frameworks_drivers.fleet_registry import FleetRegistry
from src.frameworks_drivers.scaling_controller import STOPPABLE_STATES, ScalingController
from src.shared.errors import InvalidStateError, PanelError
from src.shared.health_checker import HealthChecker
from src.shared.logger import Logger
from src.shared.protocols import PanelClientProtocol

logger = Logger.get(__name__)

# (local, panel) pairs where the local state is already ahead of what the panel reports
_LOCAL_STATE_AHEAD = {
    ("stopping", "running"),
    ("running", "starting"),  # promoted before the panel caught up
}


class FleetManager:
    """
    Facade over the fleet: the only object the HTTP layer talks to.

    Composes the registry, admission and scaling controllers around one shared
    fleet lock and reconciles the registry against the panel.
    """

    def __init__(
        self,
        panel: PanelClientProtocol,
        policy: FleetPolicy,
        template: Optional[InstanceTemplateConfig] = None,
        reconcile_config: Optional[ReconcileConfig] = None,
        registry: Optional[FleetRegistry] = None,
    ):
        self.panel = panel
        self.policy = policy
        self.reconcile_config = reconcile_config or ReconcileConfig()
        self.lock = asyncio.Lock()
        self.registry = registry or FleetRegistry()
        self.scaling = ScalingController(self.registry, panel, policy, template, self.lock)
        self.admission = AdmissionController(
            self.registry, self.scaling, policy, self.lock,
            provisioning_wait=self.reconcile_config.promotion_timeout,
        )
        self._reconcile_lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: Config, panel: PanelClientProtocol) -> "FleetManager":
        return cls(panel, config.fleet, config.template, config.reconcile)

    def _summary(self, instance: ServerInstance) -> InstanceSummary:
        return InstanceSummary.from_instance(instance, self.policy.public_host)

    # Admission

    async def join(self, player_id: str, preferred_instance_id: Optional[str] = None) -> Assignment:
        return await self.admission.join(player_id, preferred_instance_id)

    async def leave(self, player_id: str) -> None:
        await self.admission.leave(player_id)

    async def player_disconnected(self, player_id: str) -> None:
        """Server-side disconnect notification from a game process."""
        await self.admission.leave(player_id)

    # Instance lifecycle

    async def create_instance(self) -> InstanceSummary:
        return self._summary(await self.scaling.provision_one())

    async def start_instance(self, instance_id: str) -> InstanceSummary:
        return self._summary(await self.scaling.start_instance(instance_id))

    async def stop_instance(self, instance_id: str) -> InstanceSummary:
        return self._summary(await self.scaling.stop_instance(instance_id))

    async def delete_instance(self, instance_id: str) -> None:
        """
        Stop an instance, wait until the panel reports it stopped, then delete it.

        Raises:
            InstanceNotFoundError: The instance is not registered.
            InvalidStateError: The instance did not stop within the delete timeout.
            PanelError: A panel call failed; the instance stays registered.
        """
        async with self.lock:
            instance = self.registry.require(instance_id)

        if instance.status in STOPPABLE_STATES:
            await self.scaling.stop_instance(instance_id)
        if instance.status != "stopped":
            await self._wait_until_stopped(instance)

        if instance.panel_id is None:
            raise InvalidStateError(f"Instance {instance_id} has no panel id and cannot be deleted")
        await self.panel.delete_instance(instance.panel_id)

        async with self.lock:
            self.registry.remove(instance_id)
            released = self.admission.release_instance(instance_id)
        logger.info(f"Deleted instance {instance.display_name}, released {released} queued player(s)")

    async def _wait_until_stopped(self, instance: ServerInstance) -> None:
        deadline = time.monotonic() + self.reconcile_config.delete_timeout
        while True:
            status = await self.panel.get_instance_status(instance.instance_id)
            if status == "stopped":
                async with self.lock:
                    if instance.instance_id in self.registry:
                        self.registry.set_status(instance.instance_id, "stopped")
                return
            if time.monotonic() >= deadline:
                raise InvalidStateError(
                    f"Instance {instance.instance_id} did not stop within "
                    f"{self.reconcile_config.delete_timeout:.0f}s (panel reports {status})"
                )
            logger.debug(f"Waiting for {instance.display_name} to stop, panel reports {status}")
            await asyncio.sleep(self.reconcile_config.delete_poll_interval)

    async def scale_to(self, target_count: int) -> ScaleResult:
        return await self.scaling.scale_to(target_count)

    async def ensure_minimum_idle(self) -> int:
        return await self.scaling.ensure_minimum_idle()

    async def record_heartbeat(
        self, instance_id: str, current_players: int, status: Optional[InstanceStatus] = None,
    ) -> InstanceSummary:
        """
        Apply a player-count report from a game process.

        A report from a starting or unknown instance proves it is up, so it is
        promoted to running unless the report carries its own status.
        """
        async with self.lock:
            instance = self.registry.update_capacity(instance_id, current_players)
            if status is not None:
                instance = self.registry.set_status(instance_id, status)
            elif instance.status in ("starting", "unknown"):
                instance = self.registry.set_status(instance_id, "running")
        return self._summary(instance)

    # Queries

    async def list_instances(self) -> list[InstanceSummary]:
        async with self.lock:
            return [self._summary(instance) for instance in self.registry.list_all()]

    async def get_instance(self, instance_id: str) -> InstanceSummary:
        async with self.lock:
            return self._summary(self.registry.require(instance_id))

    async def status(self) -> FleetStatus:
        async with self.lock:
            instances = self.registry.list_all()
            running_instances = self.registry.count_by_status("running")
            queued_players = self.admission.queue_size()
        return FleetStatus(
            total_instances=len(instances),
            running_instances=running_instances,
            idle_instances=sum(1 for instance in instances if instance.is_idle),
            queued_players=queued_players,
        )

    async def check_panel_connection(self) -> dict[str, Any]:
        try:
            await self.panel.check_connection()
            return {"status": "connected", "message": "Panel API connection successful"}
        except PanelError as e:
            return {"status": "error", "message": str(e), "panel_status_code": e.status_code}

    # Reconciliation

    def _merge_status(self, local: ServerInstance, remote: InstanceStatus) -> InstanceStatus:
        if remote == "unknown":
            return local.status
        if (local.status, remote) == ("starting", "stopped"):
            # offline while installing, until the promotion timeout says otherwise
            if time.time() - local.last_update < self.reconcile_config.promotion_timeout:
                return local.status
            return remote
        if (local.status, remote) in _LOCAL_STATE_AHEAD:
            return local.status
        return remote

    def _merge(self, remote: PanelInstance) -> None:
        allocation = remote.primary_allocation
        local = self.registry.get(remote.instance_id)
        if local is None:
            self.registry.upsert(ServerInstance(
                instance_id=remote.instance_id,
                local_id=remote.environment.get("FLEET_LOCAL_ID"),
                panel_id=remote.panel_id,
                display_name=remote.name,
                status=remote.status,
                capacity=Capacity(current=0, max=self.policy.max_players_per_instance),
                port=allocation.port if allocation else self.policy.start_port,
                address=allocation.public_address if allocation else None,
            ))
            logger.info(f"Discovered instance {remote.name} ({remote.status})")
            return

        status = self._merge_status(local, remote.status)
        if status != local.status:
            logger.info(f"Instance {remote.name} changed {local.status} -> {status}")
            local.status = status
            local.last_update = time.time()
        local.display_name = remote.name
        local.panel_id = remote.panel_id if remote.panel_id is not None else local.panel_id
        if allocation:
            local.port = allocation.port
            local.address = allocation.public_address
        self.registry.upsert(local)

    async def reconcile(self) -> bool:
        """
        Pull the panel's instance list into the registry.

        Only instances following the fleet naming convention are merged, and
        instances missing from the listing are kept. Starting instances that
        pass the readiness probe, or have been starting longer than the
        promotion timeout, are promoted to running. Returns False if another
        reconciliation was already in progress.

        Raises:
            PanelError: The panel listing failed.
        """
        if self._reconcile_lock.locked():
            logger.debug("Reconciliation already in progress, skipping")
            return False

        async with self._reconcile_lock:
            remote_instances = await self.panel.list_instances()
            owned = [remote for remote in remote_instances if remote.name.startswith(self.policy.name_prefix)]
            async with self.lock:
                for remote in owned:
                    self._merge(remote)
                starting = [instance for instance in self.registry.list_all() if instance.status == "starting"]

            promoted = await self._promote_starting(starting)
            logger.info(
                f"Reconciled {len(owned)} of {len(remote_instances)} panel instance(s), promoted {promoted}"
            )
            return True

    async def _promote_starting(self, candidates: list[ServerInstance]) -> int:
        probe = self.reconcile_config.readiness
        promoted = 0
        for instance in candidates:
            ready = False
            if probe.enabled:
                ready = await HealthChecker.check_instance_ready(
                    instance.address or self.policy.public_host, instance.port,
                    probe.port_offset, probe.path, probe.timeout,
                )
            if not ready and time.time() - instance.last_update >= self.reconcile_config.promotion_timeout:
                logger.warning(
                    f"Instance {instance.display_name} starting for over "
                    f"{self.reconcile_config.promotion_timeout:.0f}s, promoting to running"
                )
                ready = True
            if not ready:
                continue
            async with self.lock:
                current = self.registry.get(instance.instance_id)
                if current is not None and current.status == "starting":
                    self.registry.set_status(instance.instance_id, "running")
                    promoted += 1
        return promoted
