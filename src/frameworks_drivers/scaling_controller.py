from __future__ import annotations

import asyncio
import uuid
from typing import Optional

from pydantic import ValidationError

from src.entities.fleet_status import ScaleResult
from src.entities.instance_spec import InstanceSpec
from src.entities.server_instance import Capacity, ServerInstance
from src.frameworks_drivers.config import FleetPolicy, InstanceTemplateConfig
from src.frameworks_drivers.fleet_registry import FleetRegistry
from src.shared.errors import FleetError, InvalidStateError, PanelError, ProvisioningError
from src.shared.logger import Logger
from src.shared.protocols import PanelClientProtocol

logger = Logger.get(__name__)

STARTABLE_STATES = ("stopped", "unknown")
STOPPABLE_STATES = ("starting", "running", "unknown")
MAX_PORT = 65535


class ScalingController:
    """
    Keeps the fleet between its idle floor and size ceiling and executes
    provisioning and power actions against the panel.

    The fleet lock guards registry access only; it is released before any
    panel call. In-flight provisioning reserves its port (and with it a fleet
    slot) so concurrent callers cannot push the fleet past its ceiling.
    """

    def __init__(
        self,
        registry: FleetRegistry,
        panel: PanelClientProtocol,
        policy: FleetPolicy,
        template: Optional[InstanceTemplateConfig] = None,
        lock: Optional[asyncio.Lock] = None,
    ):
        self.registry = registry
        self.panel = panel
        self.policy = policy
        self.template = template or InstanceTemplateConfig()
        self.lock = lock or asyncio.Lock()
        self._pending_ports: set[int] = set()

    @property
    def total_instances(self) -> int:
        """Registered instances plus provisioning calls still in flight."""
        return len(self.registry) + len(self._pending_ports)

    def at_capacity(self) -> bool:
        return self.total_instances >= self.policy.max_total_instances

    def _next_port(self) -> int:
        used = self.registry.ports_in_use() | self._pending_ports
        port = self.policy.start_port
        while port in used:
            port += 1
        if port > MAX_PORT:
            raise ProvisioningError(f"No free port left above {self.policy.start_port}")
        return port

    def _idle_count(self) -> int:
        # starting instances and in-flight provisioning count as idle capacity on its way
        idle = sum(
            1 for instance in self.registry.list_all()
            if instance.status in ("running", "starting") and instance.capacity.current == 0
        )
        return idle + len(self._pending_ports)

    async def provision_one(self) -> ServerInstance:
        """
        Create and start one new instance on the panel and register it as starting.

        Raises:
            ProvisioningError: If the fleet is at its ceiling or the panel rejects the request.
        """
        async with self.lock:
            if self.at_capacity():
                raise ProvisioningError(f"Fleet is at its maximum of {self.policy.max_total_instances} instances")
            port = self._next_port()
            self._pending_ports.add(port)

        local_id = uuid.uuid4().hex
        name = f"{self.policy.name_prefix}{local_id[:12]}"
        instance = None
        try:
            allocation = await self.panel.ensure_allocation(port)
            spec = InstanceSpec.from_template(self.template, name, allocation, self.policy, local_id)
            created = await self.panel.create_instance(spec)
            if not spec.start_on_completion:
                await self.panel.power_action(created.instance_id, "start")
            instance = ServerInstance(
                instance_id=created.instance_id,
                local_id=local_id,
                panel_id=created.panel_id,
                display_name=name,
                status="starting",
                capacity=Capacity(current=0, max=self.policy.max_players_per_instance),
                port=allocation.port,
                address=allocation.public_address,
            )
        except PanelError as e:
            logger.error(f"Failed to provision instance {name} on port {port}: {e}")
            raise ProvisioningError(f"Failed to provision instance {name}: {e.message}", status_code=e.status_code) from e
        except ValidationError as e:
            logger.error(f"Invalid instance specification for {name}: {e}")
            raise ProvisioningError(f"Invalid instance specification for {name}: {e}") from e
        finally:
            async with self.lock:
                self._pending_ports.discard(port)
                if instance is not None:
                    self.registry.upsert(instance)

        logger.info(f"Provisioned instance {name} ({instance.instance_id}) on {instance.address}:{instance.port}")
        return instance

    async def ensure_minimum_idle(self) -> int:
        """
        Top the fleet up to the idle floor without exceeding the ceiling.

        Provisioning stops at the first failure, which is logged rather than
        raised. Returns the number of instances provisioned.
        """
        async with self.lock:
            missing_idle = self.policy.min_idle_instances - self._idle_count()
            free_slots = self.policy.max_total_instances - self.total_instances
            needed = min(missing_idle, free_slots)

        if needed <= 0:
            return 0

        logger.info(f"Provisioning {needed} instance(s) to keep {self.policy.min_idle_instances} idle")
        created = 0
        for _ in range(needed):
            try:
                await self.provision_one()
            except ProvisioningError as e:
                logger.error(f"Idle top-up stopped after {created} instance(s): {e}")
                break
            created += 1
        return created

    async def scale_to(self, target_count: int) -> ScaleResult:
        """
        Grow or shrink the number of active (not stopping/stopped) instances.

        Scaling up restarts stopped instances before provisioning new ones.
        Scaling down stops idle instances first and the least occupied ones
        after that. Individual failures are logged and skipped.
        """
        if target_count < 0 or target_count > self.policy.max_total_instances:
            raise InvalidStateError(
                f"Target count {target_count} must be between 0 and {self.policy.max_total_instances}"
            )

        async with self.lock:
            instances = self.registry.list_all()
        active = [instance for instance in instances if instance.is_active]
        previous_count = len(active)
        logger.info(f"Scaling fleet from {previous_count} to {target_count} active instance(s)")

        if target_count > previous_count:
            needed = target_count - previous_count
            stopped = [instance for instance in instances if instance.status == "stopped"]
            for instance in stopped[:needed]:
                try:
                    await self.start_instance(instance.instance_id)
                    needed -= 1
                except FleetError as e:
                    logger.error(f"Failed to restart {instance.display_name} while scaling up: {e}")
            for i in range(needed):
                try:
                    await self.provision_one()
                except ProvisioningError as e:
                    logger.error(f"Scale-up stopped after {i} of {needed} new instance(s): {e}")
                    break
            action = "scaled_up"
        elif target_count < previous_count:
            # stable sort keeps idle instances ahead of occupied ones
            victims = sorted(active, key=lambda instance: instance.capacity.current)[:previous_count - target_count]
            for instance in victims:
                if instance.capacity.current > 0:
                    logger.warning(
                        f"Not enough idle instances, stopping {instance.display_name} with {instance.capacity.current} player(s)"
                    )
                try:
                    await self.stop_instance(instance.instance_id)
                except FleetError as e:
                    logger.error(f"Failed to stop {instance.display_name} while scaling down: {e}")
            action = "scaled_down"
        else:
            logger.info(f"Fleet already at target count {target_count}")
            action = "no_change"

        return ScaleResult(target_count=target_count, previous_count=previous_count, action=action)

    async def start_instance(self, instance_id: str) -> ServerInstance:
        """Send a start signal; the registry status is rolled back if the panel call fails."""
        async with self.lock:
            instance = self.registry.require(instance_id)
            if instance.status not in STARTABLE_STATES:
                raise InvalidStateError(f"Instance {instance_id} cannot be started while {instance.status}")
            previous_status = instance.status
            self.registry.set_status(instance_id, "starting")

        try:
            await self.panel.power_action(instance_id, "start")
        except PanelError:
            async with self.lock:
                if instance_id in self.registry:
                    self.registry.set_status(instance_id, previous_status)
            raise

        logger.info(f"Instance {instance.display_name} is starting")
        async with self.lock:
            return self.registry.require(instance_id)

    async def stop_instance(self, instance_id: str) -> ServerInstance:
        """Send a stop signal; the registry status is rolled back if the panel call fails."""
        async with self.lock:
            instance = self.registry.require(instance_id)
            if instance.status not in STOPPABLE_STATES:
                raise InvalidStateError(f"Instance {instance_id} cannot be stopped while {instance.status}")
            previous_status = instance.status
            self.registry.set_status(instance_id, "stopping")

        try:
            await self.panel.power_action(instance_id, "stop")
        except PanelError:
            async with self.lock:
                if instance_id in self.registry:
                    self.registry.set_status(instance_id, previous_status)
            raise

        logger.info(f"Instance {instance.display_name} is stopping")
        async with self.lock:
            return self.registry.require(instance_id)
