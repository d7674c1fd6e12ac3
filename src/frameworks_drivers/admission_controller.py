from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from src.entities.queue_entry import Assignment, QueueEntry
from src.entities.server_instance import ServerInstance
from src.frameworks_drivers.config import FleetPolicy
from src.frameworks_drivers.fleet_registry import FleetRegistry
from src.frameworks_drivers.scaling_controller import ScalingController
from src.shared.errors import CapacityExceededError
from src.shared.logger import Logger

logger = Logger.get(__name__)


class AdmissionController:
    """
    Routes joining players to an instance and owns the player queue.

    Calls for the same player are serialized with a per-player lock; calls for
    different players only meet on the shared fleet lock, which is never held
    across a provisioning call.
    """

    def __init__(
        self,
        registry: FleetRegistry,
        scaling: ScalingController,
        policy: FleetPolicy,
        lock: Optional[asyncio.Lock] = None,
        provisioning_wait: float = 0.0,
    ):
        self.registry = registry
        self.scaling = scaling
        self.policy = policy
        self.lock = lock or scaling.lock
        self.provisioning_wait = provisioning_wait  # reported wait for a freshly provisioned instance
        self.queue: dict[str, QueueEntry] = {}
        self._player_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._player_lock_users: defaultdict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def _player_lock(self, player_id: str) -> AsyncIterator[None]:
        self._player_lock_users[player_id] += 1
        try:
            async with self._player_locks[player_id]:
                yield
        finally:
            self._player_lock_users[player_id] -= 1
            if self._player_lock_users[player_id] == 0:
                del self._player_lock_users[player_id]
                del self._player_locks[player_id]

    @staticmethod
    def _is_eligible(instance: Optional[ServerInstance]) -> bool:
        return instance is not None and instance.status == "running" and instance.has_room

    def select_instance(self, preferred_instance_id: Optional[str] = None) -> Optional[ServerInstance]:
        """
        Pick the instance a player should join, or None if nothing qualifies.

        The preferred instance wins when it is running with room; otherwise the
        least loaded running instance with room is chosen, first one on ties.
        Callers hold the fleet lock.
        """
        if preferred_instance_id:
            preferred = self.registry.get(preferred_instance_id)
            if self._is_eligible(preferred):
                return preferred
            logger.debug(f"Preferred instance {preferred_instance_id} is not eligible")

        eligible = [instance for instance in self.registry.list_all() if self._is_eligible(instance)]
        if not eligible:
            return None
        return min(eligible, key=lambda instance: instance.capacity.current)

    def _assignment(self, instance: ServerInstance, wait: float = 0.0) -> Assignment:
        return Assignment(
            instance_id=instance.instance_id,
            address=instance.address or self.policy.public_host,
            port=instance.port,
            estimated_wait_time=wait,
        )

    async def join(self, player_id: str, preferred_instance_id: Optional[str] = None) -> Assignment:
        """
        Assign a player to an instance, provisioning one when none has room.

        Raises:
            CapacityExceededError: Every instance is full and the fleet is at its ceiling.
            ProvisioningError: A new instance was needed but the panel failed to create it.
        """
        async with self._player_lock(player_id):
            async with self.lock:
                target = self.select_instance(preferred_instance_id)
                if target is None:
                    if self.scaling.at_capacity():
                        logger.warning(f"Rejecting player {player_id}: all {len(self.registry)} instance(s) full")
                        raise CapacityExceededError()
                    self.queue[player_id] = QueueEntry(player_id=player_id, status="queued")

            wait = 0.0
            if target is None:
                logger.info(f"No instance with room for player {player_id}, provisioning a new one")
                try:
                    target = await self.scaling.provision_one()
                except Exception:
                    async with self.lock:
                        self.queue.pop(player_id, None)
                    raise
                wait = self.provisioning_wait

            async with self.lock:
                self.queue[player_id] = QueueEntry(
                    player_id=player_id,
                    assigned_instance_id=target.instance_id,
                    queued_at=time.time(),
                    status="assigned",
                )

        logger.info(f"Player {player_id} assigned to {target.display_name} ({target.port})")
        return self._assignment(target, wait)

    async def leave(self, player_id: str) -> None:
        """Drop the player's queue entry; unknown players are ignored."""
        async with self._player_lock(player_id):
            async with self.lock:
                entry = self.queue.pop(player_id, None)
        if entry is not None:
            logger.info(f"Player {player_id} left instance {entry.assigned_instance_id}")

    def get_entry(self, player_id: str) -> Optional[QueueEntry]:
        entry = self.queue.get(player_id)
        return entry.model_copy() if entry else None

    def queue_size(self) -> int:
        return len(self.queue)

    def release_instance(self, instance_id: str) -> int:
        """Drop every queue entry pointing at an instance. Callers hold the fleet lock."""
        players = [pid for pid, entry in self.queue.items() if entry.assigned_instance_id == instance_id]
        for player_id in players:
            del self.queue[player_id]
        return len(players)
