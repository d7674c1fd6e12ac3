import time
from typing import Optional

from pydantic import ValidationError

from src.entities.server_instance import Capacity, InstanceStatus, ServerInstance
from src.shared.errors import InstanceNotFoundError, InvalidStateError


class FleetRegistry:
    """
    In-memory view of the instances known to the fleet, keyed by instance id.

    Instances are stored and handed out as copies, so every change has to go
    back through upsert or one of the mutators. The registry does no locking of
    its own; callers hold the fleet lock around access.
    """

    def __init__(self):
        self._instances: dict[str, ServerInstance] = {}

    def __len__(self) -> int:
        return len(self._instances)

    def __contains__(self, instance_id: object) -> bool:
        return instance_id in self._instances

    @staticmethod
    def _check_capacity(instance: ServerInstance) -> None:
        capacity = instance.capacity
        if capacity.current < 0 or capacity.current > capacity.max:
            raise InvalidStateError(
                f"Instance {instance.instance_id} capacity {capacity.current}/{capacity.max} is out of range"
            )

    def upsert(self, instance: ServerInstance) -> None:
        """Insert or replace an instance; rejects capacity violations."""
        self._check_capacity(instance)
        self._instances[instance.instance_id] = instance.model_copy(deep=True)

    def get(self, instance_id: str) -> Optional[ServerInstance]:
        instance = self._instances.get(instance_id)
        return instance.model_copy(deep=True) if instance else None

    def require(self, instance_id: str) -> ServerInstance:
        instance = self.get(instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id)
        return instance

    def list_all(self) -> list[ServerInstance]:
        return [instance.model_copy(deep=True) for instance in self._instances.values()]

    def remove(self, instance_id: str) -> None:
        self._instances.pop(instance_id, None)

    def count_by_status(self, status: InstanceStatus) -> int:
        return sum(1 for instance in self._instances.values() if instance.status == status)

    def ports_in_use(self) -> set[int]:
        return {instance.port for instance in self._instances.values()}

    def set_status(self, instance_id: str, status: InstanceStatus) -> ServerInstance:
        instance = self._instances.get(instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id)
        if instance.status != status:
            instance.status = status
            instance.last_update = time.time()
        return instance.model_copy(deep=True)

    def update_capacity(self, instance_id: str, current: int) -> ServerInstance:
        instance = self._instances.get(instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id)
        try:
            capacity = Capacity(current=current, max=instance.capacity.max)
        except ValidationError as e:
            raise InvalidStateError(
                f"Instance {instance_id} cannot hold {current} players (max {instance.capacity.max})"
            ) from e
        instance.capacity = capacity
        instance.last_update = time.time()
        return instance.model_copy(deep=True)
