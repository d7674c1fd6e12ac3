from typing import Literal, Protocol, TypedDict, TYPE_CHECKING

if TYPE_CHECKING:
    from src.entities.instance_spec import InstanceSpec
    from src.entities.panel_instance import Allocation, PanelInstance

PowerSignal = Literal["start", "stop", "restart", "kill"]


class JoinResultDTO(TypedDict):
    instance_id: str
    address: str
    port: int
    queue_position: int
    estimated_wait_time: float


class PanelClientProtocol(Protocol):
    async def list_instances(self) -> list['PanelInstance']: ...

    async def get_instance_status(self, instance_id: str) -> str: ...

    async def create_instance(self, spec: 'InstanceSpec') -> 'PanelInstance': ...

    async def power_action(self, instance_id: str, signal: PowerSignal) -> None: ...

    async def delete_instance(self, panel_id: int) -> None: ...

    async def ensure_allocation(self, port: int) -> 'Allocation': ...

    async def check_connection(self) -> bool: ...
