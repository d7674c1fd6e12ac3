from typing import Optional

from pydantic import BaseModel, Field

from .server_instance import InstanceStatus


class Allocation(BaseModel):
    """A node IP/port pair the panel can bind an instance to."""

    id: int
    ip: str
    port: int = Field(ge=1, le=65535)
    alias: Optional[str] = None

    @property
    def public_address(self) -> str:
        return self.alias or self.ip


class PanelInstance(BaseModel):
    """An instance as reported by the hosting panel."""

    instance_id: str
    panel_id: Optional[int] = None
    name: str
    status: InstanceStatus = "unknown"
    allocations: list[Allocation] = Field(default_factory=list)
    environment: dict[str, str] = Field(default_factory=dict)

    @property
    def primary_allocation(self) -> Optional[Allocation]:
        return self.allocations[0] if self.allocations else None
