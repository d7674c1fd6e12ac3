import time
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

InstanceStatus = Literal["starting", "running", "stopping", "stopped", "unknown"]


class Capacity(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    current: int = Field(0, ge=0)
    max: int = Field(..., gt=0)

    @model_validator(mode="after")
    def check_current_within_max(self):
        if self.current > self.max:
            raise ValueError(f"current players ({self.current}) exceeds max ({self.max})")
        return self

    @property
    def free_slots(self) -> int:
        return self.max - self.current


class ServerInstance(BaseModel):
    """One externally hosted game-server process tracked by the fleet."""

    model_config = ConfigDict(validate_assignment=True)

    instance_id: str = Field(min_length=1)
    local_id: Optional[str] = None
    panel_id: Optional[int] = None  # numeric panel id, needed for deletion
    display_name: str
    status: InstanceStatus = "unknown"
    capacity: Capacity
    port: int = Field(ge=1, le=65535)
    address: Optional[str] = None
    last_update: float = Field(default_factory=time.time)

    @property
    def is_idle(self) -> bool:
        return self.status == "running" and self.capacity.current == 0

    @property
    def has_room(self) -> bool:
        return self.capacity.free_slots > 0

    @property
    def is_active(self) -> bool:
        return self.status not in ("stopping", "stopped")
