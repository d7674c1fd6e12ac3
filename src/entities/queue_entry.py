import time
from typing import Literal, Optional

from pydantic import BaseModel, Field


class QueueEntry(BaseModel):
    player_id: str = Field(min_length=1)
    assigned_instance_id: Optional[str] = None
    queued_at: float = Field(default_factory=time.time)
    status: Literal["queued", "assigned"] = "queued"


class Assignment(BaseModel):
    """Connection info handed back to a joining player."""

    instance_id: str
    address: str
    port: int
    queue_position: int = 1
    estimated_wait_time: float = 0.0
