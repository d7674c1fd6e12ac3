from typing import Optional


class FleetError(Exception):
    """Base class for fleet management errors."""


class InvalidStateError(FleetError):
    """Raised when an operation would violate an instance or queue invariant."""


class InstanceNotFoundError(FleetError):
    """Raised when an instance id is not known to the fleet registry."""

    def __init__(self, instance_id: str):
        super().__init__(f"Instance {instance_id} not found")
        self.instance_id = instance_id


class CapacityExceededError(FleetError):
    """Raised when every instance is full and the fleet cannot grow."""

    def __init__(self, message: str = "All servers are full, retry later"):
        super().__init__(message)


class PanelError(FleetError):
    """Any failure talking to the hosting panel API."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.message} (panel status {self.status_code})"
        return self.message


class ProvisioningError(FleetError):
    """Raised when a new instance could not be created on the panel."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
