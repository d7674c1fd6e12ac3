import json
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.entities.instance_spec import FeatureLimits, ResourceLimits


class ServerConfig(BaseModel):
    """Configuration for the HTTP server.

    Attributes:
        host: Host for the HTTP server.
        port: Port for the HTTP server.
    """

    host: str = Field("0.0.0.0", description="Host for the HTTP server")
    port: int = Field(3000, description="Port for the HTTP server")


class PanelConfig(BaseModel):
    """Configuration for the hosting panel API.

    Attributes:
        api_url: Base URL of the panel API (ending in /api).
        application_api_key: Key for the application (admin) API.
        client_api_key: Key for the client API (power actions, resource usage).
        node_id: Panel node that owns the port allocations.
        timeout: Timeout for panel requests in seconds.
    """

    api_url: str = Field(..., description="Base URL of the panel API")
    application_api_key: str = Field("", description="Key for the application (admin) API")
    client_api_key: str = Field("", description="Key for the client API")
    node_id: int = Field(1, ge=1, description="Panel node that owns the port allocations")
    timeout: float = Field(15.0, gt=0, description="Timeout for panel requests in seconds")

    @property
    def effective_client_api_key(self) -> str:
        """The client key, falling back to the application key when unset."""
        return self.client_api_key or self.application_api_key


class FleetPolicy(BaseModel):
    """Sizing policy for the fleet, immutable for the lifetime of the process.

    Attributes:
        max_players_per_instance: Player capacity of a single instance.
        min_idle_instances: Number of empty instances to keep warm.
        max_total_instances: Hard ceiling on the fleet size.
        start_port: First port used for sequential allocation.
        name_prefix: Naming convention identifying instances owned by this fleet.
        public_host: Address handed to players when an allocation has none.
    """

    model_config = ConfigDict(frozen=True)

    max_players_per_instance: int = Field(50, gt=0, description="Player capacity of a single instance")
    min_idle_instances: int = Field(1, ge=0, description="Number of empty instances to keep warm")
    max_total_instances: int = Field(10, gt=0, description="Hard ceiling on the fleet size")
    start_port: int = Field(7001, ge=1, le=65535, description="First port used for sequential allocation")
    name_prefix: str = Field("GameServer-", min_length=1, description="Name prefix of instances owned by this fleet")
    public_host: str = Field("localhost", description="Address handed to players when an allocation has none")

    @model_validator(mode="after")
    def check_idle_within_total(self):
        if self.min_idle_instances > self.max_total_instances:
            raise ValueError("min_idle_instances cannot exceed max_total_instances")
        return self


class InstanceTemplateConfig(BaseModel):
    """Template for newly provisioned instances.

    Attributes:
        description: Panel description of the instance.
        user: Panel user owning new instances.
        egg: Panel egg (server type) id.
        docker_image: Container image for the game server.
        startup: Startup command template.
        limits: Resource limits.
        feature_limits: Panel feature limits.
        environment: Extra egg variables.
        start_on_completion: Whether the panel starts the instance after install.
    """

    description: str = Field("UDP game server instance", description="Panel description of the instance")
    user: int = Field(1, ge=1, description="Panel user owning new instances")
    egg: int = Field(20, ge=1, description="Panel egg id")
    docker_image: str = Field("ghcr.io/pterodactyl/yolks:ubuntu", description="Container image for the game server")
    startup: str = Field(
        "./{{SERVER_JARFILE}} -batchmode -nographics -port {{SERVER_PORT}} -serverName \"{{SERVER_NAME}}\" -maxPlayers {{MAX_PLAYERS}}",
        description="Startup command template",
    )
    limits: ResourceLimits = Field(default_factory=ResourceLimits)
    feature_limits: FeatureLimits = Field(default_factory=FeatureLimits)
    environment: Dict[str, str] = Field(default_factory=dict, description="Extra egg variables")
    start_on_completion: bool = Field(True, description="Whether the panel starts the instance after install")


class ReadinessProbeConfig(BaseModel):
    """Optional HTTP readiness probe run before promoting a starting instance.

    Attributes:
        enabled: Whether the probe is used.
        path: HTTP path of the game server's status endpoint.
        port_offset: Offset from the game port to the status port.
        timeout: Probe timeout in seconds.
    """

    enabled: bool = Field(False, description="Whether the probe is used")
    path: str = Field("/health", description="HTTP path of the status endpoint")
    port_offset: int = Field(0, description="Offset from the game port to the status port")
    timeout: float = Field(2.0, gt=0, description="Probe timeout in seconds")


class ReconcileConfig(BaseModel):
    """Timing of the background reconciliation and lifecycle waits.

    Attributes:
        interval: Seconds between reconciliation passes.
        promotion_timeout: Seconds after which a starting instance is treated as running.
        delete_timeout: Seconds to wait for an instance to stop before deleting it.
        delete_poll_interval: Seconds between stop checks while deleting.
        readiness: Optional readiness probe.
    """

    interval: float = Field(30.0, gt=0, description="Seconds between reconciliation passes")
    promotion_timeout: float = Field(60.0, ge=0, description="Seconds before a starting instance is promoted")
    delete_timeout: float = Field(60.0, gt=0, description="Seconds to wait for a stop before deleting")
    delete_poll_interval: float = Field(2.0, gt=0, description="Seconds between stop checks while deleting")
    readiness: ReadinessProbeConfig = Field(default_factory=ReadinessProbeConfig)


class Config(BaseModel):
    """Main configuration class.

    Attributes:
        server: HTTP server configuration.
        panel: Hosting panel configuration.
        fleet: Fleet sizing policy.
        template: Template for new instances.
        reconcile: Reconciliation timing.
    """

    server: ServerConfig = Field(default_factory=ServerConfig)
    panel: PanelConfig
    fleet: FleetPolicy = Field(default_factory=FleetPolicy)
    template: InstanceTemplateConfig = Field(default_factory=InstanceTemplateConfig)
    reconcile: ReconcileConfig = Field(default_factory=ReconcileConfig)

    @classmethod
    def load(cls, config_path: str = "config.json", overrides: Optional[dict] = None) -> "Config":
        """Load and validate configuration from JSON file."""
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(path) as f:
            data = json.load(f)

        for section, values in (overrides or {}).items():
            data.setdefault(section, {}).update(values)

        return cls(**data)
