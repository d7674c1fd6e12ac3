import time
from typing import Any, Optional

import httpx

from src.entities.instance_spec import InstanceSpec
from src.entities.panel_instance import Allocation, PanelInstance
from src.entities.server_instance import InstanceStatus
from src.frameworks_drivers.config import PanelConfig
from src.shared.errors import PanelError
from src.shared.logger import Logger
from src.shared.protocols import PanelClientProtocol, PowerSignal

logger = Logger.get(__name__)

# Pterodactyl reports "offline" for a stopped server
POWER_STATES: dict[str, InstanceStatus] = {
    "running": "running",
    "starting": "starting",
    "stopping": "stopping",
    "offline": "stopped",
}


class PterodactylPanelClient(PanelClientProtocol):
    """
    Adapter over the Pterodactyl panel HTTP API.

    Server management and allocations go through the application API, power
    actions and live state through the client API. Every failure is raised as
    a PanelError carrying the HTTP status when there is one.
    """

    def __init__(self, config: PanelConfig):
        self.config = config
        self.api_url = config.api_url.rstrip("/")
        self.timeout = config.timeout

    async def _request(
        self,
        method: str,
        path: str,
        api_key: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> Optional[dict]:
        if not api_key:
            raise PanelError(f"No panel API key configured for {path}")

        url = f"{self.api_url}{path}"
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        start_time = time.time()
        timeout = httpx.Timeout(self.timeout, connect=10.0)
        async with httpx.AsyncClient(timeout=timeout) as client:
            try:
                response = await client.request(method, url, headers=headers, json=json, params=params)
                logger.debug(f"Panel {method} {path} -> {response.status_code} in {time.time() - start_time:.2f}s")
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                detail = self._error_detail(e.response)
                logger.error(f"Panel {method} {path} failed with status {e.response.status_code}: {detail}")
                raise PanelError(f"{method} {path} failed: {detail}", status_code=e.response.status_code) from e
            except httpx.TimeoutException as e:
                logger.error(f"Panel {method} {path} timed out after {time.time() - start_time:.2f}s")
                raise PanelError(f"{method} {path} timed out") from e
            except httpx.HTTPError as e:
                logger.error(f"Panel {method} {path} transport error: {e}")
                raise PanelError(f"{method} {path} failed: {e}") from e

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise PanelError(f"Malformed JSON in panel response to {method} {path}", status_code=response.status_code) from e

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        """Pull the human readable detail out of a panel error body."""
        try:
            errors = response.json().get("errors") or []
        except ValueError:
            return response.text[:200] or response.reason_phrase
        details = [err.get("detail", "") for err in errors if isinstance(err, dict)]
        return "; ".join(d for d in details if d) or response.reason_phrase

    async def _get_all_pages(self, path: str, params: Optional[dict] = None) -> list[dict]:
        items: list[dict] = []
        page = 1
        while True:
            body = await self._request(
                "GET", path, self.config.application_api_key, params={**(params or {}), "page": page},
            )
            if not isinstance(body, dict):
                raise PanelError(f"Unexpected response body for GET {path}")
            items.extend(body.get("data") or [])
            pagination = body.get("meta", {}).get("pagination", {})
            if page >= pagination.get("total_pages", 1):
                return items
            page += 1

    @staticmethod
    def _parse_allocation(data: dict) -> Allocation:
        attributes = data.get("attributes", data)
        return Allocation(
            id=attributes["id"],
            ip=attributes["ip"],
            port=attributes["port"],
            alias=attributes.get("alias") or attributes.get("ip_alias"),
        )

    def _parse_server(self, data: dict, status: InstanceStatus = "unknown") -> PanelInstance:
        try:
            attributes = data["attributes"]
            allocations = attributes.get("relationships", {}).get("allocations", {}).get("data", [])
            environment = attributes.get("container", {}).get("environment") or {}
            return PanelInstance(
                instance_id=attributes["uuid"],
                panel_id=attributes.get("id"),
                name=attributes["name"],
                status=status,
                allocations=[self._parse_allocation(a) for a in allocations],
                environment={k: str(v) for k, v in environment.items() if v is not None},
            )
        except (KeyError, TypeError, ValueError) as e:
            raise PanelError(f"Malformed server object from panel: {e}") from e

    async def check_connection(self) -> bool:
        """Verify the application API key by fetching a single page of servers."""
        await self._request("GET", "/application/servers", self.config.application_api_key, params={"per_page": 1})
        logger.info("Panel API connection successful")
        return True

    async def list_instances(self) -> list[PanelInstance]:
        """
        List every server on the panel together with its power state.

        A server whose state cannot be read is reported as "unknown" rather than
        failing the whole listing.
        """
        servers = await self._get_all_pages("/application/servers", {"include": "allocations"})
        instances = []
        for data in servers:
            instance = self._parse_server(data)
            try:
                instance.status = await self.get_instance_status(instance.instance_id)
            except PanelError as e:
                logger.warning(f"Could not read power state of {instance.name}: {e}")
            instances.append(instance)
        return instances

    async def get_instance_status(self, instance_id: str) -> InstanceStatus:
        body = await self._request(
            "GET", f"/client/servers/{instance_id}/resources", self.config.effective_client_api_key,
        )
        state = (body or {}).get("attributes", {}).get("current_state")
        return POWER_STATES.get(state, "unknown")

    async def create_instance(self, spec: InstanceSpec) -> PanelInstance:
        logger.info(f"Creating panel server {spec.name} on {spec.allocation.ip}:{spec.allocation.port}")
        body = await self._request(
            "POST", "/application/servers", self.config.application_api_key, json=spec.to_payload(),
        )
        if not body or "attributes" not in body:
            raise PanelError("Panel accepted the create request but returned no server object")
        instance = self._parse_server(body, status="starting" if spec.start_on_completion else "stopped")
        if not instance.allocations:
            instance.allocations = [spec.allocation]
        return instance

    async def power_action(self, instance_id: str, signal: PowerSignal) -> None:
        await self._request(
            "POST", f"/client/servers/{instance_id}/power", self.config.effective_client_api_key,
            json={"signal": signal},
        )
        logger.info(f"Sent power signal '{signal}' to {instance_id}")

    async def delete_instance(self, panel_id: int) -> None:
        await self._request("DELETE", f"/application/servers/{panel_id}", self.config.application_api_key)
        logger.info(f"Deleted panel server {panel_id}")

    async def list_allocations(self) -> list[Allocation]:
        path = f"/application/nodes/{self.config.node_id}/allocations"
        return [self._parse_allocation(a) for a in await self._get_all_pages(path)]

    async def ensure_allocation(self, port: int) -> Allocation:
        """
        Return the node allocation for a port, creating it when missing.

        New allocations reuse the IP and alias of the node's existing ones.
        """
        allocations = await self.list_allocations()
        for allocation in allocations:
            if allocation.port == port:
                return allocation

        request: dict[str, Any] = {"ip": "0.0.0.0", "ports": [str(port)]}
        if allocations:
            request["ip"] = allocations[0].ip
            if allocations[0].alias:
                request["alias"] = allocations[0].alias

        logger.info(f"Creating allocation for port {port} on node {self.config.node_id}")
        await self._request(
            "POST", f"/application/nodes/{self.config.node_id}/allocations", self.config.application_api_key,
            json=request,
        )
        # the panel answers 204 without a body, so look the new allocation up
        for allocation in await self.list_allocations():
            if allocation.port == port:
                return allocation
        raise PanelError(f"Allocation for port {port} not found after creation")
