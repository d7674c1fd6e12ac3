import asyncio

import requests

from src.shared.logger import Logger

logger = Logger.get(__name__)


class HealthChecker:
    """
    Utility class for probing the HTTP status endpoint a game server may expose
    next to its UDP port.
    """

    @staticmethod
    async def check_http_endpoint(host: str, port: int, endpoint: str = "/health", timeout: float = 5.0) -> bool:
        """
        Check if an HTTP endpoint is responding with a successful status code.

        Args:
            host: The host address
            port: The port number
            endpoint: The health endpoint path (default: "/health")
            timeout: Request timeout in seconds

        Returns:
            True if the endpoint responds with 200 status, False otherwise
        """
        url = f"http://{host}:{port}{endpoint}"
        try:
            response = await asyncio.to_thread(
                requests.get, url, timeout=timeout,
            )
            if response.status_code == 200:
                logger.debug(f"Health check passed for {url}")
                return True
            else:
                logger.warning(f"Health check failed for {url}: status {response.status_code}")
                return False
        except requests.RequestException as e:
            logger.debug(f"Health check failed for {url}: {e}")
            return False

    @staticmethod
    async def check_instance_ready(host: str, game_port: int, port_offset: int, endpoint: str, timeout: float) -> bool:
        """
        Probe a game server's status endpoint, which listens at a fixed offset
        from its game port.

        Returns:
            True if the game server answers its status endpoint, False otherwise
        """
        status_port = game_port + port_offset
        if not 1 <= status_port <= 65535:
            logger.warning(f"Status port {status_port} for {host}:{game_port} is out of range")
            return False
        return await HealthChecker.check_http_endpoint(host, status_port, endpoint, timeout)
