"""
Background reconciliation of the fleet registry against the panel.
"""
import asyncio
from typing import Optional

from src.frameworks_drivers.fleet_manager import FleetManager
from src.shared.logger import Logger

logger = Logger.get(__name__)


class FleetReconciler:
    """Runs reconcile() and the idle top-up on a fixed interval."""

    def __init__(self, fleet_manager: FleetManager, interval: float = 30.0):
        self.fleet_manager = fleet_manager
        self.interval = interval
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def run_once(self) -> None:
        """One tick; errors are logged so a panel outage never ends the loop."""
        try:
            await self.fleet_manager.reconcile()
        except Exception as e:
            logger.error(f"Error reconciling fleet with panel: {e}")

        try:
            await self.fleet_manager.ensure_minimum_idle()
        except Exception as e:
            logger.error(f"Error topping up idle instances: {e}")

    async def _run(self) -> None:
        while self._running:
            await self.run_once()
            await asyncio.sleep(self.interval)

    async def start(self) -> None:
        """Check the panel connection and start the background loop."""
        if self._running:
            return

        connection = await self.fleet_manager.check_panel_connection()
        if connection["status"] != "connected":
            logger.warning(f"Panel not reachable at startup, will keep retrying: {connection['message']}")

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"Fleet reconciliation started (every {self.interval:.0f}s)")

    async def stop(self) -> None:
        """Cancel the background loop."""
        logger.info("Stopping fleet reconciliation")
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
