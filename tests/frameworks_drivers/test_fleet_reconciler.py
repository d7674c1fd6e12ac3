import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from src.frameworks_drivers.fleet_reconciler import FleetReconciler
from src.shared.errors import PanelError


@pytest.fixture
def mock_fleet_manager():
    manager = Mock()
    manager.reconcile = AsyncMock(return_value=True)
    manager.ensure_minimum_idle = AsyncMock(return_value=0)
    manager.check_panel_connection = AsyncMock(
        return_value={"status": "connected", "message": "Panel API connection successful"}
    )
    return manager


class TestFleetReconciler:
    @pytest.mark.asyncio
    async def test_run_once_reconciles_then_tops_up(self, mock_fleet_manager):
        reconciler = FleetReconciler(mock_fleet_manager)

        await reconciler.run_once()

        mock_fleet_manager.reconcile.assert_awaited_once()
        mock_fleet_manager.ensure_minimum_idle.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_panel_outage_does_not_stop_top_up(self, mock_fleet_manager):
        mock_fleet_manager.reconcile.side_effect = PanelError("Bad gateway", status_code=502)
        reconciler = FleetReconciler(mock_fleet_manager)

        await reconciler.run_once()

        mock_fleet_manager.ensure_minimum_idle.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_top_up_error_is_logged_not_raised(self, mock_fleet_manager):
        mock_fleet_manager.ensure_minimum_idle.side_effect = RuntimeError("boom")
        reconciler = FleetReconciler(mock_fleet_manager)

        await reconciler.run_once()

    @pytest.mark.asyncio
    async def test_start_and_stop(self, mock_fleet_manager):
        reconciler = FleetReconciler(mock_fleet_manager, interval=0.01)

        await reconciler.start()
        assert reconciler.running
        await asyncio.sleep(0.05)
        await reconciler.stop()

        assert not reconciler.running
        assert mock_fleet_manager.reconcile.await_count >= 2
        mock_fleet_manager.check_panel_connection.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_start_with_unreachable_panel(self, mock_fleet_manager):
        mock_fleet_manager.check_panel_connection.return_value = {
            "status": "error", "message": "Unauthenticated.", "panel_status_code": 401,
        }
        reconciler = FleetReconciler(mock_fleet_manager, interval=10)

        await reconciler.start()
        await asyncio.sleep(0)
        await reconciler.stop()

        mock_fleet_manager.reconcile.assert_awaited()

    @pytest.mark.asyncio
    async def test_start_twice_keeps_one_loop(self, mock_fleet_manager):
        reconciler = FleetReconciler(mock_fleet_manager, interval=10)

        await reconciler.start()
        task = reconciler._task
        await reconciler.start()

        assert reconciler._task is task
        await reconciler.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, mock_fleet_manager):
        reconciler = FleetReconciler(mock_fleet_manager)
        await reconciler.stop()
        assert not reconciler.running
