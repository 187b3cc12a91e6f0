"""
Tests for the server reconciliation monitor.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from store_plane.config import PanelConfig
from store_plane.errors import ConfigurationError
from store_plane.models.order import OrderStatus
from store_plane.panel import RemoteError, ResourceUsage
from store_plane.services.monitor import (
    ServerMonitor,
    days_until,
    expiry_for,
    extract_order_id,
)

from conftest import FIXED_NOW, make_order, make_server

# make_order() is created at FIXED_NOW for one month
EXPIRY = datetime(2026, 4, 10, 12, 0, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock(EXPIRY - timedelta(days=3))


@pytest.fixture
def monitor(mock_panel, manager, panel_config, clock):
    return ServerMonitor(mock_panel, manager, panel_config, clock=clock)


class TestHelpers:

    @pytest.mark.parametrize("name,expected", [
        ("A1-ORD-ABC-123456", "ORD-ABC-123456"),
        ("VPS_SUHU-ORD-X-1", "ORD-X-1"),
        ("my server", None),
        ("", None),
    ])
    def test_extract_order_id(self, name, expected):
        assert extract_order_id(name) == expected

    def test_expiry_adds_calendar_months(self):
        assert expiry_for(make_order(duration=1)) == EXPIRY
        jan31 = make_order(duration=1, created_at=datetime(2026, 1, 31, tzinfo=timezone.utc))
        assert expiry_for(jan31) == datetime(2026, 2, 28, tzinfo=timezone.utc)

    def test_days_until_rounds_up(self):
        assert days_until(EXPIRY, EXPIRY - timedelta(days=2, hours=1)) == 3
        assert days_until(EXPIRY, EXPIRY) == 0
        assert days_until(EXPIRY, EXPIRY + timedelta(hours=1)) == 0
        assert days_until(EXPIRY, EXPIRY + timedelta(days=2)) == -2


class TestScan:
    """Test joining panel servers with orders."""

    @pytest.mark.asyncio
    async def test_links_server_to_order(self, monitor, manager, mock_panel, clock):
        await manager.store.create(make_order())
        mock_panel.list_servers.return_value = [make_server()]

        statuses = await monitor.scan_all()

        assert len(statuses) == 1
        status = statuses[0]
        assert status.order_id == "ORD-TEST-1"
        assert status.order_status == "confirmed"
        assert status.customer == "6281234567890"
        assert status.chat_id == "6281234567890@chat"
        assert status.package_id == "a1"
        assert status.expiry_date == EXPIRY
        assert status.days_until_expiry == 3
        assert status.is_expiring is True
        assert status.is_expired is False
        assert status.status == "unknown"
        assert monitor.last_update == clock.now
        mock_panel.get_resource_usage.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_name_mismatch_is_not_linked(self, monitor, manager, mock_panel):
        await manager.store.create(make_order(package_id="b2"))
        mock_panel.list_servers.return_value = [make_server(name="A1-ORD-TEST-1")]

        status = (await monitor.scan_all())[0]

        assert status.order_id is None
        assert status.days_until_expiry is None

    @pytest.mark.asyncio
    async def test_unlinked_servers_are_kept(self, monitor, mock_panel):
        mock_panel.list_servers.return_value = [
            make_server(1, name="manual box"),
            make_server(2, name="A1-ORD-MISSING"),
        ]
        statuses = await monitor.scan_all()
        assert {s.server_id for s in statuses} == {1, 2}
        assert all(s.order_id is None for s in statuses)

    @pytest.mark.asyncio
    async def test_failing_server_is_skipped(self, monitor, manager, mock_panel):
        await manager.store.create(make_order())
        mock_panel.list_servers.return_value = [make_server(1, name="A1-ORD-TEST-1"), make_server(2, name="B1-ORD-X")]
        real_get = manager.get_order

        async def flaky_get(order_id):
            if order_id == "ORD-X":
                raise RuntimeError("store unavailable")
            return await real_get(order_id)

        manager.get_order = flaky_get
        statuses = await monitor.scan_all()
        assert [s.server_id for s in statuses] == [1]

    @pytest.mark.asyncio
    async def test_failed_scan_keeps_previous_cache(self, monitor, mock_panel):
        mock_panel.list_servers.return_value = [make_server()]
        await monitor.scan_all()
        first_update = monitor.last_update

        mock_panel.list_servers = AsyncMock(side_effect=RemoteError("Failed to list servers: timeout"))
        with pytest.raises(RemoteError):
            await monitor.scan_all()

        assert len(monitor.servers) == 1
        assert monitor.last_update == first_update

    @pytest.mark.asyncio
    async def test_unconfigured_panel(self, monitor, mock_panel):
        mock_panel.is_configured.return_value = False
        with pytest.raises(ConfigurationError):
            await monitor.scan_all()
        mock_panel.list_servers.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_live_resources_with_client_key(self, mock_panel, manager, clock):
        config = PanelConfig(url="https://panel.store.test", admin_api_key="a", client_api_key="c")
        monitor = ServerMonitor(mock_panel, manager, config, clock=clock)
        mock_panel.list_servers.return_value = [make_server(1), make_server(2, name="other")]
        mock_panel.get_resource_usage = AsyncMock(side_effect=[
            ResourceUsage(current_state="running", memory_bytes=256 * 1024 * 1024, cpu_absolute=20.0),
            RemoteError("Failed to get server resources: HTTP 409", 409),
        ])

        await monitor.scan_all()

        assert monitor.get_server_status("1").status == "running"
        assert monitor.get_server_status("1").resources.cpu_absolute == 20.0
        assert monitor.get_server_status("2").status == "offline"
        mock_panel.get_resource_usage.assert_any_await("id1")


class TestCache:

    @pytest.mark.asyncio
    async def test_cached_list_does_not_rescan(self, monitor, mock_panel):
        mock_panel.list_servers.return_value = [make_server()]
        await monitor.get_server_list()
        await monitor.get_server_list()
        assert mock_panel.list_servers.await_count == 1

        await monitor.get_server_list(force_refresh=True)
        assert mock_panel.list_servers.await_count == 2

    @pytest.mark.asyncio
    async def test_lookup_by_uuid_or_id(self, monitor, mock_panel):
        mock_panel.list_servers.return_value = [make_server(42)]
        await monitor.scan_all()
        assert (await monitor.get_server("uuid-42")).server_id == 42
        assert monitor.get_server_status("42").server_uuid == "uuid-42"
        assert monitor.get_server_status("uuid-42").server_id == 42
        assert monitor.get_server_status("99") is None

    @pytest.mark.asyncio
    async def test_clear_cache(self, monitor, mock_panel):
        mock_panel.list_servers.return_value = [make_server()]
        await monitor.scan_all()
        assert monitor.cache_info()["cached_servers"] == 1
        monitor.clear_cache()
        assert monitor.servers == []


class TestQueries:

    async def _seed(self, monitor, manager, mock_panel):
        await manager.store.create(make_order("ORD-SOON"))
        await manager.store.create(make_order("ORD-OLD", package_id="b1", phone="628999",
                                              created_at=FIXED_NOW - timedelta(days=40)))
        await manager.store.create(make_order("ORD-LONG", package_id="c1", duration=6))
        mock_panel.list_servers.return_value = [
            make_server(1, name="A1-ORD-SOON"),
            make_server(2, name="B1-ORD-OLD", memory=2048),
            make_server(3, name="C1-ORD-LONG", suspended=True),
            make_server(4, name="unlinked"),
        ]
        await monitor.scan_all()

    @pytest.mark.asyncio
    async def test_expiry_queries(self, monitor, manager, mock_panel):
        await self._seed(monitor, manager, mock_panel)
        assert [s.server_id for s in monitor.expiring_soon()] == [1]
        assert [s.server_id for s in monitor.expired()] == [2]
        assert monitor.expiring_soon(days=2) == []

    @pytest.mark.asyncio
    async def test_filters(self, monitor, manager, mock_panel):
        await self._seed(monitor, manager, mock_panel)
        assert [s.server_id for s in monitor.servers_by_customer("628999")] == [2]
        assert [s.server_id for s in monitor.filter_servers(suspended=True)] == [3]
        assert [s.server_id for s in monitor.filter_servers(package_id="a1")] == [1]
        assert [s.server_id for s in monitor.filter_servers(expired=True)] == [2]
        assert [s.server_id for s in monitor.filter_servers(expiring=True, customer="6281234567890")] == [1]

    @pytest.mark.asyncio
    async def test_monitoring_stats(self, monitor, manager, mock_panel):
        await self._seed(monitor, manager, mock_panel)
        stats = monitor.monitoring_stats()
        assert stats["total_servers"] == 4
        assert stats["active_servers"] == 3
        assert stats["suspended_servers"] == 1
        assert stats["expiring_soon"] == 1
        assert stats["expired_servers"] == 1
        assert stats["servers_by_status"] == {"unknown": 3, "suspended": 1}
        assert stats["resource_usage"]["total_memory_mb"] == 512 * 3 + 2048
        assert stats["resource_usage"]["average_cpu_usage"] == 0.0

    @pytest.mark.asyncio
    async def test_to_dict(self, monitor, manager, mock_panel):
        await self._seed(monitor, manager, mock_panel)
        data = monitor.get_server_status("1").to_dict()
        assert data["order_id"] == "ORD-SOON"
        assert data["expiry_date"] == EXPIRY.isoformat()
        assert data["resources"] is None
        assert (await manager.get_order("ORD-SOON")).status == OrderStatus.CONFIRMED


class TestMonitoringTimer:

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, monitor):
        assert monitor.start_monitoring(interval_minutes=60) is True
        assert monitor.start_monitoring(interval_minutes=60) is False
        assert monitor.is_monitoring is True
        await monitor.stop_monitoring()
        assert monitor.is_monitoring is False

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, monitor):
        await monitor.stop_monitoring()
        assert monitor.is_monitoring is False
