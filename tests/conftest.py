"""
Store Plane Test Fixtures
=========================

Shared fixtures for all test modules.
"""

from datetime import datetime, timezone
from typing import List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from store_plane.config import PanelConfig, SchedulerConfig, StorageConfig, StoreConfig
from store_plane.models.order import (
    Customer,
    Order,
    OrderItem,
    OrderStatus,
    PackageSpecs,
    StatusHistoryEntry,
)
from store_plane.order_manager import OrderManager
from store_plane.order_store import OrderStore
from store_plane.panel import PanelAllocation, PanelNode, PanelServer, PanelUser
from store_plane.provisioning import ProvisioningOrchestrator
from store_plane.resources import ResourceMappings
from store_plane.services.notifier import Notifier


FIXED_NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


# ============================================
# BUILDERS
# ============================================

def make_user(user_id: int = 7, username: str = "user_12345678_000001") -> PanelUser:
    return PanelUser.from_api({
        "id": user_id,
        "uuid": f"user-uuid-{user_id}",
        "username": username,
        "email": "6281234567890@store.test",
        "first_name": "Customer",
        "last_name": "#ORD-TEST",
        "root_admin": False,
    })


def make_server(
    server_id: int = 42,
    name: str = "A1-ORD-TEST-1",
    suspended: bool = False,
    uuid: Optional[str] = None,
    memory: int = 512,
    disk: int = 2048,
) -> PanelServer:
    return PanelServer.from_api({
        "id": server_id,
        "uuid": uuid or f"uuid-{server_id}",
        "identifier": f"id{server_id}",
        "name": name,
        "suspended": suspended,
        "limits": {"memory": memory, "swap": 0, "disk": disk, "io": 500, "cpu": 50},
        "user": 7,
        "node": 1,
        "created_at": "2026-01-01T00:00:00+00:00",
    })


def make_allocation(allocation_id: int = 100, port: int = 25565, assigned: bool = False) -> PanelAllocation:
    return PanelAllocation.from_api({
        "id": allocation_id,
        "ip": "10.0.0.1",
        "port": port,
        "assigned": assigned,
    })


def make_order(
    order_id: str = "ORD-TEST-1",
    package_id: str = "a1",
    duration: int = 1,
    status: OrderStatus = OrderStatus.CONFIRMED,
    phone: str = "6281234567890",
    created_at: datetime = FIXED_NOW,
    price: int = 5000,
) -> Order:
    return Order(
        id=order_id,
        customer=Customer(phone_number=phone, chat_id=f"{phone}@chat", display_name="Budi"),
        item=OrderItem(
            package_id=package_id,
            duration=duration,
            price=price,
            specifications=PackageSpecs(ram="1GB", cpu="100% CPU", storage="2GB", bandwidth="Unlimited"),
        ),
        status=status,
        total_amount=price * duration,
        currency="IDR",
        created_at=created_at,
        updated_at=created_at,
        status_history=[
            StatusHistoryEntry(status=status, timestamp=created_at, updated_by="system", notes="Order created")
        ],
    )


def assert_history_consistent(order: Order):
    """History is non-empty, time-ordered and ends at the current status."""
    assert order.status_history
    stamps = [h.timestamp for h in order.status_history]
    assert stamps == sorted(stamps)
    assert order.status_history[-1].status == order.status


# ============================================
# CONFIG
# ============================================

@pytest.fixture
def panel_config():
    """Configured panel without a client API key."""
    return PanelConfig(
        url="https://panel.store.test",
        admin_api_key="ptla_test_fake",
        email_domain="store.test",
    )


@pytest.fixture
def store_config(tmp_path, panel_config):
    return StoreConfig(
        panel=panel_config,
        storage=StorageConfig(data_dir=str(tmp_path / "data")),
        scheduler=SchedulerConfig(enabled=False),
        log_format="text",
    )


# ============================================
# MOCK PANEL
# ============================================

@pytest.fixture
def mock_panel():
    """Healthy panel with one free allocation on node 1."""
    panel = MagicMock()
    panel.is_configured = MagicMock(return_value=True)
    panel.health_check = AsyncMock(return_value=True)
    panel.create_user = AsyncMock(return_value=make_user())
    panel.delete_user = AsyncMock()
    panel.get_user = AsyncMock(return_value=make_user())
    panel.create_server = AsyncMock(side_effect=lambda **kw: make_server(name=kw["name"]))
    panel.get_server = AsyncMock(return_value=make_server())
    panel.delete_server = AsyncMock()
    panel.suspend_server = AsyncMock()
    panel.unsuspend_server = AsyncMock()
    panel.list_servers = AsyncMock(return_value=[])
    panel.list_allocations = AsyncMock(return_value=[make_allocation()])
    panel.create_allocations = AsyncMock()
    panel.get_node = AsyncMock(return_value=PanelNode(id=1, name="node-1", fqdn="node1.panel.test"))
    panel.list_nodes = AsyncMock(return_value=[])
    panel.get_resource_usage = AsyncMock()
    panel.close = AsyncMock()
    return panel


# ============================================
# NOTIFIER
# ============================================

class RecordingNotifier(Notifier):
    """Keeps every message instead of delivering it."""

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.sent: List[Tuple[str, str]] = []

    async def send(self, recipient: str, text: str) -> bool:
        self.sent.append((recipient, text))
        return self.succeed


@pytest.fixture
def notifier():
    return RecordingNotifier()


# ============================================
# CORE COMPONENTS
# ============================================

@pytest.fixture
def mappings():
    return ResourceMappings(default_node_id=1, environ={})


@pytest.fixture
def orchestrator(mock_panel, mappings, panel_config):
    return ProvisioningOrchestrator(mock_panel, mappings, panel_config)


@pytest.fixture
def order_store(tmp_path):
    """Uninitialized JSON order store in a temp dir."""
    return OrderStore(str(tmp_path / "data"))


@pytest_asyncio.fixture
async def manager(order_store, orchestrator):
    """Initialized order manager over a temp store."""
    mgr = OrderManager(order_store, orchestrator, currency="IDR")
    await mgr.initialize()
    return mgr
