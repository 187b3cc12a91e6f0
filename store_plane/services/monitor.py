"""
Server Reconciliation Monitor
=============================

Background service that periodically pulls every server from the panel,
joins each one to its order and caches the merged view.

Servers are named ``<PACKAGE>-<ORDER_ID>``; the order id is recovered from
the name and only trusted when the order's own package rebuilds the same
name. Expiry is the order's creation time plus its duration in months.

Every query runs on the cached snapshot. Only scan_all(), or an explicit
force_refresh, talks to the panel.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from dateutil.relativedelta import relativedelta

from ..config import PanelConfig
from ..errors import ConfigurationError
from ..models.order import Order, utcnow
from ..order_manager import OrderManager
from ..panel import PanelClient, PanelServer, RemoteError, ResourceUsage
from ..provisioning import server_name_for
from .scheduler import RepeatingTask

logger = logging.getLogger(__name__)

ORDER_ID_PATTERN = re.compile(r"^[A-Z0-9_]+-(.+)$")
EXPIRING_DAYS = 7


def extract_order_id(server_name: str) -> Optional[str]:
    match = ORDER_ID_PATTERN.match(server_name or "")
    return match.group(1) if match else None


def expiry_for(order: Order) -> datetime:
    return order.created_at + relativedelta(months=order.item.duration)


def days_until(expiry: datetime, now: datetime) -> int:
    """Whole days left, rounded up. Zero or less means expired."""
    return math.ceil((expiry - now).total_seconds() / 86400)


@dataclass
class ServerStatus:
    """One panel server merged with its order, as of the last scan."""
    server_id: int
    server_uuid: str
    identifier: str
    name: str
    status: str
    suspended: bool
    created_at: Optional[datetime]
    limits: Dict[str, int] = field(default_factory=dict)
    order_id: Optional[str] = None
    order_status: Optional[str] = None
    customer: Optional[str] = None  # phone number
    chat_id: Optional[str] = None
    package_id: Optional[str] = None
    expiry_date: Optional[datetime] = None
    days_until_expiry: Optional[int] = None
    resources: Optional[ResourceUsage] = None

    @property
    def is_expiring(self) -> bool:
        return self.days_until_expiry is not None and 0 < self.days_until_expiry <= EXPIRING_DAYS

    @property
    def is_expired(self) -> bool:
        return self.days_until_expiry is not None and self.days_until_expiry <= 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "server_id": self.server_id,
            "server_uuid": self.server_uuid,
            "identifier": self.identifier,
            "name": self.name,
            "status": self.status,
            "suspended": self.suspended,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "limits": dict(self.limits),
            "order_id": self.order_id,
            "order_status": self.order_status,
            "customer": self.customer,
            "package_id": self.package_id,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "days_until_expiry": self.days_until_expiry,
            "resources": {
                "memory_bytes": self.resources.memory_bytes,
                "cpu_absolute": self.resources.cpu_absolute,
                "disk_bytes": self.resources.disk_bytes,
                "uptime": self.resources.uptime,
            } if self.resources else None,
        }


class ServerMonitor:
    """
    Caches panel servers joined with their orders.

    A concurrent forced scan and a timer scan may overlap; whichever
    finishes last replaces the cache.
    """

    def __init__(
        self,
        panel: PanelClient,
        order_manager: OrderManager,
        config: PanelConfig,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.panel = panel
        self.order_manager = order_manager
        self.config = config
        self.clock = clock
        self._cache: Dict[str, ServerStatus] = {}
        self.last_update: Optional[datetime] = None
        self._task: Optional[RepeatingTask] = None

    # =========================================
    # SCANNING
    # =========================================

    async def scan_all(self) -> List[ServerStatus]:
        """Rebuild the cache from the panel. A failing server is skipped."""
        if not self.panel.is_configured():
            raise ConfigurationError("Pterodactyl Admin API is not configured")

        logger.info("Scanning all servers from panel")
        servers = await self.panel.list_servers()
        now = self.clock()

        snapshot: Dict[str, ServerStatus] = {}
        for server in servers:
            try:
                snapshot[server.uuid] = await self._build_status(server, now)
            except Exception as e:
                logger.error(f"Error processing server {server.name}: {e}", extra={"server_id": server.uuid})

        self._cache = snapshot
        self.last_update = now
        logger.info(f"Scanned {len(snapshot)} servers")
        return list(snapshot.values())

    async def _build_status(self, server: PanelServer, now: datetime) -> ServerStatus:
        status = ServerStatus(
            server_id=server.id,
            server_uuid=server.uuid,
            identifier=server.identifier,
            name=server.name,
            status="suspended" if server.suspended else "unknown",
            suspended=server.suspended,
            created_at=server.created_at,
            limits={
                "memory": server.limits.memory,
                "disk": server.limits.disk,
                "cpu": server.limits.cpu,
            },
        )

        if self.config.client_configured:
            try:
                usage = await self.panel.get_resource_usage(server.identifier or server.uuid)
                status.status = usage.current_state
                status.resources = usage
            except RemoteError as e:
                logger.debug(f"No live stats for {server.name}: {e}")
                status.status = "suspended" if server.suspended else "offline"

        order = await self._linked_order(server)
        if order:
            expiry = expiry_for(order)
            status.order_id = order.id
            status.order_status = order.status.value
            status.customer = order.customer.phone_number
            status.chat_id = order.customer.chat_id
            status.package_id = order.item.package_id
            status.expiry_date = expiry
            status.days_until_expiry = days_until(expiry, now)

        return status

    async def _linked_order(self, server: PanelServer) -> Optional[Order]:
        order_id = extract_order_id(server.name)
        if not order_id:
            return None
        order = await self.order_manager.get_order(order_id)
        if not order:
            return None
        if server_name_for(order) != server.name:
            logger.warning(
                f"Server name {server.name} does not match order {order.id}, not linking",
                extra={"server_id": server.uuid, "order_id": order.id},
            )
            return None
        return order

    async def get_server_list(self, force_refresh: bool = False) -> List[ServerStatus]:
        if force_refresh or not self._cache:
            return await self.scan_all()
        return list(self._cache.values())

    async def get_server(self, server_uuid: str, force_refresh: bool = False) -> Optional[ServerStatus]:
        if force_refresh:
            await self.scan_all()
        return self._cache.get(server_uuid)

    def get_server_status(self, server_ref: str) -> Optional[ServerStatus]:
        """Look up a cached server by panel id or UUID."""
        server_ref = str(server_ref)
        if server_ref in self._cache:
            return self._cache[server_ref]
        for status in self._cache.values():
            if str(status.server_id) == server_ref:
                return status
        return None

    # =========================================
    # SNAPSHOT QUERIES
    # =========================================

    @property
    def servers(self) -> List[ServerStatus]:
        return list(self._cache.values())

    def servers_by_customer(self, customer_phone: str) -> List[ServerStatus]:
        return [s for s in self._cache.values() if s.customer == customer_phone]

    def expiring_soon(self, days: int = EXPIRING_DAYS) -> List[ServerStatus]:
        return [
            s for s in self._cache.values()
            if s.days_until_expiry is not None and 0 < s.days_until_expiry <= days
        ]

    def expired(self) -> List[ServerStatus]:
        """Expired servers that are still running."""
        return [s for s in self._cache.values() if s.is_expired and not s.suspended]

    def filter_servers(
        self,
        status: Optional[str] = None,
        suspended: Optional[bool] = None,
        package_id: Optional[str] = None,
        customer: Optional[str] = None,
        expiring: bool = False,
        expired: bool = False,
    ) -> List[ServerStatus]:
        servers = list(self._cache.values())
        if status:
            servers = [s for s in servers if s.status == status]
        if suspended is not None:
            servers = [s for s in servers if s.suspended == suspended]
        if package_id:
            servers = [s for s in servers if s.package_id == package_id]
        if customer:
            servers = [s for s in servers if s.customer == customer]
        if expiring:
            servers = [s for s in servers if s.is_expiring]
        if expired:
            servers = [s for s in servers if s.is_expired]
        return servers

    def monitoring_stats(self) -> Dict[str, Any]:
        servers = list(self._cache.values())
        by_status: Dict[str, int] = {}
        total_memory = used_memory = total_disk = used_disk = 0
        cpu_total = 0.0
        sampled = 0

        for s in servers:
            key = "suspended" if s.suspended else s.status
            by_status[key] = by_status.get(key, 0) + 1
            total_memory += s.limits.get("memory", 0)
            total_disk += s.limits.get("disk", 0)
            if s.resources:
                used_memory += round(s.resources.memory_bytes / 1024 / 1024)
                used_disk += round(s.resources.disk_bytes / 1024 / 1024)
                cpu_total += s.resources.cpu_absolute
                sampled += 1

        return {
            "total_servers": len(servers),
            "active_servers": sum(1 for s in servers if not s.suspended),
            "suspended_servers": sum(1 for s in servers if s.suspended),
            "expiring_soon": sum(1 for s in servers if s.is_expiring),
            "expired_servers": sum(1 for s in servers if s.is_expired),
            "servers_by_status": by_status,
            "resource_usage": {
                "total_memory_mb": total_memory,
                "used_memory_mb": used_memory,
                "total_disk_mb": total_disk,
                "used_disk_mb": used_disk,
                "average_cpu_usage": cpu_total / sampled if sampled else 0.0,
            },
        }

    def cache_info(self) -> Dict[str, Any]:
        return {
            "last_update": self.last_update.isoformat() if self.last_update else None,
            "cached_servers": len(self._cache),
        }

    def clear_cache(self) -> None:
        self._cache = {}
        logger.info("Server cache cleared")

    # =========================================
    # TIMER
    # =========================================

    @property
    def is_monitoring(self) -> bool:
        return self._task is not None and self._task.is_running

    def start_monitoring(self, interval_minutes: float = 5) -> bool:
        """Scan now, then every interval. No-op when already running."""
        if self.is_monitoring:
            logger.info("Server monitoring is already running")
            return False
        self._task = RepeatingTask("server-monitor", self.scan_all, interval_minutes * 60)
        return self._task.start()

    async def stop_monitoring(self) -> None:
        if self._task:
            await self._task.stop()
            self._task = None
