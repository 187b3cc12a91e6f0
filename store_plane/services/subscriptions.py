"""
Subscription Scheduler
======================

Runs on its own timer, independent of the server monitor.

Each pass:
1. Forces a monitor scan
2. Derives one subscription per order-linked server
3. Sends expiry reminders at 7, 3 and 1 days left, and once on expiry
4. Suspends servers that are past expiry by the grace period

Reminder keys already sent and the set of servers being suspended live in
memory for the life of the process.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from .. import messages
from ..config import SchedulerConfig
from ..errors import NotFoundError, PaymentRequiredError
from ..models.order import Order, OrderStatus, utcnow
from ..order_manager import OrderManager
from ..panel import PanelClient
from ..provisioning import server_name_for
from .monitor import EXPIRING_DAYS, ServerMonitor, ServerStatus, extract_order_id
from .notifier import Notifier
from .scheduler import RepeatingTask

logger = logging.getLogger(__name__)

EXPIRED_KEY = "expired"


def threshold_key(days: int) -> str:
    return "1day" if days == 1 else f"{days}days"


class SubscriptionStatus(Enum):
    ACTIVE = "active"
    EXPIRING = "expiring"
    EXPIRED = "expired"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


def derive_status(server: ServerStatus) -> SubscriptionStatus:
    """Suspension wins over everything, then order cancellation, then expiry."""
    if server.suspended:
        return SubscriptionStatus.SUSPENDED
    if server.order_status in (OrderStatus.CANCELLED.value, OrderStatus.REFUNDED.value):
        return SubscriptionStatus.CANCELLED
    if server.days_until_expiry is None:
        return SubscriptionStatus.ACTIVE
    if server.days_until_expiry <= 0:
        return SubscriptionStatus.EXPIRED
    if server.days_until_expiry <= EXPIRING_DAYS:
        return SubscriptionStatus.EXPIRING
    return SubscriptionStatus.ACTIVE


@dataclass
class SubscriptionView:
    order_id: str
    server_id: str
    server_uuid: str
    customer_phone: str
    chat_id: Optional[str]
    package_id: str
    created_at: Optional[datetime]
    expiry_date: datetime
    days_until_expiry: int
    status: SubscriptionStatus
    notifications_sent: List[str] = field(default_factory=list)

    @property
    def recipient(self) -> str:
        return self.chat_id or self.customer_phone

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "server_id": self.server_id,
            "server_uuid": self.server_uuid,
            "customer_phone": self.customer_phone,
            "package_id": self.package_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "expiry_date": self.expiry_date.isoformat(),
            "days_until_expiry": self.days_until_expiry,
            "status": self.status.value,
            "notifications_sent": list(self.notifications_sent),
        }


@dataclass
class SuspensionResult:
    success: bool
    server_id: str
    server_name: str
    reason: str
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "server_id": self.server_id,
            "server_name": self.server_name,
            "reason": self.reason,
            "error": self.error,
        }


class SubscriptionScheduler:
    """Expiry reminders and automatic suspension for provisioned orders."""

    def __init__(
        self,
        panel: PanelClient,
        monitor: ServerMonitor,
        order_manager: OrderManager,
        notifier: Notifier,
        config: Optional[SchedulerConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.panel = panel
        self.monitor = monitor
        self.order_manager = order_manager
        self.notifier = notifier
        self.config = config or SchedulerConfig()
        self.clock = clock

        self.notifications_sent: Dict[str, Set[str]] = {}
        self.suspension_queue: Set[str] = set()
        self.last_run: Optional[datetime] = None
        self._task: Optional[RepeatingTask] = None

    # =========================================
    # PASSES
    # =========================================

    async def process_subscriptions(self) -> Dict[str, int]:
        """One full pass over every subscription."""
        logger.info("Processing subscriptions")
        servers = await self.monitor.get_server_list(force_refresh=True)
        subscriptions = self._build_subscriptions(servers)

        sent = await self._send_expiry_notifications(subscriptions)
        suspended = await self._process_auto_suspensions(subscriptions)

        self.last_run = self.clock()
        logger.info(f"Processed {len(subscriptions)} subscriptions")
        return {"processed": len(subscriptions), "notifications": sent, "suspended": suspended}

    async def process_subscription(self, order_id: str) -> Optional[SubscriptionView]:
        """Forced pass for a single order. None if the order has no server."""
        servers = await self.monitor.get_server_list(force_refresh=True)
        subscriptions = [s for s in self._build_subscriptions(servers) if s.order_id == order_id]
        if not subscriptions:
            return None
        await self._send_expiry_notifications(subscriptions)
        await self._process_auto_suspensions(subscriptions)
        return self._with_sent(subscriptions[0])

    def _build_subscriptions(self, servers: List[ServerStatus]) -> List[SubscriptionView]:
        subscriptions = []
        for server in servers:
            if not (server.order_id and server.expiry_date and server.customer):
                continue
            subscriptions.append(
                SubscriptionView(
                    order_id=server.order_id,
                    server_id=str(server.server_id),
                    server_uuid=server.server_uuid,
                    customer_phone=server.customer,
                    chat_id=server.chat_id,
                    package_id=server.package_id or "unknown",
                    created_at=server.created_at,
                    expiry_date=server.expiry_date,
                    days_until_expiry=server.days_until_expiry or 0,
                    status=derive_status(server),
                    notifications_sent=sorted(self.notifications_sent.get(server.order_id, ())),
                )
            )
        return subscriptions

    def _with_sent(self, subscription: SubscriptionView) -> SubscriptionView:
        subscription.notifications_sent = sorted(self.notifications_sent.get(subscription.order_id, ()))
        return subscription

    async def _notify_once(self, subscription: SubscriptionView, key: str, text: str) -> bool:
        """Send unless this key already went out for the order."""
        sent = self.notifications_sent.setdefault(subscription.order_id, set())
        if key in sent:
            return False
        sent.add(key)
        if not await self.notifier.send(subscription.recipient, text):
            sent.discard(key)
            logger.error(
                f"Failed to send {key} notification for order {subscription.order_id}",
                extra={"order_id": subscription.order_id},
            )
            return False
        logger.info(
            f"Sent {key} notification to {subscription.customer_phone}",
            extra={"order_id": subscription.order_id, "customer": subscription.customer_phone},
        )
        return True

    async def _send_expiry_notifications(self, subscriptions: List[SubscriptionView]) -> int:
        count = 0
        for sub in subscriptions:
            if sub.status in (SubscriptionStatus.CANCELLED, SubscriptionStatus.SUSPENDED):
                continue
            try:
                for threshold in self.config.notification_thresholds:
                    if sub.days_until_expiry == threshold:
                        text = messages.expiry_warning(sub.package_id, threshold, sub.expiry_date)
                        count += await self._notify_once(sub, threshold_key(threshold), text)

                if sub.status == SubscriptionStatus.EXPIRED:
                    text = messages.expired_notice(sub.package_id, sub.expiry_date)
                    count += await self._notify_once(sub, EXPIRED_KEY, text)
            except Exception as e:
                logger.error(f"Notification failed for order {sub.order_id}: {e}", extra={"order_id": sub.order_id})
        return count

    async def _process_auto_suspensions(self, subscriptions: List[SubscriptionView]) -> int:
        due = [
            s for s in subscriptions
            if s.status == SubscriptionStatus.EXPIRED
            and s.days_until_expiry <= -self.config.grace_days
        ]
        logger.info(f"Found {len(due)} subscriptions for auto-suspension")

        suspended = 0
        for sub in due:
            if sub.server_id in self.suspension_queue:
                logger.info(f"Suspension of server {sub.server_id} already in progress, skipping")
                continue

            self.suspension_queue.add(sub.server_id)
            try:
                result = await self.suspend_server(
                    sub.server_id,
                    f"Auto-suspended: Subscription expired on {sub.expiry_date.strftime('%Y-%m-%d')}",
                )
                if result.success:
                    suspended += 1
                    await self.notifier.send(
                        sub.recipient, messages.suspension_notice(sub.package_id, self.clock())
                    )
                    logger.info(
                        f"Auto-suspended server {sub.server_id} for expired subscription",
                        extra={"order_id": sub.order_id, "server_id": sub.server_uuid},
                    )
                else:
                    logger.error(f"Failed to auto-suspend server {sub.server_id}: {result.error}")
            except Exception as e:
                logger.error(f"Error during auto-suspension of server {sub.server_id}: {e}")
            finally:
                self.suspension_queue.discard(sub.server_id)
        return suspended

    # =========================================
    # SUSPEND / RESUME / RENEW
    # =========================================

    async def suspend_server(self, server_id: str, reason: str = "Manual suspension") -> SuspensionResult:
        """Suspend a panel server. Already suspended counts as success."""
        return await self._set_suspended(server_id, True, reason)

    async def resume_server(self, server_id: str, reason: str = "Manual resume") -> SuspensionResult:
        """Unsuspend a panel server. Already active counts as success."""
        return await self._set_suspended(server_id, False, reason)

    async def _set_suspended(self, server_id: str, suspend: bool, reason: str) -> SuspensionResult:
        action = "Suspending" if suspend else "Resuming"
        logger.info(f"{action} server {server_id}: {reason}")
        try:
            server = await self.panel.get_server(int(server_id))
            if server.suspended == suspend:
                return SuspensionResult(
                    success=True,
                    server_id=str(server_id),
                    server_name=server.name,
                    reason="Server already suspended" if suspend else "Server already active",
                )

            if suspend:
                await self.panel.suspend_server(server.id)
            else:
                await self.panel.unsuspend_server(server.id)

            order = await self._order_for_server(server.name)
            if order:
                verb = "suspended" if suspend else "resumed"
                await self.order_manager.add_note(order.id, f"Server {verb}: {reason}", admin=True)

            return SuspensionResult(
                success=True, server_id=str(server_id), server_name=server.name, reason=reason
            )
        except Exception as e:
            logger.error(f"Failed {action.lower()} server {server_id}: {e}")
            return SuspensionResult(
                success=False, server_id=str(server_id), server_name="Unknown", reason=reason, error=str(e)
            )

    async def _order_for_server(self, server_name: str) -> Optional[Order]:
        """The order behind a server name, only if the name round-trips."""
        order_id = extract_order_id(server_name)
        if not order_id:
            return None
        order = await self.order_manager.get_order(order_id)
        if not order or server_name_for(order) != server_name:
            return None
        return order

    async def renew_subscription(
        self,
        order_id: str,
        duration: int,
        payment_received: bool,
        notes: Optional[str] = None,
    ) -> Order:
        """
        Renew by placing a new order for the same customer and package.

        The original order only gets an admin note; its expiry is never
        extended. A suspended server is resumed on a best-effort basis,
        judged from a fresh panel scan.
        """
        order = await self.order_manager.get_order(order_id)
        if not order:
            raise NotFoundError(f"Order not found: {order_id}")
        if not payment_received:
            raise PaymentRequiredError("Payment must be received before renewal")

        renewal = await self.order_manager.create_order(
            customer_phone=order.customer.phone_number,
            chat_id=order.customer.chat_id,
            package_id=order.item.package_id,
            duration=duration,
            display_name=order.customer.display_name,
        )
        note = f"Renewed with order {renewal.id} for {duration} months."
        if notes:
            note = f"{note} {notes}"
        await self.order_manager.add_note(order_id, note, admin=True)

        # The renewal is already stored; a panel failure here must not fail it.
        try:
            await self._resume_after_renewal(order_id, renewal.id)
        except Exception as e:
            logger.error(
                f"Could not resume server for renewed order {order_id}: {e}",
                extra={"order_id": order_id},
            )

        logger.info(f"Subscription renewed: {order_id} -> {renewal.id}", extra={"order_id": order_id})
        return renewal

    async def _resume_after_renewal(self, order_id: str, renewal_id: str) -> None:
        servers = await self.monitor.get_server_list(force_refresh=True)
        for server in servers:
            if server.order_id == order_id and server.suspended:
                result = await self.resume_server(str(server.server_id), f"Subscription renewed: {renewal_id}")
                if not result.success:
                    logger.error(
                        f"Failed to resume server {server.server_id} after renewal: {result.error}",
                        extra={"order_id": order_id},
                    )
                return

    # =========================================
    # QUERIES
    # =========================================

    async def get_subscriptions(self) -> List[SubscriptionView]:
        servers = await self.monitor.get_server_list()
        return self._build_subscriptions(servers)

    async def get_subscription(self, order_id: str) -> Optional[SubscriptionView]:
        for sub in await self.get_subscriptions():
            if sub.order_id == order_id:
                return sub
        return None

    async def subscriptions_by_customer(self, customer_phone: str) -> List[SubscriptionView]:
        return [s for s in await self.get_subscriptions() if s.customer_phone == customer_phone]

    async def expiring_subscriptions(self, days: int = EXPIRING_DAYS) -> List[SubscriptionView]:
        return [
            s for s in await self.get_subscriptions()
            if s.status == SubscriptionStatus.EXPIRING and 0 < s.days_until_expiry <= days
        ]

    async def expired_subscriptions(self) -> List[SubscriptionView]:
        return [s for s in await self.get_subscriptions() if s.status == SubscriptionStatus.EXPIRED]

    # =========================================
    # TIMER
    # =========================================

    @property
    def is_running(self) -> bool:
        return self._task is not None and self._task.is_running

    def start_scheduler(self, interval_hours: float = 6) -> bool:
        if self.is_running:
            logger.info("Subscription scheduler is already running")
            return False
        self._task = RepeatingTask(
            "subscription-scheduler", self.process_subscriptions, interval_hours * 3600
        )
        return self._task.start()

    async def stop_scheduler(self) -> None:
        if self._task:
            await self._task.stop()
            self._task = None

    def scheduler_status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "interval_hours": self._task.interval_seconds / 3600 if self._task else None,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "suspension_queue_size": len(self.suspension_queue),
            "suspension_queue": sorted(self.suspension_queue),
            "tracked_notifications": sum(len(v) for v in self.notifications_sent.values()),
        }
