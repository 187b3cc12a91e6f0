"""
Store Order Lifecycle Manager
=============================

Enforces the order state machine and is the single entry point for
provisioning a server for an order.

    pending -> confirmed -> processing -> completed -> refunded
       |           |            |
       +-----------+------------+--> cancelled

Reverting a failed provisioning from processing back to confirmed is the
one internal move outside the public transition table. It never leaves an
order stuck in processing.
"""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from . import messages
from .catalog import get_package, validate_package_id
from .errors import (
    ConfigurationError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from .models.order import (
    ORDER_STATUS_FLOW,
    Customer,
    Order,
    OrderFilter,
    OrderItem,
    OrderStats,
    OrderStatus,
    PackageSpecs,
    StatusHistoryEntry,
    utcnow,
)
from .order_store import OrderStore
from .provisioning import ProvisioningOrchestrator, ProvisioningResult

if TYPE_CHECKING:
    from .services.notifier import Notifier

logger = logging.getLogger(__name__)

MIN_DURATION = 1
MAX_DURATION = 12

PROVISIONABLE_STATUSES = (OrderStatus.CONFIRMED, OrderStatus.PROCESSING)
UNCANCELLABLE_STATUSES = (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


class OrderManager:
    """Order CRUD, status transitions and provisioning."""

    def __init__(
        self,
        store: OrderStore,
        orchestrator: ProvisioningOrchestrator,
        currency: str = "IDR",
        notifier: Optional["Notifier"] = None,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.currency = currency
        self.notifier = notifier

    async def initialize(self) -> None:
        await self.store.initialize()

    # =========================================
    # CREATE / READ
    # =========================================

    async def create_order(
        self,
        customer_phone: str,
        chat_id: str,
        package_id: str,
        duration: int,
        display_name: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Order:
        """Create a PENDING order priced from the catalog."""
        normalized = validate_package_id(package_id)
        if not normalized:
            raise ValidationError(f"Invalid package type: {package_id}")
        if not isinstance(duration, int) or not MIN_DURATION <= duration <= MAX_DURATION:
            raise ValidationError(
                f"Duration must be between {MIN_DURATION} and {MAX_DURATION} months"
            )

        package = get_package(normalized)
        now = utcnow()
        order = Order(
            id=await self.store.generate_order_id(),
            customer=Customer(
                phone_number=customer_phone,
                chat_id=chat_id,
                display_name=display_name,
            ),
            item=OrderItem(
                package_id=normalized,
                duration=duration,
                price=package.price,
                specifications=PackageSpecs(
                    ram=package.ram,
                    cpu=package.cpu,
                    storage=package.storage,
                    bandwidth=package.bandwidth,
                ),
            ),
            status=OrderStatus.PENDING,
            total_amount=package.price * duration,
            currency=self.currency,
            created_at=now,
            updated_at=now,
            status_history=[
                StatusHistoryEntry(
                    status=OrderStatus.PENDING,
                    timestamp=now,
                    updated_by="system",
                    notes="Order created",
                )
            ],
            notes=notes,
        )
        created = await self.store.create(order)
        await self._notify(created, messages.order_created(created))
        return created

    async def get_order(self, order_id: str) -> Optional[Order]:
        return await self.store.get(order_id)

    async def _require(self, order_id: str) -> Order:
        order = await self.store.get(order_id)
        if not order:
            raise NotFoundError(f"Order not found: {order_id}")
        return order

    async def _notify(self, order: Order, text: str) -> bool:
        """Best-effort customer message; never fails the calling operation."""
        if not self.notifier:
            return False
        recipient = order.customer.chat_id or order.customer.phone_number
        try:
            return await self.notifier.send(recipient, text)
        except Exception as e:
            logger.error(f"Failed to notify customer for order {order.id}: {e}", extra={"order_id": order.id})
            return False

    # =========================================
    # STATE MACHINE
    # =========================================

    async def update_status(
        self,
        order_id: str,
        new_status: OrderStatus,
        updated_by: str,
        notes: Optional[str] = None,
    ) -> Order:
        order = await self._require(order_id)
        allowed = ORDER_STATUS_FLOW[order.status]
        if new_status not in allowed:
            raise InvalidTransitionError(order.status, new_status, allowed)
        updated = await self.store.update_status(order_id, new_status, updated_by, notes)
        await self._notify(updated, messages.status_changed(updated))
        return updated

    async def cancel_order(
        self,
        order_id: str,
        cancelled_by: str,
        reason: Optional[str] = None,
    ) -> Order:
        order = await self._require(order_id)
        if order.status in UNCANCELLABLE_STATUSES:
            raise InvalidStateError(f"Cannot cancel order with status: {order.status.value}")
        cancelled = await self.store.update_status(
            order_id, OrderStatus.CANCELLED, cancelled_by, reason or "Order cancelled"
        )
        await self._notify(cancelled, messages.status_changed(cancelled))
        return cancelled

    async def delete_order(self, order_id: str) -> bool:
        """Delete a cancelled order. False if it does not exist."""
        order = await self.store.get(order_id)
        if not order:
            return False
        if order.status != OrderStatus.CANCELLED:
            raise InvalidStateError("Only cancelled orders can be deleted")
        return await self.store.delete(order_id)

    # =========================================
    # FIELD UPDATES
    # =========================================

    async def add_note(self, order_id: str, note: str, admin: bool = False) -> Optional[Order]:
        """Append a line to the customer or admin notes."""
        order = await self.store.get(order_id)
        if not order:
            return None
        field_name = "admin_notes" if admin else "notes"
        current = getattr(order, field_name)
        value = f"{current}\n{note}" if current else note
        return await self.store.update(order_id, **{field_name: value})

    async def set_payment_proof(self, order_id: str, payment_proof: str) -> Optional[Order]:
        return await self.store.update(order_id, payment_proof=payment_proof)

    async def set_server_id(self, order_id: str, server_id: str) -> Optional[Order]:
        return await self.store.update(order_id, server_id=server_id)

    # =========================================
    # QUERIES
    # =========================================

    async def search_orders(
        self,
        status: Optional[OrderStatus] = None,
        package_id: Optional[str] = None,
        customer_phone: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Order]:
        return await self.store.query(
            OrderFilter(
                status=status,
                package_id=package_id,
                customer_phone=customer_phone,
                date_from=date_from,
                date_to=date_to,
                limit=limit,
                offset=offset,
            )
        )

    async def orders_by_customer(self, customer_phone: str) -> List[Order]:
        return await self.store.by_customer(customer_phone)

    async def orders_by_status(self, status: OrderStatus) -> List[Order]:
        return await self.store.by_status(status)

    async def pending_orders(self) -> List[Order]:
        return await self.orders_by_status(OrderStatus.PENDING)

    async def processing_orders(self) -> List[Order]:
        return await self.orders_by_status(OrderStatus.PROCESSING)

    async def completed_orders(self) -> List[Order]:
        return await self.orders_by_status(OrderStatus.COMPLETED)

    async def stats(self) -> OrderStats:
        return await self.store.stats()

    async def backup(self) -> str:
        return await self.store.backup()

    # =========================================
    # PROVISIONING
    # =========================================

    async def provision_server(self, order_id: str) -> ProvisioningResult:
        """
        Provision the panel user and server for a confirmed order.

        Raises NotFoundError, InvalidStateError, or ConfigurationError when
        the panel is unusable. A confirmed order is left untouched in those
        cases; one retried from processing goes back to confirmed.
        Otherwise the order ends COMPLETED on success or back in CONFIRMED
        with the failure reason in its history, and the customer is told
        either way.
        """
        order = await self._require(order_id)
        if order.status not in PROVISIONABLE_STATUSES:
            raise InvalidStateError(
                f"Order {order_id} is not in correct status for provisioning "
                f"(current: {order.status.value})"
            )

        try:
            await self.orchestrator.ensure_ready()
        except ConfigurationError as e:
            if order.status == OrderStatus.PROCESSING:
                await self.store.update_status(
                    order_id, OrderStatus.CONFIRMED, "system", f"Auto-provisioning unavailable: {e}"
                )
            raise

        logger.info(f"Starting auto-provisioning for order {order_id}", extra={"order_id": order_id})
        await self.store.update_status(
            order_id, OrderStatus.PROCESSING, "system", "Auto-provisioning started"
        )

        try:
            result = await self.orchestrator.provision(order, preflight=False)
        except Exception as e:
            logger.error(f"Auto-provisioning error for order {order_id}: {e}", extra={"order_id": order_id})
            reverted = await self.store.update_status(
                order_id, OrderStatus.CONFIRMED, "system", f"Auto-provisioning error: {e}"
            )
            await self._notify(reverted, messages.provisioning_delayed(reverted))
            return ProvisioningResult(success=False, error=str(e))

        if result.success and result.server:
            await self.store.update(order_id, server_id=result.server.uuid)
            await self.add_note(
                order_id,
                f"Auto-provisioned: Server ID {result.server.id}, "
                f"User ID {result.user.id if result.user else None}",
                admin=True,
            )
            completed = await self.store.update_status(
                order_id,
                OrderStatus.COMPLETED,
                "system",
                "Auto-provisioning completed successfully",
            )
            if result.credentials:
                await self._notify(completed, messages.server_ready(completed, result.credentials))
            logger.info(
                f"Auto-provisioning completed successfully for order {order_id}",
                extra={"order_id": order_id, "server_id": result.server.uuid},
            )
        else:
            reverted = await self.store.update_status(
                order_id, OrderStatus.CONFIRMED, "system", f"Auto-provisioning failed: {result.error}"
            )
            await self._notify(reverted, messages.provisioning_delayed(reverted))
            logger.error(
                f"Auto-provisioning failed for order {order_id}: {result.error}",
                extra={"order_id": order_id},
            )
        return result

    async def retry_provisioning(self, order_id: str) -> ProvisioningResult:
        logger.info(f"Retrying provisioning for order {order_id}", extra={"order_id": order_id})
        return await self.provision_server(order_id)

    async def provisioning_status(self) -> Dict[str, Any]:
        configured = self.orchestrator.is_configured()
        healthy = await self.orchestrator.test_connection() if configured else False
        return {
            "enabled": configured,
            "configured": configured,
            "healthy": healthy,
            "mapped_packages": self.orchestrator.mappings.package_ids() if configured else [],
        }
