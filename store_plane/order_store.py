"""
Store Order Repository
======================

JSON file backed order store.

All orders live in memory and the whole set is rewritten to
``<data_dir>/orders.json`` after every mutation. Writes are serialized
through an asyncio lock so status history entries are never interleaved.
Reads hand out deep copies; callers cannot mutate stored state.
"""

import asyncio
import json
import logging
import os
import random
import string
import time
from dataclasses import fields
from datetime import datetime
from typing import Any, Dict, List, Optional

from .errors import StoreError, ValidationError
from .models.order import (
    Order,
    OrderFilter,
    OrderStats,
    OrderStatus,
    StatusHistoryEntry,
    utcnow,
)

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase

# Fields that may never be overwritten through update()
_IMMUTABLE_FIELDS = {"id", "created_at", "status", "status_history"}
_ORDER_FIELDS = {f.name for f in fields(Order)}


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


class OrderStore:
    """
    Durable key-value store of orders keyed by order id.

    Must be initialized with ``await store.initialize()`` before use.
    """

    def __init__(self, data_dir: str, filename: str = "orders.json"):
        self.data_dir = data_dir
        self.file_path = os.path.join(data_dir, filename)
        self._orders: Dict[str, Order] = {}
        self._lock = asyncio.Lock()
        self._initialized = False

    # =========================================
    # PERSISTENCE
    # =========================================

    async def initialize(self) -> None:
        """Create the data directory and load existing orders."""
        if self._initialized:
            return

        await asyncio.to_thread(os.makedirs, self.data_dir, exist_ok=True)
        self._orders = await asyncio.to_thread(self._load_sync)
        self._initialized = True
        logger.info(f"Order storage initialized with {len(self._orders)} orders")

    def _load_sync(self) -> Dict[str, Order]:
        if not os.path.exists(self.file_path):
            logger.info("No existing orders file found, starting with empty storage")
            return {}

        with open(self.file_path, "r", encoding="utf-8") as f:
            raw = json.load(f)

        orders = {}
        for data in raw:
            order = Order.from_dict(data)
            orders[order.id] = order
        logger.info(f"Loaded {len(orders)} orders from {self.file_path}")
        return orders

    def _write_sync(self, path: str, payload: List[Dict[str, Any]]) -> None:
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, path)

    async def _save(self) -> None:
        payload = [o.to_dict() for o in self._orders.values()]
        await asyncio.to_thread(self._write_sync, self.file_path, payload)
        logger.debug(f"Saved {len(payload)} orders to storage")

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise StoreError("Order storage not initialized")

    # =========================================
    # CRUD
    # =========================================

    async def generate_order_id(self) -> str:
        """Generate ``ORD-<time36>-<rand6>``, re-drawing on collision."""
        self._require_initialized()
        while True:
            timestamp = _to_base36(int(time.time() * 1000))
            suffix = "".join(random.choices(_BASE36, k=6))
            order_id = f"ORD-{timestamp}-{suffix}".upper()
            if order_id not in self._orders:
                return order_id

    async def create(self, order: Order) -> Order:
        self._require_initialized()
        async with self._lock:
            if order.id in self._orders:
                raise ValidationError(f"Order with ID {order.id} already exists")
            self._orders[order.id] = order.copy()
            await self._save()

        logger.info(
            f"Created new order: {order.id} for customer {order.customer.phone_number}",
            extra={"order_id": order.id},
        )
        return order.copy()

    async def get(self, order_id: str) -> Optional[Order]:
        self._require_initialized()
        order = self._orders.get(order_id)
        return order.copy() if order else None

    async def update(self, order_id: str, **updates) -> Optional[Order]:
        """Merge plain fields into an order. Id, status and history are protected."""
        self._require_initialized()
        bad = _IMMUTABLE_FIELDS.intersection(updates)
        if bad:
            raise ValidationError(f"Fields cannot be updated directly: {', '.join(sorted(bad))}")
        unknown = set(updates) - _ORDER_FIELDS
        if unknown:
            raise ValidationError(f"Unknown order field: {', '.join(sorted(unknown))}")

        async with self._lock:
            order = self._orders.get(order_id)
            if not order:
                return None
            for key, value in updates.items():
                setattr(order, key, value)
            order.updated_at = utcnow()
            await self._save()
            result = order.copy()

        logger.info(f"Updated order: {order_id}", extra={"order_id": order_id})
        return result

    async def update_status(
        self,
        order_id: str,
        new_status: OrderStatus,
        updated_by: str,
        notes: Optional[str] = None,
    ) -> Optional[Order]:
        """Set status and append the matching history entry."""
        self._require_initialized()
        async with self._lock:
            order = self._orders.get(order_id)
            if not order:
                return None
            now = utcnow()
            order.status = new_status
            order.updated_at = now
            order.status_history.append(
                StatusHistoryEntry(status=new_status, timestamp=now, updated_by=updated_by, notes=notes)
            )
            await self._save()
            result = order.copy()

        logger.info(
            f"Updated order status: {order_id} -> {new_status.value} by {updated_by}",
            extra={"order_id": order_id},
        )
        return result

    async def delete(self, order_id: str) -> bool:
        self._require_initialized()
        async with self._lock:
            if order_id not in self._orders:
                return False
            del self._orders[order_id]
            await self._save()

        logger.info(f"Deleted order: {order_id}", extra={"order_id": order_id})
        return True

    # =========================================
    # QUERIES
    # =========================================

    async def query(self, order_filter: Optional[OrderFilter] = None) -> List[Order]:
        """Filtered orders, newest first, with offset/limit pagination."""
        self._require_initialized()
        order_filter = order_filter or OrderFilter()

        orders = [o for o in self._orders.values() if order_filter.matches(o)]
        orders.sort(key=lambda o: o.created_at, reverse=True)

        if order_filter.offset:
            orders = orders[order_filter.offset:]
        if order_filter.limit:
            orders = orders[:order_filter.limit]

        return [o.copy() for o in orders]

    async def by_customer(self, customer_phone: str) -> List[Order]:
        return await self.query(OrderFilter(customer_phone=customer_phone))

    async def by_status(self, status: OrderStatus) -> List[Order]:
        return await self.query(OrderFilter(status=status))

    async def count(self) -> int:
        self._require_initialized()
        return len(self._orders)

    async def stats(self, now: Optional[datetime] = None) -> OrderStats:
        """Aggregate counts and revenue. Revenue counts completed orders only."""
        self._require_initialized()
        now = now or utcnow()
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        month_start = today.replace(day=1)

        stats = OrderStats(orders_by_status={s.value: 0 for s in OrderStatus})
        for order in self._orders.values():
            stats.total_orders += 1
            stats.orders_by_status[order.status.value] += 1
            pkg = order.item.package_id
            stats.orders_by_package[pkg] = stats.orders_by_package.get(pkg, 0) + 1

            if order.status == OrderStatus.COMPLETED:
                stats.total_revenue += order.total_amount
            if order.created_at >= today:
                stats.orders_today += 1
            if order.created_at >= month_start:
                stats.orders_this_month += 1

        completed = stats.orders_by_status[OrderStatus.COMPLETED.value]
        stats.average_order_value = stats.total_revenue / completed if completed else 0.0
        return stats

    async def backup(self) -> str:
        """Write a timestamped copy of all orders next to the main file."""
        self._require_initialized()
        timestamp = utcnow().strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        backup_path = os.path.join(self.data_dir, f"orders-backup-{timestamp}.json")

        async with self._lock:
            payload = [o.to_dict() for o in self._orders.values()]
            await asyncio.to_thread(self._write_sync, backup_path, payload)

        logger.info(f"Created order backup: {backup_path}")
        return backup_path
