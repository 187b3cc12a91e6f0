"""
Store Order Model
=================

Orders move through a fixed state machine:

    pending -> confirmed -> processing -> completed -> refunded
       |           |            |
       +-----------+------------+--> cancelled

The status history is append-only; its last entry always carries the
order's current status.
"""

import copy
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Any


def utcnow() -> datetime:
    """Timezone-aware current time. All stored timestamps are UTC."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into an aware datetime."""
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class OrderStatus(Enum):
    """Order lifecycle states."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @property
    def label(self) -> str:
        return {
            OrderStatus.PENDING: "Awaiting confirmation",
            OrderStatus.CONFIRMED: "Confirmed",
            OrderStatus.PROCESSING: "Being processed",
            OrderStatus.COMPLETED: "Completed",
            OrderStatus.CANCELLED: "Cancelled",
            OrderStatus.REFUNDED: "Refunded",
        }[self]

    @property
    def icon(self) -> str:
        return {
            OrderStatus.PENDING: "⏳",
            OrderStatus.CONFIRMED: "✅",
            OrderStatus.PROCESSING: "🔄",
            OrderStatus.COMPLETED: "🎉",
            OrderStatus.CANCELLED: "❌",
            OrderStatus.REFUNDED: "💰",
        }[self]

    @property
    def is_terminal(self) -> bool:
        return not ORDER_STATUS_FLOW[self]


ORDER_STATUS_FLOW: Dict[OrderStatus, List[OrderStatus]] = {
    OrderStatus.PENDING: [OrderStatus.CONFIRMED, OrderStatus.CANCELLED],
    OrderStatus.CONFIRMED: [OrderStatus.PROCESSING, OrderStatus.CANCELLED],
    OrderStatus.PROCESSING: [OrderStatus.COMPLETED, OrderStatus.CANCELLED],
    OrderStatus.COMPLETED: [OrderStatus.REFUNDED],
    OrderStatus.CANCELLED: [],
    OrderStatus.REFUNDED: [],
}


@dataclass
class Customer:
    phone_number: str
    chat_id: str
    display_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Customer":
        return cls(
            phone_number=data["phone_number"],
            chat_id=data.get("chat_id", ""),
            display_name=data.get("display_name"),
        )


@dataclass
class PackageSpecs:
    """Resource snapshot taken from the catalog when the order is placed."""
    ram: str
    cpu: str
    storage: str
    bandwidth: str


@dataclass
class OrderItem:
    package_id: str
    duration: int  # months
    price: int  # unit price per month
    specifications: PackageSpecs

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderItem":
        return cls(
            package_id=data["package_id"],
            duration=int(data["duration"]),
            price=data["price"],
            specifications=PackageSpecs(**data["specifications"]),
        )


@dataclass
class StatusHistoryEntry:
    status: OrderStatus
    timestamp: datetime
    updated_by: str  # admin identifier or "system"
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "updated_by": self.updated_by,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatusHistoryEntry":
        return cls(
            status=OrderStatus(data["status"]),
            timestamp=parse_timestamp(data["timestamp"]),
            updated_by=data.get("updated_by", "system"),
            notes=data.get("notes"),
        )


@dataclass
class Order:
    """A customer's order for one package over a number of months."""
    id: str
    customer: Customer
    item: OrderItem
    status: OrderStatus
    total_amount: int
    currency: str
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    status_history: List[StatusHistoryEntry] = field(default_factory=list)

    notes: Optional[str] = None
    admin_notes: Optional[str] = None
    payment_proof: Optional[str] = None
    server_id: Optional[str] = None  # panel server UUID once provisioned

    def copy(self) -> "Order":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for JSON storage."""
        return {
            "id": self.id,
            "customer": self.customer.to_dict(),
            "item": self.item.to_dict(),
            "status": self.status.value,
            "total_amount": self.total_amount,
            "currency": self.currency,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "status_history": [h.to_dict() for h in self.status_history],
            "notes": self.notes,
            "admin_notes": self.admin_notes,
            "payment_proof": self.payment_proof,
            "server_id": self.server_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Order":
        """Deserialize from storage."""
        return cls(
            id=data["id"],
            customer=Customer.from_dict(data["customer"]),
            item=OrderItem.from_dict(data["item"]),
            status=OrderStatus(data["status"]),
            total_amount=data["total_amount"],
            currency=data.get("currency", "IDR"),
            created_at=parse_timestamp(data["created_at"]),
            updated_at=parse_timestamp(data["updated_at"]),
            status_history=[
                StatusHistoryEntry.from_dict(h) for h in data.get("status_history", [])
            ],
            notes=data.get("notes"),
            admin_notes=data.get("admin_notes"),
            payment_proof=data.get("payment_proof"),
            server_id=data.get("server_id"),
        )


@dataclass
class OrderFilter:
    """Query parameters for the order repository. Unset fields match all."""
    status: Optional[OrderStatus] = None
    package_id: Optional[str] = None
    customer_phone: Optional[str] = None  # substring match
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    limit: Optional[int] = None
    offset: Optional[int] = None

    def matches(self, order: Order) -> bool:
        if self.status and order.status != self.status:
            return False
        if self.package_id and order.item.package_id != self.package_id:
            return False
        if self.customer_phone and self.customer_phone not in order.customer.phone_number:
            return False
        if self.date_from and order.created_at < self.date_from:
            return False
        if self.date_to and order.created_at > self.date_to:
            return False
        return True


@dataclass
class OrderStats:
    total_orders: int = 0
    orders_by_status: Dict[str, int] = field(default_factory=dict)
    orders_by_package: Dict[str, int] = field(default_factory=dict)
    total_revenue: int = 0
    average_order_value: float = 0.0
    orders_today: int = 0
    orders_this_month: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
