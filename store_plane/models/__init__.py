"""Data models for the store plane."""

from .order import (
    Customer,
    Order,
    OrderFilter,
    OrderItem,
    OrderStats,
    OrderStatus,
    PackageSpecs,
    StatusHistoryEntry,
    ORDER_STATUS_FLOW,
)

__all__ = [
    "Customer",
    "Order",
    "OrderFilter",
    "OrderItem",
    "OrderStats",
    "OrderStatus",
    "PackageSpecs",
    "StatusHistoryEntry",
    "ORDER_STATUS_FLOW",
]
