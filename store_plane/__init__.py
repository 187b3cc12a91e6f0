"""
Hostpanel Store Plane
=====================

Order handling and server lifecycle automation for hosted-server
subscriptions sold through the store.

This package provides:
- Order state machine and JSON order repository
- Transactional provisioning on the hosting panel (user + server)
- Periodic server reconciliation against orders
- Subscription expiry notifications and auto-suspension
"""

__version__ = "1.0.0"
