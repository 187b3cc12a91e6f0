"""
Store Plane Errors
==================

Exception taxonomy shared by the order manager, the provisioning
orchestrator and the subscription scheduler. Remote panel failures are
raised as ``store_plane.panel.client.RemoteError``.
"""


class StoreError(Exception):
    """Base exception for store plane errors."""


class ValidationError(StoreError):
    """Bad input, rejected before any state change."""


class NotFoundError(StoreError):
    """Unknown order or server id."""


class InvalidTransitionError(StoreError):
    """Requested status is not reachable from the current status."""

    def __init__(self, current, requested, allowed):
        self.current = current
        self.requested = requested
        self.allowed = list(allowed)
        allowed_str = ", ".join(s.value for s in self.allowed) or "none"
        super().__init__(
            f"Invalid status transition from {current.value} to {requested.value}. "
            f"Allowed transitions: {allowed_str}"
        )


class InvalidStateError(StoreError):
    """Operation not permitted for the order's current status."""


class ConfigurationError(StoreError):
    """Panel not configured, unhealthy, or no resource mapping."""


class ResourceExhaustionError(StoreError):
    """No free network allocation, even after requesting new ports."""


class PaymentRequiredError(StoreError):
    """Renewal attempted without confirmed payment."""
