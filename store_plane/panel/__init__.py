"""Hosting panel (Pterodactyl) API client and data classes."""

from .client import PanelClient, RemoteError
from .models import (
    PanelAllocation,
    PanelNode,
    PanelServer,
    PanelUser,
    ResourceUsage,
    ServerLimits,
)

__all__ = [
    "PanelClient",
    "RemoteError",
    "PanelAllocation",
    "PanelNode",
    "PanelServer",
    "PanelUser",
    "ResourceUsage",
    "ServerLimits",
]
