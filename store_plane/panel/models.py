"""
Hosting Panel Data Classes
==========================

Typed views over the panel's JSON ``attributes`` payloads.
Only the fields the store plane reads are modelled; the raw payload is
kept on each object for anything else.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from ..models.order import parse_timestamp


@dataclass
class PanelUser:
    id: int
    uuid: str
    username: str
    email: str
    first_name: str = ""
    last_name: str = ""
    root_admin: bool = False
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_api(cls, attrs: Dict[str, Any]) -> "PanelUser":
        return cls(
            id=int(attrs["id"]),
            uuid=attrs.get("uuid", ""),
            username=attrs.get("username", ""),
            email=attrs.get("email", ""),
            first_name=attrs.get("first_name", ""),
            last_name=attrs.get("last_name", ""),
            root_admin=bool(attrs.get("root_admin", False)),
            raw=attrs,
        )


@dataclass
class ServerLimits:
    memory: int = 0  # MB
    swap: int = 0
    disk: int = 0  # MB
    io: int = 500
    cpu: int = 0  # percent

    @classmethod
    def from_api(cls, attrs: Optional[Dict[str, Any]]) -> "ServerLimits":
        attrs = attrs or {}
        return cls(
            memory=int(attrs.get("memory") or 0),
            swap=int(attrs.get("swap") or 0),
            disk=int(attrs.get("disk") or 0),
            io=int(attrs.get("io") or 0),
            cpu=int(attrs.get("cpu") or 0),
        )


@dataclass
class PanelServer:
    id: int
    uuid: str
    identifier: str
    name: str
    suspended: bool
    limits: ServerLimits
    user: Optional[int] = None
    node: Optional[int] = None
    description: str = ""
    created_at: Optional[datetime] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_api(cls, attrs: Dict[str, Any]) -> "PanelServer":
        created = attrs.get("created_at")
        # Panel v1 reports status="suspended"; older versions a boolean flag
        suspended = bool(attrs.get("suspended", False)) or attrs.get("status") == "suspended"
        return cls(
            id=int(attrs["id"]),
            uuid=attrs.get("uuid", ""),
            identifier=attrs.get("identifier", ""),
            name=attrs.get("name", ""),
            suspended=suspended,
            limits=ServerLimits.from_api(attrs.get("limits")),
            user=attrs.get("user"),
            node=attrs.get("node"),
            description=attrs.get("description") or "",
            created_at=parse_timestamp(created) if created else None,
            raw=attrs,
        )


@dataclass
class PanelNode:
    id: int
    name: str
    fqdn: str
    maintenance_mode: bool = False

    @classmethod
    def from_api(cls, attrs: Dict[str, Any]) -> "PanelNode":
        return cls(
            id=int(attrs["id"]),
            name=attrs.get("name", ""),
            fqdn=attrs.get("fqdn", ""),
            maintenance_mode=bool(attrs.get("maintenance_mode", False)),
        )


@dataclass
class PanelAllocation:
    id: int
    ip: str
    port: int
    assigned: bool
    alias: Optional[str] = None

    @classmethod
    def from_api(cls, attrs: Dict[str, Any]) -> "PanelAllocation":
        return cls(
            id=int(attrs["id"]),
            ip=attrs.get("ip", ""),
            port=int(attrs.get("port", 0)),
            assigned=bool(attrs.get("assigned", False)),
            alias=attrs.get("ip_alias"),
        )


@dataclass
class ResourceUsage:
    """Live usage sample from the client API."""
    current_state: str
    memory_bytes: int = 0
    cpu_absolute: float = 0.0
    disk_bytes: int = 0
    uptime: int = 0  # milliseconds

    @classmethod
    def from_api(cls, attrs: Dict[str, Any]) -> "ResourceUsage":
        resources = attrs.get("resources") or {}
        return cls(
            current_state=attrs.get("current_state", "unknown"),
            memory_bytes=int(resources.get("memory_bytes") or 0),
            cpu_absolute=float(resources.get("cpu_absolute") or 0.0),
            disk_bytes=int(resources.get("disk_bytes") or 0),
            uptime=int(resources.get("uptime") or 0),
        )
