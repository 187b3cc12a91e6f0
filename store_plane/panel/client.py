"""
Hosting Panel API Client
========================

Async client for the Pterodactyl application API (admin key) with a
single client-API call for live resource usage (client key).

Every failed call raises RemoteError with the panel's own error detail
when one is present. There is no retry logic here; callers decide.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import PanelConfig
from .models import (
    PanelAllocation,
    PanelNode,
    PanelServer,
    PanelUser,
    ResourceUsage,
)

logger = logging.getLogger(__name__)


class RemoteError(Exception):
    """A hosting panel call failed."""

    def __init__(self, detail: str, status_code: Optional[int] = None, operation: str = ""):
        self.detail = detail
        self.status_code = status_code
        self.operation = operation
        super().__init__(detail)


def _error_detail(response: httpx.Response) -> str:
    """Pull ``errors[0].detail`` out of a panel error response."""
    try:
        data = response.json()
        errors = data.get("errors") or []
        if errors and errors[0].get("detail"):
            return errors[0]["detail"]
    except (ValueError, AttributeError):
        pass
    return f"HTTP {response.status_code}"


class PanelClient:
    """
    Pterodactyl panel client.

    Usage:
        async with PanelClient(config.panel) as panel:
            server = await panel.get_server(42)
    """

    def __init__(self, config: PanelConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.client = httpx.AsyncClient(
            base_url=f"{config.url}/api/application",
            headers={
                "Authorization": f"Bearer {config.admin_api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=config.timeout,
            transport=transport,
        )
        self.user_client = httpx.AsyncClient(
            base_url=f"{config.url}/api/client",
            headers={
                "Authorization": f"Bearer {config.client_api_key}",
                "Accept": "application/json",
            },
            timeout=config.timeout,
            transport=transport,
        )

        if not config.is_configured:
            logger.warning("Pterodactyl Admin API credentials not configured")

    async def close(self):
        await self.client.aclose()
        await self.user_client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    # =========================================================================
    # Core request helper
    # =========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        client: Optional[httpx.AsyncClient] = None,
        **kwargs,
    ) -> Dict[str, Any]:
        client = client or self.client
        try:
            resp = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Panel request failed ({operation}): {e}")
            raise RemoteError(f"Failed to {operation}: {e}", operation=operation) from e

        if resp.is_error:
            detail = _error_detail(resp)
            logger.error(f"Panel API error ({operation}): {resp.status_code} {detail}")
            raise RemoteError(
                f"Failed to {operation}: {detail}",
                status_code=resp.status_code,
                operation=operation,
            )

        if resp.status_code == 204 or not resp.content:
            return {}
        return resp.json()

    async def _list_all(self, path: str, operation: str) -> List[Dict[str, Any]]:
        """Follow panel pagination and return every item's attributes."""
        items: List[Dict[str, Any]] = []
        page = 1
        while True:
            data = await self._request("GET", path, operation, params={"page": page, "per_page": 100})
            items.extend(entry["attributes"] for entry in data.get("data", []))
            pagination = (data.get("meta") or {}).get("pagination") or {}
            if page >= int(pagination.get("total_pages", 1)):
                return items
            page += 1

    # =========================================================================
    # Utility
    # =========================================================================

    def is_configured(self) -> bool:
        return self.config.is_configured

    async def health_check(self) -> bool:
        """Lightweight reachability check: one user listing."""
        if not self.is_configured():
            logger.warning("Admin API not configured")
            return False

        try:
            await self._request("GET", "/users", "run health check", params={"per_page": 1})
            logger.info("Admin API health check passed")
            return True
        except RemoteError as e:
            logger.error(f"Admin API health check failed: {e}")
            return False

    # =========================================================================
    # Users
    # =========================================================================

    async def create_user(
        self,
        email: str,
        username: str,
        first_name: str,
        last_name: str,
        password: Optional[str] = None,
        root_admin: bool = False,
        language: str = "en",
    ) -> PanelUser:
        payload = {
            "email": email,
            "username": username,
            "first_name": first_name,
            "last_name": last_name,
            "root_admin": root_admin,
            "language": language,
        }
        if password:
            payload["password"] = password

        logger.info(f"Creating panel user: {username}")
        data = await self._request("POST", "/users", "create user", json=payload)
        user = PanelUser.from_api(data["attributes"])
        logger.info(f"User created: {user.username} (ID: {user.id})")
        return user

    async def get_user(self, user_id: int) -> PanelUser:
        data = await self._request("GET", f"/users/{user_id}", "retrieve user")
        return PanelUser.from_api(data["attributes"])

    async def update_user(self, user_id: int, **fields) -> PanelUser:
        data = await self._request("PATCH", f"/users/{user_id}", "update user", json=fields)
        return PanelUser.from_api(data["attributes"])

    async def delete_user(self, user_id: int) -> None:
        await self._request("DELETE", f"/users/{user_id}", "delete user")
        logger.info(f"User {user_id} deleted")

    # =========================================================================
    # Servers
    # =========================================================================

    async def create_server(
        self,
        name: str,
        user_id: int,
        egg: int,
        docker_image: str,
        startup: str,
        environment: Dict[str, Any],
        limits: Dict[str, int],
        feature_limits: Dict[str, int],
        allocation_id: int,
        description: str = "",
    ) -> PanelServer:
        payload = {
            "name": name,
            "description": description,
            "user": user_id,
            "egg": egg,
            "docker_image": docker_image,
            "startup": startup,
            "environment": environment,
            "limits": limits,
            "feature_limits": feature_limits,
            "allocation": {"default": allocation_id},
        }

        logger.info(f"Creating panel server: {name}")
        data = await self._request("POST", "/servers", "create server", json=payload)
        server = PanelServer.from_api(data["attributes"])
        logger.info(f"Server created: {server.name} (ID: {server.id}, UUID: {server.uuid})")
        return server

    async def get_server(self, server_id: int) -> PanelServer:
        data = await self._request("GET", f"/servers/{server_id}", "retrieve server")
        return PanelServer.from_api(data["attributes"])

    async def update_server_details(self, server_id: int, **fields) -> PanelServer:
        data = await self._request(
            "PATCH", f"/servers/{server_id}/details", "update server", json=fields
        )
        return PanelServer.from_api(data["attributes"])

    async def delete_server(self, server_id: int) -> None:
        await self._request("DELETE", f"/servers/{server_id}", "delete server")
        logger.info(f"Server {server_id} deleted")

    async def suspend_server(self, server_id: int) -> None:
        await self._request("POST", f"/servers/{server_id}/suspend", "suspend server")
        logger.info(f"Server {server_id} suspended")

    async def unsuspend_server(self, server_id: int) -> None:
        await self._request("POST", f"/servers/{server_id}/unsuspend", "unsuspend server")
        logger.info(f"Server {server_id} unsuspended")

    async def list_servers(self) -> List[PanelServer]:
        attrs = await self._list_all("/servers", "list servers")
        return [PanelServer.from_api(a) for a in attrs]

    async def get_resource_usage(self, identifier: str) -> ResourceUsage:
        """Live usage via the client API. Needs the client API key."""
        if not self.config.client_configured:
            raise RemoteError("Client API key not configured", operation="retrieve server resources")
        data = await self._request(
            "GET",
            f"/servers/{identifier}/resources",
            "retrieve server resources",
            client=self.user_client,
        )
        return ResourceUsage.from_api(data.get("attributes", {}))

    # =========================================================================
    # Nodes and allocations
    # =========================================================================

    async def list_nodes(self) -> List[PanelNode]:
        attrs = await self._list_all("/nodes", "retrieve nodes")
        return [PanelNode.from_api(a) for a in attrs]

    async def get_node(self, node_id: int) -> PanelNode:
        data = await self._request("GET", f"/nodes/{node_id}", "retrieve node")
        return PanelNode.from_api(data["attributes"])

    async def list_allocations(self, node_id: int) -> List[PanelAllocation]:
        attrs = await self._list_all(f"/nodes/{node_id}/allocations", "retrieve node allocations")
        return [PanelAllocation.from_api(a) for a in attrs]

    async def create_allocations(self, node_id: int, ip: str, ports: List[str]) -> None:
        await self._request(
            "POST",
            f"/nodes/{node_id}/allocations",
            "create allocations",
            json={"ip": ip, "ports": ports},
        )
        logger.info(f"Created allocations for node {node_id}: {', '.join(ports)}")
