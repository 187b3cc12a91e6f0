"""
Store Provisioning Orchestrator
===============================

Creates the panel account and server for a paid order.

Flow:
1. Preflight: panel configured and healthy
2. Generate credentials (username, password, email)
3. Create panel user                -> compensation: delete user
4. Resolve the package's resource mapping
5. Find (or create) a free allocation on the mapping's node
6. Create panel server              -> compensation: delete server
7. Return credentials

Steps 2-6 run as a saga. On any failure the compensations recorded so far
run newest-first; a failing compensation is logged and the rest still run.
"""

import logging
import re
import secrets
import string
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .config import PanelConfig
from .errors import ConfigurationError, ResourceExhaustionError
from .models.order import Order
from .panel import PanelAllocation, PanelClient, PanelServer, PanelUser
from .resources import ResourceMappings

logger = logging.getLogger(__name__)

PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*"


def generate_password(length: int = 16) -> str:
    """Generate a random panel password."""
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def _digits(phone_number: str) -> str:
    return re.sub(r"\D", "", phone_number)


def generate_username(phone_number: str) -> str:
    """user_<last 8 phone digits>_<last 6 digits of ms clock>. The panel decides uniqueness."""
    stamp = str(int(time.time() * 1000))[-6:]
    return f"user_{_digits(phone_number)[-8:]}_{stamp}"


def generate_email(phone_number: str, domain: str) -> str:
    return f"{_digits(phone_number)}@{domain}"


def server_name_for(order: Order) -> str:
    """Panel server name. The monitor recovers the order id from it."""
    return f"{order.item.package_id.upper()}-{order.id}"


@dataclass
class SagaStep:
    """A completed step and the coroutine that undoes it."""
    description: str
    compensate: Callable[[], Awaitable[Any]]


class Saga:
    """Accumulates compensations as steps succeed."""

    def __init__(self, name: str):
        self.name = name
        self.steps: List[SagaStep] = []

    def record(self, description: str, compensate: Callable[[], Awaitable[Any]]) -> None:
        self.steps.append(SagaStep(description, compensate))

    @property
    def actions(self) -> List[str]:
        return [s.description for s in self.steps]

    async def compensate(self) -> List[str]:
        """Run compensations newest-first. Returns the descriptions attempted."""
        attempted = []
        for step in reversed(self.steps):
            attempted.append(step.description)
            try:
                logger.info(f"Rollback ({self.name}): {step.description}")
                await step.compensate()
            except Exception as e:
                logger.error(f"Rollback action failed ({self.name}): {step.description}: {e}")
        return attempted


@dataclass
class Credentials:
    """What the customer needs to log in to their server."""
    username: str
    password: str
    email: str
    panel_url: str
    server_id: str  # panel server UUID
    server_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "username": self.username,
            "password": self.password,
            "email": self.email,
            "panel_url": self.panel_url,
            "server_id": self.server_id,
            "server_name": self.server_name,
        }


@dataclass
class ProvisioningResult:
    success: bool = False
    user: Optional[PanelUser] = None
    server: Optional[PanelServer] = None
    credentials: Optional[Credentials] = None
    error: Optional[str] = None
    rollback_actions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "user_id": self.user.id if self.user else None,
            "server_id": self.server.uuid if self.server else None,
            "credentials": self.credentials.to_dict() if self.credentials else None,
            "error": self.error,
            "rollback_actions": list(self.rollback_actions),
        }


class ProvisioningOrchestrator:
    """
    Runs the provisioning saga for one order at a time.

    Usage:
        orchestrator = ProvisioningOrchestrator(panel, mappings, config.panel)
        await orchestrator.ensure_ready()
        result = await orchestrator.provision(order, preflight=False)
    """

    def __init__(self, panel: PanelClient, mappings: ResourceMappings, config: PanelConfig):
        self.panel = panel
        self.mappings = mappings
        self.config = config

    def is_configured(self) -> bool:
        return self.panel.is_configured()

    async def ensure_ready(self) -> None:
        """Raise ConfigurationError unless the panel is configured and healthy."""
        if not self.panel.is_configured():
            raise ConfigurationError("Pterodactyl Admin API is not configured")
        if not await self.panel.health_check():
            raise ConfigurationError("Pterodactyl Admin API health check failed")

    async def test_connection(self) -> bool:
        try:
            await self.ensure_ready()
        except ConfigurationError as e:
            logger.warning(f"Auto-provisioning not ready: {e}")
            return False
        logger.info("Auto-provisioning service is ready")
        return True

    async def provision(self, order: Order, preflight: bool = True) -> ProvisioningResult:
        """
        Provision a panel user and server for an order.

        Raises ConfigurationError from the preflight check. Every later
        failure is returned in the result after compensation.
        """
        if preflight:
            await self.ensure_ready()

        logger.info(f"Starting auto-provisioning for order {order.id}", extra={"order_id": order.id})
        result = ProvisioningResult()
        saga = Saga(f"order {order.id}")

        try:
            password = generate_password()
            username = generate_username(order.customer.phone_number)
            email = generate_email(order.customer.phone_number, self.config.email_domain)

            user = await self.panel.create_user(
                email=email,
                username=username,
                first_name=order.customer.display_name or "Customer",
                last_name=f"#{order.id}",
                password=password,
                root_admin=False,
                language="en",
            )
            result.user = user
            saga.record(f"Delete user {user.id}", lambda: self.panel.delete_user(user.id))

            mapping = self.mappings.get(order.item.package_id)
            if not mapping:
                raise ConfigurationError(
                    f"No resource mapping found for package type: {order.item.package_id}"
                )

            allocation = await self.find_allocation(mapping.node)

            server = await self.panel.create_server(
                name=server_name_for(order),
                description=f"Auto-provisioned server for order {order.id}",
                user_id=user.id,
                egg=mapping.egg,
                docker_image=mapping.docker_image,
                startup=mapping.startup,
                environment=mapping.environment,
                limits=mapping.limits,
                feature_limits=mapping.feature_limits,
                allocation_id=allocation.id,
            )
            result.server = server
            saga.record(f"Delete server {server.id}", lambda: self.panel.delete_server(server.id))

            result.credentials = Credentials(
                username=username,
                password=password,
                email=email,
                panel_url=self.config.url,
                server_id=server.uuid,
                server_name=server.name,
            )
            result.success = True
            result.rollback_actions = saga.actions
            logger.info(
                f"Auto-provisioning completed successfully for order {order.id}",
                extra={"order_id": order.id, "server_id": server.uuid},
            )
            return result

        except Exception as e:
            logger.error(f"Auto-provisioning failed for order {order.id}: {e}", extra={"order_id": order.id})
            result.error = str(e)
            result.rollback_actions = await saga.compensate()
            return result

    async def find_allocation(self, node_id: int) -> PanelAllocation:
        """
        First unassigned allocation on a node.

        When the node has none, asks the panel for a batch of ports on the
        node's address and looks once more.
        """
        allocations = await self.panel.list_allocations(node_id)
        free = next((a for a in allocations if not a.assigned), None)
        if free:
            return free

        node = await self.panel.get_node(node_id)
        ports = [
            str(self.config.base_port + i) for i in range(self.config.allocation_batch)
        ]
        logger.info(f"No free allocation on node {node_id}, creating ports {ports[0]}-{ports[-1]}")
        await self.panel.create_allocations(node_id, node.fqdn, ports)

        allocations = await self.panel.list_allocations(node_id)
        free = next((a for a in allocations if not a.assigned), None)
        if not free:
            raise ResourceExhaustionError(f"No available allocations found for node {node_id}")
        return free
