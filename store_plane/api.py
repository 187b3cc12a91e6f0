"""
Store Plane Admin API
=====================

FastAPI routes for store administrators.

Endpoints:
- GET  /api/health                          - Health check
- GET  /api/packages                        - Package catalog
- GET  /api/orders                          - Search orders
- POST /api/orders                          - Create order
- GET  /api/orders/stats/summary            - Order statistics
- POST /api/orders/backup                   - Snapshot the order file
- GET  /api/orders/{id}                     - Order detail
- DELETE /api/orders/{id}                   - Delete a cancelled order
- PUT  /api/orders/{id}/status              - Status transition
- POST /api/orders/{id}/cancel              - Cancel order
- PUT  /api/orders/{id}/notes               - Add customer/admin note
- PUT  /api/orders/{id}/server              - Link a panel server
- PUT  /api/orders/{id}/payment             - Attach payment proof
- POST /api/orders/{id}/provision           - Provision panel user + server
- GET  /api/provisioning/status             - Panel readiness
- GET  /api/servers                         - Cached server list
- GET  /api/servers/stats                   - Monitoring statistics
- GET  /api/servers/{id}                    - Server detail
- POST /api/servers/{id}/suspend            - Suspend server
- POST /api/servers/{id}/resume             - Resume server
- GET  /api/subscriptions                   - Subscriptions
- GET  /api/subscriptions/status            - Scheduler status
- GET  /api/subscriptions/{order_id}        - Subscription detail
- POST /api/subscriptions/{order_id}/renew  - Renew subscription
- POST /api/subscriptions/process           - Run a scheduler pass now
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from . import __version__
from .catalog import list_packages
from .config import StoreConfig
from .errors import (
    ConfigurationError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    PaymentRequiredError,
    ResourceExhaustionError,
    StoreError,
    ValidationError,
)
from .models.order import OrderStatus
from .order_manager import OrderManager
from .panel import PanelClient, RemoteError
from .provisioning import ProvisioningOrchestrator
from .services import Notifier, ServerMonitor, SubscriptionScheduler

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)

router = APIRouter(prefix="/api")


@dataclass
class StoreServices:
    """Components shared by every request, built once at startup."""
    config: StoreConfig
    panel: PanelClient
    orchestrator: ProvisioningOrchestrator
    order_manager: OrderManager
    monitor: ServerMonitor
    scheduler: SubscriptionScheduler
    notifier: Notifier


def get_services(request: Request) -> StoreServices:
    return request.app.state.services


# ============================================
# ERROR MAPPING
# ============================================

ERROR_STATUS = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (InvalidTransitionError, 409),
    (InvalidStateError, 409),
    (PaymentRequiredError, 402),
    (ConfigurationError, 503),
    (ResourceExhaustionError, 503),
    (StoreError, 500),
]


def status_for(exc: Exception) -> int:
    if isinstance(exc, RemoteError):
        return 502
    for exc_type, status in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status
    return 500


async def _store_error_handler(request: Request, exc: Exception) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status, content={"detail": str(exc), "error": type(exc).__name__})


def install_error_handlers(app: FastAPI) -> None:
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(StoreError, _store_error_handler)
    app.add_exception_handler(RemoteError, _store_error_handler)


# ============================================
# PYDANTIC MODELS
# ============================================

class CreateOrderRequest(BaseModel):
    customer_phone: str
    chat_id: str = ""
    package_id: str
    duration: int = 1
    display_name: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("customer_phone")
    @classmethod
    def validate_phone(cls, v):
        digits = "".join(c for c in v if c.isdigit())
        if len(digits) < 8:
            raise ValueError("Phone number must contain at least 8 digits")
        return v.strip()


class StatusUpdateRequest(BaseModel):
    status: OrderStatus
    updated_by: str = "admin"
    notes: Optional[str] = None


class CancelRequest(BaseModel):
    cancelled_by: str = "admin"
    reason: Optional[str] = None


class NoteRequest(BaseModel):
    note: str = Field(min_length=1)
    admin: bool = False


class ServerLinkRequest(BaseModel):
    server_id: str = Field(min_length=1)


class PaymentProofRequest(BaseModel):
    payment_proof: str = Field(min_length=1)


class SuspendRequest(BaseModel):
    reason: Optional[str] = None


class RenewRequest(BaseModel):
    duration: int = 1
    payment_received: bool = False
    notes: Optional[str] = None


# ============================================
# HEALTH / CATALOG
# ============================================

@router.get("/health")
async def health(request: Request):
    svc = get_services(request)
    configured = svc.panel.is_configured()
    return {
        "status": "healthy",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "panel_configured": configured,
        "panel_healthy": await svc.panel.health_check() if configured else False,
        "monitoring": svc.monitor.is_monitoring,
        "scheduler": svc.scheduler.is_running,
        "orders": await svc.order_manager.store.count(),
    }


@router.get("/packages")
async def packages(include_legacy: bool = False):
    return {
        "packages": [
            {
                "id": p.id,
                "name": p.name,
                "ram": p.ram,
                "cpu": p.cpu,
                "storage": p.storage,
                "bandwidth": p.bandwidth,
                "price": p.price,
                "emoji": p.emoji,
            }
            for p in list_packages(include_legacy=include_legacy)
        ]
    }


# ============================================
# ORDERS
# ============================================

@router.get("/orders")
async def search_orders(
    request: Request,
    status: Optional[OrderStatus] = None,
    package_id: Optional[str] = None,
    customer: Optional[str] = None,
    limit: Optional[int] = Query(default=None, ge=1),
    offset: Optional[int] = Query(default=None, ge=0),
):
    orders = await get_services(request).order_manager.search_orders(
        status=status,
        package_id=package_id,
        customer_phone=customer,
        limit=limit,
        offset=offset,
    )
    return {"orders": [o.to_dict() for o in orders], "count": len(orders)}


@router.post("/orders", status_code=201)
@limiter.limit("60/minute")
async def create_order(request: Request, body: CreateOrderRequest):
    order = await get_services(request).order_manager.create_order(
        customer_phone=body.customer_phone,
        chat_id=body.chat_id,
        package_id=body.package_id,
        duration=body.duration,
        display_name=body.display_name,
        notes=body.notes,
    )
    return order.to_dict()


@router.get("/orders/stats/summary")
async def order_stats(request: Request):
    stats = await get_services(request).order_manager.stats()
    return stats.to_dict()


@router.post("/orders/backup")
async def backup_orders(request: Request):
    path = await get_services(request).order_manager.backup()
    return {"success": True, "backup_path": path}


@router.get("/orders/{order_id}")
async def get_order(request: Request, order_id: str):
    order = await get_services(request).order_manager.get_order(order_id)
    if not order:
        raise HTTPException(status_code=404, detail=f"Order not found: {order_id}")
    return order.to_dict()


@router.delete("/orders/{order_id}")
async def delete_order(request: Request, order_id: str):
    deleted = await get_services(request).order_manager.delete_order(order_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Order not found: {order_id}")
    return {"success": True, "order_id": order_id}


@router.put("/orders/{order_id}/status")
async def update_status(request: Request, order_id: str, body: StatusUpdateRequest):
    order = await get_services(request).order_manager.update_status(
        order_id, body.status, body.updated_by, body.notes
    )
    return order.to_dict()


@router.post("/orders/{order_id}/cancel")
async def cancel_order(request: Request, order_id: str, body: Optional[CancelRequest] = None):
    body = body or CancelRequest()
    order = await get_services(request).order_manager.cancel_order(order_id, body.cancelled_by, body.reason)
    return order.to_dict()


def _or_404(order, order_id: str) -> Dict[str, Any]:
    if not order:
        raise HTTPException(status_code=404, detail=f"Order not found: {order_id}")
    return order.to_dict()


@router.put("/orders/{order_id}/notes")
async def add_note(request: Request, order_id: str, body: NoteRequest):
    order = await get_services(request).order_manager.add_note(order_id, body.note, admin=body.admin)
    return _or_404(order, order_id)


@router.put("/orders/{order_id}/server")
async def link_server(request: Request, order_id: str, body: ServerLinkRequest):
    order = await get_services(request).order_manager.set_server_id(order_id, body.server_id)
    return _or_404(order, order_id)


@router.put("/orders/{order_id}/payment")
async def attach_payment(request: Request, order_id: str, body: PaymentProofRequest):
    order = await get_services(request).order_manager.set_payment_proof(order_id, body.payment_proof)
    return _or_404(order, order_id)


@router.post("/orders/{order_id}/provision")
@limiter.limit("20/minute")
async def provision_order(request: Request, order_id: str):
    result = await get_services(request).order_manager.provision_server(order_id)
    return result.to_dict()


@router.get("/provisioning/status")
async def provisioning_status(request: Request):
    return await get_services(request).order_manager.provisioning_status()


# ============================================
# SERVERS
# ============================================

@router.get("/servers")
async def list_servers(
    request: Request,
    refresh: bool = False,
    status: Optional[str] = None,
    suspended: Optional[bool] = None,
    package_id: Optional[str] = None,
    customer: Optional[str] = None,
    expiring: bool = False,
    expired: bool = False,
):
    monitor = get_services(request).monitor
    servers = await monitor.get_server_list(force_refresh=refresh)
    if any([status, suspended is not None, package_id, customer, expiring, expired]):
        servers = monitor.filter_servers(
            status=status,
            suspended=suspended,
            package_id=package_id,
            customer=customer,
            expiring=expiring,
            expired=expired,
        )
    return {
        "servers": [s.to_dict() for s in servers],
        "count": len(servers),
        "cache": monitor.cache_info(),
    }


@router.get("/servers/stats")
async def server_stats(request: Request):
    monitor = get_services(request).monitor
    await monitor.get_server_list()
    return {
        "stats": monitor.monitoring_stats(),
        "cache": monitor.cache_info(),
        "monitoring": monitor.is_monitoring,
    }


@router.get("/servers/{server_id}")
async def get_server(request: Request, server_id: str):
    monitor = get_services(request).monitor
    await monitor.get_server_list()
    status = monitor.get_server_status(server_id)
    if not status:
        raise HTTPException(status_code=404, detail=f"Server not found: {server_id}")
    return status.to_dict()


def _suspension_response(result) -> Dict[str, Any]:
    if not result.success:
        raise HTTPException(status_code=502, detail=result.error)
    return result.to_dict()


async def _panel_server_id(services: StoreServices, server_ref: str) -> str:
    """Numeric panel id for a server given by id or UUID."""
    if server_ref.isdigit():
        return server_ref
    await services.monitor.get_server_list()
    status = services.monitor.get_server_status(server_ref)
    if not status:
        raise HTTPException(status_code=404, detail=f"Server not found: {server_ref}")
    return str(status.server_id)


@router.post("/servers/{server_id}/suspend")
async def suspend_server(request: Request, server_id: str, body: Optional[SuspendRequest] = None):
    services = get_services(request)
    reason = (body.reason if body else None) or "Manual suspension"
    panel_id = await _panel_server_id(services, server_id)
    result = await services.scheduler.suspend_server(panel_id, reason)
    return _suspension_response(result)


@router.post("/servers/{server_id}/resume")
async def resume_server(request: Request, server_id: str, body: Optional[SuspendRequest] = None):
    services = get_services(request)
    reason = (body.reason if body else None) or "Manual resume"
    panel_id = await _panel_server_id(services, server_id)
    result = await services.scheduler.resume_server(panel_id, reason)
    return _suspension_response(result)


# ============================================
# SUBSCRIPTIONS
# ============================================

@router.get("/subscriptions")
async def list_subscriptions(request: Request, customer: Optional[str] = None):
    scheduler = get_services(request).scheduler
    if customer:
        subs = await scheduler.subscriptions_by_customer(customer)
    else:
        subs = await scheduler.get_subscriptions()
    return {"subscriptions": [s.to_dict() for s in subs], "count": len(subs)}


@router.get("/subscriptions/status")
async def scheduler_status(request: Request):
    return get_services(request).scheduler.scheduler_status()


@router.post("/subscriptions/process")
async def process_subscriptions(request: Request):
    return await get_services(request).scheduler.process_subscriptions()


@router.get("/subscriptions/{order_id}")
async def get_subscription(request: Request, order_id: str):
    sub = await get_services(request).scheduler.get_subscription(order_id)
    if not sub:
        raise HTTPException(status_code=404, detail=f"Subscription not found: {order_id}")
    return sub.to_dict()


@router.post("/subscriptions/{order_id}/renew")
async def renew_subscription(request: Request, order_id: str, body: RenewRequest):
    renewal = await get_services(request).scheduler.renew_subscription(
        order_id,
        duration=body.duration,
        payment_received=body.payment_received,
        notes=body.notes,
    )
    return {"success": True, "renewal_order": renewal.to_dict()}
