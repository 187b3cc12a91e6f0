"""
Hostpanel Store Plane API
=========================

Main entry point for the store plane service.

Wires every component once at startup and shares them through
``app.state.services``:

    PanelClient -> ProvisioningOrchestrator -> OrderManager
                -> ServerMonitor -> SubscriptionScheduler

When SCHEDULER_ENABLED is set and the panel is configured, the server
monitor and the subscription scheduler start on their own timers.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from store_plane import __version__
from store_plane.api import StoreServices, install_error_handlers, router
from store_plane.config import StoreConfig
from store_plane.logging_config import configure_logging
from store_plane.order_manager import OrderManager
from store_plane.order_store import OrderStore
from store_plane.panel import PanelClient
from store_plane.provisioning import ProvisioningOrchestrator
from store_plane.resources import ResourceMappings
from store_plane.services import ServerMonitor, SubscriptionScheduler, build_notifier

# Load .env file if present (dev mode)
load_dotenv()

logger = logging.getLogger(__name__)


def build_services(config: StoreConfig) -> StoreServices:
    """Construct every component once, passing collaborators explicitly."""
    panel = PanelClient(config.panel)
    mappings = ResourceMappings(default_node_id=config.panel.default_node_id)
    orchestrator = ProvisioningOrchestrator(panel, mappings, config.panel)
    store = OrderStore(config.storage.data_dir, config.storage.orders_file)
    notifier = build_notifier(config.notifier)
    order_manager = OrderManager(store, orchestrator, currency=config.currency, notifier=notifier)
    monitor = ServerMonitor(panel, order_manager, config.panel)
    scheduler = SubscriptionScheduler(panel, monitor, order_manager, notifier, config.scheduler)
    return StoreServices(
        config=config,
        panel=panel,
        orchestrator=orchestrator,
        order_manager=order_manager,
        monitor=monitor,
        scheduler=scheduler,
        notifier=notifier,
    )


def create_app(
    config: Optional[StoreConfig] = None,
    services: Optional[StoreServices] = None,
) -> FastAPI:
    """
    Build the FastAPI app.

    Passing ``services`` skips construction and background timers; the
    caller keeps ownership of the panel and notifier clients.
    """
    config = config or (services.config if services else StoreConfig.from_env())
    configure_logging(config.log_level, config.log_format)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        svc = services or build_services(config)
        app.state.services = svc

        await svc.order_manager.initialize()

        if owned and config.scheduler.enabled:
            if svc.panel.is_configured():
                svc.monitor.start_monitoring(config.scheduler.monitor_interval_minutes)
                svc.scheduler.start_scheduler(config.scheduler.subscription_interval_hours)
            else:
                logger.warning("Panel not configured, server monitor and scheduler not started")

        logger.info("Store plane started")
        yield

        await svc.scheduler.stop_scheduler()
        await svc.monitor.stop_monitoring()
        if owned:
            await svc.panel.close()
            await svc.notifier.close()
        logger.info("Store plane stopped")

    app = FastAPI(
        title="Hostpanel Store Plane",
        description="Order, provisioning and subscription management API",
        version=__version__,
        lifespan=lifespan,
    )

    install_error_handlers(app)

    # CORS from config
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
