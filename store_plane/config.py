"""
Store Plane Centralized Configuration
=====================================

Single source of truth for all configuration values.
Reads from environment variables with sensible defaults.
"""

import os
from typing import List, Tuple
from dataclasses import dataclass, field


@dataclass
class PanelConfig:
    """Hosting panel (Pterodactyl) connection settings."""
    url: str = ""
    admin_api_key: str = ""
    client_api_key: str = ""
    email_domain: str = "example.com"
    timeout: float = 30.0
    default_node_id: int = 1
    base_port: int = 25565
    allocation_batch: int = 10

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.admin_api_key)

    @property
    def client_configured(self) -> bool:
        """Live resource sampling needs the client API key as well."""
        return bool(self.url and self.client_api_key)


@dataclass
class StorageConfig:
    data_dir: str = "./data"
    orders_file: str = "orders.json"

    @property
    def orders_path(self) -> str:
        return os.path.join(self.data_dir, self.orders_file)


@dataclass
class SchedulerConfig:
    enabled: bool = True
    monitor_interval_minutes: float = 5
    subscription_interval_hours: float = 6
    grace_days: int = 1
    notification_thresholds: Tuple[int, ...] = (7, 3, 1)


@dataclass
class NotifierConfig:
    webhook_url: str = ""
    webhook_token: str = ""
    timeout: float = 15.0

    @property
    def is_configured(self) -> bool:
        return bool(self.webhook_url)


def _env_bool(name: str, default: str = "true") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class StoreConfig:
    """Master configuration for the store plane."""

    # Sub-configs
    panel: PanelConfig = field(default_factory=PanelConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    notifier: NotifierConfig = field(default_factory=NotifierConfig)

    # Application settings
    currency: str = "IDR"
    admin_contact: str = ""
    log_level: str = "INFO"
    log_format: str = "json"
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])

    @classmethod
    def from_env(cls) -> "StoreConfig":
        """Load configuration from environment variables."""
        return cls(
            panel=PanelConfig(
                url=os.environ.get("PTERODACTYL_URL", "").rstrip("/"),
                admin_api_key=os.environ.get("PTERODACTYL_ADMIN_API_KEY", ""),
                client_api_key=os.environ.get("PTERODACTYL_CLIENT_API_KEY", ""),
                email_domain=os.environ.get("PTERODACTYL_EMAIL_DOMAIN", "example.com"),
                timeout=float(os.environ.get("PTERODACTYL_TIMEOUT", "30")),
                default_node_id=int(os.environ.get("DEFAULT_NODE_ID", "1")),
                base_port=int(os.environ.get("BASE_PORT", "25565")),
                allocation_batch=int(os.environ.get("ALLOCATION_BATCH", "10")),
            ),
            storage=StorageConfig(
                data_dir=os.environ.get("DATA_DIR", "./data"),
            ),
            scheduler=SchedulerConfig(
                enabled=_env_bool("SCHEDULER_ENABLED"),
                monitor_interval_minutes=float(os.environ.get("MONITOR_INTERVAL_MINUTES", "5")),
                subscription_interval_hours=float(os.environ.get("SUBSCRIPTION_INTERVAL_HOURS", "6")),
                grace_days=int(os.environ.get("SUSPEND_GRACE_DAYS", "1")),
            ),
            notifier=NotifierConfig(
                webhook_url=os.environ.get("NOTIFY_WEBHOOK_URL", ""),
                webhook_token=os.environ.get("NOTIFY_WEBHOOK_TOKEN", ""),
            ),
            currency=os.environ.get("STORE_CURRENCY", "IDR"),
            admin_contact=os.environ.get("STORE_ADMIN", ""),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            log_format=os.environ.get("LOG_FORMAT", "json"),
            cors_origins=[
                o.strip()
                for o in os.environ.get("CORS_ORIGINS", "http://localhost:3000").split(",")
                if o.strip()
            ],
        )
