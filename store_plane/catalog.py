"""
Store Package Catalog
=====================

Static catalog of sellable server packages.

Three product families, six tiers each:
- a1-a6: NodeJS hosting
- b1-b6: VPS containers
- c1-c6: Python hosting

Legacy package codes are kept so that historic orders still resolve.
Prices are per month in the store currency.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class PackageSpec:
    """A sellable package and its advertised resources."""
    id: str
    name: str
    ram: str
    cpu: str
    storage: str
    bandwidth: str
    price: int
    emoji: str

    def __str__(self) -> str:
        return f"{self.emoji} {self.name}: {self.ram} RAM, {self.cpu}, {self.storage}"


def _pkg(id, name, ram, cpu, storage, price, emoji, bandwidth="Unlimited") -> PackageSpec:
    return PackageSpec(
        id=id, name=name, ram=ram, cpu=cpu, storage=storage,
        bandwidth=bandwidth, price=price, emoji=emoji,
    )


# =============================================================================
# Package Definitions
# =============================================================================

_PACKAGES: List[PackageSpec] = [
    # NodeJS VIP Packages (A1-A6)
    _pkg("a1", "A1 - NodeJS Kroco", "1GB", "100% CPU", "2GB", 5000, "🟢"),
    _pkg("a2", "A2 - NodeJS Karbit", "2GB", "150% CPU", "4GB SSD", 7500, "🟡"),
    _pkg("a3", "A3 - NodeJS Standar", "4GB", "200% CPU", "10GB SSD", 10000, "🟠"),
    _pkg("a4", "A4 - NodeJS Sepuh", "5GB", "250% CPU", "10GB SSD", 12500, "🔴"),
    _pkg("a5", "A5 - NodeJS Suhu", "8GB", "300% CPU", "15GB SSD", 15000, "🟣"),
    _pkg("a6", "A6 - NodeJS Pro Max", "16GB", "400% CPU", "20GB SSD", 20000, "💎"),

    # VPS Packages (B1-B6)
    _pkg("b1", "B1 - VPS Kroco", "1GB", "100% CPU", "5GB SSD", 7500, "🟢"),
    _pkg("b2", "B2 - VPS Karbit", "2GB", "150% CPU", "10GB SSD", 10000, "🟡"),
    _pkg("b3", "B3 - VPS Standar", "4GB", "200% CPU", "20GB SSD", 15000, "🟠"),
    _pkg("b4", "B4 - VPS Sepuh", "6GB", "250% CPU", "30GB SSD", 20000, "🔴"),
    _pkg("b5", "B5 - VPS Suhu", "8GB", "300% CPU", "40GB SSD", 25000, "🟣"),
    _pkg("b6", "B6 - VPS Pro Max", "16GB", "400% CPU", "80GB SSD", 35000, "💎"),

    # Python Packages (C1-C6)
    _pkg("c1", "C1 - Python Kroco", "1GB", "100% CPU", "2GB SSD", 3000, "🟢"),
    _pkg("c2", "C2 - Python Karbit", "1GB", "150% CPU", "4GB SSD", 5000, "🟡"),
    _pkg("c3", "C3 - Python Standar", "2GB", "150% CPU", "8GB SSD", 7500, "🟠"),
    _pkg("c4", "C4 - Python Sepuh", "4GB", "200% CPU", "16GB SSD", 10000, "🔴"),
    _pkg("c5", "C5 - Python Suhu", "6GB", "250% CPU", "24GB SSD", 12500, "🟣"),
    _pkg("c6", "C6 - Python Pro Max", "8GB", "300% CPU", "32GB SSD", 17500, "💎"),

    # Legacy packages (historic orders)
    _pkg("nodejs_kroco", "NodeJS Kroco", "512MB", "0.5 CPU", "2GB SSD", 15000, "🟢"),
    _pkg("nodejs_karbit", "NodeJS Karbit", "1GB", "1 CPU", "4GB SSD", 5000, "🟡"),
    _pkg("nodejs_standar", "NodeJS Standar", "2GB", "1.5 CPU", "8GB SSD", 7500, "🟠"),
    _pkg("nodejs_sepuh", "NodeJS Sepuh", "4GB", "2 CPU", "16GB SSD", 10000, "🔴"),
    _pkg("nodejs_suhu", "NodeJS Suhu", "8GB", "3 CPU", "32GB SSD", 15000, "🟣"),
    _pkg("nodejs_pro_max", "NodeJS Pro Max", "16GB", "5 CPU", "64GB SSD", 20000, "💎"),
    _pkg("vps_kroco", "VPS Kroco", "1GB", "1 CPU", "5GB SSD", 20000, "🟢"),
    _pkg("vps_karbit", "VPS Karbit", "2GB", "1.5 CPU", "10GB SSD", 35000, "🟡"),
    _pkg("vps_standar", "VPS Standar", "4GB", "2 CPU", "20GB SSD", 65000, "🟠"),
    _pkg("vps_sepuh", "VPS Sepuh", "8GB", "3 CPU", "40GB SSD", 125000, "🔴"),
    _pkg("vps_suhu", "VPS Suhu", "16GB", "5 CPU", "80GB SSD", 240000, "🟣"),
    _pkg("vps_pro_max", "VPS Pro Max", "32GB", "8 CPU", "160GB SSD", 450000, "💎"),
    _pkg("python_kroco", "Python Kroco", "512MB", "0.5 CPU", "2GB SSD", 12000, "🟢"),
    _pkg("python_karbit", "Python Karbit", "1GB", "1 CPU", "4GB SSD", 22000, "🟡"),
    _pkg("python_standar", "Python Standar", "2GB", "1.5 CPU", "8GB SSD", 40000, "🟠"),
    _pkg("python_sepuh", "Python Sepuh", "4GB", "2 CPU", "16GB SSD", 75000, "🔴"),
    _pkg("python_suhu", "Python Suhu", "8GB", "3 CPU", "32GB SSD", 140000, "🟣"),
    _pkg("python_pro_max", "Python Pro Max", "16GB", "5 CPU", "64GB SSD", 270000, "💎"),
    _pkg("bronze", "BRONZE", "1GB", "1 CPU", "Unlimited SSD", 25000, "🟢"),
    _pkg("silver", "SILVER", "2GB", "2 CPU", "Unlimited SSD", 45000, "🟡"),
    _pkg("gold", "GOLD", "4GB", "4 CPU", "Unlimited SSD", 85000, "🟠"),
    _pkg("platinum", "PLATINUM", "8GB", "8 CPU", "Unlimited SSD", 160000, "🔴"),
    _pkg("diamond", "DIAMOND", "16GB", "16 CPU", "Unlimited SSD", 300000, "💎"),
]

PACKAGE_CATALOG: Dict[str, PackageSpec] = {p.id: p for p in _PACKAGES}

LEGACY_PACKAGES = frozenset(
    pid for pid in PACKAGE_CATALOG if not (len(pid) == 2 and pid[1].isdigit())
)


def validate_package_id(package_id: str) -> Optional[str]:
    """Normalize a user supplied package code, or None if unknown."""
    if not package_id:
        return None
    normalized = package_id.strip().lower()
    return normalized if normalized in PACKAGE_CATALOG else None


def get_package(package_id: str) -> Optional[PackageSpec]:
    """Look up a package by code (case-insensitive)."""
    normalized = validate_package_id(package_id)
    return PACKAGE_CATALOG.get(normalized) if normalized else None


def list_packages(include_legacy: bool = False) -> List[PackageSpec]:
    """Packages in catalog order, current ones only unless asked."""
    return [
        p for p in _PACKAGES
        if include_legacy or p.id not in LEGACY_PACKAGES
    ]
