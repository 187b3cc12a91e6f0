"""
Panel Resource Mappings
=======================

Maps each sellable package to the panel resources used to build its
server: egg, container image, startup command, default environment,
hard limits, feature quotas and target node.

Egg, image and startup can be overridden per package from the
environment, e.g. ``A1_EGG_ID``, ``A1_DOCKER_IMAGE``, ``A1_STARTUP``.
"""

import copy
import logging
import os
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)


@dataclass
class ResourceMapping:
    """Everything the panel needs to create a server for one package."""
    egg: int
    docker_image: str
    startup: str
    environment: Dict[str, str] = field(default_factory=dict)
    limits: Dict[str, int] = field(default_factory=dict)
    feature_limits: Dict[str, int] = field(default_factory=dict)
    node: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# Family defaults
# =============================================================================

NODEJS_STARTUP = (
    'if [[ -d .git ]] && [[ "{{AUTO_UPDATE}}" == "1" ]]; then '
    "git remote set-url origin https://${USERNAME}:${ACCESS_TOKEN}@${GIT_ADDRESS} && git pull; fi; "
    "/usr/local/bin/npm install && "
    '/usr/local/bin/node --max-old-space-size=${SERVER_MEMORY} "/home/container/${MAIN_FILE}"'
)

PYTHON_STARTUP = (
    'if [[ -d .git ]] && [[ "{{AUTO_UPDATE}}" == "1" ]]; then git pull; fi; '
    'if [[ ! -z "{{PY_PACKAGES}}" ]]; then pip install -U --prefix .local {{PY_PACKAGES}}; fi; '
    "if [[ -f /home/container/${REQUIREMENTS_FILE} ]]; then "
    "pip install -U --prefix .local -r ${REQUIREMENTS_FILE}; fi; "
    "/usr/local/bin/python /home/container/{{PY_FILE}}"
)

FAMILIES: Dict[str, Dict[str, Any]] = {
    "nodejs": {
        "egg": 15,
        "docker_image": "ghcr.io/shirokamiryzen/yolks:nodejs_22",
        "startup": NODEJS_STARTUP,
        "environment": {
            "MAIN_FILE": "index.js",
            "AUTO_UPDATE": "0",
            "GIT_ADDRESS": "",
            "USERNAME": "",
            "ACCESS_TOKEN": "",
        },
    },
    "vps": {
        "egg": 16,
        "docker_image": "quay.io/ydrag0n/pterodactyl-vps-egg",
        "startup": "bash /run.sh",
        "environment": {
            "VPS_USER": "root",
            "VPS_PASSWORD": "changeme123",
            "VPS_SSH_PORT": "22",
        },
    },
    "python": {
        "egg": 17,
        "docker_image": "ghcr.io/parkervcp/yolks:python_3.12",
        "startup": PYTHON_STARTUP,
        "environment": {
            "PY_FILE": "main.py",
            "AUTO_UPDATE": "0",
            "PY_PACKAGES": "",
            "REQUIREMENTS_FILE": "requirements.txt",
        },
    },
}

# (memory MB, disk MB, cpu %, (databases, allocations, backups))
_STANDARD_TIERS = [
    (512, 2048, 50, (1, 1, 1)),
    (1024, 4096, 100, (1, 1, 2)),
    (2048, 8192, 150, (2, 2, 3)),
    (4096, 16384, 200, (3, 3, 5)),
    (8192, 32768, 300, (5, 5, 7)),
    (16384, 65536, 500, (10, 10, 10)),
]

_VPS_TIERS = [
    (1024, 5120, 100, (1, 1, 1)),
    (2048, 10240, 150, (2, 2, 2)),
    (4096, 20480, 200, (3, 3, 3)),
    (8192, 40960, 300, (5, 5, 5)),
    (16384, 81920, 500, (7, 7, 7)),
    (32768, 163840, 800, (10, 10, 10)),
]

_LEGACY_TIER_NAMES = ["kroco", "karbit", "standar", "sepuh", "suhu", "pro_max"]

_LEGACY_METAL = {
    "bronze": ("nodejs", (1024, 5120, 100, (1, 1, 1))),
    "silver": ("vps", (2048, 10240, 200, (2, 2, 2))),
    "gold": ("python", (4096, 20480, 400, (3, 3, 3))),
    "platinum": ("nodejs", (8192, 40960, 800, (5, 5, 5))),
    "diamond": ("vps", (16384, 81920, 1600, (10, 10, 10))),
}


def _default_table() -> Dict[str, tuple]:
    """package id -> (family, tier tuple)."""
    table = {}
    for prefix, family, tiers in (
        ("a", "nodejs", _STANDARD_TIERS),
        ("b", "vps", _VPS_TIERS),
        ("c", "python", _STANDARD_TIERS),
    ):
        for i, tier in enumerate(tiers, start=1):
            table[f"{prefix}{i}"] = (family, tier)
        for name, tier in zip(_LEGACY_TIER_NAMES, tiers):
            table[f"{family}_{name}"] = (family, tier)
    table.update(_LEGACY_METAL)
    return table


def build_mapping(
    package_id: str,
    family: str,
    memory: int,
    disk: int,
    cpu: int,
    features: tuple,
    node: int = 1,
    environ: Optional[Mapping[str, str]] = None,
) -> ResourceMapping:
    """Build one package's mapping from its family defaults plus env overrides."""
    environ = os.environ if environ is None else environ
    defaults = FAMILIES[family]
    prefix = package_id.upper()
    databases, allocations, backups = features

    return ResourceMapping(
        egg=int(environ.get(f"{prefix}_EGG_ID", defaults["egg"])),
        docker_image=environ.get(f"{prefix}_DOCKER_IMAGE", defaults["docker_image"]),
        startup=environ.get(f"{prefix}_STARTUP", defaults["startup"]),
        environment=dict(defaults["environment"]),
        limits={"memory": memory, "swap": 0, "disk": disk, "io": 500, "cpu": cpu},
        feature_limits={"databases": databases, "allocations": allocations, "backups": backups},
        node=node,
    )


class ResourceMappings:
    """Registry of resource mappings keyed by package id."""

    def __init__(self, default_node_id: int = 1, environ: Optional[Mapping[str, str]] = None):
        self._mappings: Dict[str, ResourceMapping] = {}
        for package_id, (family, (memory, disk, cpu, features)) in _default_table().items():
            self._mappings[package_id] = build_mapping(
                package_id, family, memory, disk, cpu, features,
                node=default_node_id, environ=environ,
            )
        logger.debug(f"Loaded {len(self._mappings)} resource mappings")

    def get(self, package_id: str) -> Optional[ResourceMapping]:
        mapping = self._mappings.get(package_id.lower())
        return copy.deepcopy(mapping) if mapping else None

    def all(self) -> Dict[str, ResourceMapping]:
        return copy.deepcopy(self._mappings)

    def package_ids(self) -> List[str]:
        return list(self._mappings)

    def update(self, package_id: str, **changes) -> ResourceMapping:
        """Patch fields of an existing mapping, or register a complete new one."""
        key = package_id.lower()
        current = self._mappings.get(key)
        if current is None:
            mapping = ResourceMapping(**changes)
        else:
            data = current.to_dict()
            data.update(changes)
            mapping = ResourceMapping(**data)
        self._mappings[key] = mapping
        logger.info(f"Updated resource mapping for package {key}")
        return copy.deepcopy(mapping)

    def __contains__(self, package_id: str) -> bool:
        return package_id.lower() in self._mappings

    def __len__(self) -> int:
        return len(self._mappings)
