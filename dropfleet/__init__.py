"""Dropfleet - Capacity-bounded DigitalOcean build agents.

Example:

    from dropfleet import InMemoryNodeRegistry, LabelExpression, ProvisioningController, resolve_fleet

    fleet = resolve_fleet("builds")
    registry = InMemoryNodeRegistry()

    with ProvisioningController(fleet, registry) as controller:
        label = LabelExpression.parse("linux && docker")
        if controller.can_provision(label):
            for planned in controller.provision(label, excess_workload=4):
                node = planned.future.result()
"""

from loguru import logger

# Configuration
from dropfleet.config import build_fleet, load_config, resolve_fleet, resolve_fleets

# Controller
from dropfleet.controller import ProvisioningController, fleet_lock

# Exceptions
from dropfleet.core.exceptions import (
    CapacityExceededError,
    ChainExhaustedError,
    ConfigurationError,
    DropfleetError,
    LaunchError,
    ProvisioningError,
    RemoteAPIError,
)

# Labels
from dropfleet.labels import LabelExpression

# Nodes
from dropfleet.node import ManagedNode
from dropfleet.registry import InMemoryNodeRegistry

# Logging
from dropfleet.observability.logging import LogConfig, setup_logging, teardown_logging

# Resources
from dropfleet.resources import ConfigChain, ResourceConfig

# Types
from dropfleet.types import (
    FleetConfig,
    PlannedInstance,
    ProvisioningId,
    RemoteInstance,
    TemplateConfig,
)

logger.disable("dropfleet")

__all__ = [
    # Configuration
    "build_fleet",
    "load_config",
    "resolve_fleet",
    "resolve_fleets",
    # Controller
    "ProvisioningController",
    "fleet_lock",
    # Exceptions
    "CapacityExceededError",
    "ChainExhaustedError",
    "ConfigurationError",
    "DropfleetError",
    "LaunchError",
    "ProvisioningError",
    "RemoteAPIError",
    # Labels
    "LabelExpression",
    # Nodes
    "InMemoryNodeRegistry",
    "ManagedNode",
    # Logging
    "LogConfig",
    "setup_logging",
    "teardown_logging",
    # Resources
    "ConfigChain",
    "ResourceConfig",
    # Types
    "FleetConfig",
    "PlannedInstance",
    "ProvisioningId",
    "RemoteInstance",
    "TemplateConfig",
]
