"""Core types: fleet and template configuration, remote state, handles.

Configuration objects are immutable; reconfiguring a fleet means
building a new FleetConfig and handing it to a new controller.
"""

from __future__ import annotations

from collections.abc import Iterable
from concurrent.futures import Future
from dataclasses import dataclass, field
from functools import cached_property
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from dropfleet.constants import (
    DEFAULT_CONNECTION_RETRY_WAIT,
    DEFAULT_IDLE_TERMINATION_MINUTES,
    DEFAULT_NUM_EXECUTORS,
    DEFAULT_SSH_PORT,
    DEFAULT_TIMEOUT_MINUTES,
    LIVE_STATUSES,
)
from dropfleet.labels import parse_label_set
from dropfleet.resources import ConfigChain, ResourceConfig

if TYPE_CHECKING:
    from dropfleet.node import ManagedNode

__all__ = [
    "FleetConfig",
    "Label",
    "Launcher",
    "NodeRegistry",
    "PlannedInstance",
    "ProvisioningId",
    "ProvisioningRequest",
    "RemoteInstance",
    "TemplateConfig",
]


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class TemplateConfig:
    """One class of droplet a fleet can create."""

    name: str
    image_id: str
    region_id: str
    droplet_config: ResourceConfig
    username: str = "root"
    workspace_path: str = "/jenkins"
    labels: str = ""
    labelless_jobs_allowed: bool = False
    num_executors: int = DEFAULT_NUM_EXECUTORS
    idle_termination_minutes: int = DEFAULT_IDLE_TERMINATION_MINUTES
    ssh_port: int = DEFAULT_SSH_PORT
    instance_cap: int = 0
    install_monitoring: bool = False
    tags: str = ""
    user_data: str = ""
    init_script: str = ""
    fallback_configs: tuple[ResourceConfig, ...] = ()

    def __post_init__(self) -> None:
        if self.instance_cap < 0:
            raise ValueError(f"Template {self.name}: instance_cap must be >= 0")
        if self.num_executors <= 0:
            raise ValueError(f"Template {self.name}: num_executors must be > 0")

    @cached_property
    def label_set(self) -> frozenset[str]:
        return parse_label_set(self.labels)

    @cached_property
    def chain(self) -> ConfigChain:
        return ConfigChain.of(self.droplet_config, self.fallback_configs)

    @property
    def tag_list(self) -> list[str]:
        return self.tags.split()

    @property
    def is_erroring(self) -> bool:
        """True while every size in the chain is marked unhealthy."""
        return self.chain.all_unhealthy()

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class FleetConfig:
    """A named DigitalOcean account configuration owning a set of templates."""

    name: str
    auth_token: str = field(repr=False)
    private_key: str = field(default="", repr=False)
    ssh_key_id: int = 0
    instance_cap: int = 0
    use_private_networking: bool = False
    timeout_minutes: int = DEFAULT_TIMEOUT_MINUTES
    connection_retry_wait: int = DEFAULT_CONNECTION_RETRY_WAIT
    templates: tuple[TemplateConfig, ...] = ()

    def template(self, name: str) -> TemplateConfig:
        for t in self.templates:
            if t.name == name:
                return t
        raise KeyError(f"Template '{name}' not found in fleet '{self.name}'")


# =============================================================================
# Remote State
# =============================================================================


@dataclass(frozen=True, slots=True)
class RemoteInstance:
    """Read-only projection of a droplet as reported by the API."""

    id: int
    name: str
    status: str
    size: str = ""
    region: str = ""
    tags: tuple[str, ...] = ()

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> RemoteInstance:
        region = data.get("region") or {}
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            status=data.get("status", ""),
            size=data.get("size_slug") or (data.get("size") or {}).get("slug", ""),
            region=region.get("slug", "") if isinstance(region, dict) else str(region),
            tags=tuple(data.get("tags") or ()),
        )


# =============================================================================
# Requests and Handles
# =============================================================================


@dataclass(frozen=True, slots=True)
class ProvisioningRequest:
    label: Label | None
    excess_workload: int


@dataclass(frozen=True, slots=True)
class ProvisioningId:
    """Identity of one provisioning activity."""

    fleet_name: str
    template_name: str
    node_name: str

    def __str__(self) -> str:
        return f"{self.fleet_name}/{self.template_name}/{self.node_name}"


@dataclass(frozen=True, slots=True)
class PlannedInstance:
    """Handle for a droplet whose creation is in flight.

    The future resolves to the connected node, to None when the
    pre-create cap re-check blocked the creation, or raises.
    """

    id: ProvisioningId
    num_executors: int
    future: Future[ManagedNode | None] = field(compare=False)

    @property
    def name(self) -> str:
        return self.id.node_name


# =============================================================================
# Host Collaborators
# =============================================================================


@runtime_checkable
class Label(Protocol):
    """A workload label as resolved by the host scheduler."""

    @property
    def name(self) -> str: ...

    @property
    def is_offline(self) -> bool: ...

    def matches(self, labels: frozenset[str]) -> bool: ...


class NodeRegistry(Protocol):
    """The host's registry of managed nodes."""

    def nodes(self) -> Iterable[ManagedNode]: ...
    def add(self, node: ManagedNode) -> None: ...
    def remove(self, node: ManagedNode) -> None: ...


class Launcher(Protocol):
    """Establishes connectivity to a freshly created droplet."""

    def launch(self, node: ManagedNode, fleet: FleetConfig) -> ManagedNode: ...
