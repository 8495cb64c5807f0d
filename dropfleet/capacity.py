"""Instance cap checks.

A cap counts live droplets from two independent sources: the host's
node registry and a fresh API listing. The API may lag behind droplets
we just created, and the registry knows nothing about droplets created
by another process, so reaching the cap in either source blocks.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from loguru import logger

from dropfleet import naming
from dropfleet.types import FleetConfig, NodeRegistry, RemoteInstance, TemplateConfig

log = logger.bind(component="capacity")


@dataclass(frozen=True, slots=True)
class Scope:
    """A whole fleet, or a single template within it."""

    fleet: str
    template: str | None = None

    def matches(self, name: str) -> bool:
        if self.template is None:
            return naming.is_instance_of_fleet(name, self.fleet)
        return naming.is_instance_of_template(name, self.fleet, self.template)

    def __str__(self) -> str:
        return self.fleet if self.template is None else f"{self.fleet}/{self.template}"


def effective_fleet_cap(fleet: FleetConfig) -> int | None:
    """min(fleet cap, sum of template caps); None when unbounded.

    A cap of 0 means unbounded, so a single uncapped template makes the
    template sum unbounded.
    """
    template_caps = [t.instance_cap for t in fleet.templates]
    template_sum = None if not template_caps or 0 in template_caps else sum(template_caps)
    bounded = [cap for cap in (fleet.instance_cap or None, template_sum) if cap is not None]
    return min(bounded) if bounded else None


@dataclass(frozen=True, slots=True)
class CapacityGuard:
    fleet: FleetConfig
    registry: NodeRegistry

    def fleet_scope(self) -> Scope:
        return Scope(self.fleet.name)

    def template_scope(self, template: TemplateConfig) -> Scope:
        return Scope(self.fleet.name, template.name)

    def cap_for(self, scope: Scope) -> int | None:
        if scope.template is None:
            return effective_fleet_cap(self.fleet)
        cap = self.fleet.template(scope.template).instance_cap
        return cap or None

    def local_count_for(self, scope: Scope) -> int:
        return sum(1 for node in self.registry.nodes() if scope.matches(node.name))

    def remote_count_for(self, scope: Scope, snapshot: Iterable[RemoteInstance]) -> int:
        return sum(1 for d in snapshot if d.is_live and scope.matches(d.name))

    def is_cap_reached_local(self, scope: Scope) -> bool:
        cap = self.cap_for(scope)
        if cap is None:
            return False
        count = self.local_count_for(scope)
        reached = count >= cap
        log.debug(
            "Local cap check {scope}: {count}/{cap} reached={reached}",
            scope=str(scope), count=count, cap=cap, reached=reached,
        )
        return reached

    def is_cap_reached_remote(self, scope: Scope, snapshot: Iterable[RemoteInstance]) -> bool:
        cap = self.cap_for(scope)
        if cap is None:
            return False
        count = self.remote_count_for(scope, snapshot)
        reached = count >= cap
        log.debug(
            "Remote cap check {scope}: {count}/{cap} reached={reached}",
            scope=str(scope), count=count, cap=cap, reached=reached,
        )
        return reached

    def is_cap_reached(self, scope: Scope, snapshot: Iterable[RemoteInstance]) -> bool:
        snapshot = tuple(snapshot)
        return self.is_cap_reached_local(scope) or self.is_cap_reached_remote(scope, snapshot)

    def counts(self, scope: Scope, snapshot: Iterable[RemoteInstance]) -> tuple[int, int]:
        """(local, remote) counts, for log lines and error messages."""
        return self.local_count_for(scope), self.remote_count_for(scope, snapshot)
