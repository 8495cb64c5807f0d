"""Host-side record of a droplet created by dropfleet."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dropfleet.types import FleetConfig, ProvisioningId, RemoteInstance, TemplateConfig


@dataclass(eq=False)
class ManagedNode:
    """A build agent backed by a droplet.

    Nodes are registered with the host registry as soon as the droplet
    create call returns; ``ip`` is filled in once the launcher sees the
    droplet become active.
    """

    id: ProvisioningId
    droplet_id: int
    num_executors: int
    labels: frozenset[str] = frozenset()
    username: str = "root"
    workspace_path: str = ""
    ssh_port: int = 22
    idle_termination_minutes: int = 0
    init_script: str = ""
    ip: str = ""
    private_ip: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    idle_since: datetime | None = None

    @property
    def name(self) -> str:
        return self.id.node_name

    @property
    def fleet_name(self) -> str:
        return self.id.fleet_name

    @property
    def template_name(self) -> str:
        return self.id.template_name

    @classmethod
    def create(
        cls,
        id: ProvisioningId,
        droplet: RemoteInstance,
        template: TemplateConfig,
    ) -> ManagedNode:
        return cls(
            id=id,
            droplet_id=droplet.id,
            num_executors=template.num_executors,
            labels=template.label_set,
            username=template.username,
            workspace_path=template.workspace_path,
            ssh_port=template.ssh_port,
            idle_termination_minutes=template.idle_termination_minutes,
            init_script=template.init_script,
        )

    def address(self, fleet: FleetConfig) -> str:
        if fleet.use_private_networking and self.private_ip:
            return self.private_ip
        return self.ip

    def mark_busy(self) -> None:
        self.idle_since = None

    def mark_idle(self, now: datetime | None = None) -> None:
        if self.idle_since is None:
            self.idle_since = now or datetime.now(UTC)

    def is_idle_expired(self, now: datetime | None = None) -> bool:
        """True once the node has been idle past its termination window.

        A window of zero or less disables idle termination.
        """
        if self.idle_termination_minutes <= 0 or self.idle_since is None:
            return False
        now = now or datetime.now(UTC)
        return now - self.idle_since >= timedelta(minutes=self.idle_termination_minutes)

    def __str__(self) -> str:
        return self.name
