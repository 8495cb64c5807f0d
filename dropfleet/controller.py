"""Provisioning controller.

The host scheduler calls :meth:`ProvisioningController.provision` when a
label needs more executors. The controller plans droplets under the
fleet's provisioning lock and hands each creation to a worker thread,
returning planned handles immediately.

Caps are checked twice. Admission checks them while planning; each
creation task then takes the lock again, re-reads the remote inventory
and re-checks before the create call (the ``reserving`` phase). Between
the two, another caller may have created droplets, and the remote API
may lag behind droplets we created ourselves; only the second check
guards the create call.

Locks are per fleet name and shared by every controller of that fleet,
so unrelated fleets never wait on each other.
"""

from __future__ import annotations

import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import datetime
from typing import Any

from loguru import logger

from dropfleet import lifecycle, naming
from dropfleet.capacity import CapacityGuard
from dropfleet.catalog import image_reference
from dropfleet.client import call_api, get_client
from dropfleet.constants import DEFAULT_MAX_WORKERS, ProvisionPhase
from dropfleet.core.exceptions import CapacityExceededError
from dropfleet.inventory import RemoteInventory, Snapshot
from dropfleet.launcher import SSHLauncher
from dropfleet.node import ManagedNode
from dropfleet.resources import ResourceConfig
from dropfleet.selection import TemplateSelector
from dropfleet.types import (
    FleetConfig,
    Label,
    Launcher,
    NodeRegistry,
    PlannedInstance,
    ProvisioningId,
    ProvisioningRequest,
    RemoteInstance,
    TemplateConfig,
)

_fleet_locks: dict[str, threading.RLock] = {}
_fleet_locks_guard = threading.Lock()


def fleet_lock(fleet_name: str) -> threading.RLock:
    """The process-wide provisioning lock for a fleet."""
    with _fleet_locks_guard:
        lock = _fleet_locks.get(fleet_name)
        if lock is None:
            lock = _fleet_locks[fleet_name] = threading.RLock()
        return lock


def _label_name(label: Label | None) -> str:
    return label.name if label is not None else "<none>"


class ProvisioningController:
    """Plans and creates droplets for one fleet."""

    def __init__(
        self,
        fleet: FleetConfig,
        registry: NodeRegistry,
        *,
        client: Any | None = None,
        launcher: Launcher | None = None,
        executor: Executor | None = None,
        selector: TemplateSelector | None = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self.fleet = fleet
        self.registry = registry
        self.client = client if client is not None else get_client(fleet.auth_token)
        self.inventory = RemoteInventory(self.client)
        self.guard = CapacityGuard(fleet, registry)
        self.selector = selector or TemplateSelector()
        self.launcher = launcher or SSHLauncher(self.client)
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=f"dropfleet-{fleet.name}",
        )
        self._lock = fleet_lock(fleet.name)
        self._log = logger.bind(component="controller", fleet=fleet.name)
        self._log.info("Fleet {fleet} ready with {n} templates", fleet=fleet.name, n=len(fleet.templates))

    # -------------------------------------------------------------------------
    # Host-facing API
    # -------------------------------------------------------------------------

    def can_provision(self, label: Label | None) -> bool:
        """Cheap admission check: eligibility and local caps, no API call."""
        name = _label_name(label)
        with self._lock:
            try:
                template = self.selector.pick_first_under_cap(
                    self.selector.rank(self.fleet.templates, label),
                    lambda t: not self.guard.is_cap_reached_local(self.guard.template_scope(t)),
                )
                if template is None:
                    self._log.info(
                        "No template can provision for label {label}: unsupported label or caps reached",
                        label=name,
                    )
                    return False
                if self.guard.is_cap_reached_local(self.guard.fleet_scope()):
                    self._log.info("Fleet instance cap reached, not provisioning for label {label}", label=name)
                    return False
            except Exception:
                self._log.exception("can_provision failed for label {label}", label=name)
                return False

        self._log.debug("can_provision {label} -> yes", label=name)
        return True

    def provision(self, label: Label | None, excess_workload: int) -> list[PlannedInstance]:
        """Plan droplets for ``excess_workload`` executors of ``label``.

        Each iteration rounds up to a whole template, so the plan may
        exceed the requested executors. Errors during planning are logged
        and whatever was planned so far is returned.
        """
        request = ProvisioningRequest(label=label, excess_workload=excess_workload)
        planned: list[PlannedInstance] = []

        self._log.info(
            "Provisioning for label {label} (offline: {offline}); excess workload: {excess}",
            label=_label_name(label),
            offline=label.is_offline if label is not None else False,
            excess=request.excess_workload,
        )

        with self._lock:
            try:
                remaining = request.excess_workload
                while remaining > 0:
                    planned_instance = self._plan_one(request.label)
                    if planned_instance is None:
                        break
                    planned.append(planned_instance)
                    remaining -= planned_instance.num_executors
            except Exception:
                self._log.exception("Provisioning for label {label} aborted", label=_label_name(label))

        self._log.info("Planned {n} droplets for label {label}", n=len(planned), label=_label_name(label))
        return planned

    def terminate(self, node: ManagedNode) -> Future[None]:
        return lifecycle.terminate(self.registry, self.client, node, self._executor)

    def reap_idle(self, now: datetime | None = None) -> list[ManagedNode]:
        fleet_nodes = _FleetView(self.registry, self.fleet.name)
        return lifecycle.reap_idle(fleet_nodes, self.client, self._executor, now)

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    def __enter__(self) -> ProvisioningController:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Admission
    # -------------------------------------------------------------------------

    def _plan_one(self, label: Label | None) -> PlannedInstance | None:
        self._log.debug("Phase {phase}", phase=ProvisionPhase.ADMISSION_CHECK)
        snapshot = self.inventory.snapshot()
        if self.guard.is_cap_reached(self.guard.fleet_scope(), snapshot):
            self._log.info("Instance cap reached, not provisioning")
            return None

        self._log.debug("Phase {phase}", phase=ProvisionPhase.SELECTING)
        template = self._select(label, snapshot)
        if template is None:
            self._log.info("No template below its cap for label {label}", label=_label_name(label))
            return None

        pid = ProvisioningId(
            fleet_name=self.fleet.name,
            template_name=template.name,
            node_name=naming.generate(self.fleet.name, template.name),
        )
        future = self._executor.submit(self._create, pid, template)
        self._log.info("Planned {node} from template {template}", node=pid.node_name, template=template.name)
        return PlannedInstance(id=pid, num_executors=template.num_executors, future=future)

    def _select(self, label: Label | None, snapshot: Snapshot) -> TemplateConfig | None:
        ranked = self.selector.rank(self.fleet.templates, label)
        return self.selector.pick_first_under_cap(
            ranked,
            lambda t: not self.guard.is_cap_reached(self.guard.template_scope(t), snapshot),
        )

    # -------------------------------------------------------------------------
    # Creation (worker thread)
    # -------------------------------------------------------------------------

    def _create(self, pid: ProvisioningId, template: TemplateConfig) -> ManagedNode | None:
        log = self._log.bind(template=template.name, node=pid.node_name)

        with self._lock:
            log.debug("Phase {phase}", phase=ProvisionPhase.RESERVING)
            try:
                self._reserve(template)
            except CapacityExceededError as e:
                log.info("Phase {phase}: {reason}", phase=ProvisionPhase.ABORTED, reason=e)
                return None
            except Exception:
                log.exception("Phase {phase}: could not re-check caps", phase=ProvisionPhase.FAILED)
                raise

            log.debug("Phase {phase}", phase=ProvisionPhase.CREATING)
            try:
                droplet = template.chain.run(
                    lambda config: self._create_droplet(pid, template, config),
                    node_name=pid.node_name,
                )
            except Exception:
                log.exception("Phase {phase}: could not create droplet", phase=ProvisionPhase.FAILED)
                raise

            node = ManagedNode.create(pid, droplet, template)
            self.registry.add(node)

        log.debug("Phase {phase}", phase=ProvisionPhase.CONNECTING)
        try:
            node = self.launcher.launch(node, self.fleet)
        except Exception:
            log.exception("Phase {phase}: could not connect to {node}", phase=ProvisionPhase.FAILED, node=pid.node_name)
            lifecycle.terminate(self.registry, self.client, node, self._executor)
            raise

        log.info("Phase {phase}: {node} is ready", phase=ProvisionPhase.DONE, node=pid.node_name)
        return node

    def _reserve(self, template: TemplateConfig) -> Snapshot:
        """Re-check fleet and template caps against a fresh snapshot.

        Must be called with the fleet lock held.

        Raises:
            CapacityExceededError: If either cap has been reached.
        """
        snapshot = self.inventory.snapshot()
        for scope in (self.guard.fleet_scope(), self.guard.template_scope(template)):
            if self.guard.is_cap_reached(scope, snapshot):
                local, remote = self.guard.counts(scope, snapshot)
                raise CapacityExceededError(str(scope), max(local, remote), self.guard.cap_for(scope) or 0)
        return snapshot

    def _create_droplet(
        self,
        pid: ProvisioningId,
        template: TemplateConfig,
        config: ResourceConfig,
    ) -> RemoteInstance:
        body: dict[str, Any] = {
            "name": pid.node_name,
            "size": config.size_id,
            "region": template.region_id,
            "image": image_reference(template.image_id),
            "private_networking": self.fleet.use_private_networking,
            "monitoring": template.install_monitoring,
            "tags": template.tag_list,
        }
        if self.fleet.ssh_key_id:
            body["ssh_keys"] = [self.fleet.ssh_key_id]
        if template.user_data.strip():
            body["user_data"] = template.user_data

        self._log.info(
            "Creating droplet {node} (size: {size}, region: {region}, image: {image})",
            node=pid.node_name, size=config.size_id, region=template.region_id, image=template.image_id,
        )
        resp = call_api("create droplet", lambda: self.client.droplets.create(body=body))
        return RemoteInstance.from_api(resp["droplet"])


class _FleetView:
    """Registry view restricted to one fleet's nodes."""

    __slots__ = ("_registry", "_fleet")

    def __init__(self, registry: NodeRegistry, fleet: str) -> None:
        self._registry = registry
        self._fleet = fleet

    def nodes(self) -> list[ManagedNode]:
        return [n for n in self._registry.nodes() if naming.is_instance_of_fleet(n.name, self._fleet)]

    def add(self, node: ManagedNode) -> None:
        self._registry.add(node)

    def remove(self, node: ManagedNode) -> None:
        self._registry.remove(node)
