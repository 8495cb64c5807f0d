"""Node teardown: explicit termination and idle reaping."""

from __future__ import annotations

from concurrent.futures import Executor, Future
from datetime import datetime
from typing import Any

from loguru import logger

from dropfleet.inventory import RemoteInventory
from dropfleet.node import ManagedNode
from dropfleet.types import NodeRegistry, RemoteInstance

log = logger.bind(component="lifecycle")


def describe(client: Any, node: ManagedNode) -> RemoteInstance:
    """Fetch the current API view of a node's droplet."""
    return RemoteInventory(client).get(node.droplet_id)


def _destroy(client: Any, node: ManagedNode) -> None:
    try:
        client.droplets.destroy(droplet_id=node.droplet_id)
        log.info("Destroyed droplet {id} ({node})", id=node.droplet_id, node=node.name)
    except Exception as e:
        log.warning("Could not destroy droplet {id} ({node}): {err}", id=node.droplet_id, node=node.name, err=e)


def terminate(
    registry: NodeRegistry,
    client: Any,
    node: ManagedNode,
    executor: Executor,
) -> Future[None]:
    """Remove a node from the registry and destroy its droplet in the background.

    Destruction is best-effort: failures are logged, never raised.
    """
    log.info("Terminating node {node}", node=node.name)
    registry.remove(node)
    return executor.submit(_destroy, client, node)


def reap_idle(
    registry: NodeRegistry,
    client: Any,
    executor: Executor,
    now: datetime | None = None,
) -> list[ManagedNode]:
    """Terminate every node idle past its template's termination window."""
    expired = [node for node in registry.nodes() if node.is_idle_expired(now)]
    for node in expired:
        terminate(registry, client, node, executor)
    if expired:
        log.info("Reaped {n} idle nodes", n=len(expired))
    return expired
