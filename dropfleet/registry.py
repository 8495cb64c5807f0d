"""In-memory node registry.

Reads return a snapshot copy so cap checks never see a list being
mutated underneath them; writers serialize on an internal lock.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from loguru import logger

from dropfleet.node import ManagedNode

log = logger.bind(component="registry")


@dataclass
class InMemoryNodeRegistry:
    _nodes: dict[str, ManagedNode] = field(default_factory=dict, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def nodes(self) -> tuple[ManagedNode, ...]:
        with self._lock:
            return tuple(self._nodes.values())

    def add(self, node: ManagedNode) -> None:
        with self._lock:
            if node.name in self._nodes:
                raise ValueError(f"Node {node.name} is already registered")
            self._nodes[node.name] = node
        log.debug("Registered node {node}", node=node.name)

    def remove(self, node: ManagedNode) -> None:
        with self._lock:
            removed = self._nodes.pop(node.name, None)
        if removed is not None:
            log.debug("Removed node {node}", node=node.name)

    def get(self, name: str) -> ManagedNode | None:
        with self._lock:
            return self._nodes.get(name)

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)
