"""Droplet size configs and their fallback chain.

Each template owns an ordered chain of sizes: the primary config followed
by fallbacks. A size that fails to provision is marked unhealthy for an
hour and skipped while the marker holds; the last size in the chain is
always attempted so that stale markers never block provisioning entirely.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime

from loguru import logger

from dropfleet.constants import UNHEALTHY_COOLDOWN
from dropfleet.core.exceptions import CapacityExceededError, ChainExhaustedError

log = logger.bind(component="resources")


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(eq=False, slots=True)
class ResourceConfig:
    """A droplet size slug plus a self-clearing health marker."""

    size_id: str
    _unhealthy_until: datetime | None = field(default=None, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def mark_unhealthy(self, now: datetime | None = None) -> None:
        until = (now or _utcnow()) + UNHEALTHY_COOLDOWN
        with self._lock:
            self._unhealthy_until = until
        log.info("Size {size} marked unhealthy until {until}", size=self.size_id, until=until)

    def is_healthy(self, now: datetime | None = None) -> bool:
        now = now or _utcnow()
        with self._lock:
            if self._unhealthy_until is None:
                return True
            if now >= self._unhealthy_until:
                self._unhealthy_until = None
                return True
            return False

    @property
    def unhealthy_until(self) -> datetime | None:
        with self._lock:
            return self._unhealthy_until


@dataclass(frozen=True, slots=True)
class ConfigChain:
    """Ordered sequence of resource configs, primary first."""

    configs: tuple[ResourceConfig, ...]

    def __post_init__(self) -> None:
        if not self.configs:
            raise ValueError("ConfigChain needs at least one resource config")

    @classmethod
    def of(cls, primary: ResourceConfig, fallbacks: tuple[ResourceConfig, ...] = ()) -> ConfigChain:
        return cls((primary, *fallbacks))

    def __iter__(self) -> Iterator[ResourceConfig]:
        return iter(self.configs)

    def __len__(self) -> int:
        return len(self.configs)

    @property
    def sizes(self) -> tuple[str, ...]:
        return tuple(c.size_id for c in self.configs)

    def attempts(self, now: datetime | None = None) -> Iterator[ResourceConfig]:
        """Yield configs to try in order: healthy ones, then always the last."""
        last = len(self.configs) - 1
        for index, config in enumerate(self.configs):
            if index == last or config.is_healthy(now):
                yield config

    def next_healthy(self, now: datetime | None = None) -> ResourceConfig:
        return next(self.attempts(now))

    def all_unhealthy(self, now: datetime | None = None) -> bool:
        return not any(c.is_healthy(now) for c in self.configs)

    def run[T](self, attempt: Callable[[ResourceConfig], T], *, node_name: str = "") -> T:
        """Call ``attempt`` with successive configs until one succeeds.

        Raises:
            CapacityExceededError: Propagated untouched, nothing is marked.
            ChainExhaustedError: The final config failed too.
        """
        last_error: Exception | None = None
        for config in self.attempts():
            try:
                return attempt(config)
            except CapacityExceededError:
                raise
            except Exception as e:
                config.mark_unhealthy()
                last_error = e
                log.warning(
                    "Provisioning {node} with size {size} failed: {err}",
                    node=node_name, size=config.size_id, err=e,
                )
        raise ChainExhaustedError(node_name, self.sizes) from last_error
