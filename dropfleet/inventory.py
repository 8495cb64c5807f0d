"""Remote droplet inventory.

Deliberately uncached: every provisioning decision works from a fresh
listing, because a stale view is exactly what lets a fleet overshoot
its cap.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from loguru import logger

from dropfleet.client import call_api, paginate
from dropfleet.constants import API_PAGE_SIZE
from dropfleet.types import RemoteInstance

log = logger.bind(component="inventory")

type Snapshot = tuple[RemoteInstance, ...]


@dataclass(frozen=True, slots=True)
class RemoteInventory:
    client: Any

    def snapshot(self) -> Snapshot:
        """List every droplet on the account.

        Raises:
            RemoteAPIError: If the listing fails.
        """
        raw = call_api(
            "list droplets",
            lambda: paginate(self.client.droplets.list, "droplets", API_PAGE_SIZE),
        )
        droplets = tuple(RemoteInstance.from_api(d) for d in raw)
        log.debug("Fetched {n} droplets", n=len(droplets))
        return droplets

    def get(self, droplet_id: int) -> RemoteInstance:
        resp = call_api(
            "get droplet",
            lambda: self.client.droplets.get(droplet_id=droplet_id),
        )
        return RemoteInstance.from_api(resp["droplet"])
