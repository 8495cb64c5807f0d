"""Centralized constants and enums for dropfleet.

All magic strings, defaults and timing constants are defined here
to ensure consistency throughout the codebase.
"""

from __future__ import annotations

from datetime import timedelta
from enum import StrEnum
from typing import Final

# =============================================================================
# Droplet States
# =============================================================================


class DropletStatus(StrEnum):
    """DigitalOcean droplet status values."""

    NEW = "new"
    ACTIVE = "active"
    OFF = "off"
    ARCHIVE = "archive"


LIVE_STATUSES: Final = frozenset({DropletStatus.NEW, DropletStatus.ACTIVE})


# =============================================================================
# Provisioning Phases
# =============================================================================


class ProvisionPhase(StrEnum):
    """Phases a single provisioning decision moves through."""

    IDLE = "idle"
    ADMISSION_CHECK = "admission_check"
    SELECTING = "selecting"
    RESERVING = "reserving"
    CREATING = "creating"
    CONNECTING = "connecting"
    DONE = "done"
    ABORTED = "aborted"
    FAILED = "failed"


# =============================================================================
# Template Ranking
# =============================================================================

PREFERRED_TEMPLATES: Final = (
    "c.16core.build.neon",
    "c.8core.build.neon",
    "c.4core.build.neon",
)
HIGH_CAPACITY_PREFIX: Final = "c."


# =============================================================================
# Timing
# =============================================================================

UNHEALTHY_COOLDOWN: Final = timedelta(hours=1)
DROPLET_POLL_INTERVAL: Final = 5
DEFAULT_TIMEOUT_MINUTES: Final = 5
DEFAULT_CONNECTION_RETRY_WAIT: Final = 10
DEFAULT_IDLE_TERMINATION_MINUTES: Final = 10


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_NUM_EXECUTORS: Final = 1
DEFAULT_SSH_PORT: Final = 22
DEFAULT_MAX_WORKERS: Final = 8
API_PAGE_SIZE: Final = 200
TOKEN_ENV_VAR: Final = "DIGITALOCEAN_TOKEN"
