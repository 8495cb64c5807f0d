"""Droplet naming scheme.

Generated names embed the fleet and template they belong to, so any
process can tell which droplets count against which cap just by
looking at their names:

    <fleet>-<template>-<token>

Fleet and template names are restricted to ``[A-Za-z0-9.]``, which keeps
``-`` free as an unambiguous separator. The token is a uuid4 hex string.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass

_NAME_RE = re.compile(r"[A-Za-z0-9.]+")
_TOKEN_RE = re.compile(r"[0-9a-f]{32}")
_SEPARATOR = "-"


@dataclass(frozen=True, slots=True)
class DropletName:
    """Parsed components of a generated droplet name."""

    fleet: str
    template: str
    token: str

    def __str__(self) -> str:
        return _SEPARATOR.join((self.fleet, self.template, self.token))


def is_valid_fleet_name(name: str) -> bool:
    return bool(name) and _NAME_RE.fullmatch(name) is not None


def is_valid_template_name(name: str) -> bool:
    return bool(name) and _NAME_RE.fullmatch(name) is not None


def generate(fleet_name: str, template_name: str) -> str:
    """Generate a unique droplet name for a fleet/template pair.

    Raises:
        ValueError: If either name contains characters outside ``[A-Za-z0-9.]``.
    """
    if not is_valid_fleet_name(fleet_name):
        raise ValueError(f"Invalid fleet name: {fleet_name!r}")
    if not is_valid_template_name(template_name):
        raise ValueError(f"Invalid template name: {template_name!r}")
    return str(DropletName(fleet_name, template_name, uuid.uuid4().hex))


def parse(name: str) -> DropletName | None:
    """Split a generated name into its parts, or None if it isn't one of ours."""
    parts = name.split(_SEPARATOR)
    if len(parts) != 3:
        return None
    fleet, template, token = parts
    if not (is_valid_fleet_name(fleet) and is_valid_template_name(template)):
        return None
    if _TOKEN_RE.fullmatch(token) is None:
        return None
    return DropletName(fleet, template, token)


def is_instance_of_fleet(name: str, fleet_name: str) -> bool:
    parsed = parse(name)
    return parsed is not None and parsed.fleet == fleet_name


def is_instance_of_template(name: str, fleet_name: str, template_name: str) -> bool:
    parsed = parse(name)
    return (
        parsed is not None
        and parsed.fleet == fleet_name
        and parsed.template == template_name
    )
