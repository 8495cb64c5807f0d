"""TOML-based fleet configuration.

Loads ~/.dropfleet/defaults.toml (global) and dropfleet.toml (project),
merges them, and resolves named fleets into FleetConfig instances.

    [fleets.builds]
    instance_cap = 10
    private_key_path = "~/.ssh/builds_rsa"

    [[fleets.builds.templates]]
    name = "c.8core.build.neon"
    image_id = "ubuntu-24-04-x64"
    region_id = "fra1"
    size_id = "c-8"
    fallback_sizes = ["c-16"]
    labels = "linux docker"
    instance_cap = 4
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Callable
from pathlib import Path
from typing import Any

from loguru import logger

from dropfleet import validation
from dropfleet.constants import (
    DEFAULT_CONNECTION_RETRY_WAIT,
    DEFAULT_IDLE_TERMINATION_MINUTES,
    DEFAULT_NUM_EXECUTORS,
    DEFAULT_SSH_PORT,
    DEFAULT_TIMEOUT_MINUTES,
    TOKEN_ENV_VAR,
)
from dropfleet.core.exceptions import ConfigurationError
from dropfleet.resources import ResourceConfig
from dropfleet.types import FleetConfig, TemplateConfig

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".dropfleet" / "defaults.toml"
PROJECT_CONFIG_NAME = "dropfleet.toml"

log = logger.bind(component="config")


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    with path.open("rb") as f:
        return tomllib.load(f)


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("fleets", {})
    return merged


def _lenient_int(
    raw: RawConfig,
    key: str,
    default: int,
    template: str,
    check: Callable[[Any, str], int],
) -> int:
    value = raw.get(key)
    if value is None:
        return default
    try:
        return check(value, key)
    except ConfigurationError:
        log.info(
            "Template {template}: invalid {key} {value!r}, using default {default}",
            template=template, key=key, value=value, default=default,
        )
        return default


def _build_resources(raw: RawConfig, template: str) -> tuple[ResourceConfig, tuple[ResourceConfig, ...]]:
    primary = raw.get("droplet_config")
    if isinstance(primary, dict):
        size_id = primary.get("size_id")
    else:
        size_id = primary if primary is not None else raw.get("size_id")
    size_id = validation.check_required(size_id, f"templates.{template}.size_id")

    fallbacks = tuple(
        ResourceConfig(validation.check_required(
            f.get("size_id") if isinstance(f, dict) else f,
            f"templates.{template}.fallback_sizes",
        ))
        for f in raw.get("fallback_sizes", raw.get("fallback_configs", ()))
    )
    return ResourceConfig(size_id), fallbacks


def _build_template(raw: RawConfig) -> TemplateConfig:
    name = validation.check_template_name(raw.get("name"))
    primary, fallbacks = _build_resources(raw, name)

    num_executors = _lenient_int(
        raw, "num_executors", DEFAULT_NUM_EXECUTORS, name, validation.check_num_executors
    )

    return TemplateConfig(
        name=name,
        image_id=validation.check_required(raw.get("image_id"), f"templates.{name}.image_id"),
        region_id=validation.check_required(raw.get("region_id"), f"templates.{name}.region_id"),
        droplet_config=primary,
        fallback_configs=fallbacks,
        username=validation.check_required(raw.get("username", "root"), f"templates.{name}.username"),
        workspace_path=validation.check_required(
            raw.get("workspace_path", "/jenkins"), f"templates.{name}.workspace_path"
        ),
        labels=raw.get("labels", ""),
        labelless_jobs_allowed=bool(raw.get("labelless_jobs_allowed", False)),
        num_executors=num_executors,
        idle_termination_minutes=_lenient_int(
            raw, "idle_termination_minutes", DEFAULT_IDLE_TERMINATION_MINUTES, name,
            validation.check_idle_termination,
        ),
        ssh_port=validation.check_non_negative(raw.get("ssh_port", DEFAULT_SSH_PORT), f"templates.{name}.ssh_port"),
        instance_cap=validation.check_instance_cap(raw.get("instance_cap", 0), f"templates.{name}.instance_cap"),
        install_monitoring=bool(raw.get("install_monitoring", False)),
        tags=raw.get("tags", ""),
        user_data=raw.get("user_data", ""),
        init_script=raw.get("init_script", ""),
    )


def _read_private_key(raw: RawConfig, fleet: str) -> str:
    if "private_key" in raw:
        return validation.check_private_key(raw["private_key"])
    key_path = raw.get("private_key_path")
    if key_path is None:
        raise ConfigurationError(f"Fleet '{fleet}' needs 'private_key' or 'private_key_path'", "private_key")
    path = Path(key_path).expanduser()
    if not path.is_file():
        raise ConfigurationError(f"No such file: {path}", "private_key_path")
    return validation.check_private_key(path.read_text())


def build_fleet(name: str, raw: RawConfig) -> FleetConfig:
    """Validate one ``[fleets.<name>]`` table into a FleetConfig.

    Raises:
        ConfigurationError: If any field is missing or invalid.
    """
    name = validation.check_fleet_name(name)
    raw_templates = raw.get("templates", [])
    templates = tuple(_build_template(t) for t in raw_templates)
    validation.check_unique_templates(t.name for t in templates)

    fleet = FleetConfig(
        name=name,
        auth_token=validation.check_auth_token(raw.get("auth_token") or os.environ.get(TOKEN_ENV_VAR)),
        private_key=_read_private_key(raw, name),
        ssh_key_id=validation.check_non_negative(raw.get("ssh_key_id", 0), "ssh_key_id"),
        instance_cap=validation.check_instance_cap(raw.get("instance_cap", 0)),
        use_private_networking=bool(raw.get("use_private_networking", False)),
        timeout_minutes=validation.check_positive(
            raw.get("timeout_minutes", DEFAULT_TIMEOUT_MINUTES), "timeout_minutes"
        ),
        connection_retry_wait=validation.check_positive(
            raw.get("connection_retry_wait", DEFAULT_CONNECTION_RETRY_WAIT), "connection_retry_wait"
        ),
        templates=templates,
    )
    log.debug("Loaded fleet {fleet} with {n} templates", fleet=name, n=len(templates))
    return fleet


def resolve_fleet(
    name: str,
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> FleetConfig:
    config = load_config(project_dir=project_dir, global_path=global_path)

    fleets = config["fleets"]
    if name not in fleets:
        raise KeyError(f"Fleet '{name}' not found. Available: {', '.join(fleets) or 'none'}")

    return build_fleet(name, fleets[name])


def resolve_fleets(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> tuple[FleetConfig, ...]:
    config = load_config(project_dir=project_dir, global_path=global_path)
    return tuple(build_fleet(name, raw) for name, raw in config["fleets"].items())
