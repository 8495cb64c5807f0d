"""Connect to freshly created droplets.

The launcher runs outside the provisioning lock: it waits for the
droplet to become active, opens an SSH session with the fleet's private
key and runs the template's init script once. All of it is bounded by
the fleet's ``timeout_minutes``.
"""

from __future__ import annotations

import io
import time
from dataclasses import dataclass
from typing import Any

import paramiko
from loguru import logger
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_delay,
    wait_fixed,
)

from dropfleet.constants import DROPLET_POLL_INTERVAL, DropletStatus
from dropfleet.core.exceptions import LaunchError
from dropfleet.node import ManagedNode
from dropfleet.types import FleetConfig

log = logger.bind(component="launcher")

INIT_MARKER = ".dropfleet-init-done"


class _DropletPendingError(Exception):
    """Droplet not yet active - retry."""


def _load_private_key(pem: str) -> paramiko.PKey:
    try:
        return paramiko.RSAKey.from_private_key(io.StringIO(pem))
    except paramiko.SSHException as e:
        raise LaunchError("<config>", f"unreadable private key: {e}") from e


@dataclass(frozen=True, slots=True)
class SSHLauncher:
    client: Any

    def launch(self, node: ManagedNode, fleet: FleetConfig) -> ManagedNode:
        timeout = fleet.timeout_minutes * 60
        deadline = time.monotonic() + timeout

        self._wait_for_active(node, timeout)

        remaining = max(deadline - time.monotonic(), 0.0)
        ssh = self._connect(node, fleet, remaining)
        try:
            if node.init_script.strip():
                self._run_init_script(ssh, node)
        finally:
            ssh.close()

        log.info("Node {node} is online at {ip}", node=node.name, ip=node.address(fleet))
        return node

    def _wait_for_active(self, node: ManagedNode, timeout: float) -> None:
        @retry(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(DROPLET_POLL_INTERVAL),
            retry=retry_if_exception_type(_DropletPendingError),
        )
        def check() -> None:
            resp = self.client.droplets.get(droplet_id=node.droplet_id)
            data = resp["droplet"]

            if data["status"] != DropletStatus.ACTIVE:
                raise _DropletPendingError()

            for network in data["networks"]["v4"]:
                if network["type"] == "public":
                    node.ip = network["ip_address"]
                elif network["type"] == "private":
                    node.private_ip = network["ip_address"]

            if not node.ip:
                raise _DropletPendingError()

        try:
            check()
        except RetryError as e:
            raise LaunchError(
                node.name, f"droplet {node.droplet_id} did not become active within {timeout:.0f}s"
            ) from e

    def _connect(self, node: ManagedNode, fleet: FleetConfig, timeout: float) -> paramiko.SSHClient:
        pkey = _load_private_key(fleet.private_key)
        host = node.address(fleet)

        @retry(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(fleet.connection_retry_wait),
            retry=retry_if_exception_type((paramiko.SSHException, OSError)),
        )
        def connect() -> paramiko.SSHClient:
            log.debug("Connecting to {node} at {host}:{port}", node=node.name, host=host, port=node.ssh_port)
            ssh = paramiko.SSHClient()
            ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            try:
                ssh.connect(
                    hostname=host,
                    port=node.ssh_port,
                    username=node.username,
                    pkey=pkey,
                    timeout=fleet.connection_retry_wait,
                    allow_agent=False,
                    look_for_keys=False,
                )
            except Exception:
                ssh.close()
                raise
            return ssh

        try:
            return connect()
        except RetryError as e:
            raise LaunchError(node.name, f"ssh to {host} did not succeed within {timeout:.0f}s") from e

    def _run_init_script(self, ssh: paramiko.SSHClient, node: ManagedNode) -> None:
        command = f"test -e ~/{INIT_MARKER} || (sh -s && touch ~/{INIT_MARKER})"
        stdin, stdout, stderr = ssh.exec_command(command)
        stdin.write(node.init_script)
        stdin.channel.shutdown_write()
        code = stdout.channel.recv_exit_status()
        if code != 0:
            raise LaunchError(node.name, f"init script failed ({code}): {stderr.read().decode()}")
        log.info("Init script finished on {node}", node=node.name)
