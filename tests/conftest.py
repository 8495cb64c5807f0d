from __future__ import annotations

from collections.abc import Callable, Iterator

import pytest

from dropfleet.controller import ProvisioningController
from dropfleet.registry import InMemoryNodeRegistry
from dropfleet.types import FleetConfig
from tests.fakes import FakeClient, FakeLauncher


@pytest.fixture
def client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def registry() -> InMemoryNodeRegistry:
    return InMemoryNodeRegistry()


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def make_controller(
    client: FakeClient,
    registry: InMemoryNodeRegistry,
    launcher: FakeLauncher,
) -> Iterator[Callable[[FleetConfig], ProvisioningController]]:
    controllers: list[ProvisioningController] = []

    def factory(fleet: FleetConfig, **kwargs) -> ProvisioningController:
        kwargs.setdefault("client", client)
        kwargs.setdefault("launcher", launcher)
        controller = ProvisioningController(fleet, kwargs.pop("registry", registry), **kwargs)
        controllers.append(controller)
        return controller

    yield factory

    for controller in controllers:
        controller.close()
