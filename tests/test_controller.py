"""Tests for ProvisioningController admission, reservation and creation."""

from __future__ import annotations

import threading
from concurrent.futures import wait
from datetime import UTC, datetime, timedelta

import pytest

from dropfleet import naming
from dropfleet.controller import ProvisioningController, fleet_lock
from dropfleet.core.exceptions import ChainExhaustedError, LaunchError, RemoteAPIError
from dropfleet.node import ManagedNode
from dropfleet.registry import InMemoryNodeRegistry
from tests.fakes import FakeAPIError, FakeLabel, ManualExecutor, make_fleet, make_template

LINUX = FakeLabel("linux")


def _resolve(planned):
    done, not_done = wait([p.future for p in planned], timeout=10)
    assert not not_done
    return [p.future.result() for p in planned]


class TestProvision:
    def test_exact_fit(self, make_controller, client, registry):
        fleet = make_fleet(make_template("linux", labels="linux", instance_cap=5), instance_cap=5)
        controller = make_controller(fleet)

        planned = controller.provision(LINUX, 5)
        assert len(planned) == 5
        assert all(isinstance(node, ManagedNode) for node in _resolve(planned))
        assert len(registry) == 5

        assert controller.provision(LINUX, 1) == []
        assert len(client.created) == 5

    def test_handles_carry_identity(self, make_controller):
        fleet = make_fleet(make_template("linux", labels="linux", num_executors=2))
        planned = make_controller(fleet).provision(LINUX, 2)

        assert len(planned) == 1
        handle = planned[0]
        assert handle.num_executors == 2
        assert handle.id.fleet_name == "builds"
        assert handle.id.template_name == "linux"
        assert naming.is_instance_of_template(handle.name, "builds", "linux")
        assert _resolve(planned)[0].name == handle.name

    def test_rounds_up_to_whole_templates(self, make_controller):
        fleet = make_fleet(make_template("linux", labels="linux", num_executors=4))
        planned = make_controller(fleet).provision(LINUX, 5)
        assert len(planned) == 2
        assert sum(p.num_executors for p in planned) == 8

    def test_zero_workload_plans_nothing(self, make_controller, client):
        fleet = make_fleet(make_template("linux", labels="linux"))
        assert make_controller(fleet).provision(LINUX, 0) == []
        assert client.list_calls == 0

    def test_label_mismatch(self, make_controller, client):
        fleet = make_fleet(
            make_template("linux", labels="linux"),
            make_template("plain", labels="", labelless_jobs_allowed=False),
        )
        controller = make_controller(fleet)

        planned = controller.provision(LINUX, 1)
        assert [p.id.template_name for p in planned] == ["linux"]
        _resolve(planned)

        assert controller.provision(None, 3) == []
        assert not controller.can_provision(None)
        assert len(client.created) == 1

    def test_no_label_goes_to_permissive_template(self, make_controller, client):
        fleet = make_fleet(
            make_template("linux", labels="linux"),
            make_template("open", labels="linux", labelless_jobs_allowed=True),
        )
        planned = make_controller(fleet).provision(None, 1)

        assert [p.id.template_name for p in planned] == ["open"]
        _resolve(planned)
        assert len(client.created) == 1

    def test_remote_instances_count_against_cap(self, make_controller, client, registry):
        for _ in range(5):
            client.add_droplet(naming.generate("builds", "linux"))
        fleet = make_fleet(make_template("linux", labels="linux"), instance_cap=5)

        assert make_controller(fleet).provision(LINUX, 3) == []
        assert len(registry) == 0
        assert client.created == []

    def test_other_fleets_do_not_count(self, make_controller, client):
        for _ in range(5):
            client.add_droplet(naming.generate("other", "linux"))
        client.add_droplet("builds-linux")
        fleet = make_fleet(make_template("linux", labels="linux"), instance_cap=5)

        assert len(make_controller(fleet).provision(LINUX, 2)) == 2

    def test_falls_through_to_next_template_at_cap(self, make_controller):
        fleet = make_fleet(
            make_template("c.16core.build.neon", labels="linux", instance_cap=1),
            make_template("linux.small", labels="linux"),
        )
        controller = make_controller(fleet)

        first = controller.provision(LINUX, 1)
        _resolve(first)
        second = controller.provision(LINUX, 1)

        assert first[0].id.template_name == "c.16core.build.neon"
        assert second[0].id.template_name == "linux.small"

    def test_over_request_resolves_surplus_to_none(self, make_controller, client, registry):
        fleet = make_fleet(make_template("linux", labels="linux", instance_cap=2))
        planned = make_controller(fleet).provision(LINUX, 5)

        assert len(planned) == 5
        results = _resolve(planned)
        assert sum(r is not None for r in results) == 2
        assert results.count(None) == 3
        assert len(client.created) == 2
        assert len(registry) == 2

    def test_create_body(self, make_controller, client):
        fleet = make_fleet(
            make_template(
                "linux",
                labels="linux",
                size="c-8",
                image_id="123456",
                tags="ci  builds",
                user_data="#cloud-config\n",
                install_monitoring=True,
            ),
            ssh_key_id=42,
            use_private_networking=True,
        )
        planned = make_controller(fleet).provision(LINUX, 1)
        _resolve(planned)

        body = client.create_bodies[0]
        assert body["name"] == planned[0].name
        assert body["size"] == "c-8"
        assert body["region"] == "fra1"
        assert body["image"] == 123456
        assert body["ssh_keys"] == [42]
        assert body["tags"] == ["ci", "builds"]
        assert body["user_data"] == "#cloud-config\n"
        assert body["monitoring"] is True
        assert body["private_networking"] is True

    def test_optional_body_fields_omitted(self, make_controller, client):
        fleet = make_fleet(make_template("linux", labels="linux", user_data="  "))
        _resolve(make_controller(fleet).provision(LINUX, 1))

        body = client.create_bodies[0]
        assert body["image"] == "ubuntu-24-04-x64"
        assert "ssh_keys" not in body
        assert "user_data" not in body


class TestFailures:
    def test_snapshot_failure_returns_empty(self, make_controller, client):
        client.list_error = FakeAPIError("500 internal error")
        fleet = make_fleet(make_template("linux", labels="linux"))
        assert make_controller(fleet).provision(LINUX, 3) == []

    def test_snapshot_failure_mid_loop_returns_partial(self, make_controller, client):
        client.list_budget = 1
        fleet = make_fleet(make_template("linux", labels="linux"))
        planned = make_controller(fleet).provision(LINUX, 3)

        assert len(planned) == 1
        with pytest.raises(RemoteAPIError):
            planned[0].future.result(timeout=10)
        assert client.created == []

    def test_fallback_size_used_when_primary_fails(self, make_controller, client):
        template = make_template("linux", labels="linux", size="c-8", fallbacks=("c-16",))
        client.failing_sizes = {"c-8"}
        planned = make_controller(make_fleet(template)).provision(LINUX, 1)
        _resolve(planned)

        assert [b["size"] for b in client.create_bodies] == ["c-8", "c-16"]
        assert not template.droplet_config.is_healthy()
        assert template.fallback_configs[0].is_healthy()

    def test_chain_exhaustion_fails_only_that_handle(self, make_controller, client, registry):
        broken = make_template("c.16core.build.neon", labels="linux", size="c-16", fallbacks=("c-32",), instance_cap=1)
        working = make_template("linux.small", labels="linux", size="s-2vcpu-4gb")
        client.failing_sizes = {"c-16", "c-32"}
        controller = make_controller(make_fleet(broken, working))

        first = controller.provision(LINUX, 1)
        with pytest.raises(ChainExhaustedError):
            first[0].future.result(timeout=10)
        assert len(registry) == 0
        assert broken.is_erroring

        second = controller.provision(LINUX, 1)
        assert second[0].id.template_name == "linux.small"
        assert _resolve(second)[0] is not None

    def test_launch_failure_terminates_node(self, make_controller, client, registry, launcher):
        launcher.fail = True
        controller = make_controller(make_fleet(make_template("linux", labels="linux")))
        planned = controller.provision(LINUX, 1)

        with pytest.raises(LaunchError):
            planned[0].future.result(timeout=10)
        controller.close()

        assert len(registry) == 0
        assert len(client.destroyed) == 1
        assert client.store == {}


class TestReservation:
    def test_recheck_aborts_when_cap_filled_after_admission(self, make_controller, client, registry):
        executor = ManualExecutor()
        fleet = make_fleet(make_template("linux", labels="linux"), instance_cap=2)
        controller = make_controller(fleet, executor=executor)

        planned = controller.provision(LINUX, 1)
        assert len(planned) == 1

        client.add_droplet(naming.generate("builds", "linux"))
        client.add_droplet(naming.generate("builds", "linux"), status="new")
        executor.run_all()

        assert planned[0].future.result() is None
        assert client.created == []
        assert len(registry) == 0

    def test_recheck_counts_template_cap(self, make_controller, client):
        executor = ManualExecutor()
        fleet = make_fleet(make_template("linux", labels="linux", instance_cap=1))
        controller = make_controller(fleet, executor=executor)

        planned = controller.provision(LINUX, 1)
        client.add_droplet(naming.generate("builds", "linux"))
        executor.run_all()

        assert planned[0].future.result() is None

    def test_reservation_proceeds_when_clear(self, make_controller, client, registry):
        executor = ManualExecutor()
        controller = make_controller(make_fleet(make_template("linux", labels="linux")), executor=executor)

        planned = controller.provision(LINUX, 1)
        assert client.created == []
        executor.run_all()

        assert planned[0].future.result() is registry.get(planned[0].name)


class TestConcurrency:
    @pytest.mark.timeout(60)
    @pytest.mark.parametrize("listing_lags", [False, True])
    def test_cap_never_exceeded_by_racing_callers(self, make_controller, client, registry, listing_lags):
        cap = 4
        client.listing_lags = listing_lags
        client.create_delay = 0.01
        fleet = make_fleet(
            make_template("linux.a", labels="linux", instance_cap=3),
            make_template("linux.b", labels="linux", instance_cap=3),
            instance_cap=cap,
        )
        controllers = [make_controller(fleet) for _ in range(4)]
        barrier = threading.Barrier(8)
        planned = []
        planned_lock = threading.Lock()

        def caller(index: int) -> None:
            barrier.wait()
            result = controllers[index % len(controllers)].provision(LINUX, 3)
            with planned_lock:
                planned.extend(result)

        threads = [threading.Thread(target=caller, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        results = _resolve(planned)

        assert len(client.created) <= cap
        assert sum(r is not None for r in results) == len(client.created)
        for template in ("linux.a", "linux.b"):
            assert sum(naming.is_instance_of_template(n, "builds", template) for n in client.created) <= 3

    def test_locks_are_per_fleet(self):
        assert fleet_lock("builds") is fleet_lock("builds")
        assert fleet_lock("builds") is not fleet_lock("other")


class TestCanProvision:
    def test_true_for_eligible_template_under_cap(self, make_controller, client):
        controller = make_controller(make_fleet(make_template("linux", labels="linux")))
        assert controller.can_provision(LINUX)
        assert client.list_calls == 0

    def test_false_for_unknown_label(self, make_controller):
        controller = make_controller(make_fleet(make_template("linux", labels="linux")))
        assert not controller.can_provision(FakeLabel("windows"))
        assert not controller.can_provision(None)

    def test_false_when_local_cap_reached(self, make_controller):
        fleet = make_fleet(make_template("linux", labels="linux", instance_cap=1))
        controller = make_controller(fleet)
        _resolve(controller.provision(LINUX, 1))
        assert not controller.can_provision(LINUX)

    def test_false_when_fleet_cap_reached(self, make_controller):
        fleet = make_fleet(
            make_template("linux.a", labels="linux"),
            make_template("linux.b", labels="linux"),
            instance_cap=1,
        )
        controller = make_controller(fleet)
        _resolve(controller.provision(LINUX, 1))
        assert not controller.can_provision(LINUX)


class TestLifecycle:
    def test_terminate(self, make_controller, client, registry):
        controller = make_controller(make_fleet(make_template("linux", labels="linux")))
        node = _resolve(controller.provision(LINUX, 1))[0]

        controller.terminate(node).result(timeout=10)

        assert registry.get(node.name) is None
        assert client.destroyed == [node.droplet_id]

    def test_reap_idle_only_touches_own_fleet(self, make_controller, client, registry):
        builds = make_controller(make_fleet(make_template("linux", labels="linux", idle_termination_minutes=10)))
        other = make_controller(
            make_fleet(make_template("linux", labels="linux", idle_termination_minutes=10), name="other")
        )
        mine = _resolve(builds.provision(LINUX, 1))[0]
        theirs = _resolve(other.provision(LINUX, 1))[0]

        t0 = datetime(2026, 3, 1, tzinfo=UTC)
        mine.mark_idle(t0)
        theirs.mark_idle(t0)

        reaped = builds.reap_idle(t0 + timedelta(minutes=11))

        assert reaped == [mine]
        assert registry.get(mine.name) is None
        assert registry.get(theirs.name) is theirs

    def test_context_manager_closes_executor(self, client, registry, launcher):
        fleet = make_fleet(make_template("linux", labels="linux"))
        with ProvisioningController(fleet, InMemoryNodeRegistry(), client=client, launcher=launcher) as controller:
            planned = controller.provision(LINUX, 1)
        assert planned[0].future.done()
