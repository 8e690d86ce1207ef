"""Tests for plan execution."""
import threading

import pytest

from lxcmap.core.errors import ActionFailure
from lxcmap.core.executor import BLOCKED, CANCELLED, ActionExecutor
from lxcmap.core.security import resolve
from lxcmap.models.container import ProvisionType
from lxcmap.models.plan import ActionKind, ActionPlan
from lxcmap.services.proxmox.lifecycle import ContainerLifecycle
from lxcmap.services.proxmox.templates import TemplateManager

from conftest import FakeShell, completed, make_spec

ABSENT = completed([], returncode=2, stderr="Configuration file 'nodes/pve/lxc/2001.conf' does not exist")
RUNNING = "status: running\n"
STOPPED = "status: stopped\n"
LOCKED = completed([], returncode=1, stderr="CT 2001: can't lock file '/run/lock/lxc/pve-config-2001.lock' - got timeout")

UNPRIVILEGED = resolve(ProvisionType.UNPRIVILEGED)


class RecordingBootstrap:
    """Stands in for BootstrapManager."""

    def __init__(self, error=None):
        self.hardened = []
        self.error = error

    def harden(self, ref):
        self.hardened.append((ref.vmid, ref.public_key))
        if self.error:
            raise self.error


def _executor(shells, inventory, fast_config, bootstrap=None, harden=True):
    return ActionExecutor(
        inventory,
        config=fast_config,
        templates=TemplateManager(mock=True, config=fast_config),
        bootstrap=bootstrap or RecordingBootstrap(),
        public_key="ssh-ed25519 AAAATEST lxcmap-web",
        harden=harden,
        lifecycle_factory=lambda host: ContainerLifecycle(shells[host], config=fast_config),
    )


def _create_plan(*specs):
    action_plan = ActionPlan()
    for spec in specs:
        action_plan.add(ActionKind.CREATE, spec, "missing", policy=UNPRIVILEGED)
        action_plan.add(ActionKind.START, spec, "new container")
    return action_plan


class TestExecute:

    def test_create_and_start_hardens_new_container(self, inventory, fast_config):
        shell = FakeShell("pve-a", {"pct status": [ABSENT, STOPPED]})
        bootstrap = RecordingBootstrap()
        executor = _executor({"pve-a": shell}, inventory, fast_config, bootstrap)

        results = executor.run(_create_plan(make_spec()))

        assert [r.success for r in results] == [True, True]
        assert all(r.changed for r in results)
        assert bootstrap.hardened == [(2001, "ssh-ed25519 AAAATEST lxcmap-web")]
        assert "hardened" in results[1].annotations
        create = shell.commands("pct create")[0]
        assert create[3] == "local:vztmpl/ubuntu-24.04-standard_24.04-1_amd64.tar.zst"

    def test_existing_container_is_not_hardened_again(self, inventory, fast_config):
        shell = FakeShell("pve-a", {"pct status": RUNNING})
        bootstrap = RecordingBootstrap()
        executor = _executor({"pve-a": shell}, inventory, fast_config, bootstrap)

        results = executor.run(_create_plan(make_spec()))

        assert [r.changed for r in results] == [False, False]
        assert all(r.success for r in results)
        assert shell.commands("pct create") == []
        assert bootstrap.hardened == []

    def test_no_harden_flag(self, inventory, fast_config):
        shell = FakeShell("pve-a", {"pct status": [ABSENT, STOPPED]})
        bootstrap = RecordingBootstrap()
        executor = _executor({"pve-a": shell}, inventory, fast_config, bootstrap, harden=False)

        results = executor.run(_create_plan(make_spec()))

        assert bootstrap.hardened == []
        assert results[1].success
        assert any("no-harden" in note for note in results[1].annotations)

    def test_harden_failure_fails_the_container(self, inventory, fast_config):
        shell = FakeShell("pve-a", {"pct status": [ABSENT, STOPPED]})
        bootstrap = RecordingBootstrap(error=ActionFailure("bootstrap step 'packages' failed: E: apt"))
        executor = _executor({"pve-a": shell}, inventory, fast_config, bootstrap)

        results = executor.run(_create_plan(make_spec()))

        assert results[0].success
        assert not results[1].success
        assert "packages" in results[1].message

    def test_skip_touches_nothing(self, inventory, fast_config):
        shell = FakeShell("pve-a")
        executor = _executor({"pve-a": shell}, inventory, fast_config)
        action_plan = ActionPlan()
        action = action_plan.add(ActionKind.SKIP, make_spec(), "storage-missing: 'fast'")

        result = executor.execute(action)

        assert result.success
        assert result.skipped
        assert result.attempts == 0
        assert shell.calls == []


class TestRetry:

    def test_transient_failure_retried_with_backoff(self, inventory, fast_config, no_sleep):
        shell = FakeShell("pve-a", {"pct status": STOPPED, "pct start": [LOCKED, LOCKED, completed([])]})
        executor = _executor({"pve-a": shell}, inventory, fast_config)
        action_plan = ActionPlan()
        start = action_plan.add(ActionKind.START, make_spec())

        result = executor.execute(start)

        assert result.success
        assert result.attempts == 3
        assert no_sleep == [fast_config.retry_delay, fast_config.retry_delay * fast_config.retry_backoff]

    def test_exhausted_retries_fail_and_block_later_actions(self, inventory, fast_config, no_sleep):
        shell = FakeShell("pve-a", {
            "pct status": ABSENT,
            "pct create": completed([], returncode=255, stderr="got timeout"),
        })
        executor = _executor({"pve-a": shell}, inventory, fast_config)

        results = executor.run(_create_plan(make_spec()))

        assert not results[0].success
        assert results[0].attempts == fast_config.retry_attempts
        assert "retries exhausted" in results[0].message
        assert not results[1].success
        assert results[1].message == BLOCKED
        assert shell.commands("pct start") == []

    def test_permanent_failure_is_not_retried(self, inventory, fast_config, no_sleep):
        shell = FakeShell("pve-a", {
            "pct status": ABSENT,
            "pct create": completed([], returncode=1, stderr="storage 'fast' does not exist"),
        })
        executor = _executor({"pve-a": shell}, inventory, fast_config)

        results = executor.run(_create_plan(make_spec()))

        assert results[0].attempts == 1
        assert no_sleep == []
        assert "does not exist" in results[0].message

    def test_failure_does_not_block_siblings(self, inventory, fast_config, no_sleep):
        shell = FakeShell("pve-a", {
            "pct status": ABSENT,
            "pct create 2001": completed([], returncode=1, stderr="bad"),
        })
        executor = _executor({"pve-a": shell}, inventory, fast_config)

        results = executor.run(_create_plan(make_spec(2001), make_spec(2002)))

        assert [r.success for r in results[:2]] == [False, False]
        assert results[2].success
        assert len(shell.commands("pct create 2002")) == 1


class TestRun:

    def test_results_in_plan_order_across_hosts(self, inventory, fast_config):
        shells = {
            "pve-a": FakeShell("pve-a", {"pct status": STOPPED}),
            "pve-b": FakeShell("pve-b", {"pct status": STOPPED}),
        }
        executor = _executor(shells, inventory, fast_config)
        action_plan = ActionPlan()
        for vmid, host in [(2001, "pve-a"), (2002, "pve-b"), (2003, "pve-a"), (2004, "pve-b")]:
            action_plan.add(ActionKind.START, make_spec(vmid, host=host))

        results = executor.run(action_plan)

        assert [r.action.target.id for r in results] == [2001, 2002, 2003, 2004]
        assert [c[2] for c in shells["pve-a"].commands("pct start")] == ["2001", "2003"]
        assert [c[2] for c in shells["pve-b"].commands("pct start")] == ["2002", "2004"]

    def test_one_host_at_a_time_per_host(self, inventory, fast_config):
        active = {"pve-a": 0}
        peak = {"pve-a": 0}
        lock = threading.Lock()

        class CountingShell(FakeShell):
            def run(self, cmd, timeout, check=False, input_text=None):
                with lock:
                    active[self.name] += 1
                    peak[self.name] = max(peak[self.name], active[self.name])
                try:
                    return super().run(cmd, timeout, check, input_text)
                finally:
                    with lock:
                        active[self.name] -= 1

        shell = CountingShell("pve-a", {"pct status": STOPPED})
        executor = _executor({"pve-a": shell}, inventory, fast_config)
        action_plan = ActionPlan()
        for vmid in range(2001, 2009):
            action_plan.add(ActionKind.START, make_spec(vmid))

        executor.run(action_plan)

        assert peak["pve-a"] == 1

    def test_cancel_before_dispatch(self, inventory, fast_config):
        shell = FakeShell("pve-a", {"pct status": STOPPED})
        executor = _executor({"pve-a": shell}, inventory, fast_config)
        cancel = threading.Event()
        cancel.set()

        results = executor.run(_create_plan(make_spec()), cancel_event=cancel)

        assert len(results) == 2
        assert all(r.cancelled and r.message == CANCELLED for r in results)
        assert shell.calls == []
        assert executor.cancelled

    def test_cancel_lets_in_flight_action_finish(self, inventory, fast_config):
        cancel = threading.Event()

        class CancellingShell(FakeShell):
            def run(self, cmd, timeout, check=False, input_text=None):
                cancel.set()
                return super().run(cmd, timeout, check, input_text)

        shell = CancellingShell("pve-a", {"pct status": STOPPED})
        executor = _executor({"pve-a": shell}, inventory, fast_config)
        action_plan = ActionPlan()
        action_plan.add(ActionKind.START, make_spec(2001))
        action_plan.add(ActionKind.START, make_spec(2002))

        results = executor.run(action_plan, cancel_event=cancel)

        assert results[0].success and not results[0].cancelled
        assert results[1].cancelled
        assert [c[2] for c in shell.commands("pct start")] == ["2001"]

    def test_empty_plan(self, inventory, fast_config):
        assert _executor({}, inventory, fast_config).run(ActionPlan()) == []


@pytest.mark.parametrize("kind,prefix", [
    (ActionKind.STOP, "pct stop"),
    (ActionKind.DESTROY, "pct destroy"),
])
def test_teardown_actions(kind, prefix, inventory, fast_config):
    shell = FakeShell("pve-a", {"pct status": RUNNING})
    executor = _executor({"pve-a": shell}, inventory, fast_config)
    action_plan = ActionPlan()
    action = action_plan.add(kind, make_spec())

    result = executor.execute(action)

    assert result.success and result.changed
    assert len(shell.commands(prefix)) == 1
