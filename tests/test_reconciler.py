"""Tests for reconciliation planning."""
from lxcmap.core.reconciler import SkipReason, plan
from lxcmap.models.container import ProvisionType, RootFs
from lxcmap.models.host import HostSnapshot
from lxcmap.models.plan import ActionKind

from conftest import make_map, make_snapshot, make_spec


def _kinds(action_plan):
    return [(a.kind, a.target.id) for a in action_plan]


class TestPlan:
    """Test per-container decisions."""

    def test_missing_container_is_created_then_started(self):
        spec = make_spec(2001, host="H")
        action_plan = plan(make_map(spec), {"H": make_snapshot("H", storage=("local-lvm",))})

        assert _kinds(action_plan) == [(ActionKind.CREATE, 2001), (ActionKind.START, 2001)]
        assert action_plan.actions[0].policy.unprivileged is True

    def test_existing_container_is_configured(self):
        spec = make_spec(2001, host="H")
        action_plan = plan(make_map(spec), {"H": make_snapshot("H", ids=[2001])})

        assert _kinds(action_plan) == [(ActionKind.CONFIGURE, 2001)]
        assert action_plan.actions[0].policy is not None

    def test_second_run_never_creates_again(self):
        """After a run, the next plan holds Configure/Skip actions only."""
        specs = [make_spec(2001), make_spec(2002), make_spec(2003, host="pve-b")]
        container_map = make_map(*specs)

        first = plan(container_map, {
            "pve-a": make_snapshot("pve-a"),
            "pve-b": make_snapshot("pve-b", storage=()),
        })
        created = {a.target.id for a in first if a.kind == ActionKind.CREATE}
        assert created == {2001, 2002}

        second = plan(container_map, {
            "pve-a": make_snapshot("pve-a", ids=created, running=created),
            "pve-b": make_snapshot("pve-b", storage=()),
        })
        assert {a.kind for a in second} <= {ActionKind.CONFIGURE, ActionKind.SKIP}

    def test_unreachable_host_skips_its_containers_only(self):
        container_map = make_map(make_spec(2001), make_spec(2002, host="pve-b"))
        snapshots = {
            "pve-a": make_snapshot("pve-a"),
            "pve-b": HostSnapshot.failed("pve-b", "ssh: connect timed out"),
        }

        action_plan = plan(container_map, snapshots)

        assert action_plan.for_container(2001)[0].kind == ActionKind.CREATE
        skip = action_plan.for_container(2002)
        assert len(skip) == 1
        assert skip[0].kind == ActionKind.SKIP
        assert skip[0].reason.startswith(SkipReason.HOST_UNREACHABLE)
        assert "timed out" in skip[0].reason

    def test_unprobed_host_is_skipped(self):
        action_plan = plan(make_map(make_spec(host="pve-z")), {})
        assert action_plan.actions[0].kind == ActionKind.SKIP

    def test_storage_checked_per_host(self):
        """Same backend id on two hosts: only the host that has it gets a Create."""
        container_map = make_map(
            make_spec(2001, host="A", rootfs=RootFs("fast", 8)),
            make_spec(2002, host="B", rootfs=RootFs("fast", 8)),
        )
        snapshots = {
            "A": make_snapshot("A", storage=("local", "fast")),
            "B": make_snapshot("B", storage=("local",)),
        }

        action_plan = plan(container_map, snapshots)

        assert action_plan.for_container(2001)[0].kind == ActionKind.CREATE
        skip = action_plan.for_container(2002)[0]
        assert skip.kind == ActionKind.SKIP
        assert skip.reason.startswith(SkipReason.STORAGE_MISSING)

    def test_missing_mount_path_skips(self, mounted_spec):
        action_plan = plan(make_map(mounted_spec), {"pve-a": make_snapshot(paths=())})

        assert action_plan.actions[0].kind == ActionKind.SKIP
        assert action_plan.actions[0].reason.startswith(SkipReason.MOUNT_PATH_MISSING)
        assert "/tank/media" in action_plan.actions[0].reason

    def test_present_mount_path_creates(self, mounted_spec):
        action_plan = plan(make_map(mounted_spec), {"pve-a": make_snapshot(paths=("/tank/media",))})
        assert action_plan.actions[0].kind == ActionKind.CREATE

    def test_gpu_container_on_host_without_gpu_is_skipped(self, gpu_spec):
        action_plan = plan(
            make_map(gpu_spec, gpu_driver_version="550.54.14"),
            {"pve-a": make_snapshot(gpu=None)},
        )

        assert _kinds(action_plan) == [(ActionKind.SKIP, 2002)]
        assert "gpu-driver-missing" in action_plan.actions[0].reason

    def test_gpu_container_with_matching_driver(self, gpu_spec):
        action_plan = plan(
            make_map(gpu_spec, gpu_driver_version="550.54.14"),
            {"pve-a": make_snapshot(gpu="550.54.14")},
        )

        create = action_plan.actions[0]
        assert create.kind == ActionKind.CREATE
        assert create.policy.provision_type == ProvisionType.NVIDIA_GPU

    def test_plan_follows_map_order(self):
        specs = [make_spec(3003), make_spec(3001), make_spec(3002)]
        action_plan = plan(make_map(*specs), {"pve-a": make_snapshot(ids=[3001, 3002, 3003])})
        assert [a.target.id for a in action_plan] == [3003, 3001, 3002]

    def test_planning_is_deterministic(self):
        container_map = make_map(make_spec(2001), make_spec(2002, host="pve-b"))
        snapshots = {"pve-a": make_snapshot("pve-a"), "pve-b": make_snapshot("pve-b", ids=[2002])}
        assert plan(container_map, snapshots).actions == plan(container_map, snapshots).actions


class TestEndToEndPlan:

    def test_create_then_configure(self):
        container_map = make_map(make_spec(2001, host="H", provision_type=ProvisionType.UNPRIVILEGED))

        fresh = plan(container_map, {"H": make_snapshot("H", storage=("local-lvm",))})
        assert _kinds(fresh) == [(ActionKind.CREATE, 2001), (ActionKind.START, 2001)]

        rerun = plan(container_map, {"H": make_snapshot("H", ids=[2001], storage=("local-lvm",))})
        assert _kinds(rerun) == [(ActionKind.CONFIGURE, 2001)]
