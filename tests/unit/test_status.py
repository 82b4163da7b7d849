"""Unit tests for status aggregation."""

from storop.engine.status import compute_status
from storop.types.models import ChildResourceRecord, NodeRollout, NodeRolloutState
from storop.utils.errors import InvalidSpecError, TransientStoreError

T0 = "2024-01-01T00:00:00+00:00"
T1 = "2024-01-01T00:05:00+00:00"


def record(kind, name, generation, namespace="storage"):
    return ChildResourceRecord(
        kind=kind,
        namespace=namespace,
        name=name,
        applied_generation=generation,
        observed_generation=None,
        parent_kind="CSIDriverDeployment",
        parent_namespace="storage",
        parent_name="example",
    )


def rollout(*phases):
    return NodeRollout(
        generation=2,
        strategy="Drain",
        nodes=[
            NodeRolloutState(
                node_name=f"node-{i + 1}",
                phase=phase,
                last_transition_time=T0,
                message="stuck" if phase == NodeRolloutState.FAILED else None,
            )
            for i, phase in enumerate(phases)
        ],
    )


def conditions(status):
    return {c["type"]: c for c in status["conditions"]}


RECORDS = [
    record("Deployment", "example-controller", 1),
    record("DaemonSet", "example-node", 4),
]


class TestObservedGeneration:
    def test_advances_when_converged(self):
        status = compute_status(2, {"observedGeneration": 1}, RECORDS, None, False, None, T0)

        assert status["observedGeneration"] == 2
        assert conditions(status)["Ready"]["status"] == "True"

    def test_held_back_by_error(self):
        status = compute_status(
            2, {"observedGeneration": 1}, RECORDS, None, False, InvalidSpecError("bad"), T0
        )

        assert status["observedGeneration"] == 1

    def test_held_back_by_rollout(self):
        status = compute_status(
            2,
            {"observedGeneration": 1},
            RECORDS,
            rollout(NodeRolloutState.DONE, NodeRolloutState.UPDATING),
            False,
            None,
            T0,
        )

        assert status["observedGeneration"] == 1
        assert conditions(status)["Progressing"]["status"] == "True"
        assert conditions(status)["Progressing"]["message"] == "1 of 2 nodes still updating"

    def test_never_moves_backwards(self):
        status = compute_status(2, {"observedGeneration": 5}, RECORDS, None, False, None, T0)

        assert status["observedGeneration"] == 5


class TestConditions:
    def test_invalid_spec_degrades(self):
        status = compute_status(1, None, [], None, False, InvalidSpecError("no driver"), T0)
        conds = conditions(status)

        assert conds["Degraded"]["status"] == "True"
        assert conds["Degraded"]["reason"] == "InvalidSpecError"
        assert conds["Ready"]["status"] == "False"
        assert conds["Ready"]["message"] == "no driver"

    def test_halted_rollout_degrades(self):
        plan = rollout(
            NodeRolloutState.DONE, NodeRolloutState.FAILED, NodeRolloutState.PENDING
        )
        status = compute_status(2, None, RECORDS, plan, False, None, T0)
        conds = conditions(status)

        assert conds["Degraded"]["reason"] == "RolloutHalted"
        assert "node-2" in conds["Degraded"]["message"]
        assert conds["Progressing"]["status"] == "False"
        assert [n["phase"] for n in status["nodeRollout"]["nodes"]] == [
            "Done",
            "Failed",
            "Pending",
        ]

    def test_transition_time_only_moves_on_flip(self):
        first = compute_status(1, None, RECORDS, None, False, None, T0)
        second = compute_status(1, first, RECORDS, None, False, None, T1)
        third = compute_status(
            1, second, RECORDS, None, False, TransientStoreError("down"), T1
        )

        assert conditions(second)["Ready"]["lastTransitionTime"] == T0
        assert conditions(third)["Ready"]["lastTransitionTime"] == T1
        assert conditions(third)["Ready"]["status"] == "False"

    def test_conditions_are_sorted(self):
        status = compute_status(1, None, RECORDS, None, False, None, T0)

        assert [c["type"] for c in status["conditions"]] == [
            "Degraded",
            "Progressing",
            "Ready",
        ]


class TestChildren:
    def test_children_generations(self):
        status = compute_status(1, None, RECORDS, None, False, None, T0)

        assert status["childrenGenerations"] == [
            {
                "group": "apps",
                "kind": "DaemonSet",
                "namespace": "storage",
                "name": "example-node",
                "lastGeneration": 4,
            },
            {
                "group": "apps",
                "kind": "Deployment",
                "namespace": "storage",
                "name": "example-controller",
                "lastGeneration": 1,
            },
        ]

    def test_finished_rollout_is_not_reported(self):
        status = compute_status(
            1, None, RECORDS, rollout(NodeRolloutState.DONE), False, None, T0
        )

        assert "nodeRollout" not in status

    def test_status_is_deterministic(self):
        assert compute_status(1, None, RECORDS, None, False, None, T0) == compute_status(
            1, None, list(reversed(RECORDS)), None, False, None, T0
        )
