"""
Tests for PlaybookRunController - the run lifecycle end to end.

These tests verify:
1. Linear chains produce N SUCCEEDED step runs in traversal order
2. BRANCH routing, step inputs, and the final {step_key: output} map
3. Failure kinds recorded on the run (unmatched branch, human escalation,
   missing step, cycle, step budget, handler exceptions)
4. Redrive after a crash resumes without re-executing finished steps
5. Cancellation, skip handling, run events and memory capture
6. Concurrent runs never observe each other's shared state
"""

import json
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from playbook_engine.runtime.errors import (
    DefinitionNotFound,
    InvalidRunState,
    PlaybookNotActive,
    RunNotFound,
)
from playbook_engine.runtime.providers import StubEmbeddingProvider
from playbook_engine.runtime.stepwise import (
    DataStepHandler,
    MemoryRecorder,
    PlaybookRunController,
    RunOptions,
    StepExecutor,
    StepHandler,
    StepOutcome,
)
from playbook_engine.runtime.types import (
    EscalationLevel,
    PlaybookRun,
    PlaybookStatus,
    RunStatus,
    StepRunStatus,
    StepType,
)
from playbook_engine.runtime.types.events import (
    ROUTE_DECISION,
    RUN_COMPLETED,
    RUN_CREATED,
    RUN_STARTED,
    STEP_END,
    STEP_START,
)

from conftest import (
    ORG,
    PLAYBOOK_ID,
    FailingGenerationProvider,
    ScriptedGenerationProvider,
    json_completion,
    linear_transform_chain,
    make_definition,
    make_step,
)


class SimulatedCrash(BaseException):
    """Escapes the controller's error handling, like a process kill."""


class ProbeDataHandler(StepHandler):
    """DATA handler wrapper that counts calls and can misbehave per step key."""

    def __init__(self):
        self._inner = DataStepHandler()
        self.calls = {}
        self.crash_on = set()
        self.fail_on = {}
        self.skip_on = set()
        self.on_execute = None

    @property
    def step_type(self):
        return StepType.DATA

    def execute(self, ctx):
        key = ctx.step.key
        self.calls[key] = self.calls.get(key, 0) + 1
        if self.on_execute is not None:
            self.on_execute(ctx)
        if key in self.crash_on:
            self.crash_on.discard(key)
            raise SimulatedCrash(key)
        if key in self.fail_on:
            raise self.fail_on[key]
        if key in self.skip_on:
            return StepOutcome(output=None, skipped=True, skip_reason="probe")
        return self._inner.execute(ctx)


@pytest.fixture
def probe():
    return ProbeDataHandler()


@pytest.fixture
def probe_controller(store, events, probe):
    """Controller whose DATA steps run through the probe handler."""
    return PlaybookRunController(
        playbooks=store,
        runs=store,
        step_runs=store,
        executor=StepExecutor([probe]),
        memory=MemoryRecorder(store, StubEmbeddingProvider(8)),
        events=events,
        max_steps=50,
    )


def _created_run_id(events):
    created = [e for e in events.events if e.kind == RUN_CREATED]
    return created[-1].run_id


# =============================================================================
# Happy paths
# =============================================================================


class TestLinearRuns:
    """Tests for forward chains via static next keys."""

    @pytest.mark.parametrize("count", [1, 3, 7])
    def test_chain_produces_n_succeeded_steps(self, store, controller, count):
        store.save_definition(make_definition(linear_transform_chain(count)))

        result = controller.start_playbook_run(ORG, PLAYBOOK_ID, {"n": count})

        assert result.run.status is RunStatus.SUCCEEDED
        assert [s.step_key for s in result.steps] == [f"s{i}" for i in range(1, count + 1)]
        assert all(s.status is StepRunStatus.SUCCEEDED for s in result.steps)
        assert result.run.error is None
        assert result.run.started_at is not None
        assert result.run.completed_at is not None

    def test_previous_output_feeds_next_input(self, store, controller):
        pluck = {"operation": "pluck", "fields": ["a", "b"]}
        rename = {"operation": "map", "mapping": {"x": "a"}}
        store.save_definition(
            make_definition(
                [
                    make_step("pick", "DATA", pluck, 0, "map"),
                    make_step("map", "DATA", rename, 1, "keep"),
                    make_step("keep", "DATA", {"operation": "transform"}, 2),
                ]
            )
        )

        result = controller.start_playbook_run(ORG, PLAYBOOK_ID, {"a": 1, "b": 2, "c": 3})

        assert result.run.output == {
            "pick": {"a": 1, "b": 2},
            "map": {"x": 1},
            "keep": {"x": 1},
        }
        assert result.steps[0].input == {"a": 1, "b": 2, "c": 3}
        assert result.steps[1].input == result.steps[0].output
        assert result.steps[2].input == result.steps[1].output

    def test_actor_recorded(self, store, controller):
        store.save_definition(make_definition(linear_transform_chain(1)))
        result = controller.start_playbook_run(ORG, PLAYBOOK_ID, None, actor="user-7")
        assert result.run.triggered_by == "user-7"

    def test_agent_step_with_failing_provider_succeeds(self, store, make_controller):
        store.save_definition(
            make_definition([make_step("draft", "AGENT", {"agentId": "writer"})])
        )
        controller = make_controller(generation=FailingGenerationProvider())

        result = controller.start_playbook_run(ORG, PLAYBOOK_ID, {"topic": "launch"})

        assert result.run.status is RunStatus.SUCCEEDED
        assert result.steps[0].status is StepRunStatus.SUCCEEDED
        assert result.steps[0].output["metadata"]["stubbed"] is True


class TestBranchRuns:
    """Tests for BRANCH-driven traversal."""

    @pytest.fixture
    def gated(self, store):
        store.save_definition(
            make_definition(
                [
                    make_step(
                        "score", "DATA", {"operation": "pluck", "fields": ["score"]}, 0, "gate"
                    ),
                    make_step(
                        "gate",
                        "BRANCH",
                        {
                            "sourceKey": "score",
                            "path": "score",
                            "conditions": [
                                {"operator": "greaterThan", "value": 80, "nextStepKey": "approve"}
                            ],
                            "defaultStepKey": "review",
                        },
                        1,
                    ),
                    make_step("approve", "DATA", {"operation": "transform"}, 2),
                    make_step("review", "DATA", {"operation": "transform"}, 3),
                ]
            )
        )

    def test_matched_condition_route(self, gated, controller):
        result = controller.start_playbook_run(ORG, PLAYBOOK_ID, {"score": 91})

        assert result.run.status is RunStatus.SUCCEEDED
        assert [s.step_key for s in result.steps] == ["score", "gate", "approve"]
        assert result.run.output["gate"] == {
            "matched": True,
            "condition": "greaterThan",
            "conditionIndex": 0,
            "nextStepKey": "approve",
        }
        assert "review" not in result.run.output

    def test_default_route(self, gated, controller):
        result = controller.start_playbook_run(ORG, PLAYBOOK_ID, {"score": 10})
        assert [s.step_key for s in result.steps] == ["score", "gate", "review"]
        assert result.run.output["gate"] == {"matched": False, "nextStepKey": "review"}

    def test_unmatched_branch_fails_run(self, store, controller):
        store.save_definition(
            make_definition(
                [
                    make_step("src", "DATA", {"operation": "transform"}, 0, "gate"),
                    make_step(
                        "gate",
                        "BRANCH",
                        {
                            "sourceKey": "src",
                            "conditions": [
                                {"operator": "equals", "value": "a", "nextStepKey": "x"}
                            ],
                        },
                        1,
                    ),
                ]
            )
        )

        result = controller.start_playbook_run(ORG, PLAYBOOK_ID, "b")

        assert result.run.status is RunStatus.FAILED
        assert result.run.output is None
        assert result.run.error["kind"] == "UnmatchedBranch"
        assert result.run.error["step_key"] == "gate"
        assert result.run.error["stack"]
        assert result.steps[1].status is StepRunStatus.FAILED
        assert result.steps[1].error["kind"] == "UnmatchedBranch"


# =============================================================================
# Failures and guards
# =============================================================================


class TestRunFailures:
    """Tests for terminal errors recorded on the run."""

    def test_definition_not_found_creates_no_run(self, controller, events):
        with pytest.raises(DefinitionNotFound):
            controller.start_playbook_run(ORG, "missing", {})
        assert events.events == []

    def test_require_active(self, store, controller):
        store.save_definition(
            make_definition(linear_transform_chain(1), status=PlaybookStatus.DRAFT)
        )
        with pytest.raises(PlaybookNotActive):
            controller.start_playbook_run(
                ORG, PLAYBOOK_ID, {}, options=RunOptions(require_active=True)
            )
        result = controller.start_playbook_run(ORG, PLAYBOOK_ID, {})
        assert result.run.status is RunStatus.SUCCEEDED

    def test_other_org_cannot_see_playbook(self, store, controller):
        store.save_definition(make_definition(linear_transform_chain(1)))
        with pytest.raises(DefinitionNotFound):
            controller.start_playbook_run("org-2", PLAYBOOK_ID, {})

    def test_human_escalation_fails_with_distinct_kind(self, store, make_controller):
        completion = json_completion(
            escalation={"level": "human", "reason": "refund over limit"},
            sharedState={"ticket": 7},
        )
        triage_config = {"agentId": "triage", "responseFormat": "json"}
        store.save_definition(
            make_definition(
                [
                    make_step("triage", "AGENT", triage_config, 0, "reply"),
                    make_step("reply", "DATA", {"operation": "transform"}, 1),
                ]
            )
        )
        controller = make_controller(generation=ScriptedGenerationProvider({"triage": completion}))

        result = controller.start_playbook_run(ORG, PLAYBOOK_ID, {"amount": 5000})

        assert result.run.status is RunStatus.FAILED
        assert result.run.error["kind"] == "HumanEscalationRequired"
        assert result.run.error["kind"] != "StepExecutionFailure"
        assert result.run.error["step_key"] == "triage"
        assert result.run.error["reason"] == "refund over limit"
        assert len(result.steps) == 1
        triage = result.steps[0]
        assert triage.status is StepRunStatus.SUCCEEDED
        assert triage.escalation_level is EscalationLevel.HUMAN
        assert triage.collaboration_context["sharedState"] == {"ticket": 7}

    def test_human_escalation_string_form(self, store, make_controller):
        store.save_definition(
            make_definition(
                [make_step("triage", "AGENT", {"agentId": "t", "responseFormat": "json"})]
            )
        )
        controller = make_controller(
            generation=ScriptedGenerationProvider({"t": json_completion(escalation="human")})
        )
        result = controller.start_playbook_run(ORG, PLAYBOOK_ID, {})
        assert result.run.error["kind"] == "HumanEscalationRequired"

    def test_missing_next_step(self, store, controller):
        store.save_definition(
            make_definition([make_step("s1", "DATA", {"operation": "transform"}, 0, "ghost")])
        )

        result = controller.start_playbook_run(ORG, PLAYBOOK_ID, {})

        assert result.run.status is RunStatus.FAILED
        assert result.run.error["kind"] == "StepNotFound"
        assert result.run.error["step_key"] == "s1"
        assert result.steps[0].status is StepRunStatus.SUCCEEDED

    def test_cycle_detected(self, store, controller):
        store.save_definition(
            make_definition(
                [
                    make_step("s1", "DATA", {"operation": "transform"}, 0, "s2"),
                    make_step("s2", "DATA", {"operation": "transform"}, 1, "s1"),
                ]
            )
        )

        result = controller.start_playbook_run(ORG, PLAYBOOK_ID, {})

        assert result.run.status is RunStatus.FAILED
        assert result.run.error["kind"] == "CycleDetected"
        assert result.run.error["step_key"] == "s1"
        assert [s.step_key for s in result.steps] == ["s1", "s2"]

    def test_max_steps_budget(self, store, controller):
        store.save_definition(make_definition(linear_transform_chain(5)))

        result = controller.start_playbook_run(
            ORG, PLAYBOOK_ID, {}, options=RunOptions(max_steps=3)
        )

        assert result.run.status is RunStatus.FAILED
        assert result.run.error["kind"] == "CycleDetected"
        assert "max_steps=3" in result.run.error["message"]
        assert len(result.steps) == 3

    def test_handler_exception_wrapped(self, store, events, probe, probe_controller):
        store.save_definition(make_definition(linear_transform_chain(2)))
        probe.fail_on["s2"] = RuntimeError("boom")

        result = probe_controller.start_playbook_run(ORG, PLAYBOOK_ID, {})

        assert result.run.status is RunStatus.FAILED
        assert result.run.error["kind"] == "StepExecutionFailure"
        assert result.run.error["message"] == "Step 's2' failed: boom"
        assert result.run.error["step_key"] == "s2"
        assert "RuntimeError" in result.run.error["stack"]
        assert result.steps[1].status is StepRunStatus.FAILED

    def test_invalid_config_at_execution(self, store, controller):
        store.save_definition(
            make_definition([make_step("pick", "DATA", {"operation": "pluck", "fields": ["a"]})])
        )
        result = controller.start_playbook_run(ORG, PLAYBOOK_ID, "not an object")
        assert result.run.error["kind"] == "InvalidStepConfig"
        assert result.run.error["message"] == "Cannot pluck from non-object data"


# =============================================================================
# Collaboration
# =============================================================================


class TestCollaboration:
    """Tests for shared state and escalation across steps."""

    def test_shared_state_and_escalation_across_steps(self, store, make_controller):
        completions = {
            "a": json_completion(sharedState={"x": 1}, escalation="supervisor"),
            "b": json_completion(sharedState={"y": 2}, escalation="peer"),
            "c": json_completion(escalationReset=True),
        }
        store.save_definition(
            make_definition(
                [
                    make_step("a", "AGENT", {"agentId": "a", "responseFormat": "json"}, 0, "b"),
                    make_step("b", "AGENT", {"agentId": "b", "responseFormat": "json"}, 1, "c"),
                    make_step("c", "AGENT", {"agentId": "c", "responseFormat": "json"}, 2),
                ]
            )
        )
        controller = make_controller(generation=ScriptedGenerationProvider(completions))

        result = controller.start_playbook_run(ORG, PLAYBOOK_ID, {})

        assert result.run.status is RunStatus.SUCCEEDED
        levels = [s.escalation_level for s in result.steps]
        assert levels == [
            EscalationLevel.SUPERVISOR,
            EscalationLevel.SUPERVISOR,
            EscalationLevel.NONE,
        ]
        assert result.steps[1].collaboration_context["sharedState"] == {"x": 1, "y": 2}

    def test_concurrent_runs_isolated(self, store, make_controller):
        runs = 6
        barrier = threading.Barrier(runs, timeout=10)

        def respond(request):
            owner = json.loads(request.user_prompt)["owner"]
            barrier.wait()
            return json.dumps({"sharedState": {"owner": owner}})

        seen = {}

        class SharedStateProbe(StepHandler):
            @property
            def step_type(self):
                return StepType.DATA

            def execute(self, ctx):
                seen[ctx.run_id] = ctx.shared_state
                return StepOutcome(output={"shared": ctx.shared_state})

        store.save_definition(
            make_definition(
                [
                    make_step(
                        "write", "AGENT", {"agentId": "w", "responseFormat": "json"}, 0, "read"
                    ),
                    make_step("read", "DATA", {"operation": "transform"}, 1),
                ]
            )
        )
        controller = make_controller(generation=ScriptedGenerationProvider(respond=respond))
        controller.executor.register(SharedStateProbe())

        with ThreadPoolExecutor(max_workers=runs) as pool:
            futures = [
                pool.submit(controller.start_playbook_run, ORG, PLAYBOOK_ID, {"owner": f"u{i}"})
                for i in range(runs)
            ]
            results = [f.result() for f in futures]

        assert len({r.run.id for r in results}) == runs
        for i, result in enumerate(results):
            assert result.run.status is RunStatus.SUCCEEDED
            assert result.run.output["read"] == {"shared": {"owner": f"u{i}"}}
            assert seen[result.run.id] == {"owner": f"u{i}"}


# =============================================================================
# Redrive, cancel, skip
# =============================================================================


class TestRedrive:
    """Tests for run_playbook re-entry."""

    def test_redrive_after_crash_resumes(self, store, events, probe, probe_controller):
        store.save_definition(make_definition(linear_transform_chain(3)))
        probe.crash_on.add("s2")

        with pytest.raises(SimulatedCrash):
            probe_controller.start_playbook_run(ORG, PLAYBOOK_ID, {"v": 1})

        run_id = _created_run_id(events)
        stalled = probe_controller.get_run_with_steps(ORG, run_id)
        assert stalled.run.status is RunStatus.RUNNING
        assert [s.status for s in stalled.steps] == [StepRunStatus.SUCCEEDED, StepRunStatus.RUNNING]

        result = probe_controller.run_playbook(ORG, run_id)

        assert result.run.status is RunStatus.SUCCEEDED
        assert probe.calls == {"s1": 1, "s2": 2, "s3": 1}
        assert [s.id for s in result.steps[:2]] == [s.id for s in stalled.steps]
        assert result.run.output == {"s1": {"v": 1}, "s2": {"v": 1}, "s3": {"v": 1}}

    def test_redrive_restores_shared_state(self, store, events, make_controller, probe):
        completion = json_completion(sharedState={"ticket": 3})
        store.save_definition(
            make_definition(
                [
                    make_step("a", "AGENT", {"agentId": "a", "responseFormat": "json"}, 0, "b"),
                    make_step("b", "DATA", {"operation": "transform"}, 1),
                ]
            )
        )
        controller = make_controller(generation=ScriptedGenerationProvider({"a": completion}))
        controller.executor.register(probe)
        captured = []
        probe.on_execute = lambda ctx: captured.append(ctx.shared_state)
        probe.crash_on.add("b")

        with pytest.raises(SimulatedCrash):
            controller.start_playbook_run(ORG, PLAYBOOK_ID, {})
        result = controller.run_playbook(ORG, _created_run_id(events))

        assert result.run.status is RunStatus.SUCCEEDED
        assert captured == [{"ticket": 3}, {"ticket": 3}]

    def test_redrive_keeps_run_step_budget(self, store, events, probe, probe_controller):
        store.save_definition(make_definition(linear_transform_chain(5)))
        probe.crash_on.add("s2")

        with pytest.raises(SimulatedCrash):
            probe_controller.start_playbook_run(
                ORG, PLAYBOOK_ID, {}, options=RunOptions(max_steps=3)
            )
        run_id = _created_run_id(events)
        assert store.get_run(ORG, run_id).max_steps == 3

        result = probe_controller.run_playbook(ORG, run_id)

        assert result.run.status is RunStatus.FAILED
        assert result.run.error["kind"] == "CycleDetected"
        assert "max_steps=3" in result.run.error["message"]
        assert "s4" not in probe.calls

    def test_redrive_terminal_run_rejected(self, store, controller):
        store.save_definition(make_definition(linear_transform_chain(1)))
        result = controller.start_playbook_run(ORG, PLAYBOOK_ID, {})
        with pytest.raises(InvalidRunState):
            controller.run_playbook(ORG, result.run.id)

    def test_redrive_unknown_run(self, controller):
        with pytest.raises(RunNotFound):
            controller.run_playbook(ORG, "run-missing")

    def test_redrive_pending_run(self, store, controller):
        store.save_definition(make_definition(linear_transform_chain(2)))
        store.create_run(
            PlaybookRun(id="run-pending", playbook_id=PLAYBOOK_ID, org_id=ORG, input={"k": 1})
        )

        result = controller.run_playbook(ORG, "run-pending")

        assert result.run.status is RunStatus.SUCCEEDED
        assert result.run.output == {"s1": {"k": 1}, "s2": {"k": 1}}


class TestCancelAndSkip:
    """Tests for cancel_run and skipped steps."""

    def test_cancel_pending_run(self, store, controller):
        store.save_definition(make_definition(linear_transform_chain(1)))
        store.create_run(PlaybookRun(id="run-c", playbook_id=PLAYBOOK_ID, org_id=ORG))

        run = controller.cancel_run(ORG, "run-c")

        assert run.status is RunStatus.CANCELLED
        assert run.completed_at is not None
        with pytest.raises(InvalidRunState):
            controller.run_playbook(ORG, "run-c")
        with pytest.raises(InvalidRunState):
            controller.cancel_run(ORG, "run-c")

    def test_cancel_during_run_is_kept(self, store, probe, probe_controller):
        store.save_definition(make_definition(linear_transform_chain(2)))

        def cancel_on_s2(ctx):
            if ctx.step.key == "s2":
                probe_controller.cancel_run(ctx.org_id, ctx.run_id)

        probe.on_execute = cancel_on_s2

        result = probe_controller.start_playbook_run(ORG, PLAYBOOK_ID, {})

        assert result.run.status is RunStatus.CANCELLED
        assert result.run.output is None

    def test_skip_ends_run_successfully(self, store, probe, probe_controller):
        store.save_definition(make_definition(linear_transform_chain(3)))
        probe.skip_on.add("s2")

        result = probe_controller.start_playbook_run(ORG, PLAYBOOK_ID, {"a": 1})

        assert result.run.status is RunStatus.SUCCEEDED
        assert [s.status for s in result.steps] == [StepRunStatus.SUCCEEDED, StepRunStatus.SKIPPED]
        assert result.run.output == {"s1": {"a": 1}}
        assert "s3" not in probe.calls


# =============================================================================
# Side channels
# =============================================================================


class TestEventsAndMemory:
    """Tests for run events and memory capture."""

    def test_event_sequence(self, store, controller, events):
        store.save_definition(make_definition(linear_transform_chain(1)))

        result = controller.start_playbook_run(ORG, PLAYBOOK_ID, {})

        run_events = events.events_for_run(result.run.id)
        assert [e.kind for e in run_events] == [
            RUN_CREATED,
            RUN_STARTED,
            STEP_START,
            STEP_END,
            ROUTE_DECISION,
            RUN_COMPLETED,
        ]
        assert [e.seq for e in run_events] == list(range(1, 7))
        assert run_events[-1].payload["status"] == "SUCCEEDED"

    def test_episodic_trace_per_step(self, store, controller, settings):
        store.save_definition(make_definition(linear_transform_chain(3)))

        result = controller.start_playbook_run(ORG, PLAYBOOK_ID, {"a": 1})

        traces = store.list_episodic_traces(ORG, result.run.id)
        assert [t.step_key for t in traces] == ["s1", "s2", "s3"]
        assert all(len(t.embedding) == settings.embedding_dimensions for t in traces)

    def test_failed_step_writes_no_trace(self, store, controller):
        store.save_definition(
            make_definition([make_step("pick", "DATA", {"operation": "pluck", "fields": ["a"]})])
        )
        result = controller.start_playbook_run(ORG, PLAYBOOK_ID, 5)
        assert store.list_episodic_traces(ORG, result.run.id) == []
