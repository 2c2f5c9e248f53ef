"""Tests for background enrichment and the guarded context merge."""

import asyncio

from smartflow.core.errors import USER_MESSAGES, ErrorKind
from smartflow.core.models import EnrichmentStatus, FieldSpec, StepSpec, TemplateSpec
from smartflow.flow.enrichment import EnrichmentRunner
from smartflow.flow.state import FlowState
from smartflow.flow.tasks import BackgroundTasks

from conftest import HANG, FakeEnrichmentService


def _template():
    return TemplateSpec(
        id="t",
        title="T",
        steps=[
            StepSpec(
                id="company",
                title="Company",
                fields=[FieldSpec(name="industry", label="Industry")],
                enrichment_prompt="Describe {{industry}}",
                enrichment_output_schema={"properties": {"risk": {"type": "string"}}},
            ),
            StepSpec(
                id="people",
                title="People",
                fields=[FieldSpec(name="headcount", label="Headcount")],
                enrichment_prompt="Assess {{headcount}}",
            ),
            StepSpec(id="plain", title="Plain"),
        ],
    )


def _runner(service, flow_config):
    state = FlowState(_template())
    tasks = BackgroundTasks()
    runner = EnrichmentRunner(state, service, config=flow_config, tasks=tasks)
    return state, tasks, runner


class TestTrigger:
    def test_step_without_prompt(self, flow_config):
        async def scenario():
            state, _, runner = _runner(FakeEnrichmentService(), flow_config)
            return runner.trigger(state.template.steps[2]), runner.pending

        assert asyncio.run(scenario()) == (False, 0)

    def test_running_indicator_then_merge(self, flow_config):
        async def scenario():
            service = FakeEnrichmentService([(0.01, {"risk": "low"})])
            state, tasks, runner = _runner(service, flow_config)
            state.set_value("industry", "software")
            assert runner.trigger(state.template.steps[0])
            assert runner.pending == 1
            assert runner.indicator.status == EnrichmentStatus.RUNNING
            assert runner.indicator.step_title == "Company"
            await tasks.drain()
            return service, state, runner

        service, state, runner = asyncio.run(scenario())
        assert runner.pending == 0
        assert runner.indicator.status == EnrichmentStatus.IDLE
        assert dict(state.enrichment) == {"risk": "low"}
        request = service.requests[0]
        assert request.values == {"industry": "software"}
        assert request.output_schema == {"properties": {"risk": {"type": "string"}}}

    def test_values_snapshotted_at_trigger(self, flow_config):
        async def scenario():
            service = FakeEnrichmentService([(0.01, {})])
            state, tasks, runner = _runner(service, flow_config)
            state.set_value("industry", "software")
            runner.trigger(state.template.steps[0])
            state.set_value("industry", "retail")
            await tasks.drain()
            return service

        service = asyncio.run(scenario())
        assert service.requests[0].values == {"industry": "software"}

    def test_pending_counts_overlapping_runs(self, flow_config):
        async def scenario():
            service = FakeEnrichmentService([(0.03, {"a": 1}), (0.01, {"b": 2})])
            state, tasks, runner = _runner(service, flow_config)
            runner.trigger(state.template.steps[0])
            runner.trigger(state.template.steps[1])
            assert runner.pending == 2
            await asyncio.sleep(0.02)
            # Second finished first; the first keeps the indicator running
            mid = (runner.pending, runner.indicator.status)
            await tasks.drain()
            return mid, runner, state

        mid, runner, state = asyncio.run(scenario())
        assert mid == (1, EnrichmentStatus.RUNNING)
        assert runner.pending == 0
        assert dict(state.enrichment) == {"a": 1, "b": 2}


class TestFailure:
    def test_error_indicator_then_reset(self, flow_config):
        async def scenario():
            service = FakeEnrichmentService([RuntimeError("model overloaded")])
            state, tasks, runner = _runner(service, flow_config)
            runner.trigger(state.template.steps[0])
            await tasks.drain()
            failed = runner.indicator
            await asyncio.sleep(flow_config.enrichment_error_reset * 3)
            return failed, runner, state

        failed, runner, state = asyncio.run(scenario())
        assert failed.status == EnrichmentStatus.ERROR
        assert failed.message == USER_MESSAGES[ErrorKind.RECOVERABLE_BACKGROUND]
        assert runner.indicator.status == EnrichmentStatus.IDLE
        assert runner.pending == 0
        assert dict(state.enrichment) == {}

    def test_timeout_counts_as_failure(self, flow_config):
        async def scenario():
            state, tasks, runner = _runner(FakeEnrichmentService([HANG]), flow_config)
            runner.trigger(state.template.steps[0])
            await tasks.drain()
            return runner

        runner = asyncio.run(scenario())
        assert runner.indicator.status == EnrichmentStatus.ERROR
        assert runner.pending == 0

    def test_non_object_result_is_failure(self, flow_config):
        async def scenario():
            state, tasks, runner = _runner(FakeEnrichmentService([["not", "a", "dict"]]), flow_config)
            runner.trigger(state.template.steps[0])
            await tasks.drain()
            return runner, state

        runner, state = asyncio.run(scenario())
        assert runner.indicator.status == EnrichmentStatus.ERROR
        assert dict(state.enrichment) == {}

    def test_new_trigger_replaces_error(self, flow_config):
        async def scenario():
            service = FakeEnrichmentService([RuntimeError("boom"), (0.05, {"ok": True})])
            state, tasks, runner = _runner(service, flow_config)
            runner.trigger(state.template.steps[0])
            await tasks.drain()
            runner.trigger(state.template.steps[1])
            indicator = runner.indicator
            await tasks.drain()
            return indicator

        indicator = asyncio.run(scenario())
        assert indicator.status == EnrichmentStatus.RUNNING
        assert indicator.step_title == "People"


class TestGuardedMerge:
    def test_slow_early_run_does_not_clobber_later_run(self, flow_config):
        async def scenario():
            service = FakeEnrichmentService(
                [(0.05, {"risk": "stale", "extra": 1}), (0.01, {"risk": "fresh"})]
            )
            state, tasks, runner = _runner(service, flow_config)
            runner.trigger(state.template.steps[0])
            runner.trigger(state.template.steps[0])
            await tasks.drain()
            return state

        state = asyncio.run(scenario())
        assert state.enrichment["risk"] == "fresh"
        assert state.enrichment["extra"] == 1

    def test_merge_is_shallow_and_versioned(self):
        state = FlowState(_template())
        assert state.merge_enrichment({"a": {"x": 1}}, 1) == ["a"]
        assert state.merge_enrichment({"a": {"y": 2}}, 3) == ["a"]
        assert state.merge_enrichment({"a": {"z": 3}, "b": 1}, 2) == ["b"]
        assert dict(state.enrichment) == {"a": {"y": 2}, "b": 1}

    def test_merge_notifies_only_on_write(self):
        state = FlowState(_template())
        seen = []
        state.subscribe(seen.append)
        state.merge_enrichment({"a": 1}, 2)
        state.merge_enrichment({"a": 0}, 1)
        assert seen == ["enrichment"]
