"""Tests for single-step execution with FlowRunner.step()."""

import asyncio

import httpx
import pytest

from flowrunner.flow.results import StepStatus
from flowrunner.flow.steps import Flow

BASE = "https://api.test"

FLOW = Flow.model_validate(
    {
        "name": "stepping",
        "staticVars": {"x": 1},
        "steps": [
            {"id": "r1", "type": "request", "url": f"{BASE}/r1"},
            {
                "id": "cond",
                "type": "condition",
                "conditionData": {"variable": "x", "operator": "equals", "value": "1"},
                "thenSteps": [{"id": "t1", "type": "request", "url": f"{BASE}/t1"}],
            },
            {"id": "r2", "type": "request", "url": f"{BASE}/r2"},
        ],
    }
)


def result_ids(runner) -> list[str]:
    return [r.step_id for r in runner.results]


class TestStepping:
    @pytest.mark.asyncio
    async def test_each_call_runs_one_logical_step(self, make_runner):
        runner = make_runner()

        await runner.step(FLOW)
        assert result_ids(runner) == ["r1"]
        await runner.step(FLOW)
        assert result_ids(runner) == ["r1", "cond"]
        await runner.step(FLOW)
        assert result_ids(runner) == ["r1", "cond", "t1"]
        await runner.step(FLOW)
        assert result_ids(runner) == ["r1", "cond", "t1", "r2"]

    @pytest.mark.asyncio
    async def test_end_of_flow_then_restart(self, make_runner, observer):
        runner = make_runner()
        for _ in range(4):
            await runner.step(FLOW)

        await runner.step(FLOW)
        assert observer.message_texts("info")[-1] == "End of flow reached."
        assert len(runner.results) == 4

        await runner.step(FLOW)
        assert result_ids(runner) == ["r1"]

    @pytest.mark.asyncio
    async def test_step_and_run_produce_the_same_results(self, make_runner):
        stepped = make_runner()
        for _ in range(4):
            await stepped.step(FLOW)

        ran = make_runner()
        await ran.run(FLOW)

        assert result_ids(stepped) == result_ids(ran)
        assert [r.status for r in stepped.results] == [r.status for r in ran.results]

    @pytest.mark.asyncio
    async def test_is_start_of_flow(self, make_runner):
        runner = make_runner()
        assert runner.is_start_of_flow()

        await runner.step(FLOW)
        assert not runner.is_start_of_flow()

        runner.reset()
        assert runner.is_start_of_flow()

    @pytest.mark.asyncio
    async def test_stepping_flag_is_set_only_during_a_step(self, make_runner, observer):
        runner = None
        seen = []

        def capture(request):
            seen.append((runner.is_stepping(), runner.is_running()))
            return httpx.Response(200)

        runner = make_runner(capture)
        await runner.step(FLOW)

        assert seen == [(True, False)]
        assert not runner.is_stepping()
        assert observer.refreshes == 1

    @pytest.mark.asyncio
    async def test_busy_runner_warns_instead_of_stepping(self, make_runner, observer):
        started = asyncio.Event()

        async def hang(request):
            started.set()
            await asyncio.sleep(5)
            return httpx.Response(200)

        runner = make_runner(hang)
        task = asyncio.create_task(runner.step(FLOW))
        await started.wait()

        await runner.step(FLOW)
        assert "Already processing a step." in observer.message_texts("warning")

        runner.stop()
        await asyncio.wait_for(task, timeout=1)
        assert runner.results[0].error == "Request aborted by user"
        assert len(observer.flow_stopped) == 1

    @pytest.mark.asyncio
    async def test_stepping_past_a_failed_step_continues(self, make_runner, observer):
        def fail_first(request):
            if request.url.path == "/r1":
                return httpx.Response(500)
            return httpx.Response(200)

        runner = make_runner(fail_first)
        await runner.step(FLOW)
        assert runner.results[0].status == StepStatus.ERROR
        assert len(observer.flow_stopped) == 1

        await runner.step(FLOW)
        assert result_ids(runner) == ["r1", "cond"]
        assert not runner.state.stop_requested

    @pytest.mark.asyncio
    async def test_first_step_publishes_static_vars(self, make_runner, observer):
        runner = make_runner()
        await runner.step(FLOW)

        assert observer.context_updates[0] == {"x": 1}
        assert runner.state.root_context == {"x": 1}
