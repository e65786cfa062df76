import asyncio

import pytest

from faceauth.steps import StepPlan, StepFailed


def recorder(log, name, error=None):
    async def action():
        log.append(name)
        if error is not None:
            raise error
    return action


def test_run_executes_in_order():
    log = []
    plan = StepPlan("test").add("a", recorder(log, "a")).add("b", recorder(log, "b"))

    assert asyncio.run(plan.run()) == ["a", "b"]
    assert log == ["a", "b"]
    assert plan.names == ["a", "b"]


def test_run_stops_at_first_failure():
    log = []
    plan = (
        StepPlan("test")
        .add("a", recorder(log, "a"))
        .add("b", recorder(log, "b", RuntimeError("boom")))
        .add("c", recorder(log, "c"))
    )

    with pytest.raises(StepFailed) as excinfo:
        asyncio.run(plan.run())

    assert log == ["a", "b"]
    assert excinfo.value.step == "b"
    assert excinfo.value.completed == ["a"]
    assert isinstance(excinfo.value.__cause__, RuntimeError)


def test_run_best_effort_continues_past_failures():
    log = []
    plan = (
        StepPlan("test")
        .add("a", recorder(log, "a", RuntimeError("boom")))
        .add("b", recorder(log, "b"))
    )

    assert asyncio.run(plan.run_best_effort()) == ["a"]
    assert log == ["a", "b"]


def test_empty_plan():
    assert asyncio.run(StepPlan("empty").run()) == []
    assert len(StepPlan("empty")) == 0
