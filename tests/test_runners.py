"""
Tests for ActionRegistry.
"""

import pytest

from sagaflow import ActionRegistry, NotFoundError, SagaStep, Step, StepContext, StepResult


def _context(step_id="charge", **data):
    return StepContext(execution_id="exec_1", workflow_id="wf@1", step_id=step_id, data=data)


class TestRegistration:
    """register / get / names"""

    def test_decorator_and_direct_call(self):
        """Test both registration styles"""
        actions = ActionRegistry()

        @actions.register("reserve")
        def reserve(data):
            return None

        actions.register("charge", lambda data: None)

        assert actions.names() == ["charge", "reserve"]
        assert "reserve" in actions
        assert actions.get("reserve") is reserve

    def test_not_callable(self):
        """Test non-callables are rejected"""
        with pytest.raises(TypeError):
            ActionRegistry().register("bad", "not a function")

    def test_unknown_action(self):
        """Test lookup of a missing action"""
        with pytest.raises(NotFoundError, match="Action 'ghost' not found"):
            ActionRegistry().get("ghost")


class TestWorkflowSteps:
    """Running workflow steps"""

    @pytest.mark.asyncio
    async def test_config_action_overrides_step_id(self):
        """Test config['action'] names the callable"""
        actions = ActionRegistry({"charge_card": lambda ctx: {"charged": ctx.data["total"]}})
        step = Step(id="charge", config={"action": "charge_card"})

        result = await actions.run(step, _context(total=10))

        assert result == StepResult(data={"charged": 10})

    @pytest.mark.asyncio
    async def test_async_action_returning_result(self):
        """Test coroutine actions and StepResult passthrough"""
        actions = ActionRegistry()

        @actions.register("charge")
        async def charge(ctx):
            return StepResult.fail("declined")

        result = await actions.run(Step(id="charge"), _context())

        assert not result.success
        assert result.error == "declined"


class TestSagaSteps:
    """Running saga actions and compensations"""

    @pytest.mark.asyncio
    async def test_non_mapping_result_keyed_by_step(self):
        """Test scalar results are stored under the step id"""
        actions = ActionRegistry({"reserve": lambda data: "r-1"})

        result = await actions.run(SagaStep(id="reserve_stock", action="reserve"), {})

        assert result == {"reserve_stock": "r-1"}

    @pytest.mark.asyncio
    async def test_mapping_and_none_pass_through(self):
        """Test mappings and None are returned as they are"""
        actions = ActionRegistry({"a": lambda data: {"x": 1}, "b": lambda data: None})

        assert await actions.run(SagaStep(id="a", action="a"), {}) == {"x": 1}
        assert await actions.run(SagaStep(id="b", action="b"), {}) is None

    @pytest.mark.asyncio
    async def test_compensation_by_name(self):
        """Test a string target runs the named compensation with the saga data"""
        seen = []
        actions = ActionRegistry({"release": seen.append})

        await actions.run("release", {"reservation_id": "r-1"})

        assert seen == [{"reservation_id": "r-1"}]
