"""Tests for the gate state machine definition."""

from __future__ import annotations

import pytest

from src.release_gate.models import (
    Disposition,
    GateMode,
    GateOutcome,
    GateResult,
    GateStatus,
)
from src.release_gate.state_machine import (
    STATES,
    TERMINAL_STATES,
    TRANSITIONS,
    GateModel,
    create_gate_machine,
)


class TestDefinition:
    def test_states(self):
        assert STATES == ["polling", "hold_wait", "passed", "failed", "error_exhausted"]

    def test_terminal_states_are_known(self):
        assert TERMINAL_STATES <= set(STATES)

    def test_triggers(self):
        triggers = {t["trigger"] for t in TRANSITIONS}
        assert triggers == {"hold", "back_off", "resume_polling", "pass_gate", "fail_gate", "exhaust"}


class TestTransitions:
    @pytest.mark.asyncio
    async def test_hold_cycle_advances_attempt(self):
        model = GateModel(3)
        create_gate_machine(model)

        assert await model.hold() is True
        assert model.state == "hold_wait"
        await model.resume_polling()
        assert model.state == "polling"
        assert model.attempt_index == 2

    @pytest.mark.asyncio
    async def test_hold_refused_on_last_attempt(self):
        model = GateModel(1)
        create_gate_machine(model)

        assert await model.hold() is False
        assert model.state == "polling"

    @pytest.mark.asyncio
    async def test_exhaust_only_on_last_attempt(self):
        model = GateModel(2)
        create_gate_machine(model)

        assert await model.exhaust() is False
        assert model.state == "polling"

        await model.back_off()
        await model.resume_polling()
        assert await model.exhaust() is True
        assert model.state == "error_exhausted"
        assert model.is_terminal

    @pytest.mark.asyncio
    async def test_terminal_states_ignore_further_triggers(self):
        model = GateModel(3)
        create_gate_machine(model)

        await model.pass_gate()
        assert model.state == "passed"
        await model.hold()
        assert model.state == "passed"

    def test_ceiling_never_below_one(self):
        assert GateModel(0).attempt_ceiling == 1


class TestOutcome:
    @pytest.mark.parametrize(
        "result, disposition",
        [
            (GateResult.PASS, Disposition.CONTINUE),
            (GateResult.DEGRADED, Disposition.CONTINUE_UNSTABLE),
            (GateResult.FAIL, Disposition.HALT),
        ],
    )
    def test_disposition(self, result, disposition):
        outcome = GateOutcome(
            result=result,
            applied_mode=GateMode.BLOCK,
            attempts_used=1,
            last_status=GateStatus.FAILED,
        )
        assert outcome.disposition is disposition

    @pytest.mark.parametrize("value", ["block", "BLOCK", "", None, "strict"])
    def test_mode_defaults_to_block(self, value):
        assert GateMode.parse(value) is GateMode.BLOCK

    def test_mode_warn_case_insensitive(self):
        assert GateMode.parse(" Warn ") is GateMode.WARN
