"""
Unit tests for scenario selection and dispatch.
"""

import random
from collections import Counter

import pytest

from load_chaos_sdk.scenarios.base import (
    Outcome,
    Scenario,
    ScenarioContext,
    ScenarioDispatcher,
    StatusPolicy,
    select_scenario,
)


class RecordingScenario(Scenario):
    """Scenario that records the context it ran with."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = []

    async def _run_impl(self, ctx, token, outcome):
        self.calls.append((ctx.vu_id, ctx.iteration, token))
        outcome.check(f"{self.name} ran", True)


class TokenScenario(RecordingScenario):
    requires_token = True


class ExplodingScenario(Scenario):
    async def _run_impl(self, ctx, token, outcome):
        raise RuntimeError("boom")


def _scenarios(*weights):
    return [RecordingScenario(name=f"s{i}", weight=w) for i, w in enumerate(weights)]


def test_select_scenario_cumulative_intervals():
    """Test that draws map onto cumulative weight intervals in order."""
    a, b, c = _scenarios(0.4, 0.2, 0.4)
    scenarios = [a, b, c]
    assert select_scenario(scenarios, 0.0) is a
    assert select_scenario(scenarios, 0.399) is a
    assert select_scenario(scenarios, 0.4) is b
    assert select_scenario(scenarios, 0.59) is b
    assert select_scenario(scenarios, 0.6) is c
    assert select_scenario(scenarios, 0.999999) is c


def test_select_scenario_floating_point_shortfall_picks_last():
    """Test that a draw past the accumulated sum selects the last scenario."""
    scenarios = _scenarios(0.1, 0.2, 0.7 - 1e-9)
    assert select_scenario(scenarios, 0.9999999999) is scenarios[-1]


@pytest.mark.parametrize("draw", [-0.1, 1.0, 1.5])
def test_select_scenario_rejects_out_of_range_draws(draw):
    """Test that draws outside [0, 1) are rejected."""
    with pytest.raises(ValueError):
        select_scenario(_scenarios(1.0), draw)


def test_select_scenario_requires_scenarios():
    """Test that selecting from nothing is an error."""
    with pytest.raises(ValueError):
        select_scenario([], 0.5)


def test_selection_frequencies_follow_weights():
    """Test that uniform draws select scenarios in proportion to their weights."""
    scenarios = _scenarios(0.4, 0.2, 0.2, 0.2)
    rng = random.Random(1234)
    counts = Counter(select_scenario(scenarios, rng.random()).name for _ in range(20000))
    assert counts["s0"] / 20000 == pytest.approx(0.4, abs=0.02)
    for name in ("s1", "s2", "s3"):
        assert counts[name] / 20000 == pytest.approx(0.2, abs=0.02)


def test_scenario_weight_must_be_in_range():
    """Test that weights outside (0, 1] are rejected."""
    with pytest.raises(ValueError):
        RecordingScenario(name="bad", weight=0)
    with pytest.raises(ValueError):
        RecordingScenario(name="bad", weight=1.5)


def test_dispatcher_validates_weight_sum():
    """Test that enabled weights must sum to 1."""
    with pytest.raises(ValueError, match="sum to 1.0"):
        ScenarioDispatcher(_scenarios(0.5, 0.3), ScenarioContext(client=None))


def test_dispatcher_ignores_disabled_scenarios():
    """Test that disabled scenarios are not part of the mix."""
    enabled = RecordingScenario(name="on", weight=1.0)
    disabled = RecordingScenario(name="off", weight=0.5, enabled=False)
    dispatcher = ScenarioDispatcher([disabled, enabled], ScenarioContext(client=None))
    assert dispatcher.scenarios == [enabled]


@pytest.mark.asyncio
async def test_dispatch_tags_context_with_user_and_iteration():
    """Test that the scenario sees the virtual user id and iteration."""
    scenario = RecordingScenario(name="only", weight=1.0)
    dispatcher = ScenarioDispatcher([scenario], ScenarioContext(client=None))

    outcome = await dispatcher.dispatch(0.5, "tok", vu_id=3, iteration=9)

    assert outcome.scenario == "only"
    assert outcome.passed
    assert scenario.calls == [(3, 9, "tok")]


@pytest.mark.asyncio
async def test_dispatch_turns_exceptions_into_failed_check():
    """Test that a crashing scenario yields one failed completion check."""
    dispatcher = ScenarioDispatcher([ExplodingScenario(name="boom", weight=1.0)], ScenarioContext(client=None))

    outcome = await dispatcher.dispatch(0.1, None)

    assert [(c.name, c.passed) for c in outcome.checks] == [("boom completed", False)]


@pytest.mark.asyncio
async def test_missing_token_fails_without_running():
    """Test that token-requiring scenarios record a failed check and make no call."""
    scenario = TokenScenario(name="write", weight=1.0)
    outcome = await scenario.run(ScenarioContext(client=None), None)

    assert scenario.calls == []
    assert [(c.name, c.passed) for c in outcome.checks] == [("write has token", False)]


def test_status_policy_backpressure():
    """Test backpressure codes pass only when the profile accepts them."""
    strict = StatusPolicy(expected=frozenset({200}))
    lenient = StatusPolicy(expected=frozenset({200}), accept_backpressure=True)

    assert strict.accepts(200)
    assert not strict.accepts(429)
    assert lenient.accepts(429)
    assert lenient.accepts(503)
    assert not lenient.accepts(500)
    assert strict.is_exhaustion(503)
    assert lenient.with_expected([201]).accepts(201)
    assert not lenient.with_expected([201]).accepts(200)


def test_outcome_with_no_checks_passes():
    """Test that an empty outcome counts as passed."""
    assert Outcome().passed
