"""
Integration tests for complete runs against an in-memory target.
"""

import asyncio

import httpx
import pytest

from load_chaos_sdk.config_loader import parse_run_plan
from load_chaos_sdk.metrics.aggregator import HTTP_REQS, ITERATIONS, RECOVERY_TIME, VUS
from load_chaos_sdk.runner.engine import LoadTestRunner
from load_chaos_sdk.scenarios.base import Scenario
from load_chaos_sdk.scenarios.factory import ScenarioFactory

SETUP_REQUESTS_PER_ACCOUNT = 2


def _chaos_plan(plan_data, **window):
    plan_data["chaos"] = {
        "enabled": True,
        "probe_interval": 0.05,
        "window": {"unit": "fraction", "start": 0.1, "end": 0.5, **window},
        "strategies": [{"name": "db_stress", "type": "read_amplification", "params": {"count": 10}}],
    }
    return parse_run_plan(plan_data)


@pytest.mark.asyncio
async def test_run_follows_stages_and_passes(plan_data, fake_target):
    """Test a short ramp up and down with a passing verdict."""
    plan = parse_run_plan(plan_data)
    runner = LoadTestRunner(plan, transport=fake_target.transport())

    result = await runner.run()

    assert result.passed
    assert not result.aborted
    assert result.tokens == 2
    assert result.iterations > 0
    assert 1 <= result.peak_vus <= 3
    assert result.duration_seconds == pytest.approx(plan.total_duration, abs=0.5)
    assert result.aggregates[ITERATIONS]["values"]["count"] == result.iterations
    assert result.aggregates[VUS]["samples"] > 0
    assert result.chaos is None


@pytest.mark.asyncio
async def test_setup_traffic_is_not_measured(plan_data, fake_target):
    """Test that registration and login calls stay out of http_reqs."""
    plan = parse_run_plan(plan_data)
    result = await LoadTestRunner(plan, transport=fake_target.transport()).run()

    setup = plan.accounts.count * SETUP_REQUESTS_PER_ACCOUNT
    assert result.aggregates[HTTP_REQS]["values"]["count"] == len(fake_target.requests) - setup


@pytest.mark.asyncio
async def test_writes_use_provisioned_tokens(plan_data, fake_target):
    """Test that create_post iterations authenticate with pool tokens."""
    plan = parse_run_plan(plan_data)
    await LoadTestRunner(plan, transport=fake_target.transport()).run()

    writes = [r for r in fake_target.requests if r.method == "POST" and r.url.path == "/api/v1/posts"]
    assert writes
    tokens = {r.headers["Authorization"] for r in writes}
    assert tokens <= {"Bearer token-unittest1@example.com", "Bearer token-unittest2@example.com"}


@pytest.mark.asyncio
async def test_run_without_tokens_fails_write_checks(plan_data, fake_target):
    """Test that a run with no tokens continues and reports failed writes."""
    fake_target.status_overrides[("POST", "/api/v1/users/register")] = 500
    plan_data["thresholds"] = {"checks": ["rate>0.99"]}
    plan = parse_run_plan(plan_data)

    result = await LoadTestRunner(plan, transport=fake_target.transport()).run()

    assert result.tokens == 0
    assert result.iterations > 0
    assert not result.passed
    assert result.checks["create_post has token"]["fails"] > 0


@pytest.mark.asyncio
async def test_chaos_fires_once_and_recovers(plan_data, fake_target):
    """Test one disruption inside the window with measured recovery."""
    loop = asyncio.get_running_loop()
    first_probe = []

    async def probe():
        if not first_probe:
            first_probe.append(loop.time())
        return loop.time() - first_probe[0] >= 0.3

    plan_data["thresholds"]["recovery_time"] = ["p(95)<5000"]
    plan = _chaos_plan(plan_data)
    result = await LoadTestRunner(plan, transport=fake_target.transport(), health_probe=probe).run()

    assert result.passed
    assert result.chaos["triggered"] is True
    assert result.chaos["recovered"] is True
    assert result.chaos["recovery_time_ms"] >= 300
    assert 0.1 <= result.chaos["triggered_at"] < 0.5
    assert result.aggregates["chaos_events"]["values"]["count"] == 1
    assert result.aggregates["chaos_requests"]["values"]["count"] == 10
    assert result.aggregates[RECOVERY_TIME]["samples"] == 1
    chaos_reads = [r for r in fake_target.requests if "chaos" in r.url.params]
    assert len(chaos_reads) == 10


@pytest.mark.asyncio
async def test_failing_health_probe_does_not_abort_run(plan_data, fake_target):
    """Test a health probe that raises counts as unhealthy and probing continues."""
    calls = []

    async def probe():
        calls.append(1)
        if len(calls) == 1:
            raise httpx.ConnectError("refused")
        return True

    plan = _chaos_plan(plan_data)
    result = await LoadTestRunner(plan, transport=fake_target.transport(), health_probe=probe).run()

    assert len(calls) >= 2
    assert result.chaos["triggered"] is True
    assert result.chaos["recovered"] is True
    assert result.chaos["state"] == "idle"
    assert result.aggregates[RECOVERY_TIME]["samples"] == 1


@pytest.mark.asyncio
async def test_unrecovered_chaos_records_no_recovery_time(plan_data, fake_target):
    """Test that a target that never recovers leaves recovery_time empty."""
    async def probe():
        return False

    plan_data["thresholds"]["recovery_time"] = ["p(95)<5000"]
    plan = _chaos_plan(plan_data)
    result = await LoadTestRunner(plan, transport=fake_target.transport(), health_probe=probe).run()

    assert result.chaos["triggered"] is True
    assert result.chaos["recovered"] is False
    assert result.chaos["state"] == "recovering"
    assert result.aggregates[RECOVERY_TIME]["values"] is None
    assert not result.passed
    failed = [t["metric"] for t in result.verdict.to_dict()["thresholds"] if not t["passed"]]
    assert failed == ["recovery_time"]


@pytest.mark.asyncio
async def test_chaos_window_never_reached(plan_data, fake_target):
    """Test an iteration window the run never reaches."""
    plan_data["chaos"] = {
        "enabled": True,
        "window": {"unit": "iterations", "start": 100000, "end": 100001},
        "strategies": [{"name": "db_stress", "type": "read_amplification"}],
    }
    plan = parse_run_plan(plan_data)
    result = await LoadTestRunner(plan, transport=fake_target.transport()).run()

    assert result.chaos["triggered"] is False
    assert result.passed


@pytest.mark.asyncio
async def test_abort_stops_run_early(plan_data, fake_target):
    """Test that abort ends a long run and lets in-flight iterations finish."""
    plan_data["stages"] = [{"duration": 0.1, "target": 3}, {"duration": 30, "target": 3}]
    plan = parse_run_plan(plan_data)
    runner = LoadTestRunner(plan, transport=fake_target.transport())
    asyncio.get_running_loop().call_later(0.3, runner.abort)

    result = await asyncio.wait_for(runner.run(), timeout=10)

    assert result.aborted
    assert result.duration_seconds < 5
    assert result.stragglers == 0


@pytest.mark.asyncio
async def test_finished_users_are_forgotten(plan_data, fake_target):
    """Test that users stopped by a ramp down are dropped before new ones start."""
    plan_data["stages"] = [
        {"duration": 0.3, "target": 3},
        {"duration": 0.3, "target": 0},
        {"duration": 0.3, "target": 0},
        {"duration": 0.3, "target": 3},
        {"duration": 0.3, "target": 0},
    ]
    plan = parse_run_plan(plan_data)
    ticks = []
    runner = LoadTestRunner(
        plan,
        transport=fake_target.transport(),
        on_tick=lambda status: ticks.append((status.desired_vus, len(runner._tasks))),
    )

    result = await runner.run()

    assert result.peak_vus <= 3
    assert runner._next_vu_id - 1 > 3
    assert any(tracked == 0 for desired, tracked in ticks if desired == 0)
    assert max(tracked for _, tracked in ticks) <= 3
    assert runner._tasks == {}


@pytest.mark.asyncio
async def test_unreachable_target_counts_transport_failures(plan_data, fake_target):
    """Test that transport errors become failed requests, not crashes."""
    fake_target.raise_for.add("/api/v1/posts")
    plan = parse_run_plan(plan_data)

    result = await LoadTestRunner(plan, transport=fake_target.transport()).run()

    assert result.iterations > 0
    assert not result.passed
    assert result.aggregates["http_req_failed"]["values"]["rate"] == 1.0


class SteadyScenario(Scenario):
    """Always passes after a 50ms call."""

    async def _run_impl(self, ctx, token, outcome):
        await asyncio.sleep(0.05)
        outcome.check("steady ok", True)
        outcome.timing("steady", 50.0)


@pytest.mark.asyncio
async def test_iterations_track_ramp_area(plan_data, fake_target):
    """Test that a ramp up and down yields about peak * ramp / think passing checks."""
    ScenarioFactory.register("steady", SteadyScenario)
    plan_data["stages"] = [{"duration": 0.6, "target": 10}, {"duration": 0.6, "target": 0}]
    plan_data["scenarios"] = [{"name": "steady", "type": "steady", "weight": 1.0}]
    plan_data["think_time"] = {"mode": "fixed", "value": 0.05}
    plan_data["thresholds"] = {"checks": ["rate==1"]}
    plan = parse_run_plan(plan_data)

    result = await LoadTestRunner(plan, transport=fake_target.transport()).run()

    # 10 VUs * 0.6s / 0.1s per iteration, with the ramp averaging half of that
    # over each of the two stages
    expected = 10 * 0.6 / 0.1
    passes = result.checks["steady ok"]["passes"]
    assert 0.5 * expected <= passes <= 1.5 * expected
    assert result.checks["steady ok"]["fails"] == 0
    assert result.passed
    assert result.aggregates["http_req_duration"]["values"]["p(95)"] == 50.0
