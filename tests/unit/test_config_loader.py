"""
Unit tests for run plan loading and validation.
"""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from load_chaos_sdk.config_loader import (
    BUILTIN_PROFILES,
    EndpointPaths,
    RunPlan,
    builtin_plan_text,
    load_builtin_plan,
    load_run_plan,
    parse_run_plan,
)


def test_parse_minimal_plan(plan_data):
    """Test that a minimal mapping produces a plan with defaults."""
    plan = parse_run_plan(plan_data)
    assert plan.name == "unit plan"
    assert plan.total_duration == pytest.approx(1.2)
    assert [s.name for s in plan.enabled_scenarios()] == ["get_posts", "create_post"]
    assert plan.thresholds == {"http_req_failed": ["rate<0.1"]}
    assert plan.target.timeout == 10.0
    assert plan.chaos.enabled is False


def test_stage_durations_accept_suffixes(plan_data):
    """Test '30s' / '2m' style stage durations."""
    plan_data["stages"] = [{"duration": "30s", "target": 10}, {"duration": "2m", "target": 0}]
    plan = parse_run_plan(plan_data)
    assert [s.duration for s in plan.stage_list()] == [30.0, 120.0]


def test_single_threshold_string_is_normalized(plan_data):
    """Test that a bare expression becomes a one-element list."""
    plan_data["thresholds"] = {"http_req_duration": "p(95)<500"}
    assert parse_run_plan(plan_data).thresholds == {"http_req_duration": ["p(95)<500"]}


@pytest.mark.parametrize("weights", [[0.5, 0.4], [0.7, 0.7]])
def test_weights_must_sum_to_one(plan_data, weights):
    """Test that enabled weights must partition the unit interval."""
    for scenario, weight in zip(plan_data["scenarios"], weights):
        scenario["weight"] = weight
    with pytest.raises(ValidationError, match="sum to 1.0"):
        parse_run_plan(plan_data)


def test_disabled_scenarios_do_not_count(plan_data):
    """Test that disabled scenarios are excluded from the weight sum."""
    plan_data["scenarios"][0]["weight"] = 1.0
    plan_data["scenarios"][1]["enabled"] = False
    plan = parse_run_plan(plan_data)
    assert [s.name for s in plan.enabled_scenarios()] == ["get_posts"]


def test_duplicate_scenario_names_rejected(plan_data):
    """Test scenario name uniqueness."""
    plan_data["scenarios"][1]["name"] = "get_posts"
    with pytest.raises(ValidationError, match="duplicate"):
        parse_run_plan(plan_data)


def test_invalid_threshold_rejected(plan_data):
    """Test that malformed threshold expressions fail at load time."""
    plan_data["thresholds"] = {"http_req_failed": ["rate<<0.1"]}
    with pytest.raises(ValueError):
        parse_run_plan(plan_data)


def test_invalid_base_url_rejected(plan_data):
    """Test that the target must be an http(s) URL."""
    plan_data["target"]["base_url"] = "ftp://target.test"
    with pytest.raises(ValidationError):
        parse_run_plan(plan_data)


def test_chaos_requires_enabled_strategy(plan_data):
    """Test that enabling chaos without strategies is rejected."""
    plan_data["chaos"] = {
        "enabled": True,
        "strategies": [{"name": "db", "type": "read_amplification", "enabled": False}],
    }
    with pytest.raises(ValidationError, match="no strategy"):
        parse_run_plan(plan_data)


def test_chaos_window_bounds(plan_data):
    """Test that an empty chaos window is rejected."""
    plan_data["chaos"] = {"enabled": True, "window": {"start": 0.5, "end": 0.5}}
    with pytest.raises(ValidationError):
        parse_run_plan(plan_data)


def test_empty_plan_rejected():
    """Test that an empty document is a configuration error."""
    with pytest.raises(ValueError, match="empty"):
        parse_run_plan({})


def test_env_override(plan_data, monkeypatch):
    """Test that the base URL can be overridden from the environment."""
    monkeypatch.setenv("LOAD_CHAOS_BASE_URL", "http://staging.test:9000/")
    plan = parse_run_plan(plan_data)
    assert plan.target.base_url == "http://staging.test:9000"


def test_load_run_plan_from_file(plan_data, tmp_path):
    """Test loading a YAML file."""
    path = tmp_path / "plan.yaml"
    path.write_text(yaml.safe_dump(plan_data), encoding="utf-8")
    plan = load_run_plan(str(path))
    assert isinstance(plan, RunPlan)
    assert plan.seed == 7


def test_load_run_plan_missing_file(tmp_path):
    """Test the missing file error."""
    with pytest.raises(FileNotFoundError):
        load_run_plan(str(tmp_path / "absent.yaml"))


def test_load_run_plan_invalid_yaml(tmp_path):
    """Test that broken YAML surfaces as a YAML error."""
    path = tmp_path / "broken.yaml"
    path.write_text("stages: [\n", encoding="utf-8")
    with pytest.raises(yaml.YAMLError):
        load_run_plan(str(path))


@pytest.mark.parametrize("profile", BUILTIN_PROFILES)
def test_builtin_profiles_load(profile):
    """Test that every bundled profile is a valid plan."""
    plan = load_builtin_plan(profile)
    assert plan.stages
    assert plan.thresholds
    assert plan.total_duration > 0


def test_unknown_builtin_profile():
    """Test the unknown profile error."""
    with pytest.raises(ValueError, match="Unknown profile"):
        builtin_plan_text("soak")


def test_chaos_profile_window():
    """Test the bundled chaos profile's window and strategies."""
    plan = load_builtin_plan("chaos")
    assert plan.chaos.enabled
    assert plan.chaos.window.unit == "iterations"
    assert (plan.chaos.window.start, plan.chaos.window.end) == (300, 600)
    assert [s.name for s in plan.chaos.strategies] == ["db_stress", "memory_pressure", "network_latency"]


def test_scaled_plan(plan_data):
    """Test that scaling multiplies stage durations and keeps the mix."""
    plan = parse_run_plan(plan_data)
    scaled = plan.scaled(0.5)
    assert [s.duration for s in scaled.stages] == pytest.approx([0.3, 0.3])
    assert scaled.scenarios == plan.scenarios
    assert scaled.poll_interval <= plan.poll_interval
    with pytest.raises(ValueError):
        plan.scaled(0)


def test_scaled_plan_scales_seconds_window(plan_data):
    """Test that a seconds-based chaos window scales with the stages."""
    plan_data["chaos"] = {"enabled": True, "window": {"unit": "seconds", "start": 10, "end": 20}}
    scaled = parse_run_plan(plan_data).scaled(0.1)
    assert (scaled.chaos.window.start, scaled.chaos.window.end) == pytest.approx((1.0, 2.0))


def test_example_plans_load():
    """Test that the plans shipped under examples/ are valid."""
    plans_dir = Path(__file__).resolve().parents[2] / "examples" / "plans"
    paths = sorted(plans_dir.glob("*.yaml"))
    assert paths
    for path in paths:
        assert load_run_plan(str(path)).stages


def test_register_path_reads_plan_key(plan_data):
    """Test that target.paths.register populates register_path and survives scaling."""
    plan_data["target"]["paths"] = {"register": "/auth/signup"}
    plan = parse_run_plan(plan_data)

    assert plan.target.paths.register_path == "/auth/signup"
    assert plan.target.paths.login == "/api/v1/users/login"
    assert plan.scaled(0.5).target.paths.register_path == "/auth/signup"


def test_register_path_default():
    """Test the default registration path."""
    assert EndpointPaths().register_path == "/api/v1/users/register"
    assert EndpointPaths(register_path="/signup").register_path == "/signup"
