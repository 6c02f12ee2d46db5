"""
Unit tests for the command line interface.
"""

import pytest
import yaml
from typer.testing import CliRunner

from conftest import make_run_result
from load_chaos_sdk import __version__
from load_chaos_sdk import cli as cli_module
from load_chaos_sdk.cli import EXIT_CONFIG_ERROR, EXIT_FAILED, EXIT_PASSED, app

runner = CliRunner()


class FakeRunner:
    """Stands in for LoadTestRunner; returns a canned result."""
    result = None
    plans = []

    def __init__(self, plan, on_tick=None, **kwargs):
        FakeRunner.plans.append(plan)
        self.on_tick = on_tick

    async def run(self):
        return FakeRunner.result

    def abort(self):
        pass


def _write_plan(tmp_path, data):
    path = tmp_path / "plan.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def test_version():
    """Test the version command."""
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_profiles_lists_bundled_profiles():
    """Test the profile table."""
    result = runner.invoke(app, ["profiles"])
    assert result.exit_code == 0
    for name in ("basic_load", "stress", "spike", "chaos"):
        assert name in result.stdout


def test_init_writes_profile(tmp_path):
    """Test scaffolding a plan from a profile."""
    output = tmp_path / "plan.yaml"
    result = runner.invoke(app, ["init", "--profile", "chaos", "--output", str(output)])
    assert result.exit_code == 0
    assert yaml.safe_load(output.read_text(encoding="utf-8"))["chaos"]["enabled"] is True


def test_init_unknown_profile(tmp_path):
    """Test that an unknown profile is a configuration error."""
    result = runner.invoke(app, ["init", "--profile", "nope", "--output", str(tmp_path / "p.yaml")])
    assert result.exit_code == EXIT_CONFIG_ERROR


def test_init_refuses_overwrite_without_confirmation(tmp_path):
    """Test that an existing file is kept unless confirmed."""
    output = tmp_path / "plan.yaml"
    output.write_text("keep", encoding="utf-8")
    result = runner.invoke(app, ["init", "--output", str(output)], input="n\n")
    assert result.exit_code != 0
    assert output.read_text(encoding="utf-8") == "keep"


def test_validate_valid_plan(tmp_path, plan_data):
    """Test validating a correct plan."""
    result = runner.invoke(app, ["validate", str(_write_plan(tmp_path, plan_data))])
    assert result.exit_code == 0
    assert "Validation passed" in result.stdout


def test_validate_bad_weights(tmp_path, plan_data):
    """Test that schema errors exit with the configuration error code."""
    plan_data["scenarios"][0]["weight"] = 0.9
    result = runner.invoke(app, ["validate", str(_write_plan(tmp_path, plan_data))])
    assert result.exit_code == EXIT_CONFIG_ERROR


def test_validate_unknown_scenario_type(tmp_path, plan_data):
    """Test that unregistered scenario types are reported."""
    plan_data["scenarios"][1]["type"] = "teleport"
    result = runner.invoke(app, ["validate", str(_write_plan(tmp_path, plan_data))])
    assert result.exit_code == EXIT_CONFIG_ERROR
    assert "teleport" in result.stdout


def test_validate_missing_file(tmp_path):
    """Test the missing file case."""
    result = runner.invoke(app, ["validate", str(tmp_path / "absent.yaml")])
    assert result.exit_code == EXIT_CONFIG_ERROR


def test_run_passing_verdict(tmp_path, plan_data, monkeypatch):
    """Test that a passing run exits 0 and writes reports."""
    FakeRunner.result = make_run_result(passed=True)
    FakeRunner.plans = []
    monkeypatch.setattr(cli_module, "LoadTestRunner", FakeRunner)
    report_dir = tmp_path / "reports"

    result = runner.invoke(app, [
        "run", str(_write_plan(tmp_path, plan_data)),
        "--report-dir", str(report_dir), "--seed", "11", "--base-url", "http://other.test/",
    ])

    assert result.exit_code == EXIT_PASSED
    assert (report_dir / "run_report.json").exists()
    assert (report_dir / "run_report.md").exists()
    assert FakeRunner.plans[0].seed == 11
    assert FakeRunner.plans[0].target.base_url == "http://other.test"


def test_run_failing_verdict(tmp_path, plan_data, monkeypatch):
    """Test that a failed verdict exits 1."""
    FakeRunner.result = make_run_result(passed=False)
    monkeypatch.setattr(cli_module, "LoadTestRunner", FakeRunner)
    result = runner.invoke(app, ["run", str(_write_plan(tmp_path, plan_data))])
    assert result.exit_code == EXIT_FAILED


def test_run_scales_durations(tmp_path, plan_data, monkeypatch):
    """Test the duration scale option."""
    FakeRunner.result = make_run_result(passed=True)
    FakeRunner.plans = []
    monkeypatch.setattr(cli_module, "LoadTestRunner", FakeRunner)
    result = runner.invoke(app, ["run", str(_write_plan(tmp_path, plan_data)), "--duration-scale", "0.5"])
    assert result.exit_code == EXIT_PASSED
    assert FakeRunner.plans[0].total_duration == pytest.approx(0.6)


def test_run_invalid_plan(tmp_path, plan_data):
    """Test that an invalid plan exits 2 without running."""
    plan_data["stages"] = []
    result = runner.invoke(app, ["run", str(_write_plan(tmp_path, plan_data))])
    assert result.exit_code == EXIT_CONFIG_ERROR


def test_run_requires_plan_or_profile():
    """Test that run needs a file or a profile."""
    result = runner.invoke(app, ["run"])
    assert result.exit_code == EXIT_CONFIG_ERROR
