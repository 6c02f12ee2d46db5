"""
Configuration-Driven Run Plan Loader

This module loads load/chaos run plans from YAML files. A plan declares
everything a run needs as static configuration: the ramp stages, the weighted
scenario mix, which status codes count as graceful degradation, latency
budgets, the chaos window and the thresholds that decide the verdict.

Example:
    from load_chaos_sdk.config_loader import load_run_plan

    plan = load_run_plan("plans/chaos.yaml")
    print(plan.total_duration, [s.name for s in plan.enabled_scenarios()])
"""

import math
import os
from importlib import resources
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from load_chaos_sdk.common.logger import get_logger
from load_chaos_sdk.metrics.thresholds import parse_thresholds
from load_chaos_sdk.scheduler import Stage, parse_duration

logger = get_logger(__name__)

BUILTIN_PROFILES = ["basic_load", "stress", "spike", "endurance", "chaos", "websocket"]
WEIGHT_TOLERANCE = 1e-6


class EndpointPaths(BaseModel):
    """Paths of the target's HTTP surface, relative to ``base_url``."""
    model_config = ConfigDict(populate_by_name=True)

    # plan key is "register"
    register_path: str = Field(default="/api/v1/users/register", alias="register")
    login: str = "/api/v1/users/login"
    posts: str = "/api/v1/posts"
    post: str = "/api/v1/posts/{post_id}"
    messages: str = "/api/v1/posts/{post_id}/messages"
    health: str = "/health"
    metrics: str = "/metrics"


class TargetConfig(BaseModel):
    """
    Where the target service lives and how to talk to it.

    Attributes:
        base_url: Root URL of the HTTP API.
        ws_url: Streaming endpoint (defaults to ``base_url`` with a ws scheme + ``/ws``).
        timeout: Per-call timeout in seconds.
        max_connections: Connection pool size shared by all virtual users.
    """
    base_url: str = Field(default="http://localhost:8000", description="Target base URL")
    ws_url: Optional[str] = Field(default=None, description="Streaming endpoint URL")
    timeout: float = Field(default=10.0, gt=0, description="Per-call timeout (seconds)")
    max_connections: int = Field(default=1000, ge=1, description="HTTP connection pool size")
    paths: EndpointPaths = Field(default_factory=EndpointPaths)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")

    @property
    def stream_url(self) -> str:
        if self.ws_url:
            return self.ws_url
        if self.base_url.startswith("https://"):
            return "wss://" + self.base_url[len("https://"):] + "/ws"
        return "ws://" + self.base_url[len("http://"):] + "/ws"


class AccountsConfig(BaseModel):
    """Synthetic accounts provisioned before the run."""
    count: int = Field(default=3, ge=0, description="Number of accounts")
    username_prefix: str = Field(default="loadtest", min_length=1)
    email_prefix: Optional[str] = Field(default=None, description="Defaults to username_prefix")
    email_domain: str = Field(default="example.com")
    password: str = Field(default="password123")
    concurrency: int = Field(default=5, ge=1, description="Parallel provisioning requests")


class StageConfig(BaseModel):
    """One (duration, target) pair of the ramp profile."""
    duration: float = Field(..., ge=0, description="Stage duration in seconds")
    target: int = Field(..., ge=0, description="Concurrency at the end of the stage")

    @field_validator("duration", mode="before")
    @classmethod
    def parse_stage_duration(cls, v: Any) -> float:
        return parse_duration(v)

    def to_stage(self) -> Stage:
        return Stage(duration=self.duration, target=self.target)


class ThinkTimeConfig(BaseModel):
    """
    Pause between iterations of one virtual user.

    ``fixed`` sleeps ``value`` seconds, ``uniform`` sleeps a random time in
    ``[min, max)``, ``none`` does not pause.
    """
    mode: Literal["fixed", "uniform", "none"] = "fixed"
    value: float = Field(default=1.0, ge=0)
    min: float = Field(default=0.0, ge=0)
    max: float = Field(default=0.0, ge=0)

    @model_validator(mode="after")
    def validate_range(self) -> "ThinkTimeConfig":
        if self.mode == "uniform" and self.max < self.min:
            raise ValueError("think_time.max must be >= think_time.min")
        return self


class ScenarioConfig(BaseModel):
    """
    One weighted entry of the scenario mix.

    Attributes:
        name: Unique scenario name (used in check names and reports).
        type: Registered scenario type (e.g. "get_posts", "create_post").
        weight: Share of iterations in (0, 1].
        expect: Status codes that pass; empty means the type's default.
        budgets_ms: Response-time budgets per request label.
        params: Type-specific parameters.
    """
    name: str = Field(..., description="Scenario name")
    type: str = Field(..., description="Scenario type identifier")
    weight: float = Field(..., gt=0.0, le=1.0, description="Selection weight")
    enabled: bool = Field(default=True)
    expect: List[int] = Field(default_factory=list, description="Accepted status codes")
    budgets_ms: Dict[str, float] = Field(default_factory=dict, description="Latency budgets")
    params: Dict[str, Any] = Field(default_factory=dict, description="Scenario parameters")


class ProfileConfig(BaseModel):
    """
    Run-profile level status classification.

    Normal-load profiles reject backpressure; stress and chaos profiles accept
    it as graceful degradation.
    """
    name: str = Field(default="custom")
    accept_backpressure: bool = Field(default=False)
    backpressure_statuses: List[int] = Field(default_factory=lambda: [429, 503])
    exhaustion_statuses: List[int] = Field(default_factory=lambda: [500, 503])


class ChaosWindowConfig(BaseModel):
    """Portion of the run in which the single disruption may fire."""
    unit: Literal["fraction", "seconds", "iterations"] = "fraction"
    start: float = Field(default=0.25, ge=0)
    end: float = Field(default=0.75, ge=0)

    @model_validator(mode="after")
    def validate_bounds(self) -> "ChaosWindowConfig":
        if self.end <= self.start:
            raise ValueError("chaos window end must be greater than start")
        if self.unit == "fraction" and self.end > 1.0:
            raise ValueError("fraction windows must lie within [0, 1]")
        return self


class ChaosStrategyConfig(BaseModel):
    """One disruption kind the controller may pick."""
    name: str
    type: str
    enabled: bool = True
    params: Dict[str, Any] = Field(default_factory=dict)


def _default_chaos_strategies() -> List[ChaosStrategyConfig]:
    return [
        ChaosStrategyConfig(name="db_stress", type="read_amplification"),
        ChaosStrategyConfig(name="memory_pressure", type="payload_amplification"),
        ChaosStrategyConfig(name="network_latency", type="batch_latency"),
    ]


class ChaosConfig(BaseModel):
    """Chaos controller configuration."""
    enabled: bool = Field(default=False)
    window: ChaosWindowConfig = Field(default_factory=ChaosWindowConfig)
    strategies: List[ChaosStrategyConfig] = Field(default_factory=_default_chaos_strategies)
    probe_interval: float = Field(default=1.0, gt=0, description="Health probe period (seconds)")

    @model_validator(mode="after")
    def validate_strategies(self) -> "ChaosConfig":
        if self.enabled and not any(s.enabled for s in self.strategies):
            raise ValueError("chaos is enabled but no strategy is enabled")
        return self


class RunPlan(BaseModel):
    """
    Complete load/chaos run plan.

    Attributes:
        version: Plan schema version.
        metadata: Free-form metadata (name, description...).
        stages: Ordered ramp profile.
        scenarios: Weighted scenario mix (enabled weights must sum to 1).
        thresholds: Metric name -> threshold expressions.
        missing_sample_policy: How thresholds without samples are judged.
        poll_interval: How often the runner follows the stage signal.
        graceful_stop: Seconds to wait for in-flight iterations at run end.
        seed: Optional RNG seed for reproducible draws.
    """
    version: str = Field(default="1.0")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    target: TargetConfig = Field(default_factory=TargetConfig)
    accounts: AccountsConfig = Field(default_factory=AccountsConfig)
    stages: List[StageConfig] = Field(..., min_length=1)
    scenarios: List[ScenarioConfig] = Field(..., min_length=1)
    profile: ProfileConfig = Field(default_factory=ProfileConfig)
    think_time: ThinkTimeConfig = Field(default_factory=ThinkTimeConfig)
    chaos: ChaosConfig = Field(default_factory=ChaosConfig)
    thresholds: Dict[str, List[str]] = Field(default_factory=dict)
    missing_sample_policy: Literal["fail", "skip"] = Field(default="fail")
    poll_interval: float = Field(default=1.0, gt=0)
    graceful_stop: float = Field(default=30.0, ge=0)
    seed: Optional[int] = Field(default=None)

    @field_validator("thresholds", mode="before")
    @classmethod
    def normalize_thresholds(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {k: [exprs] if isinstance(exprs, str) else exprs for k, exprs in v.items()}
        return v

    @model_validator(mode="after")
    def validate_scenarios(self) -> "RunPlan":
        """Enabled weights partition [0, 1) and names are unique."""
        enabled = self.enabled_scenarios()
        if not enabled:
            raise ValueError("at least one scenario must be enabled")
        total = math.fsum(s.weight for s in enabled)
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ValueError(f"enabled scenario weights must sum to 1.0 (got {total:.6f})")
        names = [s.name for s in self.scenarios]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate scenario names: {duplicates}")
        return self

    @model_validator(mode="after")
    def validate_threshold_expressions(self) -> "RunPlan":
        parse_thresholds(self.thresholds)
        return self

    def enabled_scenarios(self) -> List[ScenarioConfig]:
        return [s for s in self.scenarios if s.enabled]

    def stage_list(self) -> List[Stage]:
        return [s.to_stage() for s in self.stages]

    @property
    def total_duration(self) -> float:
        return sum(s.duration for s in self.stages)

    @property
    def name(self) -> str:
        return self.metadata.get("name", self.profile.name)

    def scaled(self, factor: float) -> "RunPlan":
        """
        Return a copy whose time-based settings are multiplied by ``factor``.

        Used to rehearse long profiles quickly (e.g. ``factor=0.01``).
        """
        if factor <= 0:
            raise ValueError("scale factor must be positive")
        data = self.model_dump()
        for stage in data["stages"]:
            stage["duration"] = stage["duration"] * factor
        if data["chaos"]["window"]["unit"] == "seconds":
            data["chaos"]["window"]["start"] *= factor
            data["chaos"]["window"]["end"] *= factor
        data["poll_interval"] = min(self.poll_interval, max(self.total_duration * factor / 20, 0.01))
        return RunPlan(**data)


def apply_env_overrides(plan: RunPlan) -> RunPlan:
    """
    Apply LOAD_CHAOS_BASE_URL / LOAD_CHAOS_WS_URL overrides, if set.
    """
    base_url = os.getenv("LOAD_CHAOS_BASE_URL")
    ws_url = os.getenv("LOAD_CHAOS_WS_URL")
    if not base_url and not ws_url:
        return plan
    target = plan.target.model_copy(update={
        k: v for k, v in (("base_url", base_url and base_url.rstrip("/")), ("ws_url", ws_url)) if v
    })
    logger.info(f"Target overridden from environment: {target.base_url}")
    return plan.model_copy(update={"target": target})


def parse_run_plan(data: Dict[str, Any]) -> RunPlan:
    """Validate a plan from an already-parsed mapping."""
    if not data:
        raise ValueError("Run plan is empty or contains no data")
    return apply_env_overrides(RunPlan(**data))


def load_run_plan(path: str) -> RunPlan:
    """
    Load a run plan from a YAML file.

    Args:
        path: Path to the YAML file containing the run plan.

    Returns:
        Validated RunPlan object.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
        ValidationError: If the schema validation fails.
    """
    plan_path = Path(path)

    if not plan_path.exists():
        raise FileNotFoundError(f"Run plan file not found: {path}")

    logger.info(f"Loading run plan from: {plan_path}")

    try:
        with open(plan_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)

        plan = parse_run_plan(data)

        logger.info(
            f"Loaded run plan '{plan.name}': {len(plan.stages)} stages "
            f"({plan.total_duration:.0f}s), {len(plan.enabled_scenarios())} scenarios, "
            f"chaos={'on' if plan.chaos.enabled else 'off'}"
        )
        return plan

    except yaml.YAMLError as e:
        logger.error(f"Failed to parse YAML file {path}: {e}")
        raise
    except Exception as e:
        logger.error(f"Failed to load run plan from {path}: {e}")
        raise


def builtin_plan_text(profile: str) -> str:
    """
    Return the YAML text of a bundled profile.

    Raises:
        ValueError: If ``profile`` is not a bundled profile.
    """
    if profile not in BUILTIN_PROFILES:
        raise ValueError(f"Unknown profile '{profile}'. Available: {', '.join(BUILTIN_PROFILES)}")
    return resources.files("load_chaos_sdk.plans").joinpath(f"{profile}.yaml").read_text(encoding="utf-8")


def load_builtin_plan(profile: str) -> RunPlan:
    """Load one of the bundled profiles (basic_load, stress, spike...)."""
    return parse_run_plan(yaml.safe_load(builtin_plan_text(profile)))
