"""
Structured error codes used in log lines and telemetry.
"""


class ErrorCode:
    """String constants identifying recoverable harness errors."""

    SETUP_FAILED = "LC-SETUP"
    TOKEN_UNAVAILABLE = "LC-NO-TOKEN"
    TRANSPORT_ERROR = "LC-TRANSPORT"
    MALFORMED_RESPONSE = "LC-MALFORMED"
    SCENARIO_CRASHED = "LC-SCENARIO"
    CHAOS_UNRECOVERED = "LC-CHAOS-UNRECOVERED"
    CHAOS_STRATEGY_FAILED = "LC-CHAOS-STRATEGY"
    THRESHOLD_MISSING = "LC-THRESHOLD-MISSING"
    STREAM_ERROR = "LC-STREAM"
    HEALTH_PROBE_FAILED = "LC-PROBE"
    THRESHOLD_NOT_APPLICABLE = "LC-THRESHOLD-KIND"


class PlanError(ValueError):
    """Raised when a run plan is structurally valid YAML but unusable."""
