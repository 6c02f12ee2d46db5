"""
Common utilities for the Load Chaos SDK.
"""

import importlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from load_chaos_sdk.common.logger import get_logger, setup_logging, StructuredLogger
    from load_chaos_sdk.common.errors import ErrorCode, PlanError
    from load_chaos_sdk.common.telemetry import (
        setup_telemetry,
        record_observation,
        record_error_code,
        shutdown_telemetry,
    )

_LAZY_IMPORTS = {
    "get_logger": ("load_chaos_sdk.common.logger", "get_logger"),
    "setup_logging": ("load_chaos_sdk.common.logger", "setup_logging"),
    "StructuredLogger": ("load_chaos_sdk.common.logger", "StructuredLogger"),
    "ErrorCode": ("load_chaos_sdk.common.errors", "ErrorCode"),
    "PlanError": ("load_chaos_sdk.common.errors", "PlanError"),
    "setup_telemetry": ("load_chaos_sdk.common.telemetry", "setup_telemetry"),
    "record_observation": ("load_chaos_sdk.common.telemetry", "record_observation"),
    "record_error_code": ("load_chaos_sdk.common.telemetry", "record_error_code"),
    "shutdown_telemetry": ("load_chaos_sdk.common.telemetry", "shutdown_telemetry"),
}


def __getattr__(name: str):
    if name in _LAZY_IMPORTS:
        module_name, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_name)
        value = getattr(module, attr_name)
        globals()[name] = value
        return value
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


def __dir__() -> list[str]:
    return sorted(list(globals().keys()) + list(_LAZY_IMPORTS.keys()))

__all__ = [
    "get_logger",
    "setup_logging",
    "StructuredLogger",
    "ErrorCode",
    "PlanError",
    "setup_telemetry",
    "record_observation",
    "record_error_code",
    "shutdown_telemetry",
]
