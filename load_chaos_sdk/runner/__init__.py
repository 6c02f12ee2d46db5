"""Virtual users and the run orchestrator."""

from load_chaos_sdk.runner.engine import LoadTestRunner, RunResult, RunStatus
from load_chaos_sdk.runner.virtual_user import ThinkTime, VirtualUser

__all__ = ["LoadTestRunner", "RunResult", "RunStatus", "ThinkTime", "VirtualUser"]
