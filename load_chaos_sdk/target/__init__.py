"""Target service client."""

from load_chaos_sdk.target.client import TargetClient, TargetResponse

__all__ = ["TargetClient", "TargetResponse"]
