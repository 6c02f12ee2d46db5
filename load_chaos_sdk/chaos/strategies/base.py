"""
Base Strategy Pattern for Disruptions.

This module defines the abstract base class for all disruption strategies,
following the Strategy Pattern to enable extensibility and modularity. A
disruption is a burst of abusive traffic issued against the target once per
run by the chaos controller.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from load_chaos_sdk.common.errors import ErrorCode
from load_chaos_sdk.common.logger import get_logger
from load_chaos_sdk.common.telemetry import record_error_code
from load_chaos_sdk.metrics.aggregator import CHAOS_REQUESTS

logger = get_logger(__name__)

CHAOS_REQUEST_FAILURES = "chaos_request_failures"


@dataclass
class DisruptionResult:
    """What a disruption did."""
    strategy: str
    requests: int = 0
    failures: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy,
            "requests": self.requests,
            "failures": self.failures,
            "error": self.error,
        }


class BaseDisruption(ABC):
    """
    Abstract base class for disruption strategies.

    Subclasses must implement:
    - `_apply_impl()`: Issue the disruption against the target

    The base class provides:
    - `apply()`: Runs the implementation, records ``chaos_requests`` and
      ``chaos_request_failures`` and never raises
    """

    def __init__(self, name: str, enabled: bool = True, **kwargs):
        """
        Initialize the disruption strategy.

        Args:
            name: Unique name identifier for this strategy.
            enabled: Whether this strategy may be selected.
            **kwargs: Additional parameters (for dynamic config loading).
        """
        self.name = name
        self.enabled = enabled
        self.params = kwargs
        logger.debug(f"Initialized disruption: {name} (enabled={enabled})")

    async def apply(self, client, aggregator=None) -> DisruptionResult:
        """
        Issue the disruption.

        Errors raised by the implementation are logged and reported in the
        result; they never reach the caller.
        """
        try:
            result = await self._apply_impl(client)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                f"[{ErrorCode.CHAOS_STRATEGY_FAILED}] Disruption '{self.name}' failed: "
                f"{type(e).__name__}: {e}",
                exc_info=True,
            )
            record_error_code(ErrorCode.CHAOS_STRATEGY_FAILED, component=self.name)
            result = DisruptionResult(strategy=self.name, error=f"{type(e).__name__}: {e}")

        if aggregator is not None:
            aggregator.add(CHAOS_REQUESTS, result.requests)
            aggregator.add(CHAOS_REQUEST_FAILURES, result.failures)
        logger.info(
            f"Disruption '{self.name}' issued {result.requests} requests "
            f"({result.failures} failed)"
        )
        return result

    @abstractmethod
    async def _apply_impl(self, client) -> DisruptionResult:
        """
        Issue the disruption against the target.

        Args:
            client: TargetClient shared with the run.

        Returns:
            DisruptionResult describing the traffic issued.
        """
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}', enabled={self.enabled})"
