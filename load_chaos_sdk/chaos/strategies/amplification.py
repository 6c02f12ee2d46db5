"""
Traffic amplification disruptions.

- ReadAmplificationStrategy: burst of concurrent list reads (database stress)
- PayloadAmplificationStrategy: oversized post writes (memory pressure)
- BatchLatencyStrategy: large batch of concurrent reads (latency pressure)
"""

import asyncio
import random
from typing import List, Optional

from load_chaos_sdk.chaos.strategies.base import BaseDisruption, DisruptionResult
from load_chaos_sdk.common.logger import get_logger

logger = get_logger(__name__)


def _result(name: str, responses: List) -> DisruptionResult:
    return DisruptionResult(
        strategy=name,
        requests=len(responses),
        failures=sum(1 for r in responses if r.failed),
    )


class ReadAmplificationStrategy(BaseDisruption):
    """
    Issue ``count`` (default 10) concurrent list reads, each tagged with a
    distinct query parameter so caches cannot absorb them.
    """

    def __init__(self, name: str, enabled: bool = True, count: int = 10, **kwargs):
        super().__init__(name, enabled, **kwargs)
        self.count = int(count)

    async def _apply_impl(self, client) -> DisruptionResult:
        responses = await asyncio.gather(*(
            client.list_posts(label="chaos read", params={"chaos": f"db_stress_{i}"})
            for i in range(self.count)
        ))
        return _result(self.name, responses)


class PayloadAmplificationStrategy(BaseDisruption):
    """
    Send ``count`` (default 5) post writes carrying a ``payload_size``
    (default 1000) character caption. Writes are unauthenticated unless a
    ``token`` param is given.
    """

    def __init__(
        self,
        name: str,
        enabled: bool = True,
        count: int = 5,
        payload_size: int = 1000,
        token: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(name, enabled, **kwargs)
        self.count = int(count)
        self.payload_size = int(payload_size)
        self.token = token

    async def _apply_impl(self, client) -> DisruptionResult:
        caption = "A" * self.payload_size
        responses = await asyncio.gather(*(
            client.create_post(
                self.token,
                f"https://picsum.photos/800/600?random={random.random()}",
                caption,
                label="chaos write",
            )
            for _ in range(self.count)
        ))
        return _result(self.name, responses)


class BatchLatencyStrategy(BaseDisruption):
    """Issue a batch of ``count`` (default 20) concurrent tagged reads."""

    def __init__(self, name: str, enabled: bool = True, count: int = 20, **kwargs):
        super().__init__(name, enabled, **kwargs)
        self.count = int(count)

    async def _apply_impl(self, client) -> DisruptionResult:
        responses = await asyncio.gather(*(
            client.list_posts(label="chaos batch read", params={"latency_test": i})
            for i in range(self.count)
        ))
        return _result(self.name, responses)
