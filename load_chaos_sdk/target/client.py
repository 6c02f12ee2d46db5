"""
Async HTTP client for the target service.

One ``TargetClient`` (and so one connection pool) is shared by every virtual
user, the provisioner and the chaos controller. Every call is timed and
returns a ``TargetResponse``; transport errors never raise out of the client,
they come back as a response with ``status == 0`` so scenarios can turn them
into failed checks.
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from load_chaos_sdk.common.errors import ErrorCode
from load_chaos_sdk.common.logger import get_logger
from load_chaos_sdk.common.telemetry import record_error_code
from load_chaos_sdk.metrics.aggregator import HTTP_REQ_FAILED, HTTP_REQS, MetricKind

logger = get_logger(__name__)

_MISSING = object()


@dataclass
class TargetResponse:
    """
    Result of a single call to the target.

    Attributes:
        label: Request label used for check names and latency budgets.
        status: HTTP status code, or 0 when the call never completed.
        elapsed_ms: Wall time of the call in milliseconds.
        body: Parsed JSON body, or None.
        error: Transport error description, or None.
        malformed: True when the body was expected to be JSON but was not.
    """
    label: str
    status: int
    elapsed_ms: float
    body: Any = None
    error: Optional[str] = None
    malformed: bool = False

    @property
    def completed(self) -> bool:
        return self.error is None

    @property
    def failed(self) -> bool:
        """Transport failure or a non 2xx/3xx status."""
        return self.status < 200 or self.status >= 400

    def field(self, key: str, default: Any = None) -> Any:
        if isinstance(self.body, dict):
            return self.body.get(key, default)
        return default

    def post_ids(self) -> list:
        """IDs from a ``{"posts": [{"id": ...}]}`` listing; empty when absent."""
        posts = self.field("posts")
        if not isinstance(posts, list):
            return []
        return [p["id"] for p in posts if isinstance(p, dict) and "id" in p]


class TargetClient:
    """
    Thin async wrapper around ``httpx.AsyncClient`` for the target API.

    Example:
        async with TargetClient(plan.target, aggregator=aggregator) as client:
            response = await client.list_posts()
    """

    def __init__(
        self,
        target,
        aggregator=None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            target: TargetConfig (base_url, timeout, max_connections, paths).
            aggregator: Optional MetricsAggregator receiving ``http_reqs`` and
                ``http_req_failed`` for every call.
            transport: Optional httpx transport (used by tests).
        """
        self.target = target
        self.paths = target.paths
        self.aggregator = aggregator
        self.recording = True
        limits = httpx.Limits(
            max_connections=target.max_connections,
            max_keepalive_connections=target.max_connections,
        )
        self._client = httpx.AsyncClient(
            base_url=target.base_url,
            timeout=target.timeout,
            limits=limits,
            transport=transport,
            headers={"User-Agent": "load-chaos/1.0"},
        )

    async def __aenter__(self) -> "TargetClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        label: str,
        token: Optional[str] = None,
        json: Any = _MISSING,
        params: Optional[Dict[str, Any]] = None,
        parse_json: bool = True,
    ) -> TargetResponse:
        """
        Perform one timed call.

        Never raises for transport problems: timeouts, connection errors and
        other ``httpx.HTTPError`` come back as ``status == 0``.
        """
        headers = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        kwargs: Dict[str, Any] = {"headers": headers}
        if json is not _MISSING:
            kwargs["json"] = json
        if params:
            kwargs["params"] = params

        start = time.perf_counter()
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            elapsed_ms = (time.perf_counter() - start) * 1000
            logger.debug(
                f"[{ErrorCode.TRANSPORT_ERROR}] {method} {path} ({label}) failed after "
                f"{elapsed_ms:.1f}ms: {type(e).__name__}: {e}"
            )
            record_error_code(ErrorCode.TRANSPORT_ERROR, component="target_client")
            result = TargetResponse(
                label=label, status=0, elapsed_ms=elapsed_ms,
                error=f"{type(e).__name__}: {e}" if str(e) else type(e).__name__,
            )
            self._record(result)
            return result

        elapsed_ms = (time.perf_counter() - start) * 1000
        body = None
        malformed = False
        if parse_json and response.content:
            try:
                body = response.json()
            except ValueError:
                malformed = True
                logger.debug(
                    f"[{ErrorCode.MALFORMED_RESPONSE}] {method} {path} ({label}) returned "
                    f"non-JSON body with status {response.status_code}"
                )
        result = TargetResponse(
            label=label, status=response.status_code, elapsed_ms=elapsed_ms,
            body=body, malformed=malformed,
        )
        self._record(result)
        return result

    def _record(self, result: TargetResponse) -> None:
        if self.aggregator is None or not self.recording:
            return
        self.aggregator.record(HTTP_REQS, MetricKind.COUNTER, 1)
        self.aggregator.record(HTTP_REQ_FAILED, MetricKind.RATE, result.failed)

    # Target API

    async def register(self, account, label: str = "register") -> TargetResponse:
        return await self.request(
            "POST", self.paths.register_path, label,
            json={"username": account.username, "email": account.email, "password": account.password},
        )

    async def login(self, account, label: str = "login") -> TargetResponse:
        return await self.request(
            "POST", self.paths.login, label,
            json={"email": account.email, "password": account.password},
        )

    async def list_posts(
        self, label: str = "get posts", params: Optional[Dict[str, Any]] = None
    ) -> TargetResponse:
        return await self.request("GET", self.paths.posts, label, params=params)

    async def get_post(self, post_id: Any, label: str = "get post") -> TargetResponse:
        return await self.request("GET", self.paths.post.format(post_id=post_id), label)

    async def get_messages(self, post_id: Any, label: str = "get messages") -> TargetResponse:
        return await self.request("GET", self.paths.messages.format(post_id=post_id), label)

    async def create_post(
        self,
        token: Optional[str],
        image_url: str,
        caption: str,
        label: str = "create post",
    ) -> TargetResponse:
        return await self.request(
            "POST", self.paths.posts, label, token=token,
            json={"image_url": image_url, "caption": caption},
        )

    async def create_message(
        self,
        token: Optional[str],
        post_id: Any,
        message: str,
        label: str = "create message",
    ) -> TargetResponse:
        return await self.request(
            "POST", self.paths.messages.format(post_id=post_id), label, token=token,
            json={"message": message},
        )

    async def health(self, label: str = "health check") -> TargetResponse:
        return await self.request("GET", self.paths.health, label)

    async def metrics(self, label: str = "metrics endpoint") -> TargetResponse:
        return await self.request("GET", self.paths.metrics, label, parse_json=False)
