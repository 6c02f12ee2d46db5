"""
Built-in HTTP scenarios.

These cover the read/write mix of a typical social feed API: listing posts,
reading a post with its messages, creating posts and messages, and probing
health/metrics endpoints. Every scenario records its outcome through checks;
none of them raise on bad responses.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Optional

from load_chaos_sdk.common.logger import get_logger
from load_chaos_sdk.metrics.aggregator import MetricKind
from load_chaos_sdk.scenarios.base import (
    RESOURCE_EXHAUSTION_EVENTS,
    Outcome,
    Scenario,
    ScenarioContext,
    StatusPolicy,
)

logger = get_logger(__name__)

SUCCESSFUL_REQUESTS = "successful_requests"
SPIKE_RECOVERY_EVENTS = "spike_recovery_events"
RESPONSE_TIME_TREND = "response_time_trend"

LIST_POLICY_CODES = (200,)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _image_url(ctx: ScenarioContext) -> str:
    return f"https://picsum.photos/800/600?random={ctx.rng.randint(0, 9999)}"


class HttpScenario(Scenario):
    """
    Base for HTTP scenarios.

    Adds ``count_successes`` (param): when true, every response with one of
    the scenario's expected codes adds 1 to ``successful_requests``.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.count_successes = bool(self.params.get("count_successes", False))

    def record(self, outcome: Outcome, response, ctx: ScenarioContext,
               policy: Optional[StatusPolicy] = None) -> bool:
        policy = policy or self.policy(ctx)
        ok = self.check_response(outcome, response, policy=policy)
        if ok and self.count_successes and response.status in policy.expected:
            outcome.sample(SUCCESSFUL_REQUESTS, MetricKind.COUNTER, 1)
        return ok

    async def fetch_post_ids(self, ctx: ScenarioContext, outcome: Outcome) -> Optional[list]:
        """
        List posts as the first step of a fetch-then-act flow.

        Returns None when the listing failed (a failed check is recorded),
        otherwise the list of post IDs (possibly empty).
        """
        response = await ctx.client.list_posts(label="list posts")
        policy = ctx.policy.with_expected(LIST_POLICY_CODES)
        if not self.check_response(outcome, response, policy=policy):
            return None
        if response.status != 200:
            # accepted backpressure: nothing to act on
            return []
        if not isinstance(response.field("posts"), list):
            outcome.check("list posts has data", False)
            return None
        return response.post_ids()


class GetPostsScenario(HttpScenario):
    """List posts; checks status, latency budget and the ``posts`` field."""

    async def _run_impl(self, ctx, token, outcome):
        response = await ctx.client.list_posts(label="get posts")
        if self.record(outcome, response, ctx) and response.status == 200:
            outcome.check("get posts has data", isinstance(response.field("posts"), list))


class GetPostWithMessagesScenario(HttpScenario):
    """List posts, then read the first post and its messages."""

    async def _run_impl(self, ctx, token, outcome):
        post_ids = await self.fetch_post_ids(ctx, outcome)
        if not post_ids:
            return
        post_id = post_ids[0]
        post_response = await ctx.client.get_post(post_id, label="get post")
        messages_response = await ctx.client.get_messages(post_id, label="get messages")
        self.record(outcome, post_response, ctx)
        self.record(outcome, messages_response, ctx)


class CreatePostScenario(HttpScenario):
    """Create a post tagged with the virtual user and iteration."""

    default_expect = (201,)
    requires_token = True

    async def _run_impl(self, ctx, token, outcome):
        prefix = self.params.get("caption_prefix", "Load test post")
        caption = f"{prefix} vu{ctx.vu_id}-{ctx.iteration} at {_now_iso()}"
        response = await ctx.client.create_post(token, _image_url(ctx), caption, label="create post")
        if self.record(outcome, response, ctx) and response.status == 201:
            post = response.field("post")
            outcome.check("create post has id", isinstance(post, dict) and bool(post.get("id")))


class CreateMessageScenario(HttpScenario):
    """Create ``count`` messages (default 1) on a random post."""

    default_expect = (201,)
    requires_token = True

    async def _run_impl(self, ctx, token, outcome):
        post_ids = await self.fetch_post_ids(ctx, outcome)
        if not post_ids:
            return
        post_id = ctx.rng.choice(post_ids)
        for i in range(int(self.params.get("count", 1))):
            text = f"Load test message vu{ctx.vu_id}-{ctx.iteration}-{i} at {_now_iso()}"
            response = await ctx.client.create_message(token, post_id, text, label="create message")
            self.record(outcome, response, ctx)


class HealthCheckScenario(HttpScenario):
    """
    Probe the health endpoint.

    The probe result is also reported to the chaos controller, so regular
    traffic can observe recovery as soon as it happens.
    """

    async def _run_impl(self, ctx, token, outcome):
        response = await ctx.client.health(label="health check")
        self.record(outcome, response, ctx)
        if ctx.chaos is not None:
            ctx.chaos.report_health(response.status == 200)


class RapidReadsScenario(HttpScenario):
    """
    Burst of ``count`` list reads (default 3).

    With ``concurrent`` (default true) the reads are issued as one batch.
    Fast 200 responses (below ``fast_ms``, default 500) count as
    ``spike_recovery_events``.
    """

    async def _run_impl(self, ctx, token, outcome):
        count = int(self.params.get("count", 3))
        fast_ms = float(self.params.get("fast_ms", 500))
        if self.params.get("concurrent", True):
            responses = await asyncio.gather(
                *(ctx.client.list_posts(label="rapid read") for _ in range(count))
            )
        else:
            responses = [await ctx.client.list_posts(label="rapid read") for _ in range(count)]
        for response in responses:
            self.record(outcome, response, ctx)
            if response.status == 200 and response.elapsed_ms < fast_ms:
                outcome.sample(SPIKE_RECOVERY_EVENTS, MetricKind.COUNTER, 1)


class MessageFloodScenario(HttpScenario):
    """Post ``count`` messages (default 3) on the first, most visible post."""

    default_expect = (201,)
    requires_token = True

    async def _run_impl(self, ctx, token, outcome):
        post_ids = await self.fetch_post_ids(ctx, outcome)
        if not post_ids:
            return
        post_id = post_ids[0]
        comments = self.params.get("comments") or [
            "This is amazing!",
            "Sharing this everywhere!",
            "Everyone look at this!",
        ]
        for i in range(int(self.params.get("count", 3))):
            text = f"{ctx.rng.choice(comments)} vu{ctx.vu_id}-{ctx.iteration}-{i}"
            response = await ctx.client.create_message(token, post_id, text, label="message flood")
            self.record(outcome, response, ctx)


class MixedOperationsScenario(HttpScenario):
    """
    Posts, health and metrics in sequence.

    Each call passes when it completed with a status below ``status_ceiling``
    (default 500), so client errors and rate limiting are tolerated.
    """

    async def _run_impl(self, ctx, token, outcome):
        ceiling = int(self.params.get("status_ceiling", 500))
        calls = (
            (ctx.client.list_posts, "mixed posts"),
            (ctx.client.health, "mixed health"),
            (ctx.client.metrics, "mixed metrics"),
        )
        for call, label in calls:
            response = await call(label=label)
            if response.completed:
                outcome.timing(response.label, response.elapsed_ms)
            ok = outcome.check(
                f"{response.label} status < {ceiling}",
                response.completed and 0 < response.status < ceiling,
            )
            if ok and self.count_successes:
                outcome.sample(SUCCESSFUL_REQUESTS, MetricKind.COUNTER, 1)
            if ctx.policy.is_exhaustion(response.status):
                outcome.sample(RESOURCE_EXHAUSTION_EVENTS, MetricKind.COUNTER, 1)


class ReadOperationsScenario(HttpScenario):
    """
    One random read among posts, health and metrics.

    Every response time is recorded into ``response_time_trend``. After
    ``baseline_after`` seconds (default 300) the next response time becomes
    the baseline; later reads slower than ``degradation_factor`` (default 2)
    times the baseline count as ``resource_exhaustion_events``.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.baseline_after = float(self.params.get("baseline_after", 300))
        self.degradation_factor = float(self.params.get("degradation_factor", 2.0))
        self._first_run_at: Optional[float] = None
        self.baseline_ms: Optional[float] = None

    async def _run_impl(self, ctx, token, outcome):
        now = time.monotonic()
        if self._first_run_at is None:
            self._first_run_at = now

        operation = ctx.rng.randrange(3)
        if operation == 0:
            response = await ctx.client.list_posts(label="read operation")
        elif operation == 1:
            response = await ctx.client.health(label="read operation")
        else:
            response = await ctx.client.metrics(label="read operation")
        self.record(outcome, response, ctx)
        if not response.completed:
            return

        elapsed = response.elapsed_ms
        outcome.sample(RESPONSE_TIME_TREND, MetricKind.TREND, elapsed)
        if self.baseline_ms is None:
            if now - self._first_run_at >= self.baseline_after:
                self.baseline_ms = elapsed
                logger.info(f"{self.name}: response time baseline set to {elapsed:.1f}ms")
        elif elapsed > self.baseline_ms * self.degradation_factor:
            outcome.sample(RESOURCE_EXHAUSTION_EVENTS, MetricKind.COUNTER, 1)


class InteractiveScenario(HttpScenario):
    """Create a message on a random post, then read the messages back."""

    default_expect = (201,)
    requires_token = True

    async def _run_impl(self, ctx, token, outcome):
        post_ids = await self.fetch_post_ids(ctx, outcome)
        if not post_ids:
            return
        post_id = ctx.rng.choice(post_ids)
        text = f"Interactive message vu{ctx.vu_id}-{ctx.iteration} at {_now_iso()}"
        created = await ctx.client.create_message(token, post_id, text, label="interactive create message")
        read_back = await ctx.client.get_messages(post_id, label="interactive get messages")
        self.record(outcome, created, ctx)
        self.record(outcome, read_back, ctx, policy=ctx.policy.with_expected(LIST_POLICY_CODES))


class SystemHealthScenario(HttpScenario):
    """Probe the health and metrics endpoints."""

    async def _run_impl(self, ctx, token, outcome):
        health = await ctx.client.health(label="health check")
        metrics = await ctx.client.metrics(label="metrics endpoint")
        self.record(outcome, health, ctx)
        self.record(outcome, metrics, ctx)
