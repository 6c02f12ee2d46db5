"""
Pytest configuration and shared fixtures.
"""

import json
import sys
from pathlib import Path

import httpx
import pytest

# Add project root to path
_project_root = Path(__file__).resolve().parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from load_chaos_sdk.config_loader import TargetConfig


class FakeTarget:
    """
    In-memory stand-in for the target API, served through httpx.MockTransport.

    Attributes:
        requests: Every request received, in order.
        status_overrides: (method, path) -> status code forced for that route.
        health_status: Status returned by /health.
        failing_logins: Emails whose login returns 401.
    """

    def __init__(self, posts=None):
        self.requests = []
        self.posts = list(posts) if posts is not None else [
            {"id": "p1", "caption": "first"},
            {"id": "p2", "caption": "second"},
        ]
        self.messages = {}
        self.status_overrides = {}
        self.health_status = 200
        self.failing_logins = set()
        self.raise_for = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method, path = request.method, request.url.path

        if path in self.raise_for:
            raise httpx.ConnectError("connection refused", request=request)
        if (method, path) in self.status_overrides:
            return httpx.Response(self.status_overrides[(method, path)], json={"error": "forced"})

        if path == "/api/v1/users/register":
            return httpx.Response(201, json={"message": "User registered successfully"})
        if path == "/api/v1/users/login":
            email = json.loads(request.content)["email"]
            if email in self.failing_logins:
                return httpx.Response(401, json={"error": "Invalid credentials"})
            return httpx.Response(200, json={"token": f"token-{email}"})
        if path == "/health":
            return httpx.Response(self.health_status, json={"status": "ok"})
        if path == "/metrics":
            return httpx.Response(200, text="requests_total 1\n")

        authorized = request.headers.get("Authorization", "").startswith("Bearer ")
        if path == "/api/v1/posts":
            if method == "GET":
                return httpx.Response(200, json={"posts": self.posts})
            if not authorized:
                return httpx.Response(401, json={"error": "User not authenticated"})
            body = json.loads(request.content)
            post = {"id": f"p{len(self.posts) + 1}", **body}
            self.posts.insert(0, post)
            return httpx.Response(201, json={"message": "Post created successfully", "post": post})
        if path.startswith("/api/v1/posts/") and path.endswith("/messages"):
            post_id = path.split("/")[4]
            if method == "GET":
                return httpx.Response(200, json={"messages": self.messages.get(post_id, [])})
            if not authorized:
                return httpx.Response(401, json={"error": "User not authenticated"})
            message = {"id": f"m{len(self.messages.get(post_id, [])) + 1}", **json.loads(request.content)}
            self.messages.setdefault(post_id, []).append(message)
            return httpx.Response(201, json={"message": "Message created successfully", "data": message})
        if path.startswith("/api/v1/posts/"):
            return httpx.Response(200, json={"post": {"id": path.rsplit("/", 1)[-1]}})
        return httpx.Response(404, json={"error": "Not found"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def paths(self, method=None):
        return [r.url.path for r in self.requests if method is None or r.method == method]


@pytest.fixture
def fake_target():
    """A fresh in-memory target."""
    return FakeTarget()


@pytest.fixture
def target_config():
    """Target configuration pointing at the default local base URL."""
    return TargetConfig(base_url="http://target.test")


@pytest.fixture
def plan_data():
    """Minimal valid run plan mapping (short stages, fast polling)."""
    return {
        "version": "1.0",
        "metadata": {"name": "unit plan"},
        "target": {"base_url": "http://target.test"},
        "accounts": {"count": 2, "username_prefix": "unittest"},
        "stages": [
            {"duration": 0.6, "target": 3},
            {"duration": 0.6, "target": 0},
        ],
        "think_time": {"mode": "fixed", "value": 0.05},
        "scenarios": [
            {"name": "get_posts", "type": "get_posts", "weight": 0.5},
            {"name": "create_post", "type": "create_post", "weight": 0.5},
        ],
        "thresholds": {"http_req_failed": ["rate<0.1"]},
        "poll_interval": 0.05,
        "graceful_stop": 2,
        "seed": 7,
    }


def make_run_result(passed=True, chaos=None, aborted=False):
    """Build a small finished RunResult without running anything."""
    from load_chaos_sdk.metrics.aggregator import MetricsAggregator
    from load_chaos_sdk.runner.engine import RunResult

    aggregator = MetricsAggregator()
    aggregator.start()
    aggregator.add("http_reqs", 4)
    for failed in (False, False, False, not passed):
        aggregator.mark("http_req_failed", failed)
    for value in (120.0, 80.0, 95.5):
        aggregator.observe("http_req_duration", value)
    aggregator.declare("recovery_time", "trend")
    aggregator.finish()
    thresholds = {"http_req_failed": ["rate<0.1"], "http_req_duration": ["p(95)<500"]}
    return RunResult(
        plan_name="unit plan",
        profile="custom",
        verdict=aggregator.evaluate(thresholds),
        aggregates=aggregator.aggregates(),
        checks={"get posts status is 200": {"passes": 3, "fails": 0 if passed else 1}},
        started_at="2026-01-01T00:00:00+00:00",
        finished_at="2026-01-01T00:00:02+00:00",
        duration_seconds=2.0,
        tokens=2,
        accounts=2,
        peak_vus=3,
        iterations=4,
        aborted=aborted,
        chaos=chaos,
        thresholds=thresholds,
    )
