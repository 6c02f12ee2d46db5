#!/usr/bin/env python3
"""
Mock Server - Simulates the target social feed service

This FastAPI server implements the HTTP and streaming surface the harness
drives, so plans can be rehearsed without the real backend:
- User registration and login (bearer tokens)
- Posts and messages (in memory)
- Health and Prometheus-style metrics endpoints
- A websocket endpoint that echoes JSON envelopes

It includes switchable failure behaviour:
- Degraded mode: health returns 503 and writes are rejected with 503
- Chaos reaction: disruption traffic (``?chaos=`` / ``?latency_test=``)
  degrades the service for a configurable number of seconds
- Rate limiting: requests above a per-second budget get 429

Usage:
    python -m load_chaos_sdk.tools.mock_server

The server runs on http://localhost:8000
"""

import json
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import FastAPI, Header, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from load_chaos_sdk.common.logger import get_logger

logger = get_logger(__name__)


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)


class LoginRequest(BaseModel):
    email: str
    password: str


class CreatePostRequest(BaseModel):
    image_url: str = Field(..., min_length=1)
    caption: str = ""


class CreateMessageRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=500)


class DegradeRequest(BaseModel):
    enabled: bool = True
    duration: Optional[float] = Field(default=None, gt=0, description="Seconds; None = until disabled")


class MockState:
    """In-memory state of the mock target."""

    def __init__(
        self,
        seed_posts: int = 3,
        chaos_degrade_seconds: float = 0.0,
        rate_limit_per_second: Optional[int] = None,
        clock=time.monotonic,
    ):
        self._lock = threading.Lock()
        self._clock = clock
        self.users: Dict[str, Dict[str, Any]] = {}
        self.tokens: Dict[str, str] = {}
        self.posts: List[Dict[str, Any]] = []
        self.messages: Dict[str, List[Dict[str, Any]]] = {}
        self.request_count = 0
        self.status_counts: Dict[int, int] = {}
        self.chaos_degrade_seconds = chaos_degrade_seconds
        self.rate_limit_per_second = rate_limit_per_second
        self._degraded = False
        self._degraded_until: Optional[float] = None
        self._window_start = clock()
        self._window_count = 0

        for i in range(seed_posts):
            self.add_post(user_id="seed", image_url=f"https://picsum.photos/800/600?random={i}",
                          caption=f"Seed post {i + 1}")

    # Degraded mode

    def degrade(self, enabled: bool = True, duration: Optional[float] = None) -> None:
        with self._lock:
            self._degraded = enabled
            self._degraded_until = self._clock() + duration if enabled and duration else None
        logger.info(f"Mock target degraded={enabled} duration={duration}")

    @property
    def degraded(self) -> bool:
        with self._lock:
            if self._degraded and self._degraded_until is not None and self._clock() >= self._degraded_until:
                self._degraded = False
                self._degraded_until = None
            return self._degraded

    def note_chaos_traffic(self) -> None:
        if self.chaos_degrade_seconds > 0 and not self.degraded:
            self.degrade(True, self.chaos_degrade_seconds)

    def rate_limited(self) -> bool:
        if not self.rate_limit_per_second:
            return False
        with self._lock:
            now = self._clock()
            if now - self._window_start >= 1.0:
                self._window_start = now
                self._window_count = 0
            self._window_count += 1
            return self._window_count > self.rate_limit_per_second

    def count(self, status: int) -> None:
        with self._lock:
            self.request_count += 1
            self.status_counts[status] = self.status_counts.get(status, 0) + 1

    # Data

    def add_post(self, user_id: str, image_url: str, caption: str) -> Dict[str, Any]:
        now = datetime.now(timezone.utc).isoformat()
        post = {
            "id": str(uuid4()),
            "user_id": user_id,
            "image_url": image_url,
            "caption": caption,
            "created_at": now,
            "updated_at": now,
        }
        with self._lock:
            self.posts.insert(0, post)
            self.messages[post["id"]] = []
        return post

    def get_post(self, post_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return next((p for p in self.posts if p["id"] == post_id), None)

    def user_for_token(self, authorization: Optional[str]) -> Optional[str]:
        if not authorization or not authorization.startswith("Bearer "):
            return None
        return self.tokens.get(authorization[len("Bearer "):])


def create_app(
    seed_posts: int = 3,
    chaos_degrade_seconds: float = 0.0,
    rate_limit_per_second: Optional[int] = None,
    state: Optional[MockState] = None,
) -> FastAPI:
    """
    Build a mock target application.

    Args:
        seed_posts: Posts created at startup.
        chaos_degrade_seconds: When > 0, disruption traffic degrades the
            service for this many seconds.
        rate_limit_per_second: Optional global request budget (429 above it).
        state: Pre-built MockState (tests use this to flip modes).
    """
    state = state or MockState(
        seed_posts=seed_posts,
        chaos_degrade_seconds=chaos_degrade_seconds,
        rate_limit_per_second=rate_limit_per_second,
    )
    app = FastAPI(
        title="Mock Target Service",
        description="In-memory target for load and chaos rehearsals",
        version="1.0.0",
    )
    app.state.mock = state

    @app.middleware("http")
    async def failure_modes(request: Request, call_next):
        path = request.url.path
        if not path.startswith("/admin") and state.rate_limited():
            state.count(429)
            return JSONResponse({"error": "Rate limit exceeded"}, status_code=429)
        if request.query_params.get("chaos") or request.query_params.get("latency_test") is not None:
            state.note_chaos_traffic()
        if state.degraded and request.method == "POST" and path.startswith("/api/"):
            state.count(503)
            return JSONResponse({"error": "Service degraded"}, status_code=503)
        response = await call_next(request)
        state.count(response.status_code)
        return response

    @app.get("/health")
    async def health():
        if state.degraded:
            return JSONResponse({"status": "degraded"}, status_code=503)
        return {"status": "ok"}

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics():
        lines = [
            "# HELP mock_requests_total Requests served by the mock target",
            "# TYPE mock_requests_total counter",
        ]
        for status, count in sorted(state.status_counts.items()):
            lines.append(f'mock_requests_total{{status="{status}"}} {count}')
        lines.append(f"mock_posts {len(state.posts)}")
        return "\n".join(lines) + "\n"

    @app.post("/api/v1/users/register", status_code=201)
    async def register(body: RegisterRequest):
        if body.email in state.users:
            raise HTTPException(status_code=400, detail="User already exists")
        user = {"id": str(uuid4()), "username": body.username, "email": body.email,
                "password": body.password}
        state.users[body.email] = user
        return {"message": "User registered successfully",
                "user": {"id": user["id"], "username": user["username"], "email": user["email"]}}

    @app.post("/api/v1/users/login")
    async def login(body: LoginRequest):
        user = state.users.get(body.email)
        if user is None or user["password"] != body.password:
            raise HTTPException(status_code=401, detail="Invalid credentials")
        token = uuid4().hex
        state.tokens[token] = user["id"]
        return {"token": token, "user": {"id": user["id"], "username": user["username"]}}

    @app.get("/api/v1/posts")
    async def list_posts():
        return {"posts": list(state.posts[:50])}

    @app.get("/api/v1/posts/{post_id}")
    async def get_post(post_id: str):
        post = state.get_post(post_id)
        if post is None:
            raise HTTPException(status_code=404, detail="Post not found")
        return {"post": post}

    @app.get("/api/v1/posts/{post_id}/messages")
    async def get_messages(post_id: str):
        if state.get_post(post_id) is None:
            raise HTTPException(status_code=404, detail="Post not found")
        return {"messages": list(state.messages.get(post_id, []))}

    @app.post("/api/v1/posts", status_code=201)
    async def create_post(body: CreatePostRequest, authorization: Optional[str] = Header(default=None)):
        user_id = state.user_for_token(authorization)
        if user_id is None:
            raise HTTPException(status_code=401, detail="User not authenticated")
        post = state.add_post(user_id, body.image_url, body.caption)
        return {"message": "Post created successfully", "post": post}

    @app.post("/api/v1/posts/{post_id}/messages", status_code=201)
    async def create_message(
        post_id: str,
        body: CreateMessageRequest,
        authorization: Optional[str] = Header(default=None),
    ):
        user_id = state.user_for_token(authorization)
        if user_id is None:
            raise HTTPException(status_code=401, detail="User not authenticated")
        if state.get_post(post_id) is None:
            raise HTTPException(status_code=404, detail="Post not found")
        message = {
            "id": str(uuid4()),
            "post_id": post_id,
            "sender_id": user_id,
            "message": body.message,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        state.messages[post_id].append(message)
        return {"message": "Message created successfully", "data": message}

    @app.websocket("/ws")
    async def stream(websocket: WebSocket):
        token = websocket.query_params.get("token")
        if not token or token not in state.tokens:
            await websocket.close(code=1008)
            return
        await websocket.accept()
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    envelope = json.loads(raw)
                except ValueError:
                    await websocket.send_text(json.dumps({"type": "error", "content": "invalid json"}))
                    continue
                await websocket.send_text(json.dumps({
                    "type": "echo",
                    "content": envelope.get("content"),
                    "timestamp": int(time.time() * 1000),
                }))
        except WebSocketDisconnect:
            pass

    @app.post("/admin/degrade")
    async def set_degraded(body: DegradeRequest):
        state.degrade(body.enabled, body.duration)
        return {"degraded": state.degraded}

    @app.get("/admin/state")
    async def admin_state():
        return {
            "degraded": state.degraded,
            "users": len(state.users),
            "posts": len(state.posts),
            "requests": state.request_count,
            "status_counts": {str(k): v for k, v in sorted(state.status_counts.items())},
        }

    return app


app = create_app()


def run_mock_server(
    host: str = "0.0.0.0",
    port: int = 8000,
    seed_posts: int = 3,
    chaos_degrade_seconds: float = 0.0,
    rate_limit_per_second: Optional[int] = None,
    log_level: str = "info",
) -> None:
    """Serve a mock target with uvicorn (blocks until interrupted)."""
    import uvicorn

    uvicorn.run(
        create_app(seed_posts, chaos_degrade_seconds, rate_limit_per_second),
        host=host,
        port=port,
        log_level=log_level,
    )


if __name__ == "__main__":
    print("=" * 70)
    print("Mock Target Service")
    print("=" * 70)
    print("Server starting on http://localhost:8000")
    print("API Documentation: http://localhost:8000/docs")
    print("Health Check: http://localhost:8000/health")
    print("=" * 70)
    print()

    run_mock_server()
