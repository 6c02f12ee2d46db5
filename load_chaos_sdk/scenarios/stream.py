"""
Streaming (websocket) session scenario.

A session connects to the target's streaming endpoint with the virtual user's
token, sends a small JSON envelope every ``send_interval`` seconds and keeps
reading frames until the session is held for ``hold`` seconds or the run is
stopped. The periodic sender is owned by the session and is always cancelled
before the connection is closed.
"""

import asyncio
import contextlib
import json
import time
from typing import Optional
from urllib.parse import quote

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from load_chaos_sdk.common.errors import ErrorCode
from load_chaos_sdk.common.logger import get_logger
from load_chaos_sdk.common.telemetry import record_error_code
from load_chaos_sdk.metrics.aggregator import MetricKind
from load_chaos_sdk.scenarios.base import Outcome, Scenario

logger = get_logger(__name__)

WS_CONNECTING = "ws_connecting"
WS_CONNECTION_ERRORS = "ws_connection_errors"
WS_MESSAGES_SENT = "ws_messages_sent"
WS_MESSAGES_RECEIVED = "ws_messages_received"
WS_MESSAGES_INVALID = "ws_messages_invalid"
WS_SESSION_DURATION = "ws_session_duration"


class StreamSession:
    """
    One streaming connection held for a bounded time.

    Args:
        url: Full websocket URL (token already in the query string).
        outcome: Outcome receiving checks and samples.
        send_interval: Seconds between outgoing envelopes.
        hold: Maximum session length in seconds.
        stop_event: Run-level stop signal; the session ends as soon as it is set.
        open_timeout: Connection handshake timeout in seconds.
        sender_id: Tag included in outgoing envelopes.
    """

    def __init__(
        self,
        url: str,
        outcome: Outcome,
        send_interval: float = 2.0,
        hold: float = 30.0,
        stop_event: Optional[asyncio.Event] = None,
        open_timeout: float = 10.0,
        sender_id: int = 0,
    ):
        self.url = url
        self.outcome = outcome
        self.send_interval = send_interval
        self.hold = hold
        self.stop_event = stop_event
        self.open_timeout = open_timeout
        self.sender_id = sender_id
        self.sent = 0
        self.received = 0
        self.invalid = 0

    async def run(self) -> None:
        start = time.perf_counter()
        try:
            connection = await websockets.connect(self.url, open_timeout=self.open_timeout)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            logger.debug(f"[{ErrorCode.STREAM_ERROR}] Stream connect failed: {type(e).__name__}: {e}")
            record_error_code(ErrorCode.STREAM_ERROR, component="stream_session")
            self.outcome.sample(WS_CONNECTION_ERRORS, MetricKind.RATE, True)
            self.outcome.check("stream connection successful", False)
            return

        self.outcome.sample(WS_CONNECTING, MetricKind.TREND, (time.perf_counter() - start) * 1000)
        self.outcome.sample(WS_CONNECTION_ERRORS, MetricKind.RATE, False)
        self.outcome.check("stream connection successful", True)

        opened_at = time.perf_counter()
        sender = asyncio.create_task(self._send_loop(connection))
        try:
            closed_cleanly = await self._receive_loop(connection)
            self.outcome.check("stream session closed cleanly", closed_cleanly)
        finally:
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sender
            await connection.close()
            self.outcome.sample(
                WS_SESSION_DURATION, MetricKind.TREND, (time.perf_counter() - opened_at) * 1000
            )

    async def _send_loop(self, connection) -> None:
        while True:
            await asyncio.sleep(self.send_interval)
            now_ms = int(time.time() * 1000)
            envelope = {
                "type": "test_message",
                "content": f"Load test message from VU {self.sender_id} at {now_ms}",
                "timestamp": now_ms,
            }
            try:
                await connection.send(json.dumps(envelope))
            except ConnectionClosed:
                return
            self.sent += 1
            self.outcome.sample(WS_MESSAGES_SENT, MetricKind.COUNTER, 1)

    async def _receive_loop(self, connection) -> bool:
        """
        Read frames until the hold time elapses, the run stops or the peer
        closes. Returns False only for an abnormal close.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.hold
        stop_waiter = (
            asyncio.ensure_future(self.stop_event.wait()) if self.stop_event is not None else None
        )
        receiver = None
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return True
                if receiver is None:
                    receiver = asyncio.ensure_future(connection.recv())
                waiters = {receiver}
                if stop_waiter is not None:
                    waiters.add(stop_waiter)
                done, _ = await asyncio.wait(
                    waiters, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )
                if stop_waiter is not None and stop_waiter in done:
                    return True
                if receiver in done:
                    finished, receiver = receiver, None
                    try:
                        frame = finished.result()
                    except ConnectionClosedOK:
                        return True
                    except ConnectionClosed as e:
                        logger.debug(f"[{ErrorCode.STREAM_ERROR}] Stream closed abnormally: {e}")
                        record_error_code(ErrorCode.STREAM_ERROR, component="stream_session")
                        return False
                    self._handle_frame(frame)
        finally:
            for task in (receiver, stop_waiter):
                if task is not None and not task.done():
                    task.cancel()

    def _handle_frame(self, frame) -> None:
        try:
            json.loads(frame)
        except (TypeError, ValueError):
            self.invalid += 1
            self.outcome.sample(WS_MESSAGES_INVALID, MetricKind.COUNTER, 1)
            return
        self.received += 1
        self.outcome.sample(WS_MESSAGES_RECEIVED, MetricKind.COUNTER, 1)


class StreamSessionScenario(Scenario):
    """
    Hold one streaming session per iteration.

    Params: ``send_interval`` (default 2s), ``hold`` (default 30s),
    ``open_timeout`` (default 10s) and ``url`` to override the target's
    stream URL.
    """

    requires_token = True

    async def run(self, ctx, token):
        if not token:
            outcome = Outcome(scenario=self.name)
            outcome.sample(WS_CONNECTION_ERRORS, MetricKind.RATE, True)
            outcome.check(f"{self.name} has token", False)
            return outcome
        return await super().run(ctx, token)

    async def _run_impl(self, ctx, token, outcome):
        base_url = self.params.get("url") or ctx.stream_url
        if not base_url:
            raise ValueError("No stream URL configured")
        separator = "&" if "?" in base_url else "?"
        session = StreamSession(
            url=f"{base_url}{separator}token={quote(token, safe='')}",
            outcome=outcome,
            send_interval=float(self.params.get("send_interval", 2.0)),
            hold=float(self.params.get("hold", 30.0)),
            stop_event=ctx.stop_event,
            open_timeout=float(self.params.get("open_timeout", 10.0)),
            sender_id=ctx.vu_id,
        )
        await session.run()
