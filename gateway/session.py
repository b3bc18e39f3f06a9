"""
gateway/session.py — Gateway Session

Owns the single websocket to the gateway and the state machine around it:

    CONNECTING → AWAITING_HELLO → IDENTIFYING | RESUMING → READY
         ↑                                                   │
         └──────────── DISCONNECTED ←────────────────────────┘
                            │ (retries exhausted)
                            ▼
                          DEAD

HELLO starts IDENTIFY (or RESUME when a resumable record survived the last
close) and one eager heartbeat. Every HEARTBEAT_ACK re-arms a single pending
heartbeat for one interval later; the first ack on a connection emits ALIVE.

Close codes are looked up in gateway.protocol.CLOSE_REASONS: resumable closes
keep the SessionRecord, everything else discards it. A connection that drops
without a close frame counts as 1006. A connect attempt that fails outright
leaves the record and resume flag as the previous close left them. Reconnects
are attempted while the retry counter is below max_retries; READY/RESUMED
reset it.

Application DISPATCH frames are handed to the EventDispatcher only while the
session is READY. Frames dropped before READY/RESUMED (events the server
replays during a resume, for instance) are counted and the count is logged
when the session becomes READY again.

Usage:
    session = GatewaySession(token, ["GUILDS", "GUILD_MESSAGES"], dispatcher)
    session.on(SessionEvent.DEAD, lambda data: print(data["error"]))
    await session.start()
    await session.wait_closed()
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from config.settings import DEFAULT_GATEWAY_URL
from exceptions import FrameDecodeError, SessionDeadError
from gateway.dispatcher import EventDispatcher
from gateway.intents import IntentSpec, resolve_intents
from gateway.protocol import (
    ABNORMAL_CLOSURE,
    READY_EVENT,
    RESUMED_EVENT,
    CloseReason,
    GatewayFrame,
    OpCode,
    SessionEvent,
    classify_close,
    make_heartbeat,
    make_identify,
    make_resume,
)
from observability.logger import bind_gateway_session, clear_gateway_session, get_logger

log = get_logger(__name__)

LifecycleListener = Callable[[dict[str, Any]], Union[None, Awaitable[None]]]


# ─────────────────────────────────────────────────────────────────────────────
# State
# ─────────────────────────────────────────────────────────────────────────────

class ConnectionState(str, Enum):
    CONNECTING     = "connecting"
    AWAITING_HELLO = "awaiting_hello"
    IDENTIFYING    = "identifying"
    RESUMING       = "resuming"
    READY          = "ready"
    DISCONNECTED   = "disconnected"
    DEAD           = "dead"


@dataclass(frozen=True)
class SessionRecord:
    """What a RESUME needs. Exists only between READY and a non-resumable close."""
    session_id: str
    sequence: int = 0

    def advance(self, seq: int) -> "SessionRecord":
        """Sequence only moves forward."""
        if seq <= self.sequence:
            return self
        return replace(self, sequence=seq)


@dataclass(frozen=True)
class HeartbeatState:
    interval_ms: int
    last_ack_received: Optional[float] = None   # event-loop clock


# ─────────────────────────────────────────────────────────────────────────────
# Session
# ─────────────────────────────────────────────────────────────────────────────

class GatewaySession:
    """
    One logical bot session across any number of websocket connections.

    `connect` is the websockets connector; tests substitute a fake that
    yields a scripted socket.
    """

    def __init__(
        self,
        token: str,
        intents: IntentSpec,
        dispatcher: EventDispatcher,
        *,
        gateway_url: str = DEFAULT_GATEWAY_URL,
        max_retries: int = 10,
        heartbeat_interval: Optional[int] = None,
        reconnect_delay: float = 0.0,
        proxy: Optional[str] = None,
        connect: Callable[..., Any] = websockets.connect,
    ) -> None:
        self._token = token
        self._intents = resolve_intents(intents)
        self._dispatcher = dispatcher
        self._url = gateway_url
        self._max_retries = max_retries
        self._heartbeat_override = heartbeat_interval
        self._reconnect_delay = reconnect_delay
        self._proxy = proxy
        self._connect = connect

        self.state = ConnectionState.DISCONNECTED
        self.self_id = ""
        self.nickname = ""
        self.status: Any = 0

        self._record: Optional[SessionRecord] = None
        self._resume = False
        self._retry = 0
        self._alive = False
        self._dropped = 0
        self._dropped_total = 0
        self._heartbeat: Optional[HeartbeatState] = None
        self._heartbeat_task: Optional[asyncio.Task] = None

        self._ws: Any = None
        self._task: Optional[asyncio.Task] = None
        self._stopping = False
        self._closed = asyncio.Event()
        self._listeners: dict[SessionEvent, list[LifecycleListener]] = {}

    # ── Read-only views ───────────────────────────────────────────────────────

    @property
    def record(self) -> Optional[SessionRecord]:
        return self._record

    @property
    def heartbeat(self) -> Optional[HeartbeatState]:
        return self._heartbeat

    @property
    def retry_count(self) -> int:
        return self._retry

    @property
    def intents(self) -> int:
        return self._intents

    @property
    def dropped_count(self) -> int:
        """Application dispatches discarded because the session was not READY."""
        return self._dropped_total

    # ── Lifecycle listeners ───────────────────────────────────────────────────

    def on(self, event: SessionEvent, listener: LifecycleListener) -> None:
        self._listeners.setdefault(SessionEvent(event), []).append(listener)

    async def _emit(self, event: SessionEvent, data: Optional[dict[str, Any]] = None) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                result = listener(dict(data or {}))
                if inspect.isawaitable(result):
                    await result
            except Exception:
                log.exception("gateway.listener_failed", lifecycle_event=event.value)

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self.state:
            log.debug("gateway.state", previous=self.state.value, current=state.value)
        self.state = state

    # ── Public control ────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Begin connecting in the background. No-op if already running."""
        if self.state is ConnectionState.DEAD:
            raise SessionDeadError(self._retry)
        if self._task is not None and not self._task.done():
            log.debug("gateway.start.ignored", state=self.state.value)
            return
        self._stopping = False
        self._closed.clear()
        self._task = asyncio.create_task(self._run(), name="gateway_session")

    async def stop(self) -> None:
        """Close the connection and stop reconnecting."""
        self._stopping = True
        self._cancel_heartbeat()
        connected = self._ws is not None
        if connected:
            await self._ws.close()
        task = self._task
        if task is not None and not task.done():
            if not connected:
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self.state is not ConnectionState.DEAD:
            self._set_state(ConnectionState.DISCONNECTED)
        self._closed.set()
        log.info("gateway.stopped")

    async def wait_closed(self) -> None:
        """Return once the session is stopped or DEAD."""
        await self._closed.wait()

    # ── Connection loop ───────────────────────────────────────────────────────

    async def _run(self) -> None:
        try:
            while True:
                close_code = await self._connect_once()
                if self._stopping:
                    break
                if not await self._handle_close(close_code):
                    break
                if self._reconnect_delay > 0:
                    await asyncio.sleep(self._reconnect_delay)
        finally:
            self._closed.set()

    def _connect_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "additional_headers": {"Authorization": f"Bot {self._token}"},
        }
        if self._proxy:
            kwargs["proxy"] = self._proxy
        return kwargs

    async def _connect_once(self) -> Optional[int]:
        """
        Run one websocket connection to completion.

        Returns its close code, or None when no connection was established.
        A connection that ends without a close frame reports 1006.
        """
        self._set_state(ConnectionState.CONNECTING)
        self._alive = False
        connected = False
        close_code: Optional[int] = None
        try:
            async with self._connect(self._url, **self._connect_kwargs()) as ws:
                self._ws = ws
                connected = True
                self._set_state(ConnectionState.AWAITING_HELLO)
                log.info("gateway.connected", url=self._url, resume=self._resume)
                try:
                    async for raw in ws:
                        await self._handle_raw(raw)
                except ConnectionClosed as exc:
                    log.debug("gateway.connection_closed", error=str(exc))
                close_code = getattr(ws, "close_code", None)
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            log.warning(
                "gateway.connect_failed" if not connected else "gateway.connection_lost",
                url=self._url,
                error=str(exc),
                error_type=type(exc).__name__,
            )
        finally:
            self._ws = None
            self._cancel_heartbeat()
            clear_gateway_session()
        if connected and close_code is None:
            close_code = ABNORMAL_CLOSURE
        return close_code

    async def _handle_close(self, code: Optional[int]) -> bool:
        """Classify a close and decide whether to reconnect."""
        self._alive = False
        previous = self._record
        if code is None:
            # Connect attempt failed: the last close's resume decision stands.
            reason = CloseReason(0, self._resume, "Connect attempt failed")
        else:
            reason = classify_close(code)
            if reason.resumable and self._record is not None:
                self._resume = True
            else:
                self._record = None
                self._resume = False
        self._set_state(ConnectionState.DISCONNECTED)

        log.warning(
            "gateway.closed",
            code=reason.code,
            reason=reason.reason,
            resumable=reason.resumable,
            record_kept=self._record is not None,
            retry=self._retry,
            max_retries=self._max_retries,
        )
        await self._emit(
            SessionEvent.DISCONNECTED,
            {
                "code": reason.code,
                "reason": reason.reason,
                "resumable": reason.resumable,
                "record": previous,
            },
        )

        if self._retry < self._max_retries:
            self._retry += 1
            log.info("gateway.reconnecting", attempt=self._retry, resume=self._resume)
            return True

        self._set_state(ConnectionState.DEAD)
        error = SessionDeadError(self._retry)
        log.error("gateway.dead", retries=self._retry, error=str(error))
        await self._emit(SessionEvent.DEAD, {"error": error, "retries": self._retry})
        return False

    # ── Inbound frames ────────────────────────────────────────────────────────

    async def _handle_raw(self, raw: str | bytes) -> None:
        log.debug("gateway.frame.received", raw=raw)
        try:
            frame = GatewayFrame.from_json(raw)
        except FrameDecodeError as exc:
            log.warning("gateway.frame.malformed", error=str(exc))
            return
        await self._handle_frame(frame)

    async def _handle_frame(self, frame: GatewayFrame) -> None:
        op = frame.op
        if op == OpCode.DISPATCH:
            await self._on_dispatch(frame)
        elif op == OpCode.HELLO:
            await self._on_hello(frame.d)
        elif op == OpCode.HEARTBEAT_ACK:
            await self._on_heartbeat_ack()
        elif op == OpCode.HEARTBEAT:
            # Server asked for a beat right now
            await self._send_heartbeat()
        elif op == OpCode.INVALID_SESSION:
            await self._on_invalid_session(bool(frame.d))
        elif op == OpCode.RECONNECT:
            log.info("gateway.reconnect_requested")
            await self._emit(SessionEvent.RECONNECT)
        else:
            log.debug("gateway.frame.unhandled", op=op)

    async def _on_hello(self, data: Any) -> None:
        interval = self._heartbeat_override
        if interval is None and isinstance(data, dict):
            interval = data.get("heartbeat_interval")
        if not isinstance(interval, int) or interval <= 0:
            log.warning("gateway.hello.malformed", data=data)
            return

        self._heartbeat = HeartbeatState(interval_ms=interval)
        log.info("gateway.hello", heartbeat_interval=interval)

        if self._resume and self._record is not None:
            await self._send_resume()
        else:
            await self._send_identify()
        await self._send_heartbeat()

    async def _on_heartbeat_ack(self) -> None:
        if self._heartbeat is not None:
            now = asyncio.get_running_loop().time()
            self._heartbeat = replace(self._heartbeat, last_ack_received=now)
        log.debug("gateway.heartbeat_ack")
        if not self._alive:
            self._alive = True
            await self._emit(SessionEvent.ALIVE)
        self._arm_heartbeat()

    async def _on_invalid_session(self, resumable: bool) -> None:
        log.warning("gateway.invalid_session", resumable=resumable)
        if resumable and self._record is not None:
            await self._send_resume()
        else:
            self._record = None
            self._resume = False
            await self._send_identify()

    async def _on_dispatch(self, frame: GatewayFrame) -> None:
        if frame.s is not None and self._record is not None:
            self._record = self._record.advance(frame.s)

        if frame.t == READY_EVENT:
            await self._on_ready(frame)
            return
        if frame.t == RESUMED_EVENT:
            await self._on_resumed()
            return

        if self.state is not ConnectionState.READY:
            self._dropped += 1
            self._dropped_total += 1
            log.debug("gateway.dispatch.dropped", event_name=frame.t, state=self.state.value)
            return

        try:
            await self._dispatcher.dispatch(frame.t or "", frame.d, event_id=frame.id or "")
        except Exception:
            log.exception("gateway.dispatch_failed", event_name=frame.t)

    async def _on_ready(self, frame: GatewayFrame) -> None:
        data = frame.d if isinstance(frame.d, dict) else {}
        user = data.get("user") if isinstance(data.get("user"), dict) else {}

        self._record = SessionRecord(
            session_id=str(data.get("session_id", "")),
            sequence=frame.s or 0,
        )
        self.self_id = str(user.get("id", ""))
        self.nickname = user.get("username", "")
        self.status = user.get("status", 0)
        self._retry = 0
        self._resume = False
        self._set_state(ConnectionState.READY)
        self._report_dropped()

        bind_gateway_session(self._record.session_id, self.self_id)
        log.info(
            "gateway.ready",
            session_id=self._record.session_id,
            self_id=self.self_id,
            nickname=self.nickname,
        )
        await self._emit(SessionEvent.READY, data)
        self._arm_heartbeat()

    async def _on_resumed(self) -> None:
        self._retry = 0
        self._resume = False
        self._set_state(ConnectionState.READY)
        self._report_dropped()
        if self._record is not None:
            bind_gateway_session(self._record.session_id, self.self_id)
        log.info("gateway.resumed", sequence=self._record.sequence if self._record else None)
        await self._emit(SessionEvent.RESUMED)
        self._arm_heartbeat()

    def _report_dropped(self) -> None:
        if self._dropped:
            log.warning("gateway.dispatch.dropped_total", count=self._dropped, state=self.state.value)
            self._dropped = 0

    # ── Outbound frames ───────────────────────────────────────────────────────

    async def _send(self, frame: GatewayFrame) -> None:
        if self._ws is None:
            log.debug("gateway.send.skipped", op=frame.op, reason="not connected")
            return
        try:
            await self._ws.send(frame.to_json())
        except ConnectionClosed:
            # The reader loop observes the same close and drives reconnect.
            log.debug("gateway.send.closed", op=frame.op)

    async def _send_identify(self) -> None:
        self._set_state(ConnectionState.IDENTIFYING)
        log.info("gateway.identify", intents=self._intents)
        await self._send(make_identify(self._token, self._intents))

    async def _send_resume(self) -> None:
        if self._record is None:
            await self._send_identify()
            return
        self._set_state(ConnectionState.RESUMING)
        log.info(
            "gateway.resume",
            session_id=self._record.session_id,
            sequence=self._record.sequence,
        )
        await self._send(make_resume(self._token, self._record.session_id, self._record.sequence))

    async def _send_heartbeat(self) -> None:
        seq = self._record.sequence if self._record is not None else None
        log.debug("gateway.heartbeat", sequence=seq)
        await self._send(make_heartbeat(seq))

    # ── Heartbeat timer ───────────────────────────────────────────────────────

    def _arm_heartbeat(self) -> None:
        """Replace any pending beat with one due a full interval from now."""
        self._cancel_heartbeat()
        if self._heartbeat is None or self._ws is None:
            return
        delay = self._heartbeat.interval_ms / 1000
        self._heartbeat_task = asyncio.create_task(
            self._beat_after(delay), name="gateway_heartbeat"
        )

    def _cancel_heartbeat(self) -> None:
        if self._heartbeat_task is not None and not self._heartbeat_task.done():
            self._heartbeat_task.cancel()
        self._heartbeat_task = None

    async def _beat_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self._send_heartbeat()
