"""Realtime channel: one websocket, event dispatch and reconnection with backoff."""
import asyncio
import inspect
from collections import deque
from contextlib import suppress
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Union

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from .config import OUTBOX_LIMIT, RECONNECT_BASE_DELAY, RECONNECT_MAX_ATTEMPTS, RECONNECT_MAX_DELAY, WS_URL
from .events import QUEUEABLE_EVENTS, ChatEvent, RealtimeEvent, UserOnlineEvent, parse_event, serialize_event
from .logging_config import get_logger

logger = get_logger("realtime")

EventHandler = Callable[[RealtimeEvent], Union[None, Awaitable[None]]]
StateListener = Callable[["ConnectionState"], None]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class RealtimeChannel:
    """Keeps a single duplex connection alive for the lifetime of the process.

    ``Disconnected -> Connecting -> Connected -> Reconnecting -> Connecting ...``
    Each reconnect waits ``reconnect_delay`` and doubles it up to
    ``max_delay``; a successful open resets delay and attempt count. After
    ``max_attempts`` failed reconnects the channel settles in ``FAILED`` until
    ``connect()`` is called again.
    """

    def __init__(
        self,
        url: str = WS_URL,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
        connect: Optional[Callable[..., Awaitable[Any]]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        base_delay: float = RECONNECT_BASE_DELAY,
        max_delay: float = RECONNECT_MAX_DELAY,
        max_attempts: int = RECONNECT_MAX_ATTEMPTS,
        outbox_limit: int = OUTBOX_LIMIT,
    ):
        self.url = url
        self.token_provider = token_provider
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
        self.reconnect_delay = base_delay
        self._connect = connect or websockets.connect
        self._sleep = sleep
        self._ws: Any = None
        self._task: Optional[asyncio.Task] = None
        self._closing = False
        self._listeners: Dict[ChatEvent, List[EventHandler]] = {}
        self._state_listeners: List[StateListener] = []
        self._outbox: Deque[RealtimeEvent] = deque(maxlen=outbox_limit)

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def pending(self) -> int:
        return len(self._outbox)

    # --- lifecycle ---

    async def connect(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._closing = False
        self.reconnect_attempts = 0
        self.reconnect_delay = self.base_delay
        self._task = asyncio.create_task(self._run())

    async def close(self) -> None:
        self._closing = True
        ws = self._ws
        if ws is not None:
            with suppress(ConnectionClosed, OSError):
                await ws.close()
        if self._task is not None:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        self._ws = None
        self._set_state(ConnectionState.DISCONNECTED)

    async def wait_closed(self) -> None:
        """Wait until the run loop ends on its own (``FAILED``) or is closed."""
        if self._task is not None:
            with suppress(asyncio.CancelledError):
                await self._task

    async def _run(self) -> None:
        while True:
            self._set_state(ConnectionState.CONNECTING)
            try:
                ws = await self._connect(self.url, **self._connect_kwargs())
            except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
                logger.warning("REALTIME_CONNECT_FAIL url=%s error=%s", self.url, exc)
            else:
                await self._serve(ws)

            if self._closing:
                return
            if self.reconnect_attempts >= self.max_attempts:
                logger.error("REALTIME_GAVE_UP attempts=%s", self.reconnect_attempts)
                self._set_state(ConnectionState.FAILED)
                return
            self.reconnect_attempts += 1
            delay = self.reconnect_delay
            self.reconnect_delay = min(self.reconnect_delay * 2, self.max_delay)
            self._set_state(ConnectionState.RECONNECTING)
            logger.info(
                "REALTIME_RECONNECT attempt=%s/%s delay=%.1f", self.reconnect_attempts, self.max_attempts, delay
            )
            await self._sleep(delay)

    async def _serve(self, ws: Any) -> None:
        self._ws = ws
        self.reconnect_attempts = 0
        self.reconnect_delay = self.base_delay
        self._set_state(ConnectionState.CONNECTED)
        logger.info("REALTIME_CONNECTED url=%s", self.url)
        try:
            await ws.send(serialize_event(UserOnlineEvent()))
            await self._flush_outbox()
            async for raw in ws:
                await self._dispatch_raw(raw)
        except ConnectionClosed as exc:
            logger.info("REALTIME_CLOSED code=%s", getattr(exc.rcvd, "code", None))
        finally:
            self._ws = None
            if self.state is ConnectionState.CONNECTED:
                self._set_state(ConnectionState.DISCONNECTED)

    def _connect_kwargs(self) -> Dict[str, Any]:
        token = self.token_provider() if self.token_provider else None
        if not token:
            return {}
        return {"additional_headers": {"Authorization": f"Bearer {token}"}}

    # --- outbound ---

    async def send(self, event: RealtimeEvent) -> bool:
        """Deliver now if open; otherwise queue message events for the next open.

        Returns True only when the frame was written to an open connection.
        """
        ws = self._ws
        if ws is not None and self.is_connected:
            try:
                await ws.send(serialize_event(event))
                return True
            except ConnectionClosed:
                logger.info("REALTIME_SEND_ON_CLOSED event=%s", event.event)
        if event.kind in QUEUEABLE_EVENTS:
            if len(self._outbox) == self._outbox.maxlen:
                logger.warning("REALTIME_OUTBOX_FULL dropped=%s", self._outbox[0].event)
            self._outbox.append(event)
        return False

    async def _flush_outbox(self) -> None:
        while self._outbox and self._ws is not None:
            event = self._outbox[0]
            await self._ws.send(serialize_event(event))
            self._outbox.popleft()
        if self._outbox:
            logger.info("REALTIME_OUTBOX_PENDING count=%s", len(self._outbox))

    # --- inbound ---

    def add_event_listener(self, kind: Union[ChatEvent, str], handler: EventHandler) -> None:
        self._listeners.setdefault(ChatEvent(kind), []).append(handler)

    def remove_event_listener(self, kind: Union[ChatEvent, str], handler: EventHandler) -> None:
        handlers = self._listeners.get(ChatEvent(kind), [])
        if handler in handlers:
            handlers.remove(handler)

    def add_state_listener(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def remove_state_listener(self, listener: StateListener) -> None:
        if listener in self._state_listeners:
            self._state_listeners.remove(listener)

    async def _dispatch_raw(self, raw: Union[str, bytes]) -> None:
        try:
            event = parse_event(raw)
        except ValidationError as exc:
            logger.warning("REALTIME_MALFORMED_ENVELOPE errors=%s", exc.error_count())
            return
        await self.dispatch(event)

    async def dispatch(self, event: RealtimeEvent) -> None:
        for handler in list(self._listeners.get(event.kind, [])):
            name = getattr(handler, "__name__", repr(handler))
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # noqa: BLE001
                logger.exception("REALTIME_HANDLER_ERROR event=%s handler=%s", event.event, name)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        self.state = state
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:  # noqa: BLE001
                logger.exception("REALTIME_STATE_LISTENER_ERROR state=%s", state.value)
