import asyncio
import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import urlencode

import websockets

from deliverycast.core.config import (
    SOCKET_MAX_RECONNECT_ATTEMPTS,
    SOCKET_RECONNECT_DELAY_MAX_S,
    SOCKET_RECONNECT_DELAY_S,
    SOCKET_URL,
)

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]

# lifecycle events dispatched by the transport itself
CONNECT = "connect"
DISCONNECT = "disconnect"


class Subscription:
    """Disposer returned by `on()`. Disposing twice is a no-op."""

    def __init__(self, dispose_fn: Callable[[], None]):
        self._dispose_fn = dispose_fn
        self.active = True

    def dispose(self) -> None:
        if not self.active:
            return
        self.active = False
        self._dispose_fn()


def dispose_all(subscriptions: Iterable[Subscription]) -> None:
    for sub in subscriptions:
        sub.dispose()


class EventBus:
    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = {}

    def on(self, event: str, handler: Handler) -> Subscription:
        self._handlers.setdefault(event, []).append(handler)
        return Subscription(lambda: self.off(event, handler))

    def off(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                self._handlers.pop(event, None)

    def listener_count(self, event: Optional[str] = None) -> int:
        if event is not None:
            return len(self._handlers.get(event, []))
        return sum(len(h) for h in self._handlers.values())

    def dispatch(self, event: str, data: Any = None) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(data)
            except Exception:
                logger.exception(f"[REALTIME] Handler for {event} failed")


class Transport(EventBus):
    """Pub/sub channel with named events: connect, on, off, emit, close."""

    connected = False

    async def connect(self) -> None:
        raise NotImplementedError

    async def emit(self, event: str, data: Any = None) -> bool:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError


class WebSocketTransport(Transport):
    """
    JSON-over-websocket transport. Frames are {"event": name, "data": payload}.

    Sends `authenticate` with the user id and type after every (re)connect and
    gives up after `max_reconnect_attempts` consecutive failures.
    """

    def __init__(
        self,
        url: str = SOCKET_URL,
        token: Optional[str] = None,
        user_id: Optional[str] = None,
        user_type: Optional[str] = None,
        max_reconnect_attempts: int = SOCKET_MAX_RECONNECT_ATTEMPTS,
        reconnect_delay: float = SOCKET_RECONNECT_DELAY_S,
        reconnect_delay_max: float = SOCKET_RECONNECT_DELAY_MAX_S,
    ):
        super().__init__()
        self.url = url
        self.token = token
        self.user_id = user_id
        self.user_type = user_type
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.reconnect_delay_max = reconnect_delay_max
        self.reconnect_attempts = 0
        self._ws = None
        self._task: Optional[asyncio.Task] = None
        self._closing = False

    def _endpoint(self) -> str:
        if not self.token:
            return self.url
        sep = "&" if "?" in self.url else "?"
        return f"{self.url}{sep}{urlencode({'token': self.token})}"

    async def connect(self) -> None:
        if self._task is not None and not self._task.done():
            logger.debug("[REALTIME] Already connecting, skipping")
            return
        self._closing = False
        self.reconnect_attempts = 0
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while not self._closing:
            try:
                async with websockets.connect(self._endpoint()) as ws:
                    self._ws = ws
                    self.connected = True
                    self.reconnect_attempts = 0
                    logger.info(f"[REALTIME] Connected to {self.url}")
                    self.dispatch(CONNECT)
                    await self.emit("authenticate", {"userId": self.user_id, "userType": self.user_type})
                    async for raw in ws:
                        self._handle_frame(raw)
            except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as exc:
                logger.warning(f"[REALTIME] Connection error: {exc}")
            finally:
                was_connected = self.connected
                self._ws = None
                self.connected = False
                if was_connected:
                    self.dispatch(DISCONNECT)

            if self._closing:
                return
            self.reconnect_attempts += 1
            if self.reconnect_attempts > self.max_reconnect_attempts:
                logger.error("[REALTIME] Max reconnection attempts reached, giving up")
                return
            delay = min(self.reconnect_delay_max, self.reconnect_delay * 2 ** (self.reconnect_attempts - 1))
            logger.info(f"[REALTIME] Reconnecting in {delay:.1f}s (attempt {self.reconnect_attempts})")
            await asyncio.sleep(delay)

    def _handle_frame(self, raw: Any) -> None:
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"[REALTIME] Dropping non-JSON frame: {raw!r:.80}")
            return
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            logger.warning(f"[REALTIME] Dropping frame without event name: {frame!r:.80}")
            return
        self.dispatch(frame["event"], frame.get("data"))

    async def emit(self, event: str, data: Any = None) -> bool:
        if self._ws is None or not self.connected:
            logger.warning(f"[REALTIME] Not connected, cannot emit {event}")
            return False
        try:
            await self._ws.send(json.dumps({"event": event, "data": data}))
        except websockets.exceptions.WebSocketException as exc:
            logger.warning(f"[REALTIME] Emit {event} failed: {exc}")
            return False
        return True

    async def close(self) -> None:
        self._closing = True
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.connected = False
        logger.info("[REALTIME] Transport closed")
