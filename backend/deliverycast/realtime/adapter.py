import logging
from typing import Any, Callable, List, Optional

from deliverycast.broadcast.state import BroadcastStateContainer
from deliverycast.realtime.events import CLOSING_STATUSES, EVENT_NAMES, REMOVAL_REASONS, CanonicalEvent
from deliverycast.realtime.transport import EventBus, Subscription, dispose_all
from deliverycast.schemas.broadcast import extract_delivery_id

logger = logging.getLogger(__name__)


def _unwrap(payload: Any) -> Any:
    # some emitters nest the delivery under "delivery" or "data"
    if isinstance(payload, dict) and extract_delivery_id(payload) is None:
        for key in ("delivery", "data"):
            inner = payload.get(key)
            if isinstance(inner, dict):
                return inner
    return payload


class RealtimeEventAdapter:
    """
    Turns transport events into state container calls.

    Handlers never raise into the transport: a malformed payload is logged
    and dropped. `should_show` can veto new broadcasts (driver offline).
    """

    def __init__(
        self,
        state: BroadcastStateContainer,
        should_show: Optional[Callable[[], bool]] = None,
        on_driver_status: Optional[Callable[[dict], None]] = None,
    ):
        self.state = state
        self.should_show = should_show
        self.on_driver_status = on_driver_status
        self._subscriptions: List[Subscription] = []

    @property
    def attached(self) -> bool:
        return bool(self._subscriptions)

    def attach(self, transport: EventBus) -> List[Subscription]:
        self.detach()
        for name in EVENT_NAMES:
            self._subscriptions.append(transport.on(name, self._listener(name)))
        logger.info(f"[REALTIME] Listening for {len(self._subscriptions)} broadcast events")
        return list(self._subscriptions)

    def detach(self) -> None:
        dispose_all(self._subscriptions)
        self._subscriptions = []

    def _listener(self, name: str) -> Callable[[Any], None]:
        return lambda payload: self.handle(name, payload)

    def handle(self, name: str, payload: Any) -> None:
        event = EVENT_NAMES.get(name)
        if event is None:
            return
        try:
            if event is CanonicalEvent.NEW_BROADCAST:
                self._new_broadcast(name, payload)
            elif event is CanonicalEvent.STATUS_CHANGED:
                self._status_changed(payload)
            elif event is CanonicalEvent.DRIVER_STATUS:
                if self.on_driver_status and isinstance(payload, dict):
                    self.on_driver_status(payload)
            else:
                self._remove(payload, REMOVAL_REASONS[event])
        except Exception:
            logger.exception(f"[REALTIME] Failed to handle {name}: {payload!r:.120}")

    def _new_broadcast(self, name: str, payload: Any) -> None:
        payload = _unwrap(payload)
        delivery_id = extract_delivery_id(payload)
        if delivery_id is None or not isinstance(payload, dict):
            logger.warning(f"[REALTIME] {name} without delivery id, ignored")
            return
        if self.should_show is not None and not self.should_show():
            logger.info(f"[REALTIME] Driver not active, ignoring broadcast {delivery_id}")
            return
        self.state.add_broadcast(payload)

    def _status_changed(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            return
        if str(payload.get("status", "")).lower() in CLOSING_STATUSES:
            self._remove(payload, REMOVAL_REASONS[CanonicalEvent.STATUS_CHANGED])

    def _remove(self, payload: Any, reason: str) -> None:
        delivery_id = extract_delivery_id(_unwrap(payload))
        if delivery_id is None:
            logger.warning(f"[REALTIME] Removal ({reason}) without delivery id, ignored")
            return
        self.state.remove_broadcast(delivery_id, reason=reason)
