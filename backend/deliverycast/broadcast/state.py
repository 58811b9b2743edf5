import logging
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from deliverycast.client.api import ACTIVE_BROADCASTS_PATH, ApiClient
from deliverycast.client.dedup import RequestDeduplicator
from deliverycast.core.clock import Clock
from deliverycast.core.config import BROADCAST_DEFAULT_DURATION_S, BROADCAST_MIN_FETCH_INTERVAL_S
from deliverycast.realtime.transport import Subscription
from deliverycast.schemas.broadcast import Broadcast, Location, extract_delivery_id, normalize_broadcast

logger = logging.getLogger(__name__)

# how long a removed id stays blocked against stale re-adds
TOMBSTONE_TTL_MS = 60 * 60 * 1000

ADDED = "added"
REMOVED = "removed"

Listener = Callable[[str, Broadcast, Optional[str]], None]


def _coords(location: Any) -> Optional[Tuple[float, float]]:
    if isinstance(location, Location):
        return location.lat, location.lng
    if isinstance(location, dict):
        lat, lng = location.get("lat"), location.get("lng")
        if isinstance(lat, (int, float)) and isinstance(lng, (int, float)):
            return float(lat), float(lng)
    return None


class BroadcastStateContainer:
    """
    The broadcasts currently visible to this driver.

    All mutation goes through add_broadcast / remove_broadcast /
    sweep_expired / fetch_snapshot. Removal leaves a tombstone so a
    delayed add for the same delivery cannot bring it back; only a payload
    stamped later than the removal (a fresh broadcast lifecycle) is
    re-admitted. Accepted deliveries are never re-admitted. Entries a
    snapshot no longer lists are dropped without a tombstone.
    """

    def __init__(
        self,
        api: ApiClient,
        clock: Optional[Clock] = None,
        min_fetch_interval_s: float = BROADCAST_MIN_FETCH_INTERVAL_S,
        default_duration_s: int = BROADCAST_DEFAULT_DURATION_S,
    ):
        self.api = api
        self.clock = clock or Clock()
        self.min_fetch_interval_ms = int(min_fetch_interval_s * 1000)
        self.default_duration_s = default_duration_s

        self._broadcasts: Dict[str, Broadcast] = {}
        self._seq: Dict[str, int] = {}
        self._counter = 0
        # delivery_id -> (lifecycle marker ms, removed at ms)
        self._removed: Dict[str, Tuple[int, int]] = {}
        self._accepted: Set[str] = set()
        self._listeners: List[Listener] = []
        self._dedup = RequestDeduplicator()

        self.last_fetch_ms: Optional[int] = None
        self.loading = False

    # -----------------------------
    # Read access
    # -----------------------------
    @property
    def broadcasts(self) -> List[Broadcast]:
        return list(self._broadcasts.values())

    @property
    def accepted_deliveries(self) -> frozenset:
        return frozenset(self._accepted)

    def get(self, delivery_id: str) -> Optional[Broadcast]:
        return self._broadcasts.get(delivery_id)

    def __contains__(self, delivery_id: str) -> bool:
        return delivery_id in self._broadcasts

    def __len__(self) -> int:
        return len(self._broadcasts)

    def subscribe(self, listener: Listener) -> Subscription:
        self._listeners.append(listener)
        return Subscription(lambda: self._listeners.remove(listener) if listener in self._listeners else None)

    def _emit(self, kind: str, broadcast: Broadcast, reason: Optional[str] = None) -> None:
        for listener in list(self._listeners):
            try:
                listener(kind, broadcast, reason)
            except Exception:
                logger.exception(f"[BROADCAST] State listener failed on {kind} {broadcast.delivery_id}")

    # -----------------------------
    # Mutations
    # -----------------------------
    def add_broadcast(self, data: Any) -> Optional[Broadcast]:
        now = self.clock.now_ms()
        broadcast = normalize_broadcast(data, now, self.default_duration_s)
        if broadcast is None:
            logger.warning(f"[BROADCAST] Ignoring broadcast without delivery id: {data!r:.120}")
            return None

        delivery_id = broadcast.delivery_id
        if delivery_id in self._broadcasts:
            logger.debug(f"[BROADCAST] Already active: {delivery_id}")
            return None
        if delivery_id in self._accepted:
            logger.debug(f"[BROADCAST] Already accepted: {delivery_id}")
            return None

        tombstone = self._removed.get(delivery_id)
        if tombstone is not None:
            stamp = broadcast.lifecycle_stamp
            if stamp is None or stamp <= tombstone[0]:
                logger.info(f"[BROADCAST] Stale broadcast for removed delivery {delivery_id}, ignored")
                return None
            logger.info(f"[BROADCAST] Delivery {delivery_id} re-broadcast with a fresh lifecycle")
            del self._removed[delivery_id]

        if broadcast.is_expired(now):
            logger.debug(f"[BROADCAST] Broadcast {delivery_id} already ended, not shown")
            return None

        self._counter += 1
        self._seq[delivery_id] = self._counter
        self._broadcasts[delivery_id] = broadcast
        logger.info(
            f"[BROADCAST] Added {delivery_id} ({broadcast.delivery_code}) | "
            f"fee={broadcast.fee} | {broadcast.remaining_s(now)}s left"
        )
        self._emit(ADDED, broadcast)
        return broadcast

    def remove_broadcast(self, delivery_id: str, reason: str = "closed") -> Optional[Broadcast]:
        """Remove a broadcast. Absent ids still get a tombstone; never raises."""
        now = self.clock.now_ms()
        broadcast = self._broadcasts.get(delivery_id)

        marker = now
        if broadcast is not None and broadcast.lifecycle_stamp is not None:
            marker = broadcast.lifecycle_stamp
        previous = self._removed.get(delivery_id)
        if previous is None or marker > previous[0]:
            self._removed[delivery_id] = (marker, now)
        return self._discard(delivery_id, reason)

    def _discard(self, delivery_id: str, reason: str) -> Optional[Broadcast]:
        # drops without a tombstone; a later listing may bring it back
        broadcast = self._broadcasts.pop(delivery_id, None)
        self._seq.pop(delivery_id, None)
        if broadcast is None:
            return None
        logger.info(f"[BROADCAST] Removed {delivery_id} ({reason})")
        self._emit(REMOVED, broadcast, reason)
        return broadcast

    def mark_accepted(self, delivery_id: str) -> None:
        self._accepted.add(delivery_id)
        self.remove_broadcast(delivery_id, reason="accepted")

    def sweep_expired(self, now_ms: Optional[int] = None) -> List[Broadcast]:
        now = self.clock.now_ms() if now_ms is None else now_ms
        expired = [b for b in self._broadcasts.values() if b.broadcast_end_time <= now]
        removed = []
        for broadcast in expired:
            if self.remove_broadcast(broadcast.delivery_id, reason="expired") is not None:
                removed.append(broadcast)

        stale = [did for did, (_, at) in self._removed.items() if now - at > TOMBSTONE_TTL_MS]
        for did in stale:
            del self._removed[did]
        return removed

    def reset(self) -> None:
        self._broadcasts.clear()
        self._seq.clear()
        self._removed.clear()
        self._accepted.clear()
        self.last_fetch_ms = None

    # -----------------------------
    # Snapshot
    # -----------------------------
    async def fetch_snapshot(self, location: Any, force: bool = False) -> Optional[List[Broadcast]]:
        """
        Load active broadcasts near `location` and merge them into state.

        Returns None when skipped (no location, or within the minimum interval
        and not forced). Concurrent identical calls share one request. Errors
        propagate with state left untouched.
        """
        coords = _coords(location)
        if coords is None:
            logger.debug("[BROADCAST] No location, snapshot skipped")
            return None

        now = self.clock.now_ms()
        if not force and self.last_fetch_ms is not None:
            since = now - self.last_fetch_ms
            if since < self.min_fetch_interval_ms:
                logger.debug(f"[BROADCAST] Skipping fetch, last fetch was {since // 1000}s ago")
                return None

        lat, lng = coords
        key = f"{ACTIVE_BROADCASTS_PATH}?lat={lat}&lng={lng}"
        return await self._dedup.execute(key, lambda: self._fetch(lat, lng))

    async def _fetch(self, lat: float, lng: float) -> List[Broadcast]:
        seq_at_request = self._counter
        self.loading = True
        try:
            payloads = await self.api.get_active_broadcasts(lat, lng)
        except Exception as exc:
            logger.warning(f"[BROADCAST] Snapshot fetch failed, keeping current state: {exc}")
            raise
        finally:
            self.loading = False

        self._merge(payloads, seq_at_request)
        self.last_fetch_ms = self.clock.now_ms()
        return self.broadcasts

    def _merge(self, payloads: List[Any], seq_at_request: int) -> None:
        incoming = {extract_delivery_id(p) for p in payloads}
        # only entries that predate the request can be judged by its answer
        for delivery_id, seq in list(self._seq.items()):
            if seq <= seq_at_request and delivery_id not in incoming:
                self._discard(delivery_id, reason="unlisted")
        for payload in payloads:
            try:
                self.add_broadcast(payload)
            except Exception:
                logger.exception(f"[BROADCAST] Skipping unusable snapshot entry: {payload!r:.120}")
        logger.debug(f"[BROADCAST] Snapshot merged: {len(payloads)} received, {len(self)} visible")
