import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from deliverycast.broadcast.acceptance import AcceptanceFlow, AcceptOutcome
from deliverycast.broadcast.countdown import CountdownPresenter
from deliverycast.broadcast.state import ADDED, REMOVED, BroadcastStateContainer
from deliverycast.client.api import ApiClient
from deliverycast.client.errors import ApiError, AuthError
from deliverycast.core.clock import Clock
from deliverycast.core.config import (
    BROADCAST_DEFAULT_DURATION_S,
    BROADCAST_MIN_FETCH_INTERVAL_S,
    BROADCAST_POLL_INTERVAL_S,
    BROADCAST_TICK_S,
)
from deliverycast.notifications import Notifier
from deliverycast.realtime.adapter import RealtimeEventAdapter
from deliverycast.realtime.transport import Subscription, Transport, dispose_all
from deliverycast.schemas.broadcast import Broadcast, BroadcastStatus, Location

logger = logging.getLogger(__name__)


class BroadcastCoordinator:
    """
    Everything a driver screen needs to show and claim delivery broadcasts.

    Wires the state container to the realtime adapter, one countdown per
    visible broadcast, the accept flow and a single polling policy.
    `start()` attaches listeners and starts the tick and poll tasks;
    `stop()` cancels both and detaches every listener. The transport itself
    belongs to the caller.
    """

    def __init__(
        self,
        api: ApiClient,
        transport: Transport,
        notifier: Optional[Notifier] = None,
        clock: Optional[Clock] = None,
        min_fetch_interval_s: float = BROADCAST_MIN_FETCH_INTERVAL_S,
        poll_interval_s: float = BROADCAST_POLL_INTERVAL_S,
        tick_s: float = BROADCAST_TICK_S,
        default_duration_s: int = BROADCAST_DEFAULT_DURATION_S,
        on_auth_error: Optional[Callable[[AuthError], None]] = None,
    ):
        self.api = api
        self.transport = transport
        self.notifier = notifier or Notifier()
        self.clock = clock or Clock()
        self.poll_interval_s = poll_interval_s
        self.tick_s = tick_s
        self.default_duration_s = default_duration_s
        self.on_auth_error = on_auth_error

        self.state = BroadcastStateContainer(api, self.clock, min_fetch_interval_s, default_duration_s)
        self.acceptance = AcceptanceFlow(api, self.state, self.notifier)
        self.adapter = RealtimeEventAdapter(
            self.state,
            should_show=self._driver_may_see_broadcasts,
            on_driver_status=self._apply_driver_status,
        )

        self.location: Optional[Location] = None
        # None means unknown; broadcasts are shown until told otherwise
        self.driver_active: Optional[bool] = None
        self.countdowns: Dict[str, CountdownPresenter] = {}
        self._subscriptions: List[Subscription] = []
        self._tasks: List[asyncio.Task] = []
        self.running = False

    # -----------------------------
    # Views
    # -----------------------------
    @property
    def broadcasts(self) -> List[Broadcast]:
        return self.state.broadcasts

    @property
    def accepted_deliveries(self) -> frozenset:
        return self.state.accepted_deliveries

    def remaining(self, delivery_id: str) -> Optional[int]:
        countdown = self.countdowns.get(delivery_id)
        if countdown is None:
            return None
        if countdown.remaining is None:
            return countdown.tick(self.clock.now_ms())
        return countdown.remaining

    def subscribe(self, listener) -> Subscription:
        return self.state.subscribe(listener)

    # -----------------------------
    # Lifecycle
    # -----------------------------
    async def start(self, location: Optional[Any] = None) -> None:
        if self.running:
            return
        self.running = True
        self._subscriptions.append(self.state.subscribe(self._on_state_change))
        for broadcast in self.state.broadcasts:
            self._start_countdown(broadcast)
        self._subscriptions.extend(self.adapter.attach(self.transport))

        try:
            await self.refresh_driver_status()
            if location is not None:
                await self.update_location(location)
        except BaseException:
            await self.stop()
            raise

        self._tasks = [
            asyncio.create_task(self._tick_loop()),
            asyncio.create_task(self._poll_loop()),
        ]
        logger.info("[BROADCAST] Coordinator started")

    async def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.adapter.detach()
        dispose_all(self._subscriptions)
        self._subscriptions = []
        for countdown in self.countdowns.values():
            countdown.stop()
        self.countdowns.clear()
        logger.info("[BROADCAST] Coordinator stopped")

    # -----------------------------
    # Countdowns and expiry
    # -----------------------------
    def _on_state_change(self, kind: str, broadcast: Broadcast, reason: Optional[str]) -> None:
        if kind == ADDED:
            self._start_countdown(broadcast)
            self.notifier.info(
                f"New delivery available: {broadcast.pickup_location} → {broadcast.delivery_location}",
                broadcast.delivery_id,
            )
        elif kind == REMOVED:
            countdown = self.countdowns.pop(broadcast.delivery_id, None)
            if countdown is not None:
                countdown.stop()
            if reason == "accepted_by_other":
                self.notifier.info("A delivery was accepted by another driver", broadcast.delivery_id)
            elif reason == "expired":
                self.notifier.info("A delivery broadcast has expired", broadcast.delivery_id)

    def _start_countdown(self, broadcast: Broadcast) -> None:
        if broadcast.delivery_id in self.countdowns:
            return
        countdown = CountdownPresenter(
            broadcast.delivery_id,
            broadcast.broadcast_end_time,
            self._on_countdown_expired,
            broadcast.broadcast_duration,
        )
        self.countdowns[broadcast.delivery_id] = countdown
        countdown.tick(self.clock.now_ms())

    def _on_countdown_expired(self, delivery_id: str) -> None:
        self.state.remove_broadcast(delivery_id, reason="expired")

    def tick(self, now_ms: Optional[int] = None) -> None:
        """One 1 Hz step: advance every countdown, then sweep ended broadcasts."""
        now = self.clock.now_ms() if now_ms is None else now_ms
        for countdown in list(self.countdowns.values()):
            countdown.tick(now)
        self.state.sweep_expired(now)

    async def _tick_loop(self) -> None:
        while True:
            try:
                self.tick()
            except Exception:
                logger.exception("[COUNTDOWN] Tick failed")
            await asyncio.sleep(self.tick_s)

    # -----------------------------
    # Snapshots
    # -----------------------------
    async def update_location(self, location: Any) -> Optional[List[Broadcast]]:
        try:
            location = location if isinstance(location, Location) else Location.model_validate(location)
        except ValidationError:
            logger.warning(f"[BROADCAST] Ignoring unusable location: {location!r:.80}")
            return None
        self.location = location
        await self.transport.emit("driver:location", self.location.model_dump())
        return await self._fetch(force=True)

    async def refresh(self) -> Optional[List[Broadcast]]:
        return await self._fetch(force=True)

    async def _fetch(self, force: bool) -> Optional[List[Broadcast]]:
        try:
            return await self.state.fetch_snapshot(self.location, force=force)
        except AuthError as exc:
            self._auth_failed(exc)
            raise
        except ApiError as exc:
            self.notifier.error("Failed to load available deliveries")
            logger.warning(f"[BROADCAST] Snapshot failed: {exc.message}")
            return None

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval_s)
            try:
                await self._fetch(force=False)
            except AuthError:
                logger.error("[BROADCAST] Polling stopped: not authorized")
                return
            except Exception:
                logger.exception("[BROADCAST] Poll failed")

    def _auth_failed(self, exc: AuthError) -> None:
        self.notifier.error(exc.message)
        if self.on_auth_error is not None:
            try:
                self.on_auth_error(exc)
            except Exception:
                logger.exception("[BROADCAST] Auth error handler failed")

    # -----------------------------
    # Accept and verify
    # -----------------------------
    async def accept(self, delivery_id: str) -> AcceptOutcome:
        try:
            return await self.acceptance.accept(delivery_id)
        except AuthError as exc:
            self._auth_failed(exc)
            raise

    async def verify(self, delivery_id: str) -> BroadcastStatus:
        """Ask the server whether a broadcast is still open; drop it locally if not."""
        status = await self.api.get_broadcast_status(delivery_id)
        if not status.can_be_accepted or status.is_expired or status.assigned_to:
            reason = "expired" if status.is_expired else "closed"
            self.state.remove_broadcast(delivery_id, reason=reason)
        return status

    # -----------------------------
    # Driver activity gate
    # -----------------------------
    def _driver_may_see_broadcasts(self) -> bool:
        return self.driver_active is not False

    def _apply_driver_status(self, payload: dict) -> None:
        for key in ("isActive", "isOnline"):
            if isinstance(payload.get(key), bool):
                self.driver_active = payload[key]
                logger.info(f"[BROADCAST] Driver active: {self.driver_active}")
                return

    async def refresh_driver_status(self) -> Optional[bool]:
        try:
            profile = await self.api.get_driver_profile()
        except ApiError as exc:
            logger.warning(f"[BROADCAST] Could not check driver status, showing broadcasts anyway: {exc.message}")
            self.driver_active = None
            return None
        self.driver_active = None
        self._apply_driver_status(profile)
        return self.driver_active
