import logging
import math
from typing import Callable, Optional

from deliverycast.core.config import BROADCAST_DEFAULT_DURATION_S

logger = logging.getLogger(__name__)


class CountdownPresenter:
    """
    Seconds left on one broadcast, recomputed on every tick.

    `on_expire(delivery_id)` fires exactly once, on the first tick where the
    remaining time reaches 0; the presenter is stopped afterwards. If
    `end_ms` is missing the window is `duration_s` from the first tick.
    """

    def __init__(
        self,
        delivery_id: str,
        end_ms: Optional[int],
        on_expire: Callable[[str], None],
        duration_s: Optional[int] = BROADCAST_DEFAULT_DURATION_S,
    ):
        self.delivery_id = delivery_id
        self.end_ms = end_ms if isinstance(end_ms, int) and not isinstance(end_ms, bool) else None
        self.duration_s = duration_s if isinstance(duration_s, int) and duration_s > 0 else BROADCAST_DEFAULT_DURATION_S
        self.on_expire = on_expire
        self.remaining: Optional[int] = None
        self.expired = False
        self.stopped = False

    def tick(self, now_ms: int) -> int:
        if self.stopped:
            return self.remaining or 0
        if self.end_ms is None:
            self.end_ms = now_ms + self.duration_s * 1000
        self.remaining = max(0, math.floor((self.end_ms - now_ms) / 1000))
        if self.remaining == 0 and not self.expired:
            self.expired = True
            self.stop()
            logger.info(f"[COUNTDOWN] Broadcast {self.delivery_id} expired")
            try:
                self.on_expire(self.delivery_id)
            except Exception:
                logger.exception(f"[COUNTDOWN] Expiry handler failed for {self.delivery_id}")
        return self.remaining

    def stop(self) -> None:
        self.stopped = True

    @property
    def label(self) -> str:
        seconds = self.remaining or 0
        return f"{seconds // 60}:{seconds % 60:02d}"
