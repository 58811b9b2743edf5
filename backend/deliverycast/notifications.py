import logging
from dataclasses import dataclass, field
from typing import Callable, List, Literal, Optional

from deliverycast.realtime.transport import Subscription

logger = logging.getLogger(__name__)

Level = Literal["success", "info", "error"]

_LOG_LEVELS = {"success": logging.INFO, "info": logging.INFO, "error": logging.WARNING}


@dataclass
class Notice:
    level: Level
    message: str
    delivery_id: Optional[str] = None


@dataclass
class Notifier:
    """The one user-visible message channel (the dashboard's toast)."""

    history_size: int = 50
    history: List[Notice] = field(default_factory=list)
    _listeners: List[Callable[[Notice], None]] = field(default_factory=list)

    def subscribe(self, listener: Callable[[Notice], None]) -> Subscription:
        self._listeners.append(listener)
        return Subscription(lambda: self._listeners.remove(listener) if listener in self._listeners else None)

    def notify(self, level: Level, message: str, delivery_id: Optional[str] = None) -> Notice:
        notice = Notice(level, message, delivery_id)
        self.history.append(notice)
        del self.history[:-self.history_size]
        logger.log(_LOG_LEVELS[level], f"[NOTIFY] {level}: {message}")
        for listener in list(self._listeners):
            try:
                listener(notice)
            except Exception:
                logger.exception("[NOTIFY] Listener failed")
        return notice

    def success(self, message: str, delivery_id: Optional[str] = None) -> Notice:
        return self.notify("success", message, delivery_id)

    def info(self, message: str, delivery_id: Optional[str] = None) -> Notice:
        return self.notify("info", message, delivery_id)

    def error(self, message: str, delivery_id: Optional[str] = None) -> Notice:
        return self.notify("error", message, delivery_id)
