from enum import Enum
from typing import Dict


class CanonicalEvent(str, Enum):
    NEW_BROADCAST = "new_broadcast"
    ACCEPTED_BY_OTHER = "accepted_by_other"
    EXPIRED = "expired"
    CLOSED = "closed"
    STATUS_CHANGED = "status_changed"
    DRIVER_STATUS = "driver_status"


# Every wire spelling the backend has used, mapped to what it means.
EVENT_NAMES: Dict[str, CanonicalEvent] = {
    "delivery-broadcast": CanonicalEvent.NEW_BROADCAST,
    "new-delivery": CanonicalEvent.NEW_BROADCAST,
    "delivery-notification": CanonicalEvent.NEW_BROADCAST,
    "delivery-created": CanonicalEvent.NEW_BROADCAST,
    "broadcast-delivery": CanonicalEvent.NEW_BROADCAST,
    "test-delivery-broadcast": CanonicalEvent.NEW_BROADCAST,
    "delivery-accepted-by-other": CanonicalEvent.ACCEPTED_BY_OTHER,
    "broadcast-expired": CanonicalEvent.EXPIRED,
    "broadcast-removed": CanonicalEvent.CLOSED,
    "broadcast-closed": CanonicalEvent.CLOSED,
    "delivery-status-changed": CanonicalEvent.STATUS_CHANGED,
    "driver-status-updated": CanonicalEvent.DRIVER_STATUS,
}

# delivery statuses that end a broadcast
CLOSING_STATUSES = frozenset({"assigned", "completed", "cancelled"})

# removal reasons reported to state listeners
REMOVAL_REASONS = {
    CanonicalEvent.ACCEPTED_BY_OTHER: "accepted_by_other",
    CanonicalEvent.EXPIRED: "expired",
    CanonicalEvent.CLOSED: "closed",
    CanonicalEvent.STATUS_CHANGED: "closed",
}
