import logging
from dataclasses import dataclass
from typing import Literal, Optional, Set

from deliverycast.broadcast.state import BroadcastStateContainer
from deliverycast.client.api import ApiClient
from deliverycast.client.errors import ApiError, AuthError, ConflictError, NetworkError
from deliverycast.notifications import Notifier

logger = logging.getLogger(__name__)

OutcomeStatus = Literal["accepted", "failed", "unavailable", "in_flight"]

NO_LONGER_AVAILABLE = "This delivery is no longer available"


@dataclass
class AcceptOutcome:
    delivery_id: str
    status: OutcomeStatus
    message: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.status == "accepted"


class AcceptanceFlow:
    """
    Claims a broadcast for this driver, at most one request per delivery.

    Success is only ever taken from the server's answer. A failed accept
    leaves the broadcast visible so the driver can retry; losing a race is
    resolved by the server's removal push, not by this flow.
    """

    def __init__(self, api: ApiClient, state: BroadcastStateContainer, notifier: Notifier):
        self.api = api
        self.state = state
        self.notifier = notifier
        self.in_flight: Set[str] = set()

    def is_accepting(self, delivery_id: str) -> bool:
        return delivery_id in self.in_flight

    async def accept(self, delivery_id: str) -> AcceptOutcome:
        if delivery_id in self.in_flight:
            logger.debug(f"[ACCEPT] Accept already in flight for {delivery_id}, ignored")
            return AcceptOutcome(delivery_id, "in_flight")

        broadcast = self.state.get(delivery_id)
        if broadcast is None or broadcast.is_expired(self.state.clock.now_ms()):
            self.notifier.error(NO_LONGER_AVAILABLE, delivery_id)
            return AcceptOutcome(delivery_id, "unavailable", NO_LONGER_AVAILABLE)

        self.in_flight.add(delivery_id)
        try:
            logger.info(f"[ACCEPT] Accepting {delivery_id}")
            result = await self.api.accept_delivery(delivery_id)
        except AuthError:
            logger.warning(f"[ACCEPT] Not authorized to accept {delivery_id}")
            raise
        except ConflictError as exc:
            logger.info(f"[ACCEPT] {delivery_id} rejected by server: {exc.message}")
            self.notifier.error(NO_LONGER_AVAILABLE, delivery_id)
            return AcceptOutcome(delivery_id, "failed", exc.message)
        except NetworkError as exc:
            logger.warning(f"[ACCEPT] Network failure accepting {delivery_id}: {exc.message}")
            self.notifier.error("Failed to accept delivery. Please try again.", delivery_id)
            return AcceptOutcome(delivery_id, "failed", exc.message)
        except ApiError as exc:
            logger.warning(f"[ACCEPT] Accept {delivery_id} failed: {exc.message}")
            self.notifier.error(exc.message or "Failed to accept delivery", delivery_id)
            return AcceptOutcome(delivery_id, "failed", exc.message)
        finally:
            self.in_flight.discard(delivery_id)

        if not result.success:
            message = result.message or "Failed to accept delivery"
            logger.info(f"[ACCEPT] Server declined {delivery_id}: {message}")
            self.notifier.error(message, delivery_id)
            return AcceptOutcome(delivery_id, "failed", message)

        self.state.mark_accepted(delivery_id)
        self.notifier.success("Delivery accepted successfully!", delivery_id)
        logger.info(f"[ACCEPT] Delivery {delivery_id} accepted")
        return AcceptOutcome(delivery_id, "accepted", result.message)
