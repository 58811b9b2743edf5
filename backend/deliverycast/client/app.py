import logging
from typing import Any, Optional

from deliverycast.auth.session import SessionStore
from deliverycast.broadcast.coordinator import BroadcastCoordinator
from deliverycast.client.api import ApiClient
from deliverycast.client.errors import AuthError
from deliverycast.core.clock import Clock
from deliverycast.core.config import API_URL, SOCKET_URL
from deliverycast.notifications import Notifier
from deliverycast.realtime.transport import Transport, WebSocketTransport

logger = logging.getLogger(__name__)


class DriverApp:
    """
    Composition root for a signed-in driver.

    Owns the session, REST client, realtime transport, notifier and
    broadcast coordinator. `start()` runs at session start, `logout()`
    tears everything down in reverse order.
    """

    def __init__(
        self,
        session: Optional[SessionStore] = None,
        api: Optional[ApiClient] = None,
        transport: Optional[Transport] = None,
        notifier: Optional[Notifier] = None,
        clock: Optional[Clock] = None,
        api_url: str = API_URL,
        socket_url: str = SOCKET_URL,
        **coordinator_options,
    ):
        self.session = session or SessionStore()
        self.api = api or ApiClient(self.session, base_url=api_url)
        self.notifier = notifier or Notifier()
        self.socket_url = socket_url
        self.transport = transport
        self.clock = clock or Clock()
        self.coordinator_options = coordinator_options
        self.coordinator: Optional[BroadcastCoordinator] = None

    async def login(self, username: str, password: str) -> dict:
        return await self.api.login(username, password)

    async def start(self, location: Optional[Any] = None) -> BroadcastCoordinator:
        if not self.session.is_authenticated:
            raise AuthError("Not signed in")
        if self.session.is_token_expired(self.clock.now_ms()):
            self.session.clear()
            raise AuthError("Session expired. Please sign in again.")

        if self.transport is None:
            self.transport = WebSocketTransport(
                self.socket_url,
                token=self.session.token,
                user_id=self.session.user_id,
                user_type=self.session.role,
            )
        await self.transport.connect()

        self.coordinator = BroadcastCoordinator(
            self.api,
            self.transport,
            notifier=self.notifier,
            clock=self.clock,
            on_auth_error=self._on_auth_error,
            **self.coordinator_options,
        )
        await self.coordinator.start(location)
        logger.info(f"[SESSION] Driver {self.session.user_id} online")
        return self.coordinator

    def _on_auth_error(self, exc: AuthError) -> None:
        logger.warning(f"[SESSION] Authorization failed ({exc.status}), re-authentication required")

    async def logout(self) -> None:
        if self.coordinator is not None:
            await self.coordinator.stop()
            self.coordinator.state.reset()
            self.coordinator = None
        if self.transport is not None:
            await self.transport.close()
            self.transport = None
        await self.api.aclose()
        self.session.clear()
