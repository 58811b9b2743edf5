import logging
from typing import Any, List, Optional
from urllib.parse import quote

import httpx

from deliverycast.auth.session import SessionStore
from deliverycast.client.errors import ApiError, AuthError, ConflictError, NetworkError, RateLimitedError
from deliverycast.core.config import API_TIMEOUT_S, API_URL
from deliverycast.schemas.broadcast import AcceptResult, BroadcastStatus

logger = logging.getLogger(__name__)

ACTIVE_BROADCASTS_PATH = "/delivery/broadcast/active"


def _error_message(body: Any, default: str) -> str:
    if isinstance(body, dict):
        for key in ("error", "message", "detail"):
            if isinstance(body.get(key), str) and body[key]:
                return body[key]
    return default


class ApiClient:
    """
    REST client for the delivery backend.

    Every request carries `Authorization: Bearer <token>` from the session
    and is bounded by `timeout` seconds. Non-2xx answers and transport
    failures are raised as the errors in `deliverycast.client.errors`.
    """

    def __init__(
        self,
        session: SessionStore,
        base_url: str = API_URL,
        timeout: float = API_TIMEOUT_S,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.session = session
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout),
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(self, method: str, path: str, **kwargs) -> Any:
        headers = kwargs.pop("headers", {})
        if self.session.token:
            headers["Authorization"] = f"Bearer {self.session.token}"

        try:
            resp = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning(f"[API] {method} {path} timed out")
            raise NetworkError("Request timed out. Please check your connection.") from exc
        except httpx.TransportError as exc:
            logger.warning(f"[API] {method} {path} failed: {exc}")
            raise NetworkError("Network error. Please check your connection.") from exc

        try:
            body = resp.json()
        except ValueError:
            body = None

        status = resp.status_code
        if status == 401:
            logger.error(f"[API] 401 Unauthorized on {path}, clearing session")
            self.session.clear()
            raise AuthError(_error_message(body, "Session expired. Please sign in again."), status)
        if status == 403:
            raise AuthError(_error_message(body, "You do not have permission to perform this action"), status)
        if status == 409:
            raise ConflictError(_error_message(body, "Delivery is no longer available"), status)
        if status == 429:
            raise RateLimitedError(_error_message(body, "Too many requests. Please try again later."), status)
        if status >= 400:
            raise ApiError(_error_message(body, f"Request failed with status {status}"), status)
        if body is None:
            raise ApiError(f"Unreadable response from {path}", status)

        logger.debug(f"[API] {method} {path} -> {status}")
        return body

    # -----------------------------
    # Delivery broadcast endpoints
    # -----------------------------
    async def get_active_broadcasts(self, lat: float, lng: float) -> List[dict]:
        body = await self.request("GET", ACTIVE_BROADCASTS_PATH, params={"lat": lat, "lng": lng})
        if not isinstance(body, dict) or not body.get("success"):
            raise ApiError(_error_message(body, "Failed to load available deliveries"))
        data = body.get("data")
        if isinstance(data, dict):
            data = data.get("broadcasts")
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict)]

    async def accept_delivery(self, delivery_id: str) -> AcceptResult:
        body = await self.request("POST", f"/delivery/{quote(delivery_id, safe='')}/accept", json={})
        if not isinstance(body, dict):
            return AcceptResult(success=False, message="Failed to accept delivery")
        return AcceptResult(
            success=body.get("success") is True,
            message=_error_message(body, "") or None,
        )

    async def get_broadcast_status(self, delivery_id: str) -> BroadcastStatus:
        body = await self.request("GET", f"/delivery/{quote(delivery_id, safe='')}/broadcast-status")
        if not isinstance(body, dict) or not body.get("success") or not isinstance(body.get("data"), dict):
            raise ApiError(_error_message(body, "Failed to get broadcast status"))
        return BroadcastStatus.model_validate(body["data"])

    async def get_driver_profile(self) -> dict:
        body = await self.request("GET", "/driver/profile")
        data = body.get("data") if isinstance(body, dict) else None
        return data if isinstance(data, dict) else {}

    async def login(self, username: str, password: str) -> dict:
        body = await self.request("POST", "/auth/login", json={"username": username, "password": password})
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict) or not data.get("token"):
            raise AuthError(_error_message(body, "Login failed"))
        self.session.save(data["token"], data.get("user") or {})
        return data
