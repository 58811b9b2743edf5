import json
import logging
import os
from typing import Optional

from jose import jwt, JWTError

from deliverycast.core.config import SESSION_FILE

logger = logging.getLogger(__name__)

TOKEN_KEY = "token"
USER_KEY = "user"
AUTHENTICATED_KEY = "isAuthenticated"


class SessionStore:
    """
    Client-side storage for the signed-in driver.

    Persists the same three keys the web dashboard keeps in local storage
    (`token`, `user`, `isAuthenticated`) as one JSON document. Pass
    `path=None` for a memory-only session.
    """

    def __init__(self, path: Optional[str] = SESSION_FILE):
        self.path = path
        self._data: dict = {}
        self.load()

    def load(self) -> None:
        if not self.path or not os.path.exists(self.path):
            self._data = {}
            return
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError):
            logger.warning(f"[SESSION] Unreadable session file {self.path}, starting signed out")
            data = {}
        self._data = data if isinstance(data, dict) else {}

    def save(self, token: str, user: dict) -> None:
        self._data = {TOKEN_KEY: token, USER_KEY: user, AUTHENTICATED_KEY: True}
        self._flush()
        logger.info(f"[SESSION] Signed in as {self.user_id}")

    def clear(self) -> None:
        self._data = {}
        if self.path and os.path.exists(self.path):
            os.remove(self.path)
        logger.info("[SESSION] Session cleared")

    def _flush(self) -> None:
        if not self.path:
            return
        folder = os.path.dirname(self.path)
        if folder:
            os.makedirs(folder, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as fh:
            json.dump(self._data, fh)

    # -----------------------------
    # Accessors
    # -----------------------------
    @property
    def token(self) -> Optional[str]:
        return self._data.get(TOKEN_KEY)

    @property
    def user(self) -> dict:
        user = self._data.get(USER_KEY)
        return user if isinstance(user, dict) else {}

    @property
    def is_authenticated(self) -> bool:
        return bool(self._data.get(AUTHENTICATED_KEY)) and bool(self.token)

    def claims(self) -> dict:
        """Token claims, read without signature verification (the server verifies)."""
        if not self.token:
            return {}
        try:
            return jwt.get_unverified_claims(self.token)
        except JWTError:
            return {}

    @property
    def user_id(self) -> Optional[str]:
        user = self.user
        return user.get("_id") or user.get("id") or self.claims().get("sub")

    @property
    def role(self) -> Optional[str]:
        return self.user.get("userType") or self.user.get("role") or self.claims().get("role")

    def is_token_expired(self, now_ms: int) -> bool:
        exp = self.claims().get("exp")
        if exp is None:
            return False
        return now_ms >= int(exp) * 1000
