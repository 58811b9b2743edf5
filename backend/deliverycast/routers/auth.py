import logging
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, model_validator

from deliverycast.core.security import create_access_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

# DEV ONLY: every sandbox account shares this password
SANDBOX_PASSWORD = "password"

# username prefix -> role
ROLE_PREFIXES = (("admin-", "admin"), ("driver-", "driver"))


class LoginIn(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: str

    @model_validator(mode="after")
    def _has_identity(self):
        if not (self.username or self.email or "").strip():
            raise ValueError("email or username required")
        return self

    @property
    def identity(self) -> str:
        return (self.username or self.email).strip().lower()


def role_for(identity: str) -> Optional[str]:
    for prefix, role in ROLE_PREFIXES:
        if identity.startswith(prefix):
            return role
    return None


@router.post("/login")
async def login(body: LoginIn):
    role = role_for(body.identity)
    if body.password != SANDBOX_PASSWORD or role is None:
        logger.info(f"[SANDBOX] Rejected login for {body.identity}")
        raise HTTPException(status_code=401, detail="Invalid credentials")

    user = {"id": body.identity, "name": body.identity, "role": role, "userType": role}
    return {"success": True, "data": {"token": create_access_token(body.identity, role=role), "user": user}}
