from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError

from deliverycast.core.config import JWT_ALG, JWT_SECRET

bearer = HTTPBearer(auto_error=False)

ADMIN_ROLES = ("admin", "super_admin")


def decode_token(token: str) -> dict:
    """Verify a bearer token and return the caller as {"sub", "role"}. Raises JWTError."""
    payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    sub = payload.get("sub")
    role = payload.get("role")
    if not sub or not role:
        raise JWTError("token is missing sub or role")
    return {"sub": sub, "role": role}


def get_current_user(creds: HTTPAuthorizationCredentials = Depends(bearer)):
    if creds is None:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    try:
        return decode_token(creds.credentials)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")


def require_roles(*allowed):
    def _guard(user=Depends(get_current_user)):
        if user["role"] not in allowed:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user
    return _guard


require_driver = require_roles("driver")
require_admin = require_roles(*ADMIN_ROLES)
