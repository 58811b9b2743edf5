from datetime import datetime, timedelta, timezone
import jwt

from deliverycast.core.config import JWT_ALG, JWT_EXPIRE_MIN, JWT_SECRET


def create_access_token(user_id: str, role: str, expire_min: int = JWT_EXPIRE_MIN) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=expire_min)).timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)
