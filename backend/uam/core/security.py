import os, jwt
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional

JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-prod")
JWT_ALGO = os.getenv("JWT_ALGO", "HS256")

# Access lifetime (minutes)
ACCESS_TTL_MIN = int(os.getenv("JWT_ACCESS_TTL_MIN", "30"))

def _now() -> datetime:
    return datetime.now(timezone.utc)

def _encode(payload: Dict[str, Any]) -> str:
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGO)

def _decode(token: str) -> Dict[str, Any]:
    return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])

def create_access_token(
    user_id: int,
    email: str,
    name: Optional[str] = None,
    roles: Iterable[str] = (),
    plant_scope: Iterable[int] = (),
) -> str:
    """Mint the bearer token the identity provider would hand out."""
    now = _now()
    exp = now + timedelta(minutes=ACCESS_TTL_MIN)
    payload = {
        "sub": str(user_id),
        "email": email,
        "name": name,
        "roles": list(roles),
        "plants": list(plant_scope),
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return _encode(payload)

def decode_token(token: str, expected_type: str | None = None) -> Dict[str, Any]:
    data = _decode(token)
    if expected_type and data.get("type") != expected_type:
        raise jwt.InvalidTokenError(f"unexpected token type: {data.get('type')}")
    return data
