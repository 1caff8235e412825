from fastapi import Depends, Header, HTTPException
from typing import Callable
from uam.core.security import decode_token
from uam.schemas import ActingUser

def get_current_user(authorization: str | None = Header(default=None)) -> ActingUser:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        data = decode_token(token, expected_type="access")
        return ActingUser(
            id=int(data["sub"]),
            email=data["email"],
            name=data.get("name"),
            roles=data.get("roles") or [],
            plant_scope=data.get("plants") or [],
        )
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid/expired token")

def require_role(*allowed: str) -> Callable:
    def checker(user: ActingUser = Depends(get_current_user)) -> ActingUser:
        if allowed and not set(allowed) & set(user.roles):
            raise HTTPException(status_code=403, detail="Forbidden")
        return user
    return checker
