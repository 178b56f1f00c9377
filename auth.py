import os
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from database import get_db
from errors import AuthenticationFault, AuthorizationFault

JWT_ALGO = "HS256"
security = HTTPBearer(auto_error=False)


def _secret() -> str:
    return os.getenv("JWT_SECRET", "devsecret")


def create_token(payload: dict, days: int = 7) -> str:
    exp = datetime.now(timezone.utc) + timedelta(days=days)
    to_encode = {**payload, "exp": exp}
    return jwt.encode(to_encode, _secret(), algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, _secret(), algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise AuthenticationFault("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationFault("Invalid token")


def _user_from_credentials(credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[dict]:
    if credentials is None:
        return None
    payload = decode_token(credentials.credentials)
    user_id = payload.get("id")
    if not user_id:
        raise AuthenticationFault("Invalid token payload")
    return {"id": str(user_id), "role": payload.get("role", "user"), "email": payload.get("email")}


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> dict:
    user = _user_from_credentials(credentials)
    if user is None:
        raise AuthenticationFault("Not authenticated")
    return user


def get_optional_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Optional[dict]:
    return _user_from_credentials(credentials)


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != "admin":
        raise AuthorizationFault("Admin only")
    return user


def require_seller(user: dict = Depends(get_current_user)) -> dict:
    """Seller access is derived from the seller profile status on every request."""
    profile = get_db()["seller"].find_one({"user_id": user["id"]})
    if not profile or profile.get("status") != "approved":
        raise AuthorizationFault("Approved seller account required")
    return {**user, "seller_profile_id": str(profile["_id"])}
