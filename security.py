import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

import config
from database import get_db, oid, serialize_doc
from errors import AuthError, ValidationError

security = HTTPBearer(auto_error=False)

PBKDF2_ROUNDS = 260000


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ROUNDS)
    return f"pbkdf2_sha256${PBKDF2_ROUNDS}${salt}${digest.hex()}"


def verify_password(password: str, password_hash: str) -> bool:
    try:
        _, rounds, salt, expected = password_hash.split("$")
    except (AttributeError, ValueError):
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), int(rounds))
    return hmac.compare_digest(digest.hex(), expected)


def generate_token() -> str:
    """Random token for email verification and password reset links."""
    return secrets.token_hex(32)


def _encode(payload: dict, secret: str, days: int) -> str:
    exp = datetime.now(timezone.utc) + timedelta(days=days)
    return jwt.encode({**payload, "exp": exp}, secret, algorithm=config.JWT_ALGO)


def create_tokens(user: dict) -> dict:
    payload = {"id": user["id"], "email": user["email"]}
    return {
        "accessToken": _encode(payload, config.JWT_SECRET, config.JWT_EXPIRE_DAYS),
        "refreshToken": _encode(payload, config.JWT_REFRESH_SECRET, config.JWT_REFRESH_EXPIRE_DAYS),
    }


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGO])
    except jwt.InvalidTokenError:
        raise AuthError("Invalid or expired token.", status_code=403)


def _load_user(database, token: str) -> dict:
    payload = decode_token(token)
    user_id = payload.get("id")
    if not user_id:
        raise AuthError("Invalid token payload", status_code=403)
    try:
        user = database["user"].find_one({"_id": oid(user_id)})
    except ValidationError:
        raise AuthError("Invalid token payload", status_code=403)
    if not user:
        raise AuthError("User not found")
    return serialize_doc(user)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    database=Depends(get_db),
) -> dict:
    if credentials is None or not credentials.credentials:
        raise AuthError("Access denied. No token provided.")
    return _load_user(database, credentials.credentials)


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    database=Depends(get_db),
) -> Optional[dict]:
    """Attach the user when a valid token is sent, otherwise carry on anonymously."""
    if credentials is None or not credentials.credentials:
        return None
    try:
        return _load_user(database, credentials.credentials)
    except AuthError:
        return None
