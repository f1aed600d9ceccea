from typing import Optional

import bcrypt
from itsdangerous import BadSignature, URLSafeTimedSerializer


def _serializer(secret_key: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key, salt="auth-token")


def generate_auth_token(user_id: int, secret_key: str) -> str:
    return _serializer(secret_key).dumps({"u": user_id})


def user_id_from_token(
    token: str, secret_key: str, max_age_hours: int = 168
) -> Optional[int]:
    """Return the signed user id, or None for a forged, stale or malformed token."""
    try:
        data = _serializer(secret_key).loads(token, max_age=max_age_hours * 3600)
    except BadSignature:
        return None
    if not isinstance(data, dict):
        return None
    user_id = data.get("u")
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        return None
    return user_id


def _password_bytes(password: str) -> bytes:
    # bcrypt only reads the first 72 bytes
    return password.encode("utf-8")[:72]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, stored: str) -> bool:
    try:
        return bcrypt.checkpw(_password_bytes(password), stored.encode("utf-8"))
    except ValueError:
        return False
