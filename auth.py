from typing import Optional

import bcrypt
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import Settings

AUTH_COOKIE = "auth-token"


def _serializer(settings: Settings) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(settings.secret_key, salt="auth-token")


def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds)).decode(
        "utf-8"
    )


def check_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def generate_token(settings: Settings, user_id: int, email: str) -> str:
    return _serializer(settings).dumps({"u": user_id, "e": email})


def verify_token(settings: Settings, token: str) -> Optional[int]:
    """Return the user id carried by a valid, unexpired token."""
    try:
        data = _serializer(settings).loads(token, max_age=settings.token_max_age_secs)
    except (SignatureExpired, BadSignature):
        return None
    user_id = data.get("u") if isinstance(data, dict) else None
    if not isinstance(user_id, int):
        return None
    return user_id


def token_from_headers(authorization: Optional[str], cookie: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[len("Bearer ") :].strip() or None
    return cookie or None
