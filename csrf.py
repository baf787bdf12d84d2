from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings

CSRF_MAX_AGE_SECONDS = 2 * 3600


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.csrf_secret, salt="ledger-csrf")


def generate_csrf_token(user_id: int = 1) -> str:
    return _serializer().dumps({"u": user_id})


def validate_csrf_token(
    token: str, user_id: int = 1, max_age: int = CSRF_MAX_AGE_SECONDS
) -> bool:
    """Check signature, age and owner of a form token."""
    if not token:
        return False
    try:
        data = _serializer().loads(token, max_age=max_age)
    except BadSignature:
        return False
    return isinstance(data, dict) and data.get("u") == user_id
