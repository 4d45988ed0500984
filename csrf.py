from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings


FORM_TOKEN_MAX_AGE_SECS = 2 * 3600


def _serializer(purpose: str) -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.csrf_secret, salt=f"ledger-{purpose}")


def generate_csrf_token(user_id: int, purpose: str = "import") -> str:
    return _serializer(purpose).dumps({"u": user_id})


def validate_csrf_token(
    token: str,
    user_id: int,
    purpose: str = "import",
    max_age: int = FORM_TOKEN_MAX_AGE_SECS,
) -> bool:
    """A token is valid only for the user and form purpose it was issued for."""
    if not token:
        return False
    try:
        # SignatureExpired is a BadSignature
        data = _serializer(purpose).loads(token, max_age=max_age)
    except BadSignature:
        return False
    return isinstance(data, dict) and data.get("u") == user_id
