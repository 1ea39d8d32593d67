import logging
from typing import Optional

from itsdangerous import BadData, URLSafeTimedSerializer

from config import get_settings
from database import MAX_ROW_ID

logger = logging.getLogger(__name__)


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.auth_secret, salt="auth-token")


def issue_token(user_id: int) -> str:
    return _serializer().dumps({"u": user_id})


def resolve_user_id(token: str, max_age_secs: Optional[int] = None) -> Optional[int]:
    """Return the user id carried by ``token``, or None when it is not valid.

    Expired tokens raise ``SignatureExpired`` inside itsdangerous, which is a
    ``BadData`` and therefore resolves to None like any forged token.
    """
    if not token:
        return None
    if max_age_secs is None:
        max_age_secs = get_settings().token_max_age_secs
    try:
        data = _serializer().loads(token, max_age=max_age_secs)
    except BadData:
        logger.debug("auth_rejected: reason=bad_token")
        return None

    if not isinstance(data, dict):
        return None
    user_id = data.get("u")
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        return None
    if not 0 < user_id <= MAX_ROW_ID:
        return None
    return user_id


def user_id_from_authorization(header: Optional[str]) -> Optional[int]:
    if not header:
        return None
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return resolve_user_id(token.strip())
