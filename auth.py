import logging
import uuid
from typing import Optional

import bcrypt
from itsdangerous import BadSignature, URLSafeTimedSerializer
from sqlalchemy.orm import Session

from config import get_settings
from errors import Unauthorized
from models import User
from services import UserService

logger = logging.getLogger(__name__)

# Checked when the email is unknown so both failure paths cost one bcrypt round.
_DUMMY_HASH = bcrypt.hashpw(b"not-a-real-password", bcrypt.gensalt()).decode()


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.secret_key, salt="auth-token")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, credential_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), credential_hash.encode("utf-8"))
    except ValueError:
        return False


def issue_token(user_id: uuid.UUID) -> str:
    return _serializer().dumps({"u": str(user_id)})


def read_token(token: str, max_age_secs: Optional[int] = None) -> uuid.UUID:
    """Return the user id carried by ``token`` or raise UNAUTHORIZED."""
    if max_age_secs is None:
        max_age_secs = get_settings().token_max_age_secs
    try:
        data = _serializer().loads(token, max_age=max_age_secs)
    except BadSignature as exc:
        raise Unauthorized("Invalid or expired token") from exc
    try:
        return uuid.UUID(str(data.get("u")))
    except (AttributeError, ValueError) as exc:
        raise Unauthorized("Invalid or expired token") from exc


def authenticate(session: Session, email: str, password: str) -> User:
    user = UserService(session).get_by_email(email)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        logger.warning("login_failed: reason=unknown_email")
        raise Unauthorized()
    if not verify_password(password, user.credential_hash):
        logger.warning(f"login_failed: reason=bad_password user_id={user.id}")
        raise Unauthorized()
    logger.info(f"login_succeeded: user_id={user.id}")
    return user
