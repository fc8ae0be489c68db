import secrets
import uuid
from datetime import timedelta
from typing import Optional

import bcrypt
from fastapi import Request, Response
from itsdangerous import BadSignature, SignatureExpired, TimestampSigner

from coinbet.config import settings
from coinbet.core.exceptions import Forbidden, Unauthorized

TOKEN_SALT = "coinbet.bearer"


def _signer() -> TimestampSigner:
    return TimestampSigner(settings.security.secret_key, salt=TOKEN_SALT)


# ==================== Bearer Tokens ====================

def issue_token(user_id: str) -> str:
    """Create a signed, timestamped bearer token for a user id."""
    return _signer().sign(user_id.encode("utf-8")).decode("utf-8")


def verify_token(token: str) -> Optional[str]:
    """Return the user id for a valid, unexpired token, else None."""
    if not token:
        return None
    max_age = int(timedelta(hours=settings.security.token_max_age_hours).total_seconds())
    try:
        user_id = _signer().unsign(token.encode("utf-8"), max_age=max_age)
    except (SignatureExpired, BadSignature):
        return None
    return user_id.decode("utf-8")


def get_bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_principal(request: Request) -> Optional[str]:
    """Authenticated user id for this request, or None."""
    return verify_token(get_bearer_token(request))


def require_principal(request: Request) -> str:
    """FastAPI dependency: the authenticated user id, or Unauthorized."""
    principal = get_principal(request)
    if not principal:
        raise Unauthorized()
    return principal


# ==================== Admin ====================

# Simple in-memory session store: token -> username
SESSIONS = {}


def create_session(username: str, response: Response):
    token = str(uuid.uuid4())
    SESSIONS[token] = username
    # Session cookie expires when browser closes
    response.set_cookie(key="admin_session", value=token, httponly=True, samesite="lax")
    return token


def delete_session(request: Request, response: Response):
    SESSIONS.pop(request.cookies.get("admin_session"), None)
    response.delete_cookie("admin_session")


def get_current_admin(request: Request) -> Optional[str]:
    token = request.cookies.get("admin_session")
    if not token or token not in SESSIONS:
        return None
    return SESSIONS[token]


def verify_credentials(username: str, password: str) -> bool:
    if not secrets.compare_digest(
        username.encode("utf-8"), settings.security.admin_username.encode("utf-8")
    ):
        return False

    password_hash = settings.security.admin_password_hash
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Stored hash is malformed
        return False


def require_admin_api(request: Request) -> str:
    admin = get_current_admin(request)
    if not admin:
        raise Forbidden()
    return admin
