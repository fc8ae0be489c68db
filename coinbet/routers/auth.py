import re
from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel

from coinbet.core.exceptions import InvalidRequest, Unauthorized
from coinbet.core.logger import get_logger
from coinbet.core.security import get_principal, issue_token
from coinbet.core.wallet import demo_starting_balance
from coinbet.routers.api import get_db, limiter

logger = get_logger("auth")

router = APIRouter()

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class DemoLoginRequest(BaseModel):
    email: Any = None


def _sanitize_email(email: Any) -> str:
    """Lowercased email, or empty string when it does not look like one."""
    if not isinstance(email, str):
        return ""
    email = email.strip().lower()
    if len(email) > 254 or not EMAIL_PATTERN.match(email):
        return ""
    return email


@router.post("/auth/demo")
@limiter.limit("10/minute")
async def demo_login(request: Request, data: DemoLoginRequest):
    """Log in to a demo account, creating it with a demo balance on first use."""
    email = _sanitize_email(data.email)
    if not email:
        raise InvalidRequest("Email is required")

    user = get_db(request).get_or_create_demo_user(email, demo_starting_balance())
    logger.info(f"Demo session created: {email}")

    return {
        "success": True,
        "session_token": issue_token(user["id"]),
        "user_id": user["id"],
        "message": "Demo session created successfully",
    }


@router.post("/auth/validate")
async def validate(request: Request):
    """Check a bearer token and return the account it belongs to."""
    principal = get_principal(request)
    if not principal:
        raise Unauthorized("Invalid or expired session")

    user = get_db(request).get_user_by_id(principal)
    if not user:
        raise Unauthorized("Invalid or expired session")

    return {
        "success": True,
        "account": {"user_id": user["id"], "email": user["email"], "is_demo": bool(user["is_demo"])},
        "message": "Session is valid",
    }
