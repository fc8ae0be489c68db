import asyncio
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel

from coinbet.core.exceptions import Unauthorized
from coinbet.core.logger import get_logger
from coinbet.core.security import (
    create_session,
    delete_session,
    require_admin_api,
    verify_credentials,
)
from coinbet.core.tiers import load_game_settings, save_game_settings
from coinbet.core.wallet import WalletService
from coinbet.routers.api import clamp_limit, get_db, limiter

logger = get_logger("admin")

router = APIRouter()


# Request models
class AdminLoginRequest(BaseModel):
    username: str
    password: str


class GameSettingsRequest(BaseModel):
    min_stake: Any = None
    tiers: Any = None


class WithdrawalRejectRequest(BaseModel):
    reason: Any = None


@router.post("/login")
@limiter.limit("10/minute")
async def admin_login(request: Request, response: Response, data: AdminLoginRequest):
    if not verify_credentials(data.username, data.password):
        logger.warning("Failed admin login", extra={"username": data.username})
        raise Unauthorized("Invalid credentials")

    create_session(data.username, response)
    logger.info("Admin logged in", extra={"username": data.username})
    return {"success": True}


@router.post("/logout")
async def admin_logout(request: Request, response: Response):
    delete_session(request, response)
    return {"success": True}


@router.get("/game-settings")
async def get_game_settings(request: Request, admin: str = Depends(require_admin_api)):
    return load_game_settings(get_db(request)).to_dict()


@router.put("/game-settings")
async def update_game_settings(
    request: Request, data: GameSettingsRequest, admin: str = Depends(require_admin_api)
) -> Dict[str, Any]:
    """Replace the tier set and minimum stake used by new settlements."""
    game_settings = save_game_settings(get_db(request), data.model_dump())
    logger.info(f"Admin {admin} updated game settings")
    return {"success": True, **game_settings.to_dict()}


# ==================== Withdrawals ====================

@router.get("/withdrawals")
async def pending_withdrawals(
    request: Request, limit: int = 50, admin: str = Depends(require_admin_api)
):
    db = get_db(request)
    return {"withdrawals": db.get_transactions_by_status("pending", "withdrawal", clamp_limit(limit))}


@router.post("/withdrawals/{tx_id}/approve")
async def approve_withdrawal(request: Request, tx_id: int, admin: str = Depends(require_admin_api)):
    service = WalletService(get_db(request))
    return await asyncio.to_thread(service.approve_withdrawal, tx_id, admin)


@router.post("/withdrawals/{tx_id}/reject")
async def reject_withdrawal(
    request: Request,
    tx_id: int,
    data: WithdrawalRejectRequest,
    admin: str = Depends(require_admin_api),
):
    """Reject a pending withdrawal and return the money to the user's wallet."""
    service = WalletService(get_db(request))
    return await asyncio.to_thread(service.reject_withdrawal, tx_id, data.reason, admin)
