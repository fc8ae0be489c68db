import asyncio
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from slowapi import Limiter
from slowapi.util import get_remote_address

from coinbet.config import settings
from coinbet.core.database import Database
from coinbet.core.exceptions import BetNotFound
from coinbet.core.logger import get_logger
from coinbet.core.security import require_principal
from coinbet.core.settlement import SettlementService, verify_bet
from coinbet.core.tiers import load_game_settings
from coinbet.core.wallet import WalletService

logger = get_logger("api")

limiter = Limiter(key_func=get_remote_address)

router = APIRouter()

# ==================== Request Models ====================

# Fields stay loosely typed so that bad values surface through the
# InvalidAmount / InvalidTier / InvalidChoice taxonomy instead of a 422.

class BetRequest(BaseModel):
    choice: Any = None
    amount: Any = None
    level: Any = None
    userId: Optional[str] = None


class DepositRequest(BaseModel):
    amount: Any = None


class WithdrawalRequest(BaseModel):
    amount: Any = None
    pixKey: Any = None


# ==================== Helpers ====================

def get_db(request: Request) -> Database:
    return request.app.state.db


def clamp_limit(limit: int, maximum: int = 100) -> int:
    return max(1, min(maximum, limit))


def get_bet_rate_limit() -> str:
    """Rate limit for placing bets, from config."""
    return settings.rate_limit.bet_requests if settings.rate_limit.enabled else "1000/second"


def get_api_rate_limit() -> str:
    return settings.rate_limit.api_requests if settings.rate_limit.enabled else "1000/second"


# ==================== Betting ====================

@router.post("/bets")
@limiter.limit(get_bet_rate_limit)
async def place_bet(request: Request, data: BetRequest, principal: str = Depends(require_principal)):
    """Settle one wager for the authenticated user."""
    db = get_db(request)
    # Settings are read once and passed down as a snapshot
    game_settings = load_game_settings(db)
    service = SettlementService(db)

    result = await asyncio.to_thread(
        service.settle_bet,
        principal,
        data.userId or principal,
        data.choice,
        data.amount,
        data.level,
        game_settings,
    )
    return result.to_response()


@router.get("/bets")
@limiter.limit(get_api_rate_limit)
async def bet_history(request: Request, limit: int = 50, principal: str = Depends(require_principal)):
    db = get_db(request)
    bets = db.get_bets(principal, clamp_limit(limit))
    return {
        "bets": [bet.to_dict() for bet in bets],
        "summary": db.get_bet_summary(principal),
    }


@router.get("/bets/{bet_id}/verify")
@limiter.limit(get_api_rate_limit)
async def verify(request: Request, bet_id: str, principal: str = Depends(require_principal)):
    """Reveal the seed of one of the caller's bets and recompute its outcome."""
    record = get_db(request).get_bet(bet_id)
    if record is None or record.user_id != principal:
        raise BetNotFound()
    logger.info("Bet seed revealed", extra={"user_id": principal, "bet_id": bet_id})
    return verify_bet(record)


@router.get("/game/settings")
async def game_settings(request: Request):
    return load_game_settings(get_db(request)).to_dict()


# ==================== Wallet ====================

@router.get("/wallet")
@limiter.limit(get_api_rate_limit)
async def wallet(request: Request, principal: str = Depends(require_principal)):
    return WalletService(get_db(request)).get_wallet(principal)


@router.get("/wallet/transactions")
@limiter.limit(get_api_rate_limit)
async def wallet_transactions(request: Request, limit: int = 50, principal: str = Depends(require_principal)):
    return {"transactions": get_db(request).get_transactions(principal, clamp_limit(limit))}


@router.post("/wallet/deposit")
@limiter.limit(get_api_rate_limit)
async def deposit(request: Request, data: DepositRequest, principal: str = Depends(require_principal)):
    service = WalletService(get_db(request))
    return await asyncio.to_thread(service.deposit, principal, data.amount)


@router.post("/wallet/withdraw")
@limiter.limit(get_api_rate_limit)
async def withdraw(request: Request, data: WithdrawalRequest, principal: str = Depends(require_principal)):
    service = WalletService(get_db(request))
    return await asyncio.to_thread(service.withdraw, principal, data.amount, data.pixKey)
