"""
Bet settlement.

One call settles one wager: validate, read the wallet, draw the outcome, then
append the ledger row and move the balance inside a single transaction.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from coinbet.config import settings
from coinbet.core.coinflip import CoinflipGame, coinflip_game
from coinbet.core.database import BetRecord, Database, utcnow
from coinbet.core.exceptions import (
    ConcurrencyConflict,
    Conflict,
    InsufficientBalance,
    InvalidTier,
    SettlementError,
    Unauthorized,
    WalletNotFound,
)
from coinbet.core.logger import get_logger
from coinbet.core.money import parse_amount
from coinbet.core.rng import Draw, TrueRNG, rng
from coinbet.core.tiers import GameSettings, RiskTier

logger = get_logger("settlement")


@dataclass(frozen=True)
class SettlementResult:
    bet_id: str
    outcome: str
    won: bool
    payout: Decimal
    new_balance: Decimal

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "result": self.outcome,
            "won": self.won,
            "payout": float(self.payout),
            "newBalance": float(self.new_balance),
        }


def resolve_tier(tier_id: Any, game_settings: GameSettings) -> RiskTier:
    """Look up a tier by id; ids arrive as JSON numbers."""
    if isinstance(tier_id, bool):
        raise InvalidTier()
    if isinstance(tier_id, float) and tier_id.is_integer():
        tier_id = int(tier_id)
    if not isinstance(tier_id, int):
        raise InvalidTier()

    tier = game_settings.get_tier(tier_id)
    if tier is None:
        valid = ", ".join(str(t.id) for t in game_settings.tiers)
        raise InvalidTier(f"Invalid bet level: {tier_id}. Must be one of: {valid}")
    return tier


class SettlementService:
    """
    Stateless settlement of wagers against the wallet store and bet ledger.

    Wagers on one wallet are serialized by the store's `BEGIN IMMEDIATE`
    transaction, which holds SQLite's write lock from the balance read to the
    commit. The compare-and-swap in `apply_delta` therefore cannot lose a race
    against another settlement on this store. It guards the write in case the
    store is ever run without that lock, and the bounded retry only runs when
    it fires.
    """

    def __init__(
        self,
        db: Database,
        rng: TrueRNG = rng,
        game: CoinflipGame = coinflip_game,
        max_retries: Optional[int] = None,
    ):
        self.db = db
        self.rng = rng
        self.game = game
        self.max_retries = (
            max_retries if max_retries is not None else settings.game.max_conflict_retries
        )

    def settle_bet(
        self,
        principal_id: Optional[str],
        user_id: Optional[str],
        choice: Any,
        amount: Any,
        tier_id: Any,
        game_settings: GameSettings,
    ) -> SettlementResult:
        """
        Settle one wager.

        Args:
            principal_id: Authenticated caller, None when unauthenticated
            user_id: Owner of the wallet being wagered
            choice: Side picked by the player
            amount: Stake as received from the client
            tier_id: Risk tier id as received from the client
            game_settings: Snapshot of tiers and minimum stake for this request

        Raises:
            Unauthorized, InvalidAmount, InvalidTier, InvalidChoice before the
            store is touched; WalletNotFound, InsufficientBalance after reading
            it; Conflict once retries are exhausted; StorageUnavailable when
            persistence fails. No money moves on any error.
        """
        if not principal_id or principal_id != user_id:
            raise Unauthorized()

        stake = parse_amount(amount, game_settings.min_stake)
        tier = resolve_tier(tier_id, game_settings)
        side = self.game.normalize_choice(choice)

        # One draw per wager; a retried transaction reuses it
        draw = self.rng.draw()

        attempt = 0
        while True:
            attempt += 1
            try:
                result = self._settle_once(user_id, side, stake, tier, draw)
            except ConcurrencyConflict as e:
                if attempt > self.max_retries:
                    logger.warning(
                        "Settlement conflict, giving up",
                        extra={"user_id": user_id, "attempts": attempt},
                    )
                    raise Conflict() from e
                logger.info(
                    "Settlement conflict, retrying",
                    extra={"user_id": user_id, "attempt": attempt},
                )
                continue
            except SettlementError as e:
                logger.info(
                    f"Bet rejected: {e.message}",
                    extra={"user_id": user_id, "kind": e.kind},
                )
                raise

            logger.info(
                "Bet settled",
                extra={
                    "user_id": user_id,
                    "bet_id": result.bet_id,
                    "level": tier.id,
                    "won": result.won,
                    "payout": str(result.payout),
                },
            )
            return result

    def _settle_once(
        self, user_id: str, side: str, stake: Decimal, tier: RiskTier, draw: Draw
    ) -> SettlementResult:
        with self.db.transaction() as conn:
            wallet = self.db.get_wallet(user_id, conn=conn)
            if wallet is None:
                raise WalletNotFound()
            if wallet.balance < stake:
                raise InsufficientBalance()

            resolution = self.game.resolve(stake, side, tier, draw)
            payout = resolution["payout"]
            delta = payout - stake

            record = BetRecord(
                id=str(uuid.uuid4()),
                user_id=user_id,
                amount=stake,
                choice=side,
                outcome=draw.outcome,
                won=resolution["won"],
                payout=payout,
                level=tier.id,
                multiplier=tier.payout_multiplier,
                win_probability=tier.win_probability_percent,
                roll=draw.roll,
                seed=draw.seed,
                seed_timestamp=draw.timestamp_ms,
                balance_after=wallet.balance + delta,
                created_at=utcnow(),
            )
            self.db.append_bet(record, conn=conn)
            updated = self.db.apply_delta(
                user_id, delta, expected_balance=wallet.balance, conn=conn
            )

        return SettlementResult(
            bet_id=record.id,
            outcome=record.outcome,
            won=record.won,
            payout=payout,
            new_balance=updated.balance,
        )


def verify_bet(record: BetRecord, game: CoinflipGame = coinflip_game) -> Dict[str, Any]:
    """Recompute a stored bet from its revealed seed and timestamp."""
    draw = TrueRNG.derive(record.seed, record.seed_timestamp)
    tier = RiskTier(
        id=record.level,
        payout_multiplier=record.multiplier,
        win_probability_percent=record.win_probability,
    )
    resolution = game.resolve(record.amount, record.choice, tier, draw)

    verified = (
        draw.outcome == record.outcome
        and draw.roll == record.roll
        and resolution["won"] == record.won
        and resolution["payout"] == record.payout
    )

    return {
        "betId": record.id,
        "seed": record.seed,
        "timestamp": record.seed_timestamp,
        "algorithm": "sha256(seed + timestamp): bytes 0-7 pick the side, bytes 8-15 pick the roll",
        "result": draw.outcome,
        "roll": float(draw.roll),
        "won": resolution["won"],
        "payout": float(resolution["payout"]),
        "verified": verified,
    }
