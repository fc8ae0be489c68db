"""
Risk tier configuration for the coin game.
Defaults come from config.json; the admin surface can store an override in the
database. Every settlement works from one immutable GameSettings snapshot.
"""

from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from coinbet.config import settings
from coinbet.core.exceptions import InvalidSettings
from coinbet.core.logger import get_logger
from coinbet.core.money import to_decimal

logger = get_logger("tiers")

SETTINGS_KEY = "game_settings"

MAX_MULTIPLIER_DIGITS = 6
MAX_MULTIPLIER_PLACES = 4


class RiskTier(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    payout_multiplier: Decimal
    win_probability_percent: Decimal

    @field_validator("payout_multiplier", "win_probability_percent", mode="before")
    @classmethod
    def _as_decimal(cls, v):
        return to_decimal(v)

    @field_validator("payout_multiplier")
    @classmethod
    def _multiplier_above_one(cls, v):
        if v <= 1:
            raise ValueError("payout_multiplier must be greater than 1")
        # Keeps stake x multiplier exact in the default decimal context
        if v.adjusted() >= MAX_MULTIPLIER_DIGITS or v.as_tuple().exponent < -MAX_MULTIPLIER_PLACES:
            raise ValueError(
                f"payout_multiplier must be below 10**{MAX_MULTIPLIER_DIGITS} "
                f"with at most {MAX_MULTIPLIER_PLACES} decimal places"
            )
        return v

    @field_validator("win_probability_percent")
    @classmethod
    def _percent_range(cls, v):
        if v < 0 or v > 100:
            raise ValueError("win_probability_percent must be between 0 and 100")
        return v

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "payout_multiplier": float(self.payout_multiplier),
            "win_probability_percent": float(self.win_probability_percent),
        }


class GameSettings(BaseModel):
    """A consistent view of the minimum stake and tier set."""

    model_config = ConfigDict(frozen=True)

    min_stake: Decimal
    tiers: Tuple[RiskTier, ...]

    @field_validator("min_stake", mode="before")
    @classmethod
    def _stake_as_decimal(cls, v):
        return to_decimal(v)

    @field_validator("min_stake")
    @classmethod
    def _stake_positive(cls, v):
        if v <= 0:
            raise ValueError("min_stake must be positive")
        return v

    @field_validator("tiers")
    @classmethod
    def _sort_by_id(cls, v):
        return tuple(sorted(v, key=lambda t: t.id))

    @model_validator(mode="after")
    def _check_ordering(self):
        if not self.tiers:
            raise ValueError("at least one tier is required")

        ids = [tier.id for tier in self.tiers]
        if len(set(ids)) != len(ids):
            raise ValueError("tier ids must be unique")

        # Riskier tiers pay more and win less often
        for lower, higher in zip(self.tiers, self.tiers[1:]):
            if higher.payout_multiplier <= lower.payout_multiplier:
                raise ValueError(
                    f"tier {higher.id} must pay more than tier {lower.id}"
                )
            if higher.win_probability_percent >= lower.win_probability_percent:
                raise ValueError(
                    f"tier {higher.id} must have a lower win probability than tier {lower.id}"
                )

        return self

    def get_tier(self, tier_id: int) -> Optional[RiskTier]:
        for tier in self.tiers:
            if tier.id == tier_id:
                return tier
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "min_stake": float(self.min_stake),
            "tiers": [tier.to_dict() for tier in self.tiers],
        }


def parse_game_settings(data: Dict[str, Any]) -> GameSettings:
    """Validate raw settings data, raising InvalidSettings on any problem."""
    if not isinstance(data, dict):
        raise InvalidSettings("Game settings must be an object")
    try:
        return GameSettings(**data)
    except (ValidationError, TypeError) as e:
        raise InvalidSettings(f"Invalid game settings: {e}")


def get_default_game_settings() -> GameSettings:
    """Game settings from config.json (or built-in defaults)."""
    return parse_game_settings(
        {
            "min_stake": settings.game.min_stake,
            "tiers": [tier.model_dump() for tier in settings.game.tiers],
        }
    )


def load_game_settings(db) -> GameSettings:
    """
    Read the current game settings snapshot.

    Uses the admin override stored in the database when present and valid,
    otherwise the configured defaults.
    """
    stored = db.get_setting(SETTINGS_KEY)
    if stored is None:
        return get_default_game_settings()

    try:
        return parse_game_settings(stored)
    except InvalidSettings as e:
        logger.error(f"Ignoring stored game settings: {e.message}")
        return get_default_game_settings()


def save_game_settings(db, data: Dict[str, Any]) -> GameSettings:
    """Validate and store an admin override, returning the new snapshot."""
    game_settings = parse_game_settings(data)
    db.set_setting(SETTINGS_KEY, game_settings.to_dict())
    logger.info(
        "Saved game settings",
        extra={"min_stake": str(game_settings.min_stake), "tiers": len(game_settings.tiers)},
    )
    return game_settings
