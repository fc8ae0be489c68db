from decimal import Decimal
from typing import Any, Dict

from coinbet.core.exceptions import InvalidChoice
from coinbet.core.money import ZERO
from coinbet.core.rng import COIN_SIDES, Draw
from coinbet.core.tiers import RiskTier


class CoinflipGame:
    """
    Heads or tails with risk tiers.

    A bet wins only when the guess matches the coin AND the independent win
    roll lands at or under the tier's win probability. Guessing the coin is
    not the same as winning the bet.
    """

    SIDES = COIN_SIDES

    def normalize_choice(self, choice: Any) -> str:
        if not isinstance(choice, str):
            raise InvalidChoice(f"Choice must be one of: {', '.join(self.SIDES)}")
        normalized = choice.lower().strip()
        if normalized not in self.SIDES:
            raise InvalidChoice(
                f"Invalid choice: {choice}. Must be one of: {', '.join(self.SIDES)}"
            )
        return normalized

    def resolve(self, amount: Decimal, choice: str, tier: RiskTier, draw: Draw) -> Dict:
        """
        Resolve a wager against a draw.

        Args:
            amount: Amount wagered, in whole cents
            choice: Normalized side picked by the player
            tier: Risk tier selected for the wager
            draw: Coin outcome and win roll

        Returns:
            Dict with result, win status and payout. The payout is the exact
            product of stake and multiplier, never rounded
        """
        matched = choice == draw.outcome
        won = matched and draw.roll <= tier.win_probability_percent
        payout = amount * tier.payout_multiplier if won else ZERO

        return {
            "result": draw.outcome,
            "choice": choice,
            "matched": matched,
            "won": won,
            "roll": draw.roll,
            "payout": payout,
            "multiplier": tier.payout_multiplier,
            "bet": amount,
        }


# Singleton instance
coinflip_game = CoinflipGame()
