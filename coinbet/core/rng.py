import hashlib
import secrets
import time
import uuid
from decimal import Decimal
from typing import NamedTuple, Tuple

COIN_SIDES: Tuple[str, str] = ("heads", "tails")

# The win roll is one of 10,000 equally likely values, 0.01 through 100.00
ROLL_BUCKETS = 10_000


class Draw(NamedTuple):
    seed: str
    timestamp_ms: int
    outcome: str
    roll: Decimal


class TrueRNG:
    """
    Provably fair draws built on Python's `secrets` module.

    Each wager gets a fresh seed. The seed and a millisecond timestamp are
    hashed with SHA-256; the first 8 bytes of the digest pick the coin side and
    the next 8 bytes pick the win roll, so the two decisions never share bits.
    Publishing the seed and timestamp lets anyone recompute both.
    """

    @staticmethod
    def new_seed() -> str:
        """Returns a random UUID4 string sourced from the OS CSPRNG."""
        return str(uuid.UUID(bytes=secrets.token_bytes(16), version=4))

    @staticmethod
    def now_ms() -> int:
        return time.time_ns() // 1_000_000

    @staticmethod
    def derive(seed: str, timestamp_ms: int) -> Draw:
        """Deterministically recompute the draw for a seed and timestamp."""
        digest = hashlib.sha256(f"{seed}{timestamp_ms}".encode("utf-8")).digest()

        side_bits = int.from_bytes(digest[0:8], "big")
        roll_bits = int.from_bytes(digest[8:16], "big")

        outcome = COIN_SIDES[side_bits & 1]
        roll = Decimal(roll_bits % ROLL_BUCKETS + 1).scaleb(-2)

        return Draw(seed=seed, timestamp_ms=timestamp_ms, outcome=outcome, roll=roll)

    def draw(self) -> Draw:
        """Returns a fresh, unpredictable draw for one wager."""
        return self.derive(self.new_seed(), self.now_ms())

    @staticmethod
    def token(nbytes: int = 6) -> str:
        """Returns a short random hex token for external references."""
        return secrets.token_hex(nbytes)


rng = TrueRNG()
