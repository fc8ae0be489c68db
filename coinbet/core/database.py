"""
Database module for persistent storage.
Uses SQLite for wallets, the append-only bet ledger, wallet transactions and
admin-editable settings.

Writes run inside `BEGIN IMMEDIATE` transactions, which take SQLite's write
lock before the first read. Balance updates are additionally guarded by a
compare-and-swap on the stored balance.
"""

import json
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from decimal import Decimal
from functools import wraps
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from coinbet.config import settings
from coinbet.core.exceptions import (
    ConcurrencyConflict,
    InsufficientBalance,
    StorageUnavailable,
    WalletNotFound,
)
from coinbet.core.logger import get_logger
from coinbet.core.money import ZERO, to_money

# Get logger for this module
logger = get_logger("database")


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def storage_errors(func):
    """Surface sqlite3 failures from read paths as StorageUnavailable."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except sqlite3.Error as e:
            logger.error(f"Storage error in {func.__name__}: {e}", exc_info=True)
            raise StorageUnavailable() from e

    return wrapper


@dataclass(frozen=True)
class WalletAccount:
    user_id: str
    balance: Decimal
    total_deposited: Decimal
    total_withdrawn: Decimal

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "WalletAccount":
        return cls(
            user_id=row["user_id"],
            balance=Decimal(row["balance"]),
            total_deposited=Decimal(row["total_deposited"]),
            total_withdrawn=Decimal(row["total_withdrawn"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "balance": float(self.balance),
            "totalDeposited": float(self.total_deposited),
            "totalWithdrawn": float(self.total_withdrawn),
        }


@dataclass(frozen=True)
class BetRecord:
    id: str
    user_id: str
    amount: Decimal
    choice: str
    outcome: str
    won: bool
    payout: Decimal
    level: int
    multiplier: Decimal
    win_probability: Decimal
    roll: Decimal
    seed: str
    seed_timestamp: int
    balance_after: Decimal
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "BetRecord":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            amount=Decimal(row["amount"]),
            choice=row["choice"],
            outcome=row["outcome"],
            won=bool(row["won"]),
            payout=Decimal(row["payout"]),
            level=row["level"],
            multiplier=Decimal(row["multiplier"]),
            win_probability=Decimal(row["win_probability"]),
            roll=Decimal(row["roll"]),
            seed=row["seed"],
            seed_timestamp=row["seed_timestamp"],
            balance_after=Decimal(row["balance_after"]),
            created_at=row["created_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("amount", "payout", "multiplier", "win_probability", "roll", "balance_after"):
            data[key] = float(data[key])
        # The seed is revealed through the verification endpoint only
        data.pop("seed")
        data.pop("seed_timestamp")
        return data


class Database:
    """Thread-safe SQLite database wrapper."""

    def __init__(self, db_path: Optional[Path] = None, busy_timeout: Optional[float] = None):
        self.db_path = Path(db_path) if db_path else settings.paths.get_db_path()
        self.busy_timeout = (
            busy_timeout if busy_timeout is not None else settings.paths.busy_timeout_seconds
        )
        self._local = threading.local()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initializing database at {self.db_path}")
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "connection", None)
        if conn is None:
            # isolation_level=None: transactions are opened explicitly
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout,
                check_same_thread=False,
                isolation_level=None,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode = WAL")
            self._local.connection = conn
        return conn

    def close(self):
        """Close this thread's connection."""
        conn = getattr(self._local, "connection", None)
        if conn is not None:
            conn.close()
            self._local.connection = None

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block as one atomic unit.

        Commits when the block finishes, rolls back on any exception. sqlite3
        failures (including a lock not obtained within the busy timeout) are
        raised as StorageUnavailable after the rollback.
        """
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            logger.error(f"Could not open transaction: {e}")
            raise StorageUnavailable() from e

        try:
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            self._rollback(conn)
            logger.error(f"Transaction rolled back: {e}", exc_info=True)
            raise StorageUnavailable() from e
        except BaseException:
            self._rollback(conn)
            raise

    def _rollback(self, conn: sqlite3.Connection):
        if not conn.in_transaction:
            return
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.error(f"Rollback failed: {e}")

    def _init_db(self):
        conn = self._get_connection()

        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT UNIQUE NOT NULL,
                is_demo INTEGER DEFAULT 0,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS wallets (
                user_id TEXT PRIMARY KEY,
                balance TEXT NOT NULL DEFAULT '0.00',
                total_deposited TEXT NOT NULL DEFAULT '0.00',
                total_withdrawn TEXT NOT NULL DEFAULT '0.00',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS bets (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                amount TEXT NOT NULL,
                choice TEXT NOT NULL,
                outcome TEXT NOT NULL,
                won INTEGER NOT NULL,
                payout TEXT NOT NULL,
                level INTEGER NOT NULL,
                multiplier TEXT NOT NULL,
                win_probability TEXT NOT NULL,
                roll TEXT NOT NULL,
                seed TEXT NOT NULL,
                seed_timestamp INTEGER NOT NULL,
                balance_after TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_bets_user_created
                ON bets (user_id, created_at);

            CREATE TRIGGER IF NOT EXISTS bets_append_only_update
                BEFORE UPDATE ON bets
                BEGIN SELECT RAISE(ABORT, 'bets are append-only'); END;

            CREATE TRIGGER IF NOT EXISTS bets_append_only_delete
                BEFORE DELETE ON bets
                BEGIN SELECT RAISE(ABORT, 'bets are append-only'); END;

            CREATE TABLE IF NOT EXISTS transactions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                type TEXT NOT NULL,
                amount TEXT NOT NULL,
                status TEXT NOT NULL,
                external_id TEXT,
                pix_key TEXT,
                rejection_reason TEXT,
                approved_at TEXT,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_transactions_user
                ON transactions (user_id, created_at);

            CREATE TABLE IF NOT EXISTS system_settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            """
        )

    # ==================== Users ====================

    @storage_errors
    def get_user_by_email(self, email: str) -> Optional[Dict]:
        row = self._get_connection().execute(
            "SELECT * FROM users WHERE email = ?", (email,)
        ).fetchone()
        return dict(row) if row else None

    @storage_errors
    def get_user_by_id(self, user_id: str) -> Optional[Dict]:
        row = self._get_connection().execute(
            "SELECT * FROM users WHERE id = ?", (user_id,)
        ).fetchone()
        return dict(row) if row else None

    def get_or_create_demo_user(self, email: str, starting_balance: Decimal) -> Dict:
        """Find the demo user for an email, creating user and wallet if needed."""
        with self.transaction() as conn:
            row = conn.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
            if row:
                user = dict(row)
            else:
                user = {
                    "id": str(uuid.uuid4()),
                    "email": email,
                    "is_demo": 1,
                    "created_at": utcnow(),
                }
                conn.execute(
                    "INSERT INTO users (id, email, is_demo, created_at) VALUES (?, ?, ?, ?)",
                    (user["id"], user["email"], user["is_demo"], user["created_at"]),
                )
                logger.info(f"Created demo user: {email}")

            self.create_wallet(user["id"], starting_balance, conn=conn)

        return user

    # ==================== Wallet Store ====================

    def create_wallet(
        self, user_id: str, balance: Decimal = ZERO, conn: sqlite3.Connection = None
    ) -> WalletAccount:
        """Create the wallet for a user; an existing wallet is left untouched."""
        if conn is None:
            with self.transaction() as conn:
                return self.create_wallet(user_id, balance, conn=conn)

        now = utcnow()
        conn.execute(
            """
            INSERT OR IGNORE INTO wallets (user_id, balance, created_at, updated_at)
            VALUES (?, ?, ?, ?)
        """,
            (user_id, str(to_money(balance)), now, now),
        )
        return self.get_wallet(user_id, conn=conn)

    @storage_errors
    def get_wallet(
        self, user_id: str, conn: sqlite3.Connection = None
    ) -> Optional[WalletAccount]:
        """Get a user's wallet, or None when the user has no wallet."""
        conn = conn or self._get_connection()
        row = conn.execute("SELECT * FROM wallets WHERE user_id = ?", (user_id,)).fetchone()
        return WalletAccount.from_row(row) if row else None

    def apply_delta(
        self,
        user_id: str,
        delta: Decimal,
        expected_balance: Optional[Decimal] = None,
        conn: sqlite3.Connection = None,
        deposited: Decimal = ZERO,
        withdrawn: Decimal = ZERO,
    ) -> WalletAccount:
        """
        Add `delta` to a wallet balance.

        When `expected_balance` is given the update only applies if the stored
        balance still equals it, otherwise ConcurrencyConflict is raised.
        A delta that would make the balance negative raises InsufficientBalance.
        Balances are exact; a winning payout may carry fractions of a cent.
        `deposited` and `withdrawn` accumulate into the lifetime totals.
        """
        if conn is None:
            with self.transaction() as conn:
                return self.apply_delta(
                    user_id, delta, expected_balance, conn=conn,
                    deposited=deposited, withdrawn=withdrawn,
                )

        current = self.get_wallet(user_id, conn=conn)
        if current is None:
            raise WalletNotFound()

        if expected_balance is not None and current.balance != expected_balance:
            raise ConcurrencyConflict(user_id, expected_balance, current.balance)

        new_balance = current.balance + delta
        if new_balance < 0:
            raise InsufficientBalance()

        cursor = conn.execute(
            """
            UPDATE wallets
            SET balance = ?, total_deposited = ?, total_withdrawn = ?, updated_at = ?
            WHERE user_id = ? AND balance = ?
        """,
            (
                str(new_balance),
                str(current.total_deposited + deposited),
                str(current.total_withdrawn + withdrawn),
                utcnow(),
                user_id,
                str(current.balance),
            ),
        )
        if cursor.rowcount != 1:
            actual = self.get_wallet(user_id, conn=conn)
            raise ConcurrencyConflict(
                user_id, current.balance, actual.balance if actual else None
            )

        return self.get_wallet(user_id, conn=conn)

    # ==================== Bet Ledger ====================

    def append_bet(self, record: BetRecord, conn: sqlite3.Connection = None):
        """Append one settled wager. Ledger rows are never updated or deleted."""
        if conn is None:
            with self.transaction() as conn:
                return self.append_bet(record, conn=conn)

        conn.execute(
            """
            INSERT INTO bets (
                id, user_id, amount, choice, outcome, won, payout, level,
                multiplier, win_probability, roll, seed, seed_timestamp,
                balance_after, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
            (
                record.id,
                record.user_id,
                str(record.amount),
                record.choice,
                record.outcome,
                1 if record.won else 0,
                str(record.payout),
                record.level,
                str(record.multiplier),
                str(record.win_probability),
                str(record.roll),
                record.seed,
                record.seed_timestamp,
                str(record.balance_after),
                record.created_at,
            ),
        )

    @storage_errors
    def get_bet(self, bet_id: str) -> Optional[BetRecord]:
        row = self._get_connection().execute(
            "SELECT * FROM bets WHERE id = ?", (bet_id,)
        ).fetchone()
        return BetRecord.from_row(row) if row else None

    @storage_errors
    def get_bets(self, user_id: str, limit: int = 50) -> List[BetRecord]:
        """Get a user's most recent bets, newest first."""
        rows = self._get_connection().execute(
            """
            SELECT * FROM bets WHERE user_id = ?
            ORDER BY created_at DESC, rowid DESC LIMIT ?
        """,
            (user_id, limit),
        ).fetchall()
        return [BetRecord.from_row(row) for row in rows]

    @storage_errors
    def count_bets(self, user_id: str) -> int:
        row = self._get_connection().execute(
            "SELECT COUNT(*) FROM bets WHERE user_id = ?", (user_id,)
        ).fetchone()
        return row[0]

    @storage_errors
    def get_bet_summary(self, user_id: str) -> Dict[str, Any]:
        """Lifetime totals over all of a user's bets."""
        rows = self._get_connection().execute(
            "SELECT amount, payout, won FROM bets WHERE user_id = ?", (user_id,)
        ).fetchall()
        wagered = sum((Decimal(r["amount"]) for r in rows), ZERO)
        paid = sum((Decimal(r["payout"]) for r in rows), ZERO)
        return {
            "totalBets": len(rows),
            "wins": sum(1 for r in rows if r["won"]),
            "totalWagered": float(wagered),
            "totalPayout": float(paid),
            "netProfit": float(paid - wagered),
        }

    # ==================== Wallet Transactions ====================

    def log_transaction(
        self,
        user_id: str,
        tx_type: str,
        amount: Decimal,
        status: str,
        external_id: str = None,
        pix_key: str = None,
        conn: sqlite3.Connection = None,
    ) -> int:
        """Record a deposit or withdrawal request. Returns the transaction id."""
        if conn is None:
            with self.transaction() as conn:
                return self.log_transaction(
                    user_id, tx_type, amount, status, external_id, pix_key, conn=conn
                )

        cursor = conn.execute(
            """
            INSERT INTO transactions (user_id, type, amount, status, external_id, pix_key, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
            (user_id, tx_type, str(to_money(amount)), status, external_id, pix_key, utcnow()),
        )
        return cursor.lastrowid

    @storage_errors
    def get_transactions(self, user_id: str, limit: int = 50) -> List[Dict]:
        """Get recent transactions."""
        rows = self._get_connection().execute(
            """
            SELECT * FROM transactions WHERE user_id = ?
            ORDER BY created_at DESC, id DESC LIMIT ?
        """,
            (user_id, limit),
        ).fetchall()
        return [self._transaction_to_dict(row) for row in rows]

    @storage_errors
    def get_transactions_by_status(
        self, status: str, tx_type: str = "withdrawal", limit: int = 50
    ) -> List[Dict]:
        """Transactions of one type in one status across all users, oldest first."""
        rows = self._get_connection().execute(
            """
            SELECT * FROM transactions WHERE status = ? AND type = ?
            ORDER BY created_at ASC, id ASC LIMIT ?
        """,
            (status, tx_type, limit),
        ).fetchall()
        return [self._transaction_to_dict(row) for row in rows]

    @storage_errors
    def get_transaction(self, tx_id: int, conn: sqlite3.Connection = None) -> Optional[Dict]:
        """A single transaction row with its amount as a Decimal, or None."""
        conn = conn or self._get_connection()
        row = conn.execute("SELECT * FROM transactions WHERE id = ?", (tx_id,)).fetchone()
        if not row:
            return None
        tx = dict(row)
        tx["amount"] = Decimal(tx["amount"])
        return tx

    def set_transaction_status(
        self,
        tx_id: int,
        status: str,
        rejection_reason: str = None,
        conn: sqlite3.Connection = None,
    ) -> bool:
        """
        Move a pending transaction to its final status.

        Returns False when the row is missing or no longer pending.
        """
        if conn is None:
            with self.transaction() as conn:
                return self.set_transaction_status(tx_id, status, rejection_reason, conn=conn)

        cursor = conn.execute(
            """
            UPDATE transactions SET status = ?, rejection_reason = ?, approved_at = ?
            WHERE id = ? AND status = 'pending'
        """,
            (status, rejection_reason, utcnow(), tx_id),
        )
        return cursor.rowcount == 1

    @staticmethod
    def _transaction_to_dict(row: sqlite3.Row) -> Dict:
        tx = dict(row)
        tx["amount"] = float(Decimal(tx["amount"]))
        return tx

    # ==================== Settings ====================

    @storage_errors
    def get_setting(self, key: str) -> Optional[Any]:
        row = self._get_connection().execute(
            "SELECT value FROM system_settings WHERE key = ?", (key,)
        ).fetchone()
        if not row:
            return None
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            logger.error(f"Invalid JSON stored for setting '{key}'")
            return None

    def set_setting(self, key: str, value: Any):
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO system_settings (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
                (key, json.dumps(value), utcnow()),
            )


_db: Optional[Database] = None


def get_database() -> Database:
    """Return the process-wide database, creating it on first use."""
    global _db
    if _db is None:
        _db = Database()
    return _db
