"""
Wallet bookkeeping outside the betting path: deposits, withdrawal requests
and their review by an admin.
Payments are simulated; each request is one ledger row plus one balance change
applied atomically.
"""

from decimal import Decimal
from typing import Any, Dict

from coinbet.config import settings
from coinbet.core.database import Database
from coinbet.core.exceptions import (
    ConcurrencyConflict,
    Conflict,
    InsufficientBalance,
    InvalidWithdrawal,
    TransactionNotFound,
    WalletNotFound,
    WithdrawalAlreadyProcessed,
)
from coinbet.core.logger import get_logger
from coinbet.core.money import parse_amount, to_money
from coinbet.core.rng import TrueRNG, rng

logger = get_logger("wallet")


class WalletService:
    """Manages deposits and withdrawals for user wallets."""

    def __init__(self, db: Database, rng: TrueRNG = rng):
        self.db = db
        self.rng = rng

    def _external_id(self, prefix: str) -> str:
        return f"{prefix}_{self.rng.now_ms()}_{self.rng.token()}"

    def get_wallet(self, user_id: str) -> Dict[str, Any]:
        wallet = self.db.get_wallet(user_id)
        if wallet is None:
            raise WalletNotFound()
        return wallet.to_dict()

    def deposit(self, user_id: str, amount: Any) -> Dict[str, Any]:
        """Credit a deposit. Completes immediately."""
        value = parse_amount(amount, to_money(settings.wallet.min_deposit), label="deposit")
        external_id = self._external_id("PIX")

        with self.db.transaction() as conn:
            if self.db.get_wallet(user_id, conn=conn) is None:
                raise WalletNotFound()
            tx_id = self.db.log_transaction(
                user_id, "deposit", value, "completed", external_id=external_id, conn=conn
            )
            wallet = self.db.apply_delta(user_id, value, conn=conn, deposited=value)

        logger.info(
            "Deposit completed",
            extra={"user_id": user_id, "amount": str(value), "transaction_id": tx_id},
        )
        return {"success": True, "transactionId": tx_id, "newBalance": float(wallet.balance)}

    def withdraw(self, user_id: str, amount: Any, pix_key: Any) -> Dict[str, Any]:
        """
        Request a withdrawal.

        The balance is deducted immediately and the request stays pending until
        an admin approves or rejects it.
        """
        value = parse_amount(amount, to_money(settings.wallet.min_withdrawal), label="withdrawal")
        if not isinstance(pix_key, str) or not pix_key.strip():
            raise InvalidWithdrawal()
        external_id = self._external_id("WITHDRAWAL")

        try:
            with self.db.transaction() as conn:
                current = self.db.get_wallet(user_id, conn=conn)
                if current is None:
                    raise WalletNotFound()
                if current.balance < value:
                    raise InsufficientBalance()
                tx_id = self.db.log_transaction(
                    user_id,
                    "withdrawal",
                    value,
                    "pending",
                    external_id=external_id,
                    pix_key=pix_key.strip(),
                    conn=conn,
                )
                wallet = self.db.apply_delta(
                    user_id, -value, expected_balance=current.balance, conn=conn, withdrawn=value
                )
        except ConcurrencyConflict as e:
            raise Conflict() from e

        logger.info(
            "Withdrawal requested",
            extra={"user_id": user_id, "amount": str(value), "transaction_id": tx_id},
        )
        return {"success": True, "transactionId": tx_id, "newBalance": float(wallet.balance)}

    # ==================== Withdrawal Review ====================

    def _pending_withdrawal(self, tx_id: int, conn) -> Dict[str, Any]:
        tx = self.db.get_transaction(tx_id, conn=conn)
        if tx is None or tx["type"] != "withdrawal":
            raise TransactionNotFound()
        if tx["status"] != "pending":
            raise WithdrawalAlreadyProcessed(f"Withdrawal is already {tx['status']}")
        return tx

    def approve_withdrawal(self, tx_id: int, admin: str) -> Dict[str, Any]:
        """Mark a pending withdrawal as paid out. The balance was deducted on request."""
        with self.db.transaction() as conn:
            tx = self._pending_withdrawal(tx_id, conn)
            if not self.db.set_transaction_status(tx_id, "completed", conn=conn):
                raise WithdrawalAlreadyProcessed()

        logger.info(
            "Withdrawal approved",
            extra={"user_id": tx["user_id"], "transaction_id": tx_id, "admin": admin},
        )
        return {"success": True, "transactionId": tx_id, "status": "completed"}

    def reject_withdrawal(self, tx_id: int, reason: Any, admin: str) -> Dict[str, Any]:
        """
        Reject a pending withdrawal and refund its amount.

        The status change and the refund commit together. The refund also
        takes the amount back out of the lifetime withdrawn total.
        """
        if not isinstance(reason, str) or not reason.strip():
            raise InvalidWithdrawal("A rejection reason is required")

        with self.db.transaction() as conn:
            tx = self._pending_withdrawal(tx_id, conn)
            if not self.db.set_transaction_status(
                tx_id, "rejected", rejection_reason=reason.strip(), conn=conn
            ):
                raise WithdrawalAlreadyProcessed()
            wallet = self.db.apply_delta(
                tx["user_id"], tx["amount"], conn=conn, withdrawn=-tx["amount"]
            )

        logger.info(
            "Withdrawal rejected",
            extra={
                "user_id": tx["user_id"],
                "transaction_id": tx_id,
                "amount": str(tx["amount"]),
                "admin": admin,
            },
        )
        return {
            "success": True,
            "transactionId": tx_id,
            "status": "rejected",
            "newBalance": float(wallet.balance),
        }


def demo_starting_balance() -> Decimal:
    return to_money(max(settings.wallet.demo_balance, 0))
