"""
Error taxonomy shared by the settlement path and the wallet/admin endpoints.
Every error carries a machine-readable `kind` and an HTTP status.
"""


class SettlementError(Exception):
    kind = "SettlementError"
    status_code = 400
    default_message = "Request could not be processed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message, "kind": self.kind}


# Validation errors: raised before the store is touched

class InvalidAmount(SettlementError):
    kind = "InvalidAmount"
    default_message = "Invalid bet amount"


class InvalidTier(SettlementError):
    kind = "InvalidTier"
    default_message = "Invalid bet level"


class InvalidChoice(SettlementError):
    kind = "InvalidChoice"
    default_message = "Invalid choice"


class Unauthorized(SettlementError):
    kind = "Unauthorized"
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(SettlementError):
    kind = "Forbidden"
    status_code = 403
    default_message = "Not authorized"


class InvalidWithdrawal(SettlementError):
    kind = "InvalidWithdrawal"
    default_message = "PIX key is required"


class InvalidSettings(SettlementError):
    kind = "InvalidSettings"
    default_message = "Invalid game settings"


class InvalidRequest(SettlementError):
    kind = "InvalidRequest"
    default_message = "Invalid request body"


# State errors: discovered after reading the store, nothing mutated

class WalletNotFound(SettlementError):
    kind = "WalletNotFound"
    status_code = 404
    default_message = "Wallet not found"


class InsufficientBalance(SettlementError):
    kind = "InsufficientBalance"
    default_message = "Insufficient balance"


class BetNotFound(SettlementError):
    kind = "BetNotFound"
    status_code = 404
    default_message = "Bet not found"


class TransactionNotFound(SettlementError):
    kind = "TransactionNotFound"
    status_code = 404
    default_message = "Withdrawal not found"


class WithdrawalAlreadyProcessed(SettlementError):
    kind = "WithdrawalAlreadyProcessed"
    status_code = 409
    default_message = "Withdrawal has already been processed"


# Concurrency and infrastructure errors

class ConcurrencyConflict(Exception):
    """A compare-and-swap on a wallet balance found a different balance."""

    def __init__(self, user_id: str, expected, actual):
        self.user_id = user_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Balance for {user_id} changed: expected {expected}, found {actual}"
        )


class Conflict(SettlementError):
    kind = "Conflict"
    status_code = 409
    default_message = "Concurrent update detected, please retry"


class StorageUnavailable(SettlementError):
    kind = "StorageUnavailable"
    status_code = 503
    default_message = "Storage unavailable, no changes were made"
