"""
Payment link error taxonomy

Every condition the ledger can surface to a caller. All of them are expected
outcomes of a request, not crashes; each carries a stable ``code`` and the
HTTP status the API layer answers with.
"""

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base class for expected payment link conditions"""

    code = "ledger_error"
    status_code = 400

    def __init__(self, message: str, link_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.link_id = link_id

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message}


class InvalidAmount(LedgerError):
    """Amount is not a positive integer number of base units"""

    code = "invalid_amount"


class AmountTooSmallForFees(InvalidAmount):
    """Amount cannot cover the fees that would be deducted from it"""

    code = "amount_too_small_for_fees"

    def __init__(self, message: str, amount_units: int, total_fee: int):
        super().__init__(message)
        self.amount_units = amount_units
        self.total_fee = total_fee


class UnsupportedAsset(LedgerError):
    code = "unsupported_asset"


class InvalidRequest(LedgerError):
    """Required request field missing or empty"""

    code = "invalid_request"


class InvalidClaimRequest(InvalidRequest):
    code = "invalid_claim_request"


class LinkNotFound(LedgerError):
    code = "link_not_found"
    status_code = 404


class DepositAlreadyRecorded(LedgerError):
    """A different deposit reference is already attached to the link"""

    code = "deposit_already_recorded"
    status_code = 409


class DepositMissing(LedgerError):
    """Link has no recorded deposit and cannot be claimed yet"""

    code = "deposit_missing"


class AlreadyClaimed(LedgerError):
    """
    Another claim won the race for this link.

    This is a final answer: callers must not retry the claim.
    """

    code = "already_claimed"
    status_code = 409


class InsufficientBalance(LedgerError):
    """Operator-controlled account cannot cover an operation plus its fees"""

    code = "insufficient_balance"
    status_code = 402

    def __init__(self, message: str, required: int, available: int):
        super().__init__(message)
        self.required = required
        self.available = available
        self.shortfall = required - available

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"required": self.required, "available": self.available, "shortfall": self.shortfall})
        return data


class DecryptionFailed(LedgerError):
    """
    Encrypted spend key failed authentication.

    Raised for tampered ciphertext, a wrong link id or a changed application
    salt. Distinct from LinkNotFound so callers can tell corruption from absence.
    """

    code = "decryption_failed"
    status_code = 422


class SpendKeyMissing(LedgerError):
    """Link exists but carries no encrypted spend key"""

    code = "spend_key_missing"
    status_code = 404


class SpendKeyAlreadyAttached(LedgerError):
    code = "spend_key_already_attached"
    status_code = 409
