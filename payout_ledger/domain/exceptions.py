"""Domain-specific exceptions"""

from typing import Optional


class LedgerError(Exception):
    """Base exception for the ledger and payout workflow"""

    code = "ledger_error"


class InvalidAmount(LedgerError):
    """Amount is zero, negative or not an integer number of minor units"""

    code = "invalid_amount"


class InvalidRequest(LedgerError):
    """Payout request failed validation (minimum amount, destination shape)"""

    code = "invalid_request"


class ImmutableFieldError(InvalidRequest):
    """Attempt to change a write-once field of a payout request"""

    code = "immutable_field"


class InsufficientFunds(LedgerError):
    """Available balance cannot cover the requested reservation"""

    code = "insufficient_funds"

    def __init__(self, vendor_id: str, requested_cents: int, available_cents: int):
        self.vendor_id = vendor_id
        self.requested_cents = requested_cents
        self.available_cents = available_cents
        super().__init__(
            f"Insufficient funds for vendor {vendor_id}: requested {requested_cents}, "
            f"available {available_cents}"
        )


class InsufficientReserve(LedgerError):
    """Pending (reserved) balance cannot cover a release or settlement"""

    code = "insufficient_reserve"


class InsufficientHold(LedgerError):
    """Held order balance cannot cover a confirm or void"""

    code = "insufficient_hold"


class DuplicateOperation(LedgerError):
    """Idempotency key was already applied; absorbed by the ledger service"""

    code = "duplicate_operation"

    def __init__(self, idempotency_key: str):
        self.idempotency_key = idempotency_key
        super().__init__(f"Operation {idempotency_key} already applied")


class IdempotencyConflict(LedgerError):
    """Idempotency key reused with a different operation or amount"""

    code = "idempotency_conflict"


class MissingReason(LedgerError):
    """Rejection attempted without a reason"""

    code = "missing_reason"


class MissingReference(LedgerError):
    """Completion attempted without a transaction reference"""

    code = "missing_reference"


class ConcurrentModification(LedgerError):
    """Optimistic concurrency retries exhausted; safe to retry the whole operation"""

    code = "concurrent_modification"


class NotFound(LedgerError):
    """Unknown vendor balance or payout request"""

    code = "not_found"


class InvalidTransition(LedgerError):
    """Payout request status does not allow the requested action"""

    code = "invalid_transition"


class Forbidden(LedgerError):
    """Administrator lacks the capability required for the action"""

    code = "forbidden"


class InvariantViolation(LedgerError):
    """A mutation would break a balance invariant; never persisted"""

    code = "invariant_violation"


class VersionConflict(Exception):
    """Raised by stores when a conditional write loses a race.

    Internal to the persistence seam: services translate exhausted
    retries into ConcurrentModification.
    """

    def __init__(self, key: str, expected_version: Optional[int] = None):
        self.key = key
        self.expected_version = expected_version
        super().__init__(f"Version conflict on {key} (expected version {expected_version})")
