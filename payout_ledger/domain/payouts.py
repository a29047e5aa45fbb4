"""Payout request state machine and request validation"""

import re
from typing import Any, Dict, Iterable, Mapping, Optional

from payout_ledger.domain.exceptions import (
    ImmutableFieldError,
    InvalidRequest,
    InvalidTransition,
    MissingReason,
    MissingReference,
)
from payout_ledger.domain.models import (
    BankTransferDetails,
    MobileMoneyDetails,
    PaymentMethod,
    PayoutDestination,
    PayoutRequest,
    PayoutStatus,
    PayPalDetails,
    StatusTotals,
)

APPROVE = "approve"
MARK_PROCESSING = "mark_processing"
REJECT = "reject"
COMPLETE = "complete"

# action -> (allowed source states, target state)
TRANSITIONS = {
    APPROVE: ({PayoutStatus.PENDING}, PayoutStatus.APPROVED),
    MARK_PROCESSING: ({PayoutStatus.APPROVED}, PayoutStatus.PROCESSING),
    REJECT: ({PayoutStatus.PENDING, PayoutStatus.APPROVED}, PayoutStatus.REJECTED),
    COMPLETE: ({PayoutStatus.APPROVED, PayoutStatus.PROCESSING}, PayoutStatus.COMPLETED),
}

TERMINAL_STATES = frozenset({PayoutStatus.REJECTED, PayoutStatus.COMPLETED})

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_REQUIRED_FIELDS = {
    PaymentMethod.BANK_TRANSFER: ("account_name", "account_number", "bank_name"),
    PaymentMethod.MOBILE_MONEY: ("provider", "phone_number", "account_name"),
    PaymentMethod.PAYPAL: ("email",),
}


def is_terminal(status: PayoutStatus) -> bool:
    return status in TERMINAL_STATES


def assert_transition(request: PayoutRequest, action: str) -> PayoutStatus:
    """Return the target status of action, or raise InvalidTransition"""
    sources, target = TRANSITIONS[action]
    if request.status not in sources:
        raise InvalidTransition(
            f"Cannot {action.replace('_', ' ')} payout {request.id} in status {request.status.value}"
        )
    return target


def require_reason(reason: Optional[str]) -> str:
    if reason is None or not reason.strip():
        raise MissingReason("A rejection reason is required")
    return reason.strip()


def require_reference(reference: Optional[str]) -> str:
    if reference is None or not reference.strip():
        raise MissingReference("A transaction reference is required")
    return reference.strip()


def parse_payment_method(value: Any) -> PaymentMethod:
    try:
        return PaymentMethod(value)
    except ValueError:
        allowed = ", ".join(m.value for m in PaymentMethod)
        raise InvalidRequest(f"Unsupported payment method {value!r}; expected one of {allowed}") from None


def parse_destination(method: PaymentMethod, details: Mapping[str, Any]) -> PayoutDestination:
    """
    Validate destination details against the shape the payment method needs.

    Bank transfer needs account name/number and bank name (bank code optional),
    mobile money needs provider, phone number and account name, PayPal needs an
    email address. Values are stripped; blanks count as missing.

    Raises:
        InvalidRequest: On missing or malformed fields
    """
    if not isinstance(details, Mapping):
        raise InvalidRequest("Destination details must be an object")

    cleaned: Dict[str, str] = {}
    for name, value in details.items():
        if value is None:
            continue
        if not isinstance(value, str):
            raise InvalidRequest(f"Destination field {name} must be a string")
        if value.strip():
            cleaned[name] = value.strip()

    missing = [name for name in _REQUIRED_FIELDS[method] if name not in cleaned]
    if missing:
        raise InvalidRequest(
            f"{method.value} payouts require {', '.join(_REQUIRED_FIELDS[method])}; missing {', '.join(missing)}"
        )

    if method is PaymentMethod.BANK_TRANSFER:
        return BankTransferDetails(
            account_name=cleaned["account_name"],
            account_number=cleaned["account_number"],
            bank_name=cleaned["bank_name"],
            bank_code=cleaned.get("bank_code"),
        )
    if method is PaymentMethod.MOBILE_MONEY:
        return MobileMoneyDetails(
            provider=cleaned["provider"],
            phone_number=cleaned["phone_number"],
            account_name=cleaned["account_name"],
        )

    email = cleaned["email"]
    if not _EMAIL_RE.match(email):
        raise InvalidRequest(f"Invalid PayPal email address: {email}")
    return PayPalDetails(email=email)


def validate_payout_amount(amount_cents: int, minimum_payout_cents: int) -> None:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise InvalidRequest(f"Payout amount must be an integer number of minor units, got {amount_cents!r}")
    if amount_cents < minimum_payout_cents:
        raise InvalidRequest(
            f"Minimum payout is {minimum_payout_cents}, requested {amount_cents}"
        )


def assert_write_once_unchanged(current: PayoutRequest, updated: PayoutRequest) -> None:
    """Amount, destination and method are fixed at creation"""
    for name in ("vendor_id", "amount_cents", "payment_method", "destination", "requested_at"):
        if getattr(current, name) != getattr(updated, name):
            raise ImmutableFieldError(f"Payout {current.id}: {name} cannot be changed after creation")
    # Reference and reason are immutable once recorded
    for name in ("transaction_reference", "rejection_reason"):
        before = getattr(current, name)
        if before is not None and getattr(updated, name) != before:
            raise ImmutableFieldError(f"Payout {current.id}: {name} cannot be changed once set")


def assert_terminal_fields(request: PayoutRequest) -> None:
    """A completed payout carries a reference, a rejected one carries a reason"""
    if request.status is PayoutStatus.COMPLETED and not request.transaction_reference:
        raise MissingReference(f"Payout {request.id} cannot be completed without a transaction reference")
    if request.status is PayoutStatus.REJECTED and not request.rejection_reason:
        raise MissingReason(f"Payout {request.id} cannot be rejected without a reason")


def summarize(requests: Iterable[PayoutRequest]) -> Dict[PayoutStatus, StatusTotals]:
    """Per-status count and total amount, every status present"""
    totals = {status: StatusTotals() for status in PayoutStatus}
    for request in requests:
        current = totals[request.status]
        totals[request.status] = StatusTotals(
            count=current.count + 1,
            amount_cents=current.amount_cents + request.amount_cents,
        )
    return totals
