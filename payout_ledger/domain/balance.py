"""Balance mutations - pure, invariant-checked transitions of a VendorBalance

Every function here takes the balance as read from the store and returns the
balance to write back. Nothing is persisted; the ledger service owns the
read-modify-write loop and stores the idempotency key of each applied
operation alongside the balance write.

Sub-ledgers:
    available  -- withdrawable now
    pending    -- reserved against open payout requests
    held       -- paid orders not yet finalized (not yet earned)

    credit        : earnings += a, available += a
    reserve       : available -> pending
    release       : pending -> available
    settle        : pending -> withdrawn
    hold          : held += a
    confirm_hold  : held -> available, earnings += a
    void_hold     : held -= a
"""

from dataclasses import replace
from datetime import datetime
from typing import List, Optional

from payout_ledger.domain.exceptions import (
    DuplicateOperation,
    IdempotencyConflict,
    InsufficientFunds,
    InsufficientHold,
    InsufficientReserve,
    InvalidAmount,
    InvariantViolation,
)
from payout_ledger.domain.models import AppliedOperation, VendorBalance

CREDIT = "credit"
RESERVE = "reserve"
RELEASE = "release"
SETTLE = "settle"
HOLD = "hold"
CONFIRM_HOLD = "confirm_hold"
VOID_HOLD = "void_hold"


def validate_amount(amount_cents: int) -> None:
    """Amounts are positive integers in minor units"""
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise InvalidAmount(f"Amount must be an integer number of minor units, got {amount_cents!r}")
    if amount_cents <= 0:
        raise InvalidAmount(f"Amount must be positive, got {amount_cents}")


def invariant_violations(balance: VendorBalance) -> List[str]:
    """Return the invariants the balance breaks (empty when consistent)"""
    problems = []
    monetary = {
        "available_balance_cents": balance.available_balance_cents,
        "pending_balance_cents": balance.pending_balance_cents,
        "held_balance_cents": balance.held_balance_cents,
        "total_earnings_cents": balance.total_earnings_cents,
        "total_withdrawn_cents": balance.total_withdrawn_cents,
    }
    for name, value in monetary.items():
        if value < 0:
            problems.append(f"{name} is negative ({value})")

    if balance.available_balance_cents + balance.pending_balance_cents > balance.total_earnings_cents:
        problems.append("available + pending exceeds total earnings")
    if balance.total_withdrawn_cents > balance.total_earnings_cents:
        problems.append("total withdrawn exceeds total earnings")

    # Conservation: every earned unit is available, reserved or withdrawn
    accounted = (
        balance.available_balance_cents
        + balance.pending_balance_cents
        + balance.total_withdrawn_cents
    )
    if accounted != balance.total_earnings_cents:
        problems.append(
            f"available + pending + withdrawn ({accounted}) != total earnings "
            f"({balance.total_earnings_cents})"
        )
    return problems


def check_invariants(balance: VendorBalance) -> None:
    problems = invariant_violations(balance)
    if problems:
        raise InvariantViolation(f"Vendor {balance.vendor_id}: " + "; ".join(problems))


def check_idempotency(
    previous: Optional[AppliedOperation],
    operation: str,
    amount_cents: int,
    key: Optional[str],
) -> None:
    """
    Compare an operation against whatever was already applied under its key.

    Raises:
        DuplicateOperation: Same operation and amount, already applied
        IdempotencyConflict: Key already spent on a different operation or amount
    """
    if key is None or previous is None:
        return
    if previous.operation == operation and previous.amount_cents == amount_cents:
        raise DuplicateOperation(key)
    raise IdempotencyConflict(
        f"Key {key} was already used for {previous.operation} of {previous.amount_cents}, "
        f"cannot reuse it for {operation} of {amount_cents}"
    )


def applied_record(key: str, operation: str, amount_cents: int, balance: VendorBalance) -> AppliedOperation:
    """Key record written together with the balance it produced"""
    return AppliedOperation(
        key=key,
        operation=operation,
        amount_cents=amount_cents,
        version=balance.version,
        applied_at=balance.updated_at,
    )


def _commit(balance: VendorBalance, now: datetime, **changes) -> VendorBalance:
    updated = replace(balance, version=balance.version + 1, updated_at=now, **changes)
    check_invariants(updated)
    return updated


def apply_credit(balance: VendorBalance, amount_cents: int, now: datetime) -> VendorBalance:
    validate_amount(amount_cents)
    return _commit(
        balance,
        now,
        available_balance_cents=balance.available_balance_cents + amount_cents,
        total_earnings_cents=balance.total_earnings_cents + amount_cents,
    )


def apply_reserve(balance: VendorBalance, amount_cents: int, now: datetime) -> VendorBalance:
    validate_amount(amount_cents)
    if balance.available_balance_cents < amount_cents:
        raise InsufficientFunds(balance.vendor_id, amount_cents, balance.available_balance_cents)
    return _commit(
        balance,
        now,
        available_balance_cents=balance.available_balance_cents - amount_cents,
        pending_balance_cents=balance.pending_balance_cents + amount_cents,
    )


def apply_release(balance: VendorBalance, amount_cents: int, now: datetime) -> VendorBalance:
    validate_amount(amount_cents)
    if balance.pending_balance_cents < amount_cents:
        raise InsufficientReserve(
            f"Cannot release {amount_cents} for vendor {balance.vendor_id}: "
            f"only {balance.pending_balance_cents} reserved"
        )
    return _commit(
        balance,
        now,
        available_balance_cents=balance.available_balance_cents + amount_cents,
        pending_balance_cents=balance.pending_balance_cents - amount_cents,
    )


def apply_settle(balance: VendorBalance, amount_cents: int, now: datetime) -> VendorBalance:
    validate_amount(amount_cents)
    if balance.pending_balance_cents < amount_cents:
        raise InsufficientReserve(
            f"Cannot settle {amount_cents} for vendor {balance.vendor_id}: "
            f"only {balance.pending_balance_cents} reserved"
        )
    return _commit(
        balance,
        now,
        pending_balance_cents=balance.pending_balance_cents - amount_cents,
        total_withdrawn_cents=balance.total_withdrawn_cents + amount_cents,
        last_payout_at=now,
    )


def apply_hold(balance: VendorBalance, amount_cents: int, now: datetime) -> VendorBalance:
    validate_amount(amount_cents)
    return _commit(
        balance,
        now,
        held_balance_cents=balance.held_balance_cents + amount_cents,
    )


def apply_confirm_hold(balance: VendorBalance, amount_cents: int, now: datetime) -> VendorBalance:
    validate_amount(amount_cents)
    if balance.held_balance_cents < amount_cents:
        raise InsufficientHold(
            f"Cannot confirm {amount_cents} for vendor {balance.vendor_id}: "
            f"only {balance.held_balance_cents} held"
        )
    return _commit(
        balance,
        now,
        held_balance_cents=balance.held_balance_cents - amount_cents,
        available_balance_cents=balance.available_balance_cents + amount_cents,
        total_earnings_cents=balance.total_earnings_cents + amount_cents,
    )


def apply_void_hold(balance: VendorBalance, amount_cents: int, now: datetime) -> VendorBalance:
    validate_amount(amount_cents)
    if balance.held_balance_cents < amount_cents:
        raise InsufficientHold(
            f"Cannot void {amount_cents} for vendor {balance.vendor_id}: "
            f"only {balance.held_balance_cents} held"
        )
    return _commit(
        balance,
        now,
        held_balance_cents=balance.held_balance_cents - amount_cents,
    )


MUTATIONS = {
    CREDIT: apply_credit,
    RESERVE: apply_reserve,
    RELEASE: apply_release,
    SETTLE: apply_settle,
    HOLD: apply_hold,
    CONFIRM_HOLD: apply_confirm_hold,
    VOID_HOLD: apply_void_hold,
}
