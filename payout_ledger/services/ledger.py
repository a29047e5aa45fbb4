"""Ledger service - the only writer of vendor balances"""

import logging
import random
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Optional

from payout_ledger.config import settings
from payout_ledger.domain import balance as mutations
from payout_ledger.domain.earnings import vendor_earnings
from payout_ledger.domain.exceptions import (
    ConcurrentModification,
    DuplicateOperation,
    InvalidRequest,
    LedgerError,
    NotFound,
    VersionConflict,
)
from payout_ledger.domain.models import LedgerReceipt, OrderItem, VendorBalance
from payout_ledger.domain.stores import BalanceStore
from payout_ledger.infrastructure.observability.logging import log_ledger_operation
from payout_ledger.infrastructure.observability.metrics import (
    ledger_conflict_counter,
    record_ledger_operation,
)

logger = logging.getLogger(__name__)

# Operations allowed to open a balance record for a vendor seen for the first time
_OPENING_OPERATIONS = {mutations.CREDIT, mutations.HOLD}


def order_key(order_id: str) -> str:
    """Idempotency key under which an order's earnings are recognized (or voided)"""
    return f"order:{order_id}"


def order_hold_key(order_id: str) -> str:
    return f"order:{order_id}:hold"


class LedgerService:
    """
    Applies balance mutations with optimistic concurrency.

    Each operation reads the vendor's record, computes the new state with a
    pure function from domain.balance and writes it back conditioned on the
    version it read. A lost race re-reads and retries, up to max_attempts,
    then raises ConcurrentModification. Nothing is persisted on a failed
    attempt, so the caller may always retry the whole operation.
    """

    def __init__(
        self,
        store: BalanceStore,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        commission_rate: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.max_attempts = max_attempts or settings.ledger_max_attempts
        self.backoff_seconds = settings.ledger_retry_backoff_seconds if backoff_seconds is None else backoff_seconds
        self.commission_rate = settings.platform_commission_rate if commission_rate is None else commission_rate
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def credit(self, vendor_id: str, amount_cents: int, idempotency_key: str) -> LedgerReceipt:
        """Record finalized earnings; a repeated key is absorbed without crediting twice"""
        if not idempotency_key:
            raise InvalidRequest("credit requires an idempotency key")
        return self._mutate(mutations.CREDIT, vendor_id, amount_cents, idempotency_key)

    def reserve(self, vendor_id: str, amount_cents: int, idempotency_key: Optional[str] = None) -> LedgerReceipt:
        """Move funds from available to pending for a payout request"""
        return self._mutate(mutations.RESERVE, vendor_id, amount_cents, idempotency_key)

    def release(self, vendor_id: str, amount_cents: int, idempotency_key: Optional[str] = None) -> LedgerReceipt:
        """Return reserved funds to available"""
        return self._mutate(mutations.RELEASE, vendor_id, amount_cents, idempotency_key)

    def settle(self, vendor_id: str, amount_cents: int, idempotency_key: Optional[str] = None) -> LedgerReceipt:
        """Pay out reserved funds permanently"""
        return self._mutate(mutations.SETTLE, vendor_id, amount_cents, idempotency_key)

    def hold(self, vendor_id: str, amount_cents: int, idempotency_key: str) -> LedgerReceipt:
        """Track earnings of a paid order that is not final yet"""
        if not idempotency_key:
            raise InvalidRequest("hold requires an idempotency key")
        return self._mutate(mutations.HOLD, vendor_id, amount_cents, idempotency_key)

    def confirm_hold(self, vendor_id: str, amount_cents: int, idempotency_key: str) -> LedgerReceipt:
        if not idempotency_key:
            raise InvalidRequest("confirm_hold requires an idempotency key")
        return self._mutate(mutations.CONFIRM_HOLD, vendor_id, amount_cents, idempotency_key)

    def void_hold(self, vendor_id: str, amount_cents: int, idempotency_key: str) -> LedgerReceipt:
        if not idempotency_key:
            raise InvalidRequest("void_hold requires an idempotency key")
        return self._mutate(mutations.VOID_HOLD, vendor_id, amount_cents, idempotency_key)

    def credit_order(self, order_id: str, items: Iterable[OrderItem]) -> Dict[str, LedgerReceipt]:
        """
        Credit every vendor of a finalized order with its net earnings.

        One credit per vendor, keyed by the order id, so replaying the whole
        order notification (or resuming after a partial failure) never
        double-credits.
        """
        if not order_id:
            raise InvalidRequest("order_id is required")
        earnings = vendor_earnings(items, self.commission_rate)
        receipts = {}
        for vendor_id in sorted(earnings):
            receipts[vendor_id] = self.credit(vendor_id, earnings[vendor_id], order_key(order_id))
        return receipts

    def get_balance(self, vendor_id: str) -> VendorBalance:
        balance = self.store.get(vendor_id)
        if balance is None:
            raise NotFound(f"No balance for vendor {vendor_id}")
        return balance

    def _mutate(
        self,
        operation: str,
        vendor_id: str,
        amount_cents: int,
        idempotency_key: Optional[str],
    ) -> LedgerReceipt:
        if not vendor_id:
            raise InvalidRequest("vendor_id is required")
        mutations.validate_amount(amount_cents)
        apply = mutations.MUTATIONS[operation]

        attempt = 0
        while True:
            attempt += 1
            current = self.store.get(vendor_id)
            if current is None:
                if operation not in _OPENING_OPERATIONS:
                    record_ledger_operation(operation, "rejected")
                    raise NotFound(f"No balance for vendor {vendor_id}")
                current = VendorBalance(vendor_id=vendor_id)

            previous = self.store.get_applied(vendor_id, idempotency_key) if idempotency_key else None
            try:
                mutations.check_idempotency(previous, operation, amount_cents, idempotency_key)
                updated = apply(current, amount_cents, self.clock())
            except DuplicateOperation:
                record_ledger_operation(operation, "duplicate")
                log_ledger_operation(
                    operation, vendor_id, amount_cents, "duplicate",
                    version=current.version, idempotency_key=idempotency_key, attempts=attempt,
                )
                return LedgerReceipt(operation=operation, balance=current, applied=False)
            except LedgerError as e:
                record_ledger_operation(operation, "rejected")
                logger.info(
                    "Ledger operation rejected",
                    extra={"operation": operation, "vendor_id": vendor_id, "reason": e.code},
                )
                raise

            applied = None
            if idempotency_key:
                applied = mutations.applied_record(idempotency_key, operation, amount_cents, updated)

            try:
                self.store.save(updated, expected_version=current.version, applied=applied)
            except VersionConflict:
                ledger_conflict_counter.labels(operation=operation).inc()
                if attempt >= self.max_attempts:
                    record_ledger_operation(operation, "conflict_exhausted")
                    logger.warning(
                        "Ledger retries exhausted",
                        extra={"operation": operation, "vendor_id": vendor_id, "attempts": attempt},
                    )
                    raise ConcurrentModification(
                        f"{operation} for vendor {vendor_id} lost {attempt} consecutive races; retry later"
                    ) from None
                logger.debug(
                    "Ledger version conflict, retrying",
                    extra={"operation": operation, "vendor_id": vendor_id, "attempt": attempt},
                )
                self._backoff(attempt)
                continue

            record_ledger_operation(operation, "applied")
            log_ledger_operation(
                operation, vendor_id, amount_cents, "applied",
                version=updated.version, idempotency_key=idempotency_key, attempts=attempt,
            )
            return LedgerReceipt(operation=operation, balance=updated, applied=True)

    def _backoff(self, attempt: int) -> None:
        if self.backoff_seconds <= 0:
            return
        # Exponential backoff with jitter to avoid lockstep retries
        delay = self.backoff_seconds * (2 ** (attempt - 1))
        time.sleep(delay * (0.5 + random.random() * 0.5))
