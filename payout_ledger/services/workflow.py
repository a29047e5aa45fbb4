"""Payout workflow - drives payout requests through review and settlement"""

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from payout_ledger.config import settings
from payout_ledger.domain.authorization import AdminDirectory, Capability
from payout_ledger.domain.exceptions import (
    ConcurrentModification,
    IdempotencyConflict,
    InvalidRequest,
    InvalidTransition,
    LedgerError,
    NotFound,
    VersionConflict,
)
from payout_ledger.domain.models import LedgerReceipt, PayoutRequest, PayoutStatus, StatusTotals
from payout_ledger.domain.payouts import (
    APPROVE,
    COMPLETE,
    MARK_PROCESSING,
    REJECT,
    assert_terminal_fields,
    assert_transition,
    assert_write_once_unchanged,
    parse_destination,
    parse_payment_method,
    require_reason,
    require_reference,
    summarize,
    validate_payout_amount,
)
from payout_ledger.domain.stores import PayoutRequestStore
from payout_ledger.infrastructure.observability.logging import log_payout_transition
from payout_ledger.infrastructure.observability.metrics import record_payout_transition
from payout_ledger.services.ledger import LedgerService

logger = logging.getLogger(__name__)

LedgerCall = Callable[[str, int, Optional[str]], LedgerReceipt]


def reserve_key(request_id: str) -> str:
    return f"payout:{request_id}:reserve"


def resolve_key(request_id: str) -> str:
    """Shared by release and settle, so a request is resolved exactly one way"""
    return f"payout:{request_id}:resolve"


class PayoutWorkflow:
    """
    Payout request state machine.

        pending --approve--> approved --mark_processing--> processing --complete--> completed
        pending --reject---> rejected
        approved --reject--> rejected
        approved --complete--> completed

    Transitions that move money first claim the request with a version-checked
    write (resolving=action), then make exactly one keyed ledger call, then
    persist the new status and drop the claim. A competing admin action loses
    the version check or sees the claim and is refused, so funds can never be
    released while the request moves on. If the ledger call is refused the
    claim is dropped and the request is left as it was; if anything fails
    after the ledger call, repeating the same action replays it as an
    absorbed duplicate and finishes the job.
    """

    def __init__(
        self,
        ledger: LedgerService,
        requests: PayoutRequestStore,
        admins: AdminDirectory,
        minimum_payout_cents: Optional[int] = None,
        max_attempts: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.ledger = ledger
        self.requests = requests
        self.admins = admins
        self.minimum_payout_cents = (
            settings.minimum_payout_cents if minimum_payout_cents is None else minimum_payout_cents
        )
        self.max_attempts = max_attempts or settings.workflow_max_attempts
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.id_factory = id_factory or (lambda: str(uuid.uuid4()))

    # Vendor actions

    def request_payout(
        self,
        vendor_id: str,
        amount_cents: int,
        payment_method: Any,
        destination: Mapping[str, Any],
        vendor_name: Optional[str] = None,
        vendor_email: Optional[str] = None,
    ) -> PayoutRequest:
        """
        Reserve funds and open a pending payout request.

        Raises:
            InvalidRequest: Below the minimum or destination details incomplete
            InsufficientFunds: Available balance cannot cover the amount
            NotFound: Vendor has never been credited
        """
        if not vendor_id:
            raise InvalidRequest("vendor_id is required")
        method = parse_payment_method(payment_method)
        validate_payout_amount(amount_cents, self.minimum_payout_cents)
        details = parse_destination(method, destination)

        request_id = self.id_factory()
        self._with_retries(
            "request_payout",
            lambda: self.ledger.reserve(vendor_id, amount_cents, reserve_key(request_id)),
        )

        request = PayoutRequest(
            id=request_id,
            vendor_id=vendor_id,
            vendor_name=vendor_name,
            vendor_email=vendor_email,
            amount_cents=amount_cents,
            payment_method=method,
            destination=details,
            status=PayoutStatus.PENDING,
            requested_at=self.clock(),
            version=1,
        )
        try:
            self.requests.add(request)
        except Exception as persist_error:
            # Funds are reserved but no request exists to release them later
            context = {"request_id": request_id, "vendor_id": vendor_id, "amount_cents": amount_cents}
            logger.error("Payout request not persisted, releasing reservation", extra=context)
            try:
                self.ledger.release(vendor_id, amount_cents, resolve_key(request_id))
            except Exception as release_error:
                logger.error("Releasing orphaned reservation failed", extra=context, exc_info=True)
                raise persist_error from release_error
            raise

        record_payout_transition("requested", amount_cents)
        log_payout_transition(request_id, vendor_id, "request_payout", None, PayoutStatus.PENDING.value, amount_cents)
        return request

    # Admin actions

    def approve(self, request_id: str, admin_id: str, notes: Optional[str] = None) -> PayoutRequest:
        self.admins.require(admin_id, Capability.APPROVE_PAYOUTS)
        return self._transition(request_id, APPROVE, admin_id, notes=notes)

    def mark_processing(self, request_id: str, admin_id: str, notes: Optional[str] = None) -> PayoutRequest:
        """Record that the operator has started the transfer on the payment rail"""
        self.admins.require(admin_id, Capability.APPROVE_PAYOUTS)
        return self._transition(request_id, MARK_PROCESSING, admin_id, notes=notes)

    def reject(self, request_id: str, admin_id: str, reason: Optional[str]) -> PayoutRequest:
        """Release the reserved funds, then mark the request rejected"""
        self.admins.require(admin_id, Capability.APPROVE_PAYOUTS)
        reason = require_reason(reason)
        return self._transition(
            request_id, REJECT, admin_id,
            ledger_call=self.ledger.release,
            rejection_reason=reason,
        )

    def complete(
        self,
        request_id: str,
        admin_id: str,
        transaction_reference: Optional[str],
        notes: Optional[str] = None,
    ) -> PayoutRequest:
        """Settle the reserved funds, then mark the request completed"""
        self.admins.require(admin_id, Capability.APPROVE_PAYOUTS)
        reference = require_reference(transaction_reference)
        return self._transition(
            request_id, COMPLETE, admin_id,
            ledger_call=self.ledger.settle,
            notes=notes,
            transaction_reference=reference,
        )

    # Queries

    def get_payout_request(self, request_id: str, admin_id: Optional[str]) -> PayoutRequest:
        """Full request including destination details, for finance staff"""
        self.admins.require(admin_id, Capability.VIEW_FINANCE)
        return self._load(request_id)

    def list_payout_requests(
        self,
        admin_id: Optional[str],
        vendor_id: Optional[str] = None,
        status: Any = None,
    ) -> List[PayoutRequest]:
        self.admins.require(admin_id, Capability.VIEW_FINANCE)
        return self.requests.list(vendor_id=vendor_id, status=self._parse_status(status))

    def summarize_payouts(self, admin_id: Optional[str], vendor_id: Optional[str] = None) -> Dict[PayoutStatus, StatusTotals]:
        self.admins.require(admin_id, Capability.VIEW_FINANCE)
        return summarize(self.requests.list(vendor_id=vendor_id))

    def list_vendor_payouts(self, vendor_id: str, status: Any = None) -> List[PayoutRequest]:
        """A vendor's own requests; the caller has already authenticated the vendor"""
        return self.requests.list(vendor_id=vendor_id, status=self._parse_status(status))

    # Internals

    def _load(self, request_id: str) -> PayoutRequest:
        request = self.requests.get(request_id)
        if request is None:
            raise NotFound(f"Payout request {request_id} not found")
        return request

    def _transition(
        self,
        request_id: str,
        action: str,
        admin_id: str,
        ledger_call: Optional[LedgerCall] = None,
        notes: Optional[str] = None,
        **fields: Any,
    ) -> PayoutRequest:
        for attempt in range(1, self.max_attempts + 1):
            current = self._load(request_id)
            target = assert_transition(current, action)
            if current.resolving is not None and current.resolving != action:
                raise InvalidTransition(
                    f"Payout {current.id} is being resolved by {current.resolving}, cannot {action}"
                )

            if ledger_call is not None:
                if current.resolving is None:
                    # Claim first: any competing transition now loses its version check
                    claimed = replace(current, resolving=action, version=current.version + 1)
                    try:
                        self.requests.save(claimed, expected_version=current.version)
                    except VersionConflict:
                        self._log_conflict(request_id, action, attempt)
                        continue
                    current = claimed

                try:
                    ledger_call(current.vendor_id, current.amount_cents, resolve_key(current.id))
                except ConcurrentModification:
                    if attempt >= self.max_attempts:
                        raise
                    continue
                except IdempotencyConflict as e:
                    self._release_claim(current)
                    raise InvalidTransition(
                        f"Payout {current.id} was already resolved by another action"
                    ) from e
                except LedgerError:
                    # Nothing moved; hand the request back in its previous state
                    self._release_claim(current)
                    raise

            now = self.clock()
            updated = replace(
                current,
                status=target,
                processed_at=current.processed_at or now,
                processed_by=admin_id,
                notes=notes if notes else current.notes,
                resolving=None,
                version=current.version + 1,
                **fields,
            )
            assert_write_once_unchanged(current, updated)
            assert_terminal_fields(updated)

            try:
                self.requests.save(updated, expected_version=current.version)
            except VersionConflict:
                self._log_conflict(request_id, action, attempt)
                continue

            record_payout_transition(action)
            log_payout_transition(
                current.id, current.vendor_id, action,
                current.status.value, target.value, current.amount_cents, actor_id=admin_id,
            )
            return updated

        raise ConcurrentModification(f"Could not {action} payout {request_id} after {self.max_attempts} attempts")

    def _release_claim(self, claimed: PayoutRequest) -> None:
        try:
            self.requests.save(
                replace(claimed, resolving=None, version=claimed.version + 1),
                expected_version=claimed.version,
            )
        except VersionConflict:
            # A concurrent attempt at the same action already moved the request on
            logger.warning(
                "Could not release payout claim",
                extra={"request_id": claimed.id, "action": claimed.resolving},
            )

    def _log_conflict(self, request_id: str, action: str, attempt: int) -> None:
        logger.debug(
            "Payout request changed concurrently, retrying",
            extra={"request_id": request_id, "action": action, "attempt": attempt},
        )

    def _with_retries(self, action: str, call: Callable[[], LedgerReceipt]) -> LedgerReceipt:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return call()
            except ConcurrentModification:
                if attempt >= self.max_attempts:
                    raise
                logger.debug("Ledger contention, retrying", extra={"action": action, "attempt": attempt})
        raise ConcurrentModification(f"{action} exhausted {self.max_attempts} attempts")

    @staticmethod
    def _parse_status(status: Any) -> Optional[PayoutStatus]:
        if status is None or isinstance(status, PayoutStatus):
            return status
        try:
            return PayoutStatus(status)
        except ValueError:
            raise InvalidRequest(f"Unknown payout status {status!r}") from None
