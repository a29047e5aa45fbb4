"""Data access layer for balances and payout requests

Both repositories open a short-lived session per call, so one instance can be
shared across concurrent request handlers. Writes are compare-and-swap on the
version column. Idempotency keys live in their own table, so a balance row
stays the same size however many orders a vendor has been credited for.
"""

from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from payout_ledger.domain.exceptions import VersionConflict
from payout_ledger.domain.models import (
    AppliedOperation,
    BankTransferDetails,
    MobileMoneyDetails,
    PaymentMethod,
    PayoutDestination,
    PayoutRequest,
    PayoutStatus,
    PayPalDetails,
    VendorBalance,
)
from payout_ledger.infrastructure.database.models import (
    AppliedOperationRecord,
    PayoutRequestRecord,
    VendorBalanceRecord,
)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _destination_from_json(method: PaymentMethod, raw: Dict[str, Any]) -> PayoutDestination:
    if method is PaymentMethod.BANK_TRANSFER:
        return BankTransferDetails(**raw)
    if method is PaymentMethod.MOBILE_MONEY:
        return MobileMoneyDetails(**raw)
    return PayPalDetails(**raw)


class BalanceRepository:
    """Repository for vendor balances and the idempotency keys they consumed"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get(self, vendor_id: str) -> Optional[VendorBalance]:
        """Fetch the current balance record"""
        with self.session_factory() as db:
            row = db.execute(
                select(VendorBalanceRecord).where(VendorBalanceRecord.vendor_id == vendor_id)
            ).scalar_one_or_none()
            if row is None:
                return None
            return VendorBalance(
                vendor_id=row.vendor_id,
                available_balance_cents=row.available_balance_cents,
                pending_balance_cents=row.pending_balance_cents,
                held_balance_cents=row.held_balance_cents,
                total_earnings_cents=row.total_earnings_cents,
                total_withdrawn_cents=row.total_withdrawn_cents,
                version=row.version,
                updated_at=_as_utc(row.updated_at),
                last_payout_at=_as_utc(row.last_payout_at),
            )

    def get_applied(self, vendor_id: str, key: str) -> Optional[AppliedOperation]:
        """Fetch the operation recorded under an idempotency key"""
        with self.session_factory() as db:
            row = db.get(AppliedOperationRecord, (vendor_id, key))
            if row is None:
                return None
            return AppliedOperation(
                key=row.idempotency_key,
                operation=row.operation,
                amount_cents=row.amount_cents,
                version=row.balance_version,
                applied_at=_as_utc(row.applied_at),
            )

    def save(
        self,
        balance: VendorBalance,
        expected_version: int,
        applied: Optional[AppliedOperation] = None,
    ) -> None:
        """
        Insert (expected_version 0) or conditionally update the balance row,
        recording the consumed idempotency key in the same transaction.

        A key already on file violates the primary key and is reported as a
        version conflict; the retry then sees it as a duplicate.
        """
        values = {
            "available_balance_cents": balance.available_balance_cents,
            "pending_balance_cents": balance.pending_balance_cents,
            "held_balance_cents": balance.held_balance_cents,
            "total_earnings_cents": balance.total_earnings_cents,
            "total_withdrawn_cents": balance.total_withdrawn_cents,
            "version": balance.version,
            "last_payout_at": balance.last_payout_at,
            "updated_at": balance.updated_at,
        }
        with self.session_factory() as db:
            if expected_version == 0:
                db.add(VendorBalanceRecord(vendor_id=balance.vendor_id, **values))
            else:
                result = db.execute(
                    update(VendorBalanceRecord)
                    .where(
                        VendorBalanceRecord.vendor_id == balance.vendor_id,
                        VendorBalanceRecord.version == expected_version,
                    )
                    .values(**values)
                )
                if result.rowcount != 1:
                    db.rollback()
                    raise VersionConflict(f"vendor_balance:{balance.vendor_id}", expected_version)

            if applied is not None:
                db.add(
                    AppliedOperationRecord(
                        vendor_id=balance.vendor_id,
                        idempotency_key=applied.key,
                        operation=applied.operation,
                        amount_cents=applied.amount_cents,
                        balance_version=applied.version,
                        applied_at=applied.applied_at,
                    )
                )
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise VersionConflict(f"vendor_balance:{balance.vendor_id}", expected_version) from e


class PayoutRequestRepository:
    """Repository for payout requests"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def add(self, request: PayoutRequest) -> None:
        """Persist a newly created request"""
        record = PayoutRequestRecord(
            id=request.id,
            vendor_id=request.vendor_id,
            vendor_name=request.vendor_name,
            vendor_email=request.vendor_email,
            amount_cents=request.amount_cents,
            payment_method=request.payment_method.value,
            destination=asdict(request.destination),
            status=request.status.value,
            requested_at=request.requested_at,
            processed_at=request.processed_at,
            processed_by=request.processed_by,
            transaction_reference=request.transaction_reference,
            rejection_reason=request.rejection_reason,
            notes=request.notes,
            resolving=request.resolving,
            version=request.version,
        )
        with self.session_factory() as db:
            db.add(record)
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise VersionConflict(f"payout_request:{request.id}", 0) from e

    def get(self, request_id: str) -> Optional[PayoutRequest]:
        """Fetch a request by id"""
        with self.session_factory() as db:
            row = db.get(PayoutRequestRecord, request_id)
            return self._to_domain(row) if row is not None else None

    def save(self, request: PayoutRequest, expected_version: int) -> None:
        """Conditionally update the mutable fields; amount and destination are never written"""
        with self.session_factory() as db:
            result = db.execute(
                update(PayoutRequestRecord)
                .where(
                    PayoutRequestRecord.id == request.id,
                    PayoutRequestRecord.version == expected_version,
                )
                .values(
                    status=request.status.value,
                    processed_at=request.processed_at,
                    processed_by=request.processed_by,
                    transaction_reference=request.transaction_reference,
                    rejection_reason=request.rejection_reason,
                    notes=request.notes,
                    resolving=request.resolving,
                    version=request.version,
                )
            )
            if result.rowcount != 1:
                db.rollback()
                raise VersionConflict(f"payout_request:{request.id}", expected_version)
            db.commit()

    def list(self, vendor_id: Optional[str] = None, status: Optional[PayoutStatus] = None) -> List[PayoutRequest]:
        """Fetch requests, newest first"""
        query = select(PayoutRequestRecord)
        if vendor_id is not None:
            query = query.where(PayoutRequestRecord.vendor_id == vendor_id)
        if status is not None:
            query = query.where(PayoutRequestRecord.status == status.value)
        query = query.order_by(PayoutRequestRecord.requested_at.desc())

        with self.session_factory() as db:
            return [self._to_domain(row) for row in db.execute(query).scalars().all()]

    @staticmethod
    def _to_domain(row: PayoutRequestRecord) -> PayoutRequest:
        method = PaymentMethod(row.payment_method)
        return PayoutRequest(
            id=row.id,
            vendor_id=row.vendor_id,
            vendor_name=row.vendor_name,
            vendor_email=row.vendor_email,
            amount_cents=row.amount_cents,
            payment_method=method,
            destination=_destination_from_json(method, row.destination),
            status=PayoutStatus(row.status),
            requested_at=_as_utc(row.requested_at),
            processed_at=_as_utc(row.processed_at),
            processed_by=row.processed_by,
            transaction_reference=row.transaction_reference,
            rejection_reason=row.rejection_reason,
            notes=row.notes,
            resolving=row.resolving,
            version=row.version,
        )
