"""Pydantic schemas for API request/response validation"""

from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from payout_ledger.domain.models import LedgerReceipt, PayoutRequest, PayoutStatus, StatusTotals, VendorBalance


class CreditRequest(BaseModel):
    """Request body for POST /v1/credits"""

    vendor_id: str = Field(..., min_length=1, description="Vendor identifier")
    amount_cents: int = Field(..., gt=0, description="Net earnings in minor units")
    idempotency_key: str = Field(..., min_length=1, description="Stable key derived from the order")


class OrderItemSchema(BaseModel):
    vendor_id: str = Field(..., min_length=1)
    unit_price_cents: int = Field(..., gt=0)
    quantity: int = Field(..., gt=0)


class OrderCompletionRequest(BaseModel):
    """Request body for POST /v1/orders/{order_id}/complete"""

    items: List[OrderItemSchema] = Field(..., min_length=1)


class HoldRequest(BaseModel):
    """Request body for POST /v1/holds and its confirm/void variants"""

    vendor_id: str = Field(..., min_length=1)
    order_id: str = Field(..., min_length=1)
    amount_cents: int = Field(..., gt=0)


class BalanceResponse(BaseModel):
    vendor_id: str
    available_balance_cents: int
    pending_balance_cents: int
    held_balance_cents: int
    total_earnings_cents: int
    total_withdrawn_cents: int
    version: int
    updated_at: Optional[datetime] = None
    last_payout_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, balance: VendorBalance) -> "BalanceResponse":
        return cls(
            vendor_id=balance.vendor_id,
            available_balance_cents=balance.available_balance_cents,
            pending_balance_cents=balance.pending_balance_cents,
            held_balance_cents=balance.held_balance_cents,
            total_earnings_cents=balance.total_earnings_cents,
            total_withdrawn_cents=balance.total_withdrawn_cents,
            version=balance.version,
            updated_at=balance.updated_at,
            last_payout_at=balance.last_payout_at,
        )


class LedgerReceiptResponse(BaseModel):
    operation: str
    applied: bool
    balance: BalanceResponse

    @classmethod
    def from_domain(cls, receipt: LedgerReceipt) -> "LedgerReceiptResponse":
        return cls(
            operation=receipt.operation,
            applied=receipt.applied,
            balance=BalanceResponse.from_domain(receipt.balance),
        )


class OrderCreditResponse(BaseModel):
    order_id: str
    credits: Dict[str, LedgerReceiptResponse]


class PayoutCreateRequest(BaseModel):
    """Request body for POST /v1/vendors/{vendor_id}/payouts"""

    amount_cents: int = Field(..., description="Requested amount in minor units")
    payment_method: str = Field(..., description="bank_transfer | mobile_money | paypal")
    destination: Dict[str, Any] = Field(..., description="Method-specific destination details")
    vendor_name: Optional[str] = None
    vendor_email: Optional[str] = None


class ApproveRequest(BaseModel):
    notes: Optional[str] = None


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class CompleteRequest(BaseModel):
    transaction_reference: Optional[str] = None
    notes: Optional[str] = None


class PayoutResponse(BaseModel):
    id: str
    vendor_id: str
    vendor_name: Optional[str] = None
    vendor_email: Optional[str] = None
    amount_cents: int
    payment_method: str
    destination: Dict[str, Any]
    status: str
    requested_at: datetime
    processed_at: Optional[datetime] = None
    processed_by: Optional[str] = None
    transaction_reference: Optional[str] = None
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
    resolving: Optional[str] = None
    version: int

    @classmethod
    def from_domain(cls, request: PayoutRequest) -> "PayoutResponse":
        return cls(
            id=request.id,
            vendor_id=request.vendor_id,
            vendor_name=request.vendor_name,
            vendor_email=request.vendor_email,
            amount_cents=request.amount_cents,
            payment_method=request.payment_method.value,
            destination={k: v for k, v in asdict(request.destination).items() if v is not None},
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


class PayoutListResponse(BaseModel):
    payouts: List[PayoutResponse]


class StatusTotalsSchema(BaseModel):
    count: int
    amount_cents: int


class PayoutSummaryResponse(BaseModel):
    """Per-status counts and amounts for the admin dashboard"""

    totals: Dict[str, StatusTotalsSchema]

    @classmethod
    def from_domain(cls, totals: Dict[PayoutStatus, StatusTotals]) -> "PayoutSummaryResponse":
        return cls(
            totals={
                status.value: StatusTotalsSchema(count=t.count, amount_cents=t.amount_cents)
                for status, t in totals.items()
            }
        )
