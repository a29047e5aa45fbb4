"""Domain models - pure Python dataclasses representing ledger entities"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union


class PaymentMethod(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    MOBILE_MONEY = "mobile_money"
    PAYPAL = "paypal"


class PayoutStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PROCESSING = "processing"
    COMPLETED = "completed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class AppliedOperation:
    """Idempotency key already spent on a vendor's balance, stored apart from it"""

    key: str
    operation: str
    amount_cents: int
    version: int  # Balance version produced by the operation
    applied_at: Optional[datetime] = None


@dataclass(frozen=True)
class VendorBalance:
    """Per-vendor balance record, mutated only through domain.balance"""

    vendor_id: str
    available_balance_cents: int = 0
    pending_balance_cents: int = 0  # Reserved against open payout requests
    held_balance_cents: int = 0  # Paid orders not yet finalized
    total_earnings_cents: int = 0
    total_withdrawn_cents: int = 0
    version: int = 0  # 0 means never persisted
    updated_at: Optional[datetime] = None
    last_payout_at: Optional[datetime] = None


@dataclass(frozen=True)
class LedgerReceipt:
    """Outcome of a ledger operation"""

    operation: str
    balance: VendorBalance
    applied: bool  # False when absorbed as a duplicate


@dataclass(frozen=True)
class BankTransferDetails:
    account_name: str
    account_number: str
    bank_name: str
    bank_code: Optional[str] = None


@dataclass(frozen=True)
class MobileMoneyDetails:
    provider: str
    phone_number: str
    account_name: str


@dataclass(frozen=True)
class PayPalDetails:
    email: str


PayoutDestination = Union[BankTransferDetails, MobileMoneyDetails, PayPalDetails]


@dataclass(frozen=True)
class PayoutRequest:
    """Vendor withdrawal request; amount and destination are write-once"""

    id: str
    vendor_id: str
    amount_cents: int
    payment_method: PaymentMethod
    destination: PayoutDestination
    status: PayoutStatus
    requested_at: datetime
    vendor_name: Optional[str] = None
    vendor_email: Optional[str] = None
    processed_at: Optional[datetime] = None
    processed_by: Optional[str] = None
    transaction_reference: Optional[str] = None
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
    # Money-moving action that has claimed the request and not yet finished
    resolving: Optional[str] = None
    version: int = 0


@dataclass(frozen=True)
class StatusTotals:
    count: int = 0
    amount_cents: int = 0


@dataclass(frozen=True)
class OrderItem:
    """Line item of a finalized order, as reported by the order subsystem"""

    vendor_id: str
    unit_price_cents: int
    quantity: int
