"""Ledger endpoints consumed by the order subsystem and vendor dashboards"""

from fastapi import APIRouter, Depends

from payout_ledger.api.dependencies import get_ledger_service
from payout_ledger.api.v1.schemas import (
    BalanceResponse,
    CreditRequest,
    HoldRequest,
    LedgerReceiptResponse,
    OrderCompletionRequest,
    OrderCreditResponse,
)
from payout_ledger.domain.models import OrderItem
from payout_ledger.services.ledger import LedgerService, order_hold_key, order_key

router = APIRouter()


@router.post("/credits", response_model=LedgerReceiptResponse)
def credit(request_body: CreditRequest, ledger: LedgerService = Depends(get_ledger_service)):
    """
    Credit a vendor with finalized earnings.

    Replays with the same idempotency key return the current balance with
    applied=false instead of crediting twice.
    """
    receipt = ledger.credit(request_body.vendor_id, request_body.amount_cents, request_body.idempotency_key)
    return LedgerReceiptResponse.from_domain(receipt)


@router.post("/orders/{order_id}/complete", response_model=OrderCreditResponse)
def complete_order(
    order_id: str,
    request_body: OrderCompletionRequest,
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Split a finalized order by vendor, deduct commission and credit each vendor once"""
    items = [
        OrderItem(vendor_id=i.vendor_id, unit_price_cents=i.unit_price_cents, quantity=i.quantity)
        for i in request_body.items
    ]
    receipts = ledger.credit_order(order_id, items)
    return OrderCreditResponse(
        order_id=order_id,
        credits={vendor_id: LedgerReceiptResponse.from_domain(r) for vendor_id, r in receipts.items()},
    )


@router.post("/holds", response_model=LedgerReceiptResponse)
def hold(request_body: HoldRequest, ledger: LedgerService = Depends(get_ledger_service)):
    """Track earnings of a paid order that is not final yet"""
    receipt = ledger.hold(request_body.vendor_id, request_body.amount_cents, order_hold_key(request_body.order_id))
    return LedgerReceiptResponse.from_domain(receipt)


@router.post("/holds/confirm", response_model=LedgerReceiptResponse)
def confirm_hold(request_body: HoldRequest, ledger: LedgerService = Depends(get_ledger_service)):
    """Order finalized: held funds become available earnings"""
    receipt = ledger.confirm_hold(request_body.vendor_id, request_body.amount_cents, order_key(request_body.order_id))
    return LedgerReceiptResponse.from_domain(receipt)


@router.post("/holds/void", response_model=LedgerReceiptResponse)
def void_hold(request_body: HoldRequest, ledger: LedgerService = Depends(get_ledger_service)):
    """Order cancelled: drop the held funds"""
    receipt = ledger.void_hold(request_body.vendor_id, request_body.amount_cents, order_key(request_body.order_id))
    return LedgerReceiptResponse.from_domain(receipt)


@router.get("/vendors/{vendor_id}/balance", response_model=BalanceResponse)
def get_balance(vendor_id: str, ledger: LedgerService = Depends(get_ledger_service)):
    return BalanceResponse.from_domain(ledger.get_balance(vendor_id))
