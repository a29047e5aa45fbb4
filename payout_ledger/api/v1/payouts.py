"""Payout request endpoints for vendors and administrators"""

from typing import Optional
from fastapi import APIRouter, Depends, Header, Query, status

from payout_ledger.api.dependencies import get_payout_workflow
from payout_ledger.api.v1.schemas import (
    ApproveRequest,
    CompleteRequest,
    PayoutCreateRequest,
    PayoutListResponse,
    PayoutResponse,
    PayoutSummaryResponse,
    RejectRequest,
)
from payout_ledger.services.workflow import PayoutWorkflow

router = APIRouter()


# Vendor-facing

@router.post("/vendors/{vendor_id}/payouts", response_model=PayoutResponse, status_code=status.HTTP_201_CREATED)
def request_payout(
    vendor_id: str,
    request_body: PayoutCreateRequest,
    workflow: PayoutWorkflow = Depends(get_payout_workflow),
):
    """
    Submit a withdrawal request.

    Funds move from available to pending immediately; a request the vendor
    cannot cover is refused with 409 and the current available balance.
    """
    payout = workflow.request_payout(
        vendor_id,
        request_body.amount_cents,
        request_body.payment_method,
        request_body.destination,
        vendor_name=request_body.vendor_name,
        vendor_email=request_body.vendor_email,
    )
    return PayoutResponse.from_domain(payout)


@router.get("/vendors/{vendor_id}/payouts", response_model=PayoutListResponse)
def list_vendor_payouts(vendor_id: str, workflow: PayoutWorkflow = Depends(get_payout_workflow)):
    payouts = workflow.list_vendor_payouts(vendor_id)
    return PayoutListResponse(payouts=[PayoutResponse.from_domain(p) for p in payouts])


# Admin-facing

@router.get("/payouts", response_model=PayoutListResponse)
def list_payouts(
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by payout status"),
    vendor_id: Optional[str] = Query(None, description="Filter by vendor"),
    admin_id: Optional[str] = Header(None, alias="X-Admin-ID"),
    workflow: PayoutWorkflow = Depends(get_payout_workflow),
):
    """Review queue for finance staff; exposes destination details, so requires view_finance"""
    payouts = workflow.list_payout_requests(admin_id, vendor_id=vendor_id, status=status_filter)
    return PayoutListResponse(payouts=[PayoutResponse.from_domain(p) for p in payouts])


@router.get("/payouts/summary", response_model=PayoutSummaryResponse)
def summarize_payouts(
    admin_id: Optional[str] = Header(None, alias="X-Admin-ID"),
    workflow: PayoutWorkflow = Depends(get_payout_workflow),
):
    return PayoutSummaryResponse.from_domain(workflow.summarize_payouts(admin_id))


@router.get("/payouts/{request_id}", response_model=PayoutResponse)
def get_payout(
    request_id: str,
    admin_id: Optional[str] = Header(None, alias="X-Admin-ID"),
    workflow: PayoutWorkflow = Depends(get_payout_workflow),
):
    return PayoutResponse.from_domain(workflow.get_payout_request(request_id, admin_id))


@router.post("/payouts/{request_id}/approve", response_model=PayoutResponse)
def approve_payout(
    request_id: str,
    request_body: ApproveRequest,
    admin_id: Optional[str] = Header(None, alias="X-Admin-ID"),
    workflow: PayoutWorkflow = Depends(get_payout_workflow),
):
    return PayoutResponse.from_domain(workflow.approve(request_id, admin_id, notes=request_body.notes))


@router.post("/payouts/{request_id}/processing", response_model=PayoutResponse)
def mark_payout_processing(
    request_id: str,
    request_body: ApproveRequest,
    admin_id: Optional[str] = Header(None, alias="X-Admin-ID"),
    workflow: PayoutWorkflow = Depends(get_payout_workflow),
):
    return PayoutResponse.from_domain(workflow.mark_processing(request_id, admin_id, notes=request_body.notes))


@router.post("/payouts/{request_id}/reject", response_model=PayoutResponse)
def reject_payout(
    request_id: str,
    request_body: RejectRequest,
    admin_id: Optional[str] = Header(None, alias="X-Admin-ID"),
    workflow: PayoutWorkflow = Depends(get_payout_workflow),
):
    """Reject and return the reserved funds to the vendor's available balance"""
    return PayoutResponse.from_domain(workflow.reject(request_id, admin_id, request_body.reason))


@router.post("/payouts/{request_id}/complete", response_model=PayoutResponse)
def complete_payout(
    request_id: str,
    request_body: CompleteRequest,
    admin_id: Optional[str] = Header(None, alias="X-Admin-ID"),
    workflow: PayoutWorkflow = Depends(get_payout_workflow),
):
    """Record the out-of-band transfer reference and settle the reserved funds"""
    payout = workflow.complete(
        request_id,
        admin_id,
        request_body.transaction_reference,
        notes=request_body.notes,
    )
    return PayoutResponse.from_domain(payout)
