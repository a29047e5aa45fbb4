"""Translate ledger errors into HTTP responses"""

import logging
from fastapi import Request
from fastapi.responses import JSONResponse

from payout_ledger.domain.exceptions import (
    ConcurrentModification,
    Forbidden,
    IdempotencyConflict,
    InsufficientFunds,
    InsufficientHold,
    InsufficientReserve,
    InvalidAmount,
    InvalidRequest,
    InvalidTransition,
    LedgerError,
    MissingReason,
    MissingReference,
    NotFound,
)

logger = logging.getLogger(__name__)

# Checked in order, so subclasses must precede their bases
STATUS_BY_ERROR = [
    (NotFound, 404),
    (Forbidden, 403),
    (InvalidAmount, 422),
    (InvalidRequest, 422),
    (MissingReason, 422),
    (MissingReference, 422),
    (InsufficientFunds, 409),
    (InsufficientReserve, 409),
    (InsufficientHold, 409),
    (InvalidTransition, 409),
    (IdempotencyConflict, 409),
    (ConcurrentModification, 503),
]


def status_for(exc: LedgerError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    """Business errors become 4xx with a machine-readable code; the rest are logged as faults"""
    status_code = status_for(exc)
    request_id = getattr(request.state, "request_id", None)
    body = {"detail": str(exc), "code": exc.code}
    headers = {}

    if isinstance(exc, InsufficientFunds):
        body["available_balance_cents"] = exc.available_cents
    if isinstance(exc, ConcurrentModification):
        headers["Retry-After"] = "1"

    if status_code == 500:
        logger.error(f"Ledger fault: {exc}", extra={"request_id": request_id, "code": exc.code})
        body["detail"] = "Internal server error"
    elif status_code == 503:
        logger.warning(f"Transient contention: {exc}", extra={"request_id": request_id, "code": exc.code})
    else:
        logger.info("Request rejected", extra={"request_id": request_id, "code": exc.code})

    return JSONResponse(status_code=status_code, content=body, headers=headers)
