"""Thread-safe in-memory stores, used by tests and embedded callers"""

import threading
from typing import Dict, List, Optional, Tuple

from payout_ledger.domain.exceptions import VersionConflict
from payout_ledger.domain.models import AppliedOperation, PayoutRequest, PayoutStatus, VendorBalance


class InMemoryBalanceStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._balances: Dict[str, VendorBalance] = {}
        self._applied: Dict[Tuple[str, str], AppliedOperation] = {}

    def get(self, vendor_id: str) -> Optional[VendorBalance]:
        with self._lock:
            return self._balances.get(vendor_id)

    def get_applied(self, vendor_id: str, key: str) -> Optional[AppliedOperation]:
        with self._lock:
            return self._applied.get((vendor_id, key))

    def save(
        self,
        balance: VendorBalance,
        expected_version: int,
        applied: Optional[AppliedOperation] = None,
    ) -> None:
        with self._lock:
            current = self._balances.get(balance.vendor_id)
            current_version = current.version if current else 0
            if current_version != expected_version:
                raise VersionConflict(f"vendor_balance:{balance.vendor_id}", expected_version)
            if applied is not None:
                if (balance.vendor_id, applied.key) in self._applied:
                    raise VersionConflict(f"applied_operation:{balance.vendor_id}:{applied.key}", expected_version)
                self._applied[(balance.vendor_id, applied.key)] = applied
            self._balances[balance.vendor_id] = balance


class InMemoryPayoutRequestStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._requests: Dict[str, PayoutRequest] = {}

    def add(self, request: PayoutRequest) -> None:
        with self._lock:
            if request.id in self._requests:
                raise VersionConflict(f"payout_request:{request.id}", 0)
            self._requests[request.id] = request

    def get(self, request_id: str) -> Optional[PayoutRequest]:
        with self._lock:
            return self._requests.get(request_id)

    def save(self, request: PayoutRequest, expected_version: int) -> None:
        with self._lock:
            current = self._requests.get(request.id)
            if current is None or current.version != expected_version:
                raise VersionConflict(f"payout_request:{request.id}", expected_version)
            self._requests[request.id] = request

    def list(self, vendor_id: Optional[str] = None, status: Optional[PayoutStatus] = None) -> List[PayoutRequest]:
        with self._lock:
            requests = list(self._requests.values())
        if vendor_id is not None:
            requests = [r for r in requests if r.vendor_id == vendor_id]
        if status is not None:
            requests = [r for r in requests if r.status == status]
        return sorted(requests, key=lambda r: r.requested_at, reverse=True)
