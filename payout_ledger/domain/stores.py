"""Persistence contracts for balances and payout requests

Any store offering a version-checked write of one balance row (together with
the idempotency key it consumes) satisfies these.
"""

from typing import List, Optional, Protocol

from payout_ledger.domain.models import AppliedOperation, PayoutRequest, PayoutStatus, VendorBalance


class BalanceStore(Protocol):
    def get(self, vendor_id: str) -> Optional[VendorBalance]:
        """Current balance record, or None for a vendor never credited"""
        ...

    def get_applied(self, vendor_id: str, key: str) -> Optional[AppliedOperation]:
        """Operation already applied to the vendor under key, if any"""
        ...

    def save(
        self,
        balance: VendorBalance,
        expected_version: int,
        applied: Optional[AppliedOperation] = None,
    ) -> None:
        """
        Write balance only if the stored version still equals expected_version.

        expected_version 0 means the record must not exist yet. When applied is
        given its key is recorded in the same write and must not exist yet.

        Raises:
            VersionConflict: Another writer got there first
        """
        ...


class PayoutRequestStore(Protocol):
    def add(self, request: PayoutRequest) -> None:
        """Insert a new request (raises VersionConflict if the id exists)"""
        ...

    def get(self, request_id: str) -> Optional[PayoutRequest]:
        ...

    def save(self, request: PayoutRequest, expected_version: int) -> None:
        """
        Persist the mutable fields of request if the stored version still
        equals expected_version. Write-once fields are never rewritten.

        Raises:
            VersionConflict: Another writer got there first
        """
        ...

    def list(self, vendor_id: Optional[str] = None, status: Optional[PayoutStatus] = None) -> List[PayoutRequest]:
        """Requests matching the filters, newest first"""
        ...
