"""Unit tests for the payout workflow"""

import pytest
from concurrent.futures import ThreadPoolExecutor
from payout_ledger.domain.authorization import AdminDirectory
from payout_ledger.domain.balance import invariant_violations
from payout_ledger.domain.exceptions import (
    ConcurrentModification,
    Forbidden,
    InsufficientFunds,
    InsufficientReserve,
    InvalidRequest,
    InvalidTransition,
    MissingReason,
    MissingReference,
    NotFound,
    VersionConflict,
)
from payout_ledger.domain.models import PaymentMethod, PayoutStatus
from payout_ledger.infrastructure.memory import InMemoryBalanceStore, InMemoryPayoutRequestStore
from payout_ledger.services.ledger import LedgerService
from payout_ledger.services.workflow import PayoutWorkflow, resolve_key

from conftest import ADMIN_ROLES, BANK_DETAILS, MINIMUM_PAYOUT_CENTS


class FailingSaveStore(InMemoryPayoutRequestStore):
    """Request store whose Nth save fails like a dropped connection"""

    def __init__(self, fail_on: int = 1):
        super().__init__()
        self.fail_on = fail_on
        self.saves = 0

    def save(self, request, expected_version):
        self.saves += 1
        if self.saves == self.fail_on:
            raise ConnectionError("database went away")
        super().save(request, expected_version)


class FailingAddStore(InMemoryPayoutRequestStore):
    def add(self, request):
        raise ConnectionError("database went away")


class ConflictOnceStore(InMemoryPayoutRequestStore):
    """Another admin's write lands between our read and our save"""

    def __init__(self):
        super().__init__()
        self.interfere = None

    def save(self, request, expected_version):
        if self.interfere is not None:
            interfere, self.interfere = self.interfere, None
            interfere()
        super().save(request, expected_version)


@pytest.fixture
def funded(ledger: LedgerService) -> LedgerService:
    """Scenario vendor: available 5,000.00, nothing pending"""
    ledger.credit("v1", 500_000, "order:1")
    return ledger


def request_bank_payout(workflow: PayoutWorkflow, amount_cents: int = 300_000):
    return workflow.request_payout("v1", amount_cents, "bank_transfer", BANK_DETAILS)


def test_request_beyond_available_creates_nothing(workflow: PayoutWorkflow, funded: LedgerService):
    with pytest.raises(InsufficientFunds) as exc_info:
        request_bank_payout(workflow, 600_000)

    assert exc_info.value.available_cents == 500_000
    assert workflow.list_vendor_payouts("v1") == []
    balance = funded.get_balance("v1")
    assert balance.available_balance_cents == 500_000
    assert balance.pending_balance_cents == 0


def test_approve_then_complete(workflow: PayoutWorkflow, funded: LedgerService):
    payout = request_bank_payout(workflow)
    assert payout.status is PayoutStatus.PENDING
    assert payout.payment_method is PaymentMethod.BANK_TRANSFER
    balance = funded.get_balance("v1")
    assert (balance.available_balance_cents, balance.pending_balance_cents) == (200_000, 300_000)

    approved = workflow.approve(payout.id, "admin1", notes="details verified")
    assert approved.status is PayoutStatus.APPROVED
    assert approved.processed_by == "admin1"
    assert approved.processed_at is not None
    assert approved.notes == "details verified"
    assert funded.get_balance("v1").version == balance.version

    completed = workflow.complete(payout.id, "admin1", "TXN123")
    assert completed.status is PayoutStatus.COMPLETED
    assert completed.transaction_reference == "TXN123"
    assert completed.notes == "details verified"
    balance = funded.get_balance("v1")
    assert balance.available_balance_cents == 200_000
    assert balance.pending_balance_cents == 0
    assert balance.total_withdrawn_cents == 300_000


def test_reject_restores_balance(workflow: PayoutWorkflow, funded: LedgerService):
    payout = request_bank_payout(workflow)

    rejected = workflow.reject(payout.id, "admin1", "bad bank details")

    assert rejected.status is PayoutStatus.REJECTED
    assert rejected.rejection_reason == "bad bank details"
    balance = funded.get_balance("v1")
    assert balance.available_balance_cents == 500_000
    assert balance.pending_balance_cents == 0


def test_processing_path(workflow: PayoutWorkflow, funded: LedgerService):
    payout = request_bank_payout(workflow)
    workflow.approve(payout.id, "admin1")
    processing = workflow.mark_processing(payout.id, "root")
    assert processing.status is PayoutStatus.PROCESSING

    with pytest.raises(InvalidTransition):
        workflow.reject(payout.id, "admin1", "too late")

    completed = workflow.complete(payout.id, "root", "TXN9", notes="sent via NIP")
    assert completed.notes == "sent via NIP"
    assert completed.processed_by == "root"


def test_no_transition_out_of_terminal_states(workflow: PayoutWorkflow, funded: LedgerService):
    payout = request_bank_payout(workflow)
    workflow.reject(payout.id, "admin1", "duplicate request")

    with pytest.raises(InvalidTransition):
        workflow.approve(payout.id, "admin1")
    with pytest.raises(InvalidTransition):
        workflow.reject(payout.id, "admin1", "again")
    with pytest.raises(InvalidTransition):
        workflow.complete(payout.id, "admin1", "TXN1")
    assert funded.get_balance("v1").available_balance_cents == 500_000


def test_complete_requires_approval(workflow: PayoutWorkflow, funded: LedgerService):
    payout = request_bank_payout(workflow)
    with pytest.raises(InvalidTransition):
        workflow.complete(payout.id, "admin1", "TXN1")
    assert funded.get_balance("v1").pending_balance_cents == 300_000


@pytest.mark.parametrize("reason", [None, "", "  "])
def test_reject_without_reason_changes_nothing(workflow: PayoutWorkflow, funded: LedgerService, reason):
    payout = request_bank_payout(workflow)

    with pytest.raises(MissingReason):
        workflow.reject(payout.id, "admin1", reason)

    assert workflow.get_payout_request(payout.id, "admin1").status is PayoutStatus.PENDING
    assert funded.get_balance("v1").pending_balance_cents == 300_000


def test_complete_without_reference_changes_nothing(workflow: PayoutWorkflow, funded: LedgerService):
    payout = request_bank_payout(workflow)
    workflow.approve(payout.id, "admin1")

    with pytest.raises(MissingReference):
        workflow.complete(payout.id, "admin1", " ")

    assert workflow.get_payout_request(payout.id, "admin1").status is PayoutStatus.APPROVED
    assert funded.get_balance("v1").total_withdrawn_cents == 0


def test_admin_without_capability(workflow: PayoutWorkflow, funded: LedgerService):
    payout = request_bank_payout(workflow)

    with pytest.raises(Forbidden):
        workflow.approve(payout.id, "mod1")
    with pytest.raises(Forbidden):
        workflow.reject(payout.id, "nobody", "reason")
    with pytest.raises(Forbidden):
        workflow.complete(payout.id, None, "TXN1")

    assert workflow.get_payout_request(payout.id, "admin1").status is PayoutStatus.PENDING


def test_request_validation(workflow: PayoutWorkflow, funded: LedgerService):
    with pytest.raises(InvalidRequest, match="Minimum payout"):
        request_bank_payout(workflow, MINIMUM_PAYOUT_CENTS - 1)
    with pytest.raises(InvalidRequest):
        workflow.request_payout("v1", 200_000, "bank_transfer", {"account_name": "Ada"})
    with pytest.raises(InvalidRequest):
        workflow.request_payout("v1", 200_000, "cheque", BANK_DETAILS)

    assert funded.get_balance("v1").pending_balance_cents == 0


def test_unknown_request(workflow: PayoutWorkflow):
    with pytest.raises(NotFound):
        workflow.approve("missing", "admin1")


def test_listing_and_summary(workflow: PayoutWorkflow, funded: LedgerService):
    first = request_bank_payout(workflow, 100_000)
    second = workflow.request_payout("v1", 150_000, "paypal", {"email": "ada@example.com"})
    workflow.reject(first.id, "admin1", "wrong account")

    listed = workflow.list_vendor_payouts("v1")
    assert [p.id for p in listed] == [second.id, first.id]
    assert [p.id for p in workflow.list_payout_requests("admin1", status="rejected")] == [first.id]
    with pytest.raises(InvalidRequest):
        workflow.list_payout_requests("admin1", status="lost")

    totals = workflow.summarize_payouts("admin1")
    assert totals[PayoutStatus.PENDING].amount_cents == 150_000
    assert totals[PayoutStatus.REJECTED].count == 1


def test_reject_retry_after_status_write_failed(funded: LedgerService, admins: AdminDirectory, clock):
    """Funds released but status not saved: retrying must not release twice"""
    # Save 1 claims the request, save 2 would record the rejection
    store = FailingSaveStore(fail_on=2)
    workflow = PayoutWorkflow(funded, store, admins, minimum_payout_cents=MINIMUM_PAYOUT_CENTS, clock=clock)
    # A second open request keeps pending non-zero, so a double release would succeed if it were attempted
    payout = request_bank_payout(workflow, 200_000)
    request_bank_payout(workflow, 200_000)

    with pytest.raises(ConnectionError):
        workflow.reject(payout.id, "admin1", "bad details")

    stuck = workflow.get_payout_request(payout.id, "admin1")
    assert stuck.status is PayoutStatus.PENDING
    assert stuck.resolving == "reject"
    assert funded.get_balance("v1").pending_balance_cents == 200_000

    # The released reservation can no longer be approved and later settled
    with pytest.raises(InvalidTransition):
        workflow.approve(payout.id, "admin1")

    rejected = workflow.reject(payout.id, "admin1", "bad details")
    assert rejected.status is PayoutStatus.REJECTED
    balance = funded.get_balance("v1")
    assert balance.pending_balance_cents == 200_000
    assert balance.available_balance_cents == 300_000


def test_ledger_failure_leaves_request_non_terminal(
    workflow: PayoutWorkflow, funded: LedgerService, balance_store: InMemoryBalanceStore
):
    payout = request_bank_payout(workflow)
    workflow.approve(payout.id, "admin1")

    # Drain the reservation behind the workflow's back so settle cannot succeed
    funded.release("v1", 300_000)

    with pytest.raises(InsufficientReserve):
        workflow.complete(payout.id, "admin1", "TXN1")

    current = workflow.get_payout_request(payout.id, "admin1")
    assert current.status is PayoutStatus.APPROVED
    assert current.resolving is None
    assert invariant_violations(balance_store.get("v1")) == []


def test_persist_failure_after_reserve_releases_funds(funded: LedgerService, admins: AdminDirectory):
    workflow = PayoutWorkflow(funded, FailingAddStore(), admins, minimum_payout_cents=MINIMUM_PAYOUT_CENTS)

    with pytest.raises(ConnectionError):
        request_bank_payout(workflow)

    balance = funded.get_balance("v1")
    assert balance.available_balance_cents == 500_000
    assert balance.pending_balance_cents == 0


def test_concurrent_admin_action_is_retried(funded: LedgerService, admins: AdminDirectory, clock):
    store = ConflictOnceStore()
    workflow = PayoutWorkflow(funded, store, admins, minimum_payout_cents=MINIMUM_PAYOUT_CENTS, clock=clock)
    payout = request_bank_payout(workflow)
    other_admin = PayoutWorkflow(funded, store, admins, clock=clock)

    # Admin B approves while admin A is rejecting; A re-reads and rejects from approved
    store.interfere = lambda: other_admin.approve(payout.id, "root")
    rejected = workflow.reject(payout.id, "admin1", "vendor asked to cancel")

    assert rejected.status is PayoutStatus.REJECTED
    assert rejected.resolving is None
    # approve, claim, reject
    assert rejected.version == 4
    balance = funded.get_balance("v1")
    assert balance.available_balance_cents == 500_000
    assert balance.pending_balance_cents == 0


def test_request_store_conflicts_exhaust(funded: LedgerService, admins: AdminDirectory):
    class AlwaysStale(InMemoryPayoutRequestStore):
        def save(self, request, expected_version):
            raise VersionConflict(f"payout_request:{request.id}", expected_version)

    workflow = PayoutWorkflow(
        funded, AlwaysStale(), admins, minimum_payout_cents=MINIMUM_PAYOUT_CENTS, max_attempts=2
    )
    payout = request_bank_payout(workflow)

    with pytest.raises(ConcurrentModification):
        workflow.approve(payout.id, "admin1")


def test_double_complete_settles_once(
    workflow: PayoutWorkflow, funded: LedgerService, balance_store: InMemoryBalanceStore
):
    payout = request_bank_payout(workflow)
    workflow.approve(payout.id, "admin1")
    workflow.complete(payout.id, "admin1", "TXN123")

    with pytest.raises(InvalidTransition):
        workflow.complete(payout.id, "admin1", "TXN123")

    assert funded.get_balance("v1").total_withdrawn_cents == 300_000
    assert balance_store.get_applied("v1", resolve_key(payout.id)).operation == "settle"


def test_claimed_request_refuses_other_actions(funded: LedgerService, admins: AdminDirectory, clock):
    store = FailingSaveStore(fail_on=3)
    workflow = PayoutWorkflow(funded, store, admins, minimum_payout_cents=MINIMUM_PAYOUT_CENTS, clock=clock)
    payout = request_bank_payout(workflow)
    workflow.approve(payout.id, "admin1")

    # Settled, but the completed status never landed
    with pytest.raises(ConnectionError):
        workflow.complete(payout.id, "admin1", "TXN1")
    assert workflow.get_payout_request(payout.id, "admin1").resolving == "complete"

    with pytest.raises(InvalidTransition):
        workflow.mark_processing(payout.id, "root")
    with pytest.raises(InvalidTransition):
        workflow.reject(payout.id, "admin1", "changed mind")

    completed = workflow.complete(payout.id, "admin1", "TXN1")
    assert completed.status is PayoutStatus.COMPLETED
    balance = funded.get_balance("v1")
    assert balance.total_withdrawn_cents == 300_000
    assert balance.pending_balance_cents == 0


def test_processing_racing_a_reject_wins_cleanly(funded: LedgerService, admins: AdminDirectory, clock):
    """A status change landing before the reject claim leaves the reservation intact"""
    store = ConflictOnceStore()
    workflow = PayoutWorkflow(funded, store, admins, minimum_payout_cents=MINIMUM_PAYOUT_CENTS, clock=clock)
    other_admin = PayoutWorkflow(funded, store, admins, clock=clock)
    payout = request_bank_payout(workflow)
    workflow.approve(payout.id, "admin1")

    store.interfere = lambda: other_admin.mark_processing(payout.id, "root")
    with pytest.raises(InvalidTransition):
        workflow.reject(payout.id, "admin1", "vendor asked to cancel")

    current = workflow.get_payout_request(payout.id, "admin1")
    assert current.status is PayoutStatus.PROCESSING
    assert current.resolving is None
    assert funded.get_balance("v1").pending_balance_cents == 300_000

    completed = workflow.complete(payout.id, "root", "TXN7")
    assert completed.status is PayoutStatus.COMPLETED
    balance = funded.get_balance("v1")
    assert balance.pending_balance_cents == 0
    assert balance.total_withdrawn_cents == 300_000


def test_processed_at_is_kept_from_first_action(workflow: PayoutWorkflow, funded: LedgerService):
    payout = request_bank_payout(workflow)
    approved = workflow.approve(payout.id, "admin1")

    completed = workflow.complete(payout.id, "root", "TXN1")

    assert completed.processed_at == approved.processed_at
    assert completed.processed_by == "root"


@pytest.mark.parametrize("admin_id", ["mod1", None])
def test_admin_reads_require_finance_view(workflow: PayoutWorkflow, funded: LedgerService, admin_id):
    payout = request_bank_payout(workflow)

    with pytest.raises(Forbidden):
        workflow.get_payout_request(payout.id, admin_id)
    with pytest.raises(Forbidden):
        workflow.list_payout_requests(admin_id)
    with pytest.raises(Forbidden):
        workflow.summarize_payouts(admin_id)

    assert [p.id for p in workflow.list_vendor_payouts("v1")] == [payout.id]


def test_failed_compensation_keeps_original_error(balance_store: InMemoryBalanceStore, admins: AdminDirectory, clock):
    class BrokenReleaseLedger(LedgerService):
        def release(self, vendor_id, amount_cents, idempotency_key=None):
            raise RuntimeError("ledger unavailable")

    ledger = BrokenReleaseLedger(balance_store, backoff_seconds=0, clock=clock)
    ledger.credit("v1", 500_000, "order:1")
    workflow = PayoutWorkflow(ledger, FailingAddStore(), admins, minimum_payout_cents=MINIMUM_PAYOUT_CENTS)

    with pytest.raises(ConnectionError) as exc_info:
        request_bank_payout(workflow)

    assert isinstance(exc_info.value.__cause__, RuntimeError)


def test_concurrent_payout_requests_never_overdraw():
    balances = InMemoryBalanceStore()
    ledger = LedgerService(balances, max_attempts=10_000, backoff_seconds=0)
    workflow = PayoutWorkflow(
        ledger,
        InMemoryPayoutRequestStore(),
        AdminDirectory(ADMIN_ROLES),
        minimum_payout_cents=MINIMUM_PAYOUT_CENTS,
    )
    ledger.credit("v1", 1_000_000, "order:1")

    def submit(_):
        try:
            return workflow.request_payout("v1", 300_000, "bank_transfer", BANK_DETAILS)
        except InsufficientFunds:
            return None

    with ThreadPoolExecutor(max_workers=12) as pool:
        results = list(pool.map(submit, range(12)))

    created = [r for r in results if r is not None]
    balance = balances.get("v1")
    assert len(created) == 3
    assert balance.available_balance_cents == 100_000
    assert balance.pending_balance_cents == 900_000
    assert len(workflow.list_vendor_payouts("v1")) == 3
