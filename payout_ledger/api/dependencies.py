"""Dependency injection for FastAPI endpoints"""

from fastapi import Depends
from sqlalchemy.orm import sessionmaker

from payout_ledger.config import settings
from payout_ledger.domain.authorization import AdminDirectory
from payout_ledger.infrastructure.database.repositories import BalanceRepository, PayoutRequestRepository
from payout_ledger.infrastructure.database.session import get_session_factory
from payout_ledger.services.ledger import LedgerService
from payout_ledger.services.workflow import PayoutWorkflow


def get_admin_directory() -> AdminDirectory:
    """Admin roles from configuration"""
    return AdminDirectory(settings.admin_roles)


def get_ledger_service(session_factory: sessionmaker = Depends(get_session_factory)) -> LedgerService:
    """Provide a ledger service over the configured database"""
    return LedgerService(BalanceRepository(session_factory))


def get_payout_workflow(
    ledger: LedgerService = Depends(get_ledger_service),
    session_factory: sessionmaker = Depends(get_session_factory),
    admins: AdminDirectory = Depends(get_admin_directory),
) -> PayoutWorkflow:
    """Provide the payout workflow sharing the request's ledger service"""
    return PayoutWorkflow(ledger, PayoutRequestRepository(session_factory), admins)
