"""
Contract Repository
===================

Relational store adapter for contracts. Every caller-facing read is scoped
by tenant (organization id). `get_awaiting_outcome` is unscoped: it serves
the analysis job and the stale sweep, which already hold a contract id the
service created itself.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .db.models import Contract, ContractStatus
from .errors import StorageFailure

logger = logging.getLogger(__name__)


class ContractRepository:
    """Tenant-scoped access to contract records"""

    def __init__(self, session: Session):
        self.session = session

    def create_processing(
        self,
        *,
        tenant_id: str,
        uploaded_by_user_id: str,
        name: str,
        storage_key: str,
        mime_type: str,
        size_bytes: int,
        sha256: Optional[str] = None,
    ) -> Contract:
        """
        Insert a new contract in `processing`.

        The blob must already be durably written under `storage_key`.

        Raises:
            StorageFailure: If the insert or commit fails
        """
        now = datetime.utcnow()
        contract = Contract(
            organization_id=tenant_id,
            uploaded_by_user_id=uploaded_by_user_id,
            name=name,
            storage_key=storage_key,
            mime_type=mime_type,
            size_bytes=size_bytes,
            sha256=sha256,
            status=ContractStatus.PROCESSING,
            analysis_attempts=1,
            created_at=now,
            updated_at=now,
        )
        try:
            self.session.add(contract)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Failed to create contract record for key={storage_key}: {e}")
            raise StorageFailure("Failed to record the uploaded contract.") from e
        return contract

    def get_for_tenant(self, contract_id: str, tenant_id: str) -> Optional[Contract]:
        """Return the contract only if it belongs to `tenant_id`."""
        return (
            self.session.query(Contract)
            .filter(Contract.id == contract_id, Contract.organization_id == tenant_id)
            .first()
        )

    def list_for_tenant(self, tenant_id: str) -> List[Contract]:
        """Tenant's contracts, newest first."""
        return (
            self.session.query(Contract)
            .filter(Contract.organization_id == tenant_id)
            .order_by(Contract.created_at.desc())
            .all()
        )

    def list_stale_processing(self, older_than: timedelta, limit: int = 100) -> List[Contract]:
        """Contracts still `processing` whose last update is older than `older_than`."""
        cutoff = datetime.utcnow() - older_than
        return (
            self.session.query(Contract)
            .filter(Contract.status == ContractStatus.PROCESSING, Contract.updated_at < cutoff)
            .order_by(Contract.updated_at.asc())
            .limit(limit)
            .all()
        )

    def get_awaiting_outcome(
        self, contract_id: str, attempt: Optional[int] = None
    ) -> Optional[Contract]:
        """
        Lock and return the contract only while it still awaits `attempt`.

        None when the contract is gone, already terminal, or has been
        re-dispatched under a later attempt. The row lock (FOR UPDATE where
        the database supports it) is held until the caller commits, so two
        writers never both see `processing`.
        """
        query = self.session.query(Contract).filter(
            Contract.id == contract_id,
            Contract.status == ContractStatus.PROCESSING,
        )
        if attempt is not None:
            query = query.filter(Contract.analysis_attempts == attempt)
        return query.with_for_update().populate_existing().first()

    def record_dispatch(self, contract: Contract) -> Contract:
        """Count another analysis attempt and reset the staleness clock."""
        contract.analysis_attempts = (contract.analysis_attempts or 0) + 1
        contract.updated_at = datetime.utcnow()
        return contract

    def save(self, contract: Contract) -> Contract:
        """
        Commit pending changes to `contract`.

        Raises:
            StorageFailure: If the commit fails
        """
        try:
            self.session.add(contract)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageFailure(f"Failed to update contract {contract.id}") from e
        return contract
