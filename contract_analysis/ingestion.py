"""
Ingestion Coordinator
=====================

Accepts an uploaded file and turns it into a `processing` contract.

Order of effects:
1. size/emptiness checks (no side effects on rejection)
2. content sniffing; the client's declared type is ignored
3. blob write under a fresh tenant-scoped key
4. contract record in `processing` (blob deleted again if this fails)
5. analysis dispatch, fire-and-forget

The caller gets the record as soon as step 4 commits.
"""

import asyncio
import logging
from typing import Optional

from sqlalchemy.orm import Session

from .analysis import AnalysisRequest
from .auth import AuthContext
from .db.models import Contract
from .errors import EmptyUpload, PayloadTooLarge, StorageFailure, UnsupportedMediaType
from .ingest.sniff import is_allowed, sniff_mime_type
from .jobs.dispatcher import AnalysisDispatcher
from .repository import ContractRepository
from .storage import BlobStore

logger = logging.getLogger(__name__)

DEFAULT_FILENAME = "contract"


class IngestionCoordinator:
    """Upload validation, durable write and analysis hand-off"""

    def __init__(
        self,
        storage: BlobStore,
        dispatcher: AnalysisDispatcher,
        max_upload_bytes: int,
    ):
        self.storage = storage
        self.dispatcher = dispatcher
        self.max_upload_bytes = max_upload_bytes

    def check_size(self, size: int) -> None:
        """
        Raises:
            EmptyUpload: size is zero
            PayloadTooLarge: size exceeds the limit
        """
        if size <= 0:
            raise EmptyUpload()
        if size > self.max_upload_bytes:
            raise PayloadTooLarge(
                f"File exceeds the maximum upload size of {self.max_upload_bytes // (1024 * 1024)}MB."
            )

    async def ingest(
        self,
        file_bytes: Optional[bytes],
        filename: Optional[str],
        caller: AuthContext,
        session: Session,
    ) -> Contract:
        """
        Ingest one upload for the caller's tenant.

        Raises:
            EmptyUpload, PayloadTooLarge, UnsupportedMediaType, StorageFailure
        """
        self.check_size(len(file_bytes) if file_bytes else 0)

        mime_type = sniff_mime_type(file_bytes)
        if not is_allowed(mime_type):
            logger.info(f"Rejected upload from org {caller.organization_id}: sniffed {mime_type}")
            raise UnsupportedMediaType()

        tenant_id = caller.organization_id
        name = filename or DEFAULT_FILENAME
        key = self.storage.generate_key(tenant_id, mime_type)

        meta = await asyncio.to_thread(
            self.storage.put,
            key,
            file_bytes,
            mime_type,
            {"organizationId": tenant_id, "originalFilename": name},
        )

        repo = ContractRepository(session)
        try:
            contract = repo.create_processing(
                tenant_id=tenant_id,
                uploaded_by_user_id=caller.user_id,
                name=name,
                storage_key=key,
                mime_type=mime_type,
                size_bytes=meta.size_bytes,
                sha256=meta.sha256,
            )
        except StorageFailure:
            self._discard_blob(key)
            raise

        logger.info(
            f"Contract {contract.id} created for org {tenant_id} "
            f"({mime_type}, {meta.size_bytes} bytes)"
        )

        try:
            self.dispatcher.submit(AnalysisRequest(
                contract_id=contract.id,
                storage_key=key,
                mime_type=mime_type,
                attempt=contract.analysis_attempts,
            ))
        except Exception:
            logger.exception(
                f"Dispatch failed for contract {contract.id}; left processing for the stale sweep"
            )

        return contract

    def _discard_blob(self, key: str) -> None:
        try:
            self.storage.delete(key)
        except StorageFailure:
            logger.exception(f"Failed to delete orphaned blob {key}")
