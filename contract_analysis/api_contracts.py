"""
Contract API Endpoints
======================

FastAPI router for contract upload and retrieval. Mounted under /api/v1.

- POST /contracts/upload               - Upload a contract (multipart "contractFile")
- GET  /contracts                      - Caller's organization's contracts, newest first
- GET  /contracts/{contract_id}        - One contract
- GET  /contracts/{contract_id}/download-url - Short-lived download URL
- GET  /files/{token}                  - Download through a local-storage signed URL
"""

import asyncio
import logging
from pathlib import PurePosixPath
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from .auth import AuthContext, get_auth_context
from .db.session import get_db
from .errors import ContractNotFound, EmptyUpload, PayloadTooLarge
from .ingestion import IngestionCoordinator
from .repository import ContractRepository
from .schemas import ContractResponse, DownloadUrlResponse, ErrorResponse
from .storage import BlobStore, LocalStorage

logger = logging.getLogger(__name__)

router = APIRouter(tags=["contracts"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    413: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def get_ingestion(request: Request) -> IngestionCoordinator:
    return request.app.state.ingestion


def get_blob_store(request: Request) -> BlobStore:
    return request.app.state.storage


async def _read_upload(upload: UploadFile, max_bytes: int) -> bytes:
    """Read at most max_bytes + 1 so oversize uploads are never fully buffered."""
    if upload.size is not None and upload.size > max_bytes:
        raise PayloadTooLarge(
            f"File exceeds the maximum upload size of {max_bytes // (1024 * 1024)}MB."
        )
    return await upload.read(max_bytes + 1)


@router.post(
    "/contracts/upload",
    response_model=ContractResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
)
async def upload_contract(
    # "contractFile" is the documented field; "file" is accepted for simple clients
    contract_file: Optional[UploadFile] = File(default=None, alias="contractFile"),
    file: Optional[UploadFile] = File(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    ingestion: IngestionCoordinator = Depends(get_ingestion),
):
    """
    Upload a PDF or plain-text contract.

    Returns immediately with status `processing`; analysis runs in the
    background.
    """
    upload = contract_file or file
    if upload is None:
        raise EmptyUpload()

    try:
        data = await _read_upload(upload, ingestion.max_upload_bytes)
    finally:
        await upload.close()

    contract = await ingestion.ingest(
        file_bytes=data,
        filename=upload.filename,
        caller=auth,
        session=db,
    )
    return ContractResponse.model_validate(contract)


@router.get("/contracts", response_model=List[ContractResponse], responses=ERROR_RESPONSES)
async def list_contracts(
    auth: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """List the caller's organization's contracts, newest first"""
    contracts = ContractRepository(db).list_for_tenant(auth.organization_id)
    return [ContractResponse.model_validate(c) for c in contracts]


@router.get("/contracts/{contract_id}", response_model=ContractResponse, responses=ERROR_RESPONSES)
async def get_contract(
    contract_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """Get one contract. Contracts of other organizations are reported as not found."""
    contract = ContractRepository(db).get_for_tenant(contract_id, auth.organization_id)
    if contract is None:
        raise ContractNotFound()
    return ContractResponse.model_validate(contract)


@router.get(
    "/contracts/{contract_id}/download-url",
    response_model=DownloadUrlResponse,
    responses=ERROR_RESPONSES,
)
async def get_download_url(
    request: Request,
    contract_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    storage: BlobStore = Depends(get_blob_store),
):
    """Short-lived URL for downloading the original file"""
    contract = ContractRepository(db).get_for_tenant(contract_id, auth.organization_id)
    if contract is None:
        raise ContractNotFound()

    ttl = request.app.state.settings.signed_url_ttl_seconds
    url = await asyncio.to_thread(storage.signed_url, contract.storage_key, ttl)
    return DownloadUrlResponse(url=url, expires_in=ttl)


@router.get("/files/{token}", responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}})
async def download_file(
    token: str,
    storage: BlobStore = Depends(get_blob_store),
):
    """Serve a blob named by a signed download token (local storage only)"""
    if not isinstance(storage, LocalStorage):
        raise HTTPException(status_code=404, detail="Not found.")

    key = storage.resolve_token(token)
    if not key:
        raise HTTPException(status_code=403, detail="Invalid or expired download link.")
    if not storage.exists(key):
        raise HTTPException(status_code=404, detail="Not found.")

    data = await asyncio.to_thread(storage.get, key)
    filename = PurePosixPath(key).name
    return Response(
        content=data,
        media_type=storage.content_type(key),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
