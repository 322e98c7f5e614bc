"""
XenBox owner endpoints.

Chunked upload protocol (initiate / chunk / finalize / cancel / status) and
management of the caller's finalized files. All routes require a bearer JWT.
"""
from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import FileResponse

from app.dependencies.auth import get_current_user
from app.dependencies.xenbox import get_file_registry, get_quota_guard, get_upload_coordinator
from app.logging_config import setup_logging
from app.models.user import User
from app.models.xenbox_file import XenBoxFile
from app.schemas.common import APIResponse
from app.schemas.xenbox import (
    CancelUploadResponse,
    ChunkUploadRequest,
    ChunkUploadResponse,
    DeleteFileResponse,
    FileListResponse,
    FinalizeUploadRequest,
    FinalizeUploadResponse,
    InitiateUploadRequest,
    InitiateUploadResponse,
    QuotaResponse,
    UpdateSettingsRequest,
    UpdateSettingsResponse,
    UploadStatusResponse,
    XenBoxFileResponse,
)
from app.services.chunk_codec import decode_chunk
from app.services.file_registry import UNSET, FileRegistry, build_share_url
from app.services.quota import QuotaGuard
from app.services.upload_coordinator import UploadCoordinator

router = APIRouter(prefix="/xenbox", tags=["xenbox"])

logger = setup_logging()


def _share_url(request: Request, xenbox_file: XenBoxFile) -> str:
    return build_share_url(xenbox_file.share_token, str(request.base_url))


def _file_response(request: Request, xenbox_file: XenBoxFile) -> XenBoxFileResponse:
    return XenBoxFileResponse(
        id=xenbox_file.file_id,
        filename=xenbox_file.filename,
        mime_type=xenbox_file.mime_type,
        size=xenbox_file.size,
        created_at=xenbox_file.created_at,
        share_token=xenbox_file.share_token,
        share_url=_share_url(request, xenbox_file),
        has_password=xenbox_file.requires_password,
        expiry=xenbox_file.expiry,
    )


# Upload protocol

@router.post(
    "/upload/initiate",
    response_model=APIResponse[InitiateUploadResponse],
    status_code=status.HTTP_201_CREATED,
)
async def initiate_upload(
    body: InitiateUploadRequest,
    current_user: User = Depends(get_current_user),
    coordinator: UploadCoordinator = Depends(get_upload_coordinator),
):
    """
    Open a chunked upload session.

    `totalChunks` must equal ceil(fileSize / chunkSize); the chunk size in
    the response is the one every chunk but the last must use.
    """
    session = await coordinator.initiate(
        owner_id=current_user.id,
        filename=body.filename,
        file_size=body.file_size,
        total_chunks=body.total_chunks,
    )

    return APIResponse(
        success=True,
        data=InitiateUploadResponse(
            upload_id=session.upload_id,
            chunk_size=session.chunk_size,
            total_chunks=session.total_chunks,
            expires_at=coordinator.expires_at(session),
        ),
    )


@router.post(
    "/upload/chunk",
    response_model=APIResponse[ChunkUploadResponse],
    status_code=status.HTTP_200_OK,
)
async def upload_chunk(
    body: ChunkUploadRequest,
    current_user: User = Depends(get_current_user),
    coordinator: UploadCoordinator = Depends(get_upload_coordinator),
):
    """Receive one base64 chunk. Chunks may arrive in any order and may be re-sent."""
    data = decode_chunk(body.chunk_data)

    receipt = await coordinator.receive_chunk(
        upload_id=body.upload_id,
        owner_id=current_user.id,
        chunk_index=body.chunk_index,
        total_chunks=body.total_chunks,
        data=data,
    )

    return APIResponse(
        success=True,
        data=ChunkUploadResponse(
            chunk_index=receipt.chunk_index,
            received_chunks=receipt.received_chunks,
            total_chunks=receipt.total_chunks,
        ),
    )


@router.post(
    "/upload/finalize",
    response_model=APIResponse[FinalizeUploadResponse],
    status_code=status.HTTP_201_CREATED,
)
async def finalize_upload(
    body: FinalizeUploadRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    coordinator: UploadCoordinator = Depends(get_upload_coordinator),
):
    xenbox_file = await coordinator.finalize(body.upload_id, current_user.id)

    return APIResponse(
        success=True,
        data=FinalizeUploadResponse(
            id=xenbox_file.file_id,
            url=_share_url(request, xenbox_file),
            filename=xenbox_file.filename,
            mime_type=xenbox_file.mime_type,
            size=xenbox_file.size,
            share_token=xenbox_file.share_token,
        ),
    )


@router.delete(
    "/upload/{upload_id}",
    response_model=APIResponse[CancelUploadResponse],
    status_code=status.HTTP_200_OK,
)
async def cancel_upload(
    upload_id: str,
    current_user: User = Depends(get_current_user),
    coordinator: UploadCoordinator = Depends(get_upload_coordinator),
):
    """Discard an upload and its chunks. Safe to repeat."""
    await coordinator.cancel(upload_id, current_user.id)
    return APIResponse(
        success=True,
        data=CancelUploadResponse(upload_id=upload_id, status="cancelled"),
    )


@router.get(
    "/upload/{upload_id}/status",
    response_model=APIResponse[UploadStatusResponse],
    status_code=status.HTTP_200_OK,
)
def get_upload_status(
    upload_id: str,
    current_user: User = Depends(get_current_user),
    coordinator: UploadCoordinator = Depends(get_upload_coordinator),
):
    """Progress of an upload; `missingChunks` lists the indices to (re-)send."""
    session = coordinator.status(upload_id, current_user.id)
    return APIResponse(
        success=True,
        data=UploadStatusResponse(
            upload_id=session.upload_id,
            total_chunks=session.total_chunks,
            received_chunks=session.received_count,
            missing_chunks=session.missing_chunk_indices(),
            status=session.status.value,
        ),
    )


# Files

@router.get(
    "/files",
    response_model=APIResponse[FileListResponse],
    status_code=status.HTTP_200_OK,
)
def list_files(
    request: Request,
    search: str | None = Query(None, max_length=255, description="Case-insensitive filename filter"),
    current_user: User = Depends(get_current_user),
    registry: FileRegistry = Depends(get_file_registry),
):
    files = registry.list_files(current_user.id, search)
    return APIResponse(
        success=True,
        data=FileListResponse(files=[_file_response(request, f) for f in files]),
    )


@router.get(
    "/files/{file_id}",
    response_model=APIResponse[XenBoxFileResponse],
    status_code=status.HTTP_200_OK,
)
def get_file(
    file_id: str,
    request: Request,
    current_user: User = Depends(get_current_user),
    registry: FileRegistry = Depends(get_file_registry),
):
    xenbox_file = registry.get_owned(current_user.id, file_id)
    return APIResponse(success=True, data=_file_response(request, xenbox_file))


@router.get(
    "/files/{file_id}/download",
    status_code=status.HTTP_200_OK,
)
def download_own_file(
    file_id: str,
    current_user: User = Depends(get_current_user),
    registry: FileRegistry = Depends(get_file_registry),
):
    """
    Stream one of the caller's files.

    Works whatever the share settings are, so a forgotten share password
    or an expired link never locks the owner out.
    """
    xenbox_file, path = registry.open_owned(current_user.id, file_id)
    return FileResponse(
        path=path,
        filename=xenbox_file.filename,
        media_type=xenbox_file.mime_type,
        content_disposition_type="attachment",
    )


@router.put(
    "/files/{file_id}/settings",
    response_model=APIResponse[UpdateSettingsResponse],
    status_code=status.HTTP_200_OK,
)
def update_file_settings(
    file_id: str,
    body: UpdateSettingsRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    registry: FileRegistry = Depends(get_file_registry),
):
    """
    Set or clear the share password and expiry.

    `null` or `""` clears a field; omitting it leaves it unchanged. The
    password is never returned, only `hasPassword`.
    """
    xenbox_file = registry.get_owned(current_user.id, file_id)
    sent = body.model_fields_set

    xenbox_file = registry.update_settings(
        xenbox_file,
        password=body.password if "password" in sent else UNSET,
        expiry=body.expiry if "expiry" in sent else UNSET,
    )

    return APIResponse(
        success=True,
        data=UpdateSettingsResponse(
            share_url=_share_url(request, xenbox_file),
            has_password=xenbox_file.requires_password,
            expiry=xenbox_file.expiry,
        ),
    )


@router.delete(
    "/files/{file_id}",
    response_model=APIResponse[DeleteFileResponse],
    status_code=status.HTTP_200_OK,
)
async def delete_file(
    file_id: str,
    current_user: User = Depends(get_current_user),
    registry: FileRegistry = Depends(get_file_registry),
):
    await registry.delete(current_user.id, file_id)
    return APIResponse(success=True, data=DeleteFileResponse(id=file_id, deleted=True))


@router.get(
    "/quota",
    response_model=APIResponse[QuotaResponse],
    status_code=status.HTTP_200_OK,
)
def get_quota(
    current_user: User = Depends(get_current_user),
    quota: QuotaGuard = Depends(get_quota_guard),
):
    usage = quota.usage(current_user.id)
    return APIResponse(
        success=True,
        data=QuotaResponse(
            space_used=usage.space_used,
            space_allowed=usage.space_allowed,
            space_reserved=usage.space_reserved,
            space_available=usage.space_available,
        ),
    )
