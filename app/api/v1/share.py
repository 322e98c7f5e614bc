"""
Public share endpoints.

Anonymous access to a single file through its share token. Policy checks
(existence, expiry, password) live in ShareAccessController.
"""
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import FileResponse

from app.dependencies.xenbox import get_share_controller
from app.schemas.common import APIResponse
from app.schemas.xenbox import ShareInfoResponse
from app.services.share_access import ShareAccessController
from app.utils.datetime import isoformat_or_none

router = APIRouter(prefix="/xenbox/share", tags=["share"])


@router.get(
    "/{share_token}",
    response_model=APIResponse[ShareInfoResponse],
    status_code=status.HTTP_200_OK,
)
def get_share_info(
    share_token: str,
    controller: ShareAccessController = Depends(get_share_controller),
):
    """
    Metadata of a shared file.

    Answers 404 for unknown tokens and 403 for expired links; a password is
    not needed to see whether one is required.
    """
    xenbox_file = controller.info(share_token)
    return APIResponse(
        success=True,
        data=ShareInfoResponse(
            filename=xenbox_file.filename,
            size=xenbox_file.size,
            mime_type=xenbox_file.mime_type,
            requires_password=xenbox_file.requires_password,
            expiry=xenbox_file.expiry,
        ),
    )


@router.get(
    "/{share_token}/download",
    status_code=status.HTTP_200_OK,
)
async def download_shared_file(
    share_token: str,
    password: str | None = Query(None, description="Share password, when the link is protected"),
    controller: ShareAccessController = Depends(get_share_controller),
):
    """
    Stream a shared file.

    **Streaming Response:**
    - Content-Type is the stored MIME type
    - Content-Disposition: attachment with the original filename
    - X-File-Expiry carries the link expiry when one is set
    """
    grant = controller.open_download(share_token, password)

    headers = {}
    expiry = isoformat_or_none(grant.file.expiry)
    if expiry:
        headers["X-File-Expiry"] = expiry

    return FileResponse(
        path=grant.path,
        filename=grant.file.filename,
        media_type=grant.file.mime_type,
        content_disposition_type="attachment",
        headers=headers,
    )
