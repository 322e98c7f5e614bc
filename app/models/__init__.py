from app.models.upload_session import UploadSession, UploadStatus
from app.models.user import User
from app.models.xenbox_file import XenBoxFile

__all__ = ["UploadSession", "UploadStatus", "User", "XenBoxFile"]
