"""
XenBox domain exceptions.

Every error a client can trigger derives from XenBoxError and carries the
HTTP status, short error label and static client-facing message used by
the exception handler in app.main. Internal details go to the log only.
"""
from fastapi import status

from app.schemas.common import ErrorResponse


class XenBoxError(Exception):
    """Base exception for XenBox operations."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    error: str = "Bad Request"
    message: str = "Request could not be processed"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.message
        super().__init__(self.detail)

    def to_response(self) -> dict:
        return ErrorResponse(error=self.error, message=self.message).model_dump()


# Upload errors

class InvalidUploadRequest(XenBoxError):
    """Initiate parameters are inconsistent (size, chunk count, limits)."""

    message = "Invalid upload parameters"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class QuotaExceeded(XenBoxError):
    """Admission or finalize would push the owner over spaceAllowed."""

    status_code = status.HTTP_403_FORBIDDEN
    error = "Forbidden"
    message = "Quota exceeded"

    def __init__(self, file_size: int, space_used: int, space_allowed: int, message: str | None = None):
        self.file_size = file_size
        self.space_used = space_used
        self.space_allowed = space_allowed
        if message:
            self.message = message
        super().__init__(
            f"Quota exceeded: used={space_used} requested={file_size} allowed={space_allowed}"
        )


class SessionNotFound(XenBoxError):
    """Unknown, foreign or already terminated upload id."""

    status_code = status.HTTP_404_NOT_FOUND
    error = "Not Found"
    message = "Upload session not found"

    def __init__(self, upload_id: str):
        self.upload_id = upload_id
        super().__init__(f"Upload session not found: {upload_id}")


class UploadStateConflict(XenBoxError):
    """Operation not allowed in the session's current state."""

    status_code = status.HTTP_409_CONFLICT
    error = "Conflict"
    message = "Upload is being finalized"

    def __init__(self, upload_id: str, state: str):
        self.upload_id = upload_id
        self.state = state
        super().__init__(f"Upload {upload_id} is {state}")


class ChunkIndexOutOfRange(XenBoxError):
    message = "Chunk index out of range"

    def __init__(self, chunk_index: int, total_chunks: int):
        self.chunk_index = chunk_index
        self.total_chunks = total_chunks
        super().__init__(f"Chunk index {chunk_index} outside [0, {total_chunks})")


class ChunkCountMismatch(XenBoxError):
    """Client changed totalChunks mid-upload."""

    status_code = status.HTTP_409_CONFLICT
    error = "Conflict"
    message = "Total chunk count does not match the upload session"

    def __init__(self, expected: int, received: int):
        self.expected = expected
        self.received = received
        super().__init__(f"Expected totalChunks={expected}, got {received}")


class InvalidChunk(XenBoxError):
    """Chunk payload is empty, oversized or not valid base64."""

    message = "Invalid chunk data"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class ChunkWriteFailed(XenBoxError):
    """Storage rejected a chunk write; the client should retry the index."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error = "Service Unavailable"
    message = "Failed to store chunk, please retry"

    def __init__(self, upload_id: str, chunk_index: int):
        self.upload_id = upload_id
        self.chunk_index = chunk_index
        super().__init__(f"Failed to store chunk {chunk_index} of {upload_id}")


class IncompleteUpload(XenBoxError):
    status_code = status.HTTP_409_CONFLICT
    error = "Conflict"
    message = "Not all chunks were received"

    def __init__(self, received: int, total: int):
        self.received = received
        self.total = total
        super().__init__(f"Not all chunks received. Expected: {total}, Received: {received}")


class SizeMismatch(XenBoxError):
    status_code = 422
    error = "Unprocessable Entity"
    message = "Assembled file size does not match the declared size"

    def __init__(self, declared: int, actual: int):
        self.declared = declared
        self.actual = actual
        super().__init__(f"Declared {declared} bytes, assembled {actual} bytes")


class AssemblyFailed(XenBoxError):
    """Storage failure while assembling; the session stays resumable."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error = "Service Unavailable"
    message = "Failed to assemble upload, please retry finalize"

    def __init__(self, upload_id: str):
        self.upload_id = upload_id
        super().__init__(f"Failed to assemble upload {upload_id}")


# Catalog errors

class FileNotFound(XenBoxError):
    """Unknown file id, or a file owned by someone else."""

    status_code = status.HTTP_404_NOT_FOUND
    error = "Not Found"
    message = "File not found"

    def __init__(self, file_id: str):
        self.file_id = file_id
        super().__init__(f"File not found: {file_id}")


# Share access errors

class ShareNotFound(XenBoxError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "Not Found"
    message = "File not found"

    def __init__(self):
        super().__init__("Unknown share token")


class ShareExpired(XenBoxError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "Forbidden"
    message = "Link expired"

    def to_response(self) -> dict:
        return {**super().to_response(), "isExpired": True}


class SharePasswordRequired(XenBoxError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "Unauthorized"
    message = "Password required"

    def to_response(self) -> dict:
        return {**super().to_response(), "requiresPassword": True}


class SharePasswordIncorrect(SharePasswordRequired):
    message = "Incorrect password"


class StorageUnavailable(XenBoxError):
    """Storage backend could not prepare the upload area."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error = "Service Unavailable"
    message = "Storage temporarily unavailable, please retry"
