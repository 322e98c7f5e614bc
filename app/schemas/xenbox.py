from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.config import settings
from app.utils.validators import PasswordValidationError, validate_share_password


class CamelModel(BaseModel):
    """JSON fields in camelCase; Python attributes stay snake_case."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# Upload

class InitiateUploadRequest(CamelModel):
    filename: str = Field(min_length=1, max_length=1024)
    total_chunks: int
    file_size: int


class InitiateUploadResponse(CamelModel):
    upload_id: str
    chunk_size: int
    total_chunks: int
    expires_at: datetime


class ChunkUploadRequest(CamelModel):
    upload_id: str
    chunk_index: int
    total_chunks: int
    chunk_data: str  # base64

    @field_validator("chunk_data")
    @classmethod
    def bounded_payload(cls, v: str) -> str:
        # Reject before decoding; the exact byte limit is enforced on receipt
        if len(v) > settings.max_chunk_payload_chars:
            raise ValueError(f"chunk payload longer than {settings.max_chunk_payload_chars} characters")
        return v


class ChunkUploadResponse(CamelModel):
    chunk_index: int
    received_chunks: int
    total_chunks: int


class FinalizeUploadRequest(CamelModel):
    upload_id: str


class FinalizeUploadResponse(CamelModel):
    id: str
    url: str
    filename: str
    mime_type: str
    size: int
    share_token: str


class CancelUploadResponse(CamelModel):
    upload_id: str
    status: str


class UploadStatusResponse(CamelModel):
    upload_id: str
    total_chunks: int
    received_chunks: int
    missing_chunks: list[int]
    status: str


# Files

class XenBoxFileResponse(CamelModel):
    id: str
    filename: str
    mime_type: str
    size: int
    created_at: datetime
    share_token: str
    share_url: str
    has_password: bool
    expiry: datetime | None = None


class FileListResponse(CamelModel):
    files: list[XenBoxFileResponse]


class UpdateSettingsRequest(CamelModel):
    """
    Share policy update.

    Only fields present in the request body are applied: null or "" clears
    the field, an omitted field is left unchanged.
    """

    password: str | None = None
    expiry: datetime | None = None

    @field_validator("password", "expiry", mode="before")
    @classmethod
    def empty_string_clears(cls, v):
        if v == "":
            return None
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str | None) -> str | None:
        if v is not None:
            try:
                validate_share_password(v)
            except PasswordValidationError as e:
                raise ValueError('; '.join(e.errors))
        return v


class UpdateSettingsResponse(CamelModel):
    share_url: str
    has_password: bool
    expiry: datetime | None = None


class DeleteFileResponse(CamelModel):
    id: str
    deleted: bool = True


class QuotaResponse(CamelModel):
    space_used: int
    space_allowed: int
    space_reserved: int
    space_available: int


# Public share

class ShareInfoResponse(CamelModel):
    filename: str
    size: int
    mime_type: str
    requires_password: bool
    expiry: datetime | None = None
