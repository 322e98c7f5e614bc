"""
HTTP client for the XenBox upload and share API.

Sending side of the chunk protocol: slices a local file into fixed-size
chunks, uploads them base64-encoded, resumes interrupted uploads from the
server's list of missing chunks, and downloads shared or owned files.
"""
import time
from dataclasses import dataclass
from pathlib import Path

import httpx

from app.logging_config import setup_logging
from app.services.chunk_codec import calculate_total_chunks, encode_chunk, read_file_chunk, split_bytes

logger = setup_logging()

API_PREFIX = "/api/v1/xenbox"

# Protocol chunk size; must match the server's XENBOX_CHUNK_SIZE_MB
DEFAULT_CHUNK_SIZE = 10 * 1024 * 1024


class XenBoxClientError(Exception):
    """Non-2xx response from the server, or retries exhausted."""

    def __init__(self, status_code: int | None, message: str, error: str | None = None):
        self.status_code = status_code
        self.message = message
        self.error = error
        super().__init__(f"[{status_code}] {message}" if status_code else message)


@dataclass
class UploadedFile:
    id: str
    url: str
    filename: str
    mime_type: str
    size: int
    share_token: str


class XenBoxClient:
    """
    Client for the XenBox API with per-chunk retry.

    Works with any ``httpx.Client`` whose base_url points at the server,
    including FastAPI's TestClient.
    """

    def __init__(
        self,
        http: httpx.Client,
        access_token: str | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_retries: int = 3,
        retry_backoff: float = 0.5,
    ):
        self.http = http
        self.access_token = access_token
        self.chunk_size = chunk_size
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff

    def _headers(self) -> dict:
        if not self.access_token:
            return {}
        return {"Authorization": f"Bearer {self.access_token}"}

    def _request(self, method: str, endpoint: str, retries: int = 0, **kwargs) -> httpx.Response:
        """
        Send a request, retrying 5xx responses and network errors.

        Raises:
            XenBoxClientError: On a 4xx response, or once retries are exhausted
        """
        last_error = None

        for attempt in range(retries + 1):
            try:
                response = self.http.request(method, endpoint, headers=self._headers(), **kwargs)
            except httpx.TransportError as e:
                last_error = XenBoxClientError(None, f"Network error: {type(e).__name__}")
            else:
                if response.is_success:
                    return response
                last_error = self._error_from(response)
                if response.status_code < 500:
                    raise last_error

            if attempt < retries:
                delay = self.retry_backoff * (2 ** attempt)
                logger.warning(
                    f"Request failed (attempt {attempt + 1}/{retries + 1}): "
                    f"{method} {endpoint} {last_error}, retrying in {delay}s"
                )
                time.sleep(delay)

        raise last_error

    @staticmethod
    def _error_from(response: httpx.Response) -> XenBoxClientError:
        try:
            body = response.json()
        except ValueError:
            return XenBoxClientError(response.status_code, response.text or "Unknown error")

        if isinstance(body, dict):
            return XenBoxClientError(
                response.status_code,
                str(body.get("message") or body.get("detail") or "Unknown error"),
                body.get("error"),
            )
        return XenBoxClientError(response.status_code, "Unknown error")

    # Upload protocol

    def initiate(self, filename: str, file_size: int, total_chunks: int) -> dict:
        response = self._request(
            "POST",
            f"{API_PREFIX}/upload/initiate",
            json={"filename": filename, "fileSize": file_size, "totalChunks": total_chunks},
        )
        return response.json()["data"]

    def send_chunk(self, upload_id: str, chunk_index: int, total_chunks: int, data: bytes) -> dict:
        response = self._request(
            "POST",
            f"{API_PREFIX}/upload/chunk",
            retries=self.max_retries,
            json={
                "uploadId": upload_id,
                "chunkIndex": chunk_index,
                "totalChunks": total_chunks,
                "chunkData": encode_chunk(data),
            },
        )
        return response.json()["data"]

    def finalize(self, upload_id: str) -> UploadedFile:
        response = self._request(
            "POST", f"{API_PREFIX}/upload/finalize", json={"uploadId": upload_id}
        )
        data = response.json()["data"]
        return UploadedFile(
            id=data["id"],
            url=data["url"],
            filename=data["filename"],
            mime_type=data["mimeType"],
            size=data["size"],
            share_token=data["shareToken"],
        )

    def cancel(self, upload_id: str) -> None:
        self._request("DELETE", f"{API_PREFIX}/upload/{upload_id}")

    def status(self, upload_id: str) -> dict:
        response = self._request("GET", f"{API_PREFIX}/upload/{upload_id}/status")
        return response.json()["data"]

    def upload_file(self, path: str | Path, filename: str | None = None) -> UploadedFile:
        """Upload a local file in chunks and finalize it."""
        path = Path(path)
        file_size = path.stat().st_size
        filename = filename or path.name

        total_chunks = calculate_total_chunks(file_size, self.chunk_size)
        session = self.initiate(filename, file_size, total_chunks)
        upload_id = session["uploadId"]

        logger.info(
            f"Uploading {filename}: upload_id={upload_id}, size={file_size}, "
            f"chunks={session['totalChunks']}"
        )
        return self._send_and_finalize(path, upload_id, range(total_chunks), total_chunks)

    def upload_bytes(self, payload: bytes, filename: str) -> UploadedFile:
        """Upload an in-memory payload in chunks and finalize it."""
        chunks = split_bytes(payload, self.chunk_size)
        session = self.initiate(filename, len(payload), len(chunks))
        upload_id = session["uploadId"]

        for chunk_index, data in enumerate(chunks):
            self.send_chunk(upload_id, chunk_index, len(chunks), data)

        return self.finalize(upload_id)

    def resume_upload(self, path: str | Path, upload_id: str) -> UploadedFile:
        """Re-send only the chunks the server is missing, then finalize."""
        progress = self.status(upload_id)
        missing = progress["missingChunks"]

        logger.info(
            f"Resuming upload_id={upload_id}: {progress['receivedChunks']}/"
            f"{progress['totalChunks']} received, {len(missing)} missing"
        )
        return self._send_and_finalize(Path(path), upload_id, missing, progress["totalChunks"])

    def _send_and_finalize(self, path: Path, upload_id: str, indices, total_chunks: int) -> UploadedFile:
        for chunk_index in indices:
            data = read_file_chunk(path, chunk_index, self.chunk_size)
            self.send_chunk(upload_id, chunk_index, total_chunks, data)

        return self.finalize(upload_id)

    # Share access

    def share_info(self, share_token: str) -> dict:
        response = self._request("GET", f"{API_PREFIX}/share/{share_token}")
        return response.json()["data"]

    def download(self, share_token: str, dest: str | Path, password: str | None = None) -> Path:
        """Stream a shared file to ``dest``."""
        params = {"password": password} if password else None
        return self._stream_to(f"{API_PREFIX}/share/{share_token}/download", Path(dest), params)

    def download_own(self, file_id: str, dest: str | Path) -> Path:
        """Stream one of the caller's own files, whatever its share settings."""
        return self._stream_to(f"{API_PREFIX}/files/{file_id}/download", Path(dest), None)

    def _stream_to(self, endpoint: str, dest: Path, params: dict | None) -> Path:
        with self.http.stream("GET", endpoint, params=params, headers=self._headers()) as response:
            if not response.is_success:
                response.read()
                raise self._error_from(response)

            dest.parent.mkdir(parents=True, exist_ok=True)
            with open(dest, "wb") as f:
                for block in response.iter_bytes():
                    f.write(block)

        return dest
