"""Shared helpers for API tests."""
from tests.constants import TEST_CHUNK_SIZE, TEST_PASSWORD, URLs
from app.services.chunk_codec import calculate_total_chunks, encode_chunk, split_bytes


def get_jwt(client, email="owner@example.com") -> str:
    """Register (if needed) and login, returning a JWT."""
    client.post(URLs.REGISTER, json={"email": email, "password": TEST_PASSWORD})
    response = client.post(URLs.LOGIN, json={"email": email, "password": TEST_PASSWORD})
    return response.json()["data"]["access_token"]


def auth_headers(jwt: str) -> dict:
    return {"Authorization": f"Bearer {jwt}"}


def initiate(client, jwt, filename, file_size, total_chunks=None):
    if total_chunks is None:
        total_chunks = calculate_total_chunks(file_size, TEST_CHUNK_SIZE)
    return client.post(
        URLs.UPLOAD_INITIATE,
        headers=auth_headers(jwt),
        json={"filename": filename, "fileSize": file_size, "totalChunks": total_chunks},
    )


def send_chunk(client, jwt, upload_id, chunk_index, total_chunks, data: bytes):
    return client.post(
        URLs.UPLOAD_CHUNK,
        headers=auth_headers(jwt),
        json={
            "uploadId": upload_id,
            "chunkIndex": chunk_index,
            "totalChunks": total_chunks,
            "chunkData": encode_chunk(data),
        },
    )


def upload_bytes(client, jwt, filename: str, payload: bytes) -> dict:
    """Run initiate, chunk and finalize; return the finalize data."""
    response = initiate(client, jwt, filename, len(payload))
    assert response.status_code == 201, response.json()
    session = response.json()["data"]

    for index, chunk in enumerate(split_bytes(payload, TEST_CHUNK_SIZE)):
        response = send_chunk(client, jwt, session["uploadId"], index, session["totalChunks"], chunk)
        assert response.status_code == 200, response.json()

    response = client.post(
        URLs.UPLOAD_FINALIZE,
        headers=auth_headers(jwt),
        json={"uploadId": session["uploadId"]},
    )
    assert response.status_code == 201, response.json()
    return response.json()["data"]
