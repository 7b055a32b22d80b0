"""
Receipt Storage — HTTP object storage client for manual-payment receipts.

Receipts are addressed by an opaque reference "<bucket>/<object path>". This
service only uploads, deletes and signs; it never reads receipt contents.
"""

import logging
import secrets
import time

import httpx

from config import settings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    pass


def build_receipt_path(user_id: str, business_id: str, filename: str | None) -> str:
    """<user>/<business>/<epoch ms>-<random>.<ext>"""
    ext = "jpg"
    if filename and "." in filename:
        ext = filename.rsplit(".", 1)[-1].lower()[:8] or "jpg"
    return f"{user_id}/{business_id}/{int(time.time() * 1000)}-{secrets.token_hex(6)}.{ext}"


class ReceiptStorage:
    def __init__(
        self,
        base_url: str | None = None,
        service_key: str | None = None,
        bucket: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.STORAGE_URL).rstrip("/")
        self.service_key = service_key if service_key is not None else settings.STORAGE_SERVICE_KEY
        self.bucket = bucket or settings.STORAGE_BUCKET
        self.timeout = timeout if timeout is not None else settings.STORAGE_TIMEOUT_SECONDS
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Authorization": f"Bearer {self.service_key}"} if self.service_key else {}
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, headers=headers, transport=self.transport,
        )

    def _split(self, ref: str) -> tuple[str, str]:
        bucket, _, path = ref.partition("/")
        if not bucket or not path:
            raise StorageError(f"Malformed receipt reference: {ref!r}")
        return bucket, path

    async def upload(self, path: str, content: bytes, content_type: str) -> str:
        """Store the object and return its reference."""
        try:
            async with self._client() as client:
                resp = await client.post(
                    f"/object/{self.bucket}/{path}",
                    content=content,
                    headers={"Content-Type": content_type, "x-upsert": "false"},
                )
        except httpx.HTTPError as e:
            raise StorageError(f"Receipt upload failed: {e}") from e
        if resp.status_code >= 400:
            raise StorageError(f"Receipt upload failed: HTTP {resp.status_code}")
        ref = f"{self.bucket}/{path}"
        logger.info("Stored receipt %s (%d bytes)", ref, len(content))
        return ref

    async def delete(self, ref: str) -> None:
        bucket, path = self._split(ref)
        try:
            async with self._client() as client:
                resp = await client.delete(f"/object/{bucket}/{path}")
        except httpx.HTTPError as e:
            raise StorageError(f"Receipt delete failed: {e}") from e
        if resp.status_code >= 400 and resp.status_code != 404:
            raise StorageError(f"Receipt delete failed: HTTP {resp.status_code}")

    async def signed_url(self, ref: str, expires_in: int | None = None) -> str:
        bucket, path = self._split(ref)
        expires_in = expires_in or settings.RECEIPT_URL_TTL_SECONDS
        try:
            async with self._client() as client:
                resp = await client.post(f"/object/sign/{bucket}/{path}", json={"expiresIn": expires_in})
        except httpx.HTTPError as e:
            raise StorageError(f"Receipt signing failed: {e}") from e
        if resp.status_code >= 400:
            raise StorageError(f"Receipt signing failed: HTTP {resp.status_code}")
        signed = resp.json().get("signedURL")
        if not signed:
            raise StorageError("Storage returned no signed URL")
        return signed if signed.startswith("http") else f"{self.base_url}{signed}"
