from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import quote

import httpx
from supabase import Client, create_client

from docchat.config import settings
from docchat.core.errors import StorageError

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass
class StoredObject:
    key: str
    url: str


class BlobStore(Protocol):
    def put(self, key: str, data: bytes, mime_type: str) -> StoredObject: ...


def document_blob_key(user_id: str, document_id: str, mime_type: str | None) -> str:
    subtype = ""
    if mime_type and "/" in mime_type:
        subtype = mime_type.split("/", 1)[1].split(";", 1)[0].strip()
    return f"documents/{user_id}/{document_id}.{subtype or 'bin'}"


def get_supabase_storage_client() -> Client:
    if not settings.SUPABASE_URL or not settings.supabase_service_key:
        raise StorageError("Supabase storage is not configured")
    return create_client(settings.SUPABASE_URL, settings.supabase_service_key)


def _storage_headers(content_type: str = "application/json") -> dict[str, str]:
    return {
        "apikey": settings.supabase_service_key,
        "Authorization": f"Bearer {settings.supabase_service_key}",
        "Content-Type": content_type,
    }


def _public_url(bucket: str, key: str) -> str:
    return (
        f"{settings.SUPABASE_URL.rstrip('/')}/storage/v1/object/public/"
        f"{quote(bucket, safe='')}/{quote(key, safe='/')}"
    )


def _create_bucket_if_missing(bucket: str) -> None:
    create_bucket_url = f"{settings.SUPABASE_URL.rstrip('/')}/storage/v1/bucket"
    payload = {"id": bucket, "name": bucket, "public": True}
    response = httpx.post(create_bucket_url, headers=_storage_headers(), json=payload, timeout=20.0)
    if response.status_code in {200, 201, 409}:
        return
    if response.status_code == 400:
        body = response.text.lower()
        # Some storage deployments return 400 (not 409) when bucket already exists.
        if "already exists" in body or "duplicate" in body:
            return
    raise StorageError(f"Supabase bucket ensure failed ({response.status_code}): {response.text}")


def _upload_via_rest(bucket: str, key: str, data: bytes, mime_type: str) -> None:
    upload_url = (
        f"{settings.SUPABASE_URL.rstrip('/')}/storage/v1/object/"
        f"{quote(bucket, safe='')}/{quote(key, safe='/')}"
    )
    headers = {**_storage_headers(mime_type), "x-upsert": "true"}
    response = httpx.post(upload_url, headers=headers, content=data, timeout=60.0)
    if response.status_code in {400, 404}:
        # Bucket may not exist yet on first run.
        _create_bucket_if_missing(bucket)
        response = httpx.post(upload_url, headers=headers, content=data, timeout=60.0)
    if response.status_code >= 400:
        raise StorageError(f"Supabase storage upload failed ({response.status_code}): {response.text}")


class SupabaseBlobStore:
    def __init__(self, bucket: str | None = None) -> None:
        self.bucket = bucket or settings.SUPABASE_STORAGE_BUCKET

    def put(self, key: str, data: bytes, mime_type: str) -> StoredObject:
        content_type = mime_type or DEFAULT_MIME_TYPE
        try:
            try:
                storage = get_supabase_storage_client().storage.from_(self.bucket)
                storage.upload(
                    path=key,
                    file=data,
                    file_options={"content-type": content_type, "upsert": "true"},
                )
                url = storage.get_public_url(key)
            except TypeError as exc:
                # Known supabase/httpx incompatibility: unexpected 'proxy' kwarg.
                if "proxy" not in str(exc):
                    raise
                _upload_via_rest(self.bucket, key, data, content_type)
                url = _public_url(self.bucket, key)
        except StorageError:
            logger.exception("blob upload failed", extra={"bucket": self.bucket, "key": key})
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("blob upload failed", extra={"bucket": self.bucket, "key": key})
            raise StorageError(f"Failed to store {key}: {exc}") from exc

        if not isinstance(url, str) or not url:
            url = _public_url(self.bucket, key)
        return StoredObject(key=key, url=url.rstrip("?"))
