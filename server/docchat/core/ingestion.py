from __future__ import annotations

import base64
import binascii
import logging

from sqlalchemy.orm import Session

from docchat.config import settings
from docchat.core.errors import InvalidInputError
from docchat.core.extraction import Extracted, TextExtractor, is_supported_document
from docchat.core.ownership import OwnershipGuard
from docchat.core.storage import DEFAULT_MIME_TYPE, BlobStore, document_blob_key
from docchat.db.models import Document, new_id
from docchat.db.repositories import DocumentRepository

logger = logging.getLogger(__name__)


def decode_file_data(file_data: str) -> bytes:
    # MIME-style encoders wrap lines; the payload itself never contains whitespace.
    compact = "".join(file_data.split())
    try:
        return base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidInputError("file_data must be valid base64") from exc


class IngestionPipeline:
    """Turns one upload into a persisted Document.

    Order of work: blob write (fatal on error), text extraction (falls back to
    the literal content on error), ownership re-check, then the insert.
    """

    def __init__(
        self,
        db: Session,
        *,
        blob_store: BlobStore,
        extractor: TextExtractor,
        max_file_size_bytes: int | None = None,
    ) -> None:
        self.documents = DocumentRepository(db)
        self.guard = OwnershipGuard(db)
        self.blob_store = blob_store
        self.extractor = extractor
        self.max_file_size_bytes = max_file_size_bytes or settings.MAX_FILE_SIZE_BYTES

    def ingest(
        self,
        *,
        user_id: str,
        workspace_id: str,
        name: str,
        literal_content: str,
        file_data: str | None = None,
        mime_type: str | None = None,
    ) -> Document:
        workspace_id = (workspace_id or "").strip()
        name = (name or "").strip()
        literal_content = literal_content or ""
        if not workspace_id:
            raise InvalidInputError("workspace_id is required")
        if not name:
            raise InvalidInputError("name is required")

        raw: bytes | None = None
        if file_data:
            raw = decode_file_data(file_data)
            if len(raw) > self.max_file_size_bytes:
                raise InvalidInputError(f"File size exceeds limit ({self.max_file_size_bytes} bytes)")
        else:
            literal_content = literal_content.strip()
            if not literal_content:
                raise InvalidInputError("content is required when no file is attached")

        document_id = new_id()
        content = literal_content
        file_url: str | None = None
        file_size: int | None = None

        if raw is not None:
            key = document_blob_key(user_id, document_id, mime_type)
            stored = self.blob_store.put(key, raw, mime_type or DEFAULT_MIME_TYPE)
            file_url = stored.url
            file_size = len(raw)

            if is_supported_document(name):
                result = self.extractor.extract_bytes(document_id, name, raw)
                if isinstance(result, Extracted):
                    content = result.text
                else:
                    logger.warning(
                        "keeping literal content after extraction fallback",
                        extra={"document_id": document_id, "document_name": name, "reason": result.reason},
                    )
            else:
                logger.info(
                    "format not supported for extraction, using literal content",
                    extra={"document_id": document_id, "document_name": name},
                )

        # Checked at commit time; the caller may have lost the workspace while we stored and extracted.
        self.guard.workspace(workspace_id, user_id)

        return self.documents.create(
            document_id=document_id,
            owner_id=user_id,
            workspace_id=workspace_id,
            name=name,
            content=content,
            file_url=file_url,
            mime_type=mime_type,
            file_size=file_size,
        )
