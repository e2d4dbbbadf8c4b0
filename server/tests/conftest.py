from __future__ import annotations

from collections.abc import Generator
from pathlib import Path
from types import SimpleNamespace

import pytest
from sqlalchemy.orm import Session, sessionmaker

from docchat.config import settings
from docchat.core.errors import ExtractionError, StorageError
from docchat.core.extraction import TextExtractor
from docchat.core.storage import StoredObject
from docchat.db import models  # noqa: F401
from docchat.db.models import Workspace
from docchat.db.repositories import WorkspaceRepository
from docchat.db.session import Base, build_engine, build_session_factory

OWNER_ID = "user-owner"
OTHER_USER_ID = "user-other"


class InMemoryBlobStore:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.objects: dict[str, tuple[bytes, str]] = {}

    def put(self, key: str, data: bytes, mime_type: str) -> StoredObject:
        if self.fail:
            raise StorageError("bucket rejected the write")
        self.objects[key] = (data, mime_type)
        return StoredObject(key=key, url=f"https://blobs.test/{key}")


class ScriptedConverter:
    def __init__(self, text: str = "", *, error: str | None = None) -> None:
        self.text = text
        self.error = error
        self.calls: list[Path] = []
        self.seen_existing: list[bool] = []

    def convert(self, path: Path) -> str:
        self.calls.append(path)
        self.seen_existing.append(path.exists())
        if self.error is not None:
            raise ExtractionError(self.error)
        return self.text


class ScriptedLLM:
    def __init__(self, reply: object = "Grounded answer", *, error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: list[list[dict[str, str]]] = []

    def invoke(self, messages: list[dict[str, str]]) -> object:
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.reply))])


def build_minimal_pdf(text: str) -> bytes:
    stream = f"BT /F1 24 Tf 72 720 Td ({text}) Tj ET".encode("latin-1")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        (
            b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
            b"/Contents 4 0 R /Resources << /Font << /F1 5 0 R >> >> >>"
        ),
        b"<< /Length " + str(len(stream)).encode() + b" >>\nstream\n" + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    out = bytearray(b"%PDF-1.4\n")
    offsets: list[int] = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n".encode() + body + b"\nendobj\n"
    xref_at = len(out)
    out += f"xref\n0 {len(objects) + 1}\n".encode()
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\nstartxref\n{xref_at}\n%%EOF\n".encode()
    return bytes(out)


@pytest.fixture
def minimal_pdf() -> bytes:
    return build_minimal_pdf("Quarterly revenue grew")


@pytest.fixture
def sqlite_session_factory(tmp_path) -> Generator[sessionmaker, None, None]:
    db_file = tmp_path / "docchat_test.db"
    engine = build_engine(f"sqlite:///{db_file}")
    SessionLocal = build_session_factory(engine)
    Base.metadata.create_all(engine)
    try:
        yield SessionLocal
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def db_session(sqlite_session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = sqlite_session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def workspace(db_session: Session) -> Workspace:
    return WorkspaceRepository(db_session).create(owner_id=OWNER_ID, name="Test Workspace")


@pytest.fixture
def other_workspace(db_session: Session) -> Workspace:
    return WorkspaceRepository(db_session).create(owner_id=OTHER_USER_ID, name="Someone else's")


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def converter() -> ScriptedConverter:
    return ScriptedConverter(text="Extracted body")


@pytest.fixture
def extractor(converter: ScriptedConverter, tmp_path) -> TextExtractor:
    extraction_dir = tmp_path / "extract"
    extraction_dir.mkdir()
    return TextExtractor(converter, max_concurrency=2, tmp_dir=extraction_dir)


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def rate_limit_off():
    original = settings.RATE_LIMIT_ENABLED
    settings.RATE_LIMIT_ENABLED = False
    try:
        yield
    finally:
        settings.RATE_LIMIT_ENABLED = original
