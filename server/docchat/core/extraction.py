from __future__ import annotations

import logging
import subprocess
import tempfile
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from docchat.config import settings
from docchat.core.errors import ExtractionError

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = frozenset(
    {
        ".pdf",
        ".docx",
        ".doc",
        ".pptx",
        ".ppt",
        ".xlsx",
        ".xls",
        ".html",
        ".htm",
        ".txt",
        ".md",
        ".csv",
        ".json",
        ".xml",
        ".zip",
    }
)


def file_extension(name: str) -> str:
    return Path(name.strip()).suffix.lower()


def is_supported_document(name: str) -> bool:
    return file_extension(name) in SUPPORTED_EXTENSIONS


@dataclass(frozen=True)
class Extracted:
    text: str


@dataclass(frozen=True)
class Fallback:
    reason: str


ExtractionResult = Extracted | Fallback


class TextConverter(Protocol):
    def convert(self, path: Path) -> str: ...


class SubprocessConverter:
    """Runs an external single-file converter and returns what it prints on stdout."""

    def __init__(self, command: Sequence[str], timeout_seconds: float | None = None) -> None:
        if not command:
            raise ValueError("Converter command must not be empty")
        self.command = list(command)
        self.timeout_seconds = timeout_seconds

    def convert(self, path: Path) -> str:
        try:
            completed = subprocess.run(
                [*self.command, str(path)],
                capture_output=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ExtractionError(f"Converter executable not found: {self.command[0]}") from exc
        except subprocess.TimeoutExpired as exc:
            raise ExtractionError(f"Converter timed out after {self.timeout_seconds}s") from exc

        # Converters are third-party tools; undecodable bytes become U+FFFD.
        stdout = (completed.stdout or b"").decode("utf-8", errors="replace").strip()
        stderr = (completed.stderr or b"").decode("utf-8", errors="replace").strip()
        if completed.returncode != 0:
            raise ExtractionError(f"Converter exited with status {completed.returncode}: {stderr[:500]}")
        if stderr and not stdout:
            raise ExtractionError(f"Converter failed: {stderr[:500]}")
        return stdout


class PypdfConverter:
    def convert(self, path: Path) -> str:
        if path.suffix.lower() != ".pdf":
            raise ExtractionError(f"pypdf cannot read {path.suffix or 'extensionless'} files")
        try:
            reader = PdfReader(str(path))
            pages = [page.extract_text() or "" for page in reader.pages]
        except (PyPdfError, OSError, ValueError) as exc:
            raise ExtractionError(f"pypdf failed: {exc}") from exc
        return "\n\n".join(page.strip() for page in pages if page.strip())


def build_converter(name: str | None = None) -> TextConverter:
    converter_name = (name or settings.TEXT_CONVERTER).lower()
    if converter_name == "subprocess":
        return SubprocessConverter(settings.EXTRACTION_COMMAND, timeout_seconds=settings.EXTRACTION_TIMEOUT_SECONDS)
    if converter_name == "pypdf":
        return PypdfConverter()
    raise ValueError(f"Unknown TEXT_CONVERTER: {converter_name}")


class TextExtractor:
    def __init__(
        self,
        converter: TextConverter,
        *,
        max_concurrency: int = 4,
        tmp_dir: str | Path | None = None,
    ) -> None:
        self.converter = converter
        self.tmp_dir = Path(tmp_dir) if tmp_dir else Path(tempfile.gettempdir())
        self._slots = threading.BoundedSemaphore(max(1, max_concurrency))

    def extract(self, file_path: Path, declared_name: str) -> ExtractionResult:
        if not is_supported_document(declared_name):
            return Fallback(reason=f"unsupported format: {file_extension(declared_name) or 'no extension'}")

        with self._slots:
            try:
                text = self.converter.convert(Path(file_path))
            except ExtractionError as exc:
                logger.warning(
                    "text extraction failed",
                    extra={"declared_name": declared_name, "reason": str(exc)},
                )
                return Fallback(reason=str(exc))
        return Extracted(text=text)

    def extract_bytes(self, document_id: str, declared_name: str, data: bytes) -> ExtractionResult:
        if not is_supported_document(declared_name):
            return Fallback(reason=f"unsupported format: {file_extension(declared_name) or 'no extension'}")

        try:
            with self._temporary_input(document_id, file_extension(declared_name), data) as path:
                return self.extract(path, declared_name)
        except OSError as exc:
            logger.warning(
                "could not stage file for extraction",
                extra={"document_id": document_id, "reason": str(exc)},
            )
            return Fallback(reason=f"temporary file error: {exc}")

    @contextmanager
    def _temporary_input(self, document_id: str, suffix: str, data: bytes) -> Iterator[Path]:
        temp_path = self.tmp_dir / f"{document_id}{suffix or '.bin'}"
        try:
            temp_path.write_bytes(data)
            yield temp_path
        finally:
            temp_path.unlink(missing_ok=True)


def build_text_extractor() -> TextExtractor:
    return TextExtractor(
        build_converter(),
        max_concurrency=settings.EXTRACTION_MAX_CONCURRENCY,
        tmp_dir=settings.EXTRACTION_TMP_DIR,
    )
