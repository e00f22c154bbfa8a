"""Plain-text extraction from uploaded documents."""

from __future__ import annotations

from pathlib import Path
from zipfile import BadZipFile

from docx import Document as DocxDocument
from docx.opc.exceptions import PackageNotFoundError
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from ..errors import ConfigurationError, ExtractionError

FILE_TYPES = {
    ".txt": "text",
    ".md": "markdown",
    ".pdf": "pdf",
    ".docx": "word",
}


def is_supported(path: str | Path) -> bool:
    return Path(path).suffix.lower() in FILE_TYPES


def file_type(path: str | Path) -> str:
    return FILE_TYPES.get(Path(path).suffix.lower(), "unknown")


def _read_pdf(path: Path) -> str:
    reader = PdfReader(path)
    pages = []
    for page in reader.pages:
        text = page.extract_text()
        if text:
            pages.append(text.strip())
    return "\n\n".join(pages)


def _read_docx(path: Path) -> str:
    document = DocxDocument(str(path))
    paragraphs = [p.text.strip() for p in document.paragraphs if p.text.strip()]
    return "\n\n".join(paragraphs)


def extract_text(path: str | Path) -> str:
    """Return the text of a ``.txt``, ``.md``, ``.pdf`` or ``.docx`` file.

    PDF pages and Word paragraphs are joined with blank lines so the
    paragraph chunker can split on them.
    """

    file_path = Path(path)
    if not file_path.exists():  # pragma: no cover - file system guard
        raise FileNotFoundError(f"File not found: {file_path}")

    suffix = file_path.suffix.lower()
    if suffix in (".txt", ".md"):
        return file_path.read_text(encoding="utf-8")
    if suffix == ".pdf":
        try:
            return _read_pdf(file_path)
        except PyPdfError as exc:
            raise ExtractionError(f"Could not read PDF {file_path.name}: {exc}") from exc
    if suffix == ".docx":
        try:
            return _read_docx(file_path)
        except (PackageNotFoundError, BadZipFile) as exc:
            raise ExtractionError(f"Could not read Word document {file_path.name}: {exc}") from exc
    raise ConfigurationError(f"Unsupported file type: {suffix or file_path.name}")
