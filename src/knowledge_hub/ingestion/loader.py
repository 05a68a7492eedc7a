"""Text extraction from uploaded bytes.

Plain-text formats are decoded directly; PDFs go through LangChain's
``PyPDFLoader``, which needs a file on disk.  Word documents are read
in memory with ``python-docx``.
"""

from __future__ import annotations

import io
import logging
import mimetypes
import tempfile
from pathlib import Path

import docx
from langchain_community.document_loaders import PyPDFLoader

logger = logging.getLogger(__name__)

TEXT_TYPES = frozenset(
    {
        "text/plain",
        "text/markdown",
        "text/csv",
        "text/html",
        "application/json",
    }
)
PDF_TYPE = "application/pdf"
DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

# Not every platform's mime table knows these.
_EXTENSION_TYPES = {
    ".md": "text/markdown",
    ".docx": DOCX_TYPE,
}


def guess_content_type(name: str, declared: str | None = None) -> str:
    """Return *declared* unless it is missing or generic, else guess from *name*."""
    if declared and declared != "application/octet-stream":
        return declared
    known = _EXTENSION_TYPES.get(Path(name.lower()).suffix)
    if known:
        return known
    guessed, _ = mimetypes.guess_type(name)
    return guessed or "application/octet-stream"


def load_pdf(path: str | Path) -> str:
    """Load a single PDF file and join its pages."""
    pages = PyPDFLoader(str(path)).load()
    return "\n\n".join(page.page_content for page in pages)


def load_docx(data: bytes) -> str:
    """Join the paragraphs of a Word document, one per line."""
    document = docx.Document(io.BytesIO(data))
    return "\n".join(paragraph.text for paragraph in document.paragraphs).strip()


def extract_text(data: bytes, content_type: str, name: str = "") -> str:
    """Extract plain text from *data*.

    Raises
    ------
    ValueError
        For content types that cannot be turned into text, or a Word
        document that cannot be parsed.
    """
    content_type = guess_content_type(name, content_type)
    if content_type in TEXT_TYPES or content_type.startswith("text/"):
        return data.decode("utf-8", errors="replace")
    if content_type == PDF_TYPE:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / (Path(name).name or "upload.pdf")
            path.write_bytes(data)
            text = load_pdf(path)
        logger.info("Extracted %d chars from PDF %s", len(text), name)
        return text
    if content_type == DOCX_TYPE:
        try:
            text = load_docx(data)
        except Exception as exc:
            raise ValueError(f"Could not read Word document {name or '<upload>'}: {exc}") from exc
        logger.info("Extracted %d chars from DOCX %s", len(text), name)
        return text
    raise ValueError(f"Unsupported content type for text extraction: {content_type}")
