"""
Knowledge feature: Plain-text extraction from uploaded course documents.
"""

import logging
import os
import tempfile

from langchain_community.document_loaders import PyPDFLoader
from pypdf.errors import PyPdfError

from study_assistant.core.exceptions import InvalidInputError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"pdf", "txt", "md"}


def file_extension(filename: str) -> str:
    return filename.rsplit(".", 1)[-1].lower() if "." in filename else ""


def extract_text_from_bytes(file_bytes: bytes, filename: str) -> str:
    """
    Extract text from PDF / TXT / MD bytes.
    PDFs go through a temp file since the loader requires a path.
    """
    ext = file_extension(filename)
    if ext not in ALLOWED_EXTENSIONS:
        raise InvalidInputError(
            f"Unsupported file type: .{ext}",
            detail=f"Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}",
        )

    if ext in ("txt", "md"):
        return file_bytes.decode("utf-8", errors="replace")

    with tempfile.NamedTemporaryFile(delete=False, suffix=".pdf") as temp_file:
        temp_file.write(file_bytes)
        temp_path = temp_file.name

    try:
        pages = PyPDFLoader(temp_path).load()
    except (PyPdfError, ValueError) as e:
        logger.warning(f"Unreadable PDF upload {filename}: {e}")
        raise InvalidInputError("Could not read PDF", detail=str(e)) from e
    finally:
        if os.path.exists(temp_path):
            os.remove(temp_path)

    logger.info(f"Extracted {len(pages)} pages from {filename}")
    return "\n\n".join(page.page_content for page in pages)
