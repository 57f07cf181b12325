"""
PDF Text Parser
===============

Text extraction for PDFs with embedded text, using pypdf.
Scanned PDFs yield little or no text and are flagged in metadata.
"""

import io
import logging
from typing import List

from pypdf import PdfReader

from .base import (
    DocumentParser,
    ParseResult,
    ParserError,
    normalize_text,
)

logger = logging.getLogger(__name__)


class PDFTextParser(DocumentParser):
    """
    PDF text parser.

    Extracts text from PDFs that have embedded text.
    """

    @property
    def supported_mimes(self) -> List[str]:
        return [
            "application/pdf",
            "application/x-pdf"
        ]

    def parse(self, data: bytes) -> ParseResult:
        """Parse PDF file"""
        try:
            reader = PdfReader(io.BytesIO(data))
            if reader.is_encrypted:
                raise ParserError("PDF is encrypted")

            page_texts = []
            for page_no, page in enumerate(reader.pages, start=1):
                try:
                    page_text = page.extract_text() or ""
                except Exception as e:
                    logger.warning(f"Text extraction failed for PDF page {page_no}: {e}")
                    page_text = ""
                page_texts.append(normalize_text(page_text))

            full_text = "\n\n".join(t for t in page_texts if t)

            metadata = {
                "page_count": len(page_texts),
                "is_scanned": len(full_text.strip()) < 100 and len(page_texts) > 0,
            }

            try:
                if reader.metadata and reader.metadata.title:
                    metadata['title'] = reader.metadata.title
            except Exception:
                pass

            return ParseResult(
                full_text=full_text,
                page_count=len(page_texts),
                metadata=metadata
            )

        except ParserError:
            raise
        except Exception as e:
            raise ParserError(f"Failed to parse PDF file: {e}")
