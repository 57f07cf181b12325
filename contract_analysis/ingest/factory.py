"""
Parser Factory
==============

Maps a sniffed MIME type to its text extractor.
"""

from typing import Optional

from .base import DocumentParser, ParseResult, UnsupportedFormatError
from .txt import TXTParser
from .pdf import PDFTextParser


# Initialize parsers
_txt_parser = TXTParser()
_pdf_parser = PDFTextParser()

# MIME type to parser mapping
_parsers = {
    "text/plain": _txt_parser,
    "application/pdf": _pdf_parser,
}


def get_parser(mime_type: str) -> Optional[DocumentParser]:
    """
    Get parser for MIME type.

    Args:
        mime_type: MIME type string

    Returns:
        DocumentParser or None if not supported
    """
    return _parsers.get(mime_type.lower())


def parse_document(data: bytes, mime_type: str) -> ParseResult:
    """
    Parse document with the extractor for its sniffed type.

    Raises:
        UnsupportedFormatError: If format not supported
        ParserError: If parsing fails
    """
    parser = get_parser(mime_type)

    if parser is None:
        raise UnsupportedFormatError(
            f"Unsupported file format: {mime_type}. Supported: {list(_parsers.keys())}"
        )

    return parser.parse(data)


def extract_text(data: bytes, mime_type: str) -> str:
    """Extract plain text for analysis"""
    return parse_document(data, mime_type).full_text
