"""
Ingest Pipeline
===============

Byte-level content sniffing and text extraction for uploaded contracts.
"""

from .base import ParseResult, ParserError, UnsupportedFormatError
from .txt import TXTParser
from .pdf import PDFTextParser
from .sniff import (
    sniff_mime_type, is_allowed, extension_for,
    ALLOWED_MIME_TYPES, UNKNOWN_MIME_TYPE,
)
from .factory import get_parser, parse_document, extract_text

__all__ = [
    # Base types
    "ParseResult", "ParserError", "UnsupportedFormatError",
    # Parsers
    "TXTParser", "PDFTextParser",
    # Sniffing
    "sniff_mime_type", "is_allowed", "extension_for",
    "ALLOWED_MIME_TYPES", "UNKNOWN_MIME_TYPE",
    # Factory
    "get_parser", "parse_document", "extract_text",
]
