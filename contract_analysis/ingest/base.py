"""
Ingest Base Types
=================

Unified output type for all text extractors.
"""

import re
from abc import ABC, abstractmethod
from typing import List, Dict, Any
from dataclasses import dataclass, field


class ParserError(Exception):
    """Base exception for parser errors"""
    pass


class UnsupportedFormatError(ParserError):
    """File format not supported"""
    pass


@dataclass
class ParseResult:
    """Extracted text plus extractor metadata."""
    full_text: str
    page_count: int
    metadata: Dict[str, Any] = field(default_factory=dict)


class DocumentParser(ABC):
    """
    Abstract base class for document parsers.
    """

    @property
    @abstractmethod
    def supported_mimes(self) -> List[str]:
        """List of supported MIME types"""
        pass

    @abstractmethod
    def parse(self, data: bytes) -> ParseResult:
        """
        Parse document data.

        Args:
            data: Binary document data

        Returns:
            ParseResult with full text

        Raises:
            ParserError: If the content cannot be read
        """
        pass

    def can_parse(self, mime_type: str) -> bool:
        """Check if this parser supports the MIME type"""
        return mime_type.lower() in [m.lower() for m in self.supported_mimes]


def normalize_text(text: str) -> str:
    """
    Normalize extracted text.

    - Collapse runs of spaces/tabs within a line
    - Collapse 3+ newlines into a paragraph break
    - Drop zero-width spaces and BOMs
    """
    if not text:
        return ""

    text = text.replace('\u200b', '')  # Zero-width space
    text = text.replace('\ufeff', '')  # BOM
    text = text.replace('\r\n', '\n').replace('\r', '\n')

    text = re.sub(r'[ \t\f\v]+', ' ', text)
    text = re.sub(r' *\n *', '\n', text)
    text = re.sub(r'\n{3,}', '\n\n', text)

    return text.strip()
