"""
TXT Parser
==========

Plain text extractor with encoding detection.
"""

from typing import List
import chardet

from .base import (
    DocumentParser,
    ParseResult,
    ParserError,
    normalize_text,
)


class TXTParser(DocumentParser):
    """
    Plain text file parser.

    Detects the encoding with chardet; falls back to UTF-8 with replacement.
    """

    @property
    def supported_mimes(self) -> List[str]:
        return [
            "text/plain",
        ]

    def parse(self, data: bytes) -> ParseResult:
        """Parse plain text file"""
        try:
            if data.startswith(b'\xef\xbb\xbf'):
                encoding = 'utf-8-sig'
                confidence = 1.0
            else:
                detected = chardet.detect(data)
                encoding = detected.get('encoding') or 'utf-8'
                confidence = detected.get('confidence', 0)

            try:
                text = data.decode(encoding)
            except (UnicodeDecodeError, LookupError):
                text = data.decode('utf-8', errors='replace')
                encoding = 'utf-8'

            text = normalize_text(text)

            return ParseResult(
                full_text=text,
                page_count=1,
                metadata={
                    "encoding": encoding,
                    "confidence": confidence,
                }
            )

        except Exception as e:
            raise ParserError(f"Failed to parse text file: {e}")
