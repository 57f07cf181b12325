"""
Content Sniffing
================

Determines the MIME type of uploaded bytes from their signatures only.
Filenames and client-declared content types are never consulted.
"""

from typing import Optional

UNKNOWN_MIME_TYPE = "unknown"

ALLOWED_MIME_TYPES = frozenset({
    "application/pdf",
    "text/plain",
})

_EXTENSIONS = {
    "application/pdf": "pdf",
    "text/plain": "txt",
}

# (offset, signature, mime type), checked in order
_SIGNATURES = [
    (0, b'%PDF-', "application/pdf"),
    (0, b'\x89PNG\r\n\x1a\n', "image/png"),
    (0, b'\xff\xd8\xff', "image/jpeg"),
    (0, b'GIF87a', "image/gif"),
    (0, b'GIF89a', "image/gif"),
    (0, b'II*\x00', "image/tiff"),
    (0, b'MM\x00*', "image/tiff"),
    (0, b'\x1f\x8b', "application/gzip"),
    (0, b'Rar!\x1a\x07', "application/vnd.rar"),
    (0, b'7z\xbc\xaf\x27\x1c', "application/x-7z-compressed"),
    (0, b'\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1', "application/x-ole-storage"),
    (0, b'MZ', "application/x-msdownload"),
    (0, b'\x7fELF', "application/x-elf"),
    (0, b'{\\rtf', "application/rtf"),
]

_TEXT_BOMS = (
    b'\xef\xbb\xbf',  # UTF-8
    b'\xff\xfe',      # UTF-16 LE
    b'\xfe\xff',      # UTF-16 BE
)

# Bytes inspected by the text heuristic
SNIFF_WINDOW = 8192

# Control bytes other than \t \n \v \f \r and ESC
_CONTROL_BYTES = frozenset(range(0x00, 0x09)) | frozenset(range(0x0E, 0x1B)) | frozenset(range(0x1C, 0x20)) | {0x7F}


def _sniff_zip(data: bytes) -> str:
    # OOXML documents are ZIP containers with a recognisable first entry
    head = data[:4096]
    if b'word/' in head:
        return "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
    if b'xl/' in head:
        return "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    if b'ppt/' in head:
        return "application/vnd.openxmlformats-officedocument.presentationml.presentation"
    return "application/zip"


def _looks_like_text(sample: bytes) -> bool:
    """
    Plain-text heuristic over a byte sample.

    Rejects NUL bytes and samples with more than 2% control bytes. Accepts
    valid UTF-8 (a multibyte sequence cut at the sample boundary is allowed)
    and 8-bit legacy encodings where high bytes stay a minority.
    """
    if not sample:
        return False
    if b'\x00' in sample:
        return False

    control = sum(1 for b in sample if b in _CONTROL_BYTES)
    if control / len(sample) > 0.02:
        return False

    try:
        sample.decode('utf-8')
        return True
    except UnicodeDecodeError as e:
        # Truncated multibyte character at the end of the window
        if e.start >= len(sample) - 3 and e.reason == 'unexpected end of data':
            return True

    high = sum(1 for b in sample if b >= 0x80)
    return high / len(sample) < 0.3


def sniff_mime_type(data: bytes) -> str:
    """
    Detect the MIME type of `data` from its content.

    Args:
        data: Raw uploaded bytes

    Returns:
        MIME type string, or UNKNOWN_MIME_TYPE
    """
    if not data:
        return UNKNOWN_MIME_TYPE

    for offset, signature, mime_type in _SIGNATURES:
        if data[offset:offset + len(signature)] == signature:
            return mime_type

    if data[:4] in (b'PK\x03\x04', b'PK\x05\x06'):
        return _sniff_zip(data)

    if data[:4] == b'RIFF' and data[8:12] == b'WEBP':
        return "image/webp"

    if data.startswith(_TEXT_BOMS):
        return "text/plain"

    if _looks_like_text(data[:SNIFF_WINDOW]):
        return "text/plain"

    return UNKNOWN_MIME_TYPE


def is_allowed(mime_type: str) -> bool:
    """Check whether a sniffed type may be ingested"""
    return mime_type in ALLOWED_MIME_TYPES


def extension_for(mime_type: str) -> Optional[str]:
    """File extension used in storage keys"""
    return _EXTENSIONS.get(mime_type)
