"""
Content Decoder Module
Turns raw MIME part payloads into bytes and normalized text

Two steps, kept separate because attachments only need the first:
1. Transfer decoding (base64, quoted-printable, passthrough for the rest)
2. Charset normalization to a Python str that always encodes as UTF-8

Neither step raises. Unknown transfer encodings are treated as already
decoded; charset trouble is reported to the IssueSink and scrubbed.
"""

import base64
import binascii
import logging
import quopri
import re
from typing import Optional, Union

import charset_normalizer

from .email_data import MimePart, PartType, TransferEncoding


logger = logging.getLogger(__name__)

FALLBACK_CHARSET = "ISO-8859-1"

# Declared charsets that need no conversion
UTF8_COMPATIBLE = {"UTF-8", "UTF8", "US-ASCII", "ASCII"}

# Candidates for auto-detection when nothing is declared (UTF-8 is tried first)
DETECTION_CANDIDATES = ["latin_1", "cp1252"]
_DETECTED_NAMES = {
    "utf_8": "UTF-8",
    "ascii": "US-ASCII",
    "latin_1": "ISO-8859-1",
    "cp1252": "WINDOWS-1252",
}

_BASE64_JUNK = re.compile(rb"[^A-Za-z0-9+/]")


def _note(sink, message: str) -> None:
    if sink is not None:
        sink.note(message)
    else:
        logger.debug(message)


def _as_bytes(raw: Union[bytes, str, None]) -> bytes:
    if raw is None:
        return b""
    if isinstance(raw, str):
        return raw.encode("utf-8", errors="surrogateescape")
    return bytes(raw)


def decode_transfer_encoding(
    raw: Union[bytes, str, None],
    encoding: TransferEncoding,
    sink=None,
) -> bytes:
    """
    Undo the Content-Transfer-Encoding of a part payload

    Args:
        raw: Payload exactly as fetched from the server
        encoding: Declared transfer encoding
        sink: Optional IssueSink for malformed base64

    Returns:
        Decoded bytes; the input unchanged for 7bit/8bit/binary/other
    """
    data = _as_bytes(raw)

    if encoding == TransferEncoding.BASE64:
        return _decode_base64(data, sink)
    if encoding == TransferEncoding.QUOTED_PRINTABLE:
        return quopri.decodestring(data)
    return data


def _decode_base64(data: bytes, sink=None) -> bytes:
    """Lenient base64: ignore line breaks and junk, repair missing padding."""
    cleaned = _BASE64_JUNK.sub(b"", data)
    remainder = len(cleaned) % 4
    if remainder == 1:
        # A single trailing symbol cannot complete a byte
        cleaned = cleaned[:-1]
    elif remainder:
        cleaned += b"=" * (4 - remainder)
    try:
        return base64.b64decode(cleaned)
    except (binascii.Error, ValueError) as e:
        _note(sink, f"base64 payload could not be decoded ({e}); keeping raw bytes")
        return data


def normalize_charset_name(charset: Optional[str]) -> str:
    """Uppercase a declared charset and strip quotes and whitespace."""
    if not charset:
        return ""
    return str(charset).strip(" \t\r\n\0\x0b\"'").upper()


def detect_charset(data: bytes) -> str:
    """
    Best-effort detection among UTF-8, ISO-8859-1 and Windows-1252

    Returns:
        Normalized charset name; ISO-8859-1 when detection gives nothing
    """
    try:
        data.decode("utf-8")
        return "UTF-8"
    except UnicodeDecodeError:
        pass

    best = charset_normalizer.from_bytes(data, cp_isolation=DETECTION_CANDIDATES).best()
    if best is None or not best.encoding:
        return FALLBACK_CHARSET
    return _DETECTED_NAMES.get(best.encoding, normalize_charset_name(best.encoding))


def scrub_utf8(data: bytes) -> str:
    """Decode as UTF-8, replacing invalid sequences instead of raising."""
    return data.decode("utf-8", errors="replace")


def is_valid_utf8(value: Union[str, bytes]) -> bool:
    """True when value is (or encodes to) well-formed UTF-8."""
    try:
        if isinstance(value, bytes):
            value.decode("utf-8")
        else:
            value.encode("utf-8")
        return True
    except UnicodeError:
        return False


def normalize_to_utf8(data: Union[bytes, str, None], part: Optional[MimePart] = None, sink=None) -> str:
    """
    Convert a transfer-decoded text payload to a str

    The charset comes from the part's Content-Type parameters, then its
    disposition parameters, then auto-detection. "DEFAULT" means
    ISO-8859-1; US-ASCII needs no conversion. A charset Python does not
    know, or bytes it cannot map, fall back to scrubbed UTF-8.

    Args:
        data: Transfer-decoded payload
        part: The MIME part the payload belongs to
        sink: Optional IssueSink for conversion failures

    Returns:
        Text that always encodes as valid UTF-8
    """
    raw = _as_bytes(data)
    if not raw:
        return ""

    declared = part.param("charset") if part is not None else None
    if declared and normalize_charset_name(declared):
        charset = normalize_charset_name(declared)
        if charset == "DEFAULT":
            charset = FALLBACK_CHARSET
    else:
        charset = detect_charset(raw)

    if charset in UTF8_COMPATIBLE:
        return scrub_utf8(raw)

    try:
        text = raw.decode(charset)
    except (LookupError, UnicodeDecodeError) as e:
        _note(sink, f"charset conversion from {charset} failed ({e}); scrubbing as UTF-8")
        return scrub_utf8(raw)

    if not is_valid_utf8(text):
        return scrub_utf8(text.encode("utf-8", errors="replace"))
    return text


def mime_type_string(part_type: PartType, subtype: Optional[str]) -> str:
    """
    Build a full "type/subtype" string

    Unknown primary types map to application. With no subtype, application
    becomes application/octet-stream and other types stay bare.
    """
    primary = part_type.value
    if part_type == PartType.OTHER:
        primary = "application"
    if not subtype:
        return "application/octet-stream" if primary == "application" else primary
    return f"{primary}/{subtype.lower()}"
