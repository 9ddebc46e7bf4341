"""
Header Decoder Module
Decodes MIME encoded-words and ENVELOPE address entries into plain text

Every function here is total: malformed input degrades to the raw value or
an empty string and is reported to the IssueSink, never raised.
"""

import logging
import re
from email.header import decode_header, make_header
from typing import Iterable, List, Optional, Tuple, Union

from .content_decoder import is_valid_utf8
from .email_data import Address, HeaderInfo


logger = logging.getLogger(__name__)

# Address inside angle brackets of a display string
ANGLE_ADDRESS_PATTERN = re.compile(r"<([^>]+@[^>]+)>")


def _note(sink, message: str) -> None:
    if sink is not None:
        sink.note(message)
    else:
        logger.debug(message)


def _bytes_to_text(value: bytes) -> str:
    try:
        return value.decode("utf-8")
    except UnicodeDecodeError:
        return value.decode("iso-8859-1")


def decode_header_value(value: Union[str, bytes, None], sink=None) -> str:
    """
    Decode RFC 2047 encoded header value

    Args:
        value: Raw header value, e.g. "=?UTF-8?B?SGVsbG8=?="
        sink: Optional IssueSink

    Returns:
        Decoded string; the raw value if the decoder fails; "" for no input
    """
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray)):
        value = _bytes_to_text(bytes(value))
    if not value:
        return ""

    try:
        decoded = str(make_header(decode_header(value)))
    except Exception as e:
        _note(sink, f"header decode failed ({type(e).__name__}: {e}); keeping raw value")
        return value

    if is_valid_utf8(decoded):
        return decoded

    try:
        return decoded.encode("utf-8", errors="surrogateescape").decode("iso-8859-1")
    except UnicodeError as e:
        _note(sink, f"header value is not valid UTF-8 and ISO-8859-1 fallback failed ({e})")
        return decoded


def format_address(addr: Optional[Address], sink=None) -> str:
    """
    Format an address entry as "mailbox@host"

    Both parts must be non-empty; group markers such as
    "undisclosed-recipients:;" (no host) give "". The mailbox part goes
    through header decoding, the host does not.

    Example:
        >>> format_address(Address(mailbox="joe", host="example.com"))
        'joe@example.com'
    """
    if addr is None or not addr.mailbox or not addr.host:
        return ""
    return f"{decode_header_value(addr.mailbox, sink)}@{addr.host}"


def format_address_list(addresses: Optional[Iterable[Address]], sink=None) -> List[str]:
    """Format a list of address entries, dropping the ones that give ""."""
    formatted = []
    for addr in addresses or ():
        value = format_address(addr, sink)
        if value:
            formatted.append(value)
    return formatted


def resolve_sender(header: HeaderInfo, sink=None) -> Tuple[str, str]:
    """
    Work out the sender's bare address and display string

    Precedence: first "from" entry, else first "sender" entry; then the raw
    From / Sender header lines; finally the address is pulled out of the
    display string itself.

    Returns:
        Tuple of (address, display)
    """
    address = ""
    display = ""

    source = header.from_ or header.sender
    if source:
        first = source[0]
        address = format_address(first, sink)
        personal = decode_header_value(first.name, sink).strip()
        if personal and address:
            display = f"{personal} <{address}>"
        elif address:
            display = address
        elif personal:
            display = personal

    if not display and header.from_address:
        display = decode_header_value(header.from_address, sink).strip()
    elif not display and header.sender_address:
        display = decode_header_value(header.sender_address, sink).strip()

    if not address and display:
        match = ANGLE_ADDRESS_PATTERN.search(display)
        if match:
            address = match.group(1).strip()
        elif "@" in display and "<" not in display:
            address = display

    return address, display
