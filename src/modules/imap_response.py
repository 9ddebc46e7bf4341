"""
IMAP Response Conversion
Turns imapclient FETCH data into the typed structures in email_data

This is the only place that knows the positional layout of BODYSTRUCTURE
and ENVELOPE responses. Missing or NIL fields become the dataclass
defaults, so nothing downstream has to check for None.

BODYSTRUCTURE layout (RFC 3501 section 7.4.2), single part:
    0 type, 1 subtype, 2 params, 3 id, 4 description, 5 encoding, 6 size
    text/*          7 lines, 8 md5, 9 disposition
    message/rfc822  7 envelope, 8 body, 9 lines, 10 md5, 11 disposition
    anything else   7 md5, 8 disposition
Multipart: children, then subtype, params, disposition. imapclient wraps
the children of the outermost multipart in a list; encapsulated messages
keep the raw nested tuples.
"""

import re
from email.parser import HeaderParser
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from .email_data import Address, HeaderInfo, MimePart, PartType, TransferEncoding
from ..utils.security_validators import MAX_MIME_DEPTH


SEEN_FLAG = b"\\Seen"
RECENT_FLAG = b"\\Recent"

# Header fields fetched next to the ENVELOPE for sender fallbacks and the raw date
HEADER_FIELDS = "HEADER.FIELDS (DATE FROM SENDER)"

_FOLDED = re.compile(r"\r?\n[ \t]+")

_TEXT_DISPOSITION_INDEX = 9
_DEFAULT_DISPOSITION_INDEX = 8
_RFC822_DISPOSITION_INDEX = 11
_RFC822_BODY_INDEX = 8


def to_text(value: Any) -> str:
    """bytes or str from a response as str; NIL gives ''"""
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray)):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError:
            return bytes(value).decode("iso-8859-1")
    return str(value)


def _params(raw: Any) -> Dict[str, str]:
    """Flat (key, value, key, value, ...) list to a dict with lowercase keys."""
    if not isinstance(raw, (list, tuple)):
        return {}
    items = list(raw)
    return {to_text(key).lower(): to_text(value) for key, value in zip(items[0::2], items[1::2])}


def _disposition(raw: Any) -> Tuple[Optional[str], Dict[str, str]]:
    if isinstance(raw, (bytes, str)):
        return to_text(raw).lower() or None, {}
    if not isinstance(raw, (list, tuple)) or not raw:
        return None, {}
    kind = to_text(raw[0]).lower() or None
    return kind, _params(raw[1]) if len(raw) > 1 else {}


def _field(body: Sequence, index: int) -> Any:
    return body[index] if len(body) > index else None


def _is_multipart(body: Sequence) -> bool:
    return bool(body) and isinstance(body[0], (list, tuple))


def _split_multipart(body: Sequence) -> Tuple[Sequence, Sequence]:
    """Children and the extension fields that follow them."""
    if isinstance(body[0], list):
        return body[0], body[1:]
    index = 0
    while index < len(body) and isinstance(body[index], (list, tuple)):
        index += 1
    return body[:index], body[index:]


def mime_part_from_bodystructure(body: Optional[Sequence], depth: int = 0) -> MimePart:
    """
    Convert one BODYSTRUCTURE (or BodyData) node into a MimePart tree

    Nodes nested deeper than MAX_MIME_DEPTH + 1 lose their children; the
    walker reports the cut when it reaches them.
    """
    if not body:
        return MimePart()

    if _is_multipart(body):
        raw_children, extension = _split_multipart(body)
        disposition, disposition_params = _disposition(_field(extension, 2))
        children = ()
        if depth <= MAX_MIME_DEPTH:
            children = tuple(mime_part_from_bodystructure(child, depth + 1) for child in raw_children)
        return MimePart(
            type=PartType.MULTIPART,
            subtype=to_text(_field(extension, 0)).lower(),
            encoding=TransferEncoding.SEVEN_BIT,
            disposition=disposition,
            parameters=_params(_field(extension, 1)),
            disposition_parameters=disposition_params,
            children=children,
        )

    part_type = PartType.from_name(to_text(_field(body, 0)))
    subtype = to_text(_field(body, 1)).lower()
    children = ()

    if part_type == PartType.MESSAGE and subtype == "rfc822":
        disposition_index = _RFC822_DISPOSITION_INDEX
        inner_raw = _field(body, _RFC822_BODY_INDEX)
        if isinstance(inner_raw, (list, tuple)) and inner_raw and depth <= MAX_MIME_DEPTH:
            inner = mime_part_from_bodystructure(inner_raw, depth + 1)
            children = inner.children if inner.type == PartType.MULTIPART and inner.children else (inner,)
    else:
        disposition_index = (
            _TEXT_DISPOSITION_INDEX if part_type == PartType.TEXT else _DEFAULT_DISPOSITION_INDEX
        )

    disposition, disposition_params = _disposition(_field(body, disposition_index))
    return MimePart(
        type=part_type,
        subtype=subtype,
        encoding=TransferEncoding.from_name(to_text(_field(body, 5))),
        disposition=disposition,
        parameters=_params(_field(body, 2)),
        disposition_parameters=disposition_params,
        content_id=to_text(_field(body, 3)) or None,
        children=children,
    )


def address_from_envelope(raw: Any) -> Address:
    """imapclient Address (name, route, mailbox, host) to Address"""
    if hasattr(raw, "mailbox"):
        name, mailbox, host = raw.name, raw.mailbox, raw.host
    else:
        name, mailbox, host = _field(raw, 0), _field(raw, 2), _field(raw, 3)
    return Address(name=to_text(name), mailbox=to_text(mailbox), host=to_text(host))


def _addresses(raw: Any) -> Tuple[Address, ...]:
    if not raw:
        return ()
    return tuple(address_from_envelope(entry) for entry in raw)


def _flag_names(flags: Any) -> set:
    return {flag if isinstance(flag, bytes) else to_text(flag).encode() for flag in flags or ()}


def _header_block(data: Mapping) -> Optional[bytes]:
    for key, value in data.items():
        if isinstance(key, bytes) and key.upper().startswith(b"BODY[HEADER.FIELDS"):
            return value
    return None


def parse_header_fields(block: Optional[bytes]) -> Dict[str, str]:
    """Parse a HEADER.FIELDS block into {lowercase name: unfolded value}."""
    if not block:
        return {}
    message = HeaderParser().parsestr(to_text(block))
    return {name.lower(): _FOLDED.sub(" ", str(value)).strip() for name, value in message.items()}


def header_info_from_fetch(data: Mapping) -> HeaderInfo:
    """
    Build HeaderInfo from one message's FETCH data

    Expects ENVELOPE and FLAGS, plus the HEADER.FIELDS block when present.
    A message counts as unseen when it has neither \\Seen nor \\Recent;
    recent-but-unread mail is reported through `recent` instead.
    """
    envelope = data.get(b"ENVELOPE")
    fields = parse_header_fields(_header_block(data))
    flags = _flag_names(data.get(b"FLAGS"))

    seen = SEEN_FLAG in flags
    recent = RECENT_FLAG in flags

    timestamp = None
    message_id = None
    subject = None
    if envelope is not None:
        if getattr(envelope, "date", None) is not None:
            try:
                timestamp = envelope.date.timestamp()
            except (OverflowError, OSError, ValueError):
                timestamp = None
        message_id = to_text(envelope.message_id).strip().strip("<>") or None
        subject = to_text(envelope.subject) or None

    return HeaderInfo(
        message_id=message_id,
        subject=subject,
        date=fields.get("date") or None,
        timestamp=timestamp,
        from_=_addresses(getattr(envelope, "from_", None)),
        sender=_addresses(getattr(envelope, "sender", None)),
        to=_addresses(getattr(envelope, "to", None)),
        cc=_addresses(getattr(envelope, "cc", None)),
        bcc=_addresses(getattr(envelope, "bcc", None)),
        from_address=fields.get("from") or None,
        sender_address=fields.get("sender") or None,
        seen=seen,
        recent=recent,
        unseen=not seen and not recent,
    )


def overview_from_fetch(key: int, data: Mapping, uid_mode: bool) -> Dict[str, Any]:
    """
    Summarize one message of an overview FETCH

    In UID mode imapclient keys the response by UID; otherwise by
    sequence number with the UID inside the data.
    """
    return {
        "uid": key if uid_mode else data.get(b"UID"),
        "sequence": data.get(b"SEQ", None if uid_mode else key),
        "flags": tuple(to_text(flag) for flag in data.get(b"FLAGS") or ()),
        "size": data.get(b"RFC822.SIZE", 0),
    }
