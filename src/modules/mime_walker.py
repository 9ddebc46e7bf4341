"""
MIME Structure Walker Module
Walks a message's MIME tree and sorts its leaves into body, attachments and
inline resources

The tree comes from the session's BODYSTRUCTURE. Leaf content is fetched
part by part with BODY.PEEK so walking a message never marks it as read.

PATTERN RECOGNITION: Traversal is an explicit depth-first stack instead of a
recursive closure. Each walk returns its own WalkResult; callers merge them.
"""

import logging
import re
from enum import Enum
from typing import Callable, Dict, Iterator, Optional, Tuple
from urllib.parse import unquote_to_bytes

from .content_decoder import decode_transfer_encoding, mime_type_string, normalize_to_utf8
from .email_data import AttachmentRecord, InlineResource, MimePart, PartType, WalkResult
from .header_decoder import decode_header_value
from ..utils.exceptions import IMAPCheckerError, StructureFetchError
from ..utils.security_validators import MAX_MIME_DEPTH


logger = logging.getLogger(__name__)

# part number -> raw part payload
PartFetcher = Callable[[str], bytes]

# RFC 2231 continuation keys: filename*0, filename*1*, ...
_CONTINUATION = re.compile(r"^(?P<name>[^*]+)\*(?P<index>\d+)(?P<encoded>\*?)$")


class LeafKind(str, Enum):
    """What a leaf part contributes to the assembled message"""
    ATTACHMENT = "attachment"
    INLINE = "inline"
    HTML = "html"
    PLAIN = "plain"
    IGNORED = "ignored"


def _note(sink, message: str) -> None:
    if sink is not None:
        sink.note(message)
    else:
        logger.debug(message)


def clean_content_id(content_id: Optional[str]) -> str:
    """Strip whitespace and angle brackets from a Content-ID."""
    if not content_id:
        return ""
    return content_id.strip().strip("<>").strip()


def iter_leaves(root: MimePart, sink=None) -> Iterator[Tuple[str, MimePart]]:
    """
    Yield (part_number, part) for every leaf, in document order

    Children are numbered from 1 and nested numbers are dotted ("2.1.3").
    A root without children is itself the single leaf "1". Containers
    nested deeper than MAX_MIME_DEPTH are skipped and reported.
    """
    if not root.children:
        yield "1", root
        return

    stack = [(child, str(index), 1) for index, child in reversed(list(enumerate(root.children, 1)))]
    while stack:
        part, number, depth = stack.pop()
        if not part.children:
            yield number, part
            continue
        if depth >= MAX_MIME_DEPTH:
            _note(sink, f"MIME part {number} is nested deeper than {MAX_MIME_DEPTH} levels; skipped")
            continue
        stack.extend(
            (child, f"{number}.{index}", depth + 1)
            for index, child in reversed(list(enumerate(part.children, 1)))
        )


def classify(part: MimePart) -> LeafKind:
    """
    Classify one leaf part

    The checks run in a fixed order and the first match wins:
    1. disposition "attachment"
    2. disposition "inline" with a Content-ID
    3. a filename on anything that is not text/plain, text/html or a container
    4. text/html or text/plain body
    Everything else is ignored.
    """
    disposition = (part.disposition or "").lower()
    subtype = part.subtype.lower()

    if disposition == "attachment":
        return LeafKind.ATTACHMENT
    if disposition == "inline" and clean_content_id(part.content_id):
        return LeafKind.INLINE

    is_body_text = part.type == PartType.TEXT and subtype in ("plain", "html")
    if _has_filename(part) and not is_body_text and not part.is_container:
        return LeafKind.ATTACHMENT

    if part.type == PartType.TEXT and subtype == "html":
        return LeafKind.HTML
    if part.type == PartType.TEXT and subtype == "plain":
        return LeafKind.PLAIN
    return LeafKind.IGNORED


def _has_filename(part: MimePart) -> bool:
    return bool(
        rfc2231_param(part.disposition_parameters, "filename")
        or rfc2231_param(part.parameters, "name")
    )


def _decode_percent(data: str, charset: Optional[str]) -> str:
    raw = unquote_to_bytes(data)
    try:
        return raw.decode(charset or "utf-8", errors="replace")
    except LookupError:
        return raw.decode("iso-8859-1")


def rfc2231_param(params: Dict[str, str], name: str) -> Optional[str]:
    """
    Look up a parameter, honouring RFC 2231 extended and continued forms

    Handles name, name* (charset''percent-encoded) and name*0, name*1* ...
    """
    if params.get(name):
        return params[name]

    extended = params.get(f"{name}*")
    if extended:
        if extended.count("'") >= 2:
            charset, _, text = extended.split("'", 2)
            return _decode_percent(text, charset)
        return _decode_percent(extended, None)

    segments = []
    for key, value in params.items():
        match = _CONTINUATION.match(key)
        if match and match.group("name") == name:
            segments.append((int(match.group("index")), bool(match.group("encoded")), value))
    if not segments:
        return None

    segments.sort()
    charset = None
    chunks = []
    for index, encoded, value in segments:
        if encoded:
            if index == 0 and value.count("'") >= 2:
                charset, _, value = value.split("'", 2)
            chunks.append(unquote_to_bytes(value))
        else:
            chunks.append(value.encode("utf-8"))
    raw = b"".join(chunks)
    try:
        return raw.decode(charset or "utf-8", errors="replace")
    except LookupError:
        return raw.decode("iso-8859-1")


def attachment_filename(part: MimePart, part_number: str, sink=None) -> str:
    """Decoded filename from the disposition, then the type's name, else unknown_<part>."""
    raw = rfc2231_param(part.disposition_parameters, "filename") or rfc2231_param(part.parameters, "name")
    filename = decode_header_value(raw, sink).strip() if raw else ""
    return filename or f"unknown_{part_number}"


class MimeStructureWalker:
    """
    Fetches a message's MIME tree and extracts its content

    Args:
        session: Mailbox session exposing fetch_structure / fetch_body_part
        sink: IssueSink for non-fatal problems
    """

    def __init__(self, session, sink=None):
        self.session = session
        self.sink = sink

    def walk(self, identifier: int, is_uid: bool = True) -> MimePart:
        """
        Retrieve the MIME tree for one message

        Raises:
            StructureFetchError: If the session returns no structure
        """
        try:
            tree = self.session.fetch_structure(identifier, uid=is_uid)
        except IMAPCheckerError as e:
            raise StructureFetchError(
                f"Could not fetch structure for {'UID' if is_uid else 'message'} {identifier}: {e}"
            ) from e
        if tree is None:
            raise StructureFetchError(
                f"Server returned no structure for {'UID' if is_uid else 'message'} {identifier}"
            )
        return tree

    def part_fetcher(self, identifier: int, is_uid: bool = True) -> PartFetcher:
        def fetch(part_number: str) -> bytes:
            return self.session.fetch_body_part(identifier, part_number, uid=is_uid, peek=True)
        return fetch

    def _fetch_leaf(self, fetch_part: PartFetcher, part_number: str) -> Optional[bytes]:
        try:
            return fetch_part(part_number)
        except IMAPCheckerError as e:
            _note(self.sink, f"could not fetch part {part_number}: {e}")
            return None

    def extract_body(self, tree: MimePart, fetch_part: PartFetcher) -> WalkResult:
        """
        Decode the body candidates of a tree

        The last text/html leaf wins outright. text/plain leaves accumulate
        until an HTML leaf turns up, after which they are not even fetched.
        """
        result = WalkResult()
        for part_number, part in iter_leaves(tree, self.sink):
            kind = classify(part)
            if kind == LeafKind.PLAIN and result.is_html:
                continue
            if kind not in (LeafKind.HTML, LeafKind.PLAIN):
                continue

            raw = self._fetch_leaf(fetch_part, part_number)
            if raw is None:
                continue

            decoded = decode_transfer_encoding(raw, part.encoding, self.sink)
            text = normalize_to_utf8(decoded, part, self.sink)
            if kind == LeafKind.HTML:
                result.body_parts = [text]
                result.is_html = True
            else:
                result.body_parts.append(text)
        return result

    def extract_attachments(self, tree: MimePart, fetch_part: PartFetcher) -> WalkResult:
        """Collect attachments and Content-ID inline resources of a tree."""
        result = WalkResult()
        for part_number, part in iter_leaves(tree, self.sink):
            kind = classify(part)
            if kind not in (LeafKind.ATTACHMENT, LeafKind.INLINE):
                continue

            raw = self._fetch_leaf(fetch_part, part_number)
            if raw is None:
                continue

            content = decode_transfer_encoding(raw, part.encoding, self.sink)
            subtype = part.subtype.lower()
            fields = dict(
                filename=attachment_filename(part, part_number, self.sink),
                content=content,
                subtype=subtype,
                mime_type=mime_type_string(part.type, subtype),
            )
            if kind == LeafKind.INLINE:
                result.inline_resources.append(InlineResource(
                    disposition=(part.disposition or "inline").lower(),
                    content_id=clean_content_id(part.content_id),
                    **fields,
                ))
            else:
                result.attachments.append(AttachmentRecord(
                    disposition=(part.disposition or "attachment").lower(),
                    **fields,
                ))
        return result
