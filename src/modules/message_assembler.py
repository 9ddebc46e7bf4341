"""
Message Assembler Module
Builds one MessageRecord from a UID or sequence number

Steps and their failure policy:
1. Identity (UID and sequence number)     fatal, MessageProcessingError
2. Header metadata                        fatal, MessageProcessingError
3. Body via the MIME walker               degrades to an empty body
4. Attachments and inline resources       degrades to no attachments
5. cid: references embedded into HTML
6. Derived fields (addresses, date, bid)  each degrades on its own
7. Attachment list without inline resources (the walker never puts a
   Content-ID inline part there)

Only steps 1 and 2 can fail the message; everything else is reported to the
IssueSink and replaced by a default.
"""

import logging
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional, Tuple, Union

from dateutil import parser as date_parser

from .bid_extractor import extract_correlation_token
from .email_data import HeaderInfo, MessageRecord, WalkResult
from .header_decoder import decode_header_value, format_address_list, resolve_sender
from .inline_resolver import embed_inline_images
from .mime_walker import MimeStructureWalker
from ..utils.exceptions import IMAPCheckerError, MessageProcessingError
from ..utils.pattern_compiler import DEFAULT_BID_PATTERN, compile_bid_pattern


logger = logging.getLogger(__name__)


def resolve_date(header: HeaderInfo, sink=None) -> Optional[datetime]:
    """
    Parse the message date

    A positive server timestamp wins. Otherwise the raw Date header is
    parsed as RFC 2822, then leniently; None if both fail.
    """
    if header.timestamp is not None and header.timestamp > 0:
        try:
            return datetime.fromtimestamp(header.timestamp, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as e:
            _note(sink, f"server timestamp {header.timestamp!r} unusable: {e}")

    raw = (header.date or "").strip()
    if not raw:
        return None

    try:
        return parsedate_to_datetime(raw)
    except (TypeError, ValueError, IndexError):
        pass

    try:
        return date_parser.parse(raw, fuzzy=True)
    except (ValueError, OverflowError, TypeError) as e:
        _note(sink, f"date header {raw!r} could not be parsed: {e}")
        return None


def is_unseen(header: HeaderInfo) -> bool:
    """Unseen flag set, or Recent without Seen."""
    return bool(header.unseen or (header.recent and not header.seen))


def _note(sink, message: str) -> None:
    if sink is not None:
        sink.note(message)
    else:
        logger.debug(message)


class MessageAssembler:
    """
    Orchestrates the decoding pipeline for single messages

    Args:
        session: Mailbox session (see IMAPConnection)
        bid_pattern: Correlation pattern; group 1 is the token
        sink: IssueSink for non-fatal problems
        walker: MIME walker; built from the session when omitted
    """

    def __init__(
        self,
        session,
        bid_pattern: Union[str, "re.Pattern[str]"] = DEFAULT_BID_PATTERN,
        sink=None,
        walker: Optional[MimeStructureWalker] = None,
    ):
        self.session = session
        self.bid_pattern = compile_bid_pattern(bid_pattern)
        self.sink = sink
        self.walker = walker or MimeStructureWalker(session, sink)

    def resolve_identity(self, identifier: int, is_uid: bool = True) -> Tuple[int, int]:
        """
        Work out (uid, sequence_number) for an identifier

        Raises:
            MessageProcessingError: If the other half cannot be resolved
        """
        kind = "UID" if is_uid else "sequence number"
        try:
            if is_uid:
                uid, sequence = identifier, self.session.sequence_for_uid(identifier)
            else:
                uid, sequence = self.session.uid_for_sequence(identifier), identifier
        except IMAPCheckerError as e:
            raise MessageProcessingError(
                f"Could not resolve identity of {kind} {identifier}: {e}", identifier, is_uid
            ) from e

        if not uid or not sequence:
            raise MessageProcessingError(
                f"No message found for {kind} {identifier}", identifier, is_uid
            )
        return int(uid), int(sequence)

    def _walk(self, identifier: int, is_uid: bool) -> WalkResult:
        """Body walk merged with the attachment walk; failures give empty halves."""
        body = WalkResult()
        attachments = WalkResult()

        try:
            tree = self.walker.walk(identifier, is_uid)
        except IMAPCheckerError as e:
            _note(self.sink, f"message {identifier}: {e}; continuing without body or attachments")
            return WalkResult()

        fetch_part = self.walker.part_fetcher(identifier, is_uid)
        try:
            body = self.walker.extract_body(tree, fetch_part)
        except Exception as e:
            _note(self.sink, f"message {identifier}: body decoding failed ({type(e).__name__}: {e})")
            body = WalkResult()

        try:
            attachments = self.walker.extract_attachments(tree, fetch_part)
        except Exception as e:
            _note(self.sink, f"message {identifier}: attachment extraction failed ({type(e).__name__}: {e})")
            attachments = WalkResult()

        return body.merge(attachments)

    def assemble(self, identifier: int, is_uid: bool = True) -> MessageRecord:
        """
        Assemble one message

        Args:
            identifier: UID or sequence number
            is_uid: True if identifier is a UID

        Returns:
            A new MessageRecord

        Raises:
            MessageProcessingError: If identity or headers cannot be fetched
        """
        uid, sequence = self.resolve_identity(identifier, is_uid)

        try:
            header = self.session.fetch_header(sequence)
        except IMAPCheckerError as e:
            raise MessageProcessingError(
                f"Could not fetch headers for UID {uid}: {e}", identifier, is_uid
            ) from e
        if header is None:
            raise MessageProcessingError(f"Server returned no headers for UID {uid}", identifier, is_uid)

        walk = self._walk(uid, True)

        body = walk.body_text
        inline_resources = walk.inline_resources
        if body and inline_resources:
            body = embed_inline_images(body, inline_resources, self.sink)

        subject = decode_header_value(header.subject, self.sink)
        from_address, from_display = resolve_sender(header, self.sink)

        attachments = tuple(walk.attachments)

        return MessageRecord(
            uid=uid,
            sequence_number=sequence,
            message_id=header.message_id,
            subject=subject,
            body=body,
            raw_date=header.date,
            parsed_date=resolve_date(header, self.sink),
            from_address=from_address,
            from_display=from_display,
            to=tuple(format_address_list(header.to, self.sink)),
            cc=tuple(format_address_list(header.cc, self.sink)),
            bcc=tuple(format_address_list(header.bcc, self.sink)),
            attachments=attachments,
            correlation_token=extract_correlation_token(subject, self.bid_pattern, self.sink),
            is_unseen=is_unseen(header),
        )
