"""
Email Data Model
Typed structures passed between the mailbox session and the decoding pipeline

The session hands loosely shaped protocol data to the core exactly once, at
the boundary in imap_response.py. Everything after that works with these
dataclasses, whose defaults document what an absent field means.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


class PartType(str, Enum):
    """Top-level MIME media type of a part."""
    TEXT = "text"
    MULTIPART = "multipart"
    MESSAGE = "message"
    APPLICATION = "application"
    AUDIO = "audio"
    IMAGE = "image"
    VIDEO = "video"
    MODEL = "model"
    OTHER = "other"

    @classmethod
    def from_name(cls, name: Optional[str]) -> "PartType":
        try:
            return cls((name or "").strip().lower())
        except ValueError:
            return cls.OTHER


class TransferEncoding(str, Enum):
    """Content-Transfer-Encoding declared for a part."""
    SEVEN_BIT = "7bit"
    EIGHT_BIT = "8bit"
    BINARY = "binary"
    BASE64 = "base64"
    QUOTED_PRINTABLE = "quoted-printable"
    OTHER = "other"

    @classmethod
    def from_name(cls, name: Optional[str]) -> "TransferEncoding":
        value = (name or "").strip().lower()
        if not value:
            return cls.SEVEN_BIT
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


@dataclass(frozen=True)
class MimePart:
    """
    One node of a message's MIME tree, as reported by the server

    Parameter keys are lowercase. `children` is empty for leaf parts; for
    message/rfc822 parts it holds the parts of the encapsulated message.
    """
    type: PartType = PartType.OTHER
    subtype: str = ""
    encoding: TransferEncoding = TransferEncoding.SEVEN_BIT
    disposition: Optional[str] = None
    parameters: Dict[str, str] = field(default_factory=dict)
    disposition_parameters: Dict[str, str] = field(default_factory=dict)
    content_id: Optional[str] = None
    children: Tuple["MimePart", ...] = ()

    @property
    def is_container(self) -> bool:
        return self.type in (PartType.MULTIPART, PartType.MESSAGE)

    def param(self, name: str) -> Optional[str]:
        """Look a parameter up in the Content-Type parameters, then the disposition ones."""
        key = name.lower()
        if key in self.parameters:
            return self.parameters[key]
        return self.disposition_parameters.get(key)


@dataclass(frozen=True)
class Address:
    """One ENVELOPE address entry. Group markers have an empty host."""
    name: str = ""
    mailbox: str = ""
    host: str = ""


@dataclass(frozen=True)
class HeaderInfo:
    """
    Header metadata for one message

    `subject` and address names are still MIME-encoded. `timestamp` is the
    server-parsed date in epoch seconds, if the server supplied one.
    `from_address` / `sender_address` are the raw header lines used as a
    last-resort source for the sender.
    """
    message_id: Optional[str] = None
    subject: Optional[str] = None
    date: Optional[str] = None
    timestamp: Optional[float] = None
    from_: Tuple[Address, ...] = ()
    sender: Tuple[Address, ...] = ()
    to: Tuple[Address, ...] = ()
    cc: Tuple[Address, ...] = ()
    bcc: Tuple[Address, ...] = ()
    from_address: Optional[str] = None
    sender_address: Optional[str] = None
    seen: bool = False
    recent: bool = False
    unseen: bool = False


@dataclass(frozen=True)
class AttachmentRecord:
    """A non-inline part surfaced to the caller"""
    filename: str
    content: bytes
    subtype: str
    mime_type: str
    disposition: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class InlineResource(AttachmentRecord):
    """An inline part referenced from HTML through a cid: URI"""
    content_id: str = ""


@dataclass
class WalkResult:
    """Accumulator returned by the MIME structure walker"""
    body_parts: List[str] = field(default_factory=list)
    is_html: bool = False
    inline_resources: List[InlineResource] = field(default_factory=list)
    attachments: List[AttachmentRecord] = field(default_factory=list)

    @property
    def body_text(self) -> str:
        return "\n".join(self.body_parts).strip()

    def merge(self, other: "WalkResult") -> "WalkResult":
        """Combine two walks; an HTML body on either side wins over plain text."""
        if other.is_html:
            body_parts, is_html = list(other.body_parts), True
        elif self.is_html:
            body_parts, is_html = list(self.body_parts), True
        else:
            body_parts, is_html = self.body_parts + other.body_parts, False
        return WalkResult(
            body_parts=body_parts,
            is_html=is_html,
            inline_resources=self.inline_resources + other.inline_resources,
            attachments=self.attachments + other.attachments,
        )


@dataclass(frozen=True)
class MessageRecord:
    """
    One processed email

    Created fresh for every retrieval call and never mutated afterwards.
    """
    uid: int
    sequence_number: int
    message_id: Optional[str] = None
    subject: str = ""
    body: str = ""
    raw_date: Optional[str] = None
    parsed_date: Optional[datetime] = None
    from_address: str = ""
    from_display: str = ""
    to: Tuple[str, ...] = ()
    cc: Tuple[str, ...] = ()
    bcc: Tuple[str, ...] = ()
    attachments: Tuple[AttachmentRecord, ...] = ()
    correlation_token: Optional[str] = None
    is_unseen: bool = False

    @property
    def to_count(self) -> int:
        return len(self.to)

    @property
    def cc_count(self) -> int:
        return len(self.cc)

    @property
    def bcc_count(self) -> int:
        return len(self.bcc)

    def to_dict(self) -> Dict[str, Any]:
        """Plain representation for JSON output; attachment bytes are reported by size."""
        return {
            "uid": self.uid,
            "sequence_number": self.sequence_number,
            "message_id": self.message_id,
            "subject": self.subject,
            "body": self.body,
            "date": self.raw_date,
            "datetime": self.parsed_date.isoformat() if self.parsed_date else None,
            "from_address": self.from_address,
            "from": self.from_display,
            "to": list(self.to),
            "to_count": self.to_count,
            "cc": list(self.cc),
            "cc_count": self.cc_count,
            "bcc": list(self.bcc),
            "bcc_count": self.bcc_count,
            "attachments": [
                {
                    "filename": attachment.filename,
                    "type": attachment.subtype,
                    "mime_type": attachment.mime_type,
                    "disposition": attachment.disposition,
                    "size": attachment.size,
                }
                for attachment in self.attachments
            ],
            "bid": self.correlation_token,
            "unseen": self.is_unseen,
        }


@dataclass(frozen=True)
class MailboxStatus:
    """Snapshot of mailbox-level metadata"""
    total_messages: int = 0
    highest_uid: int = 0
    recent_uids: FrozenSet[int] = frozenset()
    unseen_uids: FrozenSet[int] = frozenset()
