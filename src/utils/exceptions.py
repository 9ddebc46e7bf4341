"""
Exception Hierarchy
Errors raised by the IMAP checker and its mailbox session

Partial decode problems (bad charsets, broken encoded-words, failed body
parts) are never raised; they are reported to an IssueSink instead.
"""

from typing import Optional


class IMAPCheckerError(Exception):
    """Base exception for all checker errors."""


class InvalidInputError(IMAPCheckerError, ValueError):
    """Caller supplied an unusable argument (empty criteria, bad UID, empty pattern)."""


class SessionError(IMAPCheckerError):
    """The mailbox session is missing, closed, or could not be opened."""


class MailboxCommandError(IMAPCheckerError):
    """A command sent to the mailbox session failed or returned no data."""


class StructureFetchError(IMAPCheckerError):
    """The MIME structure of a message could not be retrieved."""


class MessageProcessingError(IMAPCheckerError):
    """
    A single message could not be assembled.

    Raised when identity resolution or the header fetch fails. Batch
    retrieval catches it, logs it and skips the message.
    """

    def __init__(self, message: str, identifier: Optional[int] = None, is_uid: bool = True):
        super().__init__(message)
        self.identifier = identifier
        self.is_uid = is_uid


class BatchError(IMAPCheckerError):
    """The search, count or overview that starts a batch retrieval failed."""


class MutationError(IMAPCheckerError):
    """A flag, delete, move or expunge command failed."""
