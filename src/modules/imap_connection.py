"""
IMAP Connection Module
Handles IMAP connection management and the mailbox commands the checker needs

PATTERN RECOGNITION: This follows the Adapter pattern - it wraps imapclient
to provide the narrow, typed session interface the decoding pipeline
consumes. FETCH results are converted to MimePart / HeaderInfo here, once.

SECURITY STORY: IMAP connections are security-critical because:
- Credentials are transmitted (we enforce TLS 1.2+)
- Reads must not change mailbox state (every content fetch uses BODY.PEEK)
- Connection errors can leak information (we sanitize error messages)
"""

import logging
import ssl
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from imapclient import IMAPClient, SEEN, DELETED
from imapclient.exceptions import IMAPClientError

from .email_data import HeaderInfo, MimePart
from .imap_response import (
    HEADER_FIELDS,
    header_info_from_fetch,
    mime_part_from_bodystructure,
    overview_from_fetch,
)
from ..utils.config import MailboxConfig
from ..utils.exceptions import MailboxCommandError
from ..utils.sanitization import sanitize_for_logging, redact_email
from ..utils.security_validators import create_secure_ssl_context


logger = logging.getLogger(__name__)

MessageSet = Union[int, str, Sequence[int]]

# Errors from the client library or the socket underneath it
SESSION_ERRORS = (IMAPClientError, OSError)

FLAG_NAMES = {
    "seen": SEEN,
    "\\seen": SEEN,
    "deleted": DELETED,
    "\\deleted": DELETED,
}


def _apply_ssl_overrides(
    context: ssl.SSLContext,
    verify_ssl: bool,
    log_warning: callable
) -> None:
    """
    Apply SSL verification overrides to an SSL context.

    SECURITY STORY: When verify_ssl is False, we disable certificate
    validation. This should ONLY be used for testing environments with
    self-signed certificates or while troubleshooting a connection.

    Args:
        context: SSL context to configure
        verify_ssl: When False, hostname checking and cert validation are disabled
        log_warning: Callable used to emit a warning when verification is disabled
    """
    if not verify_ssl:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        log_warning("SSL verification disabled - use only for testing!")


def _normalise_flag(flag: Union[str, bytes]) -> bytes:
    if isinstance(flag, bytes):
        return flag
    return FLAG_NAMES.get(flag.strip().lower(), flag.strip().encode())


def _message_list(messages: MessageSet) -> Union[str, List[int]]:
    if isinstance(messages, (int, str)):
        return [messages] if isinstance(messages, int) else messages
    return list(messages)


class IMAPConnection:
    """
    Manages the IMAP connection and exposes the session operations

    Every command raises MailboxCommandError on failure, wrapping the
    underlying imapclient or socket error, so callers deal with a single
    exception type.

    MAINTENANCE WISDOM: Keep connection management separate from parsing.
    The decoding pipeline only sees this interface, so it can be tested with
    an in-memory double and no IMAP server.
    """

    def __init__(self, config: MailboxConfig):
        """
        Initialize IMAP connection manager

        Args:
            config: Mailbox configuration
        """
        self.config = config
        self.folder: Optional[str] = None
        self.connection: Optional[IMAPClient] = None
        self.logger = logging.getLogger(f"IMAPConnection.{config.provider}")

    def connect(self) -> bool:
        """
        Establish connection to IMAP server with secure TLS

        SECURITY STORY: We enforce TLS 1.2+ to protect against protocol-level
        attacks (SSLv3 POODLE, TLS 1.0 BEAST, etc.). The configured timeout
        keeps a stalled server from hanging the checker forever.

        Returns:
            True if connection successful, False otherwise
        """
        try:
            self.logger.info(
                f"Connecting to {self.config.imap_server}:{self.config.imap_port} "
                f"(SSL={self.config.use_ssl})"
            )

            context = create_secure_ssl_context()
            _apply_ssl_overrides(context, self.config.verify_ssl, self.logger.warning)

            self.connection = IMAPClient(
                self.config.imap_server,
                port=self.config.imap_port,
                ssl=self.config.use_ssl,
                ssl_context=context if self.config.use_ssl else None,
                timeout=self.config.timeout,
            )
            if not self.config.use_ssl:
                self.connection.starttls(ssl_context=context)

            self.connection.login(self.config.email, self.config.app_password)
            self.logger.info(f"Successfully connected to {redact_email(self.config.email)}")
            return True

        except IMAPClientError as e:
            self.logger.error(f"IMAP connection error: {sanitize_for_logging(str(e))}")
            tip = self._get_auth_tip(str(e))
            if tip:
                self.logger.warning(f"Tip: {tip}")
            self.connection = None
            return False
        except Exception as e:
            self.logger.error(f"Unexpected connection error: {sanitize_for_logging(str(e))}")
            self.connection = None
            return False

    def ensure_connection(self) -> bool:
        """
        Ensure the IMAP connection is alive, reconnecting if necessary

        Returns:
            True if connection is ready, False if reconnection failed
        """
        if self.ping():
            return True

        if self.connection:
            self.logger.warning("IMAP connection lost, attempting reconnect")
            self.disconnect()

        if not self.connect():
            return False
        return self.select_folder(self.folder) if self.folder else True

    def ping(self) -> bool:
        """NOOP health check; False when there is no live connection."""
        if not self.connection:
            return False
        try:
            self.connection.noop()
            return True
        except SESSION_ERRORS as exc:
            self.logger.debug(f"NOOP failed: {exc}")
            return False

    def disconnect(self):
        """
        Close IMAP connection gracefully
        """
        if not self.connection:
            return

        try:
            self.connection.logout()
            self.logger.info("Disconnected from IMAP server")
        except Exception:
            # Connection may already be closed
            self.logger.debug("Connection was already closed or logout failed")
        finally:
            self.connection = None

    close = disconnect

    def select_folder(self, folder: str) -> bool:
        """
        Select a folder for operations

        Args:
            folder: Folder name (e.g., 'INBOX')

        Returns:
            True if folder selected successfully
        """
        if not self.connection:
            return False

        safe_folder = sanitize_for_logging(folder)
        try:
            self.connection.select_folder(folder)
            self.folder = folder
            self.logger.debug(f"Selected folder: {safe_folder}")
            return True
        except SESSION_ERRORS as e:
            self.logger.error(f"Error selecting folder {safe_folder}: {sanitize_for_logging(str(e))}")
            return False

    def _require_connection(self) -> IMAPClient:
        if not self.connection:
            raise MailboxCommandError("Not connected to IMAP server")
        return self.connection

    @contextmanager
    def _uid_mode(self, uid: bool) -> Iterator[IMAPClient]:
        """Run one command with UID mode switched on or off."""
        client = self._require_connection()
        previous = client.use_uid
        client.use_uid = uid
        try:
            yield client
        except SESSION_ERRORS as e:
            raise MailboxCommandError(sanitize_for_logging(str(e) or type(e).__name__)) from e
        finally:
            client.use_uid = previous

    def _fetch_one(self, identifier: int, items: List[str], uid: bool) -> Dict[bytes, Any]:
        with self._uid_mode(uid) as client:
            response = client.fetch([identifier], items)
        data = response.get(identifier)
        if data is None:
            kind = "UID" if uid else "message"
            raise MailboxCommandError(f"No FETCH data returned for {kind} {identifier}")
        return data

    def message_count(self) -> int:
        """Number of messages in the selected folder."""
        if not self.folder:
            raise MailboxCommandError("No folder selected")
        with self._uid_mode(True) as client:
            status = client.folder_status(self.folder, [b"MESSAGES"])
        return int(status.get(b"MESSAGES", 0))

    def fetch_structure(self, identifier: int, uid: bool = True) -> MimePart:
        data = self._fetch_one(identifier, ["BODYSTRUCTURE"], uid)
        body = data.get(b"BODYSTRUCTURE")
        if not body:
            raise MailboxCommandError(f"No BODYSTRUCTURE returned for {identifier}")
        return mime_part_from_bodystructure(body)

    def fetch_body_part(self, identifier: int, part_number: str, uid: bool = True, peek: bool = True) -> bytes:
        """
        Fetch the raw (still transfer-encoded) content of one part

        SECURITY STORY: peek=True sends BODY.PEEK, which leaves \\Seen
        untouched. Unseen polling depends on this.
        """
        item = f"BODY.PEEK[{part_number}]" if peek else f"BODY[{part_number}]"
        data = self._fetch_one(identifier, [item], uid)

        content = data.get(f"BODY[{part_number}]".encode())
        if content is None:
            for key, value in data.items():
                if isinstance(key, bytes) and key.upper().startswith(b"BODY["):
                    content = value
                    break
        return content or b""

    def fetch_header(self, sequence_number: int) -> HeaderInfo:
        """ENVELOPE, FLAGS and the Date / From / Sender lines of one message."""
        data = self._fetch_one(
            sequence_number,
            ["ENVELOPE", "FLAGS", f"BODY.PEEK[{HEADER_FIELDS}]"],
            uid=False,
        )
        if data.get(b"ENVELOPE") is None:
            raise MailboxCommandError(f"No ENVELOPE returned for message {sequence_number}")
        return header_info_from_fetch(data)

    def search(self, criteria: Union[str, List[Any]], uid: bool = True) -> List[int]:
        with self._uid_mode(uid) as client:
            return list(client.search(criteria))

    def fetch_overview(self, message_set: MessageSet, uid: bool = True) -> List[Dict[str, Any]]:
        """UID, sequence number, flags and size for a message set."""
        with self._uid_mode(uid) as client:
            response = client.fetch(_message_list(message_set), ["UID", "FLAGS", "RFC822.SIZE"])
        return [overview_from_fetch(key, data, uid) for key, data in response.items()]

    def uid_for_sequence(self, sequence_number: int) -> int:
        data = self._fetch_one(sequence_number, ["UID"], uid=False)
        return int(data.get(b"UID") or 0)

    def sequence_for_uid(self, uid: int) -> int:
        data = self._fetch_one(uid, ["UID"], uid=True)
        return int(data.get(b"SEQ") or 0)

    def set_flag(self, messages: MessageSet, flag: Union[str, bytes], uid: bool = True) -> bool:
        with self._uid_mode(uid) as client:
            client.add_flags(_message_list(messages), [_normalise_flag(flag)])
        return True

    def clear_flag(self, messages: MessageSet, flag: Union[str, bytes], uid: bool = True) -> bool:
        with self._uid_mode(uid) as client:
            client.remove_flags(_message_list(messages), [_normalise_flag(flag)])
        return True

    def mark_deleted(self, messages: MessageSet, uid: bool = True) -> bool:
        with self._uid_mode(uid) as client:
            client.delete_messages(_message_list(messages))
        return True

    def move(self, messages: MessageSet, folder: str, uid: bool = True) -> bool:
        """
        Move messages to another folder

        Uses MOVE (RFC 6851) when the server has it, otherwise COPY and
        flag the originals \\Deleted for the following expunge.
        """
        with self._uid_mode(uid) as client:
            ids = _message_list(messages)
            if client.has_capability("MOVE"):
                client.move(ids, folder)
            else:
                client.copy(ids, folder)
                client.delete_messages(ids)
        self.logger.debug(f"Moved {ids} to {sanitize_for_logging(folder)}")
        return True

    def expunge(self) -> bool:
        """
        Permanently remove \\Deleted messages

        An expunge with nothing to remove is still a success; only a
        server error raises.
        """
        with self._uid_mode(False) as client:
            client.expunge()
        return True

    def _get_auth_tip(self, error_msg: str) -> Optional[str]:
        """
        Get actionable tip based on error and provider

        INDUSTRY CONTEXT: Major email providers now require app-specific
        passwords for IMAP access. This helps users troubleshoot authentication.

        Args:
            error_msg: Error message from IMAP server

        Returns:
            User-friendly tip or None
        """
        msg_lower = error_msg.lower()
        server_lower = self.config.imap_server.lower()

        auth_keywords = [
            "authentication failed", "login failed", "invalid credentials",
            "logon failure", "authenticate"
        ]
        if not any(k in msg_lower for k in auth_keywords):
            return None

        if "outlook" in server_lower or "office365" in server_lower:
            return (
                "Personal Outlook/Hotmail accounts NO LONGER support passwords. "
                "You must use an App Password or OAuth (Enterprise)."
            )

        if "gmail" in server_lower:
            return (
                "Gmail requires 2-Step Verification enabled and an App Password "
                "to use IMAP."
            )

        if "yahoo" in server_lower:
            return (
                "Yahoo Mail requires an App Password generated from account "
                "security settings."
            )

        return (
            "Check your email and password. If using 2FA, you likely need "
            "an App Password."
        )
