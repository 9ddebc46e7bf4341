"""
Email Ingestion Module
Batch retrieval, mailbox status and mailbox mutations on one IMAP session

IMAPEmailChecker owns a live session and runs the message assembler over
the identifiers each retrieval strategy produces. Per-message failures are
logged and skipped; a failure of the search / count / overview that starts
a batch fails the whole call.
"""

import logging
import re
import time
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Union

from dateutil import parser as date_parser

from .email_data import MailboxStatus, MessageRecord
from .imap_connection import IMAPConnection
from .message_assembler import MessageAssembler
from ..utils.config import MailboxConfig
from ..utils.exceptions import (
    BatchError,
    IMAPCheckerError,
    InvalidInputError,
    MessageProcessingError,
    MutationError,
    SessionError,
)
from ..utils.logging_utils import IssueSink
from ..utils.metrics import BatchMetrics
from ..utils.pattern_compiler import DEFAULT_BID_PATTERN
from ..utils.sanitization import sanitize_for_logging
from ..utils.security_validators import filter_identifiers, validate_uid, validate_uid_list


SEEN_FLAG = "\\Seen"
DEFAULT_ARCHIVE_FOLDER = "Archive"


class IMAPEmailChecker:
    """
    Retrieves and decodes messages from one mailbox session

    State:
        last_uid: UID watermark; batches only raise it, except that
            check_since_last_uid(uid) restarts from the uid it is given
        messages: records from the latest batch, keyed by UID

    The checker owns the session it is given and closes it exactly once,
    on close() or when leaving a with-block.
    """

    def __init__(
        self,
        session,
        debug: bool = False,
        bid_pattern: Union[str, "re.Pattern[str]"] = DEFAULT_BID_PATTERN,
        last_uid: int = 0,
        sink: Optional[IssueSink] = None,
        metrics: Optional[BatchMetrics] = None,
    ):
        """
        Initialize the checker

        Args:
            session: Open mailbox session (an IMAPConnection or equivalent)
            debug: Log non-fatal decode issues
            bid_pattern: Correlation pattern with at least one capturing group
            last_uid: Starting watermark
            sink: IssueSink override, mainly for tests
            metrics: Shared metrics collector

        Raises:
            SessionError: If the session is missing or fails its liveness check
            InvalidInputError: If the correlation pattern is unusable
        """
        self.logger = logging.getLogger("IMAPEmailChecker")

        if session is None:
            raise SessionError("No mailbox session supplied")
        try:
            alive = session.ping()
        except IMAPCheckerError as e:
            raise SessionError(f"Mailbox session liveness check failed: {e}") from e
        if not alive:
            raise SessionError("Mailbox session is not alive")

        self.debug = debug
        self.sink = sink or IssueSink(logging.getLogger("IMAPEmailChecker.issues"), debug=debug)
        self.metrics = metrics or BatchMetrics()
        self.assembler = MessageAssembler(session, bid_pattern, self.sink)

        self.session = session
        self.last_uid = int(last_uid or 0)
        self.messages: Dict[int, MessageRecord] = {}
        self._closed = False

    @classmethod
    def connect(
        cls,
        config: MailboxConfig,
        debug: bool = False,
        bid_pattern: Union[str, "re.Pattern[str]"] = DEFAULT_BID_PATTERN,
        last_uid: int = 0,
    ) -> "IMAPEmailChecker":
        """
        Open a session for a mailbox configuration and wrap it in a checker

        Raises:
            SessionError: If login or folder selection fails
        """
        connection = IMAPConnection(config)
        if not connection.connect():
            raise SessionError(
                f"Could not connect to {config.imap_server}:{config.imap_port}"
            )
        if not connection.select_folder(config.folder):
            connection.disconnect()
            raise SessionError(f"Could not select folder {sanitize_for_logging(config.folder)}")

        try:
            return cls(connection, debug=debug, bid_pattern=bid_pattern, last_uid=last_uid)
        except IMAPCheckerError:
            connection.disconnect()
            raise

    def close(self):
        """Close the owned session. Further calls do nothing."""
        if self._closed:
            return
        self._closed = True
        self.session.close()
        self.logger.debug("Mailbox session closed")

    def __enter__(self) -> "IMAPEmailChecker":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False

    # ------------------------------------------------------------------
    # Mailbox status and search
    # ------------------------------------------------------------------

    def check_mailbox_status(self) -> MailboxStatus:
        """
        Snapshot of the selected mailbox

        Raises:
            MailboxCommandError: If any of the underlying commands fails
        """
        try:
            total = self.session.message_count()
            highest_uid = 0
            if total > 0:
                overview = self.session.fetch_overview(str(total), uid=False)
                highest_uid = max((int(entry.get("uid") or 0) for entry in overview), default=0)
            recent = self.session.search(["RECENT"], uid=True)
            unseen = self.session.search(["UNSEEN"], uid=True)
        except IMAPCheckerError as e:
            self.logger.error(f"Mailbox status unavailable: {e}")
            raise

        return MailboxStatus(
            total_messages=total,
            highest_uid=highest_uid,
            recent_uids=frozenset(int(uid) for uid in recent),
            unseen_uids=frozenset(int(uid) for uid in unseen),
        )

    def search(self, criteria: Union[str, List[Any]], return_uids: bool = True) -> List[int]:
        """
        Run a raw IMAP SEARCH

        Args:
            criteria: e.g. 'FROM "billing@example.com"' or ["SINCE", date(2024, 1, 1)]
            return_uids: UIDs when True, sequence numbers otherwise

        Returns:
            Matching identifiers in ascending order

        Raises:
            InvalidInputError: If criteria is empty
            MailboxCommandError: If the search fails
        """
        if isinstance(criteria, str):
            criteria = criteria.strip()
        else:
            criteria = [item for item in (criteria or []) if item is not None and str(item).strip()]
        if not criteria:
            raise InvalidInputError("Search criteria must not be empty")

        try:
            result = self.session.search(criteria, uid=return_uids)
        except IMAPCheckerError as e:
            self.logger.error(f"Search failed: {e}")
            raise
        return sorted(int(identifier) for identifier in result)

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def fetch_messages_by_ids(self, identifiers: Iterable[Any], is_uid: bool = True) -> Dict[int, MessageRecord]:
        """
        Assemble an explicit list of messages

        Identifiers that are not positive integers are skipped silently.
        Neither the watermark nor `messages` is touched.

        Returns:
            Records keyed by the identifier that was supplied
        """
        if isinstance(identifiers, (int, str)):
            identifiers = [identifiers]

        results: Dict[int, MessageRecord] = {}
        for identifier in filter_identifiers(identifiers):
            try:
                results[identifier] = self.assembler.assemble(identifier, is_uid)
                self.metrics.record_message_processed()
            except MessageProcessingError as e:
                self._log_message_failure(e)
        self.metrics.decode_issues = self.sink.issue_count
        return results

    def check_all_email(self) -> Dict[int, MessageRecord]:
        """Every message in the folder, by sequence number 1..N."""
        try:
            total = self.session.message_count()
        except IMAPCheckerError as e:
            raise BatchError(f"Could not count messages: {e}") from e
        return self._run_batch("all", range(1, total + 1), is_uid=False, baseline=self.last_uid)

    def check_since_date(self, since: Union[date, datetime, str]) -> Dict[int, MessageRecord]:
        """
        Messages dated on or after a calendar day

        Only the day matters; any time of day is dropped.

        Raises:
            InvalidInputError: If since cannot be read as a date
            BatchError: If the search fails
        """
        day = self._to_date(since)
        try:
            uids = self.session.search(["SINCE", day], uid=True)
        except IMAPCheckerError as e:
            raise BatchError(f"SINCE {day.isoformat()} search failed: {e}") from e
        return self._run_batch("since_date", sorted(int(uid) for uid in uids), is_uid=True, baseline=self.last_uid)

    def check_since_last_uid(self, uid: Optional[int] = None) -> Dict[int, MessageRecord]:
        """
        Messages with a UID strictly greater than a watermark

        Args:
            uid: Watermark; defaults to last_uid

        Raises:
            InvalidInputError: If uid is negative or not an integer
            BatchError: If the overview fetch fails
        """
        watermark = self.last_uid if uid is None else uid
        if isinstance(watermark, bool) or not isinstance(watermark, int) or watermark < 0:
            raise InvalidInputError(f"Invalid UID watermark: {watermark!r}")

        try:
            overview = self.session.fetch_overview(f"{watermark + 1}:*", uid=True)
        except IMAPCheckerError as e:
            raise BatchError(f"Overview of UIDs after {watermark} failed: {e}") from e

        # "N:*" always matches the newest message, even when its UID is below N
        uids = sorted({
            int(entry["uid"]) for entry in overview
            if entry.get("uid") and int(entry["uid"]) > watermark
        })
        return self._run_batch("since_uid", uids, is_uid=True, baseline=watermark)

    def check_unread_emails(self) -> Dict[int, MessageRecord]:
        """Messages currently without the \\Seen flag."""
        try:
            uids = self.session.search(["UNSEEN"], uid=True)
        except IMAPCheckerError as e:
            raise BatchError(f"UNSEEN search failed: {e}") from e
        return self._run_batch("unseen", sorted(int(uid) for uid in uids), is_uid=True, baseline=self.last_uid)

    def _run_batch(
        self, strategy: str, identifiers: Iterable[int], is_uid: bool, baseline: int
    ) -> Dict[int, MessageRecord]:
        """
        Assemble each identifier in order and replace `messages`

        The watermark ends at max(baseline, highest successful UID), so a
        batch never moves it below where it started.
        """
        started = time.monotonic()
        identifiers = list(identifiers)
        results: Dict[int, MessageRecord] = {}
        highest = 0

        for identifier in identifiers:
            try:
                record = self.assembler.assemble(identifier, is_uid)
            except MessageProcessingError as e:
                self._log_message_failure(e)
                continue
            results[record.uid] = record
            highest = max(highest, record.uid)
            self.metrics.record_message_processed()

        self.messages = results
        watermark = max(baseline, highest)
        if watermark > self.last_uid:
            self.logger.info(f"Watermark advanced from {self.last_uid} to {watermark}")
        elif watermark < self.last_uid:
            # only an explicit since-UID call starts below the current watermark
            self.logger.info(f"Watermark reset from {self.last_uid} to {watermark}")
        self.last_uid = watermark

        elapsed_ms = (time.monotonic() - started) * 1000
        self.metrics.record_batch(strategy, elapsed_ms)
        self.metrics.decode_issues = self.sink.issue_count
        self.logger.info(
            f"Batch {strategy}: {len(results)} of {len(identifiers)} messages processed "
            f"in {elapsed_ms:.0f} ms",
            extra={"extra_fields": {
                "strategy": strategy,
                "requested": len(identifiers),
                "processed": len(results),
                "last_uid": self.last_uid,
                "elapsed_ms": round(elapsed_ms, 1),
            }},
        )
        return results

    def _log_message_failure(self, error: MessageProcessingError):
        self.metrics.record_failure("message")
        self.logger.warning(f"Skipping message: {sanitize_for_logging(str(error), max_length=500)}")

    @staticmethod
    def _to_date(value: Union[date, datetime, str]) -> date:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, str) and value.strip():
            try:
                return date_parser.parse(value.strip()).date()
            except (ValueError, OverflowError) as e:
                raise InvalidInputError(f"Invalid date: {value!r}") from e
        raise InvalidInputError(f"Invalid date: {value!r}")

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_message_read_status(self, uids: Union[int, Iterable[Any]], mark_as_read: bool) -> None:
        """
        Set or clear \\Seen on one or more UIDs

        Raises:
            InvalidInputError: If no valid UID is supplied
            MutationError: If the flag command fails
        """
        valid = validate_uid_list(uids)
        action = "set" if mark_as_read else "clear"
        try:
            if mark_as_read:
                done = self.session.set_flag(valid, SEEN_FLAG, uid=True)
            else:
                done = self.session.clear_flag(valid, SEEN_FLAG, uid=True)
        except IMAPCheckerError as e:
            raise MutationError(f"Could not {action} \\Seen on UIDs {valid}: {e}") from e
        if not done:
            raise MutationError(f"Server refused to {action} \\Seen on UIDs {valid}")
        self.logger.debug(f"\\Seen {action} on UIDs {valid}")

    def delete_email(self, uid: Any) -> None:
        """
        Mark a message \\Deleted and expunge it

        Raises:
            InvalidInputError: If uid is not a positive integer
            MutationError: If either command fails
        """
        valid = validate_uid(uid)
        try:
            done = self.session.mark_deleted([valid], uid=True)
        except IMAPCheckerError as e:
            raise MutationError(f"Could not mark UID {valid} deleted: {e}") from e
        if not done:
            raise MutationError(f"Server refused to mark UID {valid} deleted")
        self._expunge(f"delete of UID {valid}")
        self.logger.info(f"Deleted UID {valid}")

    def archive_email(self, uid: Any, target_folder: str = DEFAULT_ARCHIVE_FOLDER) -> None:
        """
        Move a message to another folder and expunge the original

        Raises:
            InvalidInputError: If uid or target_folder is unusable
            MutationError: If the move or the expunge fails
        """
        valid = validate_uid(uid)
        if not target_folder or not str(target_folder).strip():
            raise InvalidInputError("Target folder must not be empty")
        folder = str(target_folder).strip()
        safe_folder = sanitize_for_logging(folder)

        try:
            done = self.session.move([valid], folder, uid=True)
        except IMAPCheckerError as e:
            raise MutationError(f"Could not move UID {valid} to {safe_folder}: {e}") from e
        if not done:
            raise MutationError(f"Server refused to move UID {valid} to {safe_folder}")
        self._expunge(f"archive of UID {valid}")
        self.logger.info(f"Archived UID {valid} to {safe_folder}")

    def _expunge(self, context: str):
        # Nothing to expunge is not an error; only a failing command is
        try:
            self.session.expunge()
        except IMAPCheckerError as e:
            raise MutationError(f"Expunge after {context} failed: {e}") from e
