"""
Tests for IMAPEmailChecker batch retrieval, status and mutations

All mailbox traffic goes through tests.fakes.FakeSession, so the checker
is exercised end to end without a server.
"""

import unittest
from datetime import date, datetime
from unittest.mock import MagicMock, patch

from src.modules.email_ingestion import IMAPEmailChecker
from src.utils.config import MailboxConfig
from src.utils.exceptions import (
    BatchError,
    InvalidInputError,
    MailboxCommandError,
    MutationError,
    SessionError,
)
from tests.fakes import FakeMessage, FakeSession, RecordingSink, header


def _mailbox(*uids, **header_kwargs):
    return FakeSession([
        FakeMessage(uid=uid, header=header(subject=f"Order #{uid}", **header_kwargs))
        for uid in uids
    ])


class TestSessionLifecycle(unittest.TestCase):

    def test_missing_session_rejected(self):
        with self.assertRaises(SessionError):
            IMAPEmailChecker(None)

    def test_dead_session_rejected(self):
        with self.assertRaises(SessionError):
            IMAPEmailChecker(FakeSession(alive=False))

    def test_failing_ping_rejected(self):
        session = FakeSession()
        session.failing_commands["ping"] = MailboxCommandError("NOOP failed")
        with self.assertRaises(SessionError):
            IMAPEmailChecker(session)

    def test_invalid_pattern_rejected(self):
        with self.assertRaises(InvalidInputError):
            IMAPEmailChecker(FakeSession(), bid_pattern=r"no group")

    def test_close_runs_once(self):
        session = FakeSession()
        checker = IMAPEmailChecker(session)
        checker.close()
        checker.close()
        self.assertEqual(session.close_count, 1)

    def test_context_manager_closes_on_error(self):
        session = FakeSession()
        with self.assertRaises(RuntimeError):
            with IMAPEmailChecker(session) as checker:
                self.assertIs(checker.session, session)
                raise RuntimeError("boom")
        self.assertEqual(session.close_count, 1)

    @patch("src.modules.email_ingestion.IMAPConnection")
    def test_connect_wraps_connection(self, mock_connection_cls):
        connection = mock_connection_cls.return_value
        connection.connect.return_value = True
        connection.select_folder.return_value = True
        connection.ping.return_value = True
        config = MailboxConfig(email="u@example.com", imap_server="imap.example.com", imap_port=993, app_password="p")

        checker = IMAPEmailChecker.connect(config, last_uid=7)

        self.assertIs(checker.session, connection)
        self.assertEqual(checker.last_uid, 7)
        connection.select_folder.assert_called_once_with(config.folder)

    @patch("src.modules.email_ingestion.IMAPConnection")
    def test_connect_failure_raises_session_error(self, mock_connection_cls):
        mock_connection_cls.return_value.connect.return_value = False
        config = MailboxConfig(email="u@example.com", imap_server="imap.example.com", imap_port=993, app_password="p")
        with self.assertRaises(SessionError):
            IMAPEmailChecker.connect(config)

    @patch("src.modules.email_ingestion.IMAPConnection")
    def test_select_failure_disconnects(self, mock_connection_cls):
        connection = mock_connection_cls.return_value
        connection.connect.return_value = True
        connection.select_folder.return_value = False
        config = MailboxConfig(email="u@example.com", imap_server="imap.example.com", imap_port=993, app_password="p")
        with self.assertRaises(SessionError):
            IMAPEmailChecker.connect(config)
        connection.disconnect.assert_called_once()


class TestSinceLastUid(unittest.TestCase):

    def test_failed_message_does_not_move_watermark(self):
        session = _mailbox(18, 21, 25)
        session.failing_headers.add(21)
        checker = IMAPEmailChecker(session, last_uid=20)

        result = checker.check_since_last_uid()

        self.assertEqual(set(result), {25})
        self.assertEqual(checker.last_uid, 25)
        self.assertEqual(set(checker.messages), {25})
        self.assertEqual(checker.metrics.failures["message"], 1)

    def test_nothing_newer_keeps_watermark(self):
        session = _mailbox(50, 100)
        checker = IMAPEmailChecker(session, last_uid=100)

        self.assertEqual(checker.check_since_last_uid(), {})
        self.assertEqual(checker.last_uid, 100)
        self.assertEqual(checker.messages, {})

    def test_explicit_watermark(self):
        checker = IMAPEmailChecker(_mailbox(3, 4, 5))
        result = checker.check_since_last_uid(3)
        self.assertEqual(sorted(result), [4, 5])
        self.assertEqual(checker.last_uid, 5)
        self.assertIn(("fetch_overview", "4:*", True), checker.session.calls)

    def test_explicit_watermark_is_kept_when_nothing_newer(self):
        checker = IMAPEmailChecker(_mailbox(10, 50))
        self.assertEqual(checker.check_since_last_uid(100), {})
        self.assertEqual(checker.last_uid, 100)

    def test_explicit_watermark_can_restart_lower(self):
        checker = IMAPEmailChecker(_mailbox(3, 4), last_uid=500)
        result = checker.check_since_last_uid(3)
        self.assertEqual(sorted(result), [4])
        self.assertEqual(checker.last_uid, 4)

    def test_all_failures_keep_watermark(self):
        session = _mailbox(30, 31)
        session.failing_headers.update({30, 31})
        checker = IMAPEmailChecker(session, last_uid=29)
        self.assertEqual(checker.check_since_last_uid(), {})
        self.assertEqual(checker.last_uid, 29)

    def test_negative_watermark_rejected(self):
        checker = IMAPEmailChecker(_mailbox(1))
        with self.assertRaises(InvalidInputError):
            checker.check_since_last_uid(-1)

    def test_overview_failure_is_batch_error(self):
        session = _mailbox(1)
        session.failing_commands["fetch_overview"] = MailboxCommandError("FETCH failed")
        with self.assertRaises(BatchError):
            IMAPEmailChecker(session).check_since_last_uid(0)


class TestBatchStrategies(unittest.TestCase):

    def test_check_all_uses_sequence_numbers(self):
        session = _mailbox(11, 12, 13)
        checker = IMAPEmailChecker(session)

        result = checker.check_all_email()

        self.assertEqual(sorted(result), [11, 12, 13])
        self.assertEqual(result[12].sequence_number, 2)
        self.assertEqual(result[12].correlation_token, "12")
        self.assertEqual(checker.last_uid, 13)
        self.assertEqual(checker.metrics.batches["all"], 1)

    def test_batch_summary_carries_context(self):
        checker = IMAPEmailChecker(_mailbox(11, 12))
        with self.assertLogs("IMAPEmailChecker", level="INFO") as logs:
            checker.check_all_email()

        summary = [r for r in logs.records if r.getMessage().startswith("Batch all")][0]
        self.assertEqual(summary.extra_fields["requested"], 2)
        self.assertEqual(summary.extra_fields["processed"], 2)
        self.assertEqual(summary.extra_fields["last_uid"], 12)

    def test_other_strategies_never_lower_watermark(self):
        for run in (
            lambda checker: checker.check_unread_emails(),
            lambda checker: checker.check_since_date("2024-01-01"),
            lambda checker: checker.check_all_email(),
        ):
            checker = IMAPEmailChecker(_mailbox(3, 4), last_uid=500)
            self.assertEqual(sorted(run(checker)), [3, 4])
            self.assertEqual(checker.last_uid, 500)

    def test_check_all_empty_mailbox(self):
        checker = IMAPEmailChecker(FakeSession())
        self.assertEqual(checker.check_all_email(), {})
        self.assertEqual(checker.last_uid, 0)

    def test_check_all_count_failure(self):
        session = _mailbox(1)
        session.failing_commands["message_count"] = MailboxCommandError("STATUS failed")
        with self.assertRaises(BatchError):
            IMAPEmailChecker(session).check_all_email()

    def test_since_date_sends_day_only(self):
        session = _mailbox(5, 6)
        checker = IMAPEmailChecker(session)
        checker.check_since_date(datetime(2024, 5, 1, 18, 30))
        self.assertIn(("search", ["SINCE", date(2024, 5, 1)], True), session.calls)

    def test_since_date_accepts_text(self):
        session = _mailbox(5)
        IMAPEmailChecker(session).check_since_date("2024-05-01")
        self.assertIn(("search", ["SINCE", date(2024, 5, 1)], True), session.calls)

    def test_since_date_rejects_garbage(self):
        with self.assertRaises(InvalidInputError):
            IMAPEmailChecker(_mailbox(5)).check_since_date("not-a-date")

    def test_unread_only(self):
        session = FakeSession([
            FakeMessage(uid=1, header=header(seen=True)),
            FakeMessage(uid=2, header=header(seen=False)),
        ])
        checker = IMAPEmailChecker(session)
        self.assertEqual(list(checker.check_unread_emails()), [2])

    def test_search_failure_is_batch_error(self):
        session = _mailbox(1)
        session.failing_commands["search"] = MailboxCommandError("SEARCH failed")
        checker = IMAPEmailChecker(session)
        with self.assertRaises(BatchError):
            checker.check_unread_emails()
        with self.assertRaises(BatchError):
            checker.check_since_date(date(2024, 1, 1))

    def test_messages_replaced_by_each_batch(self):
        session = _mailbox(1, 2)
        checker = IMAPEmailChecker(session)
        checker.check_all_email()
        session.search_results["UNSEEN"] = [2]
        checker.check_unread_emails()
        self.assertEqual(list(checker.messages), [2])

    def test_decode_issues_counted(self):
        session = _mailbox(1)
        session.failing_structures.add(1)
        sink = RecordingSink()
        checker = IMAPEmailChecker(session, sink=sink)
        result = checker.check_all_email()
        self.assertEqual(result[1].body, "")
        self.assertEqual(checker.metrics.decode_issues, sink.issue_count)
        self.assertGreater(sink.issue_count, 0)


class TestFetchByIds(unittest.TestCase):

    def setUp(self):
        self.session = _mailbox(40, 41, 42)
        self.checker = IMAPEmailChecker(self.session, last_uid=5)

    def test_keyed_by_supplied_identifier(self):
        by_uid = self.checker.fetch_messages_by_ids([42, 40])
        self.assertEqual(list(by_uid), [42, 40])

        by_seq = self.checker.fetch_messages_by_ids([3], is_uid=False)
        self.assertEqual(list(by_seq), [3])
        self.assertEqual(by_seq[3].uid, 42)

    def test_invalid_identifiers_skipped(self):
        result = self.checker.fetch_messages_by_ids([0, -1, "x", None, True, "41", 41])
        self.assertEqual(list(result), [41])

    def test_single_identifier(self):
        self.assertEqual(list(self.checker.fetch_messages_by_ids(40)), [40])

    def test_does_not_touch_batch_state(self):
        self.checker.fetch_messages_by_ids([42])
        self.assertEqual(self.checker.last_uid, 5)
        self.assertEqual(self.checker.messages, {})

    def test_unknown_uid_skipped(self):
        self.assertEqual(self.checker.fetch_messages_by_ids([999, 40]).keys(), {40})


class TestStatusAndSearch(unittest.TestCase):

    def test_mailbox_status(self):
        session = FakeSession([
            FakeMessage(uid=3, header=header(seen=True)),
            FakeMessage(uid=8, header=header(recent=True)),
            FakeMessage(uid=9),
        ])
        status = IMAPEmailChecker(session).check_mailbox_status()

        self.assertEqual(status.total_messages, 3)
        self.assertEqual(status.highest_uid, 9)
        self.assertEqual(status.recent_uids, frozenset({8}))
        self.assertEqual(status.unseen_uids, frozenset({8, 9}))

    def test_empty_mailbox_status(self):
        status = IMAPEmailChecker(FakeSession()).check_mailbox_status()
        self.assertEqual((status.total_messages, status.highest_uid), (0, 0))

    def test_status_failure_propagates(self):
        session = _mailbox(1)
        session.failing_commands["search"] = MailboxCommandError("SEARCH failed")
        with self.assertRaises(MailboxCommandError):
            IMAPEmailChecker(session).check_mailbox_status()

    def test_search_sorted(self):
        session = _mailbox(1)
        session.search_results["FROM"] = [9, 2, 5]
        checker = IMAPEmailChecker(session)
        self.assertEqual(checker.search(["FROM", "billing@example.com"]), [2, 5, 9])

    def test_search_sequence_numbers(self):
        session = _mailbox(1)
        IMAPEmailChecker(session).search("ALL", return_uids=False)
        self.assertIn(("search", "ALL", False), session.calls)

    def test_empty_criteria_rejected(self):
        checker = IMAPEmailChecker(_mailbox(1))
        for criteria in ("", "   ", [], None, [None, " "]):
            with self.assertRaises(InvalidInputError):
                checker.search(criteria)


class TestMutations(unittest.TestCase):

    def setUp(self):
        self.session = _mailbox(7, 8)
        self.checker = IMAPEmailChecker(self.session)

    def test_mark_read_and_unread(self):
        self.checker.set_message_read_status([7, 8], mark_as_read=True)
        self.assertEqual(self.session.flags[7], {"\\Seen"})
        self.checker.set_message_read_status(7, mark_as_read=False)
        self.assertEqual(self.session.flags[7], set())
        self.assertEqual(self.session.flags[8], {"\\Seen"})

    def test_mark_requires_valid_uid(self):
        with self.assertRaises(InvalidInputError):
            self.checker.set_message_read_status(["abc", 0], mark_as_read=True)

    def test_flag_failure(self):
        self.session.failing_commands["set_flag"] = MailboxCommandError("STORE failed")
        with self.assertRaises(MutationError):
            self.checker.set_message_read_status([7], mark_as_read=True)

    def test_refused_flag(self):
        self.session.set_flag = MagicMock(return_value=False)
        with self.assertRaises(MutationError):
            self.checker.set_message_read_status([7], mark_as_read=True)

    def test_delete_marks_and_expunges(self):
        self.checker.delete_email(7)
        self.assertIn(7, self.session.deleted)
        self.assertEqual(self.session.expunge_count, 1)

    def test_delete_invalid_uid(self):
        for bad in (0, -3, "x", None):
            with self.assertRaises(InvalidInputError):
                self.checker.delete_email(bad)
        self.assertEqual(self.session.deleted, set())

    def test_delete_expunge_failure(self):
        self.session.failing_commands["expunge"] = MailboxCommandError("EXPUNGE failed")
        with self.assertRaises(MutationError):
            self.checker.delete_email(7)

    def test_archive_moves_and_expunges(self):
        self.checker.archive_email(8, "Archive/2024")
        self.assertEqual(self.session.moved, {8: "Archive/2024"})
        self.assertEqual(self.session.expunge_count, 1)

    def test_archive_default_folder(self):
        self.checker.archive_email("8")
        self.assertEqual(self.session.moved, {8: "Archive"})

    def test_archive_move_failure(self):
        self.session.failing_commands["move"] = MailboxCommandError("MOVE failed")
        with self.assertRaises(MutationError):
            self.checker.archive_email(8)
        self.assertEqual(self.session.expunge_count, 0)

    def test_archive_empty_folder(self):
        with self.assertRaises(InvalidInputError):
            self.checker.archive_email(8, "  ")


if __name__ == "__main__":
    unittest.main()
