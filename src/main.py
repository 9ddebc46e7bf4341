#!/usr/bin/env python3
"""
IMAP Email Checker
Command-line front end for retrieving and decoding mailbox messages
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import dotenv_values, set_key

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.modules.email_data import MailboxStatus, MessageRecord
from src.modules.email_ingestion import IMAPEmailChecker
from src.utils.colors import Colors
from src.utils.config import Config, check_default_credentials
from src.utils.exceptions import IMAPCheckerError
from src.utils.logging_utils import ColoredFormatter
from src.utils.sanitization import sanitize_for_logging
from src.utils.structured_logging import JSONFormatter


LAST_UID_KEY = "LAST_UID"
BATCH_COMMANDS = ("all", "since-date", "since-uid", "unseen")


def load_watermark(state_file: str) -> int:
    """Read LAST_UID from the state file; 0 when absent or unreadable."""
    if not Path(state_file).exists():
        return 0
    value = dotenv_values(state_file).get(LAST_UID_KEY) or "0"
    return int(value) if value.strip().isdigit() else 0


def save_watermark(state_file: str, uid: int):
    """Persist LAST_UID to the state file"""
    path = Path(state_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch(exist_ok=True)
    set_key(str(path), LAST_UID_KEY, str(uid), quote_mode="never")


def format_message_line(record: MessageRecord) -> str:
    """One console line per message"""
    when = record.parsed_date.strftime("%Y-%m-%d %H:%M") if record.parsed_date else (record.raw_date or "?")
    sender = sanitize_for_logging(record.from_display or record.from_address or "(unknown sender)", 60)
    subject = sanitize_for_logging(record.subject or "(no subject)", 100)
    line = f"{Colors.unseen_marker(record.is_unseen)} [{record.uid}] {when}  {sender}  {subject}"
    if record.correlation_token:
        line += f"  {Colors.colorize('bid=' + record.correlation_token, Colors.CYAN)}"
    if record.attachments:
        line += f"  {Colors.colorize(f'+{len(record.attachments)} attachment(s)', Colors.GREY)}"
    return line


def format_status(status: MailboxStatus) -> List[str]:
    return [
        Colors.header("Mailbox status"),
        f"  Messages:    {status.total_messages}",
        f"  Highest UID: {status.highest_uid}",
        f"  Recent:      {len(status.recent_uids)} {sorted(status.recent_uids)}",
        f"  Unseen:      {len(status.unseen_uids)} {sorted(status.unseen_uids)}",
    ]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="imap-checker", description="IMAP Email Checker")
    parser.add_argument("--env", default=".env", help="Path to the configuration file (default: .env)")
    parser.add_argument("--json", action="store_true", help="Print results as JSON")
    parser.add_argument("--debug", action="store_true", help="Log non-fatal decode issues")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("status", help="Show message count, highest UID, recent and unseen UIDs")
    subparsers.add_parser("all", help="Retrieve every message in the folder")

    since_date = subparsers.add_parser("since-date", help="Retrieve messages on or after a date")
    since_date.add_argument("date", help="Date, e.g. 2024-05-01")

    since_uid = subparsers.add_parser("since-uid", help="Retrieve messages with a UID above the watermark")
    since_uid.add_argument("uid", nargs="?", type=int, default=None, help="Watermark (default: persisted LAST_UID)")

    subparsers.add_parser("unseen", help="Retrieve unread messages")

    fetch = subparsers.add_parser("fetch", help="Retrieve specific messages")
    fetch.add_argument("ids", nargs="+", help="UIDs (or sequence numbers with --seq)")
    fetch.add_argument("--seq", action="store_true", help="Identifiers are sequence numbers")

    for name, help_text in (("mark-read", "Set \\Seen"), ("mark-unread", "Clear \\Seen")):
        mark = subparsers.add_parser(name, help=help_text)
        mark.add_argument("uids", nargs="+", help="UIDs")

    delete = subparsers.add_parser("delete", help="Delete a message and expunge")
    delete.add_argument("uid", help="UID")

    archive = subparsers.add_parser("archive", help="Move a message to the archive folder and expunge")
    archive.add_argument("uid", help="UID")
    archive.add_argument("--folder", default=None, help="Target folder (default: ARCHIVE_FOLDER)")

    return parser


class MailboxCheckerApp:
    """Runs one CLI command against the configured mailbox"""

    def __init__(self, config_file: str = ".env", debug: bool = False, json_output: bool = False):
        """
        Initialize application

        Args:
            config_file: Path to configuration file
            debug: Force decode-issue logging on
            json_output: Print JSON instead of text lines
        """
        self.config = Config(config_file)
        self.debug = debug or self.config.checker.debug
        self.json_output = json_output

        self._setup_logging()
        self.logger = logging.getLogger("MailboxCheckerApp")

    def _setup_logging(self):
        """Setup logging configuration"""
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

        log_path = Path(self.config.system.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        level_name = str(self.config.system.log_level).upper()
        level = logging._nameToLevel.get(level_name, logging.INFO)

        file_handler = logging.FileHandler(self.config.system.log_file)
        # Results go to stdout; keep logs off it so --json output stays parseable
        console_handler = logging.StreamHandler(sys.stderr)

        if self.config.system.log_format == "json":
            file_handler.setFormatter(JSONFormatter())
            console_handler.setFormatter(JSONFormatter())
        else:
            file_handler.setFormatter(logging.Formatter(log_format))
            console_handler.setFormatter(ColoredFormatter(log_format))

        logging.basicConfig(level=level, handlers=[file_handler, console_handler])

        if level_name not in logging._nameToLevel:
            logging.getLogger("MailboxCheckerApp").warning(
                "Invalid log level '%s'; defaulting to INFO",
                self.config.system.log_level
            )

    def run(self, args: argparse.Namespace) -> int:
        """
        Execute the parsed command

        Returns:
            Process exit code
        """
        try:
            self.config.validate()
        except ValueError as e:
            self.logger.error(f"Configuration error: {e}")
            return 1

        state_file = self.config.system.state_file
        last_uid = load_watermark(state_file)

        try:
            with IMAPEmailChecker.connect(
                self.config.mailbox,
                debug=self.debug,
                bid_pattern=self.config.checker.bid_pattern,
                last_uid=last_uid,
            ) as checker:
                exit_code = self._dispatch(checker, args)

                if args.command in BATCH_COMMANDS and checker.last_uid != last_uid:
                    save_watermark(state_file, checker.last_uid)
                    self.logger.info(f"Saved {LAST_UID_KEY}={checker.last_uid} to {state_file}")

                self.logger.debug(f"Metrics: {checker.metrics.get_summary()}")
                return exit_code
        except IMAPCheckerError as e:
            self.logger.error(f"{type(e).__name__}: {sanitize_for_logging(str(e), 500)}")
            return 1

    def _dispatch(self, checker: IMAPEmailChecker, args: argparse.Namespace) -> int:
        command = args.command

        if command == "status":
            status = checker.check_mailbox_status()
            if self.json_output:
                self._print_json({
                    "total": status.total_messages,
                    "highest_uid": status.highest_uid,
                    "recent_uids": sorted(status.recent_uids),
                    "unseen_uids": sorted(status.unseen_uids),
                })
            else:
                print("\n".join(format_status(status)))
            return 0

        if command == "all":
            self._print_messages(checker.check_all_email())
        elif command == "since-date":
            self._print_messages(checker.check_since_date(args.date))
        elif command == "since-uid":
            self._print_messages(checker.check_since_last_uid(args.uid))
        elif command == "unseen":
            self._print_messages(checker.check_unread_emails())
        elif command == "fetch":
            self._print_messages(checker.fetch_messages_by_ids(args.ids, is_uid=not args.seq))
        elif command in ("mark-read", "mark-unread"):
            checker.set_message_read_status(args.uids, mark_as_read=command == "mark-read")
            print(Colors.success(f"Updated {len(args.uids)} message(s)"))
        elif command == "delete":
            checker.delete_email(args.uid)
            print(Colors.success(f"Deleted UID {args.uid}"))
        elif command == "archive":
            folder = args.folder or self.config.checker.archive_folder
            checker.archive_email(args.uid, folder)
            print(Colors.success(f"Archived UID {args.uid} to {folder}"))
        return 0

    def _print_messages(self, messages: Dict[int, MessageRecord]):
        if self.json_output:
            self._print_json({str(key): record.to_dict() for key, record in messages.items()})
            return
        if not messages:
            print(Colors.colorize("No messages", Colors.GREY))
            return
        for record in messages.values():
            print(format_message_line(record))

    @staticmethod
    def _print_json(data):
        print(json.dumps(data, indent=2, ensure_ascii=False))


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)

    if not Path(args.env).exists():
        print(Colors.error(f"Error: Configuration file '{args.env}' not found"))
        print("Please create a .env file based on .env.example")
        print("You can run: cp .env.example .env")
        return 1

    app = MailboxCheckerApp(args.env, debug=args.debug, json_output=args.json)

    placeholder_errors = check_default_credentials(app.config)
    if placeholder_errors:
        for error in placeholder_errors:
            print(Colors.error(error))
        print("Please update the configuration with your actual credentials before running.")
        return 1

    return app.run(args)


if __name__ == "__main__":
    sys.exit(main())
