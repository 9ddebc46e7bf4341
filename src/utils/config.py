"""
Configuration Management Module
Handles loading and validation of environment variables and settings
"""

import os
from typing import List
from dataclasses import dataclass, field
from dotenv import load_dotenv

from .pattern_compiler import DEFAULT_BID_PATTERN


@dataclass
class MailboxConfig:
    """Connection settings for the mailbox being checked"""
    email: str
    imap_server: str
    imap_port: int
    # not in repr
    app_password: str = field(repr=False)
    folder: str = "INBOX"
    provider: str = "generic"
    use_ssl: bool = True
    verify_ssl: bool = True
    timeout: int = 30


@dataclass
class CheckerConfig:
    """Configuration for message processing"""
    debug: bool
    bid_pattern: str
    archive_folder: str


@dataclass
class SystemConfig:
    """Configuration for system settings"""
    log_level: str
    log_file: str
    log_format: str
    state_file: str


LOG_FORMATS = ("text", "json")


class Config:
    """Main configuration class"""

    def __init__(self, env_file: str = ".env"):
        """
        Initialize configuration from environment file

        Args:
            env_file: Path to environment file (default: .env)
        """
        load_dotenv(env_file)

        self.mailbox = self._load_mailbox_config()
        self.checker = self._load_checker_config()
        self.system = self._load_system_config()

    def _load_mailbox_config(self) -> MailboxConfig:
        """Load mailbox connection settings"""
        return MailboxConfig(
            email=os.getenv("IMAP_EMAIL", ""),
            imap_server=os.getenv("IMAP_SERVER", ""),
            imap_port=self._get_int("IMAP_PORT", 993),
            app_password=os.getenv("IMAP_PASSWORD", ""),
            folder=os.getenv("IMAP_FOLDER", "INBOX").strip() or "INBOX",
            provider=os.getenv("IMAP_PROVIDER", "generic").strip().lower() or "generic",
            use_ssl=self._get_bool("IMAP_USE_SSL", True),
            verify_ssl=self._get_bool("IMAP_VERIFY_SSL", True),
            timeout=self._get_int("IMAP_TIMEOUT", 30),
        )

    def _load_checker_config(self) -> CheckerConfig:
        """Load message processing settings"""
        return CheckerConfig(
            debug=self._get_bool("CHECKER_DEBUG", False),
            bid_pattern=os.getenv("BID_PATTERN", DEFAULT_BID_PATTERN),
            archive_folder=os.getenv("ARCHIVE_FOLDER", "Archive").strip() or "Archive",
        )

    def _load_system_config(self) -> SystemConfig:
        """Load system configuration"""
        return SystemConfig(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=os.getenv("LOG_FILE", "logs/imap_checker.log"),
            log_format=os.getenv("LOG_FORMAT", "text").strip().lower(),
            state_file=os.getenv("STATE_FILE", ".imap_state"),
        )

    @staticmethod
    def _get_bool(key: str, default: bool = False) -> bool:
        """Convert environment variable to boolean"""
        value = os.getenv(key, str(default)).lower()
        return value in ('true', '1', 'yes', 'on')

    @staticmethod
    def _get_int(key: str, default: int) -> int:
        """Convert environment variable to int, keeping the default for junk"""
        value = os.getenv(key)
        if value is None or not value.strip():
            return default
        try:
            return int(value.strip())
        except ValueError:
            return default

    def validate(self) -> bool:
        """
        Validate configuration

        Returns:
            True if configuration is valid

        Raises:
            ValueError: If configuration is invalid
        """
        if not self.mailbox.imap_server:
            raise ValueError("IMAP_SERVER is not configured")

        if not self.mailbox.email or not self.mailbox.app_password:
            raise ValueError(f"Missing credentials for {self.mailbox.provider} mailbox")

        if not 1 <= self.mailbox.imap_port <= 65535:
            raise ValueError(f"IMAP_PORT must be between 1 and 65535, got {self.mailbox.imap_port}")

        if not self.checker.bid_pattern.strip():
            raise ValueError("BID_PATTERN must not be empty")

        if self.system.log_format not in LOG_FORMATS:
            raise ValueError(f"LOG_FORMAT must be one of {', '.join(LOG_FORMATS)}")

        return True


def check_default_credentials(config: Config) -> List[str]:
    """
    Check if the configuration still uses placeholder values.
    Returns a list of error messages.
    """
    errors = []

    default_emails = ["your-email@example.com", "your-email@gmail.com"]
    default_passwords = ["your-app-password-here", "changeme"]
    default_servers = ["imap.yourhost.com"]

    if config.mailbox.email in default_emails:
        errors.append(f"Mailbox uses default email: {config.mailbox.email}")
    if config.mailbox.app_password in default_passwords:
        errors.append("Mailbox uses default password")
    if config.mailbox.imap_server in default_servers:
        errors.append(f"Mailbox uses default server: {config.mailbox.imap_server}")

    return errors
