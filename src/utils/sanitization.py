"""
Sanitization Utility Module
Makes mailbox-supplied text safe to write into logs and terminals.
"""

import re
import unicodedata

ANSI_ESCAPE_PATTERN = re.compile(r'\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])')


def sanitize_for_logging(text: str, max_length: int = 255) -> str:
    """
    Sanitize text for safe logging to prevent Log Injection (CRLF) and terminal manipulation.

    Subjects, folder names and server error strings all come from the remote
    side, so they go through here before reaching a log line.

    Args:
        text: The input string to sanitize.
        max_length: Maximum allowed length for the log entry (truncates if longer).

    Returns:
        Sanitized string safe for logging.
    """
    if not text:
        return ""

    text = unicodedata.normalize('NFKC', str(text))

    # Keep line breaks visible but on a single log line
    text = text.replace('\n', '\\n').replace('\r', '\\r')

    text = ANSI_ESCAPE_PATTERN.sub('', text)

    # Drop remaining control characters except tab
    text = "".join(ch for ch in text if ch == '\t' or ord(ch) >= 32)

    if len(text) > max_length:
        text = text[:max_length] + "..."

    return text


def redact_email(address: str) -> str:
    """
    Mask the local part of an e-mail address for log output.

    Example:
        >>> redact_email("jane.doe@example.com")
        'j***@example.com'
    """
    if not address or "@" not in address:
        return "***"
    local, _, domain = address.rpartition("@")
    if not local:
        return f"***@{domain}"
    return f"{local[0]}***@{domain}"
