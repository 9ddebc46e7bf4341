"""
Security Validators Module
Centralizes limits and input validation for mailbox access

SECURITY STORY: These validators protect the checker from hostile input:
- MAX_MIME_DEPTH: stops deeply nested MIME trees from driving the walker
  into unbounded recursion (CWE-674)
- create_secure_ssl_context: TLS 1.2+ with certificate verification
- UID validation: mutation commands never receive ranges like "1:*" built
  from malformed caller input
"""

import logging
import ssl
from typing import Any, Iterable, List

from .exceptions import InvalidInputError

# Nested multipart / message parts deeper than this are skipped
MAX_MIME_DEPTH = 32

logger = logging.getLogger(__name__)


def create_secure_ssl_context() -> ssl.SSLContext:
    """
    Create a secure SSL context with modern TLS settings

    SECURITY STORY: This enforces TLS 1.2+ to protect against attacks on
    older protocols like SSLv3 (POODLE) and TLS 1.0/1.1 (BEAST, CRIME).
    Hostname checking stays on so credentials are only sent to the server
    named in the configuration.

    Returns:
        Configured SSL context
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.check_hostname = True
    context.verify_mode = ssl.CERT_REQUIRED
    context.load_default_certs()

    logger.debug("Created secure SSL context with TLS 1.2+ enforcement")
    return context


def is_positive_identifier(value: Any) -> bool:
    """True for a positive int (bools excluded) or a string holding one."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value > 0
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip()) > 0
    return False


def filter_identifiers(values: Iterable[Any]) -> List[int]:
    """
    Keep only positive integer identifiers, dropping everything else silently.

    Order is preserved and duplicates are removed.
    """
    result: List[int] = []
    seen = set()
    for value in values or []:
        if not is_positive_identifier(value):
            continue
        number = int(value)
        if number not in seen:
            seen.add(number)
            result.append(number)
    return result


def validate_uid(uid: Any) -> int:
    """
    Validate a single UID supplied to a mutation command

    Raises:
        InvalidInputError: If uid is not a positive integer
    """
    if not is_positive_identifier(uid):
        raise InvalidInputError(f"Invalid UID: {uid!r} (must be a positive integer)")
    return int(uid)


def validate_uid_list(uids: Iterable[Any]) -> List[int]:
    """
    Validate a list of UIDs supplied to a mutation command

    Invalid entries are dropped; an empty result is an error.

    Raises:
        InvalidInputError: If no valid UID remains
    """
    if isinstance(uids, (int, str)) and not isinstance(uids, bool):
        uids = [uids]
    valid = filter_identifiers(uids)
    if not valid:
        raise InvalidInputError("No valid UIDs supplied (must be positive integers)")
    return valid
