"""
Correlation Token ("bid") Extractor
Pulls a caller-defined identifier out of a decoded subject line
"""

import logging
import re
from typing import Optional, Union

from ..utils.pattern_compiler import compile_bid_pattern


logger = logging.getLogger(__name__)


def extract_correlation_token(
    subject: Optional[str],
    pattern: Union[str, "re.Pattern[str]"],
    sink=None,
) -> Optional[str]:
    """
    Apply the correlation pattern to a subject

    Args:
        subject: Decoded subject line
        pattern: Compiled pattern (or source) whose group 1 is the token
        sink: Optional IssueSink for pattern problems

    Returns:
        Text of group 1, or None when nothing matched or the pattern failed

    Example:
        >>> extract_correlation_token("Re: Order #482 shipped", r"#(\\d+)")
        '482'
    """
    if not subject:
        return None

    try:
        compiled = pattern if isinstance(pattern, re.Pattern) else re.compile(pattern)
        match = compiled.search(subject)
        if not match:
            return None
        token = match.group(1)
    except (re.error, IndexError, TypeError) as e:
        _report(sink, f"correlation pattern could not be evaluated: {e}")
        return None

    if token is None:
        _report(sink, f"correlation pattern {compiled.pattern!r} matched but group 1 did not participate")
        return None
    return token


def _report(sink, message: str) -> None:
    if sink is not None:
        sink.note(message)
    else:
        logger.debug(message)


class CorrelationExtractor:
    """Holds a validated pattern so it is compiled once per checker."""

    def __init__(self, pattern: Union[str, "re.Pattern[str]"], sink=None):
        self.pattern = compile_bid_pattern(pattern)
        self.sink = sink

    def extract(self, subject: Optional[str]) -> Optional[str]:
        return extract_correlation_token(subject, self.pattern, self.sink)
