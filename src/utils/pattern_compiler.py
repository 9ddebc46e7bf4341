"""
Pattern Compiler Utility

Validates and compiles the caller-supplied correlation ("bid") pattern.

SECURITY STORY: The pattern comes from configuration and is applied to every
subject line pulled from the mailbox, which is attacker-controlled text. A
pattern with nested unbounded quantifiers could backtrack catastrophically
on a crafted subject, so known ReDoS shapes are rejected at startup.
"""

import re
from typing import List, Union

from .exceptions import InvalidInputError

# "#" followed by digits, digits captured
DEFAULT_BID_PATTERN = r"#(\d+)"

# Nested or repeated quantifiers on unbounded classes are the common
# source of catastrophic backtracking.
_REDOS_SIGNATURES: List[str] = [
    r"(\w+)*",
    r"(\d+)+",
    r"(\d+)*",
    r"(\s+)*",
    r"(.+)+",
    r"(.*)*",
    r"([a-zA-Z]+)*",
]


def check_redos_safety(patterns: List[str]) -> None:
    """
    Raise ValueError if any pattern contains a known ReDoS signature.

    This is a lightweight substring check against a fixed signature list,
    not a full ReDoS prover.

    Args:
        patterns: List of regex pattern strings to inspect.

    Raises:
        ValueError: If any pattern contains a known ReDoS signature.
    """
    for pattern in patterns:
        for unsafe in _REDOS_SIGNATURES:
            if unsafe in pattern:
                raise ValueError(f"Potential ReDoS in pattern: {pattern!r}")


def compile_bid_pattern(
    pattern: Union[str, "re.Pattern[str]"],
    validate_redos: bool = True,
) -> "re.Pattern[str]":
    """
    Compile a correlation pattern, enforcing the extractor's preconditions.

    The pattern must be non-empty, must compile, and must contain at least
    one capturing group (group 1 is the extracted token).

    Args:
        pattern: Regex source string, or an already compiled pattern.
        validate_redos: If True, run check_redos_safety before compiling.

    Returns:
        The compiled pattern.

    Raises:
        InvalidInputError: If the pattern is empty, malformed, has no
            capturing group, or looks ReDoS-prone.
    """
    if isinstance(pattern, re.Pattern):
        compiled = pattern
    else:
        if pattern is None or not str(pattern).strip():
            raise InvalidInputError("Correlation pattern must not be empty")
        source = str(pattern)
        if validate_redos:
            try:
                check_redos_safety([source])
            except ValueError as e:
                raise InvalidInputError(str(e)) from e
        try:
            compiled = re.compile(source)
        except re.error as e:
            raise InvalidInputError(f"Invalid correlation pattern {source!r}: {e}") from e

    if compiled.groups < 1:
        raise InvalidInputError(
            f"Correlation pattern {compiled.pattern!r} needs at least one capturing group"
        )
    return compiled
