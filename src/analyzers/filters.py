"""
Commit Filter Rules.

Decides whether a commit message exempts a commit from review. Rules are
stored per project as newline-separated regular expressions, matched
case-insensitively anywhere in the message.
"""

import re
from typing import List, Tuple

from config import logger
from errors import MalformedFilterRule

DEFAULT_FILTER_RULES = "\n".join(
    [
        r"^(build|ci|docs|feat|fix|perf|refactor|style|test).*",
        r"^Merge branch.*",
        r"^Update.*",
        r"^Initial commit.*",
        r"^.*version bump.*",
    ]
)


def _split_rules(rules: str) -> List[str]:
    return [line.strip() for line in rules.split("\n") if line.strip()]


def _compile_rule(rule: str, line: int) -> re.Pattern:
    try:
        return re.compile(rule, re.IGNORECASE)
    except re.error as e:
        raise MalformedFilterRule(rule, line, str(e)) from e


def should_skip_review(message: str, rules: str) -> bool:
    """
    Check whether a commit message matches any filter rule.

    Invalid rules are logged and skipped; evaluation continues with the rest.

    Args:
        message (str): Commit message
        rules (str): Newline-separated regular expressions

    Returns:
        bool: True if the commit does not need review
    """
    if not message or not rules:
        return False

    for line, rule in enumerate(_split_rules(rules), start=1):
        try:
            pattern = _compile_rule(rule, line)
        except MalformedFilterRule as e:
            logger.warning(
                {"message": "Skipping invalid filter rule", "rule": rule, "error": e.reason}
            )
            continue
        if pattern.search(message):
            return True

    return False


def validate_filter_rules(rules: str) -> Tuple[bool, List[str]]:
    """
    Validate every rule line.

    Args:
        rules (str): Newline-separated regular expressions

    Returns:
        Tuple[bool, List[str]]: Validity flag and one error per bad line (1-indexed)
    """
    if not rules:
        return True, []

    errors = []
    for line, rule in enumerate(_split_rules(rules), start=1):
        try:
            _compile_rule(rule, line)
        except MalformedFilterRule as e:
            errors.append(str(e))

    return len(errors) == 0, errors
