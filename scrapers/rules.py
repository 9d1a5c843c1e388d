"""
Ranked extraction rules.

A rule takes a Document and returns a value or None. Fields are extracted by
running their rules in order and keeping the first value found, so the
order of each list is the business priority (explicit label before generic
pattern).
"""

import re
import logging
from typing import Any, Callable, Iterable, NamedTuple, Optional

logger = logging.getLogger(__name__)

Rule = Callable[[Any], Any]


class Match(NamedTuple):
    value: Any
    rule: str


def first_match(rules: Iterable[Rule], doc) -> Optional[Match]:
    """
    Run rules in order and return the first non-empty result.

    Returns:
        Match(value, rule_name), or None when no rule matched
    """
    for rule in rules:
        value = rule(doc)
        if value is None or value == '':
            continue
        name = getattr(rule, '__name__', repr(rule))
        logger.debug(f"Rule {name} matched {value!r}")
        return Match(value, name)
    return None


def regex_rule(name: str, pattern: str, convert: Optional[Callable[..., Any]] = None,
               source: str = 'text', flags: int = re.IGNORECASE) -> Rule:
    """
    Build a rule that scans one Document attribute with a regex.

    Every occurrence is tried in document order; `convert` receives the
    match groups and may return None to reject an occurrence (e.g. a price
    below the sanity floor), in which case the scan continues.

    Args:
        name: Rule name, reported in Match.rule
        pattern: Regex with at least one group
        convert: Called with the groups of each occurrence; defaults to
            returning the stripped first group
        source: Document attribute to scan ('text', 'raw' or 'markdown')
        flags: Regex flags
    """
    compiled = re.compile(pattern, flags)

    def rule(doc):
        haystack = getattr(doc, source, '') or ''
        for match in compiled.finditer(haystack):
            groups = match.groups()
            if convert is None:
                value = (groups[0] or '').strip()
            else:
                value = convert(*groups)
            if value is not None and value != '':
                return value
        return None

    rule.__name__ = name
    return rule
