"""Attendance message parsing (core domain).

Parsing is a pure function over the message text: an ordered list of rules
is applied to the whole text and every roll number a rule claims becomes a
candidate. A line may hold several entries ("Asha 221099, Bela 221100").
Rules are stateless compiled patterns, so repeated calls never see a cursor
left over from a previous message.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Iterable, List, Optional

from core.models import Candidate

# Roll numbers shorter than this are treated as numeric noise ("ok 12").
MIN_ROLL_DIGITS = 4

# Horizontal whitespace only; a name never spans lines.
_WS = r"[^\S\n]"

# A roll number is a whole run of digits, never part of a longer one.
_ROLL = rf"(?<!\d)(?P<roll>\d{{{MIN_ROLL_DIGITS},}})(?!\d)"


@dataclass(frozen=True)
class ParseRule:
    """One entry of the ordered rule cascade."""

    name: str
    pattern: re.Pattern
    has_name: bool


DEFAULT_RULES: List[ParseRule] = [
    # "Jane Doe 221099", "Asha 221099, Bela 221100"
    # The name holds no digits, so it cannot swallow an earlier roll number.
    ParseRule(
        name="words_then_roll",
        pattern=re.compile(rf"(?P<name>[^\W\d_][^\d\n]*?){_WS}+{_ROLL}"),
        has_name=True,
    ),
    # "Jane221099", "Jane-221099", "Jane: 221099"
    ParseRule(
        name="token_then_roll",
        pattern=re.compile(rf"(?<![^\W\d_])(?P<name>[A-Za-z]+){_WS}*[-:#]?{_WS}*{_ROLL}"),
        has_name=True,
    ),
    # "221099", "221099 221100", "221099, 221100"
    ParseRule(
        name="roll_only",
        pattern=re.compile(_ROLL),
        has_name=False,
    ),
]

# Separators people type between a name and the roll number ("Jane - 2210").
_NAME_TRIM = " \t-:,.;|"


def _clean_name(raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    name = raw.strip().strip(_NAME_TRIM).strip()
    return name or None


def parse(text: object, rules: Iterable[ParseRule] = DEFAULT_RULES) -> List[Candidate]:
    """Return attendance candidates found in ``text``, in text order.

    Matching logic:
    - Rules run in priority order; each rule scans the whole text.
    - A roll number already claimed by an earlier rule is not claimed again by
      a later, broader rule, so the bare-roll fallback only picks up digit
      runs no name rule took.
    - Non-string or empty input yields an empty list; nothing is raised.
    """

    if not isinstance(text, str) or not text.strip():
        return []

    claimed: dict[tuple[int, int], Candidate] = {}
    for rule in rules:
        for match in rule.pattern.finditer(text):
            span = match.span("roll")
            if span in claimed:
                continue
            name = _clean_name(match.group("name")) if rule.has_name else None
            claimed[span] = Candidate(name=name, roll_no=match.group("roll"), original_message=text)
    return [claimed[span] for span in sorted(claimed)]
