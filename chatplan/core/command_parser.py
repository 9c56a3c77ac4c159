"""
ChatPlan — Schedule Command Parser.

Extracts the raw sub-phrases of a scheduling utterance (participants,
date/time, duration, title) into an unvalidated ScheduleCommand. Nothing
is resolved here: no member ids, no instants.

Supported shapes:
- "Schedule a meeting with Dana for next friday at 3pm"
- "Schedule a meeting with everyone for tomorrow at 9am"
- "Schedule a meeting with all the designers for wednesday at 2pm"
- "Set up a meeting with User A and User B on thursday at 4pm for 30 minutes"
- "Book a meeting with this user at his earliest available time starting at 9"

Participant phrases are found by a token scanner: after the word "with",
collect tokens until a stop-word appears as a whole token. Names that
merely contain the letters of a stop-word ("Forrest", "Atticus", "Ona")
are never cut.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from chatplan.core.errors import NotAScheduleCommand, ParseError
from chatplan.core.participant_resolver import EVERYONE, PARTNER
from chatplan.core.roles import ROLE_ALIASES, role_for_alias

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleCommand:
    """Purely syntactic scheduling request."""

    raw_text: str
    participant_phrases: tuple[str, ...]
    datetime_phrase: str
    duration_phrase: str
    title: str
    title_is_explicit: bool = False


# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

_SCHEDULING_VERB_RE = re.compile(r"\b(?:schedule|set\s+up|setup|book)\b", re.IGNORECASE)

_TEMPORAL_MARKER_RE = re.compile(
    r"\b(?:today|tonight|tomorrow|next|noon|midnight|earliest"
    r"|monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b"
    r"|\b\d{1,2}\s*[ap]\.?m\b"
    r"|\b\d{1,2}:\d{2}\b"
    r"|\b\d{1,2}/\d{1,2}\b"
    r"|\b\d{4}-\d{2}-\d{2}\b"
    r"|\bat\s+\d{1,2}\b"
    r"|\b(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?\s+\d{1,2}\b",
    re.IGNORECASE,
)

# Whole-token boundaries that end the participant list
_STOP_WORDS = frozenset({
    "for", "at", "on",
    "about", "titled", "regarding", "re:",
    "starting", "from", "after", "lasting",
})

# Date words that also end the list, unless written as the first part of a
# capitalized name ("Sunday Adams")
_DATE_STOP_WORDS = frozenset({
    "today", "tonight", "tomorrow", "next",
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
})

_SEPARATORS = frozenset({",", "and", "&"})

# Non-name filler; a phrase made only of these words carries no name
_SKIP_WORDS = frozenset({
    "everyone", "everybody", "all", "the", "this", "user", "person",
    "earliest", "available", "members", "whole", "entire", "team",
    "him", "her", "them", "his", "their",
})

_LEADING_DETERMINERS = frozenset({"all", "the"})

_EVERYONE_RE = re.compile(
    r"\b(?:everyone|everybody|all\s+members|(?:the\s+)?(?:whole|entire)\s+team)\b", re.IGNORECASE
)
_PARTNER_RE = re.compile(r"\b(?:this\s+user|this\s+person|him|her|them|his|their)\b", re.IGNORECASE)

# Longest aliases first so "software engineers" wins over "engineers"
_ALIASES_BY_LENGTH = sorted(
    (alias for aliases in ROLE_ALIASES.values() for alias in aliases), key=len, reverse=True
)
_ROLE_COLLECTIVE_RE = re.compile(
    r"\b(?:all|the)\s+(?:the\s+)?(" + "|".join(re.escape(a) for a in _ALIASES_BY_LENGTH) + r")\b",
    re.IGNORECASE,
)

_DURATION_RE = re.compile(
    r"\b(?:for|lasting)\s+(?P<duration>"
    r"half\s+an\s+hour|an?\s+hour(?:\s+and\s+a\s+half)?"
    r"|\d+(?:\.\d+)?\s*(?:hours?|hrs?|minutes?|mins?)(?:\s*(?:and\s+)?\d+\s*(?:minutes?|mins?))?"
    r")\b",
    re.IGNORECASE,
)

_TITLE_RE = re.compile(
    r"\b(?:about|titled|regarding|re:)\s+[\"']?(?P<title>.+?)[\"']?"
    r"(?=\s+(?:for|at|on|with|today|tomorrow|next)\b|[.!?]?\s*$)",
    re.IGNORECASE,
)

_TOKEN_RE = re.compile(r",|[^\s,]+")


def _word(token: str) -> str:
    """Lower-cased token without surrounding punctuation (keeps "re:")."""
    lowered = token.lower()
    if lowered == "re:":
        return lowered
    return lowered.strip(".!?;:\"'()")


def _starts_name(token: str, following: list[tuple[str, int, int]]) -> bool:
    """True when a capitalized date word is followed by another name token."""
    if not token[:1].isupper() or not following:
        return False
    after = following[0][0]
    word = _word(after)
    return (
        after[:1].isupper()
        and word.isalpha()
        and word not in _STOP_WORDS
        and word not in _DATE_STOP_WORDS
        and word not in _SEPARATORS
    )


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class CommandParser:
    """Turns a scheduling utterance into a ScheduleCommand."""

    def is_schedule_command(self, text: str) -> bool:
        """Keyword gate: a scheduling verb plus a temporal marker."""
        return bool(_SCHEDULING_VERB_RE.search(text) and _TEMPORAL_MARKER_RE.search(text))

    def parse(self, text: str) -> ScheduleCommand:
        """Parse an utterance; raises NotAScheduleCommand or ParseError."""
        raw_text = text
        text = " ".join(text.split())

        if not self.is_schedule_command(text):
            raise NotAScheduleCommand("That doesn't look like a scheduling request.", raw_text)

        consumed: list[tuple[int, int]] = []

        duration_phrase = ""
        duration_match = _DURATION_RE.search(text)
        if duration_match:
            duration_phrase = duration_match.group("duration")
            consumed.append(duration_match.span())

        explicit_title = ""
        title_match = _TITLE_RE.search(text)
        if title_match:
            explicit_title = title_match.group("title").strip()
            consumed.append(title_match.span())

        span, span_bounds = self._scan_participant_span(text)
        if span_bounds is not None:
            consumed.append(span_bounds)

        phrases = self._participant_phrases(span, text)
        if not phrases:
            raise ParseError("No participants could be identified for the meeting.", raw_text)

        datetime_phrase = self._remaining(text, consumed)
        title = explicit_title or default_title(phrases)

        command = ScheduleCommand(
            raw_text=raw_text,
            participant_phrases=tuple(phrases),
            datetime_phrase=datetime_phrase,
            duration_phrase=duration_phrase,
            title=title,
            title_is_explicit=bool(explicit_title),
        )
        logger.info(
            "Parsed schedule command: participants=%s datetime='%s' duration='%s' title='%s'",
            list(command.participant_phrases), datetime_phrase, duration_phrase, title,
        )
        return command

    def split_duration(self, text: str) -> tuple[str, str]:
        """Separate a "for 30 minutes" clause from a date/time phrase."""
        text = " ".join(text.split())
        match = _DURATION_RE.search(text)
        if not match:
            return text, ""
        return self._remaining(text, [match.span()]), match.group("duration")

    # ------------------------------------------------------------------
    # Participant span scanner
    # ------------------------------------------------------------------

    def _scan_participant_span(self, text: str) -> tuple[list[tuple[str, int, int]], tuple[int, int] | None]:
        """Collect the tokens between "with" and the first stop-word.

        Returns the span tokens (text, start, end) and the character bounds
        of the whole "with ..." clause, or ([], None) when there is no "with".
        """
        tokens = [(m.group(0), m.start(), m.end()) for m in _TOKEN_RE.finditer(text)]

        span: list[tuple[str, int, int]] = []
        clause_start: int | None = None
        for index, (token, start, end) in enumerate(tokens):
            word = _word(token)
            if clause_start is None:
                if word == "with":
                    clause_start = start
                continue
            if word in _STOP_WORDS:
                break
            if word in _DATE_STOP_WORDS and not _starts_name(token, tokens[index + 1:index + 2]):
                break
            span.append((token, start, end))

        if clause_start is None:
            return [], None
        clause_end = span[-1][2] if span else clause_start + len("with")
        return span, (clause_start, clause_end)

    def _participant_phrases(self, span: list[tuple[str, int, int]], text: str) -> list[str]:
        phrases: list[str] = []
        current: list[str] = []
        for token, _, _ in span:
            if _word(token) in _SEPARATORS:
                if current:
                    phrases.append(" ".join(current))
                current = []
                continue
            current.append(token)
        if current:
            phrases.append(" ".join(current))

        names: list[str] = []
        dropped: list[str] = []
        for phrase in phrases:
            phrase = phrase.strip(" .!?;:\"'")
            words = phrase.split()
            if not words:
                continue
            if all(_word(w) in _SKIP_WORDS for w in words):
                dropped.append(phrase)
                continue
            while len(words) > 1 and _word(words[0]) in _LEADING_DETERMINERS:
                words = words[1:]
            names.append(" ".join(words))

        if names:
            if any(_EVERYONE_RE.search(d) or _word(d) == "all" for d in dropped):
                names.insert(0, EVERYONE)
            return names

        # Span was empty or fully consumed by filler: collective patterns
        scope = " ".join(d for d in dropped) or text
        return self._collective_phrases(scope) or self._collective_phrases(text)

    def _collective_phrases(self, text: str) -> list[str]:
        if _EVERYONE_RE.search(text) or re.search(r"\bwith\s+all\b(?!\s+\w)", text, re.IGNORECASE):
            return [EVERYONE]
        roles = []
        for match in _ROLE_COLLECTIVE_RE.finditer(text):
            alias = match.group(1).lower()
            if alias not in roles:
                roles.append(alias)
        if roles:
            return roles
        if _PARTNER_RE.search(text):
            return [PARTNER]
        return []

    @staticmethod
    def _remaining(text: str, consumed: list[tuple[int, int]]) -> str:
        chars = list(text)
        for start, end in consumed:
            for i in range(start, end):
                chars[i] = " "
        return " ".join("".join(chars).split())


def default_title(phrases: list[str] | tuple[str, ...]) -> str:
    """Derive a meeting label from participant phrases."""
    if EVERYONE in phrases:
        return "Team Meeting"

    roles = []
    for phrase in phrases:
        role = role_for_alias(phrase)
        if role is not None and role.value not in roles:
            roles.append(role.value)
    if roles:
        return f"{' & '.join(roles)} Meeting"

    names = [p for p in phrases if p != PARTNER]
    if not names:
        return "Meeting"
    if len(names) == 1:
        return f"Meeting with {names[0]}"
    if len(names) == 2:
        return f"Meeting with {names[0]} & {names[1]}"
    return f"Meeting with {names[0]} & {len(names) - 1} others"
