"""Commencement-date detection.

A date only counts as a commencement date when its own statement says a new
obligation starts to apply ("takes effect", "commences", "applies from",
"must comply by" ...). Dates attached to publication, revocation, history,
examples, reporting periods or consultation steps are rejected, and
anything without a commencement cue is rejected too: a missed date is
preferred over a wrongly attributed one.

Each date mention is judged on three windows of its sentence:

* the words *governing* it: prepositions and phrases directly in front of
  the date ("before", "until", "entered into", "for the period"). They
  disqualify that date only, so "commence on 1 July 2026 for contracts
  entered into before 1 July 2020" keeps the first date;
* the *clause*: the text around the mention bounded by commas, semicolons
  and conjunctions. Publication, history and consultation cues must appear
  here to disqualify the date ("published on 12 September 2025 and will
  commence on 1 February 2026" keeps the second date);
* the *statement*: the same but ignoring commas. Revocation is a property
  of the statement's subject ("The revocation of these codes will take
  effect on ...") and commencement cues may sit on either side of a comma
  ("On 1 July 2026, the rule takes effect").

Rejections by a loose clause cue ("previously", "for example", "draft")
are *soft*: when the statement still carries a commencement cue, a date
proposed by the model is kept rather than overruled.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Pattern, Sequence, Tuple

from regextract.models.obligation import DateConfidence, DateResult

logger = logging.getLogger(__name__)

MONTHS = {
    "january": 1, "jan": 1, "february": 2, "feb": 2, "march": 3, "mar": 3,
    "april": 4, "apr": 4, "may": 5, "june": 6, "jun": 6, "july": 7, "jul": 7,
    "august": 8, "aug": 8, "september": 9, "sept": 9, "sep": 9, "october": 10,
    "oct": 10, "november": 11, "nov": 11, "december": 12, "dec": 12,
}
QUARTER_WORDS = {"first": 1, "second": 2, "third": 3, "fourth": 4}

_MONTH = (
    r"(?P<month>January|February|March|April|May|June|July|August|September|October|"
    r"November|December|Jan|Feb|Mar|Apr|Jun|Jul|Aug|Sept|Sep|Oct|Nov|Dec)\.?"
)
DAY_MONTH_YEAR = re.compile(
    r"\b(?P<day>\d{1,2})(?:st|nd|rd|th)?\s+" + _MONTH + r",?\s+(?P<year>\d{4})\b", re.I
)
MONTH_DAY_YEAR = re.compile(
    r"\b" + _MONTH + r"\s+(?P<day>\d{1,2})(?:st|nd|rd|th)?,?\s+(?P<year>\d{4})\b", re.I
)
ISO_DATE = re.compile(r"\b(?P<year>\d{4})-(?P<month>\d{2})-(?P<day>\d{2})\b")
MONTH_YEAR = re.compile(r"\b" + _MONTH + r"\s+(?P<year>\d{4})\b", re.I)
QUARTER = re.compile(
    r"\b(?:Q(?P<q>[1-4])|(?P<qword>first|second|third|fourth)\s+quarter(?:\s+of)?)\s+(?P<year>\d{4})\b",
    re.I,
)

SENTENCE_BREAK = re.compile(r"[.!?:](?=\s)|\n")
STATEMENT_BREAK = re.compile(r";|\b(?:and|but|while|whereas)\b", re.I)
CLAUSE_BREAK = re.compile(r"[,;()]|\b(?:and|but|while|whereas)\b", re.I)
RANGE_CONTINUATION = re.compile(r"^\s*(?:to|until|through|-|–)\s", re.I)


def _compile(patterns: Sequence[str]) -> List[Pattern[str]]:
    return [re.compile(p, re.I) for p in patterns]


COMMENCEMENT_CUES = _compile(
    [
        r"\btakes?\s+effect\b",
        r"\bcomes?\s+into\s+(?:force|effect|operation)\b",
        r"\bcommenc\w*",
        r"\bappl(?:y|ies)\s+(?:from|on|as\s+of)\b",
        r"\b(?:starts?|begins?)\s+to\s+apply\b",
        r"\beffective\s+(?:from|on|as\s+of)\b",
        r"\beffective\s+date\b",
        r"\bcomply\b[^.;]{0,80}?\bby\b",
        r"\brequired\s+by\b",
        r"\bimplemented\s+by\b",
        r"\bimplementation\s+date\b",
    ]
)
PUBLICATION_CUES = _compile(
    [r"\bpublish\w*", r"\bpublication\b", r"\bmade\b", r"\bdated\b", r"\bissued\b", r"\bsigned\b", r"\bgazett\w*"]
)
REVOCATION_CUES = _compile(
    [r"\brevo[ck]\w*", r"\brepeal\w*", r"\bceas\w*", r"\bexpir\w*", r"\bno\s+longer\b", r"\bsunset\w*", r"\bterminat\w*"]
)
HISTORY_CUES = _compile(
    [
        r"\bhistoric\w*",
        r"\bpreviously\b",
        r"\bformerly\b",
        r"\bfor\s+example\b",
        r"\be\.g\.",
        r"\bsuch\s+as\b",
    ]
)
CONSULTATION_CUES = _compile(
    [r"\bconsultation\b", r"\bsubmissions?\b", r"\bclose[sd]?\b", r"\bdraft\b"]
)
# phrases that govern the date written directly after them
GOVERNING_EXCLUSIONS = _compile(
    [
        r"\b(?:before|prior\s+to|until|till|up\s+to|between)(?:\s+the)?\s*$",
        r"\bentered\s+into(?:\s+(?:on|before|prior\s+to))?\s*$",
        r"\bperiod(?:\s+(?:from|of|beginning|starting|commencing|ending|ended))?(?:\s+on)?\s*$",
        r"\b(?:year|quarter|month)\s+(?:beginning|ending|ended)(?:\s+on)?\s*$",
    ]
)
RANGE_CONNECTOR = re.compile(r"^\s*(?:to|until|through|-|–)\s*$", re.I)


@dataclass(frozen=True)
class DateMention:
    start: int
    end: int
    value: date
    precision: str  # "day", "month" or "quarter"


@dataclass(frozen=True)
class MentionVerdict:
    mention: DateMention
    is_commencement: bool
    sentence: str
    reason: str
    # rejected by a loose clause cue while the statement reads as a commencement
    overridable: bool = False


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def find_date_mentions(text: str) -> List[DateMention]:
    """All dates in ``text`` ordered by position; coarser matches never overlap finer ones."""
    mentions: List[DateMention] = []

    def overlaps(start: int, end: int) -> bool:
        return any(start < m.end and m.start < end for m in mentions)

    for pattern in (DAY_MONTH_YEAR, MONTH_DAY_YEAR):
        for match in pattern.finditer(text):
            month = MONTHS[match.group("month").lower().rstrip(".")]
            value = _safe_date(int(match.group("year")), month, int(match.group("day")))
            if value and not overlaps(match.start(), match.end()):
                mentions.append(DateMention(match.start(), match.end(), value, "day"))
    for match in ISO_DATE.finditer(text):
        value = _safe_date(int(match.group("year")), int(match.group("month")), int(match.group("day")))
        if value and not overlaps(match.start(), match.end()):
            mentions.append(DateMention(match.start(), match.end(), value, "day"))
    for match in MONTH_YEAR.finditer(text):
        month = MONTHS[match.group("month").lower().rstrip(".")]
        value = _safe_date(int(match.group("year")), month, 1)
        if value and not overlaps(match.start(), match.end()):
            mentions.append(DateMention(match.start(), match.end(), value, "month"))
    for match in QUARTER.finditer(text):
        quarter = int(match.group("q")) if match.group("q") else QUARTER_WORDS[match.group("qword").lower()]
        value = _safe_date(int(match.group("year")), (quarter - 1) * 3 + 1, 1)
        if value and not overlaps(match.start(), match.end()):
            mentions.append(DateMention(match.start(), match.end(), value, "quarter"))
    return sorted(mentions, key=lambda m: m.start)


def _split_window(
    text: str, start: int, end: int, breaks: Pattern[str], lower: int, upper: int
) -> Tuple[str, str]:
    """Text before and after ``[start, end)`` cut at the nearest ``breaks`` on each side."""
    cut = lower
    for match in breaks.finditer(text, lower, start):
        cut = match.end()
    stop = upper
    match = breaks.search(text, end, upper)
    if match:
        stop = match.start()
    return text[cut:start], text[end:stop]


def _sentence_bounds(text: str, start: int, end: int) -> tuple[int, int]:
    lower = 0
    for match in SENTENCE_BREAK.finditer(text, 0, start):
        lower = match.end()
    match = SENTENCE_BREAK.search(text, end)
    upper = match.start() + 1 if match else len(text)
    return lower, upper


def _first_hit(patterns: Sequence[Pattern[str]], text: str) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match.group(0)
    return None


def judge_mention(text: str, mention: DateMention, others: Sequence[DateMention] = ()) -> MentionVerdict:
    sentence_lower, sentence_upper = _sentence_bounds(text, mention.start, mention.end)
    sentence = text[sentence_lower:sentence_upper].strip()
    lower, upper = sentence_lower, sentence_upper
    follows_date = False
    # neighbouring dates in the same sentence bound the windows as well
    for other in others:
        if other is mention:
            continue
        if lower <= other.end <= mention.start:
            lower = other.end
            follows_date = True
        if mention.end <= other.start < upper:
            upper = other.start

    if follows_date and RANGE_CONNECTOR.match(text[lower:mention.start]):
        return MentionVerdict(mention, False, sentence, "end of a date range")
    clause_before, clause_after = _split_window(text, mention.start, mention.end, CLAUSE_BREAK, lower, upper)
    governing = _first_hit(GOVERNING_EXCLUSIONS, clause_before)
    if governing:
        return MentionVerdict(mention, False, sentence, f"governed by '{governing.strip()}'")
    statement_before, statement_after = _split_window(
        text, mention.start, mention.end, STATEMENT_BREAK, lower, upper
    )
    statement = statement_before + " " + statement_after
    if RANGE_CONTINUATION.match(text[mention.end:upper]) and not _first_hit(COMMENCEMENT_CUES, statement_before):
        return MentionVerdict(mention, False, sentence, "date range")

    clause = clause_before + " " + clause_after
    published = _first_hit(PUBLICATION_CUES, clause)
    if published:
        return MentionVerdict(mention, False, sentence, f"publication ('{published}')")
    revoked = _first_hit(REVOCATION_CUES, statement)
    if revoked:
        return MentionVerdict(mention, False, sentence, f"ending of an old rule ('{revoked}')")
    cue = _first_hit(COMMENCEMENT_CUES, statement)
    loose = _first_hit(HISTORY_CUES + CONSULTATION_CUES, clause)
    if loose:
        return MentionVerdict(mention, False, sentence, f"excluded by '{loose}'", overridable=cue is not None)
    if cue:
        return MentionVerdict(mention, True, sentence, f"commencement cue '{cue}'")
    return MentionVerdict(mention, False, sentence, "no commencement cue")


def judge_mentions(text: str) -> List[MentionVerdict]:
    mentions = find_date_mentions(text)
    return [judge_mention(text, mention, mentions) for mention in mentions]


def _confidence(precision: str) -> DateConfidence:
    return DateConfidence.HIGH if precision == "day" else DateConfidence.MEDIUM


def extract_commencement_date(text: str) -> DateResult:
    """Earliest commencement date stated in ``text`` (or an empty result)."""
    if not text:
        return DateResult()
    accepted = [verdict for verdict in judge_mentions(text) if verdict.is_commencement]
    if not accepted:
        return DateResult()
    earliest = min(accepted, key=lambda v: (v.mention.value, v.mention.precision != "day"))
    fragments: List[str] = []
    for verdict in accepted:
        if verdict.sentence not in fragments:
            fragments.append(verdict.sentence)
    return DateResult(
        commencement_date=earliest.mention.value,
        commencement_date_text=" ".join(fragments),
        date_confidence=_confidence(earliest.mention.precision),
    )


def reconcile_commencement_date(proposed: DateResult, text: str) -> DateResult:
    """Check a model-proposed date against the rules applied to ``text``.

    A proposed date that appears in the text (or in the quoted fragment)
    only in non-commencement statements is dropped in favour of the rule
    based result, unless one of those statements still carries a
    commencement cue and was only rejected by a loose clause cue. An
    earlier rule-based commencement date wins.
    """
    detected = extract_commencement_date(text)
    if proposed.commencement_date is None:
        return detected

    verdicts = [
        verdict
        for source in (text, proposed.commencement_date_text or "")
        for verdict in judge_mentions(source)
        if verdict.mention.value == proposed.commencement_date
    ]
    if verdicts and not any(verdict.is_commencement or verdict.overridable for verdict in verdicts):
        logger.info(
            "Discarding proposed commencement date %s: %s",
            proposed.commencement_date,
            verdicts[0].reason,
        )
        return detected

    if detected.commencement_date and detected.commencement_date < proposed.commencement_date:
        return detected
    return DateResult(
        commencement_date=proposed.commencement_date,
        commencement_date_text=proposed.commencement_date_text or detected.commencement_date_text,
        date_confidence=proposed.date_confidence or DateConfidence.LOW,
    )
