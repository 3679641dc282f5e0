"""Task sizing: how many items a request asks for and how big the job is."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum

from prassist.config import PlanningConfig

NUMBER_WORDS: dict[str, int] = {
    "one": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
    "seven": 7,
    "eight": 8,
    "nine": 9,
    "ten": 10,
    "eleven": 11,
    "twelve": 12,
    "thirteen": 13,
    "fourteen": 14,
    "fifteen": 15,
    "sixteen": 16,
    "seventeen": 17,
    "eighteen": 18,
    "nineteen": 19,
    "twenty": 20,
    "thirty": 30,
    "forty": 40,
    "fifty": 50,
}

DIGITS_PATTERN = re.compile(r"\b\d{1,3}\b")
NON_WORD_PATTERN = re.compile(r"[^a-z\s-]")
SCOPE_PATTERN = re.compile(
    r"all|every|each|across|compare|generate|create|add|migrate|refactor|update"
    r"|implement|replace"
)

MAX_FUZZY_DISTANCE = 2


class ExecutionTier(StrEnum):
    TIER_1 = "TIER_1"
    TIER_2 = "TIER_2"
    TIER_3 = "TIER_3"

    def max_steps(self, planning: PlanningConfig) -> int:
        if self is ExecutionTier.TIER_3:
            return planning.tier3_max_steps
        if self is ExecutionTier.TIER_2:
            return planning.tier2_max_steps
        return planning.fallback_max_steps


@dataclass(slots=True)
class SizingDecision:
    tier: ExecutionTier
    score: int
    requested_count: int
    signals: list[str] = field(default_factory=list)


def levenshtein_distance(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i] + [0] * len(b)
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current[j] = min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost)
        previous = current
    return previous[len(b)]


def closest_number_word(token: str, max_distance: int = MAX_FUZZY_DISTANCE) -> str | None:
    """Return the number word nearest to ``token`` by edit distance, or None.

    Ties go to the word listed first in ``NUMBER_WORDS``. Short everyday words
    are close to short number words ("for" is one edit from "four"), so such
    words do contribute a count.
    """

    best: str | None = None
    best_distance = max_distance + 1
    for word in NUMBER_WORDS:
        distance = levenshtein_distance(token, word)
        if distance < best_distance:
            best_distance = distance
            best = word
    return best if best_distance <= max_distance else None


def _word_value(token: str) -> int:
    value = NUMBER_WORDS.get(token)
    if value is not None:
        return value
    match = closest_number_word(token)
    return NUMBER_WORDS[match] if match else 0


def _is_tens(value: int) -> bool:
    return value >= 20 and value % 10 == 0


def extract_requested_count(text: str) -> int:
    """Largest item count the text asks for; 0 when it names none."""

    lowered = text.lower()
    max_value = max((int(item) for item in DIGITS_PATTERN.findall(lowered)), default=0)

    words = [word for word in NON_WORD_PATTERN.sub(" ", lowered).split() if word]
    for index, token in enumerate(words):
        if "-" in token:
            head, _, tail = token.partition("-")
            base = NUMBER_WORDS.get(head, 0)
            unit = NUMBER_WORDS.get(tail, 0)
            if _is_tens(base) and 0 < unit < 10:
                max_value = max(max_value, base + unit)
                continue

        value = _word_value(token)
        if not value:
            continue
        total = value
        if _is_tens(value) and index + 1 < len(words):
            unit = NUMBER_WORDS.get(words[index + 1], 0)
            if 0 < unit < 10:
                total = value + unit
        max_value = max(max_value, total)

    return max_value


def assess_task_sizing(prompt: str, context: str) -> SizingDecision:
    lowered = prompt.lower()
    count = extract_requested_count(lowered)
    signals: list[str] = []
    score = 0

    if len(prompt) > 600:
        score += 2
        signals.append("long_prompt")
    elif len(prompt) > 300:
        score += 1
        signals.append("medium_prompt")

    if len(context) > 200_000:
        score += 2
        signals.append("large_context")
    elif len(context) > 100_000:
        score += 1
        signals.append("medium_context")

    # The 8 and 4 bands award the same weight.
    if count >= 20:
        score += 3
        signals.append("count>=20")
    elif count >= 8:
        score += 2
        signals.append("count>=8")
    elif count >= 4:
        score += 2
        signals.append("count>=4")

    if SCOPE_PATTERN.search(lowered):
        score += 1
        signals.append("scope_keyword")

    if score >= 5:
        tier = ExecutionTier.TIER_3
    elif score >= 3:
        tier = ExecutionTier.TIER_2
    else:
        tier = ExecutionTier.TIER_1
    return SizingDecision(tier=tier, score=score, requested_count=count, signals=signals)


def classify_task_sizing(prompt: str, context: str) -> ExecutionTier:
    return assess_task_sizing(prompt, context).tier
