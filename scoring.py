"""Grading and band conversion. Pure functions, no I/O."""
from decimal import Decimal, ROUND_HALF_UP

# (minimum percentage, band), checked top-down
BAND_TABLE = [
    (90, 9.0),
    (85, 8.5),
    (80, 8.0),
    (75, 7.5),
    (70, 7.0),
    (65, 6.5),
    (60, 6.0),
    (55, 5.5),
    (50, 5.0),
    (45, 4.5),
    (40, 4.0),
    (35, 3.5),
    (30, 3.0),
    (25, 2.5),
]
FLOOR_BAND = 2.0

# Word-count proxy for writing: (words above each task's minimum, band)
WRITING_WORD_TIERS = [
    (100, 7.0),
    (50, 6.5),
    (0, 6.0),
]
WRITING_BELOW_MINIMUM_BAND = 4.0

CEFR_BANDS = [
    (8.5, "C2"),
    (7.0, "C1"),
    (5.5, "B2"),
    (4.0, "B1"),
]


def normalize(value):
    return (value or "").strip().lower()


def accepted_forms(expected):
    """Normalized accepted answers for one key entry (a string or a tuple of variants)."""
    if isinstance(expected, str):
        return {normalize(expected)}
    return {normalize(form) for form in expected}


def is_correct(answer, expected):
    answer = normalize(answer)
    return answer != "" and answer in accepted_forms(expected)


def grade(answers, key, groups=()):
    """Count answers matching the key.

    Indices listed in ``groups`` belong to multi-select questions ("choose TWO
    letters"). Their slots are graded as a set: each distinct correct letter
    scores once, whichever slot it was typed into.
    """
    answers = list(answers)
    grouped = {index for group in groups for index in group}

    def answer_at(index):
        return answers[index] if index < len(answers) else ""

    score = sum(
        1 for index, expected in enumerate(key)
        if index not in grouped and is_correct(answer_at(index), expected)
    )

    for group in groups:
        accepted = set()
        for index in group:
            accepted |= accepted_forms(key[index])
        given = {normalize(answer_at(index)) for index in group} - {""}
        score += min(len(given & accepted), len(group))

    return score


def percentage(raw, total):
    if total <= 0:
        return 0
    return int(Decimal(raw * 100) / Decimal(total) + Decimal("0.5"))


def to_band(raw, total, zero_band=0.0):
    """Map a raw score to a band with the fixed threshold table.

    Returns 0.0 when there is nothing to score and ``zero_band`` when no
    answer was correct.
    """
    if total <= 0:
        return 0.0
    if raw <= 0:
        return zero_band
    pct = raw * 100 / total
    for threshold, band in BAND_TABLE:
        if pct >= threshold:
            return band
    return FLOOR_BAND


def word_count(text):
    return len([token for token in (text or "").split() if token])


def estimate_writing_band(word_counts, minimums):
    """Rough writing band from word counts alone.

    This is a length proxy, not an assessment of the writing itself.
    """
    if not minimums:
        return 0.0
    surplus = [count - minimum for count, minimum in zip(word_counts, minimums)]
    if len(surplus) < len(minimums) or min(surplus) < 0:
        return WRITING_BELOW_MINIMUM_BAND
    for extra, band in WRITING_WORD_TIERS:
        if min(surplus) >= extra:
            return band
    return WRITING_BELOW_MINIMUM_BAND


def round_band(value):
    return float(Decimal(str(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def overall_band(bands):
    """Mean of the given section bands, rounded half-up to one decimal."""
    bands = list(bands)
    if not bands:
        return 0.0
    return round_band(sum(bands) / len(bands))


def cefr_level(band):
    """Approximate CEFR level for an overall band"""
    if band <= 0:
        return "N/A"
    for threshold, level in CEFR_BANDS:
        if band >= threshold:
            return level
    return "A2"
