"""
Diagnostic engine: pure logic, no I/O.
Item selection, ability estimation, stop rules, break detection, placement.
"""

import math
from datetime import datetime
from typing import Iterable, Optional

from learner_model import (
    ABILITY_MAX,
    ABILITY_MIN,
    Blueprint,
    DiagAttempt,
    Item,
    LevelRecord,
    Placement,
    SessionState,
)

# Score bonus for items whose skill has not been seen yet (favours breadth).
NEW_SKILL_BONUS = 0.1

BASE_DELTA = 0.5
STREAK_STEP = 0.15

# Beyond this ability a correct run says more about the bank than the learner.
HEADROOM_ABILITY = 2.0

PLACEMENT_SEM = 0.25

# Upper bound (inclusive) of each ability band and its label, lowest first.
PLACEMENT_BANDS = [
    (-2.5, "Foundation"),
    (-1.5, "Remediate"),
    (-0.3, "On Grade - review"),
    (0.3, "On Grade"),
    (0.8, "On Grade + enrichment"),
    (1.5, "Recommended Course"),
    (2.3, "Advanced Course"),
    (math.inf, "College/Advanced"),
]

# (grade, unit) per band, one table per subject, parallel to PLACEMENT_BANDS.
PLACEMENT_TABLES = {
    "math": [
        ("PK", "number-recognition"),
        ("K", "counting"),
        ("1", "place-value"),
        ("6", "ratios"),
        ("6", "problem-solving"),
        ("HS", "algebra-1"),
        ("HS", "geometry"),
        ("HS", "algebra-2"),
    ],
    "reading": [
        ("PK", "letter-sounds"),
        ("K", "phonics"),
        ("K", "sight-words"),
        ("6", "argument"),
        ("6", "comprehension-strategies"),
        ("HS", "ela-9-10"),
        ("HS", "ela-11-12"),
        ("College", "advanced-comprehension"),
    ],
    "science": [
        ("K", "observation-skills"),
        ("3", "living-nonliving"),
        ("3", "life-cycles"),
        ("3", "matter"),
        ("6", "earth"),
        ("HS", "biology"),
        ("HS", "chemistry"),
        ("College", "systems-thinking"),
    ],
    "social-studies": [
        ("K", "community-helpers"),
        ("1", "family"),
        ("5", "us-regions"),
        ("6", "ancient"),
        ("6", "geography-basics"),
        ("HS", "us-history"),
        ("HS", "govt-civics"),
        ("College", "historical-thinking"),
    ],
}

_BLUEPRINT_OVERRIDES = {
    "math": {"stop_streak_threshold": 3, "min_distinct_skills": 4},
    "reading": {"max_items": 12},
    "science": {"min_items": 5, "stop_streak_threshold": 3},
    "social-studies": {"min_items": 5, "stop_streak_threshold": 3},
}


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def blueprint_for_subject(subject: str) -> Blueprint:
    """Static diagnostic blueprint for a subject (6–15 items, break after 8)."""
    return Blueprint(subject=subject, **_BLUEPRINT_OVERRIDES.get(subject, {}))


def new_session(
    learner_id: str, subject: str, blueprint: Blueprint, mood: int = 3
) -> SessionState:
    return SessionState(
        learner_id=learner_id,
        subject=subject,
        ability=blueprint.start_difficulty,
        mood=mood,
    )


# ---------------------------------------------------------------------------
# Item selection
# ---------------------------------------------------------------------------

def select_next(state: SessionState, bank: list[Item]) -> Optional[Item]:
    """
    Pick the unasked item whose difficulty is closest to the current ability.

    Items from skills not yet seen get a small bonus so early questions spread
    across the subject. Returns None once the bank is exhausted, which the
    caller treats as a forced completion.
    """
    asked = set(state.items_asked)
    best: Optional[Item] = None
    best_score = math.inf

    for item in bank:
        if item.id in asked:
            continue
        score = abs(item.difficulty - state.ability)
        if item.skill not in state.skills_seen:
            score -= NEW_SKILL_BONUS
        if score < best_score:
            best_score = score
            best = item

    return best


def score_response(response, item: Item) -> bool:
    """Trimmed, case-insensitive comparison against the item's answer."""
    if not isinstance(response, str):
        return False
    return response.strip().lower() == item.answer.strip().lower()


# ---------------------------------------------------------------------------
# Ability estimation
# ---------------------------------------------------------------------------

def expected_probability(ability: float, difficulty: float) -> float:
    """1-PL probability of a correct response."""
    return 1.0 / (1.0 + math.exp(-(ability - difficulty)))


def update_ability(state: SessionState, correct: bool, item: Item) -> SessionState:
    """
    Move the ability estimate after one scored response.

    The step grows with how informative the item was at the current estimate
    and with how surprising the response was. Runs of two or more same-sign
    responses (including this one) scale the step by 1 + 0.15·|streak|, so the
    estimate reaches a learner's ceiling or floor in fewer items than a plain
    1-PL update would. Ability is clamped to [-3, 3].
    """
    p = expected_probability(state.ability, item.difficulty)
    information = p * (1.0 - p)
    surprise = (1.0 - p) if correct else p
    delta = BASE_DELTA * (0.3 + 1.4 * information) * (0.5 + surprise)

    if correct:
        state.streak = state.streak + 1 if state.streak >= 0 else 1
    else:
        state.streak = state.streak - 1 if state.streak <= 0 else -1

    multiplier = 1.0 + STREAK_STEP * abs(state.streak) if abs(state.streak) >= 2 else 1.0
    direction = 1.0 if correct else -1.0
    state.ability = _clamp(
        state.ability + delta * direction * multiplier, ABILITY_MIN, ABILITY_MAX
    )

    if item.id not in state.items_asked:
        state.items_asked.append(item.id)
    state.skills_seen.add(item.skill)
    state.correct_count += 1 if correct else 0
    state.attempts += 1
    return state


def record_attempt(state: SessionState, item: Item, response: str, correct: bool) -> DiagAttempt:
    attempt = DiagAttempt(
        item_id=item.id,
        response=response if isinstance(response, str) else "",
        correct=correct,
        ability_after=state.ability,
    )
    state.attempt_log.append(attempt)
    return attempt


def information_standard_error(ability: float, difficulties: Iterable[float]) -> float:
    """Standard error from the Fisher information of the administered items."""
    total = 0.0
    for b in difficulties:
        p = expected_probability(ability, b)
        total += p * (1.0 - p)
    if total <= 0:
        return float("inf")
    return 1.0 / math.sqrt(total)


# ---------------------------------------------------------------------------
# Stopping and breaks
# ---------------------------------------------------------------------------

def should_stop(state: SessionState, blueprint: Blueprint) -> bool:
    """
    Decide whether the diagnostic has gathered enough evidence.

    Hard stop at max_items. Nothing stops before min_items and
    min_distinct_skills are met. After that, an incorrect run of
    stop_streak_threshold means the ceiling was found; a run one longer in
    either direction also stops, except a correct run above ability 2.0,
    where the bank has run out of harder items rather than the learner
    having plateaued.
    """
    if state.attempts >= blueprint.max_items:
        return True

    if state.attempts < blueprint.min_items:
        return False
    if len(state.skills_seen) < blueprint.min_distinct_skills:
        return False

    if state.streak <= -blueprint.stop_streak_threshold:
        return True

    if abs(state.streak) >= blueprint.stop_streak_threshold + 1:
        if state.streak > 0 and state.ability > HEADROOM_ABILITY:
            return False
        return True

    return False


def check_break_needed(state: SessionState, blueprint: Blueprint) -> bool:
    """
    Raise needs_break at the blueprint's break point or when mood drops to 2
    or lower. Fires at most once per session.
    """
    if state.break_triggered or state.attempts == 0:
        return False
    if state.attempts == blueprint.break_after_attempts or state.mood <= 2:
        state.needs_break = True
        state.break_triggered = True
        return True
    return False


def dismiss_break(state: SessionState) -> SessionState:
    state.needs_break = False
    return state


# ---------------------------------------------------------------------------
# Placement
# ---------------------------------------------------------------------------

def band_index(ability: float) -> int:
    for i, (upper, _) in enumerate(PLACEMENT_BANDS):
        if ability <= upper:
            return i
    return len(PLACEMENT_BANDS) - 1


def place(ability: float, subject: str) -> Placement:
    """Map a terminal ability to a grade/unit recommendation for the subject."""
    ability = _clamp(ability, ABILITY_MIN, ABILITY_MAX)
    idx = band_index(ability)
    label = PLACEMENT_BANDS[idx][1]
    grade, unit = PLACEMENT_TABLES[subject][idx]
    return Placement(
        subject=subject,
        ability=ability,
        standard_error=PLACEMENT_SEM,
        label=label,
        recommended_grade=grade,
        recommended_unit=unit,
    )


def upsert_level(placement: Placement, now: Optional[datetime] = None) -> LevelRecord:
    # Higher SEM = lower confidence, kept within 40%..95%
    confidence = _clamp(1.0 - placement.standard_error, 0.4, 0.95)
    return LevelRecord(
        subject=placement.subject,
        level_label=placement.label,
        grade=placement.recommended_grade,
        unit=placement.recommended_unit or "introduction",
        ability=placement.ability,
        confidence=confidence,
        last_updated=(now or datetime.now()).isoformat(),
    )


def performance_level(ability: float) -> str:
    if ability >= 1.5:
        return "Advanced"
    if ability >= 0.5:
        return "Proficient"
    if ability >= -0.5:
        return "Developing"
    return "Beginning"


def confidence_level(confidence: float) -> str:
    if confidence >= 0.8:
        return "High"
    if confidence >= 0.6:
        return "Medium"
    return "Low"
