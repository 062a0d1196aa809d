"""
Scheduling engine: pure logic, no I/O.
Per-skill mastery, spaced-review intervals, daily playlists and plan generation.
"""

from datetime import date, datetime, timedelta
from typing import Optional

from learner_model import (
    REVIEW_PRIORITY_OFFSET,
    REVIEW_PREFIX,
    THETA_MAX,
    THETA_MIN,
    LessonMeta,
    Manifest,
    MasteryRecord,
    Placement,
    PlanItem,
    SkillGraph,
    base_lesson_id,
)

THETA_STEP = 0.2

# Research-backed review spacing in days, scaled by lesson mastery.
REVIEW_INTERVALS = [1, 2, 4, 7, 14]
DEFAULT_LESSON_MASTERY = 0.5

REMEDIATION_LABELS = ("Foundation", "Remediate")
ENRICHMENT_MARKERS = ("enrichment", "Advanced")


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


# ---------------------------------------------------------------------------
# Mastery tracking
# ---------------------------------------------------------------------------

def mastery_level_for_theta(theta: float) -> str:
    if theta >= 1.5:
        return "advanced"
    if theta >= 0.5:
        return "proficient"
    if theta >= -0.5:
        return "developing"
    return "beginning"


def next_review_in_days(theta: float, was_correct: bool = True) -> int:
    """
    Days until the next review of a skill.
    Higher theta = longer interval; a miss halves it (floor, at least 1 day).
    """
    if theta >= 1.5:
        days = 14
    elif theta >= 0.5:
        days = 7
    elif theta >= -0.5:
        days = 4
    else:
        days = 2

    if not was_correct:
        days = max(1, days // 2)
    return days


def update_mastery(
    mastery: dict[str, MasteryRecord],
    skill_id: str,
    correct: bool,
    now: Optional[datetime] = None,
) -> MasteryRecord:
    """
    Apply one practice result to a skill's record, creating it on first practice.
    The updated record replaces the old one in `mastery` and is returned.
    """
    now = now or datetime.now()
    current = mastery.get(skill_id) or MasteryRecord(
        skill_id=skill_id, last_practiced_at=now, next_review_at=now
    )

    step = THETA_STEP if correct else -THETA_STEP
    theta = _clamp(current.theta + step, THETA_MIN, THETA_MAX)

    updated = current.model_copy(update={
        "theta": theta,
        "attempts": current.attempts + 1,
        "last_practiced_at": now,
        "next_review_at": now + timedelta(days=next_review_in_days(theta, correct)),
        "mastery_level": mastery_level_for_theta(theta),
    })
    mastery[skill_id] = updated
    return updated


def skills_needing_review(
    mastery: dict[str, MasteryRecord], now: Optional[datetime] = None
) -> list[MasteryRecord]:
    now = now or datetime.now()
    return [r for r in mastery.values() if r.next_review_at <= now]


def mastery_summary(
    mastery: dict[str, MasteryRecord], now: Optional[datetime] = None
) -> dict:
    records = list(mastery.values())
    if not records:
        return {
            "total_skills": 0,
            "mastered_skills": 0,
            "average_theta": 0.0,
            "skills_needing_review": 0,
            "mastery_percentage": 0,
        }

    mastered = sum(1 for r in records if r.theta >= 0.5)
    return {
        "total_skills": len(records),
        "mastered_skills": mastered,
        "average_theta": sum(r.theta for r in records) / len(records),
        "skills_needing_review": len(skills_needing_review(mastery, now)),
        "mastery_percentage": round(mastered / len(records) * 100),
    }


def lesson_mastery(
    plan_items: list[PlanItem], records: dict[str, MasteryRecord]
) -> dict[str, float]:
    """
    Per-lesson mastery in [0, 1] from the mean theta of the lesson's practiced
    skills. Lessons with no practiced skills are left out.
    """
    out: dict[str, float] = {}
    for item in plan_items:
        thetas = [records[s].theta for s in item.skills if s in records]
        if thetas:
            mean = sum(thetas) / len(thetas)
            out[item.lesson_id] = (mean - THETA_MIN) / (THETA_MAX - THETA_MIN)
    return out


# ---------------------------------------------------------------------------
# Spaced review
# ---------------------------------------------------------------------------

def _mastery_for(item: PlanItem, mastery: dict[str, float]) -> float:
    if item.lesson_id in mastery:
        return mastery[item.lesson_id]
    by_skill = [mastery[s] for s in item.skills if s in mastery]
    if by_skill:
        return sum(by_skill) / len(by_skill)
    return DEFAULT_LESSON_MASTERY


def scaled_intervals(level: float) -> list[float]:
    multiplier = max(0.5, level)
    return [days * multiplier for days in REVIEW_INTERVALS]


def is_review_due(days_since_completion: int, level: float) -> bool:
    """
    True when a lesson finished `days_since_completion` days ago sits within
    one day of a mastery-scaled review interval. Lessons finished today are
    never due.
    """
    if days_since_completion < 1:
        return False
    return any(abs(days_since_completion - d) <= 1 for d in scaled_intervals(level))


def schedule_review(
    plan: list[PlanItem],
    lesson_id: str,
    skill_id: str,
    days: int,
    today: Optional[date] = None,
) -> PlanItem:
    """
    Put a spaced review of `lesson_id` on the plan `days` from today.
    Sooner reviews sort first; an earlier pending review of the lesson is
    replaced.
    """
    today = today or date.today()
    review_id = REVIEW_PREFIX + lesson_id
    plan[:] = [p for p in plan if not (p.lesson_id == review_id and p.status != "done")]

    review = PlanItem(
        lesson_id=review_id,
        skills=[skill_id],
        scheduled_for=today + timedelta(days=days),
        status="todo",
        priority=REVIEW_PRIORITY_OFFSET + max(0, 7 - days) * 100,
        review_type="spaced",
    )
    plan.append(review)
    return review


def build_daily_playlist(
    plan_items: list[PlanItem],
    mastery: Optional[dict[str, float]] = None,
    today: Optional[date] = None,
) -> list[PlanItem]:
    """
    Today's ordered playlist: everything due and not done, plus reviews of
    completed lessons whose spacing interval lands on today.

    `mastery` maps lesson ids (or skill ids) to a 0..1 level; anything missing
    counts as 0.5. Reviews take the original priority + 1000. Entries are
    de-duplicated by base lesson id ("review-X" and "X" are the same lesson),
    first occurrence winning, then sorted by ascending priority.
    """
    today = today or date.today()
    mastery = mastery or {}

    due = [p for p in plan_items if p.scheduled_for <= today and p.status != "done"]

    reviews = []
    for item in plan_items:
        if item.status != "done":
            continue
        completed = item.completed_on or item.scheduled_for
        days_since = (today - completed).days
        if is_review_due(days_since, _mastery_for(item, mastery)):
            reviews.append(item.model_copy(update={
                "scheduled_for": today,
                "status": "todo",
                "priority": item.priority + REVIEW_PRIORITY_OFFSET,
                "review_type": "spaced",
            }))

    seen: set[str] = set()
    unique = []
    for item in due + reviews:
        key = base_lesson_id(item.lesson_id)
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)

    return sorted(unique, key=lambda p: p.priority)


def optimize_session_order(playlist: list[PlanItem]) -> list[PlanItem]:
    """Alternate new lessons with reviews so reinforcement is spread through a session."""
    new_lessons = [p for p in playlist if not p.is_review]
    reviews = [p for p in playlist if p.is_review]

    ordered = []
    for i in range(max(len(new_lessons), len(reviews))):
        if i < len(new_lessons):
            ordered.append(new_lessons[i])
        if i < len(reviews):
            ordered.append(reviews[i])
    return ordered


def next_review_date(plan_items: list[PlanItem], today: Optional[date] = None) -> Optional[date]:
    today = today or date.today()
    future = sorted(p.scheduled_for for p in plan_items if p.scheduled_for > today)
    return future[0] if future else None


# ---------------------------------------------------------------------------
# Plan generation
# ---------------------------------------------------------------------------

def _prerequisite_lessons(
    unit_lessons: list[LessonMeta],
    grades: dict,
    skill_graph: SkillGraph,
    count: int,
) -> list[LessonMeta]:
    """Lessons teaching a direct prerequisite of the unit's skills, easiest first."""
    prereq_skills = set()
    for lesson in unit_lessons:
        for skill in lesson.skills:
            prereq_skills.update(skill_graph.get(skill, []))

    unit_ids = {lesson.id for lesson in unit_lessons}
    found: dict[str, LessonMeta] = {}
    for units in grades.values():
        for unit in units.values():
            for lesson in unit.lessons:
                if lesson.id in unit_ids or lesson.id in found:
                    continue
                if any(s in prereq_skills for s in lesson.skills):
                    found[lesson.id] = lesson

    return sorted(found.values(), key=lambda lesson: lesson.difficulty)[:count]


def _enrichment_lesson(lessons: list[LessonMeta], ability: float) -> Optional[LessonMeta]:
    harder = [lesson for lesson in lessons if lesson.difficulty > ability]
    if harder:
        return max(harder, key=lambda lesson: lesson.difficulty)
    return lessons[-1] if lessons else None


def generate_plan(
    placement: Placement,
    manifest: Manifest,
    skill_graph: SkillGraph,
    today: Optional[date] = None,
) -> list[PlanItem]:
    """
    Build a starting plan from a placement.

    Rules, in order:
    1. Remediation placements get two prerequisite lessons.
    2. Two core lessons from the recommended unit.
    3. One spiral review: the first lesson of the previous unit.
    4. Enrichment and advanced placements get the hardest lesson above the
       learner's ability.

    Lessons are scheduled one per day from today with priorities 1, 2, 3...
    An unknown grade or unit yields an empty plan.
    """
    today = today or date.today()
    grades = manifest.get(placement.subject, {})
    units = grades.get(placement.recommended_grade, {})
    unit = units.get(placement.recommended_unit or "")
    if unit is None:
        return []

    chosen: list[LessonMeta] = []

    if placement.label.startswith(REMEDIATION_LABELS):
        chosen.extend(_prerequisite_lessons(unit.lessons, grades, skill_graph, 2))

    chosen.extend(unit.lessons[:2])

    unit_keys = list(units.keys())
    idx = unit_keys.index(placement.recommended_unit)
    if idx > 0:
        previous = units[unit_keys[idx - 1]]
        if previous.lessons:
            chosen.append(previous.lessons[0])

    if any(marker in placement.label for marker in ENRICHMENT_MARKERS):
        extra = _enrichment_lesson(unit.lessons, placement.ability)
        if extra is not None:
            chosen.append(extra)

    plan: list[PlanItem] = []
    planned: set[str] = set()
    for lesson in chosen:
        if lesson.id in planned:
            continue
        planned.add(lesson.id)
        plan.append(PlanItem(
            lesson_id=lesson.id,
            skills=list(lesson.skills),
            scheduled_for=today + timedelta(days=len(plan)),
            status="todo",
            priority=len(plan) + 1,
        ))
    return plan
