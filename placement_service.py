"""
Placement service: load, mutate, save.
Runs the diagnostic loop and the post-placement plan over stored learner profiles,
so the MCP server and the web app stay thin.
"""

import logging
import math
from datetime import date, datetime
from typing import Optional

from content_catalog import ContentCatalog, load_item_bank
from diagnostic_engine import (
    blueprint_for_subject,
    check_break_needed,
    confidence_level,
    dismiss_break,
    information_standard_error,
    new_session,
    performance_level,
    place,
    record_attempt,
    score_response,
    select_next,
    should_stop,
    update_ability,
    upsert_level,
)
from learner_model import (
    SUBJECTS,
    Item,
    LearnerProfile,
    PlacementRecord,
    SessionState,
    base_lesson_id,
    load_learner,
    save_learner,
)
from scheduling_engine import (
    build_daily_playlist,
    generate_plan,
    lesson_mastery,
    mastery_summary,
    next_review_date,
    next_review_in_days,
    optimize_session_order,
    schedule_review,
    skills_needing_review,
    update_mastery,
)

logger = logging.getLogger(__name__)


class SessionNotFoundError(LookupError):
    pass


class UnknownItemError(LookupError):
    pass


def normalize_subject(subject: str) -> str:
    """'Social Studies', 'social_studies' and 'social-studies' are the same subject."""
    key = subject.strip().lower().replace("_", "-").replace(" ", "-")
    if key not in SUBJECTS:
        raise ValueError(f"Unknown subject '{subject}'. Expected one of {', '.join(SUBJECTS)}.")
    return key


def _item_view(item: Optional[Item]) -> Optional[dict]:
    if item is None:
        return None
    return item.model_dump(mode="json", exclude={"answer"})


def _require_session(profile: LearnerProfile, subject: str) -> SessionState:
    state = profile.sessions.get(subject)
    if state is None:
        raise SessionNotFoundError(
            f"No active {subject} diagnostic for learner '{profile.learner_id}'."
        )
    return state


def _session_view(state: SessionState) -> dict:
    return {
        "ability": state.ability,
        "attempts": state.attempts,
        "correct_count": state.correct_count,
        "streak": state.streak,
        "skills_seen": sorted(state.skills_seen),
        "mood": state.mood,
        "needs_break": state.needs_break,
    }


def _complete(
    profile: LearnerProfile,
    subject: str,
    state: SessionState,
    bank: list[Item],
    forced: bool = False,
) -> dict:
    placement = place(state.ability, subject)
    level = upsert_level(placement)

    difficulties = {item.id: item.difficulty for item in bank}
    asked = [difficulties[i] for i in state.items_asked if i in difficulties]
    info_sem = information_standard_error(state.ability, asked)

    profile.placements[subject] = PlacementRecord(
        placement=placement, attempts=list(state.attempt_log)
    )
    profile.levels[subject] = level
    profile.sessions.pop(subject, None)

    logger.info(
        "Placed %s in %s: %s (ability %.2f after %d items%s)",
        profile.learner_id, subject, placement.label, placement.ability,
        state.attempts, ", bank exhausted" if forced else "",
    )
    return {
        "finished": True,
        "forced": forced,
        "placement": placement.model_dump(),
        "level": level.model_dump(),
        "performance_level": performance_level(placement.ability),
        "confidence_level": confidence_level(level.confidence),
        "information_standard_error": None if math.isinf(info_sem) else info_sem,
        "correct": state.correct_count,
        "total": state.attempts,
    }


# ---------------------------------------------------------------------------
# Diagnostic loop
# ---------------------------------------------------------------------------

def start_diagnostic(learner_id: str, subject: str, mood: int = 3) -> dict:
    """
    Start (or restart) a diagnostic. Any unfinished session for the subject is
    discarded. Returns the first item, or a placement if the bank is empty.
    """
    subject = normalize_subject(subject)
    profile = load_learner(learner_id)
    blueprint = blueprint_for_subject(subject)
    state = new_session(learner_id, subject, blueprint, mood=mood)
    bank = load_item_bank(subject)

    first = select_next(state, bank)
    if first is None:
        logger.warning("No %s diagnostic items available; placing at start ability", subject)
        result = _complete(profile, subject, state, bank, forced=True)
        save_learner(profile)
        return {"status": "completed", **result}

    profile.sessions[subject] = state
    save_learner(profile)
    return {
        "status": "started",
        "learner_id": learner_id,
        "subject": subject,
        "blueprint": blueprint.model_dump(),
        "bank_size": len(bank),
        "next_item": _item_view(first),
        **_session_view(state),
    }


def next_question(learner_id: str, subject: str) -> dict:
    """Current item to present; completes the session when the bank runs out."""
    subject = normalize_subject(subject)
    profile = load_learner(learner_id)
    state = _require_session(profile, subject)
    bank = load_item_bank(subject)

    item = select_next(state, bank)
    if item is None:
        result = _complete(profile, subject, state, bank, forced=True)
        save_learner(profile)
        return result
    return {"finished": False, "next_item": _item_view(item), **_session_view(state)}


def submit_response(learner_id: str, subject: str, item_id: str, response: str) -> dict:
    """
    Score a response, update the estimate, and either return the next item or
    the placement. Re-submitting an already answered item changes nothing.
    """
    subject = normalize_subject(subject)
    profile = load_learner(learner_id)
    state = _require_session(profile, subject)
    blueprint = blueprint_for_subject(subject)
    bank = load_item_bank(subject)

    item = next((i for i in bank if i.id == item_id), None)
    if item is None:
        raise UnknownItemError(f"Item '{item_id}' is not in the {subject} bank.")

    if item.id in state.items_asked:
        nxt = select_next(state, bank)
        return {
            "duplicate": True,
            "finished": False,
            "next_item": _item_view(nxt),
            **_session_view(state),
        }

    correct = score_response(response, item)
    update_ability(state, correct, item)
    record_attempt(state, item, response, correct)
    break_now = check_break_needed(state, blueprint)

    if should_stop(state, blueprint):
        result = _complete(profile, subject, state, bank)
        save_learner(profile)
        return {"correct": correct, **result}

    nxt = select_next(state, bank)
    if nxt is None:
        result = _complete(profile, subject, state, bank, forced=True)
        save_learner(profile)
        return {"correct": correct, **result}

    save_learner(profile)
    return {
        "correct": correct,
        "finished": False,
        "break_triggered": break_now,
        "next_item": _item_view(nxt),
        **_session_view(state),
    }


def set_mood(learner_id: str, subject: str, mood: int) -> dict:
    if not 1 <= mood <= 5:
        raise ValueError("mood must be between 1 and 5")
    subject = normalize_subject(subject)
    profile = load_learner(learner_id)
    state = _require_session(profile, subject)
    state.mood = mood
    break_now = check_break_needed(state, blueprint_for_subject(subject))
    save_learner(profile)
    return {"break_triggered": break_now, **_session_view(state)}


def end_break(learner_id: str, subject: str) -> dict:
    subject = normalize_subject(subject)
    profile = load_learner(learner_id)
    state = dismiss_break(_require_session(profile, subject))
    save_learner(profile)
    return _session_view(state)


def finish_diagnostic(learner_id: str, subject: str) -> dict:
    """Place the learner now, from whatever evidence the session holds."""
    subject = normalize_subject(subject)
    profile = load_learner(learner_id)
    state = _require_session(profile, subject)
    result = _complete(profile, subject, state, load_item_bank(subject))
    save_learner(profile)
    return result


# ---------------------------------------------------------------------------
# Plans, mastery and playlists
# ---------------------------------------------------------------------------

def generate_learning_plan(
    learner_id: str, subject: str, today: Optional[date] = None
) -> dict:
    """Replace the subject's plan with one generated from the latest placement."""
    subject = normalize_subject(subject)
    profile = load_learner(learner_id)

    record = profile.placements.get(subject)
    # Without a diagnostic, plan from an on-grade placement
    placement = record.placement if record else place(0.0, subject)

    catalog = ContentCatalog.load()
    plan = generate_plan(placement, catalog.manifest, catalog.skill_graph, today)
    profile.plans[subject] = plan
    save_learner(profile)

    if not plan:
        logger.warning(
            "No %s lessons for grade %s unit %s",
            subject, placement.recommended_grade, placement.recommended_unit,
        )
    return {
        "subject": subject,
        "placement": placement.model_dump(),
        "plan_items": [p.model_dump(mode="json") for p in plan],
        "generated_at": datetime.now().isoformat(),
    }


def record_lesson_result(
    learner_id: str,
    subject: str,
    lesson_id: str,
    correct: bool,
    now: Optional[datetime] = None,
) -> dict:
    """
    Apply a finished lesson to the mastery of each of its skills, mark it done,
    and schedule its spaced review at the shortest interval among those skills.
    """
    subject = normalize_subject(subject)
    now = now or datetime.now()
    profile = load_learner(learner_id)
    plan = profile.plan_for(subject)
    mastery = profile.mastery_for(subject)

    planned = next((p for p in plan if p.lesson_id == lesson_id), None)
    skills = list(planned.skills) if planned else []
    if not skills:
        meta = ContentCatalog.load().find_lesson_meta(lesson_id)
        skills = list(meta.skills) if meta else []
    if not skills:
        skills = [lesson_id]

    records = [update_mastery(mastery, skill, correct, now) for skill in skills]

    if planned is not None:
        planned.status = "done"
        planned.completed_on = now.date()

    weakest = min(records, key=lambda r: r.theta)
    days = min(next_review_in_days(r.theta, correct) for r in records)
    review = schedule_review(plan, base_lesson_id(lesson_id), weakest.skill_id, days, now.date())

    save_learner(profile)
    return {
        "lesson_id": lesson_id,
        "mastery": [r.model_dump(mode="json") for r in records],
        "review": review.model_dump(mode="json"),
    }


def todays_playlist(
    learner_id: str,
    subject: str,
    interleave: bool = False,
    limit: Optional[int] = None,
    today: Optional[date] = None,
) -> dict:
    subject = normalize_subject(subject)
    today = today or date.today()
    profile = load_learner(learner_id)
    plan = profile.plans.get(subject, [])
    levels = lesson_mastery(plan, profile.mastery.get(subject, {}))

    playlist = build_daily_playlist(plan, levels, today)
    if interleave:
        playlist = optimize_session_order(playlist)
    if limit is not None:
        playlist = playlist[:max(0, limit)]

    catalog = ContentCatalog.load()
    upcoming = next_review_date(plan, today)
    return {
        "playlist": [catalog.decorate(p) for p in playlist],
        "total_items": len(playlist),
        "today": today.isoformat(),
        "next_review_date": upcoming.isoformat() if upcoming else None,
    }


def mastery_overview(learner_id: str, subject: str, now: Optional[datetime] = None) -> dict:
    subject = normalize_subject(subject)
    profile = load_learner(learner_id)
    mastery = profile.mastery.get(subject, {})
    return {
        "subject": subject,
        "summary": mastery_summary(mastery, now),
        "needs_review": [r.skill_id for r in skills_needing_review(mastery, now)],
        "records": {k: r.model_dump(mode="json") for k, r in mastery.items()},
    }


def learner_overview(learner_id: str) -> dict:
    profile = load_learner(learner_id)
    return {
        "learner_id": profile.learner_id,
        "levels": {s: lvl.model_dump() for s, lvl in profile.levels.items()},
        "active_diagnostics": sorted(profile.sessions.keys()),
        "planned_subjects": sorted(profile.plans.keys()),
    }
