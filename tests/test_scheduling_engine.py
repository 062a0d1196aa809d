"""Unit tests for scheduling_engine.py: mastery, spaced review, playlists, plan generation."""

import random
from datetime import date, datetime, timedelta

import pytest

from diagnostic_engine import place
from learner_model import MasteryRecord, PlanItem
from scheduling_engine import (
    build_daily_playlist,
    generate_plan,
    is_review_due,
    lesson_mastery,
    mastery_level_for_theta,
    mastery_summary,
    next_review_date,
    next_review_in_days,
    optimize_session_order,
    schedule_review,
    skills_needing_review,
    update_mastery,
)

TODAY = date(2026, 10, 19)
NOW = datetime(2026, 10, 19, 9, 0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_plan_item(
    lesson_id: str,
    days_from_today: int = 0,
    priority: int = 1,
    status: str = "todo",
    completed_days_ago: int | None = None,
    skills: list[str] | None = None,
) -> PlanItem:
    return PlanItem(
        lesson_id=lesson_id,
        skills=skills or [],
        scheduled_for=TODAY + timedelta(days=days_from_today),
        status=status,
        priority=priority,
        completed_on=(
            TODAY - timedelta(days=completed_days_ago)
            if completed_days_ago is not None else None
        ),
    )


def make_record(skill_id: str, theta: float, review_in_days: int = 3) -> MasteryRecord:
    return MasteryRecord(
        skill_id=skill_id,
        theta=theta,
        last_practiced_at=NOW,
        next_review_at=NOW + timedelta(days=review_in_days),
    )


# ---------------------------------------------------------------------------
# next_review_in_days
# ---------------------------------------------------------------------------

class TestNextReviewInDays:
    @pytest.mark.parametrize("theta, days", [
        (1.6, 14),
        (1.5, 14),
        (0.5, 7),
        (0.49, 4),
        (-0.5, 4),
        (-0.51, 2),
    ])
    def test_intervals_after_correct(self, theta, days):
        assert next_review_in_days(theta, True) == days

    def test_miss_halves_interval(self):
        assert next_review_in_days(1.6, False) == 7
        assert next_review_in_days(0.0, False) == 2

    def test_never_below_one_day(self):
        assert next_review_in_days(-2.0, False) == 1

    def test_monotone_in_theta(self):
        thetas = [x / 10 for x in range(-20, 21)]
        for correct in (True, False):
            days = [next_review_in_days(t, correct) for t in thetas]
            assert days == sorted(days)


# ---------------------------------------------------------------------------
# update_mastery
# ---------------------------------------------------------------------------

class TestUpdateMastery:
    def test_first_correct_practice(self):
        mastery = {}
        record = update_mastery(mastery, "ratios", True, NOW)
        assert record.theta == pytest.approx(0.2)
        assert record.attempts == 1
        assert record.mastery_level == "developing"
        assert record.next_review_at == NOW + timedelta(days=4)
        assert mastery["ratios"] is record

    def test_first_incorrect_practice(self):
        mastery = {}
        record = update_mastery(mastery, "ratios", False, NOW)
        assert record.theta == pytest.approx(-0.2)
        assert record.next_review_at == NOW + timedelta(days=2)

    def test_crosses_into_proficient(self):
        mastery = {"s": make_record("s", 0.4)}
        assert update_mastery(mastery, "s", True, NOW).mastery_level == "proficient"

    def test_clamped_at_top(self):
        mastery = {"s": make_record("s", 2.0)}
        record = update_mastery(mastery, "s", True, NOW)
        assert record.theta == 2.0
        assert record.mastery_level == "advanced"
        assert record.next_review_at == NOW + timedelta(days=14)

    def test_clamped_at_bottom(self):
        mastery = {"s": make_record("s", -2.0)}
        record = update_mastery(mastery, "s", False, NOW)
        assert record.theta == -2.0
        assert record.mastery_level == "beginning"
        assert record.next_review_at == NOW + timedelta(days=1)

    def test_theta_bounded_over_random_runs(self):
        rng = random.Random(3)
        mastery = {}
        for _ in range(200):
            record = update_mastery(mastery, "s", rng.random() < 0.6, NOW)
            assert -2.0 <= record.theta <= 2.0
        assert mastery["s"].attempts == 200

    def test_level_thresholds(self):
        assert mastery_level_for_theta(1.5) == "advanced"
        assert mastery_level_for_theta(0.5) == "proficient"
        assert mastery_level_for_theta(-0.5) == "developing"
        assert mastery_level_for_theta(-0.51) == "beginning"


class TestMasterySummary:
    def test_empty(self):
        summary = mastery_summary({})
        assert summary["total_skills"] == 0
        assert summary["mastery_percentage"] == 0

    def test_counts(self):
        mastery = {
            "a": make_record("a", 0.6, review_in_days=-1),
            "b": make_record("b", -0.4, review_in_days=5),
        }
        summary = mastery_summary(mastery, NOW)
        assert summary["total_skills"] == 2
        assert summary["mastered_skills"] == 1
        assert summary["average_theta"] == pytest.approx(0.1)
        assert summary["skills_needing_review"] == 1
        assert summary["mastery_percentage"] == 50

    def test_skills_needing_review(self):
        mastery = {
            "due": make_record("due", 0.0, review_in_days=0),
            "later": make_record("later", 0.0, review_in_days=2),
        }
        assert [r.skill_id for r in skills_needing_review(mastery, NOW)] == ["due"]


class TestLessonMastery:
    def test_mean_theta_rescaled(self):
        plan = [make_plan_item("L1", skills=["a", "b"])]
        records = {"a": make_record("a", 0.0), "b": make_record("b", 1.0)}
        assert lesson_mastery(plan, records) == {"L1": pytest.approx(0.625)}

    def test_unpracticed_lessons_left_out(self):
        plan = [make_plan_item("L1", skills=["x"])]
        assert lesson_mastery(plan, {}) == {}


# ---------------------------------------------------------------------------
# is_review_due / schedule_review
# ---------------------------------------------------------------------------

class TestIsReviewDue:
    def test_default_level_intervals(self):
        # 0.5 scales the intervals to 0.5, 1, 2, 3.5, 7
        assert is_review_due(7, 0.5) is True
        assert is_review_due(10, 0.5) is False

    def test_high_mastery_pushes_reviews_out(self):
        # 0.8 scales the intervals to 0.8, 1.6, 3.2, 5.6, 11.2
        assert is_review_due(7, 0.8) is False
        assert is_review_due(11, 0.8) is True

    def test_finished_today_never_due(self):
        assert is_review_due(0, 0.5) is False


class TestScheduleReview:
    def test_sooner_reviews_rank_higher(self):
        plan = []
        review = schedule_review(plan, "math-6-ratio-intro", "ratios", 2, TODAY)
        assert review.lesson_id == "review-math-6-ratio-intro"
        assert review.scheduled_for == TODAY + timedelta(days=2)
        assert review.priority == 1500
        assert review.review_type == "spaced"
        assert review.is_review
        assert plan == [review]

    def test_long_interval_still_a_review(self):
        review = schedule_review([], "L1", "s", 14, TODAY)
        assert review.priority == 1000
        assert review.is_review

    def test_replaces_pending_review(self):
        plan = [make_plan_item("L1")]
        schedule_review(plan, "L1", "s", 2, TODAY)
        schedule_review(plan, "L1", "s", 4, TODAY)
        reviews = [p for p in plan if p.lesson_id == "review-L1"]
        assert len(reviews) == 1
        assert reviews[0].priority == 1300
        assert len(plan) == 2

    def test_keeps_completed_review(self):
        plan = []
        first = schedule_review(plan, "L1", "s", 2, TODAY)
        first.status = "done"
        schedule_review(plan, "L1", "s", 4, TODAY)
        assert len(plan) == 2


# ---------------------------------------------------------------------------
# build_daily_playlist
# ---------------------------------------------------------------------------

class TestBuildDailyPlaylist:
    def test_due_items_sorted_by_priority(self):
        plan = [
            make_plan_item("overdue", days_from_today=-1, priority=2),
            make_plan_item("today", priority=1),
            make_plan_item("tomorrow", days_from_today=1, priority=0),
            make_plan_item("finished", days_from_today=-10, status="done"),
        ]
        playlist = build_daily_playlist(plan, today=TODAY)
        assert [p.lesson_id for p in playlist] == ["today", "overdue"]

    def test_completed_lesson_gets_spaced_review(self):
        done = make_plan_item("L1", days_from_today=-7, priority=3, status="done",
                              completed_days_ago=7)
        playlist = build_daily_playlist([done], today=TODAY)
        assert len(playlist) == 1
        review = playlist[0]
        assert review.lesson_id == "L1"
        assert review.priority == 1003
        assert review.status == "todo"
        assert review.scheduled_for == TODAY
        assert review.review_type == "spaced"
        assert done.status == "done"

    def test_high_mastery_skips_review(self):
        done = make_plan_item("L1", days_from_today=-7, status="done", completed_days_ago=7)
        assert build_daily_playlist([done], {"L1": 0.8}, TODAY) == []

    def test_mastery_looked_up_by_skill(self):
        done = make_plan_item("L1", days_from_today=-7, status="done",
                              completed_days_ago=7, skills=["ratios"])
        assert build_daily_playlist([done], {"ratios": 0.8}, TODAY) == []

    def test_completion_date_falls_back_to_schedule(self):
        done = make_plan_item("L1", days_from_today=-7, status="done")
        assert [p.lesson_id for p in build_daily_playlist([done], today=TODAY)] == ["L1"]

    def test_finished_today_not_reviewed(self):
        done = make_plan_item("L1", status="done", completed_days_ago=0)
        assert build_daily_playlist([done], today=TODAY) == []

    def test_duplicate_lesson_appears_once(self):
        """The due copy comes first and wins over the synthesized review."""
        plan = [
            make_plan_item("math-1", priority=1),
            make_plan_item("math-1", days_from_today=-2, priority=1, status="done",
                           completed_days_ago=2),
        ]
        playlist = build_daily_playlist(plan, today=TODAY)
        assert len(playlist) == 1
        assert playlist[0].priority == 1

    def test_scheduled_review_wins_over_spaced_copy(self):
        """A due "review-X" and a spaced review of finished X are the same lesson."""
        plan = [
            make_plan_item("X", days_from_today=-7, priority=1, status="done",
                           completed_days_ago=7),
            make_plan_item("review-X", priority=1300),
        ]
        playlist = build_daily_playlist(plan, today=TODAY)
        assert [(p.lesson_id, p.priority) for p in playlist] == [("review-X", 1300)]

    def test_reviews_sort_after_new_lessons(self):
        plan = [
            make_plan_item("new-b", priority=5),
            make_plan_item("old", days_from_today=-7, priority=1, status="done",
                           completed_days_ago=7),
            make_plan_item("new-a", priority=2),
        ]
        playlist = build_daily_playlist(plan, today=TODAY)
        assert [p.lesson_id for p in playlist] == ["new-a", "new-b", "old"]
        assert [p.priority for p in playlist] == sorted(p.priority for p in playlist)

    def test_unique_ids_over_random_plans(self):
        rng = random.Random(11)
        for _ in range(50):
            plan = [
                make_plan_item(
                    f"L{rng.randint(1, 5)}",
                    days_from_today=rng.randint(-10, 3),
                    priority=rng.randint(1, 9),
                    status=rng.choice(["todo", "done"]),
                    completed_days_ago=rng.randint(0, 15),
                )
                for _ in range(8)
            ]
            ids = [p.lesson_id for p in build_daily_playlist(plan, today=TODAY)]
            assert len(ids) == len(set(ids))


class TestOptimizeSessionOrder:
    def test_alternates_new_and_review(self):
        playlist = [
            make_plan_item("n1", priority=1),
            make_plan_item("n2", priority=2),
            make_plan_item("n3", priority=3),
            make_plan_item("r1", priority=1001),
            make_plan_item("r2", priority=1002),
        ]
        ordered = optimize_session_order(playlist)
        assert [p.lesson_id for p in ordered] == ["n1", "r1", "n2", "r2", "n3"]

    def test_reviews_only_are_kept(self):
        playlist = [make_plan_item("r1", priority=1001), make_plan_item("r2", priority=1002)]
        assert [p.lesson_id for p in optimize_session_order(playlist)] == ["r1", "r2"]

    def test_empty(self):
        assert optimize_session_order([]) == []


class TestNextReviewDate:
    def test_earliest_future_date(self):
        plan = [
            make_plan_item("a", days_from_today=0),
            make_plan_item("b", days_from_today=5),
            make_plan_item("c", days_from_today=2),
        ]
        assert next_review_date(plan, TODAY) == TODAY + timedelta(days=2)

    def test_nothing_upcoming(self):
        assert next_review_date([make_plan_item("a")], TODAY) is None


# ---------------------------------------------------------------------------
# generate_plan
# ---------------------------------------------------------------------------

class TestGeneratePlan:
    def _ids(self, plan):
        return [p.lesson_id for p in plan]

    def test_core_lessons_plus_spiral_review(self, catalog):
        placement = place(-0.5, "math")
        assert placement.recommended_unit == "place-value"
        plan = generate_plan(placement, catalog.manifest, catalog.skill_graph, TODAY)
        assert self._ids(plan) == ["math-1-tens-ones", "math-1-compare", "math-1-add-20"]

    def test_one_lesson_per_day_with_rising_priority(self, catalog):
        plan = generate_plan(place(-0.5, "math"), catalog.manifest, catalog.skill_graph, TODAY)
        assert [p.scheduled_for for p in plan] == [TODAY + timedelta(days=i) for i in range(3)]
        assert [p.priority for p in plan] == [1, 2, 3]
        assert all(p.status == "todo" for p in plan)

    def test_remediation_adds_prerequisites(self, catalog):
        placement = place(-2.0, "math")
        assert placement.label == "Remediate"
        plan = generate_plan(placement, catalog.manifest, catalog.skill_graph, TODAY)
        assert self._ids(plan) == ["math-pk-numerals", "math-k-count-10", "math-k-count-20"]

    def test_enrichment_adds_harder_lesson(self, catalog):
        placement = place(0.6, "math")
        assert placement.label == "On Grade + enrichment"
        plan = generate_plan(placement, catalog.manifest, catalog.skill_graph, TODAY)
        assert self._ids(plan) == [
            "math-6-multi-step", "math-6-percent", "math-6-ratio-intro", "math-6-challenge",
        ]

    def test_first_unit_has_no_spiral_review(self, catalog):
        plan = generate_plan(place(1.0, "math"), catalog.manifest, catalog.skill_graph, TODAY)
        assert self._ids(plan) == ["math-hs-linear", "math-hs-slope"]

    def test_no_duplicate_lessons(self, catalog):
        """Advanced placement with nothing harder falls back to a lesson already planned."""
        plan = generate_plan(place(2.0, "math"), catalog.manifest, catalog.skill_graph, TODAY)
        assert self._ids(plan) == ["math-hs-proofs", "math-hs-similarity", "math-hs-linear"]

    def test_skills_copied_from_lessons(self, catalog):
        plan = generate_plan(place(0.6, "math"), catalog.manifest, catalog.skill_graph, TODAY)
        assert plan[0].skills == ["ratios", "multiplication"]

    def test_unknown_unit_gives_empty_plan(self, catalog):
        assert generate_plan(place(0.0, "science"), catalog.manifest, catalog.skill_graph, TODAY) == []
