"""
Placement MCP Server.
Exposes tools for running diagnostics, generating plans, recording lesson results
and building today's playlist.
"""

import os
import sys

# Ensure sibling modules are importable
sys.path.insert(0, os.path.dirname(__file__))

from typing import Optional

from fastmcp import FastMCP

import placement_service as service
from learner_model import load_learner

mcp = FastMCP("AdaptivePlacement")


def _error(exc: Exception) -> dict:
    return {"error": str(exc)}


@mcp.tool()
def start_diagnostic(learner_id: str, subject: str, mood: int = 3) -> dict:
    """
    Start a placement diagnostic for a subject.
    mood is the learner's self-reported mood (1-5) before starting.
    Returns the first item to present (without its answer).
    """
    try:
        return service.start_diagnostic(learner_id, subject, mood)
    except ValueError as e:
        return _error(e)


@mcp.tool()
def get_next_item(learner_id: str, subject: str) -> dict:
    """Return the item to present next, or the placement if the bank ran out."""
    try:
        return service.next_question(learner_id, subject)
    except (LookupError, ValueError) as e:
        return _error(e)


@mcp.tool()
def submit_response(learner_id: str, subject: str, item_id: str, response: str) -> dict:
    """
    Record the learner's response to an item.
    Returns whether it was correct, the updated estimate, whether a mindful
    break is due, and either the next item or the final placement.
    """
    try:
        return service.submit_response(learner_id, subject, item_id, response)
    except (LookupError, ValueError) as e:
        return _error(e)


@mcp.tool()
def record_mood(learner_id: str, subject: str, mood: int) -> dict:
    """Update the learner's mood (1-5). A low mood can trigger the session's break."""
    try:
        return service.set_mood(learner_id, subject, mood)
    except (LookupError, ValueError) as e:
        return _error(e)


@mcp.tool()
def dismiss_break(learner_id: str, subject: str) -> dict:
    """Clear the break flag after the learner finished or skipped the break."""
    try:
        return service.end_break(learner_id, subject)
    except (LookupError, ValueError) as e:
        return _error(e)


@mcp.tool()
def finish_diagnostic(learner_id: str, subject: str) -> dict:
    """End the diagnostic early and place the learner from the evidence so far."""
    try:
        return service.finish_diagnostic(learner_id, subject)
    except (LookupError, ValueError) as e:
        return _error(e)


@mcp.tool()
def generate_plan(learner_id: str, subject: str) -> dict:
    """Generate a learning plan from the learner's latest placement in the subject."""
    try:
        return service.generate_learning_plan(learner_id, subject)
    except ValueError as e:
        return _error(e)


@mcp.tool()
def record_lesson_result(learner_id: str, subject: str, lesson_id: str, correct: bool) -> dict:
    """
    Record a completed lesson.
    Updates mastery of each skill the lesson covers and schedules a spaced review.
    """
    try:
        return service.record_lesson_result(learner_id, subject, lesson_id, correct)
    except ValueError as e:
        return _error(e)


@mcp.tool()
def get_today_playlist(
    learner_id: str,
    subject: str,
    interleave: bool = False,
    limit: Optional[int] = None,
) -> dict:
    """
    Build today's playlist: due lessons plus spaced reviews, ordered by priority.
    With interleave=True new lessons and reviews alternate.
    """
    try:
        return service.todays_playlist(learner_id, subject, interleave, limit)
    except ValueError as e:
        return _error(e)


@mcp.tool()
def get_mastery(learner_id: str, subject: str) -> dict:
    """Per-skill mastery records, summary and skills due for review."""
    try:
        return service.mastery_overview(learner_id, subject)
    except ValueError as e:
        return _error(e)


@mcp.tool()
def get_learner_profile(learner_id: str) -> dict:
    """Return the full learner profile as a dictionary."""
    profile = load_learner(learner_id)
    return profile.model_dump(mode="json")


if __name__ == "__main__":
    mcp.run()
