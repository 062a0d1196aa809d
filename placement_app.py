"""
Adaptive Placement Web API: FastAPI backend.

REST endpoints over the placement service: diagnostics, plan generation,
lesson results and today's playlist.

    python3 placement_app.py
    open http://localhost:8000/docs
"""

import logging
import os
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import placement_service as service
from content_catalog import CONTENT_DIR
from learner_model import DATA_DIR, list_learner_ids, load_learner

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

HOST = os.getenv("PLACEMENT_HOST", "127.0.0.1")
PORT = int(os.getenv("PLACEMENT_PORT", "8000"))

logger = logging.getLogger("placement_app")

# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(title="Adaptive Placement")


class StartRequest(BaseModel):
    mood: int = Field(default=3, ge=1, le=5)


class AnswerRequest(BaseModel):
    item_id: str
    response: str = ""


class MoodRequest(BaseModel):
    mood: int


class LessonResultRequest(BaseModel):
    correct: bool


def _respond(fn, *args, **kwargs) -> JSONResponse:
    """Run a service call, mapping lookup failures to 404 and bad input to 400."""
    try:
        return JSONResponse(fn(*args, **kwargs))
    except LookupError as e:
        return JSONResponse({"error": str(e)}, status_code=404)
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=400)


# ---------------------------------------------------------------------------
# Learners
# ---------------------------------------------------------------------------

@app.get("/api/learners")
async def list_learners():
    """List all known learners with their placement levels."""
    result = []
    for learner_id in list_learner_ids():
        overview = service.learner_overview(learner_id)
        result.append({
            "learner_id": overview["learner_id"],
            "levels": {
                s: {"grade": lvl["grade"], "unit": lvl["unit"], "label": lvl["level_label"]}
                for s, lvl in overview["levels"].items()
            },
        })
    return JSONResponse(result)


@app.get("/api/profile/{learner_id}")
async def get_profile(learner_id: str):
    """Return full learner profile."""
    return JSONResponse(load_learner(learner_id).model_dump(mode="json"))


# ---------------------------------------------------------------------------
# Diagnostic
# ---------------------------------------------------------------------------

@app.post("/api/diagnostic/{learner_id}/{subject}/start")
async def start_diagnostic(learner_id: str, subject: str, body: StartRequest):
    return _respond(service.start_diagnostic, learner_id, subject, body.mood)


@app.get("/api/diagnostic/{learner_id}/{subject}/next")
async def next_item(learner_id: str, subject: str):
    return _respond(service.next_question, learner_id, subject)


@app.post("/api/diagnostic/{learner_id}/{subject}/answer")
async def answer(learner_id: str, subject: str, body: AnswerRequest):
    return _respond(service.submit_response, learner_id, subject, body.item_id, body.response)


@app.post("/api/diagnostic/{learner_id}/{subject}/mood")
async def mood(learner_id: str, subject: str, body: MoodRequest):
    return _respond(service.set_mood, learner_id, subject, body.mood)


@app.post("/api/diagnostic/{learner_id}/{subject}/break/dismiss")
async def dismiss_break(learner_id: str, subject: str):
    return _respond(service.end_break, learner_id, subject)


@app.post("/api/diagnostic/{learner_id}/{subject}/finish")
async def finish(learner_id: str, subject: str):
    return _respond(service.finish_diagnostic, learner_id, subject)


# ---------------------------------------------------------------------------
# Plan and mastery
# ---------------------------------------------------------------------------

@app.post("/api/plan/{learner_id}/{subject}/generate")
async def generate_plan(learner_id: str, subject: str):
    return _respond(service.generate_learning_plan, learner_id, subject)


@app.post("/api/plan/{learner_id}/{subject}/lessons/{lesson_id}/complete")
async def complete_lesson(learner_id: str, subject: str, lesson_id: str, body: LessonResultRequest):
    return _respond(service.record_lesson_result, learner_id, subject, lesson_id, body.correct)


@app.get("/api/plan/{learner_id}/{subject}/today")
async def today(
    learner_id: str,
    subject: str,
    interleave: bool = False,
    limit: Optional[int] = None,
):
    return _respond(service.todays_playlist, learner_id, subject, interleave, limit)


@app.get("/api/mastery/{learner_id}/{subject}")
async def mastery(learner_id: str, subject: str):
    return _respond(service.mastery_overview, learner_id, subject)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)

    if not (CONTENT_DIR / "manifest.json").exists():
        logger.warning(
            f"No curriculum manifest at {CONTENT_DIR}. "
            f"Plans will be empty until PLACEMENT_CONTENT_DIR points at content."
        )
    logger.info(f"Content: {CONTENT_DIR}")
    logger.info(f"Learner data: {DATA_DIR}")

    uvicorn.run(app, host=HOST, port=PORT)
