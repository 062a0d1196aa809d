"""
Content access: diagnostic item banks and the curriculum manifest.
Reads JSON from the content directory; malformed records are dropped, never raised.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import TypeAdapter, ValidationError

from learner_model import (
    REVIEW_PREFIX,
    Item,
    LessonMeta,
    Manifest,
    PlanItem,
    SkillGraph,
    Unit,
    base_lesson_id,
)

PROJECT_DIR = Path(__file__).resolve().parent
CONTENT_DIR = Path(os.getenv("PLACEMENT_CONTENT_DIR", PROJECT_DIR / "content"))

BANK_VERSION = "v1"
REVIEW_MINUTES = 5

# Display defaults for lessons missing from the manifest
FALLBACK_META = {
    "title": "Unknown Lesson",
    "minutes": 10,
    "standards": [],
    "difficulty": 0.0,
}

logger = logging.getLogger(__name__)

_item_adapter = TypeAdapter(Item)


def _read_json(path: Path):
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        logger.error("Content file not found: %s", path)
    except json.JSONDecodeError as exc:
        logger.error("Invalid JSON in %s: %s", path, exc)
    return None


# ---------------------------------------------------------------------------
# Item bank provider
# ---------------------------------------------------------------------------

def parse_item(record, subject: str) -> Optional[Item]:
    """Validate one raw bank record; None if it is unusable for `subject`."""
    if not isinstance(record, dict):
        return None
    data = dict(record)
    data.setdefault("type", "mcq")
    try:
        item = _item_adapter.validate_python(data)
    except ValidationError:
        return None
    if item.subject != subject:
        return None
    return item


def load_item_bank(subject: str, content_dir: Optional[Path] = None) -> list[Item]:
    """
    Load and validate the diagnostic bank for a subject.
    Returns an empty list if the bank is missing or not a JSON array.
    """
    path = (content_dir or CONTENT_DIR) / "diagnostic" / f"{subject}-{BANK_VERSION}.json"
    raw = _read_json(path)
    if raw is None:
        return []
    if not isinstance(raw, list):
        logger.error("Invalid %s bank at %s: expected a list", subject, path)
        return []

    items: list[Item] = []
    seen: set[str] = set()
    for record in raw:
        item = parse_item(record, subject)
        if item is None or item.id in seen:
            continue
        seen.add(item.id)
        items.append(item)

    dropped = len(raw) - len(items)
    if dropped:
        logger.warning("Dropped %d malformed %s bank records", dropped, subject)
    logger.info("Loaded %d diagnostic items for %s", len(items), subject)
    return items


# ---------------------------------------------------------------------------
# Content catalog
# ---------------------------------------------------------------------------

class ContentCatalog:
    """Read-only view over manifest.json and skills.json."""

    def __init__(self, manifest: Manifest, skill_graph: SkillGraph):
        self.manifest = manifest
        self.skill_graph = skill_graph
        self._lessons: dict[str, LessonMeta] = {}
        for grades in manifest.values():
            for units in grades.values():
                for unit in units.values():
                    for lesson in unit.lessons:
                        self._lessons.setdefault(lesson.id, lesson)

    @classmethod
    def load(cls, content_dir: Optional[Path] = None) -> "ContentCatalog":
        base = content_dir or CONTENT_DIR
        manifest: Manifest = {}
        raw_manifest = _read_json(base / "manifest.json")
        if isinstance(raw_manifest, dict):
            for subject, grades in raw_manifest.items():
                if not isinstance(grades, dict):
                    continue
                manifest[subject] = {}
                for grade, units in grades.items():
                    if not isinstance(units, dict):
                        continue
                    manifest[subject][grade] = {}
                    for slug, unit in units.items():
                        try:
                            manifest[subject][grade][slug] = Unit.model_validate(unit)
                        except ValidationError:
                            logger.warning("Skipping malformed unit %s/%s/%s", subject, grade, slug)

        skill_graph: SkillGraph = {}
        raw_skills = _read_json(base / "skills.json")
        if isinstance(raw_skills, dict):
            skill_graph = {
                k: [s for s in v if isinstance(s, str)]
                for k, v in raw_skills.items()
                if isinstance(v, list)
            }

        return cls(manifest, skill_graph)

    def find_lesson_meta(self, lesson_id: str) -> Optional[LessonMeta]:
        return self._lessons.get(lesson_id)

    def decorate(self, item: PlanItem) -> dict:
        """Plan item plus display metadata, with documented fallbacks."""
        out = item.model_dump(mode="json")
        is_spaced_review = item.lesson_id.startswith(REVIEW_PREFIX)
        lesson_id = base_lesson_id(item.lesson_id)

        meta = self.find_lesson_meta(lesson_id)
        if meta is None:
            out.update(FALLBACK_META, standards=[])
            if is_spaced_review:
                out["title"] = "Review: " + lesson_id.replace("-", " ").title()
                out["minutes"] = REVIEW_MINUTES
            return out

        out.update({
            "title": meta.title,
            "minutes": meta.minutes,
            "standards": list(meta.standards),
            "difficulty": meta.difficulty,
        })
        if is_spaced_review:
            out["title"] = f"Review: {meta.title}"
            out["minutes"] = REVIEW_MINUTES
        return out
