from pathlib import Path

import pytest

import content_catalog
import learner_model
from content_catalog import ContentCatalog

REPO_CONTENT = Path(__file__).resolve().parent.parent / "content"


@pytest.fixture
def learner_store(tmp_path, monkeypatch):
    """Point learner persistence at a temp dir and content at the bundled samples."""
    store = tmp_path / "learners"
    monkeypatch.setattr(learner_model, "DATA_DIR", store)
    monkeypatch.setattr(content_catalog, "CONTENT_DIR", REPO_CONTENT)
    return store


@pytest.fixture
def catalog() -> ContentCatalog:
    return ContentCatalog.load(REPO_CONTENT)


@pytest.fixture
def repo_content() -> Path:
    return REPO_CONTENT
