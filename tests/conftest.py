"""Global test fixtures."""

import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from campusmatch.api.deps import get_db, get_image_scorer, get_notifier, get_text_scorer  # noqa: E402
from campusmatch.api.main import app  # noqa: E402
from campusmatch.api.rate_limit import RateLimiter  # noqa: E402
from campusmatch.db.schema import Base  # noqa: E402
from campusmatch.models.domain import Thresholds, Weights  # noqa: E402
from campusmatch.repos.config_repo import ConfigurationRepository  # noqa: E402
from campusmatch.repos.item_repo import ItemRepository  # noqa: E402
from campusmatch.services.feature_builder import FeatureVectorBuilder  # noqa: E402
from campusmatch.services.image_similarity import BoundedImageScorer, NullImageSimilarity  # noqa: E402
from campusmatch.services.notifications import RecordingNotifier  # noqa: E402
from campusmatch.services.text_similarity import TextSimilarityScorer  # noqa: E402

T0 = datetime(2026, 3, 2, 10, 0, 0)
CAMPUS = (40.0, -75.0)


@pytest.fixture(autouse=True)
def _relax_rate_limit():
    # Ensure tests are not impacted by rate limiting unless explicitly set.
    app.state.rate_limiter = RateLimiter(limit_per_min=10_000, time_fn=lambda: 0)
    yield


@pytest.fixture
def session():
    engine = create_engine("duckdb:///:memory:")
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    s = Session()
    try:
        yield s
    finally:
        s.close()
        engine.dispose()


@pytest.fixture
def builder():
    return FeatureVectorBuilder(TextSimilarityScorer(), BoundedImageScorer(NullImageSimilarity()))


def set_config(session, auto=85.0, partial=50.0, text=30.0, image=35.0, location=20.0, time=15.0, actor="admin-1"):
    return ConfigurationRepository(session).create_configuration(
        Thresholds(auto_approve=auto, partial_match=partial),
        Weights(text=text, image=image, location=location, time=time),
        updated_by=actor,
    )


def add_item(session, submission_type, description, category="wallet", **fields):
    fields.setdefault("latitude", CAMPUS[0])
    fields.setdefault("longitude", CAMPUS[1])
    fields.setdefault("lost_or_found_at", T0)
    return ItemRepository(session).add(submission_type, description, category, **fields)


@dataclass
class ApiHarness:
    client: TestClient
    Session: sessionmaker
    notifier: RecordingNotifier


@pytest.fixture
def api(tmp_path):
    """TestClient wired to a throwaway DuckDB file and in-process collaborators."""
    engine = create_engine(f"duckdb:///{tmp_path / 'api.duckdb'}")
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    notifier = RecordingNotifier()
    text_scorer = TextSimilarityScorer()
    image_scorer = BoundedImageScorer(NullImageSimilarity())

    def _db_override():
        session = Session()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _db_override
    app.dependency_overrides[get_text_scorer] = lambda: text_scorer
    app.dependency_overrides[get_image_scorer] = lambda: image_scorer
    app.dependency_overrides[get_notifier] = lambda: notifier
    try:
        yield ApiHarness(TestClient(app), Session, notifier)
    finally:
        app.dependency_overrides.clear()
        image_scorer.close()
        engine.dispose()
