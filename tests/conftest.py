"""Shared fixtures: a throwaway SQLite knowledge store and record builders."""

import itertools
from datetime import datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from insight_miner.db.models import Base, Insight, MarketplaceListing, Observation
from insight_miner.db.session import build_session_factory
from insight_miner.utils.time import utcnow

# A Monday, so week offsets land on clean ISO week boundaries
BASE_TIME = datetime(2024, 3, 4, 12, 0, 0)


@pytest.fixture
async def session_factory(tmp_path):
    """Session factory over a fresh file-backed SQLite database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'insights.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield build_session_factory(engine)

    await engine.dispose()


@pytest.fixture
def make_observation():
    """Build unsaved observations with unique ids."""
    ids = itertools.count(1)

    def _make(
        phrase: str = "World's Best Dad",
        niche: str = "dad",
        week: int = 0,
        created_at: datetime | None = None,
        **kwargs,
    ) -> Observation:
        kwargs.setdefault("approved", False)
        kwargs.setdefault("sales", 0)
        kwargs.setdefault("views", 10)
        kwargs.setdefault("is_test", False)
        return Observation(
            id=next(ids),
            phrase=phrase,
            niche=niche,
            created_at=created_at or BASE_TIME + timedelta(weeks=week),
            **kwargs,
        )

    return _make


@pytest.fixture
def store_observations(session_factory):
    """Persist observations created relative to the current time."""

    async def _store(records: list[dict]) -> list[int]:
        now = utcnow()
        rows = []
        for values in records:
            values = dict(values)
            weeks_ago = values.pop("weeks_ago", 0)
            values.setdefault("phrase", "World's Best Dad")
            values.setdefault("niche", "dad")
            values.setdefault("views", 10)
            values.setdefault("created_at", now - timedelta(days=1, weeks=weeks_ago))
            rows.append(Observation(**values))

        async with session_factory() as db:
            async with db.begin():
                db.add_all(rows)
        return [r.id for r in rows]

    return _store


@pytest.fixture
def make_listing():
    """Build unsaved marketplace listings with every column populated."""
    ids = itertools.count(1)

    def _make(title: str = "Funny Dad Shirt", niche: str = "dad", **kwargs) -> MarketplaceListing:
        n = next(ids)
        values = {
            "source": "amazon",
            "external_id": f"B{n:09d}",
            "price": 19.99,
            "review_count": 0,
            "avg_rating": None,
            "sales_rank": None,
            "design_style": None,
            "is_merch_program": False,
            "primary_keywords": [],
            "rank_spike_detected": False,
            "scrape_count": 1,
        }
        values.update(kwargs)
        return MarketplaceListing(title=title, niche=niche, **values)

    return _make


@pytest.fixture
def add_insight(session_factory):
    """Insert an insight row directly, bypassing the materializer."""

    async def _add(**kwargs) -> int:
        now = utcnow()
        values = {
            "insight_type": "phrase-pattern",
            "pattern_key": "World's {adj} {noun}",
            "category": "evergreen",
            "title": "test insight",
            "description": "test insight",
            "pattern": {},
            "sample_size": 12,
            "confidence": 0.85,
            "success_rate": 0.8,
            "niches": [],
            "source_observation_ids": [],
            "times_validated": 1,
            "last_validated": now,
            "still_relevant": True,
            "created_at": now,
            "updated_at": now,
        }
        values.update(kwargs)
        insight = Insight(**values)
        async with session_factory() as db:
            async with db.begin():
                db.add(insight)
        return insight.id

    return _add
