"""
Shared fixtures: in-memory SQLite per test, a recording notifier and
small factories for tournaments and heats.
"""
from typing import AsyncGenerator, Optional, Sequence

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from brewbracket.orm import (
    Base,
    HeatScore,
    MatchStatus,
    Station,
    Tournament,
    TournamentParticipant,
)
from brewbracket.realtime.events import EventNotifier, set_notifier, tournament_channel
from brewbracket.realtime.in_memory_adapter import InMemoryAdapter
from brewbracket.storage import BracketStorage

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# user_id of the i-th participant created by make_tournament
FIRST_USER_ID = 101


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def adapter() -> AsyncGenerator[InMemoryAdapter, None]:
    adapter = InMemoryAdapter()
    yield adapter
    await adapter.close()


@pytest.fixture
def notifier(adapter):
    """Notifier wired to the in-memory adapter, also installed process-wide."""
    notifier = EventNotifier(adapter=adapter, enabled=True)
    set_notifier(notifier)
    yield notifier
    set_notifier(None)


@pytest.fixture
def events(adapter):
    """Names of events published for a tournament, oldest first."""
    def _events(tournament_id: int):
        return [m["event"] for m in adapter.history(tournament_channel(tournament_id))]
    return _events


@pytest.fixture
def make_tournament(db):
    """
    Factory: tournament with participants user_id 101, 102, ... in name
    order, seeded 1..N unless seeded=False.
    """
    async def _make(
        names: Sequence[str] = ("Alice", "Bruno"),
        seeded: bool = True,
        cup_codes: Optional[Sequence[str]] = None,
        total_rounds: Optional[int] = None,
        current_round: int = 1,
        judge_role_model: str = "SPLIT",
        stations: Sequence[str] = ("A", "B", "C"),
        create_stations: bool = False,
    ) -> Tournament:
        tournament = Tournament(
            name="Latte Art Throwdown",
            total_rounds=total_rounds,
            current_round=current_round,
            enabled_stations=list(stations),
            judge_role_model=judge_role_model,
        )
        db.add(tournament)
        await db.flush()

        for index, name in enumerate(names):
            db.add(TournamentParticipant(
                tournament_id=tournament.id,
                user_id=FIRST_USER_ID + index,
                display_name=name,
                seed=index + 1 if seeded else None,
                cup_code=cup_codes[index] if cup_codes else None,
            ))
        if create_stations:
            for name in stations:
                db.add(Station(tournament_id=tournament.id, name=name))
        await db.commit()
        return tournament

    return _make


@pytest.fixture
def make_heat(db):
    """Factory: a heat row created directly through storage."""
    async def _make(
        tournament_id: int,
        heat_number: int,
        competitor1_id: int,
        competitor2_id: Optional[int],
        round: int = 1,
        status: MatchStatus = MatchStatus.PENDING,
        winner_id: Optional[int] = None,
        station_id: Optional[int] = None,
    ):
        storage = BracketStorage(db)
        match = await storage.create_match(
            tournament_id=tournament_id,
            round=round,
            heat_number=heat_number,
            station_id=station_id,
            competitor1_id=competitor1_id,
            competitor2_id=competitor2_id,
            status=status.value,
            winner_id=winner_id,
        )
        await storage.commit()
        return match

    return _make


@pytest.fixture
def fail_score_writes(monkeypatch):
    """
    Make the cached-score write of the given heats hit a NOT NULL
    violation inside the database.
    """
    original = BracketStorage.delete_heat_scores_for_match

    def _fail(*match_ids: int) -> None:
        async def delete_heat_scores_for_match(self, match_id):
            await original(self, match_id)
            if match_id in match_ids:
                self.db.add(HeatScore(match_id=match_id, competitor_id=None, score=0))
                await self.db.flush()

        monkeypatch.setattr(BracketStorage, "delete_heat_scores_for_match", delete_heat_scores_for_match)

    return _fail
