"""
Station scheduler tests.

Deterministic selection, staggering, slot reservation and the derived
current-heat projection.
"""
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from brewbracket.exceptions import InvalidInputError, NoAvailableStationError
from brewbracket.orm import MatchStatus, StationStatus
from brewbracket.schemas.bracket import RoundTimeConfig
from brewbracket.services.station_scheduler import StationScheduler
from brewbracket.storage import BracketStorage

NOW = datetime(2026, 5, 1, 9, 0, 0)


def station(id, name, minutes, status=StationStatus.AVAILABLE):
    return SimpleNamespace(id=id, name=name, status=status.value, next_available_at=NOW + timedelta(minutes=minutes))


class TestSelectStation:

    def test_earliest_available_wins(self):
        pool = [station(1, "A", 25), station(2, "B", 10), station(3, "C", 20)]
        assert StationScheduler.select_station(pool, ["A", "B", "C"]).name == "B"

    def test_tie_broken_by_rotation(self):
        pool = [station(3, "C", 0), station(1, "A", 0), station(2, "B", 0)]
        assert StationScheduler.select_station(pool, ["B", "A", "C"]).name == "B"

    def test_skips_unavailable(self):
        pool = [station(1, "A", 0, StationStatus.OFFLINE), station(2, "B", 30)]
        assert StationScheduler.select_station(pool, ["A", "B"]).name == "B"

    def test_empty_pool(self):
        with pytest.raises(NoAvailableStationError):
            StationScheduler.select_station([], ["A", "B", "C"])

    def test_transition_table(self):
        assert StationScheduler._is_valid_transition(StationStatus.AVAILABLE, StationStatus.OFFLINE) is True
        assert StationScheduler._is_valid_transition(StationStatus.OFFLINE, StationStatus.BUSY) is False


class TestRoundTimes:

    @pytest.mark.asyncio
    async def test_default_persisted_when_missing(self, db, make_tournament):
        tournament = await make_tournament()

        row = await StationScheduler.get_or_create_round_times(db, tournament.id, 2)

        assert (row.dial_in_minutes, row.cappuccino_minutes, row.espresso_minutes) == (10, 3, 2)
        assert row.total_minutes == 15
        assert await BracketStorage(db).get_round_times(tournament.id, 2) is row

    @pytest.mark.asyncio
    async def test_custom_plan_total(self, db, make_tournament):
        tournament = await make_tournament()

        row = await StationScheduler.set_round_times(
            db, tournament.id, 1, RoundTimeConfig(dial_in_minutes=8, cappuccino_minutes=4, espresso_minutes=3)
        )

        assert row.total_minutes == 15
        again = await StationScheduler.get_or_create_round_times(db, tournament.id, 1)
        assert again.dial_in_minutes == 8

    @pytest.mark.asyncio
    async def test_round_must_be_positive(self, db, make_tournament):
        tournament = await make_tournament()

        with pytest.raises(InvalidInputError):
            await StationScheduler.set_round_times(db, tournament.id, 0, RoundTimeConfig())


class TestReservation:

    @pytest.mark.asyncio
    async def test_stagger_then_reserve(self, db, make_tournament):
        tournament = await make_tournament(create_stations=True)
        stations = await StationScheduler.stagger_stations(db, tournament, now=NOW)

        assert [s.next_available_at for s in stations] == [
            NOW, NOW + timedelta(minutes=10), NOW + timedelta(minutes=20),
        ]

        first = await StationScheduler.reserve_next_slot(db, tournament, 15)
        second = await StationScheduler.reserve_next_slot(db, tournament, 15)
        third = await StationScheduler.reserve_next_slot(db, tournament, 15)
        fourth = await StationScheduler.reserve_next_slot(db, tournament, 15)

        assert (first.station_name, first.start_time) == ("A", NOW)
        assert first.next_available_at == NOW + timedelta(minutes=25)
        assert (second.station_name, second.start_time) == ("B", NOW + timedelta(minutes=10))
        assert (third.station_name, third.start_time) == ("C", NOW + timedelta(minutes=20))
        assert (fourth.station_name, fourth.start_time) == ("A", NOW + timedelta(minutes=25))

    @pytest.mark.asyncio
    async def test_offline_station_not_used(self, db, make_tournament):
        tournament = await make_tournament(create_stations=True)
        stations = await StationScheduler.stagger_stations(db, tournament, now=NOW)
        await StationScheduler.set_station_status(db, stations[0].id, StationStatus.OFFLINE)

        slot = await StationScheduler.reserve_next_slot(db, tournament, 15)

        assert slot.station_name == "B"

    @pytest.mark.asyncio
    async def test_no_station_available(self, db, make_tournament):
        tournament = await make_tournament(create_stations=True, stations=("A",))
        stations = await BracketStorage(db).get_tournament_stations(tournament)
        await StationScheduler.set_station_status(db, stations[0].id, StationStatus.OFFLINE)

        with pytest.raises(NoAvailableStationError):
            await StationScheduler.reserve_next_slot(db, tournament, 15)

    @pytest.mark.asyncio
    async def test_invalid_status_transition(self, db, make_tournament):
        tournament = await make_tournament(create_stations=True)
        stations = await BracketStorage(db).get_tournament_stations(tournament)
        await StationScheduler.set_station_status(db, stations[0].id, StationStatus.OFFLINE)

        with pytest.raises(InvalidInputError):
            await StationScheduler.set_station_status(db, stations[0].id, StationStatus.BUSY)


class TestStationProjection:

    @pytest.mark.asyncio
    async def test_current_match_prefers_running(self, db, make_tournament, make_heat):
        tournament = await make_tournament(names=["A1", "B2", "C3", "D4"], create_stations=True)
        stations = await BracketStorage(db).get_tournament_stations(tournament)
        station_id = stations[0].id
        await make_heat(tournament.id, 1, 101, 102, status=MatchStatus.DONE, winner_id=101, station_id=station_id)
        waiting = await make_heat(tournament.id, 2, 103, 104, station_id=station_id)
        running = await make_heat(tournament.id, 3, 101, 103, round=2, status=MatchStatus.RUNNING, station_id=station_id)

        assert await StationScheduler.get_current_match_id(db, station_id) == running.id

        queue = await StationScheduler.get_station_queue(db, station_id)
        assert sorted(entry.match_id for entry in queue) == sorted([waiting.id, running.id])

    @pytest.mark.asyncio
    async def test_current_match_next_pending(self, db, make_tournament, make_heat):
        tournament = await make_tournament(create_stations=True)
        stations = await BracketStorage(db).get_tournament_stations(tournament)
        pending = await make_heat(tournament.id, 1, 101, 102, station_id=stations[1].id)

        assert await StationScheduler.get_current_match_id(db, stations[1].id) == pending.id
        assert await StationScheduler.get_current_match_id(db, stations[0].id) is None

    @pytest.mark.asyncio
    async def test_queue_earliest_start_first(self, db, make_tournament, make_heat):
        tournament = await make_tournament(names=["A1", "B2", "C3", "D4", "E5", "F6"], create_stations=True)
        storage = BracketStorage(db)
        station_id = (await storage.get_tournament_stations(tournament))[0].id
        late = await make_heat(tournament.id, 1, 101, 102, station_id=station_id)
        early = await make_heat(tournament.id, 2, 103, 104, station_id=station_id)
        unscheduled = await make_heat(tournament.id, 3, 105, 106, station_id=station_id)
        await make_heat(tournament.id, 4, 101, None, status=MatchStatus.DONE, winner_id=101, station_id=station_id)
        await storage.update_match(late.id, start_time=NOW + timedelta(minutes=20))
        await storage.update_match(early.id, start_time=NOW)
        await storage.commit()

        queue = await StationScheduler.get_station_queue(db, station_id)

        assert [entry.match_id for entry in queue] == [early.id, late.id, unscheduled.id]
        assert queue[0].start_time == NOW
        assert queue[2].start_time is None

        first_two = await StationScheduler.get_station_queue(db, station_id, limit=2)
        assert [entry.match_id for entry in first_two] == [early.id, late.id]
