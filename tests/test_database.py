"""
Tests for database.py - Database operations.
"""

import sqlite3
from datetime import date, datetime, timedelta
from unittest.mock import patch

import pytest

from clutch_ratings.database import Database, DatabaseError
from clutch_ratings.models import (
    ClutchScore, DraftGrade, HistoricalSeason, MalformedRecordError, PerformanceRecord,
    PerformanceStatus, PickGrade, Player, PlayerSource, Prediction, PredictionOutcome,
    RatingSnapshot, RoundScore, TeamSeason,
)

from conftest import AS_OF, make_tournament


class TestDatabaseInitialization:
    """Tests for database initialization."""

    def test_database_creates_file(self, temp_db_path):
        """Test that database file is created."""
        Database(db_path=temp_db_path)
        assert temp_db_path.exists()

    def test_database_creates_tables(self, temp_db_path):
        """Test that all required tables are created."""
        Database(db_path=temp_db_path)

        conn = sqlite3.connect(temp_db_path)
        cursor = conn.cursor()
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
        tables = {row[0] for row in cursor.fetchall()}
        conn.close()

        expected_tables = {
            'players', 'courses', 'tournaments', 'performances', 'round_scores',
            'player_course_history', 'historical_seasons', 'team_seasons', 'draft_grades',
            'lineup_snapshots', 'weekly_team_results', 'predictions', 'clutch_scores',
            'clutch_manager_ratings', 'rating_snapshots',
        }
        assert expected_tables.issubset(tables)

    def test_reopen_keeps_data(self, temp_db_path):
        Database(db_path=temp_db_path).save_player(Player(id=1, name="Kept"))
        assert Database(db_path=temp_db_path).get_player(1).name == "Kept"

    @pytest.mark.parametrize("message,expected", [
        ("permission denied", "Permission denied"),
        ("database or disk is full", "Disk full"),
        ("unable to open database file", "Cannot open database"),
        ("something else", "Database error"),
    ])
    def test_operational_errors_translated(self, temp_dir, message, expected):
        """Test DatabaseError raised with a readable message."""
        with patch.object(Database, '_init_db', side_effect=sqlite3.OperationalError(message)):
            with pytest.raises(DatabaseError) as exc_info:
                Database(db_path=temp_dir / "test.db")
            assert expected in str(exc_info.value)


class TestPlayerOperations:
    """Tests for player lookups."""

    def test_lookup_by_external_id(self, db):
        db.save_player(Player(id=1, name="A", datagolf_id="dg-9", pga_tour_id="pga-9", espn_id="espn-9"))
        for source, ext in ((PlayerSource.DATAGOLF, "dg-9"), (PlayerSource.PGA_TOUR, "pga-9"),
                            (PlayerSource.ESPN, "espn-9")):
            player = db.get_player_by_external_id(source, ext)
            assert player.id == 1
            assert player.external_id(source) == ext
        assert db.get_player_by_external_id(PlayerSource.ESPN, "dg-9") is None

    def test_population_filters(self, db):
        db.save_player(Player(id=1, name="Full", events=10, sg_total=1.0, sg_off_tee=0.1,
                              sg_approach=0.1, sg_around_green=0.1, sg_putting=0.1))
        db.save_player(Player(id=2, name="Thin", events=3, sg_total=0.5))
        db.save_player(Player(id=3, name="Retired", is_active=False, events=50, sg_total=2.0))
        db.save_player(Player(id=4, name="Unrated", events=10))

        assert [p.id for p in db.get_population_players()] == [1, 2]
        assert [p.id for p in db.get_population_players(min_events=8, require_skill_profile=True)] == [1]
        assert db.get_active_player_ids() == [1, 2]


class TestPerformanceOperations:
    """Tests for performance and round queries."""

    def test_most_recent_first_with_filters(self, db):
        for tid, weeks in ((1, 3), (2, 2), (3, 1)):
            make_tournament(db, tid, AS_OF - timedelta(weeks=weeks))
        db.save_performance(PerformanceRecord(player_id=1, tournament_id=1, sg_total=1.0))
        db.save_performance(PerformanceRecord(player_id=1, tournament_id=2, sg_total=None))
        db.save_performance(PerformanceRecord(player_id=1, tournament_id=3, sg_total=2.0,
                                              status=PerformanceStatus.DISQUALIFIED))

        all_events = db.get_player_performances(1)
        assert [t.id for _, t in all_events] == [3, 2, 1]
        filtered = db.get_player_performances(
            1, require_sg_total=True, exclude_statuses=(PerformanceStatus.DISQUALIFIED,)
        )
        assert [t.id for _, t in filtered] == [1]
        assert len(db.get_player_performances(1, limit=2)) == 2

    def test_unknown_status_is_malformed(self, db, config):
        make_tournament(db, 1, AS_OF)
        conn = sqlite3.connect(config.db_path)
        conn.execute("INSERT INTO performances (player_id, tournament_id, status) VALUES (1, 1, 'MC?')")
        conn.commit()
        conn.close()
        with pytest.raises(MalformedRecordError):
            db.get_player_performances(1)

    def test_rounds_since(self, db):
        old = make_tournament(db, 1, AS_OF - timedelta(days=800))
        new = make_tournament(db, 2, AS_OF - timedelta(days=10))
        for t in (old, new):
            db.save_round_score(RoundScore(player_id=1, tournament_id=t.id, round_number=1, score=70, sg_total=0.5))
        rounds = db.get_player_rounds(1, AS_OF - timedelta(days=730))
        assert [tr.tournament.id for tr in rounds] == [2]

    def test_invalid_round_number(self):
        with pytest.raises(MalformedRecordError):
            RoundScore(player_id=1, tournament_id=1, round_number=5)


class TestClutchScoreOperations:
    """Tests for ClutchScore upserts."""

    def _score(self, tournament_id, cpi):
        return ClutchScore(player_id=1, tournament_id=tournament_id, formula_version="v1.0",
                           computed_at=AS_OF, cpi=cpi, cpi_components={"events_used": 4})

    def test_upsert_without_tournament_keeps_one_row(self, db, config):
        db.upsert_clutch_score(self._score(None, 1.0))
        db.upsert_clutch_score(self._score(None, 1.5))
        conn = sqlite3.connect(config.db_path)
        rows = conn.execute("SELECT id, cpi FROM clutch_scores").fetchall()
        conn.close()
        assert rows == [(1, 1.5)]

    def test_tournament_and_sweep_rows_are_separate(self, db):
        db.upsert_clutch_score(self._score(None, 1.0))
        db.upsert_clutch_score(self._score(42, 2.0))
        assert db.get_clutch_score(1, None, "v1.0").cpi == 1.0
        assert db.get_clutch_score(1, 42, "v1.0").cpi == 2.0
        assert db.get_clutch_score(1, 42, "v2.0") is None


class TestFantasyRecordOperations:
    """Tests for manager history records."""

    def test_negative_record_rejected(self):
        with pytest.raises(MalformedRecordError):
            HistoricalSeason(user_id=1, season_year=2024, wins=-1)

    def test_draft_grade_roundtrip(self, db):
        db.save_draft_grade(DraftGrade(user_id=1, team_id=2, overall_score=81.5,
                                       pick_grades=[PickGrade(1, 90.0), PickGrade(9, 77.0)]))
        grades = db.get_draft_grades(1)
        assert grades[0].pick_grades == [PickGrade(1, 90.0), PickGrade(9, 77.0)]

    def test_unresolved_predictions_ignored(self, db):
        db.save_prediction(Prediction(user_id=1, outcome=PredictionOutcome.CORRECT, resolved_at=AS_OF))
        conn = sqlite3.connect(db.db_path)
        conn.execute("INSERT INTO predictions (user_id, outcome) VALUES (1, 'PENDING')")
        conn.commit()
        conn.close()
        assert len(db.get_resolved_predictions(1)) == 1

    def test_ratable_users(self, db):
        db.save_historical_season(HistoricalSeason(user_id=3, season_year=2024, wins=1))
        db.save_team_season(TeamSeason(user_id=5, team_id=1, wins=2))
        db.save_prediction(Prediction(user_id=4, outcome=PredictionOutcome.INCORRECT, resolved_at=AS_OF))
        assert db.get_ratable_user_ids() == [3, 4, 5]


class TestSnapshotOperations:
    """Tests for rating snapshots."""

    def test_snapshot_on_or_before(self, db):
        from clutch_ratings.rating import ManagerRatingEngine
        db.save_historical_season(HistoricalSeason(user_id=7, season_year=2024, wins=8, losses=6))
        engine = ManagerRatingEngine(db)
        engine.calculate_rating(7, as_of=datetime(2026, 3, 1))
        engine.calculate_rating(7, as_of=datetime(2026, 4, 1))

        assert db.get_snapshot_on_or_before(7, date(2026, 2, 28)) is None
        assert db.get_snapshot_on_or_before(7, date(2026, 3, 15)).snapshot_date == date(2026, 3, 1)
        assert db.get_snapshot_on_or_before(7, date(2026, 4, 1)).snapshot_date == date(2026, 4, 1)
        assert isinstance(db.get_rating_snapshots(7)[0], RatingSnapshot)
