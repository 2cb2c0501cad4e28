"""
Shared pytest fixtures for Clutch Ratings tests.
"""

import os
import sys
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import patch

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from clutch_ratings.config import Config
from clutch_ratings.database import Database
from clutch_ratings.models import (
    Player, Tournament, PerformanceRecord, RoundScore, HistoricalSeason,
)


AS_OF = datetime(2026, 4, 13, 12, 0, 0)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db_path(temp_dir):
    """Create a temporary database path."""
    return temp_dir / "test_data.db"


@pytest.fixture
def clean_env(temp_db_path):
    """Environment with every CLUTCH_ override cleared and the db in a temp dir."""
    with patch.dict(os.environ, {
        "CLUTCH_DB_PATH": str(temp_db_path),
        "CLUTCH_FORMULA_VERSION": "",
        "CLUTCH_CPI_DECAY_RATE": "",
        "CLUTCH_PRESSURE_SCALING": "",
        "CLUTCH_CONFIDENCE_SOFTENER": "",
        "CLUTCH_LOG_LEVEL": "",
    }, clear=False):
        yield


@pytest.fixture
def config(clean_env):
    """Default configuration pointed at the temporary database."""
    return Config()


@pytest.fixture
def db(config):
    """Fresh database in a temporary directory."""
    return Database(config.db_path)


@pytest.fixture
def as_of():
    return AS_OF


def make_tournament(db, tournament_id, start_date, **flags):
    t = Tournament(id=tournament_id, name=f"Event {tournament_id}", start_date=start_date, **flags)
    db.save_tournament(t)
    return t


def seed_population(db, sg_totals, start_id=1000, owgr_rank=None):
    """Active players used only as the normalization population."""
    for offset, sg in enumerate(sg_totals):
        db.save_player(Player(
            id=start_id + offset, name=f"Pop {offset}", owgr_rank=owgr_rank,
            events=20, sg_total=sg,
        ))


@pytest.fixture
def cpi_fixture(db):
    """
    One player with four full-SG events played 0, 1, 2 and 3 weeks before
    AS_OF, a population with mean 1.0 and sample stddev 1.0, and unranked
    fields (so field strength is the neutral 0.5).
    """
    seed_population(db, [0.0, 1.0, 2.0])
    db.save_player(Player(id=1, name="Fixture Player", events=4, sg_total=None, datagolf_id="dg-1"))
    events = [
        # (tournament id, weeks before, off_tee, approach, around_green, putting, total)
        (11, 0, 1.0, 1.0, 0.0, 0.0, 2.0),
        (12, 1, 0.5, 0.5, 0.5, 0.5, 2.0),
        (13, 2, 0.0, 0.0, 0.0, 1.0, 1.0),
        (14, 3, -1.0, 0.0, 0.0, 0.0, -1.0),
    ]
    for tid, weeks, ott, app, arg, putt, total in events:
        make_tournament(db, tid, AS_OF - timedelta(weeks=weeks))
        db.save_performance(PerformanceRecord(
            player_id=1, tournament_id=tid, sg_total=total, sg_off_tee=ott, sg_approach=app,
            sg_around_green=arg, sg_putting=putt, round1=70, round2=70, round3=70, round4=70,
        ))
    return db


@pytest.fixture
def three_season_manager(db):
    """A manager with exactly three imported seasons and nothing else."""
    for year, wins, losses, pf in ((2022, 8, 6, 1400.0), (2023, 9, 5, 1500.0), (2024, 7, 7, 1350.0)):
        db.save_historical_season(HistoricalSeason(
            user_id=7, season_year=year, wins=wins, losses=losses, points_for=pf,
        ))
    return db


def seed_rounds(db, player_id, tournament, rounds):
    """Save (round_number, score, sg_total) tuples for one player in one tournament."""
    for number, score, sg in rounds:
        db.save_round_score(RoundScore(
            player_id=player_id, tournament_id=tournament.id, round_number=number, score=score, sg_total=sg,
        ))
