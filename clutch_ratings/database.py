"""
SQLite database layer for Clutch Ratings.
Holds the historical records the engines read and the ratings they write.
"""

import sqlite3
import json
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple
from contextlib import contextmanager

from .models import (
    Player, PlayerSource, Course, Tournament, PerformanceRecord, PerformanceStatus,
    RoundScore, TournamentRound, PlayerCourseHistory, ClutchScore,
    HistoricalSeason, TeamSeason, DraftGrade, PickGrade, LineupSnapshot,
    WeeklyTeamResult, Prediction, PredictionOutcome, ManagerRating,
    RatingSnapshot, Component, MalformedRecordError,
)
from .config import get_config

logger = logging.getLogger(__name__)

PLAYER_ID_COLUMNS: Dict[PlayerSource, str] = {
    PlayerSource.DATAGOLF: "datagolf_id",
    PlayerSource.PGA_TOUR: "pga_tour_id",
    PlayerSource.ESPN: "espn_id",
}

TournamentPerformance = Tuple[PerformanceRecord, Tournament]


class DatabaseError(Exception):
    """Raised when the database cannot be opened or initialized."""


def _dumps(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, sort_keys=True)


def _loads(raw: Optional[str]) -> Any:
    if not raw:
        return None
    return json.loads(raw)


def _bool(value: Optional[bool]) -> Optional[int]:
    if value is None:
        return None
    return 1 if value else 0


class Database:
    """SQLite database manager."""

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize database connection."""
        self.db_path = db_path or get_config().db_path
        try:
            self._init_db()
        except sqlite3.OperationalError as e:
            message = str(e).lower()
            if "permission" in message or "readonly" in message:
                raise DatabaseError(f"Permission denied: {self.db_path}") from e
            if "disk" in message and "full" in message:
                raise DatabaseError(f"Disk full while writing {self.db_path}") from e
            if "unable to open" in message:
                raise DatabaseError(f"Cannot open database at {self.db_path}") from e
            raise DatabaseError(f"Database error: {e}") from e
        logger.debug(f"Database ready at {self.db_path}")

    @contextmanager
    def _connection(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self):
        """Initialize database schema."""
        with self._connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS players (
                    id INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    is_active INTEGER DEFAULT 1,
                    owgr_rank INTEGER,
                    events INTEGER DEFAULT 0,
                    sg_total REAL,
                    sg_off_tee REAL,
                    sg_approach REAL,
                    sg_around_green REAL,
                    sg_putting REAL,
                    datagolf_id TEXT UNIQUE,
                    pga_tour_id TEXT UNIQUE,
                    espn_id TEXT UNIQUE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS courses (
                    id INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    driving_importance REAL,
                    approach_importance REAL,
                    around_green_importance REAL,
                    putting_importance REAL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS tournaments (
                    id INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    start_date TEXT NOT NULL,
                    course_id INTEGER REFERENCES courses(id),
                    is_major INTEGER DEFAULT 0,
                    is_signature INTEGER DEFAULT 0,
                    is_playoff INTEGER DEFAULT 0,
                    field_size INTEGER DEFAULT 144
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS performances (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    player_id INTEGER NOT NULL,
                    tournament_id INTEGER NOT NULL,
                    sg_total REAL,
                    sg_off_tee REAL,
                    sg_approach REAL,
                    sg_around_green REAL,
                    sg_putting REAL,
                    round1 INTEGER,
                    round2 INTEGER,
                    round3 INTEGER,
                    round4 INTEGER,
                    position INTEGER,
                    status TEXT DEFAULT 'active',
                    UNIQUE(player_id, tournament_id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS round_scores (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    player_id INTEGER NOT NULL,
                    tournament_id INTEGER NOT NULL,
                    round_number INTEGER NOT NULL,
                    score INTEGER,
                    sg_total REAL,
                    UNIQUE(player_id, tournament_id, round_number)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS player_course_history (
                    player_id INTEGER NOT NULL,
                    course_id INTEGER NOT NULL,
                    rounds INTEGER DEFAULT 0,
                    sg_total REAL,
                    PRIMARY KEY(player_id, course_id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS historical_seasons (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    season_year INTEGER NOT NULL,
                    wins INTEGER DEFAULT 0,
                    losses INTEGER DEFAULT 0,
                    ties INTEGER DEFAULT 0,
                    points_for REAL,
                    points_against REAL,
                    playoff_result TEXT,
                    league_id INTEGER
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS team_seasons (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    team_id INTEGER NOT NULL,
                    wins INTEGER DEFAULT 0,
                    losses INTEGER DEFAULT 0,
                    ties INTEGER DEFAULT 0,
                    total_points REAL,
                    is_champion INTEGER,
                    final_rank INTEGER
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS draft_grades (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    team_id INTEGER NOT NULL,
                    overall_score REAL NOT NULL,
                    pick_grades_json TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS lineup_snapshots (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    team_id INTEGER NOT NULL,
                    week INTEGER NOT NULL,
                    active_points REAL,
                    bench_points REAL,
                    optimal_points REAL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS weekly_team_results (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    team_id INTEGER NOT NULL,
                    week INTEGER NOT NULL,
                    total_points REAL DEFAULT 0,
                    optimal_points REAL,
                    points_left_on_bench REAL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS predictions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    outcome TEXT,
                    resolved_at TEXT,
                    created_at TEXT
                )
            """)

            # Computed player metrics. tournament_key is '' for weekly sweeps
            # so the natural key stays unique (SQLite treats NULLs as distinct).
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS clutch_scores (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    player_id INTEGER NOT NULL,
                    tournament_id INTEGER,
                    tournament_key TEXT NOT NULL,
                    formula_version TEXT NOT NULL,
                    cpi REAL,
                    cpi_components TEXT,
                    form_score REAL,
                    form_components TEXT,
                    pressure_score REAL,
                    pressure_components TEXT,
                    course_fit_score REAL,
                    fit_components TEXT,
                    inputs_json TEXT,
                    computed_at TEXT NOT NULL,
                    UNIQUE(player_id, tournament_key, formula_version)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS clutch_manager_ratings (
                    user_id INTEGER PRIMARY KEY,
                    version INTEGER NOT NULL,
                    overall_rating INTEGER,
                    confidence INTEGER DEFAULT 0,
                    tier TEXT NOT NULL,
                    trend TEXT NOT NULL,
                    win_rate_score INTEGER,
                    win_rate_confidence INTEGER DEFAULT 0,
                    draft_iq_score INTEGER,
                    draft_iq_confidence INTEGER DEFAULT 0,
                    roster_mgmt_score INTEGER,
                    roster_mgmt_confidence INTEGER DEFAULT 0,
                    predictions_score INTEGER,
                    predictions_confidence INTEGER DEFAULT 0,
                    trade_acumen_score INTEGER,
                    trade_acumen_confidence INTEGER DEFAULT 0,
                    championships_score INTEGER,
                    championships_confidence INTEGER DEFAULT 0,
                    consistency_score INTEGER,
                    consistency_confidence INTEGER DEFAULT 0,
                    breakdown_json TEXT,
                    data_source_summary TEXT,
                    total_graded_calls INTEGER DEFAULT 0,
                    computation_inputs_json TEXT,
                    computed_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS rating_snapshots (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    snapshot_date TEXT NOT NULL,
                    overall INTEGER NOT NULL,
                    components_json TEXT,
                    UNIQUE(user_id, snapshot_date)
                )
            """)

    # =========================================================================
    # Player / course / tournament operations
    # =========================================================================

    def save_player(self, player: Player):
        with self._connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO players
                (id, name, is_active, owgr_rank, events, sg_total, sg_off_tee, sg_approach,
                 sg_around_green, sg_putting, datagolf_id, pga_tour_id, espn_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                player.id, player.name, _bool(player.is_active), player.owgr_rank, player.events,
                player.sg_total, player.sg_off_tee, player.sg_approach, player.sg_around_green,
                player.sg_putting, player.datagolf_id, player.pga_tour_id, player.espn_id,
            ))

    def get_player(self, player_id: int) -> Optional[Player]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM players WHERE id = ?", (player_id,)).fetchone()
            return self._row_to_player(row) if row else None

    def get_player_by_external_id(self, source: PlayerSource, external_id: str) -> Optional[Player]:
        """Find a player by the id a data source assigned to them."""
        column = PLAYER_ID_COLUMNS[source]
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT * FROM players WHERE {column} = ?", (external_id,)
            ).fetchone()
            return self._row_to_player(row) if row else None

    def get_population_players(self, min_events: int = 0, require_skill_profile: bool = False) -> List[Player]:
        """Active players with strokes-gained data, for normalization."""
        query = "SELECT * FROM players WHERE is_active = 1 AND sg_total IS NOT NULL AND events >= ?"
        if require_skill_profile:
            query += (
                " AND sg_off_tee IS NOT NULL AND sg_approach IS NOT NULL"
                " AND sg_around_green IS NOT NULL AND sg_putting IS NOT NULL"
            )
        with self._connection() as conn:
            rows = conn.execute(query + " ORDER BY id", (min_events,)).fetchall()
            return [self._row_to_player(row) for row in rows]

    def get_active_player_ids(self) -> List[int]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT id FROM players WHERE is_active = 1 AND sg_total IS NOT NULL ORDER BY id"
            ).fetchall()
            return [row["id"] for row in rows]

    def _row_to_player(self, row: sqlite3.Row) -> Player:
        return Player(
            id=row["id"],
            name=row["name"],
            is_active=bool(row["is_active"]),
            owgr_rank=row["owgr_rank"],
            events=row["events"] or 0,
            sg_total=row["sg_total"],
            sg_off_tee=row["sg_off_tee"],
            sg_approach=row["sg_approach"],
            sg_around_green=row["sg_around_green"],
            sg_putting=row["sg_putting"],
            datagolf_id=row["datagolf_id"],
            pga_tour_id=row["pga_tour_id"],
            espn_id=row["espn_id"],
        )

    def save_course(self, course: Course):
        with self._connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO courses
                (id, name, driving_importance, approach_importance, around_green_importance, putting_importance)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                course.id, course.name, course.driving_importance, course.approach_importance,
                course.around_green_importance, course.putting_importance,
            ))

    def get_course(self, course_id: int) -> Optional[Course]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM courses WHERE id = ?", (course_id,)).fetchone()
            if row:
                return Course(
                    id=row["id"],
                    name=row["name"],
                    driving_importance=row["driving_importance"],
                    approach_importance=row["approach_importance"],
                    around_green_importance=row["around_green_importance"],
                    putting_importance=row["putting_importance"],
                )
        return None

    def save_tournament(self, tournament: Tournament):
        with self._connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO tournaments
                (id, name, start_date, course_id, is_major, is_signature, is_playoff, field_size)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                tournament.id, tournament.name, tournament.start_date.isoformat(),
                tournament.course_id, _bool(tournament.is_major), _bool(tournament.is_signature),
                _bool(tournament.is_playoff), tournament.field_size,
            ))

    def get_tournament(self, tournament_id: int) -> Optional[Tournament]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM tournaments WHERE id = ?", (tournament_id,)).fetchone()
            return self._row_to_tournament(row) if row else None

    def _row_to_tournament(self, row: sqlite3.Row, prefix: str = "") -> Tournament:
        return Tournament(
            id=row[f"{prefix}id"],
            name=row[f"{prefix}name"],
            start_date=datetime.fromisoformat(row[f"{prefix}start_date"]),
            course_id=row[f"{prefix}course_id"],
            is_major=bool(row[f"{prefix}is_major"]),
            is_signature=bool(row[f"{prefix}is_signature"]),
            is_playoff=bool(row[f"{prefix}is_playoff"]),
            field_size=row[f"{prefix}field_size"] or 144,
        )

    def save_course_history(self, history: PlayerCourseHistory):
        with self._connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO player_course_history (player_id, course_id, rounds, sg_total)
                VALUES (?, ?, ?, ?)
            """, (history.player_id, history.course_id, history.rounds, history.sg_total))

    def get_player_course_history(self, player_id: int, course_id: int) -> Optional[PlayerCourseHistory]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM player_course_history WHERE player_id = ? AND course_id = ?",
                (player_id, course_id)
            ).fetchone()
            if row:
                return PlayerCourseHistory(
                    player_id=row["player_id"],
                    course_id=row["course_id"],
                    rounds=row["rounds"] or 0,
                    sg_total=row["sg_total"],
                )
        return None

    # =========================================================================
    # Performance and round operations
    # =========================================================================

    def save_performance(self, perf: PerformanceRecord):
        with self._connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO performances
                (player_id, tournament_id, sg_total, sg_off_tee, sg_approach, sg_around_green,
                 sg_putting, round1, round2, round3, round4, position, status)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                perf.player_id, perf.tournament_id, perf.sg_total, perf.sg_off_tee,
                perf.sg_approach, perf.sg_around_green, perf.sg_putting, perf.round1,
                perf.round2, perf.round3, perf.round4, perf.position, perf.status.value,
            ))

    def get_player_performances(
        self,
        player_id: int,
        require_full_sg: bool = False,
        require_sg_total: bool = False,
        exclude_statuses: Sequence[PerformanceStatus] = (),
        limit: Optional[int] = None,
    ) -> List[TournamentPerformance]:
        """
        Performances for a player joined to their tournament, most recent
        first.
        """
        query = """
            SELECT p.*, t.id AS t_id, t.name AS t_name, t.start_date AS t_start_date,
                   t.course_id AS t_course_id, t.is_major AS t_is_major,
                   t.is_signature AS t_is_signature, t.is_playoff AS t_is_playoff,
                   t.field_size AS t_field_size
            FROM performances p
            JOIN tournaments t ON t.id = p.tournament_id
            WHERE p.player_id = ?
        """
        params: List[Any] = [player_id]
        if require_full_sg:
            query += (
                " AND p.sg_total IS NOT NULL AND p.sg_off_tee IS NOT NULL"
                " AND p.sg_approach IS NOT NULL AND p.sg_around_green IS NOT NULL"
                " AND p.sg_putting IS NOT NULL"
            )
        elif require_sg_total:
            query += " AND p.sg_total IS NOT NULL"
        if exclude_statuses:
            query += f" AND p.status NOT IN ({', '.join('?' for _ in exclude_statuses)})"
            params.extend(s.value for s in exclude_statuses)
        query += " ORDER BY t.start_date DESC, t.id DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()
            return [(self._row_to_performance(row), self._row_to_tournament(row, "t_")) for row in rows]

    def get_tournament_field(self, tournament_id: int) -> List[PerformanceRecord]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM performances WHERE tournament_id = ? ORDER BY player_id",
                (tournament_id,)
            ).fetchall()
            return [self._row_to_performance(row) for row in rows]

    def get_field_world_rankings(self, tournament_id: int) -> List[Optional[int]]:
        """World ranking of each player in a tournament field (None if unranked)."""
        with self._connection() as conn:
            rows = conn.execute("""
                SELECT pl.owgr_rank FROM performances p
                LEFT JOIN players pl ON pl.id = p.player_id
                WHERE p.tournament_id = ?
                ORDER BY p.player_id
            """, (tournament_id,)).fetchall()
            return [row["owgr_rank"] for row in rows]

    def get_field_sg_totals(self, tournament_id: int) -> List[float]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT sg_total FROM performances WHERE tournament_id = ? AND sg_total IS NOT NULL"
                " ORDER BY sg_total",
                (tournament_id,)
            ).fetchall()
            return [row["sg_total"] for row in rows]

    def _row_to_performance(self, row: sqlite3.Row) -> PerformanceRecord:
        try:
            status = PerformanceStatus(row["status"] or PerformanceStatus.ACTIVE.value)
        except ValueError as e:
            raise MalformedRecordError(f"Unknown performance status {row['status']!r}") from e
        return PerformanceRecord(
            player_id=row["player_id"],
            tournament_id=row["tournament_id"],
            sg_total=row["sg_total"],
            sg_off_tee=row["sg_off_tee"],
            sg_approach=row["sg_approach"],
            sg_around_green=row["sg_around_green"],
            sg_putting=row["sg_putting"],
            round1=row["round1"],
            round2=row["round2"],
            round3=row["round3"],
            round4=row["round4"],
            position=row["position"],
            status=status,
        )

    def save_round_score(self, rs: RoundScore):
        with self._connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO round_scores (player_id, tournament_id, round_number, score, sg_total)
                VALUES (?, ?, ?, ?, ?)
            """, (rs.player_id, rs.tournament_id, rs.round_number, rs.score, rs.sg_total))

    def get_player_rounds(self, player_id: int, since: datetime) -> List[TournamentRound]:
        """Rounds with strokes-gained data from tournaments starting on/after ``since``."""
        with self._connection() as conn:
            rows = conn.execute("""
                SELECT r.*, t.id AS t_id, t.name AS t_name, t.start_date AS t_start_date,
                       t.course_id AS t_course_id, t.is_major AS t_is_major,
                       t.is_signature AS t_is_signature, t.is_playoff AS t_is_playoff,
                       t.field_size AS t_field_size
                FROM round_scores r
                JOIN tournaments t ON t.id = r.tournament_id
                WHERE r.player_id = ? AND r.sg_total IS NOT NULL AND t.start_date >= ?
                ORDER BY t.start_date DESC, t.id DESC, r.round_number
            """, (player_id, since.isoformat())).fetchall()
            return [
                TournamentRound(round=self._row_to_round(row), tournament=self._row_to_tournament(row, "t_"))
                for row in rows
            ]

    def get_rounds_through(self, tournament_id: int, max_round: int) -> List[RoundScore]:
        """Every player's rounds in a tournament up to and including ``max_round``."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM round_scores WHERE tournament_id = ? AND round_number <= ?"
                " ORDER BY player_id, round_number",
                (tournament_id, max_round)
            ).fetchall()
            return [self._row_to_round(row) for row in rows]

    def _row_to_round(self, row: sqlite3.Row) -> RoundScore:
        return RoundScore(
            player_id=row["player_id"],
            tournament_id=row["tournament_id"],
            round_number=row["round_number"],
            score=row["score"],
            sg_total=row["sg_total"],
        )

    # =========================================================================
    # ClutchScore operations
    # =========================================================================

    def upsert_clutch_score(self, score: ClutchScore):
        """Insert or update by (player, tournament-or-none, formula version)."""
        with self._connection() as conn:
            conn.execute("""
                INSERT INTO clutch_scores
                (player_id, tournament_id, tournament_key, formula_version, cpi, cpi_components,
                 form_score, form_components, pressure_score, pressure_components,
                 course_fit_score, fit_components, inputs_json, computed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(player_id, tournament_key, formula_version) DO UPDATE SET
                    tournament_id = excluded.tournament_id,
                    cpi = excluded.cpi,
                    cpi_components = excluded.cpi_components,
                    form_score = excluded.form_score,
                    form_components = excluded.form_components,
                    pressure_score = excluded.pressure_score,
                    pressure_components = excluded.pressure_components,
                    course_fit_score = excluded.course_fit_score,
                    fit_components = excluded.fit_components,
                    inputs_json = excluded.inputs_json,
                    computed_at = excluded.computed_at
            """, (
                score.player_id,
                score.tournament_id,
                "" if score.tournament_id is None else str(score.tournament_id),
                score.formula_version,
                score.cpi,
                _dumps(score.cpi_components),
                score.form_score,
                _dumps(score.form_components),
                score.pressure_score,
                _dumps(score.pressure_components),
                score.course_fit_score,
                _dumps(score.fit_components),
                _dumps(score.inputs),
                score.computed_at.isoformat(),
            ))

    def get_clutch_score(
        self, player_id: int, tournament_id: Optional[int], formula_version: str
    ) -> Optional[ClutchScore]:
        key = "" if tournament_id is None else str(tournament_id)
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM clutch_scores WHERE player_id = ? AND tournament_key = ? AND formula_version = ?",
                (player_id, key, formula_version)
            ).fetchone()
            if row:
                return ClutchScore(
                    player_id=row["player_id"],
                    tournament_id=row["tournament_id"],
                    formula_version=row["formula_version"],
                    computed_at=datetime.fromisoformat(row["computed_at"]),
                    cpi=row["cpi"],
                    cpi_components=_loads(row["cpi_components"]),
                    form_score=row["form_score"],
                    form_components=_loads(row["form_components"]),
                    pressure_score=row["pressure_score"],
                    pressure_components=_loads(row["pressure_components"]),
                    course_fit_score=row["course_fit_score"],
                    fit_components=_loads(row["fit_components"]),
                    inputs=_loads(row["inputs_json"]) or {},
                )
        return None

    # =========================================================================
    # Fantasy league history operations
    # =========================================================================

    def save_historical_season(self, season: HistoricalSeason):
        with self._connection() as conn:
            conn.execute("""
                INSERT INTO historical_seasons
                (user_id, season_year, wins, losses, ties, points_for, points_against, playoff_result, league_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                season.user_id, season.season_year, season.wins, season.losses, season.ties,
                season.points_for, season.points_against, season.playoff_result, season.league_id,
            ))

    def get_historical_seasons(self, user_id: int) -> List[HistoricalSeason]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM historical_seasons WHERE user_id = ? ORDER BY season_year, id",
                (user_id,)
            ).fetchall()
            return [
                HistoricalSeason(
                    user_id=row["user_id"],
                    season_year=row["season_year"],
                    wins=row["wins"] or 0,
                    losses=row["losses"] or 0,
                    ties=row["ties"] or 0,
                    points_for=row["points_for"],
                    points_against=row["points_against"],
                    playoff_result=row["playoff_result"],
                    league_id=row["league_id"],
                )
                for row in rows
            ]

    def save_team_season(self, season: TeamSeason):
        with self._connection() as conn:
            conn.execute("""
                INSERT INTO team_seasons
                (user_id, team_id, wins, losses, ties, total_points, is_champion, final_rank)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                season.user_id, season.team_id, season.wins, season.losses, season.ties,
                season.total_points, _bool(season.is_champion), season.final_rank,
            ))

    def get_team_seasons(self, user_id: int) -> List[TeamSeason]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM team_seasons WHERE user_id = ? ORDER BY id", (user_id,)
            ).fetchall()
            return [
                TeamSeason(
                    user_id=row["user_id"],
                    team_id=row["team_id"],
                    wins=row["wins"] or 0,
                    losses=row["losses"] or 0,
                    ties=row["ties"] or 0,
                    total_points=row["total_points"],
                    is_champion=None if row["is_champion"] is None else bool(row["is_champion"]),
                    final_rank=row["final_rank"],
                )
                for row in rows
            ]

    def save_draft_grade(self, grade: DraftGrade):
        with self._connection() as conn:
            conn.execute("""
                INSERT INTO draft_grades (user_id, team_id, overall_score, pick_grades_json)
                VALUES (?, ?, ?, ?)
            """, (
                grade.user_id, grade.team_id, grade.overall_score,
                json.dumps([{"round": p.round, "score": p.score} for p in grade.pick_grades]),
            ))

    def get_draft_grades(self, user_id: int) -> List[DraftGrade]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM draft_grades WHERE user_id = ? ORDER BY id", (user_id,)
            ).fetchall()
            grades = []
            for row in rows:
                try:
                    picks = json.loads(row["pick_grades_json"]) if row["pick_grades_json"] else []
                    pick_grades = [PickGrade(round=int(p["round"]), score=float(p["score"])) for p in picks]
                except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                    raise MalformedRecordError(f"Unreadable pick grades on draft grade {row['id']}") from e
                grades.append(DraftGrade(
                    user_id=row["user_id"],
                    team_id=row["team_id"],
                    overall_score=row["overall_score"],
                    pick_grades=pick_grades,
                ))
            return grades

    def save_lineup_snapshot(self, snap: LineupSnapshot):
        with self._connection() as conn:
            conn.execute("""
                INSERT INTO lineup_snapshots (user_id, team_id, week, active_points, bench_points, optimal_points)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (snap.user_id, snap.team_id, snap.week, snap.active_points, snap.bench_points, snap.optimal_points))

    def get_lineup_snapshots(self, user_id: int) -> List[LineupSnapshot]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM lineup_snapshots WHERE user_id = ? ORDER BY team_id, week, id", (user_id,)
            ).fetchall()
            return [
                LineupSnapshot(
                    user_id=row["user_id"],
                    team_id=row["team_id"],
                    week=row["week"],
                    active_points=row["active_points"],
                    bench_points=row["bench_points"],
                    optimal_points=row["optimal_points"],
                )
                for row in rows
            ]

    def save_weekly_result(self, result: WeeklyTeamResult):
        with self._connection() as conn:
            conn.execute("""
                INSERT INTO weekly_team_results
                (user_id, team_id, week, total_points, optimal_points, points_left_on_bench)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                result.user_id, result.team_id, result.week, result.total_points,
                result.optimal_points, result.points_left_on_bench,
            ))

    def get_weekly_results(self, user_id: int) -> List[WeeklyTeamResult]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM weekly_team_results WHERE user_id = ? ORDER BY team_id, week, id", (user_id,)
            ).fetchall()
            return [
                WeeklyTeamResult(
                    user_id=row["user_id"],
                    team_id=row["team_id"],
                    week=row["week"],
                    total_points=row["total_points"] or 0.0,
                    optimal_points=row["optimal_points"],
                    points_left_on_bench=row["points_left_on_bench"],
                )
                for row in rows
            ]

    def save_prediction(self, prediction: Prediction):
        with self._connection() as conn:
            conn.execute("""
                INSERT INTO predictions (user_id, outcome, resolved_at, created_at)
                VALUES (?, ?, ?, ?)
            """, (
                prediction.user_id,
                prediction.outcome.value,
                prediction.resolved_at.isoformat() if prediction.resolved_at else None,
                prediction.created_at.isoformat() if prediction.created_at else None,
            ))

    def get_resolved_predictions(self, user_id: int) -> List[Prediction]:
        """Predictions graded CORRECT or INCORRECT, oldest resolution first."""
        with self._connection() as conn:
            rows = conn.execute("""
                SELECT * FROM predictions
                WHERE user_id = ? AND outcome IN ('CORRECT', 'INCORRECT')
                ORDER BY resolved_at, id
            """, (user_id,)).fetchall()
            return [
                Prediction(
                    user_id=row["user_id"],
                    outcome=PredictionOutcome(row["outcome"]),
                    resolved_at=datetime.fromisoformat(row["resolved_at"]) if row["resolved_at"] else None,
                    created_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else None,
                )
                for row in rows
            ]

    def get_ratable_user_ids(self) -> List[int]:
        """Every user with at least one record any rating component reads."""
        with self._connection() as conn:
            rows = conn.execute("""
                SELECT user_id FROM historical_seasons
                UNION SELECT user_id FROM team_seasons
                UNION SELECT user_id FROM draft_grades
                UNION SELECT user_id FROM lineup_snapshots
                UNION SELECT user_id FROM weekly_team_results
                UNION SELECT user_id FROM predictions WHERE outcome IN ('CORRECT', 'INCORRECT')
                ORDER BY user_id
            """).fetchall()
            return [row["user_id"] for row in rows]

    # =========================================================================
    # Manager rating operations
    # =========================================================================

    def save_manager_rating(self, rating: ManagerRating, snapshot: Optional[RatingSnapshot] = None):
        """
        Upsert a user's rating and, when given, that day's snapshot in one
        transaction.
        """
        comps = rating.components
        with self._connection() as conn:
            conn.execute("""
                INSERT INTO clutch_manager_ratings
                (user_id, version, overall_rating, confidence, tier, trend,
                 win_rate_score, win_rate_confidence, draft_iq_score, draft_iq_confidence,
                 roster_mgmt_score, roster_mgmt_confidence, predictions_score, predictions_confidence,
                 trade_acumen_score, trade_acumen_confidence, championships_score, championships_confidence,
                 consistency_score, consistency_confidence, breakdown_json, data_source_summary,
                 total_graded_calls, computation_inputs_json, computed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    version = excluded.version,
                    overall_rating = excluded.overall_rating,
                    confidence = excluded.confidence,
                    tier = excluded.tier,
                    trend = excluded.trend,
                    win_rate_score = excluded.win_rate_score,
                    win_rate_confidence = excluded.win_rate_confidence,
                    draft_iq_score = excluded.draft_iq_score,
                    draft_iq_confidence = excluded.draft_iq_confidence,
                    roster_mgmt_score = excluded.roster_mgmt_score,
                    roster_mgmt_confidence = excluded.roster_mgmt_confidence,
                    predictions_score = excluded.predictions_score,
                    predictions_confidence = excluded.predictions_confidence,
                    trade_acumen_score = excluded.trade_acumen_score,
                    trade_acumen_confidence = excluded.trade_acumen_confidence,
                    championships_score = excluded.championships_score,
                    championships_confidence = excluded.championships_confidence,
                    consistency_score = excluded.consistency_score,
                    consistency_confidence = excluded.consistency_confidence,
                    breakdown_json = excluded.breakdown_json,
                    data_source_summary = excluded.data_source_summary,
                    total_graded_calls = excluded.total_graded_calls,
                    computation_inputs_json = excluded.computation_inputs_json,
                    computed_at = excluded.computed_at
            """, (
                rating.user_id,
                rating.version,
                rating.overall,
                rating.confidence,
                rating.tier.value,
                rating.trend.value,
                comps[Component.WIN_RATE].score, comps[Component.WIN_RATE].confidence,
                comps[Component.DRAFT_IQ].score, comps[Component.DRAFT_IQ].confidence,
                comps[Component.ROSTER_MGMT].score, comps[Component.ROSTER_MGMT].confidence,
                comps[Component.PREDICTIONS].score, comps[Component.PREDICTIONS].confidence,
                comps[Component.TRADE_ACUMEN].score, comps[Component.TRADE_ACUMEN].confidence,
                comps[Component.CHAMPIONSHIPS].score, comps[Component.CHAMPIONSHIPS].confidence,
                comps[Component.CONSISTENCY].score, comps[Component.CONSISTENCY].confidence,
                _dumps(rating.breakdown),
                rating.data_source_summary,
                rating.total_graded_calls,
                _dumps(rating.computation_inputs),
                rating.computed_at.isoformat(),
            ))

            if snapshot is not None:
                conn.execute("""
                    INSERT INTO rating_snapshots (user_id, snapshot_date, overall, components_json)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(user_id, snapshot_date) DO UPDATE SET
                        overall = excluded.overall,
                        components_json = excluded.components_json
                """, (
                    snapshot.user_id,
                    snapshot.snapshot_date.isoformat(),
                    snapshot.overall,
                    _dumps(snapshot.components),
                ))

    def get_manager_rating_row(self, user_id: int) -> Optional[Dict[str, Any]]:
        """Stored rating as a plain dict with JSON columns decoded."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM clutch_manager_ratings WHERE user_id = ?", (user_id,)
            ).fetchone()
            if not row:
                return None
            record = dict(row)
            record["breakdown"] = _loads(record.pop("breakdown_json"))
            record["computation_inputs"] = _loads(record.pop("computation_inputs_json")) or {}
            return record

    def get_snapshot_on_or_before(self, user_id: int, day: date) -> Optional[RatingSnapshot]:
        """Most recent snapshot dated ``day`` or earlier."""
        with self._connection() as conn:
            row = conn.execute("""
                SELECT * FROM rating_snapshots
                WHERE user_id = ? AND snapshot_date <= ?
                ORDER BY snapshot_date DESC LIMIT 1
            """, (user_id, day.isoformat())).fetchone()
            return self._row_to_snapshot(row) if row else None

    def get_rating_snapshots(self, user_id: int) -> List[RatingSnapshot]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM rating_snapshots WHERE user_id = ? ORDER BY snapshot_date", (user_id,)
            ).fetchall()
            return [self._row_to_snapshot(row) for row in rows]

    def _row_to_snapshot(self, row: sqlite3.Row) -> RatingSnapshot:
        return RatingSnapshot(
            user_id=row["user_id"],
            snapshot_date=date.fromisoformat(row["snapshot_date"]),
            overall=row["overall"],
            components=_loads(row["components_json"]) or {},
        )
