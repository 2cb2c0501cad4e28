"""
Data models for Clutch Ratings.
"""

from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional
from enum import Enum


class RatingError(Exception):
    """Base class for rating engine errors."""


class MalformedRecordError(RatingError):
    """A historical record does not have the shape the engines require."""


class PerformanceStatus(Enum):
    """Finishing status for a player in a tournament."""
    ACTIVE = "active"
    CUT = "cut"
    WITHDRAWN = "WD"
    DISQUALIFIED = "DQ"


class PlayerSource(Enum):
    """External data sources that assign their own player ids."""
    DATAGOLF = "datagolf"
    PGA_TOUR = "pga_tour"
    ESPN = "espn"


class PredictionOutcome(Enum):
    CORRECT = "CORRECT"
    INCORRECT = "INCORRECT"


class PlayoffResult(Enum):
    """Playoff outcome recorded on an imported season."""
    CHAMPION = "champion"
    RUNNER_UP = "runner_up"
    SEMIFINAL = "semifinal"
    QUARTERFINAL = "quarterfinal"
    MISSED = "missed"


class Component(Enum):
    """Manager rating sub-scores, in their canonical order."""
    WIN_RATE = "win_rate"
    DRAFT_IQ = "draft_iq"
    ROSTER_MGMT = "roster_mgmt"
    PREDICTIONS = "predictions"
    TRADE_ACUMEN = "trade_acumen"
    CHAMPIONSHIPS = "championships"
    CONSISTENCY = "consistency"


class RatingTier(Enum):
    ELITE = "ELITE"
    VETERAN = "VETERAN"
    COMPETITOR = "COMPETITOR"
    CONTENDER = "CONTENDER"
    DEVELOPING = "DEVELOPING"
    ROOKIE = "ROOKIE"
    UNRANKED = "UNRANKED"


class Trend(Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"
    NEW = "new"


# =============================================================================
# Golf records (read-only inputs to the player metrics engine)
# =============================================================================

@dataclass
class Player:
    """Aggregate player profile with rolling career strokes-gained averages."""
    id: int
    name: str
    is_active: bool = True
    owgr_rank: Optional[int] = None
    events: int = 0
    sg_total: Optional[float] = None
    sg_off_tee: Optional[float] = None
    sg_approach: Optional[float] = None
    sg_around_green: Optional[float] = None
    sg_putting: Optional[float] = None
    datagolf_id: Optional[str] = None
    pga_tour_id: Optional[str] = None
    espn_id: Optional[str] = None

    @property
    def has_skill_profile(self) -> bool:
        """All four category averages are known."""
        return None not in (self.sg_off_tee, self.sg_approach, self.sg_around_green, self.sg_putting)

    def external_id(self, source: PlayerSource) -> Optional[str]:
        return PLAYER_ID_ACCESSORS[source](self)


PLAYER_ID_ACCESSORS: Dict[PlayerSource, Callable[[Player], Optional[str]]] = {
    PlayerSource.DATAGOLF: lambda p: p.datagolf_id,
    PlayerSource.PGA_TOUR: lambda p: p.pga_tour_id,
    PlayerSource.ESPN: lambda p: p.espn_id,
}


@dataclass
class Course:
    """A course and how much each skill category matters there."""
    id: int
    name: str
    driving_importance: Optional[float] = None
    approach_importance: Optional[float] = None
    around_green_importance: Optional[float] = None
    putting_importance: Optional[float] = None

    @property
    def importance_profile(self) -> Optional[List[float]]:
        """Four importance weights, or None unless every one is populated."""
        weights = [
            self.driving_importance,
            self.approach_importance,
            self.around_green_importance,
            self.putting_importance,
        ]
        if any(w is None for w in weights):
            return None
        return weights


@dataclass
class Tournament:
    """A PGA Tour event."""
    id: int
    name: str
    start_date: datetime
    course_id: Optional[int] = None
    is_major: bool = False
    is_signature: bool = False
    is_playoff: bool = False
    field_size: int = 144


@dataclass
class PerformanceRecord:
    """One player's finished tournament, with strokes gained per category."""
    player_id: int
    tournament_id: int
    sg_total: Optional[float] = None
    sg_off_tee: Optional[float] = None
    sg_approach: Optional[float] = None
    sg_around_green: Optional[float] = None
    sg_putting: Optional[float] = None
    round1: Optional[int] = None
    round2: Optional[int] = None
    round3: Optional[int] = None
    round4: Optional[int] = None
    position: Optional[int] = None
    status: PerformanceStatus = PerformanceStatus.ACTIVE

    @property
    def rounds_played(self) -> int:
        return sum(1 for r in (self.round1, self.round2, self.round3, self.round4) if r is not None)


@dataclass
class RoundScore:
    """A single round: stroke score plus strokes gained for the round."""
    player_id: int
    tournament_id: int
    round_number: int
    score: Optional[int] = None
    sg_total: Optional[float] = None

    def __post_init__(self):
        if not 1 <= self.round_number <= 4:
            raise MalformedRecordError(f"Round number must be 1-4, got {self.round_number}")


@dataclass
class PlayerCourseHistory:
    """Aggregate record of a player at one course."""
    player_id: int
    course_id: int
    rounds: int = 0
    sg_total: Optional[float] = None


@dataclass
class TournamentRound:
    """A round score joined to the flags of its tournament."""
    round: RoundScore
    tournament: Tournament


@dataclass
class MetricResult:
    """A computed metric value with the breakdown that produced it."""
    value: float
    components: Dict[str, Any]


@dataclass
class ClutchScore:
    """
    The four player metrics for one (player, tournament, formula version).

    A metric is either present with its components or both are None.
    """
    player_id: int
    tournament_id: Optional[int]
    formula_version: str
    computed_at: datetime
    cpi: Optional[float] = None
    cpi_components: Optional[Dict[str, Any]] = None
    form_score: Optional[float] = None
    form_components: Optional[Dict[str, Any]] = None
    pressure_score: Optional[float] = None
    pressure_components: Optional[Dict[str, Any]] = None
    course_fit_score: Optional[float] = None
    fit_components: Optional[Dict[str, Any]] = None
    inputs: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Fantasy league records (inputs to the manager rating engine)
# =============================================================================

def _check_record(wins: int, losses: int, ties: int):
    if min(wins, losses, ties) < 0:
        raise MalformedRecordError(f"Negative season record {wins}-{losses}-{ties}")


@dataclass
class HistoricalSeason:
    """A season imported from another platform."""
    user_id: int
    season_year: int
    wins: int = 0
    losses: int = 0
    ties: int = 0
    points_for: Optional[float] = None
    points_against: Optional[float] = None
    playoff_result: Optional[str] = None
    league_id: Optional[int] = None

    def __post_init__(self):
        _check_record(self.wins, self.losses, self.ties or 0)

    @property
    def games(self) -> int:
        return self.wins + self.losses + (self.ties or 0)


@dataclass
class TeamSeason:
    """A season played natively in this league system. It has no year."""
    user_id: int
    team_id: int
    wins: int = 0
    losses: int = 0
    ties: int = 0
    total_points: Optional[float] = None
    is_champion: Optional[bool] = None
    final_rank: Optional[int] = None

    def __post_init__(self):
        _check_record(self.wins, self.losses, self.ties or 0)

    @property
    def games(self) -> int:
        return self.wins + self.losses + (self.ties or 0)


@dataclass
class PickGrade:
    round: int
    score: float


@dataclass
class DraftGrade:
    user_id: int
    team_id: int
    overall_score: float
    pick_grades: List[PickGrade] = field(default_factory=list)


@dataclass
class LineupSnapshot:
    user_id: int
    team_id: int
    week: int
    active_points: Optional[float] = None
    bench_points: Optional[float] = None
    optimal_points: Optional[float] = None


@dataclass
class WeeklyTeamResult:
    user_id: int
    team_id: int
    week: int
    total_points: float = 0.0
    optimal_points: Optional[float] = None
    points_left_on_bench: Optional[float] = None


@dataclass
class Prediction:
    user_id: int
    outcome: PredictionOutcome
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


@dataclass
class ComponentScore:
    """A manager rating sub-score and how much data backs it."""
    score: Optional[int] = None
    confidence: int = 0
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def active(self) -> bool:
        return self.confidence > 0 and self.score is not None


@dataclass
class ManagerRating:
    """Composite 0-100 rating for one fantasy manager."""
    user_id: int
    overall: Optional[int]
    confidence: int
    tier: RatingTier
    trend: Trend
    components: Dict[Component, ComponentScore]
    breakdown: Dict[str, Any]
    computed_at: datetime
    version: int = 2
    data_source_summary: str = "No data yet"
    total_graded_calls: int = 0
    computation_inputs: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for JSON-friendly output."""
        return {
            "user_id": self.user_id,
            "version": self.version,
            "overall": self.overall,
            "confidence": self.confidence,
            "tier": self.tier.value,
            "trend": self.trend.value,
            "components": {
                key.value: {
                    "score": comp.score,
                    "confidence": comp.confidence,
                    "active": comp.active and key != Component.TRADE_ACUMEN,
                }
                for key, comp in self.components.items()
            },
            "breakdown": self.breakdown,
            "data_source_summary": self.data_source_summary,
            "total_graded_calls": self.total_graded_calls,
            "computation_inputs": self.computation_inputs,
            "computed_at": self.computed_at.isoformat(),
        }


@dataclass
class RatingSnapshot:
    """Overall rating recorded for one user on one calendar day."""
    user_id: int
    snapshot_date: date
    overall: int
    components: Dict[str, Optional[int]] = field(default_factory=dict)


# =============================================================================
# Batch reporting
# =============================================================================

@dataclass
class EntityResult:
    """Outcome of computing one player or user inside a batch."""
    entity_id: int
    ok: bool
    reason: str = ""


@dataclass
class BatchReport:
    """Run summary for a population sweep."""
    kind: str
    as_of: datetime
    results: List[EntityResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    @property
    def failures(self) -> List[EntityResult]:
        return [r for r in self.results if not r.ok]

    def summary(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "as_of": self.as_of.isoformat(),
            "total": self.total,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failures": [asdict(f) for f in self.failures],
        }
