"""
Configuration management for Clutch Ratings.

The tuned constants below are empirical. Changing any of them changes the
formula, so a changed constant must ship under a new formula version.
"""

import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass, field, fields

from dotenv import load_dotenv

from .models import Component, RatingTier


# Load environment variables from .env file
load_dotenv()


DEFAULT_FORMULA_VERSION = "v1.0"
MANAGER_RATING_VERSION = 2

Curve = List[Tuple[float, float]]


@dataclass
class PlayerMetricSettings:
    """Tuned constants for CPI, Form, Pressure and Course Fit."""
    # CPI
    cpi_lookback_events: int = 12
    cpi_min_events: int = 4
    cpi_decay_rate: float = 0.92  # per week
    cpi_sg_weights: Dict[str, float] = field(default_factory=lambda: {
        "off_tee": 0.30,
        "approach": 0.30,
        "around_green": 0.15,
        "putting": 0.20,
        "sample_bonus": 0.05,
    })
    cpi_sample_bonus_scale: float = 0.10
    cpi_field_mult_spread: float = 0.4  # 0.8 - 1.2
    cpi_clamp: float = 3.0

    # Field strength
    field_top_n: int = 30
    field_min_ranked: int = 10
    field_neutral_strength: float = 0.5
    field_best_avg_rank: float = 10.0
    field_worst_avg_rank: float = 200.0

    # Form
    form_lookback_events: int = 6
    form_min_events: int = 2
    form_event_weights: List[float] = field(default_factory=lambda: [0.40, 0.25, 0.20, 0.15])
    form_field_mult_base: float = 0.85
    form_field_mult_spread: float = 0.30  # 0.85 - 1.15
    major_multiplier: float = 1.15
    playoff_multiplier: float = 1.12
    signature_multiplier: float = 1.10

    # Pressure
    pressure_lookback_months: int = 24
    pressure_min_rounds: int = 20
    pressure_min_pressure_rounds: int = 5
    pressure_scaling_factor: float = 1.5
    pressure_contention_top_n: int = 10
    pressure_clamp: float = 2.0

    # Course fit
    fit_min_events: int = 8
    fit_quality_floor: float = 0.7
    fit_quality_spread: float = 0.3
    fit_history_min_rounds: int = 4
    fit_history_scale: float = 2.0
    fit_history_min_bonus: float = -5.0
    fit_history_max_bonus: float = 10.0


@dataclass
class ManagerRatingSettings:
    """Tuned constants for the composite manager rating."""
    component_weights: Dict[Component, float] = field(default_factory=lambda: {
        Component.WIN_RATE: 0.20,
        Component.DRAFT_IQ: 0.18,
        Component.ROSTER_MGMT: 0.18,
        Component.PREDICTIONS: 0.15,
        Component.TRADE_ACUMEN: 0.12,
        Component.CHAMPIONSHIPS: 0.10,
        Component.CONSISTENCY: 0.07,
    })
    confidence_softener: float = 0.6

    win_rate_curve: Curve = field(default_factory=lambda: [(1, 25), (3, 55), (5, 75), (8, 90), (12, 98)])
    draft_iq_curve: Curve = field(default_factory=lambda: [(1, 30), (3, 60), (5, 80), (8, 95)])
    roster_mgmt_curve: Curve = field(default_factory=lambda: [(4, 20), (8, 45), (17, 65), (51, 85), (85, 95)])
    predictions_curve: Curve = field(default_factory=lambda: [(10, 15), (50, 40), (200, 70), (500, 90)])
    championships_curve: Curve = field(default_factory=lambda: [(1, 20), (2, 20), (4, 50), (8, 80), (12, 95)])
    consistency_curve: Curve = field(default_factory=lambda: [(1, 10), (2, 10), (4, 45), (6, 70), (10, 90)])
    streak_curve: Curve = field(default_factory=lambda: [(1, 20), (3, 50), (5, 75), (8, 95), (12, 100)])

    recent_season_count: int = 3
    early_round_max: int = 3
    early_hit_score: float = 70
    late_round_min: int = 8
    late_steal_score: float = 75
    optimal_lineup_ratio: float = 0.90
    weeks_per_season: int = 17
    prediction_decay_days: float = 90
    consistency_min_games: int = 4
    consistency_min_seasons: int = 4
    losing_season_win_pct: float = 0.400

    tier_thresholds: List[Tuple[int, RatingTier]] = field(default_factory=lambda: [
        (90, RatingTier.ELITE),
        (80, RatingTier.VETERAN),
        (70, RatingTier.COMPETITOR),
        (60, RatingTier.CONTENDER),
        (50, RatingTier.DEVELOPING),
        (40, RatingTier.ROOKIE),
    ])
    trend_window_days: int = 30
    trend_threshold: int = 3


def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else None


@dataclass
class Config:
    """Application configuration."""
    formula_version: str = DEFAULT_FORMULA_VERSION
    log_level: str = "INFO"

    # Paths
    data_dir: Path = Path.home() / ".clutch_ratings"
    db_path: Path = Path.home() / ".clutch_ratings" / "data.db"

    player_metrics: PlayerMetricSettings = field(default_factory=PlayerMetricSettings)
    manager_rating: ManagerRatingSettings = field(default_factory=ManagerRatingSettings)

    def __post_init__(self):
        """Load overrides from environment."""
        self.formula_version = os.getenv("CLUTCH_FORMULA_VERSION", "").strip() or self.formula_version
        self.log_level = (os.getenv("CLUTCH_LOG_LEVEL", "").strip() or self.log_level).upper()

        db_path = os.getenv("CLUTCH_DB_PATH", "").strip()
        if db_path:
            self.db_path = Path(db_path)
            self.data_dir = self.db_path.parent

        decay = _env_float("CLUTCH_CPI_DECAY_RATE")
        if decay is not None:
            self.player_metrics.cpi_decay_rate = decay
        scaling = _env_float("CLUTCH_PRESSURE_SCALING")
        if scaling is not None:
            self.player_metrics.pressure_scaling_factor = scaling
        softener = _env_float("CLUTCH_CONFIDENCE_SOFTENER")
        if softener is not None:
            self.manager_rating.confidence_softener = softener

        # Ensure directories exist
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def tuned_overrides(self) -> List[str]:
        """Names of tuned constants that differ from their defaults."""
        changed = []
        for settings, defaults in (
            (self.player_metrics, PlayerMetricSettings()),
            (self.manager_rating, ManagerRatingSettings()),
        ):
            for f in fields(settings):
                if getattr(settings, f.name) != getattr(defaults, f.name):
                    changed.append(f.name)
        return changed

    def validate_config(self) -> List[str]:
        """Return a list of configuration problems (empty when valid)."""
        errors = []

        weight_sum = sum(self.manager_rating.component_weights.values())
        if abs(weight_sum - 1.0) > 1e-9:
            errors.append(f"Component weights must sum to 1.0 (got {weight_sum:.4f})")
        if set(self.manager_rating.component_weights) != set(Component):
            errors.append("Component weights must cover all seven components")

        decay = self.player_metrics.cpi_decay_rate
        if not 0 < decay <= 1:
            errors.append(f"CPI decay rate must be in (0, 1] (got {decay})")

        for f in fields(self.manager_rating):
            if f.name.endswith("_curve"):
                xs = [x for x, _ in getattr(self.manager_rating, f.name)]
                if not xs or xs != sorted(xs):
                    errors.append(f"{f.name} control points must be ascending")

        overrides = self.tuned_overrides()
        if overrides and self.formula_version == DEFAULT_FORMULA_VERSION:
            errors.append(
                "Changing tuned constants requires a new formula version "
                f"(set CLUTCH_FORMULA_VERSION); changed: {', '.join(overrides)}"
            )
        return errors

    def metric_inputs(self) -> Dict[str, object]:
        """Constants recorded alongside every ClutchScore."""
        pm = self.player_metrics
        return {
            "cpi_lookback": pm.cpi_lookback_events,
            "cpi_decay": pm.cpi_decay_rate,
            "form_weights": list(pm.form_event_weights),
            "pressure_lookback_months": pm.pressure_lookback_months,
            "pressure_scaling": pm.pressure_scaling_factor,
        }


def get_config() -> Config:
    """Get application configuration."""
    return Config()
