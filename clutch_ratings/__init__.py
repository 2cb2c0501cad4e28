"""
Clutch Ratings
Player clutch metrics and fantasy manager ratings.
"""

__version__ = "1.0.0"

from .models import (
    Player, Course, Tournament, PerformanceRecord, RoundScore, ClutchScore,
    HistoricalSeason, TeamSeason, DraftGrade, Prediction, ManagerRating,
    RatingSnapshot, BatchReport, Component, RatingTier, Trend, PlayerSource,
    RatingError, MalformedRecordError,
)
from .config import Config, get_config
from .database import Database, DatabaseError
from .metrics import FieldStrengthCache, PlayerMetricsEngine
from .rating import ManagerRatingEngine
from .batch import BatchRunner

__all__ = [
    # Models
    "Player", "Course", "Tournament", "PerformanceRecord", "RoundScore", "ClutchScore",
    "HistoricalSeason", "TeamSeason", "DraftGrade", "Prediction", "ManagerRating",
    "RatingSnapshot", "BatchReport", "Component", "RatingTier", "Trend", "PlayerSource",
    # Errors
    "RatingError", "MalformedRecordError", "DatabaseError",
    # Config
    "Config", "get_config",
    # Core classes
    "Database", "FieldStrengthCache", "PlayerMetricsEngine", "ManagerRatingEngine", "BatchRunner",
]
