"""
Batch orchestration for Clutch Ratings.

Runs the player metrics engine over a tournament field or the active player
population, and the manager rating engine over every user with ratable data.
Entities are processed one at a time; a failure skips that entity and is
recorded in the run's BatchReport.
"""

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from .config import Config, get_config
from .database import Database
from .metrics import FieldStrengthCache, PlayerMetricsEngine
from .models import BatchReport, EntityResult
from .rating import ManagerRatingEngine

logger = logging.getLogger(__name__)


class BatchRunner:
    """Iterates the engines over a population and collects a run report."""

    def __init__(self, db: Optional[Database] = None, config: Optional[Config] = None):
        self.config = config or get_config()
        self.db = db or Database(self.config.db_path)
        self.metrics = PlayerMetricsEngine(self.db, self.config)
        self.ratings = ManagerRatingEngine(self.db, self.config)

    def _run(
        self,
        kind: str,
        entity_ids: Iterable[int],
        compute: Callable[[int], None],
        as_of: datetime,
    ) -> BatchReport:
        report = BatchReport(kind=kind, as_of=as_of)
        for entity_id in entity_ids:
            try:
                compute(entity_id)
            except Exception as e:
                logger.error(f"{kind}: entity {entity_id} skipped: {e}")
                report.results.append(EntityResult(entity_id, ok=False, reason=f"{type(e).__name__}: {e}"))
                continue
            report.results.append(EntityResult(entity_id, ok=True))

        logger.info(
            f"{kind}: {report.succeeded}/{report.total} succeeded, {report.skipped} skipped"
        )
        return report

    def run_event_metrics(self, tournament_id: int, as_of: Optional[datetime] = None) -> BatchReport:
        """Compute and upsert the four metrics for every player in a tournament field."""
        as_of = as_of or datetime.now()
        field_cache = FieldStrengthCache(self.db, self.config)
        player_ids = sorted({perf.player_id for perf in self.db.get_tournament_field(tournament_id)})
        logger.info(f"Computing metrics for {len(player_ids)} players in tournament {tournament_id}")

        def compute(player_id: int):
            self.metrics.compute_all_metrics(
                player_id, tournament_id=tournament_id, as_of=as_of, field_cache=field_cache
            )

        return self._run("event_metrics", player_ids, compute, as_of)

    def run_player_sweep(self, as_of: Optional[datetime] = None) -> BatchReport:
        """Weekly sweep: metrics with no tournament context for every active player."""
        as_of = as_of or datetime.now()
        field_cache = FieldStrengthCache(self.db, self.config)
        player_ids = self.db.get_active_player_ids()
        logger.info(f"Sweeping metrics for {len(player_ids)} active players")

        def compute(player_id: int):
            self.metrics.compute_all_metrics(player_id, as_of=as_of, field_cache=field_cache)

        return self._run("player_sweep", player_ids, compute, as_of)

    def run_manager_sweep(self, as_of: Optional[datetime] = None) -> BatchReport:
        """Recompute and persist the rating of every user with ratable data."""
        as_of = as_of or datetime.now()
        user_ids = self.db.get_ratable_user_ids()
        logger.info(f"Rating {len(user_ids)} managers")

        def compute(user_id: int):
            self.ratings.calculate_rating(user_id, as_of=as_of)

        return self._run("manager_sweep", user_ids, compute, as_of)
