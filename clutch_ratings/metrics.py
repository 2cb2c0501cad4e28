"""
Player metrics engine for Clutch Ratings.

Computes four independent per-player metrics from historical performances:
1. CPI (Clutch Performance Index) - recency and field-strength weighted SG, z-scored (-3 to +3)
2. Form Score - field-relative finishes in the last few events (0-100)
3. Pressure Score - SG in pressure rounds vs baseline rounds (-2 to +2)
4. Course Fit Score - skill profile projected onto course demands (0-100)

A metric whose inputs are too thin returns None; it never raises for that.
"""

import calendar
import logging
import math
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Dict, List, Optional

from .config import Config, get_config
from .database import Database
from .models import (
    ClutchScore, MetricResult, PerformanceStatus, Tournament, TournamentRound,
)
from .stats import (
    clamp, mean, stddev, percentile_rank, round_half_up, sorted_values, weeks_between,
)

logger = logging.getLogger(__name__)


def months_before(moment: datetime, months: int) -> datetime:
    """Same day-of-month ``months`` earlier, clamped to the month's length."""
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


class FieldStrengthCache:
    """
    Memoized field strength per tournament for one top-level computation.

    Strength is in [0, 1]: the average world ranking of the top-ranked
    entrants mapped linearly so that an average rank of 10 is 1.0 and 200 is
    0.0. Fields with too few ranked entrants get the neutral value.
    Build a new cache for every batch or on-demand call.
    """

    def __init__(self, db: Database, config: Optional[Config] = None):
        self.db = db
        self.settings = (config or get_config()).player_metrics
        self._values: Dict[int, Future] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, tournament_id: int) -> bool:
        return tournament_id in self._values

    def get(self, tournament_id: int) -> float:
        """Strength for one tournament; concurrent callers share one computation."""
        with self._lock:
            pending = self._values.get(tournament_id)
            owner = pending is None
            if owner:
                pending = Future()
                self._values[tournament_id] = pending
        if not owner:
            return pending.result()
        try:
            strength = self._compute(tournament_id)
        except Exception as e:
            with self._lock:
                self._values.pop(tournament_id, None)
            pending.set_exception(e)
            raise
        pending.set_result(strength)
        return strength

    def _compute(self, tournament_id: int) -> float:
        s = self.settings
        ranks = sorted(
            r for r in self.db.get_field_world_rankings(tournament_id)
            if isinstance(r, int) and r > 0
        )[:s.field_top_n]
        if len(ranks) < s.field_min_ranked:
            return s.field_neutral_strength
        avg_rank = mean(ranks)
        span = s.field_worst_avg_rank - s.field_best_avg_rank
        return clamp(1.0 - (avg_rank - s.field_best_avg_rank) / span, 0.0, 1.0)


class PlayerMetricsEngine:
    """Computes and persists CPI, Form, Pressure and Course Fit for players."""

    def __init__(self, db: Optional[Database] = None, config: Optional[Config] = None):
        self.config = config or get_config()
        self.settings = self.config.player_metrics
        self.db = db or Database(self.config.db_path)

    def new_field_cache(self) -> FieldStrengthCache:
        return FieldStrengthCache(self.db, self.config)

    # =========================================================================
    # CPI
    # =========================================================================

    def compute_cpi(
        self,
        player_id: int,
        as_of: datetime,
        field_cache: Optional[FieldStrengthCache] = None,
    ) -> Optional[MetricResult]:
        """Clutch Performance Index on a -3 to +3 scale."""
        s = self.settings
        field_cache = field_cache or self.new_field_cache()
        performances = self.db.get_player_performances(
            player_id, require_full_sg=True, limit=s.cpi_lookback_events
        )
        if len(performances) < s.cpi_min_events:
            logger.debug(f"CPI skipped for player {player_id}: {len(performances)} qualifying events")
            return None

        w = s.cpi_sg_weights
        details = []
        raw_cpi = 0.0
        for perf, tournament in performances:
            sample_term = (perf.rounds_played / 4) * perf.sg_total * s.cpi_sample_bonus_scale
            blended_sg = (
                w["off_tee"] * perf.sg_off_tee
                + w["approach"] * perf.sg_approach
                + w["around_green"] * perf.sg_around_green
                + w["putting"] * perf.sg_putting
                + w["sample_bonus"] * sample_term
            )
            weeks = weeks_between(tournament.start_date, as_of)
            recency_weight = s.cpi_decay_rate ** weeks
            strength = field_cache.get(tournament.id)
            field_mult = 1.0 + (strength - 0.5) * s.cpi_field_mult_spread

            contribution = recency_weight * field_mult * blended_sg
            raw_cpi += contribution
            details.append({
                "tournament_id": tournament.id,
                "weeks_ago": round_half_up(weeks, 3),
                "blended_sg": round_half_up(blended_sg, 3),
                "recency_weight": round_half_up(recency_weight, 3),
                "field_strength": round_half_up(strength, 3),
                "field_strength_mult": round_half_up(field_mult, 3),
                "contribution": round_half_up(contribution, 3),
            })

        population = [p.sg_total for p in self.db.get_population_players()]
        pop_mean = mean(population)
        pop_sd = stddev(population)
        n = len(performances)
        if pop_sd > 0:
            cpi = clamp(
                (raw_cpi - pop_mean * n * 0.5) / (pop_sd * math.sqrt(n)),
                -s.cpi_clamp, s.cpi_clamp,
            )
        else:
            cpi = 0.0

        return MetricResult(
            value=round_half_up(cpi, 3),
            components={
                "raw_cpi": round_half_up(raw_cpi, 3),
                "events_used": n,
                "population_mean": round_half_up(pop_mean, 3),
                "population_stddev": round_half_up(pop_sd, 3),
                "details": details,
            },
        )

    # =========================================================================
    # Form
    # =========================================================================

    def _event_multiplier(self, tournament: Tournament) -> float:
        s = self.settings
        if tournament.is_major:
            return s.major_multiplier
        if tournament.is_playoff:
            return s.playoff_multiplier
        if tournament.is_signature:
            return s.signature_multiplier
        return 1.0

    def compute_form_score(
        self,
        player_id: int,
        field_cache: Optional[FieldStrengthCache] = None,
    ) -> Optional[MetricResult]:
        """Form on a 0-100 scale from the most recent completed events."""
        s = self.settings
        field_cache = field_cache or self.new_field_cache()
        performances = self.db.get_player_performances(
            player_id,
            require_sg_total=True,
            exclude_statuses=(PerformanceStatus.WITHDRAWN, PerformanceStatus.DISQUALIFIED),
            limit=s.form_lookback_events,
        )
        if len(performances) < s.form_min_events:
            logger.debug(f"Form skipped for player {player_id}: {len(performances)} completed events")
            return None

        scored = performances[:len(s.form_event_weights)]
        weights = s.form_event_weights[:len(scored)]
        weight_sum = sum(weights)
        normalized = [wt / weight_sum for wt in weights]

        details = []
        weighted_sum = 0.0
        for (perf, tournament), weight in zip(scored, normalized):
            field_totals = self.db.get_field_sg_totals(tournament.id)
            base_perf = percentile_rank(perf.sg_total, field_totals)
            strength = field_cache.get(tournament.id)
            field_mult = s.form_field_mult_base + s.form_field_mult_spread * strength
            event_mult = self._event_multiplier(tournament)
            adjusted = base_perf * field_mult * event_mult
            weighted_sum += weight * adjusted
            details.append({
                "tournament_id": tournament.id,
                "base_perf": round_half_up(base_perf, 3),
                "field_strength": round_half_up(strength, 3),
                "field_mult": round_half_up(field_mult, 3),
                "event_mult": event_mult,
                "adjusted_perf": round_half_up(adjusted, 3),
                "weight": round_half_up(weight, 3),
            })

        form = clamp(weighted_sum * 100, 0, 100)
        return MetricResult(
            value=round_half_up(form, 1),
            components={
                "events_used": len(details),
                "weighted_sum": round_half_up(weighted_sum, 3),
                "details": details,
            },
        )

    # =========================================================================
    # Pressure
    # =========================================================================

    def _in_contention_after_r3(self, player_id: int, tournament_ids: List[int]) -> set:
        """Tournaments where the player sat inside the top N after round 3."""
        top_n = self.settings.pressure_contention_top_n
        contention = set()
        for tournament_id in tournament_ids:
            cumulative: Dict[int, int] = {}
            for rs in self.db.get_rounds_through(tournament_id, 3):
                cumulative[rs.player_id] = cumulative.get(rs.player_id, 0) + (rs.score or 0)
            leaderboard = sorted(cumulative.items(), key=lambda item: (item[1], item[0]))
            position = next((i for i, (pid, _) in enumerate(leaderboard) if pid == player_id), None)
            if position is not None and position < top_n:
                contention.add(tournament_id)
        return contention

    def _is_pressure_round(self, tr: TournamentRound, contention: set) -> bool:
        t = tr.tournament
        rnd = tr.round.round_number
        return (
            t.is_major
            or t.is_playoff
            or (t.is_signature and rnd in (3, 4))
            or (rnd == 4 and t.id in contention)
        )

    def compute_pressure_score(self, player_id: int, as_of: datetime) -> Optional[MetricResult]:
        """Pressure-round SG minus baseline SG, scaled, on a -2 to +2 scale."""
        s = self.settings
        since = months_before(as_of, s.pressure_lookback_months)
        rounds = self.db.get_player_rounds(player_id, since)
        if len(rounds) < s.pressure_min_rounds:
            logger.debug(f"Pressure skipped for player {player_id}: {len(rounds)} rounds")
            return None

        with_r3 = sorted({tr.tournament.id for tr in rounds if tr.round.round_number == 3})
        contention = self._in_contention_after_r3(player_id, with_r3)

        pressure_sg = []
        baseline_sg = []
        for tr in rounds:
            if self._is_pressure_round(tr, contention):
                pressure_sg.append(tr.round.sg_total)
            else:
                baseline_sg.append(tr.round.sg_total)

        if len(pressure_sg) < s.pressure_min_pressure_rounds:
            logger.debug(f"Pressure skipped for player {player_id}: {len(pressure_sg)} pressure rounds")
            return None

        pressure_avg = mean(pressure_sg)
        baseline_avg = mean(baseline_sg)
        delta = pressure_avg - baseline_avg
        score = clamp(delta * s.pressure_scaling_factor, -s.pressure_clamp, s.pressure_clamp)

        return MetricResult(
            value=round_half_up(score, 3),
            components={
                "pressure_rounds_count": len(pressure_sg),
                "baseline_rounds_count": len(baseline_sg),
                "pressure_avg_sg": round_half_up(pressure_avg, 3),
                "baseline_avg_sg": round_half_up(baseline_avg, 3),
                "raw_delta": round_half_up(delta, 3),
                "in_contention_tournaments": sorted(contention),
                "lookback_start": since.date().isoformat(),
            },
        )

    # =========================================================================
    # Course fit
    # =========================================================================

    def compute_course_fit(self, player_id: int, tournament_id: int) -> Optional[MetricResult]:
        """How well a player's skill profile suits a tournament's course (0-100)."""
        s = self.settings
        tournament = self.db.get_tournament(tournament_id)
        if tournament is None or tournament.course_id is None:
            return None
        course = self.db.get_course(tournament.course_id)
        course_profile = course.importance_profile if course else None
        if course_profile is None:
            return None

        player = self.db.get_player(player_id)
        if (
            player is None
            or player.events < s.fit_min_events
            or not player.has_skill_profile
            or player.sg_total is None
        ):
            logger.debug(f"Course fit skipped for player {player_id}: thin skill profile")
            return None

        population = self.db.get_population_players(min_events=s.fit_min_events, require_skill_profile=True)
        player_profile = [
            percentile_rank(player.sg_off_tee, sorted_values([p.sg_off_tee for p in population])),
            percentile_rank(player.sg_approach, sorted_values([p.sg_approach for p in population])),
            percentile_rank(player.sg_around_green, sorted_values([p.sg_around_green for p in population])),
            percentile_rank(player.sg_putting, sorted_values([p.sg_putting for p in population])),
        ]

        dot = sum(p * c for p, c in zip(player_profile, course_profile))
        course_self_dot = sum(c * c for c in course_profile)
        raw_fit = dot / course_self_dot if course_self_dot > 0 else 0.0

        overall_pct = percentile_rank(player.sg_total, sorted_values([p.sg_total for p in population]))
        quality_mult = s.fit_quality_floor + s.fit_quality_spread * overall_pct

        history_bonus = 0.0
        history = self.db.get_player_course_history(player_id, course.id)
        if history and history.rounds >= s.fit_history_min_rounds and history.sg_total is not None:
            history_bonus = clamp(
                history.rounds * history.sg_total * s.fit_history_scale,
                s.fit_history_min_bonus, s.fit_history_max_bonus,
            )

        fit = clamp(raw_fit * 100 * quality_mult + history_bonus, 0, 100)
        return MetricResult(
            value=round_half_up(fit, 1),
            components={
                "player_profile": [round_half_up(v, 3) for v in player_profile],
                "course_profile": course_profile,
                "raw_fit": round_half_up(raw_fit, 3),
                "quality_mult": round_half_up(quality_mult, 3),
                "history_bonus": round_half_up(history_bonus, 1),
                "course_name": course.name,
            },
        )

    # =========================================================================
    # All metrics for one player
    # =========================================================================

    def compute_all_metrics(
        self,
        player_id: int,
        tournament_id: Optional[int] = None,
        as_of: Optional[datetime] = None,
        field_cache: Optional[FieldStrengthCache] = None,
        persist: bool = True,
    ) -> ClutchScore:
        """
        Compute the four metrics concurrently and upsert the ClutchScore.

        Course fit is only computed when a tournament is given.
        """
        as_of = as_of or datetime.now()
        field_cache = field_cache or self.new_field_cache()

        with ThreadPoolExecutor(max_workers=4) as pool:
            cpi_f = pool.submit(self.compute_cpi, player_id, as_of, field_cache)
            form_f = pool.submit(self.compute_form_score, player_id, field_cache)
            pressure_f = pool.submit(self.compute_pressure_score, player_id, as_of)
            fit_f = pool.submit(self.compute_course_fit, player_id, tournament_id) if tournament_id else None
            cpi = cpi_f.result()
            form = form_f.result()
            pressure = pressure_f.result()
            fit = fit_f.result() if fit_f else None

        score = ClutchScore(
            player_id=player_id,
            tournament_id=tournament_id,
            formula_version=self.config.formula_version,
            computed_at=as_of,
            cpi=cpi.value if cpi else None,
            cpi_components=cpi.components if cpi else None,
            form_score=form.value if form else None,
            form_components=form.components if form else None,
            pressure_score=pressure.value if pressure else None,
            pressure_components=pressure.components if pressure else None,
            course_fit_score=fit.value if fit else None,
            fit_components=fit.components if fit else None,
            inputs=self.config.metric_inputs(),
        )
        if persist:
            self.db.upsert_clutch_score(score)
        return score
