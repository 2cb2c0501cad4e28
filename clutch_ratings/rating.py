"""
Manager rating engine for Clutch Ratings.

Computes a 0-100 confidence-weighted composite across seven components:
  Win Rate (20%) | Draft IQ (18%) | Roster Mgmt (18%) | Predictions (15%)
  Trade Acumen (12%, deferred) | Championships (10%) | Consistency (7%)

Each component yields a score (0-100) and a confidence (0-100) derived from
how much history backs it. Components without data are excluded and their
weight is redistributed over the active ones; the rest are softened by
(confidence / 100) ** 0.6 before averaging.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from .config import Config, ManagerRatingSettings, MANAGER_RATING_VERSION, get_config
from .database import Database
from .models import (
    Component, ComponentScore, DraftGrade, HistoricalSeason, LineupSnapshot,
    ManagerRating, PlayoffResult, Prediction, PredictionOutcome, RatingSnapshot, RatingTier,
    TeamSeason, Trend, WeeklyTeamResult,
)
from .stats import (
    clamp, interpolate_confidence, mean, population_stddev, round_half_up, round_int, slope,
)

logger = logging.getLogger(__name__)

NO_DATA = "no_data"
ACTIVE = "active"
DEFERRED = "deferred"

SECONDS_PER_DAY = 24 * 60 * 60


def _confidence(x: float, curve) -> int:
    return round_int(interpolate_confidence(x, curve))


def _bounded(value: float) -> int:
    return round_int(clamp(value, 0, 100))


# =============================================================================
# Components
# =============================================================================

def win_rate_component(
    historical: Sequence[HistoricalSeason],
    native: Sequence[TeamSeason],
    settings: ManagerRatingSettings,
) -> ComponentScore:
    """Career and recent win percentage plus points-for consistency."""
    seasons = []
    for hs in historical:
        if hs.games == 0:
            continue
        seasons.append({"year": hs.season_year, "win_pct": hs.wins / hs.games, "pf": hs.points_for or 0})
    for ts in native:
        if ts.games == 0:
            continue
        # Native seasons carry no year and count as the most recent
        seasons.append({"year": None, "win_pct": ts.wins / ts.games, "pf": ts.total_points or 0})

    if not seasons:
        return ComponentScore()

    records = list(historical) + list(native)
    total_wins = sum(r.wins for r in records)
    total_games = sum(r.games for r in records)
    career_win_pct = total_wins / total_games if total_games > 0 else 0.5

    by_recency = sorted(seasons, key=lambda s: (s["year"] is None, s["year"] or 0), reverse=True)
    recent = [s["win_pct"] for s in by_recency[:settings.recent_season_count]]
    recent_win_pct = mean(recent) if recent else career_win_pct

    all_pf = [s["pf"] for s in seasons if s["pf"] > 0]
    pf_normalized = 0.5
    if len(all_pf) >= 2 and max(all_pf) - min(all_pf) > 0:
        avg_pf = mean(all_pf)
        pf_normalized = sum(1 for pf in all_pf if pf >= avg_pf) / len(all_pf)

    raw = career_win_pct * 0.4 + recent_win_pct * 0.4 + pf_normalized * 0.2
    return ComponentScore(
        score=_bounded(raw * 130 - 15),
        confidence=_confidence(len(seasons), settings.win_rate_curve),
        details={
            "seasons": len(seasons),
            "season_records": len(records),
            "career_win_pct": round_half_up(career_win_pct, 3),
            "recent_win_pct": round_half_up(recent_win_pct, 3),
            "pf_normalized": round_half_up(pf_normalized, 3),
        },
    )


def draft_iq_component(grades: Sequence[DraftGrade], settings: ManagerRatingSettings) -> ComponentScore:
    """Average draft grade, blended with early-round hits and late-round steals."""
    if not grades:
        return ComponentScore()

    avg_score = mean([g.overall_score for g in grades])
    blended = avg_score
    details: Dict[str, Any] = {"drafts": len(grades), "avg_grade": round_half_up(avg_score, 3)}

    picks = [p for g in grades for p in g.pick_grades]
    if picks:
        early = [p for p in picks if p.round <= settings.early_round_max]
        late = [p for p in picks if p.round >= settings.late_round_min]
        early_hits = sum(1 for p in early if p.score >= settings.early_hit_score)
        late_steals = sum(1 for p in late if p.score >= settings.late_steal_score)
        early_hit_rate = early_hits / len(early) * 100 if early else 50
        late_steal_rate = late_steals / len(late) * 100 if late else 50
        blended = avg_score * 0.40 + early_hit_rate * 0.35 + late_steal_rate * 0.25
        details.update({
            "early_hit_rate": round_half_up(early_hit_rate, 3),
            "late_steal_rate": round_half_up(late_steal_rate, 3),
        })

    return ComponentScore(
        score=_bounded(blended),
        confidence=_confidence(len(grades), settings.draft_iq_curve),
        details=details,
    )


def roster_mgmt_component(
    weekly: Sequence[WeeklyTeamResult],
    snapshots: Sequence[LineupSnapshot],
    settings: ManagerRatingSettings,
) -> ComponentScore:
    """Lineup optimality, bench efficiency and engagement over scored weeks."""
    total_weeks = len(weekly) if weekly else len(snapshots)
    if total_weeks == 0:
        return ComponentScore()

    optimal_count = 0
    bench_sum = 0.0
    bench_weeks = 0
    if weekly:
        source = "weekly_results"
        for wr in weekly:
            if wr.optimal_points and wr.optimal_points > 0:
                if wr.total_points / wr.optimal_points >= settings.optimal_lineup_ratio:
                    optimal_count += 1
            if wr.points_left_on_bench is not None and wr.total_points > 0:
                bench_sum += 1 - min(1.0, wr.points_left_on_bench / wr.total_points)
                bench_weeks += 1
    else:
        source = "lineup_snapshots"
        for snap in snapshots:
            if snap.optimal_points and snap.optimal_points > 0 and snap.active_points:
                if snap.active_points / snap.optimal_points >= settings.optimal_lineup_ratio:
                    optimal_count += 1
            if snap.bench_points is not None and snap.active_points and snap.active_points > 0:
                bench_sum += 1 - min(1.0, snap.bench_points / snap.active_points)
                bench_weeks += 1

    optimal_pct = optimal_count / total_weeks * 100
    bench_efficiency = bench_sum / bench_weeks * 100 if bench_weeks > 0 else 50
    engagement = min(100.0, total_weeks / settings.weeks_per_season * 100)

    raw = optimal_pct * 0.40 + bench_efficiency * 0.30 + engagement * 0.30
    return ComponentScore(
        score=_bounded(raw),
        confidence=_confidence(total_weeks, settings.roster_mgmt_curve),
        details={
            "weeks": total_weeks,
            "source": source,
            "optimal_pct": round_half_up(optimal_pct, 3),
            "bench_efficiency": round_half_up(bench_efficiency, 3),
            "engagement": round_half_up(engagement, 3),
        },
    )


def predictions_component(
    predictions: Sequence[Prediction],
    as_of: datetime,
    settings: ManagerRatingSettings,
) -> ComponentScore:
    """Accuracy of resolved predictions with exponential recency decay."""
    if not predictions:
        return ComponentScore()

    decay_seconds = settings.prediction_decay_days * SECONDS_PER_DAY
    weighted_correct = 0.0
    total_weight = 0.0
    for p in predictions:
        resolved = p.resolved_at or as_of
        age = max(0.0, (as_of - resolved).total_seconds())
        weight = math.exp(-age / decay_seconds)
        total_weight += weight
        if p.outcome == PredictionOutcome.CORRECT:
            weighted_correct += weight

    accuracy = weighted_correct / total_weight if total_weight > 0 else 0.0
    return ComponentScore(
        score=round_int(accuracy * 100),
        confidence=_confidence(len(predictions), settings.predictions_curve),
        details={
            "count": len(predictions),
            "weighted_accuracy": round_half_up(accuracy, 3),
        },
    )


def _has_playoff_data(historical: Sequence[HistoricalSeason], native: Sequence[TeamSeason]) -> bool:
    return (
        any(hs.playoff_result is not None for hs in historical)
        or any(ts.is_champion is not None or ts.final_rank is not None for ts in native)
    )


def championships_component(
    historical: Sequence[HistoricalSeason],
    native: Sequence[TeamSeason],
    settings: ManagerRatingSettings,
) -> ComponentScore:
    """Titles, playoff appearances, playoff wins and near misses."""
    total_seasons = len(historical) + len(native)
    if total_seasons == 0 or not _has_playoff_data(historical, native):
        return ComponentScore()

    titles = appearances = playoff_wins = runner_ups = playoff_games = 0
    for hs in historical:
        result = (hs.playoff_result or "").lower()
        if not result or result == PlayoffResult.MISSED.value:
            continue
        appearances += 1
        if result == PlayoffResult.CHAMPION.value:
            titles += 1
            playoff_wins += 3
            playoff_games += 3
        elif result == PlayoffResult.RUNNER_UP.value:
            runner_ups += 1
            playoff_wins += 2
            playoff_games += 3
        elif result == PlayoffResult.SEMIFINAL.value:
            playoff_wins += 1
            playoff_games += 2
        else:
            playoff_games += 1

    for ts in native:
        if ts.is_champion:
            titles += 1
            appearances += 1
        elif ts.final_rank and ts.final_rank <= 4:
            appearances += 1

    title_score = min(100.0, 20 + titles / total_seasons * 600)
    playoff_score = min(100.0, appearances / total_seasons * 120)
    playoff_win_pct = playoff_wins / playoff_games if playoff_games > 0 else 0.0
    playoff_win_score = min(100.0, playoff_win_pct * 100)
    runner_up_bonus = min(100, runner_ups * 25 + 20)

    raw = title_score * 0.35 + playoff_score * 0.25 + playoff_win_score * 0.25 + runner_up_bonus * 0.15
    return ComponentScore(
        score=_bounded(raw),
        confidence=_confidence(total_seasons, settings.championships_curve),
        details={
            "seasons": total_seasons,
            "titles": titles,
            "playoff_appearances": appearances,
            "runner_ups": runner_ups,
            "playoff_win_pct": round_half_up(playoff_win_pct, 3),
        },
    )


def consistency_component(
    historical: Sequence[HistoricalSeason],
    native: Sequence[TeamSeason],
    settings: ManagerRatingSettings,
) -> ComponentScore:
    """Season-to-season stability of win percentage."""
    win_pcts: List[float] = []
    for season in list(historical) + list(native):
        if season.games < settings.consistency_min_games:
            continue
        win_pcts.append(season.wins / season.games)

    if len(win_pcts) < settings.consistency_min_seasons:
        return ComponentScore(details={"qualifying_seasons": len(win_pcts)})

    # StdDev of 0 = 100, 0.3 or more = 0
    low_variance = _bounded((1 - population_stddev(win_pcts) / 0.3) * 100)

    streak = best_streak = 0
    for wp in win_pcts:
        if wp >= settings.losing_season_win_pct:
            streak += 1
            best_streak = max(best_streak, streak)
        else:
            streak = 0
    no_losing_streak = min(100, round_int(interpolate_confidence(best_streak, settings.streak_curve)))

    # -0.1/season = 0, flat = 50, +0.1/season = 100
    improvement = _bounded(50 + slope(win_pcts) * 500) if len(win_pcts) >= 3 else 50
    floor_protection = _bounded(min(win_pcts) * 160)

    raw = low_variance * 0.40 + no_losing_streak * 0.25 + improvement * 0.20 + floor_protection * 0.15
    return ComponentScore(
        score=_bounded(raw),
        confidence=_confidence(len(win_pcts), settings.consistency_curve),
        details={
            "qualifying_seasons": len(win_pcts),
            "low_variance": low_variance,
            "best_streak": best_streak,
            "improvement_trend": improvement,
            "floor_protection": floor_protection,
        },
    )


def trade_acumen_component() -> ComponentScore:
    """Not scored in this rating version."""
    return ComponentScore(details={"status": DEFERRED})


# =============================================================================
# Aggregation
# =============================================================================

def redistribute_weights(
    active: Sequence[Component],
    base_weights: Dict[Component, float],
) -> Dict[Component, float]:
    """
    Spread the weight of inactive components over the active ones in
    proportion to their base weights. The result sums to the total base weight.
    """
    active_sum = sum(base_weights.get(key, 0.0) for key in active)
    if active_sum <= 0:
        return {}
    inactive_sum = sum(w for key, w in base_weights.items() if key not in active)
    return {
        key: base_weights.get(key, 0.0) + base_weights.get(key, 0.0) / active_sum * inactive_sum
        for key in active
    }


def get_tier(overall: Optional[int], settings: Optional[ManagerRatingSettings] = None) -> RatingTier:
    settings = settings or ManagerRatingSettings()
    if overall is None:
        return RatingTier.UNRANKED
    for minimum, tier in settings.tier_thresholds:
        if overall >= minimum:
            return tier
    return RatingTier.UNRANKED


def compute_trend(
    overall: Optional[int],
    prior: Optional[RatingSnapshot],
    settings: Optional[ManagerRatingSettings] = None,
) -> Trend:
    settings = settings or ManagerRatingSettings()
    if overall is None or prior is None:
        return Trend.NEW
    diff = overall - prior.overall
    if diff > settings.trend_threshold:
        return Trend.UP
    if diff < -settings.trend_threshold:
        return Trend.DOWN
    return Trend.STABLE


def aggregate(
    components: Dict[Component, ComponentScore],
    settings: Optional[ManagerRatingSettings] = None,
) -> Dict[str, Any]:
    """
    Combine component scores into the overall rating.

    Returns ``overall``, ``confidence``, ``tier`` and a ``breakdown`` with the
    adjusted weights and softened confidences used.
    """
    settings = settings or ManagerRatingSettings()
    base = settings.component_weights
    active = [key for key in Component if key in components and components[key].active]

    breakdown: Dict[str, Any] = {
        "active": [key.value for key in active],
        "inactive": [key.value for key in Component if key not in active],
        "components": {},
    }
    if not active:
        return {"overall": None, "confidence": 0, "tier": RatingTier.UNRANKED, "breakdown": breakdown}

    adjusted = redistribute_weights(active, base)
    numerator = denominator = 0.0
    confidence_sum = weight_sum = 0.0
    for key in active:
        comp = components[key]
        softened = (comp.confidence / 100) ** settings.confidence_softener
        numerator += comp.score * adjusted[key] * softened
        denominator += adjusted[key] * softened
        confidence_sum += comp.confidence * base[key]
        weight_sum += base[key]
        breakdown["components"][key.value] = {
            "base_weight": base[key],
            "adjusted_weight": round_half_up(adjusted[key], 6),
            "softened_confidence": round_half_up(softened, 6),
        }

    overall = round_int(clamp(numerator / denominator, 0, 100)) if denominator > 0 else None
    confidence = round_int(confidence_sum / weight_sum) if weight_sum > 0 else 0
    return {
        "overall": overall,
        "confidence": confidence,
        "tier": get_tier(overall, settings),
        "breakdown": breakdown,
    }


def data_source_summary(components: Dict[Component, ComponentScore]) -> str:
    """Human-readable list of the data behind a rating."""
    sources = []
    win_rate = components[Component.WIN_RATE]
    if win_rate.confidence > 0:
        count = win_rate.details.get("season_records", 0)
        sources.append(f"{count} season{'s' if count != 1 else ''}")
    draft = components[Component.DRAFT_IQ]
    if draft.confidence > 0:
        count = draft.details.get("drafts", 0)
        sources.append(f"{count} draft{'s' if count != 1 else ''}")
    predictions = components[Component.PREDICTIONS]
    if predictions.confidence > 0:
        sources.append(f"{predictions.details.get('count', 0)} predictions")
    if components[Component.ROSTER_MGMT].confidence > 0:
        sources.append("lineup data")
    return f"Based on {' + '.join(sources)}" if sources else "No data yet"


# =============================================================================
# Engine
# =============================================================================

class ManagerRatingEngine:
    """Computes, persists and reads back manager ratings."""

    def __init__(self, db: Optional[Database] = None, config: Optional[Config] = None):
        self.config = config or get_config()
        self.settings = self.config.manager_rating
        self.db = db or Database(self.config.db_path)

    def _win_rate(self, user_id: int, as_of: datetime) -> ComponentScore:
        return win_rate_component(
            self.db.get_historical_seasons(user_id), self.db.get_team_seasons(user_id), self.settings
        )

    def _draft_iq(self, user_id: int, as_of: datetime) -> ComponentScore:
        return draft_iq_component(self.db.get_draft_grades(user_id), self.settings)

    def _roster_mgmt(self, user_id: int, as_of: datetime) -> ComponentScore:
        return roster_mgmt_component(
            self.db.get_weekly_results(user_id), self.db.get_lineup_snapshots(user_id), self.settings
        )

    def _predictions(self, user_id: int, as_of: datetime) -> ComponentScore:
        return predictions_component(self.db.get_resolved_predictions(user_id), as_of, self.settings)

    def _trade_acumen(self, user_id: int, as_of: datetime) -> ComponentScore:
        return trade_acumen_component()

    def _championships(self, user_id: int, as_of: datetime) -> ComponentScore:
        return championships_component(
            self.db.get_historical_seasons(user_id), self.db.get_team_seasons(user_id), self.settings
        )

    def _consistency(self, user_id: int, as_of: datetime) -> ComponentScore:
        return consistency_component(
            self.db.get_historical_seasons(user_id), self.db.get_team_seasons(user_id), self.settings
        )

    def compute_components(self, user_id: int, as_of: datetime) -> Dict[Component, ComponentScore]:
        """Run every component concurrently; results are keyed in canonical order."""
        calculators: Dict[Component, Callable[[int, datetime], ComponentScore]] = {
            Component.WIN_RATE: self._win_rate,
            Component.DRAFT_IQ: self._draft_iq,
            Component.ROSTER_MGMT: self._roster_mgmt,
            Component.PREDICTIONS: self._predictions,
            Component.TRADE_ACUMEN: self._trade_acumen,
            Component.CHAMPIONSHIPS: self._championships,
            Component.CONSISTENCY: self._consistency,
        }
        with ThreadPoolExecutor(max_workers=len(calculators)) as pool:
            futures = {key: pool.submit(fn, user_id, as_of) for key, fn in calculators.items()}
            return {key: futures[key].result() for key in Component}

    def calculate_rating(
        self,
        user_id: int,
        as_of: Optional[datetime] = None,
        persist: bool = True,
    ) -> ManagerRating:
        """Compute a user's rating and upsert it with today's snapshot."""
        as_of = as_of or datetime.now()
        components = self.compute_components(user_id, as_of)
        result = aggregate(components, self.settings)
        overall = result["overall"]

        prior = None
        if overall is not None:
            cutoff = as_of.date() - timedelta(days=self.settings.trend_window_days)
            prior = self.db.get_snapshot_on_or_before(user_id, cutoff)
        trend = compute_trend(overall, prior, self.settings)

        breakdown = result["breakdown"]
        for key, comp in components.items():
            entry = breakdown["components"].setdefault(key.value, {
                "base_weight": self.settings.component_weights[key],
                "adjusted_weight": 0.0,
                "softened_confidence": 0.0,
            })
            entry.update({"score": comp.score, "confidence": comp.confidence, "details": comp.details})

        sources = {}
        for key, comp in components.items():
            if key == Component.TRADE_ACUMEN:
                sources[key.value] = DEFERRED
            else:
                sources[key.value] = ACTIVE if comp.confidence > 0 else NO_DATA

        rating = ManagerRating(
            user_id=user_id,
            overall=overall,
            confidence=result["confidence"],
            tier=result["tier"],
            trend=trend,
            components=components,
            breakdown=breakdown,
            computed_at=as_of,
            version=MANAGER_RATING_VERSION,
            data_source_summary=data_source_summary(components),
            total_graded_calls=components[Component.PREDICTIONS].details.get("count", 0),
            computation_inputs={
                "version": MANAGER_RATING_VERSION,
                "confidence_softener": self.settings.confidence_softener,
                "prior_snapshot_date": prior.snapshot_date.isoformat() if prior else None,
                "component_sources": sources,
            },
        )

        logger.debug(
            f"Rated user {user_id}: overall={overall} confidence={rating.confidence} "
            f"tier={rating.tier.value} trend={trend.value}"
        )

        if persist:
            snapshot = None
            if overall is not None:
                snapshot = RatingSnapshot(
                    user_id=user_id,
                    snapshot_date=as_of.date(),
                    overall=overall,
                    components={
                        key.value: comp.score for key, comp in components.items()
                        if key != Component.TRADE_ACUMEN
                    },
                )
            self.db.save_manager_rating(rating, snapshot)
        return rating

    def get_rating(self, user_id: int) -> Optional[Dict[str, Any]]:
        """Stored rating with its components, without recomputing."""
        record = self.db.get_manager_rating_row(user_id)
        if not record or record["version"] < MANAGER_RATING_VERSION:
            return None

        components = {}
        for key in Component:
            score = record[f"{key.value}_score"]
            confidence = record[f"{key.value}_confidence"] or 0
            components[key.value] = {
                "score": score,
                "confidence": confidence,
                "active": key != Component.TRADE_ACUMEN and confidence > 0 and score is not None,
            }
        return {
            "user_id": user_id,
            "overall": record["overall_rating"],
            "tier": record["tier"] or RatingTier.UNRANKED.value,
            "confidence": record["confidence"] or 0,
            "trend": record["trend"] or Trend.NEW.value,
            "components": components,
            "data_source_summary": record["data_source_summary"] or "No data yet",
            "total_graded_calls": record["total_graded_calls"] or 0,
            "last_updated": record["computed_at"],
        }
