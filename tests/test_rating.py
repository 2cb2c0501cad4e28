"""
Tests for rating.py - Manager rating engine.
"""

import itertools
from datetime import timedelta

import pytest

from clutch_ratings.config import ManagerRatingSettings
from clutch_ratings.models import (
    Component, ComponentScore, DraftGrade, HistoricalSeason, LineupSnapshot,
    PickGrade, Prediction, PredictionOutcome, RatingSnapshot, RatingTier,
    TeamSeason, Trend, WeeklyTeamResult,
)
from clutch_ratings.rating import (
    ManagerRatingEngine, aggregate, championships_component, compute_trend,
    consistency_component, draft_iq_component, get_tier, predictions_component,
    redistribute_weights, roster_mgmt_component, trade_acumen_component,
    win_rate_component,
)

from conftest import AS_OF


@pytest.fixture
def settings():
    return ManagerRatingSettings()


@pytest.fixture
def engine(db, config):
    return ManagerRatingEngine(db, config)


def season(year, wins, losses, **kwargs):
    return HistoricalSeason(user_id=7, season_year=year, wins=wins, losses=losses, **kwargs)


def inactive_components():
    return {key: ComponentScore() for key in Component}


class TestWinRate:
    """Tests for the Win Rate component."""

    def test_three_seasons(self, settings):
        seasons = [season(2022, 8, 6, points_for=1400.0), season(2023, 9, 5, points_for=1500.0),
                   season(2024, 7, 7, points_for=1350.0)]
        result = win_rate_component(seasons, [], settings)
        # (24/42 * 0.4 + 24/42 * 0.4 + 1/3 * 0.2) * 130 - 15
        assert result.score == 53
        assert result.confidence == 55
        assert result.details["season_records"] == 3

    def test_no_seasons(self, settings):
        result = win_rate_component([], [], settings)
        assert result.score is None
        assert result.confidence == 0

    def test_empty_seasons_skipped(self, settings):
        result = win_rate_component([season(2024, 0, 0)], [], settings)
        assert not result.active

    def test_native_seasons_count_as_most_recent(self, settings):
        old = [season(2019 + i, 2, 12) for i in range(3)]
        native = [TeamSeason(user_id=7, team_id=1, wins=12, losses=2)]
        result = win_rate_component(old, native, settings)
        # recent window is the native season plus the two latest imports
        assert result.details["recent_win_pct"] == pytest.approx((12 / 14 + 2 / 14 + 2 / 14) / 3, abs=1e-3)

    def test_score_bounds(self, settings):
        perfect = win_rate_component([season(2024, 14, 0)], [], settings)
        winless = win_rate_component([season(2024, 0, 14)], [], settings)
        assert perfect.score == 100
        assert winless.score == 0


class TestDraftIQ:
    """Tests for the Draft IQ component."""

    def test_blends_pick_grades(self, settings):
        grades = [
            DraftGrade(user_id=7, team_id=1, overall_score=80, pick_grades=[PickGrade(1, 80), PickGrade(2, 60)]),
            DraftGrade(user_id=7, team_id=2, overall_score=60, pick_grades=[PickGrade(9, 90), PickGrade(10, 50)]),
        ]
        result = draft_iq_component(grades, settings)
        # 70 * 0.40 + 50 * 0.35 + 50 * 0.25
        assert result.score == 58
        assert result.confidence == 45

    def test_average_only_without_picks(self, settings):
        grades = [DraftGrade(user_id=7, team_id=1, overall_score=72.4)]
        result = draft_iq_component(grades, settings)
        assert result.score == 72
        assert result.confidence == 30

    def test_no_grades(self, settings):
        assert draft_iq_component([], settings).confidence == 0

    def test_breakdown_rounds_half_up(self, settings):
        grades = [DraftGrade(user_id=7, team_id=1, overall_score=72.0625)]
        assert draft_iq_component(grades, settings).details["avg_grade"] == 72.063


class TestRosterManagement:
    """Tests for the Roster Management component."""

    def test_weekly_results(self, settings):
        weekly = [
            WeeklyTeamResult(user_id=7, team_id=1, week=w, total_points=90, optimal_points=100,
                             points_left_on_bench=10)
            for w in range(1, 18)
        ]
        result = roster_mgmt_component(weekly, [], settings)
        # 100 * 0.4 + (1 - 10/90) * 100 * 0.3 + 100 * 0.3
        assert result.score == 97
        assert result.confidence == 65
        assert result.details["source"] == "weekly_results"

    def test_falls_back_to_lineup_snapshots(self, settings):
        snaps = [
            LineupSnapshot(user_id=7, team_id=1, week=w, active_points=80, bench_points=20, optimal_points=100)
            for w in range(1, 5)
        ]
        result = roster_mgmt_component([], snaps, settings)
        # 0 * 0.4 + 75 * 0.3 + (4/17 * 100) * 0.3
        assert result.score == 30
        assert result.confidence == 20
        assert result.details["source"] == "lineup_snapshots"

    def test_no_weeks(self, settings):
        assert roster_mgmt_component([], [], settings).confidence == 0


class TestPredictions:
    """Tests for the Predictions component."""

    def test_accuracy(self, settings):
        preds = [
            Prediction(user_id=7, outcome=PredictionOutcome.CORRECT if i < 7 else PredictionOutcome.INCORRECT,
                       resolved_at=AS_OF)
            for i in range(10)
        ]
        result = predictions_component(preds, AS_OF, settings)
        assert result.score == 70
        assert result.confidence == 15

    def test_recency_decay(self, settings):
        preds = [
            Prediction(user_id=7, outcome=PredictionOutcome.CORRECT, resolved_at=AS_OF),
            Prediction(user_id=7, outcome=PredictionOutcome.INCORRECT, resolved_at=AS_OF - timedelta(days=90)),
        ]
        # 1 / (1 + e^-1)
        assert predictions_component(preds, AS_OF, settings).score == 73

    def test_future_resolution_not_upweighted(self, settings):
        preds = [
            Prediction(user_id=7, outcome=PredictionOutcome.CORRECT, resolved_at=AS_OF + timedelta(days=30)),
            Prediction(user_id=7, outcome=PredictionOutcome.INCORRECT, resolved_at=AS_OF),
        ]
        assert predictions_component(preds, AS_OF, settings).score == 50

    def test_no_predictions(self, settings):
        assert predictions_component([], AS_OF, settings).confidence == 0


class TestChampionships:
    """Tests for the Championships component."""

    def test_playoff_history(self, settings):
        seasons = [
            season(2021, 10, 4, playoff_result="champion"),
            season(2022, 9, 5, playoff_result="runner_up"),
            season(2023, 5, 9, playoff_result="missed"),
            season(2024, 6, 8),
        ]
        result = championships_component(seasons, [], settings)
        # 100 * 0.35 + 60 * 0.25 + (5/6 * 100) * 0.25 + 45 * 0.15
        assert result.score == 78
        assert result.confidence == 50
        assert result.details["titles"] == 1

    def test_native_champion(self, settings):
        native = [TeamSeason(user_id=7, team_id=1, wins=10, losses=4, is_champion=True)]
        result = championships_component([], native, settings)
        assert result.details["titles"] == 1
        assert result.details["playoff_appearances"] == 1

    def test_no_playoff_data(self, settings):
        seasons = [season(2022, 8, 6), season(2023, 9, 5)]
        result = championships_component(seasons, [], settings)
        assert result.score is None
        assert result.confidence == 0


class TestConsistency:
    """Tests for the Consistency component."""

    def test_flat_record(self, settings):
        seasons = [season(2021 + i, 7, 7) for i in range(4)]
        result = consistency_component(seasons, [], settings)
        # 100 * 0.40 + 63 * 0.25 + 50 * 0.20 + 80 * 0.15
        assert result.score == 78
        assert result.confidence == 45
        assert result.details["best_streak"] == 4

    def test_needs_four_qualifying_seasons(self, settings):
        seasons = [season(2021 + i, 7, 7) for i in range(3)] + [season(2024, 1, 1)]
        result = consistency_component(seasons, [], settings)
        assert result.confidence == 0
        assert result.details["qualifying_seasons"] == 3

    def test_losing_season_breaks_streak(self, settings):
        seasons = [season(2019, 9, 5), season(2020, 2, 12), season(2021, 9, 5),
                   season(2022, 9, 5), season(2023, 9, 5)]
        assert consistency_component(seasons, [], settings).details["best_streak"] == 3


class TestAggregation:
    """Tests for weight redistribution and aggregation."""

    def test_weight_conservation_for_every_partition(self, settings):
        base = settings.component_weights
        for size in range(1, len(Component) + 1):
            for active in itertools.combinations(list(Component), size):
                adjusted = redistribute_weights(active, base)
                assert set(adjusted) == set(active)
                assert sum(adjusted.values()) == pytest.approx(1.0)

    def test_all_inactive(self, settings):
        result = aggregate(inactive_components(), settings)
        assert result["overall"] is None
        assert result["confidence"] == 0
        assert result["tier"] == RatingTier.UNRANKED

    def test_single_active_predictions(self, settings):
        components = inactive_components()
        components[Component.PREDICTIONS] = ComponentScore(score=67, confidence=42)
        result = aggregate(components, settings)
        assert result["overall"] == 67
        assert result["confidence"] == 42

    def test_softening_favors_confident_components(self, settings):
        components = inactive_components()
        components[Component.WIN_RATE] = ComponentScore(score=90, confidence=98)
        components[Component.DRAFT_IQ] = ComponentScore(score=10, confidence=5)
        result = aggregate(components, settings)
        assert result["overall"] > 50
        breakdown = result["breakdown"]["components"]
        assert breakdown["win_rate"]["softened_confidence"] > breakdown["draft_iq"]["softened_confidence"]

    def test_overall_in_bounds(self, settings):
        components = {key: ComponentScore(score=100, confidence=100) for key in Component}
        assert aggregate(components, settings)["overall"] == 100

    @pytest.mark.parametrize("overall,tier", [
        (95, RatingTier.ELITE), (80, RatingTier.VETERAN), (79, RatingTier.COMPETITOR),
        (60, RatingTier.CONTENDER), (53, RatingTier.DEVELOPING), (40, RatingTier.ROOKIE),
        (39, RatingTier.UNRANKED), (None, RatingTier.UNRANKED),
    ])
    def test_tiers(self, settings, overall, tier):
        assert get_tier(overall, settings) == tier

    def test_trend(self, settings):
        prior = RatingSnapshot(user_id=7, snapshot_date=AS_OF.date(), overall=50)
        assert compute_trend(55, prior, settings) == Trend.UP
        assert compute_trend(46, prior, settings) == Trend.DOWN
        assert compute_trend(53, prior, settings) == Trend.STABLE
        assert compute_trend(53, None, settings) == Trend.NEW

    def test_trade_acumen_deferred(self):
        result = trade_acumen_component()
        assert not result.active
        assert result.details["status"] == "deferred"


class TestManagerRatingEngine:
    """Tests for ManagerRatingEngine."""

    def test_three_season_fixture(self, three_season_manager, engine):
        rating = engine.calculate_rating(7, as_of=AS_OF)
        assert rating.components[Component.WIN_RATE].confidence == 55
        for key in Component:
            if key != Component.WIN_RATE:
                assert rating.components[key].confidence == 0, key
        assert rating.overall == 53
        assert rating.confidence == 55
        assert rating.tier == RatingTier.DEVELOPING
        assert rating.trend == Trend.NEW
        assert rating.data_source_summary == "Based on 3 seasons"
        assert rating.computation_inputs["component_sources"]["trade_acumen"] == "deferred"
        assert rating.computation_inputs["component_sources"]["draft_iq"] == "no_data"

    def test_persists_rating_and_snapshot(self, three_season_manager, engine):
        engine.calculate_rating(7, as_of=AS_OF)
        stored = engine.get_rating(7)
        assert stored["overall"] == 53
        assert stored["tier"] == "DEVELOPING"
        assert stored["components"]["win_rate"]["active"] is True
        assert stored["components"]["trade_acumen"]["active"] is False
        snapshots = three_season_manager.get_rating_snapshots(7)
        assert len(snapshots) == 1
        assert snapshots[0].snapshot_date == AS_OF.date()

    def test_trend_uses_snapshot_from_thirty_days_back(self, three_season_manager, engine):
        engine.calculate_rating(7, as_of=AS_OF)
        later = engine.calculate_rating(7, as_of=AS_OF + timedelta(days=31))
        assert later.trend == Trend.STABLE
        assert later.computation_inputs["prior_snapshot_date"] == AS_OF.date().isoformat()

    def test_recent_snapshot_does_not_count(self, three_season_manager, engine):
        engine.calculate_rating(7, as_of=AS_OF)
        assert engine.calculate_rating(7, as_of=AS_OF + timedelta(days=10)).trend == Trend.NEW

    def test_user_without_data(self, db, engine):
        rating = engine.calculate_rating(99, as_of=AS_OF)
        assert rating.overall is None
        assert rating.tier == RatingTier.UNRANKED
        assert rating.data_source_summary == "No data yet"
        assert db.get_rating_snapshots(99) == []

    def test_predictions_counted(self, db, engine):
        for i in range(12):
            outcome = PredictionOutcome.CORRECT if i % 2 else PredictionOutcome.INCORRECT
            db.save_prediction(Prediction(user_id=8, outcome=outcome, resolved_at=AS_OF))
        rating = engine.calculate_rating(8, as_of=AS_OF)
        assert rating.total_graded_calls == 12
        assert rating.overall == rating.components[Component.PREDICTIONS].score

    def test_get_rating_missing(self, engine):
        assert engine.get_rating(12345) is None
