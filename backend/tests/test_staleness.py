import pytest

from conversation_analysis.core.errors import ValidationError
from conversation_analysis.models import AnalysisStatus, AnalysisStrategy
from conversation_analysis.services.staleness import (
    StalenessSnapshot,
    choose_strategy,
    is_analysis_stale,
    new_responses_since_analysis,
)


def test_ready_analysis_with_new_responses_is_stale():
    assert is_analysis_stale(AnalysisStatus.READY, 50, 55) is True
    assert new_responses_since_analysis(50, 55) == 5


def test_staleness_requires_ready_status():
    assert is_analysis_stale(AnalysisStatus.ANALYZING, 50, 55) is False
    assert is_analysis_stale(AnalysisStatus.ERROR, 0, 10) is False
    assert is_analysis_stale(AnalysisStatus.READY, 55, 55) is False


def test_new_responses_never_negative():
    assert new_responses_since_analysis(10, 4) == 0


def _snapshot(analyzed: int, current: int, prior: bool = True) -> StalenessSnapshot:
    return StalenessSnapshot(
        status=AnalysisStatus.READY if prior else AnalysisStatus.NOT_STARTED,
        analyzed_count=analyzed,
        current_count=current,
        has_prior_run=prior,
    )


def test_auto_strategy_prefers_incremental_for_few_new_responses():
    assert choose_strategy(_snapshot(50, 55)) == AnalysisStrategy.INCREMENTAL


def test_auto_strategy_goes_full_when_most_responses_are_new():
    assert choose_strategy(_snapshot(10, 40)) == AnalysisStrategy.FULL


def test_auto_strategy_respects_absolute_cap():
    snapshot = _snapshot(100, 130)
    assert choose_strategy(snapshot) == AnalysisStrategy.INCREMENTAL
    assert choose_strategy(snapshot, max_new_responses=20) == AnalysisStrategy.FULL


def test_incremental_without_prior_run_is_upgraded():
    assert choose_strategy(_snapshot(0, 10, prior=False), AnalysisStrategy.INCREMENTAL) == AnalysisStrategy.FULL


def test_explicit_strategies_are_honoured():
    snapshot = _snapshot(10, 40)
    assert choose_strategy(snapshot, "full") == AnalysisStrategy.FULL
    assert choose_strategy(snapshot, "incremental") == AnalysisStrategy.INCREMENTAL


def test_unknown_strategy_is_rejected():
    with pytest.raises(ValidationError):
        choose_strategy(_snapshot(1, 2), "partial")
