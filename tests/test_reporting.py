"""Reporting frame tests."""

from __future__ import annotations

import pandas as pd

from matchlab.markets.engine import compute_batch
from matchlab.markets.reporting import pivot_probabilities, probabilities_frame, summarize_markets
from matchlab.markets.types import MatchMetrics


def _frame() -> pd.DataFrame:
    batch = compute_batch(
        [
            MatchMetrics(fixture_id=1, lambda_home=1.3, lambda_away=1.0),
            MatchMetrics(fixture_id=2, lambda_home=0.9, lambda_away=1.6),
        ]
    )
    return probabilities_frame(batch.records())


def test_probabilities_frame_columns() -> None:
    frame = _frame()
    assert list(frame.columns[:3]) == ["fixture_id", "market", "family"]
    assert set(frame["fixture_id"]) == {1, 2}


def test_summarize_markets() -> None:
    summary = summarize_markets(_frame())
    assert summary["fixtures"] == 2.0
    assert summary["match_result_count"] == 6.0
    assert 0.0 < summary["total_goals_p_mean"] < 1.0
    assert summarize_markets(probabilities_frame([])) == {}


def test_pivot_keeps_catalog_order() -> None:
    table = pivot_probabilities(_frame())
    assert list(table.index) == [1, 2]
    assert table.columns[0] == "over_0.5"
    assert table.loc[1, "1x2_home"] > table.loc[1, "1x2_away"]


def test_pivot_tolerates_repeated_fixture_ids() -> None:
    batch = compute_batch(
        [
            MatchMetrics(fixture_id=7, lambda_home=1.3, lambda_away=1.0),
            MatchMetrics(fixture_id=7, lambda_home=0.4, lambda_away=2.2),
        ]
    )
    table = pivot_probabilities(probabilities_frame(batch.records()))
    assert list(table.index) == [7]
    first = batch.results[0].probabilities
    home = next(p for p in first if p.market.key == "1x2_home")
    assert table.loc[7, "1x2_home"] == home.p_model
