"""Market probability engine tests."""

from __future__ import annotations

import math

import numpy as np
import pytest

from matchlab.errors import InsufficientDataError, ModelComputationError
from matchlab.markets.catalog import get_catalog
from matchlab.markets.engine import FAMILY_HANDLERS, compute_batch, compute_market_probabilities
from matchlab.markets.types import MarketFamily, MatchMetrics, QualityFlags
from matchlab.numeric import joint_score_matrix


def _metrics(fixture_id: int = 1, **overrides) -> MatchMetrics:
    values = {"lambda_home": 1.3, "lambda_away": 1.0}
    values.update(overrides)
    return MatchMetrics(fixture_id=fixture_id, **values)


def _by_key(metrics: MatchMetrics) -> dict:
    return {record.market.key: record for record in compute_market_probabilities(metrics)}


def _p(records: dict, key: str) -> float:
    return records[key].p_model


def test_every_family_has_a_branch() -> None:
    assert set(FAMILY_HANDLERS) == set(MarketFamily)


def test_scenario_totals_and_result() -> None:
    records = _by_key(_metrics())
    under = math.exp(-2.3) * (1 + 2.3 + 2.3**2 / 2)
    assert _p(records, "under_2.5") == pytest.approx(under, abs=1e-3)
    assert 0.55 <= _p(records, "under_2.5") <= 0.60
    assert _p(records, "over_2.5") == pytest.approx(1 - under, abs=1e-3)
    assert _p(records, "1x2_home") > _p(records, "1x2_away")


def test_result_partition_sums_to_one() -> None:
    for lambdas in [(1.3, 1.0), (0.4, 2.9), (3.1, 0.2), (1.0, 1.0)]:
        records = _by_key(_metrics(lambda_home=lambdas[0], lambda_away=lambdas[1]))
        total = _p(records, "1x2_home") + _p(records, "1x2_draw") + _p(records, "1x2_away")
        assert total == pytest.approx(1.0, abs=1e-3)


def test_closed_groups_sum_to_one() -> None:
    records = _by_key(_metrics())
    catalog = get_catalog()
    checked = 0
    for group in catalog.groups:
        if not group.closed or group.markets[0].key not in records:
            continue
        total = sum(_p(records, market.key) for market in group.markets)
        assert total == pytest.approx(1.0, abs=1e-3), group.name
        checked += 1
    assert checked > 10


def test_double_chance_is_derived_from_result() -> None:
    records = _by_key(_metrics())
    home, draw, away = (_p(records, k) for k in ("1x2_home", "1x2_draw", "1x2_away"))
    assert _p(records, "double_chance_1x") == pytest.approx(home + draw, abs=1e-9)
    assert _p(records, "double_chance_x2") == pytest.approx(draw + away, abs=1e-9)
    assert _p(records, "double_chance_12") == pytest.approx(home + away, abs=1e-9)


def test_over_probabilities_decrease_with_line() -> None:
    records = _by_key(_metrics(lambda_home=2.2, lambda_away=1.9))
    overs = [_p(records, f"over_{line}") for line in ("0.5", "1.5", "2.5", "3.5", "4.5")]
    assert overs == sorted(overs, reverse=True)


def test_btts_uses_joint_grid() -> None:
    records = _by_key(_metrics(btts_home_rate=0.9, btts_away_rate=0.9))
    expected = (1 - math.exp(-1.3)) * (1 - math.exp(-1.0))
    assert _p(records, "btts_yes") == pytest.approx(expected, abs=1e-3)
    inputs = records["btts_yes"].model_inputs
    assert inputs["btts_home_rate"] == 0.9
    assert inputs["p_both_blank"] == pytest.approx(math.exp(-2.3), abs=1e-6)


def test_correct_score_and_clean_sheet() -> None:
    records = _by_key(_metrics())
    assert _p(records, "correct_score_0_0") == pytest.approx(math.exp(-2.3), abs=1e-4)
    assert _p(records, "home_clean_sheet_yes") == pytest.approx(math.exp(-1.0), abs=1e-4)
    assert _p(records, "away_clean_sheet_yes") == pytest.approx(math.exp(-1.3), abs=1e-4)


def test_low_probability_groups_are_omitted() -> None:
    records = _by_key(_metrics())
    assert "over_3.5" in records
    assert "over_5.5" not in records
    assert "under_5.5" not in records
    assert "over_0.5" in records


def test_output_is_deterministic_and_in_catalog_order() -> None:
    first = compute_market_probabilities(_metrics())
    second = compute_market_probabilities(_metrics())
    assert first == second
    order = [market.key for market in get_catalog().markets]
    positions = [order.index(record.market.key) for record in first]
    assert positions == sorted(positions)


def test_records_carry_inputs_and_rationale() -> None:
    for record in compute_market_probabilities(_metrics()):
        assert record.rationale
        assert record.model_inputs
        assert record.engine_version
        assert 0.0 <= record.p_model <= 1.0
        assert 0.0 <= record.uncertainty <= 1.0
    records = _by_key(_metrics())
    assert records["over_2.5"].model_inputs["lambda_total"] == pytest.approx(2.3)
    assert records["over_2.5"].to_dict()["family"] == "total_goals"


@pytest.mark.parametrize("bad", [float("nan"), -0.5, None, float("inf")])
def test_invalid_lambda_raises(bad) -> None:
    with pytest.raises(ModelComputationError) as excinfo:
        compute_market_probabilities(_metrics(fixture_id=9, lambda_home=bad))
    assert excinfo.value.fixture_id == 9


def test_zero_rates_are_valid() -> None:
    records = _by_key(_metrics(lambda_home=0.0, lambda_away=0.0))
    assert _p(records, "1x2_draw") == 1.0
    assert _p(records, "over_0.5") == 0.0
    assert _p(records, "correct_score_0_0") == 1.0


def test_quality_flags_widen_uncertainty() -> None:
    base = _by_key(_metrics())
    small = _by_key(_metrics(quality_flags=QualityFlags(small_sample=True)))
    noisy = _by_key(_metrics(quality_flags=QualityFlags(high_variance_goals=True)))
    assert small["over_2.5"].uncertainty == pytest.approx(base["over_2.5"].uncertainty + 0.05)
    assert noisy["over_2.5"].uncertainty == pytest.approx(base["over_2.5"].uncertainty + 0.03)
    assert small["over_2.5"].p_model == base["over_2.5"].p_model


def test_half_markets_use_fixed_split() -> None:
    records = _by_key(_metrics())
    assert _p(records, "1h_over_0.5") == pytest.approx(1 - math.exp(-0.45 * 2.3), abs=1e-4)
    assert _p(records, "2h_over_0.5") == pytest.approx(1 - math.exp(-0.55 * 2.3), abs=1e-4)
    assert records["1h_over_0.5"].model_inputs["half_share"] == pytest.approx(0.45)
    assert records["1h_over_0.5"].uncertainty > records["over_0.5"].uncertainty


def test_explicit_half_rates_override_split() -> None:
    split = _by_key(_metrics())
    records = _by_key(_metrics(lambda_home_1h=0.5, lambda_away_1h=0.5))
    assert _p(records, "1h_over_0.5") == pytest.approx(1 - math.exp(-1.0), abs=1e-4)
    assert _p(records, "2h_over_0.5") == pytest.approx(1 - math.exp(-1.3), abs=1e-4)
    assert "half_share" not in records["1h_over_0.5"].model_inputs
    assert records["1h_over_0.5"].uncertainty < split["1h_over_0.5"].uncertainty


def test_inconsistent_half_rates_raise() -> None:
    with pytest.raises(ModelComputationError):
        compute_market_probabilities(_metrics(lambda_home_1h=0.5))
    with pytest.raises(ModelComputationError):
        compute_market_probabilities(_metrics(lambda_home_1h=2.0, lambda_away_1h=0.4))


def test_corners_use_normal_approximation() -> None:
    records = _by_key(_metrics(corners_expected_total=10.0, corners_std=2.0))
    assert _p(records, "corners_over_9.5") == pytest.approx(0.5987, abs=1e-3)
    inputs = records["corners_over_9.5"].model_inputs
    assert inputs["z_score"] == pytest.approx(-0.25)
    poisson_max = max(r.uncertainty for r in records.values() if r.market.family not in {
        MarketFamily.CORNERS, MarketFamily.CARDS
    })
    assert records["corners_over_9.5"].uncertainty > poisson_max


def test_corners_are_gated() -> None:
    assert "corners_over_9.5" not in _by_key(_metrics())
    assert "corners_over_9.5" not in _by_key(_metrics(corners_expected_total=4.0, corners_std=2.0))
    flagged = _metrics(
        corners_expected_total=10.0,
        corners_std=2.0,
        quality_flags=QualityFlags(low_coverage_corners=True),
    )
    assert "corners_over_9.5" not in _by_key(flagged)


def test_corners_without_positive_std_raise() -> None:
    with pytest.raises(ModelComputationError):
        compute_market_probabilities(_metrics(corners_expected_total=10.0, corners_std=0.0))
    with pytest.raises(ModelComputationError):
        compute_market_probabilities(_metrics(corners_expected_total=10.0))


def test_cards_default_std_and_referee_factor() -> None:
    records = _by_key(_metrics(cards_expected_total=4.0, referee_factor=1.1))
    z = (4.5 - 4.0) / 1.5
    assert _p(records, "cards_over_4.5") == pytest.approx(0.5 * math.erfc(z / math.sqrt(2)), abs=1e-4)
    assert records["cards_over_4.5"].model_inputs["std"] == 1.5
    assert records["cards_over_4.5"].model_inputs["referee_factor"] == 1.1
    assert "cards_over_4.5" not in _by_key(
        _metrics(cards_expected_total=4.0, quality_flags=QualityFlags(low_coverage_cards=True))
    )


def test_batch_rejects_missing_rates() -> None:
    with pytest.raises(InsufficientDataError):
        compute_batch([_metrics(1), _metrics(2, lambda_away=None)])
    with pytest.raises(InsufficientDataError):
        compute_batch([])


def test_batch_isolates_invalid_fixtures() -> None:
    batch = compute_batch([_metrics(1), _metrics(2, lambda_home=float("nan")), _metrics(3)])
    assert [result.fixture_id for result in batch.results] == [1, 3]
    assert [failure.fixture_id for failure in batch.failures] == [2]
    assert batch.summary()["failed"] == 1


def test_batch_thread_pool_keeps_input_order() -> None:
    snapshots = [_metrics(i, lambda_home=0.5 + i / 10) for i in range(8)]
    serial = compute_batch(snapshots)
    pooled = compute_batch(snapshots, max_workers=4)
    assert [r.fixture_id for r in pooled.results] == list(range(8))
    assert pooled.records() == serial.records()


def test_draw_no_bet_refunds_the_draw() -> None:
    records = _by_key(_metrics())
    home, away = _p(records, "1x2_home"), _p(records, "1x2_away")
    assert _p(records, "dnb_home") == pytest.approx(home / (home + away), abs=1e-4)
    assert _p(records, "dnb_home") + _p(records, "dnb_away") == pytest.approx(1.0)
    assert "dnb_home" not in _by_key(_metrics(lambda_home=0.0, lambda_away=0.0))


def test_winning_margin_partitions_the_result() -> None:
    records = _by_key(_metrics())
    home = sum(_p(records, key) for key in ("home_by_1", "home_by_2", "home_by_3plus"))
    away = sum(_p(records, key) for key in ("away_by_1", "away_by_2", "away_by_3plus"))
    assert home == pytest.approx(_p(records, "1x2_home"), abs=1e-3)
    assert away == pytest.approx(_p(records, "1x2_away"), abs=1e-3)
    assert _p(records, "draw_exactly") == pytest.approx(_p(records, "1x2_draw"), abs=1e-3)
    assert _p(records, "home_by_1") > _p(records, "home_by_2")


def test_halftime_fulltime_agrees_with_results() -> None:
    records = _by_key(_metrics())
    for ft, key in (("1", "1x2_home"), ("x", "1x2_draw"), ("2", "1x2_away")):
        total = sum(_p(records, f"ht_ft_{ht}_{ft}") for ht in ("1", "x", "2"))
        assert total == pytest.approx(_p(records, key), abs=2e-3)
    at_break = sum(_p(records, f"ht_ft_x_{ft}") for ft in ("1", "x", "2"))
    assert at_break == pytest.approx(_p(records, "1h_draw"), abs=2e-3)
    assert records["ht_ft_1_1"].model_inputs["half_share"] == pytest.approx(0.45)
    assert _by_key(_metrics(lambda_home=0.0, lambda_away=0.0))["ht_ft_x_x"].p_model == 1.0


def test_win_both_halves_multiplies_half_wins() -> None:
    records = _by_key(_metrics(lambda_home=2.5, lambda_away=0.6))
    first = np.tril(joint_score_matrix(2.5 * 0.45, 0.6 * 0.45, 10), -1).sum()
    second = np.tril(joint_score_matrix(2.5 * 0.55, 0.6 * 0.55, 10), -1).sum()
    expected = first * second
    assert _p(records, "home_wins_both_halves") == pytest.approx(expected, abs=1e-3)
    assert "away_wins_both_halves" not in records


def test_half_with_most_goals() -> None:
    records = _by_key(_metrics())
    assert _p(records, "second_half_most") > _p(records, "first_half_most")
    explicit = _by_key(_metrics(lambda_home_1h=1.0, lambda_away_1h=0.7))
    assert _p(explicit, "first_half_most") > _p(explicit, "second_half_most")
    assert explicit["equal_halves"].uncertainty < records["equal_halves"].uncertainty
