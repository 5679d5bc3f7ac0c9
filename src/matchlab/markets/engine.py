"""Market probability engine.

Turns one ``MatchMetrics`` snapshot into per-market probabilities with an
uncertainty band, the numeric inputs used and a short rationale. Goal
markets come from an independent-Poisson scoreline grid; corners and cards
use a normal approximation. The function is pure: the same snapshot and the
same engine version give identical records.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

import numpy as np

from matchlab.config import Settings, get_settings
from matchlab.errors import InsufficientDataError, ModelComputationError
from matchlab.markets.catalog import FamilyInfo, MarketCatalog, MarketGroup, get_catalog
from matchlab.markets.types import (
    Market,
    MarketFamily,
    MarketProbability,
    MatchMetrics,
    Outcome,
    Period,
    Team,
)
from matchlab.numeric import joint_score_matrix, normal_tail

logger = logging.getLogger(__name__)

HALF_FAMILIES = {MarketFamily.HALF_TOTAL_GOALS, MarketFamily.HALF_RESULT}
NORMAL_FAMILIES = {MarketFamily.CORNERS, MarketFamily.CARDS}
CROSS_HALF_FAMILIES = {
    MarketFamily.HALFTIME_FULLTIME,
    MarketFamily.WIN_BOTH_HALVES,
    MarketFamily.HALF_MOST_GOALS,
}


@dataclass
class _FixtureModel:
    """Everything derived from one snapshot before markets are evaluated."""

    metrics: MatchMetrics
    settings: Settings
    lambda_home: float
    lambda_away: float
    half_rates: dict[Period, tuple[float, float]]
    half_split_used: bool
    grids: dict[Period, np.ndarray]
    results: dict[Period, tuple[float, float, float]] = field(default_factory=dict)
    normal_params: dict[MarketFamily, tuple[float, float]] = field(default_factory=dict)

    def grid(self, period: Period = Period.FULL_TIME) -> np.ndarray:
        return self.grids[period]


def _check_rate(fixture_id: int, name: str, value: float | None) -> float:
    if value is None:
        raise ModelComputationError(fixture_id, f"missing {name}")
    value = float(value)
    if not math.isfinite(value) or value < 0.0:
        raise ModelComputationError(fixture_id, f"invalid {name}={value!r}")
    return value


def _check_optional(fixture_id: int, name: str, value: float | None, upper: float | None = None) -> None:
    if value is None:
        return
    if not math.isfinite(value) or value < 0.0 or (upper is not None and value > upper):
        raise ModelComputationError(fixture_id, f"invalid {name}={value!r}")


def _half_rates(
    metrics: MatchMetrics, lambda_home: float, lambda_away: float, share: float
) -> tuple[dict[Period, tuple[float, float]], bool]:
    explicit = (metrics.lambda_home_1h, metrics.lambda_away_1h)
    if all(value is None for value in explicit):
        first = (lambda_home * share, lambda_away * share)
        second = (lambda_home * (1.0 - share), lambda_away * (1.0 - share))
        return {Period.FIRST_HALF: first, Period.SECOND_HALF: second}, True

    if any(value is None for value in explicit):
        raise ModelComputationError(
            metrics.fixture_id, "explicit half-time rates must be given for both teams"
        )
    home_1h = _check_rate(metrics.fixture_id, "lambda_home_1h", metrics.lambda_home_1h)
    away_1h = _check_rate(metrics.fixture_id, "lambda_away_1h", metrics.lambda_away_1h)
    if home_1h > lambda_home or away_1h > lambda_away:
        raise ModelComputationError(
            metrics.fixture_id, "half-time rates exceed the full-time rates"
        )
    first = (home_1h, away_1h)
    second = (lambda_home - home_1h, lambda_away - away_1h)
    return {Period.FIRST_HALF: first, Period.SECOND_HALF: second}, False


def _result_split(grid: np.ndarray, precision: int) -> tuple[float, float, float]:
    home = round(float(np.tril(grid, -1).sum()), precision)
    draw = round(float(np.trace(grid)), precision)
    away = round(max(1.0 - home - draw, 0.0), precision)
    return home, draw, away


def _build_model(metrics: MatchMetrics, settings: Settings) -> _FixtureModel:
    fixture_id = metrics.fixture_id
    lambda_home = _check_rate(fixture_id, "lambda_home", metrics.lambda_home)
    lambda_away = _check_rate(fixture_id, "lambda_away", metrics.lambda_away)
    _check_optional(fixture_id, "btts_home_rate", metrics.btts_home_rate, upper=1.0)
    _check_optional(fixture_id, "btts_away_rate", metrics.btts_away_rate, upper=1.0)
    _check_optional(fixture_id, "corners_expected_total", metrics.corners_expected_total)
    _check_optional(fixture_id, "cards_expected_total", metrics.cards_expected_total)
    _check_optional(fixture_id, "referee_factor", metrics.referee_factor)

    half_rates, split_used = _half_rates(
        metrics, lambda_home, lambda_away, settings.first_half_goal_share
    )
    size = settings.goal_grid_max
    grids = {Period.FULL_TIME: joint_score_matrix(lambda_home, lambda_away, size)}
    for period, (home, away) in half_rates.items():
        grids[period] = joint_score_matrix(home, away, size)

    model = _FixtureModel(
        metrics=metrics,
        settings=settings,
        lambda_home=lambda_home,
        lambda_away=lambda_away,
        half_rates=half_rates,
        half_split_used=split_used,
        grids=grids,
    )
    for period, grid in grids.items():
        model.results[period] = _result_split(grid, settings.probability_precision)
    return model


def _normal_params(model: _FixtureModel, family: MarketFamily) -> tuple[float, float] | None:
    """Mean and std for corners/cards, or ``None`` when the family is gated off."""

    if family in model.normal_params:
        return model.normal_params[family]
    metrics, settings = model.metrics, model.settings
    flags = metrics.quality_flags
    if family == MarketFamily.CORNERS:
        expected, std = metrics.corners_expected_total, metrics.corners_std
        minimum, blocked = settings.min_corners_expected, flags.low_coverage_corners
    else:
        expected = metrics.cards_expected_total
        std = metrics.cards_std if metrics.cards_std is not None else settings.default_cards_std
        minimum, blocked = settings.min_cards_expected, flags.low_coverage_cards
    if blocked or expected is None or expected <= minimum:
        return None
    if std is None or not math.isfinite(std) or std <= 0.0:
        raise ModelComputationError(
            metrics.fixture_id, f"{family.value} std must be positive, got {std!r}"
        )
    model.normal_params[family] = (float(expected), float(std))
    return model.normal_params[family]


# -- one computation branch per market family --------------------------------


def _over_under(market: Market, total_mass_above: float) -> float:
    return total_mass_above if market.outcome == Outcome.OVER else 1.0 - total_mass_above


def _mass_above(vector: np.ndarray, line: float) -> float:
    return float(vector[int(math.floor(line)) + 1 :].sum())


def _total_goals(grid: np.ndarray) -> np.ndarray:
    size = grid.shape[0]
    totals = np.zeros(2 * size - 1)
    for home in range(size):
        totals[home : home + size] += grid[home]
    return totals


def _p_total_goals(market: Market, model: _FixtureModel) -> float:
    return _over_under(market, _mass_above(_total_goals(model.grid()), market.line))


def _p_half_total_goals(market: Market, model: _FixtureModel) -> float:
    return _over_under(market, _mass_above(_total_goals(model.grid(market.period)), market.line))


def _pick_result(outcome: Outcome, result: tuple[float, float, float]) -> float:
    home, draw, away = result
    return {Outcome.HOME: home, Outcome.DRAW: draw, Outcome.AWAY: away}[outcome]


def _p_match_result(market: Market, model: _FixtureModel) -> float:
    return _pick_result(market.outcome, model.results[Period.FULL_TIME])


def _p_half_result(market: Market, model: _FixtureModel) -> float:
    return _pick_result(market.outcome, model.results[market.period])


def _p_double_chance(market: Market, model: _FixtureModel) -> float:
    home, draw, away = model.results[Period.FULL_TIME]
    pairs = {
        Outcome.HOME_OR_DRAW: home + draw,
        Outcome.DRAW_OR_AWAY: draw + away,
        Outcome.HOME_OR_AWAY: home + away,
    }
    return pairs[market.outcome]


def _blank_probabilities(grid: np.ndarray) -> tuple[float, float, float]:
    home_blank = float(grid[0, :].sum())
    away_blank = float(grid[:, 0].sum())
    return home_blank, away_blank, float(grid[0, 0])


def _p_btts(market: Market, model: _FixtureModel) -> float:
    home_blank, away_blank, both_blank = _blank_probabilities(model.grid())
    yes = 1.0 - home_blank - away_blank + both_blank
    return yes if market.outcome == Outcome.YES else 1.0 - yes


def _p_team_goals(market: Market, model: _FixtureModel) -> float:
    grid = model.grid()
    marginal = grid.sum(axis=1) if market.team == Team.HOME else grid.sum(axis=0)
    return _over_under(market, _mass_above(marginal, market.line))


def _margins(grid: np.ndarray, team: Team) -> np.ndarray:
    size = grid.shape[0]
    home, away = np.meshgrid(np.arange(size), np.arange(size), indexing="ij")
    return home - away if team == Team.HOME else away - home


def _p_handicap(market: Market, model: _FixtureModel) -> float:
    grid = model.grid()
    return float(grid[_margins(grid, market.team) + market.line > 0].sum())


def _p_draw_no_bet(market: Market, model: _FixtureModel) -> float:
    home, _, away = model.results[Period.FULL_TIME]
    decisive = home + away
    if decisive <= 0.0:
        return 0.0
    return (home if market.outcome == Outcome.HOME else away) / decisive


def _p_winning_margin(market: Market, model: _FixtureModel) -> float:
    grid = model.grid()
    if market.outcome == Outcome.DRAW:
        return float(np.trace(grid))
    margin = _margins(grid, market.team)
    if market.outcome == Outcome.OVER:
        return float(grid[margin > market.line].sum())
    return float(grid[margin == int(market.line)].sum())


def _goal_difference(grid: np.ndarray) -> np.ndarray:
    """Home-minus-away distribution; index ``size - 1`` is a level score."""

    size = grid.shape[0]
    diffs = np.zeros(2 * size - 1)
    for home in range(size):
        diffs[home : home + size] += grid[home, ::-1]
    return diffs


def _result_mask(diffs: np.ndarray, offset: int, outcome: Outcome) -> np.ndarray:
    margin = np.arange(diffs.size) - offset
    return {Outcome.HOME: margin > 0, Outcome.DRAW: margin == 0, Outcome.AWAY: margin < 0}[outcome]


def _p_halftime_fulltime(market: Market, model: _FixtureModel) -> float:
    # full-time difference is the sum of two independent half differences
    first = _goal_difference(model.grid(Period.FIRST_HALF))
    second = _goal_difference(model.grid(Period.SECOND_HALF))
    offset = model.grid().shape[0] - 1
    at_break = np.where(_result_mask(first, offset, market.ht_outcome), first, 0.0)
    full = np.convolve(at_break, second)
    return float(full[_result_mask(full, 2 * offset, market.outcome)].sum())


def _p_win_both_halves(market: Market, model: _FixtureModel) -> float:
    probability = 1.0
    for period in (Period.FIRST_HALF, Period.SECOND_HALF):
        grid = model.grid(period)
        probability *= float(np.tril(grid, -1).sum() if market.team == Team.HOME else np.triu(grid, 1).sum())
    return probability


def _p_half_most_goals(market: Market, model: _FixtureModel) -> float:
    first = _total_goals(model.grid(Period.FIRST_HALF))
    second = _total_goals(model.grid(Period.SECOND_HALF))
    spread = np.convolve(first, second[::-1])
    margin = np.arange(spread.size) - (second.size - 1)
    if market.outcome == Outcome.DRAW:
        return float(spread[margin == 0].sum())
    if market.period == Period.FIRST_HALF:
        return float(spread[margin > 0].sum())
    return float(spread[margin < 0].sum())


def _p_normal_total(market: Market, model: _FixtureModel) -> float:
    mean, std = model.normal_params[market.family]
    return _over_under(market, normal_tail(market.line, mean, std))


def _p_clean_sheet(market: Market, model: _FixtureModel) -> float:
    home_blank, away_blank, _ = _blank_probabilities(model.grid())
    kept = away_blank if market.team == Team.HOME else home_blank
    return kept if market.outcome == Outcome.YES else 1.0 - kept


def _p_win_to_nil(market: Market, model: _FixtureModel) -> float:
    grid = model.grid()
    if market.team == Team.HOME:
        return float(grid[1:, 0].sum())
    return float(grid[0, 1:].sum())


def _p_correct_score(market: Market, model: _FixtureModel) -> float:
    grid = model.grid()
    home, away = market.score
    top = grid.shape[0] - 1
    if home >= top or away >= top:
        raise ModelComputationError(
            model.metrics.fixture_id, f"score {market.score} is outside the goal grid"
        )
    return float(grid[home, away])


def _p_odd_even(market: Market, model: _FixtureModel) -> float:
    totals = _total_goals(model.grid())
    odd = float(totals[1::2].sum())
    return odd if market.outcome == Outcome.ODD else 1.0 - odd


FAMILY_HANDLERS: dict[MarketFamily, Callable[[Market, _FixtureModel], float]] = {
    MarketFamily.TOTAL_GOALS: _p_total_goals,
    MarketFamily.MATCH_RESULT: _p_match_result,
    MarketFamily.DOUBLE_CHANCE: _p_double_chance,
    MarketFamily.BTTS: _p_btts,
    MarketFamily.TEAM_GOALS: _p_team_goals,
    MarketFamily.HANDICAP: _p_handicap,
    MarketFamily.HALF_TOTAL_GOALS: _p_half_total_goals,
    MarketFamily.HALF_RESULT: _p_half_result,
    MarketFamily.CORNERS: _p_normal_total,
    MarketFamily.CARDS: _p_normal_total,
    MarketFamily.CLEAN_SHEET: _p_clean_sheet,
    MarketFamily.WIN_TO_NIL: _p_win_to_nil,
    MarketFamily.CORRECT_SCORE: _p_correct_score,
    MarketFamily.ODD_EVEN: _p_odd_even,
    MarketFamily.DRAW_NO_BET: _p_draw_no_bet,
    MarketFamily.WINNING_MARGIN: _p_winning_margin,
    MarketFamily.HALFTIME_FULLTIME: _p_halftime_fulltime,
    MarketFamily.WIN_BOTH_HALVES: _p_win_both_halves,
    MarketFamily.HALF_MOST_GOALS: _p_half_most_goals,
}

_unhandled = set(MarketFamily) - set(FAMILY_HANDLERS)
if _unhandled:  # pragma: no cover - import-time guard
    raise RuntimeError(f"No computation branch for {sorted(f.value for f in _unhandled)}")


# -- inputs, rationale and uncertainty ---------------------------------------


def _model_inputs(market: Market, model: _FixtureModel) -> dict[str, float]:
    metrics = model.metrics
    family = market.family
    if family in NORMAL_FAMILIES:
        mean, std = model.normal_params[family]
        inputs = {
            "expected_total": mean,
            "std": std,
            "line": market.line,
            "z_score": round((market.line - mean) / std, 6),
        }
        if family == MarketFamily.CARDS and metrics.referee_factor is not None:
            inputs["referee_factor"] = float(metrics.referee_factor)
        return inputs

    if family in HALF_FAMILIES:
        home, away = model.half_rates[market.period]
        inputs = {"lambda_home": home, "lambda_away": away, "lambda_total": home + away}
        if model.half_split_used:
            share = model.settings.first_half_goal_share
            inputs["half_share"] = share if market.period == Period.FIRST_HALF else 1.0 - share
    else:
        inputs = {
            "lambda_home": model.lambda_home,
            "lambda_away": model.lambda_away,
            "lambda_total": model.lambda_home + model.lambda_away,
        }
    if family in CROSS_HALF_FAMILIES:
        for period in (Period.FIRST_HALF, Period.SECOND_HALF):
            home, away = model.half_rates[period]
            inputs[f"lambda_home_{period.value}"] = home
            inputs[f"lambda_away_{period.value}"] = away
        if model.half_split_used:
            inputs["half_share"] = model.settings.first_half_goal_share
    inputs["grid_max"] = float(model.settings.goal_grid_max)
    if market.line is not None:
        inputs["line"] = market.line
    if family == MarketFamily.BTTS:
        home_blank, away_blank, both_blank = _blank_probabilities(model.grid())
        inputs.update(
            p_home_blank=round(home_blank, 6),
            p_away_blank=round(away_blank, 6),
            p_both_blank=round(both_blank, 6),
        )
        # audit only; the probability always comes from the joint grid
        if metrics.btts_home_rate is not None:
            inputs["btts_home_rate"] = float(metrics.btts_home_rate)
        if metrics.btts_away_rate is not None:
            inputs["btts_away_rate"] = float(metrics.btts_away_rate)
    return inputs


def _rationale(market: Market, p_model: float, inputs: dict[str, float]) -> str:
    pct = f"{p_model * 100:.1f}%"
    family = market.family
    if family in NORMAL_FAMILIES:
        return (
            f"Expected {family.value}: {inputs['expected_total']:.1f} ± {inputs['std']:.1f}. "
            f"Z-score for {market.line}: {inputs['z_score']:.2f}. {market.label}: {pct} (normal approximation)."
        )
    lam = f"λ {inputs['lambda_home']:.2f}-{inputs['lambda_away']:.2f}"
    if family in HALF_FAMILIES:
        split = " via fixed half split" if "half_share" in inputs else " from explicit half-time rates"
        return f"{market.label}: {pct} with half rates {lam}{split}."
    if family in CROSS_HALF_FAMILIES:
        halves = (
            f"1H {inputs['lambda_home_1h']:.2f}-{inputs['lambda_away_1h']:.2f}, "
            f"2H {inputs['lambda_home_2h']:.2f}-{inputs['lambda_away_2h']:.2f}"
        )
        return f"{market.label}: {pct} from independent half grids ({halves})."
    if family == MarketFamily.DOUBLE_CHANCE:
        return f"{market.label}: {pct}, sum of the two 1X2 outcomes ({lam})."
    if family == MarketFamily.DRAW_NO_BET:
        return f"{market.label}: {pct}, 1X2 renormalised without the draw ({lam})."
    if family == MarketFamily.BTTS:
        return (
            f"{market.label}: {pct} from the joint score grid "
            f"(P(home blank)={inputs['p_home_blank']:.3f}, P(away blank)={inputs['p_away_blank']:.3f})."
        )
    return f"{market.label}: {pct} from independent Poisson goals ({lam}, total {inputs['lambda_total']:.2f})."


def _uncertainty(info: FamilyInfo, model: _FixtureModel) -> float:
    settings = model.settings
    flags = model.metrics.quality_flags
    value = info.base_uncertainty
    if flags.small_sample:
        value += settings.small_sample_penalty
    if not info.uses_normal_approximation and flags.high_variance_goals:
        value += settings.high_variance_penalty
    if info.family in HALF_FAMILIES | CROSS_HALF_FAMILIES and model.half_split_used:
        value += settings.half_split_penalty
    return value


def _uncertainties(catalog: MarketCatalog, model: _FixtureModel) -> dict[MarketFamily, float]:
    settings = model.settings
    bands = {family: _uncertainty(info, model) for family, info in catalog.families.items()}
    widest_poisson = max(
        band for family, band in bands.items() if not catalog.family(family).uses_normal_approximation
    )
    for family, band in bands.items():
        if catalog.family(family).uses_normal_approximation:
            bands[family] = max(band, widest_poisson + settings.normal_approximation_margin)
    precision = settings.probability_precision
    return {family: round(min(max(band, 0.0), 1.0), precision) for family, band in bands.items()}


# -- group evaluation ---------------------------------------------------------


def _evaluate_group(group: MarketGroup, model: _FixtureModel) -> list[float] | None:
    precision = model.settings.probability_precision
    if group.family in NORMAL_FAMILIES and _normal_params(model, group.family) is None:
        logger.debug("fixture %s: %s gated off", model.metrics.fixture_id, group.name)
        return None

    handler = FAMILY_HANDLERS[group.family]
    raw = [min(max(handler(market, model), 0.0), 1.0) for market in group.markets]
    values = [round(value, precision) for value in raw]
    if group.closed:
        values[-1] = round(max(1.0 - sum(values[:-1]), 0.0), precision)

    if not group.always_emit and min(values) < model.settings.relevance_floor:
        logger.debug("fixture %s: %s below relevance floor", model.metrics.fixture_id, group.name)
        return None
    return values


def compute_market_probabilities(
    metrics: MatchMetrics,
    *,
    settings: Settings | None = None,
    catalog: MarketCatalog | None = None,
) -> list[MarketProbability]:
    """Compute every relevant market for one fixture.

    Raises ``ModelComputationError`` for missing or invalid numeric input.
    Quality flags widen uncertainty (or gate corners/cards) instead of aborting.
    """

    settings = settings or get_settings()
    catalog = catalog or get_catalog(settings.catalog_path)
    model = _build_model(metrics, settings)
    bands = _uncertainties(catalog, model)

    records: list[MarketProbability] = []
    for group in catalog.groups:
        values = _evaluate_group(group, model)
        if values is None:
            continue
        info = catalog.family(group.family)
        for market, p_model in zip(group.markets, values):
            inputs = _model_inputs(market, model)
            records.append(
                MarketProbability(
                    fixture_id=metrics.fixture_id,
                    market=market,
                    selection=market.label,
                    p_model=p_model,
                    uncertainty=bands[group.family],
                    model_name=info.model_name,
                    model_inputs=inputs,
                    rationale=_rationale(market, p_model, inputs),
                    engine_version=settings.engine_version,
                )
            )
    logger.debug("fixture %s: %d market probabilities", metrics.fixture_id, len(records))
    return records


@dataclass(frozen=True)
class FixtureFailure:
    fixture_id: int
    error: str


@dataclass
class FixtureMarkets:
    fixture_id: int
    probabilities: list[MarketProbability]


@dataclass
class MarketBatch:
    results: list[FixtureMarkets] = field(default_factory=list)
    failures: list[FixtureFailure] = field(default_factory=list)

    def records(self) -> list[MarketProbability]:
        return [record for result in self.results for record in result.probabilities]

    def summary(self) -> dict[str, int]:
        return {
            "fixtures": len(self.results) + len(self.failures),
            "computed": len(self.results),
            "failed": len(self.failures),
            "records": sum(len(result.probabilities) for result in self.results),
        }


def compute_batch(
    snapshots: Iterable[MatchMetrics],
    *,
    max_workers: int | None = None,
    settings: Settings | None = None,
    catalog: MarketCatalog | None = None,
) -> MarketBatch:
    """Compute markets for many fixtures.

    The batch is rejected as a whole (``InsufficientDataError``) when it is
    empty or a snapshot lacks a required rate field. Invalid numbers only
    fail their own fixture.
    """

    snapshots = list(snapshots)
    if not snapshots:
        raise InsufficientDataError("No fixtures to analyse")
    incomplete = {m.fixture_id: m.missing_rates() for m in snapshots if m.missing_rates()}
    if incomplete:
        raise InsufficientDataError(f"Snapshots missing required rates: {incomplete}")

    settings = settings or get_settings()
    catalog = catalog or get_catalog(settings.catalog_path)

    def _run(metrics: MatchMetrics) -> FixtureMarkets | FixtureFailure:
        try:
            return FixtureMarkets(
                metrics.fixture_id,
                compute_market_probabilities(metrics, settings=settings, catalog=catalog),
            )
        except ModelComputationError as exc:
            logger.warning("Skipping fixture %s: %s", metrics.fixture_id, exc.message)
            return FixtureFailure(metrics.fixture_id, exc.message)

    if max_workers and max_workers > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            outcomes: Sequence[FixtureMarkets | FixtureFailure] = list(pool.map(_run, snapshots))
    else:
        outcomes = [_run(metrics) for metrics in snapshots]

    batch = MarketBatch()
    for outcome in outcomes:
        if isinstance(outcome, FixtureFailure):
            batch.failures.append(outcome)
        else:
            batch.results.append(outcome)
    logger.info("Market batch complete: %s", batch.summary())
    return batch
