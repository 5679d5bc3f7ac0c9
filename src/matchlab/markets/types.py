"""Dataclasses for match snapshots, markets and market probabilities."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class MarketFamily(str, Enum):
    TOTAL_GOALS = "total_goals"
    MATCH_RESULT = "match_result"
    DOUBLE_CHANCE = "double_chance"
    BTTS = "btts"
    TEAM_GOALS = "team_goals"
    HANDICAP = "handicap"
    HALF_TOTAL_GOALS = "half_total_goals"
    HALF_RESULT = "half_result"
    CORNERS = "corners"
    CARDS = "cards"
    CLEAN_SHEET = "clean_sheet"
    WIN_TO_NIL = "win_to_nil"
    CORRECT_SCORE = "correct_score"
    ODD_EVEN = "odd_even"
    DRAW_NO_BET = "draw_no_bet"
    WINNING_MARGIN = "winning_margin"
    HALFTIME_FULLTIME = "halftime_fulltime"
    WIN_BOTH_HALVES = "win_both_halves"
    HALF_MOST_GOALS = "half_most_goals"


class Outcome(str, Enum):
    OVER = "over"
    UNDER = "under"
    HOME = "home"
    DRAW = "draw"
    AWAY = "away"
    HOME_OR_DRAW = "home_or_draw"
    DRAW_OR_AWAY = "draw_or_away"
    HOME_OR_AWAY = "home_or_away"
    YES = "yes"
    NO = "no"
    ODD = "odd"
    EVEN = "even"


class Period(str, Enum):
    FULL_TIME = "ft"
    FIRST_HALF = "1h"
    SECOND_HALF = "2h"


class Team(str, Enum):
    HOME = "home"
    AWAY = "away"


@dataclass(frozen=True)
class Market:
    """One concrete betting market, e.g. ``over_2.5`` or ``home_-1.5``.

    ``family`` selects the computation branch; the remaining fields are the
    parameters of that branch. ``ht_outcome`` is the half-time leg of a
    half-time/full-time market.
    """

    key: str
    family: MarketFamily
    outcome: Outcome
    line: float | None = None
    team: Team | None = None
    period: Period = Period.FULL_TIME
    score: tuple[int, int] | None = None
    ht_outcome: Outcome | None = None
    label: str = ""

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class QualityFlags:
    small_sample: bool = False
    low_coverage_corners: bool = False
    low_coverage_cards: bool = False
    high_variance_goals: bool = False


@dataclass(frozen=True)
class MatchMetrics:
    """Aggregated statistics for one fixture. Created once per analysis job."""

    fixture_id: int
    lambda_home: float | None
    lambda_away: float | None
    btts_home_rate: float | None = None
    btts_away_rate: float | None = None
    corners_expected_total: float | None = None
    corners_std: float | None = None
    cards_expected_total: float | None = None
    cards_std: float | None = None
    referee_factor: float | None = None
    lambda_home_1h: float | None = None
    lambda_away_1h: float | None = None
    quality_flags: QualityFlags = field(default_factory=QualityFlags)

    REQUIRED_RATES = ("lambda_home", "lambda_away")

    def missing_rates(self) -> list[str]:
        return [name for name in self.REQUIRED_RATES if getattr(self, name) is None]


@dataclass(frozen=True)
class MarketProbability:
    fixture_id: int
    market: Market
    selection: str
    p_model: float
    uncertainty: float
    model_name: str
    model_inputs: dict[str, float]
    rationale: str
    engine_version: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "fixture_id": self.fixture_id,
            "market": self.market.key,
            "family": self.market.family.value,
            "selection": self.selection,
            "p_model": self.p_model,
            "uncertainty": self.uncertainty,
            "model_name": self.model_name,
            "model_inputs": dict(self.model_inputs),
            "rationale": self.rationale,
            "engine_version": self.engine_version,
        }
