"""Pydantic schemas for JSON input: match snapshots, picks and drafts."""

from __future__ import annotations

from pydantic import BaseModel, Field

from matchlab.markets.catalog import MarketCatalog
from matchlab.markets.types import MatchMetrics, QualityFlags
from matchlab.parlays.types import CandidatePick, DraftParlay


class QualityFlagsSchema(BaseModel):
    small_sample: bool = False
    low_coverage_corners: bool = False
    low_coverage_cards: bool = False
    high_variance_goals: bool = False

    def to_flags(self) -> QualityFlags:
        return QualityFlags(**self.model_dump())


class MatchMetricsSchema(BaseModel):
    """Per-fixture statistics snapshot.

    Rates may be ``null`` to signal missing data; the engine decides what
    that means for the batch.
    """

    fixture_id: int
    lambda_home: float | None = None
    lambda_away: float | None = None
    btts_home_rate: float | None = None
    btts_away_rate: float | None = None
    corners_expected_total: float | None = None
    corners_std: float | None = None
    cards_expected_total: float | None = None
    cards_std: float | None = None
    referee_factor: float | None = None
    lambda_home_1h: float | None = None
    lambda_away_1h: float | None = None
    quality_flags: QualityFlagsSchema = Field(default_factory=QualityFlagsSchema)

    def to_metrics(self) -> MatchMetrics:
        values = self.model_dump(exclude={"quality_flags"})
        return MatchMetrics(**values, quality_flags=self.quality_flags.to_flags())


class CandidatePickSchema(BaseModel):
    fixture_id: int
    market: str = Field(description="Catalog market key, e.g. over_2.5")
    selection: str | None = None
    odds: float | None = None
    probability: float | None = None
    reasoning: str = ""
    home_team: str | None = None
    away_team: str | None = None
    league: str | None = None

    def to_pick(self, catalog: MarketCatalog) -> CandidatePick:
        market = catalog.get(self.market)
        return CandidatePick(
            fixture_id=self.fixture_id,
            market=market,
            selection=self.selection or market.label,
            odds=self.odds,
            probability=self.probability,
            reasoning=self.reasoning,
            home_team=self.home_team,
            away_team=self.away_team,
            league=self.league,
        )


class DraftParlaySchema(BaseModel):
    legs: list[CandidatePickSchema]
    name: str = ""
    strategy: str = ""
    combined_odds: float | None = None
    combined_probability: float | None = None

    def to_draft(self, catalog: MarketCatalog) -> DraftParlay:
        return DraftParlay(
            legs=[leg.to_pick(catalog) for leg in self.legs],
            name=self.name,
            strategy=self.strategy,
            proposed_combined_odds=self.combined_odds,
            proposed_combined_probability=self.combined_probability,
        )
