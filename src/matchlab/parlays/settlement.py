"""Settlement contract for validated parlays.

Resolution of a single market against a final result is supplied by the
caller, one resolver per market family. This module only defines the shapes
and how leg outcomes roll up into a parlay status.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from matchlab.errors import SettlementError
from matchlab.markets.types import Market, MarketFamily
from matchlab.parlays.types import CandidatePick, Parlay, ParlayStatus


class SettlementOutcome(str, Enum):
    WON = "won"
    LOST = "lost"
    VOID = "void"


@dataclass(frozen=True)
class MatchResult:
    fixture_id: int
    home_goals: int
    away_goals: int
    home_goals_1h: int | None = None
    away_goals_1h: int | None = None
    corners_total: int | None = None
    cards_total: int | None = None


class MarketResolver(Protocol):
    def __call__(self, market: Market, result: MatchResult) -> SettlementOutcome: ...


class SettlementRegistry:
    def __init__(self) -> None:
        self._resolvers: dict[MarketFamily, MarketResolver] = {}

    def register(self, family: MarketFamily, resolver: MarketResolver) -> None:
        self._resolvers[MarketFamily(family)] = resolver

    def missing_families(self) -> list[MarketFamily]:
        return [family for family in MarketFamily if family not in self._resolvers]

    def resolve(self, pick: CandidatePick, result: MatchResult) -> SettlementOutcome:
        if result.fixture_id != pick.fixture_id:
            raise SettlementError(
                f"Result for fixture {result.fixture_id} cannot settle pick on fixture {pick.fixture_id}"
            )
        resolver = self._resolvers.get(pick.market.family)
        if resolver is None:
            raise SettlementError(f"No resolver registered for {pick.market.family.value}")
        return SettlementOutcome(resolver(pick.market, result))

    def settle(self, parlay: Parlay, results: Mapping[int, MatchResult]) -> ParlayStatus:
        """Resolve every leg with a known result and settle the parlay once decided."""

        outcomes = [
            self.resolve(leg, results[leg.fixture_id]) if leg.fixture_id in results else None
            for leg in parlay.legs
        ]
        status = aggregate_status(outcomes)
        if status != ParlayStatus.PENDING:
            parlay.settle(status)
        return status


def aggregate_status(outcomes: Iterable[SettlementOutcome | None]) -> ParlayStatus:
    """Roll leg outcomes up into a parlay status.

    ``None`` marks a leg whose match has no result yet. Any lost leg loses
    the parlay; all voids void it; a mix of won and void legs is partial.
    """

    outcomes = list(outcomes)
    if any(outcome == SettlementOutcome.LOST for outcome in outcomes):
        return ParlayStatus.LOST
    if any(outcome is None for outcome in outcomes):
        return ParlayStatus.PENDING
    if all(outcome == SettlementOutcome.VOID for outcome in outcomes):
        return ParlayStatus.VOID
    if all(outcome == SettlementOutcome.WON for outcome in outcomes):
        return ParlayStatus.WON
    return ParlayStatus.PARTIAL
