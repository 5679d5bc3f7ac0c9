"""Dataclasses for candidate picks, draft parlays and validated parlays."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from matchlab.errors import RejectReason, SettlementError
from matchlab.markets.types import Market

ExposureKey = tuple[int, str]


class ParlayStatus(str, Enum):
    PENDING = "pending"
    WON = "won"
    LOST = "lost"
    PARTIAL = "partial"
    VOID = "void"


class ConfidenceTier(str, Enum):
    ULTRA_SAFE = "ultra_safe"
    SAFE = "safe"
    BALANCED = "balanced"
    VALUE = "value"


@dataclass(frozen=True)
class CandidatePick:
    fixture_id: int
    market: Market
    selection: str
    odds: float | None
    probability: float | None
    reasoning: str = ""
    home_team: str | None = None
    away_team: str | None = None
    league: str | None = None

    @property
    def exposure_key(self) -> ExposureKey:
        return (self.fixture_id, self.market.key)

    def to_dict(self) -> dict[str, Any]:
        return {
            "fixture_id": self.fixture_id,
            "market": self.market.key,
            "selection": self.selection,
            "odds": self.odds,
            "probability": self.probability,
            "reasoning": self.reasoning,
            "home_team": self.home_team,
            "away_team": self.away_team,
            "league": self.league,
        }


@dataclass
class DraftParlay:
    """Unvalidated grouping of picks from a heuristic or external proposer.

    ``proposed_*`` values are kept for diagnostics only; validation recomputes
    both from the legs.
    """

    legs: list[CandidatePick]
    name: str = ""
    strategy: str = ""
    proposed_combined_odds: float | None = None
    proposed_combined_probability: float | None = None

    @property
    def fixture_ids(self) -> set[int]:
        return {leg.fixture_id for leg in self.legs}


@dataclass(frozen=True)
class Parlay:
    """A validated parlay.

    ``combined_probability`` is the arithmetic mean of the leg probabilities,
    a likelihood indicator for display rather than a joint probability. The
    product of the leg probabilities is exposed as ``independent_probability``.
    ``status`` is the only field that changes after construction, through
    :meth:`settle`.
    """

    legs: tuple[CandidatePick, ...]
    name: str
    combined_odds: float
    combined_probability: float
    confidence_tier: ConfidenceTier
    status: ParlayStatus = ParlayStatus.PENDING
    batch_id: str | None = None
    strategy: str = ""

    @property
    def exposure_keys(self) -> tuple[ExposureKey, ...]:
        return tuple(leg.exposure_key for leg in self.legs)

    @property
    def independent_probability(self) -> float:
        product = 1.0
        for leg in self.legs:
            product *= leg.probability
        return product

    def settle(self, status: ParlayStatus | str) -> None:
        status = ParlayStatus(status)
        if self.status != ParlayStatus.PENDING:
            raise SettlementError(f"Parlay '{self.name}' already settled as {self.status.value}")
        if status == ParlayStatus.PENDING:
            raise SettlementError("Settlement must move a parlay out of pending")
        # The one permitted mutation; every other field stays frozen.
        object.__setattr__(self, "status", status)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "batch_id": self.batch_id,
            "strategy": self.strategy,
            "legs": [leg.to_dict() for leg in self.legs],
            "combined_odds": round(self.combined_odds, 4),
            "combined_probability": round(self.combined_probability, 4),
            "independent_probability": round(self.independent_probability, 4),
            "confidence_tier": self.confidence_tier.value,
            "status": self.status.value,
        }


@dataclass
class BatchDiagnostics:
    drafts_received: int = 0
    structural_rejects: int = 0
    leg_odds_rejects: int = 0
    leg_probability_rejects: int = 0
    combined_odds_rejects: int = 0
    duplicate_conflicts: int = 0
    truncated: int = 0
    admitted: int = 0
    legs_filtered: int = 0
    atypical_odds_legs: int = 0
    conflicts: list[tuple[ExposureKey, ...]] = field(default_factory=list)

    def record_reject(self, reason: RejectReason) -> None:
        counter = f"{reason.value}_rejects"
        setattr(self, counter, getattr(self, counter) + 1)

    @property
    def rejected(self) -> int:
        return (
            self.structural_rejects
            + self.leg_odds_rejects
            + self.leg_probability_rejects
            + self.combined_odds_rejects
            + self.duplicate_conflicts
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "drafts_received": self.drafts_received,
            "structural_rejects": self.structural_rejects,
            "leg_odds_rejects": self.leg_odds_rejects,
            "leg_probability_rejects": self.leg_probability_rejects,
            "combined_odds_rejects": self.combined_odds_rejects,
            "duplicate_conflicts": self.duplicate_conflicts,
            "truncated": self.truncated,
            "admitted": self.admitted,
            "legs_filtered": self.legs_filtered,
            "atypical_odds_legs": self.atypical_odds_legs,
            "conflicts": [[f"{fixture}_{market}" for fixture, market in keys] for keys in self.conflicts],
        }


@dataclass
class ParlayBatch:
    batch_id: str
    parlays: list[Parlay]
    diagnostics: BatchDiagnostics

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "parlays": [parlay.to_dict() for parlay in self.parlays],
            "diagnostics": self.diagnostics.as_dict(),
        }
