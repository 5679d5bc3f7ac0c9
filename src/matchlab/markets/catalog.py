"""Static market catalog loaded from ``catalog.json``.

Concrete markets are data: a new line for an existing family is added to the
JSON file without touching the engine. Families are the closed set of
computation branches.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ValidationError, model_validator

from matchlab.errors import CatalogError
from matchlab.markets.types import Market, MarketFamily, Outcome, Period, Team

logger = logging.getLogger(__name__)

CATALOG_PATH = Path(__file__).with_name("catalog.json")

_LINE_OUTCOMES = {Outcome.OVER, Outcome.UNDER}
_RESULT_OUTCOMES = {Outcome.HOME, Outcome.DRAW, Outcome.AWAY}
_DOUBLE_CHANCE_OUTCOMES = {Outcome.HOME_OR_DRAW, Outcome.DRAW_OR_AWAY, Outcome.HOME_OR_AWAY}
_DRAW_EXEMPT = {MarketFamily.WINNING_MARGIN, MarketFamily.HALF_MOST_GOALS}

# family -> (allowed outcomes, needs line, needs team, needs half period)
_FAMILY_RULES: dict[MarketFamily, tuple[set[Outcome], bool, bool, bool]] = {
    MarketFamily.TOTAL_GOALS: (_LINE_OUTCOMES, True, False, False),
    MarketFamily.MATCH_RESULT: (_RESULT_OUTCOMES, False, False, False),
    MarketFamily.DOUBLE_CHANCE: (_DOUBLE_CHANCE_OUTCOMES, False, False, False),
    MarketFamily.BTTS: ({Outcome.YES, Outcome.NO}, False, False, False),
    MarketFamily.TEAM_GOALS: (_LINE_OUTCOMES, True, True, False),
    MarketFamily.HANDICAP: ({Outcome.YES}, True, True, False),
    MarketFamily.HALF_TOTAL_GOALS: (_LINE_OUTCOMES, True, False, True),
    MarketFamily.HALF_RESULT: (_RESULT_OUTCOMES, False, False, True),
    MarketFamily.CORNERS: (_LINE_OUTCOMES, True, False, False),
    MarketFamily.CARDS: (_LINE_OUTCOMES, True, False, False),
    MarketFamily.CLEAN_SHEET: ({Outcome.YES, Outcome.NO}, False, True, False),
    MarketFamily.WIN_TO_NIL: ({Outcome.YES}, False, True, False),
    MarketFamily.CORRECT_SCORE: ({Outcome.YES}, False, False, False),
    MarketFamily.ODD_EVEN: ({Outcome.ODD, Outcome.EVEN}, False, False, False),
    MarketFamily.DRAW_NO_BET: ({Outcome.HOME, Outcome.AWAY}, False, False, False),
    # exact margin (yes) or margin above the line (over); draw needs neither
    MarketFamily.WINNING_MARGIN: ({Outcome.YES, Outcome.OVER, Outcome.DRAW}, True, True, False),
    MarketFamily.HALFTIME_FULLTIME: (_RESULT_OUTCOMES, False, False, False),
    MarketFamily.WIN_BOTH_HALVES: ({Outcome.YES}, False, True, False),
    # yes names the higher-scoring half through the period; draw means level halves
    MarketFamily.HALF_MOST_GOALS: ({Outcome.YES, Outcome.DRAW}, False, False, True),
}


class FamilySchema(BaseModel):
    model_name: str
    base_uncertainty: float = Field(ge=0.0, le=1.0)
    approximation: Literal["poisson", "normal"]


class MarketSchema(BaseModel):
    key: str = Field(min_length=1)
    outcome: Outcome
    line: float | None = None
    team: Team | None = None
    period: Period = Period.FULL_TIME
    score: tuple[int, int] | None = None
    ht_outcome: Outcome | None = None
    label: str = ""
    typical_odds: tuple[float, float] | None = None

    @model_validator(mode="after")
    def _check_odds(self) -> "MarketSchema":
        if self.typical_odds and not 1.0 < self.typical_odds[0] <= self.typical_odds[1]:
            raise ValueError(f"{self.key}: typical_odds must satisfy 1 < lo <= hi")
        return self


class GroupSchema(BaseModel):
    name: str
    family: MarketFamily
    closed: bool
    always_emit: bool = False
    markets: list[MarketSchema] = Field(min_length=1)


class CatalogSchema(BaseModel):
    version: int
    families: dict[MarketFamily, FamilySchema]
    groups: list[GroupSchema]


@dataclass(frozen=True)
class FamilyInfo:
    family: MarketFamily
    model_name: str
    base_uncertainty: float
    approximation: str

    @property
    def uses_normal_approximation(self) -> bool:
        return self.approximation == "normal"


@dataclass(frozen=True)
class MarketGroup:
    """Markets evaluated and emitted together.

    A closed group is a partition of outcomes: its members sum to one.
    """

    name: str
    family: MarketFamily
    closed: bool
    always_emit: bool
    markets: tuple[Market, ...]


class MarketCatalog:
    def __init__(
        self,
        version: int,
        families: dict[MarketFamily, FamilyInfo],
        groups: list[MarketGroup],
        typical_odds: dict[str, tuple[float, float]],
    ) -> None:
        self.version = version
        self.families = families
        self.groups = tuple(groups)
        self._markets = {market.key: market for group in groups for market in group.markets}
        self._typical_odds = typical_odds

    def __len__(self) -> int:
        return len(self._markets)

    def __contains__(self, key: object) -> bool:
        return key in self._markets

    @property
    def markets(self) -> tuple[Market, ...]:
        return tuple(self._markets.values())

    def get(self, key: str) -> Market:
        try:
            return self._markets[key]
        except KeyError:
            raise CatalogError(f"Unknown market '{key}'") from None

    def family(self, family: MarketFamily) -> FamilyInfo:
        return self.families[family]

    def typical_odds(self, key: str) -> tuple[float, float] | None:
        return self._typical_odds.get(key)

    def describe(self) -> list[dict[str, object]]:
        """Flat, JSON-friendly view used by the API and the CLI."""

        rows: list[dict[str, object]] = []
        for group in self.groups:
            for market in group.markets:
                rows.append(
                    {
                        "key": market.key,
                        "family": market.family.value,
                        "label": market.label,
                        "group": group.name,
                        "period": market.period.value,
                        "line": market.line,
                        "typical_odds": self._typical_odds.get(market.key),
                    }
                )
        return rows


def _check_market(group: GroupSchema, entry: MarketSchema) -> None:
    outcomes, needs_line, needs_team, needs_half = _FAMILY_RULES[group.family]
    if entry.outcome not in outcomes:
        raise CatalogError(f"{entry.key}: outcome '{entry.outcome.value}' invalid for {group.family.value}")
    if entry.outcome == Outcome.DRAW and group.family in _DRAW_EXEMPT:
        needs_line = needs_team = needs_half = False
    if needs_line and entry.line is None:
        raise CatalogError(f"{entry.key}: family {group.family.value} requires a line")
    if needs_team and entry.team is None:
        raise CatalogError(f"{entry.key}: family {group.family.value} requires a team")
    if needs_half and entry.period == Period.FULL_TIME:
        raise CatalogError(f"{entry.key}: family {group.family.value} requires a half period")
    if group.family == MarketFamily.CORRECT_SCORE and entry.score is None:
        raise CatalogError(f"{entry.key}: correct score markets require a score")
    if group.family == MarketFamily.HALFTIME_FULLTIME and entry.ht_outcome not in _RESULT_OUTCOMES:
        raise CatalogError(f"{entry.key}: half-time/full-time markets require a half-time result")
    if group.family == MarketFamily.WINNING_MARGIN and entry.outcome == Outcome.YES:
        if entry.line < 1 or not float(entry.line).is_integer():
            raise CatalogError(f"{entry.key}: an exact winning margin must be a positive whole number")


def parse_catalog(payload: dict) -> MarketCatalog:
    try:
        schema = CatalogSchema.model_validate(payload)
    except ValidationError as exc:
        raise CatalogError(f"Invalid market catalog: {exc}") from exc

    missing = set(MarketFamily) - set(schema.families)
    if missing:
        raise CatalogError(f"Catalog lacks family metadata for {sorted(f.value for f in missing)}")

    families = {
        family: FamilyInfo(
            family=family,
            model_name=info.model_name,
            base_uncertainty=info.base_uncertainty,
            approximation=info.approximation,
        )
        for family, info in schema.families.items()
    }
    groups: list[MarketGroup] = []
    typical_odds: dict[str, tuple[float, float]] = {}
    seen: set[str] = set()
    for group in schema.groups:
        if group.closed and len(group.markets) < 2:
            raise CatalogError(f"Closed group '{group.name}' needs at least two markets")
        markets = []
        for entry in group.markets:
            _check_market(group, entry)
            if entry.key in seen:
                raise CatalogError(f"Duplicate market key '{entry.key}'")
            seen.add(entry.key)
            markets.append(
                Market(
                    key=entry.key,
                    family=group.family,
                    outcome=entry.outcome,
                    line=entry.line,
                    team=entry.team,
                    period=entry.period,
                    score=entry.score,
                    ht_outcome=entry.ht_outcome,
                    label=entry.label or entry.key,
                )
            )
            if entry.typical_odds:
                typical_odds[entry.key] = entry.typical_odds
        groups.append(
            MarketGroup(
                name=group.name,
                family=group.family,
                closed=group.closed,
                always_emit=group.always_emit,
                markets=tuple(markets),
            )
        )
    return MarketCatalog(schema.version, families, groups, typical_odds)


def load_catalog(path: Path | None = None) -> MarketCatalog:
    path = path or CATALOG_PATH
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise CatalogError(f"Cannot read market catalog at {path}: {exc}") from exc
    catalog = parse_catalog(payload)
    logger.debug("Loaded market catalog v%s with %d markets from %s", catalog.version, len(catalog), path)
    return catalog


@lru_cache(maxsize=4)
def get_catalog(path: Path | None = None) -> MarketCatalog:
    """Return the cached catalog (the bundled one unless a path is given)."""

    return load_catalog(path)
