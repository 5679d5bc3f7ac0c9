"""Constraint configuration for parlay construction."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator

PROFILES_PATH = Path(__file__).with_name("profiles.json")


class ParlayConstraints(BaseModel):
    """Numeric bounds for one construction call. Always passed explicitly."""

    model_config = ConfigDict(frozen=True)

    min_individual_odds: float = Field(gt=1.0)
    max_individual_odds: float = Field(gt=1.0)
    min_combined_odds: float = Field(gt=1.0)
    max_combined_odds: float = Field(gt=1.0)
    picks_per_parlay: int = Field(ge=1)
    parlays_per_batch: int = Field(ge=1)
    min_individual_probability: float | None = Field(default=None, ge=0.0, le=1.0)
    max_individual_probability: float | None = Field(default=None, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_ranges(self) -> "ParlayConstraints":
        if self.min_individual_odds > self.max_individual_odds:
            raise ValueError("min_individual_odds exceeds max_individual_odds")
        if self.min_combined_odds > self.max_combined_odds:
            raise ValueError("min_combined_odds exceeds max_combined_odds")
        low, high = self.min_individual_probability, self.max_individual_probability
        if low is not None and high is not None and low > high:
            raise ValueError("min_individual_probability exceeds max_individual_probability")
        return self

    def odds_in_range(self, odds: float) -> bool:
        return self.min_individual_odds <= odds <= self.max_individual_odds

    def probability_in_range(self, probability: float) -> bool:
        if self.min_individual_probability is not None and probability < self.min_individual_probability:
            return False
        if self.max_individual_probability is not None and probability > self.max_individual_probability:
            return False
        return True

    def combined_in_range(self, combined_odds: float) -> bool:
        return self.min_combined_odds <= combined_odds <= self.max_combined_odds


@lru_cache(maxsize=1)
def load_profiles(path: Path | None = None) -> dict[str, ParlayConstraints]:
    payload = json.loads(Path(path or PROFILES_PATH).read_text(encoding="utf-8"))
    return {name: ParlayConstraints.model_validate(values) for name, values in payload.items()}


def get_profile(name: str) -> ParlayConstraints:
    """Return a named constraint profile; raises ``KeyError`` when unknown."""

    profiles = load_profiles()
    if name not in profiles:
        raise KeyError(f"Unknown constraint profile '{name}'. Available: {', '.join(sorted(profiles))}")
    return profiles[name]
