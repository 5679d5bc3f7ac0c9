"""Pydantic schemas for the matchlab API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, model_validator

from matchlab.data.schemas import CandidatePickSchema, DraftParlaySchema, MatchMetricsSchema
from matchlab.parlays.constraints import ParlayConstraints


class MarketProbabilityOut(BaseModel):
    fixture_id: int
    market: str
    family: str
    selection: str
    p_model: float
    uncertainty: float
    model_name: str
    model_inputs: dict[str, float]
    rationale: str
    engine_version: str


class FixtureFailureOut(BaseModel):
    fixture_id: int
    error: str


class ProbabilitiesRequest(BaseModel):
    snapshots: list[MatchMetricsSchema] = Field(min_length=1)


class ProbabilitiesResponse(BaseModel):
    engine_version: str
    results: list[MarketProbabilityOut]
    failures: list[FixtureFailureOut]


class _ConstraintChoice(BaseModel):
    constraints: ParlayConstraints | None = None
    profile: str | None = None

    @model_validator(mode="after")
    def _one_source(self) -> "_ConstraintChoice":
        if (self.constraints is None) == (self.profile is None):
            raise ValueError("Provide exactly one of 'constraints' or 'profile'")
        return self


class ValidateParlaysRequest(_ConstraintChoice):
    drafts: list[DraftParlaySchema]
    ranked: bool = False


class GenerateParlaysRequest(_ConstraintChoice):
    picks: list[CandidatePickSchema]


class ParlayBatchResponse(BaseModel):
    batch_id: str
    parlays: list[dict[str, Any]]
    diagnostics: dict[str, Any]
