"""Exception hierarchy shared by the market and parlay engines."""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum


class MatchLabError(Exception):
    """Base class for every error raised by matchlab."""


class InsufficientDataError(MatchLabError):
    """The inputs of a whole batch cannot support the requested output."""


class ModelComputationError(MatchLabError):
    """Invalid numeric input for a single fixture."""

    def __init__(self, fixture_id: int | str | None, message: str) -> None:
        self.fixture_id = fixture_id
        self.message = message
        super().__init__(f"fixture {fixture_id}: {message}")


class RejectReason(str, Enum):
    STRUCTURAL = "structural"
    LEG_ODDS = "leg_odds"
    LEG_PROBABILITY = "leg_probability"
    COMBINED_ODDS = "combined_odds"


class ConstraintViolationError(MatchLabError):
    """A draft parlay (or one of its legs) falls outside the configured bounds.

    Filtered per item by the parlay engine; never surfaces as a batch failure.
    """

    def __init__(self, reason: RejectReason, message: str) -> None:
        self.reason = reason
        self.message = message
        super().__init__(f"{reason.value}: {message}")


class DuplicateConflictError(MatchLabError):
    """A draft reuses a (fixture_id, market) key already admitted."""

    def __init__(self, keys: Iterable[tuple[int, str]], draft_name: str = "") -> None:
        self.keys = tuple(sorted(keys))
        self.draft_name = draft_name
        rendered = ", ".join(f"{fixture}_{market}" for fixture, market in self.keys)
        super().__init__(f"draft {draft_name!r} reuses {rendered}")


class CatalogError(MatchLabError):
    """Malformed market catalog data or an unknown market key."""


class BatchCancelledError(MatchLabError):
    """The caller cancelled a parlay batch before it completed."""


class SettlementError(MatchLabError):
    """Illegal status transition or missing settlement resolver."""
