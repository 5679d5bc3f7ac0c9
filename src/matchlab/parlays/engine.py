"""Parlay construction and validation logic."""

from __future__ import annotations

import itertools
import logging
import math
import threading
import uuid
from collections.abc import Iterable, Sequence

from matchlab.config import Settings, get_settings
from matchlab.errors import (
    BatchCancelledError,
    ConstraintViolationError,
    DuplicateConflictError,
    InsufficientDataError,
    RejectReason,
)
from matchlab.markets.catalog import MarketCatalog, get_catalog
from matchlab.parlays.constraints import ParlayConstraints
from matchlab.parlays.ledger import ExposureLedger
from matchlab.parlays.types import (
    BatchDiagnostics,
    CandidatePick,
    ConfidenceTier,
    DraftParlay,
    ExposureKey,
    Parlay,
    ParlayBatch,
)

logger = logging.getLogger(__name__)


def combine_odds(legs: Iterable[CandidatePick]) -> float:
    decimal = 1.0
    for leg in legs:
        decimal *= leg.odds
    return decimal


def mean_probability(legs: Sequence[CandidatePick]) -> float:
    """Arithmetic mean of leg probabilities (display indicator, not a joint probability)."""

    if not legs:
        return 0.0
    return sum(leg.probability for leg in legs) / len(legs)


def confidence_tier(probability: float, settings: Settings | None = None) -> ConfidenceTier:
    settings = settings or get_settings()
    if probability >= settings.ultra_safe_threshold:
        return ConfidenceTier.ULTRA_SAFE
    if probability >= settings.safe_threshold:
        return ConfidenceTier.SAFE
    if probability >= settings.balanced_threshold:
        return ConfidenceTier.BALANCED
    return ConfidenceTier.VALUE


def _distinct_fixtures(picks: Iterable[CandidatePick]) -> int:
    return len({pick.fixture_id for pick in picks})


def _require_fixtures(available: int, constraints: ParlayConstraints) -> None:
    if available < constraints.picks_per_parlay:
        raise InsufficientDataError(
            f"Only {available} distinct fixtures available; "
            f"{constraints.picks_per_parlay} picks per parlay required"
        )


def _well_formed(leg: CandidatePick) -> bool:
    return math.isfinite(leg.odds) and leg.odds > 1.0 and 0.0 < leg.probability < 1.0


def _check_structure(draft: DraftParlay, constraints: ParlayConstraints) -> None:
    if len(draft.legs) != constraints.picks_per_parlay:
        raise ConstraintViolationError(
            RejectReason.STRUCTURAL,
            f"expected {constraints.picks_per_parlay} legs, got {len(draft.legs)}",
        )
    if len(draft.fixture_ids) != len(draft.legs):
        raise ConstraintViolationError(RejectReason.STRUCTURAL, "legs must come from distinct fixtures")
    for leg in draft.legs:
        if leg.odds is None or leg.probability is None:
            raise ConstraintViolationError(
                RejectReason.STRUCTURAL, f"leg {leg.exposure_key} lacks odds or probability"
            )
        if not _well_formed(leg):
            raise ConstraintViolationError(
                RejectReason.STRUCTURAL, f"leg {leg.exposure_key} has invalid odds or probability"
            )


def _check_legs(draft: DraftParlay, constraints: ParlayConstraints) -> None:
    for leg in draft.legs:
        if not constraints.odds_in_range(leg.odds):
            raise ConstraintViolationError(
                RejectReason.LEG_ODDS,
                f"leg {leg.exposure_key} odds {leg.odds} outside "
                f"[{constraints.min_individual_odds}, {constraints.max_individual_odds}]",
            )
    for leg in draft.legs:
        if not constraints.probability_in_range(leg.probability):
            raise ConstraintViolationError(
                RejectReason.LEG_PROBABILITY,
                f"leg {leg.exposure_key} probability {leg.probability} outside the allowed range",
            )


def validate_draft(
    draft: DraftParlay,
    constraints: ParlayConstraints,
    *,
    batch_id: str | None = None,
    settings: Settings | None = None,
) -> Parlay:
    """Validate one draft and build the authoritative parlay.

    Checks run in order (structure, leg bounds, combined bounds); the first
    failure raises ``ConstraintViolationError``. Proposer-supplied combined
    values are ignored.
    """

    _check_structure(draft, constraints)
    _check_legs(draft, constraints)
    combined = combine_odds(draft.legs)
    if not constraints.combined_in_range(combined):
        raise ConstraintViolationError(
            RejectReason.COMBINED_ODDS,
            f"combined odds {combined:.3f} outside "
            f"[{constraints.min_combined_odds}, {constraints.max_combined_odds}]",
        )
    probability = mean_probability(draft.legs)
    return Parlay(
        legs=tuple(draft.legs),
        name=draft.name,
        combined_odds=combined,
        combined_probability=probability,
        confidence_tier=confidence_tier(probability, settings),
        batch_id=batch_id,
        strategy=draft.strategy,
    )


def _atypical_legs(parlay: Parlay, catalog: MarketCatalog) -> int:
    count = 0
    for leg in parlay.legs:
        bounds = catalog.typical_odds(leg.market.key)
        if bounds and not bounds[0] <= leg.odds <= bounds[1]:
            count += 1
    return count


def _check_cancelled(cancel_event: threading.Event | None, batch_id: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise BatchCancelledError(f"Parlay batch {batch_id} cancelled")


def build_parlay_batch(
    drafts: Iterable[DraftParlay],
    constraints: ParlayConstraints,
    *,
    ranked: bool = False,
    ledger: ExposureLedger | None = None,
    cancel_event: threading.Event | None = None,
    batch_id: str | None = None,
    settings: Settings | None = None,
    catalog: MarketCatalog | None = None,
) -> ParlayBatch:
    """Validate, order and deduplicate drafts into one batch.

    Drafts are walked by descending ``combined_probability`` unless
    ``ranked`` is set, in which case the caller's order is kept. A draft
    sharing any ``(fixture_id, market)`` key with an admitted parlay is
    rejected whole. Pass a shared ``ledger`` for exclusivity across batches.
    A cancelled batch returns nothing and releases its ledger claims.
    """

    drafts = list(drafts)
    settings = settings or get_settings()
    catalog = catalog or get_catalog(settings.catalog_path)
    batch_id = batch_id or uuid.uuid4().hex[:12]
    _require_fixtures(_distinct_fixtures(leg for draft in drafts for leg in draft.legs), constraints)

    diagnostics = BatchDiagnostics(drafts_received=len(drafts))
    valid: list[Parlay] = []
    for draft in drafts:
        _check_cancelled(cancel_event, batch_id)
        try:
            parlay = validate_draft(draft, constraints, batch_id=batch_id, settings=settings)
        except ConstraintViolationError as exc:
            diagnostics.record_reject(exc.reason)
            logger.debug("Rejected draft %r: %s", draft.name, exc)
            continue
        diagnostics.atypical_odds_legs += _atypical_legs(parlay, catalog)
        valid.append(parlay)

    if not ranked:
        valid.sort(key=lambda p: p.combined_probability, reverse=True)

    ledger = ledger if ledger is not None else ExposureLedger()
    claimed: list[tuple[ExposureKey, ...]] = []
    admitted: list[Parlay] = []
    try:
        for parlay in valid:
            _check_cancelled(cancel_event, batch_id)
            if len(admitted) >= constraints.parlays_per_batch:
                diagnostics.truncated += 1
                continue
            conflicts = ledger.try_claim(parlay.exposure_keys)
            if conflicts:
                conflict = DuplicateConflictError(conflicts, parlay.name)
                logger.info("Duplicate conflict: %s", conflict)
                diagnostics.duplicate_conflicts += 1
                diagnostics.conflicts.append(conflict.keys)
                continue
            claimed.append(parlay.exposure_keys)
            admitted.append(parlay)
    except BatchCancelledError:
        for keys in claimed:
            ledger.release(keys)
        logger.warning("Batch %s cancelled; released %d claims", batch_id, len(claimed))
        raise

    diagnostics.admitted = len(admitted)
    logger.info("Parlay batch %s: %s", batch_id, diagnostics.as_dict())
    return ParlayBatch(batch_id=batch_id, parlays=admitted, diagnostics=diagnostics)


def _usable_leg(pick: CandidatePick, constraints: ParlayConstraints) -> bool:
    if pick.odds is None or pick.probability is None or not _well_formed(pick):
        return False
    return constraints.odds_in_range(pick.odds) and constraints.probability_in_range(pick.probability)


def _next_combo(
    remaining: Sequence[CandidatePick], constraints: ParlayConstraints, budget: int
) -> tuple[CandidatePick, ...] | None:
    combos = itertools.combinations(remaining, constraints.picks_per_parlay)
    for combo in itertools.islice(combos, budget):
        if _distinct_fixtures(combo) != len(combo):
            continue
        if constraints.combined_in_range(combine_odds(combo)):
            return combo
    return None


def assemble_drafts(
    pool: Iterable[CandidatePick],
    constraints: ParlayConstraints,
    *,
    limit: int | None = None,
    settings: Settings | None = None,
) -> tuple[list[DraftParlay], int]:
    """Group a pick pool into drafts that share no ``(fixture_id, market)`` key.

    Legs outside the leg bounds are dropped first; returns the drafts and the
    number of dropped legs. Drafts are built greedily: each one takes the
    highest-probability unused legs that form a valid combination, and its
    legs are then retired from the pool. At most ``limit`` drafts are built
    and each search inspects at most ``max_pool_combinations`` combinations.
    """

    settings = settings or get_settings()
    budget = settings.max_pool_combinations
    pool = list(pool)
    usable = [pick for pick in pool if _usable_leg(pick, constraints)]
    filtered = len(pool) - len(usable)
    usable.sort(key=lambda pick: pick.probability, reverse=True)

    used: set[ExposureKey] = set()
    remaining: list[CandidatePick] = []
    for pick in usable:
        if pick.exposure_key not in used:
            used.add(pick.exposure_key)
            remaining.append(pick)

    drafts: list[DraftParlay] = []
    while limit is None or len(drafts) < limit:
        combo = _next_combo(remaining, constraints, budget)
        if combo is None:
            break
        drafts.append(
            DraftParlay(legs=list(combo), name=f"Parlay {len(drafts) + 1}", strategy="pool")
        )
        taken = {pick.exposure_key for pick in combo}
        remaining = [pick for pick in remaining if pick.exposure_key not in taken]
    logger.debug("Assembled %d disjoint drafts from %d usable legs", len(drafts), len(usable))
    return drafts, filtered


def build_parlays_from_pool(
    pool: Iterable[CandidatePick],
    constraints: ParlayConstraints,
    *,
    ledger: ExposureLedger | None = None,
    cancel_event: threading.Event | None = None,
    batch_id: str | None = None,
    settings: Settings | None = None,
    catalog: MarketCatalog | None = None,
) -> ParlayBatch:
    pool = list(pool)
    _require_fixtures(_distinct_fixtures(pool), constraints)
    drafts, filtered = assemble_drafts(
        pool, constraints, limit=constraints.parlays_per_batch, settings=settings
    )
    if not drafts:
        diagnostics = BatchDiagnostics(legs_filtered=filtered)
        logger.info("No drafts could be assembled from a pool of %d picks", len(pool))
        return ParlayBatch(batch_id=batch_id or uuid.uuid4().hex[:12], parlays=[], diagnostics=diagnostics)
    batch = build_parlay_batch(
        drafts,
        constraints,
        ledger=ledger,
        cancel_event=cancel_event,
        batch_id=batch_id,
        settings=settings,
        catalog=catalog,
    )
    batch.diagnostics.legs_filtered = filtered
    return batch
