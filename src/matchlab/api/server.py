"""FastAPI backend exposing the market and parlay engines."""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import Depends, FastAPI, Header, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from matchlab import __version__
from matchlab.api.schemas import (
    GenerateParlaysRequest,
    ParlayBatchResponse,
    ProbabilitiesRequest,
    ProbabilitiesResponse,
    ValidateParlaysRequest,
)
from matchlab.config import get_api_access_key, get_settings
from matchlab.errors import CatalogError, InsufficientDataError
from matchlab.markets.catalog import MarketCatalog, get_catalog
from matchlab.markets.engine import compute_batch
from matchlab.parlays.constraints import ParlayConstraints, get_profile
from matchlab.parlays.engine import build_parlay_batch, build_parlays_from_pool

app = FastAPI(
    title="matchlab API",
    version=__version__,
    description="Soccer market probabilities and parlay validation; numeric outputs only.",
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def require_api_key(x_api_key: str | None = Header(default=None, alias="X-API-Key")) -> None:
    expected = get_api_access_key()
    if not x_api_key or x_api_key != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


def current_catalog() -> MarketCatalog:
    return get_catalog(get_settings().catalog_path)


APIKeyDep = Annotated[None, Depends(require_api_key)]
CatalogDep = Annotated[MarketCatalog, Depends(current_catalog)]


def _unprocessable(exc: Exception) -> HTTPException:
    return HTTPException(status_code=422, detail=str(exc))


def _resolve_constraints(constraints: ParlayConstraints | None, profile: str | None) -> ParlayConstraints:
    if constraints is not None:
        return constraints
    try:
        return get_profile(profile)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.args[0]) from exc


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/version")
def version() -> dict[str, Any]:
    return {
        "name": "matchlab",
        "version": __version__,
        "engine_version": get_settings().engine_version,
    }


@app.get("/markets/catalog")
def market_catalog(catalog: CatalogDep) -> dict[str, Any]:
    return {"version": catalog.version, "markets": catalog.describe()}


@app.post("/markets/probabilities", response_model=ProbabilitiesResponse)
def market_probabilities(
    payload: ProbabilitiesRequest,
    _: APIKeyDep,
    catalog: CatalogDep,
) -> ProbabilitiesResponse:
    settings = get_settings()
    try:
        batch = compute_batch(
            [snapshot.to_metrics() for snapshot in payload.snapshots],
            settings=settings,
            catalog=catalog,
        )
    except InsufficientDataError as exc:
        raise _unprocessable(exc) from exc
    return ProbabilitiesResponse(
        engine_version=settings.engine_version,
        results=[record.to_dict() for record in batch.records()],
        failures=[{"fixture_id": f.fixture_id, "error": f.error} for f in batch.failures],
    )


@app.post("/parlays/validate", response_model=ParlayBatchResponse)
def validate_parlays(
    payload: ValidateParlaysRequest,
    _: APIKeyDep,
    catalog: CatalogDep,
) -> ParlayBatchResponse:
    constraints = _resolve_constraints(payload.constraints, payload.profile)
    try:
        drafts = [draft.to_draft(catalog) for draft in payload.drafts]
        batch = build_parlay_batch(drafts, constraints, ranked=payload.ranked, catalog=catalog)
    except (CatalogError, InsufficientDataError) as exc:
        raise _unprocessable(exc) from exc
    return ParlayBatchResponse(**batch.to_dict())


@app.post("/parlays/generate", response_model=ParlayBatchResponse)
def generate_parlays(
    payload: GenerateParlaysRequest,
    _: APIKeyDep,
    catalog: CatalogDep,
) -> ParlayBatchResponse:
    constraints = _resolve_constraints(payload.constraints, payload.profile)
    try:
        pool = [pick.to_pick(catalog) for pick in payload.picks]
        batch = build_parlays_from_pool(pool, constraints, catalog=catalog)
    except (CatalogError, InsufficientDataError) as exc:
        raise _unprocessable(exc) from exc
    return ParlayBatchResponse(**batch.to_dict())
