"""API tests."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from matchlab.api.server import app
from matchlab.config import get_settings

HEADERS = {"X-API-Key": "test-key"}


@pytest.fixture()
def client(monkeypatch) -> TestClient:
    monkeypatch.setenv("MATCHLAB_API_KEY", "test-key")
    get_settings.cache_clear()
    yield TestClient(app)
    get_settings.cache_clear()


def _leg(fixture_id: int, market: str = "over_2.5", odds: float = 1.9, probability: float = 0.6) -> dict:
    return {"fixture_id": fixture_id, "market": market, "odds": odds, "probability": probability}


def test_health_and_catalog(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}
    body = client.get("/markets/catalog").json()
    keys = {row["key"] for row in body["markets"]}
    assert {"over_2.5", "1x2_home", "btts_yes", "corners_over_9.5"} <= keys
    assert client.get("/version").json()["engine_version"] == get_settings().engine_version


def test_probabilities_requires_key(client: TestClient) -> None:
    payload = {"snapshots": [{"fixture_id": 1, "lambda_home": 1.3, "lambda_away": 1.0}]}
    assert client.post("/markets/probabilities", json=payload).status_code == 401
    assert client.post("/markets/probabilities", json=payload, headers={"X-API-Key": "bad"}).status_code == 401


def test_probabilities(client: TestClient) -> None:
    payload = {
        "snapshots": [
            {"fixture_id": 1, "lambda_home": 1.3, "lambda_away": 1.0},
            {"fixture_id": 2, "lambda_home": -1.0, "lambda_away": 1.0},
        ]
    }
    response = client.post("/markets/probabilities", json=payload, headers=HEADERS)
    assert response.status_code == 200
    body = response.json()
    over = next(r for r in body["results"] if r["market"] == "over_2.5")
    assert over["fixture_id"] == 1
    assert 0.39 < over["p_model"] < 0.42
    assert body["failures"][0]["fixture_id"] == 2


def test_probabilities_missing_rate_is_unprocessable(client: TestClient) -> None:
    payload = {"snapshots": [{"fixture_id": 1, "lambda_home": 1.3, "lambda_away": None}]}
    assert client.post("/markets/probabilities", json=payload, headers=HEADERS).status_code == 422


def test_validate_parlays_with_profile(client: TestClient) -> None:
    payload = {
        "profile": "premium",
        "drafts": [
            {"name": "a", "legs": [_leg(42, probability=0.62), _leg(1, "btts_yes"), _leg(2)]},
            {"name": "b", "legs": [_leg(42), _leg(3), _leg(4)]},
        ],
    }
    response = client.post("/parlays/validate", json=payload, headers=HEADERS)
    assert response.status_code == 200
    body = response.json()
    assert [p["name"] for p in body["parlays"]] == ["a"]
    assert body["diagnostics"]["duplicate_conflicts"] == 1
    assert body["diagnostics"]["conflicts"] == [["42_over_2.5"]]
    assert body["parlays"][0]["status"] == "pending"


def test_validate_parlays_errors(client: TestClient) -> None:
    drafts = [{"legs": [_leg(1), _leg(2), _leg(3, "not_a_market")]}]
    unknown_market = client.post("/parlays/validate", json={"profile": "premium", "drafts": drafts}, headers=HEADERS)
    assert unknown_market.status_code == 422
    unknown_profile = client.post("/parlays/validate", json={"profile": "nope", "drafts": []}, headers=HEADERS)
    assert unknown_profile.status_code == 404
    neither = client.post("/parlays/validate", json={"drafts": []}, headers=HEADERS)
    assert neither.status_code == 422


def test_generate_parlays(client: TestClient) -> None:
    constraints = {
        "min_individual_odds": 1.8,
        "max_individual_odds": 2.5,
        "min_combined_odds": 5.0,
        "max_combined_odds": 12.0,
        "picks_per_parlay": 3,
        "parlays_per_batch": 3,
    }
    picks = [_leg(i, probability=0.6 + i / 100) for i in range(6)]
    response = client.post("/parlays/generate", json={"constraints": constraints, "picks": picks}, headers=HEADERS)
    assert response.status_code == 200
    assert len(response.json()["parlays"]) == 2

    too_few = client.post(
        "/parlays/generate", json={"constraints": constraints, "picks": picks[:2]}, headers=HEADERS
    )
    assert too_few.status_code == 422
