"""Tabular views of engine output for monitoring and the CLI."""

from __future__ import annotations

from collections.abc import Iterable

import pandas as pd

from matchlab.markets.types import MarketProbability

PROBABILITY_COLUMNS = [
    "fixture_id",
    "market",
    "family",
    "selection",
    "p_model",
    "uncertainty",
    "model_name",
    "engine_version",
]


def probabilities_frame(records: Iterable[MarketProbability]) -> pd.DataFrame:
    rows = [{column: record.to_dict()[column] for column in PROBABILITY_COLUMNS} for record in records]
    return pd.DataFrame(rows, columns=PROBABILITY_COLUMNS)


def summarize_markets(frame: pd.DataFrame) -> dict[str, float]:
    """Per-family record counts and mean probability/uncertainty."""

    summary: dict[str, float] = {}
    if frame.empty:
        return summary
    summary["fixtures"] = float(frame["fixture_id"].nunique())
    summary["records"] = float(len(frame))
    for family, family_df in frame.groupby("family", sort=True):
        summary[f"{family}_count"] = float(len(family_df))
        summary[f"{family}_p_mean"] = float(family_df["p_model"].mean())
        summary[f"{family}_uncertainty_mean"] = float(family_df["uncertainty"].mean())
    return summary


def pivot_probabilities(frame: pd.DataFrame) -> pd.DataFrame:
    """Fixtures as rows, market keys as columns (catalog order kept).

    A fixture id submitted more than once keeps its first row.
    """

    if frame.empty:
        return frame
    order = list(dict.fromkeys(frame["market"]))
    table = frame.pivot_table(index="fixture_id", columns="market", values="p_model", aggfunc="first")
    return table.reindex(columns=order)
