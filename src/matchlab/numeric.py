"""Numeric primitives: Poisson and normal helpers used by the market engine.

The Poisson mass function is evaluated in log space against a precomputed
log-factorial table so large goal counts never overflow.
"""

from __future__ import annotations

import math
from functools import lru_cache

import numpy as np

MAX_TABLE_SIZE = 64


@lru_cache(maxsize=None)
def log_factorials(size: int = MAX_TABLE_SIZE) -> np.ndarray:
    """Return ``log(k!)`` for ``k = 0..size``."""

    table = np.zeros(size + 1)
    for k in range(1, size + 1):
        table[k] = table[k - 1] + math.log(k)
    table.setflags(write=False)
    return table


def poisson_pmf(k: int, lam: float) -> float:
    if k < 0:
        return 0.0
    if lam == 0.0:
        return 1.0 if k == 0 else 0.0
    log_fact = log_factorials(max(k, MAX_TABLE_SIZE))[k]
    return math.exp(k * math.log(lam) - lam - log_fact)


def poisson_cdf(k: int, lam: float) -> float:
    """P(X <= k) for X ~ Poisson(lam)."""

    if k < 0:
        return 0.0
    return min(sum(poisson_pmf(i, lam) for i in range(k + 1)), 1.0)


def poisson_vector(lam: float, max_goals: int) -> np.ndarray:
    """Marginal pmf over ``0..max_goals`` with the tail folded into the top bucket.

    The last entry holds ``P(X >= max_goals)`` so the vector sums to one.
    """

    vector = np.array([poisson_pmf(k, lam) for k in range(max_goals + 1)])
    vector[-1] = max(1.0 - poisson_cdf(max_goals - 1, lam), 0.0)
    return vector


def joint_score_matrix(lambda_home: float, lambda_away: float, max_goals: int) -> np.ndarray:
    """Independent-Poisson scoreline grid, rows = home goals, columns = away goals."""

    return np.outer(poisson_vector(lambda_home, max_goals), poisson_vector(lambda_away, max_goals))


def normal_cdf(x: float, mean: float = 0.0, std: float = 1.0) -> float:
    if std <= 0.0:
        raise ValueError("std must be positive")
    z = (x - mean) / (std * math.sqrt(2.0))
    return 0.5 * (1.0 + math.erf(z))


def normal_tail(threshold: float, mean: float, std: float) -> float:
    """P(X > threshold) for X ~ Normal(mean, std)."""

    return min(max(1.0 - normal_cdf(threshold, mean, std), 0.0), 1.0)
