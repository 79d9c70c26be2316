"""Summary statistics for FragMap grid values."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

import numpy as np

ESTIMATE_LIMIT = 10000
ISO_RECOMMEND_MIN = -2.0
ISO_RECOMMEND_MAX = 0.5


@dataclass(frozen=True)
class GridStatistics:
    min: float
    max: float
    mean: float
    std_dev: float
    count: int
    is_estimate: bool = False

    def to_dict(self) -> Dict[str, object]:
        return {
            "min": self.min,
            "max": self.max,
            "mean": self.mean,
            "std_dev": self.std_dev,
            "count": self.count,
            "is_estimate": self.is_estimate,
        }


def _two_pass(values: np.ndarray, is_estimate: bool) -> GridStatistics:
    # accumulate in float64 so float32 grids do not lose precision in the sums
    data = np.asarray(values, dtype=np.float64).reshape(-1)
    count = int(data.size)
    if count == 0:
        return GridStatistics(0.0, 0.0, 0.0, 0.0, 0, is_estimate)
    mean = float(data.sum() / count)
    deviations = data - mean
    variance = float(np.dot(deviations, deviations) / count)
    return GridStatistics(
        min=float(data.min()),
        max=float(data.max()),
        mean=mean,
        std_dev=float(np.sqrt(variance)),
        count=count,
        is_estimate=is_estimate,
    )


def compute_statistics(values) -> GridStatistics:
    """Exact min/max/mean/population standard deviation over every value."""
    return _two_pass(values, is_estimate=False)


def estimate_statistics(values, limit: int = ESTIMATE_LIMIT) -> GridStatistics:
    """Fast estimate from the first ``limit`` values, for diagnostics only."""
    if limit < 1:
        raise ValueError("limit must be >= 1")
    data = np.asarray(values).reshape(-1)
    return _two_pass(data[:limit], is_estimate=True)


def recommended_iso_value(stats: GridStatistics) -> float:
    suggestion = stats.mean - 0.5 * stats.std_dev
    return float(min(ISO_RECOMMEND_MAX, max(ISO_RECOMMEND_MIN, suggestion)))


def quality_score(stats: GridStatistics) -> int:
    """Heuristic 0-10 plausibility score for a GFE grid's value distribution."""
    score = 10
    if stats.min < -5.0 or stats.max > 5.0:
        score -= 2
    if stats.min < -3.0 or stats.max > 3.0:
        score -= 1
    if stats.std_dev < 0.1:
        score -= 1
    if stats.std_dev > 2.0:
        score -= 1
    if abs(stats.mean) > 1.0:
        score -= 1
    return max(0, score)
