"""Performance aggregation from trial results.

Pure functions: the same trials always produce the same summary.
"""

import logging
from typing import List, Sequence

import numpy as np

from evalgate.schemas.trial import PerformanceSummaryV1, TrialResultV1

logger = logging.getLogger(__name__)


def summarize(trials: Sequence[TrialResultV1]) -> PerformanceSummaryV1:
    """
    Reduce a batch of trials to a performance summary.

    ``success_rate`` and ``mean_duration_ms`` are computed over all trials;
    ``mean`` and ``stddev`` (sample standard deviation, ddof=1) over the
    metric values of successful trials only.

    Args:
        trials: Trial results of one batch

    Returns:
        Performance summary

    Example:
        >>> summarize([
        ...     TrialResultV1(round=0, success=True, metric_value=10.0),
        ...     TrialResultV1(round=1, success=True, metric_value=12.0),
        ...     TrialResultV1(round=2, success=False),
        ... ])
        PerformanceSummaryV1(n=3, success_rate=0.666..., mean=11.0, stddev=1.414..., ...)
    """
    n = len(trials)
    if n == 0:
        return PerformanceSummaryV1(n=0, success_rate=0.0, mean=0.0, stddev=0.0)

    values = [t.metric_value for t in trials if t.success]
    mean, stddev = _mean_std(values)

    return PerformanceSummaryV1(
        n=n,
        success_rate=len(values) / n,
        mean=mean,
        stddev=stddev,
        mean_duration_ms=mean_duration_ms(trials),
    )


def mean_duration_ms(trials: Sequence[TrialResultV1]) -> float:
    """Average trial duration in milliseconds."""
    if not trials:
        return 0.0
    return float(np.mean([t.duration_ms for t in trials]))


def _mean_std(values: List[float]) -> tuple:
    if not values:
        return 0.0, 0.0
    array = np.asarray(values, dtype=float)
    mean = float(np.mean(array))
    stddev = float(np.std(array, ddof=1)) if len(array) > 1 else 0.0
    return mean, stddev
