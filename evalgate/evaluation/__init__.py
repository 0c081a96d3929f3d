"""Trial aggregation and statistical comparison."""

from evalgate.evaluation.aggregator import summarize
from evalgate.evaluation.comparator import (
    StatisticalComparator,
    cohens_d,
    relative_improvement,
    welch_degrees_of_freedom,
)

__all__ = [
    "summarize",
    "StatisticalComparator",
    "cohens_d",
    "relative_improvement",
    "welch_degrees_of_freedom",
]
