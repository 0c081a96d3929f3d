"""Statistical comparison of baseline and candidate performance.

Accept rule (``significant``) is conjunctive; ALL must hold:
1. Welch's t-test p-value < alpha
2. Relative mean improvement > min_improvement_pct
3. Cohen's d > min_effect_size

The conjunction rejects statistically detectable but practically meaningless
improvements, and large-looking improvements measured on too few samples.
"""

import logging
import math
from typing import Optional

from scipy import stats

from evalgate.errors import InsufficientSampleError
from evalgate.schemas.comparison import StatisticalComparisonV1
from evalgate.schemas.engine_config import GateThresholdsV1
from evalgate.schemas.trial import PerformanceSummaryV1

logger = logging.getLogger(__name__)


class StatisticalComparator:
    """Welch's t-test, Cohen's d and relative improvement behind a three-part gate."""

    def __init__(self, thresholds: Optional[GateThresholdsV1] = None):
        """Initialize comparator.

        Args:
            thresholds: Gate thresholds (defaults: alpha 0.05, 5% improvement,
                d 0.3, 95% CI, n >= 30)
        """
        self.thresholds = thresholds or GateThresholdsV1()

    def check_sample_floor(
        self, baseline: PerformanceSummaryV1, candidate: PerformanceSummaryV1
    ) -> None:
        """Raise InsufficientSampleError if either side is below the floor.

        The floor applies to successful trials, since those are what the
        t-test and effect size are computed from. Variance needs at least two
        of them; the configured minimum is validated to be at least that.
        """
        minimum = self.thresholds.min_sample_size
        usable_baseline = baseline.successful_count
        usable_candidate = candidate.successful_count
        if usable_baseline < minimum or usable_candidate < minimum:
            raise InsufficientSampleError(usable_baseline, usable_candidate, minimum)

    def compare(
        self,
        baseline: PerformanceSummaryV1,
        candidate: PerformanceSummaryV1,
    ) -> StatisticalComparisonV1:
        """Compare candidate against baseline.

        Args:
            baseline: Summary of the committed configuration's batch
            candidate: Summary of the candidate configuration's batch

        Returns:
            Comparison with the gate verdict and each individual check

        Raises:
            InsufficientSampleError: If the sample floor is not met
        """
        self.check_sample_floor(baseline, candidate)

        n1, n2 = baseline.successful_count, candidate.successful_count
        m1, m2 = baseline.mean, candidate.mean
        s1, s2 = baseline.stddev, candidate.stddev

        diff = m2 - m1
        var1, var2 = s1**2 / n1, s2**2 / n2
        standard_error = math.sqrt(var1 + var2)

        if standard_error == 0.0:
            # Both batches have zero variance
            t_statistic = 0.0 if diff == 0 else math.copysign(math.inf, diff)
            p_value = 1.0 if diff == 0 else 0.0
            dof = float(n1 + n2 - 2)
            interval = (diff, diff)
        else:
            result = stats.ttest_ind_from_stats(
                mean1=m2, std1=s2, nobs1=n2,
                mean2=m1, std2=s1, nobs2=n1,
                equal_var=False,
            )
            t_statistic = float(result.statistic)
            p_value = float(result.pvalue)
            dof = welch_degrees_of_freedom(var1, var2, n1, n2)
            t_critical = float(stats.t.ppf((1.0 + self.thresholds.confidence_level) / 2.0, dof))
            interval = (diff - t_critical * standard_error, diff + t_critical * standard_error)

        effect_size = cohens_d(m1, s1, n1, m2, s2, n2)
        improvement_pct = relative_improvement(m1, m2)

        checks = {
            "p_value": p_value < self.thresholds.alpha,
            "improvement": improvement_pct > self.thresholds.min_improvement_pct,
            "effect_size": effect_size > self.thresholds.min_effect_size,
        }
        significant = all(checks.values())

        comparison = StatisticalComparisonV1(
            p_value=min(max(p_value, 0.0), 1.0),
            effect_size=effect_size,
            improvement_pct=improvement_pct,
            significant=significant,
            confidence_interval=interval,
            confidence_level=self.thresholds.confidence_level,
            mean_difference=diff,
            t_statistic=t_statistic,
            degrees_of_freedom=dof,
            checks=checks,
        )

        failed = [name for name, passed in checks.items() if not passed]
        logger.debug(
            f"Comparison: p={p_value:.4g}, improvement={improvement_pct:.1%}, "
            f"d={effect_size:.3f} → {'significant' if significant else 'rejected'}"
            + (f" (failed: {', '.join(failed)})" if failed else "")
        )
        return comparison


def welch_degrees_of_freedom(var1: float, var2: float, n1: int, n2: int) -> float:
    """Welch–Satterthwaite degrees of freedom from per-group squared standard errors."""
    numerator = (var1 + var2) ** 2
    denominator = var1**2 / (n1 - 1) + var2**2 / (n2 - 1)
    if denominator == 0.0:
        return float(n1 + n2 - 2)
    return numerator / denominator


def cohens_d(m1: float, s1: float, n1: int, m2: float, s2: float, n2: int) -> float:
    """Cohen's d of (m2 - m1) using the pooled standard deviation."""
    diff = m2 - m1
    pooled_var = ((n1 - 1) * s1**2 + (n2 - 1) * s2**2) / (n1 + n2 - 2)
    pooled_sd = math.sqrt(pooled_var)
    if pooled_sd == 0.0:
        return 0.0 if diff == 0 else math.copysign(math.inf, diff)
    return diff / pooled_sd


def relative_improvement(baseline_mean: float, candidate_mean: float) -> float:
    """(candidate - baseline) / |baseline|; 0.0 when the baseline mean is zero."""
    if baseline_mean == 0.0:
        return 0.0
    return (candidate_mean - baseline_mean) / abs(baseline_mean)
