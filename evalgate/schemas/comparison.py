"""Statistical comparison schema."""

from typing import Dict, Tuple

from pydantic import BaseModel, ConfigDict, Field


class StatisticalComparisonV1(BaseModel):
    """Baseline vs. candidate comparison and significance gate verdict."""

    # Zero-variance comparisons can produce an infinite effect size
    model_config = ConfigDict(frozen=True, ser_json_inf_nan="constants")

    p_value: float = Field(..., ge=0.0, le=1.0)
    effect_size: float = Field(..., description="Cohen's d (pooled stddev)")
    improvement_pct: float = Field(..., description="Relative mean improvement (0.05 = 5%)")
    significant: bool

    confidence_interval: Tuple[float, float] = Field(
        ..., description="CI for candidate_mean - baseline_mean"
    )
    confidence_level: float = 0.95
    mean_difference: float = 0.0
    t_statistic: float = 0.0
    degrees_of_freedom: float = 0.0

    # Individual gate checks: p_value, improvement, effect_size
    checks: Dict[str, bool] = Field(default_factory=dict)
