"""Trial outcome and performance summary schemas."""

from pydantic import BaseModel, ConfigDict, Field


class TrialResultV1(BaseModel):
    """Outcome of one sampled execution of an agent's task."""

    model_config = ConfigDict(frozen=True)

    round: int = Field(..., description="Scenario index within the batch")
    success: bool
    metric_value: float = 0.0
    duration_ms: float = 0.0
    error: str | None = None  # Set for failed trials


class PerformanceSummaryV1(BaseModel):
    """Summary of a batch of trials.

    ``success_rate`` and ``mean_duration_ms`` cover every trial; ``mean`` and
    ``stddev`` cover the metric values of successful trials only.
    """

    model_config = ConfigDict(frozen=True)

    n: int = Field(..., ge=0, description="Number of trials")
    success_rate: float = Field(..., ge=0.0, le=1.0)
    mean: float
    stddev: float = Field(..., ge=0.0)
    mean_duration_ms: float = Field(default=0.0, ge=0.0, description="Average trial duration")

    @property
    def successful_count(self) -> int:
        """Number of successful trials the mean/stddev were computed from."""
        return int(round(self.n * self.success_rate))
