"""Parameter delta validation, application and impact scoring."""

import math
from typing import Dict

from evalgate.errors import InvalidDeltaError


def validate_delta(baseline: Dict[str, float], delta: Dict[str, float]) -> None:
    """Check that a delta is non-empty, finite and only touches known parameters.

    Raises:
        InvalidDeltaError: If the delta is unusable
    """
    if not delta:
        raise InvalidDeltaError("delta is empty")

    unknown = sorted(set(delta) - set(baseline))
    if unknown:
        raise InvalidDeltaError(f"delta references unknown parameters: {', '.join(unknown)}")

    non_finite = sorted(name for name, value in delta.items() if not math.isfinite(value))
    if non_finite:
        raise InvalidDeltaError(f"delta has non-finite values for: {', '.join(non_finite)}")

    if all(value == 0.0 for value in delta.values()):
        raise InvalidDeltaError("delta changes no parameter")


def apply_delta(baseline: Dict[str, float], delta: Dict[str, float]) -> Dict[str, float]:
    """Candidate parameters: baseline plus the additive delta. Baseline is not modified."""
    candidate = dict(baseline)
    for name, change in delta.items():
        candidate[name] = baseline[name] + change
    return candidate


def impact_score(baseline: Dict[str, float], candidate: Dict[str, float]) -> float:
    """Largest relative change of any parameter.

    Relative to ``max(|baseline|, 1.0)`` so that parameters near zero do not
    produce unbounded scores.
    """
    score = 0.0
    for name, base_value in baseline.items():
        change = abs(candidate.get(name, base_value) - base_value)
        score = max(score, change / max(abs(base_value), 1.0))
    return score
