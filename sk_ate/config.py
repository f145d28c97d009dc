"""Per-call configuration for ATE estimation."""

import dataclasses
from dataclasses import dataclass
from numbers import Integral, Real
from typing import Optional, Tuple

METHODS = ("matching", "ipw", "dr")
TRIM_POLICIES = ("clamp", "exclude")
POSITIVITY_ACTIONS = ("warn", "raise")


@dataclass(frozen=True)
class EstimationConfig:
    """Options controlling a single estimation run.

    Parameters
    ----------
    method : {"matching", "ipw", "dr"}, default="ipw"
        Estimation method used when none is passed explicitly.
    match_ratio : int, default=1
        Number of controls matched to each treated unit.
    caliper : float or None, default=None
        Maximum propensity distance for a match. None disables the caliper.
    match_with_replacement : bool, default=False
        Whether a control may be matched to more than one treated unit.
    trim_quantiles : tuple of (float, float) or None, default=None
        Quantile range outside of which IPW weights are trimmed.
    trim_policy : {"clamp", "exclude"}, default="clamp"
        Clamp weights to the quantile bounds or drop the units.
    positivity_epsilon : float, default=1e-6
        Propensity scores are clipped into [eps, 1 - eps].
    max_clipped_fraction : float, default=0.0
        Share of clipped scores tolerated before positivity is reported.
    positivity_action : {"warn", "raise"}, default="warn"
        Report a positivity problem as a warning or raise
        :class:`~sk_ate.exceptions.PositivityViolation`.
    extreme_weight_threshold : float or None, default=None
        Absolute weight above which a unit is flagged as extreme.
    extreme_weight_factor : float, default=10.0
        When no absolute threshold is set, weights above
        ``extreme_weight_factor * mean(weights)`` are flagged.
    normalize_weights : bool, default=True
        Hajek (normalised) IPW when True, Horvitz-Thompson when False.
    separate_outcome_models : bool, default=False
        Fit one outcome regression per treatment arm in DR mode.
    max_iter : int, default=1000
        Iteration cap for the propensity solver.
    bootstrap_replicates : int, default=0
        Number of bootstrap replicates to attach to the result.
    n_jobs : int or None, default=None
        Parallel jobs for bootstrap replicates (joblib convention).
    random_state : int or None, default=None
        Seed for bootstrap resampling.
    """

    method: str = "ipw"
    match_ratio: int = 1
    caliper: Optional[float] = None
    match_with_replacement: bool = False
    trim_quantiles: Optional[Tuple[float, float]] = None
    trim_policy: str = "clamp"
    positivity_epsilon: float = 1e-6
    max_clipped_fraction: float = 0.0
    positivity_action: str = "warn"
    extreme_weight_threshold: Optional[float] = None
    extreme_weight_factor: float = 10.0
    normalize_weights: bool = True
    separate_outcome_models: bool = False
    max_iter: int = 1000
    bootstrap_replicates: int = 0
    n_jobs: Optional[int] = None
    random_state: Optional[int] = None

    def __post_init__(self):
        if self.method not in METHODS:
            raise ValueError(
                f"method must be one of {METHODS}, got {self.method!r}"
            )
        if not isinstance(self.match_ratio, Integral) or self.match_ratio < 1:
            raise ValueError(
                f"match_ratio must be a positive integer, got {self.match_ratio!r}"
            )
        if self.caliper is not None and not self.caliper > 0:
            raise ValueError(f"caliper must be positive, got {self.caliper!r}")
        if self.trim_quantiles is not None:
            if len(self.trim_quantiles) != 2:
                raise ValueError("trim_quantiles must be a (low, high) pair")
            low, high = self.trim_quantiles
            if not 0.0 <= low < high <= 1.0:
                raise ValueError(
                    f"trim_quantiles must satisfy 0 <= low < high <= 1, "
                    f"got {self.trim_quantiles!r}"
                )
            object.__setattr__(self, "trim_quantiles", (float(low), float(high)))
        if self.trim_policy not in TRIM_POLICIES:
            raise ValueError(
                f"trim_policy must be one of {TRIM_POLICIES}, got {self.trim_policy!r}"
            )
        if not isinstance(self.positivity_epsilon, Real) or not (
            0.0 < self.positivity_epsilon < 0.5
        ):
            raise ValueError(
                f"positivity_epsilon must lie in (0, 0.5), "
                f"got {self.positivity_epsilon!r}"
            )
        if not 0.0 <= self.max_clipped_fraction <= 1.0:
            raise ValueError(
                f"max_clipped_fraction must lie in [0, 1], "
                f"got {self.max_clipped_fraction!r}"
            )
        if self.positivity_action not in POSITIVITY_ACTIONS:
            raise ValueError(
                f"positivity_action must be one of {POSITIVITY_ACTIONS}, "
                f"got {self.positivity_action!r}"
            )
        if (
            self.extreme_weight_threshold is not None
            and not self.extreme_weight_threshold > 0
        ):
            raise ValueError(
                f"extreme_weight_threshold must be positive, "
                f"got {self.extreme_weight_threshold!r}"
            )
        if not self.extreme_weight_factor > 0:
            raise ValueError(
                f"extreme_weight_factor must be positive, "
                f"got {self.extreme_weight_factor!r}"
            )
        if not isinstance(self.max_iter, Integral) or self.max_iter < 1:
            raise ValueError(f"max_iter must be a positive integer, got {self.max_iter!r}")
        if (
            not isinstance(self.bootstrap_replicates, Integral)
            or self.bootstrap_replicates < 0
        ):
            raise ValueError(
                f"bootstrap_replicates must be a non-negative integer, "
                f"got {self.bootstrap_replicates!r}"
            )

    def replace(self, **changes):
        """Return a copy with the given fields changed (and re-validated)."""
        return dataclasses.replace(self, **changes)
