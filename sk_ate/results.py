"""Result record returned by an estimation run."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import numpy as np

from .data import Dataset, _readonly
from .matching import MatchedPair


@dataclass(frozen=True, eq=False)
class ATEResult:
    """Point estimate of the average treatment effect plus diagnostics.

    Array fields are copied and made read-only on construction.

    Attributes
    ----------
    estimate : float
        Estimated ATE.
    method : str
        ``"matching"``, ``"ipw"`` or ``"dr"``.
    diagnostics : dict
        Method-specific diagnostics (clip counts, weight summary, balance).
    propensity_scores : ndarray of shape (n_samples,)
        Clipped propensity scores used by the estimate.
    weights : ndarray or None
        IPW weights (``"ipw"`` and ``"dr"``).
    matched_pairs : tuple of MatchedPair or None
        Pairing structure (``"matching"``).
    matched_dataset : Dataset or None
        Matched units with their original values, treated then controls
        per pair, repeats kept (``"matching"``). An OLS fit of outcome on
        treatment over it reproduces ``estimate``.
    replicates : ndarray or None
        Bootstrap ATE values, one per replicate, when requested.
    """

    estimate: float
    method: str
    diagnostics: Dict[str, Any] = field(default_factory=dict)
    propensity_scores: Optional[np.ndarray] = None
    weights: Optional[np.ndarray] = None
    matched_pairs: Optional[Tuple[MatchedPair, ...]] = None
    matched_dataset: Optional[Dataset] = None
    replicates: Optional[np.ndarray] = None

    def __post_init__(self):
        for name in ("propensity_scores", "weights", "replicates"):
            value = getattr(self, name)
            if value is not None:
                object.__setattr__(self, name, _readonly(value))

    def __float__(self):
        return float(self.estimate)

    def __repr__(self):
        extra = ""
        if self.replicates is not None:
            extra = f", replicates={len(self.replicates)}"
        return f"ATEResult(method={self.method!r}, estimate={self.estimate:.4f}{extra})"
