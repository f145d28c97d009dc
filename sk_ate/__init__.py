"""sk-ate: Propensity score ATE estimation with scikit-learn compatible APIs."""

import logging

from .base import BaseCausalEstimator
from .config import EstimationConfig
from .data import Dataset
from .estimators import DoublyRobust, InversePropensityWeighting, PropensityScoreMatching
from .exceptions import (
    CausalEstimationError,
    InsufficientDataError,
    ModelFitError,
    PositivityViolation,
    PositivityWarning,
)
from .matching import (
    MatchedPair,
    MatchResult,
    NearestNeighborMatcher,
    standardized_mean_difference,
)
from .models import OutcomeModel, PropensityModel
from .pipeline import ATEEstimator, bootstrap, estimate
from .results import ATEResult
from .weighting import compute_weights, trim, weight_summary

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.2.0"

__all__ = [
    "ATEEstimator",
    "ATEResult",
    "BaseCausalEstimator",
    "CausalEstimationError",
    "Dataset",
    "DoublyRobust",
    "EstimationConfig",
    "InsufficientDataError",
    "InversePropensityWeighting",
    "MatchResult",
    "MatchedPair",
    "ModelFitError",
    "NearestNeighborMatcher",
    "OutcomeModel",
    "PositivityViolation",
    "PositivityWarning",
    "PropensityModel",
    "PropensityScoreMatching",
    "bootstrap",
    "compute_weights",
    "estimate",
    "standardized_mean_difference",
    "trim",
    "weight_summary",
]
