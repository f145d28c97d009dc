"""Exceptions and warnings raised by sk-ate estimators."""


class CausalEstimationError(Exception):
    """Base class for all estimation failures."""


class ModelFitError(CausalEstimationError):
    """A propensity or outcome model could not be fitted.

    Raised when the treatment has no variation, when the design matrix is
    rank-deficient, or when an iterative solver hits its iteration cap.
    """


class InsufficientDataError(CausalEstimationError, ValueError):
    """The data is empty or lacks a treatment arm.

    Parameters
    ----------
    message : str
        Human readable description.
    n_treated : int, default=0
        Number of treated units found.
    n_control : int, default=0
        Number of control units found.
    """

    def __init__(self, message, n_treated=0, n_control=0):
        super().__init__(message)
        self.n_treated = n_treated
        self.n_control = n_control


class PositivityViolation(CausalEstimationError):
    """Too many propensity scores were clipped at the epsilon boundary.

    Parameters
    ----------
    message : str
        Human readable description.
    n_clipped : int
        Number of clipped scores.
    fraction : float
        Clipped share of all units.
    indices : ndarray
        Positions of the clipped units.
    """

    def __init__(self, message, n_clipped, fraction, indices):
        super().__init__(message)
        self.n_clipped = n_clipped
        self.fraction = fraction
        self.indices = indices


class PositivityWarning(UserWarning):
    """Propensity scores were clipped but estimation went ahead."""
