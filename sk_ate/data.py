"""Immutable container for observational data."""

from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np
import pandas as pd

from .exceptions import InsufficientDataError


def _readonly(array):
    array = np.array(array, copy=True)
    array.setflags(write=False)
    return array


@dataclass(frozen=True, eq=False)
class Dataset:
    """Ordered, read-only collection of units.

    Parameters
    ----------
    covariates : array-like of shape (n_samples, n_features)
        Numeric covariate matrix without missing values.
    treatment : array-like of shape (n_samples,)
        Binary treatment indicator (0 or 1).
    outcome : array-like of shape (n_samples,)
        Observed outcomes.
    covariate_names : sequence of str or None, default=None
        Column names, ``x0, x1, ...`` when omitted.
    index : array-like of shape (n_samples,) or None, default=None
        Unit labels, ``0 .. n_samples - 1`` when omitted.

    Raises
    ------
    ValueError
        If shapes disagree, the treatment is not binary, or values are not
        finite.
    InsufficientDataError
        If the data is empty or one treatment arm is missing.
    """

    covariates: np.ndarray
    treatment: np.ndarray
    outcome: np.ndarray
    covariate_names: Optional[Tuple[str, ...]] = None
    index: Optional[np.ndarray] = field(default=None)

    def __post_init__(self):
        X = np.asarray(self.covariates, dtype=float)
        if X.ndim == 1:
            X = X.reshape(-1, 1)
        if X.ndim != 2:
            raise ValueError(f"covariates must be 2-dimensional, got {X.ndim} dims.")
        treatment = np.asarray(self.treatment).ravel()
        y = np.asarray(self.outcome, dtype=float).ravel()

        n_samples = X.shape[0]
        if treatment.shape[0] != n_samples:
            raise ValueError(
                f"treatment has {treatment.shape[0]} samples, "
                f"but covariates has {n_samples} samples."
            )
        if y.shape[0] != n_samples:
            raise ValueError(
                f"outcome has {y.shape[0]} samples, "
                f"but covariates has {n_samples} samples."
            )
        if not set(np.unique(treatment)).issubset({0, 1}):
            raise ValueError(
                f"treatment must be binary (0 or 1), got values: {np.unique(treatment)}"
            )
        if not np.all(np.isfinite(X)):
            raise ValueError("covariates contain missing or infinite values.")
        if not np.all(np.isfinite(y)):
            raise ValueError("outcome contains missing or infinite values.")

        treatment = treatment.astype(int)
        n_treated = int(treatment.sum())
        n_control = n_samples - n_treated
        if n_treated == 0 or n_control == 0:
            raise InsufficientDataError(
                f"Dataset needs both treated and control units, "
                f"got {n_treated} treated and {n_control} control.",
                n_treated=n_treated,
                n_control=n_control,
            )

        names = self.covariate_names
        if names is None:
            names = tuple(f"x{j}" for j in range(X.shape[1]))
        else:
            names = tuple(str(name) for name in names)
            if len(names) != X.shape[1]:
                raise ValueError(
                    f"{len(names)} covariate names given for {X.shape[1]} columns."
                )

        index = self.index
        if index is None:
            index = np.arange(n_samples)
        elif len(index) != n_samples:
            raise ValueError(
                f"index has {len(index)} labels, but covariates has {n_samples} samples."
            )

        object.__setattr__(self, "covariates", _readonly(X))
        object.__setattr__(self, "treatment", _readonly(treatment))
        object.__setattr__(self, "outcome", _readonly(y))
        object.__setattr__(self, "covariate_names", names)
        object.__setattr__(self, "index", _readonly(index))

    @classmethod
    def from_frame(cls, frame, covariates, treatment, outcome):
        """Build a dataset from named columns of a DataFrame.

        Parameters
        ----------
        frame : pandas.DataFrame
            Source table.
        covariates : list of str
            Covariate column names.
        treatment : str
            Binary treatment column name.
        outcome : str
            Outcome column name.

        Returns
        -------
        dataset : Dataset
        """
        if not isinstance(frame, pd.DataFrame):
            raise TypeError("frame must be a pandas DataFrame")
        covariates = list(covariates)
        missing = [c for c in covariates + [treatment, outcome] if c not in frame.columns]
        if missing:
            raise KeyError(f"Columns not found in data: {missing}")
        return cls(
            covariates=frame[covariates].to_numpy(dtype=float),
            treatment=frame[treatment].to_numpy(),
            outcome=frame[outcome].to_numpy(dtype=float),
            covariate_names=covariates,
            index=frame.index.to_numpy(),
        )

    @property
    def n_units(self):
        return self.covariates.shape[0]

    @property
    def n_covariates(self):
        return self.covariates.shape[1]

    @property
    def n_treated(self):
        return int(self.treatment.sum())

    @property
    def n_control(self):
        return self.n_units - self.n_treated

    def __len__(self):
        return self.n_units

    def take(self, indices):
        """Return the units at ``indices`` (rows may repeat).

        Values and labels are carried over unchanged.
        """
        indices = np.asarray(indices, dtype=int)
        return Dataset(
            covariates=self.covariates[indices],
            treatment=self.treatment[indices],
            outcome=self.outcome[indices],
            covariate_names=self.covariate_names,
            index=self.index[indices],
        )

    def resample(self, rng):
        """Draw a bootstrap sample of the same size, with replacement.

        Parameters
        ----------
        rng : numpy.random.Generator
            Source of randomness.

        Returns
        -------
        dataset : Dataset
        """
        return self.take(rng.integers(0, self.n_units, size=self.n_units))

    def to_frame(self, treatment="treatment", outcome="outcome"):
        """Return the units as a DataFrame indexed by unit label."""
        frame = pd.DataFrame(
            self.covariates, columns=list(self.covariate_names), index=self.index
        )
        frame[treatment] = self.treatment
        frame[outcome] = self.outcome
        return frame
