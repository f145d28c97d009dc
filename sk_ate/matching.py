"""Propensity score nearest-neighbour matching and balance diagnostics."""

import logging
from dataclasses import dataclass
from typing import Tuple

import numpy as np
from sklearn.neighbors import NearestNeighbors

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchedPair:
    """A treated unit and the control units matched to it."""

    treated: int
    controls: Tuple[int, ...]
    distances: Tuple[float, ...]


@dataclass(frozen=True, eq=False)
class MatchResult:
    """Outcome of a matching run.

    Attributes
    ----------
    pairs : tuple of MatchedPair
        One entry per matched treated unit, in treated order.
    n_treated : int
        Number of treated units offered for matching.
    unmatched_treated : ndarray of int
        Treated units left without a match.
    """

    pairs: Tuple[MatchedPair, ...]
    n_treated: int
    unmatched_treated: np.ndarray

    @property
    def n_matched(self):
        return len(self.pairs)

    @property
    def n_unmatched(self):
        return len(self.unmatched_treated)

    def matched_indices(self):
        """Row indices forming the matched dataset.

        Each pair contributes its treated unit followed by its controls, so
        repeated controls (matching with replacement) appear repeatedly.
        """
        rows = []
        for pair in self.pairs:
            rows.append(pair.treated)
            rows.extend(pair.controls)
        return np.asarray(rows, dtype=int)

    def match_weights(self, n_units):
        """Per-unit frequency weights of the matched dataset.

        Each unit is weighted by the number of times it appears in
        :meth:`matched_indices`; unmatched units get 0.
        """
        return np.bincount(self.matched_indices(), minlength=n_units).astype(float)


class NearestNeighborMatcher:
    """Greedy nearest-neighbour matching on the propensity score.

    Treated units are processed in the order given. Each one takes the
    ``ratio`` closest available controls by absolute score distance, ties
    going to the lowest control index.

    Parameters
    ----------
    ratio : int, default=1
        Number of controls per treated unit.
    caliper : float or None, default=None
        Maximum allowed distance. Controls further away are never matched.
    replace : bool, default=False
        Whether a control may serve more than one treated unit.

    Examples
    --------
    >>> import numpy as np
    >>> matcher = NearestNeighborMatcher(ratio=1)
    >>> result = matcher.match(np.array([0.3, 0.6, 0.31, 0.58]),
    ...                        np.array([1, 1, 0, 0]))
    >>> [(p.treated, p.controls) for p in result.pairs]
    [(0, (2,)), (1, (3,))]
    """

    def __init__(self, ratio=1, caliper=None, replace=False):
        if int(ratio) != ratio or ratio < 1:
            raise ValueError(f"ratio must be a positive integer, got {ratio!r}")
        if caliper is not None and not caliper > 0:
            raise ValueError(f"caliper must be positive, got {caliper!r}")
        self.ratio = int(ratio)
        self.caliper = caliper
        self.replace = replace

    def match(self, propensity_scores, treatment):
        """Match treated units to controls.

        Parameters
        ----------
        propensity_scores : array-like of shape (n_samples,)
            Propensity score per unit.
        treatment : array-like of shape (n_samples,)
            Binary treatment indicator (0 or 1).

        Returns
        -------
        result : MatchResult
        """
        scores = np.asarray(propensity_scores, dtype=float).ravel()
        treatment = np.asarray(treatment).ravel()
        if scores.shape[0] != treatment.shape[0]:
            raise ValueError(
                f"propensity_scores has {scores.shape[0]} samples, "
                f"but treatment has {treatment.shape[0]} samples."
            )
        treated_indices = np.flatnonzero(treatment == 1)
        control_indices = np.flatnonzero(treatment == 0)

        if self.replace:
            pairs = self._match_with_replacement(scores, treated_indices, control_indices)
        else:
            pairs = self._match_without_replacement(
                scores, treated_indices, control_indices
            )

        matched = {pair.treated for pair in pairs}
        unmatched = np.array(
            [t for t in treated_indices if t not in matched], dtype=int
        )
        if len(unmatched):
            logger.warning(
                "%d of %d treated units left unmatched", len(unmatched), len(treated_indices)
            )
        return MatchResult(
            pairs=tuple(pairs),
            n_treated=len(treated_indices),
            unmatched_treated=unmatched,
        )

    def _match_without_replacement(self, scores, treated_indices, control_indices):
        available = control_indices.copy()
        pairs = []
        for treated_idx in treated_indices:
            if len(available) == 0:
                break
            distances = np.abs(scores[available] - scores[treated_idx])
            # available stays sorted, so a stable sort breaks ties by index
            order = np.argsort(distances, kind="stable")
            if self.caliper is not None:
                order = order[distances[order] <= self.caliper]
            chosen = order[: self.ratio]
            if len(chosen) == 0:
                continue
            pairs.append(
                MatchedPair(
                    treated=int(treated_idx),
                    controls=tuple(int(c) for c in available[chosen]),
                    distances=tuple(float(d) for d in distances[chosen]),
                )
            )
            available = np.delete(available, chosen)
        return pairs

    def _match_with_replacement(self, scores, treated_indices, control_indices):
        if len(control_indices) == 0 or len(treated_indices) == 0:
            return []
        k = min(self.ratio, len(control_indices))
        nn = NearestNeighbors(n_neighbors=k, metric="euclidean")
        nn.fit(scores[control_indices].reshape(-1, 1))
        distances, indices = nn.kneighbors(scores[treated_indices].reshape(-1, 1))

        pairs = []
        for treated_idx, row_distances, row_indices in zip(
            treated_indices, distances, indices
        ):
            keep = np.ones(len(row_indices), dtype=bool)
            if self.caliper is not None:
                keep = row_distances <= self.caliper
            if not keep.any():
                continue
            pairs.append(
                MatchedPair(
                    treated=int(treated_idx),
                    controls=tuple(int(c) for c in control_indices[row_indices[keep]]),
                    distances=tuple(float(d) for d in row_distances[keep]),
                )
            )
        return pairs


def standardized_mean_difference(covariate, treatment, weights=None):
    """Standardised mean difference of one covariate between arms.

    ``(mean_treated - mean_control) / sqrt((var_treated + var_control) / 2)``,
    defined as 0 when the pooled standard deviation is 0.

    Parameters
    ----------
    covariate : array-like of shape (n_samples,)
        Covariate values.
    treatment : array-like of shape (n_samples,)
        Binary treatment indicator.
    weights : array-like of shape (n_samples,) or None, default=None
        Optional unit weights (IPW or match weights).

    Returns
    -------
    smd : float
    """
    covariate = np.asarray(covariate, dtype=float).ravel()
    treatment = np.asarray(treatment).ravel()
    treated = treatment == 1
    control = treatment == 0

    if weights is None:
        weights = np.ones_like(covariate)
    weights = np.asarray(weights, dtype=float).ravel()
    treated = treated & (weights > 0)
    control = control & (weights > 0)
    if not treated.any() or not control.any():
        return 0.0

    treated_mean = np.average(covariate[treated], weights=weights[treated])
    control_mean = np.average(covariate[control], weights=weights[control])
    treated_var = np.average((covariate[treated] - treated_mean) ** 2, weights=weights[treated])
    control_var = np.average((covariate[control] - control_mean) ** 2, weights=weights[control])

    pooled_std = np.sqrt((treated_var + control_var) / 2)
    if pooled_std > 0:
        return float((treated_mean - control_mean) / pooled_std)
    return 0.0


def balance_table(X, treatment, names=None, weights=None):
    """Standardised mean differences for every covariate column."""
    X = np.asarray(X, dtype=float)
    if X.ndim == 1:
        X = X.reshape(-1, 1)
    if names is None:
        names = [f"x{j}" for j in range(X.shape[1])]
    return {
        name: standardized_mean_difference(X[:, j], treatment, weights)
        for j, name in enumerate(names)
    }
