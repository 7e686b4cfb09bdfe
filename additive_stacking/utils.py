#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Input checks and numerically stable helpers shared by the family, the link
and the optimizers.
"""

from numbers import Real

import numpy as np
from scipy import special
from sklearn.utils import check_consistent_length, check_scalar

from additive_stacking.exceptions import InvalidInputError

MACHINE_EPSILON = np.finfo(float).eps
EPSILON = np.sqrt(MACHINE_EPSILON)


def check_log_densities(log_densities, *, num_samples=None):
    """Validate an expert log-density matrix and return a read-only copy.

    Entries may be finite or -inf (an expert assigning zero density), but
    never NaN or +inf.

    Examples
    --------
    >>> L = check_log_densities([[0.0, -np.inf], [-1.0, -2.0]])
    >>> L.shape, L.flags.writeable
    ((2, 2), False)
    >>> check_log_densities([[0.0], [1.0]])
    Traceback (most recent call last):
      ...
    additive_stacking.exceptions.InvalidInputError: At least 2 experts are needed, but `L` has 1 column(s).
    """
    try:
        L = np.array(log_densities, dtype=float)
    except (TypeError, ValueError) as error:
        raise InvalidInputError(f"Log-densities must be a numeric matrix: {error}") from error

    if L.ndim != 2:
        raise InvalidInputError(f"Log-densities must be a 2-dimensional (n, K) matrix, but found {L.ndim} dimension(s).")

    num_rows, num_experts = L.shape
    if num_experts < 2:
        raise InvalidInputError(f"At least 2 experts are needed, but `L` has {num_experts} column(s).")

    if num_samples is not None and num_rows != num_samples:
        raise InvalidInputError(f"`L` has {num_rows} rows, but there are {num_samples} observations.")

    if np.any(np.isnan(L)):
        rows = np.flatnonzero(np.isnan(L).any(axis=1))
        raise InvalidInputError(f"`L` contains NaN in row(s) {rows.tolist()}.")

    if np.any(L == np.inf):
        rows = np.flatnonzero((L == np.inf).any(axis=1))
        raise InvalidInputError(f"`L` contains +inf in row(s) {rows.tolist()}.")

    L.flags.writeable = False
    return L


def check_linear_predictors(eta, *, num_linear_predictors, num_samples=None):
    """Validate a matrix of linear predictors with one column per free expert.

    A 1-dimensional `eta` is accepted when there is a single linear predictor.

    Examples
    --------
    >>> check_linear_predictors(np.zeros(3), num_linear_predictors=1)
    array([[0.],
           [0.],
           [0.]])
    >>> check_linear_predictors(np.zeros((3, 2)), num_linear_predictors=1)
    Traceback (most recent call last):
      ...
    additive_stacking.exceptions.InvalidInputError: `eta` must have 1 column(s), one per non-reference expert, but found 2.
    """
    eta = np.asarray(eta, dtype=float)
    if eta.ndim == 1 and num_linear_predictors == 1:
        eta = eta.reshape(-1, 1)

    if eta.ndim != 2:
        raise InvalidInputError(f"`eta` must be a 2-dimensional matrix, but found {eta.ndim} dimension(s).")

    if eta.shape[1] != num_linear_predictors:
        msg = f"`eta` must have {num_linear_predictors} column(s), one per non-reference expert, "
        msg += f"but found {eta.shape[1]}."
        raise InvalidInputError(msg)

    if num_samples is not None and eta.shape[0] != num_samples:
        raise InvalidInputError(f"`eta` has {eta.shape[0]} rows, but `L` has {num_samples} rows.")

    if not np.all(np.isfinite(eta)):
        rows = np.flatnonzero(~np.isfinite(eta).all(axis=1))
        raise InvalidInputError(f"`eta` must be finite, but row(s) {rows.tolist()} are not.")

    return eta


def log_mixture(log_weights, log_densities):
    """Compute log(sum_k exp(log_weights + log_densities)) row by row.

    Returns the log-likelihood and a boolean mask of rows where it is not
    finite. Rows where every expert has zero density give -inf.

    Examples
    --------
    >>> log_weights = np.log([[0.5, 0.5], [0.5, 0.5]])
    >>> loglik, degenerate = log_mixture(log_weights, np.array([[0., 0.], [-np.inf, -np.inf]]))
    >>> loglik
    array([  0., -inf])
    >>> degenerate
    array([False,  True])
    """
    with np.errstate(divide="ignore", invalid="ignore"):
        loglik = special.logsumexp(log_weights + log_densities, axis=1)

    degenerate = ~np.isfinite(loglik)
    return loglik, degenerate


def mixture_log_density(log_densities, weights):
    """Log-density of a mixture with the given row-wise weights.

    This is the direct formula log(sum_k w_k * exp(L_k)), evaluated stably.

    Examples
    --------
    >>> L = np.log([[0.2, 0.4]])
    >>> np.exp(mixture_log_density(L, [[0.5, 0.5]])).round(6)
    array([0.3])
    """
    L = np.asarray(log_densities, dtype=float)
    weights = np.asarray(weights, dtype=float)
    if L.shape != weights.shape:
        raise InvalidInputError(f"Shape of weights {weights.shape} does not match log-densities {L.shape}.")

    with np.errstate(divide="ignore"):
        log_weights = np.log(weights)

    loglik, _ = log_mixture(log_weights, L)
    return loglik


def phi_pearson(y, mu, distribution, edof, sample_weight=None):
    """Estimate the scale parameter with the Pearson statistic.

    See equation (6.2) on page 251 in Wood, 2nd ed.
    """
    check_consistent_length(y, mu)
    edof = check_scalar(edof, "edof", target_type=Real, min_val=0, include_boundaries="left")
    if sample_weight is None:
        sample_weight = np.ones_like(mu, dtype=float)

    X_sq = np.sum((y - mu) ** 2 * sample_weight / distribution.V(mu))
    n = np.sum(sample_weight)
    if n <= edof:
        raise InvalidInputError(f"Cannot estimate scale with {n} observations and {edof} degrees of freedom.")
    return X_sq / (n - edof)


if __name__ == "__main__":
    import pytest

    pytest.main(args=[__file__, "--capture=sys", "--doctest-modules", "--maxfail=1"])
