#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Assemble the matrix of expert log-densities used by the stacking family.

The experts should be fitted on data that is not used for stacking, so that
the log-densities are out-of-sample.
"""

from collections.abc import Sequence

import numpy as np
from sklearn.base import clone
from sklearn.utils import check_consistent_length, column_or_1d

from additive_stacking.distributions import DISTRIBUTIONS, Distribution
from additive_stacking.exceptions import InvalidInputError
from additive_stacking.utils import check_log_densities


def _check_distributions(distributions, num_experts):
    if isinstance(distributions, (str, Distribution)):
        distributions = [distributions] * num_experts

    if not isinstance(distributions, Sequence) or len(distributions) != num_experts:
        raise InvalidInputError(f"Expected one distribution or {num_experts} distributions, one per expert.")

    checked = []
    for distribution in distributions:
        if isinstance(distribution, str):
            if distribution not in DISTRIBUTIONS:
                raise InvalidInputError(f"Unknown distribution {distribution!r}. Options: {list(DISTRIBUTIONS)}")
            distribution = DISTRIBUTIONS[distribution]()
        elif not isinstance(distribution, Distribution):
            raise InvalidInputError(f"Expected a Distribution or a string, got {distribution!r}.")
        checked.append(clone(distribution))

    return checked


def log_density_matrix(y, predictions, distributions="normal", *, edof=0, sample_weight=None):
    """Compute the log-density of every observation under every expert.

    Parameters
    ----------
    y : array-like of shape (n,)
        Observed outcomes.
    predictions : array-like of shape (n, K), or a list of K arrays of shape (n,)
        Expected value of each observation under each expert.
    distributions : str, Distribution, or list of those, optional
        The predictive distribution of the experts. A single value is used
        for every expert. Distributions with a free scale set to None get
        the scale estimated from the residuals of their own expert. The
        arguments are not modified. The default is "normal".
    edof : float or list of float, optional
        Effective degrees of freedom used by each expert, used when
        estimating scales. The default is 0.
    sample_weight : array-like of shape (n,), optional
        Weights used when estimating scales. The default is None.

    Returns
    -------
    np.ndarray
        Read-only matrix L of shape (n, K).

    Examples
    --------
    >>> y = np.array([0.0, 1.0])
    >>> predictions = np.array([[0.0, 1.0], [1.0, 1.0]])
    >>> from additive_stacking.distributions import Normal
    >>> log_density_matrix(y, predictions, Normal(scale=1.0)).round(4)
    array([[-0.9189, -1.4189],
           [-0.9189, -0.9189]])
    """
    y = column_or_1d(np.asarray(y, dtype=float))

    if isinstance(predictions, (list, tuple)):
        predictions = np.column_stack([column_or_1d(np.asarray(p, dtype=float)) for p in predictions])
    predictions = np.asarray(predictions, dtype=float)

    if predictions.ndim != 2:
        raise InvalidInputError(f"Predictions must have shape (n, K), got {predictions.shape}.")
    check_consistent_length(y, predictions, sample_weight)

    num_experts = predictions.shape[1]
    distributions = _check_distributions(distributions, num_experts)
    edof = np.broadcast_to(np.asarray(edof, dtype=float), (num_experts,))

    columns = []
    for k, distribution in enumerate(distributions):
        mu = predictions[:, k]
        if distribution.has_free_scale and distribution.scale is None:
            distribution = distribution.estimate_scale(y, mu, edof=float(edof[k]), sample_weight=sample_weight)
        columns.append(distribution.log_pdf(y, mu))

    return check_log_densities(np.column_stack(columns), num_samples=len(y))


if __name__ == "__main__":
    import pytest

    pytest.main(args=[__file__, "-v", "--capture=sys", "--doctest-modules"])
