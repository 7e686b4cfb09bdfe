#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Fixed quadratic penalties |D beta|^2 on the coefficients of a linear predictor.

Smoothing parameters are not selected here; the penalty strength is given.
"""

import numbers

import numpy as np
from sklearn.utils import check_scalar


def ridge(n):
    """Create a ridge penalty matrix, the identity.

    Examples
    --------
    >>> ridge(2)
    array([[1., 0.],
           [0., 1.]])
    """
    n = check_scalar(n, name="n", target_type=numbers.Integral, min_val=1, include_boundaries="left")
    return np.eye(n, dtype=float)


def second_order_finite_difference(n, periodic=False):
    """Create a second-order finite difference matrix.

    Penalizing the second differences of B-spline coefficients penalizes
    wiggliness, as in P-splines.

    Parameters
    ----------
    n : int
        Number of coefficients.
    periodic : bool, optional
        Whether the penalty is periodic (wraps around), which suits cyclic
        covariates such as the day of the year. The default is False.

    Returns
    -------
    np.ndarray
        A finite difference matrix.

    Examples
    --------
    >>> second_order_finite_difference(2, periodic=True)
    array([[0., 0.],
           [0., 0.]])
    >>> second_order_finite_difference(3, periodic=True)
    array([[-2.,  1.,  1.],
           [ 1., -2.,  1.],
           [ 1.,  1., -2.]])
    >>> second_order_finite_difference(5, periodic=False)
    array([[ 0.,  0.,  0.,  0.,  0.],
           [ 1., -2.,  1.,  0.,  0.],
           [ 0.,  1., -2.,  1.,  0.],
           [ 0.,  0.,  1., -2.,  1.],
           [ 0.,  0.,  0.,  0.,  0.]])
    """
    n = check_scalar(n, name="n", target_type=numbers.Integral, min_val=1, include_boundaries="left")

    if n in (1, 2):
        return np.zeros(shape=(n, n), dtype=float)

    # Set up tridiagonal
    D = (np.eye(n, k=1) + np.eye(n, k=-1) - 2 * np.eye(n)).astype(float)
    if periodic:
        D[0, -1] = 1
        D[-1, 0] = 1
    else:
        # Rows with a single neighbour are not second differences
        D[0, :2] = [0, 0]
        D[-1, -2:] = [0, 0]
    return D


def scaled_penalty(D, penalty, *, num_unpenalized=0):
    """Scale D by sqrt(penalty) and prepend zero columns for unpenalized coefficients.

    Since the penalty is |D beta|^2, scaling D by sqrt(penalty) scales the
    penalty linearly.

    Examples
    --------
    >>> scaled_penalty(ridge(2), penalty=4, num_unpenalized=1)
    array([[0., 2., 0.],
           [0., 0., 2.]])
    """
    penalty = check_scalar(penalty, name="penalty", target_type=numbers.Real, min_val=0, include_boundaries="left")
    D = np.asarray(D, dtype=float)
    if D.ndim != 2:
        raise ValueError(f"Penalty matrix must be 2-dimensional, got {D.ndim} dimension(s).")

    return np.hstack([np.zeros((D.shape[0], num_unpenalized)), np.sqrt(penalty) * D])


if __name__ == "__main__":
    import pytest

    pytest.main(args=[__file__, "--capture=sys", "--doctest-modules", "--maxfail=1"])
