#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Link functions mapping mixing weights to the unbounded linear space.
"""

from abc import ABC, abstractmethod
from numbers import Integral

import numpy as np
from scipy import special
from sklearn.base import BaseEstimator

from additive_stacking.exceptions import InvalidInputError
from additive_stacking.utils import check_linear_predictors


class Link(ABC):
    @abstractmethod
    def link(self, weights):
        # The link function
        pass

    @abstractmethod
    def inverse_link(self, linear_prediction):
        # The inverse link function
        pass

    @abstractmethod
    def derivative(self, linear_prediction):
        # Jacobian of the inverse link function
        pass

    def __call__(self, *args, **kwargs):
        return self.link(*args, **kwargs)

    def __eq__(self, other):
        if type(self) != type(other):
            return False
        return self.get_params() == other.get_params()


class MultinomialLogit(Link, BaseEstimator):
    r"""Multinomial logit link with a reference category.

    With :math:`K` experts and reference expert :math:`r`, the linear predictors
    :math:`\eta_1, \dots, \eta_{K-1}` belong to the remaining experts in their
    original order, and :math:`\eta_r = 0` is implied. The weights are

    .. math::

       w_k = \frac{\exp(\eta_k)}{\sum_j \exp(\eta_j)}

    Parameters
    ----------
    num_experts : int
        The number of experts K. Must be at least 2.
    reference : int, optional
        Zero-based index of the reference expert. Negative values count from
        the end. The default is -1, the last expert.

    Examples
    --------
    >>> link = MultinomialLogit(num_experts=3)
    >>> link.inverse_link(np.array([[0., 0.], [np.log(2), 0.]]))
    array([[0.33333333, 0.33333333, 0.33333333],
           [0.5       , 0.25      , 0.25      ]])
    >>> link.link(np.array([[0.5, 0.25, 0.25]]))
    array([[0.69314718, 0.        ]])
    """

    name = "multinomial_logit"  #: Name of the link function

    def __init__(self, num_experts, reference=-1):
        self.num_experts = num_experts
        self.reference = reference

    @property
    def reference_index(self):
        """The non-negative index of the reference expert."""
        if isinstance(self.num_experts, bool) or not isinstance(self.num_experts, Integral) or self.num_experts < 2:
            raise InvalidInputError(f"At least 2 experts are needed, but got `num_experts={self.num_experts}`.")
        if isinstance(self.reference, bool) or not isinstance(self.reference, Integral):
            raise InvalidInputError(f"The reference expert must be an integer, got {self.reference!r}.")
        if not -self.num_experts <= self.reference < self.num_experts:
            msg = f"The reference expert must be in [{-self.num_experts}, {self.num_experts - 1}] "
            msg += f"for {self.num_experts} experts, but got {self.reference}."
            raise InvalidInputError(msg)
        return int(self.reference) % self.num_experts

    @property
    def free_experts(self):
        """Indices of the experts that carry a linear predictor, in column order.

        Examples
        --------
        >>> MultinomialLogit(num_experts=4, reference=1).free_experts
        array([0, 2, 3])
        """
        return np.delete(np.arange(self.num_experts), self.reference_index)

    @property
    def num_linear_predictors(self):
        return self.num_experts - 1

    def _full_predictors(self, linear_prediction):
        """Insert the zero column of the reference expert."""
        eta = check_linear_predictors(linear_prediction, num_linear_predictors=self.num_linear_predictors)
        return np.insert(eta, self.reference_index, 0.0, axis=1)

    def link(self, weights):
        r"""Map from the mixing weights :math:`w` to the linear predictors.

        Entries of `weights` must be strictly positive.

        Examples
        --------
        >>> weights = np.array([[0.2, 0.3, 0.5]])
        >>> MultinomialLogit(num_experts=3, reference=0).link(weights)
        array([[0.40546511, 0.91629073]])
        """
        weights = np.asarray(weights, dtype=float)
        if weights.ndim != 2 or weights.shape[1] != self.num_experts:
            msg = f"Weights must be a 2-dimensional matrix with {self.num_experts} columns, got shape {weights.shape}."
            raise InvalidInputError(msg)
        if np.any(weights <= 0):
            raise InvalidInputError("Weights must be strictly positive to be mapped to linear predictors.")

        log_weights = np.log(weights)
        eta = log_weights - log_weights[:, [self.reference_index]]
        return eta[:, self.free_experts]

    def log_inverse_link(self, linear_prediction):
        r"""Map from the linear predictors to :math:`\log w`, using log-sum-exp."""
        eta = self._full_predictors(linear_prediction)
        return special.log_softmax(eta, axis=1)

    def inverse_link(self, linear_prediction):
        r"""Map from the linear predictors to the mixing weights :math:`w`."""
        eta = self._full_predictors(linear_prediction)
        return special.softmax(eta, axis=1)

    def derivative(self, linear_prediction):
        r"""Jacobian :math:`\partial w_k / \partial \eta_j` for every row.

        Returns an array of shape (n, K, K-1), where the last axis runs over
        the free experts. Row i equals :math:`\operatorname{diag}(w_i) - w_i w_i^T`
        with the reference column removed.
        """
        weights = self.inverse_link(linear_prediction)
        jacobian = -weights[:, :, None] * weights[:, None, :]
        diagonal = np.arange(self.num_experts)
        jacobian[:, diagonal, diagonal] += weights
        return jacobian[:, :, self.free_experts]

    def reparametrize(self, linear_prediction, reference):
        """Express linear predictors relative to another reference expert.

        The weights are unchanged, only the parametrization moves.

        Examples
        --------
        >>> link = MultinomialLogit(num_experts=3, reference=-1)
        >>> eta = np.array([[1.0, 2.0]])
        >>> link.reparametrize(eta, reference=0)
        array([[ 1., -1.]])
        >>> other = MultinomialLogit(num_experts=3, reference=0)
        >>> np.allclose(link.inverse_link(eta), other.inverse_link(link.reparametrize(eta, 0)))
        True
        """
        target = MultinomialLogit(num_experts=self.num_experts, reference=reference)
        eta = self._full_predictors(linear_prediction)
        eta = eta - eta[:, [target.reference_index]]
        return eta[:, target.free_experts]


if __name__ == "__main__":
    import pytest

    pytest.main(args=[__file__, "--doctest-modules", "-v", "--capture=sys", "-k link"])
