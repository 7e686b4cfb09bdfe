#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Probability families consumed by penalized-likelihood fitters.

A family turns linear predictors into a log-likelihood, together with the
derivatives a Newton-type optimizer needs. The stacking family mixes K
experts whose log-densities are fixed in advance:

    ll_i = log( sum_k w_ik * exp(L_ik) ),   w_i = softmax(eta_i, 0)

References
----------
- Capezza, Palumbo, Goude, Wood, Fasiolo (2021).
  Additive stacking for disaggregate electricity demand forecasting.
  Annals of Applied Statistics. https://arxiv.org/abs/2005.10092
- Wood, Pya, Säfken (2016). Smoothing parameter and model selection for
  general smooth models.
"""

import warnings
from abc import ABC, abstractmethod

import numpy as np
from sklearn.utils import Bunch, check_consistent_length

from additive_stacking.exceptions import InvalidInputError, NumericDegeneracyWarning
from additive_stacking.links import MultinomialLogit
from additive_stacking.utils import check_linear_predictors, check_log_densities, log_mixture


class Family(ABC):
    """The contract between a family and a penalized-likelihood fitter."""

    @abstractmethod
    def num_linear_predictors(self):
        pass

    @abstractmethod
    def evaluate(self, eta):
        pass

    @abstractmethod
    def initialize(self, y=None, prior_weights=None):
        pass

    @abstractmethod
    def predict_weights(self, eta):
        pass


class StackingFamily(Family):
    """Mixture of experts with multinomial-logit mixing weights.

    Parameters
    ----------
    log_densities : array-like of shape (n, K)
        Log-density of each observation under each of the K experts. Entries
        may be -inf (zero density) but not NaN or +inf. A read-only copy is
        stored.
    reference_index : int, optional
        Zero-based index of the reference expert, whose linear predictor is
        fixed at zero. Negative values count from the end. The default is -1,
        the last expert.

    Examples
    --------
    >>> L = np.log([[0.5, 0.5], [0.9, 0.1]])
    >>> family = StackingFamily(L)
    >>> family.num_linear_predictors()
    1
    >>> result = family.evaluate(family.initialize())
    >>> result.loglik
    array([-0.69314718, -0.69314718])
    >>> np.allclose(result.gradient, [[0.0], [0.4]])
    True
    >>> family.predict_weights(np.array([[np.log(3)]]))
    array([[0.75, 0.25]])
    """

    name = "stacking"

    def __init__(self, log_densities, reference_index=-1):
        self.log_densities = check_log_densities(log_densities)
        self.reference_index = reference_index

        num_experts = self.log_densities.shape[1]
        self.link = MultinomialLogit(num_experts=num_experts, reference=reference_index)
        self._reference = self.link.reference_index  # Raises on a bad reference

    def __repr__(self):
        num_samples, num_experts = self.log_densities.shape
        return f"{type(self).__name__}(n={num_samples}, K={num_experts}, reference_index={self._reference})"

    @property
    def num_samples(self):
        return self.log_densities.shape[0]

    @property
    def num_experts(self):
        return self.log_densities.shape[1]

    def num_linear_predictors(self):
        """Number of linear predictors, one per non-reference expert."""
        return self.num_experts - 1

    def check_num_samples(self, num_samples):
        """Raise if the family was built for a different number of observations."""
        if num_samples != self.num_samples:
            msg = f"Log-densities have {self.num_samples} rows, but {num_samples} observations were given."
            raise InvalidInputError(msg)

    def _check_eta(self, eta):
        return check_linear_predictors(
            eta,
            num_linear_predictors=self.num_linear_predictors(),
            num_samples=self.num_samples,
        )

    def initialize(self, y=None, prior_weights=None):
        """Initial linear predictors: zeros, i.e. equal weight on every expert.

        The outcome `y` is already encoded in the log-densities and is unused.
        """
        if prior_weights is not None:
            check_consistent_length(self.log_densities, prior_weights)
        return np.zeros((self.num_samples, self.num_linear_predictors()), dtype=float)

    def predict_weights(self, eta):
        """Mixing weights of shape (n, K). Works for any number of rows."""
        return self.link.inverse_link(eta)

    def degenerate_rows(self):
        """Rows where every expert has zero density. These are degenerate for any `eta`."""
        return np.all(self.log_densities == -np.inf, axis=1)

    def _log_weights_and_loglik(self, eta):
        log_weights = self.link.log_inverse_link(eta)
        loglik, degenerate = log_mixture(log_weights, self.log_densities)
        return log_weights, loglik, degenerate

    def loglik(self, eta):
        """Observation-level log-likelihood, shape (n,)."""
        _, loglik, _ = self._log_weights_and_loglik(self._check_eta(eta))
        return loglik

    def deviance(self, eta, sample_weight=None):
        """Observation-level deviance -2 * ll_i, optionally multiplied by weights."""
        deviance = -2 * self.loglik(eta)
        if sample_weight is None:
            return deviance

        check_consistent_length(deviance, sample_weight)
        return deviance * np.asarray(sample_weight, dtype=float)

    def responsibilities(self, eta):
        """Posterior probability that expert k generated observation i, shape (n, K).

        Degenerate rows get the prior weights.
        """
        eta = self._check_eta(eta)
        log_weights, loglik, degenerate = self._log_weights_and_loglik(eta)
        return self._responsibilities(log_weights, loglik, degenerate)

    def _responsibilities(self, log_weights, loglik, degenerate):
        # p_ik = w_ik * exp(L_ik - ll_i), computed in log space
        with np.errstate(invalid="ignore"):
            log_p = log_weights + self.log_densities - loglik[:, None]
        log_p[degenerate] = log_weights[degenerate]
        return np.exp(log_p)

    def log_density(self, eta, log_densities=None):
        """Mixture log-density for (possibly new) expert log-densities.

        Parameters
        ----------
        eta : np.ndarray of shape (m, K-1)
            Linear predictors.
        log_densities : array-like of shape (m, K), optional
            Log-densities of new observations under the experts. The default
            is None, which uses the log-densities of the family.

        Returns
        -------
        np.ndarray
            Array of shape (m,).

        Examples
        --------
        >>> family = StackingFamily(np.log([[0.5, 0.5]]))
        >>> np.exp(family.log_density(np.zeros((2, 1)), np.log([[0.2, 0.4], [1.0, 1.0]])))
        array([0.3, 1. ])
        """
        if log_densities is None:
            return self.loglik(eta)

        L = check_log_densities(log_densities)
        if L.shape[1] != self.num_experts:
            raise InvalidInputError(f"Expected log-densities for {self.num_experts} experts, got {L.shape[1]}.")

        eta = check_linear_predictors(eta, num_linear_predictors=self.num_linear_predictors(), num_samples=len(L))
        loglik, _ = log_mixture(self.link.log_inverse_link(eta), L)
        return loglik

    def evaluate(self, eta, packed=False, warn_degenerate=True):
        """Log-likelihood, gradient and hessian with respect to the linear predictors.

        Parameters
        ----------
        eta : np.ndarray of shape (n, K-1)
            Linear predictors, one column per non-reference expert.
        packed : bool, optional
            If True, return the upper triangle of each row's hessian in
            row-major order, with shape (n, (K-1)K/2). The default is False,
            which returns the full (n, K-1, K-1) tensor.
        warn_degenerate : bool, optional
            Whether to warn about rows with a non-finite log-likelihood.
            The default is True.

        Returns
        -------
        Bunch
            With keys:

            - loglik: the log-likelihood of each observation, shape (n,).
            - gradient: derivative of the log-likelihood with respect to
              `eta`, shape (n, K-1). Equals p - w on the free experts, where
              p are the responsibilities and w the weights.
            - hessian: the observed information, i.e. the negative second
              derivative of the log-likelihood with respect to `eta`:
              -(diag(p) - p p^T - (diag(w) - w w^T)) on the free experts.
            - degenerate: boolean mask of rows with a non-finite
              log-likelihood. Their gradient and hessian are zero.

        Examples
        --------
        >>> family = StackingFamily(np.log([[0.5, 0.5]]))
        >>> result = family.evaluate(np.zeros((1, 1)))
        >>> result.loglik
        array([-0.69314718])
        >>> np.allclose(result.gradient, 0.0), result.hessian.shape
        (True, (1, 1, 1))
        """
        eta = self._check_eta(eta)
        log_weights, loglik, degenerate = self._log_weights_and_loglik(eta)

        weights = np.exp(log_weights)
        responsibilities = self._responsibilities(log_weights, loglik, degenerate)

        free = self.link.free_experts
        p, w = responsibilities[:, free], weights[:, free]

        # Score of a softmax mixture
        gradient = p - w

        # Both p and w are softmax functions of eta, so the second derivative
        # is the difference of two softmax Jacobians, negated to give the information
        hessian = p[:, :, None] * p[:, None, :] - w[:, :, None] * w[:, None, :]
        diagonal = np.arange(len(free))
        hessian[:, diagonal, diagonal] += w - p

        gradient[degenerate] = 0.0
        hessian[degenerate] = 0.0

        if warn_degenerate and np.any(degenerate):
            rows = np.flatnonzero(degenerate)
            msg = f"Non-finite log-likelihood in {len(rows)} row(s): {rows.tolist()}. "
            msg += "Every expert assigns zero density to these observations."
            warnings.warn(msg, NumericDegeneracyWarning)

        if packed:
            rows, cols = np.triu_indices(len(free))
            hessian = hessian[:, rows, cols]

        return Bunch(loglik=loglik, gradient=gradient, hessian=hessian, degenerate=degenerate)

    def reparametrize(self, eta, reference_index):
        """Linear predictors giving the same weights under another reference expert."""
        return self.link.reparametrize(eta, reference=reference_index)


def make_stacking_family(log_densities, reference_index=-1):
    """Create a stacking family from a matrix of expert log-densities.

    Parameters
    ----------
    log_densities : array-like of shape (n, K)
        Log-densities of n observations under K >= 2 experts.
    reference_index : int, optional
        Zero-based index of the reference expert. The default is -1, the
        last expert.

    Returns
    -------
    StackingFamily

    Examples
    --------
    >>> make_stacking_family([[0.0, -1.0, -2.0]], reference_index=0)
    StackingFamily(n=1, K=3, reference_index=0)
    >>> make_stacking_family([[0.0, np.nan]])
    Traceback (most recent call last):
      ...
    additive_stacking.exceptions.InvalidInputError: `L` contains NaN in row(s) [0].
    """
    return StackingFamily(log_densities, reference_index=reference_index)


if __name__ == "__main__":
    import pytest

    pytest.main(args=[__file__, "--doctest-modules", "-v", "--capture=sys"])
