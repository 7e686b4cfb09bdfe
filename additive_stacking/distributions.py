#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Predictive distributions of the experts.

An expert is a fitted model that predicts the expected value mu of each
observation. Together with an assumed distribution this gives the
log-density of the observed outcome, which is what the stacking family mixes.
"""

from abc import ABC, abstractmethod
from numbers import Integral, Real

import numpy as np
import scipy as sp
from sklearn.base import BaseEstimator, clone
from sklearn.utils._param_validation import Interval

from additive_stacking.exceptions import InvalidInputError
from additive_stacking.utils import EPSILON, phi_pearson


class Distribution(ABC):
    # Whether the scale is a free parameter that can be estimated from residuals
    has_free_scale = False

    def variance(self, mu):
        """Var(Y) = V(mu) * scale"""
        return self.V(mu) * self.scale

    @abstractmethod
    def V(self, mu):
        pass

    @abstractmethod
    def to_scipy(self, mu):
        pass

    def sample(self, mu, size=None, random_state=None):
        return self.to_scipy(mu).rvs(size=size, random_state=random_state)

    def log_pdf(self, y, mu):
        """Log-density (or log-mass, for discrete distributions) of y given mu."""
        distribution = self.to_scipy(mu)
        if isinstance(distribution.dist, sp.stats.rv_discrete):
            return distribution.logpmf(y)
        return distribution.logpdf(y)

    def estimate_scale(self, y, mu, edof=0, sample_weight=None):
        """Return a copy with the scale estimated from the residuals y - mu.

        Distributions without a free scale are returned unchanged (as a copy).

        Examples
        --------
        >>> y = np.array([1.0, 2.0, 3.0, 4.0])
        >>> Normal().estimate_scale(y, mu=np.full(4, 2.5))
        Normal(scale=1.25)
        """
        estimated = clone(self)
        if self.has_free_scale:
            y, mu = np.asarray(y, dtype=float), np.asarray(mu, dtype=float)
            scale = float(phi_pearson(y, mu, self, edof, sample_weight=sample_weight))
            if not (np.isfinite(scale) and scale > 0):
                msg = f"Estimated scale is {scale}, but it must be positive and finite. "
                msg += "The expert may reproduce its observations exactly."
                raise InvalidInputError(msg)
            estimated.scale = scale
        return estimated

    def __eq__(self, other):
        if type(self) != type(other):
            return False
        return self.get_params() == other.get_params()


class Normal(Distribution, BaseEstimator):
    """Normal distribution with variance `scale`.

    Examples
    --------
    >>> normal = Normal(scale=4.0)
    >>> normal.log_pdf(y=np.array([0.0, 2.0]), mu=np.array([0.0, 0.0])).round(4)
    array([-1.6121, -2.1121])
    """

    name = "normal"
    has_free_scale = True

    _parameter_constraints: dict = {
        "scale": [Interval(Real, 0.0, None, closed="neither"), None],
    }

    def __init__(self, scale=None):
        self.scale = scale

    def V(self, mu):
        return np.ones_like(mu, dtype=float)

    def to_scipy(self, mu):
        if self.scale is None:
            raise ValueError("The scale of the Normal distribution is not set. Use `estimate_scale` first.")
        self._validate_params()
        standard_deviation = np.sqrt(self.variance(mu))
        return sp.stats.norm(loc=mu, scale=standard_deviation)


class Poisson(Distribution, BaseEstimator):
    """
    Poisson Distribution
    """

    name = "poisson"
    scale = 1

    def __init__(self):
        pass

    def V(self, mu):
        return mu

    def to_scipy(self, mu):
        return sp.stats.poisson(mu=mu)


class Bernoulli(Distribution, BaseEstimator):
    """
    Bernoulli Distribution
    """

    name = "bernoulli"
    scale = 1

    def __init__(self):
        pass

    def V(self, mu):
        mu = np.maximum(np.minimum(mu, 1 - EPSILON), EPSILON)
        return mu * (1 - mu)

    def to_scipy(self, mu):
        return sp.stats.bernoulli(mu)


class Binomial(Distribution, BaseEstimator):
    """Binomial distribution, where mu is the expected number of successes.

    Examples
    --------
    >>> Binomial(trials=4).log_pdf(y=np.array([2]), mu=np.array([2.0])).round(4)
    array([-0.9808])
    """

    name = "binomial"
    scale = 1

    _parameter_constraints: dict = {
        "trials": [Interval(Integral, 1, None, closed="left")],
    }

    def __init__(self, trials=1):
        self.trials = trials

    def V(self, mu):
        mu = np.maximum(np.minimum(mu, self.trials - EPSILON), EPSILON)
        return mu * (1 - mu / self.trials)

    def to_scipy(self, mu):
        self._validate_params()
        return sp.stats.binom(self.trials, mu / self.trials)


class Gamma(Distribution, BaseEstimator):
    """
    Gamma Distribution
    """

    name = "gamma"
    has_free_scale = True

    _parameter_constraints: dict = {
        "scale": [Interval(Real, 0.0, None, closed="neither"), None],
    }

    def __init__(self, scale=None):
        self.scale = scale

    def V(self, mu):
        return mu**2

    def to_scipy(self, mu):
        if self.scale is None:
            raise ValueError("The scale of the Gamma distribution is not set. Use `estimate_scale` first.")
        self._validate_params()
        # The parametrization in scipy, vs. Wood table 3.1 in page 104 is
        # x = y
        # a = nu
        # scale = mu / nu = mu * scale
        nu = 1 / self.scale
        return sp.stats.gamma(a=nu, scale=mu / nu)


DISTRIBUTIONS = {dist.name: dist for dist in [Normal, Poisson, Bernoulli, Binomial, Gamma]}


if __name__ == "__main__":
    import pytest

    pytest.main(args=[__file__, "-v", "--capture=sys", "--doctest-modules"])
