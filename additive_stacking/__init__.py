#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""

Additive Stacking
-----------------

Stacking combines the predictive distributions of K experts into a mixture

    p(y | x) = w_1(x) p_1(y) + w_2(x) p_2(y) + ... + w_K(x) p_K(y)

where the weights w_k(x) sum to one and depend on covariates x. The weights
are modeled with a multinomial logit link, relative to a reference expert
whose linear predictor is zero:

    log(w_k(x) / w_ref(x)) = f_k1(x_1) + f_k2(x_2) + ... + f_km(x_m)

The functions f are additive effects, e.g. penalized regression splines.

Experts
-------

The stacking family only needs the log-density of each observation under
each expert, the matrix L.

>>> import numpy as np
>>> L = np.log(np.array([[0.2, 0.6], [0.4, 0.1]]))
>>> family = make_stacking_family(L)
>>> family.predict_weights(np.zeros((2, 1)))
array([[0.5, 0.5],
       [0.5, 0.5]])
>>> np.exp(family.loglik(np.zeros((2, 1))))
array([0.4 , 0.25])

Capezza, C., Lepore, A., Menafoglio, A., Palumbo, B., Vantini, S. (2021)
Additive stacking for disaggregate electricity demand forecasting.
Annals of Applied Statistics 15(2), 727-746.
https://arxiv.org/abs/2005.10092

"""

import importlib.metadata

from additive_stacking.distributions import Bernoulli, Binomial, Gamma, Normal, Poisson
from additive_stacking.exceptions import InvalidInputError, NumericDegeneracyError, NumericDegeneracyWarning
from additive_stacking.experts import log_density_matrix
from additive_stacking.families import StackingFamily, make_stacking_family
from additive_stacking.gam import StackingGAM
from additive_stacking.links import MultinomialLogit

__name__ = "additive-stacking"
__version__ = importlib.metadata.version(__name__)

__all__ = [
    "Bernoulli",
    "Binomial",
    "Gamma",
    "InvalidInputError",
    "MultinomialLogit",
    "Normal",
    "NumericDegeneracyError",
    "NumericDegeneracyWarning",
    "Poisson",
    "StackingFamily",
    "StackingGAM",
    "log_density_matrix",
    "make_stacking_family",
]
