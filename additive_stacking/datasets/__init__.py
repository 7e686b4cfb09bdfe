#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Synthetic datasets for stacking experiments.

The electricity load data mimics daily aggregate demand: load falls with
temperature, much more steeply in winter (heating) than in summer. Three
least-squares experts are fitted on the first part of the data, and their
log-densities on the remaining part can be stacked.
"""

import numbers

import numpy as np
import pandas as pd
from sklearn.utils import check_random_state, check_scalar

from additive_stacking.distributions import Normal
from additive_stacking.experts import log_density_matrix
from additive_stacking.utils import phi_pearson

EXPERTS = ("winter", "summer", "basic")


def _winterness(doy):
    # One in mid-January, zero in mid-July
    return (1 + np.cos(2 * np.pi * (doy - 15) / 365)) / 2


def make_electricity_load(num_days=730, random_state=None):
    """Create a daily electricity load dataset.

    Parameters
    ----------
    num_days : int, optional
        Number of consecutive days. The default is 730.
    random_state : int, np.random.RandomState or None, optional
        Seed for the noise. The default is None.

    Returns
    -------
    pd.DataFrame
        With columns `day`, `doy` (day of the year, 1 to 365), `temperature`
        and `load`.

    Examples
    --------
    >>> df = make_electricity_load(num_days=10, random_state=1)
    >>> list(df.columns)
    ['day', 'doy', 'temperature', 'load']
    >>> len(df)
    10
    """
    num_days = check_scalar(num_days, "num_days", target_type=numbers.Integral, min_val=1)
    rng = check_random_state(random_state)

    day = np.arange(num_days)
    doy = day % 365 + 1
    winterness = _winterness(doy)

    temperature = 10 - 7 * np.cos(2 * np.pi * (doy - 15) / 365) + rng.normal(scale=2.5, size=num_days)

    heating = -1.2 * winterness * (temperature - 10)
    cooling = -0.1 * (1 - winterness) * (temperature - 10)
    load = 45 + 3 * winterness + heating + cooling + rng.normal(scale=1.5, size=num_days)

    return pd.DataFrame({"day": day, "doy": doy, "temperature": temperature, "load": load})


def _least_squares_expert(design, y):
    coef, *_ = np.linalg.lstsq(design, y, rcond=None)
    return coef


def _expert_designs(df):
    """Model matrices of the winter, summer and basic experts."""
    ones = np.ones(len(df))
    temperature = df["temperature"].to_numpy(dtype=float)
    angle = 2 * np.pi * df["doy"].to_numpy(dtype=float) / 365

    simple = np.column_stack([ones, temperature])
    seasonal = np.column_stack([ones, temperature, np.cos(angle), np.sin(angle)])
    return {"winter": simple, "summer": simple, "basic": seasonal}


def make_stacking_experts(df, split=0.5):
    """Fit winter, summer and basic experts, and return stacking data.

    The winter expert is fitted on training days closer to mid-winter than
    mid-summer, the summer expert on the rest, and the basic expert on every
    training day. Each expert has a Gaussian predictive distribution, with
    variance estimated from its own training residuals.

    Parameters
    ----------
    df : pd.DataFrame
        Data as returned by `make_electricity_load`.
    split : float, optional
        Fraction of the days (the first ones) used to fit the experts.
        The default is 0.5.

    Returns
    -------
    stacking : pd.DataFrame
        The remaining days, with the predictions of each expert added as
        columns `winter`, `summer` and `basic`.
    L : np.ndarray
        Read-only log-densities of shape (len(stacking), 3), with columns in
        the order winter, summer, basic.

    Examples
    --------
    >>> df = make_electricity_load(num_days=365, random_state=0)
    >>> stacking, L = make_stacking_experts(df, split=0.5)
    >>> L.shape
    (183, 3)
    >>> list(stacking.columns)
    ['day', 'doy', 'temperature', 'load', 'winter', 'summer', 'basic']
    """
    split = check_scalar(split, "split", target_type=numbers.Real, min_val=0, max_val=1, include_boundaries="neither")

    num_train = int(round(split * len(df)))
    train, stacking = df.iloc[:num_train], df.iloc[num_train:].copy()
    if len(stacking) == 0:
        raise ValueError("No days left for stacking. Decrease `split` or increase `num_days`.")

    winter = _winterness(train["doy"].to_numpy()) > 0.5
    subsets = {"winter": winter, "summer": ~winter, "basic": np.ones(len(train), dtype=bool)}

    train_designs, stacking_designs = _expert_designs(train), _expert_designs(stacking)
    y_train = train["load"].to_numpy(dtype=float)

    distributions = []
    for name in EXPERTS:
        mask, design = subsets[name], train_designs[name]
        if np.sum(mask) <= design.shape[1]:
            raise ValueError(f"Too few training days to fit the {name} expert. Increase `split` or `num_days`.")

        coef = _least_squares_expert(design[mask], y_train[mask])
        scale = phi_pearson(y_train[mask], design[mask] @ coef, Normal(), edof=design.shape[1])

        stacking[name] = stacking_designs[name] @ coef
        distributions.append(Normal(scale=float(scale)))

    L = log_density_matrix(stacking["load"], stacking[list(EXPERTS)].to_numpy(), distributions)
    return stacking, L


if __name__ == "__main__":
    import pytest

    pytest.main(args=[__file__, "-v", "--capture=sys", "--doctest-modules"])
