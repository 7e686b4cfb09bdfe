#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Errors and warnings raised when stacking experts.

Shape and content problems are raised immediately. Rows whose log-likelihood
is not finite are reported as data (a boolean flag) together with a warning,
since a single bad observation should not abort a fit.

Convergence problems are reported with :class:`sklearn.exceptions.ConvergenceWarning`.
"""


class InvalidInputError(ValueError):
    """Malformed log-densities or linear predictors.

    Examples
    --------
    >>> issubclass(InvalidInputError, ValueError)
    True
    """


class NumericDegeneracyWarning(RuntimeWarning):
    """Some observations have a non-finite mixture log-likelihood."""


class NumericDegeneracyError(ArithmeticError):
    """No observation carries information, so there is nothing to fit."""


__all__ = ["InvalidInputError", "NumericDegeneracyWarning", "NumericDegeneracyError"]
