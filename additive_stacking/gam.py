#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Additive stacking of probabilistic experts.

The mixing weights of K experts are modeled with a multinomial logit link,
and each of the K-1 free linear predictors is an additive model of
covariates. Basis matrices (e.g. from sklearn.preprocessing.SplineTransformer)
are built by the user and passed as `X`.
"""

import copy
import functools
import sys
from numbers import Integral, Real

import numpy as np
import tabulate
from sklearn.base import BaseEstimator
from sklearn.utils import check_array, check_consistent_length
from sklearn.utils._param_validation import Hidden, Interval, StrOptions
from sklearn.utils.validation import _check_sample_weight, check_is_fitted

from additive_stacking.exceptions import InvalidInputError
from additive_stacking.families import make_stacking_family
from additive_stacking.optimizers import SOLVERS, Optimizer
from additive_stacking.penalties import ridge, scaled_penalty


def _is_sequence_of_matrices(obj):
    return isinstance(obj, (list, tuple)) and len(obj) > 0 and all(hasattr(o, "shape") for o in obj)


class StackingGAM(BaseEstimator):
    """Initialize an additive stacking model.

    Parameters
    ----------
    reference : int, optional
        Zero-based index of the reference expert, whose linear predictor is
        fixed at zero. Negative values count from the end. Predicted weights
        do not depend on this choice, only the coefficients do.
        The default is -1, the last expert.
    penalty : float or list of float, optional
        Non-negative strength of the quadratic penalty, either shared or one
        per linear predictor. The default is 1.0.
    penalty_matrix : np.ndarray or list of np.ndarray, optional
        The matrix D in the penalty |D beta|^2, either shared or one per
        linear predictor. It applies to the columns of `X`; the intercept is
        never penalized. The default is None, which is a ridge penalty.
    fit_intercept : bool, optional
        Whether to prepend an unpenalized intercept column to every model
        matrix. The default is True.
    solver : str, optional
        Either 'newton' or 'lbfgsb'.
        'newton' is a penalized Newton method using the observed information,
        with step-halving line search.
        'lbfgsb' is the Limited-memory Broyden–Fletcher–Goldfarb–Shanno algorithm
        from scipy.optimize.minimize.
        The default is "newton".
    max_iter : int, optional
        Maximum number of iterations in the solver.
        The default is 100.
    tol : float, optional
        Tolerance in the solver.
        The default is 0.0001.
    verbose : int, optional
        Verbosity level. The higher the number, the more info is printed.
        The default is 0.

    Examples
    --------
    Two experts, where the first is good for negative x and the second for positive x:

    >>> rng = np.random.default_rng(1)
    >>> x = np.sort(rng.uniform(-3, 3, size=500)).reshape(-1, 1)
    >>> y = np.where(x.ravel() < 0, -1.0, 1.0) + 0.5 * rng.normal(size=500)
    >>> from scipy.stats import norm
    >>> L = np.column_stack([norm(-1, 0.5).logpdf(y), norm(1, 0.5).logpdf(y)])
    >>> stack = StackingGAM(penalty=0.1).fit(x, L)
    >>> stack.predict_weights(np.array([[-2.5], [2.5]])).round(1)
    array([[1., 0.],
           [0., 1.]])
    """

    _parameter_constraints: dict = {
        "reference": [Integral],
        "penalty": [Interval(Real, 0.0, None, closed="left"), list, tuple],
        "penalty_matrix": [np.ndarray, list, tuple, None],
        "fit_intercept": ["boolean"],
        "solver": [
            StrOptions(set(SOLVERS.keys())),
            Hidden(type),
        ],
        "max_iter": [Interval(Integral, 1, None, closed="left")],
        "tol": [Interval(Real, 0.0, None, closed="neither")],
        "verbose": [Integral, "boolean"],
    }

    def __init__(
        self,
        *,
        reference=-1,
        penalty=1.0,
        penalty_matrix=None,
        fit_intercept=True,
        solver="newton",
        max_iter=100,
        tol=0.0001,
        verbose=0,
    ):
        self.reference = reference
        self.penalty = penalty
        self.penalty_matrix = penalty_matrix
        self.fit_intercept = fit_intercept
        self.solver = solver
        self.max_iter = max_iter
        self.tol = tol
        self.verbose = verbose

    def _validate_params(self):
        super()._validate_params()

        if isinstance(self.solver, str):
            self._solver = SOLVERS[self.solver]
        elif issubclass(self.solver, Optimizer):
            self._solver = self.solver
        else:
            raise ValueError("Unknown solver.")

    def _model_matrices(self, X, num_predictors):
        """Return one model matrix per linear predictor, with intercepts."""
        if _is_sequence_of_matrices(X):
            if len(X) != num_predictors:
                msg = f"Expected one model matrix per linear predictor ({num_predictors}), got {len(X)}."
                raise InvalidInputError(msg)
            matrices = [check_array(X_j, dtype=float) for X_j in X]
            check_consistent_length(*matrices)
        else:
            matrices = [check_array(X, dtype=float)] * num_predictors

        if self.fit_intercept:
            matrices = [np.hstack([np.ones((X_j.shape[0], 1)), X_j]) for X_j in matrices]

        return matrices

    def _penalty_matrices(self, model_matrices):
        """Return the penalty square root D_j for every linear predictor."""
        num_predictors = len(model_matrices)
        num_unpenalized = 1 if self.fit_intercept else 0

        penalties = self.penalty
        if isinstance(penalties, (list, tuple)):
            if len(penalties) != num_predictors:
                raise InvalidInputError(f"Expected {num_predictors} penalties, one per linear predictor.")
        else:
            penalties = [penalties] * num_predictors

        if self.penalty_matrix is None:
            matrices = [ridge(X_j.shape[1] - num_unpenalized) for X_j in model_matrices]
        elif _is_sequence_of_matrices(self.penalty_matrix):
            if len(self.penalty_matrix) != num_predictors:
                raise InvalidInputError(f"Expected {num_predictors} penalty matrices, one per linear predictor.")
            matrices = list(self.penalty_matrix)
        else:
            matrices = [np.asarray(self.penalty_matrix, dtype=float)] * num_predictors

        D = []
        for j, (X_j, matrix, penalty) in enumerate(zip(model_matrices, matrices, penalties)):
            D_j = scaled_penalty(matrix, penalty, num_unpenalized=num_unpenalized)
            if D_j.shape[1] != X_j.shape[1]:
                msg = f"Penalty matrix {j} has {D_j.shape[1] - num_unpenalized} columns, "
                msg += f"but model matrix {j} has {X_j.shape[1] - num_unpenalized}."
                raise InvalidInputError(msg)
            D.append(D_j)

        return D

    def fit(self, X, y, sample_weight=None):
        """Fit the mixing weights to the expert log-densities.

        Parameters
        ----------
        X : np.ndarray, pd.DataFrame or list of those
            Model matrix of shape (num_samples, num_features) shared by every
            linear predictor, or a list with one model matrix per linear
            predictor (K-1 in total, in expert order without the reference).
        y : np.ndarray of shape (num_samples, K)
            Log-density of every observation under each of the K experts.
        sample_weight : np.ndarray, optional
            An array of sample weights. Sample weights [1, 3] is equal to
            repeating the second data point three times.
            The default is None.

        Returns
        -------
        StackingGAM
            Returns the instance.

        """
        self._validate_params()

        family = make_stacking_family(y, reference_index=self.reference)
        model_matrices = self._model_matrices(X, family.num_linear_predictors())
        family.check_num_samples(model_matrices[0].shape[0])

        sample_weight = _check_sample_weight(sample_weight, model_matrices[0], ensure_non_negative=True)

        optimizer = self._solver(
            X=model_matrices,
            D=self._penalty_matrices(model_matrices),
            family=family,
            sample_weight=sample_weight,
            max_iter=self.max_iter,
            tol=self.tol,
            verbose=self.verbose,
        )

        # Copy over solver information
        beta = optimizer.solve().copy()
        self.coef_ = optimizer.split(beta)
        self.results_ = copy.deepcopy(optimizer.results_)
        self.family_ = family
        self.n_experts_ = family.num_experts

        return self

    def decision_function(self, X):
        """Linear predictors of shape (num_samples, K-1), one per non-reference expert."""
        check_is_fitted(self, attributes=["coef_"])

        model_matrices = self._model_matrices(X, len(self.coef_))
        for j, (X_j, coef_j) in enumerate(zip(model_matrices, self.coef_)):
            if X_j.shape[1] != len(coef_j):
                raise InvalidInputError(f"Model matrix {j} has {X_j.shape[1]} columns, expected {len(coef_j)}.")

        return np.column_stack([X_j @ coef_j for X_j, coef_j in zip(model_matrices, self.coef_)])

    def predict_weights(self, X):
        """Predict the mixing weights of the experts.

        Returns
        -------
        np.ndarray
            Array of shape (num_samples, K) with rows summing to one.
        """
        eta = self.decision_function(X)
        return self.family_.predict_weights(eta)

    def predict(self, X):
        """Predict the mixing weights of the experts. Same as `predict_weights`."""
        return self.predict_weights(X)

    def predict_log_density(self, X, y):
        """Log-density of the stacked mixture for new expert log-densities `y`."""
        eta = self.decision_function(X)
        return self.family_.log_density(eta, y)

    def score(self, X, y, sample_weight=None):
        """Mean log-density of the stacked mixture (the logarithmic score).

        Higher is better.

        Parameters
        ----------
        X : np.ndarray, pd.DataFrame or list of those
            Model matrices, as in `fit`.
        y : np.ndarray of shape (num_samples, K)
            Log-density of every observation under each expert.
        sample_weight : np.ndarray, optional
            An array of sample weights.
            The default is None.

        Returns
        -------
        float
            The (weighted) mean log score.

        """
        log_density = self.predict_log_density(X, y)
        return float(np.average(log_density, weights=sample_weight))

    def summary(self, file=None):
        """Print a model summary.

        Parameters
        ----------
        file : filehandle, optional
            A file handle to write to.
            The default is None, which maps to sys.stdout.

        Returns
        -------
        None.

        """
        check_is_fitted(self, attributes=["coef_"])

        if file is None:
            file = sys.stdout

        p = functools.partial(print, file=file)
        fmt = functools.partial(np.format_float_positional, precision=3, min_digits=3)

        # ======================= MODEL PROPERTIES =======================
        rows = []
        rows.append(("Model", type(self).__name__))
        rows.append(("Experts", self.n_experts_))
        rows.append(("Reference expert", self.family_.link.reference_index))
        rows.append(("Log-likelihood", fmt(self.results_.loglik)))
        rows.append(("Edof", fmt(self.results_.edof)))
        rows.append(("Iterations", len(self.results_.iters_coef)))

        p(tabulate.tabulate(rows, headers=("Property", "Value"), tablefmt="github"))

        # =================== LINEAR PREDICTOR PROPERTIES ===================
        edof_per_predictor = np.split(self.results_.edof_per_coef, np.cumsum([len(c) for c in self.coef_])[:-1])
        rows = []
        for j, (expert, coef_j, edof_j) in enumerate(zip(self.family_.link.free_experts, self.coef_, edof_per_predictor)):
            rows.append((f"eta_{j} (expert {expert})", len(coef_j), fmt(edof_j.sum()), fmt(np.sqrt(np.mean(coef_j**2)))))

        p()
        p(tabulate.tabulate(rows, headers=("Linear predictor", "Coefs", "Edof", "Coef. rmse"), tablefmt="github"))


if __name__ == "__main__":
    import pytest

    pytest.main(args=[__file__, "-v", "--capture=sys", "--doctest-modules", "--maxfail=1"])
