#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Penalized-likelihood fitters for families with several linear predictors.

Linear predictor j is eta[:, j] = X_j @ beta_j. The fitters minimize

    deviance(beta) + sum_j |D_j beta_j|^2,    deviance = -2 sum_i s_i ll_i

where s_i are sample weights and ll_i comes from the family. The family is
only accessed through `num_linear_predictors`, `initialize` and `evaluate`.
"""

import functools
import warnings

import numpy as np
import scipy as sp
from sklearn.exceptions import ConvergenceWarning
from sklearn.utils import Bunch, check_consistent_length

from additive_stacking.exceptions import InvalidInputError, NumericDegeneracyError, NumericDegeneracyWarning
from additive_stacking.utils import EPSILON


def newton_step(hessian, gradient):
    """Solve hessian @ step = -gradient, adding a ridge if hessian is not positive definite.

    The observed information of a mixture need not be positive definite away
    from the optimum. Adding a multiple of the identity moves the step towards
    gradient descent until a Cholesky factorization succeeds.

    Examples
    --------
    >>> newton_step(np.array([[2.0, 0.0], [0.0, 4.0]]), np.array([2.0, 2.0]))
    array([-1. , -0.5])
    >>> step = newton_step(np.array([[-1.0, 0.0], [0.0, 1.0]]), np.array([1.0, 1.0]))
    >>> bool(step @ np.array([1.0, 1.0]) < 0)  # A descent direction
    True
    """
    num_coefs = len(gradient)
    identity = np.eye(num_coefs)
    scale = max(np.max(np.abs(np.diag(hessian))), 1.0) if num_coefs else 1.0

    ridge = 0.0
    for _ in range(64):
        try:
            factor = sp.linalg.cho_factor(hessian + ridge * identity)
        except np.linalg.LinAlgError:
            ridge = max(10 * ridge, EPSILON * scale)
            continue
        return -sp.linalg.cho_solve(factor, gradient)

    raise np.linalg.LinAlgError("Could not regularize the hessian to be positive definite.")


class Optimizer:
    """Base class for all optimizers."""

    # Printing options
    PRECISION = 4
    MIN_DIGITS = 4
    EXP_DIGITS = 2

    def __init__(self, *, X, D, family, sample_weight, max_iter, tol, verbose):
        self.X = list(X)
        self.D = list(D)
        self.family = family
        self.sample_weight = sample_weight
        self.max_iter = max_iter
        self.tol = tol
        self.verbose = verbose

        self._validate_params()

        self.results_ = Bunch(iters_deviance=[], iters_coef=[], iters_loss=[])
        self.fmt = functools.partial(
            np.format_float_scientific,
            precision=self.PRECISION,
            min_digits=self.MIN_DIGITS,
            exp_digits=self.EXP_DIGITS,
        )

        # Offsets of each linear predictor's coefficients in the stacked vector
        sizes = [X_j.shape[1] for X_j in self.X]
        self.splits = np.cumsum(sizes)[:-1]
        self.num_coefs = sum(sizes)

    def _validate_params(self):
        """Validate shapes and set up sample weights."""
        num_predictors = self.family.num_linear_predictors()
        if len(self.X) != num_predictors:
            msg = f"The family has {num_predictors} linear predictor(s), but {len(self.X)} model matrices were given."
            raise InvalidInputError(msg)
        if len(self.D) != num_predictors:
            msg = f"The family has {num_predictors} linear predictor(s), but {len(self.D)} penalties were given."
            raise InvalidInputError(msg)

        num_samples = self.X[0].shape[0]
        for j, (X_j, D_j) in enumerate(zip(self.X, self.D)):
            if X_j.shape[0] != num_samples:
                raise InvalidInputError(f"Model matrix {j} has {X_j.shape[0]} rows, expected {num_samples}.")
            if D_j.shape[1] != X_j.shape[1]:
                msg = f"Penalty matrix {j} has {D_j.shape[1]} columns, but model matrix {j} has {X_j.shape[1]}."
                raise InvalidInputError(msg)

        self.family.check_num_samples(num_samples)

        if self.sample_weight is None:
            self.sample_weight = np.ones(num_samples, dtype=float)
        self.sample_weight = np.asarray(self.sample_weight, dtype=float)
        check_consistent_length(self.X[0], self.sample_weight)

        # Rows where every expert has zero density carry no information
        degenerate = self.family.degenerate_rows()
        if np.all(degenerate | (self.sample_weight == 0)):
            raise NumericDegeneracyError("Every observation is degenerate or has zero weight. Nothing to fit.")

        if np.any(degenerate):
            rows = np.flatnonzero(degenerate)
            msg = f"Excluding {len(rows)} observation(s) where every expert has zero density: {rows.tolist()}."
            warnings.warn(msg, NumericDegeneracyWarning)
            self.sample_weight = np.where(degenerate, 0.0, self.sample_weight)

        self.degenerate_ = degenerate

    def split(self, beta):
        """Split a stacked coefficient vector into one vector per linear predictor."""
        return np.split(beta, self.splits)

    def linear_predictors(self, beta):
        return np.column_stack([X_j @ beta_j for X_j, beta_j in zip(self.X, self.split(beta))])

    def penalty(self, beta):
        return sum(sp.linalg.norm(D_j @ beta_j) ** 2 for D_j, beta_j in zip(self.D, self.split(beta)))

    def _evaluate_family(self, beta):
        return self.family.evaluate(self.linear_predictors(beta), warn_degenerate=False)

    def _deviance(self, loglik):
        mask = self.sample_weight > 0
        return -2 * np.sum(self.sample_weight[mask] * loglik[mask])

    def evaluate_objective(self, beta):
        """Evaluate the objective - the deviance plus the penalty.

        Returns +inf if the linear predictors or the deviance are not finite.
        """
        eta = self.linear_predictors(beta)
        if not np.all(np.isfinite(eta)):
            return np.inf

        result = self.family.evaluate(eta, warn_degenerate=False)
        objective = self._deviance(result.loglik) + self.penalty(beta)
        return objective if np.isfinite(objective) else np.inf

    def gradient(self, beta, result=None):
        """Evaluate the gradient of the objective function.

        Note that this is the gradient with respect to

            -2 * log_likelihood + penalty

        which is what we want to minimize.
        """
        result = self._evaluate_family(beta) if result is None else result
        weighted = self.sample_weight[:, None] * result.gradient

        gradients = []
        for j, (X_j, D_j, beta_j) in enumerate(zip(self.X, self.D, self.split(beta))):
            deviance_grad = -2 * X_j.T @ weighted[:, j]
            penalty_grad = 2 * np.linalg.multi_dot([D_j.T, D_j, beta_j])
            gradients.append(deviance_grad + penalty_grad)

        return np.concatenate(gradients)

    def hessian(self, beta, result=None, penalized=True):
        """Evaluate the hessian of the objective function.

        The family returns the observed information per observation, the
        negative hessian of each log-likelihood with respect to eta. By the
        chain rule, block (j, l) is 2 * X_j.T @ diag(s * info[:, j, l]) @ X_l.
        """
        result = self._evaluate_family(beta) if result is None else result
        weighted = self.sample_weight[:, None, None] * result.hessian

        blocks = []
        for j, (X_j, D_j) in enumerate(zip(self.X, self.D)):
            row = []
            for l, X_l in enumerate(self.X):
                block = 2 * X_j.T @ (weighted[:, j, l][:, None] * X_l)
                if penalized and j == l:
                    block = block + 2 * D_j.T @ D_j
                row.append(block)
            blocks.append(row)

        hessian = np.block(blocks)
        assert hessian.shape == (self.num_coefs, self.num_coefs)
        return hessian

    def log(self, beta):
        """Log information in each optimization iteration."""
        self.results_.iters_coef.append(beta)

        # Log the mean deviance and the objective
        result = self._evaluate_family(beta)
        deviance = self._deviance(result.loglik)
        self.results_.iters_deviance.append(deviance / np.sum(self.sample_weight))
        self.results_.iters_loss.append(deviance + self.penalty(beta))

    def _print_iteration(self, iteration, objective_value, beta, half_exponent=None):
        lpad = int(np.floor(np.log10(self.max_iter))) + 1
        msg = f"Iteration: {str(iteration).rjust(lpad, ' ')}/{self.max_iter}   "
        msg += f"Objective: {self.fmt(objective_value)}   "
        msg += f"Coef. rmse: {self.fmt(np.sqrt(np.mean(beta**2)))}   "
        if half_exponent is not None:
            msg += f"Step size: 1/2^{half_exponent}"
        print(msg)

    def initial_estimate(self):
        """Map the family's initial linear predictors to coefficients.

        Each X_j @ beta_j = eta_j is solved by ridge-regularized least squares.
        """
        eta = self.family.initialize(prior_weights=self.sample_weight)

        betas = []
        for j, (X_j, D_j) in enumerate(zip(self.X, self.D)):
            lhs = X_j.T @ (self.sample_weight[:, None] * X_j) + D_j.T @ D_j
            lhs += EPSILON * np.eye(X_j.shape[1])
            rhs = X_j.T @ (self.sample_weight * eta[:, j])
            betas.append(sp.linalg.solve(lhs, rhs, assume_a="sym"))

        return np.concatenate(betas)

    def set_statistics(self, beta):
        """Compute post-optimization statistics, such as:

        - the covariance of the coefficients (inverse of the penalized information)
        - effective degrees of freedom, per coefficient and in total
        - the log-likelihood at the optimum

        """
        result = self._evaluate_family(beta)

        # The objective is -2 * log-likelihood, so halve the hessian
        information = 0.5 * self.hessian(beta, result=result, penalized=False)
        penalized_information = 0.5 * self.hessian(beta, result=result, penalized=True)
        np.fill_diagonal(penalized_information, penalized_information.diagonal() + EPSILON)
        covariance = sp.linalg.inv(penalized_information)

        # Diagonal of the influence matrix in coefficient space, page 251 in Wood, 2nd ed
        # Uses np.diag(A @ B) = (A * B.T).sum(axis=1) with B symmetric
        edof_per_coef = (information * covariance).sum(axis=1)

        self.results_.covariance = covariance
        self.results_.edof_per_coef = edof_per_coef
        self.results_.edof = edof_per_coef.sum()
        self.results_.loglik = np.sum(self.sample_weight * np.where(self.sample_weight > 0, result.loglik, 0.0))
        self.results_.degenerate = self.degenerate_

    def _should_stop(self, *, betas):
        if len(betas) < 2:
            return False

        diffs = betas[-1] - betas[-2]
        assert np.all(np.isfinite(diffs))
        max_coord_update = np.max(np.abs(diffs))
        max_coord = np.max(np.abs(betas[-1]))
        return max_coord_update <= self.tol * max_coord


class Newton(Optimizer):
    """Penalized Newton iterations with step-halving line search."""

    def halving_search(self, beta0, beta1):
        """Perform halving search.

        Here beta0 is the current solution and beta1 the one proposed by the
        Newton step. We successively halve the step until we improve on beta0.
        Trial points with a non-finite objective never count as improvements.
        If no step size improves on beta0, it is returned with exponent None.

        iter1 -------------------------------->
        iter2 ---------------->
        iter3 -------->
        iter4 ---->
        ___________________________________________
        beta0                                beta1
        """
        obj0 = self.evaluate_objective(beta0)

        # Try step sizes 1, 1/2, 1/4, 1/8, ..., 1/2^29
        for iteration in range(30):
            step_size = (1 / 2) ** iteration
            beta = step_size * beta1 + (1 - step_size) * beta0
            obj = self.evaluate_objective(beta)

            if obj < obj0:
                return beta, obj, iteration

        # No better solution found
        return beta0, obj0, None

    def solve(self):
        """Solve the optimization problem, returning the stacked coefficients."""
        beta = self.initial_estimate()
        if self.verbose >= 1:
            msg = f"Initial guess:      Objective: {self.fmt(self.evaluate_objective(beta))}   "
            msg += f"Coef. rmse: {self.fmt(np.sqrt(np.mean(beta**2)))}   "
            print(msg)

        for iteration in range(1, self.max_iter + 1):
            result = self._evaluate_family(beta)
            gradient = self.gradient(beta, result=result)
            hessian = self.hessian(beta, result=result)

            step = newton_step(hessian, gradient)
            beta_next, objective_value, half_exponent = self.halving_search(beta, beta + step)

            # No step size improved the objective, although the Newton step predicts
            # a decrease larger than the resolution of the objective
            predicted_decrease = -(gradient @ step) / 2
            resolution = EPSILON * max(1.0, abs(objective_value))
            if half_exponent is None and not predicted_decrease <= resolution:
                if self.verbose >= 1:
                    print(" => FAILURE: Line search could not improve the objective.")

                msg = f"Line search could not improve the objective in iteration {iteration}.\n"
                msg += "The penalized information may be ill-conditioned. Try increasing penalties."
                warnings.warn(msg, ConvergenceWarning)
                break

            beta = beta_next

            self.log(beta)

            if self.verbose >= 1:
                self._print_iteration(iteration, objective_value, beta, half_exponent)

            if self._should_stop(betas=self.results_.iters_coef):
                if self.verbose >= 1:
                    print(" => SUCCESS: Solver converged (met tolerance criterion).")
                break

        # Solver did not converge
        else:
            if self.verbose >= 1:
                print(f" => FAILURE: Solver did not converge in {self.max_iter} iterations.")

            msg = f"Solver did not converge in {self.max_iter} iterations.\n"
            msg += "Increase `max_iter`, increase `tol` or increase penalties."
            warnings.warn(msg, ConvergenceWarning)

        self.set_statistics(beta)
        return beta


class LBFGSB(Optimizer):
    """Quasi-Newton minimization with L-BFGS-B from scipy."""

    def solve(self):
        """Solve the optimization problem, returning the stacked coefficients."""
        x0 = self.initial_estimate()

        def objective_and_gradient(beta):
            result = self._evaluate_family(beta)
            objective = self._deviance(result.loglik) + self.penalty(beta)
            return objective, self.gradient(beta, result=result)

        class Callback:
            def __init__(cb):
                cb.iterations = 1

            def __call__(cb, intermediate_result):
                beta = intermediate_result.x
                self.log(beta)

                if self.verbose >= 1:
                    self._print_iteration(cb.iterations, intermediate_result.fun, beta)

                cb.iterations += 1

        result = sp.optimize.minimize(
            objective_and_gradient,
            x0=x0,
            method="L-BFGS-B",
            jac=True,
            tol=self.tol,
            callback=Callback(),
            options={
                "maxiter": self.max_iter,
                "maxls": 50,
                "gtol": self.tol,
                # Very small, but a bit larger than machine precision
                "ftol": 64 * np.finfo(float).eps,
            },
        )

        if self.verbose >= 1:
            print(f" => {'SUCCESS' if result.success else 'FAILURE'}: {result.message}")

        if result.nit >= self.max_iter:
            msg = f"Solver did not converge in {self.max_iter} iterations.\n"
            msg += "Increase `max_iter`, increase `tol` or increase penalties."
            warnings.warn(msg, ConvergenceWarning)

        beta = result.x
        self.log(beta)
        self.set_statistics(beta)
        return beta


SOLVERS = {"newton": Newton, "lbfgsb": LBFGSB}


if __name__ == "__main__":
    import pytest

    pytest.main(args=[__file__, "-v", "--capture=sys", "--doctest-modules"])
