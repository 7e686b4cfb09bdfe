#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Tests for the StackingGAM estimator.
"""

import io

import joblib
import numpy as np
import pandas as pd
import pytest
import scipy as sp
from sklearn.base import clone
from sklearn.exceptions import NotFittedError
from sklearn.model_selection import GridSearchCV, KFold, cross_val_score
from sklearn.preprocessing import SplineTransformer
from sklearn.utils._param_validation import InvalidParameterError

from additive_stacking.datasets import make_electricity_load, make_stacking_experts
from additive_stacking.exceptions import InvalidInputError, NumericDegeneracyWarning
from additive_stacking.gam import StackingGAM
from additive_stacking.penalties import second_order_finite_difference
from additive_stacking.utils import mixture_log_density

SOLVERS = list(StackingGAM._parameter_constraints["solver"][0].options)


def switching_experts(seed, num_samples=2000):
    """Two experts whose true mixing weight is a smooth function of x."""
    rng = np.random.default_rng(seed)
    x = rng.uniform(-3, 3, size=num_samples)
    weight_first = sp.special.expit(2 * np.sin(x))

    first = rng.random(num_samples) < weight_first
    y = np.where(first, -1.5, 1.5) + rng.normal(size=num_samples)

    L = np.column_stack([sp.stats.norm(-1.5, 1).logpdf(y), sp.stats.norm(1.5, 1).logpdf(y)])
    return x.reshape(-1, 1), L, weight_first


def three_experts(seed, num_samples=500):
    """Three experts, with the mixing weights a softmax of (1.5x, -1.5x, 0)."""
    rng = np.random.default_rng(seed)
    x = rng.uniform(-2, 2, size=num_samples)
    eta = np.column_stack([1.5 * x, -1.5 * x, np.zeros(num_samples)])
    weights = sp.special.softmax(eta, axis=1)

    expert = (rng.random((num_samples, 1)) > np.cumsum(weights, axis=1)).sum(axis=1)
    expert = np.minimum(expert, 2)
    means = np.array([-3.0, 0.0, 3.0])
    y = means[expert] + rng.normal(size=num_samples)

    L = sp.stats.norm(loc=means, scale=1).logpdf(y[:, None])
    return x.reshape(-1, 1), L, weights


class TestAPIContract:
    def test_that_underscore_results_are_present(self):
        X, L, _ = switching_experts(0, num_samples=300)
        stack = StackingGAM()
        assert not hasattr(stack, "coef_")
        assert not hasattr(stack, "results_")

        stack.fit(X, L)

        # Test coefficients, one vector per non-reference expert
        assert isinstance(stack.coef_, list)
        assert len(stack.coef_) == 1
        assert stack.coef_[0].shape == (2,)
        assert stack.n_experts_ == 2
        assert stack.family_.num_experts == 2

        # Test results_ Bunch
        assert hasattr(stack.results_, "covariance")
        assert hasattr(stack.results_, "edof_per_coef")
        assert np.isclose(stack.results_.edof_per_coef.sum(), stack.results_.edof)
        assert len(stack.results_.iters_coef) >= 1

    def test_output_shapes(self):
        X, L, _ = three_experts(1, num_samples=300)
        stack = StackingGAM().fit(X, L)

        assert stack.decision_function(X).shape == (300, 2)
        assert stack.predict_weights(X).shape == (300, 3)
        assert np.allclose(stack.predict(X), stack.predict_weights(X))
        assert stack.predict_log_density(X, L).shape == (300,)
        assert isinstance(stack.score(X, L), float)

    @pytest.mark.parametrize("method", ["decision_function", "predict_weights", "predict"])
    def test_that_unfitted_models_raise(self, method):
        X, _, _ = switching_experts(2, num_samples=10)
        with pytest.raises(NotFittedError):
            getattr(StackingGAM(), method)(X)

    @pytest.mark.parametrize("method", ["predict_log_density", "score"])
    def test_that_unfitted_models_raise_when_scoring(self, method):
        X, L, _ = switching_experts(2, num_samples=10)
        with pytest.raises(NotFittedError):
            getattr(StackingGAM(), method)(X, L)

    def test_summary(self):
        X, L, _ = switching_experts(3, num_samples=300)
        stack = StackingGAM().fit(X, L)

        file = io.StringIO()
        stack.summary(file=file)
        output = file.getvalue()

        assert "StackingGAM" in output
        assert "Log-likelihood" in output
        assert "eta_0 (expert 0)" in output


class TestStackingGAMSanityChecks:
    @pytest.mark.parametrize("solver", SOLVERS)
    def test_that_weights_are_recovered(self, solver):
        X, L, weight_first = switching_experts(4)
        splines = SplineTransformer(n_knots=8, degree=3, include_bias=False).fit(X)
        B = splines.transform(X)

        stack = StackingGAM(penalty=1.0, penalty_matrix=second_order_finite_difference(B.shape[1]), solver=solver)
        stack.fit(B, L)

        weights = stack.predict_weights(B)
        assert np.allclose(weights.sum(axis=1), 1.0)
        assert np.mean(np.abs(weights[:, 0] - weight_first)) < 0.12

    def test_that_stacking_beats_equal_weights(self):
        X, L, _ = switching_experts(5)
        B = SplineTransformer(n_knots=6, include_bias=False).fit_transform(X)

        stack = StackingGAM(penalty=1.0).fit(B, L)
        equal_weights = mixture_log_density(L, np.full_like(L, 0.5))

        assert stack.score(B, L) > np.mean(equal_weights) + 0.01

    def test_that_solvers_agree(self):
        X, L, _ = switching_experts(6, num_samples=500)
        B = SplineTransformer(n_knots=5, include_bias=False).fit_transform(X)

        newton = StackingGAM(solver="newton", tol=1e-8, penalty=0.1).fit(B, L)
        lbfgsb = StackingGAM(solver="lbfgsb", tol=1e-8, penalty=0.1).fit(B, L)

        assert np.allclose(newton.predict_weights(B), lbfgsb.predict_weights(B), atol=1e-3)

    @pytest.mark.parametrize("reference", [0, 1, -1, -2])
    def test_that_weights_are_invariant_to_the_reference(self, reference):
        X, L, _ = three_experts(7)

        # Without a penalty the fit does not depend on the parametrization
        weights_default = StackingGAM(penalty=0.0, tol=1e-8).fit(X, L).predict_weights(X)
        weights_other = StackingGAM(penalty=0.0, tol=1e-8, reference=reference).fit(X, L).predict_weights(X)

        assert np.allclose(weights_default, weights_other, atol=1e-4)

    def test_that_separate_model_matrices_are_used(self):
        X, L, _ = three_experts(8)
        B = SplineTransformer(n_knots=5, include_bias=False).fit_transform(X)

        # The first linear predictor is smooth in x, the second is linear
        stack = StackingGAM(penalty=0.1).fit([B, X], L)

        assert [len(coef) for coef in stack.coef_] == [B.shape[1] + 1, 2]
        eta = stack.decision_function([B, X])
        assert np.allclose(eta[:, 1], stack.coef_[1][0] + stack.coef_[1][1] * X[:, 0])

    def test_that_sample_weights_equal_data_repetitions(self):
        X, L, _ = switching_experts(9, num_samples=200)
        weights = np.random.default_rng(9).integers(1, 4, size=200)

        stack_weighted = StackingGAM(tol=1e-8).fit(X, L, sample_weight=weights)
        stack_repeated = StackingGAM(tol=1e-8).fit(np.repeat(X, weights, axis=0), np.repeat(L, weights, axis=0))

        assert np.allclose(stack_weighted.coef_[0], stack_repeated.coef_[0], atol=1e-4)

    def test_that_zero_sample_weights_equal_dropping_rows(self):
        X, L, _ = switching_experts(9, num_samples=200)
        weights = np.ones(200)
        weights[:50] = 0

        stack_weighted = StackingGAM(tol=1e-8).fit(X, L, sample_weight=weights)
        stack_dropped = StackingGAM(tol=1e-8).fit(X[50:], L[50:])

        assert np.allclose(stack_weighted.coef_[0], stack_dropped.coef_[0], atol=1e-4)

    def test_that_heavy_penalty_gives_constant_weights(self):
        X, L, _ = switching_experts(10, num_samples=500)
        weights = StackingGAM(penalty=1e8).fit(X, L).predict_weights(X)

        assert np.allclose(weights, weights[0], atol=1e-3)

    def test_that_pandas_and_numpy_produce_identical_results(self):
        X, L, _ = switching_experts(11, num_samples=300)
        df = pd.DataFrame(X, columns=["x"])

        weights_numpy = StackingGAM().fit(X, L).predict_weights(X)
        weights_pandas = StackingGAM().fit(df, L).predict_weights(df)

        assert np.allclose(weights_numpy, weights_pandas)

    def test_that_degenerate_rows_are_excluded(self):
        X, L, _ = switching_experts(12, num_samples=300)
        L = L.copy()
        L[5] = -np.inf

        with pytest.warns(NumericDegeneracyWarning, match=r"\[5\]"):
            stack = StackingGAM().fit(X, L)

        assert np.all(np.isfinite(stack.coef_[0]))
        assert stack.results_.degenerate[5]

    def test_on_electricity_load_experts(self):
        df = make_electricity_load(num_days=730, random_state=42)
        stacking, L = make_stacking_experts(df, split=0.5)

        doy = stacking[["doy"]].to_numpy()
        splines = SplineTransformer(n_knots=6, extrapolation="periodic").fit(np.array([[1], [366]]))
        B = splines.transform(doy)
        D = second_order_finite_difference(B.shape[1], periodic=True)

        stack = StackingGAM(penalty=10.0, penalty_matrix=D, fit_intercept=False).fit(B, L)
        weights = stack.predict_weights(B)

        # The winter expert is weighted more in winter than in summer
        winter = (stacking["doy"] < 45) | (stacking["doy"] > 340)
        summer = (stacking["doy"] > 150) & (stacking["doy"] < 240)
        assert weights[winter.to_numpy(), 0].mean() > weights[summer.to_numpy(), 0].mean()
        assert stack.score(B, L) >= np.mean(mixture_log_density(L, np.full_like(L, 1 / 3)))


class TestInputValidation:
    @pytest.mark.parametrize(
        "params",
        [
            {"penalty": -1.0},
            {"solver": "sgd"},
            {"max_iter": 0},
            {"tol": 0.0},
            {"fit_intercept": "yes"},
        ],
    )
    def test_that_invalid_parameters_raise(self, params):
        X, L, _ = switching_experts(13, num_samples=20)
        with pytest.raises(InvalidParameterError):
            StackingGAM(**params).fit(X, L)

    def test_that_mismatched_rows_raise(self):
        X, L, _ = switching_experts(14, num_samples=20)
        with pytest.raises(InvalidInputError, match="20 rows"):
            StackingGAM().fit(X[:15], L)

    def test_that_negative_sample_weights_raise(self):
        X, L, _ = switching_experts(14, num_samples=20)
        weights = np.ones(20)
        weights[3] = -1.0
        with pytest.raises(ValueError, match="[Nn]egative"):
            StackingGAM().fit(X, L, sample_weight=weights)

    def test_that_wrong_number_of_model_matrices_raise(self):
        X, L, _ = switching_experts(15, num_samples=20)
        L = np.column_stack([L, L[:, 0]])
        with pytest.raises(InvalidInputError, match="one model matrix per linear predictor"):
            StackingGAM().fit([X, X, X], L)

    def test_that_wrong_penalty_matrix_raises(self):
        X, L, _ = switching_experts(16, num_samples=20)
        with pytest.raises(InvalidInputError, match="Penalty matrix 0"):
            StackingGAM(penalty_matrix=np.eye(3)).fit(X, L)

    def test_that_wrong_number_of_penalties_raise(self):
        X, L, _ = switching_experts(17, num_samples=20)
        with pytest.raises(InvalidInputError, match="1 penalties"):
            StackingGAM(penalty=[1.0, 2.0]).fit(X, L)

    def test_that_new_data_must_have_the_same_columns(self):
        X, L, _ = switching_experts(18, num_samples=20)
        stack = StackingGAM().fit(X, L)
        with pytest.raises(InvalidInputError, match="columns"):
            stack.predict_weights(np.hstack([X, X]))

    def test_that_invalid_log_densities_raise(self):
        X, L, _ = switching_experts(19, num_samples=20)
        L = L.copy()
        L[0, 0] = np.nan
        with pytest.raises(InvalidInputError, match="NaN"):
            StackingGAM().fit(X, L)


class TestSklearnCompatibility:
    def test_saving_model_with_joblib(self):
        X, L, _ = switching_experts(20, num_samples=300)
        stack = StackingGAM(penalty=0.5).fit(X, L)

        # Store to file object
        filename = io.BytesIO()
        joblib.dump(stack, filename)
        filename.seek(0)

        # Load back and compare
        stack_restored = joblib.load(filename)

        assert np.allclose(stack_restored.coef_[0], stack.coef_[0])
        assert np.allclose(stack_restored.predict_weights(X), stack.predict_weights(X))
        assert stack_restored.get_params() == stack.get_params()

    def test_cloning_with_sklearn_clone(self):
        stack = StackingGAM(penalty=3.0, max_iter=100, reference=0)

        # Clone and change original
        cloned_stack = clone(stack)
        stack.max_iter = 1
        stack.set_params(penalty=1.0)

        # Check clone
        assert cloned_stack.max_iter == 100
        assert cloned_stack.penalty == 3.0
        assert cloned_stack.reference == 0

    def test_that_get_and_set_params_works(self):
        stack = StackingGAM(penalty=2.0, solver="lbfgsb")

        assert {"penalty": 2.0, "solver": "lbfgsb", "reference": -1}.items() <= stack.get_params().items()

        stack.set_params(reference=0)
        assert stack.get_params()["reference"] == 0

    def test_that_sklearn_cross_val_score_works(self):
        X, L, _ = switching_experts(21, num_samples=500)
        B = SplineTransformer(n_knots=5, include_bias=False).fit_transform(X)

        cv = KFold(n_splits=5, shuffle=True, random_state=42)
        scores = cross_val_score(StackingGAM(), B, L, cv=cv)

        equal_weights = np.mean(mixture_log_density(L, np.full_like(L, 0.5)))
        assert scores.mean() > equal_weights

    def test_that_sklearn_grid_search_works_over_penalties(self):
        X, L, _ = switching_experts(22, num_samples=500)
        B = SplineTransformer(n_knots=5, include_bias=False).fit_transform(X)

        cv = KFold(n_splits=5, shuffle=True, random_state=42)
        search = GridSearchCV(
            StackingGAM(),
            param_grid={"penalty": [0.1, 1, 1e6]},
            scoring=None,
            n_jobs=1,
            cv=cv,
        )

        search.fit(B, L)

        # A huge penalty removes the covariate effect, which is never best here
        assert search.best_params_["penalty"] != 1e6
        assert hasattr(search.best_estimator_, "coef_")


if __name__ == "__main__":
    pytest.main(args=[__file__, "-v", "--capture=sys"])
