"""Tests for maximum-likelihood fitting."""

import logging
import warnings

import numpy as np
import pandas as pd
import pytest

import poisson_effects._config as _cfg
import poisson_effects.estimator as estimator
from poisson_effects import (
    DimensionMismatchError,
    FittedModel,
    NonConvergenceWarning,
    SingularHessianError,
    build_design_matrix,
    fit,
    fit_many,
    fit_simple_poisson,
    glm_cross_check,
)

# ── Fixtures ─────────────────────────────────────────────────────── #


def _two_group_data():
    X = np.array([[1.0, 0.0], [1.0, 0.0], [1.0, 1.0], [1.0, 1.0]])
    y = np.array([1, 1, 3, 3])
    return y, X


def _make_count_data(n=300, seed=42):
    rng = np.random.default_rng(seed)
    x = rng.standard_normal(n)
    treat = rng.binomial(1, 0.5, size=n).astype(float)
    X = np.column_stack([np.ones(n), x, treat])
    y = rng.poisson(np.exp(0.2 + 0.4 * x + 0.3 * treat))
    return y, X


@pytest.fixture(autouse=True)
def _reset_config():
    _cfg._hessian_override = None
    _cfg._maxiter_override = None
    yield
    _cfg._hessian_override = None
    _cfg._maxiter_override = None


# ── Concrete scenarios ───────────────────────────────────────────── #


class TestInterceptOnly:
    def test_recovers_log_mean(self):
        y = np.array([0, 1, 2, 3, 4])
        fitted = fit(y, np.ones((5, 1)))
        assert fitted.converged
        assert fitted.coefficients[0] == pytest.approx(np.log(2.0), abs=1e-6)
        np.testing.assert_allclose(fitted.rates(np.ones((5, 1))), 2.0, rtol=1e-6)

    def test_matches_closed_form(self):
        rng = np.random.default_rng(42)
        y = rng.poisson(4.0, size=100)
        general = fit(y, np.ones((100, 1)))
        shortcut = fit_simple_poisson(y)
        np.testing.assert_allclose(
            general.coefficients, shortcut.coefficients, atol=1e-6
        )
        np.testing.assert_allclose(
            general.standard_errors, shortcut.standard_errors, rtol=1e-5
        )
        assert general.log_likelihood == pytest.approx(
            shortcut.log_likelihood, abs=1e-8
        )

    def test_closed_form_standard_error(self):
        y = np.array([0, 1, 2, 3, 4])
        fitted = fit_simple_poisson(y)
        assert fitted.standard_errors[0] == pytest.approx(1.0 / np.sqrt(10.0))
        assert fitted.feature_names == ("Intercept",)


class TestTwoGroups:
    def test_group_rates(self):
        y, X = _two_group_data()
        fitted = fit(y, X)
        assert fitted.converged
        np.testing.assert_allclose(
            fitted.rates(X), [1.0, 1.0, 3.0, 3.0], rtol=1e-5
        )
        np.testing.assert_allclose(
            fitted.coefficients, [0.0, np.log(3.0)], atol=1e-5
        )

    def test_standard_errors_match_closed_form(self):
        y, X = _two_group_data()
        fitted = fit(y, X)
        # Intercept: 1/sqrt(Σy in group 0); contrast adds both groups.
        expected = [1.0 / np.sqrt(2.0), np.sqrt(1.0 / 2.0 + 1.0 / 6.0)]
        np.testing.assert_allclose(fitted.standard_errors, expected, rtol=1e-4)


# ── Agreement with statsmodels ───────────────────────────────────── #


class TestAgainstStatsmodels:
    def test_params_bse_llf(self):
        y, X = _make_count_data()
        fitted = fit(y, X)
        ref = glm_cross_check(y, X)
        np.testing.assert_allclose(fitted.coefficients, ref["params"], atol=1e-5)
        np.testing.assert_allclose(fitted.standard_errors, ref["bse"], rtol=1e-4)
        assert fitted.log_likelihood == pytest.approx(ref["llf"], abs=1e-6)

    def test_numeric_hessian_agrees_with_analytic(self):
        y, X = _make_count_data()
        analytic = fit(y, X, hessian="analytic")
        numeric = fit(y, X, hessian="numeric")
        np.testing.assert_allclose(
            numeric.standard_errors, analytic.standard_errors, rtol=1e-3
        )


# ── Determinism and defaults ─────────────────────────────────────── #


class TestDeterminism:
    def test_idempotent(self):
        y, X = _make_count_data()
        a = fit(y, X)
        b = fit(y, X)
        np.testing.assert_array_equal(a.coefficients, b.coefficients)
        np.testing.assert_array_equal(a.standard_errors, b.standard_errors)
        assert a.log_likelihood == b.log_likelihood
        assert a.converged == b.converged

    def test_default_start_is_zero_vector(self):
        y, X = _make_count_data()
        a = fit(y, X)
        b = fit(y, X, initial_coefficients=np.zeros(3))
        np.testing.assert_array_equal(a.coefficients, b.coefficients)

    def test_custom_start_reaches_same_optimum(self):
        y, X = _make_count_data()
        a = fit(y, X)
        b = fit(y, X, initial_coefficients=[1.0, -1.0, 0.5])
        np.testing.assert_allclose(a.coefficients, b.coefficients, atol=1e-5)

    def test_result_metadata(self):
        y, X = _make_count_data()
        fitted = fit(y, X)
        assert isinstance(fitted, FittedModel)
        assert fitted.n_observations == 300
        assert fitted.n_params == 3
        assert fitted.feature_names == ("x0", "x1", "x2")
        assert fitted.hessian.shape == (3, 3)
        assert fitted.n_iterations > 0

    def test_design_matrix_names_propagate(self):
        df = pd.DataFrame({"x": [0.1, 0.5, 0.9, 1.3, 1.7, 2.1], "y": [0, 1, 1, 2, 4, 5]})
        dm = build_design_matrix(df, numeric=["x"])
        fitted = fit(df["y"], dm)
        assert fitted.feature_names == ("Intercept", "x")

    def test_explicit_feature_names(self):
        y, X = _two_group_data()
        fitted = fit(y, X, feature_names=["const", "treated"])
        assert fitted.feature_names == ("const", "treated")


# ── Covariates on their natural scale ────────────────────────────── #


class TestColumnScale:
    @staticmethod
    def _firms(n=1000, seed=7):
        rng = np.random.default_rng(seed)
        age = rng.uniform(9.0, 49.0, size=n)
        iscustomer = rng.binomial(1, 0.4, size=n)
        eta = -0.6 + 0.13 * age - 0.002 * age**2 + 0.2 * iscustomer
        return pd.DataFrame(
            {"y": rng.poisson(np.exp(eta)), "age": age, "iscustomer": iscustomer}
        )

    def test_age_in_years_matches_glm(self):
        df = self._firms()
        dm = build_design_matrix(df, numeric=["age", "iscustomer"], squared=["age"])
        fitted = fit(df["y"], dm)
        ref = glm_cross_check(df["y"], dm)
        assert fitted.converged
        assert fitted.n_iterations > 0
        np.testing.assert_allclose(fitted.coefficients, ref["params"], rtol=1e-3, atol=1e-6)
        np.testing.assert_allclose(fitted.standard_errors, ref["bse"], rtol=1e-3)
        assert fitted.log_likelihood == pytest.approx(ref["llf"], abs=1e-4)
        assert fitted.coefficients[dm.index_of("age^2")] < 0

    def test_start_on_natural_scale(self):
        df = self._firms()
        dm = build_design_matrix(df, numeric=["age", "iscustomer"], squared=["age"])
        a = fit(df["y"], dm)
        b = fit(df["y"], dm, initial_coefficients=[0.0, 0.1, 0.0, 0.0])
        np.testing.assert_allclose(a.coefficients, b.coefficients, rtol=1e-4, atol=1e-6)

    def test_large_column_without_intercept(self):
        rng = np.random.default_rng(3)
        age = rng.uniform(9.0, 49.0, size=400)
        y = rng.poisson(np.exp(0.04 * age))
        X = age[:, None]
        fitted = fit(y, X)
        ref = glm_cross_check(y, X)
        assert fitted.converged
        np.testing.assert_allclose(fitted.coefficients, ref["params"], rtol=1e-5)

    def test_transform_standardises_non_constant_columns(self):
        rng = np.random.default_rng(0)
        age = rng.uniform(9.0, 49.0, size=200)
        X = np.column_stack([np.ones(200), age, age**2])
        Z = X @ estimator._column_transform(X)
        np.testing.assert_array_equal(Z[:, 0], 1.0)
        np.testing.assert_allclose(Z[:, 1:].mean(axis=0), 0.0, atol=1e-10)
        np.testing.assert_allclose(Z[:, 1:].std(axis=0), 1.0)

    def test_transform_is_identity_for_constant_design(self):
        T = estimator._column_transform(np.ones((5, 1)))
        np.testing.assert_array_equal(T, np.eye(1))


# ── Boundary: all-zero outcome ───────────────────────────────────── #


class TestAllZeroOutcome:
    def test_general_path_no_nan(self):
        y = np.zeros(5, dtype=int)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", NonConvergenceWarning)
            fitted = fit(y, np.ones((5, 1)))
        assert np.all(np.isfinite(fitted.coefficients))
        assert np.isfinite(fitted.log_likelihood)
        assert np.all(fitted.rates(np.ones((5, 1))) < 1e-3)
        assert -1e-2 < fitted.log_likelihood <= 0.0

    def test_closed_form_boundary(self):
        fitted = fit_simple_poisson(np.zeros(4))
        assert fitted.coefficients[0] == -np.inf
        assert np.isnan(fitted.standard_errors[0])
        assert fitted.log_likelihood == 0.0
        assert fitted.converged
        assert fitted.hessian is None


# ── Error surface ────────────────────────────────────────────────── #


class TestDimensionChecks:
    @pytest.fixture
    def _no_optimiser(self, monkeypatch):
        def _fail(*args, **kwargs):
            raise AssertionError("optimiser must not be called")

        monkeypatch.setattr(estimator, "minimize", _fail)

    @pytest.mark.usefixtures("_no_optimiser")
    def test_outcome_length_mismatch(self):
        with pytest.raises(DimensionMismatchError, match="4 rows"):
            fit([1, 2, 3], np.ones((4, 1)))

    @pytest.mark.usefixtures("_no_optimiser")
    def test_initial_coefficient_length_mismatch(self):
        y, X = _two_group_data()
        with pytest.raises(DimensionMismatchError, match="expected"):
            fit(y, X, initial_coefficients=[0.0, 0.0, 0.0])

    @pytest.mark.usefixtures("_no_optimiser")
    def test_feature_name_length_mismatch(self):
        y, X = _two_group_data()
        with pytest.raises(DimensionMismatchError):
            fit(y, X, feature_names=["only_one"])

    def test_is_a_value_error(self):
        with pytest.raises(ValueError):
            fit([1, 2, 3], np.ones((4, 1)))


class TestOutcomeValidation:
    @pytest.mark.parametrize(
        "y, match",
        [
            ([0, -1, 2], "negative"),
            ([0.5, 1, 2], "non-integer"),
            ([np.nan, 1, 2], "NaN"),
            ([], "empty"),
        ],
    )
    def test_rejects_invalid_counts(self, y, match):
        X = np.ones((max(len(y), 1), 1))
        with pytest.raises(ValueError, match=match):
            fit(y, X)

    def test_accepts_whole_floats(self):
        fitted = fit(np.array([0.0, 1.0, 2.0, 3.0, 4.0]), np.ones((5, 1)))
        assert fitted.coefficients[0] == pytest.approx(np.log(2.0), abs=1e-6)

    def test_rejects_unknown_on_singular(self):
        y, X = _two_group_data()
        with pytest.raises(ValueError, match="on_singular"):
            fit(y, X, on_singular="ignore")

    def test_rejects_unknown_hessian_method(self):
        y, X = _two_group_data()
        with pytest.raises(ValueError, match="Hessian method"):
            fit(y, X, hessian="bfgs")


class TestSingularHessian:
    @staticmethod
    def _collinear():
        # Both dummies alongside the intercept: d0 + d1 == 1.
        d = np.array([0, 0, 1, 1, 0, 1], dtype=float)
        X = np.column_stack([np.ones(6), d, 1.0 - d])
        y = np.array([1, 2, 3, 4, 1, 5])
        return y, X

    def test_raises_with_partial_fit(self):
        y, X = self._collinear()
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", NonConvergenceWarning)
            with pytest.raises(SingularHessianError) as excinfo:
                fit(y, X)
        partial = excinfo.value.fitted
        assert isinstance(partial, FittedModel)
        assert np.all(np.isnan(partial.standard_errors))
        assert np.all(np.isfinite(partial.coefficients))
        assert not partial.has_standard_errors

    def test_is_a_linalg_error(self):
        y, X = self._collinear()
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", NonConvergenceWarning)
            with pytest.raises(np.linalg.LinAlgError):
                fit(y, X)

    def test_nan_mode_returns_and_logs(self, caplog):
        y, X = self._collinear()
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", NonConvergenceWarning)
            with caplog.at_level(logging.WARNING, logger="poisson_effects"):
                fitted = fit(y, X, on_singular="nan")
        assert np.all(np.isnan(fitted.standard_errors))
        assert "singular" in caplog.text


class TestNonConvergence:
    def test_iteration_cap_sets_flag_and_warns(self):
        y, X = _make_count_data()
        with pytest.warns(NonConvergenceWarning, match="did not converge"):
            fitted = fit(y, X, maxiter=1)
        assert not fitted.converged
        assert fitted.n_iterations <= 1
        assert np.all(np.isfinite(fitted.coefficients))

    def test_config_maxiter_is_used(self):
        y, X = _make_count_data()
        _cfg.set_maxiter(1)
        with pytest.warns(NonConvergenceWarning):
            fitted = fit(y, X)
        assert not fitted.converged


class TestHessianConfig:
    def test_numeric_method_from_config(self, monkeypatch):
        calls = []
        original = estimator.numerical_hessian

        def _spy(*args, **kwargs):
            calls.append(1)
            return original(*args, **kwargs)

        monkeypatch.setattr(estimator, "numerical_hessian", _spy)
        y, X = _two_group_data()
        _cfg.set_hessian_method("numeric")
        fit(y, X)
        assert calls

    def test_analytic_is_default(self, monkeypatch):
        monkeypatch.delenv("POISSON_EFFECTS_HESSIAN", raising=False)

        def _fail(*args, **kwargs):
            raise AssertionError("numeric Hessian should not be used")

        monkeypatch.setattr(estimator, "numerical_hessian", _fail)
        y, X = _two_group_data()
        fit(y, X)


class TestFitMany:
    def test_sequential_matches_individual_fits(self):
        datasets = [_make_count_data(seed=s) for s in range(3)]
        fits = fit_many(datasets)
        for (y, X), fitted in zip(datasets, fits):
            np.testing.assert_array_equal(fitted.coefficients, fit(y, X).coefficients)

    def test_threads_match_sequential(self):
        datasets = [_make_count_data(seed=s) for s in range(4)]
        seq = fit_many(datasets)
        par = fit_many(datasets, n_jobs=2)
        for a, b in zip(seq, par):
            np.testing.assert_allclose(a.coefficients, b.coefficients, rtol=1e-12)

    def test_forwards_kwargs(self):
        y, X = _two_group_data()
        (fitted,) = fit_many([(y, X)], feature_names=["a", "b"])
        assert fitted.feature_names == ("a", "b")
