"""Counterfactual predictions and average treatment effects.

Given a fitted Poisson regression, the effect of a binary treatment is
estimated by predicting every unit twice: once with the treatment
column forced to 0 (``X₀``) and once forced to 1 (``X₁``), keeping all
other covariates as observed.  The average treatment effect is

    ATE = mean( exp(X₁ β̂) − exp(X₀ β̂) )

on the count scale.  Unlike the raw coefficient (a log rate ratio),
this is an effect in outcome units, e.g. "patents per firm".

:func:`average_treatment_effect` is a pure function of already-fitted
coefficients.  :func:`treatment_effect` adds an optional nonparametric
bootstrap that refits the model on resampled rows to attach a standard
error and a percentile interval to the point estimate.
"""

from __future__ import annotations

import logging
import warnings
from typing import Any

import numpy as np
from joblib import Parallel, delayed

from ._results import FittedModel, TreatmentEffectResult
from ._typing import ArrayLike
from .design import DesignMatrix
from .estimator import _validate_outcome, fit
from .exceptions import DimensionMismatchError, NonConvergenceWarning
from .likelihood import linear_rates

logger = logging.getLogger(__name__)


def _as_matrix(X: Any) -> np.ndarray:
    if isinstance(X, DesignMatrix):
        return X.matrix
    arr = np.asarray(X, dtype=float)
    if arr.ndim == 1:
        arr = arr[:, None]
    if arr.ndim != 2:
        raise ValueError(f"Design matrix must be 2-D, got shape {arr.shape}.")
    return arr


def _resolve_column(
    column: int | str, p: int, names: tuple[str, ...] | None = None
) -> int:
    """Map *column* to a non-negative index in ``[0, p)``.

    Negative integers count from the end as usual.  A string is looked
    up in *names*.

    Raises:
        IndexError: If the index is out of range or the name unknown.
    """
    if isinstance(column, str):
        if names is None or column not in names:
            raise IndexError(f"Unknown treatment column {column!r}.")
        return names.index(column)
    if isinstance(column, (bool, np.bool_)) or not isinstance(
        column, (int, np.integer)
    ):
        raise TypeError(
            f"Treatment column must be an int or a column name, got "
            f"{type(column).__name__}."
        )
    idx = int(column)
    if not -p <= idx < p:
        raise IndexError(
            f"Treatment column {idx} is out of range for a design with {p} columns."
        )
    return idx % p


def counterfactual_design(X: Any, column: int, value: float) -> np.ndarray:
    """Copy of *X* with *column* set to *value* in every row.

    Raises:
        IndexError: If *column* is out of range.
    """
    arr = _as_matrix(X)
    idx = _resolve_column(column, arr.shape[1])
    scenario = arr.copy()
    scenario[:, idx] = value
    return scenario


def predict_rates(fitted: FittedModel, X: Any) -> np.ndarray:
    """Expected counts ``exp(X β̂)`` for every row of *X*.

    Raises:
        DimensionMismatchError: If *X* and the fit disagree on the
            number of columns.
    """
    arr = _as_matrix(X)
    if arr.shape[1] != fitted.n_params:
        raise DimensionMismatchError(
            f"Design matrix has {arr.shape[1]} columns but the fit has "
            f"{fitted.n_params} coefficients."
        )
    return linear_rates(fitted.coefficients, arr)


def _scenario_rates(
    fitted: FittedModel, X: Any, treatment_column: int | str
) -> tuple[np.ndarray, np.ndarray, int]:
    arr = _as_matrix(X)
    if arr.shape[1] != fitted.n_params:
        raise DimensionMismatchError(
            f"Design matrix has {arr.shape[1]} columns but the fit has "
            f"{fitted.n_params} coefficients."
        )
    names = X.columns if isinstance(X, DesignMatrix) else fitted.feature_names
    idx = _resolve_column(treatment_column, arr.shape[1], names)
    rates_0 = predict_rates(fitted, counterfactual_design(arr, idx, 0.0))
    rates_1 = predict_rates(fitted, counterfactual_design(arr, idx, 1.0))
    return rates_0, rates_1, idx


def average_treatment_effect(
    fitted: FittedModel, X: Any, treatment_column: int | str
) -> float:
    """Average treatment effect ``mean(exp(X₁β̂) − exp(X₀β̂))``.

    Args:
        fitted: Result of :func:`~poisson_effects.fit`.
        X: Design matrix the effect is averaged over (usually the one
            used for fitting).
        treatment_column: Index, or column name when *X* is a
            :class:`DesignMatrix` or the fit carries feature names.

    Returns:
        The effect on the count scale.

    Raises:
        IndexError: If *treatment_column* is out of range.
        DimensionMismatchError: If *X* does not have one column per
            coefficient.
    """
    rates_0, rates_1, _ = _scenario_rates(fitted, X, treatment_column)
    return float(np.mean(rates_1 - rates_0))


def _bootstrap_replicate(
    y: np.ndarray,
    X: np.ndarray,
    rows: np.ndarray,
    column: int,
    start: np.ndarray,
) -> float:
    """Refit on resampled *rows* and return the ATE, or NaN on failure."""
    try:
        with warnings.catch_warnings():
            warnings.filterwarnings("ignore", category=NonConvergenceWarning)
            refit = fit(
                y[rows], X[rows], initial_coefficients=start, on_singular="nan"
            )
    except (ValueError, np.linalg.LinAlgError) as exc:
        logger.debug("Bootstrap replicate failed: %s", exc)
        return float("nan")
    if not refit.converged or not refit.has_standard_errors:
        return float("nan")
    return average_treatment_effect(refit, X[rows], column)


def treatment_effect(
    fitted: FittedModel,
    X: Any,
    treatment_column: int | str,
    *,
    outcome: ArrayLike | None = None,
    n_bootstrap: int = 0,
    seed: int | None = None,
    n_jobs: int = 1,
    alpha: float = 0.05,
) -> TreatmentEffectResult:
    """Average treatment effect with optional bootstrap uncertainty.

    With ``n_bootstrap > 0`` the rows of ``(outcome, X)`` are resampled
    with replacement, the model is refit on each resample (starting
    from ``fitted.coefficients``) and the ATE recomputed.  Replicates
    whose fit fails, does not converge, or is rank-deficient (for
    example a resample in which the treatment column is constant) are
    dropped.

    Args:
        fitted: Result of :func:`~poisson_effects.fit`.
        X: Design matrix used for fitting.
        treatment_column: Index or name of the treatment column.
        outcome: Counts used for fitting; required when
            ``n_bootstrap > 0``.
        n_bootstrap: Number of bootstrap resamples (0 disables).
        seed: Seed for ``np.random.default_rng``.
        n_jobs: Parallel jobs for the replicate refits.
        alpha: ``1 − confidence level`` of the percentile interval.

    Returns:
        A :class:`TreatmentEffectResult`.

    Raises:
        ValueError: If a bootstrap is requested without *outcome*,
            *outcome* is not a vector of counts, or *alpha* is not in
            ``(0, 1)``.
        IndexError: If *treatment_column* is out of range.
    """
    rates_0, rates_1, idx = _scenario_rates(fitted, X, treatment_column)
    effect = float(np.mean(rates_1 - rates_0))

    if n_bootstrap <= 0:
        return TreatmentEffectResult(
            effect=effect,
            treatment_column=idx,
            rates_untreated=rates_0,
            rates_treated=rates_1,
            confidence_level=1.0 - alpha,
        )

    if outcome is None:
        raise ValueError("outcome is required when n_bootstrap > 0.")
    if not 0.0 < alpha < 1.0:
        raise ValueError(f"alpha must be in (0, 1), got {alpha}.")

    arr = _as_matrix(X)
    y = _validate_outcome(outcome)
    if y.shape[0] != arr.shape[0]:
        raise DimensionMismatchError(
            f"Outcome has {y.shape[0]} observations but the design matrix "
            f"has {arr.shape[0]} rows."
        )

    # Draw every resample up front so results do not depend on n_jobs.
    rng = np.random.default_rng(seed)
    n = arr.shape[0]
    resamples = rng.integers(0, n, size=(n_bootstrap, n))
    start = np.asarray(fitted.coefficients)

    if n_jobs == 1:
        draws = [
            _bootstrap_replicate(y, arr, rows, idx, start) for rows in resamples
        ]
    else:
        draws = Parallel(n_jobs=n_jobs, prefer="threads")(
            delayed(_bootstrap_replicate)(y, arr, rows, idx, start)
            for rows in resamples
        )

    effects = np.asarray(draws, dtype=float)
    valid = effects[np.isfinite(effects)]
    n_dropped = n_bootstrap - valid.size
    if n_dropped:
        logger.warning(
            "Dropped %d of %d bootstrap replicates (failed, non-converged or "
            "rank-deficient fits).",
            n_dropped,
            n_bootstrap,
        )

    if valid.size >= 2:
        se = float(np.std(valid, ddof=1))
        lo, hi = np.percentile(valid, [100 * alpha / 2, 100 * (1 - alpha / 2)])
        ci_lower, ci_upper = float(lo), float(hi)
    else:
        se = ci_lower = ci_upper = float("nan")

    logger.debug(
        "Bootstrap ATE: %d valid replicates, se=%.6g, CI=[%.6g, %.6g]",
        valid.size,
        se,
        ci_lower,
        ci_upper,
    )

    return TreatmentEffectResult(
        effect=effect,
        treatment_column=idx,
        rates_untreated=rates_0,
        rates_treated=rates_1,
        standard_error=se,
        ci_lower=ci_lower,
        ci_upper=ci_upper,
        n_bootstrap=int(valid.size),
        confidence_level=1.0 - alpha,
    )
