"""Maximum-likelihood estimation of Poisson regression coefficients.

:func:`fit` minimises the guarded negative log-likelihood from
:mod:`poisson_effects.likelihood` with a trust-region Newton method
(``trust-exact``), using the analytic score and Hessian.  The objective
is smooth and convex in ``β``, so the local minimiser is also the
global one.

Column scaling
--------------
Covariates on their natural scale (age in years, its square in the
thousands) make ``exp(X β)`` overflow after a single unscaled step.  The
optimiser therefore works on ``Z = X T``, where ``T`` centres and scales
every non-constant column (the intercept absorbs the centring), and the
solution is mapped back with ``β = T γ``.  The Hessian and standard
errors are always computed on the original ``X``.

Standard errors
---------------
At the optimum ``β̂`` the Hessian ``H`` of the negative log-likelihood
is obtained either in closed form (``X' diag(λ̂) X``) or by finite
differences of the score, depending on :func:`get_hessian_method`.  The
standard errors are ``sqrt(diag(H⁻¹))``.  A rank-deficient design
(collinear covariates, a full set of dummies next to the intercept)
makes ``H`` singular; that is reported through
:class:`~poisson_effects.exceptions.SingularHessianError` rather than
papered over.

Convergence
-----------
Hitting the iteration cap, or a trust region that collapses without
progress, is not fatal: the fit is still returned with
``converged=False`` and a
:class:`~poisson_effects.exceptions.NonConvergenceWarning` is issued so
callers can decide how to react.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Iterable, Sequence
from typing import Any

import numpy as np
from joblib import Parallel, delayed
from scipy.optimize import minimize

from ._config import get_hessian_method, get_maxiter
from ._results import FittedModel
from ._typing import ArrayLike
from .design import DesignMatrix
from .exceptions import (
    DimensionMismatchError,
    NonConvergenceWarning,
    SingularHessianError,
)
from .likelihood import hessian as analytic_hessian
from .likelihood import (
    log_likelihood,
    neg_score,
    numerical_hessian,
    regression_log_likelihood,
    regression_neg_log_likelihood,
)

logger = logging.getLogger(__name__)

_VALID_ON_SINGULAR = ("raise", "nan")

# ------------------------------------------------------------------ #
# Input validation
# ------------------------------------------------------------------ #


def _validate_outcome(outcome: Any) -> np.ndarray:
    """Return *outcome* as a float vector of non-negative whole numbers."""
    y = np.asarray(outcome, dtype=float)
    if y.ndim == 2 and 1 in y.shape:
        y = y.ravel()
    if y.ndim != 1:
        raise ValueError(f"Outcome must be 1-D, got shape {y.shape}.")
    if y.size == 0:
        raise ValueError("Outcome vector is empty.")
    if not np.all(np.isfinite(y)):
        raise ValueError("Outcome contains NaN or infinite values.")
    if np.any(y < 0):
        raise ValueError("Outcome contains negative counts.")
    if np.any(y != np.floor(y)):
        raise ValueError("Outcome contains non-integer values.")
    return y


def _unpack_design(
    X: Any, feature_names: Sequence[str] | None
) -> tuple[np.ndarray, tuple[str, ...] | None]:
    if isinstance(X, DesignMatrix):
        names = tuple(feature_names) if feature_names is not None else X.columns
        return X.matrix, names
    arr = np.asarray(X, dtype=float)
    if arr.ndim == 1:
        arr = arr[:, None]
    if arr.ndim != 2:
        raise ValueError(f"Design matrix must be 2-D, got shape {arr.shape}.")
    if not np.all(np.isfinite(arr)):
        raise ValueError("Design matrix contains NaN or infinite values.")
    names = tuple(feature_names) if feature_names is not None else None
    return arr, names


def _check_dimensions(
    y: np.ndarray,
    X: np.ndarray,
    initial: np.ndarray | None,
    feature_names: tuple[str, ...] | None,
) -> None:
    n, p = X.shape
    if y.shape[0] != n:
        raise DimensionMismatchError(
            f"Outcome has {y.shape[0]} observations but the design matrix "
            f"has {n} rows."
        )
    if p == 0:
        raise ValueError("Design matrix has no columns.")
    if initial is not None and initial.shape != (p,):
        raise DimensionMismatchError(
            f"Initial coefficients have shape {initial.shape}; expected ({p},)."
        )
    if feature_names is not None and len(feature_names) != p:
        raise DimensionMismatchError(
            f"{len(feature_names)} feature names given for {p} columns."
        )


# ------------------------------------------------------------------ #
# Objective
# ------------------------------------------------------------------ #
#
# The optimiser sees the negative log-likelihood divided by n, so the
# minimiser is unchanged and ``gtol`` is a per-observation tolerance.


def _mean_objective(beta: np.ndarray, y: np.ndarray, X: np.ndarray) -> float:
    return regression_neg_log_likelihood(beta, y, X) / y.shape[0]


def _mean_gradient(beta: np.ndarray, y: np.ndarray, X: np.ndarray) -> np.ndarray:
    return neg_score(beta, y, X) / y.shape[0]


def _mean_hessian(beta: np.ndarray, y: np.ndarray, X: np.ndarray) -> np.ndarray:
    return analytic_hessian(beta, X) / y.shape[0]


def _column_transform(X: np.ndarray) -> np.ndarray:
    """Return ``T`` such that the columns of ``X @ T`` are standardised.

    Constant columns are left alone.  When a non-zero constant column
    exists it carries the centring of the others; without one the
    columns are only divided by their root mean square.  Since
    ``X β = (X T) γ`` whenever ``β = T γ``, fitting ``γ`` on ``X T`` and
    mapping back gives the same optimum.
    """
    p = X.shape[1]
    T = np.eye(p)
    spread = np.ptp(X, axis=0)
    anchors = np.flatnonzero((spread == 0) & (X[0] != 0))
    anchor = int(anchors[0]) if anchors.size else None
    for j in np.flatnonzero(spread > 0):
        col = X[:, j]
        if anchor is None:
            T[j, j] = 1.0 / np.sqrt(np.mean(col**2))
            continue
        scale = col.std()
        T[j, j] = 1.0 / scale
        T[anchor, j] = -col.mean() / (scale * X[0, anchor])
    return T


# ------------------------------------------------------------------ #
# Standard errors
# ------------------------------------------------------------------ #


def _standard_errors(H: np.ndarray, X: np.ndarray) -> np.ndarray | None:
    """``sqrt(diag(H⁻¹))``, or ``None`` when *H* is not invertible.

    With every rate positive, ``X' diag(λ) X`` has the rank of *X*, so
    a rank-deficient design is detected on *X* directly; the rounding
    noise in the assembled *H* can hide an exact zero pivot.
    """
    p = H.shape[0]
    if np.linalg.matrix_rank(X) < p or not np.all(np.isfinite(H)):
        return None
    try:
        cov = np.linalg.inv(H)
    except np.linalg.LinAlgError:
        return None
    var = np.diag(cov)
    if not np.all(np.isfinite(var)) or np.any(var <= 0):
        return None
    return np.asarray(np.sqrt(var))


# ------------------------------------------------------------------ #
# Public API
# ------------------------------------------------------------------ #


def fit(
    outcome: ArrayLike,
    X: Any,
    initial_coefficients: Any = None,
    *,
    feature_names: Sequence[str] | None = None,
    hessian: str | None = None,
    maxiter: int | None = None,
    gtol: float = 1e-6,
    on_singular: str = "raise",
) -> FittedModel:
    """Fit a Poisson regression by maximum likelihood.

    Args:
        outcome: Non-negative integer counts, shape ``(n,)``.
        X: Design matrix ``(n, p)`` (ndarray, array-like, or
            :class:`~poisson_effects.design.DesignMatrix`).  Include the
            intercept column explicitly.
        initial_coefficients: Starting point for the optimiser,
            shape ``(p,)``.  Defaults to zeros.
        feature_names: Labels for the coefficients.  Defaults to the
            :class:`DesignMatrix` column names, else ``x0 … x{p-1}``.
        hessian: ``"analytic"``, ``"numeric"`` or ``"auto"``.
            ``None`` uses :func:`~poisson_effects.get_hessian_method`.
        maxiter: Optimiser iteration cap.  ``None`` uses
            :func:`~poisson_effects.get_maxiter`.
        gtol: Tolerance on the norm of the per-observation gradient
            in the scaled coordinates.
        on_singular: ``"raise"`` to raise
            :class:`SingularHessianError` when the Hessian cannot be
            inverted, ``"nan"`` to return the fit with NaN standard
            errors and log a warning.

    Returns:
        A :class:`FittedModel`.

    Raises:
        DimensionMismatchError: Outcome length differs from the row
            count, or *initial_coefficients* / *feature_names* length
            differs from the column count.  Raised before optimising.
        ValueError: Empty input, invalid counts, or a bad option.
        SingularHessianError: The Hessian at the optimum is singular
            and ``on_singular="raise"``.
    """
    if on_singular not in _VALID_ON_SINGULAR:
        raise ValueError(
            f"on_singular must be one of {_VALID_ON_SINGULAR}, got {on_singular!r}."
        )
    method = (hessian or get_hessian_method()).strip().lower()
    if method == "auto":
        method = "analytic"
    if method not in ("analytic", "numeric"):
        raise ValueError(
            f"Unknown Hessian method {hessian!r}. "
            "Choose from: ['analytic', 'auto', 'numeric']"
        )
    maxiter = get_maxiter() if maxiter is None else int(maxiter)
    if maxiter < 1:
        raise ValueError(f"maxiter must be positive, got {maxiter}.")

    y = _validate_outcome(outcome)
    X_arr, names = _unpack_design(X, feature_names)
    beta0 = (
        None
        if initial_coefficients is None
        else np.asarray(initial_coefficients, dtype=float).ravel()
    )
    _check_dimensions(y, X_arr, beta0, names)
    n, p = X_arr.shape
    if beta0 is None:
        beta0 = np.zeros(p)

    logger.debug("Fitting Poisson regression: n=%d, p=%d, maxiter=%d", n, p, maxiter)

    T = _column_transform(X_arr)
    Z = X_arr @ T
    result = minimize(
        _mean_objective,
        np.linalg.solve(T, beta0),
        args=(y, Z),
        method="trust-exact",
        jac=_mean_gradient,
        hess=_mean_hessian,
        options={"maxiter": maxiter, "gtol": gtol},
    )
    beta_hat = np.asarray(T @ result.x, dtype=float)
    converged = bool(result.success)
    message = str(result.message)
    n_iter = int(getattr(result, "nit", 0))
    llf = regression_log_likelihood(beta_hat, y, X_arr)

    logger.debug(
        "Optimiser finished after %d iterations: converged=%s, llf=%.6f (%s)",
        n_iter,
        converged,
        llf,
        message,
    )

    if not converged:
        warnings.warn(
            f"Poisson regression did not converge after {n_iter} iterations: "
            f"{message}",
            NonConvergenceWarning,
            stacklevel=2,
        )

    if method == "analytic":
        H = analytic_hessian(beta_hat, X_arr)
    else:
        H = numerical_hessian(neg_score, beta_hat, args=(y, X_arr))

    se = _standard_errors(H, X_arr)
    singular = se is None
    if singular:
        se = np.full(p, np.nan)

    fitted = FittedModel(
        coefficients=beta_hat,
        standard_errors=se,
        log_likelihood=llf,
        converged=converged,
        hessian=H,
        n_iterations=n_iter,
        n_observations=n,
        feature_names=names or (),
        message=message,
    )

    if singular:
        msg = (
            "Hessian at the optimum is singular; the design matrix is "
            "probably rank-deficient (collinear columns or a dummy for "
            "every level alongside the intercept)."
        )
        if on_singular == "raise":
            raise SingularHessianError(msg, fitted=fitted)
        logger.warning("%s Standard errors set to NaN.", msg)

    return fitted


def fit_simple_poisson(outcome: ArrayLike) -> FittedModel:
    """Closed-form fit of an intercept-only Poisson model.

    The MLE of a single common rate is the sample mean, so
    ``β̂ = ln(ȳ)`` and ``se(β̂) = 1 / sqrt(n ȳ)``.  This matches
    ``fit(outcome, np.ones((n, 1)))`` up to optimiser tolerance.

    When every count is zero the optimum lies on the boundary
    ``λ → 0``: the coefficient is ``-inf``, its standard error NaN and
    the log-likelihood 0.

    Args:
        outcome: Non-negative integer counts.

    Returns:
        A :class:`FittedModel` with a single ``Intercept`` coefficient.
    """
    y = _validate_outcome(outcome)
    n = y.shape[0]
    mean = float(y.mean())

    if mean == 0.0:
        return FittedModel(
            coefficients=np.array([-np.inf]),
            standard_errors=np.array([np.nan]),
            log_likelihood=0.0,
            converged=True,
            hessian=None,
            n_observations=n,
            feature_names=("Intercept",),
            message="closed form (boundary optimum at rate 0)",
        )

    return FittedModel(
        coefficients=np.array([np.log(mean)]),
        standard_errors=np.array([1.0 / np.sqrt(n * mean)]),
        log_likelihood=log_likelihood(y, mean),
        converged=True,
        hessian=np.array([[n * mean]]),
        n_observations=n,
        feature_names=("Intercept",),
        message="closed form",
    )


def fit_many(
    datasets: Iterable[tuple[Any, Any]],
    *,
    n_jobs: int = 1,
    **fit_kwargs: Any,
) -> list[FittedModel]:
    """Fit several independent ``(outcome, X)`` data sets.

    Fits share no state, so with ``n_jobs != 1`` they run concurrently
    in joblib threads (NumPy/SciPy release the GIL in the heavy
    linear-algebra calls).  Results are returned in input order.
    Errors from any single fit propagate.

    Args:
        datasets: Iterable of ``(outcome, X)`` pairs.
        n_jobs: Parallel jobs; ``1`` fits sequentially, ``-1`` uses
            all cores.
        **fit_kwargs: Forwarded to :func:`fit`.

    Returns:
        One :class:`FittedModel` per data set.
    """
    pairs = list(datasets)
    if n_jobs == 1:
        return [fit(y, X, **fit_kwargs) for y, X in pairs]

    fits = Parallel(n_jobs=n_jobs, prefer="threads")(
        delayed(fit)(y, X, **fit_kwargs) for y, X in pairs
    )
    return list(fits)
