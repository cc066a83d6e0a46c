"""Post-fit inference and goodness-of-fit for Poisson regressions.

Everything here consumes a completed :class:`FittedModel`; nothing
re-estimates the coefficients except :func:`glm_cross_check`, which
fits the same model through statsmodels' IRLS so that the custom
maximum-likelihood path can be compared against a reference
implementation.

Wald inference
--------------
For each coefficient ``z = β̂ / se`` is compared with the standard
normal distribution: the two-sided p-value is ``2 · (1 − Φ(|z|))`` and
the ``1 − α`` interval is ``β̂ ± z_{1−α/2} · se``.  When the standard
errors are unavailable (singular Hessian) every derived column is NaN.

Goodness of fit
---------------
* **Deviance** ``2 Σ [y ln(y/μ̂) − (y − μ̂)]`` with ``0 · ln 0 = 0``.
* **Pearson χ²** ``Σ (y − μ̂)² / μ̂``.
* **Dispersion** ``χ² / (n − p)``; values well above 1 point to
  overdispersion (flagged above 1.5), in which case the Poisson
  standard errors are too small.
* **AIC** ``2p − 2ℓ`` and **BIC** ``p ln n − 2ℓ``.
"""

from __future__ import annotations

import logging
import warnings
from typing import Any

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy import stats
from scipy.special import xlogy
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning as SmConvergenceWarning,
)

from ._results import FittedModel
from ._typing import ArrayLike
from .design import DesignMatrix
from .exceptions import DimensionMismatchError

logger = logging.getLogger(__name__)

_OVERDISPERSION_THRESHOLD = 1.5


def _matrix(X: Any) -> np.ndarray:
    if isinstance(X, DesignMatrix):
        return X.matrix
    arr = np.asarray(X, dtype=float)
    return arr[:, None] if arr.ndim == 1 else arr


def wald_table(fitted: FittedModel, alpha: float = 0.05) -> pd.DataFrame:
    """Coefficient table with Wald z statistics.

    Args:
        fitted: A completed fit.
        alpha: ``1 − confidence level`` of the interval.

    Returns:
        DataFrame indexed by feature name with columns ``coef``,
        ``std_err``, ``z``, ``p_value``, ``ci_lower`` and ``ci_upper``.
    """
    if not 0.0 < alpha < 1.0:
        raise ValueError(f"alpha must be in (0, 1), got {alpha}.")
    coef = np.asarray(fitted.coefficients)
    se = np.asarray(fitted.standard_errors)
    with np.errstate(divide="ignore", invalid="ignore"):
        z = coef / se
    p_value = 2.0 * stats.norm.sf(np.abs(z))
    crit = stats.norm.ppf(1.0 - alpha / 2.0)
    return pd.DataFrame(
        {
            "coef": coef,
            "std_err": se,
            "z": z,
            "p_value": p_value,
            "ci_lower": coef - crit * se,
            "ci_upper": coef + crit * se,
        },
        index=pd.Index(fitted.feature_names, name="feature"),
    )


def goodness_of_fit(
    fitted: FittedModel, outcome: ArrayLike, X: Any
) -> dict[str, Any]:
    """Deviance, Pearson χ², dispersion and information criteria.

    Args:
        fitted: A completed fit.
        outcome: Counts the model was fit to.
        X: Design matrix the model was fit to.

    Returns:
        Dict with keys ``deviance``, ``pearson_chi2``, ``df_resid``,
        ``dispersion``, ``overdispersed``, ``aic``, ``bic`` and
        ``log_likelihood``.
    """
    y = np.asarray(outcome, dtype=float).ravel()
    X_arr = _matrix(X)
    if y.shape[0] != X_arr.shape[0]:
        raise DimensionMismatchError(
            f"Outcome has {y.shape[0]} observations but the design matrix "
            f"has {X_arr.shape[0]} rows."
        )
    mu = fitted.rates(X_arr)
    n, p = y.shape[0], fitted.n_params

    deviance = float(2.0 * np.sum(xlogy(y, y) - xlogy(y, mu) - (y - mu)))
    pearson_chi2 = float(np.sum((y - mu) ** 2 / mu))
    df_resid = n - p
    dispersion = pearson_chi2 / df_resid if df_resid > 0 else float("nan")
    llf = fitted.log_likelihood

    return {
        "deviance": deviance,
        "pearson_chi2": pearson_chi2,
        "df_resid": df_resid,
        "dispersion": dispersion,
        "overdispersed": bool(dispersion > _OVERDISPERSION_THRESHOLD),
        "aic": 2.0 * p - 2.0 * llf,
        "bic": p * np.log(n) - 2.0 * llf,
        "log_likelihood": llf,
    }


def glm_cross_check(outcome: ArrayLike, X: Any) -> dict[str, Any]:
    """Fit the same model with statsmodels' Poisson GLM.

    The design matrix is passed through unchanged, so it must already
    contain its intercept column.

    Returns:
        Dict with ``params``, ``bse`` (ndarrays), ``llf`` and
        ``converged``.
    """
    y = np.asarray(outcome, dtype=float).ravel()
    X_arr = _matrix(X)
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=SmConvergenceWarning)
        model = sm.GLM(y, X_arr, family=sm.families.Poisson()).fit(disp=0)
    logger.debug("statsmodels GLM cross-check: llf=%.6f", model.llf)
    return {
        "params": np.asarray(model.params),
        "bse": np.asarray(model.bse),
        "llf": float(model.llf),
        "converged": bool(model.converged),
    }
