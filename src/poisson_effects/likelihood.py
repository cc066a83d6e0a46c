"""Poisson log-likelihood, score and Hessian.

For counts ``y_i`` with rates ``λ_i > 0`` the log-likelihood is

    ℓ = Σ_i ( −λ_i + y_i · ln λ_i − ln(y_i!) )

and ``ln(y!)`` is evaluated as ``gammaln(y + 1)`` so that ``ln(0!) = 0``
and large counts do not overflow.  The regression forms compose the
log link ``λ = exp(X β)`` in front of the same formula.

Infeasible rates
----------------
A rate vector containing any entry that is ``≤ 0`` or not finite makes
the whole evaluation infeasible.  Instead of raising, the forward
functions return ``-inf`` and the negated adapters return ``+inf``.  A
minimiser receives an ordinary (if very large) number and backs away
from that region of parameter space.  For the regression form this
means an overflowing ``exp(X β)`` (``inf``) or an underflowing one
(``0``) rejects the entire coefficient vector, not just the offending
row.

The score ``X'(y − λ)`` and the closed-form Hessian of the negative
log-likelihood ``X' diag(λ) X`` are provided for gradient-based
optimisers and standard-error recovery.  :func:`numerical_hessian`
offers a finite-difference alternative.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import numpy as np
from scipy.optimize import approx_fprime
from scipy.special import gammaln


def _rates_feasible(rate: np.ndarray) -> bool:
    return bool(np.all(np.isfinite(rate)) and np.all(rate > 0))


def linear_rates(beta: np.ndarray, X: np.ndarray) -> np.ndarray:
    """Return ``exp(X β)``; overflow yields ``inf`` rather than a warning."""
    with np.errstate(over="ignore", under="ignore", invalid="ignore"):
        return np.asarray(np.exp(X @ beta))


# ------------------------------------------------------------------ #
# Rate form
# ------------------------------------------------------------------ #


def log_likelihood(outcome: np.ndarray, rate: np.ndarray | float) -> float:
    """Poisson log-likelihood of *outcome* at per-observation *rate*.

    Args:
        outcome: Non-negative integer counts, shape ``(n,)``.
        rate: Rates ``λ``, shape ``(n,)``, or a scalar broadcast to
            every observation.

    Returns:
        ``Σ(−λ + y ln λ − ln y!)``, or ``-inf`` when any rate is
        non-positive or non-finite.
    """
    y = np.asarray(outcome, dtype=float)
    lam = np.broadcast_to(np.asarray(rate, dtype=float), y.shape)
    if not _rates_feasible(lam):
        return -np.inf
    return float(np.sum(-lam + y * np.log(lam) - gammaln(y + 1.0)))


def neg_log_likelihood(outcome: np.ndarray, rate: np.ndarray | float) -> float:
    """Negation of :func:`log_likelihood`; ``+inf`` where it is ``-inf``."""
    return -log_likelihood(outcome, rate)


# ------------------------------------------------------------------ #
# Regression form
# ------------------------------------------------------------------ #


def regression_log_likelihood(
    beta: np.ndarray, outcome: np.ndarray, X: np.ndarray
) -> float:
    """Log-likelihood of coefficient vector *beta* under the log link."""
    return log_likelihood(outcome, linear_rates(np.asarray(beta, dtype=float), X))


def regression_neg_log_likelihood(
    beta: np.ndarray, outcome: np.ndarray, X: np.ndarray
) -> float:
    """Objective for ``scipy.optimize.minimize``: ``−ℓ(β)``.

    The ``(beta, *args)`` argument order matches what the optimiser
    passes to its objective.
    """
    return -regression_log_likelihood(beta, outcome, X)


def score(beta: np.ndarray, outcome: np.ndarray, X: np.ndarray) -> np.ndarray:
    """Gradient of the log-likelihood: ``X'(y − λ)``."""
    lam = linear_rates(np.asarray(beta, dtype=float), X)
    return np.asarray(X.T @ (np.asarray(outcome, dtype=float) - lam))


def neg_score(beta: np.ndarray, outcome: np.ndarray, X: np.ndarray) -> np.ndarray:
    """Gradient of :func:`regression_neg_log_likelihood`."""
    return -score(beta, outcome, X)


def hessian(beta: np.ndarray, X: np.ndarray) -> np.ndarray:
    """Closed-form Hessian of the negative log-likelihood.

    ``H = X' diag(λ) X`` with ``λ = exp(X β)``.  It does not depend on
    the outcome and is positive semi-definite for every ``β``.
    """
    lam = linear_rates(np.asarray(beta, dtype=float), X)
    return np.asarray((X * lam[:, None]).T @ X)


def numerical_hessian(
    gradient: Callable[..., np.ndarray],
    beta: np.ndarray,
    args: tuple[Any, ...] = (),
    eps: float = 1e-6,
) -> np.ndarray:
    """Finite-difference Hessian from a gradient function.

    Each column is a forward difference of *gradient* computed by
    :func:`scipy.optimize.approx_fprime`; the result is symmetrised as
    ``(H + H') / 2``.

    Args:
        gradient: Callable ``gradient(beta, *args) -> ndarray (p,)``,
            e.g. :func:`neg_score`.
        beta: Point at which to differentiate.
        args: Extra positional arguments forwarded to *gradient*.
        eps: Step size.

    Returns:
        Symmetric ``(p, p)`` matrix.
    """
    beta = np.asarray(beta, dtype=float)
    H = np.atleast_2d(approx_fprime(beta, gradient, eps, *args))
    return np.asarray((H + H.T) / 2.0)
