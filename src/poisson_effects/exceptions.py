"""Error and warning types raised by the estimation pipeline.

Infeasible coefficient vectors (a rate that is non-positive or not
finite) are *not* represented here: the likelihood functions encode
them as ``-inf`` / ``+inf`` so that a minimiser can compare them like
any other objective value.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from ._results import FittedModel


class PoissonEffectsError(Exception):
    """Base class for errors raised by poisson_effects."""


class DimensionMismatchError(PoissonEffectsError, ValueError):
    """Input arrays disagree on the observation or parameter count.

    Raised before any optimisation is attempted.
    """


class SingularHessianError(PoissonEffectsError, np.linalg.LinAlgError):
    """The Hessian at the reported optimum cannot be inverted.

    This happens when the design matrix is rank-deficient, e.g. a full
    set of one-hot dummies alongside the intercept.  The coefficients
    found by the optimiser are still available on :attr:`fitted`, with
    every standard error set to NaN.
    """

    def __init__(self, message: str, fitted: FittedModel | None = None) -> None:
        super().__init__(message)
        self.fitted = fitted


class NonConvergenceWarning(UserWarning):
    """The optimiser stopped before meeting its convergence tolerance."""
