"""Typed result objects for Poisson regression fits.

Frozen dataclasses that provide:

* **Attribute access** — ``fitted.coefficients``, ``fitted.converged``.
* **Dict-like access** — ``fitted["coefficients"]``,
  ``fitted.get("key")``, ``"key" in fitted`` for consumers that prefer
  bracket syntax.
* **Serialisation** — ``.to_dict()`` returns a plain ``dict[str, Any]``
  with all NumPy types converted to native Python.

Two concrete result types:

* :class:`FittedModel` — output of :func:`~poisson_effects.fit`.
* :class:`TreatmentEffectResult` — output of
  :func:`~poisson_effects.treatment_effect`.

Both are frozen: a fit is a snapshot of a completed estimation, and a
new fit produces a new object.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, ClassVar

import numpy as np

from .likelihood import linear_rates

# ------------------------------------------------------------------ #
# Serialisation helper
# ------------------------------------------------------------------ #


def _numpy_to_python(obj: Any) -> Any:
    """Recursively convert NumPy scalars/arrays to Python-native types.

    Handles nested dicts, lists, np.ndarray, np.integer, np.bool_ and
    np.floating so that :meth:`to_dict` returns a plain structure.
    """
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, dict):
        return {k: _numpy_to_python(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        converted = [_numpy_to_python(item) for item in obj]
        return type(obj)(converted)
    return obj


def _frozen_copy(values: Any) -> np.ndarray:
    arr = np.array(values, dtype=float)
    arr.flags.writeable = False
    return arr


# ------------------------------------------------------------------ #
# Dict-compatibility mixin
# ------------------------------------------------------------------ #


class _DictAccessMixin:
    """Dict-like access convenience for result dataclasses.

    Supports three access patterns:

    1. ``result["key"]``     — raises ``KeyError`` on miss
    2. ``result.get(key, d)`` — returns *d* on miss (default ``None``)
    3. ``"key" in result``   — membership test
    """

    # Fields to exclude from to_dict() serialisation.
    _EXCLUDE_FROM_DICT: ClassVar[frozenset[str]] = frozenset()

    def __getitem__(self, key: str) -> Any:
        """Attribute lookup via bracket syntax."""
        try:
            return getattr(self, key)
        except AttributeError:
            raise KeyError(key) from None

    def get(self, key: str, default: Any = None) -> Any:
        """Attribute lookup with a fallback default."""
        return getattr(self, key, default)

    def __contains__(self, key: object) -> bool:
        """Membership test: ``"key" in result``."""
        if not isinstance(key, str):
            return False
        return hasattr(self, key)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary of Python-native values."""
        result: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            if f.name in self._EXCLUDE_FROM_DICT:
                continue
            result[f.name] = _numpy_to_python(getattr(self, f.name))
        return result


# ------------------------------------------------------------------ #
# FittedModel
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class FittedModel(_DictAccessMixin):
    """Maximum-likelihood Poisson regression fit.

    All fields are accessible both as attributes (``fitted.converged``)
    and via dict syntax (``fitted["converged"]``).  Array fields are
    read-only copies.

    Attributes:
        coefficients: Estimated coefficient vector ``β̂`` of shape
            ``(p,)``.
        standard_errors: ``sqrt(diag(H⁻¹))`` at ``β̂``.  All NaN when
            the Hessian could not be inverted.
        log_likelihood: Poisson log-likelihood at ``β̂``.
        converged: Whether the optimiser reported convergence.
        hessian: Hessian of the negative log-likelihood at ``β̂``, or
            ``None`` when it was not computed (closed-form shortcut on
            a boundary optimum).
        n_iterations: Optimiser iterations used (0 for closed form).
        n_observations: Number of rows ``n``.
        feature_names: Column labels, one per coefficient.
        message: Optimiser termination message.
    """

    coefficients: np.ndarray
    standard_errors: np.ndarray
    log_likelihood: float
    converged: bool
    hessian: np.ndarray | None = None
    n_iterations: int = 0
    n_observations: int = 0
    feature_names: tuple[str, ...] = field(default_factory=tuple)
    message: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "coefficients", _frozen_copy(self.coefficients))
        object.__setattr__(
            self, "standard_errors", _frozen_copy(self.standard_errors)
        )
        if self.hessian is not None:
            object.__setattr__(self, "hessian", _frozen_copy(self.hessian))
        if not self.feature_names:
            names = tuple(f"x{j}" for j in range(self.coefficients.shape[0]))
            object.__setattr__(self, "feature_names", names)
        else:
            object.__setattr__(self, "feature_names", tuple(self.feature_names))
        object.__setattr__(self, "log_likelihood", float(self.log_likelihood))
        object.__setattr__(self, "converged", bool(self.converged))

    @property
    def n_params(self) -> int:
        """Number of estimated coefficients ``p``."""
        return int(self.coefficients.shape[0])

    @property
    def has_standard_errors(self) -> bool:
        """``True`` when every standard error is finite."""
        return bool(np.all(np.isfinite(self.standard_errors)))

    def rates(self, X: np.ndarray) -> np.ndarray:
        """Expected counts ``exp(X β̂)`` for the rows of *X*."""
        return linear_rates(self.coefficients, np.asarray(X, dtype=float))


# ------------------------------------------------------------------ #
# TreatmentEffectResult
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class TreatmentEffectResult(_DictAccessMixin):
    """Counterfactual average treatment effect.

    Attributes:
        effect: ``mean(λ̂₁ − λ̂₀)`` over all rows.
        treatment_column: Index of the column that was forced to 0/1.
        rates_untreated: ``λ̂₀``, predicted counts with treatment = 0.
        rates_treated: ``λ̂₁``, predicted counts with treatment = 1.
        standard_error: Bootstrap standard deviation of the effect, or
            ``None`` when no bootstrap was requested.
        ci_lower: Lower percentile-interval bound (or ``None``).
        ci_upper: Upper percentile-interval bound (or ``None``).
        n_bootstrap: Number of *valid* bootstrap replicates.
        confidence_level: ``1 − alpha`` of the interval.
    """

    effect: float
    treatment_column: int
    rates_untreated: np.ndarray
    rates_treated: np.ndarray
    standard_error: float | None = None
    ci_lower: float | None = None
    ci_upper: float | None = None
    n_bootstrap: int = 0
    confidence_level: float = 0.95

    _EXCLUDE_FROM_DICT: ClassVar[frozenset[str]] = frozenset(
        {"rates_untreated", "rates_treated"}
    )

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "rates_untreated", _frozen_copy(self.rates_untreated)
        )
        object.__setattr__(self, "rates_treated", _frozen_copy(self.rates_treated))
        object.__setattr__(self, "effect", float(self.effect))
