"""Estimation configuration for the poisson_effects package.

Controls how :func:`~poisson_effects.fit` obtains the Hessian of the
negative log-likelihood at the optimum and how many optimiser
iterations it allows before giving up.

Resolution order (first match wins):
    1. Programmatic override via :func:`set_hessian_method` /
       :func:`set_maxiter`.
    2. The ``POISSON_EFFECTS_HESSIAN`` / ``POISSON_EFFECTS_MAXITER``
       environment variables.
    3. Built-in defaults: ``"analytic"`` and ``1000``.

Valid Hessian methods are ``"analytic"``, ``"numeric"`` and ``"auto"``
(case-insensitive).  ``"auto"`` currently resolves to ``"analytic"``
because the Poisson regression Hessian has an exact closed form.

Examples:
    Use finite differences from the shell::

        export POISSON_EFFECTS_HESSIAN=numeric

    Or programmatically::

        import poisson_effects
        poisson_effects.set_hessian_method("numeric")

    Restore the default resolution order::

        poisson_effects.set_hessian_method("auto")
"""

from __future__ import annotations

import os

_VALID_HESSIAN_METHODS = {"analytic", "numeric", "auto"}

_DEFAULT_MAXITER = 1000

# Sentinels indicating "no programmatic override has been set".
_hessian_override: str | None = None
_maxiter_override: int | None = None


def get_hessian_method() -> str:
    """Return the active Hessian method (``"analytic"`` or ``"numeric"``).

    Resolution order:
        1. Value set by :func:`set_hessian_method` (unless ``"auto"``).
        2. ``POISSON_EFFECTS_HESSIAN`` environment variable.
        3. ``"analytic"``.

    Returns:
        ``"analytic"`` or ``"numeric"``.
    """
    # 1. Programmatic override
    if _hessian_override is not None and _hessian_override != "auto":
        return _hessian_override

    # 2. Environment variable
    env = os.environ.get("POISSON_EFFECTS_HESSIAN", "").strip().lower()
    if env in ("analytic", "numeric"):
        return env

    # 3. Default
    return "analytic"


def set_hessian_method(name: str) -> None:
    """Override the Hessian method.

    Args:
        name: One of ``"analytic"``, ``"numeric"``, or ``"auto"``
            (case-insensitive).  ``"auto"`` restores the default
            resolution order.

    Raises:
        ValueError: If *name* is not a recognised method.
    """
    global _hessian_override
    normalised = name.strip().lower()
    if normalised not in _VALID_HESSIAN_METHODS:
        raise ValueError(
            f"Unknown Hessian method '{name}'. "
            f"Choose from: {sorted(_VALID_HESSIAN_METHODS)}"
        )
    _hessian_override = normalised


def get_maxiter() -> int:
    """Return the optimiser iteration cap.

    Resolution order:
        1. Value set by :func:`set_maxiter`.
        2. ``POISSON_EFFECTS_MAXITER`` environment variable, when it
           parses as a positive integer.
        3. ``1000``.
    """
    if _maxiter_override is not None:
        return _maxiter_override

    env = os.environ.get("POISSON_EFFECTS_MAXITER", "").strip()
    if env.isdigit() and int(env) > 0:
        return int(env)

    return _DEFAULT_MAXITER


def set_maxiter(n: int | None) -> None:
    """Override the optimiser iteration cap.

    Args:
        n: A positive integer, or ``None`` to restore the default
            resolution order.

    Raises:
        ValueError: If *n* is not a positive integer.
    """
    global _maxiter_override
    if n is None:
        _maxiter_override = None
        return
    if isinstance(n, bool) or not isinstance(n, int) or n < 1:
        raise ValueError(f"maxiter must be a positive integer, got {n!r}.")
    _maxiter_override = n
