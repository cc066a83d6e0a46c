"""Formatted ASCII table display for Poisson regression fits.

The table mirrors the statsmodels summary style: a header panel with
the fit metadata (observations, log-likelihood, convergence, optional
goodness-of-fit figures) above a coefficient panel with Wald z
statistics, p-values and confidence intervals.
"""

from __future__ import annotations

import textwrap
from typing import Any

import numpy as np

from ._results import FittedModel, TreatmentEffectResult
from .diagnostics import wald_table


def _truncate(name: str, max_len: int) -> str:
    """Truncate *name* to *max_len*, appending ``'...'`` if needed."""
    if len(name) <= max_len:
        return name
    return name[: max_len - 3] + "..."


def _fmt(val: Any, spec: str = ".4f") -> str:
    """Format a number, rendering ``None`` and NaN as ``'N/A'``."""
    if val is None:
        return "N/A"
    if isinstance(val, (float, np.floating)) and not np.isfinite(val):
        return "N/A" if np.isnan(val) else str(float(val))
    if isinstance(val, (bool, np.bool_)):
        return "Yes" if val else "No"
    if isinstance(val, (int, np.integer)):
        return str(int(val))
    return format(float(val), spec)


def _stars(p: float) -> str:
    if not np.isfinite(p):
        return ""
    if p < 0.001:
        return "***"
    if p < 0.01:
        return "**"
    if p < 0.05:
        return "*"
    return ""


def print_fit_table(
    fitted: FittedModel,
    *,
    title: str | None = None,
    alpha: float = 0.05,
    gof: dict[str, Any] | None = None,
    effect: TreatmentEffectResult | None = None,
) -> None:
    """Print a fitted Poisson regression as an ASCII table.

    Args:
        fitted: Result of :func:`~poisson_effects.fit`.
        title: Title line; defaults to ``"Poisson Regression Results"``.
        alpha: ``1 − confidence level`` of the coefficient intervals.
        gof: Optional output of
            :func:`~poisson_effects.diagnostics.goodness_of_fit`, shown
            in the header panel.
        effect: Optional treatment-effect result, shown below the
            coefficient panel.
    """
    title = title or "Poisson Regression Results"
    table = wald_table(fitted, alpha=alpha)
    gof = gof or {}

    print("=" * 80)
    for line in textwrap.wrap(title, width=78):
        print(f"{line:^80}")
    print("=" * 80)

    col1 = 40
    col2 = 38
    rows = [
        ("No. Observations:", str(fitted.n_observations), "Log-Likelihood:",
         _fmt(fitted.log_likelihood)),
        ("No. Parameters:", str(fitted.n_params), "Converged:",
         _fmt(fitted.converged)),
        ("Iterations:", str(fitted.n_iterations), "AIC:", _fmt(gof.get("aic"))),
        ("Deviance:", _fmt(gof.get("deviance")), "BIC:", _fmt(gof.get("bic"))),
        ("Pearson chi2:", _fmt(gof.get("pearson_chi2")), "Dispersion:",
         _fmt(gof.get("dispersion"))),
    ]
    if not gof:
        rows = rows[:3]
    for ll, lv, rl, rv in rows:
        print(f"{ll:<18}{lv:<{col1 - 18}}{rl:>{col2 - 11}} {rv:>10}")
    print("-" * 80)

    # ── Table geometry (W = 80 chars) ─────────────────────────── #
    #   Feature (22) | coef (10) | std err (10) | z (8) | P>|z| (8)
    #   | CI lower (10) | CI upper (10) | stars (2 + 0..3)
    fc = 22
    level = 1.0 - alpha
    lo_hdr = f"[{alpha / 2:.3f}"
    hi_hdr = f"{1 - alpha / 2:.3f}]"
    print(
        f"{'Feature':<{fc}}{'coef':>10}{'std err':>10}{'z':>8}{'P>|z|':>8}"
        f"{lo_hdr:>10}{hi_hdr:>10}"
    )
    print("-" * 80)
    for name, row in table.iterrows():
        print(
            f"{_truncate(str(name), fc):<{fc}}"
            f"{_fmt(row['coef']):>10}{_fmt(row['std_err']):>10}"
            f"{_fmt(row['z'], '.3f'):>8}{_fmt(row['p_value'], '.3f'):>8}"
            f"{_fmt(row['ci_lower'], '.3f'):>10}{_fmt(row['ci_upper'], '.3f'):>10}"
            f"  {_stars(row['p_value'])}"
        )

    notes: list[str] = []
    if not fitted.converged:
        notes.append(f"Optimiser did not converge: {fitted.message}")
    if not fitted.has_standard_errors:
        notes.append(
            "Hessian is singular; standard errors are unavailable. Check the "
            "design matrix for collinear columns."
        )
    if gof.get("overdispersed", False):
        notes.append(
            f"Dispersion = {_fmt(gof.get('dispersion'))}: overdispersion "
            "detected (> 1.5). Poisson standard errors are likely too small."
        )

    if effect is not None:
        print("-" * 80)
        name = fitted.feature_names[effect.treatment_column]
        print(f"{'Average treatment effect of':<28}{_truncate(name, 22):<22}"
              f"{_fmt(effect.effect):>30}")
        if effect.n_bootstrap:
            ci = f"[{_fmt(effect.ci_lower)}, {_fmt(effect.ci_upper)}]"
            print(f"{'  Bootstrap std err:':<50}{_fmt(effect.standard_error):>30}")
            print(f"{f'  {effect.confidence_level:.0%} percentile CI:':<50}{ci:>30}")
            print(f"{'  Valid replicates:':<50}{effect.n_bootstrap:>30}")

    if notes:
        print("-" * 80)
        print("Notes")
        print("-" * 80)
        for note in notes:
            print(
                textwrap.fill(
                    f"  [!] {note}", width=80, subsequent_indent=" " * 6
                )
            )

    print("=" * 80)
    print(f"(***) p < 0.001   (**) p < 0.01   (*) p < 0.05   "
          f"CI level: {level:.0%}")
