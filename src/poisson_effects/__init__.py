"""poisson_effects — Poisson regression by maximum likelihood.

Fits log-linear Poisson regressions for count outcomes by direct
maximisation of the (guarded) log-likelihood, recovers standard errors
from the Hessian at the optimum, and turns the fitted coefficients into
counterfactual average treatment effects on the count scale.

Public API:
    .. autosummary::
        fit
        fit_simple_poisson
        fit_many
        average_treatment_effect
        treatment_effect
        counterfactual_design
        predict_rates
        build_design_matrix
        DesignMatrix
        log_likelihood
        neg_log_likelihood
        regression_log_likelihood
        regression_neg_log_likelihood
        wald_table
        goodness_of_fit
        glm_cross_check
        print_fit_table
        get_hessian_method
        set_hessian_method
        get_maxiter
        set_maxiter
        FittedModel
        TreatmentEffectResult
        DimensionMismatchError
        SingularHessianError
        NonConvergenceWarning
"""

from ._config import get_hessian_method, get_maxiter, set_hessian_method, set_maxiter
from ._results import FittedModel, TreatmentEffectResult
from .counterfactual import (
    average_treatment_effect,
    counterfactual_design,
    predict_rates,
    treatment_effect,
)
from .design import DesignMatrix, build_design_matrix
from .diagnostics import glm_cross_check, goodness_of_fit, wald_table
from .display import print_fit_table
from .estimator import fit, fit_many, fit_simple_poisson
from .exceptions import (
    DimensionMismatchError,
    NonConvergenceWarning,
    PoissonEffectsError,
    SingularHessianError,
)
from .likelihood import (
    log_likelihood,
    neg_log_likelihood,
    regression_log_likelihood,
    regression_neg_log_likelihood,
)

__all__ = [
    "FittedModel",
    "TreatmentEffectResult",
    "fit",
    "fit_simple_poisson",
    "fit_many",
    "average_treatment_effect",
    "treatment_effect",
    "counterfactual_design",
    "predict_rates",
    "build_design_matrix",
    "DesignMatrix",
    "log_likelihood",
    "neg_log_likelihood",
    "regression_log_likelihood",
    "regression_neg_log_likelihood",
    "wald_table",
    "goodness_of_fit",
    "glm_cross_check",
    "print_fit_table",
    "get_hessian_method",
    "set_hessian_method",
    "get_maxiter",
    "set_maxiter",
    "PoissonEffectsError",
    "DimensionMismatchError",
    "SingularHessianError",
    "NonConvergenceWarning",
]

__version__ = "0.1.0"
