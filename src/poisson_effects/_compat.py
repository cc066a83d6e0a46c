"""Polars input for the design-matrix builder.

Firm-level tables often arrive as Polars frames.  The encoding in
:func:`~poisson_effects.build_design_matrix` (missing-value checks,
level discovery, one-hot columns) is written against pandas, so a
``polars.DataFrame`` or ``polars.LazyFrame`` is converted once, when it
enters the builder.  Outcome vectors and numeric design matrices never
pass through here: :func:`~poisson_effects.fit` takes anything
``numpy.asarray`` accepts.

Polars is an optional extra (``pip install poisson-effects[polars]``).
Without it only pandas frames are accepted.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeAlias

import pandas as pd

if TYPE_CHECKING:
    import polars as pl

    DataFrameLike: TypeAlias = pd.DataFrame | pl.DataFrame | pl.LazyFrame
else:
    DataFrameLike: TypeAlias = pd.DataFrame

try:
    import polars as pl

    _HAS_POLARS = True
except ImportError:
    _HAS_POLARS = False


def _ensure_pandas_df(obj: DataFrameLike, *, name: str = "data") -> pd.DataFrame:
    """Return the covariate table *obj* as a :class:`pandas.DataFrame`.

    A pandas frame is returned unchanged.  A Polars ``LazyFrame`` is
    collected before conversion.

    Args:
        obj: Covariate table (pandas, or Polars when installed).
        name: Argument name used in the error message.

    Returns:
        A pandas ``DataFrame``.

    Raises:
        TypeError: If *obj* is not a supported frame type.
    """
    if isinstance(obj, pd.DataFrame):
        return obj

    if _HAS_POLARS:
        if isinstance(obj, pl.LazyFrame):
            obj = obj.collect()
        if isinstance(obj, pl.DataFrame):
            return obj.to_pandas()

    accepted = "a pandas DataFrame"
    if _HAS_POLARS:
        accepted += " or a Polars DataFrame/LazyFrame"
    raise TypeError(
        f"'{name}' must be {accepted} of covariates, got {type(obj).__name__}."
    )
