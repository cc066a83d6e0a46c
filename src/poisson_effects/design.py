"""Design-matrix construction for Poisson regression.

Turns a tabular data set into the numeric ``(n, p)`` matrix consumed by
:func:`~poisson_effects.fit`.  Columns are laid out in a fixed order so
that the same inputs always produce the same matrix:

1. ``Intercept`` — a constant column of ones (optional).
2. Numeric columns, in the order given.
3. Squared terms ``"<col>^2"``, in the order given.
4. For each categorical column, one dummy ``"<col>[<level>]"`` per
   level in sorted order, skipping the reference level.

Dropping one reference level per categorical keeps the dummies from
summing to the intercept column, which would make the design
rank-deficient and the Hessian singular.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass

import numpy as np
import pandas as pd

from ._compat import DataFrameLike, _ensure_pandas_df


@dataclass(frozen=True)
class DesignMatrix:
    """Read-only design matrix with column labels.

    Attributes:
        matrix: Float array of shape ``(n, p)``; not writeable.
        columns: Column labels in matrix order.
    """

    matrix: np.ndarray
    columns: tuple[str, ...]

    def __post_init__(self) -> None:
        arr = np.array(self.matrix, dtype=float)
        if arr.ndim != 2:
            raise ValueError(f"Design matrix must be 2-D, got {arr.ndim}-D.")
        if arr.shape[1] != len(self.columns):
            raise ValueError(
                f"Design matrix has {arr.shape[1]} columns but "
                f"{len(self.columns)} names were given."
            )
        arr.flags.writeable = False
        object.__setattr__(self, "matrix", arr)
        object.__setattr__(self, "columns", tuple(self.columns))

    @property
    def shape(self) -> tuple[int, int]:
        return self.matrix.shape  # type: ignore[return-value]

    def index_of(self, name: str) -> int:
        """Position of column *name*.

        Raises:
            KeyError: If no column has that name.
        """
        try:
            return self.columns.index(name)
        except ValueError:
            raise KeyError(
                f"No column named {name!r}. Available: {list(self.columns)}"
            ) from None

    def to_frame(self) -> pd.DataFrame:
        """Return a labelled copy as a :class:`pandas.DataFrame`."""
        return pd.DataFrame(self.matrix.copy(), columns=list(self.columns))


def _sorted_levels(series: pd.Series) -> list:
    levels = pd.unique(series)
    try:
        return sorted(levels)
    except TypeError:
        # Mixed types: fall back to ordering by string form.
        return sorted(levels, key=str)


def build_design_matrix(
    data: DataFrameLike,
    numeric: Sequence[str] = (),
    categorical: Sequence[str] = (),
    squared: Sequence[str] = (),
    reference: Mapping[str, object] | None = None,
    intercept: bool = True,
) -> DesignMatrix:
    """Build a design matrix from *data*.

    Args:
        data: pandas DataFrame, or a Polars DataFrame/LazyFrame.
        numeric: Columns entered as-is.
        categorical: Columns one-hot encoded with a reference level
            dropped.
        squared: Columns entered as their square, named ``"<col>^2"``.
        reference: Reference level per categorical column.  Columns
            not listed use their first level in sorted order.
        intercept: Prepend a column of ones named ``Intercept``.

    Returns:
        A :class:`DesignMatrix`.

    Raises:
        KeyError: If a requested column is not in *data*.
        ValueError: If a requested column contains missing values, a
            numeric column is not numeric, a reference level does not
            occur in its column, or the result has no columns.
    """
    df = _ensure_pandas_df(data)
    reference = dict(reference or {})

    requested = list(dict.fromkeys([*numeric, *squared, *categorical]))
    missing_cols = [c for c in requested if c not in df.columns]
    if missing_cols:
        raise KeyError(f"Columns not found in data: {missing_cols}")
    for col in requested:
        if df[col].isna().any():
            raise ValueError(f"Column {col!r} contains missing values.")
    unknown_refs = [c for c in reference if c not in categorical]
    if unknown_refs:
        raise ValueError(
            f"Reference levels given for non-categorical columns: {unknown_refs}"
        )

    n = len(df)
    blocks: list[np.ndarray] = []
    names: list[str] = []

    if intercept:
        blocks.append(np.ones(n))
        names.append("Intercept")

    for col in [*numeric, *squared]:
        if not pd.api.types.is_numeric_dtype(df[col]):
            raise ValueError(
                f"Column {col!r} must be numeric, got dtype {df[col].dtype}."
            )

    for col in numeric:
        blocks.append(df[col].to_numpy(dtype=float))
        names.append(col)

    for col in squared:
        blocks.append(df[col].to_numpy(dtype=float) ** 2)
        names.append(f"{col}^2")

    for col in categorical:
        values = df[col]
        levels = _sorted_levels(values)
        ref = reference.get(col, levels[0] if levels else None)
        if ref not in levels:
            raise ValueError(
                f"Reference level {ref!r} does not occur in column {col!r}. "
                f"Levels: {levels}"
            )
        for level in levels:
            if level == ref:
                continue
            blocks.append((values == level).to_numpy(dtype=float))
            names.append(f"{col}[{level}]")

    if not blocks:
        raise ValueError("Design matrix would have no columns.")

    matrix = np.column_stack(blocks) if n else np.empty((0, len(names)))
    return DesignMatrix(matrix=matrix, columns=tuple(names))
