from __future__ import annotations

import logging
from typing import Callable, Sequence, Union

import numpy as np
import pandas as pd

from .models import ModelSpec, Term

logger = logging.getLogger(__name__)

ColumnValue = Union[Sequence, np.ndarray, pd.Series, Callable[[pd.DataFrame], object]]


class ObservationTable:
    """
    An analysis dataset with named exposure, outcome and covariate columns.

    The table never changes after construction. Deriving a column
    (``augment``) or resampling rows (``take``) returns a new table, so a
    table can be shared between bootstrap replicates without copying.

    Example::

        table = ObservationTable(
            df, exposure="qsmk", outcome="wt82_71",
            covariates=["sex", "age", Term("smokeyrs", "square")],
        )
        table.exposure_type   # 'binary'
    """

    def __init__(
        self,
        data: pd.DataFrame,
        exposure: str,
        outcome: str,
        covariates: Sequence[str | Term] = (),
        unit_id: str | None = None,
        dropna: bool = True,
    ) -> None:
        self._exposure = exposure
        self._outcome = outcome
        self._terms = tuple(c if isinstance(c, Term) else Term(str(c)) for c in covariates)
        self._unit_id = unit_id

        if exposure == outcome:
            raise ValueError("Exposure and outcome must be different variables.")

        for label, var in [("Exposure", exposure), ("Outcome", outcome)]:
            if var not in data.columns:
                raise ValueError(f"{label} column '{var}' not found in dataframe.")
        for term in self._terms:
            if term.column not in data.columns:
                raise ValueError(f"Covariate column '{term.column}' not found in dataframe.")
        if unit_id is not None and unit_id not in data.columns:
            raise ValueError(f"Unit id column '{unit_id}' not found in dataframe.")

        required = self.required_columns
        incomplete = data[required].isna().any(axis=1)
        n_missing = int(incomplete.sum())
        if n_missing:
            if not dropna:
                raise ValueError(
                    f"{n_missing} row(s) have missing values in {required}. "
                    f"Pass dropna=True to drop them."
                )
            logger.debug("Dropping %d row(s) with missing values in %s", n_missing, required)
            data = data.loc[~incomplete]

        self._data = data.reset_index(drop=True).copy()
        if pd.api.types.is_bool_dtype(self._data[exposure]):
            # patsy would treat a bool column as categorical
            self._data[exposure] = self._data[exposure].astype(float)
        self._exposure_type = self._infer_exposure_type()

    def _infer_exposure_type(self) -> str:
        values = set(pd.unique(self._data[self._exposure]))
        if not values <= {0, 1, 0.0, 1.0, True, False}:
            return "continuous"
        if len(values) < 2 and len(self._data) > 0:
            raise ValueError(
                f"Exposure '{self._exposure}' must contain both 0 and 1. "
                f"Found only: {values}"
            )
        return "binary"

    @classmethod
    def _from_parts(cls, data: pd.DataFrame, like: ObservationTable) -> ObservationTable:
        """Build a table over ``data`` that shares ``like``'s column roles, skipping validation."""
        table = cls.__new__(cls)
        table._exposure = like._exposure
        table._outcome = like._outcome
        table._terms = like._terms
        table._unit_id = like._unit_id
        table._data = data
        table._exposure_type = like._exposure_type
        return table

    # ── Column roles ──────────────────────────────────────────────────────────

    @property
    def exposure(self) -> str:
        return self._exposure

    @property
    def outcome(self) -> str:
        return self._outcome

    @property
    def covariates(self) -> tuple[Term, ...]:
        return self._terms

    @property
    def unit_id(self) -> str | None:
        return self._unit_id

    @property
    def exposure_type(self) -> str:
        """``"binary"`` for a 0/1 exposure, ``"continuous"`` otherwise."""
        return self._exposure_type

    @property
    def required_columns(self) -> list[str]:
        cols = [self._exposure, self._outcome] + [t.column for t in self._terms]
        if self._unit_id is not None:
            cols.append(self._unit_id)
        return list(dict.fromkeys(cols))

    # ── Data access ───────────────────────────────────────────────────────────

    @property
    def frame(self) -> pd.DataFrame:
        """A copy of the underlying dataframe."""
        return self._data.copy()

    @property
    def exposure_values(self) -> np.ndarray:
        return self._data[self._exposure].to_numpy(dtype=float)

    @property
    def outcome_values(self) -> np.ndarray:
        return self._data[self._outcome].to_numpy(dtype=float)

    def column(self, name: str) -> np.ndarray:
        if name not in self._data.columns:
            raise KeyError(f"Column '{name}' not found in table.")
        return self._data[name].to_numpy()

    def __len__(self) -> int:
        return len(self._data)

    # ── Whole-table transformations ───────────────────────────────────────────

    def augment(self, **columns: ColumnValue) -> ObservationTable:
        """
        Return a new table with derived columns added.

        Each value is either an array-like with one entry per row, or a
        callable that receives the current dataframe and returns one::

            table = table.augment(age_sq=lambda df: df["age"] ** 2)
        """
        data = self._data.copy()
        for name, value in columns.items():
            if callable(value):
                value = value(data)
            values = np.asarray(value)
            if values.ndim != 1 or len(values) != len(data):
                raise ValueError(
                    f"Derived column '{name}' has {values.size} values; "
                    f"expected {len(data)}."
                )
            data[name] = values
        return ObservationTable._from_parts(data, self)

    def take(self, indices: Sequence[int] | np.ndarray) -> ObservationTable:
        """Return a new table made of the rows at the given positions (repeats allowed)."""
        idx = np.asarray(indices, dtype=int)
        data = self._data.iloc[idx].reset_index(drop=True)
        return ObservationTable._from_parts(data, self)

    def exposure_model_spec(self) -> ModelSpec:
        """Exposure regressed on the covariates."""
        return ModelSpec(self._exposure, self._terms)

    def __repr__(self) -> str:
        covs = ", ".join(t.render() for t in self._terms) or "none"
        return (
            f"ObservationTable(n={len(self)}, exposure={self._exposure!r} "
            f"[{self._exposure_type}], outcome={self._outcome!r}, covariates: {covs})"
        )
