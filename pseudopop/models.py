"""
Model specifications and the regression/GLM fitting collaborator.

Models are described with explicit ``ModelSpec`` / ``Term`` values rather than
hand-written formula strings. A spec renders to a patsy formula, which is what
statsmodels consumes::

    spec = ModelSpec("smoker", ["age", Term("sex", "categorical"), Term("bmi", "square")])
    spec.formula   # 'smoker ~ age + C(sex) + bmi + I(bmi ** 2)'
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
import statsmodels.api as sm
import statsmodels.formula.api as smf

logger = logging.getLogger(__name__)

TRANSFORMS = (None, "categorical", "square", "log", "spline")
FAMILIES = ("linear", "binomial")

_SPLINE_DF = 4


@dataclass(frozen=True)
class Term:
    """One covariate on the right-hand side of a model, with an optional transform."""

    column: str
    """Name of the column in the observation table."""

    transform: str | None = None
    """One of ``None``, ``"categorical"``, ``"square"``, ``"log"`` or ``"spline"``."""

    def __post_init__(self) -> None:
        if self.transform not in TRANSFORMS:
            raise ValueError(
                f"Unknown transform {self.transform!r} for '{self.column}'. "
                f"Expected one of {TRANSFORMS}."
            )

    def render(self) -> str:
        """Return the patsy fragment for this term."""
        col = self.column
        if self.transform is None:
            return col
        if self.transform == "categorical":
            return f"C({col})"
        if self.transform == "square":
            return f"{col} + I({col} ** 2)"
        if self.transform == "log":
            return f"np.log({col})"
        # Centered natural cubic spline; the intercept stays identified.
        return f"cr({col}, df={_SPLINE_DF}, constraints='center')"


@dataclass(frozen=True)
class ModelSpec:
    """
    Response column plus an ordered tuple of covariate terms.

    Plain strings in ``terms`` are promoted to untransformed ``Term`` objects.
    An empty ``terms`` tuple gives an intercept-only model.
    """

    response: str
    terms: tuple[Term, ...] = ()

    def __post_init__(self) -> None:
        promoted = tuple(t if isinstance(t, Term) else Term(str(t)) for t in self.terms)
        object.__setattr__(self, "terms", promoted)

    @property
    def columns(self) -> list[str]:
        """Every column the model reads, response first."""
        return [self.response] + [t.column for t in self.terms]

    @property
    def formula(self) -> str:
        rhs = " + ".join(t.render() for t in self.terms) or "1"
        return f"{self.response} ~ {rhs}"


class FittedModel:
    """
    A fitted regression or GLM, reduced to what weighting needs.

    ``fitted_values`` are predicted means (linear) or predicted probabilities
    (binomial), aligned row-for-row with the data the model was fitted on.
    ``residual_scale`` is the residual standard deviation for linear fits and
    ``None`` for binomial fits.
    """

    def __init__(self, result, spec: ModelSpec, family: str) -> None:
        self._result = result
        self._spec = spec
        self._family = family
        self._fitted = np.asarray(result.predict(), dtype=float)

    @property
    def spec(self) -> ModelSpec:
        return self._spec

    @property
    def family(self) -> str:
        return self._family

    @property
    def fitted_values(self) -> np.ndarray:
        return self._fitted.copy()

    @property
    def residual_scale(self) -> float | None:
        if self._family != "linear":
            return None
        return float(np.sqrt(self._result.scale))

    @property
    def params(self) -> pd.Series:
        """Coefficient table, indexed by term name."""
        return self._result.params.copy()

    @property
    def statsmodels_result(self):
        """The underlying statsmodels result, for full diagnostics."""
        return self._result

    def __repr__(self) -> str:
        return f"FittedModel({self._spec.formula!r}, family={self._family!r})"


def fit_model(
    data: pd.DataFrame,
    spec: ModelSpec,
    family: str = "linear",
    weights: np.ndarray | None = None,
) -> FittedModel:
    """
    Fit ``spec`` to ``data`` with statsmodels.

    Parameters
    ----------
    data : pd.DataFrame
        Must contain every column named in ``spec`` with no missing values,
        so fitted values stay aligned with the rows.
    spec : ModelSpec
        Response and covariate terms.
    family : str
        ``"linear"`` (OLS, or WLS when weighted) or ``"binomial"`` (logistic
        regression, a binomial GLM with variance weights when weighted).
    weights : array-like, optional
        Observation weights, one per row.

    Raises
    ------
    ValueError
        If the family is unknown, a column is missing, or the fit dropped rows.
    """
    if family not in FAMILIES:
        raise ValueError(f"family must be one of {FAMILIES}, got {family!r}.")

    missing = [c for c in spec.columns if c not in data.columns]
    if missing:
        raise ValueError(f"Columns {missing} not found in dataframe.")

    formula = spec.formula
    logger.debug("Fitting %s model: %s (weighted=%s)", family, formula, weights is not None)

    if family == "linear":
        if weights is None:
            result = smf.ols(formula, data=data).fit()
        else:
            result = smf.wls(formula, data=data, weights=np.asarray(weights, dtype=float)).fit()
    else:
        if weights is None:
            result = smf.logit(formula, data=data).fit(disp=0)
        else:
            result = smf.glm(
                formula,
                data=data,
                family=sm.families.Binomial(),
                var_weights=np.asarray(weights, dtype=float),
            ).fit()

    fitted = FittedModel(result, spec, family)
    if len(fitted.fitted_values) != len(data):
        raise ValueError(
            f"Model '{formula}' was fitted on {len(fitted.fitted_values)} of "
            f"{len(data)} rows; remove missing values before fitting."
        )
    return fitted
