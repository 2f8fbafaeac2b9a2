from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
import statsmodels.formula.api as smf

from .._exceptions import EstimationError
from ..table import ObservationTable

INTERVAL_MODES = ("naive", "robust", "bootstrap")

# Sandwich estimator used for robust intervals.
_ROBUST_COV = "HC2"


@dataclass(frozen=True)
class EstimateRecord:
    """
    The exposure coefficient from one weighted outcome fit.

    ``lower`` and ``upper`` are ``None`` in bootstrap mode, where the interval
    comes from resampling rather than a closed form. ``replicate`` identifies
    the bootstrap replicate the record belongs to (``0`` is the apparent
    sample), or is ``None`` for a plain fit.
    """

    estimate: float
    std_err: float | None = None
    lower: float | None = None
    upper: float | None = None
    pvalue: float | None = None
    interval_mode: str = "naive"
    replicate: int | None = None
    statsmodels_result: object = field(default=None, repr=False, compare=False)

    @property
    def conf_int(self) -> tuple[float, float] | None:
        if self.lower is None or self.upper is None:
            return None
        return (self.lower, self.upper)


def _check_weights(weights: np.ndarray, n_rows: int) -> None:
    if weights.shape != (n_rows,):
        raise EstimationError(
            f"Got {weights.size} weights for a table of {n_rows} rows; "
            f"weights must be aligned one-to-one with observations."
        )
    nan_count = int(np.sum(~np.isfinite(weights)))
    if nan_count:
        raise EstimationError(
            f"{nan_count} weight(s) are NaN or infinite.", nan_count=nan_count
        )
    if np.any(weights < 0.0):
        raise EstimationError("Weights must be non-negative.")
    if not np.any(weights > 0.0):
        raise EstimationError("All weights are zero; nothing to fit.")


def fit_weighted_outcome(
    table: ObservationTable,
    weights,
    outcome_col: str | None = None,
    exposure_col: str | None = None,
    interval_mode: str = "robust",
    alpha: float = 0.05,
    replicate: int | None = None,
    keep_model: bool = False,
) -> EstimateRecord:
    """
    Fit the weighted marginal structural model ``outcome ~ exposure``.

    Confounding is handled by the weights, so no covariates enter the
    outcome model.

    Parameters
    ----------
    table : ObservationTable
        The observations the weights were computed for.
    weights : array-like or WeightVector
        One non-negative weight per row.
    outcome_col, exposure_col : str, optional
        Default to the table's outcome and exposure columns.
    interval_mode : str
        ``"naive"`` uses the model-based WLS standard error, which treats the
        weights as known. ``"robust"`` uses an HC2 sandwich standard error.
        ``"bootstrap"`` returns the point estimate only; use
        ``bootstrap_estimate`` for the interval.
    alpha : float
        One minus the confidence level.
    replicate : int, optional
        Stored on the returned record.
    keep_model : bool
        Attach the statsmodels result to the record, for residual diagnostics.

    Raises
    ------
    ``EstimationError``
        If the weights are misaligned, NaN, negative or all zero, or if the
        weighted design matrix is rank-deficient (e.g. constant exposure).
    """
    if interval_mode not in INTERVAL_MODES:
        raise ValueError(f"interval_mode must be one of {INTERVAL_MODES}, got {interval_mode!r}.")

    outcome_col = outcome_col or table.outcome
    exposure_col = exposure_col or table.exposure

    w = np.asarray(weights, dtype=float).ravel()
    _check_weights(w, len(table))

    x = table.column(exposure_col).astype(float)
    design = np.column_stack([np.ones_like(x), x]) * np.sqrt(w)[:, None]
    rank = int(np.linalg.matrix_rank(design))
    if rank < 2:
        raise EstimationError(
            f"Weighted design matrix has rank {rank} (need 2): exposure "
            f"'{exposure_col}' does not vary among positively weighted rows.",
            rank=rank,
        )

    keep = w > 0.0
    data = table.frame.loc[keep]
    cov_type = _ROBUST_COV if interval_mode == "robust" else "nonrobust"
    result = smf.wls(
        f"{outcome_col} ~ {exposure_col}", data=data, weights=w[keep]
    ).fit(cov_type=cov_type)

    estimate = float(result.params[exposure_col])
    model = result if keep_model else None

    if interval_mode == "bootstrap":
        return EstimateRecord(
            estimate=estimate,
            interval_mode=interval_mode,
            replicate=replicate,
            statsmodels_result=model,
        )

    ci = result.conf_int(alpha=alpha)
    return EstimateRecord(
        estimate=estimate,
        std_err=float(result.bse[exposure_col]),
        lower=float(ci.loc[exposure_col, 0]),
        upper=float(ci.loc[exposure_col, 1]),
        pvalue=float(result.pvalues[exposure_col]),
        interval_mode=interval_mode,
        replicate=replicate,
        statsmodels_result=model,
    )
