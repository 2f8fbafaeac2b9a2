from __future__ import annotations

import numpy as np
import pandas as pd

from ._check import DiagnosticCheck, DiagnosticReport
from ..table import ObservationTable
from ..weights import WeightVector

_STABILIZED_MEAN_TOL = 0.10
_EXTREME_RATIO       = 10.0
_MIN_ESS_FRACTION    = 0.10
_BALANCE_THRESHOLD   = 0.10


def _weighted_mean(x: np.ndarray, w: np.ndarray) -> float:
    return float(np.sum(w * x) / np.sum(w))


def _weighted_var(x: np.ndarray, w: np.ndarray) -> float:
    # Population variance; enough for balance diagnostics.
    mu = _weighted_mean(x, w)
    return float(np.sum(w * (x - mu) ** 2) / np.sum(w))


def standardized_mean_difference(x, exposure, weights=None) -> float:
    """
    Weighted standardized mean difference of ``x`` between exposed and unexposed.

    ``(mean_1 - mean_0) / sqrt((var_1 + var_0) / 2)``, with weighted means and
    variances inside each group. Returns ``0.0`` when both groups are constant.
    """
    x = np.asarray(x, dtype=float)
    a = np.asarray(exposure, dtype=float)
    w = np.ones_like(x) if weights is None else np.asarray(weights, dtype=float)
    t, c = a == 1.0, a == 0.0
    if not t.any() or not c.any():
        raise ValueError("Both exposure groups must be non-empty.")
    mt, mc = _weighted_mean(x[t], w[t]), _weighted_mean(x[c], w[c])
    denom = np.sqrt(0.5 * (_weighted_var(x[t], w[t]) + _weighted_var(x[c], w[c])))
    if denom <= 0.0:
        return 0.0
    return float((mt - mc) / denom)


def weighted_correlation(x, y, weights=None) -> float:
    """Pearson correlation of ``x`` and ``y`` under observation weights."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    w = np.ones_like(x) if weights is None else np.asarray(weights, dtype=float)
    mx, my = _weighted_mean(x, w), _weighted_mean(y, w)
    cov = np.sum(w * (x - mx) * (y - my)) / np.sum(w)
    denom = np.sqrt(_weighted_var(x, w) * _weighted_var(y, w))
    if denom <= 0.0:
        return 0.0
    return float(cov / denom)


# ── Checks ────────────────────────────────────────────────────────────────────

def _check_stabilized_mean(weights: WeightVector) -> DiagnosticCheck:
    mean = weights.mean
    passed = abs(mean - 1.0) <= _STABILIZED_MEAN_TOL
    detail = f"mean weight = {mean:.4f}  (expected ≈ 1)"
    if not passed:
        detail += (
            "  Stabilized weights far from mean 1 suggest a misspecified "
            "exposure model or near-violations of positivity."
        )
    return DiagnosticCheck("Stabilized mean", passed, detail)


def _check_extreme_weights(weights: WeightVector) -> DiagnosticCheck:
    ratio = weights.max / weights.mean
    passed = ratio <= _EXTREME_RATIO
    detail = f"max weight = {weights.max:.4f}  ({ratio:.1f}× the mean)"
    if not passed:
        detail += (
            f"  Weights above {_EXTREME_RATIO:g}× the mean dominate the estimate; "
            f"consider truncation or a richer exposure model."
        )
    return DiagnosticCheck("Extreme weights", passed, detail)


def _check_ess(weights: WeightVector) -> DiagnosticCheck:
    n = len(weights)
    ess = weights.effective_sample_size
    passed = ess >= _MIN_ESS_FRACTION * n
    detail = f"ESS = {ess:.1f} of n = {n}  ({ess / n:.0%})"
    if not passed:
        detail += "  Very few observations carry most of the weight."
    return DiagnosticCheck("Effective sample size", passed, detail)


def _check_balance(table: ObservationTable, weights: WeightVector) -> DiagnosticCheck | None:
    frame = table.frame
    columns = [
        t.column for t in table.covariates
        if t.transform != "categorical" and pd.api.types.is_numeric_dtype(frame[t.column])
    ]
    columns = list(dict.fromkeys(columns))
    if not columns:
        return None

    a = table.exposure_values
    w = weights.values
    if table.exposure_type == "binary":
        stats = {c: standardized_mean_difference(frame[c], a, w) for c in columns}
        label = "SMD"
    else:
        stats = {c: weighted_correlation(frame[c], a, w) for c in columns}
        label = "corr"

    worst = max(stats, key=lambda c: abs(stats[c]))
    passed = abs(stats[worst]) < _BALANCE_THRESHOLD
    shown = ", ".join(f"{c}: {v:+.3f}" for c, v in stats.items())
    detail = f"weighted {label} {shown}  (threshold |{label}| < {_BALANCE_THRESHOLD:g})"
    if not passed:
        detail += f"  '{worst}' remains imbalanced after weighting."
    return DiagnosticCheck("Covariate balance", passed, detail)


class WeightDiagnosticsReport(DiagnosticReport):
    """
    Diagnostics of a weight vector against the table it was computed for.

    Obtain via ``IPWResult.diagnose()`` or ``diagnose_weights(table, weights)``.
    """

    def _title(self) -> str:
        return f"IP Weight Diagnostics: {self._exposure} → {self._outcome}"


def diagnose_weights(table: ObservationTable, weights: WeightVector) -> WeightDiagnosticsReport:
    """
    Run the weight diagnostics.

    - **Stabilized mean** (stabilized weights only): mean within 0.9–1.1.
    - **Extreme weights**: largest weight at most 10× the mean.
    - **Effective sample size**: Kish ESS at least 10% of n.
    - **Covariate balance**: weighted SMD (binary exposure) or weighted
      correlation with the exposure (continuous) below 0.1 in absolute value
      for each numeric covariate.
    """
    if len(weights) != len(table):
        raise ValueError(f"Got {len(weights)} weights for a table of {len(table)} rows.")

    checks = []
    if weights.stabilized:
        checks.append(_check_stabilized_mean(weights))
    checks.append(_check_extreme_weights(weights))
    checks.append(_check_ess(weights))
    balance = _check_balance(table, weights)
    if balance is not None:
        checks.append(balance)
    return WeightDiagnosticsReport(checks, table.exposure, table.outcome)
