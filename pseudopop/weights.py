from __future__ import annotations

import logging

import numpy as np
import scipy.stats as st

from ._exceptions import DomainError

logger = logging.getLogger(__name__)

MODES = ("binary", "continuous")


class WeightVector:
    """
    One non-negative inverse-probability weight per observation.

    Aligned by position with the table the exposure model was fitted on.
    Produced by ``compute_weights``; never modified afterwards.
    """

    def __init__(
        self,
        values: np.ndarray,
        mode: str,
        stabilized: bool,
        truncated_at: float | None = None,
    ) -> None:
        self._values = np.array(values, dtype=float)
        self._values.setflags(write=False)
        self._mode = mode
        self._stabilized = stabilized
        self._truncated_at = truncated_at

    @property
    def values(self) -> np.ndarray:
        """The weights as a writable copy."""
        return self._values.copy()

    @property
    def mode(self) -> str:
        """``"binary"`` or ``"continuous"``."""
        return self._mode

    @property
    def stabilized(self) -> bool:
        return self._stabilized

    @property
    def truncated_at(self) -> float | None:
        """Upper percentile the weights were clipped at, or ``None``."""
        return self._truncated_at

    @property
    def mean(self) -> float:
        return float(np.mean(self._values))

    @property
    def variance(self) -> float:
        return float(np.var(self._values, ddof=1))

    @property
    def max(self) -> float:
        return float(np.max(self._values))

    @property
    def effective_sample_size(self) -> float:
        """Kish effective sample size, ``(Σw)² / Σw²``."""
        s2 = float(np.sum(self._values ** 2))
        if s2 <= 0.0:
            return float("nan")
        return float(np.sum(self._values) ** 2 / s2)

    def __len__(self) -> int:
        return len(self._values)

    def __array__(self, dtype=None, copy=None):
        if dtype is None:
            return self._values.copy()
        return self._values.astype(dtype)

    def summary(self) -> str:
        kind = "stabilized" if self._stabilized else "unstabilized"
        q = np.percentile(self._values, [0, 25, 50, 75, 100])
        lines = [
            "",
            f"IP Weights ({self._mode} exposure, {kind})",
            "─" * 50,
            f"  Observations         : {len(self):>10d}",
            f"  Mean                 : {self.mean:>10.4f}",
            f"  Std. dev.            : {np.sqrt(self.variance):>10.4f}",
            f"  Min / median / max   : {q[0]:.4f} / {q[2]:.4f} / {q[4]:.4f}",
            f"  Effective sample size: {self.effective_sample_size:>10.1f}",
        ]
        if self._truncated_at is not None:
            lines.append(
                f"  Truncated at         : {100 - self._truncated_at:g}th / "
                f"{self._truncated_at:g}th percentiles"
            )
        lines.append("")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return self.summary()


# ── Weight formulas ───────────────────────────────────────────────────────────

def _binary_weights(fitted: np.ndarray, exposure: np.ndarray, stabilize: bool) -> np.ndarray:
    bad = np.flatnonzero(~np.isin(exposure, (0.0, 1.0)))
    if bad.size:
        i = int(bad[0])
        raise DomainError(
            f"Binary exposure must be 0/1; observation {i} has value {exposure[i]}.",
            index=i,
        )

    bad = np.flatnonzero(~np.isfinite(fitted) | (fitted < 0.0) | (fitted > 1.0))
    if bad.size:
        i = int(bad[0])
        raise DomainError(
            f"Fitted probability for observation {i} is {fitted[i]}; "
            f"probabilities must lie in [0, 1].",
            index=i,
        )

    p_observed = np.where(exposure == 1.0, fitted, 1.0 - fitted)
    zero = np.flatnonzero(p_observed <= 0.0)
    if zero.size:
        i = int(zero[0])
        raise DomainError(
            f"Positivity violation: observation {i} has exposure {exposure[i]:g} "
            f"but a fitted probability of exposure of {fitted[i]:g}, so the "
            f"probability of its observed exposure is zero.",
            index=i,
        )

    if stabilize:
        rate = float(np.mean(exposure))
        numerator = np.where(exposure == 1.0, rate, 1.0 - rate)
    else:
        numerator = 1.0
    return numerator / p_observed


def _continuous_weights(
    fitted: np.ndarray,
    exposure: np.ndarray,
    stabilize: bool,
    residual_scale,
) -> np.ndarray:
    if residual_scale is None:
        raise DomainError("Continuous exposure weights need the exposure model's residual scale.")

    scale = np.broadcast_to(np.asarray(residual_scale, dtype=float), fitted.shape)
    bad = np.flatnonzero(~np.isfinite(scale) | (scale <= 0.0))
    if bad.size:
        i = int(bad[0])
        raise DomainError(
            f"Residual scale must be positive and finite; got {scale[i]} "
            f"for observation {i}.",
            index=i,
        )

    for label, arr in [("Exposure", exposure), ("Fitted value", fitted)]:
        bad = np.flatnonzero(~np.isfinite(arr))
        if bad.size:
            i = int(bad[0])
            raise DomainError(f"{label} for observation {i} is not finite.", index=i)

    denominator = st.norm.pdf(exposure, loc=fitted, scale=scale)
    zero = np.flatnonzero(denominator <= 0.0)
    if zero.size:
        i = int(zero[0])
        raise DomainError(
            f"Conditional exposure density underflows to zero for observation {i} "
            f"(exposure {exposure[i]:g}, fitted mean {fitted[i]:g}).",
            index=i,
        )

    if stabilize:
        if len(exposure) < 2:
            raise DomainError("Stabilized weights need at least two observations.")
        marginal_sd = float(np.std(exposure, ddof=1))
        if not marginal_sd > 0.0:
            raise DomainError("Exposure has no variation; marginal density is undefined.")
        numerator = st.norm.pdf(exposure, loc=float(np.mean(exposure)), scale=marginal_sd)
    else:
        numerator = 1.0
    return numerator / denominator


def _truncate(weights: np.ndarray, percentile: float) -> np.ndarray:
    if not 50.0 < percentile < 100.0:
        raise ValueError(f"truncate must lie strictly between 50 and 100, got {percentile}.")
    lo, hi = np.percentile(weights, [100.0 - percentile, percentile])
    n_clipped = int(np.sum((weights < lo) | (weights > hi)))
    logger.info(
        "Truncated %d weight(s) to the [%g, %g] percentile range [%.4f, %.4f]",
        n_clipped, 100.0 - percentile, percentile, lo, hi,
    )
    return np.clip(weights, lo, hi)


# ── Public API ────────────────────────────────────────────────────────────────

def compute_weights(
    fitted_values,
    observed_exposure,
    mode: str = "binary",
    stabilize: bool = True,
    residual_scale=None,
    truncate: float | None = None,
) -> WeightVector:
    """
    Convert exposure-model output into inverse-probability weights.

    Binary exposure
        ``1 / P(A=a | L)``, or ``P(A=a) / P(A=a | L)`` when stabilized, where
        the marginal ``P(A=a)`` is the sample exposure rate.
    Continuous exposure
        ``1 / f(a | L)``, or ``f(a) / f(a | L)`` when stabilized, with both
        densities normal. The conditional density uses the fitted mean and
        ``residual_scale``; the marginal one uses the sample mean and standard
        deviation of the exposure.

    Parameters
    ----------
    fitted_values : array-like
        Fitted probabilities of exposure (binary) or fitted means (continuous).
    observed_exposure : array-like
        Observed exposure per observation, aligned with ``fitted_values``.
    mode : str
        ``"binary"`` or ``"continuous"``.
    stabilize : bool
        Multiply by the marginal probability/density of the observed exposure.
    residual_scale : float or array-like, optional
        Residual standard deviation of the exposure model. Required for
        continuous exposure.
    truncate : float, optional
        Clip weights to the ``[100 - truncate, truncate]`` percentiles,
        e.g. ``99`` for the 1st/99th. No truncation by default.

    Raises
    ------
    ``DomainError``
        If any input makes a weight undefined: a probability at the boundary
        of the observed exposure, a non-positive scale, or non-finite values.
        ``index`` holds the first offending observation.
    ``ValueError``
        If ``mode`` is unknown or the inputs have different lengths.
    """
    if mode not in MODES:
        raise ValueError(f"mode must be one of {MODES}, got {mode!r}.")

    fitted = np.asarray(fitted_values, dtype=float).ravel()
    exposure = np.asarray(observed_exposure, dtype=float).ravel()
    if fitted.shape != exposure.shape:
        raise ValueError(
            f"fitted_values has {fitted.size} entries but observed_exposure has {exposure.size}."
        )

    if mode == "binary":
        weights = _binary_weights(fitted, exposure, stabilize)
    else:
        weights = _continuous_weights(fitted, exposure, stabilize, residual_scale)

    if truncate is not None:
        weights = _truncate(weights, float(truncate))

    return WeightVector(weights, mode=mode, stabilized=stabilize, truncated_at=truncate)


def weights_from_model(
    model,
    table,
    stabilize: bool = True,
    truncate: float | None = None,
) -> WeightVector:
    """
    Compute weights for ``table`` from a ``FittedModel`` of its exposure.

    The weighting mode follows the model family: binomial fits give binary
    weights, linear fits give continuous weights.
    """
    mode = "binary" if model.family == "binomial" else "continuous"
    return compute_weights(
        model.fitted_values,
        table.exposure_values,
        mode=mode,
        stabilize=stabilize,
        residual_scale=model.residual_scale,
        truncate=truncate,
    )
