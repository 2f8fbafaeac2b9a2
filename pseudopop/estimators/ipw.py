from __future__ import annotations

import logging
from typing import Sequence

import pandas as pd
import scipy.stats as st
import statsmodels.formula.api as smf

from ..bootstrap import BootstrapConfig, BootstrapResult, bootstrap_estimate
from ..diagnostics import Assumption, WeightDiagnosticsReport, diagnose_weights
from ..models import FittedModel, Term, fit_model
from ..table import ObservationTable
from ..weights import WeightVector, weights_from_model
from .outcome import INTERVAL_MODES, EstimateRecord, fit_weighted_outcome

logger = logging.getLogger(__name__)

IPW_ASSUMPTIONS: list[Assumption] = [
    Assumption("Exchangeability: no unmeasured confounding given the covariates", testable=False),
    Assumption("Positivity: every covariate pattern can receive every exposure level", testable=True),
    Assumption("Consistency: observed outcomes equal potential outcomes under the received exposure", testable=False),
    Assumption("Correct specification of the exposure model", testable=True),
    Assumption("Stable Unit Treatment Value Assumption (SUTVA)", testable=False),
]


# ── Result ─────────────────────────────────────────────────────────────────────

class IPWResult:
    """
    The result of an inverse-probability-weighted estimation.

    Holds the weighted estimate alongside the unadjusted one (outcome
    regressed on exposure with no weights), so the confounding removed by
    weighting can be read off directly. When the interval mode is
    ``"bootstrap"``, ``effect``, ``std_err`` and ``conf_int`` come from the
    bootstrap run.
    """

    def __init__(
        self,
        record: EstimateRecord,
        unadjusted_effect: float,
        weights: WeightVector,
        exposure_model: FittedModel,
        table: ObservationTable,
        interval_mode: str,
        alpha: float,
        bootstrap: BootstrapResult | None = None,
    ) -> None:
        self._record = record
        self._unadjusted_effect = unadjusted_effect
        self._weights = weights
        self._exposure_model = exposure_model
        self._table = table
        self._interval_mode = interval_mode
        self._alpha = alpha
        self._bootstrap = bootstrap

    @property
    def effect(self) -> float:
        """Weighted estimate of the exposure effect."""
        if self._bootstrap is not None:
            return self._bootstrap.point_estimate
        return self._record.estimate

    @property
    def unadjusted_effect(self) -> float:
        """Unweighted regression of outcome on exposure, no adjustment."""
        return self._unadjusted_effect

    @property
    def std_err(self) -> float:
        if self._bootstrap is not None:
            return self._bootstrap.std_err
        return float(self._record.std_err)

    @property
    def conf_int(self) -> tuple[float, float]:
        if self._bootstrap is not None:
            return self._bootstrap.conf_int
        return self._record.conf_int

    @property
    def pvalue(self) -> float:
        """Two-sided p-value for ``H0: effect = 0``; a Wald z-test in bootstrap mode."""
        if self._bootstrap is not None:
            se = self.std_err
            if se <= 0.0:
                # Degenerate replicate distribution
                return 1.0 if self.effect == 0.0 else float("nan")
            return float(2.0 * st.norm.sf(abs(self.effect) / se))
        return float(self._record.pvalue)

    @property
    def interval_mode(self) -> str:
        return self._interval_mode

    @property
    def alpha(self) -> float:
        return self._alpha

    @property
    def exposure(self) -> str:
        return self._table.exposure

    @property
    def outcome(self) -> str:
        return self._table.outcome

    @property
    def exposure_type(self) -> str:
        return self._weights.mode

    @property
    def covariates(self) -> tuple[Term, ...]:
        return self._table.covariates

    @property
    def weights(self) -> WeightVector:
        return self._weights

    @property
    def exposure_model(self) -> FittedModel:
        return self._exposure_model

    @property
    def record(self) -> EstimateRecord:
        """The weighted outcome fit on the full sample."""
        return self._record

    @property
    def bootstrap(self) -> BootstrapResult | None:
        return self._bootstrap

    @property
    def statsmodels_result(self):
        """The underlying weighted outcome model, for residual diagnostics."""
        return self._record.statsmodels_result

    @property
    def assumptions(self) -> list[Assumption]:
        """Modelling assumptions required for a causal interpretation."""
        return list(IPW_ASSUMPTIONS)

    def diagnose(self) -> WeightDiagnosticsReport:
        """Check the weights for extreme values, lost sample size and residual imbalance."""
        return diagnose_weights(self._table, self._weights)

    def executive_summary(self) -> str:
        """Narrative explanation of the method, assumptions, and result."""
        from .._explain import explain_ipw
        return explain_ipw(self)

    def summary(self) -> str:
        lo, hi = self.conf_int
        covs = [t.render() for t in self.covariates]
        bias = self.unadjusted_effect - self.effect
        kind = "stabilized" if self._weights.stabilized else "unstabilized"
        level = 100 * (1 - self._alpha)
        interval_label = {
            "naive": "model-based",
            "robust": "HC2 sandwich",
            "bootstrap": (
                "bootstrap studentized"
                if self._bootstrap is not None and self._bootstrap.interval_method == "t"
                else "bootstrap percentile"
            ),
        }[self._interval_mode]

        lines = [
            "",
            f"IPW Causal Effect: {self.exposure} → {self.outcome}",
            f"  Exposure: {self.exposure_type}, {kind} weights",
            "─" * 54,
        ]

        if covs:
            lines += [
                f"  IPW estimate         : {self.effect:>10.4f}  (weighting on: {', '.join(covs)})",
                f"  Unadjusted estimate  : {self.unadjusted_effect:>10.4f}  (no weights)",
                f"  Confounding bias     : {bias:>+10.4f}",
            ]
        else:
            lines += [
                f"  IPW estimate         : {self.effect:>10.4f}  (no covariates in exposure model)",
            ]

        lines += [
            "",
            f"  Std. error           : {self.std_err:>10.4f}",
            f"  {f'{level:g}% CI':<21}: [{lo:.4f}, {hi:.4f}]  ({interval_label})",
            f"  p-value              : {self.pvalue:>10.4f}",
        ]
        if self._bootstrap is not None:
            b = self._bootstrap
            lines.append(
                f"  Replicates           : {b.n_used:>10d}  used, {b.n_failed} failed"
            )
        lines += [
            "",
            f"  Weights: mean {self._weights.mean:.3f}, max {self._weights.max:.3f}, "
            f"ESS {self._weights.effective_sample_size:.1f} of {len(self._weights)}",
            "",
            "  Assumptions",
            "  " + "┄" * 48,
        ]
        for a in IPW_ASSUMPTIONS:
            lines.append(f"  {a.tag}  {a.name}")
        lines.append("")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return self.summary()


# ── Estimator ──────────────────────────────────────────────────────────────────

class IPWEstimator:
    """
    Inverse-probability-weighted estimator of a marginal exposure effect.

    1. Fits an exposure model on the covariates: logistic regression for a
       binary exposure, linear regression for a continuous one.
    2. Converts the fitted model into (optionally stabilized) weights.
    3. Fits a weighted regression of outcome on exposure alone.
    4. Builds a confidence interval: model-based, HC2 robust, or by
       bootstrapping steps 1–3 together.

    Example::

        result = IPWEstimator(
            "qsmk", "wt82_71",
            covariates=["sex", "age", Term("smokeyrs", "square")],
            interval="bootstrap",
        ).fit(df)
        print(result.summary())
    """

    def __init__(
        self,
        exposure: str,
        outcome: str,
        covariates: Sequence[str | Term] = (),
        exposure_type: str | None = None,
        stabilize: bool = True,
        interval: str = "robust",
        truncate: float | None = None,
        config: BootstrapConfig | None = None,
    ) -> None:
        self._exposure = exposure
        self._outcome = outcome
        self._covariates = tuple(covariates)
        self._exposure_type = exposure_type
        self._stabilize = stabilize
        self._interval = interval
        self._truncate = truncate
        self._config = config or BootstrapConfig()
        self._validate_inputs()

    def _validate_inputs(self) -> None:
        if self._exposure == self._outcome:
            raise ValueError("Exposure and outcome must be different variables.")
        if self._interval not in INTERVAL_MODES:
            raise ValueError(f"interval must be one of {INTERVAL_MODES}, got {self._interval!r}.")
        if self._exposure_type not in (None, "binary", "continuous"):
            raise ValueError(
                f"exposure_type must be 'binary', 'continuous' or None, got {self._exposure_type!r}."
            )
        if self._truncate is not None and not 50.0 < self._truncate < 100.0:
            raise ValueError(f"truncate must lie strictly between 50 and 100, got {self._truncate}.")

    @property
    def config(self) -> BootstrapConfig:
        return self._config

    def _table(self, data: pd.DataFrame | ObservationTable) -> ObservationTable:
        if isinstance(data, ObservationTable):
            if (data.exposure, data.outcome) != (self._exposure, self._outcome):
                raise ValueError(
                    f"Table has exposure '{data.exposure}' and outcome '{data.outcome}'; "
                    f"this estimator expects '{self._exposure}' and '{self._outcome}'."
                )
            return data
        return ObservationTable(data, self._exposure, self._outcome, self._covariates)

    def _resolve_exposure_type(self, table: ObservationTable) -> str:
        if self._exposure_type is None:
            return table.exposure_type
        if self._exposure_type == "binary" and table.exposure_type != "binary":
            raise ValueError(
                f"Exposure '{self._exposure}' must be binary (0/1) for exposure_type='binary'."
            )
        return self._exposure_type

    def fit_exposure_model(self, table: ObservationTable) -> FittedModel:
        """Regress the exposure on the covariates."""
        exposure_type = self._resolve_exposure_type(table)
        family = "binomial" if exposure_type == "binary" else "linear"
        return fit_model(table.frame, table.exposure_model_spec(), family=family)

    def compute_weights(self, table: ObservationTable) -> WeightVector:
        """Fit the exposure model on ``table`` and turn it into weights."""
        model = self.fit_exposure_model(table)
        return weights_from_model(model, table, stabilize=self._stabilize, truncate=self._truncate)

    def refit(self, table: ObservationTable, replicate: int | None = None) -> EstimateRecord:
        """
        Run the whole procedure on one table and return the outcome-model record.

        This is the refit procedure bootstrapped by ``fit()``: each replicate
        gets its own exposure model, marginal exposure distribution and weights.
        Robust standard errors are reported (model-based ones in ``"naive"``
        mode), so studentized intervals are available.
        """
        mode = "naive" if self._interval == "naive" else "robust"
        weights = self.compute_weights(table)
        return fit_weighted_outcome(
            table, weights, interval_mode=mode, alpha=self._config.alpha, replicate=replicate,
        )

    def fit(self, data: pd.DataFrame | ObservationTable) -> IPWResult:
        """
        Weight the sample and estimate the effect of exposure on outcome.

        Parameters
        ----------
        data : pd.DataFrame or ObservationTable
            Must contain the exposure, outcome and covariate columns.

        Raises
        ------
        ``ValueError``
            If columns are missing, or a binary exposure lacks one level.
        ``DomainError``
            If the fitted exposure model makes a weight undefined.
        ``EstimationError``
            If the weighted outcome model cannot be fitted.
        ``BootstrapError``
            In bootstrap mode, if too many replicates fail.
        """
        table = self._table(data)
        cfg = self._config
        T, Y = table.exposure, table.outcome

        model = self.fit_exposure_model(table)
        weights = weights_from_model(model, table, stabilize=self._stabilize, truncate=self._truncate)

        # Same mode as refit(), so in bootstrap mode this record is replicate 0.
        record_mode = "robust" if self._interval == "bootstrap" else self._interval
        record = fit_weighted_outcome(
            table, weights, interval_mode=record_mode, alpha=cfg.alpha, keep_model=True,
        )

        unadjusted = float(smf.ols(f"{Y} ~ {T}", data=table.frame).fit().params[T])

        boot = None
        if self._interval == "bootstrap":
            boot = bootstrap_estimate(
                table,
                self.refit,
                replicate_count=cfg.replicate_count,
                interval_method=cfg.interval_method,
                failure_threshold=cfg.failure_threshold,
                alpha=cfg.alpha,
                point_estimate=cfg.point_estimate,
                seed=cfg.seed,
                n_jobs=cfg.n_jobs,
                timeout=cfg.timeout,
                apparent=record,
            )

        logger.debug("IPW fit %s → %s: effect %.4f", T, Y, record.estimate)
        return IPWResult(
            record=record,
            unadjusted_effect=unadjusted,
            weights=weights,
            exposure_model=model,
            table=table,
            interval_mode=self._interval,
            alpha=cfg.alpha,
            bootstrap=boot,
        )
