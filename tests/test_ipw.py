from types import SimpleNamespace

import numpy as np
import pandas as pd
import pytest

from pseudopop import (
    BootstrapConfig,
    EstimateRecord,
    IPWEstimator,
    IPWResult,
    ObservationTable,
    Term,
    WeightDiagnosticsReport,
    compute_weights,
)


N = 1_000


def make_binary_data(seed=42):
    """
    Ground truth DGP (true effect of a on y is zero):
      l ~ Bernoulli(0.5)
      a ~ Bernoulli(0.25 if l == 0 else 0.75)
      y = l + N(0, 1)
    """
    rng = np.random.default_rng(seed)
    l = rng.binomial(1, 0.5, size=N).astype(float)
    a = rng.binomial(1, np.where(l == 1, 0.75, 0.25)).astype(float)
    y = l + rng.normal(size=N)
    return pd.DataFrame({"l": l, "a": a, "y": y})


def make_continuous_data(seed=42, true_effect=0.0):
    """
    Ground truth DGP:
      l ~ N(0, 1)
      a = l + N(0, 1)
      y = true_effect*a + l + N(0, 1)
    """
    rng = np.random.default_rng(seed)
    l = rng.normal(size=N)
    a = l + rng.normal(size=N)
    y = true_effect * a + l + rng.normal(size=N)
    return pd.DataFrame({"l": l, "a": a, "y": y})


class TestIPWEstimatorValidation:
    def test_exposure_equals_outcome_raises(self):
        with pytest.raises(ValueError, match="different"):
            IPWEstimator("a", "a")

    def test_unknown_interval_raises(self):
        with pytest.raises(ValueError, match="interval"):
            IPWEstimator("a", "y", interval="jackknife")

    def test_unknown_exposure_type_raises(self):
        with pytest.raises(ValueError, match="exposure_type"):
            IPWEstimator("a", "y", exposure_type="count")

    def test_invalid_truncation_raises(self):
        with pytest.raises(ValueError, match="truncate"):
            IPWEstimator("a", "y", truncate=30)

    def test_missing_covariate_column_raises(self):
        with pytest.raises(ValueError, match="Covariate"):
            IPWEstimator("a", "y", covariates=["age"]).fit(make_binary_data())

    def test_binary_type_on_continuous_exposure_raises(self):
        with pytest.raises(ValueError, match="binary"):
            IPWEstimator("a", "y", ["l"], exposure_type="binary").fit(make_continuous_data())

    def test_mismatched_table_raises(self):
        table = ObservationTable(make_binary_data(), "l", "y")
        with pytest.raises(ValueError, match="expects"):
            IPWEstimator("a", "y", ["l"]).fit(table)


class TestBinaryNullEffect:
    """Exposure has no effect on outcome; only the confounder l does."""

    @classmethod
    def setup_class(cls):
        cls.df = make_binary_data()
        cls.result = IPWEstimator("a", "y", ["l"], stabilize=False).fit(cls.df)

    def test_returns_result(self):
        assert isinstance(self.result, IPWResult)
        assert self.result.exposure_type == "binary"

    def test_recovers_null_effect(self):
        assert abs(self.result.effect) < 0.2

    def test_unadjusted_estimate_is_confounded(self):
        # E[y|a=1] - E[y|a=0] = 0.75 - 0.25 = 0.5 without weighting.
        assert self.result.unadjusted_effect == pytest.approx(0.5, abs=0.25)

    def test_interval_brackets_effect(self):
        lo, hi = self.result.conf_int
        assert lo < self.result.effect < hi

    def test_unstabilized_weights_are_inverse_propensities(self):
        w = self.result.weights
        assert not w.stabilized
        # Propensities are near 0.25/0.75, so weights sit near 4/3 or 4.
        assert w.values.min() > 1.0
        assert w.max < 6.0

    def test_std_err_positive(self):
        assert self.result.std_err > 0
        assert 0.0 <= self.result.pvalue <= 1.0

    def test_statsmodels_result_kept(self):
        assert self.result.statsmodels_result is not None
        assert self.result.bootstrap is None


class TestBinaryStabilized:
    @classmethod
    def setup_class(cls):
        cls.df = make_binary_data()
        cls.stab = IPWEstimator("a", "y", ["l"], stabilize=True).fit(cls.df)
        cls.unstab = IPWEstimator("a", "y", ["l"], stabilize=False).fit(cls.df)

    def test_same_point_estimate(self):
        # With exposure as the only regressor, stabilization rescales each arm by a constant.
        assert self.stab.effect == pytest.approx(self.unstab.effect, abs=1e-8)

    def test_stabilized_weights_mean_near_one(self):
        assert self.stab.weights.mean == pytest.approx(1.0, abs=0.05)

    def test_stabilized_weights_less_variable(self):
        assert self.stab.weights.variance < self.unstab.weights.variance


class TestContinuousExposure:
    @classmethod
    def setup_class(cls):
        cls.df = make_continuous_data()
        cls.estimator = IPWEstimator("a", "y", ["l"], stabilize=True)
        cls.result = cls.estimator.fit(cls.df)

    def test_detects_continuous_exposure(self):
        assert self.result.exposure_type == "continuous"
        assert self.result.exposure_model.family == "linear"

    def test_stabilized_variance_markedly_lower(self):
        table = ObservationTable(self.df, "a", "y", ["l"])
        model = self.estimator.fit_exposure_model(table)
        kwargs = dict(mode="continuous", residual_scale=model.residual_scale)
        unstab = compute_weights(model.fitted_values, table.exposure_values, stabilize=False, **kwargs)
        stab = compute_weights(model.fitted_values, table.exposure_values, stabilize=True, **kwargs)
        assert stab.variance < 0.5 * unstab.variance

    def test_weighting_removes_most_confounding(self):
        # Unadjusted slope is cov(a, y) / var(a) = 0.5.
        assert self.result.unadjusted_effect == pytest.approx(0.5, abs=0.1)
        assert abs(self.result.effect) < abs(self.result.unadjusted_effect)

    def test_truncation_caps_weights(self):
        truncated = IPWEstimator("a", "y", ["l"], truncate=99).fit(self.df)
        assert truncated.weights.truncated_at == 99
        assert truncated.weights.max <= self.result.weights.max


class TestBootstrapInterval:
    @classmethod
    def setup_class(cls):
        cls.df = make_binary_data()
        cls.config = BootstrapConfig(replicate_count=60, seed=3)
        cls.estimator = IPWEstimator("a", "y", ["l"], interval="bootstrap", config=cls.config)
        cls.result = cls.estimator.fit(cls.df)

    def test_bootstrap_attached(self):
        boot = self.result.bootstrap
        assert boot is not None
        assert boot.n_used + boot.n_failed == 60

    def test_effect_is_apparent_estimate(self):
        assert self.result.effect == pytest.approx(self.result.record.estimate)

    def test_interval_from_bootstrap(self):
        assert self.result.conf_int == self.result.bootstrap.conf_int
        lo, hi = self.result.conf_int
        assert lo < self.result.effect < hi

    def test_std_err_from_bootstrap(self):
        assert self.result.std_err == pytest.approx(self.result.bootstrap.std_err)

    def test_reproducible(self):
        again = IPWEstimator("a", "y", ["l"], interval="bootstrap", config=self.config).fit(self.df)
        assert again.conf_int == self.result.conf_int

    def test_refit_returns_record(self):
        table = ObservationTable(self.df, "a", "y", ["l"])
        record = self.estimator.refit(table, replicate=5)
        assert isinstance(record, EstimateRecord)
        assert record.replicate == 5
        assert record.std_err > 0

    def test_summary_mentions_bootstrap(self):
        assert "bootstrap studentized" in self.result.summary()
        assert "Replicates" in self.result.summary()

    def test_full_sample_record_is_replicate_zero(self):
        apparent = self.result.bootstrap.apparent
        assert apparent.replicate == 0
        assert apparent.estimate == self.result.record.estimate
        assert apparent.statsmodels_result is self.result.statsmodels_result

    def test_full_sample_fitted_once(self):
        config = BootstrapConfig(replicate_count=10, seed=3, n_jobs=1)
        estimator = IPWEstimator("a", "y", ["l"], interval="bootstrap", config=config)
        refit = estimator.refit
        seen = []

        def counting_refit(table, replicate=None):
            seen.append(replicate)
            return refit(table, replicate)

        estimator.refit = counting_refit
        estimator.fit(self.df)
        assert seen == list(range(1, 11))


class TestDegenerateBootstrap:
    """A constant outcome gives identical replicate estimates and a zero bootstrap SE."""

    @classmethod
    def setup_class(cls):
        df = make_binary_data()
        df["y"] = 0.0
        config = BootstrapConfig(replicate_count=20, interval_method="percentile", n_jobs=1)
        cls.result = IPWEstimator("a", "y", ["l"], interval="bootstrap", config=config).fit(df)

    def test_zero_std_err(self):
        assert self.result.std_err == 0.0
        assert self.result.effect == 0.0

    def test_pvalue_is_one_for_zero_effect(self):
        assert self.result.pvalue == 1.0

    def test_reports_render(self):
        assert "IPW Causal Effect" in self.result.summary()
        assert "Executive Summary" in self.result.executive_summary()

    def test_pvalue_undefined_for_nonzero_effect(self):
        boot = SimpleNamespace(point_estimate=0.3, std_err=0.0)
        result = IPWResult(
            record=None, unadjusted_effect=0.0, weights=None, exposure_model=None,
            table=None, interval_mode="bootstrap", alpha=0.05, bootstrap=boot,
        )
        assert np.isnan(result.pvalue)


class TestIPWResultReporting:
    @classmethod
    def setup_class(cls):
        cls.result = IPWEstimator("a", "y", [Term("l", "categorical")]).fit(make_binary_data())

    def test_summary_contains_names(self):
        summary = self.result.summary()
        assert "IPW Causal Effect" in summary
        assert "a → y" in summary
        assert "C(l)" in summary
        assert "HC2" in summary

    def test_repr_is_summary(self):
        assert repr(self.result) == self.result.summary()

    def test_executive_summary(self):
        text = self.result.executive_summary()
        assert "Executive Summary" in text
        assert "WEIGHT DIAGNOSTICS" in text
        assert "sandwich" in text

    def test_assumptions_returns_copy(self):
        assumptions = self.result.assumptions
        assumptions.clear()
        assert len(self.result.assumptions) == 5

    def test_diagnose(self):
        report = self.result.diagnose()
        assert isinstance(report, WeightDiagnosticsReport)
        assert report.passed

    def test_naive_interval(self):
        naive = IPWEstimator("a", "y", ["l"], interval="naive").fit(make_binary_data())
        assert naive.interval_mode == "naive"
        assert "model-based" in naive.summary()


class TestNoCovariates:
    def test_fit_without_covariates_equals_unadjusted(self):
        df = make_binary_data()
        result = IPWEstimator("a", "y").fit(df)
        assert result.effect == pytest.approx(result.unadjusted_effect)
        assert result.covariates == ()
