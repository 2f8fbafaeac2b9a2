import warnings

import numpy as np
import pandas as pd
import pytest

from pseudopop import FittedModel, ModelSpec, Term, fit_model


N = 1_000


def make_data():
    """
    Ground truth DGP:
      l ~ N(0, 1),  g ∈ {a, b, c}
      x = 1 + 2*l + N(0, 0.5)
      t ~ Bernoulli(logistic(0.8*l))
    """
    rng = np.random.default_rng(42)
    l = rng.normal(size=N)
    x = 1.0 + 2.0 * l + rng.normal(scale=0.5, size=N)
    t = rng.binomial(1, 1 / (1 + np.exp(-0.8 * l))).astype(float)
    g = rng.choice(["a", "b", "c"], size=N)
    pos = np.exp(rng.normal(size=N))
    return pd.DataFrame({"l": l, "x": x, "t": t, "g": g, "pos": pos})


class TestModelSpec:
    def test_formula_renders_terms_in_order(self):
        spec = ModelSpec("t", ["l", Term("g", "categorical"), Term("x", "square")])
        assert spec.formula == "t ~ l + C(g) + x + I(x ** 2)"

    def test_log_and_spline_terms(self):
        assert Term("pos", "log").render() == "np.log(pos)"
        assert Term("l", "spline").render() == "cr(l, df=4, constraints='center')"

    def test_no_terms_is_intercept_only(self):
        assert ModelSpec("t").formula == "t ~ 1"

    def test_columns(self):
        spec = ModelSpec("t", [Term("g", "categorical"), "l"])
        assert spec.columns == ["t", "g", "l"]

    def test_unknown_transform_raises(self):
        with pytest.raises(ValueError, match="transform"):
            Term("l", "cube")


class TestFitModel:
    @classmethod
    def setup_class(cls):
        cls.df = make_data()

    def test_linear_fit_recovers_coefficients_and_scale(self):
        model = fit_model(self.df, ModelSpec("x", ["l"]), family="linear")
        assert isinstance(model, FittedModel)
        assert model.params["l"] == pytest.approx(2.0, abs=0.1)
        assert model.residual_scale == pytest.approx(0.5, abs=0.05)
        assert len(model.fitted_values) == N

    def test_binomial_fit_gives_probabilities(self):
        model = fit_model(self.df, ModelSpec("t", ["l"]), family="binomial")
        p = model.fitted_values
        assert np.all((p > 0) & (p < 1))
        assert model.residual_scale is None
        assert model.params["l"] == pytest.approx(0.8, abs=0.25)

    def test_intercept_only_binomial_is_base_rate(self):
        model = fit_model(self.df, ModelSpec("t"), family="binomial")
        np.testing.assert_allclose(model.fitted_values, self.df["t"].mean(), atol=1e-6)

    def test_unit_weights_match_unweighted_linear_fit(self):
        spec = ModelSpec("x", ["l"])
        plain = fit_model(self.df, spec, family="linear")
        weighted = fit_model(self.df, spec, family="linear", weights=np.ones(N))
        np.testing.assert_allclose(plain.params.values, weighted.params.values)

    def test_unit_weights_match_unweighted_binomial_fit(self):
        spec = ModelSpec("t", ["l"])
        plain = fit_model(self.df, spec, family="binomial")
        weighted = fit_model(self.df, spec, family="binomial", weights=np.ones(N))
        np.testing.assert_allclose(plain.params.values, weighted.params.values, atol=1e-5)

    def test_transformed_terms_fit(self):
        spec = ModelSpec("x", [Term("g", "categorical"), Term("l", "spline"), Term("pos", "log")])
        model = fit_model(self.df, spec, family="linear")
        assert len(model.fitted_values) == N
        assert any(name.startswith("C(g)") for name in model.params.index)
        exog = model.statsmodels_result.model.exog
        assert np.linalg.matrix_rank(exog) == exog.shape[1]

    @pytest.mark.parametrize("family, response", [("linear", "x"), ("binomial", "t")])
    def test_spline_design_is_full_rank(self, family, response):
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            model = fit_model(self.df, ModelSpec(response, [Term("l", "spline")]), family=family)
        assert "SingularMatrixWarning" not in [type(w.message).__name__ for w in caught]
        exog = model.statsmodels_result.model.exog
        assert exog.shape[1] == 5  # intercept plus four basis columns
        assert np.linalg.matrix_rank(exog) == exog.shape[1]
        assert np.all(np.isfinite(model.params.values))

    def test_params_returns_copy(self):
        model = fit_model(self.df, ModelSpec("x", ["l"]))
        params = model.params
        params[:] = 0.0
        assert model.params["l"] != 0.0

    def test_unknown_family_raises(self):
        with pytest.raises(ValueError, match="family"):
            fit_model(self.df, ModelSpec("x", ["l"]), family="poisson")

    def test_missing_column_raises(self):
        with pytest.raises(ValueError, match="not found"):
            fit_model(self.df, ModelSpec("x", ["age"]))

    def test_rows_dropped_by_fit_raise(self):
        df = self.df.copy()
        df.loc[0, "l"] = np.nan
        with pytest.raises(ValueError, match="missing values"):
            fit_model(df, ModelSpec("x", ["l"]))
