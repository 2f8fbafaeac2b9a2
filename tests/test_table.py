import numpy as np
import pandas as pd
import pytest

from pseudopop import ObservationTable, Term


N = 200


def make_data():
    """Fixed seed so every call returns the same dataframe."""
    rng = np.random.default_rng(42)
    l = rng.normal(size=N)
    a = rng.binomial(1, 0.5, size=N).astype(float)
    y = a + l + rng.normal(size=N)
    return pd.DataFrame({"id": np.arange(N), "a": a, "y": y, "l": l, "dose": l + rng.normal(size=N)})


class TestObservationTableValidation:
    def test_missing_exposure_raises(self):
        with pytest.raises(ValueError, match="Exposure"):
            ObservationTable(make_data(), "treated", "y")

    def test_missing_outcome_raises(self):
        with pytest.raises(ValueError, match="Outcome"):
            ObservationTable(make_data(), "a", "income")

    def test_missing_covariate_raises(self):
        with pytest.raises(ValueError, match="Covariate"):
            ObservationTable(make_data(), "a", "y", ["age"])

    def test_missing_unit_id_raises(self):
        with pytest.raises(ValueError, match="Unit id"):
            ObservationTable(make_data(), "a", "y", unit_id="subject")

    def test_exposure_equals_outcome_raises(self):
        with pytest.raises(ValueError, match="different"):
            ObservationTable(make_data(), "y", "y")

    def test_binary_exposure_needs_both_levels(self):
        df = make_data()
        df["a"] = 1.0
        with pytest.raises(ValueError, match="both 0 and 1"):
            ObservationTable(df, "a", "y")


class TestObservationTable:
    def test_exposure_type_inferred(self):
        df = make_data()
        assert ObservationTable(df, "a", "y").exposure_type == "binary"
        assert ObservationTable(df, "dose", "y").exposure_type == "continuous"

    def test_boolean_exposure_is_binary(self):
        df = make_data()
        df["a"] = df["a"].astype(bool)
        table = ObservationTable(df, "a", "y")
        assert table.exposure_type == "binary"
        assert set(table.exposure_values) == {0.0, 1.0}

    def test_missing_values_dropped(self):
        df = make_data()
        df.loc[[3, 10], "l"] = np.nan
        df.loc[5, "dose"] = np.nan  # not a named column, so kept
        table = ObservationTable(df, "a", "y", ["l"])
        assert len(table) == N - 2

    def test_missing_values_raise_without_dropna(self):
        df = make_data()
        df.loc[3, "y"] = np.nan
        with pytest.raises(ValueError, match="missing"):
            ObservationTable(df, "a", "y", dropna=False)

    def test_covariates_promoted_to_terms(self):
        table = ObservationTable(make_data(), "a", "y", ["l", Term("dose", "square")])
        assert table.covariates == (Term("l"), Term("dose", "square"))
        assert table.exposure_model_spec().formula == "a ~ l + dose + I(dose ** 2)"

    def test_frame_is_a_copy(self):
        table = ObservationTable(make_data(), "a", "y")
        frame = table.frame
        frame["y"] = 0.0
        assert not np.all(table.outcome_values == 0.0)

    def test_source_dataframe_not_shared(self):
        df = make_data()
        table = ObservationTable(df, "a", "y")
        df["y"] = 0.0
        assert not np.all(table.outcome_values == 0.0)

    def test_required_columns(self):
        table = ObservationTable(make_data(), "a", "y", ["l"], unit_id="id")
        assert table.required_columns == ["a", "y", "l", "id"]

    def test_repr(self):
        table = ObservationTable(make_data(), "a", "y", ["l"])
        assert f"n={N}" in repr(table)
        assert "binary" in repr(table)


class TestObservationTableTransformations:
    def test_augment_returns_new_table(self):
        table = ObservationTable(make_data(), "a", "y", ["l"])
        augmented = table.augment(l_sq=table.column("l") ** 2)
        np.testing.assert_allclose(augmented.column("l_sq"), table.column("l") ** 2)
        with pytest.raises(KeyError):
            table.column("l_sq")

    def test_augment_accepts_callable(self):
        table = ObservationTable(make_data(), "a", "y", ["l"])
        augmented = table.augment(double=lambda df: df["l"] * 2)
        np.testing.assert_allclose(augmented.column("double"), table.column("l") * 2)
        assert augmented.exposure == "a"
        assert augmented.covariates == table.covariates

    def test_augment_wrong_length_raises(self):
        table = ObservationTable(make_data(), "a", "y")
        with pytest.raises(ValueError, match="expected"):
            table.augment(bad=np.ones(3))

    def test_take_repeats_rows(self):
        table = ObservationTable(make_data(), "a", "y")
        sub = table.take([0, 0, 5])
        assert len(sub) == 3
        assert sub.outcome_values[0] == sub.outcome_values[1] == table.outcome_values[0]
        assert sub.outcome_values[2] == table.outcome_values[5]
        assert sub.exposure_type == table.exposure_type
        assert len(table) == N
