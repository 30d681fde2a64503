"""
Tests for BRFSS harmonization with the shipped rule table.

Source files are written per year with the variable names BRFSS used in that
year, loaded through the real loader, then harmonized.
"""

import numpy as np
import pandas as pd
import pytest

from conftest import CSV_PATTERN, make_year_frame
from survey_data.brfss.harmonizer import DESIGN_FIELDS, check_design_fields, harmonize_brfss
from survey_data.brfss.loader import load_brfss_years
from survey_data.exceptions import (
    RuleCoverageError,
    UnexpectedCodeError,
    UnresolvedSourceVariableError,
)
from survey_data.harmonization.engine import harmonize_frame, resolve_passthrough


def values(series):
    """Int64/Float64 column as a list with None for missing."""
    return [None if pd.isna(v) else v for v in series.tolist()]


@pytest.fixture
def load(raw_dir):
    def _load(*years):
        return load_brfss_years(list(years), str(raw_dir), CSV_PATTERN)
    return _load


class TestOutputShape:

    def test_round_trip_2023_2024(self, write_year, load, brfss_rules):
        write_year(2023, n=3)
        write_year(2024, n=2)
        table = load(2023, 2024)

        harmonized, report = harmonize_brfss(table, brfss_rules)

        assert len(harmonized) == 5
        assert harmonized["surveyyear"].value_counts().to_dict() == {2023: 3, 2024: 2}
        assert report.rows == 5
        assert report.rows_by_year == {2023: 3, 2024: 2}

    def test_column_order(self, write_year, load, brfss_rules):
        write_year(2023)
        harmonized, _ = harmonize_brfss(load(2023), brfss_rules)

        columns = list(harmonized.columns)
        indicators = [i.target for i in brfss_rules.indicators]
        assert columns[0] == "surveyyear"
        assert columns[1:1 + len(brfss_rules.targets)] == brfss_rules.targets
        assert columns[1 + len(brfss_rules.targets):-3] == indicators
        assert columns[-3:] == ["_llcpwt", "_ststr", "_psu"]

    def test_row_order_preserved(self, write_year, load, brfss_rules):
        write_year(2023, columns={"_AGE80": [62, 18, 80]})
        write_year(2024, columns={"_AGE80": [33, 77, 41]})
        harmonized, _ = harmonize_brfss(load(2023, 2024), brfss_rules)
        assert harmonized["age"].tolist() == [62, 18, 80, 33, 77, 41]

    def test_nullable_integer_output(self, write_year, load, brfss_rules):
        write_year(2023)
        harmonized, _ = harmonize_brfss(load(2023), brfss_rules)
        assert str(harmonized["female"].dtype) == "Int64"
        assert str(harmonized["bmi"].dtype) == "Float64"

    def test_idempotent(self, write_year, load, brfss_rules):
        write_year(2022, columns={"INCOME3": [9, 77, 2]})
        write_year(2023)
        table = load(2022, 2023)

        first, _ = harmonize_brfss(table, brfss_rules)
        second, _ = harmonize_brfss(table, brfss_rules)

        assert first.equals(second)


class TestSex:

    def test_sexvar_refusal_is_missing(self, write_year, load, brfss_rules):
        write_year(2023, columns={"SEXVAR": [1, 2, 9]})
        harmonized, report = harmonize_brfss(load(2023), brfss_rules)
        assert values(harmonized["female"]) == [0, 1, None]
        assert report.non_response["female"] == 1

    def test_sex_refused_is_not_male(self, write_year, load, brfss_rules):
        write_year(2011, columns={"SEX": [1, 2, 9]})
        harmonized, _ = harmonize_brfss(load(2011), brfss_rules)
        assert values(harmonized["female"]) == [0, 1, None]

    def test_birthsex_fallback_from_2022(self, write_year, load, brfss_rules):
        write_year(2022, n=2, columns={"SEXVAR": [np.nan, 1], "BIRTHSEX": [2, 2]})
        harmonized, _ = harmonize_brfss(load(2022), brfss_rules)
        assert values(harmonized["female"]) == [1, 0]

    def test_sex_variable_renamed_across_years(self, write_year, load, brfss_rules):
        write_year(2017, n=1, columns={"SEX": [2]})
        write_year(2018, n=1, columns={"SEX1": [1]})
        write_year(2019, n=1, columns={"SEXVAR": [2]})
        harmonized, report = harmonize_brfss(load(2017, 2018, 2019), brfss_rules)
        assert values(harmonized["female"]) == [1, 0, 1]
        assert report.sources["female"] == {2017: ["sex"], 2018: ["sex1"], 2019: ["sexvar"]}


class TestIncome:

    def test_income3_top_categories_collapse(self, write_year, load, brfss_rules):
        write_year(2022, n=6, columns={"INCOME3": [9, 10, 11, 77, 99, 3]})
        harmonized, report = harmonize_brfss(load(2022), brfss_rules)
        assert values(harmonized["income_cat"]) == [8, 8, 8, None, None, 3]
        assert "income_cat" not in report.unexpected

    def test_income2_before_2021(self, write_year, load, brfss_rules):
        write_year(2020, columns={"INCOME2": [8, 77, 1]})
        harmonized, _ = harmonize_brfss(load(2020), brfss_rules)
        assert values(harmonized["income_cat"]) == [8, None, 1]

    def test_income2_accepted_in_2021(self, write_year, load, brfss_rules):
        frame = make_year_frame(2021, columns={"INCOME3": [8, 77, 3]})
        write_year(2021, frame=frame.rename(columns={"INCOME3": "INCOME2"}))
        harmonized, report = harmonize_brfss(load(2021), brfss_rules)
        assert values(harmonized["income_cat"]) == [8, None, 3]
        assert report.sources["income_cat"] == {2021: ["income2"]}

    def test_income3_preferred_when_both_present(self, write_year, load, brfss_rules):
        write_year(2021, columns={"INCOME3": [10, 2, 77], "INCOME2": [8, 1, 5]})
        harmonized, report = harmonize_brfss(load(2021), brfss_rules)
        assert values(harmonized["income_cat"]) == [8, 2, None]
        assert report.sources["income_cat"] == {2021: ["income3", "income2"]}


class TestRecodes:

    def test_days_88_means_none(self, write_year, load, brfss_rules):
        write_year(2023, n=4, columns={"MENTHLTH": [88, 15, 77, 99]})
        harmonized, _ = harmonize_brfss(load(2023), brfss_rules)
        assert values(harmonized["mental_days"]) == [0.0, 15.0, None, None]

    def test_bmi_implied_decimals(self, write_year, load, brfss_rules):
        write_year(2023, n=2, columns={"_BMI5": [2534, 9999]})
        harmonized, _ = harmonize_brfss(load(2023), brfss_rules)
        assert harmonized["bmi"].iloc[0] == pytest.approx(25.34)
        assert pd.isna(harmonized["bmi"].iloc[1])

    def test_age_77_is_a_real_age(self, write_year, load, brfss_rules):
        write_year(2023, columns={"_AGE80": [77, 99, 80]})
        harmonized, _ = harmonize_brfss(load(2023), brfss_rules)
        assert values(harmonized["age"]) == [77, 99, 80]

    def test_diabetes_documented_no_answer(self, write_year, load, brfss_rules):
        write_year(2023, n=5, columns={"DIABETE4": [1, 3, 2, 4, 7]})
        harmonized, report = harmonize_brfss(load(2023), brfss_rules)
        assert values(harmonized["diabetes"]) == [1, 0, None, None, None]
        assert "diabetes" not in report.unexpected

    def test_employment_retired_is_not_a_sentinel(self, write_year, load, brfss_rules):
        write_year(2023, n=4, columns={"EMPLOY1": [1, 7, 6, 9]})
        harmonized, _ = harmonize_brfss(load(2023), brfss_rules)
        assert values(harmonized["working"]) == [1, 0, 0, None]
        assert values(harmonized["student"]) == [0, 0, 1, None]

    def test_blank_source_is_missing(self, write_year, load, brfss_rules):
        write_year(2023, columns={"ASTHNOW": [np.nan, 1, 2]})
        harmonized, report = harmonize_brfss(load(2023), brfss_rules)
        assert values(harmonized["asthma_current"]) == [None, 1, 0]
        assert report.non_response["asthma_current"] == 0
        assert report.missing["asthma_current"] == 1


class TestIndicators:

    def test_race_indicators(self, write_year, load, brfss_rules):
        write_year(2023, n=5, columns={"_RACEGR4": [1, 2, 5, 6, 9]})
        harmonized, _ = harmonize_brfss(load(2023), brfss_rules)
        assert values(harmonized["race_eth"]) == [1, 2, 3, 4, None]
        assert values(harmonized["white"]) == [1, 0, 0, 0, None]
        assert values(harmonized["hispanic"]) == [0, 0, 1, 0, None]
        assert values(harmonized["raceother"]) == [0, 0, 0, 1, None]

    def test_fair_or_poor(self, write_year, load, brfss_rules):
        write_year(2023, n=4, columns={"GENHLTH": [4, 5, 1, 9]})
        harmonized, _ = harmonize_brfss(load(2023), brfss_rules)
        assert values(harmonized["fair_or_poor"]) == [1, 1, 0, None]

    def test_current_smoker(self, write_year, load, brfss_rules):
        write_year(2023, n=4, columns={"_SMOKER3": [1, 2, 3, 4]})
        harmonized, _ = harmonize_brfss(load(2023), brfss_rules)
        assert values(harmonized["current_smoker"]) == [1, 1, 0, 0]


class TestUndocumentedCodes:

    def test_recoded_to_missing_and_reported(self, write_year, load, brfss_rules):
        write_year(2023, columns={"GENHLTH": [1, 6, 2]})
        harmonized, report = harmonize_brfss(load(2023), brfss_rules)
        assert values(harmonized["genhealth"]) == [1, None, 2]
        assert report.unexpected["genhealth"] == {2023: {"6": 1}}
        assert report.unexpected_total == 1

    def test_strict_mode_raises(self, write_year, load, brfss_rules):
        write_year(2023, columns={"GENHLTH": [1, 6, 2]})
        with pytest.raises(UnexpectedCodeError) as exc_info:
            harmonize_brfss(load(2023), brfss_rules, strict=True)
        assert exc_info.value.target == "genhealth"
        assert exc_info.value.year == 2023
        assert exc_info.value.values == [6.0]

    def test_fractional_value_in_integer_target(self, write_year, load, brfss_rules):
        write_year(2023, columns={"GENHLTH": [2.5, 1, 2], "_AGE80": [45.5, 30, 40]})
        harmonized, report = harmonize_brfss(load(2023), brfss_rules)
        assert values(harmonized["genhealth"]) == [None, 1, 2]
        assert values(harmonized["age"]) == [None, 30, 40]
        assert report.unexpected["genhealth"] == {2023: {"2.5": 1}}
        assert report.unexpected["age"] == {2023: {"45.5": 1}}

    def test_fractional_value_strict_mode_raises(self, write_year, load, brfss_rules):
        write_year(2023, columns={"_AGE80": [45.5, 30, 40]})
        with pytest.raises(UnexpectedCodeError) as exc_info:
            harmonize_brfss(load(2023), brfss_rules, strict=True)
        assert exc_info.value.target == "age"
        assert exc_info.value.values == [45.5]

    def test_fractional_value_kept_in_float_target(self, write_year, load, brfss_rules):
        write_year(2023, columns={"_BMI5": [2534.5, 2000, 3100]})
        harmonized, report = harmonize_brfss(load(2023), brfss_rules)
        assert harmonized["bmi"].notna().all()
        assert "bmi" not in report.unexpected

    def test_report_serializes(self, write_year, load, brfss_rules):
        write_year(2023, columns={"GENHLTH": [1, 6, 2]})
        _, report = harmonize_brfss(load(2023), brfss_rules)
        payload = report.to_dict()
        assert payload["unexpected"] == {"genhealth": {"2023": {"6": 1}}}
        assert payload["rows_by_year"] == {"2023": 3}


class TestUnresolvedSources:

    def test_missing_source_variable(self, write_year, load, brfss_rules):
        write_year(2023, frame=make_year_frame(2023).drop(columns=["_BMI5"]))
        with pytest.raises(UnresolvedSourceVariableError) as exc_info:
            harmonize_brfss(load(2023), brfss_rules)
        assert exc_info.value.year == 2023
        assert exc_info.value.target == "bmi"
        assert exc_info.value.variables == ("_bmi5",)

    def test_source_of_wrong_year_is_not_used(self, write_year, load, brfss_rules):
        """DIABETE3 in a 2019 file does not stand in for DIABETE4."""
        frame = make_year_frame(2019).rename(columns={"DIABETE4": "DIABETE3"})
        write_year(2019, frame=frame)
        with pytest.raises(UnresolvedSourceVariableError) as exc_info:
            harmonize_brfss(load(2019), brfss_rules)
        assert exc_info.value.target == "diabetes"
        assert exc_info.value.year == 2019

    def test_year_outside_rule_span(self, write_year, load, brfss_rules):
        write_year(2010)
        with pytest.raises(RuleCoverageError) as exc_info:
            harmonize_brfss(load(2010), brfss_rules)
        assert exc_info.value.year == 2010


class TestDesignFields:

    def test_passed_through_unchanged(self, write_year, load, brfss_rules):
        write_year(2023, columns={"_LLCPWT": [0.5, 1234.25, 99999.125], "_STSTR": [1, 2, 3]})
        table = load(2023)
        harmonized, _ = harmonize_brfss(table, brfss_rules)
        for name in ("_llcpwt", "_ststr", "_psu"):
            assert harmonized[name].equals(table.frame[name])

    def test_x_prefixed_alias(self, write_year, load, brfss_rules):
        frame = make_year_frame(2023).rename(columns={"_LLCPWT": "X_LLCPWT"})
        write_year(2023, frame=frame)
        write_year(2024)
        table = load(2023, 2024)

        harmonized, _ = harmonize_brfss(table, brfss_rules)

        assert check_design_fields(table)["_llcpwt"] == {2023: "x_llcpwt", 2024: "_llcpwt"}
        assert harmonized["_llcpwt"].notna().all()

    def test_missing_design_field(self, write_year, load, brfss_rules):
        write_year(2023, frame=make_year_frame(2023).drop(columns=["_PSU"]))
        with pytest.raises(UnresolvedSourceVariableError) as exc_info:
            harmonize_brfss(load(2023), brfss_rules)
        assert exc_info.value.target == "_psu"

    def test_design_check_matches_harmonizer_resolution(self, write_year, load):
        frame = make_year_frame(2023).rename(columns={"_STSTR": "X_STSTR"})
        write_year(2023, frame=frame)
        table = load(2023)
        assert check_design_fields(table) == resolve_passthrough(
            DESIGN_FIELDS, table.years, table.year_columns
        )
        assert check_design_fields(table)["_ststr"] == {2023: "x_ststr"}

    def test_design_check_uses_manifest_not_values(self, write_year, load):
        write_year(2023, columns={"_PSU": [np.nan, np.nan, np.nan]})
        assert check_design_fields(load(2023))["_psu"] == {2023: "_psu"}


class TestManifestInference:

    def test_harmonize_frame_without_manifest(self, write_year, load, brfss_rules):
        write_year(2023)
        table = load(2023)
        harmonized, _ = harmonize_frame(table.frame, brfss_rules, passthrough=DESIGN_FIELDS)
        expected, _ = harmonize_brfss(table, brfss_rules)
        assert harmonized.equals(expected)
