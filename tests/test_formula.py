import logging
import math

import pytest

from qpcr_rules.exceptions import FormulaError
from qpcr_rules.formula import (
    Binary,
    Call,
    ChannelRef,
    FormulaEngine,
    Number,
    evaluate,
    parse_formula,
)
from qpcr_rules.models import Well
from qpcr_rules.well_index import WellDataIndex


@pytest.fixture
def engine():
    wells = [
        Well("A1", "FAM", 28.0),
        Well("A1", "VIC", 25.0),
        Well("A2", "FAM", 36.0),
        Well("A3", "FAM", None),
        Well("A3", "VIC", 30.0),
        Well("A4", "FAM", 40.0),
    ]
    return FormulaEngine(WellDataIndex.build(wells))


class TestParse:
    def test_power_becomes_call(self):
        formula = parse_formula("2^3")
        assert formula.root == Call("pow", (Number(2.0), Number(3.0)))

    def test_references_collected_upper_case(self):
        formula = parse_formula("{fam} < 30 && [Vic] < 35")
        assert formula.references == frozenset({"FAM", "VIC"})

    def test_bare_ct_is_own_channel(self):
        formula = parse_formula("CT <= 35")
        assert formula.root == Binary("<=", ChannelRef("CT"), Number(35.0))

    def test_alternative_operators(self):
        assert parse_formula("1 = 1").root.op == "=="
        assert parse_formula("1 <> 2").root.op == "!="

    def test_parse_is_cached(self):
        assert parse_formula("{FAM} < 30") is parse_formula("{FAM} < 30")

    @pytest.mark.parametrize(
        "text",
        ["", "{FAM} <", "{FAM} < 30)", "foo(1)", "abs(1, 2)", "{}", "1 < 2 < 3", "unknown", "3 $ 4"],
    )
    def test_invalid_formulas_raise(self, text):
        with pytest.raises(FormulaError):
            parse_formula(text)


class TestEvaluate:
    def test_arithmetic_precedence(self):
        assert evaluate(parse_formula("1 + 2 * 3").root, {}) == 7
        assert evaluate(parse_formula("(1 + 2) * 3").root, {}) == 9

    def test_power_binds_tighter_than_unary_minus(self):
        assert evaluate(parse_formula("-2^2").root, {}) == -4.0

    def test_functions_and_constants(self):
        assert evaluate(parse_formula("ln(E)").root, {}) == pytest.approx(1.0)
        assert evaluate(parse_formula("log10(1000)").root, {}) == pytest.approx(3.0)
        assert evaluate(parse_formula("abs(-2.5)").root, {}) == 2.5
        assert evaluate(parse_formula("power(2, 10)").root, {}) == 1024.0

    def test_logical_keywords(self):
        assert evaluate(parse_formula("true and not false").root, {}) is True
        assert evaluate(parse_formula("false or !true").root, {}) is False

    def test_arithmetic_on_boolean_raises(self):
        with pytest.raises(FormulaError):
            evaluate(parse_formula("true + 1").root, {})

    def test_division_by_zero_raises(self):
        with pytest.raises(FormulaError):
            evaluate(parse_formula("1 / 0").root, {})


class TestPositiveCall:
    def test_threshold_positive(self, engine):
        assert engine.evaluate_positive("A1", "{FAM} >= 10 && {FAM} <= 35") is True

    def test_threshold_negative(self, engine):
        assert engine.evaluate_positive("A2", "{FAM} >= 10 && {FAM} <= 35") is False

    def test_missing_ct_is_indeterminate(self, engine):
        assert engine.evaluate_positive("A3", "{FAM} <= 35") is None

    def test_missing_reference_short_circuits_or(self, engine):
        # A3 has VIC but no FAM: the whole formula is indeterminate
        assert engine.evaluate_positive("A3", "{VIC} < 35 || {FAM} < 35") is None

    def test_unknown_well_is_indeterminate(self, engine):
        assert engine.evaluate_positive("H12", "{FAM} <= 35") is None

    def test_cross_channel_reference(self, engine):
        assert engine.evaluate_positive("A1", "{FAM} - {VIC} < 5") is True

    @pytest.mark.parametrize(
        "keyword, expected",
        [("POS", True), ("positive", True), ("NEG", False), ("Negative", False),
         ("NA", None), ("n/a", None), ("#NaN#", None), ("", None), (None, None)],
    )
    def test_keywords(self, engine, keyword, expected):
        assert engine.evaluate_positive("A1", keyword) is expected

    def test_own_channel_reference(self, engine):
        assert engine.evaluate_positive("A1", "{CT} < 26", channel="VIC") is True
        assert engine.evaluate_positive("A1", "CT < 26", channel="FAM") is False

    def test_numeric_result_is_truthy(self, engine):
        assert engine.evaluate_positive("A1", "{FAM} - 28") is False
        assert engine.evaluate_positive("A1", "{FAM}") is True

    def test_nan_result_is_indeterminate(self, engine):
        assert engine.evaluate_positive("A1", "{FAM}*1e400 - {FAM}*1e400") is None

    def test_infinite_result_is_indeterminate(self, engine):
        assert engine.evaluate_positive("A1", "{FAM}*1e400") is None

    def test_formula_error_is_logged_not_raised(self, engine, caplog):
        with caplog.at_level(logging.WARNING, logger="qpcr_rules.formula"):
            assert engine.evaluate_positive("A1", "{FAM} <") is None
        assert "{FAM} <" in caplog.text


class TestConcentration:
    def test_exponential_standard_curve(self, engine):
        assert engine.evaluate_concentration("A1", "FAM", "10^(35-{FAM})/10") == 1000000.0

    def test_rounded_to_four_decimals(self, engine):
        assert engine.evaluate_concentration("A1", "FAM", "{FAM} / 3") == 9.3333

    def test_negative_clamps_to_zero(self, engine):
        assert engine.evaluate_concentration("A4", "FAM", "35 - {FAM}") == 0.0

    def test_requires_own_ct(self, engine):
        assert engine.evaluate_concentration("A3", "FAM", "{VIC} * 2") is None

    def test_boolean_result_is_indeterminate(self, engine):
        assert engine.evaluate_concentration("A1", "FAM", "{FAM} < 30") is None

    def test_not_applicable(self, engine):
        assert engine.evaluate_concentration("A1", "FAM", "NA") is None
        assert engine.evaluate_concentration("A1", "FAM", "") is None

    def test_domain_error_is_indeterminate(self, engine):
        assert engine.evaluate_concentration("A1", "FAM", "ln(0 - {FAM})") is None

    def test_overflow_is_indeterminate(self, engine):
        assert engine.evaluate_concentration("A1", "FAM", "exp({FAM} * 1000)") is None

    def test_result_is_finite(self, engine):
        value = engine.evaluate_concentration("A1", "FAM", "pow(2, 40 - {FAM})")
        assert math.isfinite(value)
        assert value == 4096.0
