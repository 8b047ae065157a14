import logging

import pytest

from qpcr_rules.exceptions import PatternError
from qpcr_rules.patterns import matches, parse_pattern


class TestWildcard:
    def test_star_matches_every_plate_well(self, all_positions):
        assert len(all_positions) == 96
        assert all(matches("*", p) for p in all_positions)

    def test_star_star_is_wildcard(self):
        assert matches("*:*", "H12")

    def test_empty_position_never_matches(self):
        assert not matches("*", "")
        assert not matches("*", None)


class TestExact:
    def test_exact_well(self):
        assert matches("A1", "A1")
        assert not matches("A1", "A2")

    def test_exact_is_case_insensitive(self):
        assert matches("c3", "C3")
        assert matches("C3", "c3")

    def test_leading_zero_column(self):
        assert matches("A1", "A01")


class TestRowAndColumn:
    def test_row_pattern(self, all_positions):
        hits = [p for p in all_positions if matches("A:*", p)]
        assert hits == [f"A{c}" for c in range(1, 13)]

    def test_column_pattern(self, all_positions):
        hits = [p for p in all_positions if matches("*:12", p)]
        assert hits == [f"{r}12" for r in "ABCDEFGH"]

    def test_column_pattern_does_not_match_prefix(self):
        assert not matches("*:1", "A12")

    def test_range_is_inclusive(self):
        assert matches("B:1-6", "B1")
        assert matches("B:1-6", "B6")
        assert not matches("B:1-6", "B7")
        assert not matches("B:1-6", "C3")

    def test_range_lowercase_row(self):
        assert matches("b:1-6", "B4")


class TestMalformed:
    @pytest.mark.parametrize("pattern", ["", "A", "1A", "B:x-6", "B:1-", "??", "*:X"])
    def test_parse_raises(self, pattern):
        with pytest.raises(PatternError):
            parse_pattern(pattern)

    def test_malformed_never_matches_and_is_logged_once(self, caplog, all_positions):
        with caplog.at_level(logging.WARNING, logger="qpcr_rules.patterns"):
            assert [p for p in all_positions if matches("G:y-9", p)] == []
        warnings = [r for r in caplog.records if "G:y-9" in r.getMessage()]
        assert len(warnings) == 1

    def test_none_pattern_never_matches(self):
        assert not matches(None, "A1")

    def test_unparseable_position(self):
        assert not matches("A:*", "Z")
