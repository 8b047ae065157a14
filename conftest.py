"""
Pytest configuration and fixtures for qPCR rule interpretation tests.

This module provides shared well sets, rule tables and rule store
directories used across the test modules.
"""

import pytest
import pandas as pd

from qpcr_rules.models import AnalysisRule, Well, WellType
from qpcr_rules.utils import plate_positions


# ==================== PLATE FIXTURES ====================
@pytest.fixture
def all_positions():
    """All 96 positions of a standard 8x12 plate, A1..H12."""
    return plate_positions()


@pytest.fixture
def three_channel_wells():
    """A small plate with FAM, VIC and ROX readings.

    - A1: strong FAM, VIC internal control
    - A2: late FAM (negative by the default thresholds)
    - B3: FAM undetermined
    - C3: VIC only, matched by both an early and a late rule
    """
    return [
        Well("A1", "FAM", 28.0, sample_name="P-001", patient_name="Alice", case_number="C1",
             well_type=WellType.SAMPLE),
        Well("A1", "VIC", 25.0, sample_name="P-001", patient_name="Alice", case_number="C1",
             well_type=WellType.SAMPLE),
        Well("A1", "ROX", 30.0, sample_name="P-001", patient_name="Alice", case_number="C1",
             well_type=WellType.SAMPLE),
        Well("A2", "FAM", 36.0, sample_name="P-002", patient_name="Bob", case_number="C2",
             well_type=WellType.SAMPLE),
        Well("A2", "VIC", 24.5, sample_name="P-002", patient_name="Bob", case_number="C2",
             well_type=WellType.SAMPLE),
        Well("B3", "FAM", None, special_mark="Undetermined", sample_name="P-003",
             well_type=WellType.SAMPLE),
        Well("C3", "VIC", 22.0, sample_name="PC", well_type=WellType.POSITIVE_CONTROL),
    ]


# ==================== RULE FIXTURES ====================
@pytest.fixture
def basic_rules():
    """Ordered rule table: FAM threshold with concentration, VIC control, ROX fixed call."""
    return [
        AnalysisRule(1, "*", "FAM", "Influenza A", "{FAM} >= 10 && {FAM} <= 35",
                     "10^(35-{FAM})/10"),
        AnalysisRule(2, "C:1-6", "VIC", "Control-early", "POS"),
        AnalysisRule(3, "*", "VIC", "Internal control", "{VIC} <= 30"),
        AnalysisRule(4, "A:*", "ROX", "Reference", "NA"),
    ]


@pytest.fixture
def rule_table_df():
    """A rule table as read from a spreadsheet with canonical headers."""
    return pd.DataFrame(
        [
            ["1", "*", "FAM", "Influenza A", "{FAM} <= 35", "10^(35-{FAM})/10"],
            ["2", "B:1-6", "VIC", "RSV", "{VIC} <= 30", ""],
        ],
        columns=["Index", "WellPosition", "Channel", "TargetName", "PositiveFormula",
                 "ConcentrationFormula"],
    )


# ==================== STORE FIXTURES ====================
@pytest.fixture
def rules_home(tmp_path, monkeypatch):
    """Isolated rule store directory, also exported as QPCR_RULES_HOME."""
    directory = tmp_path / "rules"
    monkeypatch.setenv("QPCR_RULES_HOME", str(directory))
    return directory
