import io

import numpy as np
import pandas as pd

from qpcr_rules.analysis import AnalysisEngine
from qpcr_rules.constants import RULE_TABLE_HEADERS, UNKNOWN_PATIENT
from qpcr_rules.export import (
    RESULT_COLUMNS,
    export_rule_table,
    results_to_dataframe,
    rules_to_dataframe,
)
from qpcr_rules.sample_mapping import SampleGroupMapper


class TestResultsToDataFrame:
    def test_columns_and_rows(self, three_channel_wells, basic_rules):
        results = AnalysisEngine.analyze(three_channel_wells, basic_rules)
        df = results_to_dataframe(SampleGroupMapper.order_for_display(results))
        assert list(df.columns) == RESULT_COLUMNS
        assert len(df) == len(three_channel_wells)

    def test_display_values(self, three_channel_wells, basic_rules):
        results = AnalysisEngine.analyze(three_channel_wells, basic_rules)
        df = results_to_dataframe(SampleGroupMapper.order_for_display(results))

        first = df.iloc[0]
        assert first["Patient"] == "Alice"
        assert first["Well"] == "A1"
        assert first["Result"] == "Positive"
        assert first["Concentration"] == 1000000.0
        assert bool(first["First Row"]) is True

        undetermined = df[df["Well"] == "B3"].iloc[0]
        assert undetermined["Patient"] == UNKNOWN_PATIENT
        assert undetermined["Case Number"] == "-"
        assert undetermined["CT"] == "Undetermined"
        assert undetermined["Result"] == "Invalid"
        assert np.isnan(undetermined["Concentration"])

    def test_empty(self):
        df = results_to_dataframe([])
        assert df.empty
        assert list(df.columns) == RESULT_COLUMNS


class TestRuleTableExport:
    def test_rules_to_dataframe(self, basic_rules):
        df = rules_to_dataframe(basic_rules)
        assert list(df.columns) == RULE_TABLE_HEADERS
        assert df["WellPosition"].tolist() == ["*", "C:1-6", "*", "A:*"]

    def test_export_rule_table_is_xlsx(self, basic_rules):
        data = export_rule_table(basic_rules)
        assert data[:2] == b"PK"
        df = pd.read_excel(io.BytesIO(data), sheet_name="Analysis Method")
        assert list(df.columns) == RULE_TABLE_HEADERS
        assert df["Channel"].tolist() == ["FAM", "VIC", "VIC", "ROX"]
