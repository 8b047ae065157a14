"""Tests for the qpcr_rules package.

Verifies that all public classes and functions are importable from the
package root and work together end to end.
"""

import io


class TestPackageImports:
    """Verify all expected symbols are importable from the qpcr_rules package."""

    def test_import_constants(self):
        from qpcr_rules import AnalysisConstants
        assert AnalysisConstants.PLATE_ROWS * AnalysisConstants.PLATE_COLUMNS == 96
        assert AnalysisConstants.CONCENTRATION_DECIMALS == 4

    def test_import_exceptions(self):
        from qpcr_rules import (
            RuleEngineError, ConfigurationError, PatternError, FormulaError,
            RuleShapeMismatch, RuleStoreError, AnalysisCancelled,
        )
        for exc in (ConfigurationError, PatternError, FormulaError,
                    RuleShapeMismatch, RuleStoreError, AnalysisCancelled):
            assert issubclass(exc, RuleEngineError)

    def test_import_classes(self):
        from qpcr_rules import (
            WellDataIndex, FormulaEngine, AnalysisEngine,
            SampleGroupMapper, RuleStore, TableParser,
        )
        assert hasattr(WellDataIndex, 'build')
        assert hasattr(FormulaEngine, 'evaluate_positive')
        assert hasattr(AnalysisEngine, 'analyze')
        assert hasattr(SampleGroupMapper, 'order_for_display')
        assert hasattr(RuleStore, 'load')
        assert hasattr(TableParser, 'read_rule_table')

    def test_import_functions(self):
        from qpcr_rules import (
            matches, parse_pattern, parse_formula, analysis_rules,
            default_configuration, results_to_dataframe, export_rule_table,
        )
        assert callable(matches)
        assert callable(export_rule_table)


class TestEndToEnd:
    def test_table_to_results(self, tmp_path):
        from qpcr_rules import (
            AnalysisEngine, RuleStore, SampleGroupMapper, TableParser, results_to_dataframe,
        )

        wells = TableParser.read_well_table(io.StringIO(
            "Well Position,Sample Name,Reporter,CT,Patient Name\n"
            "A1,S1,FAM,22.4,Ann\n"
            "A1,S1,VIC,27.0,Ann\n"
            "A2,S2,FAM,Undetermined,Ben\n"
        ))
        config = RuleStore(str(tmp_path)).load()

        results = AnalysisEngine.analyze(wells, config)
        table = results_to_dataframe(SampleGroupMapper.order_for_display(results))

        assert table["Result"].tolist() == ["Positive", "Positive", "Invalid"]
        assert table["First Row"].tolist() == [True, False, True]
