"""qPCR Rule Interpretation Package.

Interprets per-well, per-channel Ct values against a user-editable rule
table. Provides:
- WellDataIndex: (well position, channel) -> Ct lookup
- matches / parse_pattern: well position pattern matching
- FormulaEngine / parse_formula: positive-call and concentration formulas
- AnalysisEngine: per well/channel rule selection and evaluation
- SampleGroupMapper: sample grouping, control classification, display order
- RuleStore: JSON rule configuration persistence with default fallback
- TableParser: rule tables and normalized well tables from CSV/Excel
- results_to_dataframe / export_rule_table: DataFrame and .xlsx export
"""

from qpcr_rules.constants import AnalysisConstants
from qpcr_rules.exceptions import (
    RuleEngineError,
    ConfigurationError,
    PatternError,
    FormulaError,
    RuleShapeMismatch,
    RuleStoreError,
    AnalysisCancelled,
)
from qpcr_rules.models import (
    WellType,
    CellState,
    Well,
    AnalysisRule,
    ConditionRule,
    RuleGroup,
    ChannelDefinition,
    RuleConfiguration,
    AnalysisResult,
    SampleWellMapping,
)
from qpcr_rules.utils import natural_sort_key, parse_well_position, plate_positions
from qpcr_rules.well_index import WellDataIndex
from qpcr_rules.patterns import matches, parse_pattern
from qpcr_rules.formula import FormulaEngine, parse_formula
from qpcr_rules.rule_store import RuleStore, analysis_rules, default_configuration
from qpcr_rules.analysis import AnalysisEngine
from qpcr_rules.sample_mapping import SampleGroupMapper
from qpcr_rules.parser import TableParser
from qpcr_rules.export import results_to_dataframe, rules_to_dataframe, export_rule_table

__all__ = [
    "AnalysisConstants",
    "RuleEngineError",
    "ConfigurationError",
    "PatternError",
    "FormulaError",
    "RuleShapeMismatch",
    "RuleStoreError",
    "AnalysisCancelled",
    "WellType",
    "CellState",
    "Well",
    "AnalysisRule",
    "ConditionRule",
    "RuleGroup",
    "ChannelDefinition",
    "RuleConfiguration",
    "AnalysisResult",
    "SampleWellMapping",
    "natural_sort_key",
    "parse_well_position",
    "plate_positions",
    "WellDataIndex",
    "matches",
    "parse_pattern",
    "FormulaEngine",
    "parse_formula",
    "RuleStore",
    "analysis_rules",
    "default_configuration",
    "AnalysisEngine",
    "SampleGroupMapper",
    "TableParser",
    "results_to_dataframe",
    "rules_to_dataframe",
    "export_rule_table",
]
