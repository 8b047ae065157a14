"""Constants and configuration for qPCR rule interpretation.

Contains plate geometry, result labels, legacy sample-name prefixes,
rule-table header aliases, and the default rule configuration values.
"""

import os

# ==================== RESULT LABELS ====================
LABEL_POSITIVE = "Positive"
LABEL_NEGATIVE = "Negative"
LABEL_INVALID = "Invalid"
LABEL_NO_RULE = "-"

UNKNOWN_PATIENT = "Unknown patient"
UNKNOWN_TARGET = "Unknown target"
UNKNOWN_SAMPLE_PREFIX = "Unknown sample_"

# ==================== LEGACY NAME PREFIXES ====================
# Sample names starting with one of these prefixes force a control flag,
# regardless of the well type tag. Checked in this order; first hit wins.
LEGACY_SAMPLE_PREFIXES = {
    "靶标_": "target",
    "阳性对照_": "positive_control",
    "阴性对照_": "negative_control",
    "标准品_": "standard",
    "内标_": "internal_control",
    "Target_": "target",
    "PositiveControl_": "positive_control",
    "NegativeControl_": "negative_control",
    "Standard_": "standard",
    "InternalControl_": "internal_control",
}

# ==================== FORMULA KEYWORDS ====================
POSITIVE_KEYWORDS = {"POS", "POSITIVE"}
NEGATIVE_KEYWORDS = {"NEG", "NEGATIVE"}
NOT_APPLICABLE_KEYWORDS = {"NA", "N/A", "#NAN#"}

# ==================== RULE TABLE COLUMNS ====================
# canonical field -> accepted headers, earlier alias wins when both are filled
RULE_COLUMN_ALIASES = {
    "index": ["Index", "序号"],
    "pattern": ["WellPositionPattern", "WellPosition", "Pattern", "Hole", "孔位"],
    "channel": ["Channel", "荧光通道"],
    "target_name": ["TargetName", "Target", "SpeciesName", "种名"],
    "positive_formula": [
        "JudgeFormula",
        "PositiveFormula",
        "PositiveCutoffFormula",
        "阳性判定公式",
    ],
    "concentration_formula": ["ConcentrationFormula", "浓度计算公式"],
}

RULE_TABLE_HEADERS = [
    "Index",
    "WellPosition",
    "Channel",
    "TargetName",
    "PositiveFormula",
    "ConcentrationFormula",
]

WELL_COLUMN_ALIASES = {
    "position": ["Well Position", "Well", "Position"],
    "channel": ["Channel", "Reporter"],
    "ct_value": ["CT", "Ct", "Cт", "CТ"],
    "sample_name": ["Sample Name", "Sample"],
    "target_name": ["Target Name", "Target"],
    "well_type": ["Task", "Type"],
    "patient_name": ["Patient Name", "Patient"],
    "case_number": ["Case Number", "Medical Record Number"],
}


# ==================== ANALYSIS CONSTANTS ====================
class AnalysisConstants:
    PLATE_ROWS = 8
    PLATE_COLUMNS = 12
    CONCENTRATION_DECIMALS = 4
    DEFAULT_MIN_POSITIVE_CT = 10.0
    DEFAULT_MAX_POSITIVE_CT = 35.0
    DEFAULT_CONFIGURATION_NAME = "Default Analysis Rules"
    DEFAULT_CONFIGURATION_VERSION = "1.0"
    RULE_FILE_SUFFIX = ".json"
    RULES_HOME_ENV = "QPCR_RULES_HOME"
    FORMULA_CACHE_SIZE = 512

    @staticmethod
    def default_rules_home() -> str:
        return os.environ.get(AnalysisConstants.RULES_HOME_ENV) or os.getcwd()
