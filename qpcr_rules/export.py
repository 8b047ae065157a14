"""Export functions for analysis results and rule tables.

Provides DataFrame views of result records for report/grid renderers and
an .xlsx rule table writer whose output read_rule_table accepts.
"""

import io
from typing import Iterable, List

import numpy as np
import pandas as pd

from qpcr_rules.constants import RULE_TABLE_HEADERS, UNKNOWN_PATIENT
from qpcr_rules.models import AnalysisResult, AnalysisRule

RESULT_COLUMNS = [
    "Patient",
    "Case Number",
    "Well",
    "Channel",
    "Target",
    "CT",
    "Concentration",
    "Result",
    "First Row",
]


def _ct_display(result: AnalysisResult):
    if result.ct_special_mark:
        return result.ct_special_mark
    if result.ct_value is None:
        return "-"
    return round(result.ct_value, 2)


def results_to_dataframe(results: Iterable[AnalysisResult]) -> pd.DataFrame:
    """One display row per result, in the given order.

    Pass results through SampleGroupMapper.order_for_display first to get
    patient grouping and the First Row flag.
    """
    rows = []
    for r in results:
        rows.append(
            {
                "Patient": r.patient_name or UNKNOWN_PATIENT,
                "Case Number": r.case_number or "-",
                "Well": r.well_position or "-",
                "Channel": r.channel or "-",
                "Target": r.target_name or "-",
                "CT": _ct_display(r),
                "Concentration": np.nan if r.concentration is None else r.concentration,
                "Result": r.detection_result,
                "First Row": r.is_first_sample_row,
            }
        )
    return pd.DataFrame(rows, columns=RESULT_COLUMNS)


def rules_to_dataframe(rules: Iterable[AnalysisRule]) -> pd.DataFrame:
    return pd.DataFrame(
        [
            [
                rule.index,
                rule.pattern,
                rule.channel,
                rule.target_name,
                rule.positive_formula,
                rule.concentration_formula,
            ]
            for rule in rules
        ],
        columns=RULE_TABLE_HEADERS,
    )


def export_rule_table(rules: List[AnalysisRule], sheet_name: str = "Analysis Method") -> bytes:
    """Write rules as an .xlsx workbook with the canonical headers."""
    output = io.BytesIO()
    table = rules_to_dataframe(rules)

    with pd.ExcelWriter(output, engine="xlsxwriter") as writer:
        table.to_excel(writer, sheet_name=sheet_name, index=False)
        worksheet = writer.sheets[sheet_name]
        for i, header in enumerate(RULE_TABLE_HEADERS):
            width = max([len(header)] + [len(str(v)) for v in table[header]]) + 2
            worksheet.set_column(i, i, min(width, 60))

    return output.getvalue()
