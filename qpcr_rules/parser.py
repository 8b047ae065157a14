"""TableParser: rule tables and normalized well tables from CSV/Excel.

This is the ingestion boundary: header aliases (WellPosition vs
WellPositionPattern, TargetName vs SpeciesName, JudgeFormula vs
PositiveCutoffFormula, localized headers) are resolved here, so the rest
of the package sees only canonical AnalysisRule and Well records.
"""

import logging
import os
import re
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from qpcr_rules.constants import RULE_COLUMN_ALIASES, WELL_COLUMN_ALIASES
from qpcr_rules.models import AnalysisRule, Well, WellType

logger = logging.getLogger(__name__)


def _header_key(header) -> str:
    return re.sub(r"[\s_]", "", str(header)).lower()


def _resolve_columns(columns, aliases: Dict[str, List[str]]) -> Dict[str, List[str]]:
    """Canonical field -> actual column names present, in alias order."""
    by_key = {}
    for column in columns:
        by_key.setdefault(_header_key(column), column)
    return {
        field: [by_key[_header_key(a)] for a in names if _header_key(a) in by_key]
        for field, names in aliases.items()
    }


def _text(value) -> Optional[str]:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    text = str(value).strip()
    return text or None


class TableParser:
    MAX_FILE_SIZE_MB = 50
    ENCODINGS = ["utf-8", "utf-8-sig", "utf-16", "latin-1", "cp1252"]

    @staticmethod
    def _read(source) -> pd.DataFrame:
        name = source if isinstance(source, (str, os.PathLike)) else getattr(source, "name", "")
        name = str(name or "").lower()
        if name.endswith((".xlsx", ".xlsm")):
            return pd.read_excel(source, dtype=str, keep_default_na=False)

        if hasattr(source, "seek"):
            source.seek(0, 2)
            size_mb = source.tell() / (1024 * 1024)
            source.seek(0)
        else:
            size_mb = os.path.getsize(source) / (1024 * 1024)
        if size_mb > TableParser.MAX_FILE_SIZE_MB:
            raise ValueError(
                f"File too large ({size_mb:.1f} MB). Maximum size is {TableParser.MAX_FILE_SIZE_MB} MB."
            )

        for enc in TableParser.ENCODINGS:
            try:
                return pd.read_csv(source, encoding=enc, dtype=str, keep_default_na=False)
            except (UnicodeDecodeError, UnicodeError):
                if hasattr(source, "seek"):
                    source.seek(0)
                continue
        raise ValueError("Could not decode table with any supported encoding")

    @staticmethod
    def read_rule_table(source) -> List[AnalysisRule]:
        """Read a rule spreadsheet (.csv, .xlsx) into ordered AnalysisRule records."""
        return TableParser.rules_from_dataframe(TableParser._read(source))

    @staticmethod
    def read_well_table(source) -> List[Well]:
        return TableParser.wells_from_dataframe(TableParser._read(source))

    @staticmethod
    def rules_from_dataframe(df: pd.DataFrame) -> List[AnalysisRule]:
        columns = _resolve_columns(df.columns, RULE_COLUMN_ALIASES)
        missing = [f for f in ("pattern", "channel") if not columns[f]]
        if missing:
            raise ValueError(f"Rule table is missing columns: {', '.join(missing)}")

        rules = []
        for position, (_, row) in enumerate(df.iterrows(), start=1):
            values = {}
            for field, names in columns.items():
                values[field] = next(
                    (v for v in (_text(row[n]) for n in names) if v is not None), None
                )
            if all(v is None for v in values.values()):
                continue
            try:
                index = int(float(values["index"])) if values["index"] else position
            except ValueError:
                logger.warning("Row %d has a non-numeric index %r", position, values["index"])
                index = position
            rules.append(
                AnalysisRule(
                    index=index,
                    pattern=values["pattern"] or "",
                    channel=values["channel"] or "",
                    target_name=values["target_name"] or "",
                    positive_formula=values["positive_formula"] or "",
                    concentration_formula=values["concentration_formula"] or "",
                )
            )
        logger.info("Loaded %d rules from table", len(rules))
        return rules

    @staticmethod
    def wells_from_dataframe(df: pd.DataFrame) -> List[Well]:
        """Normalize a well table (one row per well and channel) into Well records.

        Non-numeric Ct values ("Undetermined", "-") become an absent Ct and
        are kept as the special marker.
        """
        columns = _resolve_columns(df.columns, WELL_COLUMN_ALIASES)
        missing = [f for f in ("position", "channel", "ct_value") if not columns[f]]
        if missing:
            raise ValueError(f"Well table is missing columns: {', '.join(missing)}")

        def column(field):
            return columns[field][0] if columns[field] else None

        ct_col = column("ct_value")
        ct_numeric = pd.to_numeric(df[ct_col], errors="coerce")

        wells = []
        for (_, row), ct in zip(df.iterrows(), ct_numeric):
            def get(field):
                name = column(field)
                return _text(row[name]) if name is not None else None

            position = get("position")
            channel = get("channel")
            if position is None and channel is None:
                continue
            has_ct = not np.isnan(ct)
            wells.append(
                Well(
                    position=position or "",
                    channel=channel or "",
                    ct_value=float(ct) if has_ct else None,
                    special_mark=None if has_ct else _text(row[ct_col]),
                    well_type=WellType.from_label(get("well_type")),
                    sample_name=get("sample_name"),
                    target_name=get("target_name"),
                    patient_name=get("patient_name"),
                    case_number=get("case_number"),
                )
            )

        undetermined = sum(1 for w in wells if w.ct_value is None)
        if undetermined:
            logger.info("%d of %d wells have no numeric Ct value", undetermined, len(wells))
        return wells
