"""SampleGroupMapper: group wells into samples and classify controls.

Control flags come from two passes: the well type tags first, then the
legacy sample-name prefixes, which override the tags.
"""

import dataclasses
import logging
import uuid
from typing import Dict, Iterable, List, Optional, Tuple

from qpcr_rules.constants import (
    LABEL_INVALID,
    LABEL_NEGATIVE,
    LABEL_POSITIVE,
    LEGACY_SAMPLE_PREFIXES,
    UNKNOWN_PATIENT,
    UNKNOWN_SAMPLE_PREFIX,
    AnalysisConstants,
)
from qpcr_rules.models import (
    AnalysisResult,
    CellState,
    RuleConfiguration,
    SampleWellMapping,
    Well,
    WellType,
)
from qpcr_rules.utils import natural_sort_key, normalize_position, row_label, well_sort_key

logger = logging.getLogger(__name__)

_TAG_FLAGS = {
    WellType.INTERNAL_CONTROL: "is_internal_control",
    WellType.POSITIVE_CONTROL: "is_positive_control",
    WellType.NEGATIVE_CONTROL: "is_negative_control",
    WellType.STANDARD: "is_standard",
}

_PREFIX_FLAGS = {
    "internal_control": "is_internal_control",
    "positive_control": "is_positive_control",
    "negative_control": "is_negative_control",
    "standard": "is_standard",
    "target": None,
}


def _group_key(well: Well) -> Tuple[str, str]:
    """("sample", name) for named wells, ("well", position) for unnamed ones."""
    name = (well.sample_name or "").strip()
    if name:
        return "sample", name
    return "well", normalize_position(well.position)


def _display_key(group_key: Tuple[str, str]) -> str:
    kind, value = group_key
    return value if kind == "sample" else f"{UNKNOWN_SAMPLE_PREFIX}{value}"


def _sample_id(group_key: Tuple[str, str]) -> str:
    kind, value = group_key
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"qpcr-{kind}:{value}"))


class SampleGroupMapper:
    @staticmethod
    def group(
        wells: Iterable[Well], results: Optional[Iterable[AnalysisResult]] = None
    ) -> List[SampleWellMapping]:
        """Group wells by sample name into SampleWellMapping records.

        Wells without a sample name are keyed by their position, so unnamed
        wells never merge with each other or with a named sample. When
        ``results`` are given, each mapping gets an overall call: Positive if
        any cell is positive, else Invalid if any cell is invalid, else
        Negative; cells without a rule are ignored.
        """
        groups: Dict[Tuple[str, str], dict] = {}
        for well in wells:
            key = _group_key(well)
            entry = groups.get(key)
            if entry is None:
                entry = groups[key] = {
                    "sample_name": well.sample_name,
                    "positions": [],
                    "well_ids": [],
                    "ct_values": {},
                    "flags": set(),
                    "patient_name": None,
                    "case_number": None,
                }
            if well.position not in entry["positions"]:
                entry["positions"].append(well.position)
            entry["well_ids"].append(well.well_id or f"{well.position}:{well.channel}")
            if well.channel and well.ct_value is not None:
                entry["ct_values"][well.channel] = well.ct_value
            flag = _TAG_FLAGS.get(well.well_type)
            if flag:
                entry["flags"].add(flag)
            if entry["patient_name"] is None and well.patient_name:
                entry["patient_name"] = well.patient_name
                entry["case_number"] = well.case_number

        calls = SampleGroupMapper._calls_by_position(results) if results is not None else {}
        mappings = []
        for key, entry in groups.items():
            mappings.append(
                SampleWellMapping(
                    sample_key=_display_key(key),
                    sample_name=entry["sample_name"],
                    sample_id=_sample_id(key),
                    well_positions=tuple(entry["positions"]),
                    well_ids=tuple(entry["well_ids"]),
                    ct_values=dict(entry["ct_values"]),
                    patient_name=entry["patient_name"],
                    case_number=entry["case_number"],
                    analysis_result=SampleGroupMapper._overall_call(
                        calls, entry["positions"]
                    ) if calls else None,
                    **{flag: True for flag in entry["flags"]},
                )
            )
        logger.debug("Grouped wells into %d samples", len(mappings))
        return SampleGroupMapper.apply_name_prefixes(mappings)

    @staticmethod
    def apply_name_prefixes(mappings: List[SampleWellMapping]) -> List[SampleWellMapping]:
        """Force control flags from legacy sample-name prefixes.

        A recognised prefix replaces whatever the well tags said: its own
        flag is set and every other control flag is cleared. The target
        prefix marks an ordinary sample.
        """
        updated = []
        for mapping in mappings:
            name = mapping.sample_name or ""
            kind = next(
                (kind for prefix, kind in LEGACY_SAMPLE_PREFIXES.items() if name.startswith(prefix)),
                None,
            )
            if kind is None:
                updated.append(mapping)
                continue
            flags = {flag: False for flag in _TAG_FLAGS.values()}
            if _PREFIX_FLAGS[kind]:
                flags[_PREFIX_FLAGS[kind]] = True
            updated.append(dataclasses.replace(mapping, **flags))
        return updated

    @staticmethod
    def _calls_by_position(results: Iterable[AnalysisResult]) -> Dict[str, List[CellState]]:
        calls: Dict[str, List[CellState]] = {}
        for result in results:
            calls.setdefault(result.well_position, []).append(result.state)
        return calls

    @staticmethod
    def _overall_call(calls: Dict[str, List[CellState]], positions) -> Optional[str]:
        states = [s for p in positions for s in calls.get(p, ())]
        if CellState.POSITIVE in states:
            return LABEL_POSITIVE
        if CellState.INVALID in states:
            return LABEL_INVALID
        if CellState.NEGATIVE in states:
            return LABEL_NEGATIVE
        return None

    @staticmethod
    def order_for_display(results: Iterable[AnalysisResult]) -> List[AnalysisResult]:
        """Sort results for report grids and flag the first row of each patient.

        Order: patient name (unknown patients last), row, column, channel.
        """

        def patient_key(result):
            name = result.patient_name
            if not name or name == UNKNOWN_PATIENT:
                return (1, [])
            return (0, natural_sort_key(name))

        ordered = sorted(
            results,
            key=lambda r: (patient_key(r), well_sort_key(r.well_position), r.channel or ""),
        )
        display = []
        previous: Optional[Tuple] = None
        for index, result in enumerate(ordered):
            identity = (result.patient_name, result.case_number)
            first = index == 0 or identity != previous
            previous = identity
            display.append(dataclasses.replace(result, is_first_sample_row=first))
        return display

    @staticmethod
    def generate_column_layout(
        rows: int = AnalysisConstants.PLATE_ROWS,
        columns: int = AnalysisConstants.PLATE_COLUMNS,
    ) -> List[SampleWellMapping]:
        """Placeholder layout: one sample per plate column covering every row."""
        mappings = []
        for column in range(1, columns + 1):
            name = f"Sample{column}"
            positions = tuple(f"{row_label(r)}{column}" for r in range(rows))
            mappings.append(
                SampleWellMapping(
                    sample_key=name,
                    sample_name=name,
                    sample_id=_sample_id(("sample", name)),
                    well_positions=positions,
                    well_ids=positions,
                )
            )
        return mappings

    @staticmethod
    def validate_well_naming(
        config: Optional[RuleConfiguration], position: str, sample_name: str
    ) -> Tuple[bool, str]:
        """Check a manually entered sample name against a panel.

        Panels do not define naming constraints yet, so every name is
        accepted once a configuration is present.
        """
        if config is None:
            return False, "No rule configuration found for this panel"
        return True, ""
