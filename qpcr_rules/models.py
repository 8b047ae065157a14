"""Data records shared by the rule engine.

All records are frozen dataclasses: wells and rules are immutable inputs to
one analysis run, and results are new records rather than edited rows.
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Tuple, Union

from qpcr_rules.constants import (
    LABEL_INVALID,
    LABEL_NEGATIVE,
    LABEL_NO_RULE,
    LABEL_POSITIVE,
    AnalysisConstants,
)
from qpcr_rules.exceptions import RuleShapeMismatch


class WellType(Enum):
    SAMPLE = "Sample"
    POSITIVE_CONTROL = "PositiveControl"
    NEGATIVE_CONTROL = "NegativeControl"
    STANDARD = "Standard"
    INTERNAL_CONTROL = "InternalControl"
    EMPTY = "Empty"
    UNUSED = "Unused"
    UNKNOWN = "Unknown"

    @classmethod
    def from_label(cls, label) -> "WellType":
        """Map a free-text classification tag onto a WellType.

        Accepts the enum values themselves, spaced/underscored variants
        ("Positive Control", "positive_control") and the common short
        forms used by instrument exports (PC, NC, NTC, IC, STD).
        """
        if isinstance(label, WellType):
            return label
        if label is None:
            return cls.UNKNOWN
        key = re.sub(r"[^a-z]", "", str(label).lower())
        return _WELL_TYPE_ALIASES.get(key, cls.UNKNOWN)


_WELL_TYPE_ALIASES = {
    "sample": WellType.SAMPLE,
    "patient": WellType.SAMPLE,
    "positivecontrol": WellType.POSITIVE_CONTROL,
    "pc": WellType.POSITIVE_CONTROL,
    "negativecontrol": WellType.NEGATIVE_CONTROL,
    "nc": WellType.NEGATIVE_CONTROL,
    "ntc": WellType.NEGATIVE_CONTROL,
    "standard": WellType.STANDARD,
    "std": WellType.STANDARD,
    "internalcontrol": WellType.INTERNAL_CONTROL,
    "ic": WellType.INTERNAL_CONTROL,
    "empty": WellType.EMPTY,
    "unused": WellType.UNUSED,
}


class CellState(Enum):
    POSITIVE = "Positive"
    NEGATIVE = "Negative"
    INVALID = "Invalid"
    NO_RULE_MATCHED = "NoRuleMatched"

    @property
    def label(self) -> str:
        return _STATE_LABELS[self]


_STATE_LABELS = {
    CellState.POSITIVE: LABEL_POSITIVE,
    CellState.NEGATIVE: LABEL_NEGATIVE,
    CellState.INVALID: LABEL_INVALID,
    CellState.NO_RULE_MATCHED: LABEL_NO_RULE,
}


@dataclass(frozen=True)
class Well:
    """One channel reading of one plate well."""

    position: str
    channel: str
    ct_value: Optional[float] = None
    special_mark: Optional[str] = None
    well_type: WellType = WellType.UNKNOWN
    sample_name: Optional[str] = None
    target_name: Optional[str] = None
    patient_name: Optional[str] = None
    case_number: Optional[str] = None
    well_id: Optional[str] = None


@dataclass(frozen=True)
class AnalysisRule:
    """Canonical rule shape consumed by the analysis engine."""

    index: int
    pattern: str
    channel: str
    target_name: str = ""
    positive_formula: str = ""
    concentration_formula: str = ""
    name: str = ""

    def validate(self) -> None:
        if not (self.pattern or "").strip():
            raise RuleShapeMismatch(f"Rule #{self.index} has no well position pattern")
        if not (self.channel or "").strip():
            raise RuleShapeMismatch(f"Rule #{self.index} has no channel")

    @property
    def is_well_formed(self) -> bool:
        try:
            self.validate()
        except RuleShapeMismatch:
            return False
        return True


@dataclass(frozen=True)
class ConditionRule:
    """Threshold-style rule as stored in rule configuration documents."""

    name: str
    condition: str
    action: str


PanelRule = Union[AnalysisRule, ConditionRule]


@dataclass(frozen=True)
class RuleGroup:
    name: str
    priority: int = 0
    rules: Tuple[PanelRule, ...] = ()
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass(frozen=True)
class ChannelDefinition:
    name: str
    target: str = ""
    min_positive_ct: float = AnalysisConstants.DEFAULT_MIN_POSITIVE_CT
    max_positive_ct: float = AnalysisConstants.DEFAULT_MAX_POSITIVE_CT


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RuleConfiguration:
    """A named, versioned panel: rule groups plus channel definitions."""

    name: str
    description: str = ""
    version: str = AnalysisConstants.DEFAULT_CONFIGURATION_VERSION
    last_updated: datetime = field(default_factory=_utcnow)
    rule_groups: Tuple[RuleGroup, ...] = ()
    channels: Tuple[ChannelDefinition, ...] = ()
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def get_channel(self, channel: str) -> Optional[ChannelDefinition]:
        wanted = (channel or "").lower()
        return next((c for c in self.channels if c.name.lower() == wanted), None)


@dataclass(frozen=True)
class AnalysisResult:
    """Outcome for one (well, channel) cell."""

    well_position: str
    channel: str
    target_name: str
    state: CellState
    ct_value: Optional[float] = None
    ct_special_mark: Optional[str] = None
    positive: Optional[bool] = None
    concentration: Optional[float] = None
    sample_name: Optional[str] = None
    patient_name: Optional[str] = None
    case_number: Optional[str] = None
    rule_index: Optional[int] = None
    is_first_sample_row: bool = False

    @property
    def detection_result(self) -> str:
        return self.state.label


@dataclass(frozen=True)
class SampleWellMapping:
    """Wells grouped under one sample or control identity."""

    sample_key: str
    sample_name: Optional[str]
    sample_id: str
    well_positions: Tuple[str, ...] = ()
    well_ids: Tuple[str, ...] = ()
    ct_values: Dict[str, Optional[float]] = field(default_factory=dict)
    is_internal_control: bool = False
    is_positive_control: bool = False
    is_negative_control: bool = False
    is_standard: bool = False
    patient_name: Optional[str] = None
    case_number: Optional[str] = None
    analysis_result: Optional[str] = None

    @property
    def control_type(self) -> Optional[str]:
        if self.is_internal_control:
            return "internal_control"
        if self.is_positive_control:
            return "positive_control"
        if self.is_negative_control:
            return "negative_control"
        if self.is_standard:
            return "standard"
        return None
