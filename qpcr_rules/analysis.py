"""AnalysisEngine: per well/channel rule interpretation.

Selects the first matching rule for each cell, evaluates its positive-call
and concentration formulas, and emits one AnalysisResult per input well.
A failure in one cell never aborts the rest of the plate.
"""

import logging
from collections import Counter
from typing import Dict, Iterable, List, Optional, Sequence, Union

from qpcr_rules import patterns
from qpcr_rules.constants import UNKNOWN_TARGET
from qpcr_rules.exceptions import AnalysisCancelled, PatternError, RuleShapeMismatch
from qpcr_rules.formula import FormulaEngine
from qpcr_rules.models import AnalysisResult, AnalysisRule, CellState, RuleConfiguration, Well
from qpcr_rules.rule_store import analysis_rules
from qpcr_rules.utils import normalize_position
from qpcr_rules.well_index import WellDataIndex

logger = logging.getLogger(__name__)

RuleSource = Union[RuleConfiguration, Sequence[AnalysisRule]]


class AnalysisEngine:
    @staticmethod
    def prepare_rules(rules: RuleSource) -> tuple:
        """Snapshot rules for one run.

        Rules missing a pattern or channel, and rules whose pattern does not
        parse, are dropped here with one warning each.
        """
        if isinstance(rules, RuleConfiguration):
            rules = analysis_rules(rules)
        usable = []
        for rule in rules or ():
            try:
                rule.validate()
            except RuleShapeMismatch as e:
                logger.warning("Skipping rule: %s", e)
                continue
            try:
                patterns.parse_pattern(rule.pattern)
            except PatternError as e:
                logger.warning("Skipping rule #%s: %s", rule.index, e)
                continue
            usable.append(rule)
        return tuple(usable)

    @staticmethod
    def select_rule(
        rules: Sequence[AnalysisRule], position: str, channel: str
    ) -> Optional[AnalysisRule]:
        """First rule, in configured order, matching both position and channel.

        Group priority plays no part: order alone decides.
        """
        wanted = (channel or "").strip().lower()
        for rule in rules:
            if rule.channel.strip().lower() != wanted:
                continue
            if patterns.matches(rule.pattern, position):
                return rule
        return None

    @staticmethod
    def analyze_cell(
        well: Well, rules: Sequence[AnalysisRule], engine: FormulaEngine
    ) -> AnalysisResult:
        base = dict(
            well_position=well.position,
            channel=well.channel,
            ct_value=well.ct_value,
            ct_special_mark=well.special_mark,
            sample_name=well.sample_name,
            patient_name=well.patient_name,
            case_number=well.case_number,
        )
        if not (well.position or "").strip() or not (well.channel or "").strip():
            logger.warning("Well record without position or channel: %r", well)
            return AnalysisResult(
                target_name=well.target_name or UNKNOWN_TARGET,
                state=CellState.NO_RULE_MATCHED,
                **base,
            )

        rule = AnalysisEngine.select_rule(rules, well.position, well.channel)
        if rule is None:
            logger.debug("No rule for well %s channel %s", well.position, well.channel)
            return AnalysisResult(
                target_name=well.target_name or UNKNOWN_TARGET,
                state=CellState.NO_RULE_MATCHED,
                **base,
            )

        positive = engine.evaluate_positive(well.position, rule.positive_formula, well.channel)
        if positive is None:
            state = CellState.INVALID
        else:
            state = CellState.POSITIVE if positive else CellState.NEGATIVE

        concentration = None
        if not well.special_mark:
            concentration = engine.evaluate_concentration(
                well.position, well.channel, rule.concentration_formula
            )

        return AnalysisResult(
            target_name=rule.target_name or well.target_name or "N/A",
            state=state,
            positive=positive,
            concentration=concentration,
            rule_index=rule.index,
            **base,
        )

    @staticmethod
    def analyze(
        wells: Iterable[Well], rules: RuleSource, cancel_event=None
    ) -> List[AnalysisResult]:
        """Interpret every well/channel reading of one plate.

        Args:
            wells: Well records; one result is produced per record, in order.
            rules: A RuleConfiguration or an ordered sequence of AnalysisRule.
            cancel_event: Optional object with ``is_set()`` (e.g. threading.Event),
                checked before each cell.

        Raises:
            AnalysisCancelled: cancel_event was set before the run finished.
        """
        wells = list(wells)
        rule_list = AnalysisEngine.prepare_rules(rules)
        engine = FormulaEngine(WellDataIndex.build(wells))
        logger.info("Analysing %d wells against %d rules", len(wells), len(rule_list))

        results = []
        seen = set()
        for well in wells:
            if cancel_event is not None and cancel_event.is_set():
                raise AnalysisCancelled(
                    f"Analysis cancelled after {len(results)} of {len(wells)} cells"
                )
            key = (normalize_position(well.position), (well.channel or "").strip().upper())
            if all(key) and key in seen:
                # the index kept the first reading; this one was never evaluated
                logger.warning(
                    "Duplicate reading for well %s channel %s reported as invalid",
                    well.position,
                    well.channel,
                )
                results.append(AnalysisEngine._invalid_result(well))
                continue
            seen.add(key)
            try:
                result = AnalysisEngine.analyze_cell(well, rule_list, engine)
            except Exception:
                logger.exception(
                    "Analysis failed for well %s channel %s", well.position, well.channel
                )
                result = AnalysisEngine._invalid_result(well)
            results.append(result)

        counts = AnalysisEngine.summarize(results)
        logger.info(
            "Analysis finished: %d results, %d matched a rule, %d unmatched",
            len(results),
            len(results) - counts[CellState.NO_RULE_MATCHED],
            counts[CellState.NO_RULE_MATCHED],
        )
        return results

    @staticmethod
    def _invalid_result(well: Well) -> AnalysisResult:
        return AnalysisResult(
            well_position=well.position,
            channel=well.channel,
            target_name=well.target_name or UNKNOWN_TARGET,
            state=CellState.INVALID,
            ct_value=well.ct_value,
            ct_special_mark=well.special_mark,
            sample_name=well.sample_name,
            patient_name=well.patient_name,
            case_number=well.case_number,
        )

    @staticmethod
    def summarize(results: Iterable[AnalysisResult]) -> Dict[CellState, int]:
        counts = Counter(r.state for r in results)
        return {state: counts.get(state, 0) for state in CellState}
