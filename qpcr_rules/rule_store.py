"""RuleStore: JSON persistence of rule configurations (panels).

One document per configuration name. A missing or unreadable document is
replaced by a default configuration, which is written back to disk.

Also holds the translator from stored rule groups to the ordered
AnalysisRule list the analysis engine consumes.
"""

import hashlib
import json
import logging
import os
import re
import tempfile
from typing import List, Optional

import pandas as pd

from qpcr_rules.constants import AnalysisConstants
from qpcr_rules.exceptions import ConfigurationError, RuleStoreError
from qpcr_rules.models import (
    AnalysisRule,
    ChannelDefinition,
    ConditionRule,
    RuleConfiguration,
    RuleGroup,
)

logger = logging.getLogger(__name__)

_ACTION_RE = re.compile(r"^\s*Result\s*=\s*(\w+)\s*$", re.IGNORECASE)
_CHANNEL_CLAUSE = r"Channel\s*==?\s*['\"](?P<channel>[^'\"]+)['\"]"
_CONJUNCTION = r"(?:&&|\band\b)"


# ==================== TRANSLATION ====================
def translate_condition_rule(
    rule: ConditionRule, config: RuleConfiguration, index: int
) -> Optional[AnalysisRule]:
    """Turn a ``Result = Positive`` threshold rule into an AnalysisRule.

    Only conditions naming a single channel (``Channel == 'FAM'``) over
    ``CtValue`` are translated. Negative rules are the complement of the
    positive rule and are dropped; anything else is logged and dropped.
    """
    action = _ACTION_RE.match(rule.action or "")
    if action is None:
        logger.warning("Untranslatable action %r in rule %r", rule.action, rule.name)
        return None
    outcome = action.group(1).lower()
    if outcome == "negative":
        logger.debug("Negative rule %r is implied by its positive rule", rule.name)
        return None
    if outcome != "positive":
        logger.warning("Unsupported outcome %r in rule %r", outcome, rule.name)
        return None

    condition = rule.condition or ""
    found = re.search(_CHANNEL_CLAUSE, condition, re.IGNORECASE)
    if found is None:
        logger.warning("Rule %r does not name a channel: %r", rule.name, condition)
        return None
    channel = found.group("channel").strip()

    remaining = condition
    for clause in (
        _CHANNEL_CLAUSE + r"\s*" + _CONJUNCTION + r"\s*",
        r"\s*" + _CONJUNCTION + r"\s*" + _CHANNEL_CLAUSE,
        _CHANNEL_CLAUSE,
    ):
        remaining, replaced = re.subn(clause, "", remaining, count=1, flags=re.IGNORECASE)
        if replaced:
            break
    remaining = remaining.strip()
    if re.search(r"\bnull\b", remaining, re.IGNORECASE):
        logger.warning("Rule %r tests for null and cannot be translated", rule.name)
        return None
    formula = re.sub(r"\bCtValue\b", "{" + channel + "}", remaining) if remaining else "true"

    definition = config.get_channel(channel)
    return AnalysisRule(
        index=index,
        pattern="*",
        channel=channel,
        target_name=definition.target if definition else "",
        positive_formula=formula,
        name=rule.name,
    )


def analysis_rules(config: RuleConfiguration) -> List[AnalysisRule]:
    """Flatten a configuration into the ordered rule list used for matching.

    Groups are taken in document order; their priority value is kept in the
    document but does not reorder rules. Channel definitions not covered by
    any rule contribute a ``min <= Ct <= max`` threshold rule at the end.
    """
    rules = []
    for group in config.rule_groups:
        for rule in group.rules:
            if isinstance(rule, AnalysisRule):
                rules.append(rule)
                continue
            translated = translate_condition_rule(rule, config, len(rules) + 1)
            if translated is not None:
                rules.append(translated)

    covered = {(r.channel or "").strip().lower() for r in rules}
    for channel in config.channels:
        if channel.name.strip().lower() in covered:
            continue
        ref = "{" + channel.name + "}"
        rules.append(
            AnalysisRule(
                index=len(rules) + 1,
                pattern="*",
                channel=channel.name,
                target_name=channel.target,
                positive_formula=(
                    f"{ref} >= {channel.min_positive_ct:g} && {ref} <= {channel.max_positive_ct:g}"
                ),
                name=f"{channel.name} threshold",
            )
        )
    return rules


# ==================== DOCUMENT MAPPING ====================
def _lower_keys(data: dict) -> dict:
    return {str(k).lower(): v for k, v in data.items()}


def _first(data: dict, *keys, default=""):
    for key in keys:
        value = data.get(key.lower())
        if value not in (None, ""):
            return value
    return default


def _rule_to_dict(rule) -> dict:
    if isinstance(rule, ConditionRule):
        return {"name": rule.name, "condition": rule.condition, "action": rule.action}
    return {
        "index": rule.index,
        "name": rule.name,
        "pattern": rule.pattern,
        "channel": rule.channel,
        "target": rule.target_name,
        "positiveFormula": rule.positive_formula,
        "concentrationFormula": rule.concentration_formula,
    }


def _rule_from_dict(data: dict, position: int):
    data = _lower_keys(data)
    pattern = _first(data, "pattern", "wellPositionPattern", "wellPosition", "hole")
    if pattern == "" and "condition" in data:
        return ConditionRule(
            name=str(data.get("name") or ""),
            condition=str(data.get("condition") or ""),
            action=str(data.get("action") or ""),
        )
    return AnalysisRule(
        index=int(_first(data, "index", default=position)),
        pattern=str(pattern),
        channel=str(_first(data, "channel")),
        target_name=str(_first(data, "target", "targetName", "speciesName")),
        positive_formula=str(
            _first(data, "positiveFormula", "judgeFormula", "positiveCutoffFormula")
        ),
        concentration_formula=str(_first(data, "concentrationFormula")),
        name=str(data.get("name") or ""),
    )


def to_document(config: RuleConfiguration) -> dict:
    return {
        "id": config.id,
        "name": config.name,
        "description": config.description,
        "version": config.version,
        "lastUpdated": config.last_updated.isoformat(),
        "ruleGroups": [
            {
                "id": group.id,
                "name": group.name,
                "priority": group.priority,
                "rules": [_rule_to_dict(rule) for rule in group.rules],
            }
            for group in config.rule_groups
        ],
        "channels": [
            {
                "name": c.name,
                "target": c.target,
                "minPositiveCt": c.min_positive_ct,
                "maxPositiveCt": c.max_positive_ct,
            }
            for c in config.channels
        ],
    }


def from_document(document: dict) -> RuleConfiguration:
    """Build a RuleConfiguration; keys are matched case-insensitively."""
    if not isinstance(document, dict):
        raise ConfigurationError("Rule document is not a JSON object")
    try:
        doc = _lower_keys(document)
        groups = []
        for raw_group in doc.get("rulegroups") or []:
            group = _lower_keys(raw_group)
            rules = tuple(
                _rule_from_dict(raw_rule, i)
                for i, raw_rule in enumerate(group.get("rules") or [], start=1)
            )
            extra = {"id": str(group["id"])} if group.get("id") else {}
            groups.append(
                RuleGroup(
                    name=str(group.get("name") or ""),
                    priority=int(group.get("priority") or 0),
                    rules=rules,
                    **extra,
                )
            )
        channels = []
        for raw_channel in doc.get("channels") or []:
            channel = _lower_keys(raw_channel)
            channels.append(
                ChannelDefinition(
                    name=str(channel["name"]),
                    target=str(channel.get("target") or ""),
                    min_positive_ct=float(
                        _first(channel, "minPositiveCt", default=AnalysisConstants.DEFAULT_MIN_POSITIVE_CT)
                    ),
                    max_positive_ct=float(
                        _first(channel, "maxPositiveCt", default=AnalysisConstants.DEFAULT_MAX_POSITIVE_CT)
                    ),
                )
            )
        extra = {}
        if doc.get("id"):
            extra["id"] = str(doc["id"])
        if doc.get("lastupdated"):
            extra["last_updated"] = pd.Timestamp(doc["lastupdated"]).to_pydatetime()
        return RuleConfiguration(
            name=str(doc.get("name") or ""),
            description=str(doc.get("description") or ""),
            version=str(doc.get("version") or AnalysisConstants.DEFAULT_CONFIGURATION_VERSION),
            rule_groups=tuple(groups),
            channels=tuple(channels),
            **extra,
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise ConfigurationError(f"Malformed rule document: {e}") from e


def default_configuration(name: Optional[str] = None) -> RuleConfiguration:
    """Minimal panel: a FAM Ct-threshold positive/negative pair and two channels."""
    return RuleConfiguration(
        name=name or AnalysisConstants.DEFAULT_CONFIGURATION_NAME,
        description="System default analysis rule configuration",
        rule_groups=(
            RuleGroup(
                name="Default rule group",
                priority=1,
                rules=(
                    ConditionRule(
                        name="Default positive rule",
                        condition="Channel == 'FAM' && CtValue >= 10 && CtValue <= 35",
                        action="Result = Positive",
                    ),
                    ConditionRule(
                        name="Default negative rule",
                        condition="Channel == 'FAM' && (CtValue < 10 || CtValue > 35 || CtValue == null)",
                        action="Result = Negative",
                    ),
                ),
            ),
        ),
        channels=(
            ChannelDefinition(name="FAM", target="Target1"),
            ChannelDefinition(name="VIC", target="Target2"),
        ),
    )


# ==================== STORE ====================
class RuleStore:
    def __init__(self, directory: Optional[str] = None):
        self.directory = directory or AnalysisConstants.default_rules_home()

    def path_for(self, name: str) -> str:
        """Document path for a configuration name.

        The readable slug is suffixed with a hash of the exact name, so names
        that slug alike ("Panel A", "Panel_A") never share a file.
        """
        name = name or ""
        slug = re.sub(r"[^\w\-]+", "_", name).strip("_") or "default"
        digest = hashlib.sha1(name.encode("utf-8")).hexdigest()[:8]
        return os.path.join(self.directory, f"{slug}-{digest}{AnalysisConstants.RULE_FILE_SUFFIX}")

    def list_names(self) -> List[str]:
        if not os.path.isdir(self.directory):
            return []
        names = []
        for entry in sorted(os.listdir(self.directory)):
            if not entry.endswith(AnalysisConstants.RULE_FILE_SUFFIX):
                continue
            try:
                names.append(self._read(os.path.join(self.directory, entry)).name)
            except ConfigurationError as e:
                logger.warning("Skipping unreadable rule document %s: %s", entry, e)
        return names

    def load(self, name: Optional[str] = None) -> RuleConfiguration:
        """Load a configuration, falling back to a persisted default.

        Raises:
            RuleStoreError: the default configuration could not be written.
        """
        name = name or AnalysisConstants.DEFAULT_CONFIGURATION_NAME
        path = self.path_for(name)
        if os.path.exists(path):
            try:
                return self._read(path)
            except ConfigurationError as e:
                logger.warning("Rule document %s unreadable (%s); using default", path, e)
                self._set_aside(path)
        else:
            logger.warning("Rule document %s not found; creating default", path)

        config = default_configuration(name)
        self._write(config, path)
        return config

    def save(self, config: RuleConfiguration, raise_on_error: bool = False) -> bool:
        try:
            self._write(config, self.path_for(config.name))
        except RuleStoreError:
            if raise_on_error:
                raise
            logger.exception("Saving rule configuration %r failed", config.name)
            return False
        return True

    def list_channels(self, name: Optional[str] = None) -> List[ChannelDefinition]:
        return list(self.load(name).channels)

    def get_channel(self, name: Optional[str], channel: str) -> Optional[ChannelDefinition]:
        return self.load(name).get_channel(channel)

    def _read(self, path: str) -> RuleConfiguration:
        try:
            with open(path, encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Cannot read {path}: {e}") from e
        return from_document(document)

    def _write(self, config: RuleConfiguration, path: str) -> None:
        tmp_path = None
        try:
            os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=os.path.dirname(path) or ".", prefix=".rules-", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(to_document(config), f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, path)
            tmp_path = None
        except OSError as e:
            raise RuleStoreError(f"Cannot write rule configuration to {path}: {e}") from e
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)

    @staticmethod
    def _set_aside(path: str) -> None:
        try:
            os.replace(path, path + ".bak")
        except OSError as e:
            logger.warning("Could not back up %s: %s", path, e)
