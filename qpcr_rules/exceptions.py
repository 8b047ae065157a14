"""Exception types for the rule engine.

Only RuleStoreError and AnalysisCancelled reach callers of a full analysis
run; the rest are recovered where they are raised.
"""


class RuleEngineError(Exception):
    """Base class for all rule engine errors."""


class ConfigurationError(RuleEngineError):
    """A rule configuration document is missing or cannot be parsed."""


class PatternError(RuleEngineError):
    """A well position pattern is malformed."""


class FormulaError(RuleEngineError):
    """A formula cannot be tokenized, parsed, or evaluated."""

    def __init__(self, message, formula=None):
        super().__init__(message)
        self.formula = formula


class RuleShapeMismatch(RuleEngineError):
    """A rule lacks a required field such as its pattern or channel."""


class RuleStoreError(RuleEngineError):
    """The rule store cannot persist a configuration; the run has no rules."""


class AnalysisCancelled(RuleEngineError):
    """An analysis run was cancelled before every cell was processed."""
