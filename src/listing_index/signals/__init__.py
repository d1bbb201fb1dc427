"""Signal extraction module."""

from .extractor import Signals, extract_signals
from .rules import PatternRule, SignalRules
from .validate import validate_extraction

__all__ = [
    "PatternRule",
    "SignalRules",
    "Signals",
    "extract_signals",
    "validate_extraction",
]
