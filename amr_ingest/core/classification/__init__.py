"""
Value classification: wide/long layout and raw vs pre-interpreted values.
"""

from .classifier import ValueClassifier
from .value_parser import ParsedValue, UnparseableValue, parse_category, parse_measurement, parse_value

__all__ = [
    "ValueClassifier",
    "ParsedValue",
    "UnparseableValue",
    "parse_category",
    "parse_measurement",
    "parse_value",
]
