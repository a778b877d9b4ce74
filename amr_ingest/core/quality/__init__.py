"""
Record validation and quality scoring.
"""

from .scorer import CHECKS, COMPLETENESS_FIELDS, QualityScorer

__all__ = [
    "CHECKS",
    "COMPLETENESS_FIELDS",
    "QualityScorer",
]
