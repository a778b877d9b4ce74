"""
Custom field rule engine.
"""

from .rule_engine import RuleEngine

__all__ = [
    "RuleEngine",
]
