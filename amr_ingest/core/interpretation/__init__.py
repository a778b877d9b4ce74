"""
Breakpoint interpretation engine.
"""

from .engine import InterpretationEngine, categorize

__all__ = [
    "InterpretationEngine",
    "categorize",
]
