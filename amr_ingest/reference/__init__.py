"""
Reference data capability: organisms, antibiotics and breakpoint rules.
"""

from .breakpoints import BreakpointTable
from .loader import ReferenceDataLoader
from .service import InMemoryReferenceData, ReferenceDataService

__all__ = [
    "BreakpointTable",
    "InMemoryReferenceData",
    "ReferenceDataLoader",
    "ReferenceDataService",
]
