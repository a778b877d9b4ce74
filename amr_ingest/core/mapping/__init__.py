"""
Column mapping: templates, auto-mapping and the mapping resolver.
"""

from .column_matcher import ColumnMatcher, load_synonyms
from .resolver import DEFAULT_REQUIRED_FIELDS, ColumnPlan, MappingResolver
from .result_columns import METHOD_SUFFIXES, ResultColumnMatch, ResultColumnPattern
from .template_config import TemplateBuilder, TemplateConfigLoader, load_templates
from .template_store import TemplateStore

__all__ = [
    "DEFAULT_REQUIRED_FIELDS",
    "METHOD_SUFFIXES",
    "ColumnMatcher",
    "load_synonyms",
    "ColumnPlan",
    "MappingResolver",
    "ResultColumnMatch",
    "ResultColumnPattern",
    "TemplateBuilder",
    "TemplateConfigLoader",
    "load_templates",
    "TemplateStore",
]
