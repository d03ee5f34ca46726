"""Text-generation backed pipeline stages"""

from .analysis_generator import AnalysisGenerator
from .query_generator import QueryGenerator

__all__ = [
    'AnalysisGenerator',
    'QueryGenerator',
]
