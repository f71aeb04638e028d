"""
Loop-closure candidate search and validation.
"""

from .search import CandidateSearch, PairDistance, pair_distance
from .validator import CandidateValidator, ValidationSummary

__all__ = [
    'CandidateSearch',
    'PairDistance',
    'pair_distance',
    'CandidateValidator',
    'ValidationSummary'
]
