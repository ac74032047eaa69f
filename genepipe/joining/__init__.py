"""
Fan-in and reconciliation of prediction results
"""
from .joiner import PredictionJoiner, DualJoinResult, count_supported, find_missed_genes

__all__ = ['PredictionJoiner', 'DualJoinResult', 'count_supported', 'find_missed_genes']
