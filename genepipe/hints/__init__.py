"""
Evidence (hints) aggregation
"""
from .aggregator import AggregationResult, aggregate, aggregate_files, read_hints, write_hints

__all__ = ['AggregationResult', 'aggregate', 'aggregate_files', 'read_hints', 'write_hints']
