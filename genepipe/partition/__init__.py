"""
Genome partitioning into parallel prediction jobs
"""
from .partitioner import GenomePartitioner, read_sequence_lengths, check_disjoint_outputs

__all__ = ['GenomePartitioner', 'read_sequence_lengths', 'check_disjoint_outputs']
