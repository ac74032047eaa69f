#!/usr/bin/env python3
"""
genepipe data models
"""
from .interval import (
    GenomicInterval, parse_hint_line, parse_gtf_line, is_data_line,
    HINT_TYPES, MANUAL_SOURCE,
)
from .gene import Transcript, GeneSet
from .job import SequenceSlice, ChunkPlan, JobDescriptor
from .metrics import AccuracyMetrics

__all__ = [
    'GenomicInterval', 'parse_hint_line', 'parse_gtf_line', 'is_data_line',
    'HINT_TYPES', 'MANUAL_SOURCE',
    'Transcript', 'GeneSet',
    'SequenceSlice', 'ChunkPlan', 'JobDescriptor',
    'AccuracyMetrics',
]
