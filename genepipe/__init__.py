#!/usr/bin/env python3
"""
genepipe: evidence-driven gene prediction pipeline

Aggregates evidence hints, trains a species gene model, predicts genes in
parallel over a partitioned genome and joins the results.
"""

__version__ = '0.1.0'

from .core.context import PipelineContext
from .exceptions import GenePipeError
from .error_handlers import handle_exceptions

__all__ = ['PipelineContext', 'GenePipeError', 'handle_exceptions']
