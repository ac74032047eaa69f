"""
Job management module for the genepipe pipeline.
"""
from .base import JobManager
from .local import LocalJobManager
from .factory import create_job_manager

__all__ = ['JobManager', 'LocalJobManager', 'create_job_manager']
