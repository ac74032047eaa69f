#!/usr/bin/env python3
"""
Exception hierarchy for the genepipe pipeline.
All custom exceptions should inherit from GenePipeError.
"""
from typing import Dict, Any, Optional


class GenePipeError(Exception):
    """Base exception for all genepipe errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """Initialize with error message and optional details

        Args:
            message: Error message
            details: Optional details dictionary with context
        """
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(GenePipeError):
    """Error related to configuration issues"""
    pass


class FileOperationError(GenePipeError):
    """Error during file operations"""
    pass


class ValidationError(GenePipeError):
    """Data validation error"""
    pass


class PipelineError(GenePipeError):
    """Error in pipeline processing"""
    pass


class EmptyResultError(PipelineError):
    """A stage produced nothing usable (no hints, no training genes, empty split)"""
    pass


class JobError(GenePipeError):
    """Base class for job-related errors"""
    pass


class JobExecutionError(JobError):
    """Error during job execution"""
    pass


class ToolExecutionError(JobExecutionError):
    """External tool exited with an unexpected status"""
    pass
