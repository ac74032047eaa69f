#!/usr/bin/env python3
"""
Job manager factory for the genepipe pipeline.
"""
import logging
from typing import Optional

from genepipe.core.context import PipelineContext
from genepipe.exceptions import ConfigurationError
from .base import JobManager
from .local import LocalJobManager

logger = logging.getLogger("genepipe.jobs.factory")


def create_job_manager(context: PipelineContext, manager_type: Optional[str] = None) -> JobManager:
    """Create a job manager based on the run context

    Args:
        context: Pipeline context
        manager_type: Optional manager type override

    Returns:
        JobManager instance

    Raises:
        ConfigurationError: For an unknown manager type
    """
    if manager_type is None:
        manager_type = context.setting('pipeline.job_manager', 'local') or 'local'

    logger.debug(f"Creating job manager of type: {manager_type}")

    if manager_type.lower() != 'local':
        raise ConfigurationError(f"Unknown job manager type: {manager_type}",
                                 {"config_key": "pipeline.job_manager"})

    timeout = context.setting('prediction.job_timeout', 0) or None
    return LocalJobManager(timeout=timeout, max_workers=context.cpus)
