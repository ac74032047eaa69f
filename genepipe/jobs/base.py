#!/usr/bin/env python3
"""
Base job management interface for the genepipe pipeline.
"""
import abc
from typing import List, Optional, Sequence

from genepipe.core.command_utils import Command, CommandResult


class JobManager(abc.ABC):
    """Base interface for job managers"""

    @abc.abstractmethod
    def run_all(self, commands: Sequence[Command], concurrency: int) -> List[Optional[CommandResult]]:
        """Run independent commands and block until every one has finished

        Args:
            commands: Commands to run; no ordering between them is guaranteed
            concurrency: Requested number of simultaneous jobs

        Returns:
            Results in the order of ``commands``

        Raises:
            JobExecutionError: If any command fails
        """
        pass

    @abc.abstractmethod
    def cancel_all(self) -> int:
        """Stop every running job and keep pending jobs from starting

        Returns:
            Number of running jobs that were signalled
        """
        pass
