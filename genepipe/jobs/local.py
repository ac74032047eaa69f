#!/usr/bin/env python3
"""
Local job manager for the genepipe pipeline.
Executes independent commands on a bounded pool of worker threads, each
blocking on one OS process.
"""
import subprocess
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import ExitStack
from typing import Dict, List, Optional, Sequence

from genepipe.core.command_utils import Command, CommandResult, open_streams, check_result
from genepipe.core.context import detected_cpus
from genepipe.exceptions import JobExecutionError, ToolExecutionError
from .base import JobManager

logger = logging.getLogger("genepipe.jobs.local")


class LocalJobManager(JobManager):
    """Job manager for local execution

    The first failing job cancels the rest: running siblings are terminated
    and jobs that have not started yet are skipped.
    """

    def __init__(self, timeout: Optional[float] = None, max_workers: Optional[int] = None):
        """Initialize local job manager

        Args:
            timeout: Per-job wall clock limit in seconds, None for no limit
            max_workers: Upper bound for the pool, defaults to the detected cores
        """
        self.timeout = timeout if timeout else None
        self.max_workers = max_workers or detected_cpus()
        self._lock = threading.Lock()
        self._cancelled = threading.Event()
        self._processes: Dict[int, subprocess.Popen] = {}

    def pool_size(self, concurrency: int, job_count: int) -> int:
        return max(1, min(concurrency, self.max_workers, job_count))

    def run_all(self, commands: Sequence[Command], concurrency: int) -> List[Optional[CommandResult]]:
        """Run all commands, failing fast on the first error

        Returns:
            One result per command, in input order

        Raises:
            JobExecutionError: Naming the first failing command
        """
        commands = list(commands)
        results: List[Optional[CommandResult]] = [None] * len(commands)
        if not commands:
            return results

        self._cancelled.clear()
        workers = self.pool_size(concurrency, len(commands))
        logger.info(f"Running {len(commands)} jobs on {workers} workers")

        first_error: Optional[JobExecutionError] = None
        failed_command: Optional[Command] = None
        skipped = 0

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(self._run_job, index, cmd): index
                       for index, cmd in enumerate(commands)}
            try:
                for future in as_completed(futures):
                    index = futures[future]
                    if future.cancelled():
                        skipped += 1
                        continue
                    try:
                        result = future.result()
                    except JobExecutionError as e:
                        if first_error is None:
                            first_error, failed_command = e, commands[index]
                            logger.error(f"Job {index + 1}/{len(commands)} failed: {commands[index]}")
                            for pending in futures:
                                pending.cancel()
                            self.cancel_all()
                        continue
                    if result is None:
                        skipped += 1
                    results[index] = result
            except KeyboardInterrupt:
                for pending in futures:
                    pending.cancel()
                self.cancel_all()
                raise

        if first_error is not None:
            raise JobExecutionError(
                f"Job failed: {failed_command}: {first_error.message}",
                {**first_error.details, "command": str(failed_command), "jobs": len(commands)}
            ) from first_error

        logger.info(f"All {len(commands)} jobs finished")
        return results

    def cancel_all(self) -> int:
        self._cancelled.set()
        with self._lock:
            running = list(self._processes.values())
        for process in running:
            if process.poll() is None:
                process.terminate()
        if running:
            logger.warning(f"Terminated {len(running)} running jobs")
        return len(running)

    def _run_job(self, index: int, cmd: Command) -> Optional[CommandResult]:
        """Run one command; None means it was cancelled"""
        if self._cancelled.is_set():
            return None

        timeout = cmd.timeout or self.timeout
        logger.debug(f"Starting job {index + 1}: {cmd}")

        with ExitStack() as stack:
            stdin, stdout, stderr = open_streams(cmd, stack)
            try:
                process = subprocess.Popen(cmd.argv, stdin=stdin, stdout=stdout, stderr=stderr,
                                           cwd=cmd.cwd, text=True)
            except FileNotFoundError as e:
                raise ToolExecutionError(f"Executable not found: {cmd.program}",
                                         {"command": str(cmd)}) from e

            with self._lock:
                self._processes[index] = process
            if self._cancelled.is_set():
                process.terminate()

            try:
                out, err = process.communicate(timeout=timeout)
            except subprocess.TimeoutExpired as e:
                process.kill()
                process.communicate()
                raise ToolExecutionError(f"{cmd.label} timed out after {timeout}s",
                                         {"command": str(cmd), "timeout": timeout}) from e
            finally:
                with self._lock:
                    self._processes.pop(index, None)

        if self._cancelled.is_set() and process.returncode not in cmd.expected_returncodes:
            logger.debug(f"Job {index + 1} cancelled")
            return None
        return check_result(cmd, process.returncode, out, err)
