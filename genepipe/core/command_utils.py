# genepipe/core/command_utils.py
"""
External process execution.

Every tool the pipeline calls goes through a Command: an argument vector,
never a shell string, so paths with spaces or shell metacharacters reach
the tool untouched.
"""
import os
import shlex
import shutil
import subprocess
import logging
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Sequence

from genepipe.exceptions import ToolExecutionError

logger = logging.getLogger("genepipe.command_utils")

STDERR_TAIL_LINES = 20


@dataclass(frozen=True)
class Command:
    """One invocation of an external program

    stdin/stdout/stderr, when given, are file paths the stream is
    redirected from/to. Without a stdout/stderr path the stream is captured.
    """
    program: str
    args: Tuple[str, ...] = ()
    cwd: Optional[str] = None
    stdin: Optional[str] = None
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    expected_returncodes: Tuple[int, ...] = (0,)
    timeout: Optional[float] = None
    name: str = ""

    @classmethod
    def build(cls, program: str, *args, **kwargs) -> 'Command':
        """Create a command, converting every argument to str"""
        return cls(program=program, args=tuple(str(a) for a in args), **kwargs)

    @property
    def argv(self) -> List[str]:
        return [self.program, *self.args]

    @property
    def label(self) -> str:
        return self.name or os.path.basename(self.program)

    def __str__(self) -> str:
        text = shlex.join(self.argv)
        if self.stdin:
            text += f" < {shlex.quote(self.stdin)}"
        if self.stdout:
            text += f" > {shlex.quote(self.stdout)}"
        if self.stderr:
            text += f" 2> {shlex.quote(self.stderr)}"
        return text


@dataclass
class CommandResult:
    """Outcome of a finished command"""
    command: Command
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def output(self) -> str:
        """stdout and stderr together, the way the trainer reports are read"""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


def _tail(text: str, lines: int = STDERR_TAIL_LINES) -> str:
    return "\n".join((text or "").splitlines()[-lines:])


def read_stream_file(path: Optional[str]) -> str:
    """Read a redirected stream back, empty if it was never written"""
    if path and os.path.exists(path):
        with open(path, 'r', errors='replace') as f:
            return f.read()
    return ""


def open_streams(cmd: Command, stack: ExitStack):
    """Open the redirection targets of a command inside an ExitStack

    Returns:
        (stdin, stdout, stderr) arguments for subprocess
    """
    stdin = stack.enter_context(open(cmd.stdin, 'r')) if cmd.stdin else subprocess.DEVNULL
    stdout = stack.enter_context(open(cmd.stdout, 'w')) if cmd.stdout else subprocess.PIPE
    stderr = stack.enter_context(open(cmd.stderr, 'w')) if cmd.stderr else subprocess.PIPE
    return stdin, stdout, stderr


def check_result(cmd: Command, returncode: int, stdout: str, stderr: str) -> CommandResult:
    """Turn a finished process into a CommandResult or raise

    Raises:
        ToolExecutionError: If the exit status is not expected
    """
    result = CommandResult(command=cmd, returncode=returncode, stdout=stdout or "", stderr=stderr or "")
    if returncode not in cmd.expected_returncodes:
        error_text = stderr or read_stream_file(cmd.stderr)
        logger.error(f"Command failed with exit code {returncode}: {cmd}")
        if error_text:
            logger.error(f"Stderr: {_tail(error_text)}")
        raise ToolExecutionError(
            f"{cmd.label} exited with status {returncode}",
            {"command": str(cmd), "returncode": returncode, "stderr": _tail(error_text)}
        )
    return result


def run_command(cmd: Command) -> CommandResult:
    """Run a command to completion

    External tool failures are treated as deterministic, so there is no retry.

    Args:
        cmd: Command to run

    Returns:
        CommandResult with captured output

    Raises:
        ToolExecutionError: If the tool cannot be started, times out or
            exits with an unexpected status
    """
    logger.debug(f"Running command: {cmd}")

    with ExitStack() as stack:
        stdin, stdout, stderr = open_streams(cmd, stack)
        try:
            completed = subprocess.run(
                cmd.argv,
                stdin=stdin,
                stdout=stdout,
                stderr=stderr,
                cwd=cmd.cwd,
                text=True,
                timeout=cmd.timeout,
                check=False
            )
        except FileNotFoundError as e:
            raise ToolExecutionError(f"Executable not found: {cmd.program}",
                                     {"command": str(cmd)}) from e
        except subprocess.TimeoutExpired as e:
            raise ToolExecutionError(f"{cmd.label} timed out after {cmd.timeout}s",
                                     {"command": str(cmd)}) from e

    return check_result(cmd, completed.returncode, completed.stdout, completed.stderr)


def check_command_availability(command: str) -> bool:
    """Check if a command is available in the system path

    Args:
        command: Command name or path

    Returns:
        True if command is available
    """
    return shutil.which(command) is not None


def check_tool_requirements(required_tools: Sequence[str]) -> Tuple[bool, List[str]]:
    """Check if all required tools are available

    Args:
        required_tools: List of required tool commands

    Returns:
        Tuple of (all_available, missing_tools)
    """
    missing_tools = [tool for tool in required_tools if not check_command_availability(tool)]
    return len(missing_tools) == 0, missing_tools
