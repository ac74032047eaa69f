#!/usr/bin/env python3
"""
Tests for command execution and the local job manager
"""
import sys
import time

import pytest

from genepipe.core.command_utils import Command, check_tool_requirements, run_command
from genepipe.exceptions import ConfigurationError, JobExecutionError, ToolExecutionError
from genepipe.jobs.factory import create_job_manager
from genepipe.jobs.local import LocalJobManager


def python_command(code, **kwargs):
    return Command.build(sys.executable, "-c", code, **kwargs)


class TestRunCommand:
    """Single command execution"""

    def test_captures_stdout(self):
        result = run_command(python_command("print('hello')"))
        assert result.returncode == 0
        assert result.stdout.strip() == "hello"

    def test_redirects_streams(self, tmp_path):
        source = tmp_path / "in.txt"
        source.write_text("abc\n")
        output = tmp_path / "out.txt"
        run_command(python_command("import sys; sys.stdout.write(sys.stdin.read().upper())",
                                   stdin=str(source), stdout=str(output)))
        assert output.read_text() == "ABC\n"

    def test_paths_with_spaces_reach_the_tool(self, tmp_path):
        target = tmp_path / "dir with space" / "file; rm -rf x"
        target.parent.mkdir()
        run_command(Command.build(sys.executable, "-c",
                                 "import sys; open(sys.argv[1], 'w').write('ok')", target))
        assert target.read_text() == "ok"

    def test_failure_raises_with_stderr(self):
        with pytest.raises(ToolExecutionError) as exc_info:
            run_command(python_command("import sys; sys.stderr.write('broken'); sys.exit(3)"))
        assert exc_info.value.details["returncode"] == 3
        assert "broken" in exc_info.value.details["stderr"]

    def test_expected_returncodes(self):
        result = run_command(python_command("import sys; sys.exit(1)", expected_returncodes=(0, 1)))
        assert result.returncode == 1

    def test_missing_executable(self):
        with pytest.raises(ToolExecutionError):
            run_command(Command.build("/nonexistent/tool-genepipe"))

    def test_timeout(self):
        with pytest.raises(ToolExecutionError):
            run_command(python_command("import time; time.sleep(5)", timeout=0.5))

    def test_tool_requirements(self):
        available, missing = check_tool_requirements([sys.executable, "no-such-tool-genepipe"])
        assert not available
        assert missing == ["no-such-tool-genepipe"]


class TestLocalJobManager:
    """Parallel execution with fail-fast cancellation"""

    def test_results_in_input_order(self):
        manager = LocalJobManager(max_workers=4)
        commands = [python_command(f"import time; time.sleep({0.05 * (4 - i)}); print({i})")
                    for i in range(4)]
        results = manager.run_all(commands, concurrency=4)
        assert [r.stdout.strip() for r in results] == ["0", "1", "2", "3"]

    def test_outputs_written_to_files(self, tmp_path):
        manager = LocalJobManager(max_workers=2)
        outputs = [tmp_path / f"job{i}.txt" for i in range(3)]
        manager.run_all([python_command(f"print('job {i}')", stdout=str(path))
                         for i, path in enumerate(outputs)], concurrency=2)
        assert [p.read_text().strip() for p in outputs] == ["job 0", "job 1", "job 2"]

    def test_first_failure_cancels_the_rest(self, tmp_path):
        manager = LocalJobManager(max_workers=2)
        marker = tmp_path / "late.txt"
        commands = [
            python_command("import sys; sys.exit(5)"),
            python_command("import time; time.sleep(10)"),
            python_command(f"open({str(marker)!r}, 'w').write('ran')"),
        ]
        started = time.monotonic()
        with pytest.raises(JobExecutionError) as exc_info:
            manager.run_all(commands, concurrency=1)
        assert time.monotonic() - started < 8
        assert "sys.exit(5)" in exc_info.value.details["command"]
        assert not marker.exists()

    def test_job_timeout(self):
        manager = LocalJobManager(timeout=0.5, max_workers=1)
        with pytest.raises(JobExecutionError):
            manager.run_all([python_command("import time; time.sleep(5)")], concurrency=1)

    def test_pool_size_is_bounded(self):
        manager = LocalJobManager(max_workers=3)
        assert manager.pool_size(8, 10) == 3
        assert manager.pool_size(8, 2) == 2
        assert manager.pool_size(0, 5) == 1

    def test_no_commands(self):
        assert LocalJobManager(max_workers=1).run_all([], concurrency=1) == []


class TestFactory:
    """Job manager selection"""

    def test_local_manager_uses_context(self, make_context):
        context = make_context(prediction={'job_timeout': 30})
        manager = create_job_manager(context)
        assert isinstance(manager, LocalJobManager)
        assert manager.timeout == 30
        assert manager.max_workers == context.cpus

    def test_unknown_manager(self, make_context):
        with pytest.raises(ConfigurationError):
            create_job_manager(make_context(), "slurm")
