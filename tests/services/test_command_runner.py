import sys

import pytest

from neonlocal.errors import ProxyError
from neonlocal.services.command_runner import CommandRunner


class DummyLogger:
    def __init__(self):
        self.debug_messages = []

    def debug(self, message, *args, **_kwargs):
        self.debug_messages.append(message % args if args else message)

    def warning(self, *_args, **_kwargs):
        return None


def test_command_runner_raises_with_stderr():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(ProxyError, match="boom"):
        runner.run(
            [sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(1)"],
            check=True,
            capture_output=True,
        )


def test_command_runner_returns_when_check_disabled():
    runner = CommandRunner(logger=DummyLogger())

    result = runner.run(
        [sys.executable, "-c", "import sys; sys.exit(1)"],
        check=False,
        capture_output=True,
    )

    assert result.returncode == 1


def test_command_runner_runs_failing_command_once(tmp_path, monkeypatch):
    runner = CommandRunner(logger=DummyLogger())
    monkeypatch.chdir(tmp_path)

    command = [
        sys.executable,
        "-c",
        (
            "from pathlib import Path;"
            "p=Path('run-counter.txt');"
            "n=int(p.read_text()) if p.exists() else 0;"
            "p.write_text(str(n+1));"
            "import sys; sys.exit(1)"
        ),
    ]

    with pytest.raises(ProxyError, match="Command failed \\(1\\)"):
        runner.run(command, capture_output=True)

    assert (tmp_path / "run-counter.txt").read_text() == "1"


def test_command_runner_timeout_raises_error():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(ProxyError, match="timed out"):
        runner.run(
            [sys.executable, "-c", "import time; time.sleep(2)"],
            check=True,
            capture_output=True,
            timeout=0.1,
        )


def test_command_runner_missing_binary_raises_error():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(ProxyError, match="Required command not found"):
        runner.run(["neonlocal-definitely-missing-binary"], capture_output=True)


def test_command_runner_passes_stdin_and_extra_env():
    runner = CommandRunner(logger=DummyLogger())

    result = runner.run(
        [
            sys.executable,
            "-c",
            "import os, sys; sys.stdout.write(sys.stdin.read().strip() + os.environ['NEON_TEST'])",
        ],
        capture_output=True,
        input_text="hello-\n",
        extra_env={"NEON_TEST": "world"},
    )

    assert result.stdout == "hello-world"


def test_command_runner_can_suppress_output_logging():
    logger = DummyLogger()
    runner = CommandRunner(logger=logger)

    runner.run(
        [sys.executable, "-c", "print('super-secret')"],
        capture_output=True,
        log_output=False,
    )

    assert not any("super-secret" in message for message in logger.debug_messages)


def test_command_runner_stream_yields_non_empty_lines():
    runner = CommandRunner(logger=DummyLogger())

    lines = list(
        runner.stream([sys.executable, "-c", "print('one'); print(''); print('two')"])
    )

    assert lines == ["one", "two"]


def test_command_runner_stream_raises_on_failure():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(ProxyError, match="denied"):
        list(runner.stream([sys.executable, "-c", "print('denied'); import sys; sys.exit(3)"]))
