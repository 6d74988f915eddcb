"""Unit tests for external process execution."""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from wheelhouse_core.errors import PipelineCancelledError
from wheelhouse_core.process import (
    TIMEOUT_EXIT_CODE,
    CancellationToken,
    CommandResult,
    CommandRunner,
)


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_initially_not_cancelled(self) -> None:
        """A new token is not cancelled and does not raise."""
        token = CancellationToken()
        assert token.cancelled is False
        token.raise_if_cancelled()

    def test_cancel(self) -> None:
        """Cancelling makes raise_if_cancelled raise."""
        token = CancellationToken()
        token.cancel()
        assert token.cancelled is True
        with pytest.raises(PipelineCancelledError):
            token.raise_if_cancelled()


class TestCommandResult:
    """Tests for CommandResult helpers."""

    def test_ok(self) -> None:
        """ok follows the exit code."""
        assert CommandResult(argv=("true",), exit_code=0).ok
        assert not CommandResult(argv=("false",), exit_code=1).ok

    def test_tail(self) -> None:
        """tail keeps the last lines of combined output."""
        result = CommandResult(argv=("x",), exit_code=1, stdout="a\nb", stderr="c\nd")
        assert result.tail(2) == "c\nd"
        assert result.output == "a\nb\nc\nd"


def _process(returncode: int = 0, outputs: list[object] | None = None) -> MagicMock:
    proc = MagicMock()
    proc.returncode = returncode
    proc.communicate.side_effect = outputs or [("out", "err")]
    return proc


class TestCommandRunner:
    """Tests for CommandRunner."""

    def test_success(self) -> None:
        """Output and exit code are captured; argv is passed as a list, not a shell string."""
        proc = _process(0, [("built", "")])
        with patch("wheelhouse_core.process.subprocess.Popen", return_value=proc) as popen:
            result = CommandRunner().run(["maturin", "build"])

        assert result.ok
        assert result.stdout == "built"
        assert result.argv == ("maturin", "build")
        args, kwargs = popen.call_args
        assert args[0] == ("maturin", "build")
        assert "shell" not in kwargs

    def test_env_is_merged_for_child_only(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Extra env is layered over the parent environment."""
        monkeypatch.setenv("PARENT_VAR", "1")
        proc = _process()
        with patch("wheelhouse_core.process.subprocess.Popen", return_value=proc) as popen:
            CommandRunner().run(["maturin", "upload"], env={"MATURIN_PYPI_TOKEN": "t"})

        child_env = popen.call_args.kwargs["env"]
        assert child_env["MATURIN_PYPI_TOKEN"] == "t"
        assert child_env["PARENT_VAR"] == "1"

    def test_no_env_inherits(self) -> None:
        """Without extra env the child inherits the parent environment."""
        proc = _process()
        with patch("wheelhouse_core.process.subprocess.Popen", return_value=proc) as popen:
            CommandRunner().run(["docker", "ps"])
        assert popen.call_args.kwargs["env"] is None

    def test_missing_executable(self) -> None:
        """A missing program yields exit code 127."""
        with patch(
            "wheelhouse_core.process.subprocess.Popen",
            side_effect=FileNotFoundError("maturin"),
        ):
            result = CommandRunner().run(["maturin", "build"])
        assert result.exit_code == 127

    def test_timeout(self) -> None:
        """The process is killed once the deadline passes."""
        proc = _process(
            outputs=[subprocess.TimeoutExpired("x", 0.01), ("partial", "")],
        )
        with patch("wheelhouse_core.process.subprocess.Popen", return_value=proc):
            result = CommandRunner(poll_interval=0.01).run(["maturin", "build"], timeout=0)

        assert result.timed_out is True
        assert result.exit_code == TIMEOUT_EXIT_CODE
        assert "timed out" in result.stderr
        proc.kill.assert_called_once()

    def test_cancel_while_running(self) -> None:
        """Cancellation kills the process and raises."""
        token = CancellationToken()
        token.cancel()
        proc = _process(outputs=[subprocess.TimeoutExpired("x", 0.01), ("", "")])
        runner = CommandRunner(poll_interval=0.01)

        with patch("wheelhouse_core.process.subprocess.Popen", return_value=proc):
            # Token checked only inside the poll loop for this call
            with patch.object(token, "raise_if_cancelled"):
                with pytest.raises(PipelineCancelledError):
                    runner.run(["docker", "run"], cancel=token)

        proc.kill.assert_called_once()

    def test_cancel_before_start(self) -> None:
        """A cancelled token prevents the process from starting."""
        token = CancellationToken()
        token.cancel()
        with patch("wheelhouse_core.process.subprocess.Popen") as popen:
            with pytest.raises(PipelineCancelledError):
                CommandRunner().run(["maturin", "build"], cancel=token)
        popen.assert_not_called()
