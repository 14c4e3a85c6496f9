"""
tests/unit/test_terminal.py

Tests for tools/terminal.py (execute_command): output capture, exit status,
dangerous-command refusal, secret stripping and working-directory confinement.
"""

from __future__ import annotations

import pytest

from kitty.tools.executor import ToolExecutor
from kitty.tools.terminal import is_dangerous, register_terminal_tools
from kitty.tools.tool_registry import ToolRegistry


def _terminal(tmp_path, timeout_seconds: float = 10.0) -> ToolExecutor:
    registry = ToolRegistry()
    register_terminal_tools(registry, tmp_path)
    return ToolExecutor(registry, timeout_seconds=timeout_seconds)


class TestExecuteCommand:
    @pytest.mark.asyncio
    async def test_captures_stdout(self, tmp_path):
        result = await _terminal(tmp_path).execute("execute_command", {"command": "echo hello"})
        assert not result.is_error
        assert result.content == "hello\n"

    @pytest.mark.asyncio
    async def test_runs_in_working_directory(self, tmp_path):
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "marker.txt").write_text("x")
        result = await _terminal(tmp_path).execute(
            "execute_command", {"command": "ls", "working_directory": "sub"}
        )
        assert result.content == "marker.txt\n"

    @pytest.mark.asyncio
    async def test_stderr_appended(self, tmp_path):
        result = await _terminal(tmp_path).execute("execute_command", {"command": "echo out; echo err >&2"})
        assert result.content == "out\n\nSTDERR:\nerr\n"

    @pytest.mark.asyncio
    async def test_no_output(self, tmp_path):
        result = await _terminal(tmp_path).execute("execute_command", {"command": "true"})
        assert result.content == "Command executed successfully (no output)"

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_an_error(self, tmp_path):
        result = await _terminal(tmp_path).execute("execute_command", {"command": "echo nope; exit 3"})
        assert result.is_error
        assert result.content == "Error: Command exited with status 3\nnope"

    @pytest.mark.asyncio
    async def test_dangerous_command_rejected(self, tmp_path):
        result = await _terminal(tmp_path).execute("execute_command", {"command": "rm -rf /"})
        assert result.is_error
        assert result.content == "Error: Command rejected for safety reasons"

    @pytest.mark.asyncio
    async def test_secret_env_vars_stripped(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MY_API_KEY", "sk-hidden")
        monkeypatch.setenv("KITTY_PLAIN_VALUE", "visible")
        result = await _terminal(tmp_path).execute(
            "execute_command",
            {"command": 'echo "${MY_API_KEY:-unset} $KITTY_PLAIN_VALUE"'},
        )
        assert result.content == "unset visible\n"

    @pytest.mark.asyncio
    async def test_working_directory_outside_root_refused(self, tmp_path):
        result = await _terminal(tmp_path).execute(
            "execute_command", {"command": "ls", "working_directory": ".."}
        )
        assert result.is_error
        assert "outside the working directory" in result.content

    @pytest.mark.asyncio
    async def test_timeout(self, tmp_path):
        result = await _terminal(tmp_path, timeout_seconds=0.2).execute(
            "execute_command", {"command": "sleep 5"}
        )
        assert result.is_error
        assert "timed out" in result.content


@pytest.mark.parametrize("command, dangerous", [
    ("rm -rf /", True),
    ("rm -rf /etc", True),
    ("rm -rf /tmp/build", False),
    ("dd if=/dev/zero of=/dev/sda", True),
    ("mkfs.ext4 /dev/sda1", True),
    (":(){ :|:& };:", True),
    ("ls -la", False),
])
def test_is_dangerous(command, dangerous):
    assert is_dangerous(command) is dangerous
