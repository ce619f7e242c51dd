"""Tests for the Python code interpreter tool.

These run real subprocesses with the test interpreter.
"""

from __future__ import annotations

import pytest

from core.run_context import RunContext
from tools.code_interpreter import ExecutionResult, _inject_matplotlib_autosave, execute_python_code, run_python


class TestRunPython:
    """Tests for run_python."""

    @pytest.mark.asyncio
    async def test_prints_output(self) -> None:
        result = await run_python("print('hello')", timeout=10)

        assert result.success is True
        assert result.stdout.strip() == "hello"
        assert result.exit_code == 0
        assert result.error is None

    @pytest.mark.asyncio
    async def test_error_exit(self) -> None:
        result = await run_python("raise ValueError('boom')", timeout=10)

        assert result.success is False
        assert result.exit_code == 1
        assert result.error == "ValueError: boom"
        assert "Traceback" in result.stderr

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        result = await run_python("import time\ntime.sleep(30)", timeout=0.5)

        assert result.success is False
        assert result.exit_code == -1
        assert result.error == "Execution timed out after 0.5s"

    @pytest.mark.asyncio
    async def test_image_files_returned(self) -> None:
        code = "open('chart.png', 'wb').write(b'\\x89PNG')\nopen('data.csv', 'w').write('a,b')"

        result = await run_python(code, timeout=10)

        assert result.images == ["data:image/png;base64,iVBORw=="]
        assert result.files == [{"name": "chart.png", "size": 4}, {"name": "data.csv", "size": 3}]


def test_matplotlib_autosave_only_when_used() -> None:
    assert _inject_matplotlib_autosave("print(1)") == "print(1)"

    wrapped = _inject_matplotlib_autosave("import matplotlib.pyplot as plt")
    assert wrapped.startswith("import matplotlib\nmatplotlib.use('Agg')")
    assert "savefig(f'figure_{_i}.png'" in wrapped


def test_result_shape() -> None:
    result = ExecutionResult(success=True, stdout="ok", images=["data:image/png;base64,AA=="]).to_result()

    assert result["firstImage"] == "data:image/png;base64,AA=="
    assert result["generatedImages"] == ["data:image/png;base64,AA=="]
    assert "error" not in result
    assert "generatedImages" not in ExecutionResult(success=True).to_result()


@pytest.mark.asyncio
async def test_tool_handler(run_context: RunContext) -> None:
    result = await execute_python_code({"code": "print(6 * 7)"}, run_context)
    assert result["success"] is True
    assert result["stdout"].strip() == "42"
