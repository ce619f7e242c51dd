"""
Code Interpreter - Python code execution in an isolated subprocess.

Each call runs the code with the server's interpreter in isolated mode
(``-I``: no user site-packages, no environment-driven imports) inside a fresh
temporary working directory, under a wall-clock timeout. Images the code
writes to its working directory, including matplotlib figures it never
saved, are returned as data URIs so the content offloader can lift them out
of the model's context.
"""

from __future__ import annotations

import asyncio
import base64
import sys
import tempfile
import time

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from core.constants import get_settings
from core.run_context import RunContext
from tools.registry import ToolDefinition
from utils.logger import logger

# ============================================
# CONFIGURATION
# ============================================

SCRIPT_NAME = "script.py"
MAX_STREAM_CHARS = 20000
MAX_FILES_RETURNED = 10
MAX_IMAGE_SIZE_FOR_BASE64 = 5 * 1024 * 1024

IMAGE_MIME_BY_SUFFIX = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
}


# ============================================
# DATA CLASSES
# ============================================


@dataclass
class ExecutionResult:
    """Result from one subprocess execution."""

    success: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    images: list[str] = field(default_factory=list)
    files: list[dict[str, Any]] = field(default_factory=list)
    execution_time_ms: int = 0
    error: str | None = None

    def to_result(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "success": self.success,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "exit_code": self.exit_code,
            "files": self.files,
            "execution_time_ms": self.execution_time_ms,
        }
        if self.images:
            result["generatedImages"] = self.images
            result["firstImage"] = self.images[0]
        if self.error:
            result["error"] = self.error
        return result


# ============================================
# HELPER FUNCTIONS
# ============================================


def _inject_matplotlib_autosave(code: str) -> str:
    """Wrap code so matplotlib (when used) renders off-screen and unsaved figures are written out."""
    if "matplotlib" not in code:
        return code

    prepend = """import matplotlib
matplotlib.use('Agg')

"""
    append = """

try:
    import matplotlib.pyplot as _plt
    for _i, _num in enumerate(_plt.get_fignums(), start=1):
        _plt.figure(_num).savefig(f'figure_{_i}.png', dpi=150, bbox_inches='tight')
        _plt.close(_num)
except Exception as _e:
    import sys as _sys
    print(f"Warning: Failed to auto-save matplotlib figures: {_e}", file=_sys.stderr)
"""
    return prepend + code + append


def _truncate(text: str) -> str:
    if len(text) <= MAX_STREAM_CHARS:
        return text
    return text[:MAX_STREAM_CHARS] + f"\n...[{len(text) - MAX_STREAM_CHARS} more chars truncated]"


def _collect_outputs(workspace: Path) -> tuple[list[str], list[dict[str, Any]]]:
    """Encode image outputs as data URIs and list other produced files."""
    images: list[str] = []
    files: list[dict[str, Any]] = []

    for path in sorted(workspace.iterdir()):
        if path.name == SCRIPT_NAME or not path.is_file():
            continue
        if len(files) >= MAX_FILES_RETURNED:
            logger.warning(f"Reached max files limit ({MAX_FILES_RETURNED}), skipping remaining files")
            break

        size = path.stat().st_size
        files.append({"name": path.name, "size": size})

        mime = IMAGE_MIME_BY_SUFFIX.get(path.suffix.lower())
        if mime is None:
            continue
        if size > MAX_IMAGE_SIZE_FOR_BASE64:
            logger.warning(f"Image {path.name} too large for base64 encoding: {size} bytes")
            continue
        encoded = base64.b64encode(path.read_bytes()).decode("ascii")
        images.append(f"data:{mime};base64,{encoded}")

    return images, files


async def run_python(code: str, timeout: float) -> ExecutionResult:
    """Run code in a fresh subprocess and temporary directory.

    Args:
        code: Python source to execute
        timeout: Wall-clock limit in seconds; the process is killed when exceeded

    Returns:
        ExecutionResult with captured output and produced images
    """
    start = time.perf_counter()
    with tempfile.TemporaryDirectory(prefix="agnt-code-") as tmp_dir:
        workspace = Path(tmp_dir)
        (workspace / SCRIPT_NAME).write_text(_inject_matplotlib_autosave(code), encoding="utf-8")

        proc = await asyncio.create_subprocess_exec(
            sys.executable,
            "-I",
            SCRIPT_NAME,
            cwd=str(workspace),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return ExecutionResult(
                success=False,
                error=f"Execution timed out after {timeout:g}s",
                exit_code=-1,
                execution_time_ms=int((time.perf_counter() - start) * 1000),
            )
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        images, files = await asyncio.to_thread(_collect_outputs, workspace)

    exit_code = proc.returncode or 0
    stderr_text = _truncate(stderr.decode("utf-8", errors="replace"))
    return ExecutionResult(
        success=exit_code == 0,
        stdout=_truncate(stdout.decode("utf-8", errors="replace")),
        stderr=stderr_text,
        exit_code=exit_code,
        images=images,
        files=files,
        execution_time_ms=int((time.perf_counter() - start) * 1000),
        error=stderr_text.strip().splitlines()[-1] if exit_code != 0 and stderr_text.strip() else None,
    )


# ============================================
# MAIN TOOL FUNCTION
# ============================================


async def execute_python_code(args: dict[str, Any], run_context: RunContext) -> dict[str, Any]:
    """Execute Python code and return stdout, stderr and any generated images."""
    timeout = get_settings().code_execution_timeout_seconds
    result = await run_python(args["code"], timeout)
    logger.info(
        f"Python execution finished: exit={result.exit_code}, "
        f"{len(result.images)} image(s), {result.execution_time_ms}ms"
    )
    return result.to_result()


CODE_INTERPRETER_TOOLS: list[ToolDefinition] = [
    ToolDefinition(
        name="execute_python_code",
        description=(
            "Execute Python code and return its printed output. Use print() to produce output. "
            "Files written to the working directory are listed; images (including matplotlib "
            "figures) are returned to the user. No input is available and execution is time limited."
        ),
        parameters={
            "type": "object",
            "properties": {
                "code": {"type": "string", "description": "The Python code to execute."},
            },
            "required": ["code"],
        },
        handler=execute_python_code,
    ),
]


__all__ = ["CODE_INTERPRETER_TOOLS", "ExecutionResult", "execute_python_code", "run_python"]
