from __future__ import annotations

import sys
from pathlib import Path

import pytest

from media_os_build.core import DependencyUnmet, ToolFailed, ToolMissing, ToolTimeout
from media_os_build.process import CommandSpec, ProcessRunner
from media_os_build.process.runner import tail_lines


def _py(code: str, **kw) -> CommandSpec:
    return CommandSpec(argv=(sys.executable, "-c", code), **kw)


def test_run_captures_output(tmp_path: Path) -> None:
    out = ProcessRunner().run(
        _py("import os; print(os.environ['MOB_GREETING'], os.getcwd())", env={"MOB_GREETING": "hi"}, cwd=tmp_path)
    )
    assert out.ok
    assert out.stdout.split() == ["hi", str(tmp_path)]
    assert out.duration_ms >= 0


def test_nonzero_exit_raises_with_stderr_tail() -> None:
    code = "import sys\nfor i in range(30): sys.stderr.write(f'line{i}\\n')\nsys.exit(3)"
    with pytest.raises(ToolFailed) as ei:
        ProcessRunner().run(_py(code))

    err = ei.value
    assert err.exit_code == 3
    assert err.kind == "tool-failed"
    lines = err.stderr_tail.splitlines()
    assert len(lines) == 20
    assert lines[-1] == "line29"


def test_nonzero_exit_without_check_returns_outcome() -> None:
    out = ProcessRunner().run(_py("import sys; sys.exit(2)"), check=False)
    assert not out.ok
    assert out.exit_code == 2


def test_missing_tool() -> None:
    with pytest.raises(ToolMissing) as ei:
        ProcessRunner().run(CommandSpec(argv=("media-os-build-no-such-tool",)))
    assert ei.value.tool == "media-os-build-no-such-tool"
    assert ei.value.kind == "tool-missing"


def test_timeout() -> None:
    with pytest.raises(ToolTimeout) as ei:
        ProcessRunner().run(_py("import time; time.sleep(10)", timeout_s=0.3))
    assert ei.value.timeout_s == pytest.approx(0.3)
    assert ei.value.kind == "tool-timeout"


def test_missing_working_directory(tmp_path: Path) -> None:
    with pytest.raises(DependencyUnmet):
        ProcessRunner().run(_py("pass", cwd=tmp_path / "nope"))


def test_command_spec_and_tail_helpers() -> None:
    spec = CommandSpec(argv=("cargo", "build", "--target", "x86 64"))
    assert spec.tool == "cargo"
    assert spec.display == "cargo build --target 'x86 64'"

    with pytest.raises(ValueError):
        CommandSpec(argv=())

    assert tail_lines(b"a\nb\nc\n", 2) == "b\nc"
    assert tail_lines(None) == ""
