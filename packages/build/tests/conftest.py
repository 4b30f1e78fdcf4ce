from __future__ import annotations

import os
import threading
import time
from pathlib import Path
from typing import Iterable, Mapping

import pytest
import structlog

from media_os_build.core import Settings, ToolFailed, ToolMissing, ToolTimeout
from media_os_build.pipeline import PipelineRunner
from media_os_build.process import CommandSpec, ProcessOutcome, ProcessRunner

OLD = time.time() - 3600


class FakeProcessRunner(ProcessRunner):
    """
    Stands in for cargo, docker, strip, make and the analysis tools.

    Side effects mirror what the real tools leave on disk so the artifact
    store sees the same state it would after a real build.
    """

    def __init__(
        self,
        *,
        project_name: str = "media-launcher",
        missing: Iterable[str] = (),
        failing: Mapping[str, int] | None = None,
        hanging: Iterable[str] = (),
    ) -> None:
        super().__init__(logger=structlog.get_logger("fake-runner"))
        self.project_name = project_name
        self.missing = set(missing)
        self.failing = dict(failing or {})
        self.hanging = set(hanging)
        self.calls: list[tuple[str, ...]] = []
        self.images: set[str] = set()
        self.containers: dict[str, str] = {}
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def which(self, tool: str) -> str | None:
        return None if tool in self.missing else f"/usr/bin/{tool}"

    def tools_called(self) -> list[str]:
        return [c[0] for c in self.calls if c[:3] != ("docker", "image", "inspect")]

    def run(self, cmd: CommandSpec, *, check: bool = True) -> ProcessOutcome:
        with self._lock:
            self.calls.append(cmd.argv)

        if cmd.tool in self.missing:
            raise ToolMissing(tool=cmd.tool)
        if cmd.tool in self.hanging:
            if cmd.timeout_s is None:
                raise RuntimeError(f"{cmd.display} would hang: no timeout configured")
            raise ToolTimeout(
                tool=cmd.tool, command=cmd.display, timeout_s=cmd.timeout_s, stderr_tail=""
            )

        code = self.failing.get(cmd.tool)
        stdout = ""
        if code is None:
            code, stdout = self._simulate(cmd)

        stderr = "" if code == 0 else f"{cmd.tool}: simulated failure"
        if check and code != 0:
            raise ToolFailed(
                tool=cmd.tool, command=cmd.display, exit_code=code, stderr_tail=stderr
            )
        return ProcessOutcome(
            argv=cmd.argv, exit_code=code, stdout=stdout, stderr=stderr, duration_ms=0
        )

    def _write_binary(self, path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        path.chmod(0o755)

    def _simulate(self, cmd: CommandSpec) -> tuple[int, str]:
        argv = cmd.argv
        tool = argv[0]
        cwd = Path(cmd.cwd) if cmd.cwd is not None else Path.cwd()

        if tool == "cargo":
            if "--release" in argv:
                triple = argv[argv.index("--target") + 1]
                out = cwd / "target" / triple / "release" / self.project_name
            else:
                out = cwd / "target" / "debug" / self.project_name
            self._write_binary(out, b"\x7fELF host build")
            return 0, ""

        if tool == "docker":
            sub = argv[1]
            if sub == "build":
                self.images.add(argv[argv.index("-t") + 1])
                return 0, ""
            if sub == "image" and argv[2] == "inspect":
                return (0, "[]") if argv[3] in self.images else (1, "")
            if sub == "create":
                name, image = argv[argv.index("--name") + 1], argv[-1]
                if image not in self.images:
                    return 1, ""
                self.containers[name] = image
                return 0, name
            if sub == "cp":
                self._write_binary(Path(argv[3]), b"\x7fELF container build")
                return 0, ""
            if sub == "rm":
                self.containers.pop(argv[-1], None)
                return 0, ""
            if sub == "rmi":
                if argv[2] not in self.images:
                    return 1, ""
                self.images.discard(argv[2])
                return 0, ""
            return 0, ""

        if tool == "make":
            if len(argv) == 1:
                images = cwd / "output" / "images"
                images.mkdir(parents=True, exist_ok=True)
                (images / "rootfs.ext2").write_bytes(b"image")
            return 0, ""

        if tool == "touch":
            Path(argv[1]).parent.mkdir(parents=True, exist_ok=True)
            Path(argv[1]).touch()
            return 0, ""

        if tool == "slow-touch":
            with self._lock:
                self.active += 1
                self.max_active = max(self.max_active, self.active)
            time.sleep(0.3)
            with self._lock:
                self.active -= 1
            Path(argv[1]).parent.mkdir(parents=True, exist_ok=True)
            Path(argv[1]).touch()
            return 0, ""

        if tool == "file":
            return 0, f"{argv[1]}: ELF 64-bit LSB executable, x86-64, statically linked, stripped"
        if tool == "size":
            return 0, "   text\t   data\t    bss\t    dec\t    hex\tfilename\n 812345\t  10240\t   4096\t 826681\t  c9d39\tbin"
        if tool in ("ldd", "objdump"):
            return 1, ""

        return 0, ""


def _age(root: Path) -> None:
    for dirpath, _dirnames, filenames in os.walk(root):
        for name in filenames:
            os.utime(Path(dirpath) / name, (OLD, OLD))
        os.utime(dirpath, (OLD, OLD))


@pytest.fixture
def project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    (root / "launcher" / "src").mkdir(parents=True)
    (root / "launcher" / "src" / "main.rs").write_text("fn main() {}\n")
    (root / "Cargo.toml").write_text('[package]\nname = "media-launcher"\n')
    (root / "Dockerfile.builder").write_text("FROM rust:alpine\n")

    unit = root / "buildroot" / "media-launcher.service"
    unit.parent.mkdir(parents=True)
    unit.write_text("[Service]\nExecStart=/usr/bin/media-launcher\n")

    frag = root / "buildroot" / "rootfs_overlay" / "etc"
    frag.mkdir(parents=True)
    (frag / "hostname").write_text("media-os\n")

    (tmp_path / "buildroot").mkdir()
    _age(root)
    return root


@pytest.fixture
def settings(project: Path, tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        project_root=project,
        buildroot_dir=tmp_path / "buildroot",
    )


@pytest.fixture
def fake_runner() -> FakeProcessRunner:
    return FakeProcessRunner()


@pytest.fixture
def make_pipeline():
    def _make(settings: Settings, runner: ProcessRunner) -> PipelineRunner:
        return PipelineRunner(
            settings=settings, runner=runner, logger=structlog.get_logger("test")
        )

    return _make
