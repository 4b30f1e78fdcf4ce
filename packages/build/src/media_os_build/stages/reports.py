from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from media_os_build.core import DependencyUnmet, atomic_write_text, file_size
from media_os_build.process import CommandSpec

from .models import ReportAction, ReportProbe

if TYPE_CHECKING:
    from media_os_build.pipeline.context import RunContext


def human_bytes(n: int) -> str:
    size = float(n)
    for unit in ("B", "K", "M", "G"):
        if size < 1024 or unit == "G":
            return f"{int(size)}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024
    return f"{n}B"


def _head(text: str, n: int | None) -> str:
    lines = text.rstrip().splitlines()
    if n is not None:
        lines = lines[:n]
    return "\n".join(lines)


def _run_probe(ctx: "RunContext", probe: ReportProbe, *, timeout_s: float | None) -> str:
    out = ctx.runner.run(
        CommandSpec(argv=probe.argv, timeout_s=timeout_s),
        check=probe.fallback is None,
    )
    if not out.ok:
        return probe.fallback or ""
    return _head(out.stdout, probe.head) or (probe.fallback or "")


def write_report(action: ReportAction, ctx: "RunContext") -> Path:
    """
    Run the action's probes against the binary and write a plain-text report.
    """
    if not action.binary.is_file():
        raise DependencyUnmet(
            f"Binary not found: {action.binary}. Run extract-container-artifact first.",
            artifact_id="extracted-binary",
            location=str(action.binary),
        )

    sections: list[tuple[str, str]] = []
    if action.include_size:
        n = file_size(action.binary)
        sections.append(("Size", f"{n} bytes ({human_bytes(n)})  {action.binary}"))

    for probe in action.probes:
        sections.append((probe.title, _run_probe(ctx, probe, timeout_s=action.timeout_s)))

    body = [action.title, "=" * len(action.title), ""]
    for title, text in sections:
        body.append(f"## {title}")
        body.append(text)
        body.append("")

    atomic_write_text(action.dest, "\n".join(body))
    return action.dest
