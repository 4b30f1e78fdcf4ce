from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from media_os_build.core import (
    BuildError,
    ConfigurationError,
    ErrorKind,
    Settings,
    bind,
    clear_bindings,
    configure_logging,
    exit_code_for,
    get_logger,
    load_settings,
    new_run_id,
)
from media_os_build.pipeline import PipelineRunner, RunReport, RunRequest, StageStatus
from media_os_build.stages import STAGE_NAMES

console = Console()

_STATUS_STYLE: dict[StageStatus, str] = {
    StageStatus.SUCCEEDED: "[green]ran[/green]",
    StageStatus.SKIPPED: "[cyan]skipped[/cyan]",
    StageStatus.FAILED: "[red]failed[/red]",
    StageStatus.NOT_ATTEMPTED: "[dim]not attempted[/dim]",
}


@dataclass(frozen=True, slots=True)
class _CommonArgs:
    cmd: str
    targets: tuple[str, ...]
    only: bool
    dry_run: bool
    report_json: Path | None


def _add_override_args(p: argparse.ArgumentParser) -> None:
    g = p.add_argument_group("overrides (default: MEDIA_OS_BUILD_* environment)")
    g.add_argument("--project-root", type=Path, default=None, help="Project checkout root")
    g.add_argument(
        "--project-name",
        default=None,
        help="Binary name searched for, copied and installed (default: media-launcher)",
    )
    g.add_argument(
        "--target-triple",
        dest="rust_target",
        default=None,
        help="Compile target triple (default: x86_64-unknown-linux-musl)",
    )
    g.add_argument(
        "--container-name",
        default=None,
        help="Builder image built and extracted from (default: media-launcher-builder)",
    )
    g.add_argument("--container-engine", default=None, help="Container CLI (default: docker)")
    g.add_argument(
        "--overlay-dir",
        type=Path,
        default=None,
        help="Overlay root written by compose-overlay (default: <buildroot>/board/media-os/rootfs_overlay)",
    )
    g.add_argument("--buildroot-dir", type=Path, default=None, help="Buildroot checkout (default: ../buildroot)")
    mode = g.add_mutually_exclusive_group()
    mode.add_argument(
        "--container",
        dest="use_container",
        action="store_const",
        const=True,
        default=None,
        help="Extract the binary from the isolated container build",
    )
    mode.add_argument(
        "--no-container",
        dest="use_container",
        action="store_const",
        const=False,
        help="Extract the binary from the host static build",
    )
    g.add_argument("-j", "--jobs", type=int, default=None, help="Stages allowed to run concurrently")


def _add_run_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--only",
        action="store_true",
        help="Run only the named target(s), without their dependencies",
    )
    p.add_argument(
        "-n",
        "--dry-run",
        action="store_true",
        help="Print the plan and staleness decisions without running anything",
    )
    p.add_argument(
        "--report-json",
        type=Path,
        default=None,
        help="Also write the run report as JSON to this path",
    )
    _add_override_args(p)


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="media-os-build",
        description="Media OS launcher build pipeline",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    for name in STAGE_NAMES:
        sp = sub.add_parser(name, help=f"Run the {name} stage and what it needs")
        _add_run_args(sp)

    sp = sub.add_parser("run", help="Run one or more targets in the given order")
    sp.add_argument("targets", nargs="+", metavar="TARGET")
    _add_run_args(sp)

    sp = sub.add_parser("list", help="List targets and their dependencies")
    _add_override_args(sp)

    sp = sub.add_parser("check-tools", help="Check that the tools needed by targets are on PATH")
    sp.add_argument("targets", nargs="*", metavar="TARGET")
    _add_override_args(sp)

    return p


def _common(args: argparse.Namespace) -> _CommonArgs:
    if args.cmd in ("run", "check-tools"):
        targets = tuple(args.targets)
    elif args.cmd in STAGE_NAMES:
        targets = (args.cmd,)
    else:
        targets = ()
    return _CommonArgs(
        cmd=str(args.cmd),
        targets=targets,
        only=bool(getattr(args, "only", False)),
        dry_run=bool(getattr(args, "dry_run", False)),
        report_json=getattr(args, "report_json", None),
    )


def _overrides(args: argparse.Namespace) -> dict[str, object]:
    """Flags the user actually passed, keyed by Settings field."""
    keys = (
        "project_root",
        "project_name",
        "rust_target",
        "container_name",
        "container_engine",
        "overlay_dir",
        "buildroot_dir",
        "use_container",
        "jobs",
    )
    return {k: getattr(args, k) for k in keys if getattr(args, k, None) is not None}


def _print_list(pipeline: PipelineRunner) -> int:
    tbl = Table(title="Targets", show_header=True, box=None)
    tbl.add_column("target", style="bold")
    tbl.add_column("description")
    tbl.add_column("needs")
    for st in pipeline.registry.stages:
        needs = ", ".join(pipeline.registry.predecessors(st.name)) or "-"
        tbl.add_row(st.name, st.description, needs)
    console.print(tbl)
    return 0


def _check_tools(pipeline: PipelineRunner, targets: tuple[str, ...]) -> int:
    if targets:
        stages = pipeline.scheduler.plan(targets)
    else:
        stages = pipeline.registry.stages

    tools: dict[str, list[str]] = {}
    for st in stages:
        for tool in st.tools:
            tools.setdefault(tool, []).append(st.name)

    tbl = Table(title="Tools", show_header=True, box=None)
    tbl.add_column("tool", style="bold")
    tbl.add_column("path")
    tbl.add_column("used by")
    missing: list[str] = []
    for tool, used_by in tools.items():
        path = pipeline.runner.which(tool)
        if path is None:
            missing.append(tool)
        tbl.add_row(tool, path or "[red]missing[/red]", ", ".join(used_by))
    console.print(tbl)

    if missing:
        console.print(f"[red]Missing tools:[/red] {', '.join(missing)}")
        return exit_code_for(ErrorKind.TOOL_MISSING)
    console.print("[green]All tools found[/green]")
    return 0


def _print_preview(pipeline: PipelineRunner, request: RunRequest) -> int:
    tbl = Table(title="Plan (dry run)", show_header=True, box=None)
    tbl.add_column("#")
    tbl.add_column("stage", style="bold")
    tbl.add_column("would")
    tbl.add_column("reason")
    for i, p in enumerate(pipeline.preview(request), start=1):
        style = {"run": "green", "skip": "cyan", "blocked": "red"}[p.action]
        tbl.add_row(str(i), p.stage, f"[{style}]{p.action}[/{style}]", p.reason)
    console.print(tbl)
    return 0


def _print_report(report: RunReport) -> None:
    tbl = Table(title="Stages", show_header=True, box=None)
    tbl.add_column("stage", style="bold")
    tbl.add_column("result")
    tbl.add_column("why")
    for r in report.stages:
        tbl.add_row(r.stage, _STATUS_STYLE[r.status], r.reason)
    console.print(tbl)

    failure = report.first_failure
    if failure is not None and failure.error is not None:
        console.print(
            Panel(
                Text(failure.error.diagnostic),
                title=f"{failure.stage}: {failure.error.kind}",
                border_style="red",
            )
        )

    res = Table(title="Result", show_header=False, box=None)
    res.add_row("status", "[green]ok[/green]" if report.exit_code == 0 else "[red]failed[/red]")
    res.add_row("exit code", str(report.exit_code))
    console.print(res)


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    common = _common(args)

    try:
        s: Settings = load_settings().with_overrides(**_overrides(args))
    except ValueError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        return exit_code_for(ErrorKind.CONFIGURATION)

    configure_logging(level=s.log_level, fmt=s.log_format)
    log = get_logger("media_os_build")

    run_id = new_run_id()
    bind(run_id=run_id, command=common.cmd)

    try:
        pipeline = PipelineRunner(settings=s, logger=log)

        if common.cmd == "list":
            return _print_list(pipeline)
        if common.cmd == "check-tools":
            return _check_tools(pipeline, common.targets)

        request = RunRequest(
            targets=common.targets,
            with_dependencies=not common.only,
            dry_run=common.dry_run,
            overrides={k: str(v) if isinstance(v, Path) else v for k, v in _overrides(args).items()},
        )
        if request.dry_run:
            return _print_preview(pipeline, request)

        console.print(
            Panel.fit(
                Text(
                    f"media-os-build - {' '.join(request.targets)}\n"
                    f"run_id={run_id}\n"
                    f"project={s.project_name} target={s.rust_target}\n"
                    f"mode={'container' if s.use_container else 'host'}",
                    style="bold",
                ),
                title="Run",
            )
        )
        with console.status(f"[bold]{' '.join(request.targets)}[/]", spinner="dots"):
            report = pipeline.run(request, run_id=run_id)

    except ConfigurationError as e:
        log.error("Configuration error", error=str(e))
        console.print(f"[red]Configuration error:[/red] {e}")
        return exit_code_for(ErrorKind.CONFIGURATION)
    except BuildError as e:
        console.print(f"[red]{e.kind.value}:[/red] {e.diagnostic}")
        return exit_code_for(e.kind)
    finally:
        clear_bindings()

    _print_report(report)
    if common.report_json is not None:
        report.write_json(common.report_json)
        console.print(f"report: {common.report_json}")

    return int(report.exit_code)


if __name__ == "__main__":
    raise SystemExit(main())
