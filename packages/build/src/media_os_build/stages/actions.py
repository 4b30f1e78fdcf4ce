from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

from media_os_build.core import (
    ArtifactWriteError,
    DependencyUnmet,
    ToolError,
    ToolMissing,
    age_tree,
    atomic_copy_file,
    remove_tree,
    safe_unlink,
)
from media_os_build.process import CommandSpec

from .models import (
    CommandAction,
    ComposeOverlayAction,
    ContainerExtractAction,
    CopyBinaryAction,
    PurgeAction,
    ReportAction,
    Stage,
)
from .overlay import compose_overlay
from .reports import write_report

if TYPE_CHECKING:
    from media_os_build.pipeline.context import RunContext
    from media_os_build.pipeline.types import ArtifactRef


def _strip(ctx: "RunContext", path, *, timeout_s: float | None) -> None:
    ctx.runner.run(CommandSpec(argv=("strip", str(path)), timeout_s=timeout_s))


def _staging_path(dest: Path, run_id: str) -> Path:
    return dest.with_name(f".{dest.name}.{run_id[:8]}.partial")


def _publish(staged: Path, dest: Path) -> None:
    try:
        os.replace(staged, dest)
    except OSError as e:
        raise ArtifactWriteError(f"Could not move {staged} to {dest}: {e}") from e


def _extract_from_container(
    action: ContainerExtractAction, ctx: "RunContext", stage: str
) -> None:
    """
    Copy the binary out of a throwaway container and strip it.

    Work happens on a staging file next to `dest`; `dest` is replaced only
    once every command succeeded.
    """
    log = ctx.stage_logger(stage)
    engine = action.engine
    tmp_name = f"{action.image.replace('/', '-').replace(':', '-')}-extract-{ctx.run_id[:8]}"
    staged = _staging_path(action.dest, ctx.run_id)

    try:
        action.dest.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ArtifactWriteError(f"Could not create {action.dest.parent}: {e}") from e

    try:
        ctx.runner.run(
            CommandSpec(
                argv=(engine, "create", "--name", tmp_name, action.image),
                timeout_s=action.timeout_s,
            )
        )
        try:
            ctx.runner.run(
                CommandSpec(
                    argv=(engine, "cp", f"{tmp_name}:{action.container_path}", str(staged)),
                    timeout_s=action.timeout_s,
                )
            )
        finally:
            try:
                ctx.runner.run(
                    CommandSpec(argv=(engine, "rm", "-f", tmp_name), timeout_s=action.timeout_s),
                    check=False,
                )
            except ToolError as e:
                log.warning("Could not remove temporary container", container=tmp_name, error=str(e))

        if action.strip:
            _strip(ctx, staged, timeout_s=action.timeout_s)
        _publish(staged, action.dest)
    finally:
        safe_unlink(staged)


def _copy_binary(action: CopyBinaryAction, ctx: "RunContext") -> None:
    if not action.source.is_file():
        raise DependencyUnmet(
            f"Static binary not found: {action.source}",
            artifact_id="static-binary",
            location=str(action.source),
        )
    staged = _staging_path(action.dest, ctx.run_id)
    try:
        try:
            atomic_copy_file(action.source, staged)
        except OSError as e:
            raise ArtifactWriteError(f"Could not copy {action.source} to {staged}: {e}") from e

        if action.strip:
            _strip(ctx, staged, timeout_s=action.timeout_s)
        _publish(staged, action.dest)
    finally:
        safe_unlink(staged)


def _purge(action: PurgeAction, ctx: "RunContext", stage: str) -> None:
    log = ctx.stage_logger(stage)
    for p in action.remove:
        try:
            removed = remove_tree(p)
        except OSError as e:
            raise ArtifactWriteError(f"Could not remove {p}: {e}") from e
        if removed:
            log.info("Removed", path=str(p))

    # outputs kept on disk must still compare older than their inputs next run
    for p in action.age:
        try:
            aged = age_tree(p)
        except OSError as e:
            raise ArtifactWriteError(f"Could not reset timestamps under {p}: {e}") from e
        if aged:
            log.info("Marked out of date", path=str(p))

    for cmd in action.commands:
        try:
            out = ctx.runner.run(cmd, check=False)
        except ToolMissing as e:
            log.warning("Cleanup tool unavailable", command=cmd.display, error=str(e))
            continue
        if not out.ok:
            log.warning(
                "Cleanup command failed",
                command=cmd.display,
                exit_code=out.exit_code,
                stderr=out.stderr_tail(3),
            )

    ctx.store.invalidate_all()


def execute_action(stage: Stage, ctx: "RunContext") -> list["ArtifactRef"]:
    """
    Run a stage's action. Raises a BuildError subclass on failure; returns
    references to the files it wrote, when it knows them.
    """
    action = stage.action
    refs: list["ArtifactRef"] = []

    if isinstance(action, CommandAction):
        for cmd in action.commands:
            ctx.runner.run(cmd)

    elif isinstance(action, ContainerExtractAction):
        _extract_from_container(action, ctx, stage.name)
        refs.append(ctx.record_artifact(stage=stage.name, path=action.dest))

    elif isinstance(action, CopyBinaryAction):
        _copy_binary(action, ctx)
        refs.append(ctx.record_artifact(stage=stage.name, path=action.dest))

    elif isinstance(action, ComposeOverlayAction):
        res = compose_overlay(action.spec, action.overlay_root)
        for p in res.files:
            refs.append(ctx.record_artifact(stage=stage.name, path=p, rel_to=res.root))

    elif isinstance(action, ReportAction):
        path = write_report(action, ctx)
        refs.append(ctx.record_artifact(stage=stage.name, path=path, content_type="text/plain"))

    elif isinstance(action, PurgeAction):
        _purge(action, ctx, stage.name)

    else:
        raise TypeError(f"Unsupported action for stage {stage.name}: {type(action).__name__}")

    return refs
