from __future__ import annotations

from pathlib import Path

import pytest

from media_os_build.artifacts import Artifact, ArtifactKind
from media_os_build.core import ConfigurationError, Settings
from media_os_build.process import CommandSpec
from media_os_build.stages import (
    STAGE_NAMES,
    CommandAction,
    ContainerExtractAction,
    CopyBinaryAction,
    Stage,
    StageRegistry,
    build_registry,
)


def _art(aid: str) -> Artifact:
    return Artifact(aid, f"/tmp/{aid}", ArtifactKind.FILE)


def _stage(name: str, *, inputs=(), outputs=(), depends_on=(), always_run=False) -> Stage:
    return Stage(
        name=name,
        inputs=tuple(inputs),
        outputs=tuple(outputs),
        depends_on=tuple(depends_on),
        always_run=always_run,
        action=CommandAction(commands=(CommandSpec(argv=("true",)),)),
    )


def test_default_table(settings: Settings) -> None:
    reg = build_registry(settings)
    assert reg.names == list(STAGE_NAMES)

    assert reg.producer_of("static-binary") == "compile-static"
    assert reg.producer_of("launcher-sources") is None
    assert reg.predecessors("build-os-image") == ["compose-overlay"]
    assert reg.predecessors("report-artifact-size") == ["extract-container-artifact"]
    assert reg.predecessors("compile-static") == []
    assert reg.get("purge-artifacts").outputs == ()


def test_container_and_host_extract_modes(settings: Settings) -> None:
    container = build_registry(settings).get("extract-container-artifact")
    assert isinstance(container.action, ContainerExtractAction)
    assert container.inputs == ("container-image",)
    assert container.tools == ("docker", "strip")

    host = build_registry(settings.with_overrides(use_container=False))
    extract = host.get("extract-container-artifact")
    assert isinstance(extract.action, CopyBinaryAction)
    assert host.predecessors("extract-container-artifact") == ["compile-static"]


def test_unknown_target(settings: Settings) -> None:
    with pytest.raises(ConfigurationError, match="Unknown target"):
        build_registry(settings).get("flash-device")


def test_rejects_two_producers() -> None:
    with pytest.raises(ConfigurationError, match="produced by both"):
        StageRegistry(
            [_stage("one", outputs=["bin"]), _stage("two", outputs=["bin"])],
            [_art("bin")],
        )


def test_rejects_unknown_references() -> None:
    with pytest.raises(ConfigurationError, match="unknown stage"):
        StageRegistry([_stage("one", outputs=["bin"], depends_on=["zero"])], [_art("bin")])
    with pytest.raises(ConfigurationError, match="unknown artifact"):
        StageRegistry([_stage("one", outputs=["bin"], inputs=["src"])], [_art("bin")])


def test_rejects_missing_outputs_unless_always_run() -> None:
    with pytest.raises(ConfigurationError, match="no outputs"):
        StageRegistry([_stage("one")], [])
    reg = StageRegistry([_stage("clean", always_run=True)], [])
    assert reg.names == ["clean"]


def test_rejects_reading_own_output_and_bad_names() -> None:
    with pytest.raises(ConfigurationError, match="own output"):
        StageRegistry([_stage("one", inputs=["bin"], outputs=["bin"])], [_art("bin")])
    with pytest.raises(ConfigurationError, match="Invalid stage id"):
        StageRegistry([_stage("Bad_Name", outputs=["bin"])], [_art("bin")])
    with pytest.raises(ConfigurationError, match="Duplicate stage"):
        StageRegistry(
            [_stage("one", outputs=["a"]), _stage("one", outputs=["b"])],
            [_art("a"), _art("b")],
        )


def test_rejects_cycles() -> None:
    stages = [
        _stage("aa", inputs=["c"], outputs=["a"]),
        _stage("bb", inputs=["a"], outputs=["b"]),
        _stage("cc", inputs=["b"], outputs=["c"]),
    ]
    with pytest.raises(ConfigurationError, match="cycle"):
        StageRegistry(stages, [_art("a"), _art("b"), _art("c")])


def test_custom_registry_predecessors_merge_depends_on_and_inputs(tmp_path: Path) -> None:
    reg = StageRegistry(
        [
            _stage("fetch", outputs=["src"]),
            _stage("prep", outputs=["cfg"]),
            _stage("build", inputs=["src"], outputs=["bin"], depends_on=["prep", "fetch"]),
        ],
        [_art("src"), _art("cfg"), _art("bin")],
    )
    assert reg.predecessors("build") == ["fetch", "prep"]
    assert reg.declaration_index("build") == 2
    assert len(reg) == 3 and "build" in reg
