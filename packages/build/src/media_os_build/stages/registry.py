from __future__ import annotations

from typing import Final, Iterable, Sequence

from pydantic import ValidationError

from media_os_build.artifacts import Artifact, ArtifactKind, validate_id
from media_os_build.core import BuildLayout, ConfigurationError, Settings
from media_os_build.process import CommandSpec

from .models import (
    CommandAction,
    ComposeOverlayAction,
    ContainerExtractAction,
    CopyBinaryAction,
    PurgeAction,
    ReportAction,
    ReportProbe,
    Stage,
)
from .overlay import OverlaySpec

STAGE_NAMES: Final[tuple[str, ...]] = (
    "compile-debug",
    "compile-static",
    "build-in-container",
    "extract-container-artifact",
    "compose-overlay",
    "build-os-image",
    "report-artifact-size",
    "report-runtime-dependencies",
    "purge-artifacts",
)


class StageRegistry:
    """
    Load-time validated table of stages and the artifacts they exchange.

    Rejects (ConfigurationError): duplicate stage names or artifact ids,
    unknown dependencies or artifacts, two producers for one artifact,
    stages reading their own outputs, stages without outputs, cycles.
    """

    def __init__(self, stages: Sequence[Stage], artifacts: Iterable[Artifact]) -> None:
        self._artifacts: dict[str, Artifact] = {}
        for a in artifacts:
            self._check_id(a.id, what="artifact")
            if a.id in self._artifacts:
                raise ConfigurationError(f"Duplicate artifact id: {a.id}")
            self._artifacts[a.id] = a

        self._stages: dict[str, Stage] = {}
        for st in stages:
            self._check_id(st.name, what="stage")
            if st.name in self._stages:
                raise ConfigurationError(f"Duplicate stage name: {st.name}")
            self._stages[st.name] = st

        self._order: dict[str, int] = {name: i for i, name in enumerate(self._stages)}
        self._producers: dict[str, str] = {}

        self._validate_references()
        self._validate_single_writer()
        self._validate_acyclic()

    @staticmethod
    def _check_id(value: str, *, what: str) -> None:
        try:
            validate_id(value)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid {what} id {value!r}") from e

    def _validate_references(self) -> None:
        for st in self._stages.values():
            for dep in st.depends_on:
                if dep not in self._stages:
                    raise ConfigurationError(
                        f"Stage {st.name!r} depends on unknown stage {dep!r}"
                    )
                if dep == st.name:
                    raise ConfigurationError(f"Stage {st.name!r} depends on itself")
            for aid in (*st.inputs, *st.outputs):
                if aid not in self._artifacts:
                    raise ConfigurationError(
                        f"Stage {st.name!r} references unknown artifact {aid!r}"
                    )
            if not st.outputs and not st.always_run:
                raise ConfigurationError(f"Stage {st.name!r} declares no outputs")
            overlap = set(st.inputs) & set(st.outputs)
            if overlap:
                raise ConfigurationError(
                    f"Stage {st.name!r} reads its own output(s): {sorted(overlap)}"
                )

    def _validate_single_writer(self) -> None:
        for st in self._stages.values():
            for aid in st.outputs:
                owner = self._producers.get(aid)
                if owner is not None:
                    raise ConfigurationError(
                        f"Artifact {aid!r} is produced by both {owner!r} and {st.name!r}"
                    )
                self._producers[aid] = st.name

    def _validate_acyclic(self) -> None:
        # 0 = unvisited, 1 = on stack, 2 = done
        state: dict[str, int] = {name: 0 for name in self._stages}

        def visit(name: str, path: list[str]) -> None:
            state[name] = 1
            path.append(name)
            for pred in self.predecessors(name):
                if state[pred] == 1:
                    cycle = path[path.index(pred):] + [pred]
                    raise ConfigurationError(f"Stage graph has a cycle: {' -> '.join(cycle)}")
                if state[pred] == 0:
                    visit(pred, path)
            path.pop()
            state[name] = 2

        for name in self._stages:
            if state[name] == 0:
                visit(name, [])

    def __contains__(self, name: object) -> bool:
        return name in self._stages

    def __len__(self) -> int:
        return len(self._stages)

    @property
    def names(self) -> list[str]:
        return list(self._stages)

    @property
    def stages(self) -> list[Stage]:
        return list(self._stages.values())

    @property
    def artifacts(self) -> list[Artifact]:
        return list(self._artifacts.values())

    def get(self, name: str) -> Stage:
        try:
            return self._stages[name]
        except KeyError:
            known = ", ".join(self._stages)
            raise ConfigurationError(f"Unknown target {name!r} (known: {known})") from None

    def artifact(self, artifact_id: str) -> Artifact:
        return self._artifacts[artifact_id]

    def declaration_index(self, name: str) -> int:
        return self._order[name]

    def producer_of(self, artifact_id: str) -> str | None:
        return self._producers.get(artifact_id)

    def predecessors(self, name: str) -> list[str]:
        """`depends_on` plus producers of inputs, deduplicated, in declaration order."""
        st = self._stages[name]
        preds = set(st.depends_on)
        for aid in st.inputs:
            producer = self._producers.get(aid)
            if producer is not None:
                preds.add(producer)
        return sorted(preds, key=self._order.__getitem__)


def _artifacts(s: Settings, layout: BuildLayout) -> list[Artifact]:
    name = s.project_name
    return [
        Artifact("launcher-sources", str(layout.sources()), ArtifactKind.DIRECTORY_TREE, "launcher source tree"),
        Artifact("cargo-manifest", str(layout.cargo_manifest()), ArtifactKind.FILE, "Cargo.toml"),
        Artifact("builder-recipe", str(layout.container_recipe()), ArtifactKind.FILE, "container build recipe"),
        Artifact("service-unit", str(layout.service_unit()), ArtifactKind.FILE, f"{name}.service"),
        Artifact(
            "overlay-fragments",
            str(layout.overlay_fragments()),
            ArtifactKind.DIRECTORY_TREE,
            "pre-existing rootfs overlay files",
            required=False,
        ),
        Artifact("debug-binary", str(layout.debug_binary()), ArtifactKind.FILE, "debug build"),
        Artifact(
            "static-binary",
            str(layout.static_binary()),
            ArtifactKind.FILE,
            f"static release build for {s.rust_target}",
        ),
        Artifact(
            "container-image",
            s.container_name,
            ArtifactKind.CONTAINER_IMAGE,
            "isolated builder image",
        ),
        Artifact("extracted-binary", str(layout.dist_binary()), ArtifactKind.FILE, "stripped binary in dist/"),
        Artifact("overlay-tree", str(layout.overlay_root()), ArtifactKind.DIRECTORY_TREE, "Buildroot rootfs overlay"),
        Artifact("os-image", str(layout.os_images()), ArtifactKind.OPAQUE_EXTERNAL, "Buildroot output images"),
        Artifact("size-report", str(layout.size_report()), ArtifactKind.FILE, "binary size analysis"),
        Artifact(
            "runtime-deps-report",
            str(layout.runtime_deps_report()),
            ArtifactKind.FILE,
            "runtime dependency analysis",
        ),
    ]


def build_registry(s: Settings) -> StageRegistry:
    """
    The fixed stage table. `use_container` selects which path produces the
    extracted binary: the isolated container build or the host static build.
    """
    layout = BuildLayout.from_settings(s)
    root = layout.root
    engine = s.container_engine
    image = s.container_name
    dist_bin = layout.dist_binary()
    sources = ("launcher-sources", "cargo-manifest")

    def cmd(stage: str, *argv: str, cwd=None) -> CommandSpec:
        return CommandSpec(argv=tuple(argv), cwd=cwd, timeout_s=s.timeout_for(stage))

    if s.use_container:
        extract = Stage(
            name="extract-container-artifact",
            inputs=("container-image",),
            outputs=("extracted-binary",),
            depends_on=("build-in-container",),
            description="Extract the binary from the builder image into dist/",
            action=ContainerExtractAction(
                engine=engine,
                image=image,
                container_path=f"{s.container_binary_dir.rstrip('/')}/{s.project_name}",
                dest=dist_bin,
                timeout_s=s.timeout_for("extract-container-artifact"),
            ),
        )
    else:
        extract = Stage(
            name="extract-container-artifact",
            inputs=("static-binary",),
            outputs=("extracted-binary",),
            depends_on=("compile-static",),
            description="Copy the host static build into dist/",
            action=CopyBinaryAction(
                source=layout.static_binary(),
                dest=dist_bin,
                timeout_s=s.timeout_for("extract-container-artifact"),
            ),
        )

    stages = [
        Stage(
            name="compile-debug",
            inputs=sources,
            outputs=("debug-binary",),
            description="Build for development/testing",
            action=CommandAction(commands=(cmd("compile-debug", "cargo", "build", cwd=root),)),
        ),
        Stage(
            name="compile-static",
            inputs=sources,
            outputs=("static-binary",),
            description=f"Build statically linked binary for {s.rust_target}",
            action=CommandAction(
                commands=(
                    cmd(
                        "compile-static",
                        "cargo", "build", "--release", "--target", s.rust_target,
                        cwd=root,
                    ),
                )
            ),
        ),
        Stage(
            name="build-in-container",
            inputs=(*sources, "builder-recipe"),
            outputs=("container-image",),
            depends_on=("compile-static",),
            description="Build in isolated container",
            action=CommandAction(
                commands=(
                    cmd(
                        "build-in-container",
                        engine, "build", "-t", image, "-f", str(layout.container_recipe()), ".",
                        cwd=root,
                    ),
                )
            ),
        ),
        extract,
        Stage(
            name="compose-overlay",
            inputs=("extracted-binary", "service-unit", "overlay-fragments"),
            outputs=("overlay-tree",),
            depends_on=("extract-container-artifact",),
            description="Prepare the Buildroot rootfs overlay",
            action=ComposeOverlayAction(
                spec=OverlaySpec(
                    binary=dist_bin,
                    service_unit=layout.service_unit(),
                    fragments=(layout.overlay_fragments(),),
                ),
                overlay_root=layout.overlay_root(),
            ),
        ),
        Stage(
            name="build-os-image",
            inputs=("overlay-tree",),
            outputs=("os-image",),
            depends_on=("compose-overlay",),
            description="Build complete Buildroot image",
            action=CommandAction(
                commands=(
                    cmd("build-os-image", "make", s.buildroot_defconfig, cwd=layout.buildroot()),
                    cmd("build-os-image", "make", cwd=layout.buildroot()),
                )
            ),
        ),
        Stage(
            name="report-artifact-size",
            inputs=("extracted-binary",),
            outputs=("size-report",),
            description="Analyze binary size",
            action=ReportAction(
                title=f"Binary size analysis: {s.project_name}",
                binary=dist_bin,
                dest=layout.size_report(),
                include_size=True,
                probes=(
                    ReportProbe(title="File type", argv=("file", str(dist_bin))),
                    ReportProbe(title="Size breakdown", argv=("size", str(dist_bin))),
                ),
                timeout_s=s.timeout_for("report-artifact-size"),
            ),
        ),
        Stage(
            name="report-runtime-dependencies",
            inputs=("extracted-binary",),
            outputs=("runtime-deps-report",),
            description="Show runtime dependencies",
            action=ReportAction(
                title=f"Runtime dependencies: {s.project_name}",
                binary=dist_bin,
                dest=layout.runtime_deps_report(),
                probes=(
                    ReportProbe(
                        title="Dynamic libraries",
                        argv=("ldd", str(dist_bin)),
                        fallback="Statically linked (no dynamic deps)",
                    ),
                    ReportProbe(
                        title="Dynamic symbols",
                        argv=("objdump", "-T", str(dist_bin)),
                        fallback="No symbols (stripped)",
                        head=20,
                    ),
                ),
                timeout_s=s.timeout_for("report-runtime-dependencies"),
            ),
        ),
        Stage(
            name="purge-artifacts",
            description="Clean all build artifacts",
            always_run=True,
            exclusive=True,
            action=PurgeAction(
                remove=(layout.target_root(), layout.dist(), layout.os_images()),
                age=(layout.overlay_root(),),
                commands=(cmd("purge-artifacts", engine, "rmi", image),),
            ),
        ),
    ]

    return StageRegistry(stages, _artifacts(s, layout))
