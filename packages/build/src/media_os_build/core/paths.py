from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .config import Settings


@dataclass(frozen=True, slots=True)
class BuildLayout:
    """
    Canonical path layout for build artifacts (relative settings are resolved
    against the project root):

      {root}/Cargo.toml, {root}/{sources}/
      {root}/target/debug/{name}
      {root}/target/{triple}/release/{name}
      {root}/{dist}/{name}
      {root}/buildroot/{name}.service, {root}/buildroot/rootfs_overlay/
      {buildroot}/board/{board}/rootfs_overlay/
      {buildroot}/output/images/
    """

    root: Path
    project_name: str
    rust_target: str
    sources_rel: Path
    dist_rel: Path
    overlay_source_rel: Path
    recipe_rel: Path
    buildroot_rel: Path
    board: str
    overlay_override: Path | None = None

    @classmethod
    def from_settings(cls, s: Settings) -> "BuildLayout":
        return cls(
            root=Path(s.project_root).expanduser().resolve(),
            project_name=s.project_name,
            rust_target=s.rust_target,
            sources_rel=s.sources_dir,
            dist_rel=s.dist_dir,
            overlay_source_rel=s.overlay_source_dir,
            recipe_rel=s.container_recipe,
            buildroot_rel=s.buildroot_dir,
            board=s.buildroot_board,
            overlay_override=s.overlay_dir,
        )

    def _abs(self, p: Path) -> Path:
        p = Path(p).expanduser()
        return p if p.is_absolute() else self.root / p

    def sources(self) -> Path:
        return self._abs(self.sources_rel)

    def cargo_manifest(self) -> Path:
        return self.root / "Cargo.toml"

    def container_recipe(self) -> Path:
        return self._abs(self.recipe_rel)

    def target_root(self) -> Path:
        return self.root / "target"

    def debug_binary(self) -> Path:
        return self.target_root() / "debug" / self.project_name

    def static_binary(self) -> Path:
        return self.target_root() / self.rust_target / "release" / self.project_name

    def dist(self) -> Path:
        return self._abs(self.dist_rel)

    def dist_binary(self) -> Path:
        return self.dist() / self.project_name

    def size_report(self) -> Path:
        return self.dist() / f"{self.project_name}.size.txt"

    def runtime_deps_report(self) -> Path:
        return self.dist() / f"{self.project_name}.deps.txt"

    def service_unit(self) -> Path:
        return self._abs(self.overlay_source_rel) / f"{self.project_name}.service"

    def overlay_fragments(self) -> Path:
        return self._abs(self.overlay_source_rel) / "rootfs_overlay"

    def buildroot(self) -> Path:
        return self._abs(self.buildroot_rel)

    def overlay_root(self) -> Path:
        if self.overlay_override is not None:
            return self._abs(self.overlay_override)
        return self.buildroot() / "board" / self.board / "rootfs_overlay"

    def os_images(self) -> Path:
        return self.buildroot() / "output" / "images"
