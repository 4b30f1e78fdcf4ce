from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LogFormat = Literal["json", "console"]


class Settings(BaseSettings):
    """
    Build configuration. Every field can be overridden through the environment
    (`MEDIA_OS_BUILD_PROJECT_NAME=...`) or a `.env` file; the CLI applies its
    flags on top with `with_overrides`.
    """

    model_config = SettingsConfigDict(
        env_prefix="MEDIA_OS_BUILD_",
        env_file=".env",
        extra="ignore",
    )

    project_root: Path = Field(default=Path("."))
    project_name: str = Field(default="media-launcher", min_length=1)
    rust_target: str = Field(default="x86_64-unknown-linux-musl", min_length=1)

    container_engine: str = Field(default="docker", min_length=1)
    container_name: str = Field(default="media-launcher-builder", min_length=1)
    container_recipe: Path = Field(default=Path("Dockerfile.builder"))
    container_binary_dir: str = Field(default="/usr/bin")
    use_container: bool = Field(default=True)

    sources_dir: Path = Field(default=Path("launcher"))
    dist_dir: Path = Field(default=Path("dist"))
    overlay_source_dir: Path = Field(default=Path("buildroot"))

    buildroot_dir: Path = Field(default=Path("../buildroot"))
    buildroot_board: str = Field(default="media-os")
    buildroot_defconfig: str = Field(default="media_os_defconfig")
    overlay_dir: Optional[Path] = Field(default=None)

    jobs: int = Field(default=1, ge=1)
    default_timeout_s: Optional[float] = Field(default=None, gt=0)
    stage_timeouts: dict[str, float] = Field(default_factory=dict)

    log_level: str = Field(default="INFO")
    log_format: LogFormat = Field(default="console")

    @field_validator("stage_timeouts")
    @classmethod
    def _positive_timeouts(cls, v: dict[str, float]) -> dict[str, float]:
        bad = sorted(k for k, t in v.items() if t <= 0)
        if bad:
            raise ValueError(f"stage_timeouts must be positive: {bad}")
        return v

    def timeout_for(self, stage: str) -> float | None:
        return self.stage_timeouts.get(stage, self.default_timeout_s)

    def with_overrides(self, **overrides: object) -> "Settings":
        """Return a copy with every non-None override applied and re-validated."""
        update = {k: v for k, v in overrides.items() if v is not None}
        if not update:
            return self
        data = self.model_dump()
        data.update(update)
        return type(self).model_validate(data)


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    return Settings()
