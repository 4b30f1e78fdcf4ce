from .models import (
    Action,
    CommandAction,
    ComposeOverlayAction,
    ContainerExtractAction,
    CopyBinaryAction,
    PurgeAction,
    ReportAction,
    ReportProbe,
    Stage,
)
from .overlay import OverlayResult, OverlaySpec, compose_overlay
from .registry import STAGE_NAMES, StageRegistry, build_registry

__all__ = [
    "Action",
    "CommandAction",
    "ComposeOverlayAction",
    "ContainerExtractAction",
    "CopyBinaryAction",
    "PurgeAction",
    "ReportAction",
    "ReportProbe",
    "Stage",
    "OverlayResult",
    "OverlaySpec",
    "compose_overlay",
    "STAGE_NAMES",
    "StageRegistry",
    "build_registry",
]
