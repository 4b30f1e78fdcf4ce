from .models import Artifact, ArtifactKind, Fingerprint, validate_id
from .store import ArtifactStore, ContainerImageProbe, ImageProbe

__all__ = [
    "Artifact",
    "ArtifactKind",
    "Fingerprint",
    "validate_id",
    "ArtifactStore",
    "ContainerImageProbe",
    "ImageProbe",
]
