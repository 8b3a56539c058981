"""In-memory registry that makes downloaded videos addressable by the browser."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

ARTIFACT_ROUTE_PREFIX = "/artifacts"


@dataclass
class LocalArtifact:
    """Downloaded video bytes owned by whoever received them from the job client."""

    data: bytes
    mime_type: str = "video/mp4"
    source_uri: Optional[str] = None
    artifact_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def locator(self) -> str:
        return f"{ARTIFACT_ROUTE_PREFIX}/{self.artifact_id}"


class ArtifactStore:
    """Issues and revokes locators for LocalArtifacts, like browser object URLs."""

    def __init__(self) -> None:
        self._artifacts: dict[str, LocalArtifact] = {}

    def __len__(self) -> int:
        return len(self._artifacts)

    def __contains__(self, artifact_id: object) -> bool:
        return artifact_id in self._artifacts

    def register(self, artifact: LocalArtifact) -> str:
        self._artifacts[artifact.artifact_id] = artifact
        logger.info("Registered artifact %s (%d bytes)", artifact.artifact_id, artifact.size)
        return artifact.locator

    def get(self, artifact_id: str) -> Optional[LocalArtifact]:
        return self._artifacts.get(artifact_id)

    def revoke(self, artifact_id: Optional[str]) -> bool:
        """Release an artifact. Returns False when it was unknown or already released."""

        if not artifact_id:
            return False
        artifact = self._artifacts.pop(artifact_id, None)
        if artifact is None:
            return False
        logger.info("Revoked artifact %s", artifact_id)
        return True

    def clear(self) -> None:
        self._artifacts.clear()
