from __future__ import annotations

import pytest

from animator.services.artifacts import ArtifactStore, LocalArtifact
from animator.services.credentials import CredentialStore


def test_register_returns_locator_and_serves_artifact() -> None:
    store = ArtifactStore()
    artifact = LocalArtifact(data=b"video", mime_type="video/mp4")

    locator = store.register(artifact)

    assert locator == f"/artifacts/{artifact.artifact_id}"
    assert store.get(artifact.artifact_id) is artifact
    assert artifact.artifact_id in store
    assert len(store) == 1


def test_revoke_releases_once() -> None:
    store = ArtifactStore()
    artifact = LocalArtifact(data=b"video")
    store.register(artifact)

    assert store.revoke(artifact.artifact_id) is True
    assert store.revoke(artifact.artifact_id) is False
    assert store.get(artifact.artifact_id) is None
    assert store.revoke(None) is False
    assert len(store) == 0


def test_artifacts_get_distinct_ids() -> None:
    assert LocalArtifact(data=b"a").artifact_id != LocalArtifact(data=b"a").artifact_id


def test_credential_store_lifecycle() -> None:
    store = CredentialStore("  ")
    assert store.has_credential() is False

    store.select_credential(" new-key ")
    assert store.has_credential() is True
    assert store.api_key == "new-key"

    store.invalidate()
    assert store.has_credential() is False
    assert store.api_key is None


def test_credential_store_rejects_blank_selection() -> None:
    store = CredentialStore("existing")
    with pytest.raises(ValueError):
        store.select_credential("   ")
    assert store.api_key == "existing"
