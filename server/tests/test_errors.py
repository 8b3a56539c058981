from __future__ import annotations

import pytest

from animator.services.errors import (
    CredentialInvalidError,
    UpstreamError,
    classify_upstream_error,
    is_credential_rejection,
)


@pytest.mark.parametrize(
    "message",
    [
        "Requested entity was not found.",
        "entity was not found",
        "404 NOT_FOUND: the entity was not found; also quota exceeded",
    ],
)
def test_credential_rejection_matches_substring_anywhere(message: str) -> None:
    assert is_credential_rejection(message)
    assert isinstance(classify_upstream_error(message), CredentialInvalidError)


@pytest.mark.parametrize("message", ["Requested Entity Was Not Found.", "entity not found", "", None])
def test_credential_rejection_is_case_sensitive_and_exact(message: str | None) -> None:
    assert not is_credential_rejection(message)


def test_other_messages_stay_upstream_verbatim() -> None:
    error = classify_upstream_error("Resource has been exhausted (e.g. check quota).")
    assert type(error) is UpstreamError
    assert error.message == "Resource has been exhausted (e.g. check quota)."
    assert error.kind == "upstream"
