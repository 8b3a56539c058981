"""API key selection endpoints."""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from ..models import schemas
from ..services.credentials import CredentialStore

router = APIRouter(prefix="/credential", tags=["credential"])


def _store(request: Request) -> CredentialStore:
    return request.app.state.credentials


@router.get("", response_model=schemas.CredentialStatusResponse)
async def get_credential_status(request: Request) -> schemas.CredentialStatusResponse:
    """Report whether an API key is currently selected."""

    return schemas.CredentialStatusResponse(has_credential=_store(request).has_credential())


@router.post("", response_model=schemas.CredentialStatusResponse)
async def select_credential(
    payload: schemas.CredentialSelectRequest, request: Request
) -> schemas.CredentialStatusResponse:
    store = _store(request)
    try:
        store.select_credential(payload.api_key)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return schemas.CredentialStatusResponse(has_credential=store.has_credential())
