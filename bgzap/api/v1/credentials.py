"""
Credentials Endpoint

GET    /api/v1/credentials - Whether an API token is stored (never the token)
PUT    /api/v1/credentials - Store a token
DELETE /api/v1/credentials - Clear the stored token
"""

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field

from bgzap.api.dependencies import get_credentials
from bgzap.modules.credentials.store import CredentialStore

router = APIRouter()


class TokenBody(BaseModel):
    token: str = Field(..., min_length=1, max_length=512)


class CredentialStatus(BaseModel):
    has_token: bool


@router.get("", response_model=CredentialStatus)
async def credential_status(store: CredentialStore = Depends(get_credentials)):
    return CredentialStatus(has_token=await store.has_credential())


@router.put("", status_code=204)
async def set_credential(body: TokenBody, store: CredentialStore = Depends(get_credentials)):
    try:
        await store.set(body.token)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return Response(status_code=204)


@router.delete("", status_code=204)
async def clear_credential(store: CredentialStore = Depends(get_credentials)):
    await store.clear()
    return Response(status_code=204)
