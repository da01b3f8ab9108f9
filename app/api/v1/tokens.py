"""
API Token Endpoints
===================

Manage the bearer tokens agents use to call the API.
"""

import uuid

from fastapi import APIRouter, Response, status

from app.dependencies import CurrentUser, DBSession
from app.schemas.account import ApiTokenCreate
from app.schemas.common import ERROR_RESPONSES
from app.services.api_token_service import ApiTokenService

router = APIRouter()


@router.get("")
async def list_tokens(current_user: CurrentUser, db: DBSession):
    """Tokens are returned masked."""
    tokens = await ApiTokenService(db).list_tokens(current_user.user_id)
    return [t.to_api_dict() for t in tokens]


@router.post("", status_code=status.HTTP_201_CREATED, responses=ERROR_RESPONSES)
async def create_token(request: ApiTokenCreate, current_user: CurrentUser, db: DBSession):
    """The raw token is in this response only."""
    token = await ApiTokenService(db).create_token(
        current_user.user_id,
        name=request.name,
        expires_in_days=request.expires_in_days,
    )
    await db.commit()
    return token.to_api_dict(include_raw=True)


@router.post("/regenerate", status_code=status.HTTP_201_CREATED)
async def regenerate_token(current_user: CurrentUser, db: DBSession):
    """Revoke every token and issue a new "Default" one."""
    token = await ApiTokenService(db).regenerate(current_user.user_id)
    await db.commit()
    return token.to_api_dict(include_raw=True)


@router.delete("/{token_id}", status_code=status.HTTP_204_NO_CONTENT, responses=ERROR_RESPONSES)
async def revoke_token(token_id: uuid.UUID, current_user: CurrentUser, db: DBSession):
    await ApiTokenService(db).revoke(current_user.user_id, token_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
