"""
Admin API Endpoints
===================

Site-wide dashboard, user management and invite codes. Every route
requires an admin user.
"""

import uuid

from fastapi import APIRouter, Query, Response, status

from app.dependencies import AdminUser, DBSession
from app.schemas.account import AdminUserUpdate, InviteCodeCreate
from app.schemas.common import ERROR_RESPONSES
from app.services.admin_service import AdminService
from app.services.invite_service import InviteService

router = APIRouter()


@router.get("/dashboard", responses=ERROR_RESPONSES)
async def dashboard(admin: AdminUser, db: DBSession):
    return await AdminService(db).dashboard()


@router.get("/users", responses=ERROR_RESPONSES)
async def list_users(
    admin: AdminUser,
    db: DBSession,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=25, ge=1, le=100),
):
    result = await AdminService(db).list_users(page=page, limit=limit)
    return {**result, "users": [u.to_api_dict() for u in result["users"]]}


@router.patch("/users/{user_id}", responses=ERROR_RESPONSES)
async def update_user(user_id: uuid.UUID, request: AdminUserUpdate, admin: AdminUser, db: DBSession):
    user = await AdminService(db).update_user(user_id, request.model_dump(exclude_unset=True))
    await db.commit()
    return user.to_api_dict()


# =============================================================================
# Invite codes
# =============================================================================

@router.get("/invite_codes", responses=ERROR_RESPONSES)
async def list_invite_codes(admin: AdminUser, db: DBSession):
    service = InviteService(db)
    codes = await service.list_codes()
    return {
        "invite_codes": [c.to_api_dict() for c in codes],
        **(await service.counts()),
    }


@router.post("/invite_codes", status_code=status.HTTP_201_CREATED, responses=ERROR_RESPONSES)
async def create_invite_code(request: InviteCodeCreate, admin: AdminUser, db: DBSession):
    """Issue a code; a code bound to an email is mailed to it."""
    invite = await InviteService(db).create_code(admin.user_id, request.email)
    await db.commit()
    return invite.to_api_dict()


@router.delete("/invite_codes/{invite_code_id}", status_code=status.HTTP_204_NO_CONTENT, responses=ERROR_RESPONSES)
async def delete_invite_code(invite_code_id: uuid.UUID, admin: AdminUser, db: DBSession):
    await InviteService(db).delete_code(invite_code_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
