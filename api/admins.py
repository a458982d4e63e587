"""
Admin Directory API

Endpoints:
- POST /admins/all - Active admins visible to the requester's role
- GET /admins/profile/{admin_id} - One admin's profile
- POST /admins/create - Create an admin (super_admin only)
- PUT /admins/{admin_id} - Update an admin (super_admin only)
- DELETE /admins/{admin_id} - Soft delete (super_admin only)
- PUT /admins/{admin_id}/restore - Reactivate (super_admin only)

Directory reads skip the cache for a short window after any of the
mutations above.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from civicpulse.cache import CachePolicy
from civicpulse.database import get_db
from civicpulse.services import AdminService

from .dependencies import cache_policy, envelope, get_admin_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admins", tags=["Admins"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class RequesterModel(BaseModel):
    """Caller identity, passed in the body."""
    requester_role: Optional[str] = Field(None, alias="requesterRole")
    requester_id: Optional[str] = Field(None, alias="requesterId")

    class Config:
        populate_by_name = True


class ListAdminsRequest(RequesterModel):
    requested_roles: Optional[List[str]] = Field(None, alias="requestedRoles")


class CreateAdminRequest(RequesterModel):
    email: Optional[str] = None
    full_name: Optional[str] = Field(None, alias="fullName")
    department: Optional[str] = None
    role: Optional[str] = None


class UpdateAdminRequest(RequesterModel):
    full_name: Optional[str] = Field(None, alias="fullName")
    department: Optional[str] = None
    role: Optional[str] = None
    is_active: Optional[bool] = Field(None, alias="isActive")


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/all")
async def list_admins(
    request: ListAdminsRequest,
    policy: CachePolicy = Depends(cache_policy),
    db: Session = Depends(get_db),
    service: AdminService = Depends(get_admin_service),
) -> Dict[str, Any]:
    result = await service.list_admins(
        db,
        requester_role=request.requester_role,
        requested_roles=request.requested_roles,
        policy=policy,
    )
    return envelope(result)


@router.get("/profile/{admin_id}")
async def get_profile(
    admin_id: str,
    policy: CachePolicy = Depends(cache_policy),
    db: Session = Depends(get_db),
    service: AdminService = Depends(get_admin_service),
) -> Dict[str, Any]:
    return envelope(await service.get_profile(db, admin_id, policy))


@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_admin(
    request: CreateAdminRequest,
    db: Session = Depends(get_db),
    service: AdminService = Depends(get_admin_service),
) -> Dict[str, Any]:
    result = await service.create_admin(
        db,
        requester_role=request.requester_role,
        email=request.email,
        full_name=request.full_name,
        department=request.department,
        role=request.role,
    )
    return envelope(result)


@router.put("/{admin_id}")
async def update_admin(
    admin_id: str,
    request: UpdateAdminRequest,
    db: Session = Depends(get_db),
    service: AdminService = Depends(get_admin_service),
) -> Dict[str, Any]:
    result = await service.update_admin(
        db,
        admin_id,
        requester_role=request.requester_role,
        requester_id=request.requester_id,
        full_name=request.full_name,
        department=request.department,
        role=request.role,
        is_active=request.is_active,
    )
    return envelope(result)


@router.delete("/{admin_id}")
async def delete_admin(
    admin_id: str,
    request: RequesterModel,
    db: Session = Depends(get_db),
    service: AdminService = Depends(get_admin_service),
) -> Dict[str, Any]:
    result = await service.delete_admin(
        db,
        admin_id,
        requester_role=request.requester_role,
        requester_id=request.requester_id,
    )
    return envelope(result)


@router.put("/{admin_id}/restore")
async def restore_admin(
    admin_id: str,
    request: RequesterModel,
    db: Session = Depends(get_db),
    service: AdminService = Depends(get_admin_service),
) -> Dict[str, Any]:
    return envelope(await service.restore_admin(db, admin_id, requester_role=request.requester_role))
