"""
Users API

Endpoints:
- POST /users/create-or-login - Fetch the user for a phone number, creating it on first use
- GET /users/user/{user_id} - Get user by ID
- PUT /users/update-profile - Update name, email or profile image URL
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from civicpulse.database import get_db
from civicpulse.services import UserService

from .dependencies import envelope, get_user_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/users", tags=["Users"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class CreateOrLoginRequest(BaseModel):
    phone_number: Optional[str] = Field(None, alias="phoneNumber")

    class Config:
        populate_by_name = True


class UpdateProfileRequest(BaseModel):
    user_id: Optional[str] = Field(None, alias="userId")
    full_name: Optional[str] = Field(None, alias="fullName", max_length=255)
    email: Optional[str] = Field(None, max_length=255)
    profile_image_url: Optional[str] = Field(None, alias="profileImageUrl")

    class Config:
        populate_by_name = True


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/create-or-login")
async def create_or_login(
    request: CreateOrLoginRequest,
    db: Session = Depends(get_db),
    service: UserService = Depends(get_user_service),
):
    """200 for an existing user, 201 when the account was just created."""
    result = await service.create_or_login(db, request.phone_number)
    created = result.pop("created")
    return JSONResponse(status_code=201 if created else 200, content=envelope(result))


@router.get("/user/{user_id}")
async def get_user(
    user_id: str,
    db: Session = Depends(get_db),
    service: UserService = Depends(get_user_service),
) -> Dict[str, Any]:
    return envelope(await service.get_user(db, user_id))


@router.put("/update-profile")
async def update_profile(
    request: UpdateProfileRequest,
    db: Session = Depends(get_db),
    service: UserService = Depends(get_user_service),
) -> Dict[str, Any]:
    result = await service.update_profile(
        db,
        request.user_id,
        full_name=request.full_name,
        email=request.email,
        profile_image_url=request.profile_image_url,
    )
    return envelope(result)
