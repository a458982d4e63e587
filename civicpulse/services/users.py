"""
User Handlers

Phone-number based create-or-login, lookup and profile edits.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from civicpulse.cache import CacheEvent
from civicpulse.database import User, store_errors, transaction
from civicpulse.errors import NotFoundError, ValidationError
from civicpulse.utils.clock import utcnow

from .base import BaseService
from .serializers import user_dict

logger = logging.getLogger(__name__)


class UserService(BaseService):

    async def create_or_login(self, db: Session, phone_number: Optional[str]) -> Dict[str, Any]:
        """
        Return the user for a phone number, creating it on first login.

        The result carries "created" so the HTTP layer can answer 201.
        """
        phone_number = (phone_number or "").strip()
        if not phone_number:
            raise ValidationError("Phone number is required")

        with transaction(db):
            user = db.scalar(select(User).where(User.phone_number == phone_number).with_for_update())
            created = user is None
            if created:
                user = User(
                    phone_number=phone_number,
                    total_reports=0,
                    resolved_reports=0,
                )
                db.add(user)
            user.last_login = utcnow()

        if created:
            logger.info(f"New user created: {user.id}")
        return {
            "message": "User created successfully" if created else "Login successful",
            "user": user_dict(user),
            "isNewUser": created,
            "requiresProfileSetup": created or not user.full_name or not user.email,
            "created": created,
        }

    async def get_user(self, db: Session, user_id: str) -> Dict[str, Any]:
        if not user_id:
            raise ValidationError("User ID is required")
        with store_errors():
            user = db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return {"user": user_dict(user)}

    async def update_profile(
        self,
        db: Session,
        user_id: str,
        full_name: Optional[str] = None,
        email: Optional[str] = None,
        profile_image_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not user_id:
            raise ValidationError("User ID is required")
        if full_name is None and email is None and profile_image_url is None:
            raise ValidationError("No fields to update")

        with transaction(db):
            user = db.scalar(select(User).where(User.id == user_id).with_for_update())
            if user is None:
                raise NotFoundError("User not found")
            if full_name is not None:
                user.full_name = full_name.strip()
            if email is not None:
                user.email = email.strip()
            if profile_image_url is not None:
                user.profile_image_url = profile_image_url

        # Names are embedded in cached report and feed responses
        await self.after_commit(CacheEvent.USER_UPDATED, owner_id=user.id)
        return {"message": "Profile updated successfully", "user": user_dict(user)}
