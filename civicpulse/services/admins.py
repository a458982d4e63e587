"""
Admin Directory Handlers

Role-gated CRUD over municipal staff. Admins are soft-deleted.

Every mutation purges the directory caches and arms the admins bypass
flag, so directory reads stay uncached for a short window afterwards.
Directory reads are guarded by that flag.
"""

import logging
import re
from dataclasses import replace
from typing import Any, Dict, List, Optional

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from civicpulse.cache import (
    CacheEvent,
    CacheKeyBuilder,
    CacheNamespace,
    CachePolicy,
    CacheTTL,
)
from civicpulse.database import Admin, AdminRole, transaction
from civicpulse.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

from .base import BaseService
from .serializers import admin_dict, iso

logger = logging.getLogger(__name__)

K = CacheKeyBuilder
NS = CacheNamespace

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Which roles each requester may list, and whether it may narrow by role
VISIBLE_ROLES = {
    AdminRole.SUPER_ADMIN: ([AdminRole.VIEWER, AdminRole.ADMIN, AdminRole.SUPER_ADMIN], True),
    AdminRole.ADMIN: ([AdminRole.VIEWER], False),
}

ROLE_RANK = case(
    (Admin.role == AdminRole.SUPER_ADMIN, 1),
    (Admin.role == AdminRole.ADMIN, 2),
    (Admin.role == AdminRole.VIEWER, 3),
    else_=4,
)


def _role_names(roles) -> str:
    return ", ".join(r.value for r in roles)


def _parse_role(value: Any) -> AdminRole:
    try:
        return AdminRole(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"Invalid role. Must be one of: {_role_names(AdminRole)}")


def _require_super_admin(requester_role: Optional[str], action: str):
    if (requester_role or "").strip().lower() != AdminRole.SUPER_ADMIN.value:
        raise PermissionDeniedError(f"Only super admins can {action}")


def _other_active_super_admins(db: Session, admin_id: str) -> int:
    return db.scalar(
        select(func.count(Admin.id)).where(
            Admin.role == AdminRole.SUPER_ADMIN,
            Admin.is_active.is_(True),
            Admin.id != admin_id,
        )
    ) or 0


def _directory_entry(admin: Admin) -> Dict[str, Any]:
    data = admin_dict(admin)
    data.pop("updatedAt", None)
    return data


class AdminService(BaseService):

    def _policy(self, policy: Optional[CachePolicy]) -> CachePolicy:
        """Directory reads always honour the bypass flag."""
        guarded = CachePolicy.guarded(NS.ADMINS, self.bypass_window)
        if policy is not None and policy.bypass_cache:
            guarded = replace(guarded, bypass_cache=True)
        return guarded

    # =========================================================================
    # READS
    # =========================================================================

    async def list_admins(
        self,
        db: Session,
        requester_role: Optional[str],
        requested_roles: Optional[List[str]] = None,
        policy: Optional[CachePolicy] = None,
    ) -> Dict[str, Any]:
        """
        Active admins visible to the requester's role.

        super_admin sees every role and may narrow with requested_roles;
        admin sees viewers only; anything else is refused. Validation runs
        before the cache is consulted.
        """
        if not requester_role:
            raise ValidationError("Requester role is required")
        try:
            requester = AdminRole(requester_role.strip().lower())
        except ValueError:
            requester = None
        if requester not in VISIBLE_ROLES:
            raise PermissionDeniedError("Invalid requester role or insufficient permissions")

        allowed, can_filter = VISIBLE_ROLES[requester]
        roles = list(allowed)
        if requested_roles:
            if not can_filter:
                raise PermissionDeniedError("You don't have permission to filter by specific roles")
            allowed_names = {r.value for r in allowed}
            invalid = [r for r in requested_roles if str(r).strip().lower() not in allowed_names]
            if invalid:
                raise ValidationError(
                    f"Invalid roles requested: {', '.join(map(str, invalid))}. "
                    f"Allowed roles: {_role_names(allowed)}"
                )
            roles = sorted({AdminRole(str(r).strip().lower()) for r in requested_roles}, key=lambda r: r.value)

        key = K.build(
            NS.ADMINS, "list",
            filters={"requester": requester, "roles": ",".join(r.value for r in roles)},
        )

        def load():
            admins = db.scalars(
                select(Admin)
                .where(Admin.role.in_(roles), Admin.is_active.is_(True))
                .order_by(ROLE_RANK, Admin.created_at.desc())
            ).all()
            logger.info(f"Loaded {len(admins)} admins for {requester.value}")
            return {
                "message": f"Admins retrieved successfully for {requester.value}",
                "data": [_directory_entry(a) for a in admins],
                "meta": {
                    "requesterRole": requester.value,
                    "requestedRoles": list(requested_roles) if requested_roles else None,
                    "filteredRoles": [r.value for r in roles],
                    "allowedRoles": [r.value for r in allowed],
                    "canFilterByRole": can_filter,
                    "totalCount": len(admins),
                },
            }

        data, cached = await self.read_through(key, load, CacheTTL.ADMINS_LIST, self._policy(policy))
        return {**data, "cached": cached}

    async def get_profile(
        self,
        db: Session,
        admin_id: str,
        policy: Optional[CachePolicy] = None,
    ) -> Dict[str, Any]:
        if not admin_id:
            raise ValidationError("Admin ID is required")

        def load():
            admin = db.get(Admin, admin_id)
            if admin is None:
                return None
            return {
                "adminId": admin.id,
                "email": admin.email,
                "fullName": admin.full_name,
                "department": admin.department,
                "role": admin.role.value,
                "isActive": admin.is_active,
                "lastLogin": iso(admin.last_login),
                "createdAt": iso(admin.created_at),
            }

        data, cached = await self.read_through(
            K.build(NS.ADMIN_PROFILE, admin_id), load, CacheTTL.ADMIN_PROFILE, self._policy(policy)
        )
        if data is None:
            raise NotFoundError("Admin not found")
        return {"message": "Admin profile retrieved successfully", "data": data, "cached": cached}

    # =========================================================================
    # WRITES
    # =========================================================================

    async def create_admin(
        self,
        db: Session,
        requester_role: Optional[str],
        email: Optional[str],
        full_name: Optional[str],
        department: Optional[str],
        role: Optional[str],
    ) -> Dict[str, Any]:
        _require_super_admin(requester_role, "create new admins")
        if not (email and full_name and department and role):
            raise ValidationError("Email, full name, department, and role are required")
        email = email.strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise ValidationError("Invalid email format")
        new_role = _parse_role(role)

        with transaction(db):
            existing = db.scalar(select(Admin).where(func.lower(Admin.email) == email))
            if existing is not None:
                if existing.is_active:
                    raise ConflictError("Admin with this email already exists")
                raise ConflictError("Admin with this email exists but is inactive")

            admin = Admin(
                email=email,
                full_name=full_name.strip(),
                department=department.strip(),
                role=new_role,
                is_active=True,
            )
            db.add(admin)

        logger.info(f"Created admin {admin.id} ({new_role.value})")
        await self.after_commit(CacheEvent.ADMIN_CREATED, admin_id=admin.id)
        return {"message": "Admin created successfully", "data": admin_dict(admin)}

    async def update_admin(
        self,
        db: Session,
        admin_id: str,
        requester_role: Optional[str],
        requester_id: Optional[str] = None,
        full_name: Optional[str] = None,
        department: Optional[str] = None,
        role: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Dict[str, Any]:
        _require_super_admin(requester_role, "update admin details")
        if not admin_id:
            raise ValidationError("Admin ID is required")
        new_role = _parse_role(role) if role else None

        with transaction(db):
            admin = db.scalar(select(Admin).where(Admin.id == admin_id).with_for_update())
            if admin is None:
                raise NotFoundError("Admin not found")

            demoting = new_role is not None and new_role != AdminRole.SUPER_ADMIN
            deactivating = is_active is False
            if (
                admin.role == AdminRole.SUPER_ADMIN
                and admin.is_active
                and (demoting or deactivating)
                and _other_active_super_admins(db, admin.id) == 0
            ):
                raise ValidationError("Cannot demote or deactivate the last active super admin")

            if full_name is not None:
                admin.full_name = full_name.strip()
            if department is not None:
                admin.department = department.strip()
            if new_role is not None:
                admin.role = new_role
            if is_active is not None:
                admin.is_active = is_active

        logger.info(f"Admin {admin.id} updated by {requester_id or 'unknown'}")
        await self.after_commit(CacheEvent.ADMIN_UPDATED, admin_id=admin.id)
        return {"message": "Admin updated successfully", "data": admin_dict(admin)}

    async def delete_admin(
        self,
        db: Session,
        admin_id: str,
        requester_role: Optional[str],
        requester_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Soft delete: the row stays, is_active goes false."""
        _require_super_admin(requester_role, "delete admins")
        if not admin_id:
            raise ValidationError("Admin ID is required")
        if requester_id and requester_id == admin_id:
            raise ValidationError("Cannot delete your own admin account")

        with transaction(db):
            admin = db.scalar(select(Admin).where(Admin.id == admin_id).with_for_update())
            if admin is None:
                raise NotFoundError("Admin not found")
            if not admin.is_active:
                raise ValidationError("Admin is already inactive")
            if admin.role == AdminRole.SUPER_ADMIN and _other_active_super_admins(db, admin.id) == 0:
                raise ValidationError("Cannot delete the last active super admin")
            admin.is_active = False

        await self.after_commit(CacheEvent.ADMIN_DELETED, admin_id=admin.id)
        return {
            "message": "Admin deleted successfully",
            "data": {
                "deletedAdmin": {
                    "id": admin.id,
                    "email": admin.email,
                    "fullName": admin.full_name,
                    "role": admin.role.value,
                },
            },
        }

    async def restore_admin(
        self,
        db: Session,
        admin_id: str,
        requester_role: Optional[str],
    ) -> Dict[str, Any]:
        _require_super_admin(requester_role, "restore admins")
        if not admin_id:
            raise ValidationError("Admin ID is required")

        with transaction(db):
            admin = db.scalar(select(Admin).where(Admin.id == admin_id).with_for_update())
            if admin is None:
                raise NotFoundError("Admin not found")
            if admin.is_active:
                raise ValidationError("Admin is already active")
            admin.is_active = True

        await self.after_commit(CacheEvent.ADMIN_RESTORED, admin_id=admin.id)
        return {"message": "Admin restored successfully", "data": admin_dict(admin)}
