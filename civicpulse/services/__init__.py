"""
Request Handlers

One service per resource. Every write commits first and invalidates
caches second; every cached read goes through BaseService.read_through().

Usage:
    from civicpulse.services import ReportService

    service = ReportService(cache)
    result = await service.get_report(db, report_id)
"""

from .base import BaseService
from .reports import ReportService, UploadedFile
from .social import SocialService
from .admins import AdminService
from .users import UserService

__all__ = [
    "BaseService",
    "ReportService",
    "UploadedFile",
    "SocialService",
    "AdminService",
    "UserService",
]
