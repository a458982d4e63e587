"""
External collaborators: media storage and notification dispatch.

Both are best-effort. Callers never see their failures.
"""

from .storage import MediaStorage, CloudinaryStorage, NullStorage, build_storage
from .notifications import Notifier, LogNotifier, WebhookNotifier, build_notifier

__all__ = [
    "MediaStorage",
    "CloudinaryStorage",
    "NullStorage",
    "build_storage",
    "Notifier",
    "LogNotifier",
    "WebhookNotifier",
    "build_notifier",
]
