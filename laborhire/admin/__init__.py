"""Admin console: role lookup, moderation, verification review and analytics."""

from laborhire.admin.access import AdminAccess
from laborhire.admin.console import AdminConsole, PlatformAnalytics, VerificationEntry

__all__ = [
    "AdminAccess",
    "AdminConsole",
    "PlatformAnalytics",
    "VerificationEntry",
]
