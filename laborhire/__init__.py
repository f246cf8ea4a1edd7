"""
LaborHire - client library for the labor-hire marketplace.

Workers and employers: jobs, applications, messaging, wallets and payments.
"""

from .client import LaborHire
from .session import SessionContext

try:
    from importlib.metadata import version

    __version__ = version("laborhire")
except Exception:
    __version__ = "0.0.0"

__all__ = ["LaborHire", "SessionContext"]
