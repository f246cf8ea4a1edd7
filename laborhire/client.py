"""
LaborHire client: one session and the feature objects bound to it.

    async with LaborHire(InMemoryBackend()) as app:
        await app.session.sign_in(email, password)
        await app.wallet.start()
"""

import logging
from typing import Any, Optional

from laborhire.admin import AdminAccess, AdminConsole
from laborhire.comms import MessagingSystem, UnreadCounter
from laborhire.commerce import (
    JobBoard,
    PaymentService,
    ReviewService,
    TransactionHistory,
    WalletLedger,
)
from laborhire.config import ClientSettings, get_settings
from laborhire.files import DocumentStore
from laborhire.platform.base import Backend
from laborhire.realtime import ChangeBus
from laborhire.session import SessionContext
from laborhire.verification import VerificationService

logger = logging.getLogger(__name__)


class LaborHire:
    """Wires every feature to a shared backend, session and change bus."""

    def __init__(self, backend: Backend, settings: Optional[ClientSettings] = None):
        self.settings = settings or get_settings()
        self.backend = backend
        self.session = SessionContext(backend)
        self.bus = ChangeBus(backend)

        self.payments = PaymentService(backend, self.session, self.settings.top_up_ceiling)
        self.wallet = WalletLedger(backend, self.session, self.bus, self.settings.wallet_refresh_delay)
        self.transactions = TransactionHistory(
            backend, self.session, self.bus, self.payments, self.settings.history_refresh_delay
        )
        self.reviews = ReviewService(backend, self.session)
        self.jobs = JobBoard(backend, self.session)
        self.messaging = MessagingSystem(backend, self.session, self.bus)
        self.unread = UnreadCounter(backend, self.session, self.bus)
        self.documents = DocumentStore(backend, self.session)
        self.verification = VerificationService(backend, self.session, self.documents)
        self.admin_access = AdminAccess(backend, self.session)
        self.admin = AdminConsole(backend, self.session, self.admin_access)

    @classmethod
    async def connect(cls, settings: Optional[ClientSettings] = None) -> "LaborHire":
        """Build a client on the Supabase backend from settings."""
        from laborhire.platform.supabase import SupabaseBackend

        settings = settings or get_settings()
        return cls(await SupabaseBackend.connect(settings), settings)

    async def __aenter__(self) -> "LaborHire":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def start(self) -> None:
        await self.session.initialize()

    async def close(self) -> None:
        """Stop every feature's refreshers and channels, then detach the session."""
        await self.wallet.stop()
        await self.transactions.stop()
        await self.bus.close_all()
        await self.session.teardown()
        logger.info("Client closed")
