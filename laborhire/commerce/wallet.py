"""
Wallet ledger: the signed-in user's balance, kept current from realtime.

The wallet row is owned by the server (created by ``get_or_create_wallet``
and updated by the payment trigger). The client only reads it: a wallet
UPDATE is patched in place, anything else that could move the balance
marks the ledger dirty and a single delayed refetch follows.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from laborhire.config import get_settings
from laborhire.platform.base import Backend, BackendError, Binding, ChangeEvent, eq
from laborhire.realtime import ChangeBus, Refresher
from laborhire.session import SessionContext
from laborhire.types import Wallet, format_currency

logger = logging.getLogger(__name__)

MASK = "****"
WALLET_NOT_FOUND = "Wallet not found"


@dataclass
class WalletDisplay:
    """What the wallet card renders."""

    balance: str
    total_earned: str
    total_spent: str
    found: bool = True


class WalletLedger:
    """Cached wallet for the current profile."""

    def __init__(
        self,
        backend: Backend,
        session: SessionContext,
        bus: ChangeBus,
        refresh_delay: Optional[float] = None,
    ):
        self.backend = backend
        self.session = session
        self.bus = bus
        if refresh_delay is None:
            refresh_delay = get_settings().wallet_refresh_delay
        self.refresher = Refresher(self.fetch, refresh_delay, name="wallet")
        self.wallet: Optional[Wallet] = None
        self.show_balance = True
        self.loading = True
        self._profile_id: Optional[str] = None

    @property
    def channel(self) -> str:
        return f"wallet-updates-{self._profile_id}"

    async def start(self) -> Optional[Wallet]:
        profile = self.session.require_profile()
        self._profile_id = profile.id
        await self.fetch()
        await self.bus.listen(
            self.channel,
            [Binding("wallets", "*", eq("user_id", profile.id)), Binding("payments", "*")],
            self.handle_change,
        )
        return self.wallet

    async def stop(self) -> None:
        await self.refresher.cancel()
        if self._profile_id is not None:
            await self.bus.close(self.channel)

    async def fetch(self) -> Optional[Wallet]:
        """Load the wallet through the idempotent RPC; errors keep the previous state."""
        if self._profile_id is None:
            return None
        try:
            data = await self.backend.rpc("get_or_create_wallet", {"profile_user_id": self._profile_id})
            if isinstance(data, dict):
                data = [data]
            if data:
                self.wallet = Wallet.from_dict(data[0])
        except BackendError as e:
            logger.error(f"Error fetching wallet | profile_id={self._profile_id} | error={e.message}")
        finally:
            self.loading = False
        return self.wallet

    def handle_change(self, event: ChangeEvent) -> None:
        if event.table == "wallets":
            if event.event_type == "UPDATE" and event.new:
                self.wallet = Wallet.from_dict(event.new)
            else:
                self.refresher.mark_dirty()
            return

        # Unfiltered payments feed: only rows involving this user matter
        row = event.record
        if self._profile_id in (row.get("payer_id"), row.get("payee_id")):
            self.refresher.mark_dirty()

    def toggle_balance(self) -> bool:
        self.show_balance = not self.show_balance
        return self.show_balance

    def display(self) -> WalletDisplay:
        if self.wallet is None:
            return WalletDisplay(WALLET_NOT_FOUND, WALLET_NOT_FOUND, WALLET_NOT_FOUND, found=False)

        def fmt(amount) -> str:
            return format_currency(amount) if self.show_balance else MASK

        return WalletDisplay(
            balance=fmt(self.wallet.balance),
            total_earned=fmt(self.wallet.total_earned),
            total_spent=fmt(self.wallet.total_spent),
        )
