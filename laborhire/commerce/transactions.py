"""Transaction history for the signed-in profile."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from laborhire.commerce.payments import PaymentService
from laborhire.config import get_settings
from laborhire.platform.base import Backend, BackendError, Binding, ChangeEvent, eq, in_, or_
from laborhire.realtime import ChangeBus, Refresher
from laborhire.session import SessionContext
from laborhire.types import Payment, PaymentMethod, PaymentStatus, format_currency

logger = logging.getLogger(__name__)


class Direction(str, Enum):
    TOP_UP = "top_up"
    RECEIVED = "received"
    SENT = "sent"


class TransactionFilter(str, Enum):
    ALL = "all"
    SENT = "sent"
    RECEIVED = "received"
    PENDING = "pending"
    COMPLETED = "completed"


@dataclass
class Transaction:
    """A payment as seen from one profile."""

    payment: Payment
    viewer_id: str
    payer: Optional[Dict[str, Any]] = None
    payee: Optional[Dict[str, Any]] = None
    job_title: Optional[str] = None

    @property
    def direction(self) -> Direction:
        if self.payment.is_top_up:
            return Direction.TOP_UP
        if self.payment.payee_id == self.viewer_id:
            return Direction.RECEIVED
        return Direction.SENT

    @property
    def is_credit(self) -> bool:
        return self.direction is not Direction.SENT

    @property
    def counterparty(self) -> Optional[Dict[str, Any]]:
        return self.payer if self.payment.payee_id == self.viewer_id else self.payee

    @property
    def label(self) -> str:
        if self.direction is Direction.TOP_UP:
            return "Wallet Top-up"
        name = (self.counterparty or {}).get("full_name") or "Unknown"
        if self.direction is Direction.RECEIVED:
            return f"Received from {name}"
        return f"Sent to {name}"

    @property
    def signed_amount(self) -> Decimal:
        return self.payment.amount if self.is_credit else -self.payment.amount

    @property
    def display_amount(self) -> str:
        return f"{'+' if self.is_credit else '-'}{format_currency(self.payment.amount)}"

    @property
    def can_confirm(self) -> bool:
        """Only the payee confirms, and only a pending cash payment."""
        return (
            self.payment.payment_method == PaymentMethod.CASH.value
            and self.payment.payment_status == PaymentStatus.PENDING.value
            and self.payment.payee_id == self.viewer_id
        )


class TransactionHistory:
    """Payments involving the current profile, newest first."""

    def __init__(
        self,
        backend: Backend,
        session: SessionContext,
        bus: ChangeBus,
        payments: Optional[PaymentService] = None,
        refresh_delay: Optional[float] = None,
    ):
        self.backend = backend
        self.session = session
        self.bus = bus
        self.payments = payments or PaymentService(backend, session)
        if refresh_delay is None:
            refresh_delay = get_settings().history_refresh_delay
        self.refresher = Refresher(self.fetch, refresh_delay, name="transactions")
        self.transactions: List[Transaction] = []
        self.error: Optional[str] = None
        self._profile_id: Optional[str] = None

    @property
    def channel(self) -> str:
        return f"payment-updates-{self._profile_id}"

    async def start(self) -> List[Transaction]:
        self._profile_id = self.session.require_profile().id
        await self.fetch()
        await self.bus.listen(self.channel, [Binding("payments", "*")], self.handle_change)
        return self.transactions

    async def stop(self) -> None:
        await self.refresher.cancel()
        if self._profile_id is not None:
            await self.bus.close(self.channel)

    async def fetch(self) -> List[Transaction]:
        profile_id = self._profile_id
        if profile_id is None:
            return self.transactions
        try:
            rows = await self.backend.select(
                "payments",
                [or_(eq("payer_id", profile_id), eq("payee_id", profile_id))],
                order="created_at",
                desc=True,
            )
            profiles = await self._profiles_by_id(rows)
            titles = await self._job_titles(rows)
        except BackendError as e:
            self.error = "Failed to load transaction history."
            logger.error(f"Error fetching payments | profile_id={profile_id} | error={e.message}")
            return self.transactions

        self.error = None
        self.transactions = [
            Transaction(
                payment=Payment.from_dict(row),
                viewer_id=profile_id,
                payer=profiles.get(row["payer_id"]),
                payee=profiles.get(row["payee_id"]),
                job_title=titles.get(row.get("job_id")),
            )
            for row in rows
        ]
        return self.transactions

    async def _profiles_by_id(self, rows: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
        ids = sorted({r["payer_id"] for r in rows} | {r["payee_id"] for r in rows})
        if not ids:
            return {}
        found = await self.backend.select(
            "profiles", [in_("id", ids)], columns="id,full_name,profile_photo_url"
        )
        return {p["id"]: p for p in found}

    async def _job_titles(self, rows: List[Dict[str, Any]]) -> Dict[str, str]:
        ids = sorted({r["job_id"] for r in rows if r.get("job_id")})
        if not ids:
            return {}
        found = await self.backend.select("jobs", [in_("id", ids)], columns="id,title")
        return {j["id"]: j["title"] for j in found}

    def handle_change(self, event: ChangeEvent) -> None:
        row = event.record
        if self._profile_id in (row.get("payer_id"), row.get("payee_id")):
            self.refresher.mark_dirty()

    def filtered(self, which: str = TransactionFilter.ALL.value) -> List[Transaction]:
        which = TransactionFilter(which)
        if which is TransactionFilter.SENT:
            return [t for t in self.transactions if t.payment.payer_id == self._profile_id]
        if which is TransactionFilter.RECEIVED:
            return [t for t in self.transactions if t.payment.payee_id == self._profile_id]
        if which is TransactionFilter.PENDING:
            return [t for t in self.transactions if t.payment.payment_status == PaymentStatus.PENDING.value]
        if which is TransactionFilter.COMPLETED:
            return [t for t in self.transactions if t.payment.payment_status == PaymentStatus.COMPLETED.value]
        return list(self.transactions)

    async def confirm_receipt(self, payment_id: str) -> Payment:
        # The realtime update triggers the refetch
        return await self.payments.confirm_receipt(payment_id)
