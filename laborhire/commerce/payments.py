"""
Payment flow: pay a worker, top up a wallet, confirm a cash receipt.

A job payment is first looked up by (job, payer, payee) so a repeat is
reported as ``AlreadyPaidError`` whatever amount or method it carries. The
input checks follow and raise ``PaymentValidationError``. They are
advisory; the backend's unique constraint and wallet trigger are
authoritative, and a unique violation on insert is reported exactly like
the client-side duplicate check.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Tuple

from laborhire.config import get_settings
from laborhire.errors import (
    AlreadyPaidError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from laborhire.logging_config import log_payment_event
from laborhire.platform.base import Backend, BackendError, eq
from laborhire.session import SessionContext
from laborhire.types import (
    Payment,
    PaymentMethod,
    PaymentStatus,
    format_currency,
    parse_pay_rate,
    to_decimal,
    utc_now,
)

logger = logging.getLogger(__name__)

PAYMENT_CONSTRAINT = "unique_job_worker_payment"


class PaymentValidationError(ValidationError):
    """A payment or top-up was rejected before reaching the backend."""

    def __init__(self, message: str, title: str = "Error"):
        super().__init__(message)
        self.title = title


@dataclass
class PaymentRequest:
    """Input for paying another profile, optionally for a job."""

    payee_id: str
    amount: Any
    payment_method: Optional[str]
    job_id: Optional[str] = None
    job_title: Optional[str] = None
    pay_rate: Optional[str] = None
    payee_name: Optional[str] = None
    transaction_reference: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class TopUpRequest:
    amount: Any
    payment_method: Optional[str]
    transaction_reference: Optional[str] = None
    notes: Optional[str] = None


def parse_amount(value: Any) -> Decimal:
    """Parse a user-entered amount; must be a finite number above zero."""
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise PaymentValidationError("Please enter a valid amount.")
    if not amount.is_finite() or amount <= 0:
        raise PaymentValidationError("Please enter a valid amount.")
    return amount


def parse_method(value: Optional[str]) -> PaymentMethod:
    try:
        return PaymentMethod(value)
    except ValueError:
        raise PaymentValidationError(f"Unknown payment method: {value}")


def check_reference(method: PaymentMethod, reference: Optional[str]) -> Optional[str]:
    """Return the trimmed reference, requiring one for non-cash methods."""
    reference = (reference or "").strip()
    if method.requires_reference and not reference:
        raise PaymentValidationError(
            f"Please enter a transaction reference for {method.value} payment.",
            title="Transaction Reference Required",
        )
    return reference or None


class PaymentService:
    """Creates payments on behalf of the signed-in profile."""

    def __init__(self, backend: Backend, session: SessionContext, top_up_ceiling: Optional[Decimal] = None):
        self.backend = backend
        self.session = session
        if top_up_ceiling is None:
            top_up_ceiling = get_settings().top_up_ceiling
        self.top_up_ceiling = to_decimal(top_up_ceiling)
        # (payer, job, payee) -> payment already seen this session
        self._known_paid: Dict[Tuple[str, str, str], Payment] = {}

    def _remember(self, payment: Payment) -> Payment:
        if payment.job_id:
            self._known_paid[(payment.payer_id, payment.job_id, payment.payee_id)] = payment
        return payment

    def known_payment(self, job_id: Optional[str], payee_id: str) -> Optional[Payment]:
        """A payment for (job, payee) this session has already seen, without a query."""
        profile = self.session.profile
        if profile is None or not job_id:
            return None
        return self._known_paid.get((profile.id, job_id, payee_id))

    async def wallet_balance(self) -> Decimal:
        """Current balance for the advisory funds check; errors read as zero."""
        profile = self.session.require_profile()
        try:
            data = await self.backend.rpc("get_or_create_wallet", {"profile_user_id": profile.id})
        except BackendError as e:
            logger.error(f"Error fetching wallet balance | profile_id={profile.id} | error={e.message}")
            return Decimal("0")
        if isinstance(data, dict):
            data = [data]
        return to_decimal(data[0].get("balance")) if data else Decimal("0")

    async def find_existing_payment(self, job_id: str, payee_id: str) -> Optional[Payment]:
        """Look up a payment by this payer for (job, payee). Best effort."""
        profile = self.session.require_profile()
        try:
            rows = await self.backend.select(
                "payments",
                [eq("job_id", job_id), eq("payer_id", profile.id), eq("payee_id", payee_id)],
                limit=1,
            )
        except BackendError as e:
            if not e.is_no_rows:
                logger.error(f"Error checking existing payment | job_id={job_id} | error={e.message}")
            return None
        return self._remember(Payment.from_dict(rows[0])) if rows else None

    async def create_payment(self, request: PaymentRequest) -> Payment:
        """Pay ``request.payee_id``. The payment is recorded as completed."""
        return await self._submit(request, PaymentStatus.COMPLETED)

    async def record_cash_payment(self, request: PaymentRequest) -> Payment:
        """Record a cash payment as pending until the payee confirms receipt."""
        if request.payment_method != PaymentMethod.CASH.value:
            raise PaymentValidationError("Only cash payments wait for receipt confirmation.")
        return await self._submit(request, PaymentStatus.PENDING)

    async def _submit(self, request: PaymentRequest, status: PaymentStatus) -> Payment:
        profile = self.session.profile
        if profile is None or not request.payee_id or not request.payment_method or request.amount in (None, ""):
            raise PaymentValidationError("Please fill in all required fields.")

        # A job already paid shows as paid whatever the new input
        if request.job_id:
            existing = self.known_payment(request.job_id, request.payee_id)
            if existing is None:
                existing = await self.find_existing_payment(request.job_id, request.payee_id)
            if existing is not None:
                raise AlreadyPaidError(
                    f"You have already made a payment for this job. Payment ID: {existing.id[:8]}",
                    existing=existing,
                )

        method = parse_method(request.payment_method)
        amount = parse_amount(request.amount)

        if request.pay_rate:
            expected = parse_pay_rate(request.pay_rate) or Decimal("0")
            if amount != expected:
                raise PaymentValidationError(
                    f"Payment amount must be exactly {format_currency(expected)} as per the job pay rate."
                )

        balance = await self.wallet_balance()
        if amount > balance:
            raise PaymentValidationError(
                f"You need {format_currency(amount)} but your current balance is {format_currency(balance)}.",
                title="Insufficient Balance",
            )

        reference = check_reference(method, request.transaction_reference)

        if request.job_id:
            existing = await self.find_existing_payment(request.job_id, request.payee_id)
            if existing is not None:
                raise AlreadyPaidError(
                    f"You have already made a payment for this job. Payment ID: {existing.id[:8]}",
                    existing=existing,
                )

        row: Dict[str, Any] = {
            "payer_id": profile.id,
            "payee_id": request.payee_id,
            "job_id": request.job_id,
            "amount": str(amount),
            "payment_method": method.value,
            "payment_status": status.value,
            "transaction_reference": reference,
            "notes": request.notes or None,
            "payment_details": {
                "job_title": request.job_title,
                "payee_name": request.payee_name,
                "created_by": profile.full_name,
            },
        }
        try:
            stored = await self.backend.insert("payments", row)
        except BackendError as e:
            if e.is_unique_violation and PAYMENT_CONSTRAINT in (e.message or ""):
                existing = await self.find_existing_payment(request.job_id, request.payee_id)
                raise AlreadyPaidError("You have already made a payment for this job.", existing=existing) from e
            raise

        payment = self._remember(Payment.from_dict(stored))
        log_payment_event(
            "created",
            id=payment.id,
            payer=payment.payer_id,
            payee=payment.payee_id,
            job=payment.job_id,
            amount=payment.amount,
            method=payment.payment_method,
            status=payment.payment_status,
        )
        return payment

    async def top_up(self, request: TopUpRequest) -> Payment:
        """Add funds to the caller's own wallet (payer and payee are the same)."""
        profile = self.session.profile
        if profile is None or not request.payment_method or request.amount in (None, ""):
            raise PaymentValidationError("Please fill in all required fields.")

        method = parse_method(request.payment_method)
        amount = parse_amount(request.amount)
        if amount > self.top_up_ceiling:
            raise PaymentValidationError(f"Top-up amount cannot exceed {format_currency(self.top_up_ceiling)}.")
        reference = check_reference(method, request.transaction_reference)

        stored = await self.backend.insert(
            "payments",
            {
                "payer_id": profile.id,
                "payee_id": profile.id,
                "amount": str(amount),
                "payment_method": method.value,
                "payment_status": PaymentStatus.COMPLETED.value,
                "transaction_reference": reference,
                "notes": request.notes or f"Wallet top-up via {method.value}",
                "payment_details": {"type": "top_up", "method": method.value},
            },
        )
        payment = Payment.from_dict(stored)
        log_payment_event("top_up", id=payment.id, profile=profile.id, amount=amount, method=method.value)
        return payment

    async def confirm_receipt(self, payment_id: str) -> Payment:
        """Payee confirms a pending cash payment: pending -> completed."""
        profile = self.session.require_profile()
        rows = await self.backend.select("payments", [eq("id", payment_id)], limit=1)
        if not rows:
            raise NotFoundError(f"Payment {payment_id} not found")
        payment = Payment.from_dict(rows[0])
        if payment.payee_id != profile.id:
            raise PermissionDeniedError("Only the payee can confirm receipt")
        if payment.payment_method != PaymentMethod.CASH.value:
            raise ValidationError("Only cash payments need receipt confirmation")
        if payment.payment_status != PaymentStatus.PENDING.value:
            raise ValidationError(f"Payment is already {payment.payment_status}")

        updated = await self.backend.update(
            "payments",
            {"payment_status": PaymentStatus.COMPLETED.value, "completed_at": utc_now().isoformat()},
            [eq("id", payment_id), eq("payment_status", PaymentStatus.PENDING.value)],
        )
        if not updated:
            raise ValidationError("Payment is no longer pending")
        log_payment_event("confirmed", id=payment_id, payee=profile.id)
        return Payment.from_dict(updated[0])
