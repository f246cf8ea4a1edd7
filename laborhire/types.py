"""
Shared record types for laborhire.

These mirror the rows the backend hands back. The backend owns the schema
and every invariant on it; the dataclasses here only give the client a
typed view of a row plus the small derived helpers views need.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional

# === Shared Utility Functions ===


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp from the backend (accepts a trailing Z)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def to_decimal(value: Any, default: str = "0") -> Decimal:
    """Coerce a numeric column to Decimal without float noise."""
    if value is None:
        return Decimal(default)
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal(default)


_PAY_RATE_NUMBER = re.compile(r"[\d,]+")


def parse_pay_rate(pay_rate: Optional[str]) -> Optional[Decimal]:
    """Extract the numeric amount from a free-text pay rate.

    Takes the first run of digits and commas, so "NPR 1,500/hour" gives 1500.
    Returns None when the text carries no digits at all.
    """
    if not pay_rate:
        return None
    match = _PAY_RATE_NUMBER.search(pay_rate)
    if not match:
        return None
    digits = match.group(0).replace(",", "")
    if not digits:
        return None
    return Decimal(digits)


def _group_indian(integer_part: str) -> str:
    if len(integer_part) <= 3:
        return integer_part
    head, tail = integer_part[:-3], integer_part[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups + [tail])


def format_currency(amount: Any) -> str:
    """Render rupees the way the wallet shows them: "रु 10,00,000.00"."""
    value = to_decimal(amount).quantize(Decimal("0.01"))
    sign = "-" if value < 0 else ""
    integer_part, _, fraction = f"{abs(value):.2f}".partition(".")
    return f"{sign}रु {_group_indian(integer_part)}.{fraction}"


# === Enums ===


class UserRole(str, Enum):
    WORKER = "worker"
    EMPLOYER = "employer"


class UserStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    BANNED = "banned"
    PENDING_APPROVAL = "pending_approval"


class AdminRole(str, Enum):
    """Admin roles, lowest to highest privilege."""

    MODERATOR = "moderator"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


ADMIN_ROLE_LEVELS = {
    AdminRole.MODERATOR.value: 1,
    AdminRole.ADMIN.value: 2,
    AdminRole.SUPER_ADMIN.value: 3,
}


class JobStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class PaymentMethod(str, Enum):
    ESEWA = "esewa"
    KHALTI = "khalti"
    BANK = "bank"
    CASH = "cash"

    @property
    def requires_reference(self) -> bool:
        """Wallet and bank transfers must carry the provider's transaction id."""
        return self is not PaymentMethod.CASH


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# === Records ===


@dataclass
class Profile:
    """A worker or employer profile row."""

    id: str
    user_id: str
    full_name: str
    role: str
    phone: Optional[str] = None
    company_name: Optional[str] = None
    bio: Optional[str] = None
    address: Optional[str] = None
    skills: List[str] = field(default_factory=list)
    is_verified: bool = False
    approval_status: Optional[str] = None
    user_status: str = UserStatus.ACTIVE.value
    availability_status: Optional[str] = None
    profile_photo_url: Optional[str] = None
    resume_url: Optional[str] = None
    identity_document_url: Optional[str] = None
    certification_urls: List[str] = field(default_factory=list)
    deleted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def is_worker(self) -> bool:
        return self.role == UserRole.WORKER.value

    @property
    def is_employer(self) -> bool:
        return self.role == UserRole.EMPLOYER.value

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Profile":
        return cls(
            id=data["id"],
            user_id=data.get("user_id", ""),
            full_name=data.get("full_name") or "",
            role=data.get("role", UserRole.WORKER.value),
            phone=data.get("phone"),
            company_name=data.get("company_name"),
            bio=data.get("bio"),
            address=data.get("address"),
            skills=list(data.get("skills") or []),
            is_verified=bool(data.get("is_verified")),
            approval_status=data.get("approval_status"),
            user_status=data.get("user_status") or UserStatus.ACTIVE.value,
            availability_status=data.get("availability_status"),
            profile_photo_url=data.get("profile_photo_url"),
            resume_url=data.get("resume_url"),
            identity_document_url=data.get("identity_document_url"),
            certification_urls=list(data.get("certification_urls") or []),
            deleted_at=parse_datetime(data.get("deleted_at")),
            created_at=parse_datetime(data.get("created_at")),
        )


@dataclass
class Job:
    """A job posted by an employer."""

    id: str
    employer_id: str
    title: str
    description: str
    location: str
    pay_rate: str
    duration: str = ""
    required_skills: List[str] = field(default_factory=list)
    status: str = JobStatus.OPEN.value
    deadline: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def pay_amount(self) -> Optional[Decimal]:
        return parse_pay_rate(self.pay_rate)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        return cls(
            id=data["id"],
            employer_id=data.get("employer_id", ""),
            title=data.get("title", ""),
            description=data.get("description", ""),
            location=data.get("location", ""),
            pay_rate=data.get("pay_rate", ""),
            duration=data.get("duration") or "",
            required_skills=list(data.get("required_skills") or []),
            status=data.get("status", JobStatus.OPEN.value),
            deadline=parse_datetime(data.get("deadline")),
            created_at=parse_datetime(data.get("created_at")),
        )


@dataclass
class Application:
    id: str
    job_id: str
    worker_id: str
    status: str = ApplicationStatus.PENDING.value
    cover_letter: Optional[str] = None
    applied_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Application":
        return cls(
            id=data["id"],
            job_id=data["job_id"],
            worker_id=data["worker_id"],
            status=data.get("status", ApplicationStatus.PENDING.value),
            cover_letter=data.get("cover_letter"),
            applied_at=parse_datetime(data.get("applied_at")),
        )


@dataclass
class Wallet:
    """One wallet per profile. Balances are maintained server-side."""

    id: str
    user_id: str
    balance: Decimal = Decimal("0")
    total_earned: Decimal = Decimal("0")
    total_spent: Decimal = Decimal("0")
    updated_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Wallet":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            balance=to_decimal(data.get("balance")),
            total_earned=to_decimal(data.get("total_earned")),
            total_spent=to_decimal(data.get("total_spent")),
            updated_at=parse_datetime(data.get("updated_at")),
        )


@dataclass
class Payment:
    """A transfer record. payer == payee marks a wallet top-up."""

    id: str
    payer_id: str
    payee_id: str
    amount: Decimal
    payment_method: str
    payment_status: str
    job_id: Optional[str] = None
    transaction_reference: Optional[str] = None
    notes: Optional[str] = None
    payment_details: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_top_up(self) -> bool:
        return self.payer_id == self.payee_id

    def involves(self, profile_id: str) -> bool:
        return profile_id in (self.payer_id, self.payee_id)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Payment":
        return cls(
            id=data["id"],
            payer_id=data["payer_id"],
            payee_id=data["payee_id"],
            amount=to_decimal(data.get("amount")),
            payment_method=data.get("payment_method", ""),
            payment_status=data.get("payment_status", PaymentStatus.PENDING.value),
            job_id=data.get("job_id"),
            transaction_reference=data.get("transaction_reference"),
            notes=data.get("notes"),
            payment_details=dict(data.get("payment_details") or {}),
            created_at=parse_datetime(data.get("created_at")),
            completed_at=parse_datetime(data.get("completed_at")),
        )


@dataclass
class Review:
    id: str
    reviewer_id: str
    reviewee_id: str
    rating: int
    job_id: Optional[str] = None
    review_text: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Review":
        return cls(
            id=data["id"],
            reviewer_id=data["reviewer_id"],
            reviewee_id=data["reviewee_id"],
            rating=int(data["rating"]),
            job_id=data.get("job_id"),
            review_text=data.get("review_text"),
            created_at=parse_datetime(data.get("created_at")),
        )


@dataclass
class Conversation:
    """A conversation between two profiles, optionally scoped to a job."""

    id: str
    participant_1: str
    participant_2: str
    job_id: Optional[str] = None
    last_message_at: Optional[datetime] = None
    # Filled in by the messaging view, not stored on the row
    participant_profile: Optional[Profile] = None
    unread_count: int = 0
    last_message_text: Optional[str] = None

    def other_participant(self, profile_id: str) -> str:
        return self.participant_2 if self.participant_1 == profile_id else self.participant_1

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Conversation":
        return cls(
            id=data["id"],
            participant_1=data["participant_1"],
            participant_2=data["participant_2"],
            job_id=data.get("job_id"),
            last_message_at=parse_datetime(data.get("last_message_at")),
        )


@dataclass
class Message:
    id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    message_text: Optional[str] = None
    is_read: bool = False
    job_id: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "sender_id": self.sender_id,
            "receiver_id": self.receiver_id,
            "message_text": self.message_text,
            "is_read": self.is_read,
            "job_id": self.job_id,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            id=data["id"],
            conversation_id=data["conversation_id"],
            sender_id=data["sender_id"],
            receiver_id=data["receiver_id"],
            message_text=data.get("message_text"),
            is_read=bool(data.get("is_read")),
            job_id=data.get("job_id"),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
        )


@dataclass
class VerificationRequest:
    id: str
    user_id: str
    verification_type: str
    status: str = VerificationStatus.PENDING.value
    document_urls: List[str] = field(default_factory=list)
    reviewer_comments: Optional[str] = None
    rejection_reason: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerificationRequest":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            verification_type=data.get("verification_type", ""),
            status=data.get("status", VerificationStatus.PENDING.value),
            document_urls=list(data.get("document_urls") or []),
            reviewer_comments=data.get("reviewer_comments"),
            rejection_reason=data.get("rejection_reason"),
            submitted_at=parse_datetime(data.get("submitted_at")),
            reviewed_at=parse_datetime(data.get("reviewed_at")),
        )


@dataclass
class AdminProfile:
    id: str
    user_id: str
    admin_role: str
    permissions: Dict[str, Any] = field(default_factory=dict)

    @property
    def level(self) -> int:
        return ADMIN_ROLE_LEVELS.get(self.admin_role, 0)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AdminProfile":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            admin_role=data.get("admin_role", ""),
            permissions=dict(data.get("permissions") or {}),
        )
