"""
Laborhire Commerce - wallets, payments, reviews and the job board.

This package provides the money and marketplace side of the client:
- Wallet ledger kept current from realtime changes
- Payments, top-ups and cash receipt confirmation
- Transaction history
- Reviews and server-side rating summaries
- Job posting, browsing and applications
"""

from laborhire.commerce.jobs import ApplicationEntry, JobBoard
from laborhire.commerce.payments import (
    PaymentRequest,
    PaymentService,
    PaymentValidationError,
    TopUpRequest,
)
from laborhire.commerce.reviews import RatingSummary, ReviewEntry, ReviewService
from laborhire.commerce.transactions import (
    Direction,
    Transaction,
    TransactionFilter,
    TransactionHistory,
)
from laborhire.commerce.wallet import WalletDisplay, WalletLedger

__all__ = [
    # Wallet
    "WalletDisplay",
    "WalletLedger",
    # Payments
    "PaymentRequest",
    "PaymentService",
    "PaymentValidationError",
    "TopUpRequest",
    # History
    "Direction",
    "Transaction",
    "TransactionFilter",
    "TransactionHistory",
    # Reviews
    "RatingSummary",
    "ReviewEntry",
    "ReviewService",
    # Jobs
    "ApplicationEntry",
    "JobBoard",
]
