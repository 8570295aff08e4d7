"""
Wallet Progress Tracking for the Game Backend

This module provides:
- Accumulating progress reports (tokens, punches) per wallet
- Referral bonus punches credited to the referrer off the request path
- Per-address serialized upserts for in-memory and SQLite storage
- Win counts and a win leaderboard
"""

from .errors import (
    WalletServiceError,
    VerificationError,
    InvalidReportError,
    StorageError,
)
from .models import (
    WalletRecord,
    ProgressReport,
    VerifiedCredential,
)
from .service import WalletService

__all__ = [
    "WalletServiceError",
    "VerificationError",
    "InvalidReportError",
    "StorageError",
    "WalletRecord",
    "ProgressReport",
    "VerifiedCredential",
    "WalletService",
]
