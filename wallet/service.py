import logging
from decimal import Decimal
from typing import Optional

from .config import DEFAULT_JWT_SECRET, Settings
from .errors import InvalidReportError
from .models import (
    WalletRecord,
    ProgressReport,
    SubmitProgressResponse,
    WalletDetailsResponse,
    LeaderboardResponse,
)
from .referral import DEFAULT_BONUS_RATE, BonusDispatcher, BonusTask, ReferralBonusEngine
from .store import MAX_COUNTER, InMemoryWalletStore, SqliteWalletStore, WalletStore
from .verifier import CredentialVerifier

logger = logging.getLogger(__name__)


def _is_count(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= MAX_COUNTER


def _add(field: str, current: int, delta: int) -> int:
    total = current + delta
    if total > MAX_COUNTER:
        raise InvalidReportError(f"{field} would exceed {MAX_COUNTER}")
    return total


class WalletService:
    def __init__(
        self,
        store: Optional[WalletStore] = None,
        verifier: Optional[CredentialVerifier] = None,
        dispatcher: Optional[BonusDispatcher] = None,
        bonus_rate: Decimal = DEFAULT_BONUS_RATE,
    ):
        self.store = store or InMemoryWalletStore()
        self.verifier = verifier or CredentialVerifier(DEFAULT_JWT_SECRET)
        self.dispatcher = dispatcher or BonusDispatcher(ReferralBonusEngine(self.store, bonus_rate))

    @classmethod
    def from_settings(cls, settings: Settings) -> "WalletService":
        if settings.storage_backend == "memory":
            store = InMemoryWalletStore()
        else:
            store = SqliteWalletStore(settings.database_path, settings.database_timeout_seconds)
        verifier = CredentialVerifier(settings.jwt_secret, settings.jwt_algorithm, settings.jwt_leeway_seconds)
        return cls(store=store, verifier=verifier, bonus_rate=settings.referral_bonus_rate)

    def submit_progress(self, token: str) -> SubmitProgressResponse:
        credential = self.verifier.verify(token)
        created = self.reconcile(credential.address, credential.report)
        verb = "inserted" if created else "updated"
        return SubmitProgressResponse(
            message=f"Wallet data {verb} successfully",
            address=credential.address,
            created=created,
        )

    def reconcile(self, address: str, report: ProgressReport) -> bool:
        self._check_address(address)
        if not _is_count(report.tokens):
            raise InvalidReportError(f"tokens must be an integer between 0 and {MAX_COUNTER}, got {report.tokens!r}")
        if not _is_count(report.punches):
            raise InvalidReportError(f"punches must be an integer between 0 and {MAX_COUNTER}, got {report.punches!r}")

        def merge(record: WalletRecord, created: bool) -> WalletRecord:
            changes = {
                "tokens": _add("tokens", record.tokens, report.tokens),
                "punches": _add("punches", record.punches, report.punches),
            }
            if report.character_name:
                changes["character_name"] = report.character_name
            if report.referred_by and not record.has_referrer:
                changes["referred_by"] = report.referred_by
            return record.model_copy(update=changes)

        record, created = self.store.upsert(address, merge)
        if created:
            logger.info("Created wallet %s", address)

        if report.referred_by:
            self.dispatcher.submit(BonusTask(
                referrer=record.referred_by,
                punches_delta=report.punches,
                referred=address,
            ))
        return created

    def record_win(self, address: str, win_delta: int = 1) -> WalletRecord:
        self._check_address(address)
        if not _is_count(win_delta):
            raise InvalidReportError(f"winDelta must be an integer between 0 and {MAX_COUNTER}, got {win_delta!r}")

        record, created = self.store.upsert(
            address,
            lambda r, _: r.model_copy(update={"win_count": _add("winCount", r.win_count, win_delta)}),
        )
        if created:
            logger.info("Created wallet %s on finish", address)
        return record

    def details_for(self, address: str) -> WalletDetailsResponse:
        self._check_address(address)
        return WalletDetailsResponse(address=address, wallet=self.store.get(address))

    def top_by_wins(self, n: int = 10) -> LeaderboardResponse:
        if not _is_count(n) or n < 1:
            raise InvalidReportError(f"Leaderboard size must be a positive integer, got {n!r}")
        return LeaderboardResponse(limit=n, entries=self.store.list_top(n))

    def close(self) -> None:
        self.dispatcher.stop()

    def _check_address(self, address: str) -> None:
        if not isinstance(address, str) or not address.strip():
            raise InvalidReportError("wallet address is required")
