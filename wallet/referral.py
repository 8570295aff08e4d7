import logging
import queue
import threading
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from typing import Optional

from .errors import StorageError
from .models import WalletRecord
from .store import MAX_COUNTER, WalletStore

logger = logging.getLogger(__name__)

DEFAULT_BONUS_RATE = Decimal("0.1")


def compute_bonus(punches_delta: int, rate: Decimal = DEFAULT_BONUS_RATE) -> int:
    bonus = (Decimal(punches_delta) * rate).to_integral_value(rounding=ROUND_FLOOR)
    return max(int(bonus), 0)


@dataclass(frozen=True)
class BonusTask:
    referrer: str
    punches_delta: int
    referred: str


class ReferralBonusEngine:
    def __init__(self, store: WalletStore, rate: Decimal = DEFAULT_BONUS_RATE):
        self.store = store
        self.rate = rate

    def apply(self, referrer: str, punches_delta: int, referred: str) -> Optional[WalletRecord]:
        if referrer == referred:
            logger.debug("Skipping self-referral bonus for %s", referrer)
            return None

        bonus = compute_bonus(punches_delta, self.rate)

        def credit(record: WalletRecord, created: bool) -> WalletRecord:
            total = record.bonus_punches + bonus
            if total > MAX_COUNTER:
                raise StorageError(f"bonusPunches of {referrer} would exceed {MAX_COUNTER}")
            changes = {"bonus_punches": total}
            if created:
                changes["referred_by"] = referrer
            return record.model_copy(update=changes)

        record, created = self.store.upsert(referrer, credit)
        if created:
            logger.info("Added referrer %s to the database", referrer)
        logger.info("Credited %d bonus punches to %s for referral of %s", bonus, referrer, referred)
        return record

    def run(self, task: BonusTask) -> Optional[WalletRecord]:
        return self.apply(task.referrer, task.punches_delta, task.referred)


class BonusDispatcher:
    """Background worker applying referral bonuses off the request path.

    Tasks are queued after the referred wallet's write has committed. A task
    that fails is logged and dropped; the worker keeps consuming. ``stop``
    lets the worker finish everything queued, including tasks submitted
    while it is shutting down.
    """

    _STOP = object()

    def __init__(self, engine: ReferralBonusEngine):
        self.engine = engine
        self._queue: queue.Queue = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.processed = 0
        self.failed = 0

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self) -> None:
        with self._lock:
            self._start_locked()

    def _start_locked(self) -> None:
        if self._worker is not None:
            return
        self._worker = threading.Thread(target=self._consume, name="referral-bonus-worker", daemon=True)
        self._worker.start()

    def submit(self, task: BonusTask) -> None:
        # A worker only clears itself under the lock with an empty queue, so
        # the task is either seen by the current worker or starts a new one.
        with self._lock:
            self._queue.put(task)
            self._start_locked()

    def drain(self) -> None:
        self._queue.join()

    def stop(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            worker = self._worker
            if worker is None:
                return
            self._queue.put(self._STOP)
        worker.join(timeout)

    def _consume(self) -> None:
        while True:
            task = self._queue.get()
            try:
                if task is self._STOP:
                    with self._lock:
                        if self._queue.empty():
                            self._worker = None
                            return
                        # Work arrived behind the stop marker; run it first.
                        self._queue.put(self._STOP)
                    continue
                self.engine.run(task)
                self.processed += 1
            except Exception:
                self.failed += 1
                logger.exception(
                    "Error funding referrer %s for %s (punches=%d)",
                    task.referrer, task.referred, task.punches_delta,
                )
            finally:
                self._queue.task_done()
