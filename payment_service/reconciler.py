"""
Payment confirmation reconciler.

Tracks client-submitted transaction references, polls the ledger for recent
incoming transfers to the receiving account and moves each intent from
pending to confirmed or failed. Every intent owns one repeating poll task and
one deadline timer; both are released through ``_stop_monitoring`` when the
intent resolves, expires, is re-submitted or the service shuts down.

All state lives on the event loop thread, so no locking is done here.
"""
import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from common.circuit_breaker import CircuitBreaker, CircuitBreakerException, LEDGER_CB_CONFIG
from common.error_handling import BusinessLogicError, ErrorCodes, ServiceError
from common.retry import RetryPolicy, retry_async
from common.schemas import LedgerTransfer, PaymentEvent, PaymentIntent, PaymentStatus
from payment_service.ledger_client import LedgerQueryError

logger = logging.getLogger(__name__)

LEDGER_INIT_RETRY = RetryPolicy(
    max_attempts=3,
    base_delay=1.0,
    max_delay=15.0,
    retry_on=(LedgerQueryError, CircuitBreakerException, asyncio.TimeoutError),
)

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")

def normalize_hash(value: str) -> str:
    """Drop everything except ASCII letters and digits, then lowercase.

    Makes base64 and base64url renderings of one hash compare equal. It is a
    heuristic: it cannot tell a truncated hash from a full one that happens
    to normalize the same way.
    """
    return _NON_ALNUM.sub("", value).lower()

def find_matching_transfer(reference: str, transfers: Iterable[LedgerTransfer]) -> Optional[LedgerTransfer]:
    """First transfer (in ledger order) whose normalized hash equals the reference"""
    target = normalize_hash(reference)
    for transfer in transfers:
        if normalize_hash(transfer.hash) == target:
            return transfer
    return None

@dataclass(frozen=True)
class ReconcilerConfig:
    receiver_address: str
    expected_amount: float = 0.01
    amount_tolerance: float = 0.001
    ledger_decimals: int = 9
    poll_interval: float = 5.0
    monitor_timeout: float = 600.0
    retention: float = 3600.0
    cleanup_interval: float = 3600.0
    transfers_limit: int = 20

    @classmethod
    def from_settings(cls, settings) -> "ReconcilerConfig":
        return cls(
            receiver_address=settings.receiver_address,
            expected_amount=settings.expected_amount,
            amount_tolerance=settings.amount_tolerance,
            ledger_decimals=settings.ledger_decimals,
            poll_interval=settings.poll_interval_seconds,
            monitor_timeout=settings.monitor_timeout_seconds,
            retention=settings.retention_seconds,
            cleanup_interval=settings.cleanup_interval_seconds,
            transfers_limit=settings.transfers_limit,
        )

@dataclass
class TrackedIntent:
    intent: PaymentIntent
    poll_task: Optional[asyncio.Task] = None
    deadline_handle: Optional[asyncio.TimerHandle] = None

class IntentStore:
    """Insertion-ordered registry of tracked intents keyed by reference"""

    def __init__(self):
        self._items: Dict[str, TrackedIntent] = {}

    def get(self, reference: str) -> Optional[TrackedIntent]:
        return self._items.get(reference)

    def put(self, tracked: TrackedIntent) -> None:
        self._items.pop(tracked.intent.reference, None)
        self._items[tracked.intent.reference] = tracked

    def remove(self, reference: str) -> Optional[TrackedIntent]:
        return self._items.pop(reference, None)

    def values(self) -> List[TrackedIntent]:
        return list(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, reference: str) -> bool:
        return reference in self._items

class Reconciler:
    def __init__(
        self,
        ledger,
        config: ReconcilerConfig,
        publisher=None,
        breaker: Optional[CircuitBreaker] = None,
        clock: Callable[[], float] = time.time,
        init_retry: RetryPolicy = LEDGER_INIT_RETRY,
    ):
        self.ledger = ledger
        self.config = config
        self.publisher = publisher
        self.breaker = breaker or CircuitBreaker("ledger", LEDGER_CB_CONFIG)
        self.store = IntentStore()
        self._clock = clock
        self._init_retry = init_retry
        self._cleanup_task: Optional[asyncio.Task] = None

    @property
    def ready(self) -> bool:
        return bool(getattr(self.ledger, "ready", False))

    @property
    def active_monitor_count(self) -> int:
        return sum(1 for tracked in self.store.values() if tracked.poll_task is not None)

    def is_monitoring(self, reference: str) -> bool:
        tracked = self.store.get(reference)
        return tracked is not None and tracked.poll_task is not None

    async def start(self) -> None:
        """Initialize the ledger client and start the periodic cleanup sweep"""
        if not self.ready:
            try:
                await retry_async(self.breaker.call, self._init_retry, self.ledger.initialize)
            except CircuitBreakerException as e:
                raise ServiceError(ErrorCodes.CIRCUIT_BREAKER_OPEN, "TON Client unavailable", e) from e
            except asyncio.TimeoutError as e:
                raise ServiceError(ErrorCodes.TIMEOUT_ERROR, "TON Client initialization timed out", e) from e
            except LedgerQueryError as e:
                raise ServiceError(ErrorCodes.EXTERNAL_SERVICE_ERROR, "TON Client initialization failed", e) from e
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def shutdown(self) -> None:
        """Stop the cleanup sweep and every monitor; pending intents stay pending"""
        tasks = []
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            tasks.append(self._cleanup_task)
            self._cleanup_task = None
        for tracked in self.store.values():
            if tracked.poll_task is not None:
                tasks.append(tracked.poll_task)
            self._stop_monitoring(tracked)
        await asyncio.gather(*tasks, return_exceptions=True)

    def submit(self, reference: str) -> PaymentIntent:
        """Start (or restart) monitoring a reference; returns the pending snapshot.

        Never waits on the ledger: the outcome is read later through status().
        """
        reference = (reference or "").strip()
        if not normalize_hash(reference):
            raise BusinessLogicError(
                ErrorCodes.INVALID_REFERENCE, "Transaction hash is required", field="reference"
            )
        if not self.ready:
            raise ServiceError(ErrorCodes.SERVICE_UNAVAILABLE, "TON Client not initialized")

        loop = asyncio.get_running_loop()
        previous = self.store.get(reference)
        if previous is not None:
            logger.info(f"Restarting monitoring for transaction: {reference}")
            self._stop_monitoring(previous)

        now = self._clock()
        tracked = TrackedIntent(PaymentIntent(reference=reference, created_at=now, updated_at=now))
        self.store.put(tracked)
        tracked.poll_task = loop.create_task(self._poll_loop(tracked), name=f"payment-poll:{reference}")
        tracked.deadline_handle = loop.call_later(self.config.monitor_timeout, self._expire, tracked)

        logger.info(f"Started monitoring transaction: {reference}")
        self._publish("PaymentSubmitted", tracked.intent)
        return tracked.intent.model_copy()

    def status(self, reference: str) -> Optional[PaymentIntent]:
        tracked = self.store.get(reference.strip())
        return tracked.intent.model_copy() if tracked else None

    def list_all(self) -> List[PaymentIntent]:
        return [tracked.intent.model_copy() for tracked in self.store.values()]

    def cleanup(self, now: Optional[float] = None) -> int:
        """Drop terminal intents whose last update is older than the retention window"""
        cutoff = (self._clock() if now is None else now) - self.config.retention
        stale = [
            tracked.intent.reference
            for tracked in self.store.values()
            if tracked.intent.status.is_terminal and tracked.intent.updated_at < cutoff
        ]
        for reference in stale:
            self.store.remove(reference)
            logger.info(f"Cleaned up old transaction: {reference}")
        return len(stale)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.cleanup_interval)
            removed = self.cleanup()
            logger.info(f"Periodic cleanup removed {removed} payment(s), {len(self.store)} tracked")

    async def _poll_loop(self, tracked: TrackedIntent) -> None:
        while not tracked.intent.status.is_terminal:
            await asyncio.sleep(self.config.poll_interval)
            await self._check(tracked)

    async def _check(self, tracked: TrackedIntent) -> None:
        reference = tracked.intent.reference
        try:
            transfers = await self.breaker.call(
                self.ledger.get_recent_transfers, self.config.receiver_address, self.config.transfers_limit
            )
            transfer = find_matching_transfer(reference, transfers)
        except Exception as e:
            logger.error(f"Error checking transaction {reference}: {e}")
            return

        # Replaced by a re-submit or resolved while the query was in flight
        if self.store.get(reference) is not tracked or tracked.intent.status.is_terminal:
            return
        if transfer is None:
            return
        if transfer.message_type != "internal":
            logger.info(f"Ignoring {transfer.message_type} message for transaction {reference}")
            return

        amount = transfer.amount_raw / 10 ** self.config.ledger_decimals
        observed = dict(amount=amount, sender=transfer.sender, received_at=transfer.timestamp)
        if abs(amount - self.config.expected_amount) < self.config.amount_tolerance:
            logger.info(f"Transaction {reference} confirmed! Amount: {amount} TON")
            self._resolve(
                tracked, PaymentStatus.CONFIRMED,
                confirmations=1, receiver=self.config.receiver_address, **observed
            )
        else:
            logger.warning(
                f"Transaction amount mismatch for {reference}. "
                f"Expected: {self.config.expected_amount}, Got: {amount}"
            )
            self._resolve(tracked, PaymentStatus.FAILED, failure_reason="amount_mismatch", **observed)

    def _expire(self, tracked: TrackedIntent) -> None:
        tracked.deadline_handle = None
        if tracked.intent.status is PaymentStatus.PENDING:
            logger.info(f"Transaction {tracked.intent.reference} timed out")
            self._resolve(tracked, PaymentStatus.FAILED, failure_reason="timeout")
        else:
            self._stop_monitoring(tracked)

    def _resolve(self, tracked: TrackedIntent, status: PaymentStatus, **fields) -> None:
        intent = tracked.intent
        if intent.status.is_terminal:
            return
        for name, value in fields.items():
            setattr(intent, name, value)
        intent.status = status
        intent.updated_at = self._clock()
        self._stop_monitoring(tracked)
        self._publish("PaymentConfirmed" if status is PaymentStatus.CONFIRMED else "PaymentFailed", intent)

    def _stop_monitoring(self, tracked: TrackedIntent) -> None:
        stopped = False
        if tracked.deadline_handle is not None:
            tracked.deadline_handle.cancel()
            tracked.deadline_handle = None
            stopped = True
        task = tracked.poll_task
        if task is not None:
            tracked.poll_task = None
            # The poll task may be the caller; it exits on its own once terminal
            if task is not asyncio.current_task() and not task.done():
                task.cancel()
            stopped = True
        if stopped:
            logger.info(f"Stopped monitoring transaction: {tracked.intent.reference}")

    def _publish(self, event_type: str, intent: PaymentIntent) -> None:
        if self.publisher is None:
            return
        self.publisher.publish(PaymentEvent(
            type=event_type,
            reference=intent.reference,
            amount=intent.amount,
            sender=intent.sender,
            reason=intent.failure_reason,
            timestamp=intent.updated_at,
        ))
