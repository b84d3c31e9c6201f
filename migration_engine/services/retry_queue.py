"""Retry queue for transient per-row failures."""

import logging
import random
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from ..config import RetryPolicy
from ..errors import NotFoundError, TransientInfraError
from ..models.retry import RetryQueueItem, RetryStatus
from ..storage import MigrationRepository

logger = logging.getLogger(__name__)

RetryHandler = Callable[[RetryQueueItem], None]
SettlementListener = Callable[[RetryQueueItem], None]


def compute_backoff(attempt: int, policy: RetryPolicy, rng: Optional[random.Random] = None) -> float:
    """
    Delay in seconds before the given attempt.

    backoff(n) = min(base * 2^(n-1), cap), plus up to jitter_ratio of extra
    delay when jitter is configured.
    """
    delay = min(policy.base_delay_seconds * (2 ** (max(attempt, 1) - 1)), policy.max_delay_seconds)
    if policy.jitter_ratio > 0:
        delay = min(delay * (1 + (rng or random).random() * policy.jitter_ratio), policy.max_delay_seconds)
    return delay


class RetryQueue:
    """
    Queue of retryable operations with exponential backoff.

    Supports:
    - Idempotent enqueue keyed by operation and row key
    - Handlers registered per failed operation
    - Settlement listeners notified on every terminal transition

    ``process_due`` is driven by an external scheduler (the CLI ``run
    --retry-wait`` loop or ``POST /api/retries/process``).
    """

    def __init__(
        self,
        repository: MigrationRepository,
        policy: Optional[RetryPolicy] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.repository = repository
        self.policy = policy or RetryPolicy()
        self._clock = clock or datetime.utcnow
        self._handlers: Dict[str, RetryHandler] = {}
        self._listeners: List[SettlementListener] = []
        self._process_lock = threading.Lock()

    def register_handler(self, operation: str, handler: RetryHandler) -> None:
        self._handlers[operation] = handler

    def add_listener(self, listener: SettlementListener) -> None:
        self._listeners.append(listener)

    def enqueue(self, item: RetryQueueItem) -> RetryQueueItem:
        """Schedule the first retry of a failed operation."""
        now = self._clock()
        item.attempt_number = 1
        item.max_attempts = item.max_attempts or self.policy.max_attempts
        item.status = RetryStatus.PENDING
        item.next_retry_at = now + timedelta(seconds=compute_backoff(1, self.policy))

        stored = self.repository.upsert_retry_item(item)
        if stored is item:
            logger.info(
                f"Queued retry {item.retry_id} for {item.failed_operation} on "
                f"{item.target_table}/{item.row_key} at {item.next_retry_at.isoformat()}"
            )
        return stored

    def process_due(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Attempt every pending item whose next_retry_at has passed.

        Returns:
            Counts of processed, succeeded, rescheduled and exhausted items
        """
        now = now or self._clock()
        stats = {"processed": 0, "succeeded": 0, "rescheduled": 0, "exhausted": 0}

        with self._process_lock:
            due = [i for i in self.repository.list_retry_items(status=RetryStatus.PENDING) if i.is_due(now)]
            for item in due:
                outcome = self._attempt(item, now)
                stats["processed"] += 1
                stats[outcome] += 1

        if stats["processed"]:
            logger.info(
                f"Processed {stats['processed']} retries: {stats['succeeded']} succeeded, "
                f"{stats['rescheduled']} rescheduled, {stats['exhausted']} exhausted"
            )
        return stats

    def cancel(self, retry_id: str) -> RetryQueueItem:
        item = self.get(retry_id)
        if item.status.is_terminal:
            return item
        item.status = RetryStatus.CANCELLED
        item.completed_at = self._clock()
        self.repository.save_retry_item(item)
        self._notify(item)
        return item

    def get(self, retry_id: str) -> RetryQueueItem:
        item = self.repository.get_retry_item(retry_id)
        if item is None:
            raise NotFoundError(f"Retry item not found: {retry_id}")
        return item

    def list_items(
        self,
        batch_id: Optional[str] = None,
        status: Optional[RetryStatus] = None
    ) -> List[RetryQueueItem]:
        return self.repository.list_retry_items(batch_id=batch_id, status=status)

    def pending_count(self, batch_id: str) -> int:
        return sum(
            1 for i in self.repository.list_retry_items(batch_id=batch_id)
            if not i.status.is_terminal
        )

    def _attempt(self, item: RetryQueueItem, now: datetime) -> str:
        item.status = RetryStatus.RETRYING
        item.last_attempt_at = now
        self.repository.save_retry_item(item)

        handler = self._handlers.get(item.failed_operation)
        try:
            if handler is None:
                raise ValueError(f"No retry handler for operation {item.failed_operation}")
            handler(item)
        except TransientInfraError as e:
            item.error_message = str(e)
            if item.attempt_number >= item.max_attempts:
                return self._settle(item, RetryStatus.EXHAUSTED, now, "exhausted")
            item.attempt_number += 1
            item.next_retry_at = now + timedelta(seconds=compute_backoff(item.attempt_number, self.policy))
            item.status = RetryStatus.PENDING
            self.repository.save_retry_item(item)
            logger.warning(
                f"Retry {item.retry_id} failed transiently, attempt {item.attempt_number}"
                f"/{item.max_attempts} at {item.next_retry_at.isoformat()}"
            )
            return "rescheduled"
        except Exception as e:
            item.error_code = getattr(getattr(e, "kind", None), "value", type(e).__name__)
            item.error_message = str(e)
            logger.error(f"Retry {item.retry_id} failed permanently: {e}")
            return self._settle(item, RetryStatus.EXHAUSTED, now, "exhausted")

        return self._settle(item, RetryStatus.SUCCEEDED, now, "succeeded")

    def _settle(self, item: RetryQueueItem, status: RetryStatus, now: datetime, outcome: str) -> str:
        item.status = status
        item.completed_at = now
        self.repository.save_retry_item(item)
        self._notify(item)
        return outcome

    def _notify(self, item: RetryQueueItem) -> None:
        for listener in self._listeners:
            listener(item)
