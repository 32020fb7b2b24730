"""Requeue scheduling for the reconciliation loops."""

import enum
import heapq
import itertools
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor

from prometheus_client import Counter, Histogram

from .constants import NOT_READY_RETRY_DELAY, RESYNC_INTERVAL, TRANSIENT_RETRY_DELAY
from .models import FailureReason

logger = logging.getLogger("outrider.scheduler")

RECONCILES_TOTAL = Counter(
    'outrider_reconciles_total', 'Total number of reconciliation runs')
ERRORS_TOTAL = Counter('outrider_errors_total',
                       'Total number of errors encountered')
RECONCILE_DURATION = Histogram(
    'outrider_reconcile_duration_seconds', 'Duration of a reconciliation run')


class ReconcileResult(enum.Enum):
    SUCCESS = "Success"
    TRANSIENT_FAILURE = "TransientFailure"
    NOT_READY = "NotReady"
    PERMANENT_FAILURE = "PermanentFailure"


REQUEUE_DELAYS = {
    ReconcileResult.SUCCESS: RESYNC_INTERVAL,
    ReconcileResult.TRANSIENT_FAILURE: TRANSIENT_RETRY_DELAY,
    ReconcileResult.NOT_READY: NOT_READY_RETRY_DELAY,
    ReconcileResult.PERMANENT_FAILURE: RESYNC_INTERVAL,
}

TRANSIENT_REASONS = frozenset([
    FailureReason.CLUSTER_UNREACHABLE,
    FailureReason.WRITE_FAILED,
    FailureReason.NAMESPACE_CREATE_FAILED,
])


def requeue_delay(result):
    return REQUEUE_DELAYS[result]


def aggregate(outcomes):
    """Fold CopyOutcomes into one ReconcileResult; transient failures win."""
    reasons = {outcome.reason for outcome in outcomes if not outcome.copied}
    if reasons & TRANSIENT_REASONS:
        return ReconcileResult.TRANSIENT_FAILURE
    if reasons:
        return ReconcileResult.PERMANENT_FAILURE
    return ReconcileResult.SUCCESS


class RequeueScheduler:
    """
    Runs `reconcile(key)` for queued keys on a worker pool and re-arms each key
    according to the result it returns.

    A key is never reconciled twice at the same time. Enqueueing a key that is
    already waiting keeps the earliest due time; enqueueing a key that is
    running is remembered and honoured once the run finishes. A reconcile that
    returns None is not re-armed: the object is gone or not ours, and a watch
    event will enqueue it again if that changes.
    """

    def __init__(self, name, reconcile, workers=4, clock=time.monotonic):
        self.name = name
        self._reconcile = reconcile
        self._clock = clock
        self._heap = []
        self._scheduled = {}
        self._running = set()
        self._pending = {}
        self._counter = itertools.count()
        self._cond = threading.Condition()
        self._shutdown = threading.Event()
        self._executor = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix=f"outrider-{name}")

    def enqueue(self, key, delay=0.0):
        due = self._clock() + delay
        with self._cond:
            if self._shutdown.is_set():
                return
            if key in self._running:
                if key not in self._pending or due < self._pending[key]:
                    self._pending[key] = due
                return
            self._schedule(key, due)

    def due(self, key):
        """When key is next due (clock time), or None if it is not waiting."""
        with self._cond:
            if key in self._scheduled:
                return self._scheduled[key]
            return self._pending.get(key)

    def run(self):
        """Dispatch due keys until shutdown, then wait for in-flight runs."""
        logger.info(f"Starting {self.name} scheduler...")
        with self._cond:
            while not self._shutdown.is_set():
                key = self._pop_due()
                if key is None:
                    self._cond.wait(self._next_timeout())
                    continue
                self._running.add(key)
                self._executor.submit(self._execute, key)
        self._executor.shutdown(wait=True)
        logger.info(f"{self.name} scheduler stopped.")

    def shutdown(self):
        with self._cond:
            self._shutdown.set()
            self._cond.notify_all()

    def _schedule(self, key, due):
        current = self._scheduled.get(key)
        if current is not None and current <= due:
            return
        self._scheduled[key] = due
        heapq.heappush(self._heap, (due, next(self._counter), key))
        self._cond.notify()

    def _drop_stale(self):
        while self._heap:
            due, _, key = self._heap[0]
            if self._scheduled.get(key) == due:
                return
            # superseded by an earlier due time, or already dispatched
            heapq.heappop(self._heap)

    def _pop_due(self):
        self._drop_stale()
        if not self._heap:
            return None
        due, _, key = self._heap[0]
        if due > self._clock():
            return None
        heapq.heappop(self._heap)
        del self._scheduled[key]
        return key

    def _next_timeout(self):
        """Seconds until the earliest live entry is due, or None if nothing is waiting."""
        self._drop_stale()
        if not self._heap:
            return None
        return max(self._heap[0][0] - self._clock(), 0)

    def _execute(self, key):
        delay = None
        RECONCILES_TOTAL.inc()
        try:
            with RECONCILE_DURATION.time():
                result = self._reconcile(key)
        except Exception as e:
            ERRORS_TOTAL.inc()
            logger.error(
                f"Unexpected error reconciling {self.name} {key}: {e}", exc_info=True)
            delay = TRANSIENT_RETRY_DELAY
        else:
            if result is not None:
                if result is ReconcileResult.PERMANENT_FAILURE:
                    ERRORS_TOTAL.inc()
                delay = requeue_delay(result)
                logger.debug(
                    f"Reconciled {self.name} {key}: {result.value}, next run in {delay}s.")
        self._finish(key, delay)

    def _finish(self, key, delay):
        with self._cond:
            self._running.discard(key)
            pending = self._pending.pop(key, None)
            due = None if delay is None else self._clock() + delay
            if pending is not None and (due is None or pending < due):
                due = pending
            if due is None or self._shutdown.is_set():
                return
            self._schedule(key, due)
