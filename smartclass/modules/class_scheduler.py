"""
Class Scheduler Module - Smart Class QR Scheduler

This module runs the upcoming-class notification loop. Once per tick it takes
a snapshot of schedules, professors and classrooms, finds the classes that
start within the lookahead window, and for each one issues a QR credential
and emails it to the professor.

Features:
- Fixed-rate, non-overlapping ticks on a background thread
- Per-match isolation: one failure never blocks the other matches
- Per-step outcome capture (sent, issuance failed, delivery failed, ...)
- Optional suppression of repeat notifications for the same occurrence
- Bounded concurrency for the matches of one tick
- Recent tick reports and outcome counters for monitoring
"""

import logging
import threading
import time
from collections import Counter, deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from smartclass.modules.errors import (
    DeliveryFailed, IssuanceFailed, SnapshotUnavailable, UnresolvedReference
)
from smartclass.modules.models import ClassSchedule, DeliveryRequest, ScheduleSnapshot
from smartclass.modules.window_matcher import match_upcoming_classes, occurrence_bounds


class SchedulerState:
    """Scheduler states."""
    IDLE = 'idle'
    PROCESSING = 'processing'


class MatchOutcome:
    """Outcome recorded for each matched schedule."""
    SENT = 'sent'
    ISSUANCE_FAILED = 'issuance_failed'
    DELIVERY_FAILED = 'delivery_failed'
    UNRESOLVED_REFERENCE = 'unresolved_reference'
    DUPLICATE = 'duplicate'


@dataclass
class MatchResult:
    """Result of driving one matched schedule through issue and deliver."""
    schedule_id: str
    subject: str
    outcome: str
    credential_id: Optional[str] = None
    recipient: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'schedule_id': self.schedule_id,
            'subject': self.subject,
            'outcome': self.outcome,
            'success': self.outcome == MatchOutcome.SENT,
            'credential_id': self.credential_id,
            'recipient': self.recipient,
            'error': self.error,
        }


@dataclass
class TickReport:
    """Summary of one tick."""
    started_at: datetime
    lookahead_minutes: float
    status: str = 'completed'
    finished_at: Optional[datetime] = None
    matched: int = 0
    results: List[MatchResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def counts(self) -> Dict[str, int]:
        return dict(Counter(result.outcome for result in self.results))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'lookahead_minutes': self.lookahead_minutes,
            'status': self.status,
            'matched': self.matched,
            'counts': self.counts,
            'results': [result.to_dict() for result in self.results],
            'error': self.error,
        }


class OccurrenceTracker:
    """
    Remembers which class occurrences have already been notified.

    An occurrence is keyed by schedule id, day and start time, and its claim
    expires when the occurrence ends, so the same schedule is notified again
    the following week or after its start time is edited.
    """

    def __init__(self):
        self._claims: Dict[Tuple[str, str, str], datetime] = {}
        self._lock = threading.Lock()

    @staticmethod
    def occurrence_key(schedule: ClassSchedule) -> Tuple[str, str, str]:
        return schedule.id, schedule.day, schedule.start_time

    def claim(self, key: Tuple[str, str, str], expires_at: datetime, now: datetime) -> bool:
        """Claim an occurrence. Returns False if it is already claimed."""
        with self._lock:
            self._purge(now)
            if key in self._claims:
                return False
            self._claims[key] = expires_at
            return True

    def release(self, key: Tuple[str, str, str]) -> None:
        with self._lock:
            self._claims.pop(key, None)

    def is_claimed(self, key: Tuple[str, str, str], now: datetime) -> bool:
        with self._lock:
            self._purge(now)
            return key in self._claims

    def _purge(self, now: datetime) -> None:
        expired = [key for key, expires_at in self._claims.items() if expires_at <= now]
        for key in expired:
            del self._claims[key]

    def __len__(self):
        with self._lock:
            return len(self._claims)


class ClassScheduler:
    """
    Upcoming-class notification loop.

    Dependencies are passed in explicitly: a callable returning a fresh
    ScheduleSnapshot, a credential issuer exposing issue_credential(), and a
    notifier exposing send_class_qr(). The owner starts the loop with start()
    and shuts it down with stop().
    """

    def __init__(self, snapshot_source: Callable[..., ScheduleSnapshot], issuer, notifier,
                 lookahead: timedelta = timedelta(minutes=10), tick_interval: float = 60.0,
                 suppress_duplicates: bool = True, wrap_midnight: bool = False,
                 max_workers: int = 4, history_size: int = 50,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize the scheduler.

        Args:
            snapshot_source: Callable returning the current ScheduleSnapshot
            issuer: Credential issuer (QRGenerator)
            notifier: Notifier (NotificationSystem)
            lookahead (timedelta): Window ahead of now in which classes match
            tick_interval (float): Seconds between ticks
            suppress_duplicates (bool): Notify each occurrence at most once
            wrap_midnight (bool): Match across midnight with minute-of-week arithmetic
            max_workers (int): Maximum matches processed concurrently within a tick
            history_size (int): Number of recent tick reports kept
            clock: Returns the current local time, used for tick and issuance times
        """
        if tick_interval <= 0:
            raise ValueError("tick_interval must be positive")
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")

        self.snapshot_source = snapshot_source
        self.issuer = issuer
        self.notifier = notifier
        self.lookahead = lookahead
        self.tick_interval = tick_interval
        self.suppress_duplicates = suppress_duplicates
        self.wrap_midnight = wrap_midnight
        self.max_workers = max_workers
        self.clock = clock or datetime.now
        self.logger = logging.getLogger(__name__)

        self.tracker = OccurrenceTracker()
        self.history = deque(maxlen=history_size)
        self.stats = Counter()

        self._state = SchedulerState.IDLE
        self._state_lock = threading.Lock()
        self._tick_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    @property
    def state(self) -> str:
        with self._state_lock:
            return self._state

    def _set_state(self, state: str) -> None:
        with self._state_lock:
            self._state = state

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_tick(self, now: Optional[datetime] = None) -> TickReport:
        """
        Run one tick: snapshot, match, then issue and deliver for each match.

        Ticks never overlap; a manual call made while the loop is processing
        waits for it to finish.

        Args:
            now (datetime): Instant matched against, defaults to the scheduler clock

        Returns:
            TickReport: Outcome of every match in matcher order
        """
        with self._tick_lock:
            now = now or self.clock()
            report = TickReport(
                started_at=now,
                lookahead_minutes=self.lookahead.total_seconds() / 60
            )
            self._set_state(SchedulerState.PROCESSING)
            try:
                self._process_tick(now, report)
            finally:
                report.finished_at = self.clock()
                self._set_state(SchedulerState.IDLE)
                self._record(report)
            return report

    def _process_tick(self, now: datetime, report: TickReport) -> None:
        try:
            snapshot = self.snapshot_source(taken_at=now)
        except SnapshotUnavailable as e:
            report.status = 'skipped'
            report.error = str(e)
            self.logger.error(f"Skipping tick at {now.isoformat()}: {str(e)}")
            return
        except Exception as e:
            report.status = 'skipped'
            report.error = str(e)
            self.logger.exception(f"Unexpected error reading snapshot at {now.isoformat()}")
            return

        matches = match_upcoming_classes(
            now, self.lookahead, snapshot.schedules, wrap_midnight=self.wrap_midnight
        )
        report.matched = len(matches)
        self.logger.info(f"Tick at {now.strftime('%A %H:%M')}: found {len(matches)} upcoming classes "
                         f"in the next {report.lookahead_minutes:g} minutes")
        if not matches:
            return

        if self.max_workers == 1 or len(matches) == 1:
            report.results = [self._process_match(schedule, snapshot, now) for schedule in matches]
        else:
            executor = self._get_executor()
            report.results = list(executor.map(
                lambda schedule: self._process_match(schedule, snapshot, now), matches
            ))

        self.logger.info(f"Processed {len(matches)} upcoming classes: {report.counts}")

    def _process_match(self, schedule: ClassSchedule, snapshot: ScheduleSnapshot,
                       now: datetime) -> MatchResult:
        result = MatchResult(schedule_id=schedule.id, subject=schedule.subject,
                             outcome=MatchOutcome.SENT)

        try:
            request = self._resolve(schedule, snapshot)
        except UnresolvedReference as e:
            result.outcome = MatchOutcome.UNRESOLVED_REFERENCE
            result.error = str(e)
            self.logger.warning(f"Skipping schedule {schedule.id}: {str(e)}")
            return result

        result.recipient = request.recipient_email

        key = self.tracker.occurrence_key(schedule)
        if self.suppress_duplicates:
            if not self.tracker.claim(key, self._claim_expiry(schedule, now), now):
                result.outcome = MatchOutcome.DUPLICATE
                self.logger.debug(f"Schedule {schedule.id} already notified for {schedule.day} "
                                  f"{schedule.start_time}")
                return result

        try:
            # Validity runs from the moment of issuance, not the tick instant
            credential = self.issuer.issue_credential(schedule.id, now=self.clock())
        except Exception as e:
            if self.suppress_duplicates:
                self.tracker.release(key)
            result.outcome = MatchOutcome.ISSUANCE_FAILED
            result.error = str(e)
            if isinstance(e, IssuanceFailed):
                self.logger.error(f"QR issuance failed for schedule {schedule.id}: {str(e)}")
            else:
                self.logger.exception(f"Unexpected error issuing QR for schedule {schedule.id}")
            return result

        result.credential_id = credential.id

        try:
            self.notifier.send_class_qr(credential, request)
        except Exception as e:
            result.outcome = MatchOutcome.DELIVERY_FAILED
            result.error = str(e)
            if isinstance(e, DeliveryFailed):
                self.logger.error(f"QR code {credential.id} issued but not delivered "
                                  f"for schedule {schedule.id}: {str(e)}")
            else:
                self.logger.exception(f"Unexpected error delivering QR code {credential.id}")
            return result

        self.logger.info(f"QR code sent for schedule {schedule.id} ({schedule.subject}) "
                         f"to {request.recipient_email}")
        return result

    def _resolve(self, schedule: ClassSchedule, snapshot: ScheduleSnapshot) -> DeliveryRequest:
        professor = snapshot.professor(schedule.professor_id)
        if professor is None:
            raise UnresolvedReference(f"professor {schedule.professor_id} not found")

        classroom = snapshot.classroom(schedule.classroom_id)
        if classroom is None:
            raise UnresolvedReference(f"classroom {schedule.classroom_id} not found")

        return DeliveryRequest.for_schedule(schedule, professor, classroom)

    def _claim_expiry(self, schedule: ClassSchedule, now: datetime) -> datetime:
        bounds = occurrence_bounds(schedule, now)
        if bounds is None:
            return now.replace(second=0, microsecond=0) + self.lookahead + timedelta(minutes=1)
        return bounds[1]

    def _record(self, report: TickReport) -> None:
        self.history.append(report)
        self.stats['ticks'] += 1
        if report.status == 'skipped':
            self.stats['ticks_skipped'] += 1
        self.stats.update(result.outcome for result in report.results)

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers,
                    thread_name_prefix='class-qr-delivery'
                )
            return self._executor

    def start(self, initial_delay: Optional[float] = None) -> None:
        """
        Start the tick loop on a daemon thread.

        Args:
            initial_delay (float): Seconds before the first tick, defaults to
                one tick interval
        """
        if self.is_running:
            self.logger.warning("Class scheduler already running")
            return

        self._stop_event.clear()
        delay = self.tick_interval if initial_delay is None else initial_delay
        self._thread = threading.Thread(
            target=self._run,
            args=(delay,),
            name='class-qr-scheduler',
            daemon=True
        )
        self._thread.start()
        self.logger.info(f"Class scheduler started: tick every {self.tick_interval:g}s, "
                         f"lookahead {self.lookahead.total_seconds() / 60:g} minutes")

    def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Stop scheduling new ticks and wait for the in-flight tick.

        Args:
            timeout (float): Seconds to wait for the loop thread

        Returns:
            bool: True if the loop thread has exited
        """
        self._stop_event.set()
        stopped = True
        if self._thread is not None:
            self._thread.join(timeout)
            stopped = not self._thread.is_alive()
            if stopped:
                self._thread = None
            else:
                self.logger.warning("Class scheduler did not stop within timeout; "
                                    "in-flight deliveries abandoned")

        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=stopped)
                self._executor = None

        self.logger.info("Class scheduler stopped")
        return stopped

    def _run(self, initial_delay: float) -> None:
        next_tick = time.monotonic() + initial_delay
        while not self._stop_event.wait(max(0.0, next_tick - time.monotonic())):
            try:
                self.run_tick()
            except Exception:
                self.logger.exception("Unexpected error during scheduler tick")

            next_tick += self.tick_interval
            behind = time.monotonic() - next_tick
            if behind > 0:
                missed = int(behind // self.tick_interval) + 1
                next_tick += missed * self.tick_interval
                self.logger.warning(f"Scheduler tick overran; skipping {missed} tick(s)")

    def recent_reports(self, limit: int = 10) -> List[TickReport]:
        return list(self.history)[-limit:]

    def get_status(self) -> Dict[str, Any]:
        """Get the scheduler configuration, state and counters."""
        last = self.history[-1] if self.history else None
        return {
            'running': self.is_running,
            'state': self.state,
            'tick_interval_seconds': self.tick_interval,
            'lookahead_minutes': self.lookahead.total_seconds() / 60,
            'suppress_duplicates': self.suppress_duplicates,
            'wrap_midnight': self.wrap_midnight,
            'max_workers': self.max_workers,
            'tracked_occurrences': len(self.tracker),
            'stats': dict(self.stats),
            'last_tick': last.to_dict() if last else None,
        }
