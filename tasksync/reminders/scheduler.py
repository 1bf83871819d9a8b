"""
Windowed reminder scheduler.

A periodic scan over every account's snapshot that sends a push
notification for each task whose reminder instant has just passed.

Idempotency rests on two guards:
- notifiedAt >= remindAt means this reminder was already delivered
- a task is only due during [remindAt, remindAt + window); a reminder that
  was never delivered inside its window is dropped for good
"""
import asyncio
import structlog
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from tasksync.config import settings
from tasksync.push.dispatcher import NotificationDispatcher
from tasksync.reminders.payload import build_reminder_payload
from tasksync.sync.models import Snapshot, Task
from tasksync.sync.store import VersionedStore, now_ms


logger = structlog.get_logger()


# (task id, remindAt) -> notifiedAt
Marks = Dict[Tuple[str, int], int]


class SchedulerState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"


class ReminderScheduler:
    """
    Single-slot scan loop.

    Ticks never overlap: a tick that comes due while a scan is still running
    is skipped, not queued. notifiedAt is written back through the same
    version-checked path clients use; on conflict the marks are re-applied
    to the newer snapshot so a concurrent client edit is never overwritten.
    """

    def __init__(
        self,
        store: VersionedStore,
        dispatcher: NotificationDispatcher,
        interval_seconds: float = settings.reminder_scan_interval_seconds,
        window_seconds: int = settings.reminder_window_seconds,
        write_attempts: int = settings.reminder_write_attempts,
        clock=now_ms,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.interval_seconds = interval_seconds
        self.window_ms = window_seconds * 1000
        self.write_attempts = max(1, write_attempts)
        self.clock = clock

        self.state = SchedulerState.IDLE
        self._runner: Optional[asyncio.Task] = None
        self._current_tick: Optional[asyncio.Task] = None

    # ========== Due Check ==========

    def is_due(self, task: Task, now: int) -> bool:
        """Whether a reminder for task should be sent at now (ms)."""
        if task.is_deleted or task.is_completed:
            return False

        remind_at = task.remindAt
        if not remind_at or remind_at <= 0:
            return False

        if task.notifiedAt and task.notifiedAt >= remind_at:
            return False

        return remind_at <= now < remind_at + self.window_ms

    @staticmethod
    def _parse(item: Any) -> Optional[Task]:
        if not isinstance(item, dict):
            return None
        try:
            return Task.model_validate(item)
        except PydanticValidationError:
            return None

    # ========== Tick ==========

    async def tick(self) -> Optional[int]:
        """
        Run one scan over all accounts.

        Returns:
            Number of reminders delivered, or None if the tick was
            skipped because a scan is already running
        """
        if self.state is SchedulerState.SCANNING:
            logger.info("scheduler_tick_skipped")
            return None

        self.state = SchedulerState.SCANNING
        try:
            accounts = await self.store.accounts()

            results = await asyncio.gather(
                *(self._scan_account(account) for account in accounts),
                return_exceptions=True,
            )

            notified = 0
            for account, result in zip(accounts, results):
                if isinstance(result, Exception):
                    logger.error(
                        "scheduler_account_failed",
                        account=account,
                        error=str(result),
                    )
                else:
                    notified += result

            logger.debug("scheduler_tick_completed", accounts=len(accounts), notified=notified)
            return notified
        finally:
            self.state = SchedulerState.IDLE

    async def _scan_account(self, account: str) -> int:
        snapshot = await self.store.read(account)

        due: List[Tuple[Dict[str, Any], Task, int]] = []
        for item in snapshot.collection:
            task = self._parse(item)
            if task is None:
                continue

            now = self.clock()
            if self.is_due(task, now):
                due.append((item, task, now))

        if not due:
            return 0

        results = await asyncio.gather(
            *(self.dispatcher.dispatch(account, build_reminder_payload(task)) for _, task, _ in due),
            return_exceptions=True,
        )

        marks: Marks = {}
        for (item, task, now), result in zip(due, results):
            if isinstance(result, BaseException):
                logger.error(
                    "reminder_dispatch_failed",
                    account=account,
                    task_id=task.id,
                    error=str(result),
                )
                continue

            if not result:
                # Left unmarked so the next tick retries while still in the window
                logger.info("reminder_not_delivered", account=account, task_id=task.id)
                continue

            item["notifiedAt"] = now
            marks[(str(task.id), task.remindAt)] = now
            logger.info("reminder_sent", account=account, task_id=task.id, remind_at=task.remindAt)

        if marks:
            await self._write_back(account, snapshot, marks)

        return len(marks)

    async def _write_back(self, account: str, snapshot: Snapshot, marks: Marks) -> bool:
        collection = snapshot.collection
        version = snapshot.version

        for attempt in range(1, self.write_attempts + 1):
            result = await self.store.write(account, collection, version, force=False)
            if result.accepted:
                return True

            logger.info(
                "scheduler_write_conflict",
                account=account,
                attempt=attempt,
                server_version=result.server_version,
            )
            if attempt == self.write_attempts:
                break

            latest = await self.store.read(account)
            collection = latest.collection
            version = latest.version
            if not apply_marks(collection, marks):
                # The client removed or rescheduled every task we marked
                return False

        logger.warning("scheduler_write_abandoned", account=account, marks=len(marks))
        return False

    # ========== Loop ==========

    def start(self) -> None:
        """Start the background loop on the running event loop."""
        if self._runner is not None and not self._runner.done():
            return
        self._runner = asyncio.create_task(self.run_forever())

    async def stop(self) -> None:
        """Cancel the loop and any tick in flight."""
        for task in (self._runner, self._current_tick):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._runner = None
        self._current_tick = None
        logger.info("reminder_scheduler_stopped")

    async def run_forever(self) -> None:
        logger.info(
            "reminder_scheduler_started",
            interval_seconds=self.interval_seconds,
            window_ms=self.window_ms,
        )
        while True:
            self._spawn_tick()
            await asyncio.sleep(self.interval_seconds)

    def _spawn_tick(self) -> None:
        if self.state is SchedulerState.SCANNING:
            logger.info("scheduler_tick_skipped")
            return
        self._current_tick = asyncio.create_task(self._guarded_tick())

    async def _guarded_tick(self) -> None:
        try:
            await self.tick()
        except Exception as e:
            logger.error("scheduler_tick_failed", error=str(e))


def apply_marks(collection: List[Dict[str, Any]], marks: Marks) -> bool:
    """
    Copy notifiedAt marks onto tasks that still carry the same remindAt.

    Returns:
        True if any task was updated
    """
    changed = False
    for item in collection:
        if not isinstance(item, dict):
            continue
        key = (str(item.get("id")), item.get("remindAt"))
        notified_at = marks.get(key)
        if notified_at is None:
            continue
        current = item.get("notifiedAt")
        if isinstance(current, (int, float)) and current >= item["remindAt"]:
            continue
        item["notifiedAt"] = notified_at
        changed = True
    return changed
