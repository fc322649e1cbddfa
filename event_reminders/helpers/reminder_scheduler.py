import asyncio
from collections.abc import Coroutine
from contextlib import suppress
from datetime import UTC, datetime, timedelta
from uuid import UUID

from aiojobs import Scheduler

from event_reminders.helpers.config_models.scheduler import SchedulerModel
from event_reminders.helpers.logging import logger
from event_reminders.helpers.monitoring import (
    SpanAttributeEnum,
    counter_add,
    reminder_failed,
    reminder_pending,
    reminder_sent,
    start_as_current_span,
)
from event_reminders.models.job import JobModel, SchedulerStatusModel, StatusEnum
from event_reminders.models.readiness import ReadinessEnum
from event_reminders.persistence.inotification import INotification


class ReminderScheduler:
    """
    In-memory table of reminder jobs, scanned periodically to deliver the due ones.

    Lifecycle of a job is `pending` to `sent`, then removed after the retention window. Or `pending` to `failed`, then back to `pending` after the retry backoff, with a new reminder time. Retries are not capped, a job is retried until sent or cancelled.

    The table is guarded by a lock. Deliveries happen outside of it, their outcome is applied only if the job was not cancelled, replaced or rescheduled meanwhile.
    """

    _config: SchedulerModel
    _in_flight: set[UUID]
    _jobs: dict[UUID, JobModel]
    _lock: asyncio.Lock
    _notification: INotification
    _scan_task: asyncio.Task | None = None
    _timers: Scheduler | None = None

    def __init__(
        self,
        config: SchedulerModel,
        notification: INotification,
    ):
        self._config = config
        self._in_flight = set()
        self._jobs = {}
        self._lock = asyncio.Lock()
        self._notification = notification

    @property
    def is_running(self) -> bool:
        return self._scan_task is not None and not self._scan_task.done()

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the scheduler.

        Ready if the scan is running, or if it is not expected to run.
        """
        if self.is_running or not self._config.autostart:
            return ReadinessEnum.OK
        return ReadinessEnum.FAIL

    @start_as_current_span("scheduler_schedule_reminder")
    async def schedule_reminder(self, job: JobModel) -> None:
        """
        Add a job to the table, as pending.

        A job with the same identifier is replaced.
        """
        SpanAttributeEnum.REMINDER_ID.attribute(str(job.job_id))
        async with self._lock:
            previous = self._jobs.get(job.job_id)
            job.status = StatusEnum.PENDING
            self._jobs[job.job_id] = job
            self._track(
                after=job.status,
                before=previous.status if previous else None,
            )
        logger.info(
            "Reminder %s scheduled for %s", job.job_id, job.reminder_time.isoformat()
        )

    @start_as_current_span("scheduler_update_reminder")
    async def update_reminder(
        self,
        job_id: UUID,
        reminder_time: datetime,
        event_date: datetime | None = None,
        event_title: str | None = None,
    ) -> bool:
        """
        Move a job to a new reminder time and put it back to pending.

        Returns `False` if the job is not in the table.
        """
        SpanAttributeEnum.REMINDER_ID.attribute(str(job_id))
        async with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                logger.debug("Reminder %s not scheduled, nothing to update", job_id)
                return False
            previous_status = job.status
            job.reminder_time = reminder_time
            if event_date:
                job.event_date = event_date
            if event_title:
                job.event_title = event_title
            job.status = StatusEnum.PENDING
            self._track(
                after=job.status,
                before=previous_status,
            )
        logger.info(
            "Reminder %s rescheduled for %s", job_id, reminder_time.isoformat()
        )
        return True

    @start_as_current_span("scheduler_rename_event")
    async def rename_event(self, event_id: UUID, event_title: str) -> int:
        """
        Refresh the event title of all jobs of an event, without touching their status.

        Returns the number of jobs updated.
        """
        async with self._lock:
            jobs = [job for job in self._jobs.values() if job.event_id == event_id]
            for job in jobs:
                job.event_title = event_title
        return len(jobs)

    @start_as_current_span("scheduler_cancel_reminder")
    async def cancel_reminder(self, job_id: UUID) -> bool:
        """
        Remove a job from the table.

        Returns `False` if the job was not in the table.
        """
        SpanAttributeEnum.REMINDER_ID.attribute(str(job_id))
        async with self._lock:
            job = self._jobs.pop(job_id, None)
            if not job:
                return False
            self._track(
                after=None,
                before=job.status,
            )
        logger.info("Reminder %s cancelled", job_id)
        return True

    def get_job(self, job_id: UUID) -> JobModel | None:
        """
        Get a copy of a job, changing it has no effect on the table.
        """
        job = self._jobs.get(job_id)
        return job.model_copy() if job else None

    def get_status(self) -> SchedulerStatusModel:
        pending = [
            job for job in self._jobs.values() if job.status == StatusEnum.PENDING
        ]
        return SchedulerStatusModel(
            failed_jobs=sum(
                1 for job in self._jobs.values() if job.status == StatusEnum.FAILED
            ),
            is_running=self.is_running,
            next_reminder_time=min(
                (job.reminder_time for job in pending),
                default=None,
            ),
            pending_jobs=len(pending),
            sent_jobs=sum(
                1 for job in self._jobs.values() if job.status == StatusEnum.SENT
            ),
            total_jobs=len(self._jobs),
        )

    def start(self) -> None:
        """
        Start the periodic scan, the first one is immediate.

        Must be called from a running event loop. Does nothing if already running.
        """
        if self.is_running:
            logger.debug("Scheduler already running")
            return
        logger.info(
            "Starting reminder scan, every %ss", self._config.scan_interval_sec
        )
        self._scan_task = asyncio.create_task(self._scan_loop())

    def stop(self) -> None:
        """
        Stop the periodic scan.

        Synchronous, can be called from a signal handler. Does nothing if not running.
        """
        if not self._scan_task:
            return
        logger.info("Stopping reminder scan")
        self._scan_task.cancel()
        self._scan_task = None

    async def close(self) -> None:
        """
        Stop the scan and cancel the pending retention and retry timers.

        Waits for the scan task to finish its cancellation.
        """
        scan_task = self._scan_task
        self.stop()
        if scan_task:
            with suppress(asyncio.CancelledError):
                await scan_task
        if self._timers:
            await self._timers.close()
            self._timers = None

    @start_as_current_span("scheduler_process_due")
    async def process_due(self) -> int:
        """
        Deliver all pending jobs whose reminder time is reached.

        Jobs are delivered one after the other, earliest first. A failed delivery does not stop the others. Jobs already being delivered by another scan are skipped.

        Returns the number of jobs sent.
        """
        now = datetime.now(UTC)
        async with self._lock:
            due = sorted(
                (
                    job
                    for job in self._jobs.values()
                    if job.status == StatusEnum.PENDING
                    and job.reminder_time <= now
                    and job.job_id not in self._in_flight
                ),
                key=lambda job: job.reminder_time,
            )
            self._in_flight.update(job.job_id for job in due)

        if not due:
            logger.debug("No reminder due")
            return 0
        logger.info("%s reminder(s) due", len(due))

        sent = 0
        for job in due:
            try:
                if await self._deliver(job):
                    sent += 1
            finally:
                self._in_flight.discard(job.job_id)
        return sent

    async def _deliver(self, job: JobModel) -> bool:
        SpanAttributeEnum.EVENT_ID.attribute(str(job.event_id))
        SpanAttributeEnum.REMINDER_ID.attribute(str(job.job_id))
        # Snapshot, the job can be updated while the channel is awaited
        snapshot = job.model_copy()

        try:
            success = await self._notification.send(snapshot)
        except Exception:
            logger.exception("Error sending reminder %s", job.job_id)
            success = False

        async with self._lock:
            # Job cancelled, replaced or rescheduled during the delivery
            if (
                self._jobs.get(job.job_id) is not job
                or job.status != StatusEnum.PENDING
                or job.reminder_time != snapshot.reminder_time
            ):
                logger.info(
                    "Reminder %s changed during delivery, outcome ignored", job.job_id
                )
                return False

            job.attempts += 1
            job.last_attempt_at = datetime.now(UTC)
            if success:
                job.status = StatusEnum.SENT
                self._track(after=job.status, before=StatusEnum.PENDING)
                counter_add(reminder_sent, 1)
                await self._spawn(self._remove_later(job, job.attempts))
            else:
                job.status = StatusEnum.FAILED
                self._track(after=job.status, before=StatusEnum.PENDING)
                counter_add(reminder_failed, 1)
                await self._spawn(self._retry_later(job, job.attempts))
        SpanAttributeEnum.JOB_STATUS.attribute(job.status.value)

        if success:
            logger.info("Reminder %s sent", job.job_id)
        else:
            logger.warning(
                "Reminder %s failed (attempt %s), retrying in %ss",
                job.job_id,
                job.attempts,
                self._config.retry_backoff_sec,
            )
        return success

    async def _remove_later(self, job: JobModel, attempts: int) -> None:
        """
        Remove a sent job after the retention window.
        """
        await asyncio.sleep(self._config.retention_sec)
        async with self._lock:
            if not self._is_current(job, attempts, StatusEnum.SENT):
                return
            del self._jobs[job.job_id]
            self._track(after=None, before=job.status)
        logger.debug("Reminder %s removed after retention", job.job_id)

    async def _retry_later(self, job: JobModel, attempts: int) -> None:
        """
        Put a failed job back to pending after the retry backoff.
        """
        await asyncio.sleep(self._config.retry_backoff_sec)
        async with self._lock:
            if not self._is_current(job, attempts, StatusEnum.FAILED):
                return
            job.reminder_time = datetime.now(UTC) + timedelta(
                seconds=self._config.retry_delay_sec
            )
            job.status = StatusEnum.PENDING
            self._track(after=job.status, before=StatusEnum.FAILED)
        logger.info(
            "Reminder %s retried at %s", job.job_id, job.reminder_time.isoformat()
        )

    def _is_current(self, job: JobModel, attempts: int, status: StatusEnum) -> bool:
        """
        Check a delayed transition still applies to the job.

        Lock must be held.
        """
        return (
            self._jobs.get(job.job_id) is job
            and job.attempts == attempts
            and job.status == status
        )

    async def _spawn(self, coro: Coroutine[None, None, None]) -> None:
        # Created in the running loop, on first use
        if not self._timers:
            self._timers = Scheduler(
                close_timeout=self._config.close_timeout_sec,
                limit=None,
            )
        await self._timers.spawn(coro)

    async def _scan_loop(self) -> None:
        while True:
            try:
                await self.process_due()
            except Exception:
                logger.exception("Error while scanning reminders")
            await asyncio.sleep(self._config.scan_interval_sec)

    @staticmethod
    def _track(after: StatusEnum | None, before: StatusEnum | None) -> None:
        """
        Report the change of the pending jobs count.
        """
        delta = int(after == StatusEnum.PENDING) - int(before == StatusEnum.PENDING)
        if delta:
            counter_add(reminder_pending, delta)
