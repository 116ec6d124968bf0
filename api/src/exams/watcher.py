"""Exam deadline watcher.

Submits running exams when their time is up:
- One asyncio timer per IN_PROGRESS exam, armed on start and re-armed from
  ``exams_in_progress`` when the application starts
- Timers are cancelled when the exam is submitted and on shutdown
- A periodic sweep catches deadlines missed while a timer was not running

Timers only call ``ExamService.auto_submit``, the same conditional submit a
learner goes through, so a timer racing a manual submit is harmless.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from src.core.context import RequestContext
from src.core.database.errors import StoreUnavailableError
from src.utils import ensure_utc_aware, utc_now


if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from .service import ExamService


logger = structlog.get_logger(__name__)

# Timestamps are truncated to milliseconds
FIRE_MARGIN_SECONDS = 0.05


class ExamDeadlineWatcher:
    """Background deadline enforcement for running exams."""

    def __init__(self, exam_service: ExamService, poll_interval: float = 30.0) -> None:
        """Initialize the watcher.

        Args:
            exam_service: Service performing the submission
            poll_interval: Seconds between two deadline sweeps
        """
        self.exam_service = exam_service
        self.poll_interval = poll_interval

        self._running = False
        self._timers: dict[UUID, asyncio.Task] = {}
        self._sweep_task: asyncio.Task | None = None

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    async def start(self) -> None:
        """Re-arm timers of running exams and start the sweep loop."""
        if self._running:
            logger.warning("exam_watcher_already_running")
            return

        self._running = True
        try:
            in_progress = await self.exam_service.list_in_progress()
        except StoreUnavailableError:
            logger.warning("exam_watcher_resume_failed")
            in_progress = []

        for exam_id, deadline in in_progress:
            self.register(exam_id, deadline)

        self._sweep_task = asyncio.create_task(
            self._sweep_loop(),
            name="exam_deadline_sweep",
        )
        logger.info(
            "exam_watcher_started",
            resumed=len(in_progress),
            poll_interval=self.poll_interval,
        )

    async def stop(self) -> None:
        """Cancel the sweep loop and every pending timer."""
        if not self._running:
            return

        self._running = False
        tasks = list(self._timers.values())
        if self._sweep_task:
            tasks.append(self._sweep_task)
        self._timers.clear()
        self._sweep_task = None

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("exam_watcher_stopped", cancelled=len(tasks))

    @property
    def is_running(self) -> bool:
        return self._running

    # ==========================================================================
    # Timers
    # ==========================================================================

    def register(self, exam_id: UUID, deadline: datetime) -> None:
        """Arm (or re-arm) the timer of an exam. Ignored while stopped."""
        if not self._running:
            return

        self.cancel(exam_id)
        self._timers[exam_id] = asyncio.create_task(
            self._fire_at(exam_id, ensure_utc_aware(deadline)),
            name=f"exam_deadline_{exam_id}",
        )

    def cancel(self, exam_id: UUID) -> None:
        """Drop the timer of an exam that left IN_PROGRESS."""
        task = self._timers.pop(exam_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def has_timer(self, exam_id: UUID) -> bool:
        return exam_id in self._timers

    @property
    def pending_count(self) -> int:
        return len(self._timers)

    async def _fire_at(self, exam_id: UUID, deadline: datetime) -> None:
        delay = (deadline - utc_now()).total_seconds()
        if delay > 0:
            await asyncio.sleep(delay + FIRE_MARGIN_SECONDS)
        self._timers.pop(exam_id, None)
        await self._auto_submit(exam_id)

    async def _auto_submit(self, exam_id: UUID, now: datetime | None = None) -> bool:
        """Submit one exam, logging under its own context. Never raises."""
        with RequestContext(correlation_id=str(exam_id)):
            try:
                result = await self.exam_service.auto_submit(exam_id, now)
            except StoreUnavailableError:
                # Retried by the next sweep
                logger.warning("exam_auto_submit_failed", exam_id=str(exam_id))
                return False
            except Exception:
                logger.exception("exam_auto_submit_error", exam_id=str(exam_id))
                return False

            if result is not None:
                logger.info(
                    "exam_auto_submitted",
                    exam_id=str(exam_id),
                    score=result.score,
                    passed=result.passed,
                )
            return result is not None

    # ==========================================================================
    # Sweep
    # ==========================================================================

    async def sweep(self, now: datetime | None = None) -> int:
        """Submit every running exam whose deadline has passed.

        Returns:
            Number of exams submitted by this sweep
        """
        now = now or utc_now()
        submitted = 0
        for exam_id, deadline in await self.exam_service.list_in_progress():
            if deadline is None or ensure_utc_aware(deadline) > now:
                continue
            self.cancel(exam_id)
            if await self._auto_submit(exam_id, now):
                submitted += 1
        return submitted

    async def _sweep_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.poll_interval)
            try:
                submitted = await self.sweep()
            except StoreUnavailableError:
                logger.warning("exam_deadline_sweep_failed")
                continue
            except Exception:
                logger.exception("exam_deadline_sweep_error")
                continue
            if submitted:
                logger.info("exam_deadline_sweep", submitted=submitted)
