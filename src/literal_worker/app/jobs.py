from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set
from uuid import uuid4

from loguru import logger

from ..services.lyrics import LyricsSource
from ..services.orchestrator import ImageOrchestrator
from .models import JobSnapshot, JobState, Line, LyricImage


@dataclass(eq=False)
class GenerationJob:
    job_id: str
    track_id: str
    lines: List[Line]
    state: JobState = JobState.WAITING
    done: int = 0
    total: int = 0
    result: Optional[List[LyricImage]] = None
    # Set once the job leaves the registry or stops running.
    stopped: asyncio.Event = field(default_factory=asyncio.Event)


class JobToken:
    """Cancellation token tying a running body to its job's registry entry."""

    def __init__(self, manager: "JobManager", job: GenerationJob) -> None:
        self._manager = manager
        self._job = job

    @property
    def stopped(self) -> asyncio.Event:
        return self._job.stopped

    def is_active(self) -> bool:
        return (
            self._manager._jobs.get(self._job.job_id) is self._job
            and self._job.state == JobState.IN_PROGRESS
        )

    def advance(self) -> None:
        job = self._job
        if self.is_active() and job.done < job.total:
            job.done += 1

    def fail(self, exc: BaseException) -> None:
        if not self.is_active():
            return
        self._job.state = JobState.ERROR
        self._job.stopped.set()
        logger.opt(exception=exc).error("job {} failed", self._job.job_id)


class JobManager:
    """Owns generation jobs from submission until delivery or reclamation.

    Jobs with uncached phrases run one at a time in submission order; jobs
    whose phrases are all cached start immediately. Every job is reclaimed if
    nobody polls it within ``timeout_seconds``.
    """

    def __init__(
        self,
        orchestrator: ImageOrchestrator,
        lyrics: LyricsSource,
        *,
        timeout_seconds: float = 5.0,
    ) -> None:
        self._orchestrator = orchestrator
        self._lyrics = lyrics
        self._timeout_seconds = timeout_seconds
        self._jobs: Dict[str, GenerationJob] = {}
        self._waiting: List[GenerationJob] = []
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._tasks: Set[asyncio.Task[None]] = set()
        self._chain_tail: Optional[asyncio.Task[None]] = None

    @property
    def job_count(self) -> int:
        return len(self._jobs)

    @property
    def waiting_count(self) -> int:
        return len(self._waiting)

    async def submit(self, track_id: str) -> str:
        """Create a job for ``track_id`` and return its id.

        Raises ``LyricsUnavailable`` (or whatever the lyric source raises)
        before any job exists.
        """
        lines = await self._lyrics.fetch(track_id)
        present, distinct = await self._orchestrator.count_cached(lines)
        job = GenerationJob(job_id=str(uuid4()), track_id=track_id, lines=list(lines))
        self._jobs[job.job_id] = job
        self._reset_timeout(job.job_id)

        if present < distinct:
            self._waiting.append(job)
            self._enqueue(job)
            logger.info(
                "job {} queued for track {} ({} of {} phrases cached)",
                job.job_id,
                track_id,
                present,
                distinct,
            )
        else:
            self._mark_in_progress(job)
            self._spawn(self._execute_job(job))
            logger.info("job {} for track {} fully cached", job.job_id, track_id)
        return job.job_id

    async def poll(self, job_id: str) -> Optional[JobSnapshot]:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        snapshot = self._snapshot(job)
        if job.state == JobState.DONE:
            self._discard(job_id)
        else:
            self._reset_timeout(job_id)
        return snapshot

    def reclaim(self, job_id: str) -> None:
        """Drop a job that nobody polled within the inactivity window."""
        self._timers.pop(job_id, None)
        job = self._jobs.pop(job_id, None)
        if job is None:
            return
        job.stopped.set()
        self._remove_waiting(job)
        logger.info("job {} timed out in state {}", job_id, job.state.value)

    def position_of(self, job: GenerationJob) -> Optional[int]:
        # One slot for the running job, one for 1-based display.
        for index, entry in enumerate(self._waiting):
            if entry is job:
                return index + 2
        return None

    async def shutdown(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        for job in self._jobs.values():
            job.stopped.set()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._chain_tail = None
        self._jobs.clear()
        self._waiting.clear()

    def _snapshot(self, job: GenerationJob) -> JobSnapshot:
        if job.state == JobState.WAITING:
            return JobSnapshot(status=job.state, queue_position=self.position_of(job))
        if job.state == JobState.IN_PROGRESS:
            return JobSnapshot(status=job.state, done=job.done, total=job.total)
        if job.state == JobState.DONE:
            lyrics = [entry.model_copy() for entry in job.result or []]
            return JobSnapshot(status=job.state, lyrics=lyrics)
        return JobSnapshot(status=job.state)

    def _enqueue(self, job: GenerationJob) -> None:
        previous = self._chain_tail
        self._chain_tail = self._spawn(self._run_after(previous, job))

    async def _run_after(
        self, previous: Optional[asyncio.Task[None]], job: GenerationJob
    ) -> None:
        if previous is not None and not previous.done():
            # asyncio.wait never raises for the awaited task's outcome.
            await asyncio.wait({previous})
        if self._jobs.get(job.job_id) is not job:
            logger.debug("job {} reclaimed before it started", job.job_id)
            return
        self._remove_waiting(job)
        self._mark_in_progress(job)
        await self._execute_job(job)

    async def _execute_job(self, job: GenerationJob) -> None:
        token = JobToken(self, job)
        logger.info("job {} started: {} lines", job.job_id, job.total)
        try:
            result = await self._orchestrator.render(job.lines, token)
        except Exception as exc:  # noqa: BLE001
            token.fail(exc)
            return
        finally:
            job.stopped.set()
        if result is not None and token.is_active():
            job.result = result
            job.state = JobState.DONE
            logger.info("job {} done", job.job_id)

    def _mark_in_progress(self, job: GenerationJob) -> None:
        job.state = JobState.IN_PROGRESS
        job.done = 0
        job.total = len(job.lines)

    def _spawn(self, coro) -> asyncio.Task[None]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _reset_timeout(self, job_id: str) -> None:
        handle = self._timers.pop(job_id, None)
        if handle is not None:
            handle.cancel()
        loop = asyncio.get_running_loop()
        self._timers[job_id] = loop.call_later(self._timeout_seconds, self.reclaim, job_id)

    def _discard(self, job_id: str) -> None:
        handle = self._timers.pop(job_id, None)
        if handle is not None:
            handle.cancel()
        job = self._jobs.pop(job_id, None)
        if job is not None:
            job.stopped.set()
            self._remove_waiting(job)

    def _remove_waiting(self, job: GenerationJob) -> None:
        self._waiting = [entry for entry in self._waiting if entry is not job]
