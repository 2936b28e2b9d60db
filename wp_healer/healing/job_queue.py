"""
Healing Job Queue
Delay-capable asynchronous job queue consumed by a small pool of worker
tasks. Jobs are ordered by the time they become runnable.
"""

import asyncio
import itertools
import logging
import time
from enum import Enum
from typing import Dict, Any, Optional, Callable, Awaitable

from wp_healer.core.base_component import BaseComponent
from wp_healer.core.interfaces import JobQueue
from wp_healer.core.models import new_id

logger = logging.getLogger(__name__)

JobHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


class JobStatus(Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Job:
    """A queued unit of work"""

    def __init__(self, job_id: str, name: str, payload: Dict[str, Any], run_at: float):
        self.job_id = job_id
        self.name = name
        self.payload = payload
        self.run_at = run_at
        self.status = JobStatus.QUEUED
        self.created_at = time.time()
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None
        self.result: Any = None
        self.error: Optional[str] = None

    def is_due(self, now: Optional[float] = None) -> bool:
        return (now if now is not None else time.time()) >= self.run_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            'job_id': self.job_id,
            'name': self.name,
            'payload': self.payload,
            'status': self.status.value,
            'run_at': self.run_at,
            'created_at': self.created_at,
            'started_at': self.started_at,
            'finished_at': self.finished_at,
            'error': self.error
        }


class AsyncJobQueue(BaseComponent, JobQueue):
    """
    AsyncJobQueue handles:
    - Handler registration by job name
    - Delayed submission ordered by due time
    - Worker pool lifecycle through BaseComponent start/stop
    - Job bookkeeping and queue statistics
    """

    def __init__(self, store, workers: int = 2, poll_interval: float = 0.05,
                 heartbeat_interval: float = 15):
        """
        Initialize the job queue

        Args:
            store: RecordStore holding component states
            workers (int): Number of worker tasks
            poll_interval (float): Seconds a worker waits before re-checking a job that is not due
            heartbeat_interval (float): Seconds between heartbeats
        """
        super().__init__(store, 'job_queue', heartbeat_interval)
        self.worker_count = max(1, workers)
        self.poll_interval = poll_interval

        self._queue: asyncio.PriorityQueue = asyncio.PriorityQueue()
        self._sequence = itertools.count()
        self._handlers: Dict[str, JobHandler] = {}

        self.jobs: Dict[str, Job] = {}
        self.max_finished_jobs = 100
        self._finished_ids = []

        self.queue_stats = {
            'total_jobs': 0,
            'completed_jobs': 0,
            'failed_jobs': 0,
            'avg_wait_time': 0.0,
            'avg_execution_time': 0.0,
            'peak_queue_size': 0
        }

    @classmethod
    def from_config(cls, store, config) -> 'AsyncJobQueue':
        return cls(
            store,
            workers=config.get('healing.workers', 2),
            heartbeat_interval=config.get('monitoring.heartbeat_interval', 15)
        )

    def register(self, job_name: str, handler: JobHandler):
        """
        Register the coroutine handling a job name

        Args:
            job_name (str): Job name
            handler (JobHandler): Coroutine function taking the job payload
        """
        self._handlers[job_name] = handler
        logger.debug(f"Registered handler for job '{job_name}'")

    async def enqueue(self, job_name: str, payload: Dict[str, Any],
                      delay_ms: int = 0, job_id: Optional[str] = None) -> str:
        """
        Submit a job

        Args:
            job_name (str): Registered job name
            payload (Dict[str, Any]): Job payload
            delay_ms (int): Delay before the job becomes runnable
            job_id (str, optional): Explicit job identifier

        Returns:
            str: Job identifier

        Raises:
            ValueError: If no handler is registered for the job name
        """
        if job_name not in self._handlers:
            raise ValueError(f"No handler registered for job '{job_name}'")

        job = Job(job_id or new_id(), job_name, payload, time.time() + max(0, delay_ms) / 1000)
        self.jobs[job.job_id] = job
        await self._queue.put((job.run_at, next(self._sequence), job))

        self.queue_stats['total_jobs'] += 1
        self.queue_stats['peak_queue_size'] = max(self.queue_stats['peak_queue_size'], self._queue.qsize())

        if delay_ms:
            logger.info(f"Job {job.job_id} ({job_name}) queued with {delay_ms}ms delay")
        else:
            logger.info(f"Job {job.job_id} ({job_name}) queued")
        return job.job_id

    async def join(self):
        """Wait until every queued job, including ones queued meanwhile, has finished"""
        await self._queue.join()

    async def _on_start(self):
        for _ in range(self.worker_count):
            self._tasks.append(asyncio.create_task(self._worker()))
        self.store.update_component_status(self.name, "running", f"Workers: {self.worker_count}")
        logger.info(f"Job queue started with {self.worker_count} workers")

    async def _worker(self):
        """Worker task for running jobs"""
        while self.is_running:
            try:
                run_at, sequence, job = await self._queue.get()
            except asyncio.CancelledError:
                break

            try:
                if not job.is_due():
                    await self._queue.put((run_at, sequence, job))
                    await asyncio.sleep(min(self.poll_interval, max(0.0, run_at - time.time())))
                    continue

                await self._run_job(job)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in job queue worker: {str(e)}")
                self._record_error(e, 'worker')
            finally:
                self._queue.task_done()

    async def _run_job(self, job: Job):
        handler = self._handlers[job.name]
        job.status = JobStatus.RUNNING
        job.started_at = time.time()
        logger.debug(f"Running job {job.job_id} ({job.name})")

        try:
            job.result = await handler(job.payload)
            job.status = JobStatus.COMPLETED
            self.queue_stats['completed_jobs'] += 1
        except Exception as e:
            job.status = JobStatus.FAILED
            job.error = str(e)
            self.queue_stats['failed_jobs'] += 1
            logger.error(f"Job {job.job_id} ({job.name}) failed: {str(e)}")
            self._record_error(e, f"job {job.name}")
        finally:
            job.finished_at = time.time()
            self._update_timing(job)
            self._mark_finished(job)

    def _update_timing(self, job: Job):
        finished = self.queue_stats['completed_jobs'] + self.queue_stats['failed_jobs']
        wait_time = job.started_at - job.run_at if job.started_at > job.run_at else 0.0
        execution_time = job.finished_at - job.started_at

        # Running averages
        self.queue_stats['avg_wait_time'] += (wait_time - self.queue_stats['avg_wait_time']) / finished
        self.queue_stats['avg_execution_time'] += (
            execution_time - self.queue_stats['avg_execution_time']
        ) / finished

    def _mark_finished(self, job: Job):
        self._finished_ids.append(job.job_id)
        while len(self._finished_ids) > self.max_finished_jobs:
            self.jobs.pop(self._finished_ids.pop(0), None)

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        job = self.jobs.get(job_id)
        return job.to_dict() if job else None

    def get_stats(self) -> Dict[str, Any]:
        stats = dict(self.queue_stats)
        stats['queued'] = self._queue.qsize()
        stats['running'] = sum(1 for j in self.jobs.values() if j.status == JobStatus.RUNNING)
        stats['workers'] = self.worker_count
        return stats

    async def _collect_component_metrics(self) -> Dict[str, Any]:
        return self.get_stats()
