import asyncio
import functools
import threading
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Dict, Any, Optional, List, Union
from uuid import uuid4

import backoff

from shared.models.analysis import AnalysisState
from shared.models.events import EventFactory, BaseEvent
from shared.models.exceptions import (
    InvalidRequestException, NotFoundException, ConflictException,
    ServiceBusyException, ExecutionFailureException, DatabaseConnectionException,
)
from .database import JobStore, InMemoryJobStore
from .estimation import EstimationModel
from .impact import ImpactModel
from .models import AnalysisJob, AnalysisResult, AnalysisStatus, ScenarioSpec
from .optimization import OptimizationSearch
from .pipeline import (
    AnalysisPipeline, PROGRESS_STARTED, PROGRESS_IMPACT_DONE, PROGRESS_SYNTHESIS_DONE,
)
from .publisher import StatusPublisher, NullStatusPublisher

logger = logging.getLogger(__name__)


class JobCancelled(Exception):
    """Raised at a stage boundary when cancellation was requested"""


class JobOrchestrator:
    """
    Admits, schedules and tracks scenario analysis jobs.

    Jobs are admitted by ``submit`` (at most one non-terminal job per
    scenario), queued on a bounded FIFO queue and executed by a fixed pool
    of asyncio worker tasks. Pipeline stages run on a dedicated thread pool
    sized to the worker count, so status reads are served while a job
    computes and a stage that outlives its timeout only holds one of those
    threads.
    Terminal snapshots are written to the job store and dropped from the
    active table, after which they are still returned by ``get_status``.
    """

    def __init__(
        self,
        pipeline: AnalysisPipeline,
        job_store: Optional[JobStore] = None,
        publisher: Optional[StatusPublisher] = None,
        worker_count: int = 4,
        max_queue_size: int = 100,
        job_timeout_seconds: Optional[float] = 60.0,
        store_retry_attempts: int = 3,
    ):
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        self.pipeline = pipeline
        self.job_store = job_store or InMemoryJobStore()
        self.publisher = publisher or NullStatusPublisher()
        self.worker_count = worker_count
        self.max_queue_size = max_queue_size
        self.job_timeout_seconds = job_timeout_seconds

        # scenario_id -> job that is active or whose snapshot could not be stored
        self._jobs: Dict[str, AnalysisJob] = {}
        self._jobs_by_id: Dict[str, AnalysisJob] = {}
        self._done_events: Dict[str, asyncio.Event] = {}
        self._admission_lock = threading.Lock()

        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []
        self._executor: Optional[ThreadPoolExecutor] = None
        self.running = False

        self._save_snapshot = backoff.on_exception(
            backoff.expo,
            DatabaseConnectionException,
            max_tries=store_retry_attempts,
            jitter=backoff.full_jitter,
        )(self.job_store.put)

    async def start(self):
        """Start the worker pool"""
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._executor = ThreadPoolExecutor(max_workers=self.worker_count, thread_name_prefix="analysis-stage")
        await self.publisher.start()
        self._workers = [
            asyncio.create_task(self._worker_loop(i), name=f"analysis-worker-{i}")
            for i in range(self.worker_count)
        ]
        self.running = True
        logger.info(f"Job orchestrator started with {self.worker_count} workers (queue size {self.max_queue_size})")

    async def stop(self):
        """Stop the worker pool; queued jobs are failed, running jobs are interrupted"""
        if not self.running:
            return
        self.running = False

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

        while self._queue is not None and not self._queue.empty():
            job = self._queue.get_nowait()
            if not job.is_terminal:
                await self._fail(job, "shutdown", "Analysis service shut down before the job started")
                await self._finalize(job)

        # Stages that outlived their timeout are left to finish on their own
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._executor = None

        await self.publisher.stop()
        logger.info("Job orchestrator stopped")

    def is_running(self) -> bool:
        return self.running

    async def submit(self, scenario_id: str, scenario: Union[ScenarioSpec, Dict[str, Any]],
                     estimate_fields: Optional[List[str]] = None) -> str:
        """
        Admit an analysis job for a scenario and queue it

        Returns:
            Job identifier

        Raises:
            InvalidRequestException: Scenario id missing or scenario invalid
            ConflictException: The scenario already has a non-terminal job
            ServiceBusyException: Workers not running or queue full
        """
        if not scenario_id or not str(scenario_id).strip():
            raise InvalidRequestException("Scenario id is required")
        spec = ScenarioSpec.from_payload(scenario)

        if not self.running:
            raise ServiceBusyException("Analysis workers are not running")

        with self._admission_lock:
            existing = self._jobs.get(scenario_id)
            if existing is not None and not existing.is_terminal:
                raise ConflictException(
                    f"Scenario {scenario_id} already has an active analysis job {existing.job_id}"
                )

            job = AnalysisJob(
                job_id=str(uuid4()),
                scenario_id=scenario_id,
                scenario=spec,
                estimate_fields=list(estimate_fields or []),
            )
            try:
                self._queue.put_nowait(job)
            except asyncio.QueueFull:
                logger.warning(f"Analysis queue full; rejecting scenario {scenario_id}")
                raise ServiceBusyException("Analysis queue is full, retry later")

            if existing is not None:
                # Terminal job kept in memory after its snapshot failed to store; superseded now
                self._jobs_by_id.pop(existing.job_id, None)
            self._jobs[scenario_id] = job
            self._jobs_by_id[job.job_id] = job
            self._done_events[job.job_id] = asyncio.Event()

        logger.info(f"Admitted analysis job {job.job_id} for scenario {scenario_id}")
        await self._publish(EventFactory.create_submitted_event(scenario_id, job.job_id))
        return job.job_id

    async def cancel(self, scenario_id: str) -> AnalysisStatus:
        """Request cooperative cancellation of the scenario's active job"""
        with self._admission_lock:
            job = self._jobs.get(scenario_id)
        if job is None or job.is_terminal:
            raise NotFoundException(f"No active analysis job for scenario {scenario_id}")

        job.cancel_requested = True
        if job.state == AnalysisState.DRAFT:
            # Not picked up yet: fail right away, the worker will skip it
            await self._fail(job, "cancelled", "Analysis cancelled")
            await self._finalize(job)
        logger.info(f"Cancellation requested for analysis job {job.job_id}")
        return job.snapshot()

    def get_status(self, scenario_id: str) -> AnalysisStatus:
        """Latest committed state of the scenario's most recent job"""
        with self._admission_lock:
            job = self._jobs.get(scenario_id)
        if job is not None:
            return job.snapshot()

        status = self.job_store.get_latest(scenario_id)
        if status is None:
            raise NotFoundException(f"No analysis found for scenario {scenario_id}")
        return status

    def get_job(self, job_id: str) -> AnalysisStatus:
        with self._admission_lock:
            job = self._jobs_by_id.get(job_id)
        if job is not None:
            return job.snapshot()

        status = self.job_store.get(job_id)
        if status is None:
            raise NotFoundException(f"Analysis job {job_id} not found")
        return status

    def list_jobs(self, scenario_id: Optional[str] = None, limit: int = 10) -> List[AnalysisStatus]:
        """Active and stored jobs, newest first"""
        with self._admission_lock:
            active = [
                job.snapshot() for job in self._jobs_by_id.values()
                if scenario_id is None or job.scenario_id == scenario_id
            ]
        seen = {status.job_id for status in active}
        stored = [s for s in self.job_store.list(scenario_id=scenario_id, limit=limit) if s.job_id not in seen]
        combined = sorted(active + stored, key=lambda s: s.created_at, reverse=True)
        return combined[:limit]

    async def wait_for(self, scenario_id: str, timeout: Optional[float] = None) -> AnalysisStatus:
        """Wait until the scenario's current job is terminal and return its snapshot"""
        with self._admission_lock:
            job = self._jobs.get(scenario_id)
            event = self._done_events.get(job.job_id) if job is not None else None
        if event is not None:
            await asyncio.wait_for(event.wait(), timeout)
        return self.get_status(scenario_id)

    def stats(self) -> Dict[str, Any]:
        with self._admission_lock:
            active = sum(1 for job in self._jobs.values() if not job.is_terminal)
        return {
            "running": self.running,
            "workers": self.worker_count,
            "queued": self._queue.qsize() if self._queue is not None else 0,
            "active_jobs": active,
        }

    async def _worker_loop(self, worker_id: int):
        logger.debug(f"Analysis worker {worker_id} started")
        while True:
            job = await self._queue.get()
            try:
                await self._run_job(job)
            except Exception as e:
                # Job failures are recorded inside _run_job; this only guards the pool
                logger.error(f"Worker {worker_id} error on job {job.job_id}: {e}")
            finally:
                self._queue.task_done()

    async def _run_job(self, job: AnalysisJob):
        if job.is_terminal:
            logger.debug(f"Skipping job {job.job_id}; already {job.state.value}")
            return

        start_time = datetime.utcnow()
        try:
            await self._transition(job, AnalysisState.RUNNING)
            await self._report_progress(job, PROGRESS_STARTED)
            result = await asyncio.wait_for(self._execute_pipeline(job), timeout=self.job_timeout_seconds)

        except asyncio.TimeoutError:
            logger.error(f"Analysis job {job.job_id} timed out after {self.job_timeout_seconds}s")
            await self._fail(job, "timeout", f"Analysis exceeded the {self.job_timeout_seconds:g}s time limit")

        except JobCancelled:
            await self._fail(job, "cancelled", "Analysis cancelled")

        except asyncio.CancelledError:
            await self._fail(job, "shutdown", "Analysis interrupted by service shutdown")
            await self._finalize(job)
            raise

        except ExecutionFailureException as e:
            logger.error(f"Analysis job {job.job_id} failed: {e}")
            await self._fail(job, "execution_failure", str(e))

        except Exception as e:
            logger.error(f"Unexpected error in analysis job {job.job_id}: {type(e).__name__}: {e}")
            await self._fail(job, "processing_error", f"Unexpected error: {e}")

        else:
            processing_time = (datetime.utcnow() - start_time).total_seconds() * 1000
            await self._complete(job, result, processing_time)
            logger.info(f"Completed analysis job {job.job_id} for scenario {job.scenario_id} in {processing_time:.2f}ms")

        await self._finalize(job)

    async def _execute_pipeline(self, job: AnalysisJob) -> AnalysisResult:
        spec = job.scenario

        impact = await self._run_stage(job, "impact calculation", self.pipeline.calculate_impact, spec)
        await self._report_progress(job, PROGRESS_IMPACT_DONE)

        circularity, suggestions, best = await self._run_stage(
            job, "circularity synthesis", self.pipeline.synthesize, spec, impact
        )
        estimates = await self._run_stage(
            job, "estimation", self.pipeline.fill_estimates, spec, job.estimate_fields
        )
        await self._report_progress(job, PROGRESS_SYNTHESIS_DONE)

        result = await self._run_stage(
            job, "finalization", self.pipeline.finalize, impact, circularity, suggestions, estimates, best
        )
        self._check_cancelled(job)
        return result

    async def _run_stage(self, job: AnalysisJob, stage: str, func, *args):
        self._check_cancelled(job)
        logger.debug(f"Job {job.job_id}: running {stage}")
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, functools.partial(func, *args))
        except Exception as e:
            raise ExecutionFailureException(f"{stage} failed: {e}") from e

    @staticmethod
    def _check_cancelled(job: AnalysisJob):
        if job.cancel_requested:
            raise JobCancelled()

    async def _transition(self, job: AnalysisJob, state: AnalysisState, **kwargs):
        previous = job.transition_to(state, **kwargs)
        await self._publish(EventFactory.create_status_update_event(
            job.scenario_id, job.job_id, state, job.progress, previous_state=previous
        ))

    async def _report_progress(self, job: AnalysisJob, value: float):
        progress = job.advance_progress(value)
        await self._publish(EventFactory.create_status_update_event(
            job.scenario_id, job.job_id, job.state, progress
        ))

    async def _fail(self, job: AnalysisJob, error_type: str, reason: str):
        try:
            await self._transition(job, AnalysisState.FAILED, failure_reason=reason)
        except ValueError:
            logger.debug(f"Job {job.job_id} already {job.state.value}; not failing it again")
            return
        await self._publish(EventFactory.create_error_event(
            job.scenario_id, job.job_id, error_type=error_type, error_message=reason
        ))

    async def _complete(self, job: AnalysisJob, result: AnalysisResult, processing_time_ms: float):
        await self._transition(job, AnalysisState.COMPLETED, result=result)
        await self._publish(EventFactory.create_completed_event(
            job.scenario_id, job.job_id,
            result=result.model_dump(mode="json", by_alias=True),
            processing_time_ms=processing_time_ms,
        ))

    async def _finalize(self, job: AnalysisJob):
        """Store the terminal snapshot, then release the job from the active table"""
        snapshot = job.snapshot()
        try:
            await asyncio.to_thread(self._save_snapshot, snapshot)
        except DatabaseConnectionException as e:
            logger.error(f"Keeping job {job.job_id} in memory; snapshot could not be stored: {e}")
        else:
            with self._admission_lock:
                if self._jobs.get(job.scenario_id) is job:
                    del self._jobs[job.scenario_id]
                self._jobs_by_id.pop(job.job_id, None)

        event = self._done_events.pop(job.job_id, None)
        if event is not None:
            event.set()

    async def _publish(self, event: BaseEvent):
        try:
            await self.publisher.publish(event)
        except Exception as e:
            logger.error(f"Failed to publish {event.event_type} event for job {event.job_id}: {e}")


def build_orchestrator(settings, job_store: Optional[JobStore] = None,
                       publisher: Optional[StatusPublisher] = None) -> JobOrchestrator:
    """Wire models, pipeline and orchestrator from service settings"""
    pipeline = AnalysisPipeline(
        impact_model=ImpactModel(
            variation=settings.impact_variation,
            seed=settings.impact_seed,
            allow_net_negative=settings.allow_net_negative_carbon,
        ),
        optimizer=OptimizationSearch(candidate_count=settings.optimization_candidates),
        estimator=EstimationModel(),
    )
    return JobOrchestrator(
        pipeline=pipeline,
        job_store=job_store,
        publisher=publisher,
        worker_count=settings.worker_count,
        max_queue_size=settings.max_queue_size,
        job_timeout_seconds=settings.job_timeout_seconds,
        store_retry_attempts=settings.store_retry_attempts,
    )
