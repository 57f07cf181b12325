"""
Analysis Dispatch
=================

Hands an AnalysisRequest to whatever runs it, without making the upload
wait for the result.

Backends (ANALYSIS_BACKEND):
- inprocess: asyncio tasks in the API process, at most
  ANALYSIS_MAX_CONCURRENCY running at once; drained on shutdown
- rq: durable Redis Queue job run by `contract_analysis.jobs.worker`;
  falls back to in-process when Redis refuses the job

Jobs that are lost anyway (process crash, worker killed) leave the
contract `processing`; the stale sweeper picks them up.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from functools import partial
from typing import Callable, Optional, Set

from ..analysis import AnalysisOrchestrator, AnalysisRequest
from ..config import Settings, get_settings
from ..storage import BlobStore

logger = logging.getLogger(__name__)


class AnalysisDispatcher(ABC):
    """Fire-and-forget hand-off of analysis work"""

    @abstractmethod
    def submit(self, request: AnalysisRequest) -> None:
        """Schedule the analysis. Must return without waiting for it."""
        pass

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for locally running work (no-op for remote backends)"""
        return None

    async def close(self) -> None:
        """Release clients held by local workers"""
        return None


class InProcessDispatcher(AnalysisDispatcher):
    """
    Run analyses as asyncio tasks on the current event loop.

    Task references are held until completion so they are not garbage
    collected mid-flight.
    """

    def __init__(
        self,
        orchestrator_factory: Optional[Callable[[], AnalysisOrchestrator]] = None,
        max_concurrency: int = 4,
    ):
        self._orchestrator_factory = orchestrator_factory or AnalysisOrchestrator
        self._orchestrator: Optional[AnalysisOrchestrator] = None
        self.max_concurrency = max(1, max_concurrency)
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def orchestrator(self) -> AnalysisOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = self._orchestrator_factory()
        return self._orchestrator

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def _get_semaphore(self, loop: asyncio.AbstractEventLoop) -> asyncio.Semaphore:
        if self._semaphore is None or self._loop is not loop:
            self._semaphore = asyncio.Semaphore(self.max_concurrency)
            self._loop = loop
        return self._semaphore

    def submit(self, request: AnalysisRequest) -> asyncio.Task:
        """
        Schedule on the running loop.

        Raises:
            RuntimeError: If called outside an event loop
        """
        loop = asyncio.get_running_loop()
        semaphore = self._get_semaphore(loop)
        task = loop.create_task(
            self._run(request, semaphore), name=f"analyze-{request.contract_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, request: AnalysisRequest, semaphore: asyncio.Semaphore) -> None:
        async with semaphore:
            try:
                await self.orchestrator.run(request)
            except Exception:
                logger.exception(f"Analysis task crashed for contract {request.contract_id}")

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight analyses; cancel what is left after `timeout`."""
        if not self._tasks:
            return
        logger.info(f"Draining {len(self._tasks)} analysis task(s)")
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(
                f"{len(pending)} analysis task(s) cancelled at shutdown; "
                "their contracts stay processing until the stale sweep"
            )

    async def close(self) -> None:
        if self._orchestrator is None:
            return
        close = getattr(self._orchestrator.analyzer, "close", None)
        if close is not None:
            await close()


class RQDispatcher(AnalysisDispatcher):
    """Enqueue durable RQ jobs; fall back to in-process when Redis is down."""

    def __init__(
        self,
        fallback: InProcessDispatcher,
        queue=None,
        job_timeout: int = 600,
    ):
        self.fallback = fallback
        self._queue = queue
        self.job_timeout = job_timeout

    def submit(self, request: AnalysisRequest) -> None:
        from .queue import QueueUnavailable, enqueue_job, get_queue
        from .tasks import task_analyze_contract

        job_id = f"analyze_{request.contract_id}_{request.attempt}"
        try:
            if self._queue is None:
                self._queue = get_queue()
            info = enqueue_job(
                task_analyze_contract,
                request.to_dict(),
                queue=self._queue,
                job_id=job_id,
                timeout=self.job_timeout,
                meta={"contract_id": request.contract_id},
            )
            logger.info(f"Enqueued {info['job_id']} on {info['queue']}")
        except QueueUnavailable as e:
            logger.warning(f"{e}; running {job_id} in-process")
            self.fallback.submit(request)

    async def drain(self, timeout: Optional[float] = None) -> None:
        await self.fallback.drain(timeout)

    async def close(self) -> None:
        await self.fallback.close()


def get_dispatcher(
    settings: Optional[Settings] = None,
    storage: Optional[BlobStore] = None,
) -> AnalysisDispatcher:
    """
    Build the dispatcher selected by ANALYSIS_BACKEND.

    `storage` is the blob store in-process analyses read from; it must be the
    one uploads are written to. RQ workers run elsewhere and use their own
    configured store.
    """
    settings = settings or get_settings()
    orchestrator_factory = None
    if storage is not None:
        orchestrator_factory = partial(AnalysisOrchestrator, storage=storage)
    in_process = InProcessDispatcher(
        orchestrator_factory=orchestrator_factory,
        max_concurrency=settings.analysis_max_concurrency,
    )

    if settings.analysis_backend == "rq":
        logger.info(f"Analysis dispatch: RQ queue '{settings.analysis_queue_name}'")
        return RQDispatcher(
            fallback=in_process,
            job_timeout=settings.llm_timeout * 2 + 60,
        )

    logger.info(
        f"Analysis dispatch: in-process (max concurrency {settings.analysis_max_concurrency})"
    )
    return in_process
