"""
Analysis Dispatch Tests
=======================

In-process asyncio dispatch, RQ enqueue with in-process fallback, and the
RQ task entry point.
"""

import asyncio
from unittest.mock import MagicMock

import pytest
import redis

from contract_analysis import llm
from contract_analysis.analysis import AnalysisRequest
from contract_analysis.config import Settings
from contract_analysis.db.models import Contract, ContractStatus
from contract_analysis.jobs.dispatcher import InProcessDispatcher, RQDispatcher, get_dispatcher
from contract_analysis.jobs.tasks import task_analyze_contract
from contract_analysis.repository import ContractRepository
from contract_analysis.storage import set_storage


def _request(n: int = 1) -> AnalysisRequest:
    return AnalysisRequest(
        contract_id=f"c-{n}",
        storage_key=f"contracts/org-1/c-{n}.txt",
        mime_type="text/plain",
    )


class FakeOrchestrator:
    """Records requests; optionally slow or crashing"""

    def __init__(self, delay: float = 0, crash: bool = False):
        self.delay = delay
        self.crash = crash
        self.seen = []
        self.running = 0
        self.max_running = 0
        self.analyzer = MagicMock()
        self.analyzer.close = MagicMock(side_effect=self._close)
        self.closed = False

    async def _close(self):
        self.closed = True

    async def run(self, request):
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.crash:
                raise RuntimeError("boom")
            self.seen.append(request.contract_id)
        finally:
            self.running -= 1


class TestInProcessDispatcher:

    @pytest.mark.asyncio
    async def test_submit_returns_before_work_runs(self):
        orchestrator = FakeOrchestrator(delay=0.05)
        dispatcher = InProcessDispatcher(orchestrator_factory=lambda: orchestrator)

        dispatcher.submit(_request())
        assert orchestrator.seen == []
        assert dispatcher.pending == 1

        await dispatcher.drain(timeout=1)
        assert orchestrator.seen == ["c-1"]
        assert dispatcher.pending == 0

    @pytest.mark.asyncio
    async def test_concurrency_bounded(self):
        orchestrator = FakeOrchestrator(delay=0.02)
        dispatcher = InProcessDispatcher(orchestrator_factory=lambda: orchestrator, max_concurrency=2)

        for n in range(6):
            dispatcher.submit(_request(n))
        await dispatcher.drain(timeout=2)

        assert len(orchestrator.seen) == 6
        assert orchestrator.max_running == 2

    @pytest.mark.asyncio
    async def test_crash_does_not_escape(self):
        orchestrator = FakeOrchestrator(crash=True)
        dispatcher = InProcessDispatcher(orchestrator_factory=lambda: orchestrator)

        task = dispatcher.submit(_request())
        await dispatcher.drain(timeout=1)

        assert task.done()
        assert task.exception() is None

    @pytest.mark.asyncio
    async def test_drain_timeout_cancels(self):
        orchestrator = FakeOrchestrator(delay=5)
        dispatcher = InProcessDispatcher(orchestrator_factory=lambda: orchestrator)

        task = dispatcher.submit(_request())
        await dispatcher.drain(timeout=0.01)
        await asyncio.sleep(0.01)

        assert task.cancelled()

    @pytest.mark.asyncio
    async def test_close_closes_analyzer(self):
        orchestrator = FakeOrchestrator()
        dispatcher = InProcessDispatcher(orchestrator_factory=lambda: orchestrator)
        dispatcher.submit(_request())
        await dispatcher.drain()

        await dispatcher.close()
        assert orchestrator.closed

    def test_submit_outside_loop_raises(self):
        dispatcher = InProcessDispatcher(orchestrator_factory=FakeOrchestrator)
        with pytest.raises(RuntimeError):
            dispatcher.submit(_request())


class TestRQDispatcher:

    def test_enqueues_without_retry(self, recording_dispatcher):
        queue = MagicMock()
        queue.name = "analysis"
        dispatcher = RQDispatcher(fallback=recording_dispatcher, queue=queue, job_timeout=180)

        request = _request()
        request.attempt = 2
        dispatcher.submit(request)

        args, kwargs = queue.enqueue.call_args
        assert args[0] is task_analyze_contract
        assert args[1] == request.to_dict()
        assert kwargs["job_id"] == "analyze_c-1_2"
        assert kwargs["job_timeout"] == 180
        assert "retry" not in kwargs
        assert recording_dispatcher.requests == []

    def test_redis_down_falls_back(self, recording_dispatcher):
        queue = MagicMock()
        queue.enqueue.side_effect = redis.ConnectionError("refused")
        dispatcher = RQDispatcher(fallback=recording_dispatcher, queue=queue)

        dispatcher.submit(_request())

        assert [r.contract_id for r in recording_dispatcher.requests] == ["c-1"]


class TestGetDispatcher:

    def test_default_is_in_process(self):
        dispatcher = get_dispatcher(Settings(analysis_max_concurrency=7))
        assert isinstance(dispatcher, InProcessDispatcher)
        assert dispatcher.max_concurrency == 7

    def test_storage_reaches_orchestrator(self, storage, scripted_analyzer):
        dispatcher = get_dispatcher(Settings(), storage=storage)
        orchestrator = dispatcher._orchestrator_factory(analyzer=scripted_analyzer())
        assert orchestrator.storage is storage

    def test_rq_fallback_gets_storage(self, storage, scripted_analyzer):
        dispatcher = get_dispatcher(Settings(analysis_backend="rq"), storage=storage)
        orchestrator = dispatcher.fallback._orchestrator_factory(analyzer=scripted_analyzer())
        assert orchestrator.storage is storage

    def test_rq_backend(self):
        dispatcher = get_dispatcher(Settings(analysis_backend="rq", llm_timeout=60))
        assert isinstance(dispatcher, RQDispatcher)
        assert isinstance(dispatcher.fallback, InProcessDispatcher)
        assert dispatcher.job_timeout == 180


class TestTask:

    def test_task_runs_analysis_to_terminal_state(
        self, db_session, tenants, storage, scripted_analyzer, monkeypatch
    ):
        key = storage.generate_key(tenants["org_a"].id, "text/plain")
        storage.put(key, b"Acme and Globex agree.", "text/plain")
        contract = ContractRepository(db_session).create_processing(
            tenant_id=tenants["org_a"].id,
            uploaded_by_user_id=tenants["user_a"].id,
            name="a.txt",
            storage_key=key,
            mime_type="text/plain",
            size_bytes=22,
        )

        analyzer = scripted_analyzer('{"summary": "ok"}')
        monkeypatch.setattr(llm, "ContractAnalyzerLLM", lambda: analyzer)
        set_storage(storage)
        try:
            result = task_analyze_contract({
                "contract_id": contract.id,
                "storage_key": key,
                "mime_type": "text/plain",
                "attempt": 1,
            })
        finally:
            set_storage(None)

        assert result == {"contract_id": contract.id, "status": "active"}
        assert analyzer.closed

        db_session.expire_all()
        assert db_session.get(Contract, contract.id).status == ContractStatus.ACTIVE
