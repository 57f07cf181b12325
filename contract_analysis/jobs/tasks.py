"""
Job Tasks
=========

Entry points executed by the RQ worker. RQ calls plain functions, so the
async orchestrator is driven with asyncio.run.
"""

import asyncio
import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


def update_job_progress(progress: int, message: str = None):
    """Update job progress (for RQ meta)"""
    from rq import get_current_job

    job = get_current_job()
    if job:
        job.meta['progress'] = progress
        if message:
            job.meta['message'] = message
        job.save_meta()


async def _analyze(request) -> Any:
    from ..analysis import AnalysisOrchestrator
    from ..llm import ContractAnalyzerLLM

    # Fresh HTTP client per job; each asyncio.run has its own loop.
    analyzer = ContractAnalyzerLLM()
    try:
        return await AnalysisOrchestrator(analyzer=analyzer).run(request)
    finally:
        await analyzer.close()


def task_analyze_contract(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Analyze one contract.

    Args:
        payload: AnalysisRequest.to_dict()

    Returns:
        Dict with contract id and resulting status
    """
    from ..analysis import AnalysisRequest

    request = AnalysisRequest(**payload)
    update_job_progress(10, "Analyzing")

    contract = asyncio.run(_analyze(request))

    update_job_progress(100, "Complete")
    status = contract.status.value if contract is not None else "unrecorded"
    return {"contract_id": request.contract_id, "status": status}
