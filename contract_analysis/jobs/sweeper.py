"""
Stale Contract Sweeper
======================

Recovers contracts whose analysis never reached a terminal state (process
restart, lost job, dispatch failure).

A contract is stale when it is still `processing` and its `updated_at` is
older than STALE_PROCESSING_MINUTES. Stale contracts are dispatched again
until `analysis_attempts` reaches MAX_ANALYSIS_ATTEMPTS; after that they are
marked failed. Each re-dispatch bumps the attempt number, and the
orchestrator only records the outcome of the current attempt, so a late
result from an earlier attempt can never overwrite a newer one or a
terminal state set here.

Usage:
    sweeper = StaleContractSweeper(dispatcher)
    result = await sweeper.sweep()
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..analysis import AnalysisRequest
from ..db.session import new_session
from ..errors import StorageFailure
from ..repository import ContractRepository
from ..state_machine import mark_failed
from .dispatcher import AnalysisDispatcher

logger = logging.getLogger(__name__)

STALE_DIAGNOSTIC = "Analysis did not complete."


@dataclass
class SweepResult:
    """Result of one sweep"""
    checked: int = 0
    redispatched: int = 0
    marked_failed: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checked": self.checked,
            "redispatched": self.redispatched,
            "marked_failed": self.marked_failed,
            "errors": self.errors,
        }


class StaleContractSweeper:
    """Periodic recovery of contracts stuck in `processing`"""

    def __init__(
        self,
        dispatcher: AnalysisDispatcher,
        session_factory: Optional[Callable[[], Session]] = None,
        stale_minutes: int = 30,
        max_attempts: int = 3,
        batch_size: int = 100,
    ):
        self.dispatcher = dispatcher
        self.session_factory = session_factory or new_session
        self.stale_minutes = stale_minutes
        self.max_attempts = max_attempts
        self.batch_size = batch_size

    async def sweep(self) -> SweepResult:
        """
        Run one sweep. Never raises; problems are collected in `errors`.

        Must run on the event loop the dispatcher submits to.
        """
        result = SweepResult()
        to_dispatch: List[AnalysisRequest] = []

        session = self.session_factory()
        try:
            repo = ContractRepository(session)
            stale = repo.list_stale_processing(
                timedelta(minutes=self.stale_minutes), limit=self.batch_size
            )
            result.checked = len(stale)

            for stale_contract in stale:
                try:
                    # Re-read under lock; an attempt may have finished since the query.
                    contract = repo.get_awaiting_outcome(
                        stale_contract.id, stale_contract.analysis_attempts
                    )
                    if contract is None:
                        continue

                    if (contract.analysis_attempts or 0) >= self.max_attempts:
                        mark_failed(contract, STALE_DIAGNOSTIC)
                        repo.save(contract)
                        result.marked_failed += 1
                        logger.warning(
                            f"Contract {contract.id} failed after "
                            f"{contract.analysis_attempts} analysis attempt(s)"
                        )
                        continue

                    repo.record_dispatch(contract)
                    repo.save(contract)
                    to_dispatch.append(AnalysisRequest(
                        contract_id=contract.id,
                        storage_key=contract.storage_key,
                        mime_type=contract.mime_type,
                        attempt=contract.analysis_attempts,
                    ))
                except StorageFailure as e:
                    error_msg = f"Failed to recover contract {stale_contract.id}: {e}"
                    logger.error(error_msg)
                    result.errors.append(error_msg)
        except SQLAlchemyError as e:
            error_msg = f"Stale sweep query failed: {e}"
            logger.exception(error_msg)
            result.errors.append(error_msg)
        finally:
            session.close()

        for request in to_dispatch:
            try:
                self.dispatcher.submit(request)
                result.redispatched += 1
            except Exception as e:
                error_msg = f"Failed to re-dispatch contract {request.contract_id}: {e}"
                logger.error(error_msg)
                result.errors.append(error_msg)

        if result.checked:
            logger.info(
                f"Stale sweep: checked={result.checked}, redispatched={result.redispatched}, "
                f"marked_failed={result.marked_failed}, errors={len(result.errors)}"
            )
        return result

    async def run_forever(self, interval_seconds: int) -> None:
        """Sweep now and then every `interval_seconds` until cancelled."""
        while True:
            await self.sweep()
            await asyncio.sleep(interval_seconds)
