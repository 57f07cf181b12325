"""
Analysis Orchestrator
=====================

Runs one analysis for one contract and resolves it to a terminal state.

Flow:
1. Load the blob and extract text (run only)
2. One completion call, bounded by a timeout
3. Robust JSON parse, then validate_ai_response
4. mark_active, or mark_failed with "Analysis failed (<category>)."

Nothing here raises to the caller. The diagnostic stored on a failed
contract names only the failure category; prompt, document text and raw
completion stay out of it.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import get_settings
from .db.models import Contract
from .db.session import new_session
from .errors import (
    AnalysisFailure,
    BlobUnavailable,
    CompletionFailed,
    CompletionTimeout,
    EmptyCompletion,
    ExtractionFailed,
    MalformedCompletion,
    StorageFailure,
)
from .ingest import ParserError, UnsupportedFormatError, extract_text
from .llm import get_analyzer, parse_json_robust, safe_log_content
from .llm.base import ERROR_TIMEOUT
from .repository import ContractRepository
from .state_machine import InvalidTransitionError, mark_active, mark_failed
from .storage import BlobStore, get_storage
from .validator import ValidatedAnalysis, validate_ai_response

logger = logging.getLogger(__name__)


def failure_diagnostic(category: str) -> str:
    return f"Analysis failed ({category})."


@dataclass
class AnalysisRequest:
    """Everything a worker needs to analyze one contract"""
    contract_id: str
    storage_key: str
    mime_type: str
    attempt: int = 1

    def to_dict(self) -> dict:
        return {
            "contract_id": self.contract_id,
            "storage_key": self.storage_key,
            "mime_type": self.mime_type,
            "attempt": self.attempt,
        }


class AnalysisOrchestrator:
    """
    Analyze a contract and record the outcome.

    Collaborators are injectable; defaults come from settings.
    `analyzer` needs an async `complete(text) -> LLMCallResult`.
    """

    def __init__(
        self,
        analyzer=None,
        session_factory: Optional[Callable[[], Session]] = None,
        storage: Optional[BlobStore] = None,
        timeout: Optional[float] = None,
    ):
        self.analyzer = analyzer or get_analyzer()
        self.session_factory = session_factory or new_session
        self.storage = storage or get_storage()
        self.timeout = timeout if timeout is not None else get_settings().llm_timeout

    async def run(self, request: AnalysisRequest) -> Optional[Contract]:
        """Load, extract and analyze. Always ends in a terminal state or a logged error."""
        logger.info(
            f"Analysis started for contract {request.contract_id} (attempt {request.attempt})"
        )
        try:
            text = await self._load_text(request)
        except AnalysisFailure as e:
            logger.warning(f"Contract {request.contract_id}: {e.category}: {e}")
            return self._record_failure(request.contract_id, e.category, request.attempt)
        except Exception:
            logger.exception(f"Unexpected error preparing contract {request.contract_id}")
            return self._record_failure(request.contract_id, "internal_error", request.attempt)

        return await self.analyze(request.contract_id, text, attempt=request.attempt)

    async def analyze(
        self,
        contract_id: str,
        text_content: str,
        attempt: Optional[int] = None,
    ) -> Optional[Contract]:
        """
        Analyze already-extracted text and record the outcome.

        The outcome is only written while the contract is still `processing`
        and, when `attempt` is given, still on that attempt. Otherwise it is
        dropped: the contract already has its terminal state, or a later
        attempt owns it.

        Returns:
            The updated contract, or None if the outcome was not recorded
        """
        try:
            validated = await self._complete_and_validate(text_content)
        except AnalysisFailure as e:
            logger.warning(f"Contract {contract_id}: {e.category}: {e}")
            return self._record_failure(contract_id, e.category, attempt)
        except Exception:
            logger.exception(f"Unexpected error analyzing contract {contract_id}")
            return self._record_failure(contract_id, "internal_error", attempt)

        return self._record_success(contract_id, validated, attempt)

    # -------------------------------------------------------------------------

    async def _load_text(self, request: AnalysisRequest) -> str:
        try:
            data = await asyncio.to_thread(self.storage.get, request.storage_key)
        except StorageFailure as e:
            raise BlobUnavailable(str(e)) from e

        try:
            text = await asyncio.to_thread(extract_text, data, request.mime_type)
        except (ParserError, UnsupportedFormatError) as e:
            raise ExtractionFailed(str(e)) from e

        if not text.strip():
            raise ExtractionFailed("No extractable text")
        return text

    async def _complete_and_validate(self, text_content: str) -> ValidatedAnalysis:
        try:
            result = await asyncio.wait_for(
                self.analyzer.complete(text_content), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise CompletionTimeout(f"No completion within {self.timeout}s") from e

        if not result.success:
            if result.error_kind == ERROR_TIMEOUT:
                raise CompletionTimeout(result.error)
            raise CompletionFailed(result.error)

        if not result.content or not result.content.strip():
            raise EmptyCompletion("Completion had no content")

        data, ok, error = parse_json_robust(result.content)
        if not ok:
            logger.warning(f"Unparseable completion: {safe_log_content(result.content)}")
            raise MalformedCompletion(error)

        return validate_ai_response(data)

    def _record_success(
        self,
        contract_id: str,
        validated: ValidatedAnalysis,
        attempt: Optional[int] = None,
    ) -> Optional[Contract]:
        session = None
        try:
            session = self.session_factory()
            repo = ContractRepository(session)
            contract = repo.get_awaiting_outcome(contract_id, attempt)
            if contract is None:
                logger.warning(
                    f"Contract {contract_id} no longer awaits attempt {attempt}; result dropped"
                )
                return None
            mark_active(contract, validated.result)
            repo.save(contract)
            logger.info(
                f"Contract {contract_id} active (risk={contract.risk_level}, "
                f"risks={len(validated.result.risks)}, insights={len(validated.result.insights)})"
            )
            return contract
        except (StorageFailure, SQLAlchemyError, InvalidTransitionError):
            logger.exception(f"Failed to record analysis result for contract {contract_id}")
            return None
        finally:
            if session is not None:
                session.close()

    def _record_failure(
        self,
        contract_id: str,
        category: str,
        attempt: Optional[int] = None,
    ) -> Optional[Contract]:
        session = None
        try:
            session = self.session_factory()
            repo = ContractRepository(session)
            contract = repo.get_awaiting_outcome(contract_id, attempt)
            if contract is None:
                logger.warning(
                    f"Contract {contract_id} no longer awaits attempt {attempt}; "
                    f"failure ({category}) dropped"
                )
                return None
            mark_failed(contract, failure_diagnostic(category))
            repo.save(contract)
            logger.info(f"Contract {contract_id} failed ({category})")
            return contract
        except (StorageFailure, SQLAlchemyError, InvalidTransitionError):
            logger.exception(f"Failed to record analysis failure for contract {contract_id}")
            return None
        finally:
            if session is not None:
                session.close()
